"""A catalogue that maps local environments to reference environments and mechanisms."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, replace
from typing import IO, Any, Optional

import numpy as np

from flykmc.envs import CatalogueOptions, Env, SelfSymmetry, geometry_from_neighbours
from flykmc.geometry import Geometry, for_equiv_perms
from flykmc.heuristics import Fingerprint, canon_hash
from flykmc.mechanisms import Mechanism
from flykmc.neighbours import Box, NeighbourList


class CatalogueError(RuntimeError):
    """Raised when the catalogue cannot match, refine or load an environment."""


@dataclass
class _RelEnv:
    finger: Fingerprint
    geo: Geometry
    hash: int
    env: Optional[Env] = None


def _permute_onto(geo: Geometry, ref: Geometry, delta: float) -> Optional[tuple[np.ndarray, float]]:
    """Permute ``geo`` in place onto ``ref``; the transform and rmsd of the first match."""
    found: list[tuple[np.ndarray, float]] = []

    def accept(transform: Any, dr: float) -> bool:
        found.append((np.array(transform, dtype=float), float(dr)))
        return True

    for_equiv_perms(geo, ref, delta, 1, accept)
    return found[0] if found else None


def _mech_to_dict(m: Mechanism) -> dict:
    return {
        "barrier": m.barrier,
        "delta": m.delta,
        "kinetic_pre": m.kinetic_pre,
        "err_fwd": m.err_fwd,
        "err_sp": m.err_sp,
        "poison_sp": m.poison_sp,
        "poison_fwd": m.poison_fwd,
        "delta_sp": np.asarray(m.delta_sp).tolist(),
        "delta_fwd": np.asarray(m.delta_fwd).tolist(),
    }


def _env_to_dict(env: Env) -> dict:
    return {
        "positions": np.asarray(env.geo.positions).tolist(),
        "colours": [int(c) for c in env.geo.colours],
        "index": env.index,
        "delta_max": env.max_delta,
        "freq": env.freq,
        "false_pos": env.false_pos,
        "mechs": [_mech_to_dict(m) for m in env.mechs],
    }


def _env_from_dict(data: dict) -> Env:
    geo = Geometry(np.array(data["positions"], dtype=float).reshape(-1, 3), list(data["colours"]))
    finger = Fingerprint()
    finger.rebuild(geo)
    return Env(
        geo=geo,
        finger=finger,
        index=int(data["index"]),
        max_delta=float(data["delta_max"]),
        mechs=[Mechanism(**m) for m in data["mechs"]],
        freq=int(data["freq"]),
        false_pos=int(data["false_pos"]),
    )


class Catalogue:
    """Maps the geometry around each atom to an equivalent, previously seen environment.

    Matching happens in three steps: geometries are canonised and hashed into
    a discrete key, environments with equal keys are compared by fingerprint,
    and those that agree are compared by a full permutation search.
    """

    def __init__(self, options: Optional[CatalogueOptions] = None) -> None:
        self.options = options if options is not None else CatalogueOptions()
        self._size = 0
        self._box: Optional[Box] = None
        self._nl: Optional[NeighbourList] = None
        self._real: list[Optional[_RelEnv]] = []
        self._cat: dict[int, list[Env]] = {}

    # ------------------------------------------------------------------ queries

    def size(self) -> int:
        """Number of environments in the catalogue."""
        return self._size

    def num_keys(self) -> int:
        """Number of discrete keys in the catalogue."""
        return len(self._cat)

    def _rel(self, i: int) -> _RelEnv:
        if not 0 <= i < len(self._real) or self._real[i] is None:
            raise IndexError(
                f"Accessing atom {i} in catalogue, out of bounds as cat has {len(self._real)} active atoms"
            )
        rel = self._real[i]
        assert rel is not None
        return rel

    def get_geo(self, i: int) -> Geometry:
        """The geometry around atom ``i`` in canonical order."""
        return self._rel(i).geo

    def get_ref(self, i: int) -> Env:
        """The reference environment equivalent to the geometry around atom ``i``."""
        rel = self._rel(i)
        if rel.env is None:
            raise CatalogueError(f"Atom {i} has no matching environment")
        return rel.env

    # ----------------------------------------------------------------- matching

    def _calc_delta(self, finger: Fingerprint, ref: Env) -> float:
        return min(0.4 * min(finger.r_min(), ref.finger.r_min()), ref.max_delta)

    def _canon_equiv(self, mut: _RelEnv, ref: Env) -> bool:
        delta = self._calc_delta(mut.finger, ref)
        if not ref.finger.equiv(mut.finger, delta * self.options.overfuzz):
            return False
        if _permute_onto(mut.geo, ref.geo, delta) is not None:
            return True
        ref.false_pos += 1
        return False

    def _canon_find(self, rel: _RelEnv) -> Optional[Env]:
        for env in self._cat.get(rel.hash, []):
            if self._canon_equiv(rel, env):
                return env
        return None

    def _insert(self, rel: _RelEnv) -> Env:
        bucket = self._cat.setdefault(rel.hash, [])
        env = Env.from_geometry(
            rel.geo, rel.finger, self._size, min(rel.finger.r_min() * 0.4, self.options.delta_max)
        )
        self._size += 1
        bucket.append(env)
        return env

    def _prepare(self, box: Box) -> NeighbourList:
        if self._box is None or not self._box == box or self._nl is None:
            if self.options.debug:
                print("CAT: reconstruct neighbour list")
            self._box = box
            self._nl = NeighbourList(box, self.options.r_env)
        return self._nl

    def _rebuild_env(self, i: int, types: Any, frozen: Any, num_types: int) -> _RelEnv:
        assert self._nl is not None
        geo = geometry_from_neighbours(i, types, frozen, self._nl, self.options.r_env)
        finger = Fingerprint()
        finger.rebuild(geo)
        key = canon_hash(geo, self.options.r_edge, 2 * num_types)
        return _RelEnv(finger, geo, key)

    def rebuild(self, box: Box, positions: Any, types: Any, frozen: Any, num_types: int) -> list[int]:
        """Build every atom's environment and match it against the catalogue.

        New environments are inserted; the indices of the atoms they are
        centred on are returned.
        """
        nl = self._prepare(box)
        pos = np.asarray(positions, dtype=float)
        nl.rebuild(pos)
        n = len(pos)

        self._real = [self._rebuild_env(i, types, frozen, num_types) for i in range(n)]

        for rel in self._real:
            assert rel is not None
            self._cat.setdefault(rel.hash, [])

        missing = False
        for i, rel in enumerate(self._real):
            assert rel is not None
            rel.env = self._canon_find(rel)
            if rel.env is None:
                missing = True
                if self.options.debug:
                    print(f"CAT: environment around {i} is new")
            else:
                rel.env.freq += 1

        if not missing:
            if self.options.debug:
                print("CAT: No new environments")
            return []

        new_idx: list[int] = []
        new_envs: list[tuple[Env, int]] = []

        for i, rel in enumerate(self._real):
            assert rel is not None
            if rel.env is not None:
                continue
            match = next(
                (env for env, key in new_envs if key == rel.hash and self._canon_equiv(rel, env)),
                None,
            )
            if match is None:
                rel.env = self._insert(rel)
                new_idx.append(i)
                new_envs.append((rel.env, rel.hash))
                if self.options.debug:
                    print(f"CAT: Unknown at {i} is new")
            else:
                rel.env = match
                if self.options.debug:
                    print(f"CAT: Unknown at {i} is a duplicate new")

        if self.options.debug:
            print(f"CAT: found {len(new_idx)} new environments")

        return new_idx

    # --------------------------------------------------------------- operations

    def calc_self_syms(self, i: int) -> list[SelfSymmetry]:
        """Transformations and permutations mapping the ``i``th geometry onto itself."""
        ref = self.get_geo(i)
        mut = Geometry(
            np.array(ref.positions, dtype=float), np.array(ref.colours), list(range(len(ref)))
        )
        delta = self._calc_delta(self._rel(i).finger, self.get_ref(i))

        out: list[SelfSymmetry] = []

        def record(transform: Any, _dr: float) -> bool:
            out.append(SelfSymmetry(np.array(transform, dtype=float), [int(x) for x in mut.indices]))
            return False

        for_equiv_perms(mut, ref, delta, 1, record)

        if self.options.debug:
            print(f"Cat: Env @{i:<4} has {len(out):<2} symmetries @tol={delta:.5e}")

        return out

    def set_mechs(self, i: int, mechs: list[Mechanism]) -> None:
        """Attach mechanisms to the environment of atom ``i``; allowed once per environment."""
        env = self.get_ref(i)
        if env.mechs:
            raise CatalogueError(
                f"We already have {len(env.mechs)} mechanisms, set_mechs() should only be called once."
            )
        size = len(env)
        if not all(len(m.delta_sp) == size and len(m.delta_fwd) == size for m in mechs):
            raise CatalogueError("Wrong number of atoms.")
        env.mechs = list(mechs)

    def refine_tol(self, i: int, min_delta: float = 0.0) -> float:
        """Tighten the tolerance of the environment matched by atom ``i``.

        Resets that environment's frequency and false-positive counters and
        returns its new ``delta_max``.
        """
        rel = self._rel(i)
        env = self.get_ref(i)
        delta = self._calc_delta(rel.finger, env)
        res = _permute_onto(rel.geo, env.geo, delta)
        if res is None:
            raise CatalogueError(f"While tightening @{i} perm failed with delta={delta}")

        new_delta_max = max(min_delta, res[1] / 1.5)

        if self.options.debug:
            print(f"CAT: Refining delta_max @{i} from {env.max_delta} to {new_delta_max}")

        if not new_delta_max > self.options.min_delta_max:
            raise CatalogueError(f"delta_max too small: {env.max_delta}->{new_delta_max}!")

        env.max_delta = new_delta_max
        env.freq = 1
        env.false_pos = 0
        return new_delta_max

    def optimize(self) -> None:
        """Reorder each key's environments into descending frequency order."""
        for key, bucket in self._cat.items():
            if len(bucket) > 1:
                bucket.sort(key=lambda e: e.freq / (e.false_pos + 1.0), reverse=True)
                print(f"Key {key} has {len(bucket)} envs")
                for e in bucket:
                    print(f"\t Env #{e.index:<4} with freq={e.freq:<9} false_pos={e.false_pos:<9}")

    def reconstruct(
        self,
        mech: Mechanism,
        i: int,
        box: Box,
        positions: Any,
        types: Any,
        frozen: Any,
        num_types: int,
        in_ready_state: bool = False,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Apply ``mech`` to the atoms around atom ``i``.

        Returns the displaced positions and the matrix that transformed the
        mechanism onto them. Unless ``in_ready_state`` is true, the
        environment of atom ``i`` is rebuilt from ``positions`` first.
        """
        pos = np.asarray(positions, dtype=float)
        out = pos.copy()
        n = len(pos)

        if not in_ready_state:
            if self.options.debug:
                print(f"CAT: Rebuilding the geometry @{i}")
            if not 0 <= i < n:
                raise IndexError(f"Atom with index {i} is not in the system")
            nl = self._prepare(box)
            if len(self._real) != n:
                self._real = (self._real + [None] * n)[:n]
            nl.rebuild(pos)
            rel = self._rebuild_env(i, types, frozen, num_types)
            rel.env = self._canon_find(rel)
            self._real[i] = rel
            if rel.env is None:
                raise CatalogueError(
                    f"Rebuilding the geo centred on {i} cat failed to find a matching Env"
                )
        elif not 0 <= i < len(self._real):
            raise IndexError(f"Atom with index {i} is not in catalogue")

        rel = self._rel(i)
        env = self.get_ref(i)
        delta = self._calc_delta(rel.finger, env)
        res = _permute_onto(rel.geo, env.geo, delta)
        if res is None:
            raise CatalogueError(
                f"Unable to align cell perm geo {i} onto reference, ready={in_ready_state}"
            )

        transform = res[0].T
        fwd = np.asarray(mech.delta_fwd, dtype=float)
        for j, idx in enumerate(rel.geo.indices):
            out[int(idx)] += transform @ fwd[j]

        return out, transform

    # ------------------------------------------------------------ serialisation

    def dump(self, stream: IO[bytes]) -> None:
        """Write the catalogue to a binary stream."""
        if self.options.debug:
            print("Dump catalogue")
        opt = self.options
        data = {
            "options": {
                "delta_max": opt.delta_max,
                "overfuzz": opt.overfuzz,
                "r_env": opt.r_env,
                "r_edge": opt.r_edge,
                "debug": opt.debug,
            },
            "size": self._size,
            "cat": [[key, [_env_to_dict(e) for e in bucket]] for key, bucket in self._cat.items()],
        }
        stream.write(json.dumps(data).encode("utf-8"))

    @classmethod
    def load(cls, options: CatalogueOptions, stream: IO[bytes]) -> "Catalogue":
        """Read a catalogue written by ``dump``.

        Its overfuzz, r_env and r_edge must agree with ``options``.
        """
        try:
            data = json.loads(stream.read())
            stored = data["options"]
            loaded_opt = replace(
                options,
                delta_max=float(stored["delta_max"]),
                overfuzz=float(stored["overfuzz"]),
                r_env=float(stored["r_env"]),
                r_edge=float(stored["r_edge"]),
                debug=bool(stored["debug"]),
            )
            size = int(data["size"])
            cat = {int(key): [_env_from_dict(e) for e in bucket] for key, bucket in data["cat"]}
        except (ValueError, KeyError, TypeError) as exc:
            raise CatalogueError(f"Catalogue is a bad binary: {exc}") from None

        for name in ("overfuzz", "r_env", "r_edge"):
            if asdict(loaded_opt)[name] != asdict(options)[name]:
                raise CatalogueError(f"Loading a catalogue with contradicting .{name}")

        cat_obj = cls(loaded_opt)
        cat_obj._size = size
        cat_obj._cat = cat
        return cat_obj