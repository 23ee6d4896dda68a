"""Local atomic geometries and utilities for matching them up to symmetry."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np

MAX_COPLANAR_ATOMS = 10
"""The maximum number of atoms that can lie in the same plane."""


def _coords(x: Any) -> np.ndarray:
    pos = getattr(x, "positions", x)
    return np.asarray(pos, dtype=float).reshape(-1, 3)


def centroid(positions: Any) -> np.ndarray:
    """Mean position of a set of atoms (array of shape (N, 3) or a Geometry)."""
    arr = _coords(positions)
    if len(arr) == 0:
        raise ValueError("Centroid of an empty set of atoms is undefined")
    return arr.mean(axis=0)


def grmsd(m: Any, x: Any, y: Any) -> float:
    """Root of the summed squared distances between ``m @ x_i`` and ``y_i``."""
    xs = _coords(x)
    ys = _coords(y)
    if xs.shape != ys.shape:
        raise ValueError(f"Sizes must match, {len(xs)}!={len(ys)}!")
    diff = ys - xs @ np.asarray(m, dtype=float).T
    return float(math.sqrt(np.sum(diff * diff)))


def rmsd(x: Any, y: Any) -> float:
    """Root of the summed squared distances between ``x_i`` and ``y_i``."""
    return grmsd(np.identity(3), x, y)


def ortho_onto(x: Any, y: Any) -> np.ndarray:
    """Orthogonal matrix that best maps ``x`` onto ``y`` (reflections allowed)."""
    xs = _coords(x)
    ys = _coords(y)
    if xs.shape != ys.shape:
        raise ValueError(f"Sizes must match, {len(xs)}!={len(ys)}!")
    h = xs.T @ ys
    u, _, vt = np.linalg.svd(h)
    return vt.T @ u.T


def to_colour(type_id: int, frozen: bool) -> int:
    """Colour of an atom, mixing its type and frozen flag."""
    if type_id < 0:
        raise ValueError(f"Type id must be non-negative, got {type_id}")
    return 2 * int(type_id) + int(bool(frozen))


@dataclass
class GeoInfo:
    """Result of a successful permutation onto a reference."""

    transform: np.ndarray
    rmsd: float


class Geometry:
    """A local distribution of atoms centred on its first atom.

    Each atom has a position, a colour and the index of the atom it came from
    (-1 when unknown).
    """

    def __init__(self, positions: Any = None, colours: Any = None, indices: Any = None) -> None:
        self.positions = (
            np.zeros((0, 3)) if positions is None else np.array(positions, dtype=float).reshape(-1, 3)
        )
        n = len(self.positions)
        self.colours = (
            np.zeros(n, dtype=np.int64) if colours is None else np.array(colours, dtype=np.int64).reshape(-1)
        )
        self.indices = (
            np.full(n, -1, dtype=np.int64) if indices is None else np.array(indices, dtype=np.int64).reshape(-1)
        )
        if len(self.colours) != n or len(self.indices) != n:
            raise ValueError(
                f"Geometry fields differ in length: {n}, {len(self.colours)}, {len(self.indices)}"
            )

    def __len__(self) -> int:
        return len(self.positions)

    def __repr__(self) -> str:
        return f"Geometry(n={len(self)})"

    def append(self, position: Any, colour: int, index: int = -1) -> None:
        """Add an atom to the end of the geometry."""
        self.positions = np.vstack([self.positions, np.asarray(position, dtype=float).reshape(1, 3)])
        self.colours = np.append(self.colours, np.int64(colour))
        self.indices = np.append(self.indices, np.int64(index))

    def swap(self, a: int, b: int) -> None:
        """Exchange atoms ``a`` and ``b``."""
        if a == b:
            return
        self.positions[[a, b]] = self.positions[[b, a]]
        self.colours[[a, b]] = self.colours[[b, a]]
        self.indices[[a, b]] = self.indices[[b, a]]

    def copy(self) -> "Geometry":
        """An independent copy of this geometry."""
        return Geometry(self.positions.copy(), self.colours.copy(), self.indices.copy())

    def _assign(self, other: "Geometry") -> None:
        self.positions = other.positions
        self.colours = other.colours
        self.indices = other.indices

    def centre(self) -> None:
        """Shift the origin to the centroid of the atoms."""
        if len(self):
            self.positions -= self.positions.mean(axis=0)

    def permute_onto(self, other: Any, delta: float) -> Optional[GeoInfo]:
        """Permute this geometry onto ``other`` using the first match within ``delta``.

        The first atom is never moved. Returns None (leaving the order unchanged)
        if no permutation matches.
        """
        found: list[GeoInfo] = []

        def accept(o: np.ndarray, dr: float) -> bool:
            found.append(GeoInfo(o, dr))
            return True

        for_equiv_perms(self, other, delta, 1, accept)
        return found[0] if found else None

    def best_perm_onto(self, other: Any, delta: float) -> Optional[GeoInfo]:
        """Permute this geometry onto ``other`` using the match with smallest rmsd."""
        best: Optional[GeoInfo] = None
        order: Optional[Geometry] = None

        def consider(o: np.ndarray, dr: float) -> bool:
            nonlocal best, order
            if best is None or dr < best.rmsd:
                best = GeoInfo(o, dr)
                order = self.copy()
            return False

        for_equiv_perms(self, other, delta, 1, consider)

        if order is not None:
            self._assign(order)
        return best


def _within_tol_up_to(mut: np.ndarray, ref: np.ndarray, tol: float, n: int) -> bool:
    k = min(n, MAX_COPLANAR_ATOMS)
    if k == 0:
        return True
    ref_d = np.linalg.norm(ref[n] - ref[:k], axis=1)
    mut_d = np.linalg.norm(mut[n] - mut[:k], axis=1)
    return not bool(np.any(np.abs(ref_d - mut_d) > tol))


def _search(
    mut: Geometry,
    ref_pos: np.ndarray,
    ref_col: np.ndarray,
    delta: float,
    n: int,
    f: Callable[[np.ndarray, float], bool],
) -> bool:
    if n >= len(mut):
        o = ortho_onto(mut.positions, ref_pos)
        dr = grmsd(o, mut.positions, ref_pos)
        return dr < delta and bool(f(o, dr))

    tol = delta * math.sqrt(2.0)

    for i in range(n, len(ref_col)):
        if mut.colours[i] == ref_col[n]:
            mut.swap(n, i)
            if _within_tol_up_to(mut.positions, ref_pos, tol, n) and _search(
                mut, ref_pos, ref_col, delta, n + 1, f
            ):
                return True
            mut.swap(n, i)

    return False


def for_equiv_perms(
    mut: Geometry,
    ref: Any,
    delta: float,
    n: int,
    f: Callable[[np.ndarray, float], bool],
) -> bool:
    """Greedily explore permutations of ``mut`` that match ``ref`` within ``delta``.

    The first ``n`` atoms of ``mut`` are never permuted. For every matching
    permutation ``f(O, rmsd)`` is called with ``mut`` in the matching order; if
    it returns True the search stops, leaving ``mut`` in that order, and True is
    returned. Otherwise ``mut`` is restored and False is returned.
    """
    if len(ref) != len(mut):
        raise ValueError(f"Sizes must match, {len(ref)}!={len(mut)}!")
    if ref is mut:
        raise ValueError("Cannot perm onto self.")
    ref_pos = _coords(ref)
    ref_col = np.asarray(ref.colours)
    return _search(mut, ref_pos, ref_col, delta, n, f)