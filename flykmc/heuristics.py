"""Cheap tests for matching local environments before a full permutation search."""

from __future__ import annotations

import hashlib
import math
from typing import Any, Optional

import numpy as np

from flykmc.geometry import Geometry

MAX_NODES = 128
"""The largest geometry that can be canonised."""

_SQRT2 = math.sqrt(2.0)


def _positions(geo: Any) -> np.ndarray:
    return np.asarray(getattr(geo, "positions", geo), dtype=float).reshape(-1, 3)


class Fingerprint:
    """Sorted intra-atomic distances of a geometry.

    The distances from the first atom and the distances between every other
    pair of atoms are kept separately, each in ascending order.
    """

    def __init__(self) -> None:
        self._r_0j = np.zeros(0)
        self._r_ij = np.zeros(0)

    @property
    def r_0j(self) -> np.ndarray:
        """Sorted distances from the centre atom."""
        return self._r_0j

    @property
    def r_ij(self) -> np.ndarray:
        """Sorted distances between the non-central atoms."""
        return self._r_ij

    def rebuild(self, geo: Any) -> None:
        """Recompute the fingerprint from a geometry."""
        pos = _positions(geo)
        if len(pos) == 0:
            self._r_0j = np.zeros(0)
            self._r_ij = np.zeros(0)
            return
        self._r_0j = np.sort(np.linalg.norm(pos[1:] - pos[0], axis=1))
        rest = pos[1:]
        i, j = np.tril_indices(len(rest), k=-1)
        self._r_ij = np.sort(np.linalg.norm(rest[i] - rest[j], axis=1))

    def equiv(self, other: "Fingerprint", delta: float) -> bool:
        """False if the two environments cannot match within ``delta``.

        True means they may be equivalent.
        """
        if len(self._r_0j) != len(other._r_0j):
            return False
        tol = delta * _SQRT2
        if np.any(np.abs(self._r_0j - other._r_0j) > tol):
            return False
        if len(self._r_ij) != len(other._r_ij):
            raise ValueError(
                f"Secondary distances should match {len(self._r_ij)}!={len(other._r_ij)}"
            )
        return not bool(np.any(np.abs(self._r_ij - other._r_ij) > tol))

    def r_min(self) -> float:
        """The smallest intra-atomic separation in the environment."""
        if len(self._r_0j) == 0 or len(self._r_ij) == 0:
            raise ValueError("Not enough atoms for r_min!")
        return float(min(self._r_0j[0], self._r_ij[0]))


def colour_offsets(geo: Geometry, c_max: int) -> list[int]:
    """Start positions of each colour class after the centre atom.

    Slot ``c_max`` holds the colour of the centre atom. For colours
    ``[2, 0, 2, 0, 2, 2]`` and ``c_max == 4`` this is ``[1, 3, 3, 6, 2]``.
    """
    colours = np.asarray(geo.colours, dtype=np.int64)
    if len(colours) == 0:
        raise ValueError("Cannot compute colour offsets of an empty geometry")
    rest = colours[1:]
    if np.any(rest < 0) or np.any(rest >= c_max):
        bad = rest[(rest < 0) | (rest >= c_max)][0]
        raise ValueError(f"Colour #{bad} is too big!")
    counts = np.bincount(rest, minlength=c_max)
    starts = 1 + np.concatenate([[0], np.cumsum(counts)[:-1]]) if c_max > 0 else np.zeros(0)
    return [int(s) for s in starts] + [int(colours[0])]


class _Canoniser:
    """Individualisation-refinement search for a canonical labelling."""

    def __init__(self, adj: np.ndarray) -> None:
        self._adj = adj
        self._adj_int = adj.astype(np.int64)
        self._n = len(adj)
        self.best_cert: Optional[bytes] = None
        self.best_lab: Optional[np.ndarray] = None
        self._generators: list[np.ndarray] = []

    def _refine(self, cells: list[list[int]]) -> list[list[int]]:
        n = self._n
        while True:
            cell_of = np.empty(n, dtype=np.intp)
            for c, cell in enumerate(cells):
                cell_of[cell] = c
            onehot = np.zeros((n, len(cells)), dtype=np.int64)
            onehot[np.arange(n), cell_of] = 1
            counts = self._adj_int @ onehot

            refined: list[list[int]] = []
            split = False
            for cell in cells:
                if len(cell) == 1:
                    refined.append(cell)
                    continue
                groups: dict[tuple[int, ...], list[int]] = {}
                for v in cell:
                    groups.setdefault(tuple(counts[v].tolist()), []).append(v)
                if len(groups) > 1:
                    split = True
                refined.extend(groups[key] for key in sorted(groups))
            cells = refined
            if not split:
                return cells

    def _orbit_roots(self, prefix: list[int]) -> np.ndarray:
        parent = np.arange(self._n)

        def find(v: int) -> int:
            while parent[v] != v:
                parent[v] = parent[parent[v]]
                v = int(parent[v])
            return v

        for gen in self._generators:
            if all(gen[p] == p for p in prefix):
                for v in range(self._n):
                    a, b = find(v), find(int(gen[v]))
                    if a != b:
                        parent[max(a, b)] = min(a, b)
        return np.array([find(v) for v in range(self._n)])

    def _leaf(self, cells: list[list[int]]) -> None:
        lab = np.array([cell[0] for cell in cells], dtype=np.intp)
        cert = np.packbits(self._adj[np.ix_(lab, lab)]).tobytes()
        if self.best_cert is None or cert > self.best_cert:
            self.best_cert = cert
            self.best_lab = lab
        elif cert == self.best_cert:
            gamma = np.empty(self._n, dtype=np.intp)
            gamma[lab] = self.best_lab
            self._generators.append(gamma)

    def search(self, cells: list[list[int]], prefix: list[int]) -> None:
        cells = self._refine(cells)
        target_idx = next((k for k, cell in enumerate(cells) if len(cell) > 1), None)
        if target_idx is None:
            self._leaf(cells)
            return

        target = cells[target_idx]
        explored: list[int] = []
        for v in target:
            if explored:
                roots = self._orbit_roots(prefix)
                if roots[v] in {roots[u] for u in explored}:
                    continue
            explored.append(v)
            child = (
                cells[:target_idx]
                + [[v], [w for w in target if w != v]]
                + cells[target_idx + 1 :]
            )
            self.search(child, prefix + [v])


def canon_hash(geo: Geometry, r_edge: float, c_max: int) -> int:
    """Reorder ``geo`` canonically and return a hash of its colours and topology.

    Atoms are nodes of a graph joined when closer than ``r_edge``; the centre
    atom is kept first in a class of its own and the others are grouped by
    colour. ``c_max`` is the number of colours (twice the number of types).
    """
    n = len(geo)
    if n == 0:
        raise ValueError("Cannot canonise an empty geometry")
    if n > MAX_NODES:
        raise ValueError(f"Graph with {n} nodes is too big, limit={MAX_NODES}")

    offsets = colour_offsets(geo, c_max)

    pos = np.asarray(geo.positions, dtype=float)
    dist = np.linalg.norm(pos[:, None, :] - pos[None, :, :], axis=2)
    adj = dist < r_edge
    np.fill_diagonal(adj, False)

    colours = np.asarray(geo.colours)
    cells: list[list[int]] = [[0]]
    for c in range(c_max):
        members = (np.flatnonzero(colours[1:] == c) + 1).tolist()
        if members:
            cells.append(members)

    canon = _Canoniser(adj)
    canon.search(cells, [])
    lab = canon.best_lab
    assert lab is not None and lab[0] == 0, "Colouring has failed"

    geo.positions = geo.positions[lab]
    geo.colours = geo.colours[lab]
    geo.indices = geo.indices[lab]

    digest = hashlib.blake2b(digest_size=8)
    digest.update(np.asarray(offsets, dtype="<u8").tobytes())
    digest.update(n.to_bytes(4, "little"))
    digest.update(canon.best_cert or b"")
    return int.from_bytes(digest.digest(), "little")