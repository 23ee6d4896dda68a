"""Periodic simulation boxes and Verlet-style neighbour lists built with ghost images."""

from __future__ import annotations

import itertools
from typing import Any, Optional, Sequence

import numpy as np

_CHUNK = 64


class Box:
    """A parallelepiped cell whose columns of ``basis`` are the lattice vectors.

    ``basis`` may also be given as three side lengths of an orthorhombic box.
    ``periodic`` holds one flag per axis.
    """

    def __init__(self, basis: Any, periodic: Sequence[bool] = (True, True, True)) -> None:
        b = np.array(basis, dtype=float)
        if b.shape == (3,):
            b = np.diag(b)
        if b.shape != (3, 3):
            raise ValueError(f"Box basis must be a 3x3 matrix, got shape {b.shape}")
        try:
            inv = np.linalg.inv(b)
        except np.linalg.LinAlgError:
            raise ValueError("Box basis is singular") from None
        flags = tuple(bool(p) for p in periodic)
        if len(flags) != 3:
            raise ValueError(f"Need one periodicity flag per axis, got {len(flags)}")

        self.basis = b
        self.periodic = flags
        self._inv = inv
        self._mask = np.array(flags)
        self.widths = 1.0 / np.linalg.norm(inv, axis=1)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Box):
            return NotImplemented
        return self.periodic == other.periodic and bool(np.array_equal(self.basis, other.basis))

    def __repr__(self) -> str:
        return f"Box(basis={self.basis.tolist()}, periodic={self.periodic})"

    def fractional(self, x: Any) -> np.ndarray:
        """Fractional coordinates of ``x`` (shape (3,) or (N, 3))."""
        return np.asarray(x, dtype=float) @ self._inv.T

    def canon_image(self, x: Any) -> np.ndarray:
        """Map positions into the primary cell along the periodic axes."""
        frac = self.fractional(x)
        mask = self._mask
        frac[..., mask] -= np.floor(frac[..., mask])
        wrapped = frac[..., mask]
        wrapped[wrapped >= 1.0] = 0.0
        frac[..., mask] = wrapped
        return frac @ self.basis.T

    def min_image(self, a: Any, b: Any) -> float:
        """Distance between ``a`` and the nearest periodic image of ``b``."""
        d = self.fractional(np.asarray(b, dtype=float) - np.asarray(a, dtype=float))
        d[self._mask] -= np.round(d[self._mask])
        ranges = [(-1, 0, 1) if p else (0,) for p in self.periodic]
        shifts = np.array(list(itertools.product(*ranges)), dtype=float)
        cart = (d + shifts) @ self.basis.T
        return float(np.min(np.linalg.norm(cart, axis=1)))


class NeighbourList:
    """Neighbours of every atom within ``r_cut``, periodic images included.

    Atoms beyond the first ``len(self)`` slots are ghost images of real atoms
    near periodic faces.
    """

    def __init__(self, box: Box, r_cut: float) -> None:
        if r_cut <= 0:
            raise ValueError(f"Cut-off must be positive, got {r_cut}")
        for ax in range(3):
            if box.periodic[ax] and r_cut > box.widths[ax]:
                raise ValueError(
                    f"Cut-off {r_cut} exceeds the box width {box.widths[ax]} along periodic axis {ax}"
                )
        self._box = box
        self._r_cut = float(r_cut)
        self._num_real = 0
        self._pos = np.zeros((0, 3))
        self._index = np.zeros(0, dtype=np.int64)
        self._lists: list[np.ndarray] = []

    @property
    def box(self) -> Box:
        return self._box

    @property
    def r_cut(self) -> float:
        return self._r_cut

    @property
    def num_slots(self) -> int:
        """Number of real atoms plus ghosts."""
        return len(self._pos)

    @property
    def positions(self) -> np.ndarray:
        """Current (canonical) positions of the real atoms."""
        return self._pos[: self._num_real].copy()

    def __len__(self) -> int:
        return self._num_real

    def rebuild(self, positions: Any) -> None:
        """Rebuild ghosts and neighbour lists from ``positions`` of shape (N, 3)."""
        pos = np.asarray(positions, dtype=float)
        if pos.ndim != 2 or pos.shape[1] != 3:
            raise ValueError(f"Positions must have shape (N, 3), got {pos.shape}")

        box = self._box
        n = len(pos)
        all_pos = box.canon_image(pos)
        all_idx = np.arange(n, dtype=np.int64)

        for ax in range(3):
            if not box.periodic[ax]:
                continue
            frac = box.fractional(all_pos)[:, ax]
            width = box.widths[ax]
            plus = frac * width < self._r_cut
            minus = (1.0 - frac) * width < self._r_cut
            shift = box.basis[:, ax]
            all_pos = np.vstack([all_pos, all_pos[plus] + shift, all_pos[minus] - shift])
            all_idx = np.concatenate([all_idx, all_idx[plus], all_idx[minus]])

        self._num_real = n
        self._pos = all_pos
        self._index = all_idx

        rc2 = self._r_cut * self._r_cut
        lists: list[np.ndarray] = []
        for start in range(0, n, _CHUNK):
            stop = min(start + _CHUNK, n)
            block = all_pos[start:stop]
            diff = block[:, None, :] - all_pos[None, :, :]
            d2 = np.einsum("ijk,ijk->ij", diff, diff)
            d2[np.arange(stop - start), np.arange(start, stop)] = np.inf
            lists.extend(np.flatnonzero(row < rc2) for row in d2)
        self._lists = lists

    def update(self, deltas: Any) -> None:
        """Move every atom (and its ghosts) by ``-deltas``."""
        d = np.asarray(deltas, dtype=float)
        if d.shape != (self._num_real, 3):
            raise ValueError(
                f"Input to update has {len(d) if d.ndim else 0} atoms but list contains {self._num_real}"
            )
        self._pos -= d[self._index]

    def image_to_real(self, i: int) -> int:
        """Index of the real atom that slot ``i`` is an image of."""
        if not 0 <= i < len(self._index):
            raise IndexError(f"Slot {i} out of range for {len(self._index)} slots")
        return int(self._index[i])

    def neighbour_arrays(
        self, i: int, r_cut: Optional[float] = None
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Real indices, distances and displacements ``x_n - x_i`` of neighbours of ``i``."""
        r = self._r_cut if r_cut is None else float(r_cut)
        if r > self._r_cut:
            raise ValueError(f"Requested cut-off {r} exceeds list cut-off {self._r_cut}")
        if not 0 <= i < self._num_real:
            raise IndexError(f"Atom {i} out of range for {self._num_real} atoms")
        slots = self._lists[i]
        dr = self._pos[slots] - self._pos[i]
        dist = np.linalg.norm(dr, axis=1)
        keep = dist < r
        return self._index[slots][keep], dist[keep], dr[keep]

    def neighbours(self, i: int, r_cut: Optional[float] = None) -> list[tuple[int, float, np.ndarray]]:
        """``(index, distance, displacement)`` for each neighbour of atom ``i``."""
        idx, dist, dr = self.neighbour_arrays(i, r_cut)
        return [(int(n), float(r), d) for n, r, d in zip(idx, dist, dr)]