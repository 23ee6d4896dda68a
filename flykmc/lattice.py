"""Detection of vacancies against a perfect reference lattice."""

from __future__ import annotations

import sys
from typing import Any

import numpy as np

from flykmc.neighbours import Box, NeighbourList


def centroid_align(x: Any, y: Any) -> np.ndarray:
    """Translate ``x`` so that its centroid coincides with that of ``y``."""
    a = np.asarray(x, dtype=float).reshape(-1, 3)
    b = np.asarray(y, dtype=float).reshape(-1, 3)
    if len(a) == 0 or len(b) == 0:
        raise ValueError("Cannot align empty sets of atoms")
    return a + (b.mean(axis=0) - a.mean(axis=0))


class DetectVacancies:
    """Finds sites of a perfect single-species lattice that have no atom nearby."""

    def __init__(self, r_lat: float, box: Box, types: Any, positions: Any) -> None:
        t = np.asarray(types).reshape(-1)
        pos = np.asarray(positions, dtype=float).reshape(-1, 3)
        if len(t) == 0:
            raise ValueError("Perfect lattice must have some atoms!")
        if len(t) != len(pos):
            raise ValueError(f"Got {len(t)} types for {len(pos)} positions")
        self._tp = t[0]
        if not np.all(t == self._tp):
            raise ValueError(f"Perfect lattice must only contain atoms of typeID={self._tp}")

        self._r_lat = float(r_lat)
        self._box = box
        self._list = NeighbourList(box, r_lat)
        self._perfect = box.canon_image(pos)

    def detect_vacancies(self, types: Any, positions: Any) -> list[np.ndarray]:
        """Positions of the perfect-lattice sites left empty in ``positions``.

        Only atoms of the lattice's species are considered.
        """
        t = np.asarray(types).reshape(-1)
        pos = np.asarray(positions, dtype=float).reshape(-1, 3)
        if len(t) != len(pos):
            raise ValueError(f"Got {len(t)} types for {len(pos)} positions")

        mask = t == self._tp
        count = int(np.count_nonzero(mask))
        n_perfect = len(self._perfect)

        if count > n_perfect:
            raise ValueError(
                f"Input lattice (n={count}) has more atoms than perfect lattice (n={n_perfect})"
            )
        if count == 0:
            return [site.copy() for site in self._perfect]

        defective = self._box.canon_image(pos[mask])

        self._perfect = centroid_align(self._perfect, defective)

        combo = np.vstack([self._perfect, defective])
        assigned = np.full(n_perfect, -1, dtype=np.int64)

        self._list.rebuild(combo)

        off_lattice = 0
        for i in range(n_perfect, len(combo)):
            idx, dist, _ = self._list.neighbour_arrays(i, self._r_lat)
            r_min = sys.float_info.max
            i_min = -1
            for nb, r in zip(idx, dist):
                if nb < n_perfect and r < r_min:
                    r_min = float(r)
                    i_min = int(nb)
            if i_min == -1:
                off_lattice += 1
            else:
                if assigned[i_min] != -1:
                    raise ValueError("Many-to-1 assignment!")
                assigned[i_min] = i

        return [combo[i].copy() for i in np.flatnonzero(assigned == -1)]