"""Local environments as stored in a catalogue."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from flykmc.geometry import Geometry, to_colour
from flykmc.heuristics import Fingerprint
from flykmc.mechanisms import Mechanism
from flykmc.neighbours import NeighbourList


@dataclass
class CatalogueOptions:
    """Settings for a catalogue of local environments."""

    delta_max: float = sys.float_info.max
    """Initial largest norm between environments for them to be the same."""
    overfuzz: float = 0.5
    """Fingerprint tolerance factor; values below 1.0 introduce false negatives."""
    r_env: float = 5.2
    """Radius of a local environment."""
    r_edge: float = 3.0
    """Largest distance for atoms to be joined in the canonisation graph."""
    min_delta_max: float = 1e-7
    """Smallest delta_max allowed during refinement."""
    debug: bool = False


@dataclass
class SelfSymmetry:
    """A transformation and permutation that maps a geometry onto itself."""

    transform: np.ndarray
    perm: list[int]


@dataclass
class Env:
    """A reference local environment and the mechanisms centred on it."""

    geo: Geometry
    finger: Fingerprint
    index: int
    max_delta: float
    mechs: list[Mechanism] = field(default_factory=list)
    freq: int = 1
    false_pos: int = 0

    @classmethod
    def from_geometry(cls, geo: Geometry, finger: Fingerprint, index: int, delta: float) -> "Env":
        """Store a copy of ``geo`` without its atom indices."""
        ref = Geometry(geo.positions.copy(), geo.colours.copy())
        return cls(ref, finger, index, float(delta))

    def __len__(self) -> int:
        return len(self.geo)

    def ref_geo(self) -> Geometry:
        """The reference geometry this environment represents."""
        return self.geo

    def get_mechs(self) -> list[Mechanism]:
        """Mechanisms centred on this environment."""
        return self.mechs

    def cat_index(self) -> int:
        """Index of this environment in its catalogue."""
        return self.index

    def delta_max(self) -> float:
        """Largest norm between this environment and a geometry for them to match."""
        return self.max_delta


def geometry_from_neighbours(
    i: int, types: Any, frozen: Any, nl: NeighbourList, r_env: float
) -> Geometry:
    """Local environment of atom ``i`` within ``r_env``, centred on its centroid."""
    t = np.asarray(types).reshape(-1)
    fz = np.asarray(frozen).reshape(-1)
    if len(t) != len(nl) or len(fz) != len(nl):
        raise ValueError(f"Expected {len(nl)} types and frozen flags, got {len(t)} and {len(fz)}")

    idx, _, dr = nl.neighbour_arrays(i, r_env)
    positions = np.vstack([np.zeros((1, 3)), dr])
    colours = [to_colour(int(t[i]), bool(fz[i]))] + [to_colour(int(t[n]), bool(fz[n])) for n in idx]
    indices = [i] + [int(n) for n in idx]

    geo = Geometry(positions, colours, indices)
    geo.centre()
    return geo