"""Representation of local mechanisms."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field, replace
from typing import Any

import numpy as np


def _as_displacements(value: Any) -> np.ndarray:
    arr = np.array(value, dtype=float)
    if arr.size == 0:
        return np.zeros((0, 3))
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError(f"Displacements must have shape (N, 3), got {arr.shape}")
    return arr


@dataclass
class Mechanism:
    """Displacements of the atoms in a local environment to a saddle point and
    an adjacent minimum, with the energetics of the transition.

    Frozen atoms must have zero displacement.
    """

    barrier: float = 0.0
    delta: float = 0.0
    kinetic_pre: float = 0.0
    err_fwd: float = sys.float_info.max
    err_sp: float = sys.float_info.max
    poison_sp: bool = False
    poison_fwd: bool = False
    delta_sp: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    delta_fwd: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))

    def __post_init__(self) -> None:
        self.delta_sp = _as_displacements(self.delta_sp)
        self.delta_fwd = _as_displacements(self.delta_fwd)

    def copy(self) -> "Mechanism":
        """An independent copy of this mechanism."""
        return replace(self, delta_sp=self.delta_sp.copy(), delta_fwd=self.delta_fwd.copy())