"""Limited-memory BFGS minimisation of atomic positions."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np

from flykmc.lbfgs_core import StepLBFGS
from flykmc.neighbours import Box, NeighbourList


@dataclass
class LBFGSOptions:
    """Settings for the LBFGS minimiser."""

    iter_max: int = 2000
    """Number of steps before giving up."""
    f2norm: float = 1e-5
    """Converged when the norm of the gradient falls below this."""
    skin_frac: float = 1.1
    """Ratio of neighbour-list volume to cut-off volume."""
    min_trust: float = 0.05
    """Smallest (and initial) trust radius."""
    max_trust: float = 0.5
    """Largest trust radius."""
    proj_tol: float = 0.0
    """Projection threshold for growing or shrinking the trust radius."""
    grow_trust: float = 1.5
    """Factor by which the trust radius grows."""
    shrink_trust: float = 0.5
    """Factor by which the trust radius shrinks."""
    n: int = 10
    """Number of steps of history kept."""
    debug: bool = False


@dataclass
class MinimiseResult:
    """Outcome of a minimisation."""

    positions: np.ndarray
    gradient: np.ndarray
    converged: bool
    iterations: int


def _check_inputs(pos: np.ndarray, types: Any, frozen: Any, who: str) -> None:
    if pos.ndim != 2 or pos.shape[1] != 3:
        raise ValueError(f"Positions must have shape (N, 3), got {pos.shape}")
    if len(pos) == 0:
        raise ValueError(f"{who} needs at least one atom")
    n_types = np.asarray(types).reshape(-1).size
    n_frozen = np.asarray(frozen).reshape(-1).size
    if n_types != len(pos) or n_frozen != len(pos):
        raise ValueError(
            f"{who} inputs size mismatch, positions={len(pos)} types={n_types} frozen={n_frozen}"
        )


class LBFGS:
    """Minimises the energy of a set of atoms inside ``box``."""

    def __init__(self, options: LBFGSOptions, box: Box) -> None:
        self.options = options
        self._box = box
        self._core = StepLBFGS(options.n)
        self._nl: Optional[NeighbourList] = None
        self._r_cut = 0.0

    def minimise(self, positions: Any, types: Any, frozen: Any, pot: Any) -> MinimiseResult:
        """Relax ``positions`` to a local minimum of ``pot``.

        The input array is not modified.
        """
        opt = self.options
        pos = np.array(positions, dtype=float)
        _check_inputs(pos, types, frozen, "LBFGS minimiser")

        self._core.clear()

        skin = max(opt.skin_frac ** (1.0 / 3.0) - 1.0, 0.0) * pot.r_cut()
        r_cut = pot.r_cut() + skin

        if opt.debug:
            print(f"LBFGS: Skin = {skin}")

        if self._nl is None or r_cut != self._r_cut:
            self._r_cut = r_cut
            self._nl = NeighbourList(self._box, r_cut)
            if opt.debug:
                print("LBFGS: Reallocating neigh list")

        nl = self._nl
        nl.rebuild(pos)
        grad = np.asarray(pot.gradient(types, frozen, nl), dtype=float)

        trust = opt.min_trust
        acc = 0.0

        for i in range(opt.iter_max):
            mag_g = float(np.sum(grad * grad))

            if opt.debug:
                print(
                    f"LBFGS: i={i:<4} trust={trust:f} acc={acc:f} "
                    f"norm(g)={math.sqrt(mag_g):e} rebuild={acc == 0.0}"
                )

            if mag_g < opt.f2norm * opt.f2norm:
                return MinimiseResult(pos, grad, True, i)

            step = self._core.newton_step(pos, grad)

            norm = float(np.linalg.norm(step))
            if norm > trust:
                step = step * (trust / norm)

            acc += math.sqrt(float(np.max(np.sum(step * step, axis=1))))

            pos = pos - step

            if acc > 0.5 * skin:
                nl.rebuild(pos)
                acc = 0.0
            else:
                nl.update(step)

            grad = np.asarray(pot.gradient(types, frozen, nl), dtype=float)

            proj = float(np.sum(grad * step))

            if proj < -opt.proj_tol:
                trust = max(opt.min_trust, opt.shrink_trust * trust)
            elif proj > opt.proj_tol:
                trust = min(opt.max_trust, opt.grow_trust * trust)

        return MinimiseResult(pos, grad, False, opt.iter_max)