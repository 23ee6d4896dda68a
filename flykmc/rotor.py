"""Dimer rotation: aligning an axis with the lowest curvature mode."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import numpy as np

from flykmc.lbfgs_core import StepLBFGS
from flykmc.neighbours import NeighbourList


@dataclass
class RotorOptions:
    """Settings for the dimer rotation."""

    delta_r: float = 0.001
    """Half length of the dimer."""
    theta_tol: float = 1e-5
    """Rotation angle below which the axis is considered converged."""
    iter_max_rot: int = 20
    """Rotations allowed before giving up once the curvature is negative."""
    relax_in_convex: bool = True
    """If False, only climb along the axis while the curvature is positive."""
    n: int = 6
    """Number of steps of history kept."""
    debug: bool = False


def _dot(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.sum(a * b))


def _remove_translation(x: np.ndarray) -> np.ndarray:
    return x - x.mean(axis=0)


class Rotor:
    """Rotates a dimer axis towards the minimum mode and builds the effective gradient."""

    def __init__(self, options: RotorOptions) -> None:
        self.options = options
        self._core = StepLBFGS(options.n)

    def r_cut(self, pot: Any) -> float:
        """Neighbour-list cut-off needed to evaluate ``pot`` at both dimer ends."""
        return pot.r_cut() + 2.0 * self.options.delta_r

    def eff_gradient(
        self,
        axis: Any,
        types: Any,
        frozen: Any,
        pot: Any,
        nl: NeighbourList,
        count_frozen: int,
    ) -> tuple[np.ndarray, np.ndarray, float]:
        """Rotate ``axis`` and return ``(effective gradient, new axis, curvature)``.

        ``nl`` must be built at the dimer centre; it is left as it was found.
        Translations are projected out when ``count_frozen`` is zero.
        """
        opt = self.options
        n = len(nl)
        ax = np.array(axis, dtype=float)
        if ax.shape != (n, 3):
            raise ValueError(f"Axis gradient size mismatch axis={ax.shape} atoms={n}")
        if np.asarray(types).reshape(-1).size != n or np.asarray(frozen).reshape(-1).size != n:
            raise ValueError(f"Effective gradient size mismatch, expected {n} atoms")

        self._core.clear()

        g0 = np.asarray(pot.gradient(types, frozen, nl), dtype=float)

        delta_prev = -opt.delta_r * ax
        nl.update(delta_prev)

        g1 = np.asarray(pot.gradient(types, frozen, nl), dtype=float)

        i = 0
        while True:
            dg = g1 - g0
            dg = dg - _dot(dg, ax) * ax
            if count_frozen == 0:
                dg = _remove_translation(dg)

            theta = np.asarray(self._core.newton_step(ax, dg), dtype=float)
            theta = theta - _dot(theta, ax) * ax
            t_norm = float(np.linalg.norm(theta))

            c_x0 = _dot(g1 - g0, ax) / opt.delta_r

            if t_norm == 0.0 or not math.isfinite(t_norm):
                # The axis already lies along a mode: no rotation plane.
                curv = c_x0
                break

            theta = theta / t_norm

            b_1 = _dot(g1 - g0, theta) / opt.delta_r
            theta_1 = -0.5 * math.atan2(b_1, abs(c_x0))

            if (
                abs(theta_1) < opt.theta_tol
                or (i >= opt.iter_max_rot and c_x0 < 0)
                or i > 10 * opt.iter_max_rot
            ):
                curv = c_x0
                break

            axis_p = ax * math.cos(theta_1) + theta * math.sin(theta_1)

            delta_new = -opt.delta_r * axis_p
            nl.update(delta_new - delta_prev)
            delta_prev = delta_new

            g1p = np.asarray(pot.gradient(types, frozen, nl), dtype=float)

            c_x1 = _dot(g1p - g0, axis_p) / opt.delta_r
            a_1 = (c_x0 - c_x1 + b_1 * math.sin(2 * theta_1)) / (1 - math.cos(2 * theta_1))
            if a_1 != 0.0:
                theta_min = 0.5 * math.atan(b_1 / a_1)
            else:
                theta_min = math.copysign(0.25 * math.pi, b_1)

            if a_1 * math.cos(2 * theta_min) - a_1 + b_1 * math.sin(2 * theta_min) > 0:
                theta_min += math.pi / 2

            ax = ax * math.cos(theta_min) + theta * math.sin(theta_min)

            s1 = math.sin(theta_1)
            g1 = (
                (math.sin(theta_1 - theta_min) / s1) * g1
                + (math.sin(theta_min) / s1) * g1p
                + (1 - math.cos(theta_min) - math.sin(theta_min) * math.tan(0.5 * theta_1)) * g0
            )

            if opt.debug:
                print(
                    f"\tDimer: i={i:<4} theta={abs(theta_min):f} "
                    f"curv={_dot(g1 - g0, ax) / opt.delta_r:f}"
                )

            if abs(theta_min) < opt.theta_tol:
                curv = _dot(g1 - g0, ax) / opt.delta_r
                break

            i += 1

        nl.update(-delta_prev)

        if not opt.relax_in_convex and curv > 0:
            out = -_dot(g0, ax) * ax
        else:
            out = g0 - 2 * _dot(g0, ax) * ax

        if count_frozen == 0:
            out = _remove_translation(out)

        return out, ax, curv