"""Two-loop limited-memory BFGS step."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np


@dataclass
class _History:
    s: np.ndarray = field(default_factory=lambda: np.zeros(0))
    y: np.ndarray = field(default_factory=lambda: np.zeros(0))
    rho: float = 0.0
    alpha: float = 0.0


class StepLBFGS:
    """Approximates the inverse Hessian from the last ``n`` steps."""

    def __init__(self, n: int = 10) -> None:
        if n < 1:
            raise ValueError(f"History length must be positive, got {n}")
        self._n = n
        self.clear()

    def clear(self) -> None:
        """Forget all history."""
        self._k = 0
        self._hist = [_History() for _ in range(self._n)]
        self._prev_x: Optional[np.ndarray] = None
        self._prev_g: Optional[np.ndarray] = None

    def newton_step(self, r: Any, g: Any) -> np.ndarray:
        """Approximate ``H^-1 g`` at position ``r`` with gradient ``g``.

        The result has the shape of ``g``; subtracting it from ``r`` gives the
        quasi-Newton step.
        """
        r_arr = np.asarray(r, dtype=float)
        g_arr = np.asarray(g, dtype=float)
        if r_arr.size != g_arr.size:
            raise ValueError(f"LBFGS core inputs size mismatch, r={r_arr.size} g={g_arr.size}")

        x = r_arr.ravel()
        grad = g_arr.ravel()
        n = self._n
        k = self._k
        prev = (k - 1) % n

        if k > 0:
            assert self._prev_x is not None and self._prev_g is not None
            if x.size != self._prev_x.size:
                raise ValueError(
                    f"Call to newton_step() with {x.size} atoms but history has {self._prev_x.size} atoms"
                )
            entry = self._hist[prev]
            entry.s = x - self._prev_x
            entry.y = grad - self._prev_g
            # The absolute value guards against an ascent direction when the
            # curvature condition does not hold.
            with np.errstate(divide="ignore"):
                entry.rho = float(np.float64(1.0) / abs(np.dot(entry.s, entry.y)))

        self._prev_x = x.copy()
        self._prev_g = grad.copy()

        q = grad.copy()

        incur = 0 if k <= n else k - n
        bound = k if k <= n else n
        order = [(i + incur) % n for i in range(bound)]

        for j in reversed(order):
            h = self._hist[j]
            h.alpha = h.rho * float(np.dot(h.s, q))
            q -= h.alpha * h.y

        if k > 0:
            last = self._hist[prev]
            out = q * (1.0 / last.rho / float(np.dot(last.y, last.y)))
        else:
            out = q

        for j in order:
            h = self._hist[j]
            beta = h.rho * float(np.dot(h.y, out))
            out = out + (h.alpha - beta) * h.s

        self._k += 1
        return out.reshape(g_arr.shape)