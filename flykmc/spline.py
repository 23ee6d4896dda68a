"""Natural cubic splines over uniformly tabulated data."""

from __future__ import annotations

from typing import Iterable


class Spline:
    """A natural cubic spline through ``y`` sampled at ``0, dx, 2dx, ...``."""

    def __init__(self, y: Iterable[float], dx: float) -> None:
        values = [float(v) for v in y]
        if not values:
            raise ValueError("A spline needs at least one tabulated value")
        if dx <= 0:
            raise ValueError(f"Spline spacing must be positive, got {dx}")

        self._dx = float(dx)
        self._inv_dx = 1.0 / self._dx

        # Duplicate the last knot so that rounding at the upper edge stays in range.
        values.append(values[-1])

        n = len(values) - 1
        a = values

        alpha = [0.0] * n
        for i in range(1, n):
            alpha[i] = 3.0 * (a[i + 1] - 2.0 * a[i] + a[i - 1]) / dx

        l = [1.0] * (n + 1)
        mu = [0.0] * (n + 1)
        z = [0.0] * (n + 1)

        for i in range(1, n):
            l[i] = dx * (4.0 - mu[i - 1])
            mu[i] = dx / l[i]
            z[i] = (alpha[i] - dx * z[i - 1]) / l[i]

        c = [0.0] * (n + 1)
        b = [0.0] * n
        d = [0.0] * n

        for j in reversed(range(n)):
            c[j] = z[j] - mu[j] * c[j + 1]
            b[j] = (a[j + 1] - a[j]) / dx - dx * (c[j + 1] + 2.0 * c[j]) / 3.0
            d[j] = (c[j + 1] - c[j]) / (3.0 * dx)

        self._segments = list(zip(a[:n], b, c[:n], d))

    @property
    def dx(self) -> float:
        """Spacing between knots."""
        return self._dx

    def _locate(self, x: float) -> tuple[tuple[float, float, float, float], float]:
        i = int(x * self._inv_dx)
        i = min(max(i, 0), len(self._segments) - 1)
        return self._segments[i], x - i * self._dx

    def f(self, x: float) -> float:
        """Value of the spline at ``x``."""
        (a, b, c, d), h = self._locate(x)
        return a + h * (b + h * (c + h * d))

    def fp(self, x: float) -> float:
        """First derivative of the spline at ``x``."""
        (_, b, c, d), h = self._locate(x)
        return b + h * (2.0 * c + 3.0 * d * h)

    def fpp(self, x: float) -> float:
        """Second derivative of the spline at ``x``."""
        (_, _, c, d), h = self._locate(x)
        return 2.0 * c + 6.0 * d * h