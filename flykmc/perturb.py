"""Random perturbations around a centre, used to seed saddle-point searches."""

from __future__ import annotations

import itertools
import math
from typing import Any

import numpy as np

from flykmc.neighbours import Box


def gen_images(centre: Any, box: Box) -> list[np.ndarray]:
    """The canonical image of ``centre`` followed by its periodic neighbours.

    Images are generated for every combination of -1, 0, +1 shifts along the
    periodic axes; combinations that give no shift are kept only for the
    all-zero combination.
    """
    base = box.canon_image(np.asarray(centre, dtype=float).reshape(3))
    images = [base]

    for signs in itertools.product((-1, 0, 1), repeat=3):
        offset = np.zeros(3)
        for ax, sign in enumerate(signs):
            if box.periodic[ax]:
                offset += box.basis[:, ax] * sign
        if not any(signs) or np.any(offset != 0):
            images.append(base + offset)

    return images


def perturb(
    positions: Any,
    frozen: Any,
    rng: np.random.Generator,
    box: Box,
    centre: Any,
    rcut: float,
    stddev: float,
) -> tuple[np.ndarray, np.ndarray]:
    """Displace active atoms within ``rcut`` of ``centre`` and draw a random axis.

    Each such atom moves by a Gaussian displacement of width ``stddev``,
    damped linearly to zero at ``rcut``. Returns the new positions and the
    normalised axis, which is zero on every atom left untouched.
    """
    pos = np.array(positions, dtype=float)
    if pos.ndim != 2 or pos.shape[1] != 3:
        raise ValueError(f"Positions must have shape (N, 3), got {pos.shape}")
    fz = np.asarray(frozen, dtype=bool).reshape(-1)
    if len(fz) != len(pos):
        raise ValueError(f"Expected {len(pos)} frozen flags, got {len(fz)}")

    images = np.array(gen_images(centre, box))
    axis = np.zeros_like(pos)

    for i, (x, is_frozen) in enumerate(zip(pos, fz)):
        if is_frozen:
            continue
        tmp = box.canon_image(x)
        dr2 = float(np.min(np.sum((images - tmp) ** 2, axis=1)))
        if dr2 < rcut * rcut:
            envelope = 1.0 - math.sqrt(dr2) / rcut
            pos[i] += envelope * rng.normal(0.0, stddev, 3)
            axis[i] += rng.normal(0.0, 1.0, 3)

    norm = float(np.linalg.norm(axis))
    if norm == 0.0:
        raise ValueError("No active atoms within rcut of the centre to perturb")

    return pos, axis / norm