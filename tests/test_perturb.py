import numpy as np
import pytest

from flykmc.neighbours import Box
from flykmc.perturb import gen_images, perturb

PERIODIC = Box([10.0, 10.0, 10.0], (True, True, True))
OPEN = Box([10.0, 10.0, 10.0], (False, False, False))
POSITIONS = np.array([[1.0, 1.0, 1.0], [1.5, 1.0, 1.0], [5.0, 5.0, 5.0]])


def test_gen_images_periodic_count_and_unique():
    images = gen_images([1.0, 2.0, 3.0], PERIODIC)
    assert len(images) == 28
    assert len({tuple(np.round(im, 9)) for im in images}) == 27
    assert np.allclose(images[0], [1.0, 2.0, 3.0])


def test_gen_images_open_box():
    images = gen_images([1.0, 2.0, 3.0], OPEN)
    assert len(images) == 2
    assert np.allclose(images[0], images[1])


def test_gen_images_canonicalises_centre():
    images = gen_images([11.0, 2.0, 3.0], PERIODIC)
    assert np.allclose(images[0], [1.0, 2.0, 3.0])


def test_only_atoms_within_cut_are_perturbed():
    rng = np.random.default_rng(1)
    out, axis = perturb(POSITIONS, [False] * 3, rng, PERIODIC, POSITIONS[0], 1.0, 0.2)
    assert np.array_equal(out[2], POSITIONS[2])
    assert np.array_equal(axis[2], np.zeros(3))
    assert not np.array_equal(out[0], POSITIONS[0])
    assert np.linalg.norm(axis) == pytest.approx(1.0)


def test_frozen_atoms_untouched():
    rng = np.random.default_rng(2)
    out, axis = perturb(POSITIONS, [True, False, False], rng, PERIODIC, POSITIONS[0], 1.0, 0.2)
    assert np.array_equal(out[0], POSITIONS[0])
    assert np.array_equal(axis[0], np.zeros(3))
    assert np.any(axis[1] != 0)


def test_periodic_image_is_within_cut():
    positions = np.array([[0.2, 5.0, 5.0], [9.9, 5.0, 5.0]])
    rng = np.random.default_rng(3)
    out, axis = perturb(positions, [False, False], rng, PERIODIC, positions[0], 1.0, 0.2)
    assert np.any(axis[1] != 0)
    assert not np.array_equal(out[1], positions[1])


def test_open_box_has_no_images():
    positions = np.array([[0.2, 5.0, 5.0], [9.9, 5.0, 5.0]])
    rng = np.random.default_rng(3)
    out, axis = perturb(positions, [False, False], rng, OPEN, positions[0], 1.0, 0.2)
    assert np.array_equal(out[1], positions[1])
    assert np.array_equal(axis[1], np.zeros(3))


def test_reproducible_with_seed():
    a = perturb(POSITIONS, [False] * 3, np.random.default_rng(7), PERIODIC, POSITIONS[0], 1.0, 0.2)
    b = perturb(POSITIONS, [False] * 3, np.random.default_rng(7), PERIODIC, POSITIONS[0], 1.0, 0.2)
    assert np.array_equal(a[0], b[0])
    assert np.array_equal(a[1], b[1])


def test_zero_stddev_leaves_positions():
    rng = np.random.default_rng(4)
    out, axis = perturb(POSITIONS, [False] * 3, rng, PERIODIC, POSITIONS[0], 1.0, 0.0)
    assert np.array_equal(out, POSITIONS)
    assert np.linalg.norm(axis) == pytest.approx(1.0)


def test_input_not_modified():
    positions = POSITIONS.copy()
    perturb(positions, [False] * 3, np.random.default_rng(5), PERIODIC, positions[0], 1.0, 0.2)
    assert np.array_equal(positions, POSITIONS)


def test_nothing_to_perturb_raises():
    with pytest.raises(ValueError):
        perturb(POSITIONS, [True] * 3, np.random.default_rng(6), PERIODIC, POSITIONS[0], 1.0, 0.2)


def test_frozen_length_mismatch_raises():
    with pytest.raises(ValueError):
        perturb(POSITIONS, [False], np.random.default_rng(6), PERIODIC, POSITIONS[0], 1.0, 0.2)