import numpy as np
import pytest

from flykmc.neighbours import Box, NeighbourList


def cubic(n, a=1.0):
    return np.array([[x, y, z] for x in range(n) for y in range(n) for z in range(n)], dtype=float) * a


def random_cell(seed=0, n=40, side=5.0):
    rng = np.random.default_rng(seed)
    return rng.uniform(0, side, size=(n, 3))


def test_simple_cubic_has_six_neighbours():
    box = Box(np.diag([4.0, 4.0, 4.0]))
    nl = NeighbourList(box, 1.1)
    nl.rebuild(cubic(4))
    assert all(len(nl.neighbours(i)) == 6 for i in range(len(nl)))


def test_non_periodic_corner():
    box = Box([10.0, 10.0, 10.0], (False, False, False))
    nl = NeighbourList(box, 1.1)
    nl.rebuild(cubic(3))
    assert len(nl.neighbours(0)) == 3


def test_matches_brute_force_min_image():
    box = Box([5.0, 5.0, 5.0])
    pos = random_cell()
    nl = NeighbourList(box, 2.0)
    nl.rebuild(pos)
    for i in range(len(pos)):
        got = sorted((n, round(r, 9)) for n, r, _ in nl.neighbours(i))
        want = sorted(
            (j, round(box.min_image(pos[i], pos[j]), 9))
            for j in range(len(pos))
            if j != i and box.min_image(pos[i], pos[j]) < 2.0
        )
        assert got == want


def test_neighbour_relation_is_symmetric():
    box = Box([5.0, 5.0, 5.0], (True, False, True))
    nl = NeighbourList(box, 2.0)
    nl.rebuild(random_cell(3))
    for i in range(len(nl)):
        for n, _, _ in nl.neighbours(i):
            assert i in [m for m, _, _ in nl.neighbours(n)]


def test_displacement_points_from_centre():
    box = Box([10.0, 10.0, 10.0], (False, False, False))
    pos = cubic(3)
    nl = NeighbourList(box, 1.5)
    nl.rebuild(pos)
    for n, r, dr in nl.neighbours(4):
        np.testing.assert_allclose(dr, pos[n] - pos[4])
        assert r == pytest.approx(np.linalg.norm(dr))


def test_smaller_query_radius_is_subset():
    box = Box([5.0, 5.0, 5.0])
    nl = NeighbourList(box, 2.0)
    nl.rebuild(random_cell(1))
    full = nl.neighbours(0)
    small = nl.neighbours(0, 1.2)
    assert all(r < 1.2 for _, r, _ in small)
    assert len(small) == sum(1 for _, r, _ in full if r < 1.2)


def test_canon_image_wraps_by_lattice_vectors():
    box = Box([4.0, 4.0, 4.0], (True, True, False))
    x = np.array([[-0.5, 9.3, 7.0], [4.5, -3.1, -2.0]])
    canon = box.canon_image(x)
    assert np.all(canon[:, :2] >= 0) and np.all(canon[:, :2] < 4.0)
    shifts = (x - canon)[:, :2] / 4.0
    np.testing.assert_allclose(shifts, np.round(shifts), atol=1e-12)
    np.testing.assert_allclose(canon[:, 2], x[:, 2])


def test_min_image_invariant_under_lattice_shift():
    box = Box(np.array([[4.0, 1.0, 0.0], [0.0, 4.0, 0.5], [0.0, 0.0, 4.0]]))
    a = np.array([0.1, 0.2, 0.3])
    b = np.array([3.7, 3.9, 0.1])
    d = box.min_image(a, b)
    assert d == pytest.approx(box.min_image(a, b + box.basis[:, 0] - box.basis[:, 2]))
    assert d <= np.linalg.norm(b - a)


def test_update_matches_rebuild():
    box = Box([5.0, 5.0, 5.0])
    pos = random_cell(2)
    rng = np.random.default_rng(7)
    deltas = rng.normal(scale=0.01, size=pos.shape)

    moved = NeighbourList(box, 2.0)
    moved.rebuild(pos)
    moved.update(deltas)

    fresh = NeighbourList(box, 2.0)
    fresh.rebuild(pos - deltas)

    for i in range(len(pos)):
        a = sorted((n, round(r, 8)) for n, r, _ in moved.neighbours(i, 1.8))
        b = sorted((n, round(r, 8)) for n, r, _ in fresh.neighbours(i, 1.8))
        assert a == b


def test_image_to_real():
    box = Box([4.0, 4.0, 4.0])
    nl = NeighbourList(box, 1.1)
    nl.rebuild(cubic(4))
    assert nl.num_slots > len(nl)
    assert all(nl.image_to_real(i) == i for i in range(len(nl)))
    assert all(0 <= nl.image_to_real(k) < len(nl) for k in range(nl.num_slots))
    with pytest.raises(IndexError):
        nl.image_to_real(nl.num_slots)


def test_errors():
    box = Box([4.0, 4.0, 4.0])
    with pytest.raises(ValueError):
        NeighbourList(box, 5.0)
    nl = NeighbourList(box, 1.1)
    with pytest.raises(ValueError):
        nl.rebuild(np.zeros((3, 2)))
    nl.rebuild(cubic(2))
    with pytest.raises(ValueError):
        nl.neighbours(0, 2.0)
    with pytest.raises(ValueError):
        nl.update(np.zeros((3, 3)))
    with pytest.raises(ValueError):
        Box(np.zeros((3, 3)))