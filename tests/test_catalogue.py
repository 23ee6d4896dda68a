import io
import math

import numpy as np
import pytest

from flykmc.catalogue import Catalogue, CatalogueError
from flykmc.envs import CatalogueOptions
from flykmc.mechanisms import Mechanism
from flykmc.neighbours import Box

TETRA = np.array(
    [[1.0, 1.0, 1.0], [1.0, -1.0, -1.0], [-1.0, 1.0, -1.0], [-1.0, -1.0, 1.0]]
) * (1.5 / (2.0 * math.sqrt(2.0)))

SQUARE = np.array([[0.0, 0.0, 0.0], [1.5, 0.0, 0.0], [0.0, 1.5, 0.0], [1.5, 1.5, 0.0]])

BOX = Box([40.0, 40.0, 40.0], (False, False, False))


def make_system(*clusters):
    pos = np.vstack([c + 5.0 + 10.0 * k for k, c in enumerate(clusters)])
    n = len(pos)
    return pos, np.zeros(n, dtype=int), np.zeros(n, dtype=bool)


def built(*clusters):
    cat = Catalogue(CatalogueOptions())
    pos, types, frozen = make_system(*clusters)
    new = cat.rebuild(BOX, pos, types, frozen, 1)
    return cat, pos, types, frozen, new


def test_identical_environments_share_one_entry():
    cat, pos, types, frozen, new = built(TETRA, TETRA)
    assert new == [0]
    assert cat.size() == 1
    assert all(cat.get_ref(i).cat_index() == 0 for i in range(len(pos)))


def test_second_rebuild_finds_nothing_new_and_counts_frequency():
    cat, pos, types, frozen, _ = built(TETRA, TETRA)
    assert cat.rebuild(BOX, pos, types, frozen, 1) == []
    assert cat.get_ref(0).freq == 1 + len(pos)


def test_distinct_shapes_share_key_but_not_environment():
    cat, pos, types, frozen, new = built(TETRA, SQUARE)
    assert new == [0, 4]
    assert cat.size() == 2
    assert cat.num_keys() == 1
    assert cat.get_ref(5).cat_index() == cat.get_ref(4).cat_index()
    assert cat.get_ref(0).cat_index() != cat.get_ref(4).cat_index()


def test_geometry_is_centred_on_atom():
    cat, pos, *_ = built(TETRA)
    for i in range(len(pos)):
        geo = cat.get_geo(i)
        assert int(geo.indices[0]) == i
        assert len(geo) == 4


def test_get_geo_out_of_range():
    cat, *_ = built(TETRA)
    with pytest.raises(IndexError):
        cat.get_geo(10)


def test_self_symmetries_map_geometry_onto_itself():
    cat, *_ = built(TETRA)
    syms = cat.calc_self_syms(0)
    ref = np.asarray(cat.get_geo(0).positions)
    assert len(syms) == 6
    assert any(s.perm == [0, 1, 2, 3] for s in syms)
    for s in syms:
        assert s.perm[0] == 0
        assert sorted(s.perm) == [0, 1, 2, 3]
        assert np.allclose(s.transform @ s.transform.T, np.identity(3), atol=1e-8)
        mapped = ref[s.perm] @ s.transform.T
        assert np.allclose(mapped, ref, atol=1e-6)


def test_set_mechs_once_with_matching_size():
    cat, *_ = built(TETRA)
    mech = Mechanism(barrier=0.5, delta_sp=np.zeros((4, 3)), delta_fwd=np.zeros((4, 3)))
    cat.set_mechs(0, [mech])
    assert cat.get_ref(1).get_mechs() == [mech]
    with pytest.raises(CatalogueError):
        cat.set_mechs(0, [mech])


def test_set_mechs_wrong_size():
    cat, *_ = built(TETRA)
    mech = Mechanism(delta_sp=np.zeros((3, 3)), delta_fwd=np.zeros((3, 3)))
    with pytest.raises(CatalogueError):
        cat.set_mechs(0, [mech])


def test_refine_tol_with_floor():
    cat, *_ = built(TETRA, TETRA)
    new = cat.refine_tol(0, 0.1)
    assert new == pytest.approx(0.1)
    assert cat.get_ref(0).delta_max() == pytest.approx(0.1)
    assert cat.get_ref(0).freq == 1
    assert cat.get_ref(0).false_pos == 0


def test_refine_tol_too_small_raises():
    cat, *_ = built(TETRA)
    with pytest.raises(CatalogueError):
        cat.refine_tol(0, 0.0)


def test_reconstruct_moves_only_centre():
    cat, pos, types, frozen, _ = built(TETRA, TETRA)
    fwd = np.zeros((4, 3))
    fwd[0] = [0.1, 0.0, 0.0]
    mech = Mechanism(delta_sp=np.zeros((4, 3)), delta_fwd=fwd)
    out, transform = cat.reconstruct(mech, 2, BOX, pos, types, frozen, 1, True)
    moved = np.linalg.norm(out - pos, axis=1)
    assert list(np.flatnonzero(moved > 1e-12)) == [2]
    assert moved[2] == pytest.approx(0.1)
    assert np.allclose(transform @ transform.T, np.identity(3), atol=1e-8)


def test_reconstruct_rebuilding_state():
    cat, pos, types, frozen, _ = built(TETRA)
    fwd = np.zeros((4, 3))
    fwd[0] = [0.0, 0.2, 0.0]
    mech = Mechanism(delta_sp=np.zeros((4, 3)), delta_fwd=fwd)
    out, _ = cat.reconstruct(mech, 1, BOX, pos, types, frozen, 1, False)
    assert np.linalg.norm(out[1] - pos[1]) == pytest.approx(0.2)
    assert np.allclose(np.delete(out, 1, axis=0), np.delete(pos, 1, axis=0))


def test_reconstruct_unknown_environment_raises():
    cat, *_ = built(TETRA)
    pos, types, frozen = make_system(SQUARE)
    mech = Mechanism(delta_sp=np.zeros((4, 3)), delta_fwd=np.zeros((4, 3)))
    with pytest.raises(CatalogueError):
        cat.reconstruct(mech, 0, BOX, pos, types, frozen, 1, False)


def test_reconstruct_ready_out_of_range():
    cat, pos, types, frozen, _ = built(TETRA)
    mech = Mechanism(delta_sp=np.zeros((4, 3)), delta_fwd=np.zeros((4, 3)))
    with pytest.raises(IndexError):
        cat.reconstruct(mech, 9, BOX, pos, types, frozen, 1, True)


def test_optimize_keeps_matches():
    cat, pos, types, frozen, _ = built(TETRA, SQUARE)
    cat.optimize()
    assert cat.size() == 2
    assert cat.rebuild(BOX, pos, types, frozen, 1) == []


def test_dump_load_round_trip():
    cat, pos, types, frozen, _ = built(TETRA, SQUARE)
    mech = Mechanism(barrier=0.7, delta_sp=np.ones((4, 3)), delta_fwd=np.ones((4, 3)))
    cat.set_mechs(0, [mech])
    buf = io.BytesIO()
    cat.dump(buf)
    buf.seek(0)
    loaded = Catalogue.load(CatalogueOptions(), buf)
    assert loaded.size() == cat.size()
    assert loaded.num_keys() == cat.num_keys()
    assert loaded.rebuild(BOX, pos, types, frozen, 1) == []
    mechs = loaded.get_ref(0).get_mechs()
    assert len(mechs) == 1
    assert mechs[0].barrier == pytest.approx(0.7)
    assert np.allclose(mechs[0].delta_fwd, np.ones((4, 3)))


def test_load_contradicting_options():
    cat, *_ = built(TETRA)
    buf = io.BytesIO()
    cat.dump(buf)
    buf.seek(0)
    with pytest.raises(CatalogueError):
        Catalogue.load(CatalogueOptions(r_env=4.0), buf)


def test_load_bad_binary():
    with pytest.raises(CatalogueError):
        Catalogue.load(CatalogueOptions(), io.BytesIO(b"\x00\x01garbage"))