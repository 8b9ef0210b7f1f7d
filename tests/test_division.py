"""
Tests for cell division (split).
"""

import pytest
import numpy as np

from cellgrowth import (
    CellMesh,
    Divider,
    SpatialIndex,
    TopologyError,
    build_icosahedron,
    build_octahedron,
    choose_cleavage,
    split_cell,
)


def fixed(value):
    return lambda low, high: value


def make_mesh(builder=build_icosahedron):
    mesh = CellMesh.from_triangles(builder())
    index = SpatialIndex.from_positions(mesh.positions, 2.0)
    return mesh, index


def test_choose_cleavage():
    assert choose_cleavage(6, fixed(0.0)) == (0, 3)
    assert choose_cleavage(5, fixed(4.7)) == (4, 6)
    # sampler returning the upper bound is clamped into range
    assert choose_cleavage(5, fixed(5.0)) == (4, 6)


def test_split_appends_child_and_links_parent():
    mesh, index = make_mesh()
    mesh.food[0] = 150.0

    child = split_cell(mesh, index, 0, fixed(0.0))

    assert child == 12
    assert len(mesh) == 13
    assert child in mesh.links[0]
    assert 0 in mesh.links[child]
    mesh.validate()


def test_split_conserves_neighbors():
    """Old neighbors go to exactly one side, except the two cleavage neighbors."""
    mesh, index = make_mesh()
    ring = mesh.ordered_links(0)
    n = len(ring)

    child = split_cell(mesh, index, 0, fixed(1.0))

    both = {j for j in ring if j in mesh.links[0] and j in mesh.links[child]}
    assert both == {ring[1], ring[1 + n // 2]}
    for j in ring:
        assert (j in mesh.links[0]) or (j in mesh.links[child])
    assert len(mesh.links[0]) + len(mesh.links[child]) == n + 4
    assert set(mesh.links[0]) | set(mesh.links[child]) == set(ring) | {0, child}


@pytest.mark.parametrize("offset", [0.0, 1.0, 2.0, 3.0])
def test_split_even_ring_halves(offset):
    mesh, index = make_mesh(build_octahedron)
    child = split_cell(mesh, index, 0, fixed(offset))
    # ring of 4: each side keeps 3 ring cells plus the other half
    assert len(mesh.links[0]) == 4
    assert len(mesh.links[child]) == 4
    mesh.validate()


def test_split_resets_food():
    mesh, index = make_mesh()
    mesh.food[:] = 42.0
    mesh.food[3] = 150.0
    child = split_cell(mesh, index, 3, fixed(2.0))
    assert mesh.food[3] == 0.0
    assert mesh.food[child] == 0.0
    assert mesh.food[0] == 42.0


def test_split_positions_are_link_means():
    mesh, index = make_mesh()
    before = mesh.positions.copy()

    child = split_cell(mesh, index, 0, fixed(0.0))

    parent_links = [j for j in mesh.links[0] if j != child]
    child_links = [j for j in mesh.links[child] if j != 0]
    # the partner starts at the parent's old position
    expected_parent = (2 * before[0] + before[parent_links].sum(axis=0)) / (len(parent_links) + 2)
    expected_child = (2 * before[0] + before[child_links].sum(axis=0)) / (len(child_links) + 2)
    np.testing.assert_allclose(mesh.positions[0], expected_parent, atol=1e-12)
    np.testing.assert_allclose(mesh.positions[child], expected_child, atol=1e-12)
    assert not np.allclose(mesh.positions[0], mesh.positions[child])
    # neighbors do not move
    np.testing.assert_array_equal(mesh.positions[1:12], before[1:12])


def test_split_updates_spatial_index():
    mesh, index = make_mesh()
    child = split_cell(mesh, index, 0, fixed(0.0))
    assert len(index) == 13
    assert child in index.search(mesh.positions[child], 0.01)
    assert 0 in index.search(mesh.positions[0], 0.01)
    # every entry can still be moved from its current position
    for i in range(len(mesh)):
        index.update(mesh.positions[i], mesh.positions[i] + 5.0, i)


def test_split_normals_are_unit_and_consistent():
    mesh, index = make_mesh()
    old_normal = mesh.normals[0].copy()
    child = split_cell(mesh, index, 0, fixed(0.0))
    for i in (0, child):
        assert np.linalg.norm(mesh.normals[i]) == pytest.approx(1.0)
        assert np.dot(mesh.normals[i], old_normal) > 0


def test_split_degenerate_ring_raises():
    mesh = CellMesh()
    for k in range(3):
        mesh.add_cell(np.array([float(k), 0.0, 0.0]), normal=np.array([0.0, 0.0, 1.0]))
    mesh.link(0, 1)
    mesh.link(0, 2)
    index = SpatialIndex.from_positions(mesh.positions, 2.0)
    with pytest.raises(TopologyError, match="at least 3"):
        split_cell(mesh, index, 0, fixed(0.0))
    assert len(mesh) == 3


def test_repeated_splits_keep_invariants():
    mesh, index = make_mesh()
    rng = np.random.default_rng(5)
    for _ in range(60):
        parent = int(rng.integers(len(mesh)))
        split_cell(mesh, index, parent, rng.uniform)
        mesh.validate(min_links=3)
    assert len(mesh) == 72
    # Euler characteristic of a closed sphere is preserved: each split adds 1 cell, 3 links
    assert mesh.link_count() == 30 + 3 * 60


class TestDivider:
    def test_split_ready_visits_only_existing_cells(self):
        mesh, index = make_mesh()
        mesh.food[:] = 5.0
        divider = Divider(split_threshold=1.0, sampler=fixed(0.0))

        splits = divider.split_ready(mesh, index)

        assert [p for p, _ in splits] == list(range(12))
        assert [c for _, c in splits] == list(range(12, 24))
        assert len(mesh) == 24
        assert np.all(mesh.food == 0.0)
        mesh.validate()

    def test_split_ready_threshold_is_strict(self):
        mesh, index = make_mesh()
        mesh.food[:] = 1.0
        mesh.food[4] = 1.5
        divider = Divider(split_threshold=1.0, sampler=fixed(0.0))
        splits = divider.split_ready(mesh, index)
        assert [p for p, _ in splits] == [4]

    def test_default_sampler_is_seeded(self):
        results = []
        for _ in range(2):
            mesh, index = make_mesh()
            mesh.food[:] = 5.0
            Divider(split_threshold=1.0, random_seed=11).split_ready(mesh, index)
            results.append([list(l) for l in mesh.links])
        assert results[0] == results[1]
