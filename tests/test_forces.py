"""
Tests for the per-cell force rule and its parallel batch evaluation.
"""

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from cellgrowth import (
    CellMesh,
    ForceField,
    GrowthParameters,
    SpatialIndex,
    build_icosahedron,
    build_icosphere,
    partition_indices,
)

ONLY_PLANAR = dict(spring_factor=0.0, planar_factor=1.0, bulge_factor=0.0, repulsion_factor=0.0)


def isolated_cells(positions, normal=(0.0, 0.0, 1.0)):
    mesh = CellMesh()
    for p in positions:
        mesh.add_cell(np.asarray(p, dtype=float), normal=np.asarray(normal, dtype=float))
    return mesh


def params_with(**kwargs):
    values = dict(link_rest_length=1.0, radius_of_influence=1.0, spring_factor=0.0,
                  planar_factor=0.0, bulge_factor=0.0, repulsion_factor=0.0)
    values.update(kwargs)
    return GrowthParameters(**values)


def test_partition_indices_interleaved_and_disjoint():
    parts = partition_indices(10, 3)
    assert [list(p) for p in parts] == [[0, 3, 6, 9], [1, 4, 7], [2, 5, 8]]
    assert sorted(i for p in parts for i in p) == list(range(10))
    with pytest.raises(ValueError):
        partition_indices(10, 0)


def test_planar_term_moves_to_neighbor_centroid():
    """With only the planar term, each cell lands on its neighbors' centroid."""
    mesh = CellMesh.from_triangles(build_icosahedron())
    params = GrowthParameters(**ONLY_PLANAR)
    index = SpatialIndex.from_positions(mesh.positions, params.influence_cell_size)

    new_positions, new_normals = ForceField(params).compute(mesh, index)

    for i in range(len(mesh)):
        centroid = mesh.positions[mesh.links[i]].mean(axis=0)
        np.testing.assert_allclose(new_positions[i], centroid, atol=1e-12)
    np.testing.assert_allclose(np.linalg.norm(new_normals, axis=1), 1.0, atol=1e-12)


def test_spring_term_targets_rest_length():
    mesh = isolated_cells([(0, 0, 0), (2, 0, 0)])
    mesh.link(0, 1)
    params = params_with(spring_factor=1.0)
    index = SpatialIndex.from_positions(mesh.positions, 2.0)

    position, _ = ForceField(params).cell_update(mesh, index, 0)
    assert position == pytest.approx([1.0, 0.0, 0.0])


def test_bulge_term_restores_rest_length_along_normal():
    mesh = isolated_cells([(0, 0, 0), (0.5, 0, 0)])
    mesh.link(0, 1)
    params = params_with(bulge_factor=1.0)
    index = SpatialIndex.from_positions(mesh.positions, 2.0)

    position, normal = ForceField(params).cell_update(mesh, index, 0)
    assert normal == pytest.approx([0.0, 0.0, 1.0])
    assert position == pytest.approx([0.0, 0.0, np.sqrt(0.75)])
    assert np.linalg.norm(position - mesh.positions[1]) == pytest.approx(1.0)


def test_bulge_term_ignores_neighbors_beyond_rest_length():
    mesh = isolated_cells([(0, 0, 0), (1.5, 0, 0)])
    mesh.link(0, 1)
    params = params_with(bulge_factor=1.0)
    index = SpatialIndex.from_positions(mesh.positions, 2.0)

    position, _ = ForceField(params).cell_update(mesh, index, 0)
    assert position == pytest.approx([0.0, 0.0, 0.0])


def test_repulsion_pushes_unlinked_cells_apart():
    mesh = isolated_cells([(0, 0, 0), (0.5, 0, 0)])
    params = params_with(repulsion_factor=1.0)
    index = SpatialIndex.from_positions(mesh.positions, 2.0)
    field = ForceField(params)

    p0, _ = field.cell_update(mesh, index, 0)
    p1, _ = field.cell_update(mesh, index, 1)
    # falloff (r^2 - d^2) / r^2 = 0.75 at d = 0.5
    assert p0 == pytest.approx([-0.75, 0.0, 0.0])
    assert p1 == pytest.approx([1.25, 0.0, 0.0])


def test_repulsion_zero_outside_radius():
    mesh = isolated_cells([(0, 0, 0), (1.2, 0, 0)])
    params = params_with(repulsion_factor=1.0)
    index = SpatialIndex.from_positions(mesh.positions, 0.5)

    position, _ = ForceField(params).cell_update(mesh, index, 0)
    assert position == pytest.approx([0.0, 0.0, 0.0])


def test_repulsion_skips_linked_neighbors():
    mesh = isolated_cells([(0, 0, 0), (0.5, 0, 0)])
    mesh.link(0, 1)
    params = params_with(repulsion_factor=1.0)
    index = SpatialIndex.from_positions(mesh.positions, 2.0)

    position, _ = ForceField(params).cell_update(mesh, index, 0)
    assert position == pytest.approx([0.0, 0.0, 0.0])


def test_step_clamped_to_max_distance():
    mesh = CellMesh.from_triangles(build_icosahedron())
    params = GrowthParameters(max_step_distance=0.01, **ONLY_PLANAR)
    index = SpatialIndex.from_positions(mesh.positions, params.influence_cell_size)

    new_positions, _ = ForceField(params).compute(mesh, index)
    steps = np.linalg.norm(new_positions - mesh.positions, axis=1)
    # unclamped, each vertex would move to its ring centroid (well over 0.01 away)
    assert steps == pytest.approx(np.full(len(mesh), 0.01))


def test_coincident_cells_do_not_produce_nan():
    mesh = CellMesh.from_triangles(build_icosahedron())
    positions = mesh.positions.copy()
    neighbor = mesh.links[0][0]
    positions[neighbor] = positions[0]
    mesh.replace_state(positions, mesh.normals)
    index = SpatialIndex.from_positions(mesh.positions, 2.0)

    new_positions, new_normals = ForceField(GrowthParameters()).compute(mesh, index)
    assert np.all(np.isfinite(new_positions))
    assert np.all(np.isfinite(new_normals))
    np.testing.assert_allclose(np.linalg.norm(new_normals, axis=1), 1.0, atol=1e-9)


def test_compute_does_not_mutate_mesh():
    mesh = CellMesh.from_triangles(build_icosphere(1))
    index = SpatialIndex.from_positions(mesh.positions, 2.0)
    before = (mesh.positions.copy(), mesh.normals.copy(), [list(l) for l in mesh.links])

    ForceField(GrowthParameters()).compute(mesh, index)

    np.testing.assert_array_equal(mesh.positions, before[0])
    np.testing.assert_array_equal(mesh.normals, before[1])
    assert mesh.links == before[2]


@pytest.mark.parametrize("workers", [2, 3, 8])
def test_parallel_matches_sequential(workers):
    mesh = CellMesh.from_triangles(build_icosphere(2))
    params = GrowthParameters.from_triangles(build_icosphere(2))
    index = SpatialIndex.from_positions(mesh.positions, params.influence_cell_size)
    field = ForceField(params)

    seq_positions, seq_normals = field.compute(mesh, index, workers=1)
    with ThreadPoolExecutor(max_workers=workers) as executor:
        par_positions, par_normals = field.compute(mesh, index, workers=workers, executor=executor)

    np.testing.assert_array_equal(seq_positions, par_positions)
    np.testing.assert_array_equal(seq_normals, par_normals)


def test_worker_failure_propagates():
    class FailingField(ForceField):
        def cell_update(self, mesh, index, i):
            if i == 5:
                raise FloatingPointError("boom")
            return super().cell_update(mesh, index, i)

    mesh = CellMesh.from_triangles(build_icosahedron())
    index = SpatialIndex.from_positions(mesh.positions, 2.0)
    with ThreadPoolExecutor(max_workers=4) as executor:
        with pytest.raises(FloatingPointError, match="boom"):
            FailingField(GrowthParameters()).compute(mesh, index, workers=4, executor=executor)
