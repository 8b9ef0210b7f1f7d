"""
Mesh operations for the growth mesh.

Provides the outputs consumed by exporters and renderers: edge lists,
triangle reconstruction from the link graph, and per-cell vertex attributes.
"""

import numpy as np

from .core import CellMesh
from .parameters import GrowthParameters

VERTEX_ATTRIBUTE_SIZE = 7


def mesh_edges(mesh: CellMesh) -> np.ndarray:
    """Return every link once as an (E, 2) int array with i < j, sorted."""
    edges = [(i, j) for i, links in enumerate(mesh.links) for j in links if i < j]
    if not edges:
        return np.empty((0, 2), dtype=int)
    return np.array(sorted(edges), dtype=int)


def triangle_indexes(mesh: CellMesh) -> np.ndarray:
    """Reconstruct the faces of the link graph.

    For each cell i, consecutive neighbors (j, k) of its oriented ring that are
    linked to each other form the face (i, j, k). A face is emitted once, from
    its smallest index (i < j and i < k). Rings are oriented counter-clockwise
    about the cell normals, so faces wind consistently with the normals.

    Returns:
        (T, 3) int array of cell indices.
    """
    faces = []
    for i in range(len(mesh)):
        ring = mesh.ordered_links(i)
        m = len(ring)
        if m < 3:
            continue
        for a in range(m):
            j = ring[a]
            k = ring[(a + 1) % m]
            if i < j and i < k and mesh.is_linked(j, k):
                faces.append((i, j, k))
    if not faces:
        return np.empty((0, 3), dtype=int)
    return np.array(faces, dtype=int)


def triangulate(mesh: CellMesh) -> np.ndarray:
    """Return the reconstructed faces as corner coordinates, shape (T, 3, 3)."""
    faces = triangle_indexes(mesh)
    if faces.shape[0] == 0:
        return np.empty((0, 3, 3), dtype=float)
    return mesh.positions[faces].copy()


def vertex_attributes(mesh: CellMesh, params: GrowthParameters) -> np.ndarray:
    """Flat per-cell vertex data for a renderer.

    Each cell contributes 7 float32 values in index order:
        position.x, position.y, position.z, normal.x, normal.y, normal.z, food / split_threshold

    Returns:
        1D float32 array of length 7 * N.
    """
    n = len(mesh)
    data = np.empty((n, VERTEX_ATTRIBUTE_SIZE), dtype=np.float32)
    data[:, 0:3] = mesh.positions
    data[:, 3:6] = mesh.normals
    data[:, 6] = mesh.food / params.split_threshold
    return data.ravel()
