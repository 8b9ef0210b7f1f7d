"""Starting-surface builder utilities.

Provides pure functions that construct closed triangle soups for seeding a
growth run. Builders return an array of shape (T, 3, 3) with every face wound
counter-clockwise when seen from outside; pass it to
`CellMesh.from_triangles()` to create the cells.

Design principles:
- Deterministic: repeated calls with same parameters yield identical geometry.
- Separation of concerns: no growth parameters or simulation logic here.

Available builders:
- build_tetrahedron(radius): 4 cells of degree 3.
- build_octahedron(radius): 6 cells of degree 4.
- build_icosahedron(radius): 12 cells of degree 5.
- build_icosphere(subdivisions, radius): icosahedron refined by 4-to-1 splits.
"""
from __future__ import annotations
import numpy as np
from typing import Sequence, Tuple

__all__ = [
    "build_tetrahedron",
    "build_octahedron",
    "build_icosahedron",
    "build_icosphere",
]


def _soup(vertices: np.ndarray, faces: Sequence[Tuple[int, int, int]]) -> np.ndarray:
    """Assemble a triangle soup, flipping faces so their normals point away from the origin."""
    triangles = np.array([[vertices[a], vertices[b], vertices[c]] for a, b, c in faces], dtype=float)
    for t, (p0, p1, p2) in enumerate(triangles):
        if np.dot(np.cross(p1 - p0, p2 - p0), p0 + p1 + p2) < 0:
            triangles[t] = [p0, p2, p1]
    return triangles


def _scale_to_radius(vertices: np.ndarray, radius: float) -> np.ndarray:
    if radius <= 0:
        raise ValueError("radius must be positive")
    return vertices / np.linalg.norm(vertices, axis=1, keepdims=True) * radius


def build_tetrahedron(radius: float = 1.0) -> np.ndarray:
    """Regular tetrahedron inscribed in a sphere of the given radius."""
    verts = np.array([[1, 1, 1], [1, -1, -1], [-1, 1, -1], [-1, -1, 1]], dtype=float)
    faces = [(0, 1, 2), (0, 1, 3), (0, 2, 3), (1, 2, 3)]
    return _soup(_scale_to_radius(verts, radius), faces)


def build_octahedron(radius: float = 1.0) -> np.ndarray:
    """Regular octahedron with vertices on the coordinate axes."""
    verts = np.array([
        [1, 0, 0], [-1, 0, 0],
        [0, 1, 0], [0, -1, 0],
        [0, 0, 1], [0, 0, -1],
    ], dtype=float)
    faces = [(x, y, z) for x in (0, 1) for y in (2, 3) for z in (4, 5)]
    return _soup(_scale_to_radius(verts, radius), faces)


def build_icosahedron(radius: float = 1.0) -> np.ndarray:
    """Regular icosahedron: 12 vertices, 30 edges, 20 faces, every vertex of degree 5."""
    t = (1.0 + np.sqrt(5.0)) / 2.0
    verts = np.array([
        [-1, t, 0], [1, t, 0], [-1, -t, 0], [1, -t, 0],
        [0, -1, t], [0, 1, t], [0, -1, -t], [0, 1, -t],
        [t, 0, -1], [t, 0, 1], [-t, 0, -1], [-t, 0, 1],
    ], dtype=float)
    faces = [
        (0, 11, 5), (0, 5, 1), (0, 1, 7), (0, 7, 10), (0, 10, 11),
        (1, 5, 9), (5, 11, 4), (11, 10, 2), (10, 7, 6), (7, 1, 8),
        (3, 9, 4), (3, 4, 2), (3, 2, 6), (3, 6, 8), (3, 8, 9),
        (4, 9, 5), (2, 4, 11), (6, 2, 10), (8, 6, 7), (9, 8, 1),
    ]
    return _soup(_scale_to_radius(verts, radius), faces)


def build_icosphere(subdivisions: int = 1, radius: float = 1.0) -> np.ndarray:
    """Icosahedron refined `subdivisions` times, each face split into four.

    New vertices are projected back onto the sphere.
    """
    if subdivisions < 0:
        raise ValueError("subdivisions must be non-negative")
    triangles = build_icosahedron(radius)
    for _ in range(subdivisions):
        refined = []
        for a, b, c in triangles:
            ab = (a + b) / 2.0
            bc = (b + c) / 2.0
            ca = (c + a) / 2.0
            ab, bc, ca = (p / np.linalg.norm(p) * radius for p in (ab, bc, ca))
            refined.extend([[a, ab, ca], [ab, b, bc], [ca, bc, c], [ab, bc, ca]])
        triangles = np.array(refined, dtype=float)
    return triangles
