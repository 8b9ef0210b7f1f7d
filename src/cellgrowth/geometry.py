"""
Geometric calculations for the growth mesh.
"""

import numpy as np
from typing import Optional, Sequence


class GeometryCalculator:
    """Handles vector and surface-normal calculations for cells."""

    @staticmethod
    def normalize(vector: np.ndarray) -> np.ndarray:
        """Return a unit vector in the direction of `vector`.

        A zero-length (or non-finite length) input yields the zero vector so that
        coincident points contribute nothing instead of propagating NaN.
        """
        vector = np.asarray(vector, dtype=float)
        length = float(np.sqrt(np.dot(vector, vector)))
        if length == 0.0 or not np.isfinite(length):
            return np.zeros_like(vector)
        return vector / length

    @staticmethod
    def triangle_normal(p0: np.ndarray, p1: np.ndarray, p2: np.ndarray) -> np.ndarray:
        """Unit normal of triangle (p0, p1, p2) following its winding.

        Returns the zero vector for degenerate triangles.
        """
        return GeometryCalculator.normalize(np.cross(p1 - p0, p2 - p0))

    @staticmethod
    def fan_normal(center: np.ndarray, ring: np.ndarray, closed: Optional[Sequence[bool]] = None) -> np.ndarray:
        """Sum the triangle normals of the fan (center, ring[k-1], ring[k]).

        Args:
            center: Position of the fan center, shape (3,).
            ring: Ordered ring positions, shape (M, 3).
            closed: Optional per-pair mask; pair k joins ring[k-1] and ring[k].
                Pairs with a False entry are skipped.

        Returns:
            The (unnormalized) sum of the unit triangle normals.
        """
        total = np.zeros(3, dtype=float)
        m = len(ring)
        if m < 2:
            return total
        for k in range(m):
            if closed is not None and not closed[k]:
                continue
            total += GeometryCalculator.triangle_normal(center, ring[k - 1], ring[k])
        return total

    @staticmethod
    def plane_fit_normal(points: np.ndarray, reference: Optional[np.ndarray] = None) -> np.ndarray:
        """Least-squares plane normal through `points`, oriented along `reference`.

        Uses the right singular vector of the centered point cloud with the
        smallest singular value. Returns the zero vector when fewer than three
        points are given.
        """
        points = np.asarray(points, dtype=float)
        if points.shape[0] < 3:
            return np.zeros(3, dtype=float)
        centered = points - points.mean(axis=0)
        try:
            _, _, vt = np.linalg.svd(centered)
        except np.linalg.LinAlgError:
            return np.zeros(3, dtype=float)
        normal = GeometryCalculator.normalize(vt[-1])
        if reference is not None and np.dot(normal, reference) < 0:
            normal = -normal
        return normal

    @staticmethod
    def average_edge_length(triangles: np.ndarray) -> float:
        """Average length of the three edges of every triangle, shape (T, 3, 3)."""
        triangles = np.asarray(triangles, dtype=float)
        if triangles.ndim != 3 or triangles.shape[1:] != (3, 3) or triangles.shape[0] == 0:
            raise ValueError(f"Triangles must have shape (T, 3, 3) with T > 0, got {triangles.shape}")
        a, b, c = triangles[:, 0], triangles[:, 1], triangles[:, 2]
        lengths = np.concatenate([
            np.linalg.norm(b - a, axis=1),
            np.linalg.norm(c - b, axis=1),
            np.linalg.norm(a - c, axis=1),
        ])
        return float(lengths.mean())


def normalize(vector: np.ndarray) -> np.ndarray:
    """Module-level shortcut for :meth:`GeometryCalculator.normalize`."""
    return GeometryCalculator.normalize(vector)


def triangle_normal(p0: np.ndarray, p1: np.ndarray, p2: np.ndarray) -> np.ndarray:
    """Module-level shortcut for :meth:`GeometryCalculator.triangle_normal`."""
    return GeometryCalculator.triangle_normal(p0, p1, p2)
