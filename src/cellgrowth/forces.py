"""
Force rule for cell relaxation and its parallel batch evaluation.

Each cell moves under four terms computed from a read-only snapshot of the mesh:
    spring     pulls each neighbor toward the rest length along their current direction
    planar     pulls the cell toward the centroid of its neighbors
    bulge      pushes the cell along its normal so neighbors sit at the rest length
    repulsion  pushes unlinked cells within the radius of influence apart

Workers evaluate disjoint, stride-interleaved subsets of the cells and write
only their own rows of the output buffers.
"""

import logging
from concurrent.futures import Executor, wait
from typing import List, Optional, Tuple

import numpy as np

from .core import CellMesh
from .geometry import GeometryCalculator
from .parameters import GrowthParameters
from .spatial import SpatialIndex

logger = logging.getLogger(__name__)


def partition_indices(n_cells: int, workers: int) -> List[range]:
    """Split range(n_cells) into `workers` interleaved subsets (stride = workers)."""
    if workers < 1:
        raise ValueError(f"workers must be >= 1, got {workers}")
    return [range(w, n_cells, workers) for w in range(workers)]


class ForceField:
    """Per-cell update rule.

    Attributes:
        params: Growth parameters supplying rest length, radius and factors.
    """

    def __init__(self, params: GrowthParameters):
        self.params = params

    def __repr__(self):
        return f"ForceField(params={self.params})"

    def cell_update(self, mesh: CellMesh, index: SpatialIndex, i: int) -> Tuple[np.ndarray, np.ndarray]:
        """Compute the candidate position and normal of cell `i`.

        Reads `mesh` and `index` only.

        Returns:
            Tuple of (new_position, new_normal).
        """
        params = self.params
        positions = mesh.positions
        rest = params.link_rest_length
        rest2 = rest * rest
        roi2 = params.radius_of_influence * params.radius_of_influence

        P = positions[i]
        N = mesh.cell_normal(i)
        links = mesh.links[i]

        spring_target = np.zeros(3, dtype=float)
        planar_target = np.zeros(3, dtype=float)
        bulge_distance = 0.0
        for j in links:
            L = positions[j]
            D = L - P
            spring_target += L - GeometryCalculator.normalize(D) * rest
            planar_target += L
            length2 = float(np.dot(D, D))
            if length2 < rest2:
                dot = float(np.dot(D, N))
                bulge_distance += np.sqrt(rest2 - length2 + dot * dot) + dot

        if links:
            m = 1.0 / len(links)
            spring_target *= m
            planar_target *= m
            bulge_distance *= m
        else:
            spring_target = P.copy()
            planar_target = P.copy()

        # linked cells are already held at the rest length by the spring term
        repulsion = np.zeros(3, dtype=float)
        linked = set(links)
        for j in index.search(P, params.radius_of_influence):
            if j == i or j in linked:
                continue
            D = P - positions[j]
            d2 = float(np.dot(D, D))
            if d2 < roi2:
                repulsion += GeometryCalculator.normalize(D) * ((roi2 - d2) / roi2)

        new_position = (
            P
            + params.spring_factor * (spring_target - P)
            + params.planar_factor * (planar_target - P)
            + (params.bulge_factor * bulge_distance) * N
            + params.repulsion_factor * repulsion
        )

        if params.max_step_distance is not None:
            step = new_position - P
            length = float(np.sqrt(np.dot(step, step)))
            if length > params.max_step_distance:
                new_position = P + step * (params.max_step_distance / length)

        return new_position, N

    def update_batch(
        self,
        mesh: CellMesh,
        index: SpatialIndex,
        cells: range,
        new_positions: np.ndarray,
        new_normals: np.ndarray,
    ) -> None:
        """Evaluate `cell_update` for every cell in `cells`, writing only those rows."""
        for i in cells:
            new_positions[i], new_normals[i] = self.cell_update(mesh, index, i)

    def compute(
        self,
        mesh: CellMesh,
        index: SpatialIndex,
        workers: int = 1,
        executor: Optional[Executor] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Evaluate the rule for every cell.

        The cells are split into `workers` interleaved partitions. With an
        executor, each partition is submitted as one task and the call blocks
        until all complete; any task exception is re-raised. Without one, the
        partitions run inline.

        Returns:
            Tuple of (new_positions, new_normals), each of shape (N, 3).
        """
        n = len(mesh)
        new_positions = np.empty((n, 3), dtype=float)
        new_normals = np.empty((n, 3), dtype=float)
        batches = partition_indices(n, workers)
        logger.debug("Evaluating %d cells in %d partition(s)", n, workers)

        if executor is None:
            for cells in batches:
                self.update_batch(mesh, index, cells, new_positions, new_normals)
        else:
            futures = [
                executor.submit(self.update_batch, mesh, index, cells, new_positions, new_normals)
                for cells in batches
            ]
            wait(futures)
            for future in futures:
                future.result()

        return new_positions, new_normals
