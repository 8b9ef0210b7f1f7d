"""
Cell division (split) for the growth mesh.

A dividing cell keeps one arc of its neighbor ring and hands the opposite arc
to a newly appended child. The two neighbors on the plane of cleavage stay
linked to both, and parent and child are linked to each other:

    ring (ordered):  r[i0], r[i0+1], ..., r[i1], ..., r[i0+n-1]
    parent keeps:    r[i0] .. r[i1]           + child
    child takes:     r[i1] .. r[i0+n]         + parent

so |links[parent]| + |links[child]| = n + 4.
"""

import logging
from typing import Callable, Optional

import numpy as np

from .core import CellMesh, TopologyError
from .spatial import SpatialIndex

logger = logging.getLogger(__name__)

Sampler = Callable[[float, float], float]


def choose_cleavage(n: int, sampler: Sampler) -> tuple:
    """Pick the rotation offset i0 and the opposite split point i1 = i0 + n // 2."""
    i0 = max(0, min(int(sampler(0, n)), n - 1))
    return i0, i0 + n // 2


def split_cell(
    mesh: CellMesh,
    index: SpatialIndex,
    parent: int,
    sampler: Sampler,
) -> int:
    """Divide cell `parent` into two cells.

    Args:
        mesh: Mesh to modify in-place.
        index: Spatial index kept in sync with the moved parent and new child.
        parent: Index of the dividing cell.
        sampler: Uniform sampler used to choose the plane of cleavage.

    Returns:
        int: Index of the new child cell (the previous cell count).

    Raises:
        TopologyError: If the parent has fewer than 3 neighbors.

    Notes:
        - Both cells are moved to the mean of their own position and their new
          neighbors' positions.
        - Normals are re-estimated from the new rings, oriented along the
          parent's previous normal.
        - Parent food is reset to 0; the child starts at 0.
    """
    reference = mesh.normals[parent].copy()
    ring = mesh.ordered_links(parent, reference)
    n = len(ring)
    if n < 3:
        raise TopologyError(f"Cell {parent} has {n} neighbors; at least 3 are required to split")

    # child starts as a copy of the parent
    old_parent_position = mesh.positions[parent].copy()
    child = mesh.add_cell(old_parent_position, reference, food=0.0)

    i0, i1 = choose_cleavage(n, sampler)

    # arc handed over to the child (strictly between the cleavage neighbors)
    for k in range(i1 + 1, i0 + n):
        j = ring[k % n]
        mesh.unlink(parent, j)
        mesh.link(child, j)
    # cleavage neighbors connect to both sides
    mesh.link(child, ring[i0 % n])
    mesh.link(child, ring[i1 % n])
    mesh.link(parent, child)

    positions = mesh.positions
    new_parent_position = (positions[parent] + positions[mesh.links[parent]].sum(axis=0)) / (len(mesh.links[parent]) + 1)
    new_child_position = (positions[child] + positions[mesh.links[child]].sum(axis=0)) / (len(mesh.links[child]) + 1)

    index.update(old_parent_position, new_parent_position, parent)
    index.add(new_child_position, child)
    mesh.positions[parent] = new_parent_position
    mesh.positions[child] = new_child_position

    mesh.normals[parent] = mesh.cell_normal(parent, reference)
    mesh.normals[child] = mesh.cell_normal(child, reference)

    mesh.food[parent] = 0.0

    logger.debug("Split cell %d -> child %d (ring=%d, i0=%d, i1=%d)", parent, child, n, i0 % n, i1 % n)
    return child


class Divider:
    """Splits cells whose food exceeds the threshold.

    Attributes:
        split_threshold: Food level above which a cell divides.
        sampler: Uniform sampler for the plane of cleavage.
    """

    def __init__(self, split_threshold: float, sampler: Optional[Sampler] = None, random_seed: Optional[int] = None):
        if sampler is None:
            sampler = np.random.default_rng(random_seed).uniform
        self.split_threshold = split_threshold
        self.sampler = sampler

    def should_split(self, mesh: CellMesh, i: int) -> bool:
        return bool(mesh.food[i] > self.split_threshold)

    def split(self, mesh: CellMesh, index: SpatialIndex, parent: int) -> int:
        """Split `parent`; see :func:`split_cell`."""
        return split_cell(mesh, index, parent, self.sampler)

    def split_ready(self, mesh: CellMesh, index: SpatialIndex, n_cells: Optional[int] = None) -> list:
        """Split every cell among the first `n_cells` whose food exceeds the threshold.

        Cells are visited in index order. Children appended during the pass are
        not revisited.

        Returns:
            list of (parent, child) index pairs, in split order.
        """
        if n_cells is None:
            n_cells = len(mesh)
        splits = []
        for i in range(n_cells):
            if self.should_split(mesh, i):
                splits.append((i, self.split(mesh, index, i)))
        return splits
