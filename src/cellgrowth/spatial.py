"""
Uniform-grid spatial index mapping cell positions to cell indices.
"""

import logging
import math
from collections import defaultdict
from typing import Dict, List, Set, Tuple

import numpy as np

logger = logging.getLogger(__name__)

Bucket = Tuple[int, int, int]


class SpatialIndex:
    """Bucketed index answering radius queries over moving cells.

    Positions are hashed into cubic buckets of width `cell_size`. Queries return
    every index stored in the buckets overlapping the query sphere's bounding
    box, so results are a superset of the exact matches; callers filter by
    exact squared distance.

    Mutations (`add`, `update`) are single-threaded. Queries only read the
    bucket table and may run concurrently while no mutation is in flight.

    Attributes:
        cell_size: Bucket width.
        buckets: Mapping from integer bucket coordinates to the indices stored there.
    """

    def __init__(self, cell_size: float):
        if not cell_size > 0:
            raise ValueError(f"cell_size must be > 0, got {cell_size}")
        self.cell_size = float(cell_size)
        self.buckets: Dict[Bucket, Set[int]] = defaultdict(set)
        self._count = 0

    def __len__(self) -> int:
        return self._count

    def __repr__(self):
        return f"SpatialIndex(cell_size={self.cell_size}, entries={self._count}, buckets={len(self.buckets)})"

    def _key(self, position: np.ndarray) -> Bucket:
        position = np.asarray(position, dtype=float)
        if position.shape != (3,) or not np.all(np.isfinite(position)):
            raise ValueError(f"Invalid position for spatial index: {position}")
        x, y, z = np.floor(position / self.cell_size).astype(np.int64)
        return (int(x), int(y), int(z))

    def add(self, position: np.ndarray, index: int) -> None:
        """Insert `index` at `position`.

        Raises:
            ValueError: If the position is not a finite 3-vector.
        """
        self.buckets[self._key(position)].add(int(index))
        self._count += 1

    def update(self, old_position: np.ndarray, new_position: np.ndarray, index: int) -> None:
        """Move `index` from the bucket of `old_position` to that of `new_position`.

        A no-op when both positions fall in the same bucket.

        Raises:
            ValueError: If either position is invalid, or `index` is not stored
                in the bucket of `old_position`.
        """
        old_key = self._key(old_position)
        new_key = self._key(new_position)
        if old_key == new_key:
            return
        bucket = self.buckets.get(old_key)
        if bucket is None or index not in bucket:
            raise ValueError(f"Index {index} not found in bucket {old_key}")
        bucket.discard(index)
        if not bucket:
            del self.buckets[old_key]
        self.buckets[new_key].add(int(index))

    def search(self, position: np.ndarray, radius: float) -> List[int]:
        """Return candidate indices within `radius` of `position`.

        The result includes every true match; it may also include indices up
        to one bucket width beyond `radius`. Order is unspecified.
        """
        cx, cy, cz = self._key(position)
        reach = max(1, int(math.ceil(radius / self.cell_size)))
        result: List[int] = []
        # .get keeps lookups read-only; defaultdict indexing would insert
        for dx in range(-reach, reach + 1):
            for dy in range(-reach, reach + 1):
                for dz in range(-reach, reach + 1):
                    bucket = self.buckets.get((cx + dx, cy + dy, cz + dz))
                    if bucket:
                        result.extend(bucket)
        return result

    def nearby(self, position: np.ndarray) -> List[int]:
        """Return the indices stored in the 27 buckets around `position`."""
        return self.search(position, self.cell_size)

    @classmethod
    def from_positions(cls, positions: np.ndarray, cell_size: float) -> "SpatialIndex":
        """Build an index holding `positions[i]` under index `i`."""
        index = cls(cell_size)
        for i, position in enumerate(np.asarray(positions, dtype=float)):
            index.add(position, i)
        logger.debug("Built %r", index)
        return index
