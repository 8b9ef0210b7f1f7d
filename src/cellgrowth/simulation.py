"""
Simulation engine for cellular surface growth.
"""

import logging
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import contextmanager
from typing import Callable, List, Optional, Tuple

import numpy as np

from .core import CellMesh
from .division import Divider
from .forces import ForceField
from .parameters import GrowthParameters
from .spatial import SpatialIndex

logger = logging.getLogger(__name__)


@contextmanager
def _timed(label: str):
    start = time.perf_counter()
    yield
    logger.debug("%s: %.3f ms", label, (time.perf_counter() - start) * 1e3)


class Simulation:
    """Main simulation class for surface growth.

    One step runs three phases:
        1. Force batch: every cell's candidate position/normal is computed from
           the current state, optionally in parallel over `workers` partitions.
        2. Commit: the spatial index is updated and the new buffers swapped in.
        3. Growth: every cell's food grows by sampler(0, 1); cells above the
           split threshold divide, in index order.

    Attributes:
        mesh: CellMesh being simulated.
        params: Growth parameters (fixed for the run).
        index: Spatial index over the cell positions.
        force_field: Per-cell update rule.
        divider: Split rule sharing the simulation's sampler.
        workers: Number of partitions per force batch.
        step_count: Number of completed steps.
        validate_each_step: If True, validate the mesh before and after each step.
    """

    def __init__(
        self,
        mesh: CellMesh,
        params: Optional[GrowthParameters] = None,
        workers: int = 1,
        executor: Optional[Executor] = None,
        sampler: Optional[Callable[[float, float], float]] = None,
        random_seed: Optional[int] = None,
        validate_each_step: bool = False,
    ):
        """Initialize a simulation.

        Args:
            mesh: Mesh to grow (modified in-place).
            params: Growth parameters (default constructed if None).
            workers: Number of force-batch partitions. Must be >= 1.
            executor: Optional executor running the partitions. If None and
                workers > 1, a ThreadPoolExecutor owned by the simulation is created.
            sampler: Uniform sampler `(low, high) -> float`. Defaults to a NumPy
                generator seeded with `random_seed`.
            random_seed: Seed for the default sampler.
            validate_each_step: If True, validate mesh invariants around each step.
        """
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self.mesh = mesh
        self.params = params if params is not None else GrowthParameters()
        self.workers = workers
        self.validate_each_step = validate_each_step
        self.step_count = 0

        if sampler is None:
            sampler = np.random.default_rng(random_seed).uniform
        self.sampler = sampler

        self._owns_executor = executor is None and workers > 1
        self.executor = ThreadPoolExecutor(max_workers=workers) if self._owns_executor else executor

        self.index = SpatialIndex.from_positions(mesh.positions, self.params.influence_cell_size)
        self.force_field = ForceField(self.params)
        self.divider = Divider(self.params.split_threshold, sampler=self.sampler)

        for name, value in self.params.to_dict().items():
            logger.info("%s = %s", name, value)

    @classmethod
    def from_triangles(cls, triangles, params: Optional[GrowthParameters] = None, **kwargs) -> "Simulation":
        """Build the mesh from a triangle soup; derive parameters from it when not given."""
        triangles = np.asarray(triangles, dtype=float)
        mesh = CellMesh.from_triangles(triangles)
        if params is None:
            params = GrowthParameters.from_triangles(triangles)
        return cls(mesh, params=params, **kwargs)

    def step(self) -> List[Tuple[int, int]]:
        """Perform a single simulation step.

        Returns:
            list of (parent, child) pairs for the splits performed this step.
        """
        if self.validate_each_step:
            self.mesh.validate()

        with _timed("run workers"):
            new_positions, new_normals = self.force_field.compute(
                self.mesh, self.index, workers=self.workers, executor=self.executor
            )
        splits = self.commit(new_positions, new_normals)
        self.step_count += 1

        if self.validate_each_step:
            self.mesh.validate()
        return splits

    def commit(self, new_positions: np.ndarray, new_normals: np.ndarray) -> List[Tuple[int, int]]:
        """Apply a force batch, grow food and split ready cells.

        Raises:
            ValueError: If the candidate buffers have the wrong shape or contain
                non-finite values, or the sampler yields a negative increment.
                Nothing is modified in that case.
        """
        n = len(self.mesh)
        if new_positions.shape != (n, 3) or new_normals.shape != (n, 3):
            raise ValueError(f"Candidate buffers must have shape ({n}, 3)")
        bad = ~np.all(np.isfinite(new_positions), axis=1) | ~np.all(np.isfinite(new_normals), axis=1)
        if np.any(bad):
            raise ValueError(f"Non-finite candidate state for cell(s) {np.flatnonzero(bad)[:10].tolist()}")
        increments = np.array([self.sampler(0, 1) for _ in range(n)], dtype=float)
        if np.any(increments < 0) or not np.all(np.isfinite(increments)):
            raise ValueError("Food increments must be finite and non-negative")

        with _timed("update index"):
            old_positions = self.mesh.positions
            for i in range(n):
                self.index.update(old_positions[i], new_positions[i], i)

        with _timed("copy vectors"):
            self.mesh.replace_state(new_positions, new_normals)

        with _timed("split"):
            self.mesh.food[:n] += increments
            splits = self.divider.split_ready(self.mesh, self.index, n)

        if splits:
            logger.debug("Step %d: %d split(s), %d cells", self.step_count, len(splits), len(self.mesh))
        return splits

    def run(self, n_steps: int = 100):
        """
        Run the simulation for a specified number of steps.

        Args:
            n_steps: Number of simulation steps to run
        """
        for _ in range(n_steps):
            self.step()

    def run_with_logging(self, n_steps: int, log_interval: int = 1) -> list[tuple[int, int]]:
        """Run the simulation while recording the cell count.

        Records (step_count, n_cells) every ``log_interval`` steps AFTER performing each step.

        Raises:
            ValueError: If log_interval < 1.
        """
        if log_interval < 1:
            raise ValueError("log_interval must be >= 1")
        samples: list[tuple[int, int]] = []
        for step_idx in range(n_steps):
            self.step()
            if (step_idx + 1) % log_interval == 0:
                samples.append((self.step_count, len(self.mesh)))
                logger.info("step %d: %d cells", self.step_count, len(self.mesh))
        return samples

    def close(self) -> None:
        """Shut down the executor if the simulation created it."""
        if self._owns_executor and self.executor is not None:
            self.executor.shutdown(wait=True)
            self.executor = None
            self._owns_executor = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self):
        return f"Simulation(step={self.step_count}, n_cells={len(self.mesh)}, workers={self.workers})"
