"""
Core data structures for the cellular growth mesh.
"""

import logging
from typing import List, Optional

import numpy as np
from scipy.spatial import cKDTree

from .geometry import GeometryCalculator

logger = logging.getLogger(__name__)


class TopologyError(RuntimeError):
    """Raised when a link operation would break the link graph invariants."""


class CellMesh:
    """Arena of cells forming a closed growth surface.

    Cells are identified by dense integer indices into parallel containers.
    Indices only grow: cells are appended and never removed.

    Links are kept as unordered, duplicate-free lists. The cyclic order around a
    cell is reconstructed on demand by :meth:`ordered_links`.

    Attributes:
        positions: (N, 3) float array of cell positions.
        normals: (N, 3) float array of unit surface normals.
        food: (N,) float array of food levels.
        links: List of N neighbor lists.
    """

    def __init__(self):
        """Initialize an empty mesh."""
        self._positions = np.empty((0, 3), dtype=float)
        self._normals = np.empty((0, 3), dtype=float)
        self._food = np.empty((0,), dtype=float)
        self._count = 0
        self.links: List[List[int]] = []

    # ------------------------------------------------------------------ #
    # Storage
    # ------------------------------------------------------------------ #

    @property
    def positions(self) -> np.ndarray:
        return self._positions[:self._count]

    @property
    def normals(self) -> np.ndarray:
        return self._normals[:self._count]

    @property
    def food(self) -> np.ndarray:
        return self._food[:self._count]

    def __len__(self) -> int:
        return self._count

    def __repr__(self):
        return f"CellMesh(n_cells={self._count}, n_links={self.link_count()})"

    def _reserve(self, capacity: int) -> None:
        if capacity <= self._positions.shape[0]:
            return
        capacity = max(capacity, 2 * self._positions.shape[0], 16)
        for name, shape in (("_positions", (capacity, 3)), ("_normals", (capacity, 3)), ("_food", (capacity,))):
            grown = np.zeros(shape, dtype=float)
            old = getattr(self, name)
            grown[:old.shape[0]] = old
            setattr(self, name, grown)

    def add_cell(self, position: np.ndarray, normal: Optional[np.ndarray] = None, food: float = 0.0) -> int:
        """Append a cell with no links and return its index.

        Raises:
            ValueError: If the position is not a finite 3-vector or food is negative.
        """
        position = np.asarray(position, dtype=float)
        if position.shape != (3,) or not np.all(np.isfinite(position)):
            raise ValueError(f"Cell position must be a finite 3-vector, got {position}")
        if food < 0:
            raise ValueError(f"Cell food must be >= 0, got {food}")
        index = self._count
        self._reserve(index + 1)
        self._positions[index] = position
        self._normals[index] = 0.0 if normal is None else np.asarray(normal, dtype=float)
        self._food[index] = food
        self.links.append([])
        self._count += 1
        return index

    def replace_state(self, positions: np.ndarray, normals: np.ndarray, food: Optional[np.ndarray] = None) -> None:
        """Swap in new position/normal (and optionally food) buffers.

        The given arrays must cover exactly the current cell count. They are
        copied into fresh buffers, so readers never see a mix of old and new values.
        """
        positions = np.asarray(positions, dtype=float)
        normals = np.asarray(normals, dtype=float)
        if positions.shape != (self._count, 3) or normals.shape != (self._count, 3):
            raise ValueError(
                f"State buffers must have shape ({self._count}, 3), got {positions.shape} and {normals.shape}"
            )
        new_food = self.food.copy() if food is None else np.asarray(food, dtype=float)
        if new_food.shape != (self._count,):
            raise ValueError(f"Food buffer must have shape ({self._count},), got {new_food.shape}")
        self._positions = positions.copy()
        self._normals = normals.copy()
        self._food = new_food.copy()

    # ------------------------------------------------------------------ #
    # Link primitives
    # ------------------------------------------------------------------ #

    def _check_index(self, i: int) -> None:
        if not 0 <= i < self._count:
            raise TopologyError(f"Cell index {i} out of range (n_cells={self._count})")

    def _find(self, i: int, j: int, op: str) -> int:
        try:
            return self.links[i].index(j)
        except ValueError:
            raise TopologyError(f"{op}: cell {j} not found in links of cell {i}") from None

    def is_linked(self, i: int, j: int) -> bool:
        return j in self.links[i]

    def link(self, i: int, j: int) -> None:
        """Create the symmetric link i <-> j.

        Raises:
            TopologyError: On a self-link or if the link already exists.
        """
        self._check_index(i)
        self._check_index(j)
        if i == j:
            raise TopologyError(f"Cannot link cell {i} to itself")
        if j in self.links[i] or i in self.links[j]:
            raise TopologyError(f"Cells {i} and {j} are already linked")
        self.links[i].append(j)
        self.links[j].append(i)

    def unlink(self, i: int, j: int) -> None:
        """Remove the symmetric link i <-> j.

        Raises:
            TopologyError: If either direction of the link is missing.
        """
        pos_ij = self._find(i, j, "unlink")
        pos_ji = self._find(j, i, "unlink")
        del self.links[i][pos_ij]
        del self.links[j][pos_ji]

    def change_link(self, i: int, old: int, new: int) -> None:
        """Rewire the link i <-> old into i <-> new, keeping its slot in links[i].

        Raises:
            TopologyError: If i is not linked to `old` or is already linked to `new`.
        """
        pos = self._find(i, old, "change_link")
        self._check_index(new)
        if new == i or new in self.links[i]:
            raise TopologyError(f"change_link: cell {i} cannot be linked to {new}")
        pos_back = self._find(old, i, "change_link")
        self.links[i][pos] = new
        del self.links[old][pos_back]
        self.links[new].append(i)

    def insert_link_before(self, i: int, before: int, j: int) -> None:
        """Link i <-> j, placing j just before `before` in links[i]."""
        pos = self._find(i, before, "insert_link_before")
        self.link(i, j)
        self.links[i].pop()
        self.links[i].insert(pos, j)

    def insert_link_after(self, i: int, after: int, j: int) -> None:
        """Link i <-> j, placing j just after `after` in links[i]."""
        pos = self._find(i, after, "insert_link_after")
        self.link(i, j)
        self.links[i].pop()
        self.links[i].insert(pos + 1, j)

    def link_count(self) -> int:
        """Number of undirected links."""
        return sum(len(l) for l in self.links) // 2

    # ------------------------------------------------------------------ #
    # Ring ordering and normals
    # ------------------------------------------------------------------ #

    def ordered_links(self, i: int, reference: Optional[np.ndarray] = None) -> List[int]:
        """Return links[i] in cyclic order around cell i.

        The order is reconstructed by walking the adjacency among the neighbors
        themselves: consecutive entries are mutually linked. A depth-first
        search looks for a closed cycle through every neighbor; if the ring
        is open (boundary) or broken, the longest walk found is returned
        followed by the remaining neighbors.

        The cycle is oriented counter-clockwise about `reference` (defaults to
        the stored normal of cell i), i.e. its fan normal points along it.
        """
        ring = list(self.links[i])
        n = len(ring)
        if n < 3:
            return ring
        members = set(ring)
        adjacency = {j: [k for k in self.links[j] if k in members] for j in ring}

        # Start from a neighbor with the fewest ring-adjacent entries so open
        # rings are walked end to end.
        start = min(ring, key=lambda j: len(adjacency[j]))
        best: List[int] = [start]
        path: List[int] = [start]
        visited = {start}
        budget = [64 * n]

        def walk() -> bool:
            nonlocal best
            if len(path) > len(best):
                best = list(path)
            if len(path) == n:
                return start in adjacency[path[-1]]
            budget[0] -= 1
            if budget[0] <= 0:
                return False
            for k in adjacency[path[-1]]:
                if k in visited:
                    continue
                visited.add(k)
                path.append(k)
                if walk():
                    return True
                path.pop()
                visited.discard(k)
            return False

        if walk():
            cycle = list(path)
        else:
            seen = set(best)
            cycle = best + [j for j in ring if j not in seen]

        if reference is None:
            reference = self._normals[i]
        center = self._positions[i]
        ring_positions = self._positions[cycle]
        fan = GeometryCalculator.fan_normal(center, ring_positions)
        if np.dot(fan, reference) < 0:
            cycle.reverse()
        return cycle

    def cell_normal(self, i: int, reference: Optional[np.ndarray] = None) -> np.ndarray:
        """Estimate the unit normal of cell i from its neighbor ring.

        Sums the triangle normals of the fan over mutually linked consecutive
        neighbors. Falls back to a least-squares plane fit, then to the
        reference normal, when the fan is degenerate.
        """
        if reference is None:
            reference = self._normals[i]
        cycle = self.ordered_links(i, reference)
        center = self._positions[i]
        normal = np.zeros(3, dtype=float)
        if len(cycle) >= 2:
            closed = [cycle[k] in self.links[cycle[k - 1]] for k in range(len(cycle))]
            normal = GeometryCalculator.normalize(
                GeometryCalculator.fan_normal(center, self._positions[cycle], closed)
            )
        if not np.any(normal):
            points = np.vstack([center[None, :], self._positions[cycle]]) if cycle else center[None, :]
            normal = GeometryCalculator.plane_fit_normal(points, reference)
        if not np.any(normal):
            normal = GeometryCalculator.normalize(reference)
        if np.dot(normal, reference) < 0 and np.any(reference):
            normal = -normal
        return normal

    # ------------------------------------------------------------------ #
    # Validation
    # ------------------------------------------------------------------ #

    def validate(self, normal_tol: float = 1e-6, min_links: int = 2) -> None:
        """
        Validate the structural integrity of the mesh.

        Checks that:
        - Links hold no self-reference and no duplicates
        - Links are symmetric
        - Every cell has at least `min_links` links
        - Positions are finite, normals have unit length, food is non-negative

        Raises:
            ValueError: If any validation check fails
        """
        if len(self.links) != self._count:
            raise ValueError(f"Link table has {len(self.links)} entries for {self._count} cells")
        for i, links in enumerate(self.links):
            if i in links:
                raise ValueError(f"Cell {i}: links contain a self-reference")
            if len(set(links)) != len(links):
                raise ValueError(f"Cell {i}: links contain duplicates {links}")
            if len(links) < min_links:
                raise ValueError(f"Cell {i}: has {len(links)} links, expected at least {min_links}")
            for j in links:
                if not 0 <= j < self._count:
                    raise ValueError(f"Cell {i}: link to unknown cell {j}")
                if i not in self.links[j]:
                    raise ValueError(f"Cells {i} and {j}: link is not symmetric")
        if not np.all(np.isfinite(self.positions)):
            raise ValueError("Mesh contains non-finite positions")
        lengths = np.linalg.norm(self.normals, axis=1)
        bad = np.flatnonzero(np.abs(lengths - 1.0) > normal_tol)
        if bad.size:
            raise ValueError(f"Cell {int(bad[0])}: normal has length {lengths[bad[0]]}, expected 1")
        if np.any(self.food < 0):
            raise ValueError("Mesh contains negative food levels")

    # ------------------------------------------------------------------ #
    # Construction
    # ------------------------------------------------------------------ #

    @classmethod
    def from_triangles(cls, triangles: np.ndarray, weld_tol: float = 1e-9) -> "CellMesh":
        """
        Build a mesh from a triangle soup.

        One cell is created per unique triangle corner; corners closer than
        `weld_tol` are welded into the same cell. Every triangle edge becomes
        a link. Initial normals are the normalized sum of the incident face
        normals, so they follow the input winding.

        Args:
            triangles: Array-like of shape (T, 3, 3).
            weld_tol: Distance below which corners are considered identical.

        Returns:
            CellMesh with links and normals populated.

        Raises:
            ValueError: If the input is empty, malformed or non-finite.
        """
        tris = np.asarray(triangles, dtype=float)
        if tris.ndim != 3 or tris.shape[1:] != (3, 3) or tris.shape[0] == 0:
            raise ValueError(f"Triangles must have shape (T, 3, 3) with T > 0, got {tris.shape}")
        if not np.all(np.isfinite(tris)):
            raise ValueError("Triangles contain non-finite coordinates")

        corners = tris.reshape(-1, 3)
        tree = cKDTree(corners)
        parent = list(range(len(corners)))

        def find(x: int) -> int:
            while parent[x] != x:
                parent[x] = parent[parent[x]]
                x = parent[x]
            return x

        for a, b in tree.query_pairs(r=weld_tol):
            ra, rb = find(a), find(b)
            if ra != rb:
                parent[max(ra, rb)] = min(ra, rb)

        # Cells are numbered in order of first appearance
        cell_of_root = {}
        corner_cell = np.empty(len(corners), dtype=int)
        for c in range(len(corners)):
            root = find(c)
            if root not in cell_of_root:
                cell_of_root[root] = len(cell_of_root)
            corner_cell[c] = cell_of_root[root]

        mesh = cls()
        normals = np.zeros((len(cell_of_root), 3), dtype=float)
        for root, _ in sorted(cell_of_root.items(), key=lambda item: item[1]):
            mesh.add_cell(corners[root])

        faces = corner_cell.reshape(-1, 3)
        for t, (a, b, c) in enumerate(faces):
            if a == b or b == c or c == a:
                logger.warning("Skipping degenerate triangle %d", t)
                continue
            face_normal = GeometryCalculator.triangle_normal(*mesh.positions[[a, b, c]])
            for u, v in ((a, b), (b, c), (c, a)):
                normals[u] += face_normal
                if v not in mesh.links[u]:
                    mesh.link(int(u), int(v))

        for i in range(len(mesh)):
            mesh._normals[i] = GeometryCalculator.normalize(normals[i])
        # Refine with the ring-based estimate so every normal comes from one rule
        refined = np.array([mesh.cell_normal(i) for i in range(len(mesh))]).reshape(-1, 3)
        mesh._normals[:len(mesh)] = refined

        logger.info("Built mesh with %d cells and %d links from %d triangles",
                    len(mesh), mesh.link_count(), len(tris))
        return mesh
