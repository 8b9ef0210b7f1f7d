"""
cellgrowth: A cellular surface growth simulation framework.
"""

__version__ = "0.1.0"

from .parameters import GrowthParameters
from .geometry import GeometryCalculator
from .spatial import SpatialIndex
from .core import CellMesh, TopologyError
from .forces import ForceField, partition_indices
from .division import Divider, split_cell, choose_cleavage
from .simulation import Simulation
from .mesh_ops import mesh_edges, triangle_indexes, triangulate, vertex_attributes
from .builders import build_tetrahedron, build_octahedron, build_icosahedron, build_icosphere
from .io import save_state, load_state, save_mesh, load_mesh, save_parameters, load_parameters
from .logging_config import setup_logging

__all__ = [
    "GrowthParameters",
    "GeometryCalculator",
    "SpatialIndex",
    "CellMesh",
    "TopologyError",
    "ForceField",
    "partition_indices",
    "Divider",
    "split_cell",
    "choose_cleavage",
    "Simulation",
    "mesh_edges",
    "triangle_indexes",
    "triangulate",
    "vertex_attributes",
    "build_tetrahedron",
    "build_octahedron",
    "build_icosahedron",
    "build_icosphere",
    "save_state",
    "load_state",
    "save_mesh",
    "load_mesh",
    "save_parameters",
    "load_parameters",
    "setup_logging",
]
