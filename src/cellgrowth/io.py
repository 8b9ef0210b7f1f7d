"""
Input/output utilities for checkpointing growth runs and parameter files.
"""

import json
import logging
from pathlib import Path
from typing import Any

import dill

from .core import CellMesh
from .parameters import GrowthParameters

logger = logging.getLogger(__name__)

# Schema version for serialized mesh checkpoints (allows migration in future)
MESH_SCHEMA_VERSION = 1
MESH_FILE_EXT = ".dill"


def _normalize_mesh_path(filepath: str | Path) -> Path:
    path = Path(filepath)
    if path.suffix.lower() != MESH_FILE_EXT:
        path = path.with_suffix(MESH_FILE_EXT)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def save_state(obj: Any, filepath: str | Path):
    """
    Save an object to a file using dill.

    Args:
        obj: Object to save (e.g., CellMesh, GrowthParameters)
        filepath: Path to save the object
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    with open(filepath, 'wb') as f:
        dill.dump(obj, f)
    logger.info("Saved state to %s", filepath)


def load_state(filepath: str | Path) -> Any:
    """
    Load an object from a file using dill.

    Args:
        filepath: Path to the saved object

    Returns:
        The loaded object
    """
    filepath = Path(filepath)

    if not filepath.exists():
        raise FileNotFoundError(f"File not found: {filepath}")

    with open(filepath, 'rb') as f:
        obj = dill.load(f)
    logger.info("Loaded state from %s", filepath)
    return obj


def save_mesh(mesh: CellMesh, filepath: str | Path, params: GrowthParameters | None = None, step: int = 0) -> Path:
    """Checkpoint a CellMesh (and optionally its parameters) to a single dill file."""
    path = _normalize_mesh_path(filepath)
    payload = {
        "schema_version": MESH_SCHEMA_VERSION,
        "mesh": mesh,
        "params": params.to_dict() if params is not None else None,
        "step": step,
    }
    with open(path, "wb") as f:
        dill.dump(payload, f)
    logger.info("Saved mesh with %d cells to %s", len(mesh), path)
    return path


def load_mesh(basepath: str | Path) -> tuple[CellMesh, GrowthParameters | None, int]:
    """Load a checkpoint written by :func:`save_mesh`.

    Returns:
        Tuple of (mesh, params or None, step).
    """
    path = _normalize_mesh_path(basepath)
    if not path.exists():
        raise FileNotFoundError(
            f"Mesh file not found: {path} (only {MESH_FILE_EXT} assets are supported)"
        )

    with open(path, "rb") as f:
        payload = dill.load(f)

    schema_version = payload.get("schema_version")
    if schema_version != MESH_SCHEMA_VERSION:
        raise ValueError(
            f"Unsupported mesh schema version {schema_version} (expected {MESH_SCHEMA_VERSION})"
        )

    mesh = payload.get("mesh")
    if not isinstance(mesh, CellMesh):
        raise TypeError("Loaded payload does not contain a CellMesh instance")
    params = payload.get("params")
    return mesh, GrowthParameters.from_dict(params) if params is not None else None, int(payload.get("step", 0))


def save_parameters(params: GrowthParameters, filepath: str | Path) -> None:
    """Write growth parameters to a JSON file."""
    path = Path(filepath)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(params.to_dict(), f, indent=2)


def load_parameters(filepath: str | Path) -> GrowthParameters:
    """Read growth parameters from a JSON file written by :func:`save_parameters`."""
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Parameter file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Parameter file {path} must contain a JSON object")
    return GrowthParameters.from_dict(data)
