"""
Growth parameters for the cellular surface model.

Provides the immutable parameter set consumed by the force rule, the divider
and the simulation driver.
"""

from dataclasses import dataclass, asdict, fields
from typing import Optional, Dict, Any

import numpy as np

# Tuned constants of the reference run. The radius of influence is expressed
# relative to the rest length when parameters are derived from a mesh.
DEFAULT_LINK_REST_LENGTH = 0.991549
DEFAULT_RADIUS_OF_INFLUENCE = 1.2939
INFLUENCE_TO_REST_RATIO = DEFAULT_RADIUS_OF_INFLUENCE / DEFAULT_LINK_REST_LENGTH


@dataclass(frozen=True)
class GrowthParameters:
    """Holds the simulation parameters for a growth run.

    The force rule moves each cell by a weighted sum of four terms:
        dP = spring_factor * (S - P) + planar_factor * (C - P)
             + bulge_factor * b * N + repulsion_factor * R

    where S is the averaged spring target, C the neighbor centroid, b the
    averaged bulge distance along the normal N, and R the summed repulsion.

    Attributes:
        link_rest_length: Target distance between linked cells.
        radius_of_influence: Distance below which unlinked cells repel.
        spring_factor: Weight of the spring term.
        planar_factor: Weight of the planar (Laplacian smoothing) term.
        bulge_factor: Weight of the bulge term along the normal.
        repulsion_factor: Weight of the repulsion term.
        split_threshold: Food level above which a cell divides.
        max_step_distance: Optional clamp on the per-step displacement. None disables it.
    """
    link_rest_length: float = DEFAULT_LINK_REST_LENGTH
    radius_of_influence: float = DEFAULT_RADIUS_OF_INFLUENCE
    spring_factor: float = 0.188446
    planar_factor: float = 0.276574
    bulge_factor: float = 0.139144
    repulsion_factor: float = 0.0938309
    split_threshold: float = 100.0
    max_step_distance: Optional[float] = None

    def __post_init__(self):
        if not self.link_rest_length > 0:
            raise ValueError(f"link_rest_length must be > 0, got {self.link_rest_length}")
        if not self.radius_of_influence > 0:
            raise ValueError(f"radius_of_influence must be > 0, got {self.radius_of_influence}")
        for name in ("spring_factor", "planar_factor", "bulge_factor", "repulsion_factor"):
            value = getattr(self, name)
            if not value >= 0:
                raise ValueError(f"{name} must be >= 0, got {value}")
        if not self.split_threshold > 0:
            raise ValueError(f"split_threshold must be > 0, got {self.split_threshold}")
        if self.max_step_distance is not None and not self.max_step_distance > 0:
            raise ValueError(f"max_step_distance must be > 0 or None, got {self.max_step_distance}")

    @classmethod
    def from_average_edge_length(cls, average_edge_length: float, **overrides) -> "GrowthParameters":
        """Derive parameters from the average edge length of the input mesh.

        The rest length is set to the average edge length and the radius of
        influence keeps its tuned ratio to the rest length. Any field can be
        overridden by keyword.
        """
        if not average_edge_length > 0:
            raise ValueError(f"average_edge_length must be > 0, got {average_edge_length}")
        values: Dict[str, Any] = {
            "link_rest_length": float(average_edge_length),
            "radius_of_influence": float(average_edge_length) * INFLUENCE_TO_REST_RATIO,
        }
        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_triangles(cls, triangles, **overrides) -> "GrowthParameters":
        """Derive parameters from a triangle soup of shape (T, 3, 3)."""
        from .geometry import GeometryCalculator

        avg = GeometryCalculator.average_edge_length(np.asarray(triangles, dtype=float))
        return cls.from_average_edge_length(avg, **overrides)

    @property
    def influence_cell_size(self) -> float:
        """Bucket width for the spatial index (twice the rest length)."""
        return 2.0 * self.link_rest_length

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GrowthParameters":
        """Build parameters from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown growth parameter(s): {sorted(unknown)}")
        return cls(**data)
