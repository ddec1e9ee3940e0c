"""
Adaptivity configuration.

Parameters that steer an adaptation cycle (error thresholds, refinement
level limits, balancing cap, geometric tolerances) are collected in one
explicit dataclass that is handed to the mesh and the adaptation driver.
Nothing in the package reads global state.

JSON file format:
    {
      "adaptivity": {
        "max_permitted_error": 1e-3,
        "min_permitted_error": 1e-5,
        "max_refinement_level": 5,
        "min_refinement_level": 0,
        "max_balance_passes": 20
      }
    }

Keys that are not fields of AdaptivityConfig are rejected.
"""

import json
import logging
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)


@dataclass
class AdaptivityConfig:
    """
    Settings for error-driven adaptation.

    Attributes:
        max_permitted_error: Leaves with a larger indicator are split
        min_permitted_error: Leaves with a smaller indicator are merge candidates
        max_refinement_level: Leaves at this level are never split
        min_refinement_level: Leaves at this level are never merged away
        max_balance_passes: Cap on 2:1 balancing passes before BalanceError
        node_tol: Distance below which two node positions are the same node
        geometry_tol: Tolerance on local coordinates when locating a point
            in an element (reference element is [0,1]^d)
        recovery_order: Polynomial order of the Z2 flux recovery
            (None = element order)
        normalise_errors: Divide Z2 indicators by the global flux norm
    """
    max_permitted_error: float = 1.0e-3
    min_permitted_error: float = 1.0e-5
    max_refinement_level: int = 5
    min_refinement_level: int = 0
    max_balance_passes: int = 20
    node_tol: float = 1.0e-10
    geometry_tol: float = 1.0e-8
    recovery_order: Optional[int] = None
    normalise_errors: bool = True

    def __post_init__(self):
        if self.min_permitted_error < 0.0:
            raise ValueError("min_permitted_error must be non-negative")
        if self.max_permitted_error < self.min_permitted_error:
            raise ValueError(
                f"max_permitted_error ({self.max_permitted_error}) must not be "
                f"smaller than min_permitted_error ({self.min_permitted_error})"
            )
        if self.min_refinement_level < 0:
            raise ValueError("min_refinement_level must be non-negative")
        if self.max_refinement_level < self.min_refinement_level:
            raise ValueError(
                f"max_refinement_level ({self.max_refinement_level}) must not be "
                f"smaller than min_refinement_level ({self.min_refinement_level})"
            )
        if self.max_balance_passes < 1:
            raise ValueError("Need at least 1 balancing pass")
        if self.node_tol <= 0.0 or self.geometry_tol <= 0.0:
            raise ValueError("Tolerances must be positive")
        if self.recovery_order is not None and self.recovery_order < 0:
            raise ValueError("recovery_order must be non-negative")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AdaptivityConfig':
        """Create config from a plain dictionary, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown adaptivity settings: {sorted(unknown)}")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(filename: Union[str, Path]) -> AdaptivityConfig:
    """
    Load adaptivity configuration from a JSON file.

    Parameters:
        filename: Path to JSON file with an "adaptivity" section

    Returns:
        AdaptivityConfig (defaults for missing keys)
    """
    path = Path(filename)
    logger.info(f"Loading adaptivity configuration from: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Configuration root must be an object, got {type(data).__name__}")

    return AdaptivityConfig.from_dict(data.get("adaptivity", {}))


def save_config(config: AdaptivityConfig, filename: Union[str, Path]) -> None:
    """Write configuration to a JSON file (inverse of load_config)."""
    path = Path(filename)
    with path.open("w", encoding="utf-8") as f:
        json.dump({"adaptivity": config.to_dict()}, f, indent=2)
    logger.debug(f"Saved adaptivity configuration to: {path}")
