"""Option sets for grid building, segmentation and click selection.

Options can be created directly or loaded from a YAML file such as::

    spatial_index:
      resolution: [20, 20, 20]
      crop_y_fraction: [0.1, 0.1]
    segmentation:
      min_points_for_label: 10
    selection:
      color_distance_threshold: 0.32
      enable_floor_protection: true
"""

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Dict, Optional, Tuple

import yaml

from .types import ConfigError, InvalidResolutionError


@dataclass
class SpatialIndexOptions:
    resolution: Tuple[int, int, int] = (20, 20, 20)
    crop_y_fraction: Tuple[float, float] = (0.1, 0.1)
    min_validity: Optional[float] = None

    def validate(self) -> 'SpatialIndexOptions':
        if len(self.resolution) != 3:
            raise InvalidResolutionError(f"Resolution must have 3 axes, got {self.resolution!r}")
        if any(int(r) <= 0 for r in self.resolution):
            raise InvalidResolutionError(f"Resolution axes must be positive, got {tuple(self.resolution)}")
        if len(self.crop_y_fraction) != 2:
            raise ConfigError(f"crop_y_fraction must be (bottom, top), got {self.crop_y_fraction!r}")
        return self


@dataclass
class SegmentationOptions:
    min_points_for_label: int = 10
    vertical_extent_fraction: float = 0.04

    def validate(self) -> 'SegmentationOptions':
        if self.min_points_for_label < 1:
            raise ConfigError("min_points_for_label must be >= 1")
        return self


@dataclass
class SelectionOptions:
    color_distance_threshold: float = 0.32
    max_visited_cells: int = 180
    max_depth: int = 5
    max_cluster_cells: int = 120
    min_cluster_cells: int = 2
    box_padding: float = 1.14
    ellipsoid_padding: float = 1.12
    enable_floor_protection: bool = True
    bottom_quantile_reject: float = 0.15
    min_protected_cells: int = 3
    upward_center_bias_factor: float = 0.08
    max_ring_radius: int = 5

    def validate(self) -> 'SelectionOptions':
        if self.color_distance_threshold < 0:
            raise ConfigError("color_distance_threshold must be >= 0")
        if not 0.0 <= self.bottom_quantile_reject < 1.0:
            raise ConfigError("bottom_quantile_reject must be in [0, 1)")
        for name in ('max_visited_cells', 'max_cluster_cells', 'min_cluster_cells'):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be >= 1")
        return self


_SECTIONS = {
    'spatial_index': SpatialIndexOptions,
    'segmentation': SegmentationOptions,
    'selection': SelectionOptions,
}

_TUPLE_FIELDS = {'resolution', 'crop_y_fraction'}


def options_from_dict(cls, values: Optional[Dict]):
    """Build an option dataclass from a plain mapping, rejecting unknown keys."""
    if values is None:
        return cls().validate()
    if not isinstance(values, dict):
        raise ConfigError(f"Expected a mapping for {cls.__name__}, got {type(values).__name__}")

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigError(f"Unknown {cls.__name__} keys: {', '.join(unknown)}")

    kwargs = {}
    for key, value in values.items():
        kwargs[key] = tuple(value) if key in _TUPLE_FIELDS and value is not None else value
    return replace(cls(), **kwargs).validate()


def load_config(path: Path) -> Dict[str, object]:
    """Load option sets from a YAML file.

    Args:
        path: YAML file with optional spatial_index, segmentation and selection sections

    Returns:
        Dictionary mapping section name to its validated options object
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    with path.open('r', encoding='utf-8') as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Top level of {path} must be a mapping")

    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ConfigError(f"Unknown config sections in {path}: {', '.join(unknown)}")

    return {name: options_from_dict(cls, data.get(name)) for name, cls in _SECTIONS.items()}
