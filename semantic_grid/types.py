"""Shared data model for the spatial grid, semantic regions and click selections."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, NamedTuple, Optional, Set, Tuple

import numpy as np

CellKey = Tuple[int, int, int]
Resolution = Tuple[int, int, int]


class SemanticGridError(Exception):
    """Base class for errors raised by semantic_grid."""


class InvalidResolutionError(SemanticGridError, ValueError):
    """Grid resolution has a non-positive axis."""


class EmptyPointSourceError(SemanticGridError):
    """The point source yielded no points at all."""


class PointCloudReadError(SemanticGridError):
    """A point cloud file could not be read."""


class ConfigError(SemanticGridError, ValueError):
    """A configuration file or option set is invalid."""


def _vec3(values) -> np.ndarray:
    return np.asarray(values, dtype=np.float64).reshape(3).copy()


class Bounds:
    """Axis-aligned bounding box.

    An empty box has min=+inf and max=-inf so that expanding it by any point
    yields a box around that point.
    """

    __slots__ = ('min', 'max')

    def __init__(self, min_pt=None, max_pt=None):
        self.min = _vec3(min_pt) if min_pt is not None else np.full(3, np.inf)
        self.max = _vec3(max_pt) if max_pt is not None else np.full(3, -np.inf)

    @classmethod
    def from_points(cls, points: np.ndarray) -> 'Bounds':
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        if len(points) == 0:
            return cls()
        return cls(points.min(axis=0), points.max(axis=0))

    def copy(self) -> 'Bounds':
        return Bounds(self.min, self.max)

    def is_empty(self) -> bool:
        return bool(np.any(self.max < self.min))

    @property
    def size(self) -> np.ndarray:
        if self.is_empty():
            return np.zeros(3)
        return self.max - self.min

    @property
    def center(self) -> np.ndarray:
        if self.is_empty():
            return np.zeros(3)
        return (self.min + self.max) / 2.0

    def contains_point(self, point) -> bool:
        p = np.asarray(point, dtype=np.float64)
        return bool(np.all(p >= self.min) and np.all(p <= self.max))

    def clamp_point(self, point) -> np.ndarray:
        return np.clip(np.asarray(point, dtype=np.float64), self.min, self.max)

    def expand_by_point(self, point) -> 'Bounds':
        p = np.asarray(point, dtype=np.float64)
        self.min = np.minimum(self.min, p)
        self.max = np.maximum(self.max, p)
        return self

    def union(self, other: 'Bounds') -> 'Bounds':
        self.min = np.minimum(self.min, other.min)
        self.max = np.maximum(self.max, other.max)
        return self

    def to_dict(self) -> Dict[str, List[float]]:
        return {'min': self.min.tolist(), 'max': self.max.tolist()}

    def __eq__(self, other) -> bool:
        if not isinstance(other, Bounds):
            return NotImplemented
        return bool(np.array_equal(self.min, other.min) and np.array_equal(self.max, other.max))

    def __repr__(self) -> str:
        return f"Bounds(min={self.min.tolist()}, max={self.max.tolist()})"


class PointRecord(NamedTuple):
    """One point handed out by a point source."""
    index: int
    position: Tuple[float, float, float]
    color: Tuple[float, float, float]
    validity: float = 1.0


@dataclass
class Cell:
    """Aggregate statistics of the points binned into one grid cell."""
    grid_pos: CellKey
    count: int
    mean_position: np.ndarray
    mean_color: np.ndarray
    color_variance: float
    bounds: Bounds
    density: float
    point_indices: List[int] = field(default_factory=list)

    @property
    def key(self) -> CellKey:
        return self.grid_pos


@dataclass
class GridBuildInfo:
    """What happened while building a grid."""
    total_points: int = 0
    indexed_points: int = 0
    skipped_invalid: int = 0
    used_fallback: bool = False
    degenerate_bounds: bool = False
    elapsed_ms: float = 0.0
    raw_bounds: Optional[Bounds] = None

    @property
    def dropped_points(self) -> int:
        return self.total_points - self.indexed_points


@dataclass
class Grid:
    """Immutable-by-convention spatial index over a point cloud.

    Cells are keyed by the packed integer key of their grid position; use
    :meth:`get` for lookups by (x, y, z).
    """
    resolution: Resolution
    bounds: Bounds
    cell_size: np.ndarray
    cells: Dict[int, Cell] = field(default_factory=dict)
    build_info: GridBuildInfo = field(default_factory=GridBuildInfo)

    def pack(self, x: int, y: int, z: int) -> int:
        _, ry, rz = self.resolution
        return (x * ry + y) * rz + z

    def in_range(self, x: int, y: int, z: int) -> bool:
        rx, ry, rz = self.resolution
        return 0 <= x < rx and 0 <= y < ry and 0 <= z < rz

    def get(self, x: int, y: int, z: int) -> Optional[Cell]:
        if not self.in_range(x, y, z):
            return None
        return self.cells.get(self.pack(x, y, z))

    def __len__(self) -> int:
        return len(self.cells)

    def __iter__(self) -> Iterator[Cell]:
        return iter(self.cells.values())


@dataclass
class Region:
    """A maximal face-connected group of cells sharing one label."""
    label: str
    member_cells: Set[CellKey]
    bounds: Bounds
    dominant_color: np.ndarray
    confidence: float
    point_count: int = 0
    ordered_cells: List[CellKey] = field(default_factory=list)


@dataclass
class SceneManifest:
    description: str
    regions: List[Region]
    grid: Grid


class ShapeKind(str, Enum):
    SPHERE = 'SPHERE'
    ELLIPSOID = 'ELLIPSOID'
    BOX = 'BOX'


@dataclass
class ShapeHint:
    """Best-fit edit shape for a selection."""
    kind: ShapeKind
    position: np.ndarray
    radius: Optional[float] = None
    half_extents: Optional[np.ndarray] = None


@dataclass
class FloorFilterResult:
    cells: List[Cell]
    applied: bool
    floor_rejected_cells: int
    reason: str


@dataclass
class SelectionDiagnostics:
    visited_cells: int = 0
    rejected_cells: int = 0
    reasons: List[str] = field(default_factory=list)
    accepted_before_floor_filter: int = 0
    accepted_after_floor_filter: int = 0
    floor_rejected_cells: int = 0
    floor_protection_applied: bool = False


@dataclass
class SelectionResult:
    seed_cell: CellKey
    member_cells: List[CellKey]
    bounds: Bounds
    centroid: np.ndarray
    suggested_shape: ShapeHint
    confidence: float
    diagnostics: SelectionDiagnostics
