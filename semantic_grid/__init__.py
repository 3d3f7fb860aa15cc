"""Spatial grid indexing, region segmentation and click selection for point clouds."""

from .cell_query import cell_at, face_neighbors, neighbors
from .config import SegmentationOptions, SelectionOptions, SpatialIndexOptions, load_config
from .logging_config import setup_logging
from .point_source import ArrayPointSource, TransformedBoundsProvider, read_ply_points
from .segmentation import classify_cell, describe_regions, generate_manifest, segment_regions
from .selection import apply_floor_protection, build_local_selection, format_selection_hint
from .serialization import deserialize_grid, serialize_grid, serialize_manifest
from .spatial_index import (build_spatial_grid, compose_matrix, compute_cropped_bounds,
                            compute_nominal_cell_size, transform_bounds_to_world, world_pos_to_grid_coord)
from .types import (Bounds, Cell, ConfigError, EmptyPointSourceError, Grid, GridBuildInfo,
                    InvalidResolutionError, PointCloudReadError, Region, SceneManifest,
                    SelectionResult, SemanticGridError, ShapeHint, ShapeKind)

__version__ = '0.1.0'
