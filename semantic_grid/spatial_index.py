"""Bin a point cloud into a fixed-resolution 3D grid of cell statistics.

The builder reads every point once, crops a configurable fraction off the
bottom and top of the vertical (Y) extent to drop likely ground/sky clutter,
and accumulates per-cell count, mean position, mean/variance color, occupied
extent and contributing point indices.
"""

import logging
import time
from typing import Iterable, Optional, Tuple

import numpy as np
from scipy.spatial.transform import Rotation

from .config import SpatialIndexOptions
from .types import Bounds, Cell, EmptyPointSourceError, Grid, GridBuildInfo, Resolution

logger = logging.getLogger(__name__)

MIN_CELL_VOLUME = 1e-9


def pack_grid_key(x: int, y: int, z: int, resolution: Resolution) -> int:
    """Pack a grid index triple into one integer key."""
    _, ry, rz = resolution
    return (int(x) * ry + int(y)) * rz + int(z)


def unpack_grid_key(key: int, resolution: Resolution) -> Tuple[int, int, int]:
    _, ry, rz = resolution
    key = int(key)
    return key // (ry * rz), (key // rz) % ry, key % rz


def is_degenerate_bounds(bounds: Bounds) -> bool:
    """True if any bound is non-finite or any axis has non-positive size."""
    if not (np.all(np.isfinite(bounds.min)) and np.all(np.isfinite(bounds.max))):
        return True
    return bool(np.any(bounds.max - bounds.min <= 0))


def compute_cropped_bounds(raw_bounds: Bounds,
                           crop_fractions: Tuple[float, float] = (0.1, 0.1)) -> Tuple[Bounds, bool]:
    """Shrink the vertical extent of the bounds by a fraction at each end.

    Args:
        raw_bounds: Bounds of the full point cloud
        crop_fractions: (bottom, top) fractions of the height to remove

    Returns:
        cropped: The cropped bounds, or a copy of raw_bounds on fallback
        used_fallback: True if cropping would have produced an invalid box
    """
    bounds = raw_bounds.copy()
    height = float(raw_bounds.max[1] - raw_bounds.min[1])

    if not np.isfinite(height) or height <= 0:
        return bounds, True

    crop_bottom, crop_top = crop_fractions
    min_y = raw_bounds.min[1] + height * crop_bottom
    max_y = raw_bounds.max[1] - height * crop_top

    if not max_y > min_y:
        return bounds, True

    bounds.min[1] = min_y
    bounds.max[1] = max_y
    return bounds, False


def compute_nominal_cell_size(bounds: Bounds, resolution: Resolution) -> np.ndarray:
    """Per-axis cell size; 0 for an axis with zero extent."""
    size = bounds.max - bounds.min
    res = np.asarray(resolution, dtype=np.float64)
    with np.errstate(invalid='ignore'):
        return np.where(size > 0, size / res, 0.0)


def grid_coords(positions: np.ndarray, bounds: Bounds, resolution: Resolution) -> np.ndarray:
    """Map (N, 3) positions to (N, 3) integer grid indices.

    Positions are normalised against the bounds and clamped into [0, 1], so
    callers must do their own inclusion test when out-of-bounds points should
    be rejected rather than clamped.
    """
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    size = bounds.max - bounds.min
    valid_axis = np.isfinite(size) & (size > 0)
    safe_size = np.where(valid_axis, size, 1.0)

    normalized = np.clip((positions - bounds.min) / safe_size, 0.0, 1.0)
    normalized = np.where(valid_axis, normalized, 0.0)

    res = np.asarray(resolution, dtype=np.int64)
    indices = np.floor(normalized * res).astype(np.int64)
    return np.clip(indices, 0, np.maximum(res - 1, 0))


def world_pos_to_grid_coord(position, bounds: Bounds, resolution: Resolution,
                            clamp: bool = False) -> Optional[Tuple[int, int, int]]:
    """Map one world position to its grid index.

    Args:
        position: (x, y, z) world position
        bounds: Bounds the grid covers
        resolution: Grid resolution per axis
        clamp: Clamp out-of-bounds positions to the boundary cells instead of
            returning None

    Returns:
        (x, y, z) grid index, or None if the position is outside and clamp is False
    """
    position = np.asarray(position, dtype=np.float64)
    if not clamp and not bounds.contains_point(position):
        return None
    if clamp:
        position = bounds.clamp_point(position)

    gx, gy, gz = grid_coords(position, bounds, resolution)[0]
    return int(gx), int(gy), int(gz)


def compose_matrix(translation=(0.0, 0.0, 0.0), quaternion=(0.0, 0.0, 0.0, 1.0),
                   scale=(1.0, 1.0, 1.0)) -> np.ndarray:
    """Build a 4x4 transform from translation, (x, y, z, w) quaternion and scale."""
    matrix = np.eye(4)
    rotation = Rotation.from_quat(np.asarray(quaternion, dtype=np.float64)).as_matrix()
    matrix[:3, :3] = rotation * np.asarray(scale, dtype=np.float64)
    matrix[:3, 3] = np.asarray(translation, dtype=np.float64)
    return matrix


def transform_bounds_to_world(local_bounds: Bounds, matrix_world: np.ndarray) -> Bounds:
    """Transform a local AABB by a 4x4 matrix and return the enclosing world AABB."""
    if local_bounds.is_empty():
        return Bounds()

    mn, mx = local_bounds.min, local_bounds.max
    corners = np.array([
        [mn[0], mn[1], mn[2]], [mx[0], mn[1], mn[2]], [mx[0], mx[1], mn[2]], [mn[0], mx[1], mn[2]],
        [mn[0], mn[1], mx[2]], [mx[0], mn[1], mx[2]], [mx[0], mx[1], mx[2]], [mn[0], mx[1], mx[2]],
    ])
    homogeneous = np.hstack([corners, np.ones((8, 1))])
    transformed = homogeneous @ np.asarray(matrix_world, dtype=np.float64).T
    return Bounds.from_points(transformed[:, :3] / transformed[:, 3:4])


def _resolve_bounds(source, bounds_provider) -> Optional[Bounds]:
    if bounds_provider is None:
        bounds_provider = source
    if isinstance(bounds_provider, Bounds):
        return bounds_provider
    if hasattr(bounds_provider, 'bounds'):
        return bounds_provider.bounds()
    if callable(bounds_provider):
        return bounds_provider()
    return None


def _drain_source(source: Iterable) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Copy every point out of the source into owned arrays.

    Sources may reuse the objects they yield, so values are copied field by
    field as they arrive.
    """
    if hasattr(source, 'as_arrays'):
        indices, positions, colors, validity = source.as_arrays()
        return (np.array(indices, dtype=np.int64), np.array(positions, dtype=np.float64),
                np.array(colors, dtype=np.float64), np.array(validity, dtype=np.float64))

    indices, positions, colors, validity = [], [], [], []
    for index, position, color, valid in source:
        indices.append(int(index))
        positions.append((float(position[0]), float(position[1]), float(position[2])))
        colors.append((float(color[0]), float(color[1]), float(color[2])))
        validity.append(float(valid))

    return (np.array(indices, dtype=np.int64),
            np.array(positions, dtype=np.float64).reshape(-1, 3),
            np.array(colors, dtype=np.float64).reshape(-1, 3),
            np.array(validity, dtype=np.float64))


def _sum_by_cell(inverse: np.ndarray, values: np.ndarray, num_cells: int) -> np.ndarray:
    return np.column_stack([
        np.bincount(inverse, weights=values[:, axis], minlength=num_cells)
        for axis in range(values.shape[1])
    ])


def _empty_grid(resolution: Resolution, bounds: Bounds, info: GridBuildInfo) -> Grid:
    return Grid(resolution=resolution, bounds=bounds.copy(), cell_size=np.zeros(3), cells={},
                build_info=info)


def build_spatial_grid(source, bounds_provider=None,
                       options: Optional[SpatialIndexOptions] = None) -> Grid:
    """Build the spatial grid for a point cloud.

    Args:
        source: Iterable of (index, position, color, validity) records. Sources
            with an ``as_arrays()`` method are copied in bulk.
        bounds_provider: Bounds, object with ``bounds()`` or callable returning
            the raw point cloud bounds. Defaults to ``source.bounds()``; if
            neither exists the bounds are computed from the finite points.
        options: Resolution, vertical crop and validity filter

    Returns:
        Grid with one Cell per occupied grid position. Degenerate bounds give an
        empty grid with ``build_info.degenerate_bounds`` set.

    Raises:
        InvalidResolutionError: A resolution axis is not positive
        EmptyPointSourceError: The source yielded no points
    """
    options = (options or SpatialIndexOptions()).validate()
    resolution = tuple(int(r) for r in options.resolution)
    rx, ry, rz = resolution
    info = GridBuildInfo()
    start = time.perf_counter()

    indices, positions, colors, validity = _drain_source(source)
    info.total_points = len(indices)
    if info.total_points == 0:
        raise EmptyPointSourceError("Point source yielded no points")

    finite = np.all(np.isfinite(positions), axis=1)
    raw_bounds = _resolve_bounds(source, bounds_provider)
    if raw_bounds is None:
        raw_bounds = Bounds.from_points(positions[finite])

    info.raw_bounds = raw_bounds.copy()
    if is_degenerate_bounds(raw_bounds):
        logger.warning(f"Degenerate bounding box {raw_bounds}; returning empty grid")
        info.degenerate_bounds = True
        return _empty_grid(resolution, raw_bounds, info)

    cropped, used_fallback = compute_cropped_bounds(raw_bounds, options.crop_y_fraction)
    info.used_fallback = used_fallback
    if used_fallback:
        logger.warning("Y-crop fallback to raw bounds (scene too small or crop too large)")

    cell_size = compute_nominal_cell_size(cropped, resolution)
    nominal_volume = max(float(np.prod(cell_size)), MIN_CELL_VOLUME)

    keep = finite.copy()
    keep &= np.all(positions >= cropped.min, axis=1) & np.all(positions <= cropped.max, axis=1)
    if options.min_validity is not None:
        invalid = validity < options.min_validity
        info.skipped_invalid = int(np.sum(invalid))
        keep &= ~invalid

    indices, positions, colors = indices[keep], positions[keep], colors[keep]
    info.indexed_points = len(indices)

    cells = {}
    if info.indexed_points > 0:
        coords = grid_coords(positions, cropped, resolution)
        keys = (coords[:, 0] * ry + coords[:, 1]) * rz + coords[:, 2]
        unique_keys, inverse, counts = np.unique(keys, return_inverse=True, return_counts=True)
        inverse = inverse.reshape(-1)
        num_cells = len(unique_keys)

        sum_pos = _sum_by_cell(inverse, positions, num_cells)
        sum_color = _sum_by_cell(inverse, colors, num_cells)
        sum_color_sq = _sum_by_cell(inverse, colors * colors, num_cells)

        min_pos = np.full((num_cells, 3), np.inf)
        max_pos = np.full((num_cells, 3), -np.inf)
        np.minimum.at(min_pos, inverse, positions)
        np.maximum.at(max_pos, inverse, positions)

        order = np.argsort(inverse, kind='stable')
        index_groups = np.split(indices[order], np.cumsum(counts)[:-1])

        inv_counts = 1.0 / counts[:, None]
        mean_pos = sum_pos * inv_counts
        mean_color = sum_color * inv_counts
        variance = np.maximum(0.0, sum_color_sq * inv_counts - mean_color * mean_color)
        color_variance = variance.mean(axis=1)

        for i, key in enumerate(unique_keys):
            key = int(key)
            cells[key] = Cell(
                grid_pos=unpack_grid_key(key, resolution),
                count=int(counts[i]),
                mean_position=mean_pos[i].copy(),
                mean_color=mean_color[i].copy(),
                color_variance=float(color_variance[i]),
                bounds=Bounds(min_pos[i], max_pos[i]),
                density=float(counts[i]) / nominal_volume,
                point_indices=index_groups[i].tolist(),
            )

    info.elapsed_ms = (time.perf_counter() - start) * 1000.0
    logger.info(
        f"Built grid {rx}x{ry}x{rz}: occupied={len(cells)}, "
        f"indexed={info.indexed_points}/{info.total_points}, elapsed={info.elapsed_ms:.1f}ms"
    )
    if info.indexed_points == 0:
        logger.warning("No points fell inside the cropped bounds")

    return Grid(resolution=resolution, bounds=cropped, cell_size=cell_size, cells=cells,
                build_info=info)
