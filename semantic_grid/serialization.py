"""Compact JSON contracts for handing grids, manifests and selections to a reasoner.

Grid cells use short keys to keep the payload small:

    g    grid index [x, y, z]
    c    mean position
    d    occupied extent (size of the cell's point bounds)
    n    point count
    col  mean color as #rrggbb
    cv   color variance
    den  density (points per nominal cell volume)

All floats are rounded to two decimals. Point indices are never serialized.
"""

import json
import logging
import math
from typing import Dict, List, Optional

import numpy as np

from .types import Bounds, Cell, Grid, GridBuildInfo, SceneManifest, SelectionResult, ShapeKind

logger = logging.getLogger(__name__)

DEFAULT_MIN_POINTS = 10
DEFAULT_MAX_CELLS = 600


def round2(value: float) -> Optional[float]:
    """Round half up to two decimals. Non-finite values become None (JSON null)."""
    if not math.isfinite(value):
        return None
    return math.floor(float(value) * 100.0 + 0.5) / 100.0


def _round_list(values) -> List[Optional[float]]:
    return [round2(v) for v in values]


def _bounds_dict(bounds: Bounds) -> Dict[str, List[Optional[float]]]:
    return {'min': _round_list(bounds.min), 'max': _round_list(bounds.max)}


def _bounds_from_dict(data: Dict) -> Bounds:
    # null components come from an empty box
    mn = [np.inf if v is None else v for v in data['min']]
    mx = [-np.inf if v is None else v for v in data['max']]
    return Bounds(mn, mx)


def color_to_hex(color) -> str:
    rgb = np.clip(np.asarray(color, dtype=np.float64), 0.0, 1.0)
    return '#' + ''.join(f"{int(round(c * 255)):02x}" for c in rgb)


def hex_to_color(text: str) -> np.ndarray:
    text = text.lstrip('#')
    if len(text) != 6:
        raise ValueError(f"Expected a #rrggbb color, got {text!r}")
    return np.array([int(text[i:i + 2], 16) / 255.0 for i in (0, 2, 4)])


def cell_to_dict(cell: Cell) -> Dict:
    return {
        'g': list(cell.grid_pos),
        'c': _round_list(cell.mean_position),
        'd': _round_list(cell.bounds.size),
        'n': int(cell.count),
        'col': color_to_hex(cell.mean_color),
        'cv': round2(cell.color_variance),
        'den': round2(cell.density),
    }


def grid_to_dict(grid: Grid, min_points: int = DEFAULT_MIN_POINTS,
                 max_cells: int = DEFAULT_MAX_CELLS) -> Dict:
    """Plain-dict form of :func:`serialize_grid`."""
    cells = [cell for cell in grid if cell.count >= min_points]
    if max_cells is not None and max_cells >= 0 and len(cells) > max_cells:
        cells = sorted(cells, key=lambda cell: cell.count, reverse=True)[:max_cells]
        logger.info(f"Serialized grid truncated to {len(cells)} of {len(grid.cells)} cells")

    return {
        'resolution': list(grid.resolution),
        'worldBounds': _bounds_dict(grid.bounds),
        'cellSize': _round_list(grid.cell_size),
        'cells': [cell_to_dict(cell) for cell in cells],
    }


def serialize_grid(grid: Grid, min_points: int = DEFAULT_MIN_POINTS,
                   max_cells: int = DEFAULT_MAX_CELLS) -> str:
    """Serialize a grid to compact JSON.

    Args:
        grid: Built spatial grid
        min_points: Cells with fewer points are left out
        max_cells: Upper bound on the number of cells; when exceeded the cells
            with the highest point counts are kept, in descending count order

    Returns:
        JSON string
    """
    return json.dumps(grid_to_dict(grid, min_points, max_cells), allow_nan=False)


def deserialize_grid(text: str) -> Grid:
    """Rebuild a grid from :func:`serialize_grid` output.

    Cell bounds are reconstructed as mean position +/- extent / 2 and the
    cells carry no point indices.
    """
    data = json.loads(text)
    resolution = tuple(int(r) for r in data['resolution'])
    grid = Grid(
        resolution=resolution,
        bounds=_bounds_from_dict(data['worldBounds']),
        cell_size=np.asarray(data['cellSize'], dtype=np.float64),
        build_info=GridBuildInfo(),
    )

    for entry in data.get('cells', []):
        x, y, z = (int(v) for v in entry['g'])
        center = np.asarray(entry['c'], dtype=np.float64)
        half = np.asarray(entry['d'], dtype=np.float64) / 2.0
        grid.cells[grid.pack(x, y, z)] = Cell(
            grid_pos=(x, y, z),
            count=int(entry['n']),
            mean_position=center,
            mean_color=hex_to_color(entry['col']),
            color_variance=float(entry['cv']),
            bounds=Bounds(center - half, center + half),
            density=float(entry['den']),
        )

    grid.build_info.indexed_points = sum(cell.count for cell in grid)
    grid.build_info.total_points = grid.build_info.indexed_points
    return grid


def manifest_to_dict(manifest: SceneManifest) -> Dict:
    return {
        'description': manifest.description,
        'regionCount': len(manifest.regions),
        'regions': [
            {
                'label': region.label,
                'cellCount': len(region.member_cells),
                'bounds': _bounds_dict(region.bounds),
                'color': color_to_hex(region.dominant_color),
                'confidence': round2(region.confidence),
            }
            for region in manifest.regions
        ],
        'gridSummary': {
            'resolution': list(manifest.grid.resolution),
            'occupiedCells': len(manifest.grid.cells),
            'worldBounds': _bounds_dict(manifest.grid.bounds),
        },
    }


def serialize_manifest(manifest: SceneManifest) -> str:
    return json.dumps(manifest_to_dict(manifest), allow_nan=False)


def selection_to_dict(result: SelectionResult) -> Dict:
    shape = result.suggested_shape
    shape_dict = {'type': shape.kind.value, 'position': _round_list(shape.position)}
    if shape.kind == ShapeKind.SPHERE:
        shape_dict['radius'] = round2(shape.radius)
    else:
        shape_dict['scale'] = _round_list(shape.half_extents)

    d = result.diagnostics
    return {
        'seedCell': list(result.seed_cell),
        'clusterCells': [list(key) for key in result.member_cells],
        'bounds': _bounds_dict(result.bounds),
        'center': _round_list(result.centroid),
        'suggestedShape': shape_dict,
        'confidence': round2(result.confidence),
        'diagnostics': {
            'visitedCells': d.visited_cells,
            'rejectedCells': d.rejected_cells,
            'reasons': list(d.reasons),
            'acceptedBeforeFloorFilter': d.accepted_before_floor_filter,
            'acceptedAfterFloorFilter': d.accepted_after_floor_filter,
            'floorRejectedCells': d.floor_rejected_cells,
            'floorProtectionApplied': d.floor_protection_applied,
        },
    }
