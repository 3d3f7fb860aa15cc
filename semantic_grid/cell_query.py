"""Point-to-cell and cell-to-neighbor lookups over a built grid."""

import logging
from typing import Iterator, List, Optional, Tuple

import numpy as np

from .spatial_index import world_pos_to_grid_coord
from .types import Cell, Grid

logger = logging.getLogger(__name__)

DEFAULT_MAX_RING_RADIUS = 5

FACE_OFFSETS = (
    (-1, 0, 0), (1, 0, 0),
    (0, -1, 0), (0, 1, 0),
    (0, 0, -1), (0, 0, 1),
)


def _ring_cells(grid: Grid, center: Tuple[int, int, int], radius: int) -> Iterator[Cell]:
    """Occupied cells at exactly Chebyshev distance `radius` from center."""
    cx, cy, cz = center
    rx, ry, rz = grid.resolution
    for x in range(max(0, cx - radius), min(rx - 1, cx + radius) + 1):
        for y in range(max(0, cy - radius), min(ry - 1, cy + radius) + 1):
            for z in range(max(0, cz - radius), min(rz - 1, cz + radius) + 1):
                if max(abs(x - cx), abs(y - cy), abs(z - cz)) != radius:
                    continue
                cell = grid.get(x, y, z)
                if cell is not None:
                    yield cell


def nearest_occupied_cell(grid: Grid, point, center: Tuple[int, int, int],
                          max_ring_radius: int = DEFAULT_MAX_RING_RADIUS) -> Optional[Cell]:
    """Expanding ring search for the occupied cell closest to `point`.

    A diagonal cell at ring r can be closer in world space than an axial cell
    at ring r + 1, so the search only stops once the smallest possible world
    distance of the next ring, min(cell_size) * (r - 1), exceeds the best
    distance found so far.
    """
    point = np.asarray(point, dtype=np.float64)
    min_cell = float(np.min(grid.cell_size)) if len(grid.cell_size) else 0.0
    best = None
    best_d2 = np.inf

    for radius in range(1, max_ring_radius + 1):
        ring_floor = min_cell * (radius - 1)
        if best is not None and ring_floor * ring_floor > best_d2:
            break
        for cell in _ring_cells(grid, center, radius):
            d2 = float(np.sum((cell.mean_position - point) ** 2))
            if d2 < best_d2:
                best, best_d2 = cell, d2

    if best is None:
        logger.debug(f"Ring search found no occupied cell within {max_ring_radius} rings of {center}")
    return best


def cell_at(grid: Grid, point, max_ring_radius: int = DEFAULT_MAX_RING_RADIUS) -> Optional[Cell]:
    """Find the cell containing a world point, or the nearest occupied one.

    Args:
        grid: Built spatial grid
        point: (x, y, z) world position
        max_ring_radius: Maximum ring radius (grid steps) for the nearest-cell search

    Returns:
        The exact cell, the cell at the point clamped into the grid bounds, or the
        nearest occupied cell within the search radius; None if nothing qualifies.
    """
    if not grid.cells or grid.bounds.is_empty():
        return None
    point = np.asarray(point, dtype=np.float64)
    if not np.all(np.isfinite(point)):
        return None

    coord = world_pos_to_grid_coord(point, grid.bounds, grid.resolution)
    if coord is not None:
        cell = grid.get(*coord)
        if cell is not None:
            return cell

    clamped = grid.bounds.clamp_point(point)
    coord = world_pos_to_grid_coord(clamped, grid.bounds, grid.resolution, clamp=True)
    cell = grid.get(*coord)
    if cell is not None:
        return cell

    return nearest_occupied_cell(grid, clamped, coord, max_ring_radius)


def neighbors(grid: Grid, cell: Cell, radius: int = 1) -> List[Cell]:
    """Occupied cells in the (2r+1)^3 window around a cell, the cell included."""
    cx, cy, cz = cell.grid_pos
    rx, ry, rz = grid.resolution
    r = max(0, int(radius))

    out = []
    for x in range(max(0, cx - r), min(rx - 1, cx + r) + 1):
        for y in range(max(0, cy - r), min(ry - 1, cy + r) + 1):
            for z in range(max(0, cz - r), min(rz - 1, cz + r) + 1):
                neighbor = grid.get(x, y, z)
                if neighbor is not None:
                    out.append(neighbor)
    return out


def face_neighbors(grid: Grid, cell: Cell) -> List[Cell]:
    """Occupied 6-connected neighbors of a cell."""
    x, y, z = cell.grid_pos
    out = []
    for dx, dy, dz in FACE_OFFSETS:
        neighbor = grid.get(x + dx, y + dy, z + dz)
        if neighbor is not None:
            out.append(neighbor)
    return out
