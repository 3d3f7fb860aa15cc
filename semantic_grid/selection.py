"""Click-seeded local cluster selection.

A click is mapped to a seed cell, and a breadth-first traversal grows a
cluster of face-connected cells whose mean color stays close to the seed
color. The lowest cells of the cluster can be dropped ("floor protection") so
that a selection made on an object does not bleed into the ground beneath it.
The result carries a bounding box, a weighted centroid and a suggested edit
shape.
"""

import logging
import math
from collections import deque
from typing import Dict, List, Optional

import numpy as np

from .cell_query import cell_at, face_neighbors
from .config import SelectionOptions
from .types import (Bounds, Cell, CellKey, FloorFilterResult, Grid, SelectionDiagnostics,
                    SelectionResult, ShapeHint, ShapeKind)

logger = logging.getLogger(__name__)

MIN_HALF_EXTENT = 0.05
SPHERE_ASPECT_LIMIT = 1.6
DOMINANT_AXIS_FACTOR = 1.8
# n * q can land just below an integer in floating point (100 * 0.29)
QUANTILE_EPSILON = 1e-9


def color_distance(a, b) -> float:
    return float(np.linalg.norm(np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)))


def apply_floor_protection(cells: List[Cell], options: Optional[SelectionOptions] = None) -> FloorFilterResult:
    """Drop the lowest-ranked cells of a cluster by mean Y position.

    Args:
        cells: Cluster cells
        options: Uses enable_floor_protection, bottom_quantile_reject and
            min_protected_cells

    Returns:
        FloorFilterResult. When the filtered cluster would be smaller than
        min_protected_cells the original cells are returned with applied=False,
        but floor_rejected_cells still reports how many would have been dropped.
    """
    options = options or SelectionOptions()
    if not options.enable_floor_protection:
        return FloorFilterResult(list(cells), False, 0, 'floor_protection_disabled')

    reject = int(math.floor(len(cells) * options.bottom_quantile_reject + QUANTILE_EPSILON))
    if reject <= 0:
        return FloorFilterResult(list(cells), False, 0, 'floor_protection_nothing_to_reject')

    ranked = sorted(cells, key=lambda cell: float(cell.mean_position[1]))
    kept = ranked[reject:]
    if len(kept) < options.min_protected_cells:
        return FloorFilterResult(list(cells), False, reject, 'floor_protection_fallback_small_cluster')

    # Keep the traversal order of the survivors
    kept_keys = {cell.grid_pos for cell in kept}
    return FloorFilterResult([cell for cell in cells if cell.grid_pos in kept_keys], True, reject,
                             'floor_protection_applied')


def _grow_cluster(grid: Grid, seed: Cell, options: SelectionOptions,
                  diagnostics: SelectionDiagnostics) -> Dict[CellKey, Cell]:
    seed_color = seed.mean_color
    queue = deque([(seed, 0)])
    visited = set()
    accepted: Dict[CellKey, Cell] = {}

    while queue:
        cell, depth = queue.popleft()
        if cell.grid_pos in visited:
            continue
        visited.add(cell.grid_pos)

        if len(visited) > options.max_visited_cells:
            diagnostics.reasons.append('max_visited_cells')
            break

        if cell is not seed and color_distance(cell.mean_color, seed_color) > options.color_distance_threshold:
            diagnostics.rejected_cells += 1
            continue

        accepted[cell.grid_pos] = cell
        if len(accepted) >= options.max_cluster_cells:
            diagnostics.reasons.append('max_cluster_cells')
            break

        unvisited = [n for n in face_neighbors(grid, cell) if n.grid_pos not in visited]
        if depth >= options.max_depth:
            if unvisited and 'max_depth' not in diagnostics.reasons:
                diagnostics.reasons.append('max_depth')
            continue
        queue.extend((n, depth + 1) for n in unvisited)

    diagnostics.visited_cells = len(visited)
    return accepted


def suggest_shape(bounds: Bounds, position: np.ndarray, options: Optional[SelectionOptions] = None) -> ShapeHint:
    """Pick a sphere, ellipsoid or box that covers the given bounds.

    Nearly isotropic clusters get a sphere, clusters with one axis more than
    1.8x both others get an ellipsoid, everything else a padded box.
    """
    options = options or SelectionOptions()
    size = bounds.size
    aspect = float(size.max()) / max(float(size.min()), 0.001)
    position = np.asarray(position, dtype=np.float64).copy()

    if aspect < SPHERE_ASPECT_LIMIT:
        radius = max(MIN_HALF_EXTENT, float(size.mean()) / 2.0 * options.box_padding)
        return ShapeHint(ShapeKind.SPHERE, position, radius=radius)

    for axis in range(3):
        others = [size[i] for i in range(3) if i != axis]
        if all(size[axis] > DOMINANT_AXIS_FACTOR * other for other in others):
            half = np.maximum(MIN_HALF_EXTENT, size / 2.0 * options.ellipsoid_padding)
            return ShapeHint(ShapeKind.ELLIPSOID, position, half_extents=half)

    half = np.maximum(MIN_HALF_EXTENT, size / 2.0 * options.box_padding)
    return ShapeHint(ShapeKind.BOX, position, half_extents=half)


def build_local_selection(grid: Grid, click, options: Optional[SelectionOptions] = None) -> Optional[SelectionResult]:
    """Grow a color-coherent cluster around a clicked world position.

    Args:
        grid: Built spatial grid
        click: (x, y, z) world position of the click
        options: Traversal limits, color threshold, floor protection and padding

    Returns:
        SelectionResult, or None when no seed cell is found or the cluster has
        fewer than min_cluster_cells cells
    """
    options = (options or SelectionOptions()).validate()
    seed = cell_at(grid, click, options.max_ring_radius)
    if seed is None:
        logger.info(f"No seed cell near click {list(np.round(np.asarray(click, dtype=float), 3))}")
        return None

    diagnostics = SelectionDiagnostics()
    accepted = _grow_cluster(grid, seed, options, diagnostics)
    if len(accepted) < options.min_cluster_cells:
        logger.info(f"Cluster too small: accepted={len(accepted)}, min={options.min_cluster_cells}")
        return None

    floor = apply_floor_protection(list(accepted.values()), options)
    cells = floor.cells
    diagnostics.accepted_before_floor_filter = len(accepted)
    diagnostics.accepted_after_floor_filter = len(cells)
    diagnostics.floor_rejected_cells = floor.floor_rejected_cells
    diagnostics.floor_protection_applied = floor.applied
    if floor.reason == 'floor_protection_fallback_small_cluster':
        diagnostics.reasons.append(floor.reason)
        logger.info(f"Floor protection skipped, {floor.floor_rejected_cells} rejected cells "
                    f"would leave fewer than {options.min_protected_cells}")

    bounds = Bounds()
    weights = np.array([max(1, cell.count) for cell in cells], dtype=np.float64)
    positions = np.array([cell.mean_position for cell in cells], dtype=np.float64)
    for cell in cells:
        bounds.union(cell.bounds)
    centroid = (positions * weights[:, None]).sum(axis=0) / weights.sum()
    if floor.applied:
        centroid[1] += options.upward_center_bias_factor * float(bounds.size[1])

    distances = [color_distance(cell.mean_color, seed.mean_color) for cell in cells]
    mean_distance = float(np.mean(distances))
    confidence = float(np.clip(1.0 - mean_distance / max(1e-4, options.color_distance_threshold), 0.0, 1.0))

    result = SelectionResult(
        seed_cell=seed.grid_pos,
        member_cells=[cell.grid_pos for cell in cells],
        bounds=bounds,
        centroid=centroid,
        suggested_shape=suggest_shape(bounds, centroid, options),
        confidence=confidence,
        diagnostics=diagnostics,
    )
    logger.info(f"Built cluster seed={seed.grid_pos}: accepted={len(cells)}, visited={diagnostics.visited_cells}, "
                f"rejected={diagnostics.rejected_cells}, confidence={confidence:.3f}")
    return result


def _fmt3(values) -> str:
    return '[' + ', '.join(f"{float(v):.3f}" for v in values) + ']'


def format_selection_hint(result: SelectionResult) -> str:
    """Human-readable summary of a selection, one fact per line."""
    shape = result.suggested_shape
    if shape.kind == ShapeKind.SPHERE:
        shape_line = f"- recommendedShape=SPHERE radius={shape.radius:.3f}"
    else:
        shape_line = f"- recommendedShape={shape.kind.value} scale={_fmt3(shape.half_extents)}"

    d = result.diagnostics
    seed = ','.join(str(v) for v in result.seed_cell)
    return '\n'.join([
        "Selection hints (deterministic click-seeded cluster):",
        f"- seedCell={seed}",
        f"- clusterCells={len(result.member_cells)} confidence={result.confidence:.3f}",
        f"- clusterCenter={_fmt3(result.centroid)}",
        f"- clusterSize={_fmt3(result.bounds.size)}",
        shape_line,
        f"- diagnostics visited={d.visited_cells} rejected={d.rejected_cells} "
        f"floorRejected={d.floor_rejected_cells} reasons={','.join(d.reasons) or 'none'}",
        "- Use this cluster as a starting reference. Adjust shape type and size "
        "based on the visual context of the scene.",
    ])
