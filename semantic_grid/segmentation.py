"""Label grid cells with coarse semantic classes and group them into regions.

Each sufficiently populated cell is classified by an ordered rule table over
its color (hue/saturation/luminance), normalised height and vertical extent.
Face-adjacent cells carrying the same label are then flood-filled into
regions, which are summarised into a short natural-language scene description.
"""

import colorsys
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

import numpy as np

from .cell_query import face_neighbors
from .config import SegmentationOptions
from .types import Bounds, Cell, CellKey, Grid, Region, SceneManifest

logger = logging.getLogger(__name__)

LOW_BAND = 0.25
HIGH_BAND = 0.70


@dataclass
class CellFeatures:
    """Color and height features a classification rule can look at."""
    hue: float  # degrees, [0, 360)
    saturation: float
    luminance: float
    normalized_y: float
    color_variance: float
    is_vertical: bool

    @property
    def is_low(self) -> bool:
        return self.normalized_y < LOW_BAND

    @property
    def is_mid(self) -> bool:
        return LOW_BAND <= self.normalized_y < HIGH_BAND

    @property
    def is_high(self) -> bool:
        return self.normalized_y >= HIGH_BAND


class CellRule(NamedTuple):
    name: str
    predicate: Callable[[CellFeatures], bool]
    label: str
    confidence: float


def _green(f: CellFeatures) -> bool:
    return 80 <= f.hue <= 160 and f.saturation > 0.1


# Evaluated top to bottom, first match wins
CELL_RULES: Tuple[CellRule, ...] = (
    CellRule('blue_high', lambda f: f.is_high and 180 <= f.hue <= 260 and f.saturation > 0.15,
             'sky', 0.7),
    CellRule('green_mid', lambda f: _green(f) and f.is_mid, 'vegetation', 0.6),
    CellRule('green_low', lambda f: _green(f) and f.is_low, 'ground_vegetation', 0.5),
    CellRule('very_dark', lambda f: f.luminance < 0.12, 'shadow', 0.4),
    CellRule('varied_vertical', lambda f: f.color_variance > 0.02 and f.is_vertical,
             'structure', 0.5),
    CellRule('grey_low', lambda f: f.is_low and f.saturation < 0.15 and 0.15 < f.luminance < 0.65,
             'ground', 0.5),
    CellRule('brown_low', lambda f: (f.is_low and 20 <= f.hue <= 50 and f.saturation > 0.1
                                     and f.luminance < 0.6),
             'ground', 0.45),
    CellRule('grey_raised', lambda f: (not f.is_low and f.saturation < 0.12
                                       and 0.2 < f.luminance < 0.7),
             'structure', 0.35),
    CellRule('warm', lambda f: 0 <= f.hue <= 60 and f.saturation > 0.15 and f.luminance > 0.15,
             'warm_surface', 0.3),
    CellRule('bright_high', lambda f: f.is_high and f.luminance > 0.7, 'bright_area', 0.35),
)
FALLBACK_LABEL = ('surface', 0.2)

READABLE_LABELS = {
    'sky': 'sky',
    'vegetation': 'vegetation',
    'ground_vegetation': 'ground vegetation',
    'ground': 'ground/pavement',
    'structure': 'structure/building',
    'shadow': 'shadow',
    'warm_surface': 'warm surface',
    'bright_area': 'bright',
    'surface': 'surface',
}


def readable_label(label: str) -> str:
    return READABLE_LABELS.get(label, label)


def cell_features(cell: Cell, y_min: float, height: float,
                  vertical_extent_fraction: float = 0.04) -> CellFeatures:
    """Compute the classification features of one cell.

    Args:
        cell: Grid cell
        y_min: Bottom of the grid bounds
        height: Height of the grid bounds
        vertical_extent_fraction: Fraction of the height the occupied Y extent
            must exceed for the cell to count as a vertical structure
    """
    r, g, b = (float(c) for c in np.clip(cell.mean_color, 0.0, 1.0))
    h, l, s = colorsys.rgb_to_hls(r, g, b)
    normalized_y = (float(cell.mean_position[1]) - y_min) / height if height > 0 else 0.5
    extent_y = float(cell.bounds.max[1] - cell.bounds.min[1]) if not cell.bounds.is_empty() else 0.0

    return CellFeatures(
        hue=h * 360.0,
        saturation=s,
        luminance=l,
        normalized_y=normalized_y,
        color_variance=float(cell.color_variance),
        is_vertical=extent_y > height * vertical_extent_fraction,
    )


def classify_features(features: CellFeatures) -> Tuple[str, float]:
    for rule in CELL_RULES:
        if rule.predicate(features):
            return rule.label, rule.confidence
    return FALLBACK_LABEL


def classify_cell(cell: Cell, y_min: float, height: float,
                  vertical_extent_fraction: float = 0.04) -> Tuple[str, float]:
    """Return (label, confidence) for a cell."""
    return classify_features(cell_features(cell, y_min, height, vertical_extent_fraction))


def label_cells(grid: Grid, options: Optional[SegmentationOptions] = None) -> Dict[CellKey, Tuple[str, float]]:
    """Classify every cell with at least `min_points_for_label` points."""
    options = (options or SegmentationOptions()).validate()
    y_min = float(grid.bounds.min[1]) if not grid.bounds.is_empty() else 0.0
    height = float(grid.bounds.size[1])

    labels = {}
    for cell in grid:
        if cell.count < options.min_points_for_label:
            continue
        labels[cell.grid_pos] = classify_cell(cell, y_min, height, options.vertical_extent_fraction)
    return labels


def _flood_fill(grid: Grid, labels: Dict[CellKey, Tuple[str, float]], start: CellKey,
                visited: set) -> List[CellKey]:
    target = labels[start][0]
    component = []
    queue = deque([start])
    visited.add(start)

    while queue:
        key = queue.popleft()
        component.append(key)
        for neighbor in face_neighbors(grid, grid.get(*key)):
            n_key = neighbor.grid_pos
            if n_key in visited or n_key not in labels or labels[n_key][0] != target:
                continue
            visited.add(n_key)
            queue.append(n_key)

    return component


def _summarize_region(grid: Grid, label: str, component: List[CellKey],
                      labels: Dict[CellKey, Tuple[str, float]]) -> Region:
    bounds = Bounds()
    color_sum = np.zeros(3)
    total_points = 0
    confidence_sum = 0.0

    for key in component:
        cell = grid.get(*key)
        bounds.union(cell.bounds)
        color_sum += cell.mean_color * cell.count
        total_points += cell.count
        confidence_sum += labels[key][1]

    dominant = color_sum / total_points if total_points > 0 else np.zeros(3)
    return Region(
        label=label,
        member_cells=set(component),
        bounds=bounds,
        dominant_color=dominant,
        confidence=confidence_sum / len(component),
        point_count=total_points,
        ordered_cells=list(component),
    )


def segment_regions(grid: Grid, options: Optional[SegmentationOptions] = None) -> List[Region]:
    """Group labelled cells into regions of face-connected, identically labelled cells.

    Args:
        grid: Built spatial grid
        options: Minimum point count for labelling and vertical-extent threshold

    Returns:
        Regions sorted by contained point count, largest first (ties keep
        discovery order)
    """
    labels = label_cells(grid, options)
    visited = set()
    regions = []

    for key, (label, _) in labels.items():
        if key in visited:
            continue
        component = _flood_fill(grid, labels, key, visited)
        regions.append(_summarize_region(grid, label, component, labels))

    regions.sort(key=lambda region: region.point_count, reverse=True)
    logger.debug(f"Segmented {len(labels)} labelled cells into {len(regions)} regions")
    return regions


def describe_regions(regions: List[Region], total_cells: int) -> str:
    """One-sentence natural-language summary of the regions in a scene."""
    if not regions:
        return (f"The scene contains {total_cells} occupied spatial cells "
                f"with no clearly identifiable regions.")

    counts: Dict[str, int] = {}
    for region in regions:
        readable = readable_label(region.label)
        counts[readable] = counts.get(readable, 0) + 1

    parts = [f"a {label} area" if count == 1 else f"{count} {label} areas"
             for label, count in counts.items()]
    if len(parts) <= 2:
        joined = " and ".join(parts)
    else:
        joined = ", ".join(parts[:-1]) + ", and " + parts[-1]

    return f"The scene contains approximately {joined} across {total_cells} occupied spatial cells."


def generate_manifest(grid: Grid, options: Optional[SegmentationOptions] = None) -> SceneManifest:
    """Segment a grid and describe it."""
    start = time.perf_counter()
    regions = segment_regions(grid, options)
    description = describe_regions(regions, len(grid.cells))
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    logger.info(f"Generated manifest: {len(regions)} regions, {len(grid.cells)} cells, {elapsed_ms:.1f}ms")
    return SceneManifest(description=description, regions=regions, grid=grid)
