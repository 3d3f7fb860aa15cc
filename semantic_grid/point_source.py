"""Point sources and bounding volume providers.

A point source is any iterable of (index, position, color, validity) records.
The classes here wrap numpy arrays and PLY files (plain RGB clouds as well as
Gaussian-splat exports with f_dc/opacity properties).
"""

import logging
from pathlib import Path
from typing import Iterator, Optional, Tuple

import numpy as np
from plyfile import PlyData

from .spatial_index import transform_bounds_to_world
from .types import Bounds, PointCloudReadError, PointRecord

logger = logging.getLogger(__name__)

# Zeroth-order spherical harmonic constant used by Gaussian-splat color exports
SH_C0 = 0.28209479177387814


class ArrayPointSource:
    """Point source backed by numpy arrays.

    Args:
        positions: (N, 3) array of positions
        colors: Optional (N, 3) RGB colors in [0, 1] or [0, 255]; defaults to grey
        validity: Optional (N,) validity/opacity scalars; defaults to 1.0
        indices: Optional (N,) point indices; defaults to 0..N-1
    """

    def __init__(self, positions: np.ndarray, colors: Optional[np.ndarray] = None,
                 validity: Optional[np.ndarray] = None, indices: Optional[np.ndarray] = None):
        self.positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
        n = len(self.positions)

        if colors is None:
            colors = np.full((n, 3), 0.5)
        colors = np.asarray(colors, dtype=np.float64).reshape(-1, 3)
        if colors.size and colors.max() > 1.0:
            colors = colors / 255.0
        self.colors = colors

        self.validity = (np.ones(n) if validity is None
                         else np.asarray(validity, dtype=np.float64).reshape(-1))
        self.indices = (np.arange(n, dtype=np.int64) if indices is None
                        else np.asarray(indices, dtype=np.int64).reshape(-1))

        if not (len(self.colors) == len(self.validity) == len(self.indices) == n):
            raise ValueError(
                f"Array lengths differ: positions={n}, colors={len(self.colors)}, "
                f"validity={len(self.validity)}, indices={len(self.indices)}"
            )
        self._bounds = None

    def __len__(self) -> int:
        return len(self.positions)

    def __iter__(self) -> Iterator[PointRecord]:
        for i in range(len(self.positions)):
            yield PointRecord(
                int(self.indices[i]),
                tuple(self.positions[i]),
                tuple(self.colors[i]),
                float(self.validity[i]),
            )

    def as_arrays(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        return self.indices, self.positions, self.colors, self.validity

    def bounds(self) -> Bounds:
        if self._bounds is None:
            finite = self.positions[np.all(np.isfinite(self.positions), axis=1)]
            self._bounds = Bounds.from_points(finite)
        return self._bounds.copy()


class TransformedBoundsProvider:
    """Bounds of a source whose points live in a local frame, mapped to world space."""

    def __init__(self, source, matrix_world: np.ndarray):
        self.source = source
        self.matrix_world = np.asarray(matrix_world, dtype=np.float64)

    def bounds(self) -> Bounds:
        return transform_bounds_to_world(self.source.bounds(), self.matrix_world)


def _pick_triplet(names, *candidates) -> Optional[Tuple[str, str, str]]:
    lower = {n.lower(): n for n in names}
    for triplet in candidates:
        if all(c in lower for c in triplet):
            return tuple(lower[c] for c in triplet)
    return None


def read_ply_points(file_path: Path) -> ArrayPointSource:
    """Read a PLY file into an ArrayPointSource using plyfile.

    Colors are taken from red/green/blue, r/g/b or Gaussian-splat f_dc_0..2
    properties; validity from opacity (stored as a logit) or alpha.

    Args:
        file_path: Path to PLY file

    Returns:
        Point source over the file's vertices

    Raises:
        PointCloudReadError: File missing, unreadable, or without x/y/z vertices
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise PointCloudReadError(f"File not found: {file_path}")

    try:
        plydata = PlyData.read(str(file_path))
    except Exception as e:
        raise PointCloudReadError(f"Error reading {file_path.name}: {e}") from e

    if 'vertex' not in [element.name for element in plydata.elements]:
        raise PointCloudReadError(f"{file_path.name} does not contain vertex data")

    vertex = plydata['vertex']
    names = vertex.data.dtype.names
    if len(vertex.data) == 0:
        raise PointCloudReadError(f"{file_path.name} appears to be empty")

    xyz = _pick_triplet(names, ('x', 'y', 'z'))
    if xyz is None:
        raise PointCloudReadError(f"{file_path.name} missing x, y, z coordinates")
    points = np.column_stack([vertex[n] for n in xyz]).astype(np.float64)

    colors = None
    rgb = _pick_triplet(names, ('red', 'green', 'blue'), ('r', 'g', 'b'))
    dc = _pick_triplet(names, ('f_dc_0', 'f_dc_1', 'f_dc_2'))
    if rgb is not None:
        colors = np.column_stack([vertex[n] for n in rgb]).astype(np.float64)
        if colors.max() > 1.0:
            colors = colors / 255.0
    elif dc is not None:
        sh = np.column_stack([vertex[n] for n in dc]).astype(np.float64)
        colors = np.clip(0.5 + SH_C0 * sh, 0.0, 1.0)

    validity = None
    lower = {n.lower(): n for n in names}
    if 'opacity' in lower:
        validity = 1.0 / (1.0 + np.exp(-vertex[lower['opacity']].astype(np.float64)))
    elif 'alpha' in lower:
        validity = vertex[lower['alpha']].astype(np.float64)
        if validity.max() > 1.0:
            validity = validity / 255.0

    logger.info(f"Read {len(points):,} points from {file_path.name} (properties: {', '.join(names)})")
    return ArrayPointSource(points, colors=colors, validity=validity)
