"""Command-line report: PLY file in, grid + scene manifest (+ click selection) JSON out."""

import argparse
import json
import logging
import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .config import SegmentationOptions, SelectionOptions, SpatialIndexOptions, load_config
from .logging_config import setup_logging
from .point_source import read_ply_points
from .segmentation import generate_manifest
from .selection import build_local_selection, format_selection_hint
from .serialization import (DEFAULT_MAX_CELLS, DEFAULT_MIN_POINTS, grid_to_dict, manifest_to_dict,
                            round2, selection_to_dict)
from .spatial_index import build_spatial_grid
from .types import SemanticGridError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='semantic-grid',
        description="Index a PLY point cloud into a semantic grid and report regions and selections")
    parser.add_argument("input", type=Path, help="Path to the .ply point cloud")
    parser.add_argument("--config", type=Path, help="YAML file with spatial_index/segmentation/selection options")
    parser.add_argument("--resolution", type=int, nargs=3, metavar=('RX', 'RY', 'RZ'),
                        help="Grid resolution per axis (default: 20 20 20)")
    parser.add_argument("--crop", type=float, nargs=2, metavar=('BOTTOM', 'TOP'),
                        help="Fraction of the height to crop at the bottom and top (default: 0.1 0.1)")
    parser.add_argument("--min-points", type=int, default=DEFAULT_MIN_POINTS,
                        help="Leave cells with fewer points out of the grid report")
    parser.add_argument("--max-cells", type=int, default=DEFAULT_MAX_CELLS,
                        help="Maximum number of cells in the grid report")
    parser.add_argument("--click", type=float, nargs=3, metavar=('X', 'Y', 'Z'),
                        help="World position to grow a local selection from")
    parser.add_argument("--out", type=Path, help="Write the JSON report here instead of stdout")
    parser.add_argument("--log-file", type=Path, help="Also write logs to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def build_report(args: argparse.Namespace) -> dict:
    """Run the pipeline for parsed arguments and return the report dictionary."""
    if args.config:
        config = load_config(args.config)
    else:
        config = {
            'spatial_index': SpatialIndexOptions(),
            'segmentation': SegmentationOptions(),
            'selection': SelectionOptions(),
        }

    index_options = config['spatial_index']
    if args.resolution:
        index_options = replace(index_options, resolution=tuple(args.resolution))
    if args.crop:
        index_options = replace(index_options, crop_y_fraction=tuple(args.crop))

    source = read_ply_points(args.input)
    grid = build_spatial_grid(source, options=index_options)
    manifest = generate_manifest(grid, config['segmentation'])
    info = grid.build_info

    report = {
        'sourceFile': str(args.input),
        'generatedAt': datetime.now(timezone.utc).isoformat(),
        'build': {
            'totalPoints': info.total_points,
            'indexedPoints': info.indexed_points,
            'skippedInvalid': info.skipped_invalid,
            'usedFallback': info.used_fallback,
            'degenerateBounds': info.degenerate_bounds,
            'elapsedMs': round2(info.elapsed_ms),
        },
        'manifest': manifest_to_dict(manifest),
        'grid': grid_to_dict(grid, args.min_points, args.max_cells),
    }

    if args.click:
        result = build_local_selection(grid, args.click, config['selection'])
        if result is None:
            report['selection'] = None
        else:
            report['selection'] = selection_to_dict(result)
            report['selection']['hint'] = format_selection_hint(result)

    return report


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO,
                  str(args.log_file) if args.log_file else None)

    try:
        report = build_report(args)
    except SemanticGridError as e:
        logger.error(str(e))
        return 1

    if args.out:
        args.out.parent.mkdir(parents=True, exist_ok=True)
        with args.out.open("w", encoding="utf-8") as f:
            json.dump(report, f, indent=2, allow_nan=False)
        logger.info(f"Saved report: {args.out}")
    else:
        json.dump(report, sys.stdout, indent=2, allow_nan=False)
        sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
