# tests/test_serialization.py

import json

import numpy as np
import pytest

from semantic_grid.config import SpatialIndexOptions
from semantic_grid.point_source import ArrayPointSource
from semantic_grid.segmentation import generate_manifest
from semantic_grid.selection import build_local_selection
from semantic_grid.serialization import (color_to_hex, deserialize_grid, hex_to_color, round2,
                                         selection_to_dict, serialize_grid, serialize_manifest)
from semantic_grid.spatial_index import build_spatial_grid
from semantic_grid.types import Bounds


def _random_grid(n=3000, seed=3):
    rng = np.random.default_rng(seed)
    positions = rng.uniform(0.0, 10.0, size=(n, 3))
    # denser toward the origin so cell counts differ
    positions = positions ** 2 / 10.0
    colors = rng.uniform(0.0, 1.0, size=(n, 3))
    return build_spatial_grid(ArrayPointSource(positions, colors),
                              options=SpatialIndexOptions(resolution=(6, 6, 6)))


def test_round2_rounds_half_up():
    assert round2(0.125) == 0.13
    assert round2(1.234) == 1.23
    assert round2(-0.125) == -0.12


def test_round2_maps_non_finite_to_none():
    assert round2(float('inf')) is None
    assert round2(float('-inf')) is None
    assert round2(float('nan')) is None


def test_empty_bounds_grid_serializes_as_strict_json(grid_factory):
    empty = grid_factory((4, 4, 4), (0, 0, 0), (4, 4, 4), [])
    empty.bounds = Bounds()

    text = serialize_grid(empty)

    assert 'Infinity' not in text and 'NaN' not in text
    data = json.loads(text)
    assert data['worldBounds'] == {'min': [None] * 3, 'max': [None] * 3}
    assert deserialize_grid(text).bounds.is_empty()


def test_color_hex_conversion():
    assert color_to_hex((1.0, 0.0, 0.5)) == '#ff0080'
    assert color_to_hex((1.5, -0.2, 0.0)) == '#ff0000'
    assert hex_to_color('#ff0080').tolist() == pytest.approx([1.0, 0.0, 128 / 255])
    with pytest.raises(ValueError):
        hex_to_color('#fff')


def test_serialize_grid_compact_cells(small_grid):
    data = json.loads(serialize_grid(small_grid, min_points=0))

    assert data['resolution'] == [5, 5, 5]
    assert data['worldBounds'] == {'min': [0, 0, 0], 'max': [10, 10, 10]}
    assert data['cellSize'] == [2, 2, 2]

    first = data['cells'][0]
    assert set(first) == {'g', 'c', 'd', 'n', 'col', 'cv', 'den'}
    assert first['g'] == [0, 0, 0]
    assert first['c'] == [1, 1, 1]
    assert first['d'] == [2, 2, 2]
    assert first['n'] == 50
    assert first['col'] == '#cc331a'


def test_serialize_grid_filters_and_truncates(small_grid):
    assert [c['n'] for c in json.loads(serialize_grid(small_grid, min_points=16))['cells']] == [50, 20]
    assert [c['n'] for c in json.loads(serialize_grid(small_grid, min_points=0, max_cells=2))['cells']] == [50, 20]


def test_point_indices_never_serialized(small_grid):
    text = serialize_grid(small_grid, min_points=0)
    assert 'point_indices' not in text
    assert all(len(cell.point_indices) > 0 for cell in small_grid)


def test_round_trip_is_highest_count_subset():
    grid = _random_grid()
    max_cells = 10

    data = json.loads(serialize_grid(grid, min_points=1, max_cells=max_cells))
    restored = deserialize_grid(serialize_grid(grid, min_points=1, max_cells=max_cells))

    counts = [c['n'] for c in data['cells']]
    assert counts == sorted(counts, reverse=True)
    assert len(restored) == max_cells

    original_keys = {cell.grid_pos for cell in grid}
    restored_keys = {cell.grid_pos for cell in restored}
    assert restored_keys <= original_keys

    smallest_kept = min(cell.count for cell in restored)
    dropped = [cell.count for cell in grid if cell.grid_pos not in restored_keys]
    assert all(count <= smallest_kept for count in dropped)

    for cell in restored:
        source = grid.get(*cell.grid_pos)
        assert cell.count == source.count
        assert cell.point_indices == []
        assert cell.mean_position.tolist() == pytest.approx(source.mean_position.tolist(), abs=0.006)


def test_deserialized_cell_bounds_from_center_and_size(small_grid):
    restored = deserialize_grid(serialize_grid(small_grid, min_points=0))
    cell = restored.get(1, 1, 1)

    assert cell.bounds.min.tolist() == pytest.approx([2, 2, 2])
    assert cell.bounds.max.tolist() == pytest.approx([4, 4, 4])
    assert cell.mean_color.tolist() == pytest.approx([0.1, 0.3, 0.9], abs=0.003)
    assert restored.build_info.indexed_points == 85


def test_serialize_manifest(small_grid):
    manifest = generate_manifest(small_grid)
    data = json.loads(serialize_manifest(manifest))

    assert data['description'] == manifest.description
    assert data['regionCount'] == len(manifest.regions) == len(data['regions'])
    assert data['gridSummary'] == {
        'resolution': [5, 5, 5],
        'occupiedCells': 3,
        'worldBounds': {'min': [0, 0, 0], 'max': [10, 10, 10]},
    }
    region = data['regions'][0]
    assert set(region) == {'label', 'cellCount', 'bounds', 'color', 'confidence'}
    assert region['color'].startswith('#') and len(region['color']) == 7


def test_selection_to_dict(vertical_grid):
    result = build_local_selection(vertical_grid, (0.5, 2.1, 0.5))
    data = selection_to_dict(result)

    assert data['seedCell'] == [0, 2, 0]
    assert data['suggestedShape']['type'] == 'ELLIPSOID'
    assert len(data['suggestedShape']['scale']) == 3
    assert data['diagnostics']['acceptedBeforeFloorFilter'] == 5
    json.dumps(data)
