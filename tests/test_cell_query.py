# tests/test_cell_query.py

import numpy as np

from semantic_grid.cell_query import cell_at, face_neighbors, nearest_occupied_cell, neighbors


def test_cell_at_exact_hit(small_grid):
    cell = cell_at(small_grid, (1, 1, 1))
    assert cell.grid_pos == (0, 0, 0)
    assert cell.count == 50


def test_cell_at_outside_bounds_clamps_to_boundary(small_grid):
    assert cell_at(small_grid, (-5, 1, 1)).grid_pos == (0, 0, 0)


def test_cell_at_empty_cell_uses_ring_search(small_grid):
    # (2, 0, 0) is empty; (1, 0, 0) is the nearest occupied cell
    cell = cell_at(small_grid, (5.0, 1.0, 1.0))
    assert cell.grid_pos == (1, 0, 0)


def test_cell_at_rejects_non_finite_and_empty_grid(small_grid, grid_factory):
    assert cell_at(small_grid, (np.nan, 1, 1)) is None
    assert cell_at(grid_factory((5, 5, 5), (0, 0, 0), (10, 10, 10), []), (1, 1, 1)) is None


def test_ring_search_is_capped(grid_factory, cell_factory):
    grid = grid_factory((20, 20, 20), (0, 0, 0), (100, 100, 100), [
        cell_factory((0, 0, 0), (0, 0, 0), (5, 5, 5), (0.5, 0.5, 0.5)),
    ])

    assert cell_at(grid, (99, 99, 99)) is None
    assert cell_at(grid, (99, 99, 99), max_ring_radius=19).grid_pos == (0, 0, 0)
    assert cell_at(grid, (5, 5, 5)).grid_pos == (0, 0, 0)


def test_ring_search_returns_nearest_not_first_hit(grid_factory, cell_factory):
    # Ring 1 holds a cell whose points sit at its far side; ring 2 holds one
    # whose points sit right against the query cell.
    far_in_ring_one = cell_factory((6, 5, 5), (34.8, 27.4, 27.4), (35.0, 27.6, 27.6), (0.5, 0.5, 0.5))
    near_in_ring_two = cell_factory((3, 5, 5), (19.8, 27.4, 27.4), (20.0, 27.6, 27.6), (0.5, 0.5, 0.5))
    grid = grid_factory((20, 20, 20), (0, 0, 0), (100, 100, 100), [far_in_ring_one, near_in_ring_two])

    point = (25.1, 27.5, 27.5)
    assert cell_at(grid, point).grid_pos == (3, 5, 5)
    assert nearest_occupied_cell(grid, point, (5, 5, 5), max_ring_radius=1).grid_pos == (6, 5, 5)


def test_neighbors_window_includes_cell_itself(small_grid):
    cell = small_grid.get(0, 0, 0)

    keys = {n.grid_pos for n in neighbors(small_grid, cell, radius=1)}
    assert keys == {(0, 0, 0), (1, 0, 0), (1, 1, 1)}

    assert [n.grid_pos for n in neighbors(small_grid, cell, radius=0)] == [(0, 0, 0)]
    assert [n.grid_pos for n in neighbors(small_grid, cell, radius=-2)] == [(0, 0, 0)]


def test_face_neighbors_skip_diagonals(small_grid):
    keys = [n.grid_pos for n in face_neighbors(small_grid, small_grid.get(0, 0, 0))]
    assert keys == [(1, 0, 0)]
    assert face_neighbors(small_grid, small_grid.get(1, 1, 1)) == []
