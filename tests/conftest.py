# tests/conftest.py

import numpy as np
import pytest

from semantic_grid.types import Bounds, Cell, Grid


def make_cell(grid_pos, min_pt, max_pt, color, count=25, variance=0.01, density=10.0):
    """Cell whose mean position is the center of its bounds."""
    bounds = Bounds(min_pt, max_pt)
    return Cell(
        grid_pos=tuple(grid_pos),
        count=count,
        mean_position=bounds.center.copy(),
        mean_color=np.asarray(color, dtype=np.float64),
        color_variance=variance,
        bounds=bounds,
        density=density,
        point_indices=list(range(count)),
    )


def make_grid(resolution, bounds_min, bounds_max, cells):
    bounds = Bounds(bounds_min, bounds_max)
    grid = Grid(resolution=tuple(resolution), bounds=bounds,
                cell_size=bounds.size / np.asarray(resolution, dtype=np.float64))
    for cell in cells:
        grid.cells[grid.pack(*cell.grid_pos)] = cell
    return grid


@pytest.fixture
def cell_factory():
    return make_cell


@pytest.fixture
def grid_factory():
    return make_grid


@pytest.fixture
def small_grid():
    """5x5x5 grid over [0, 10]^3 with three occupied cells."""
    return make_grid((5, 5, 5), (0, 0, 0), (10, 10, 10), [
        make_cell((0, 0, 0), (0, 0, 0), (2, 2, 2), (0.8, 0.2, 0.1), count=50),
        make_cell((1, 0, 0), (2, 0, 0), (4, 2, 2), (0.78, 0.22, 0.1), count=20),
        make_cell((1, 1, 1), (2, 2, 2), (4, 4, 4), (0.1, 0.3, 0.9), count=15),
    ])


@pytest.fixture
def vertical_grid():
    """Column of five grey cells at (0, y, 0) in a 2x6x2 grid of unit cells."""
    cells = [make_cell((0, y, 0), (0, y, 0), (1, y + 1, 1), (0.55, 0.55, 0.55)) for y in range(5)]
    return make_grid((2, 6, 2), (0, 0, 0), (2, 6, 2), cells)
