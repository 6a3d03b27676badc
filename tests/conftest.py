import matplotlib

matplotlib.use("Agg")

import numpy as np
import geopandas as gpd
import pytest
from shapely.geometry import box

from hexmap.algos.hex_grid import HexGridConfig, build_target_districts
from hexmap.data.hex_grid import HexGrid

SIDE = 400_000.0
HALF = SIDE / 2


def quadrant_of(x: float, y: float) -> int:
    """1 = NW, 2 = NE, 3 = SW, 4 = SE"""
    if y >= HALF:
        return 1 if x < HALF else 2
    return 3 if x < HALF else 4


@pytest.fixture
def outline():
    return box(0, 0, SIDE, SIDE)


@pytest.fixture
def quadrants():
    return gpd.GeoSeries(
        [
            box(0, HALF, HALF, SIDE),
            box(HALF, HALF, SIDE, SIDE),
            box(0, 0, HALF, HALF),
            box(HALF, 0, SIDE, HALF),
        ]
    )


@pytest.fixture
def square_grid():
    """4x4 grid of 100 km squares over the outline."""
    step = SIDE / 4
    cells = [box(c * step, r * step, (c + 1) * step, (r + 1) * step) for r in range(4) for c in range(4)]
    return HexGrid.from_cells(gpd.GeoSeries(cells), n_distr=4)


@pytest.fixture
def quadrant_targets(quadrants):
    return build_target_districts(quadrants, HexGridConfig())


@pytest.fixture
def quadrant_labels(square_grid):
    return np.array([quadrant_of(x, y) for x, y in square_grid.centroids], dtype=int)


def cell_at(grid: HexGrid, x: float, y: float) -> int:
    d = np.hypot(grid.centroids[:, 0] - x, grid.centroids[:, 1] - y)
    return int(np.argmin(d))
