"""
Synthetic edge masks shared by the tests. Everything is generated on the fly,
so no test assets are required.
"""
import numpy as np
import pytest

from hausfinder import imaging
from hausfinder.grids import EdgeMask

NEEDLE_SIZE = 21
HAYSTACK_WIDTH = 61
HAYSTACK_HEIGHT = 49
TRUE_OFFSET = (12, 8)


def _needle_points():
    """An 'L' with a diagonal tick: no rotational or translational symmetry."""
    points = [(6, y) for y in range(4, 16)]
    points += [(x, 15) for x in range(7, 15)]
    points += [(10 + i, 6 + i) for i in range(4)]
    return points


def paste(shape: EdgeMask, width: int, height: int, offset) -> EdgeMask:
    dx, dy = offset
    cells = np.zeros((height, width), dtype=bool)
    cells[dy : dy + shape.height, dx : dx + shape.width] |= shape.cells
    return EdgeMask(cells)


@pytest.fixture
def needle_edges() -> EdgeMask:
    return EdgeMask.from_points(NEEDLE_SIZE, NEEDLE_SIZE, _needle_points())


@pytest.fixture
def haystack_edges(needle_edges) -> EdgeMask:
    return paste(needle_edges, HAYSTACK_WIDTH, HAYSTACK_HEIGHT, TRUE_OFFSET)


@pytest.fixture
def rotated_haystack_edges(needle_edges) -> EdgeMask:
    rotated = imaging.warp_edge_mask(needle_edges, 90, 1.0)
    return paste(rotated, HAYSTACK_WIDTH, HAYSTACK_HEIGHT, TRUE_OFFSET)


@pytest.fixture
def random_edges():
    rng = np.random.default_rng(7)

    def _make(width, height, density):
        cells = rng.random((height, width)) < density
        cells[height // 2, width // 2] = True
        return EdgeMask(cells)

    return _make
