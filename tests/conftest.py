from __future__ import annotations

import numpy as np
import pytest

from brick_shapes import brick, unit_cube
from unfold_pipeline import triangle_stream


@pytest.fixture
def cube_positions() -> np.ndarray:
    return triangle_stream(unit_cube())


@pytest.fixture
def brick_positions() -> np.ndarray:
    return triangle_stream(brick(4, 2))


@pytest.fixture
def flat_quad() -> np.ndarray:
    # Two triangles in the y = 0 plane: zero height.
    return np.asarray(
        [
            (0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (1.0, 0.0, 1.0),
            (0.0, 0.0, 0.0), (1.0, 0.0, 1.0), (0.0, 0.0, 1.0),
        ],
        dtype=np.float64,
    )


class BlockingIntersector:
    """Every ray hits something half a unit in front of its origin."""

    name = "blocking"

    def __init__(self) -> None:
        self.calls = 0

    def nearest_hit_distances(self, origins, directions):
        self.calls += 1
        return np.full(np.asarray(origins).reshape(-1, 3).shape[0], 0.5)


@pytest.fixture
def blocking_intersector() -> BlockingIntersector:
    return BlockingIntersector()
