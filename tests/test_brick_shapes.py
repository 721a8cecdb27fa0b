from __future__ import annotations

import numpy as np
import pytest

from brick_shapes import (
    BODY_HEIGHT,
    BUILTIN_PARTS,
    STUD_HEIGHT,
    STUD_RADIUS,
    box,
    brick,
    unit_cube,
)


def test_unit_cube_spans_zero_to_one():
    cube = unit_cube()
    assert len(cube.faces) == 12
    np.testing.assert_allclose(cube.bounds, [(0.0, 0.0, 0.0), (1.0, 1.0, 1.0)])


def test_box_minimum_corner_is_origin():
    part = box((4.0, 1.2, 2.0), origin=(-2.0, 0.0, -1.0))
    np.testing.assert_allclose(part.bounds, [(-2.0, 0.0, -1.0), (2.0, 1.2, 1.0)])


def test_brick_studs_point_up():
    part = brick(4, 2)
    np.testing.assert_allclose(
        part.bounds,
        [(0.0, 0.0, 0.0), (4.0, BODY_HEIGHT + STUD_HEIGHT, 2.0)],
        atol=1e-9,
    )
    above_body = part.vertices[part.vertices[:, 1] > BODY_HEIGHT + 1e-9]
    # Stud tops stay inside their stud footprint.
    cell_offsets = np.mod(above_body[:, [0, 2]], 1.0) - 0.5
    assert np.all(np.linalg.norm(cell_offsets, axis=1) <= STUD_RADIUS + 1e-9)


def test_brick_needs_studs():
    with pytest.raises(ValueError):
        brick(0, 2)


def test_builtin_parts_build():
    assert set(BUILTIN_PARTS) == {"unit_cube", "brick_1x1", "brick_2x4"}
    for factory in BUILTIN_PARTS.values():
        assert len(factory().faces) >= 12
