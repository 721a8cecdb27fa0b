from __future__ import annotations

import itertools

import numpy as np
import pytest

from unfold_pipeline import (
    FACE_ORDER,
    BoundingBox,
    DegenerateBoundsError,
    Face,
    atlas_to_uv,
    build_region_layout,
    compute_bounding_box,
    map_to_atlas,
)


def test_bounding_box_extents(cube_positions):
    box = compute_bounding_box(cube_positions)
    assert box.minimum == (0.0, 0.0, 0.0)
    assert box.maximum == (1.0, 1.0, 1.0)
    assert box.extents == (1.0, 1.0, 1.0)


def test_zero_extent_box_is_rejected(flat_quad):
    with pytest.raises(DegenerateBoundsError, match="Y"):
        compute_bounding_box(flat_quad)


def test_unit_cube_atlas_is_four_by_three(cube_positions):
    layout = build_region_layout(compute_bounding_box(cube_positions))
    assert layout.tex_w == 4.0
    assert layout.tex_h == 3.0
    assert (layout[Face.TOP].x, layout[Face.TOP].y) == (1.0, 0.0)
    assert (layout[Face.LEFT].x, layout[Face.LEFT].y) == (0.0, 1.0)
    assert (layout[Face.FRONT].x, layout[Face.FRONT].y) == (1.0, 1.0)
    assert (layout[Face.RIGHT].x, layout[Face.RIGHT].y) == (2.0, 1.0)
    assert (layout[Face.BACK].x, layout[Face.BACK].y) == (3.0, 1.0)
    assert (layout[Face.BOTTOM].x, layout[Face.BOTTOM].y) == (1.0, 2.0)


def test_region_sizes_follow_box_extents():
    box = BoundingBox(minimum=(0.0, 0.0, 0.0), maximum=(2.0, 3.0, 4.0))
    layout = build_region_layout(box)
    assert layout.tex_w == 12.0
    assert layout.tex_h == 11.0
    assert (layout[Face.TOP].width, layout[Face.TOP].height) == (2.0, 4.0)
    assert (layout[Face.BOTTOM].width, layout[Face.BOTTOM].height) == (2.0, 4.0)
    assert (layout[Face.FRONT].width, layout[Face.FRONT].height) == (2.0, 3.0)
    assert (layout[Face.BACK].width, layout[Face.BACK].height) == (2.0, 3.0)
    assert (layout[Face.LEFT].width, layout[Face.LEFT].height) == (4.0, 3.0)
    assert (layout[Face.RIGHT].width, layout[Face.RIGHT].height) == (4.0, 3.0)


@pytest.mark.parametrize(
    "extents",
    [(1.0, 1.0, 1.0), (4.0, 1.4, 2.0), (0.1, 7.0, 3.0), (9.0, 0.5, 0.25)],
)
def test_regions_never_overlap_and_fit_the_atlas(extents):
    box = BoundingBox(minimum=(-1.0, 2.0, 0.5), maximum=tuple(m + e for m, e in zip((-1.0, 2.0, 0.5), extents)))
    layout = build_region_layout(box)

    for a, b in itertools.combinations(FACE_ORDER, 2):
        assert layout[a].overlap_area(layout[b]) == 0.0

    for face in FACE_ORDER:
        region = layout[face]
        assert region.x >= 0.0 and region.y >= 0.0
        assert region.x + region.width <= layout.tex_w + 1e-12
        assert region.y + region.height <= layout.tex_h + 1e-12


def test_region_mapping_table():
    box = BoundingBox(minimum=(0.0, 0.0, 0.0), maximum=(2.0, 3.0, 4.0))
    point = np.asarray([(0.5, 1.0, 1.5)])
    expected = {
        Face.TOP: (4.5, 2.5),
        Face.BOTTOM: (4.5, 8.5),
        Face.FRONT: (4.5, 6.0),
        Face.BACK: (11.5, 6.0),
        Face.LEFT: (1.5, 6.0),
        Face.RIGHT: (8.5, 6.0),
    }
    for face, uv in expected.items():
        np.testing.assert_allclose(map_to_atlas(point, face, box)[0], uv)


def test_mapping_uses_box_minimum_as_origin():
    box = BoundingBox(minimum=(10.0, -5.0, 3.0), maximum=(12.0, -2.0, 7.0))
    shifted = np.asarray([(10.5, -4.0, 4.5)])
    reference_box = BoundingBox(minimum=(0.0, 0.0, 0.0), maximum=(2.0, 3.0, 4.0))
    reference = np.asarray([(0.5, 1.0, 1.5)])
    for face in FACE_ORDER:
        np.testing.assert_allclose(
            map_to_atlas(shifted, face, box),
            map_to_atlas(reference, face, reference_box),
        )


def test_atlas_to_uv_flips_vertical_axis():
    box = BoundingBox(minimum=(0.0, 0.0, 0.0), maximum=(2.0, 3.0, 4.0))
    layout = build_region_layout(box)
    uv = atlas_to_uv(np.asarray([(0.0, 0.0), (12.0, 11.0), (6.0, 5.5)]), layout)
    np.testing.assert_allclose(uv, [(0.0, 1.0), (1.0, 0.0), (0.5, 0.5)])


def test_uv_bounds_match_region_rectangle():
    box = BoundingBox(minimum=(0.0, 0.0, 0.0), maximum=(1.0, 1.0, 1.0))
    layout = build_region_layout(box)
    assert layout[Face.TOP].uv_bounds(layout.tex_w, layout.tex_h) == pytest.approx((0.25, 2.0 / 3.0, 0.5, 1.0))
    assert layout[Face.BOTTOM].uv_bounds(layout.tex_w, layout.tex_h) == pytest.approx((0.25, 0.0, 0.5, 1.0 / 3.0))
