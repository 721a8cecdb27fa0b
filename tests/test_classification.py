from __future__ import annotations

import numpy as np
import pytest

from unfold_pipeline import Face, classify_normal, compute_face_normals, unit_vectors


@pytest.mark.parametrize(
    "normal, face",
    [
        ((0.0, 1.0, 0.0), Face.TOP),
        ((0.0, -1.0, 0.0), Face.BOTTOM),
        ((0.0, 0.0, 1.0), Face.BACK),
        ((0.0, 0.0, -1.0), Face.FRONT),
        ((1.0, 0.0, 0.0), Face.RIGHT),
        ((-1.0, 0.0, 0.0), Face.LEFT),
        ((0.2, 0.9, -0.3), Face.TOP),
        ((0.6, -0.1, -0.7), Face.FRONT),
    ],
)
def test_dominant_axis_selects_face(normal, face):
    assert classify_normal(unit_vectors(np.asarray(normal))) is face


@pytest.mark.parametrize(
    "normal, face",
    [
        # Y ties fall to the Z/X branches, Z/X ties fall to X.
        ((1.0, 1.0, 0.0), Face.RIGHT),
        ((0.0, 1.0, 1.0), Face.BACK),
        ((0.0, 1.0, -1.0), Face.FRONT),
        ((1.0, 0.0, 1.0), Face.RIGHT),
        ((-1.0, 0.0, 1.0), Face.LEFT),
        ((1.0, 1.0, 1.0), Face.RIGHT),
    ],
)
def test_exact_ties_follow_fixed_priority(normal, face):
    assert classify_normal(np.asarray(normal, dtype=np.float64)) is face


def test_zero_normal_falls_through_to_left():
    assert classify_normal(np.zeros(3)) is Face.LEFT


def test_face_normals_of_degenerate_triangle_are_zero():
    triangles = np.asarray(
        [
            [(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0)],
            [(0.0, 0.0, 0.0), (1.0, 1.0, 1.0), (2.0, 2.0, 2.0)],
        ]
    )
    normals = compute_face_normals(triangles)
    np.testing.assert_allclose(normals[0], (0.0, 0.0, 1.0))
    np.testing.assert_array_equal(normals[1], (0.0, 0.0, 0.0))


def test_classification_is_deterministic(cube_positions):
    triangles = cube_positions.reshape(-1, 3, 3)
    first = [classify_normal(n) for n in compute_face_normals(triangles)]
    second = [classify_normal(n) for n in compute_face_normals(triangles.copy())]
    assert first == second


def test_cube_face_normals_point_outward(cube_positions):
    triangles = cube_positions.reshape(-1, 3, 3)
    normals = compute_face_normals(triangles)
    centers = triangles.mean(axis=1) - 0.5
    assert np.all(np.sum(normals * centers, axis=1) > 0.0)


def test_unit_vectors_zero_rows_stay_zero():
    rows = unit_vectors(np.asarray([(3.0, 0.0, 4.0), (0.0, 0.0, 0.0), (1e-14, 0.0, 0.0)]))
    np.testing.assert_allclose(rows[0], (0.6, 0.0, 0.8))
    np.testing.assert_array_equal(rows[1:], np.zeros((2, 3)))
    assert unit_vectors(np.asarray((0.0, -2.0, 0.0))).tolist() == [0.0, -1.0, 0.0]
    assert classify_normal(unit_vectors(np.zeros(3))) is Face.LEFT
