#!/usr/bin/env python3
"""
Parametric demo parts for the unfold pipeline.

Dimensions are in stud-pitch units, using the LDraw ratios of a standard
brick (20 LDU pitch, 24 LDU body height, 6 LDU stud radius, 4 LDU stud
height) divided by the pitch. Studs point along +Y, which is the "top" face
of the unfold layout.
"""

from __future__ import annotations

import math

import numpy as np
import trimesh


STUD_PITCH = 1.0
BODY_HEIGHT = 1.2
STUD_RADIUS = 0.3
STUD_HEIGHT = 0.2
STUD_SECTIONS = 16


def box(
    extents: tuple[float, float, float] = (1.0, 1.0, 1.0),
    origin: tuple[float, float, float] = (0.0, 0.0, 0.0),
) -> trimesh.Trimesh:
    """Axis-aligned box with its minimum corner at `origin` and outward winding."""
    ext = np.asarray(extents, dtype=np.float64)
    mesh = trimesh.creation.box(extents=ext)
    mesh.apply_translation(np.asarray(origin, dtype=np.float64) + (ext / 2.0))
    return mesh


def unit_cube() -> trimesh.Trimesh:
    """The 12-triangle cube spanning (0, 0, 0)-(1, 1, 1)."""
    return box((1.0, 1.0, 1.0))


def stud(center_x: float, center_z: float, base_y: float, sections: int = STUD_SECTIONS) -> trimesh.Trimesh:
    cylinder = trimesh.creation.cylinder(radius=STUD_RADIUS, height=STUD_HEIGHT, sections=sections)
    # trimesh builds cylinders along +Z; stand them up along +Y.
    cylinder.apply_transform(trimesh.transformations.rotation_matrix(-math.pi / 2.0, (1.0, 0.0, 0.0)))
    cylinder.apply_translation((center_x, base_y + (STUD_HEIGHT / 2.0), center_z))
    return cylinder


def brick(studs_x: int = 4, studs_z: int = 2, sections: int = STUD_SECTIONS) -> trimesh.Trimesh:
    """
    Studded brick, e.g. the 2x4 part 3001 with the defaults.

    The body and the studs are concatenated rather than boolean-merged, so the
    body's top face stays present underneath every stud. That hidden patch is
    what the exterior-visibility test is expected to drop.
    """

    if studs_x < 1 or studs_z < 1:
        raise ValueError("A brick needs at least one stud in each direction.")

    parts = [box((studs_x * STUD_PITCH, BODY_HEIGHT, studs_z * STUD_PITCH))]
    for ix in range(studs_x):
        for iz in range(studs_z):
            parts.append(
                stud(
                    center_x=(ix + 0.5) * STUD_PITCH,
                    center_z=(iz + 0.5) * STUD_PITCH,
                    base_y=BODY_HEIGHT,
                    sections=sections,
                )
            )
    return trimesh.util.concatenate(parts)


BUILTIN_PARTS = {
    "unit_cube": unit_cube,
    "brick_1x1": lambda: brick(1, 1),
    "brick_2x4": lambda: brick(4, 2),
}
