#!/usr/bin/env python3
"""
Box-unfold UV pipeline for single brick parts.

Pipeline stage
--------------
This module converts a triangular mesh into a box-unfold UV layout: every
triangle is assigned to one of the six faces of the part's bounding box and
its vertices are mapped into that face's rectangle of a cross-shaped atlas.
The layout is exported as a per-vertex UV array plus a PNG template that shows
every mapped triangle outline, so a user can paint the template and wrap it
back onto the part.

Input / output
--------------
Input is a non-indexed triangle stream (three consecutive positions per
triangle), typically expanded from a mesh file loaded through trimesh. Output
is a `ProjectionResult` holding the UV array, the template PNG bytes, and
diagnostics (bounding box, layout, face per triangle, exterior mask).

Key parameters
--------------
`scale` controls template resolution in pixels per model unit.
`exterior_filter` enables the outward single-ray visibility test.
`ray_backend` selects the injected ray-intersection capability.

Coordinate conventions
----------------------
Model coordinates are right-handed with +Y up. Atlas coordinates grow right
(`U`) and down (`V`) in model units; the stored UVs are normalized to `[0, 1]`
with `v = 1 - V / texH`, so `v` grows upward as in OpenGL/glTF textures. The
template image uses the raw atlas orientation (row 0 at the top).
"""

from __future__ import annotations

import argparse
import io
import json
import math
import sys
import warnings
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Callable

import numpy as np
import trimesh
from PIL import Image, ImageDraw

from ray_visibility import (
    RAY_BACKENDS,
    RayIntersector,
    exterior_vertex_mask,
    resolve_intersector,
)


EPS = 1e-12
DEFAULT_SCALE = 50.0
# WARNING: the visibility constants are fixed, unvalidated heuristics. The
# epsilon is in model units and does not scale with the part, so very large or
# very small parts may need a different value.
RAY_HIT_EPSILON = 1.0e-3
REFERENCE_OFFSET = 1.0
TEMPLATE_BACKGROUND = (255, 255, 255)
TEMPLATE_STROKE_COLOR = (255, 0, 0)
DEFAULT_RAY_CHUNK_SIZE = 256


class ProjectionError(ValueError):
    """Structural input error: the mesh cannot be unfolded."""


class MalformedMeshError(ProjectionError):
    """The position stream is not a whole number of finite triangles."""


class DegenerateBoundsError(ProjectionError):
    """The bounding box has zero extent along at least one axis."""


class ProjectionCancelledError(RuntimeError):
    """Raised when the caller's cancellation hook asks the projector to stop."""


class Face(str, Enum):
    """The six bounding-box faces of the unfold layout."""

    TOP = "top"
    BOTTOM = "bottom"
    FRONT = "front"
    BACK = "back"
    LEFT = "left"
    RIGHT = "right"


FACE_ORDER = (Face.TOP, Face.BOTTOM, Face.FRONT, Face.BACK, Face.LEFT, Face.RIGHT)

# (axis index, outward sign) for each face.
FACE_AXIS: dict[Face, tuple[int, float]] = {
    Face.TOP: (1, 1.0),
    Face.BOTTOM: (1, -1.0),
    Face.BACK: (2, 1.0),
    Face.FRONT: (2, -1.0),
    Face.RIGHT: (0, 1.0),
    Face.LEFT: (0, -1.0),
}


@dataclass(frozen=True)
class BoundingBox:
    """
    Axis-aligned bounding box of the part.

    Parameters
    ----------
    minimum : tuple[float, float, float]
        Minimum corner in model units.
    maximum : tuple[float, float, float]
        Maximum corner in model units.

    Returns
    -------
    None
        Dataclass container.

    Notes
    -----
    The extents follow the unfold naming: `length` along X (L), `height`
    along Y (H), `width` along Z (W).

    Assumptions
    -----------
    `minimum <= maximum` component-wise.
    """

    minimum: tuple[float, float, float]
    maximum: tuple[float, float, float]

    @property
    def length(self) -> float:
        return self.maximum[0] - self.minimum[0]

    @property
    def height(self) -> float:
        return self.maximum[1] - self.minimum[1]

    @property
    def width(self) -> float:
        return self.maximum[2] - self.minimum[2]

    @property
    def extents(self) -> tuple[float, float, float]:
        return (self.length, self.height, self.width)


@dataclass(frozen=True)
class Region:
    """One face rectangle of the atlas, in model units with `y` growing down."""

    face: Face
    x: float
    y: float
    width: float
    height: float

    def uv_bounds(self, tex_w: float, tex_h: float) -> tuple[float, float, float, float]:
        """Normalized `(u_min, v_min, u_max, v_max)` after the vertical flip."""
        return (
            self.x / tex_w,
            1.0 - ((self.y + self.height) / tex_h),
            (self.x + self.width) / tex_w,
            1.0 - (self.y / tex_h),
        )

    def overlap_area(self, other: Region) -> float:
        dx = min(self.x + self.width, other.x + other.width) - max(self.x, other.x)
        dy = min(self.y + self.height, other.y + other.height) - max(self.y, other.y)
        if dx <= 0.0 or dy <= 0.0:
            return 0.0
        return dx * dy


@dataclass(frozen=True)
class RegionLayout:
    """Cross-shaped atlas: one row of four side faces, top and bottom above and below."""

    tex_w: float
    tex_h: float
    regions: dict[Face, Region]

    def __getitem__(self, face: Face) -> Region:
        return self.regions[face]


@dataclass
class ProjectionConfig:
    """
    Parameters controlling projection, visibility and template rendering.

    Parameters
    ----------
    scale : float
        Template resolution in pixels per model unit.
    exterior_filter : bool
        If True, triangles with no exterior-visible vertex get the all-zero
        sentinel UV triple and are left out of the template.
    ray_backend : str
        Ray-intersection backend, one of `RAY_BACKENDS`.
    strict_backend : bool
        If True, a missing ray backend raises instead of degrading to
        "always exterior".
    stroke_width : int
        Template outline width in pixels.
    stroke_color : tuple[int, int, int]
        Template outline colour, 8-bit RGB.
    ray_chunk_size : int
        Number of rays handed to the backend per batch.

    Returns
    -------
    None
        Dataclass container.

    Notes
    -----
    Ranges are checked by `validate` before any mesh work starts.

    Assumptions
    -----------
    None.
    """

    scale: float = DEFAULT_SCALE
    exterior_filter: bool = False
    ray_backend: str = "numpy"
    strict_backend: bool = False
    stroke_width: int = 1
    stroke_color: tuple[int, int, int] = TEMPLATE_STROKE_COLOR
    ray_chunk_size: int = DEFAULT_RAY_CHUNK_SIZE

    def validate(self) -> None:
        if not math.isfinite(float(self.scale)) or self.scale <= 0:
            raise ValueError("scale must be > 0")
        if self.ray_backend not in RAY_BACKENDS:
            raise ValueError(f"ray_backend must be one of {', '.join(RAY_BACKENDS)}")
        if int(self.stroke_width) < 1:
            raise ValueError("stroke_width must be >= 1")
        if len(self.stroke_color) != 3 or any(not 0 <= int(c) <= 255 for c in self.stroke_color):
            raise ValueError("stroke_color must be three 8-bit channels")
        if int(self.ray_chunk_size) < 1:
            raise ValueError("ray_chunk_size must be >= 1")


@dataclass
class ProjectionResult:
    """
    Everything one projection call produces.

    Parameters
    ----------
    uv : np.ndarray
        UV attribute of shape `(V, 2)`, aligned with the input positions.
    template_png : bytes
        PNG-encoded template image.
    bounding_box : BoundingBox
        Box the layout was derived from.
    layout : RegionLayout
        Atlas size and face rectangles in model units.
    faces : list[Face]
        Face assigned to each triangle.
    exterior : np.ndarray
        Boolean mask of shape `(T,)`; False marks sentinel triangles.
    outline_count : int
        Number of triangle outlines drawn on the template.
    template_size : tuple[int, int]
        Template `(width, height)` in pixels.

    Returns
    -------
    None
        Dataclass container.

    Notes
    -----
    The result is self-contained; it holds no reference to the source mesh.

    Assumptions
    -----------
    None.
    """

    uv: np.ndarray
    template_png: bytes
    bounding_box: BoundingBox
    layout: RegionLayout
    faces: list[Face]
    exterior: np.ndarray
    outline_count: int
    template_size: tuple[int, int]
    ray_backend: str = field(default="disabled")

    @property
    def triangle_count(self) -> int:
        return len(self.faces)

    @property
    def sentinel_count(self) -> int:
        return int(np.count_nonzero(~self.exterior))

    def face_counts(self) -> dict[str, int]:
        counts = {face.value: 0 for face in FACE_ORDER}
        for face in self.faces:
            counts[face.value] += 1
        return counts


def load_mesh(mesh_path: Path) -> trimesh.Trimesh:
    """
    Load a part from disk and merge it into one triangular mesh.

    Parameters
    ----------
    mesh_path : Path
        Path to any mesh format trimesh can read (STL, OBJ, PLY, GLB, ...).

    Returns
    -------
    trimesh.Trimesh
        Single merged mesh.

    Notes
    -----
    Multi-geometry scenes are concatenated into one part. Degenerate faces
    and non-finite vertices are dropped; duplicate faces are kept since the
    unfold works per triangle.

    Assumptions
    -----------
    The file contains triangles or a scene that can be concatenated into one.
    """

    path = Path(mesh_path)
    if not path.exists():
        raise FileNotFoundError(f"Mesh file not found: {path}")

    loaded = trimesh.load(path, force="mesh")
    if isinstance(loaded, trimesh.Scene):
        if not loaded.geometry:
            raise ValueError(f"No geometry found in {path}")
        mesh = trimesh.util.concatenate(tuple(loaded.geometry.values()))
    else:
        mesh = loaded

    if not isinstance(mesh, trimesh.Trimesh):
        raise TypeError("Input file does not contain a valid triangular mesh.")

    mesh = mesh.copy()

    # Keep compatible with older/newer trimesh APIs.
    if hasattr(mesh, "nondegenerate_faces") and hasattr(mesh, "update_faces"):
        mesh.update_faces(mesh.nondegenerate_faces())
    elif hasattr(mesh, "remove_degenerate_faces"):
        mesh.remove_degenerate_faces()

    if hasattr(mesh, "remove_infinite_values"):
        mesh.remove_infinite_values()

    if mesh.faces.shape[0] == 0:
        raise ValueError("Mesh has zero faces after cleanup.")

    return mesh


def triangle_stream(source: trimesh.Trimesh | np.ndarray) -> np.ndarray:
    """
    Expand or validate a non-indexed triangle position stream.

    Parameters
    ----------
    source : trimesh.Trimesh | np.ndarray
        A mesh (expanded through its face indices) or positions of shape
        `(V, 3)` or flat `(3 * V,)`, three consecutive positions per triangle.

    Returns
    -------
    np.ndarray
        Positions of shape `(V, 3)` in model units, `V % 3 == 0`.

    Notes
    -----
    Expansion duplicates shared vertices so each triangle owns three UV slots.

    Assumptions
    -----------
    None; every structural problem raises `MalformedMeshError`.
    """

    if isinstance(source, trimesh.Trimesh):
        positions = np.asarray(source.triangles, dtype=np.float64).reshape(-1, 3)
    else:
        try:
            positions = np.asarray(source, dtype=np.float64)
        except (TypeError, ValueError) as exc:
            raise MalformedMeshError(f"Positions are not numeric: {exc}") from exc
        if positions.ndim == 1:
            if positions.shape[0] % 3 != 0:
                raise MalformedMeshError(
                    f"Flat position buffer of length {positions.shape[0]} is not a multiple of 3."
                )
            positions = positions.reshape(-1, 3)
        elif positions.ndim == 3 and positions.shape[1:] == (3, 3):
            positions = positions.reshape(-1, 3)

    if positions.ndim != 2 or positions.shape[1] != 3:
        raise MalformedMeshError(f"Positions must have shape (V, 3), got {positions.shape}.")
    if positions.shape[0] == 0:
        raise MalformedMeshError("Mesh has no triangles.")
    if positions.shape[0] % 3 != 0:
        raise MalformedMeshError(
            f"Vertex count {positions.shape[0]} is not a multiple of 3; "
            "expected a non-indexed triangle stream."
        )
    if not np.all(np.isfinite(positions)):
        raise MalformedMeshError("Positions contain NaN or infinite values.")
    return positions


def compute_bounding_box(positions: np.ndarray) -> BoundingBox:
    """Bounding box of a `(V, 3)` position array; rejects zero-extent boxes."""
    pts = np.asarray(positions, dtype=np.float64)
    lo = np.min(pts, axis=0)
    hi = np.max(pts, axis=0)
    box = BoundingBox(
        minimum=(float(lo[0]), float(lo[1]), float(lo[2])),
        maximum=(float(hi[0]), float(hi[1]), float(hi[2])),
    )
    flat_axes = [axis for axis, extent in zip("XYZ", box.extents) if extent <= EPS]
    if flat_axes:
        raise DegenerateBoundsError(
            f"Bounding box has zero extent along {', '.join(flat_axes)}; "
            "a box unfold needs a solid part."
        )
    return box


def build_region_layout(box: BoundingBox) -> RegionLayout:
    """
    Derive the atlas size and the six face rectangles from the box extents.

    Parameters
    ----------
    box : BoundingBox
        Non-degenerate bounding box.

    Returns
    -------
    RegionLayout
        Atlas of `2 * (L + W)` by `2 * W + H` model units.

    Notes
    -----
    The middle row holds left, front, right and back in that order, so each
    side face touches its neighbours along a shared box edge; top sits above
    front and bottom below it.

    Assumptions
    -----------
    Extents are positive.
    """

    length, height, width = box.extents
    regions = {
        Face.TOP: Region(Face.TOP, width, 0.0, length, width),
        Face.LEFT: Region(Face.LEFT, 0.0, width, width, height),
        Face.FRONT: Region(Face.FRONT, width, width, length, height),
        Face.RIGHT: Region(Face.RIGHT, width + length, width, width, height),
        Face.BACK: Region(Face.BACK, width + length + width, width, length, height),
        Face.BOTTOM: Region(Face.BOTTOM, width, width + height, length, width),
    }
    return RegionLayout(
        tex_w=2.0 * (length + width),
        tex_h=(2.0 * width) + height,
        regions=regions,
    )


def unit_vectors(vectors: np.ndarray) -> np.ndarray:
    """
    Scale each row to unit length; rows shorter than `EPS` become zero.

    A `(3,)` input is treated as a single row and returned as `(3,)`. The
    zero row is what lets a degenerate triangle fall through classification
    to `Face.LEFT` instead of raising.
    """
    arr = np.asarray(vectors, dtype=np.float64)
    rows = arr.reshape(-1, arr.shape[-1])
    lengths = np.linalg.norm(rows, axis=1)
    out = np.zeros_like(rows)
    keep = lengths > EPS
    out[keep] = rows[keep] / lengths[keep, None]
    return out.reshape(arr.shape)


def compute_face_normals(triangles: np.ndarray) -> np.ndarray:
    """
    Compute unit normals for a non-indexed triangle array.

    Parameters
    ----------
    triangles : np.ndarray
        Triangle corners of shape `(T, 3, 3)` in model units.

    Returns
    -------
    np.ndarray
        Unit face normals of shape `(T, 3)`.

    Notes
    -----
    Zero-area triangles get a zero normal instead of raising; classification
    then falls through to `Face.LEFT`.

    Assumptions
    -----------
    Corner order defines the winding, counter-clockwise seen from outside.
    """

    tri = np.asarray(triangles, dtype=np.float64).reshape(-1, 3, 3)
    if tri.shape[0] == 0:
        return np.zeros((0, 3), dtype=np.float64)

    return unit_vectors(np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0]))


def classify_normal(normal: np.ndarray) -> Face:
    """
    Assign a face normal to the box face of its dominant axis.

    Comparisons are strict, so exact ties fall to the next branch in the fixed
    priority Y > Z > X. Normals close to a tie can flip between neighbouring
    faces under floating-point noise; that is accepted on such geometry.
    """
    nx, ny, nz = float(normal[0]), float(normal[1]), float(normal[2])
    ax, ay, az = abs(nx), abs(ny), abs(nz)
    if ay > ax and ay > az:
        return Face.TOP if ny > 0.0 else Face.BOTTOM
    if az > ax:
        return Face.BACK if nz > 0.0 else Face.FRONT
    return Face.RIGHT if nx > 0.0 else Face.LEFT


# Region mappers take positions relative to the box minimum, shape (N, 3),
# and return raw atlas coordinates (U, V) in model units, shape (N, 2).
def _map_top(rel: np.ndarray, box: BoundingBox) -> np.ndarray:
    return np.column_stack((box.width + rel[:, 0], box.width - rel[:, 2]))


def _map_bottom(rel: np.ndarray, box: BoundingBox) -> np.ndarray:
    return np.column_stack((box.width + rel[:, 0], box.width + box.height + rel[:, 2]))


def _map_front(rel: np.ndarray, box: BoundingBox) -> np.ndarray:
    return np.column_stack((box.width + rel[:, 0], box.width + (box.height - rel[:, 1])))


def _map_back(rel: np.ndarray, box: BoundingBox) -> np.ndarray:
    u = (box.width + box.length + box.width) + (box.length - rel[:, 0])
    return np.column_stack((u, box.width + (box.height - rel[:, 1])))


def _map_left(rel: np.ndarray, box: BoundingBox) -> np.ndarray:
    return np.column_stack((rel[:, 2], box.width + (box.height - rel[:, 1])))


def _map_right(rel: np.ndarray, box: BoundingBox) -> np.ndarray:
    u = (box.width + box.length) + (box.width - rel[:, 2])
    return np.column_stack((u, box.width + (box.height - rel[:, 1])))


REGION_MAPPERS: dict[Face, Callable[[np.ndarray, BoundingBox], np.ndarray]] = {
    Face.TOP: _map_top,
    Face.BOTTOM: _map_bottom,
    Face.FRONT: _map_front,
    Face.BACK: _map_back,
    Face.LEFT: _map_left,
    Face.RIGHT: _map_right,
}


def map_to_atlas(points: np.ndarray, face: Face, box: BoundingBox) -> np.ndarray:
    """Raw atlas coordinates `(N, 2)` of model points projected onto `face`."""
    rel = np.asarray(points, dtype=np.float64).reshape(-1, 3) - np.asarray(box.minimum, dtype=np.float64)
    return REGION_MAPPERS[face](rel, box)


def atlas_to_uv(atlas_points: np.ndarray, layout: RegionLayout) -> np.ndarray:
    """Normalize atlas coordinates and flip `v` so it grows upward."""
    pts = np.asarray(atlas_points, dtype=np.float64).reshape(-1, 2)
    uv = np.empty_like(pts)
    uv[:, 0] = pts[:, 0] / layout.tex_w
    uv[:, 1] = 1.0 - (pts[:, 1] / layout.tex_h)
    # Sums of extents can overshoot the atlas size by one ulp.
    return np.clip(uv, 0.0, 1.0)


def _check_cancel(should_cancel: Callable[[], bool] | None) -> None:
    if should_cancel is not None and should_cancel():
        raise ProjectionCancelledError("Projection cancelled by caller.")


def reference_points(vertices: np.ndarray, vertex_faces: list[Face], box: BoundingBox) -> np.ndarray:
    """
    Ray origins for the exterior test, one per vertex.

    Each vertex is moved onto the bounding-box plane of its triangle's face
    and pushed `REFERENCE_OFFSET` further outward along that face's axis.
    """
    ref = np.asarray(vertices, dtype=np.float64).reshape(-1, 3).copy()
    for idx, face in enumerate(vertex_faces):
        axis, sign = FACE_AXIS[face]
        if sign > 0.0:
            ref[idx, axis] = box.maximum[axis] + REFERENCE_OFFSET
        else:
            ref[idx, axis] = box.minimum[axis] - REFERENCE_OFFSET
    return ref


def exterior_triangle_mask(
    triangles: np.ndarray,
    faces: list[Face],
    box: BoundingBox,
    intersector: RayIntersector,
    *,
    chunk_size: int = DEFAULT_RAY_CHUNK_SIZE,
    should_cancel: Callable[[], bool] | None = None,
) -> np.ndarray:
    """
    Mark triangles that have at least one exterior-visible vertex.

    Parameters
    ----------
    triangles : np.ndarray
        Triangle corners of shape `(T, 3, 3)` in model units.
    faces : list[Face]
        Face assigned to each triangle by `classify_normal`.
    box : BoundingBox
        Bounding box of the whole part.
    intersector : RayIntersector
        Nearest-hit backend built over the same triangles.
    chunk_size : int, optional
        Rays per backend call; cancellation is polled between chunks.
    should_cancel : Callable[[], bool] | None, optional
        Cooperative cancellation hook.

    Returns
    -------
    np.ndarray
        Boolean mask of shape `(T,)`.

    Notes
    -----
    One ray per vertex is cast from outside the box toward the vertex along
    the face axis. The vertex is exterior when the nearest hit lies within
    `RAY_HIT_EPSILON` of the vertex itself. This is a single-ray heuristic,
    not a visibility solver: thin protrusions and concave pockets can be
    misclassified. The cost is O(T * 3 * T) ray/triangle tests, which
    dominates the projection on anything but tiny parts.

    Assumptions
    -----------
    `faces` is aligned with `triangles`.
    """

    tri = np.asarray(triangles, dtype=np.float64).reshape(-1, 3, 3)
    vertices = tri.reshape(-1, 3)
    vertex_faces = [face for face in faces for _ in range(3)]
    origins = reference_points(vertices, vertex_faces, box)

    offsets = vertices - origins
    targets = np.linalg.norm(offsets, axis=1)
    directions = offsets / np.clip(targets, EPS, None)[:, None]

    step = max(1, int(chunk_size))
    hits = np.empty(vertices.shape[0], dtype=np.float64)
    for start in range(0, vertices.shape[0], step):
        _check_cancel(should_cancel)
        stop = min(start + step, vertices.shape[0])
        hits[start:stop] = intersector.nearest_hit_distances(origins[start:stop], directions[start:stop])

    vertex_ok = exterior_vertex_mask(hits, targets, RAY_HIT_EPSILON)
    return vertex_ok.reshape(-1, 3).any(axis=1)


def _pixel_extent(value: float) -> int:
    return max(1, int(math.ceil(value - 1.0e-9)))


def render_template(
    uv: np.ndarray,
    exterior: np.ndarray,
    layout: RegionLayout,
    scale: float,
    *,
    stroke_width: int = 1,
    stroke_color: tuple[int, int, int] = TEMPLATE_STROKE_COLOR,
) -> tuple[bytes, int, tuple[int, int]]:
    """
    Trace every mapped triangle onto a white canvas and encode it as PNG.

    Parameters
    ----------
    uv : np.ndarray
        UV attribute of shape `(V, 2)`.
    exterior : np.ndarray
        Boolean mask of shape `(V / 3,)`; False triangles are skipped.
    layout : RegionLayout
        Atlas the UVs were normalized against.
    scale : float
        Pixels per model unit.
    stroke_width : int, optional
        Outline width in pixels.
    stroke_color : tuple[int, int, int], optional
        Outline colour.

    Returns
    -------
    tuple[bytes, int, tuple[int, int]]
        PNG bytes, number of outlines drawn, and image `(width, height)`.

    Notes
    -----
    Points on the far atlas border are clamped to the last pixel row/column
    so outlines on the right and bottom edges stay visible.

    Assumptions
    -----------
    `uv` is in `[0, 1]` for every triangle where `exterior` is True.
    """

    width_px = _pixel_extent(layout.tex_w * scale)
    height_px = _pixel_extent(layout.tex_h * scale)
    image = Image.new("RGB", (width_px, height_px), TEMPLATE_BACKGROUND)
    draw = ImageDraw.Draw(image)

    tri_uv = np.asarray(uv, dtype=np.float64).reshape(-1, 3, 2)
    keep = np.asarray(exterior, dtype=bool)
    pixels = np.empty_like(tri_uv)
    pixels[:, :, 0] = np.clip(tri_uv[:, :, 0] * layout.tex_w * scale, 0.0, float(width_px - 1))
    pixels[:, :, 1] = np.clip((1.0 - tri_uv[:, :, 1]) * layout.tex_h * scale, 0.0, float(height_px - 1))

    outline_count = 0
    color = tuple(int(c) for c in stroke_color)
    for tri_idx in np.flatnonzero(keep):
        corners = [(float(x), float(y)) for x, y in pixels[tri_idx]]
        draw.line(corners + [corners[0]], fill=color, width=int(stroke_width))
        outline_count += 1

    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue(), outline_count, (width_px, height_px)


def project(
    mesh: trimesh.Trimesh | np.ndarray,
    scale: float | None = None,
    *,
    config: ProjectionConfig | None = None,
    intersector: RayIntersector | None = None,
    should_cancel: Callable[[], bool] | None = None,
) -> ProjectionResult:
    """
    Compute the box-unfold UVs and the template image for one part.

    Parameters
    ----------
    mesh : trimesh.Trimesh | np.ndarray
        The part, as a mesh or a non-indexed triangle position stream.
    scale : float | None, optional
        Pixels per model unit; overrides `config.scale` when given.
    config : ProjectionConfig | None, optional
        Projection parameters; defaults to `ProjectionConfig()`.
    intersector : RayIntersector | None, optional
        Ray backend for the exterior filter. If omitted and the filter is
        enabled, one is built from `config.ray_backend`.
    should_cancel : Callable[[], bool] | None, optional
        Polled between triangle iterations and ray chunks.

    Returns
    -------
    ProjectionResult
        UVs, template PNG and diagnostics.

    Notes
    -----
    Structural errors are raised before any UV buffer is allocated, and the
    call either returns a complete result or raises; it never hands back a
    partially written buffer.

    Assumptions
    -----------
    The part is a single convex-ish solid that unfolds onto six box faces.
    """

    cfg = config if config is not None else ProjectionConfig()
    if scale is not None:
        cfg = replace(cfg, scale=float(scale))
    cfg.validate()

    positions = triangle_stream(mesh)
    box = compute_bounding_box(positions)
    layout = build_region_layout(box)
    triangles = positions.reshape(-1, 3, 3)
    normals = compute_face_normals(triangles)

    faces: list[Face] = []
    for normal in normals:
        _check_cancel(should_cancel)
        faces.append(classify_normal(normal))

    backend_name = "disabled"
    if cfg.exterior_filter:
        if intersector is None:
            intersector = resolve_intersector(triangles, cfg.ray_backend, strict=cfg.strict_backend)
        backend_name = str(getattr(intersector, "name", type(intersector).__name__))
        exterior = exterior_triangle_mask(
            triangles,
            faces,
            box,
            intersector,
            chunk_size=cfg.ray_chunk_size,
            should_cancel=should_cancel,
        )
    else:
        exterior = np.ones(triangles.shape[0], dtype=bool)

    uv = np.zeros((positions.shape[0], 2), dtype=np.float64)
    for tri_idx, face in enumerate(faces):
        _check_cancel(should_cancel)
        if not exterior[tri_idx]:
            continue
        start = tri_idx * 3
        uv[start:start + 3] = atlas_to_uv(map_to_atlas(triangles[tri_idx], face, box), layout)

    template_png, outline_count, template_size = render_template(
        uv,
        exterior,
        layout,
        cfg.scale,
        stroke_width=cfg.stroke_width,
        stroke_color=cfg.stroke_color,
    )

    return ProjectionResult(
        uv=uv,
        template_png=template_png,
        bounding_box=box,
        layout=layout,
        faces=faces,
        exterior=exterior,
        outline_count=outline_count,
        template_size=template_size,
        ray_backend=backend_name,
    )


def sentinel_triangles(uv: np.ndarray) -> np.ndarray:
    """Boolean mask of triangles whose UV triple is the all-zero sentinel."""
    tri_uv = np.asarray(uv, dtype=np.float64).reshape(-1, 6)
    return np.all(tri_uv == 0.0, axis=1)


def build_textured_mesh(
    positions: np.ndarray,
    uv: np.ndarray,
    image: Image.Image,
) -> trimesh.Trimesh:
    """
    Wrap a user image onto the part using projected UVs.

    Parameters
    ----------
    positions : np.ndarray
        Non-indexed positions of shape `(V, 3)`.
    uv : np.ndarray
        UV attribute of shape `(V, 2)` from `project`.
    image : PIL.Image.Image
        Texture, usually a painted copy of the template.

    Returns
    -------
    trimesh.Trimesh
        Mesh with `TextureVisuals`, one vertex per UV slot.

    Notes
    -----
    `process=False` keeps the duplicated vertices; merging them would
    collapse the per-triangle UVs.

    Assumptions
    -----------
    `positions` and `uv` come from the same projection.
    """

    pts = triangle_stream(positions)
    coords = np.asarray(uv, dtype=np.float64)
    if coords.shape != (pts.shape[0], 2):
        raise ValueError(f"UV shape {coords.shape} does not match {pts.shape[0]} vertices.")

    faces = np.arange(pts.shape[0], dtype=np.int64).reshape(-1, 3)
    material = trimesh.visual.material.SimpleMaterial(image=image)
    visuals = trimesh.visual.TextureVisuals(uv=coords, material=material)
    return trimesh.Trimesh(vertices=pts, faces=faces, visual=visuals, process=False)


def export_textured_mesh(
    out_path: Path,
    positions: np.ndarray,
    uv: np.ndarray,
    image: Image.Image,
) -> Path:
    """Write the textured part; the format follows the file extension."""
    textured = build_textured_mesh(positions, uv, image)
    path = Path(out_path)
    textured.export(path)
    return path


def write_debug_json(
    json_path: Path,
    result: ProjectionResult,
    config: ProjectionConfig,
    source: str,
) -> None:
    """
    Export projection diagnostics as JSON.

    Parameters
    ----------
    json_path : Path
        Destination file path.
    result : ProjectionResult
        Projection output.
    config : ProjectionConfig
        Parameters used for the run.
    source : str
        Human-readable description of the input.

    Returns
    -------
    None

    Notes
    -----
    The UV array is written in full so a host can rebuild the textured part
    without rerunning the projection.

    Assumptions
    -----------
    Parent directory exists.
    """

    payload = {
        "source": source,
        "config": asdict(config),
        "bounding_box": {
            "min": list(result.bounding_box.minimum),
            "max": list(result.bounding_box.maximum),
            "extents": list(result.bounding_box.extents),
        },
        "atlas": {
            "tex_w": result.layout.tex_w,
            "tex_h": result.layout.tex_h,
            "regions": {
                face.value: asdict(region) | {"face": face.value}
                for face, region in result.layout.regions.items()
            },
        },
        "template_size": list(result.template_size),
        "ray_backend": result.ray_backend,
        "triangles": result.triangle_count,
        "sentinel_triangles": result.sentinel_count,
        "outline_count": result.outline_count,
        "face_counts": result.face_counts(),
        "faces": [face.value for face in result.faces],
        "uv": result.uv.tolist(),
    }
    Path(json_path).write_text(json.dumps(payload, indent=2), encoding="utf-8")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Define and parse the command-line interface for the pipeline.

    Parameters
    ----------
    argv : list[str] | None, optional
        Argument list; `sys.argv[1:]` when omitted.

    Returns
    -------
    argparse.Namespace
        Parsed command-line arguments.

    Notes
    -----
    The CLI exposes mesh loading, projection, template export, optional
    diagnostics and optional textured-mesh export in one entry point.

    Assumptions
    -----------
    Validation is deferred to `validate_args`.
    """

    parser = argparse.ArgumentParser(
        description="Compute a box-unfold UV layout and PNG template for one brick part"
    )

    parser.add_argument("--mesh", type=Path, default=None, help="Input mesh file (STL, OBJ, PLY, GLB, ...)")
    parser.add_argument("--png", type=Path, default=None, help="Output template PNG path")
    parser.add_argument("--json", type=Path, default=None, help="Optional debug JSON path")
    parser.add_argument("--uv-out", type=Path, default=None, help="Optional .npy dump of the UV array")
    parser.add_argument("--texture", type=Path, default=None, help="Image to wrap onto the part")
    parser.add_argument(
        "--textured-out",
        type=Path,
        default=None,
        help="Output path for the textured part (format from extension, e.g. .glb or .obj).",
    )

    parser.add_argument(
        "--scale",
        type=float,
        default=DEFAULT_SCALE,
        help="Template resolution in pixels per model unit.",
    )
    parser.add_argument("--stroke-width", type=int, default=1, help="Template outline width in pixels")
    parser.add_argument(
        "--exterior-filter",
        action="store_true",
        help="Drop triangles whose vertices are not reachable by an outward ray.",
    )
    parser.add_argument(
        "--ray-backend",
        type=str,
        default="numpy",
        choices=RAY_BACKENDS,
        help="Ray-intersection backend for --exterior-filter.",
    )
    parser.add_argument(
        "--strict-backend",
        action="store_true",
        help="Fail instead of disabling --exterior-filter when the backend is missing.",
    )
    parser.add_argument(
        "--smoke-test",
        action="store_true",
        help="Run the built-in unit-cube check and exit.",
    )
    return parser.parse_args(argv)


def validate_args(args: argparse.Namespace) -> None:
    """
    Validate CLI parameters before any mesh work.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command-line arguments.

    Returns
    -------
    None

    Notes
    -----
    Explicit checks give clearer errors than downstream failures.

    Assumptions
    -----------
    `args` was produced by `parse_args`.
    """

    if args.smoke_test:
        return
    if args.mesh is None or args.png is None:
        raise ValueError("--mesh and --png are required unless --smoke-test is given")
    if args.scale <= 0:
        raise ValueError("--scale must be > 0")
    if args.stroke_width < 1:
        raise ValueError("--stroke-width must be >= 1")
    if (args.texture is None) != (args.textured_out is None):
        raise ValueError("--texture and --textured-out must be given together")
    if args.texture is not None and not args.texture.exists():
        raise FileNotFoundError(f"Texture image not found: {args.texture}")


def run(args: argparse.Namespace) -> int:
    """
    Execute the full mesh-to-template pipeline for one command-line invocation.

    Parameters
    ----------
    args : argparse.Namespace
        Command-line arguments.

    Returns
    -------
    int
        Process exit code (`0` on success).

    Notes
    -----
    Outputs are written only after the projection completed, so a failure
    leaves no half-written template behind.

    Assumptions
    -----------
    Runtime dependencies are installed and the input mesh is readable.
    """

    validate_args(args)

    if args.smoke_test:
        stats = unit_cube_unfold_smoke_test()
        print(f"[OK] Smoke test passed: {stats}")
        return 0

    config = ProjectionConfig(
        scale=float(args.scale),
        exterior_filter=bool(args.exterior_filter),
        ray_backend=str(args.ray_backend),
        strict_backend=bool(args.strict_backend),
        stroke_width=int(args.stroke_width),
    )

    mesh = load_mesh(args.mesh)
    positions = triangle_stream(mesh)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", RuntimeWarning)
        result = project(positions, config=config)
    for warning in caught:
        print(f"[WARN] {warning.message}", file=sys.stderr)

    Path(args.png).write_bytes(result.template_png)

    if args.uv_out is not None:
        np.save(args.uv_out, result.uv)

    if args.json is not None:
        write_debug_json(args.json, result, config, source=str(args.mesh))

    if args.texture is not None:
        with Image.open(args.texture) as texture:
            export_textured_mesh(args.textured_out, positions, result.uv, texture.convert("RGB"))

    box = result.bounding_box
    print(f"[OK] Mesh loaded: {args.mesh}")
    print(f"[OK] Triangles: {result.triangle_count}")
    print(f"[OK] Extents L/H/W: {box.length:.4f} / {box.height:.4f} / {box.width:.4f}")
    print(f"[OK] Atlas: {result.layout.tex_w:.4f} x {result.layout.tex_h:.4f} model units")
    print(f"[OK] Faces: {result.face_counts()}")
    if config.exterior_filter:
        print(f"[OK] Ray backend: {result.ray_backend}")
        print(f"[OK] Non-exterior triangles dropped: {result.sentinel_count}")
    print(f"[OK] Template saved: {args.png} ({result.template_size[0]}x{result.template_size[1]} px)")
    if args.uv_out is not None:
        print(f"[OK] UV array saved: {args.uv_out}")
    if args.json is not None:
        print(f"[OK] JSON saved: {args.json}")
    if args.texture is not None:
        print(f"[OK] Textured part saved: {args.textured_out}")
    return 0


def unit_cube_unfold_smoke_test() -> dict[str, int]:
    """
    Run a deterministic unfold check on the unit cube.

    Parameters
    ----------
    None

    Returns
    -------
    dict[str, int]
        Summary counters of the plain and the exterior-filtered runs.

    Notes
    -----
    This is a regression check for classification, atlas layout and the
    exterior test, runnable without a test runner through `--smoke-test`.

    Assumptions
    -----------
    Dependencies are installed.
    """

    from brick_shapes import unit_cube

    positions = triangle_stream(unit_cube())
    plain = project(positions)
    filtered = project(positions, config=ProjectionConfig(exterior_filter=True, ray_backend="numpy"))

    if (plain.layout.tex_w, plain.layout.tex_h) != (4.0, 3.0):
        raise AssertionError(f"Unit cube atlas should be 4 x 3, got {plain.layout.tex_w} x {plain.layout.tex_h}")
    counts = plain.face_counts()
    if any(count != 2 for count in counts.values()):
        raise AssertionError(f"Each cube face should own two triangles, got {counts}")
    if filtered.sentinel_count != 0:
        raise AssertionError("A closed convex cube should have no hidden triangles.")
    if not np.array_equal(plain.uv, filtered.uv):
        raise AssertionError("Exterior filtering changed UVs on a fully visible cube.")

    for tri_idx, face in enumerate(plain.faces):
        u0, v0, u1, v1 = plain.layout[face].uv_bounds(plain.layout.tex_w, plain.layout.tex_h)
        tri_uv = plain.uv[tri_idx * 3:(tri_idx * 3) + 3]
        if not (
            np.all(tri_uv[:, 0] >= u0 - 1.0e-9)
            and np.all(tri_uv[:, 0] <= u1 + 1.0e-9)
            and np.all(tri_uv[:, 1] >= v0 - 1.0e-9)
            and np.all(tri_uv[:, 1] <= v1 + 1.0e-9)
        ):
            raise AssertionError(f"Triangle {tri_idx} left its {face.value} region.")

    return {
        "triangles": plain.triangle_count,
        "outlines": plain.outline_count,
        "outlines_filtered": filtered.outline_count,
        "template_width": plain.template_size[0],
        "template_height": plain.template_size[1],
    }


def main(argv: list[str] | None = None) -> int:
    """
    Command-line entry point for the unfold pipeline.

    Parameters
    ----------
    argv : list[str] | None, optional
        Argument list; `sys.argv[1:]` when omitted.

    Returns
    -------
    int
        Process exit code.

    Notes
    -----
    Exceptions are converted into a non-zero exit code after a readable stderr
    message, which keeps batch runs scriptable.

    Assumptions
    -----------
    The script is executed in a standard Python process.
    """

    args = parse_args(argv)
    try:
        return run(args)
    except Exception as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
