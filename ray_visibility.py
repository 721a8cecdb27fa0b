#!/usr/bin/env python3
"""
Ray-intersection backends for the exterior-visibility test.

The unfold projector never talks to a geometry engine directly. It asks an
injected intersector for the nearest hit distance of a batch of rays against
the whole part, and decides exterior visibility from those distances.

Backends:
- `NumpyRayIntersector`: vectorized Möller–Trumbore against every triangle.
- `TrimeshRayIntersector`: delegates to `trimesh.Trimesh.ray` (needs `rtree`
  or Embree to be installed).
- `AlwaysExterior`: used when no backend can be built; every ray misses.
"""

from __future__ import annotations

import importlib.util
import warnings
from typing import Protocol

import numpy as np
import trimesh
from trimesh import ray as trimesh_ray


EPS = 1.0e-12
# Inclusive barycentric margin so rays aimed exactly at a shared vertex or
# edge still register a hit on the triangles that own it.
BARYCENTRIC_TOLERANCE = 1.0e-9
RAY_BACKENDS = ("numpy", "trimesh", "none")
# Upper bound on ray x triangle pairs per vectorized step; one (pairs, 3)
# float64 temporary is about 24 MB at this size.
MAX_RAY_TRIANGLE_PAIRS = 1 << 20


class RayBackendUnavailableError(RuntimeError):
    """Raised when a requested ray backend cannot be constructed."""


class RayIntersector(Protocol):
    """Capability used by the exterior-visibility test."""

    def nearest_hit_distances(self, origins: np.ndarray, directions: np.ndarray) -> np.ndarray:
        """
        Return the nearest positive hit distance per ray.

        `directions` are unit vectors, so distances are in model units.
        Rays that hit nothing report `+inf`.
        """
        ...


class AlwaysExterior:
    """Fallback intersector: nothing obstructs any ray."""

    name = "none"

    def nearest_hit_distances(self, origins: np.ndarray, directions: np.ndarray) -> np.ndarray:
        count = np.asarray(origins, dtype=np.float64).reshape(-1, 3).shape[0]
        return np.full(count, np.inf, dtype=np.float64)


class NumpyRayIntersector:
    """
    Brute-force ray/triangle intersection over a non-indexed triangle array.

    Every ray is tested against every triangle. Rays are processed in steps of
    at most `max_pairs // len(triangles)` (at least one), so temporaries stay
    near `max_pairs` entries whatever batch size the caller hands in. A
    single ray against more than `max_pairs` triangles still allocates one
    full row per step.
    """

    name = "numpy"

    def __init__(
        self,
        triangles: np.ndarray,
        tolerance: float = BARYCENTRIC_TOLERANCE,
        max_pairs: int = MAX_RAY_TRIANGLE_PAIRS,
    ) -> None:
        tri = np.asarray(triangles, dtype=np.float64).reshape(-1, 3, 3)
        self.v0 = tri[:, 0]
        self.edge1 = tri[:, 1] - tri[:, 0]
        self.edge2 = tri[:, 2] - tri[:, 0]
        self.tolerance = float(tolerance)
        self.max_pairs = max(1, int(max_pairs))

    def nearest_hit_distances(self, origins: np.ndarray, directions: np.ndarray) -> np.ndarray:
        orig = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
        dirs = np.asarray(directions, dtype=np.float64).reshape(-1, 3)
        if orig.shape[0] == 0:
            return np.zeros((0,), dtype=np.float64)
        if self.v0.shape[0] == 0:
            return np.full(orig.shape[0], np.inf, dtype=np.float64)

        step = max(1, self.max_pairs // self.v0.shape[0])
        nearest = np.empty(orig.shape[0], dtype=np.float64)
        for start in range(0, orig.shape[0], step):
            stop = min(start + step, orig.shape[0])
            nearest[start:stop] = self._nearest_step(orig[start:stop], dirs[start:stop])
        return nearest

    def _nearest_step(self, orig: np.ndarray, dirs: np.ndarray) -> np.ndarray:
        d = dirs[:, None, :]
        p = np.cross(d, self.edge2[None, :, :])
        det = np.sum(self.edge1[None, :, :] * p, axis=2)
        valid = np.abs(det) > EPS
        inv_det = np.zeros_like(det)
        inv_det[valid] = 1.0 / det[valid]

        s = orig[:, None, :] - self.v0[None, :, :]
        u = np.sum(s * p, axis=2) * inv_det
        q = np.cross(s, self.edge1[None, :, :])
        v = np.sum(d * q, axis=2) * inv_det
        t = np.sum(self.edge2[None, :, :] * q, axis=2) * inv_det

        tol = self.tolerance
        hit = (
            valid
            & (u >= -tol)
            & (v >= -tol)
            & ((u + v) <= 1.0 + tol)
            & (t > EPS)
        )
        distances = np.where(hit, t, np.inf)
        return np.min(distances, axis=1)


class TrimeshRayIntersector:
    """Nearest-hit queries through trimesh's ray module."""

    name = "trimesh"

    def __init__(self, triangles: np.ndarray) -> None:
        if not trimesh_ray_available():
            raise RayBackendUnavailableError(
                "trimesh ray queries need 'rtree' or Embree. "
                "Install with: pip install rtree"
            )
        tri = np.asarray(triangles, dtype=np.float64).reshape(-1, 3, 3)
        vertices = tri.reshape(-1, 3)
        faces = np.arange(vertices.shape[0], dtype=np.int64).reshape(-1, 3)
        # process=False keeps duplicated vertices so face ids match the input.
        self.mesh = trimesh.Trimesh(vertices=vertices, faces=faces, process=False)

    def nearest_hit_distances(self, origins: np.ndarray, directions: np.ndarray) -> np.ndarray:
        orig = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
        dirs = np.asarray(directions, dtype=np.float64).reshape(-1, 3)
        nearest = np.full(orig.shape[0], np.inf, dtype=np.float64)
        if orig.shape[0] == 0 or len(self.mesh.faces) == 0:
            return nearest

        locations, index_ray, _index_tri = self.mesh.ray.intersects_location(
            ray_origins=orig,
            ray_directions=dirs,
            multiple_hits=False,
        )
        if len(index_ray) == 0:
            return nearest
        index_ray = np.asarray(index_ray, dtype=np.int64)
        dist = np.linalg.norm(np.asarray(locations, dtype=np.float64) - orig[index_ray], axis=1)
        np.minimum.at(nearest, index_ray, dist)
        return nearest


def trimesh_ray_available() -> bool:
    """True when trimesh can answer ray queries in this environment."""
    if bool(getattr(trimesh_ray, "has_embree", False)):
        return True
    return importlib.util.find_spec("rtree") is not None


def resolve_intersector(
    triangles: np.ndarray,
    backend: str = "numpy",
    *,
    strict: bool = False,
) -> RayIntersector:
    """
    Build the ray backend named by `backend` once, at setup time.

    Parameters
    ----------
    triangles : np.ndarray
        Non-indexed triangles of shape `(T, 3, 3)` in model units.
    backend : str
        One of `RAY_BACKENDS`.
    strict : bool, optional
        If True, a missing backend raises instead of degrading.

    Returns
    -------
    RayIntersector
        A working backend, or `AlwaysExterior` when none is available.

    Notes
    -----
    Degradation is reported exactly once, here, as a `RuntimeWarning`; the
    per-triangle loop never sees the failure.
    """

    if backend not in RAY_BACKENDS:
        raise ValueError(f"Unknown ray backend {backend!r}; expected one of {', '.join(RAY_BACKENDS)}")

    if backend == "numpy":
        return NumpyRayIntersector(triangles)

    if backend == "trimesh":
        try:
            return TrimeshRayIntersector(triangles)
        except RayBackendUnavailableError as exc:
            reason = str(exc)
    else:
        reason = "no ray backend configured"

    if strict:
        raise RayBackendUnavailableError(f"Exterior filtering unavailable: {reason}")
    warnings.warn(
        f"Exterior filtering disabled ({reason}); every triangle is treated as exterior.",
        RuntimeWarning,
        stacklevel=2,
    )
    return AlwaysExterior()


def exterior_vertex_mask(
    hit_distances: np.ndarray,
    target_distances: np.ndarray,
    epsilon: float,
) -> np.ndarray:
    """
    Decide per vertex whether the nearest hit is the vertex itself.

    A ray that hits nothing is unobstructed and counts as exterior.
    """
    hits = np.asarray(hit_distances, dtype=np.float64)
    targets = np.asarray(target_distances, dtype=np.float64)
    missed = ~np.isfinite(hits)
    reached = np.abs(np.where(missed, 0.0, hits) - targets) <= float(epsilon)
    return missed | reached
