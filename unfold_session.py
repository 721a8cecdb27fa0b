#!/usr/bin/env python3
"""
Caller-owned session around the unfold pipeline.

A viewer or script keeps one `UnfoldSession` per loaded part: load a mesh,
project it, save the template for painting, then wrap the painted image back
onto the part. The session holds the merged triangle stream and the last
projection result, so no module-level state is needed.

A failed projection never raises out of `project`: the part stays
untextured and `last_error` carries a message a UI can show as is.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import numpy as np
import trimesh
from PIL import Image

from ray_visibility import RayBackendUnavailableError, RayIntersector
from unfold_pipeline import (
    ProjectionCancelledError,
    ProjectionConfig,
    ProjectionResult,
    build_textured_mesh,
    export_textured_mesh,
    load_mesh,
    project,
    triangle_stream,
)


@dataclass
class UnfoldSession:
    """State of one part between load, projection and texture export."""

    positions: np.ndarray | None = None
    source: str | None = None
    result: ProjectionResult | None = None
    last_error: str | None = None

    @property
    def has_mesh(self) -> bool:
        return self.positions is not None

    @property
    def is_projected(self) -> bool:
        return self.result is not None

    def load(self, mesh_path: Path) -> int:
        """Load and merge a part from disk; returns its triangle count."""
        mesh = load_mesh(Path(mesh_path))
        return self.use_triangles(triangle_stream(mesh), source=str(mesh_path))

    def use_triangles(self, positions: np.ndarray | trimesh.Trimesh, source: str = "<memory>") -> int:
        """Adopt an in-memory part. Any previous projection is discarded."""
        self.positions = triangle_stream(positions)
        self.source = source
        self.result = None
        self.last_error = None
        return self.positions.shape[0] // 3

    def project(
        self,
        config: ProjectionConfig | None = None,
        *,
        intersector: RayIntersector | None = None,
        should_cancel: Callable[[], bool] | None = None,
    ) -> bool:
        """
        Run the projector on the current part.

        Returns True on success. On an invalid config, a structural error, a
        missing strict backend or cancellation, the previous result is
        cleared, the message is stored in `last_error`, and False is returned.
        """
        self.result = None
        if self.positions is None:
            self.last_error = "No part loaded."
            return False

        try:
            result = project(
                self.positions,
                config=config,
                intersector=intersector,
                should_cancel=should_cancel,
            )
        except (ValueError, RayBackendUnavailableError, ProjectionCancelledError) as exc:
            self.last_error = f"Could not unfold {self.source}: {exc}"
            return False

        self.result = result
        self.last_error = None
        return True

    def _require_result(self) -> ProjectionResult:
        if self.result is None:
            raise RuntimeError(self.last_error or "Part has not been projected yet.")
        return self.result

    def template_image(self) -> Image.Image:
        result = self._require_result()
        with Image.open(io.BytesIO(result.template_png)) as image:
            return image.convert("RGB")

    def save_template(self, png_path: Path) -> Path:
        """Write the template PNG for download/painting."""
        result = self._require_result()
        path = Path(png_path)
        path.write_bytes(result.template_png)
        return path

    def textured_mesh(self, image: Image.Image | Path) -> trimesh.Trimesh:
        """Wrap `image` (an image or a path to one) onto the projected part."""
        result = self._require_result()
        return build_textured_mesh(self.positions, result.uv, _as_rgb_image(image))

    def export_textured(self, out_path: Path, image: Image.Image | Path) -> Path:
        result = self._require_result()
        return export_textured_mesh(Path(out_path), self.positions, result.uv, _as_rgb_image(image))


def _as_rgb_image(image: Image.Image | Path) -> Image.Image:
    if isinstance(image, Image.Image):
        return image.convert("RGB")
    path = Path(image)
    if not path.exists():
        raise FileNotFoundError(f"Texture image not found: {path}")
    with Image.open(path) as loaded:
        return loaded.convert("RGB")
