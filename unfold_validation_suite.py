#!/usr/bin/env python3
"""
Unfold Validation Suite.

Why this script exists:
- Generate a small, repeatable set of templates (PNG + UV JSON) per part.
- Compare the plain unfold with the exterior-filtered one on the same part.
- Produce a readable report with objective counts before anyone paints a
  template by hand.

Without --models it runs on the built-in parametric parts.
"""

from __future__ import annotations

import argparse
import json
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path

import numpy as np

from brick_shapes import BUILTIN_PARTS
from ray_visibility import RAY_BACKENDS
from unfold_pipeline import (
    DEFAULT_SCALE,
    FACE_ORDER,
    ProjectionConfig,
    load_mesh,
    project,
    triangle_stream,
)


MODES = ("plain", "exterior")


@dataclass
class CaseSummary:
    model: str
    mode: str
    triangles: int
    sentinel_triangles: int
    outline_count: int
    atlas_w: float
    atlas_h: float
    template_w_px: int
    template_h_px: int
    ray_backend: str
    face_top: int
    face_bottom: int
    face_front: int
    face_back: int
    face_left: int
    face_right: int
    png_file: str
    uv_file: str
    elapsed_s: float


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate a repeatable unfold validation pack (PNG + UV JSON + report)."
    )
    parser.add_argument(
        "--models",
        nargs="*",
        type=Path,
        default=None,
        help="Optional mesh list. If omitted, the built-in cube and bricks are used.",
    )
    parser.add_argument(
        "--out-dir",
        type=Path,
        default=Path("out") / "unfold_validation",
        help="Output directory for generated templates and report.",
    )
    parser.add_argument("--scale", type=float, default=DEFAULT_SCALE)
    parser.add_argument("--ray-backend", type=str, default="numpy", choices=RAY_BACKENDS)
    return parser.parse_args(argv)


def resolve_cases(args_models: list[Path] | None) -> list[tuple[str, np.ndarray]]:
    """
    Resolve (name, triangle stream) pairs, falling back to the built-in parts.
    """
    if args_models:
        resolved = [p.resolve() for p in args_models]
        missing = [p for p in resolved if not p.exists()]
        if missing:
            raise FileNotFoundError(f"Missing mesh files: {', '.join(str(m) for m in missing)}")
        return [(p.stem, triangle_stream(load_mesh(p))) for p in resolved]

    return [(name, triangle_stream(factory())) for name, factory in BUILTIN_PARTS.items()]


def run_case(
    name: str,
    positions: np.ndarray,
    mode: str,
    out_dir: Path,
    scale: float,
    ray_backend: str,
) -> CaseSummary:
    config = ProjectionConfig(
        scale=scale,
        exterior_filter=(mode == "exterior"),
        ray_backend=ray_backend,
    )
    started = time.perf_counter()
    result = project(positions, config=config)
    elapsed = time.perf_counter() - started

    png_path = out_dir / f"{name}__{mode}.png"
    uv_path = out_dir / f"{name}__{mode}_uv.json"
    png_path.write_bytes(result.template_png)
    uv_path.write_text(
        json.dumps(
            {
                "faces": [face.value for face in result.faces],
                "exterior": result.exterior.tolist(),
                "uv": result.uv.tolist(),
            }
        ),
        encoding="utf-8",
    )

    counts = result.face_counts()
    return CaseSummary(
        model=name,
        mode=mode,
        triangles=result.triangle_count,
        sentinel_triangles=result.sentinel_count,
        outline_count=result.outline_count,
        atlas_w=result.layout.tex_w,
        atlas_h=result.layout.tex_h,
        template_w_px=result.template_size[0],
        template_h_px=result.template_size[1],
        ray_backend=result.ray_backend,
        face_top=counts["top"],
        face_bottom=counts["bottom"],
        face_front=counts["front"],
        face_back=counts["back"],
        face_left=counts["left"],
        face_right=counts["right"],
        png_file=png_path.name,
        uv_file=uv_path.name,
        elapsed_s=elapsed,
    )


def write_markdown_report(
    report_path: Path,
    cases: list[CaseSummary],
    config: dict[str, float | str],
) -> None:
    """
    Human-readable report with a checklist for inspecting the templates.
    """
    face_header = " | ".join(face.value for face in FACE_ORDER)
    face_rule = "|".join("---:" for _ in FACE_ORDER)

    lines: list[str] = []
    lines.append("# Unfold Validation Report")
    lines.append("")
    lines.append(f"- Generated: {datetime.now().isoformat(timespec='seconds')}")
    lines.append("- Goal: check face classification, atlas size and exterior filtering per part.")
    lines.append("")
    lines.append("## Configuration")
    lines.append("")
    for k, v in config.items():
        lines.append(f"- `{k}`: `{v}`")
    lines.append("")
    lines.append("## Cases")
    lines.append("")
    lines.append(f"| Model | Mode | Triangles | Hidden | Outlines | Atlas | Template (px) | Backend | {face_header} | Time (s) |")
    lines.append(f"|---|---|---:|---:|---:|---:|---:|---|{face_rule}|---:|")
    for c in cases:
        atlas = f"{c.atlas_w:.2f} x {c.atlas_h:.2f}"
        template = f"{c.template_w_px} x {c.template_h_px}"
        lines.append(
            f"| `{c.model}` | `{c.mode}` | {c.triangles} | {c.sentinel_triangles} | {c.outline_count} | "
            f"{atlas} | {template} | `{c.ray_backend}` | "
            f"{c.face_top} | {c.face_bottom} | {c.face_front} | {c.face_back} | {c.face_left} | {c.face_right} | "
            f"{c.elapsed_s:.3f} |"
        )
    lines.append("")
    lines.append("## Inspection Checklist")
    lines.append("")
    lines.append("1. Open each `plain` PNG and check that every face of the cross is populated.")
    lines.append("2. Check that `Outlines` equals `Triangles - Hidden` for every case.")
    lines.append("3. For `exterior`, confirm that hidden triangles (e.g. stud undersides) are missing from the PNG.")
    lines.append("4. On the unit cube, `Hidden` must be 0 and each face must own exactly 2 triangles.")
    lines.append("")
    report_path.write_text("\n".join(lines), encoding="utf-8")


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if args.scale <= 0:
        raise ValueError("--scale must be > 0")

    cases_in = resolve_cases(args.models)
    out_dir = args.out_dir.resolve()
    out_dir.mkdir(parents=True, exist_ok=True)

    cases: list[CaseSummary] = []
    for name, positions in cases_in:
        for mode in MODES:
            cases.append(
                run_case(
                    name=name,
                    positions=positions,
                    mode=mode,
                    out_dir=out_dir,
                    scale=float(args.scale),
                    ray_backend=str(args.ray_backend),
                )
            )

    report_md = out_dir / "validation_report.md"
    report_json = out_dir / "validation_report.json"

    config = {
        "scale": args.scale,
        "ray_backend": args.ray_backend,
        "models": ", ".join(name for name, _ in cases_in),
    }

    write_markdown_report(report_md, cases, config=config)
    report_json.write_text(
        json.dumps(
            {
                "generated_at": datetime.now().isoformat(timespec="seconds"),
                "config": config,
                "cases": [asdict(c) for c in cases],
            },
            indent=2,
        ),
        encoding="utf-8",
    )

    print(f"[OK] Validation pack saved in: {out_dir}")
    print(f"[OK] Markdown report: {report_md.name}")
    print(f"[OK] JSON report: {report_json.name}")
    for c in cases:
        print(
            f" - {c.model:10s} | {c.mode:8s} | tris={c.triangles:5d} | "
            f"hidden={c.sentinel_triangles:4d} | outlines={c.outline_count:5d} | "
            f"{c.elapsed_s:6.3f} s"
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(run())
