from __future__ import annotations

import json

import numpy as np
from PIL import Image

import unfold_validation_suite
from brick_shapes import unit_cube
from unfold_pipeline import main


def test_smoke_test_flag(capsys):
    assert main(["--smoke-test"]) == 0
    out = capsys.readouterr().out
    assert "[OK] Smoke test passed" in out
    assert "'triangles': 12" in out


def test_full_cli_run(tmp_path, capsys):
    mesh_path = tmp_path / "cube.stl"
    unit_cube().export(mesh_path)
    texture_path = tmp_path / "paint.png"
    Image.new("RGB", (64, 48), (10, 120, 200)).save(texture_path)

    png_path = tmp_path / "template.png"
    json_path = tmp_path / "debug.json"
    uv_path = tmp_path / "uv.npy"
    textured_path = tmp_path / "cube.glb"

    code = main(
        [
            "--mesh", str(mesh_path),
            "--png", str(png_path),
            "--json", str(json_path),
            "--uv-out", str(uv_path),
            "--scale", "25",
            "--exterior-filter",
            "--texture", str(texture_path),
            "--textured-out", str(textured_path),
        ]
    )
    assert code == 0

    with Image.open(png_path) as image:
        assert image.size == (100, 75)
    assert np.load(uv_path).shape == (36, 2)
    assert textured_path.exists()

    payload = json.loads(json_path.read_text(encoding="utf-8"))
    assert payload["triangles"] == 12
    assert payload["sentinel_triangles"] == 0
    assert payload["ray_backend"] == "numpy"
    assert payload["atlas"]["tex_w"] == 4.0
    assert payload["atlas"]["regions"]["top"]["x"] == 1.0
    assert payload["face_counts"] == {"top": 2, "bottom": 2, "front": 2, "back": 2, "left": 2, "right": 2}

    out = capsys.readouterr().out
    assert "[OK] Template saved" in out
    assert "[OK] Non-exterior triangles dropped: 0" in out


def test_backend_degradation_is_a_warning_line(tmp_path, capsys):
    mesh_path = tmp_path / "cube.stl"
    unit_cube().export(mesh_path)
    code = main(
        [
            "--mesh", str(mesh_path),
            "--png", str(tmp_path / "t.png"),
            "--exterior-filter",
            "--ray-backend", "none",
        ]
    )
    assert code == 0
    captured = capsys.readouterr()
    assert "[WARN] Exterior filtering disabled" in captured.err
    assert "[OK] Ray backend: none" in captured.out


def test_strict_backend_fails_the_run(tmp_path, capsys):
    mesh_path = tmp_path / "cube.stl"
    unit_cube().export(mesh_path)
    code = main(
        [
            "--mesh", str(mesh_path),
            "--png", str(tmp_path / "t.png"),
            "--exterior-filter",
            "--ray-backend", "none",
            "--strict-backend",
        ]
    )
    assert code == 1
    assert "[ERROR] Exterior filtering unavailable" in capsys.readouterr().err
    assert not (tmp_path / "t.png").exists()


def test_missing_arguments_are_reported(capsys):
    assert main([]) == 1
    assert "[ERROR] --mesh and --png are required" in capsys.readouterr().err


def test_missing_mesh_file(tmp_path, capsys):
    code = main(["--mesh", str(tmp_path / "nope.stl"), "--png", str(tmp_path / "t.png")])
    assert code == 1
    assert "Mesh file not found" in capsys.readouterr().err
    assert not (tmp_path / "t.png").exists()


def test_texture_requires_output(tmp_path, capsys):
    code = main(["--mesh", "a.stl", "--png", "t.png", "--texture", str(tmp_path / "paint.png")])
    assert code == 1
    assert "must be given together" in capsys.readouterr().err


def test_validation_suite_on_builtin_parts(tmp_path):
    out_dir = tmp_path / "validation"
    assert unfold_validation_suite.run(["--out-dir", str(out_dir), "--scale", "10"]) == 0

    report = json.loads((out_dir / "validation_report.json").read_text(encoding="utf-8"))
    cases = {(c["model"], c["mode"]): c for c in report["cases"]}
    assert len(cases) == 6

    assert cases[("unit_cube", "plain")]["triangles"] == 12
    assert cases[("unit_cube", "exterior")]["sentinel_triangles"] == 0
    assert cases[("brick_2x4", "plain")]["sentinel_triangles"] == 0
    assert cases[("brick_2x4", "exterior")]["sentinel_triangles"] >= 8
    for case in cases.values():
        assert case["outline_count"] == case["triangles"] - case["sentinel_triangles"]
        assert (out_dir / case["png_file"]).exists()
        assert (out_dir / case["uv_file"]).exists()

    assert (out_dir / "validation_report.md").read_text(encoding="utf-8").startswith("# Unfold Validation Report")
