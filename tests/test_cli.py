from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

import garment_candidates.cli as cli
from garment_candidates.config import Settings


def _write_frames(directory: Path, garment_png, count: int) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    for index in range(count):
        (directory / f"frame_{index * 500:06d}.png").write_bytes(garment_png(index))


def test_detect_command_runs_pipeline_and_exports(tmp_path: Path, garment_png, monkeypatch) -> None:
    frames_dir = tmp_path / "frames"
    output_dir = tmp_path / "out"
    _write_frames(frames_dir, garment_png, 3)
    monkeypatch.setattr(cli, "_bootstrap", lambda _: Settings())

    result = CliRunner().invoke(
        cli.app,
        ["detect", str(frames_dir), "--video-id", "vid-1", "--user-id", "user-1", "--output-dir", str(output_dir)],
    )

    assert result.exit_code == 0, result.output
    assert "[1/3] Load frames..." in result.output
    assert "[3/3] Export outputs done" in result.output
    assert '"status": "ok"' in result.output
    assert '"frames_seen": 3' in result.output
    assert (output_dir / "vid-1_candidates.json").exists()
    assert (output_dir / "vid-1_candidates_summary.json").exists()


def test_detect_command_passes_run_options_to_pipeline(tmp_path: Path, garment_png, monkeypatch) -> None:
    frames_dir = tmp_path / "frames"
    _write_frames(frames_dir, garment_png, 2)
    captured: dict[str, object] = {}
    real_detect = cli.detect_garment_candidates

    def _detect(**kwargs):
        captured.update(kwargs)
        return real_detect(**kwargs)

    monkeypatch.setattr(cli, "_bootstrap", lambda _: Settings())
    monkeypatch.setattr(cli, "detect_garment_candidates", _detect)

    result = CliRunner().invoke(
        cli.app,
        [
            "detect",
            str(frames_dir),
            "--video-id",
            "vid-2",
            "--user-id",
            "user-2",
            "--output-dir",
            str(tmp_path / "out"),
            "--time-budget-ms",
            "5000",
            "--debug",
            "--no-include-embedding-vector",
        ],
    )

    assert result.exit_code == 0, result.output
    assert captured["time_budget_ms_override"] == 5000
    assert captured["debug"] is True
    assert captured["include_embedding_vector"] is False
    assert [frame.timestamp_ms for frame in captured["frames"]] == [0, 500]


def test_detect_command_prints_clean_error_without_traceback(tmp_path: Path, monkeypatch) -> None:
    frames_dir = tmp_path / "frames"
    frames_dir.mkdir()
    monkeypatch.setattr(cli, "_bootstrap", lambda _: Settings())

    result = CliRunner().invoke(
        cli.app,
        ["detect", str(frames_dir), "--video-id", "vid-1", "--user-id", "user-1"],
    )

    assert result.exit_code == 1
    assert "[1/3] Load frames failed" in result.output
    assert "Error: No image frames found" in result.output
    assert "Traceback" not in result.output


def test_detect_command_reports_export_failures(tmp_path: Path, garment_png, monkeypatch) -> None:
    frames_dir = tmp_path / "frames"
    _write_frames(frames_dir, garment_png, 1)
    monkeypatch.setattr(cli, "_bootstrap", lambda _: Settings())
    monkeypatch.setattr(
        cli,
        "export_final_outputs",
        lambda **_: (_ for _ in ()).throw(OSError("disk full")),
    )

    result = CliRunner().invoke(
        cli.app,
        ["detect", str(frames_dir), "--video-id", "vid-1", "--user-id", "user-1"],
    )

    assert result.exit_code == 1
    assert "[3/3] Export outputs failed" in result.output
    assert "Error: disk full" in result.output


def test_config_show_prints_resolved_settings(monkeypatch) -> None:
    monkeypatch.setattr(cli, "_bootstrap", lambda _: Settings())

    result = CliRunner().invoke(cli.app, ["config", "show"])

    assert result.exit_code == 0
    assert '"max_candidates": 8' in result.output
    assert '"version": "garment-candidates/detect/v1"' in result.output


def test_config_show_reports_missing_file(tmp_path: Path) -> None:
    result = CliRunner().invoke(cli.app, ["config", "show", "--config", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 1
    assert "Error:" in result.output
    assert "Traceback" not in result.output


def test_score_command_prints_metrics(tmp_path: Path, garment_png, monkeypatch) -> None:
    frame_path = tmp_path / "frame.png"
    frame_path.write_bytes(garment_png(5))
    monkeypatch.setattr(cli, "_bootstrap", lambda _: Settings())

    result = CliRunner().invoke(cli.app, ["score", str(frame_path)])

    assert result.exit_code == 0, result.output
    assert '"presence_ok": true' in result.output
    assert '"E_ROI_TORSO_HEURISTIC"' in result.output
    assert '"average_hash": "' in result.output
    assert '"perceptual_hash": "' in result.output


def test_score_command_rejects_undecodable_frame(tmp_path: Path, monkeypatch) -> None:
    frame_path = tmp_path / "frame.png"
    frame_path.write_bytes(b"nope")
    monkeypatch.setattr(cli, "_bootstrap", lambda _: Settings())

    result = CliRunner().invoke(cli.app, ["score", str(frame_path)])

    assert result.exit_code == 1
    assert "Error:" in result.output
