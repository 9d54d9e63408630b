from __future__ import annotations

import json
import logging
from pathlib import Path
from time import perf_counter
from typing import Callable, TypeVar

import typer

from garment_candidates.config import Settings, load_settings
from garment_candidates.hashing.phash import ahash64, phash64
from garment_candidates.ingest.codec import OpenCVCodec
from garment_candidates.ingest.loader import frames_from_directory
from garment_candidates.logging_config import configure_codec, configure_logging
from garment_candidates.models import FrameInput
from garment_candidates.pipeline import detect_garment_candidates
from garment_candidates.propose.exporter import export_final_outputs
from garment_candidates.roi.torso import torso_roi
from garment_candidates.scoring.frame_score import score_frame

app = typer.Typer(help="Garment candidate detection over sampled video frames.")
config_app = typer.Typer(help="Configuration commands.")

app.add_typer(config_app, name="config")

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONFIG_OPTION_HELP = "Path to YAML configuration file."


class _StepProgress:
    """Numbered ``[i/n]`` progress lines on stderr for a fixed sequence of command steps."""

    def __init__(self, total_steps: int) -> None:
        self._total_steps = total_steps
        self._step_index = 0

    def run(self, label: str, work: Callable[[], T]) -> T:
        self._step_index += 1
        prefix = f"[{self._step_index}/{self._total_steps}] {label}"
        typer.echo(f"{prefix}...", err=True)
        started_at = perf_counter()
        try:
            result = work()
        except Exception:
            typer.echo(f"{prefix} failed after {perf_counter() - started_at:.1f}s", err=True)
            raise
        typer.echo(f"{prefix} done in {perf_counter() - started_at:.1f}s", err=True)
        return result


def _bootstrap(config_path: Path) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging)
    configure_codec(settings.codec)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


@config_app.command("show")
def show_config(
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="GARMENT_CANDIDATES_CONFIG",
        help=CONFIG_OPTION_HELP,
    )
) -> None:
    """Print resolved runtime configuration."""

    try:
        settings = _bootstrap(config_path)
    except (OSError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@app.command("detect")
def detect(
    frames_dir: Path = typer.Argument(..., help="Directory of sampled frame images."),
    video_id: str = typer.Option(..., help="Source video id attached to every candidate."),
    user_id: str = typer.Option(..., help="Owning user id attached to every candidate."),
    output_dir: Path = typer.Option(Path("data/outputs"), "--output-dir", "-o", help="Directory for JSON/CSV/crop outputs."),
    basename: str | None = typer.Option(None, help="Base filename for exported artifacts. Defaults to <video-id>_candidates."),
    frame_interval_ms: int = typer.Option(500, help="Timestamp spacing for frames whose file name carries no number."),
    time_budget_ms: int | None = typer.Option(None, help="Override the configured time budget for this run."),
    debug: bool = typer.Option(False, help="Emit per-candidate debug log lines."),
    include_embedding_vector: bool = typer.Option(True, help="Include embedding vectors in the JSON contract."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="GARMENT_CANDIDATES_CONFIG",
        help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """Detect garment candidates from a directory of frames and export the results."""

    progress = _StepProgress(total_steps=3)
    try:
        settings = _bootstrap(config_path)
        frames = progress.run("Load frames", lambda: _load_frames(frames_dir, frame_interval_ms))
        result = progress.run(
            "Detect candidates",
            lambda: detect_garment_candidates(
                video_id=video_id,
                user_id=user_id,
                frames=frames,
                config=settings.detection,
                debug=debug,
                time_budget_ms_override=time_budget_ms,
                include_embedding_vector=include_embedding_vector,
            ),
        )
        exported = progress.run(
            "Export outputs",
            lambda: export_final_outputs(
                result=result,
                output_dir=output_dir,
                basename=basename or f"{video_id}_candidates",
            ),
        )
    except (OSError, RuntimeError, ValueError) as exc:
        logger.error("Detection failed: %s", exc)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    summary = result.summary
    typer.echo(
        json.dumps(
            {
                "status": "ok",
                "video_id": video_id,
                "request_id": summary.request_id,
                "frames_seen": summary.counts.frames_seen,
                "candidate_count": len(result.candidates),
                "fallback_used": summary.decisions.fallback_used,
                "early_exit_reason": summary.to_dict()["decisions"]["early_exit_reason"],
                "outputs": {key: str(path) for key, path in exported.items()},
            },
            indent=2,
        )
    )


@app.command("score")
def score(
    frame_path: Path = typer.Argument(..., help="Single frame image to score."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="GARMENT_CANDIDATES_CONFIG",
        help=CONFIG_OPTION_HELP,
    ),
) -> None:
    """Print the quality metrics computed for one frame."""

    try:
        settings = _bootstrap(config_path)
        config = settings.detection
        image = OpenCVCodec().decode(frame_path.read_bytes(), config.max_width_used)
        roi = torso_roi(image.width, image.height, config)
        scored = score_frame(FrameInput(timestamp_ms=0, ref=frame_path), image, roi.box, config)
        box = roi.box
        torso_gray = image.gray[box.y : box.y + box.h, box.x : box.x + box.w]
    except (OSError, RuntimeError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    metrics = scored.metrics
    typer.echo(
        json.dumps(
            {
                "frame": str(frame_path),
                "width": image.width,
                "height": image.height,
                "score": round(scored.score, 6),
                "reason_codes": [code.value for code in scored.reason_codes],
                "roi": roi.box.as_dict(),
                "roi_reason_codes": [code.value for code in roi.reason_codes],
                "hashes": {
                    "perceptual_hash": phash64(torso_gray),
                    "average_hash": ahash64(torso_gray),
                },
                "metrics": {
                    "sharpness_variance": round(metrics.sharpness_variance, 3),
                    "sharpness_norm": round(metrics.sharpness_norm, 6),
                    "exposure_mean": round(metrics.exposure_mean, 3),
                    "exposure_score": round(metrics.exposure_score, 6),
                    "clipped_low_ratio": round(metrics.clipped_low_ratio, 6),
                    "clipped_high_ratio": round(metrics.clipped_high_ratio, 6),
                    "background_simplicity": round(metrics.background_simplicity, 6),
                    "presence_ok": metrics.presence.ok,
                    "presence_score": round(metrics.presence.score, 6),
                },
            },
            indent=2,
        )
    )


def _load_frames(frames_dir: Path, frame_interval_ms: int) -> list[FrameInput]:
    frames = frames_from_directory(frames_dir, frame_interval_ms=frame_interval_ms)
    if not frames:
        raise ValueError(f"No image frames found in {frames_dir}")
    logger.info("Loaded %d frames from %s", len(frames), frames_dir)
    return frames
