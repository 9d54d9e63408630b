from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any

from garment_candidates.models import DetectedCandidate, DetectionResult, RunSummary

CROP_EXTENSIONS = {"jpeg": ".jpg", "webp": ".webp"}


def export_candidates(candidates: list[DetectedCandidate], output_path: str | Path) -> Path:
    """Export detected candidates to JSON (default) or CSV, based on file extension."""

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.suffix.lower() == ".csv":
        _write_csv(candidates, path)
    else:
        _write_json(candidates, path)

    return path


def export_final_outputs(
    result: DetectionResult,
    output_dir: str | Path,
    *,
    basename: str = "candidates",
    write_crops: bool = True,
) -> dict[str, Path]:
    """Write the candidate contract (JSON + CSV), the run summary and the crop images."""

    resolved_output_dir = Path(output_dir)
    resolved_output_dir.mkdir(parents=True, exist_ok=True)

    json_path = resolved_output_dir / f"{basename}.json"
    csv_path = resolved_output_dir / f"{basename}.csv"
    summary_path = resolved_output_dir / f"{basename}_summary.json"

    export_candidates(result.candidates, json_path)
    export_candidates(result.candidates, csv_path)
    _write_summary(result.summary, summary_path)

    exported = {
        "json": json_path,
        "csv": csv_path,
        "summary": summary_path,
    }
    if write_crops:
        crops_dir = resolved_output_dir / f"{basename}_crops"
        extension = CROP_EXTENSIONS.get(
            str(result.summary.config_used.get("encoding", {}).get("format", "jpeg")),
            ".jpg",
        )
        written = write_crop_images(result.candidates, crops_dir, extension=extension)
        if written:
            exported["crops"] = crops_dir

    return exported


def write_crop_images(
    candidates: list[DetectedCandidate],
    crops_dir: str | Path,
    *,
    extension: str = ".jpg",
) -> list[Path]:
    """Persist encoded crop bytes as ``<rank>_<id><ext>`` for manual review."""

    directory = Path(crops_dir)
    paths: list[Path] = []
    for candidate in candidates:
        if not candidate.image_bytes:
            continue
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{candidate.rank:02d}_{candidate.id}{extension}"
        path.write_bytes(candidate.image_bytes)
        paths.append(path)
    return paths


def generate_review_rows(candidates: list[DetectedCandidate]) -> list[dict[str, Any]]:
    """Flat per-candidate rows with a coarse confidence label for quick triage."""

    rows: list[dict[str, Any]] = []
    for candidate in candidates:
        box = candidate.crop_box
        rows.append(
            {
                "rank": candidate.rank,
                "id": candidate.id,
                "video_id": candidate.video_id,
                "user_id": candidate.user_id,
                "frame_timestamp_ms": candidate.frame_timestamp_ms,
                "crop_box": f"{box.x},{box.y},{box.w},{box.h}",
                "confidence": f"{candidate.confidence:.4f}",
                "confidence_label": _confidence_label(candidate.confidence),
                "reason_codes": "|".join(code.value for code in candidate.reason_codes),
                "perceptual_hash": candidate.perceptual_hash,
                "content_hash": candidate.content_hash,
                "byte_length": candidate.byte_length,
                "embedding_model": candidate.embedding_model,
                "status": candidate.status,
            }
        )
    return rows


def _write_json(candidates: list[DetectedCandidate], path: Path) -> None:
    payload = [candidate.to_dict() for candidate in candidates]
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def _write_csv(candidates: list[DetectedCandidate], path: Path) -> None:
    fields = [
        "rank",
        "id",
        "video_id",
        "user_id",
        "frame_timestamp_ms",
        "crop_box",
        "confidence",
        "confidence_label",
        "reason_codes",
        "perceptual_hash",
        "content_hash",
        "byte_length",
        "embedding_model",
        "status",
    ]

    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=fields)
        writer.writeheader()
        writer.writerows(generate_review_rows(candidates))


def _write_summary(summary: RunSummary, path: Path) -> None:
    path.write_text(json.dumps(summary.to_dict(), indent=2, sort_keys=True), encoding="utf-8")


def _confidence_label(confidence: float) -> str:
    if confidence >= 0.75:
        return "high"
    if confidence >= 0.5:
        return "medium"
    return "low"
