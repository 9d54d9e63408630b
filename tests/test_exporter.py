from __future__ import annotations

import csv
import json

from garment_candidates.models import (
    CropBox,
    DetectedCandidate,
    DetectionResult,
    RunCounts,
    RunDecisions,
    RunSummary,
)
from garment_candidates.propose.exporter import (
    export_candidates,
    export_final_outputs,
    generate_review_rows,
    write_crop_images,
)
from garment_candidates.reason_codes import ReasonCode

BOX = CropBox(x=58, y=72, w=205, h=280, frame_w=320, frame_h=400)


def _sample_candidates() -> list[DetectedCandidate]:
    return [
        DetectedCandidate(
            id="cand-1",
            video_id="vid-1",
            user_id="user-1",
            frame_timestamp_ms=1500,
            crop_box=BOX,
            confidence=0.81,
            reason_codes=(ReasonCode.E_OK, ReasonCode.E_SELECTED_TOP_FRAME, ReasonCode.E_ROI_TORSO_HEURISTIC),
            perceptual_hash="00ff00ff00ff00ff",
            content_hash="a" * 64,
            byte_length=4,
            embedding_model="garment-candidates/tinyblock.v1",
            rank=1,
            embedding_vector=(0.6, 0.8),
            image_bytes=b"\xff\xd8ab",
        ),
        DetectedCandidate(
            id="cand-2",
            video_id="vid-1",
            user_id="user-1",
            frame_timestamp_ms=0,
            crop_box=BOX,
            confidence=0.42,
            reason_codes=(ReasonCode.E_FALLBACK_CENTER_FRAME, ReasonCode.E_ROI_TORSO_HEURISTIC),
            perceptual_hash="0000ffff0000ffff",
            content_hash="b" * 64,
            byte_length=3,
            embedding_model="garment-candidates/tinyblock.v1",
            rank=2,
        ),
    ]


def _sample_result() -> DetectionResult:
    summary = RunSummary(
        request_id="req-1",
        video_id="vid-1",
        user_id="user-1",
        config_version="garment-candidates/detect/v1",
        counts=RunCounts(frames_seen=4, candidates_returned=2),
        timings_ms={"total": 42.0},
        decisions=RunDecisions(selected_frame_ts_ms=[1500], early_exit_reason=ReasonCode.E_MAX_CANDIDATES_CAPPED),
        reason_code_counts={"E_OK": 1},
        config_used={"encoding": {"format": "webp", "quality": 78}},
    )
    return DetectionResult(candidates=_sample_candidates(), summary=summary)


def test_export_candidates_json_contract(tmp_path) -> None:
    out = tmp_path / "candidates.json"
    export_candidates(_sample_candidates(), out)

    payload = json.loads(out.read_text(encoding="utf-8"))
    assert [item["id"] for item in payload] == ["cand-1", "cand-2"]
    assert payload[0]["crop_box"] == {"x": 58, "y": 72, "w": 205, "h": 280, "frame_w": 320, "frame_h": 400}
    assert payload[0]["reason_codes"] == ["E_OK", "E_SELECTED_TOP_FRAME", "E_ROI_TORSO_HEURISTIC"]
    assert payload[0]["embedding_vector"] == [0.6, 0.8]
    assert "embedding_vector" not in payload[1]
    assert "image_bytes" not in payload[0]


def test_export_candidates_csv_contains_label_and_reasons(tmp_path) -> None:
    out = tmp_path / "candidates.csv"
    export_candidates(_sample_candidates(), out)

    with out.open("r", encoding="utf-8") as handle:
        rows = list(csv.DictReader(handle))

    assert rows[0]["confidence_label"] == "high"
    assert rows[1]["confidence_label"] == "low"
    assert rows[0]["reason_codes"] == "E_OK|E_SELECTED_TOP_FRAME|E_ROI_TORSO_HEURISTIC"
    assert rows[0]["crop_box"] == "58,72,205,280"


def test_generate_review_rows_formats_confidence() -> None:
    rows = generate_review_rows(_sample_candidates())

    assert rows[0]["confidence"] == "0.8100"
    assert rows[1]["rank"] == 2


def test_write_crop_images_skips_candidates_without_bytes(tmp_path) -> None:
    paths = write_crop_images(_sample_candidates(), tmp_path / "crops")

    assert [path.name for path in paths] == ["01_cand-1.jpg"]
    assert paths[0].read_bytes() == b"\xff\xd8ab"


def test_export_final_outputs_writes_all_artifacts(tmp_path) -> None:
    exported = export_final_outputs(_sample_result(), tmp_path / "out", basename="vid-1_candidates")

    assert set(exported) == {"json", "csv", "summary", "crops"}
    assert exported["json"].exists()
    assert exported["csv"].exists()
    summary = json.loads(exported["summary"].read_text(encoding="utf-8"))
    assert summary["decisions"]["early_exit_reason"] == "E_MAX_CANDIDATES_CAPPED"
    assert summary["counts"]["candidates_returned"] == 2
    assert [path.name for path in exported["crops"].iterdir()] == ["01_cand-1.webp"]


def test_export_final_outputs_can_skip_crops(tmp_path) -> None:
    exported = export_final_outputs(_sample_result(), tmp_path, write_crops=False)

    assert set(exported) == {"json", "csv", "summary"}
    assert not (tmp_path / "candidates_crops").exists()
