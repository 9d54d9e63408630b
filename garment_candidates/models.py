from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from garment_candidates.reason_codes import ReasonCode

if TYPE_CHECKING:
    import numpy as np


@dataclass(slots=True, frozen=True)
class FrameInput:
    """A sampled frame: timestamp plus raw bytes or a loadable reference."""

    timestamp_ms: int
    data: bytes | None = None
    ref: str | Path | None = None


@dataclass(slots=True, eq=False)
class DecodedImage:
    """RGBA pixels (h, w, 4) and the derived uint8 luminance plane (h, w)."""

    width: int
    height: int
    rgba: np.ndarray
    gray: np.ndarray


@dataclass(slots=True, frozen=True)
class CropBox:
    x: int
    y: int
    w: int
    h: int
    frame_w: int
    frame_h: int

    def as_dict(self) -> dict[str, int]:
        return {
            "x": self.x,
            "y": self.y,
            "w": self.w,
            "h": self.h,
            "frame_w": self.frame_w,
            "frame_h": self.frame_h,
        }


@dataclass(slots=True, frozen=True)
class PresenceResult:
    """Outcome of the central-region vs border-band contrast heuristic."""

    ok: bool
    score: float
    foreground_fraction: float
    edge_fraction: float
    luminance_variance: float


@dataclass(slots=True, frozen=True)
class FrameMetrics:
    sharpness_variance: float
    sharpness_norm: float
    exposure_mean: float
    exposure_score: float
    clipped_low_ratio: float
    clipped_high_ratio: float
    background_simplicity: float
    presence: PresenceResult


@dataclass(slots=True, frozen=True)
class ScoredFrame:
    """A decoded frame with its composite score; reasons are never empty."""

    frame: FrameInput
    image: DecodedImage = field(compare=False)
    score: float
    reason_codes: tuple[ReasonCode, ...]
    metrics: FrameMetrics


@dataclass(slots=True, frozen=True)
class RawCandidate:
    candidate_id: str
    frame_timestamp_ms: int
    crop_box: CropBox
    frame_score: float
    image_bytes: bytes = field(repr=False)
    gray: np.ndarray = field(repr=False, compare=False)
    presence_score: float
    reason_codes: tuple[ReasonCode, ...]


@dataclass(slots=True, frozen=True)
class HashedCandidate:
    """Raw candidate plus fingerprints; ``embedding`` may be filled lazily by dedupe."""

    raw: RawCandidate
    perceptual_hash: str
    content_hash: str
    byte_length: int
    reason_codes: tuple[ReasonCode, ...]
    embedding: tuple[float, ...] | None = None

    @property
    def candidate_id(self) -> str:
        return self.raw.candidate_id

    @property
    def score(self) -> float:
        return self.raw.frame_score


@dataclass(slots=True, frozen=True)
class DetectedCandidate:
    """Stable candidate schema handed to the persistence layer."""

    id: str
    video_id: str
    user_id: str
    frame_timestamp_ms: int
    crop_box: CropBox
    confidence: float
    reason_codes: tuple[ReasonCode, ...]
    perceptual_hash: str
    content_hash: str
    byte_length: int
    embedding_model: str
    rank: int
    status: str = "generated"
    embedding_vector: tuple[float, ...] | None = field(default=None, repr=False)
    image_bytes: bytes | None = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "video_id": self.video_id,
            "user_id": self.user_id,
            "frame_timestamp_ms": self.frame_timestamp_ms,
            "crop_box": self.crop_box.as_dict(),
            "confidence": self.confidence,
            "reason_codes": [code.value for code in self.reason_codes],
            "perceptual_hash": self.perceptual_hash,
            "content_hash": self.content_hash,
            "byte_length": self.byte_length,
            "embedding_model": self.embedding_model,
            "rank": self.rank,
            "status": self.status,
        }
        if self.embedding_vector is not None:
            payload["embedding_vector"] = list(self.embedding_vector)
        return payload


@dataclass(slots=True)
class RunCounts:
    frames_seen: int = 0
    frames_decoded: int = 0
    frames_scored: int = 0
    crops_generated: int = 0
    crops_rejected_presence: int = 0
    deduped_phash: int = 0
    deduped_embedding: int = 0
    embed_computed: int = 0
    candidates_returned: int = 0


@dataclass(slots=True)
class RunDecisions:
    selected_frame_ts_ms: list[int] = field(default_factory=list)
    fallback_used: bool = False
    early_exit_reason: ReasonCode | None = None


@dataclass(slots=True)
class RunSummary:
    """Write-once aggregate emitted at the end of every run."""

    request_id: str
    video_id: str
    user_id: str
    config_version: str
    counts: RunCounts
    timings_ms: dict[str, float]
    decisions: RunDecisions
    reason_code_counts: dict[str, int]
    config_used: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        early_exit = self.decisions.early_exit_reason
        return {
            "request_id": self.request_id,
            "video_id": self.video_id,
            "user_id": self.user_id,
            "config_version": self.config_version,
            "counts": {
                "frames_seen": self.counts.frames_seen,
                "frames_decoded": self.counts.frames_decoded,
                "frames_scored": self.counts.frames_scored,
                "crops_generated": self.counts.crops_generated,
                "crops_rejected_presence": self.counts.crops_rejected_presence,
                "deduped_phash": self.counts.deduped_phash,
                "deduped_embedding": self.counts.deduped_embedding,
                "embed_computed": self.counts.embed_computed,
                "candidates_returned": self.counts.candidates_returned,
            },
            "timings_ms": dict(self.timings_ms),
            "decisions": {
                "selected_frame_ts_ms": list(self.decisions.selected_frame_ts_ms),
                "fallback_used": self.decisions.fallback_used,
                "early_exit_reason": early_exit.value if early_exit is not None else None,
            },
            "reason_code_counts": dict(self.reason_code_counts),
            "config_used": self.config_used,
        }


@dataclass(slots=True)
class DetectionResult:
    candidates: list[DetectedCandidate]
    summary: RunSummary
