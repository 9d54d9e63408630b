from __future__ import annotations

from garment_candidates.config import DetectionConfig, ScoringSettings
from garment_candidates.features.background import measure_background
from garment_candidates.features.exposure import measure_exposure
from garment_candidates.features.presence import measure_presence_in_box, presence_factor
from garment_candidates.features.sharpness import laplacian_variance, normalized_sharpness
from garment_candidates.models import CropBox, DecodedImage, FrameInput, FrameMetrics, ScoredFrame
from garment_candidates.reason_codes import ReasonCode


def score_frame(
    frame: FrameInput,
    image: DecodedImage,
    roi: CropBox,
    config: DetectionConfig,
) -> ScoredFrame:
    """Composite quality score for one decoded frame.

    ``(w_s * sharpness + w_e * exposure + w_b * background) * presence_factor``,
    with weights normalised to sum to one.
    """

    scoring = config.scoring
    gray = image.gray

    variance = laplacian_variance(gray)
    sharpness, low_sharpness = normalized_sharpness(
        variance,
        scoring.sharpness_min_var,
        scoring.low_sharpness_penalty,
    )
    exposure = measure_exposure(gray, scoring)
    background = measure_background(gray, roi)
    presence = measure_presence_in_box(gray, roi)

    weights = _resolve_weights(scoring)
    base = (
        sharpness * weights["sharpness"]
        + exposure.score * weights["exposure"]
        + background.simplicity_score * weights["background"]
    )
    score = _clamp(base) * presence_factor(presence)

    reasons: list[ReasonCode] = []
    if low_sharpness:
        reasons.append(ReasonCode.E_LOW_SHARPNESS)
    reasons.extend(code for code in exposure.reason_codes if code is not ReasonCode.E_OK)
    if background.reason_code is ReasonCode.E_BACKGROUND_COMPLEX:
        reasons.append(ReasonCode.E_BACKGROUND_COMPLEX)
    if not reasons:
        reasons.append(ReasonCode.E_OK)

    return ScoredFrame(
        frame=frame,
        image=image,
        score=score,
        reason_codes=tuple(reasons),
        metrics=FrameMetrics(
            sharpness_variance=variance,
            sharpness_norm=sharpness,
            exposure_mean=exposure.mean_luma,
            exposure_score=exposure.score,
            clipped_low_ratio=exposure.clipped_low_ratio,
            clipped_high_ratio=exposure.clipped_high_ratio,
            background_simplicity=background.simplicity_score,
            presence=presence,
        ),
    )


def select_top_frames(scored: list[ScoredFrame], k: int) -> list[ScoredFrame]:
    """Highest scores first; equal scores ordered by timestamp string."""

    ranked = sorted(scored, key=lambda item: (-item.score, str(item.frame.timestamp_ms)))
    return ranked[: max(0, min(k, len(ranked)))]


def _resolve_weights(scoring: ScoringSettings) -> dict[str, float]:
    raw = {
        "sharpness": max(0.0, scoring.weight_sharpness),
        "exposure": max(0.0, scoring.weight_exposure),
        "background": max(0.0, scoring.weight_background_simplicity),
    }
    total = sum(raw.values())
    if total == 0:
        return {key: 0.0 for key in raw}
    return {key: value / total for key, value in raw.items()}


def _clamp(value: float, minimum: float = 0.0, maximum: float = 1.0) -> float:
    return max(minimum, min(maximum, value))
