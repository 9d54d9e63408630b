from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from garment_candidates.reason_codes import ReasonCode

if TYPE_CHECKING:
    import numpy as np

    from garment_candidates.config import ScoringSettings

CLIP_LOW_LEVEL = 8
CLIP_HIGH_LEVEL = 247


@dataclass(slots=True, frozen=True)
class ExposureStats:
    mean_luma: float
    clipped_low_ratio: float
    clipped_high_ratio: float
    score: float
    reason_codes: tuple[ReasonCode, ...]


def measure_exposure(gray: np.ndarray, scoring: ScoringSettings) -> ExposureStats:
    """Mean luminance, clipped-pixel ratios and a damped exposure quality score."""

    import numpy as np

    if gray.size == 0:
        return ExposureStats(0.0, 0.0, 0.0, 0.0, (ReasonCode.E_EXPOSURE_TOO_DARK,))

    mean_luma = float(np.mean(gray, dtype=np.float64))
    low_ratio = float(np.count_nonzero(gray <= CLIP_LOW_LEVEL)) / gray.size
    high_ratio = float(np.count_nonzero(gray >= CLIP_HIGH_LEVEL)) / gray.size

    reasons: list[ReasonCode] = []
    if mean_luma < scoring.luma_mean_min:
        reasons.append(ReasonCode.E_EXPOSURE_TOO_DARK)
    if mean_luma > scoring.luma_mean_max:
        reasons.append(ReasonCode.E_EXPOSURE_TOO_BRIGHT)
    if low_ratio > scoring.clipped_low_ratio_max or high_ratio > scoring.clipped_high_ratio_max:
        reasons.append(ReasonCode.E_EXPOSURE_CLIPPED)
    if not reasons:
        reasons.append(ReasonCode.E_OK)

    return ExposureStats(
        mean_luma=mean_luma,
        clipped_low_ratio=low_ratio,
        clipped_high_ratio=high_ratio,
        score=exposure_score(mean_luma, low_ratio, high_ratio, scoring),
        reason_codes=tuple(reasons),
    )


def exposure_score(
    mean_luma: float,
    low_ratio: float,
    high_ratio: float,
    scoring: ScoringSettings,
) -> float:
    if mean_luma < scoring.luma_mean_min:
        delta = scoring.luma_mean_min - mean_luma
        mean_score = 1.0 - delta / max(1.0, scoring.luma_mean_min)
    elif mean_luma > scoring.luma_mean_max:
        delta = mean_luma - scoring.luma_mean_max
        mean_score = 1.0 - delta / max(1.0, 255.0 - scoring.luma_mean_max)
    else:
        mean_score = 1.0

    low_over = max(0.0, low_ratio - scoring.clipped_low_ratio_max)
    high_over = max(0.0, high_ratio - scoring.clipped_high_ratio_max)
    clip_score = max(0.0, 1.0 - min(1.0, low_over + high_over) * 3.0)

    return _clamp(0.65 * _clamp(mean_score) + 0.35 * clip_score)


def _clamp(value: float, minimum: float = 0.0, maximum: float = 1.0) -> float:
    return max(minimum, min(maximum, value))
