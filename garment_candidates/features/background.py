from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from garment_candidates.reason_codes import ReasonCode

if TYPE_CHECKING:
    import numpy as np

    from garment_candidates.models import CropBox

EDGE_THRESHOLD = 120
SAMPLE_STEP = 2
SIMPLE_BACKGROUND_MIN = 0.55


@dataclass(slots=True, frozen=True)
class BackgroundStats:
    edge_density_in: float
    edge_density_out: float
    simplicity_score: float
    reason_code: ReasonCode


def measure_background(
    gray: np.ndarray,
    roi: CropBox,
    *,
    edge_threshold: int = EDGE_THRESHOLD,
    step: int = SAMPLE_STEP,
) -> BackgroundStats:
    """Edge density inside vs outside ``roi``; low outside density reads as a simple background."""

    import cv2
    import numpy as np

    height, width = gray.shape[:2]
    if width < 3 or height < 3:
        return BackgroundStats(0.0, 0.0, 0.0, ReasonCode.E_BACKGROUND_COMPLEX)

    gx = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3)
    magnitude = np.abs(gx) + np.abs(gy)

    ys = np.arange(1, height - 1, step)
    xs = np.arange(1, width - 1, step)
    edges = magnitude[np.ix_(ys, xs)] >= edge_threshold

    rx0 = min(max(roi.x, 1), width - 2)
    ry0 = min(max(roi.y, 1), height - 2)
    rx1 = max(rx0 + 1, min(width - 2, roi.x + roi.w))
    ry1 = max(ry0 + 1, min(height - 2, roi.y + roi.h))
    inside = np.outer((ys >= ry0) & (ys < ry1), (xs >= rx0) & (xs < rx1))

    in_count = int(np.count_nonzero(inside))
    out_count = inside.size - in_count
    density_in = float(np.count_nonzero(edges & inside)) / in_count if in_count else 0.0
    density_out = float(np.count_nonzero(edges & ~inside)) / out_count if out_count else 0.0

    out_score = 1.0 - _clamp(density_out * 2.2)
    in_detail = _clamp(density_in * 2.0)
    simplicity = _clamp(0.7 * out_score + 0.3 * in_detail)

    reason = ReasonCode.E_BACKGROUND_SIMPLE if simplicity >= SIMPLE_BACKGROUND_MIN else ReasonCode.E_BACKGROUND_COMPLEX
    return BackgroundStats(
        edge_density_in=density_in,
        edge_density_out=density_out,
        simplicity_score=simplicity,
        reason_code=reason,
    )


def _clamp(value: float, minimum: float = 0.0, maximum: float = 1.0) -> float:
    return max(minimum, min(maximum, value))
