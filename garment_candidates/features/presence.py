"""Cheap garment-presence heuristic.

Compares the luminance of a central region against the mean of the region's
own border band. A region "passes" only when enough of its centre stands out
from the border, it carries some edge structure, and it is not flat. This is
the guard that keeps blank or background-only crops out of the output.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from garment_candidates.models import PresenceResult

if TYPE_CHECKING:
    import numpy as np

    from garment_candidates.models import CropBox

MIN_IMAGE_DIM = 32
BORDER_RATIO = 0.08
FOREGROUND_DELTA = 18
EDGE_THRESHOLD = 22
SAMPLES_PER_SIDE = 160


@dataclass(slots=True, frozen=True)
class PresenceThresholds:
    foreground_min: float = 0.12
    foreground_max: float = 0.92
    edge_min: float = 0.01
    variance_min: float = 120.0


@dataclass(slots=True, frozen=True)
class CentralRegion:
    x0: float
    x1: float
    y0: float
    y1: float


CROP_CENTRAL_REGION = CentralRegion(0.15, 0.85, 0.15, 0.90)
BOX_CENTRAL_REGION = CentralRegion(0.12, 0.88, 0.12, 0.92)
DEFAULT_THRESHOLDS = PresenceThresholds()

_FAILED = PresenceResult(ok=False, score=0.0, foreground_fraction=0.0, edge_fraction=0.0, luminance_variance=0.0)


def measure_presence(gray: np.ndarray, thresholds: PresenceThresholds = DEFAULT_THRESHOLDS) -> PresenceResult:
    """Presence over a whole (cropped) image at full resolution."""

    height, width = gray.shape[:2]
    if width < MIN_IMAGE_DIM or height < MIN_IMAGE_DIM:
        return _FAILED
    return _measure_region(gray, 0, 0, width, height, 1, CROP_CENTRAL_REGION, thresholds)


def measure_presence_in_box(
    gray: np.ndarray,
    box: CropBox,
    thresholds: PresenceThresholds = DEFAULT_THRESHOLDS,
) -> PresenceResult:
    """Sampled presence inside ``box`` of a full frame, without materialising a crop."""

    height, width = gray.shape[:2]
    x0 = min(max(box.x, 0), max(0, width - 1))
    y0 = min(max(box.y, 0), max(0, height - 1))
    x1 = min(max(box.x + box.w, 0), width)
    y1 = min(max(box.y + box.h, 0), height)
    if x1 <= x0 or y1 <= y0:
        return _FAILED

    stride = max(1, min(x1 - x0, y1 - y0) // SAMPLES_PER_SIDE)
    return _measure_region(gray, x0, y0, x1, y1, stride, BOX_CENTRAL_REGION, thresholds)


def presence_factor(presence: PresenceResult) -> float:
    """Multiplier applied to a frame's base score; never zero so ranking stays stable."""

    if presence.ok:
        return 0.85 + 0.15 * presence.score
    return 0.35 + 0.15 * presence.score


def _measure_region(
    gray: np.ndarray,
    x0: int,
    y0: int,
    x1: int,
    y1: int,
    stride: int,
    central: CentralRegion,
    thresholds: PresenceThresholds,
) -> PresenceResult:
    import cv2
    import numpy as np

    height, width = gray.shape[:2]
    box_w = x1 - x0
    box_h = y1 - y0

    band_x = max(2, int(box_w * BORDER_RATIO))
    band_y = max(2, int(box_h * BORDER_RATIO))
    ys = np.arange(y0, y1, stride)
    xs = np.arange(x0, x1, stride)
    border_rows = (ys < y0 + band_y) | (ys >= y1 - band_y)
    border_cols = (xs < x0 + band_x) | (xs >= x1 - band_x)
    border_mask = border_rows[:, None] | border_cols[None, :]
    sampled = gray[np.ix_(ys, xs)].astype(np.float64)
    border_mean = float(sampled[border_mask].mean()) if border_mask.any() else 0.0

    cys = np.arange(y0 + int(box_h * central.y0), y0 + int(box_h * central.y1), stride)
    cxs = np.arange(x0 + int(box_w * central.x0), x0 + int(box_w * central.x1), stride)
    if cys.size == 0 or cxs.size == 0:
        return _FAILED

    centre = gray[np.ix_(cys, cxs)].astype(np.float64)
    sample_count = centre.size

    foreground_fraction = float(np.count_nonzero(np.abs(centre - border_mean) >= FOREGROUND_DELTA)) / sample_count

    laplacian = cv2.Laplacian(gray, cv2.CV_16S, ksize=1)
    interior = ((cys > 0) & (cys < height - 1))[:, None] & ((cxs > 0) & (cxs < width - 1))[None, :]
    strong = np.abs(laplacian[np.ix_(cys, cxs)].astype(np.int32)) >= EDGE_THRESHOLD
    edge_fraction = float(np.count_nonzero(strong & interior)) / sample_count

    mean = float(centre.mean())
    variance = max(0.0, float((centre * centre).mean()) - mean * mean)

    ok = (
        thresholds.foreground_min <= foreground_fraction <= thresholds.foreground_max
        and edge_fraction >= thresholds.edge_min
        and variance >= thresholds.variance_min
    )
    score = (
        foreground_fraction * 0.55
        + min(0.08, edge_fraction) / 0.08 * 0.3
        + min(900.0, variance) / 900.0 * 0.15
    )
    return PresenceResult(
        ok=ok,
        score=max(0.0, min(1.0, score)),
        foreground_fraction=foreground_fraction,
        edge_fraction=edge_fraction,
        luminance_variance=variance,
    )
