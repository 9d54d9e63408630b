from __future__ import annotations

import math
from dataclasses import dataclass

from garment_candidates.config import DetectionConfig, TorsoRoiSettings
from garment_candidates.models import CropBox
from garment_candidates.reason_codes import ReasonCode

MAX_TIGHTEN = 0.25
MIN_TIGHT_FRACTION = 0.05


@dataclass(slots=True, frozen=True)
class ClampResult:
    box: CropBox
    reason_codes: tuple[ReasonCode, ...]
    changed: bool


@dataclass(slots=True, frozen=True)
class RoiResult:
    box: CropBox
    reason_codes: tuple[ReasonCode, ...]


def clamp_crop_box(
    x: int,
    y: int,
    w: int,
    h: int,
    frame_w: int,
    frame_h: int,
    min_dim: int,
) -> ClampResult:
    """Fit a proposed box inside the frame and lift it to ``min_dim`` where the frame allows.

    Never fails for positive frame sizes; a frame smaller than ``min_dim`` yields
    a box covering the whole frame.
    """

    if frame_w <= 0 or frame_h <= 0:
        raise ValueError(f"invalid frame dimensions {frame_w}x{frame_h}")

    min_dim = max(1, int(min_dim))
    reasons: list[ReasonCode] = []

    if w <= 0:
        w = min_dim
    if h <= 0:
        h = min_dim

    proposed = (x, y, w, h)
    x = _clamp_int(x, 0, frame_w - 1)
    y = _clamp_int(y, 0, frame_h - 1)
    w = _clamp_int(w, 1, frame_w)
    h = _clamp_int(h, 1, frame_h)
    if x + w > frame_w:
        x = max(0, frame_w - w)
    if y + h > frame_h:
        y = max(0, frame_h - h)

    changed = (x, y, w, h) != proposed

    if w < min_dim or h < min_dim:
        reasons.append(ReasonCode.E_CROP_TOO_SMALL)
        center_x = x + w // 2
        center_y = y + h // 2
        target_w = min(frame_w, max(min_dim, w))
        target_h = min(frame_h, max(min_dim, h))
        new_x = _clamp_int(center_x - target_w // 2, 0, max(0, frame_w - target_w))
        new_y = _clamp_int(center_y - target_h // 2, 0, max(0, frame_h - target_h))
        if (new_x, new_y, target_w, target_h) != (x, y, w, h):
            x, y, w, h = new_x, new_y, target_w, target_h
            changed = True

    if changed:
        reasons.append(ReasonCode.E_CROP_CLAMPED_TO_BOUNDS)
    if not reasons:
        reasons.append(ReasonCode.E_OK)

    return ClampResult(
        box=CropBox(x=x, y=y, w=w, h=h, frame_w=frame_w, frame_h=frame_h),
        reason_codes=tuple(reasons),
        changed=changed,
    )


def box_from_fractions(
    frame_w: int,
    frame_h: int,
    fractions: TorsoRoiSettings,
    min_dim: int,
) -> ClampResult:
    return clamp_crop_box(
        x=round_half_up(frame_w * fractions.x),
        y=round_half_up(frame_h * fractions.y),
        w=round_half_up(frame_w * fractions.w),
        h=round_half_up(frame_h * fractions.h),
        frame_w=frame_w,
        frame_h=frame_h,
        min_dim=min_dim,
    )


def torso_roi(frame_w: int, frame_h: int, config: DetectionConfig) -> RoiResult:
    """Fixed-percentage torso box, clamped to the frame and the minimum crop size."""

    clamped = box_from_fractions(frame_w, frame_h, config.roi.torso_default, config.min_crop_dim_px)
    return RoiResult(box=clamped.box, reason_codes=_torso_reasons(clamped))


def tighter_torso_roi(
    frame_w: int,
    frame_h: int,
    config: DetectionConfig,
    tighten_by: float = 0.08,
) -> RoiResult:
    """Torso box shrunk around the same centre, biased further toward the garment."""

    tighten = max(0.0, min(MAX_TIGHTEN, tighten_by))
    base = config.roi.torso_default
    fractions = TorsoRoiSettings(
        x=min(1.0, base.x + tighten),
        y=min(1.0, base.y + tighten),
        w=min(1.0, max(MIN_TIGHT_FRACTION, base.w - 2 * tighten)),
        h=min(1.0, max(MIN_TIGHT_FRACTION, base.h - 2 * tighten)),
    )
    clamped = box_from_fractions(frame_w, frame_h, fractions, config.min_crop_dim_px)
    return RoiResult(box=clamped.box, reason_codes=_torso_reasons(clamped))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _torso_reasons(clamped: ClampResult) -> tuple[ReasonCode, ...]:
    return (ReasonCode.E_ROI_TORSO_HEURISTIC,) + tuple(
        code for code in clamped.reason_codes if code is not ReasonCode.E_OK
    )


def _clamp_int(value: int, minimum: int, maximum: int) -> int:
    return max(minimum, min(maximum, int(value)))
