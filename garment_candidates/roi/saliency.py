from __future__ import annotations

from typing import TYPE_CHECKING

from garment_candidates.features.presence import measure_presence_in_box
from garment_candidates.reason_codes import ReasonCode
from garment_candidates.roi.torso import RoiResult, clamp_crop_box, round_half_up

if TYPE_CHECKING:
    import numpy as np

    from garment_candidates.config import RoiSettings


def grid_offsets(steps: int, limit: int) -> list[tuple[int, int]]:
    """Offsets in ring order: centre first, then each ring row by row, capped at ``limit``."""

    offsets = [(0, 0)]
    for ring in range(1, steps + 1):
        for dy in range(-ring, ring + 1):
            for dx in range(-ring, ring + 1):
                if max(abs(dx), abs(dy)) == ring:
                    offsets.append((dx, dy))
    return offsets[: max(1, limit)]


def refine_roi(
    gray: np.ndarray,
    base: RoiResult,
    settings: RoiSettings,
    min_dim: int,
) -> RoiResult:
    """Shift the torso box over a small grid and keep the one with the best presence score.

    The base box wins ties, so refinement only moves when a shifted box is
    strictly better.
    """

    box = base.box
    step_x = max(1, round_half_up(box.frame_w * settings.saliency_step_ratio))
    step_y = max(1, round_half_up(box.frame_h * settings.saliency_step_ratio))

    best_box = box
    best_score = measure_presence_in_box(gray, box).score
    seen = {(box.x, box.y, box.w, box.h)}

    for dx, dy in grid_offsets(settings.saliency_grid_steps, settings.saliency_max_rois_per_frame)[1:]:
        shifted = clamp_crop_box(
            x=box.x + dx * step_x,
            y=box.y + dy * step_y,
            w=box.w,
            h=box.h,
            frame_w=box.frame_w,
            frame_h=box.frame_h,
            min_dim=min_dim,
        ).box
        key = (shifted.x, shifted.y, shifted.w, shifted.h)
        if key in seen:
            continue
        seen.add(key)

        score = measure_presence_in_box(gray, shifted).score
        if score > best_score:
            best_box, best_score = shifted, score

    if best_box == box:
        return base
    return RoiResult(box=best_box, reason_codes=base.reason_codes + (ReasonCode.E_ROI_SALIENCY_REFINED,))
