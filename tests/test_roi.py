from __future__ import annotations

import numpy as np
import pytest

from garment_candidates.config import RoiSettings, build_config
from garment_candidates.reason_codes import ReasonCode
from garment_candidates.roi.saliency import grid_offsets, refine_roi
from garment_candidates.roi.torso import clamp_crop_box, tighter_torso_roi, torso_roi


@pytest.mark.parametrize("frame_w", [1, 17, 100, 159, 160, 161, 320, 1024])
@pytest.mark.parametrize("frame_h", [1, 31, 160, 240, 777])
@pytest.mark.parametrize(("x", "y", "w", "h"), [(-50, -50, 10, 10), (0, 0, 0, 0), (500, 500, 900, 900), (3, 7, 200, 120)])
def test_clamp_crop_box_always_fits_frame(frame_w: int, frame_h: int, x: int, y: int, w: int, h: int) -> None:
    result = clamp_crop_box(x, y, w, h, frame_w, frame_h, min_dim=160)
    box = result.box

    assert 0 <= box.x and 0 <= box.y
    assert box.w >= 1 and box.h >= 1
    assert box.x + box.w <= frame_w
    assert box.y + box.h <= frame_h
    assert box.w >= min(160, frame_w)
    assert box.h >= min(160, frame_h)
    assert result.reason_codes


def test_clamp_crop_box_shifts_boxes_back_inside() -> None:
    result = clamp_crop_box(80, 0, 50, 50, 100, 100, min_dim=10)

    assert (result.box.x, result.box.y, result.box.w, result.box.h) == (50, 0, 50, 50)
    assert result.reason_codes == (ReasonCode.E_CROP_CLAMPED_TO_BOUNDS,)
    assert result.changed is True


def test_clamp_crop_box_reports_ok_for_valid_box() -> None:
    result = clamp_crop_box(10, 10, 50, 50, 100, 100, min_dim=20)

    assert result.reason_codes == (ReasonCode.E_OK,)
    assert result.changed is False


def test_clamp_crop_box_rejects_empty_frames() -> None:
    with pytest.raises(ValueError):
        clamp_crop_box(0, 0, 10, 10, 0, 100, min_dim=10)


def test_torso_roi_uses_fixed_fractions() -> None:
    roi = torso_roi(320, 400, build_config())

    assert roi.box.as_dict() == {"x": 58, "y": 72, "w": 205, "h": 280, "frame_w": 320, "frame_h": 400}
    assert roi.reason_codes == (ReasonCode.E_ROI_TORSO_HEURISTIC,)


def test_torso_roi_on_tiny_frame_covers_whole_frame() -> None:
    roi = torso_roi(100, 120, build_config())

    assert roi.box.as_dict() == {"x": 0, "y": 0, "w": 100, "h": 120, "frame_w": 100, "frame_h": 120}
    assert roi.reason_codes == (
        ReasonCode.E_ROI_TORSO_HEURISTIC,
        ReasonCode.E_CROP_TOO_SMALL,
        ReasonCode.E_CROP_CLAMPED_TO_BOUNDS,
    )


def test_tighter_torso_roi_sits_inside_default_box() -> None:
    config = build_config()
    default = torso_roi(640, 800, config).box
    tight = tighter_torso_roi(640, 800, config).box

    assert tight.x > default.x and tight.y > default.y
    assert tight.x + tight.w < default.x + default.w
    assert tight.y + tight.h < default.y + default.h


def test_grid_offsets_follow_ring_order() -> None:
    assert grid_offsets(1, 9) == [
        (0, 0),
        (-1, -1),
        (0, -1),
        (1, -1),
        (-1, 0),
        (1, 0),
        (-1, 1),
        (0, 1),
        (1, 1),
    ]
    assert len(grid_offsets(2, 100)) == 25
    assert grid_offsets(2, 3) == [(0, 0), (-1, -1), (0, -1)]


def _stripes_right_of_torso() -> np.ndarray:
    gray = np.zeros((400, 320), dtype=np.uint8)
    stripes = np.tile(np.array([0, 0, 255, 255], dtype=np.uint8), 9)
    gray[180:260, 264:300] = stripes
    return gray


def test_refine_roi_moves_toward_stronger_presence() -> None:
    config = build_config()
    base = torso_roi(320, 400, config)
    settings = RoiSettings(saliency_grid_steps=2, saliency_max_rois_per_frame=25)

    refined = refine_roi(_stripes_right_of_torso(), base, settings, config.min_crop_dim_px)

    assert refined.box.x > base.box.x
    assert refined.reason_codes == base.reason_codes + (ReasonCode.E_ROI_SALIENCY_REFINED,)


def test_refine_roi_keeps_base_box_on_ties() -> None:
    config = build_config()
    base = torso_roi(320, 400, config)

    refined = refine_roi(np.zeros((400, 320), dtype=np.uint8), base, RoiSettings(), config.min_crop_dim_px)

    assert refined == base


def test_refine_roi_honours_candidate_limit() -> None:
    config = build_config()
    base = torso_roi(320, 400, config)
    # Only the first ring is visited; one 16px step never reaches the stripes.
    settings = RoiSettings(saliency_grid_steps=2, saliency_max_rois_per_frame=9)

    refined = refine_roi(_stripes_right_of_torso(), base, settings, config.min_crop_dim_px)

    assert refined == base
