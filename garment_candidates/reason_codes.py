from __future__ import annotations

from enum import Enum


class ReasonCode(str, Enum):
    """Closed vocabulary attached to every pipeline decision.

    Values are stable: append new members at the end, never rename or remove.
    """

    E_DURATION_TOO_LONG = "E_DURATION_TOO_LONG"
    E_FRAMES_EXTRACTION_FAILED = "E_FRAMES_EXTRACTION_FAILED"
    E_NO_REGION_DETECTED = "E_NO_REGION_DETECTED"
    E_LOW_SHARPNESS = "E_LOW_SHARPNESS"
    E_DUPLICATE_SUPPRESSED_PHASH = "E_DUPLICATE_SUPPRESSED_PHASH"
    E_DUPLICATE_SUPPRESSED_EMBEDDING = "E_DUPLICATE_SUPPRESSED_EMBEDDING"
    E_FALLBACK_CENTER_FRAME = "E_FALLBACK_CENTER_FRAME"
    E_STORAGE_UPLOAD_FAILED = "E_STORAGE_UPLOAD_FAILED"
    E_SIGN_URL_FAILED = "E_SIGN_URL_FAILED"
    E_OK = "E_OK"
    E_DECODE_FAILED = "E_DECODE_FAILED"
    E_EXPOSURE_TOO_DARK = "E_EXPOSURE_TOO_DARK"
    E_EXPOSURE_TOO_BRIGHT = "E_EXPOSURE_TOO_BRIGHT"
    E_EXPOSURE_CLIPPED = "E_EXPOSURE_CLIPPED"
    E_ROI_TORSO_HEURISTIC = "E_ROI_TORSO_HEURISTIC"
    E_ROI_SALIENCY_REFINED = "E_ROI_SALIENCY_REFINED"
    E_CROP_CLAMPED_TO_BOUNDS = "E_CROP_CLAMPED_TO_BOUNDS"
    E_CROP_TOO_SMALL = "E_CROP_TOO_SMALL"
    E_EARLY_EXIT_TIME_BUDGET = "E_EARLY_EXIT_TIME_BUDGET"
    E_MAX_FRAMES_CAPPED = "E_MAX_FRAMES_CAPPED"
    E_MAX_CANDIDATES_CAPPED = "E_MAX_CANDIDATES_CAPPED"
    E_BACKGROUND_COMPLEX = "E_BACKGROUND_COMPLEX"
    E_BACKGROUND_SIMPLE = "E_BACKGROUND_SIMPLE"
    E_SELECTED_TOP_FRAME = "E_SELECTED_TOP_FRAME"
    E_NOT_ENOUGH_UNIQUE = "E_NOT_ENOUGH_UNIQUE"


ALL_REASON_CODES: tuple[ReasonCode, ...] = tuple(ReasonCode)
