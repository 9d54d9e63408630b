from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import numpy as np


def laplacian_variance(gray: np.ndarray) -> float:
    """Population variance of the 4-neighbour Laplacian over interior pixels."""

    import cv2
    import numpy as np

    height, width = gray.shape[:2]
    if width < 3 or height < 3:
        return 0.0

    # ksize=1 is the [0 1 0; 1 -4 1; 0 1 0] kernel; border rows are discarded.
    response = cv2.Laplacian(gray, cv2.CV_64F, ksize=1)[1:-1, 1:-1]
    return float(np.var(response))


def normalized_sharpness(
    variance: float,
    min_variance: float,
    low_sharpness_penalty: float,
) -> tuple[float, bool]:
    """Map Laplacian variance into [0, 1], damping frames below ``min_variance``.

    Returns the normalised value and whether the low-sharpness penalty applied.
    """

    is_low = variance < min_variance
    adjusted = variance * low_sharpness_penalty if is_low else variance
    return min(1.0, adjusted / max(1.0, min_variance * 4.0)), is_low
