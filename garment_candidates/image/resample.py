from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import numpy as np


def box_downscale(gray: np.ndarray, out_w: int, out_h: int) -> np.ndarray:
    """Average source pixels into an ``out_h`` x ``out_w`` grid with integer accumulators.

    Cell ``(ox, oy)`` covers source rows ``[oy*h//out_h, max(y0+1, (oy+1)*h//out_h))``
    and the matching columns; each cell mean is rounded half up. Sources
    smaller than the grid repeat pixels, so the result is always defined.
    """

    import numpy as np

    height, width = gray.shape[:2]
    if width <= 0 or height <= 0:
        raise ValueError("cannot downscale an empty image")

    row_edges = _cell_edges(height, out_h)
    col_edges = _cell_edges(width, out_w)

    # Integral image keeps every cell sum exact.
    integral = np.zeros((height + 1, width + 1), dtype=np.int64)
    integral[1:, 1:] = gray.astype(np.int64).cumsum(axis=0).cumsum(axis=1)

    y0 = np.array([edge[0] for edge in row_edges])
    y1 = np.array([edge[1] for edge in row_edges])
    x0 = np.array([edge[0] for edge in col_edges])
    x1 = np.array([edge[1] for edge in col_edges])

    sums = (
        integral[np.ix_(y1, x1)]
        - integral[np.ix_(y0, x1)]
        - integral[np.ix_(y1, x0)]
        + integral[np.ix_(y0, x0)]
    )
    counts = np.outer(y1 - y0, x1 - x0)
    return ((2 * sums + counts) // (2 * counts)).astype(np.uint8)


def _cell_edges(size: int, cells: int) -> list[tuple[int, int]]:
    edges: list[tuple[int, int]] = []
    for index in range(cells):
        start = min(size - 1, (index * size) // cells)
        end = max(start + 1, min(size, ((index + 1) * size) // cells))
        edges.append((start, end))
    return edges
