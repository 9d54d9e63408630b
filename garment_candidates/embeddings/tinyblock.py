from __future__ import annotations

import math
from typing import TYPE_CHECKING, Protocol, Sequence

from garment_candidates.image.resample import box_downscale

if TYPE_CHECKING:
    import numpy as np

TINYBLOCK_MODEL = "garment-candidates/tinyblock.v1"
MIN_GRID = 8
MAX_GRID = 32


class Embedder(Protocol):
    """Anything that maps a grayscale crop to a fixed-length vector."""

    model: str

    def embed(self, gray: np.ndarray) -> tuple[float, ...]: ...


class TinyBlockEmbedder:
    """Non-semantic baseline: box-downscaled intensities plus mean and variance, L2-normalised."""

    model = TINYBLOCK_MODEL

    def __init__(self, grid: int = 16) -> None:
        if not MIN_GRID <= grid <= MAX_GRID:
            raise ValueError(f"grid must be within [{MIN_GRID}, {MAX_GRID}], got {grid}")
        self.grid = grid

    def embed(self, gray: np.ndarray) -> tuple[float, ...]:
        import numpy as np

        cells = box_downscale(gray, self.grid, self.grid).reshape(-1).astype(np.float64) / 255.0
        mean = float(cells.mean())
        variance = float(((cells - mean) ** 2).mean())
        vector = np.concatenate([cells, np.array([mean, variance])])

        norm = float(np.sqrt(np.dot(vector, vector)))
        if norm > 0:
            vector = vector / norm
        return tuple(float(value) for value in vector)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine in [-1, 1]; 0.0 when either vector has zero norm or lengths differ."""

    if len(a) != len(b) or not a:
        return 0.0

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))
