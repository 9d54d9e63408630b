from __future__ import annotations

import math
import re
from functools import lru_cache
from typing import TYPE_CHECKING

from garment_candidates.image.resample import box_downscale

if TYPE_CHECKING:
    import numpy as np

HASH_BITS = 64
DCT_SIZE = 32
BLOCK_SIZE = 8
LUMA_CENTER = 128.0

_HEX64 = re.compile(r"^[0-9a-f]{16}$")


def phash64(gray: np.ndarray) -> str:
    """64-bit DCT perceptual hash as 16 lowercase hex chars.

    32x32 box downscale, orthonormal 2D DCT-II, top-left 8x8 block; a bit is
    set when its coefficient exceeds the median of the 63 AC terms. The DC bit
    is always 0.
    """

    import numpy as np

    small = box_downscale(gray, DCT_SIZE, DCT_SIZE).astype(np.float64) - LUMA_CENTER
    basis = _dct_basis(DCT_SIZE)
    coefficients = basis @ small @ basis.T

    block = coefficients[:BLOCK_SIZE, :BLOCK_SIZE].reshape(-1)
    median = float(np.median(block[1:]))

    bits = block > median
    bits[0] = False
    return _bits_to_hex(bits.tolist())


def ahash64(gray: np.ndarray) -> str:
    """Average hash over an 8x8 box downscale; bit set when the cell is above the mean."""

    small = box_downscale(gray, BLOCK_SIZE, BLOCK_SIZE).reshape(-1).astype(float)
    mean = float(small.mean())
    return _bits_to_hex([value > mean for value in small.tolist()])


def hamming64(a: str, b: str) -> int:
    """Differing bits between two 64-bit hex hashes."""

    return (_parse_hash(a) ^ _parse_hash(b)).bit_count()


def hamming_similarity(a: str, b: str) -> float:
    return 1.0 - hamming64(a, b) / HASH_BITS


def is_hash64(value: str) -> bool:
    return bool(_HEX64.match(value))


def _parse_hash(value: str) -> int:
    if not is_hash64(value):
        raise ValueError(f"expected 16 lowercase hex chars, got {value!r}")
    return int(value, 16)


def _bits_to_hex(bits: list[bool]) -> str:
    value = 0
    for bit in bits:
        value = (value << 1) | int(bit)
    return f"{value:016x}"


@lru_cache(maxsize=4)
def _dct_basis(size: int) -> np.ndarray:
    import numpy as np

    basis = np.zeros((size, size), dtype=np.float64)
    for k in range(size):
        alpha = math.sqrt(1.0 / size) if k == 0 else math.sqrt(2.0 / size)
        for n in range(size):
            basis[k, n] = alpha * math.cos(math.pi * (2 * n + 1) * k / (2 * size))
    basis.setflags(write=False)
    return basis
