from __future__ import annotations

import hashlib

import numpy as np
import pytest

from garment_candidates.hashing.content import sha256_hex
from garment_candidates.hashing.phash import (
    ahash64,
    hamming64,
    hamming_similarity,
    is_hash64,
    phash64,
)


def test_phash64_is_sixteen_lowercase_hex_chars(garment_image) -> None:
    value = phash64(garment_image(seed=11))

    assert is_hash64(value)
    assert value == value.lower()


def test_phash64_clears_dc_bit(garment_image) -> None:
    value = int(phash64(garment_image(seed=12)), 16)

    assert value >> 63 == 0


def test_phash64_is_stable_for_identical_input(garment_image) -> None:
    gray = garment_image(seed=13)

    assert phash64(gray) == phash64(gray.copy())


def test_phash64_tolerates_small_brightness_shifts(garment_image) -> None:
    assert hamming64(phash64(garment_image(seed=14)), phash64(garment_image(seed=14, offset=2))) <= 10


def test_phash64_separates_different_patterns(garment_image) -> None:
    first = garment_image(seed=15)[72:352, 58:263]
    second = garment_image(seed=16)[72:352, 58:263]

    assert hamming64(phash64(first), phash64(second)) > 10


def test_hamming64_counts_differing_bits() -> None:
    assert hamming64("0000000000000000", "0000000000000000") == 0
    assert hamming64("0000000000000000", "00000000000007ff") == 11
    assert hamming64("ffffffffffffffff", "0000000000000000") == 64
    assert hamming_similarity("ffffffffffffffff", "fffffffffffffff0") == pytest.approx(60 / 64)


@pytest.mark.parametrize("bad", ["", "123", "FFFFFFFFFFFFFFFF", "zzzzzzzzzzzzzzzz", "00000000000000000"])
def test_hamming64_rejects_malformed_hashes(bad: str) -> None:
    with pytest.raises(ValueError):
        hamming64(bad, "0000000000000000")


def test_ahash64_marks_bright_cells() -> None:
    gray = np.zeros((64, 64), dtype=np.uint8)
    gray[:, 32:] = 255

    # Each 8-cell row reads 00001111.
    assert ahash64(gray) == "0f0f0f0f0f0f0f0f"


def test_sha256_hex_matches_hashlib() -> None:
    assert sha256_hex(b"crop-bytes") == hashlib.sha256(b"crop-bytes").hexdigest()
