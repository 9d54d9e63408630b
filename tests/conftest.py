from __future__ import annotations

from typing import Callable

import cv2
import numpy as np
import pytest

from garment_candidates.models import FrameInput

FRAME_W = 320
FRAME_H = 400
# Patch sits inside the default torso box and clear of its border band.
PATCH_X0, PATCH_X1 = 80, 240
PATCH_Y0, PATCH_Y1 = 100, 324
BLOCK = 16
PATCH_LEVELS = np.array([0, 128, 255], dtype=np.uint8)


def garment_gray(seed: int, offset: int = 0) -> np.ndarray:
    """Dark frame with a blocky three-level patch where a torso would be."""

    rng = np.random.default_rng(seed)
    frame = np.zeros((FRAME_H, FRAME_W), dtype=np.uint8)
    rows = (PATCH_Y1 - PATCH_Y0) // BLOCK
    cols = (PATCH_X1 - PATCH_X0) // BLOCK
    blocks = PATCH_LEVELS[rng.integers(0, 3, size=(rows, cols))]
    frame[PATCH_Y0:PATCH_Y1, PATCH_X0:PATCH_X1] = np.kron(blocks, np.ones((BLOCK, BLOCK), dtype=np.uint8))
    if offset:
        frame = np.clip(frame.astype(np.int32) + offset, 0, 255).astype(np.uint8)
    return frame


def solid_gray(value: int) -> np.ndarray:
    return np.full((FRAME_H, FRAME_W), value, dtype=np.uint8)


def encode_png(gray: np.ndarray) -> bytes:
    ok, encoded = cv2.imencode(".png", cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR))
    assert ok
    return encoded.tobytes()


class FakeClock:
    """Millisecond clock that only moves when a test moves it."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def garment_png() -> Callable[..., bytes]:
    def _make(seed: int, offset: int = 0) -> bytes:
        return encode_png(garment_gray(seed, offset))

    return _make


@pytest.fixture
def distinct_frames() -> Callable[[int], list[FrameInput]]:
    def _make(count: int) -> list[FrameInput]:
        return [
            FrameInput(timestamp_ms=index * 500, data=encode_png(garment_gray(seed=index)))
            for index in range(count)
        ]

    return _make


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def garment_image() -> Callable[..., np.ndarray]:
    return garment_gray


@pytest.fixture
def solid_png() -> Callable[[int], bytes]:
    def _make(value: int) -> bytes:
        return encode_png(solid_gray(value))

    return _make
