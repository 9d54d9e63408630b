from __future__ import annotations

import numpy as np
import pytest

from garment_candidates.config import EncodingSettings
from garment_candidates.image.crop import crop_pixels, encode_crop
from garment_candidates.image.resample import box_downscale
from garment_candidates.ingest.codec import EncodeError, OpenCVCodec
from garment_candidates.models import CropBox, DecodedImage


def _image(width: int = 40, height: int = 30) -> DecodedImage:
    rgba = np.zeros((height, width, 4), dtype=np.uint8)
    rgba[..., 0] = np.arange(width, dtype=np.uint8)[None, :]
    rgba[..., 1] = np.arange(height, dtype=np.uint8)[:, None]
    rgba[..., 3] = 255
    return DecodedImage(width=width, height=height, rgba=rgba, gray=rgba[..., 0].copy())


class _EmptyCodec:
    def encode(self, rgba, image_format, quality) -> bytes:
        return b""


def test_crop_pixels_copies_requested_rows() -> None:
    image = _image()
    box = CropBox(x=5, y=3, w=10, h=8, frame_w=40, frame_h=30)

    pixels = crop_pixels(image, box)

    assert pixels.shape == (8, 10, 4)
    assert int(pixels[0, 0, 0]) == 5
    assert int(pixels[0, 0, 1]) == 3
    assert pixels.flags["C_CONTIGUOUS"]
    pixels[0, 0, 0] = 99
    assert int(image.rgba[3, 5, 0]) == 5


def test_crop_pixels_rejects_mismatched_or_out_of_bounds_boxes() -> None:
    image = _image()

    with pytest.raises(ValueError, match="computed for"):
        crop_pixels(image, CropBox(x=0, y=0, w=10, h=10, frame_w=80, frame_h=60))
    with pytest.raises(ValueError, match="out of bounds"):
        crop_pixels(image, CropBox(x=35, y=0, w=10, h=10, frame_w=40, frame_h=30))


def test_encode_crop_uses_configured_format() -> None:
    pixels = crop_pixels(_image(), CropBox(x=0, y=0, w=40, h=30, frame_w=40, frame_h=30))

    jpeg = encode_crop(pixels, EncodingSettings(format="jpeg", quality=70), OpenCVCodec())
    webp = encode_crop(pixels, EncodingSettings(format="webp", quality=70), OpenCVCodec())

    assert jpeg[:2] == b"\xff\xd8"
    assert webp[:4] == b"RIFF" and webp[8:12] == b"WEBP"


def test_encode_crop_rejects_empty_payload() -> None:
    pixels = np.zeros((4, 4, 4), dtype=np.uint8)

    with pytest.raises(EncodeError):
        encode_crop(pixels, EncodingSettings(), _EmptyCodec())


def test_box_downscale_rounds_cell_means_half_up() -> None:
    gray = np.array([[0, 1, 10, 10], [0, 0, 20, 21]], dtype=np.uint8)

    small = box_downscale(gray, 2, 1)

    # (0+1+0+0)/4 = 0.25 -> 0 and (10+10+20+21)/4 = 15.25 -> 15
    assert small.tolist() == [[0, 15]]


def test_box_downscale_repeats_pixels_for_small_sources() -> None:
    gray = np.array([[7, 200]], dtype=np.uint8)

    small = box_downscale(gray, 4, 2)

    assert small.shape == (2, 4)
    assert small.tolist() == [[7, 7, 200, 200], [7, 7, 200, 200]]
