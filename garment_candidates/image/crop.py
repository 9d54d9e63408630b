from __future__ import annotations

from typing import TYPE_CHECKING

from garment_candidates.ingest.codec import EncodeError, ImageCodec

if TYPE_CHECKING:
    import numpy as np

    from garment_candidates.config import EncodingSettings
    from garment_candidates.models import CropBox, DecodedImage


def crop_pixels(image: DecodedImage, box: CropBox) -> np.ndarray:
    """Copy the RGBA rows inside ``box``; no resampling."""

    import numpy as np

    if box.frame_w != image.width or box.frame_h != image.height:
        raise ValueError(
            f"crop box computed for {box.frame_w}x{box.frame_h} but image is {image.width}x{image.height}"
        )
    if box.w <= 0 or box.h <= 0 or box.x + box.w > image.width or box.y + box.h > image.height:
        raise ValueError(f"crop box out of bounds: {box}")

    return np.ascontiguousarray(image.rgba[box.y : box.y + box.h, box.x : box.x + box.w])


def encode_crop(pixels: np.ndarray, encoding: EncodingSettings, codec: ImageCodec) -> bytes:
    """Encode with the run's single fixed format and quality."""

    data = codec.encode(pixels, encoding.format, encoding.quality)
    if not data:
        raise EncodeError("codec returned an empty crop payload")
    return data
