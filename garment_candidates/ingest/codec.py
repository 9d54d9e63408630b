from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from garment_candidates.models import DecodedImage

if TYPE_CHECKING:
    import numpy as np

# Integer luma weights; hashes downstream depend on these never changing.
LUMA_WEIGHT_R = 54
LUMA_WEIGHT_G = 183
LUMA_WEIGHT_B = 19


class DecodeError(RuntimeError):
    """A single frame could not be decoded."""


class EncodeError(RuntimeError):
    """A single crop could not be encoded."""


class ImageCodec(Protocol):
    def decode(self, data: bytes, max_width: int) -> DecodedImage: ...

    def encode(self, rgba: np.ndarray, image_format: str, quality: int) -> bytes: ...

    def decode_gray(self, data: bytes) -> np.ndarray: ...


def rgba_to_gray(rgba: np.ndarray) -> np.ndarray:
    """Fixed-point luminance ``(54R + 183G + 19B) >> 8`` as uint8."""

    import numpy as np

    channels = rgba.astype(np.uint32)
    luma = (
        LUMA_WEIGHT_R * channels[..., 0]
        + LUMA_WEIGHT_G * channels[..., 1]
        + LUMA_WEIGHT_B * channels[..., 2]
    ) >> 8
    return luma.astype(np.uint8)


class OpenCVCodec:
    """Default codec backed by OpenCV's bundled image libraries."""

    def decode(self, data: bytes, max_width: int) -> DecodedImage:
        import cv2
        import numpy as np

        if not data:
            raise DecodeError("empty frame payload")

        buffer = np.frombuffer(data, dtype=np.uint8)
        try:
            # IMREAD_COLOR applies EXIF orientation.
            bgr = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        except cv2.error as exc:
            raise DecodeError(f"codec rejected frame payload: {exc}") from exc
        if bgr is None or bgr.size == 0:
            raise DecodeError("codec could not decode frame payload")

        height, width = bgr.shape[:2]
        if max_width > 0 and width > max_width:
            target_height = max(1, int(round(height * max_width / width)))
            bgr = cv2.resize(bgr, (max_width, target_height), interpolation=cv2.INTER_AREA)
            height, width = bgr.shape[:2]

        rgba = np.ascontiguousarray(cv2.cvtColor(bgr, cv2.COLOR_BGR2RGBA))
        return DecodedImage(width=width, height=height, rgba=rgba, gray=rgba_to_gray(rgba))

    def decode_gray(self, data: bytes) -> np.ndarray:
        return self.decode(data, max_width=0).gray

    def encode(self, rgba: np.ndarray, image_format: str, quality: int) -> bytes:
        import cv2

        if rgba.ndim != 3 or rgba.shape[0] == 0 or rgba.shape[1] == 0:
            raise EncodeError(f"cannot encode image with shape {rgba.shape}")

        bgr = cv2.cvtColor(rgba, cv2.COLOR_RGBA2BGR)
        if image_format == "jpeg":
            extension, params = ".jpg", [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)]
        elif image_format == "webp":
            extension, params = ".webp", [int(cv2.IMWRITE_WEBP_QUALITY), int(quality)]
        else:
            raise EncodeError(f"unsupported encoding format: {image_format}")

        try:
            ok, encoded = cv2.imencode(extension, bgr, params)
        except cv2.error as exc:
            raise EncodeError(f"codec failed to encode {image_format} crop: {exc}") from exc
        if not ok:
            raise EncodeError(f"codec failed to encode {image_format} crop")
        return encoded.tobytes()
