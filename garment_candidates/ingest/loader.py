from __future__ import annotations

import re
from pathlib import Path
from typing import Protocol

from garment_candidates.ingest.codec import DecodeError
from garment_candidates.models import FrameInput

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp", ".bmp"}
_TIMESTAMP_PATTERN = re.compile(r"(\d+)")


class FrameLoader(Protocol):
    """Fetches the bytes behind ``FrameInput.ref``.

    Loaders signal an unreadable frame by raising ``DecodeError``; ``OSError``
    and ``ValueError`` are accepted too and treated the same way, so a single
    bad frame is skipped rather than ending the run.
    """

    def load(self, frame: FrameInput) -> bytes: ...


class FileFrameLoader:
    """Resolves ``FrameInput.ref`` against the local filesystem."""

    def __init__(self, root: str | Path | None = None) -> None:
        self._root = Path(root) if root is not None else None

    def load(self, frame: FrameInput) -> bytes:
        if frame.ref is None:
            raise DecodeError(f"frame at {frame.timestamp_ms}ms has no bytes and no reference")

        path = Path(frame.ref)
        if self._root is not None and not path.is_absolute():
            path = self._root / path
        try:
            return path.read_bytes()
        except OSError as exc:
            raise DecodeError(f"unable to read frame {path}: {exc}") from exc


def resolve_frame_bytes(frame: FrameInput, loader: FrameLoader) -> bytes:
    if frame.data is not None:
        return frame.data
    try:
        return loader.load(frame)
    except (OSError, ValueError) as exc:
        raise DecodeError(f"unable to load frame at {frame.timestamp_ms}ms: {exc}") from exc


def frames_from_directory(frames_dir: str | Path, frame_interval_ms: int = 500) -> list[FrameInput]:
    """Build ordered frame inputs from the image files in a directory.

    The last integer in a file name is taken as its timestamp in ms; files
    without one fall back to ``index * frame_interval_ms``.
    """

    directory = Path(frames_dir).expanduser().resolve()
    if not directory.is_dir():
        raise FileNotFoundError(f"Frames directory not found: {directory}")

    paths = sorted(
        path for path in directory.iterdir()
        if path.is_file() and path.suffix.lower() in IMAGE_SUFFIXES
    )

    frames: list[FrameInput] = []
    for index, path in enumerate(paths):
        matches = _TIMESTAMP_PATTERN.findall(path.stem)
        timestamp_ms = int(matches[-1]) if matches else index * frame_interval_ms
        frames.append(FrameInput(timestamp_ms=timestamp_ms, ref=path))
    return frames
