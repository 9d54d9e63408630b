from __future__ import annotations

import logging

from garment_candidates.config import CodecSettings, LoggingSettings

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(settings: LoggingSettings) -> None:
    """Configure process-wide logging once at startup."""

    logging.basicConfig(
        level=getattr(logging, settings.level.upper(), logging.INFO),
        format=DEFAULT_LOG_FORMAT,
        force=True,
    )


def configure_codec(settings: CodecSettings) -> None:
    """Size OpenCV's internal thread pool once per process, never per request."""

    if settings.num_threads is None:
        return

    import cv2

    cv2.setNumThreads(max(0, settings.num_threads))
    logger.debug("OpenCV thread pool set to %d", settings.num_threads)
