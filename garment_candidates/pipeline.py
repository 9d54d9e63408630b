from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from garment_candidates.budget import Clock, StageTimer, TimeBudget
from garment_candidates.config import DetectionConfig, build_config
from garment_candidates.embeddings.tinyblock import Embedder, TinyBlockEmbedder
from garment_candidates.features.presence import measure_presence
from garment_candidates.hashing.content import sha256_hex
from garment_candidates.hashing.phash import phash64
from garment_candidates.image.crop import crop_pixels, encode_crop
from garment_candidates.ingest.codec import DecodeError, EncodeError, ImageCodec, OpenCVCodec
from garment_candidates.ingest.loader import FileFrameLoader, FrameLoader, resolve_frame_bytes
from garment_candidates.models import (
    DecodedImage,
    DetectedCandidate,
    DetectionResult,
    FrameInput,
    HashedCandidate,
    PresenceResult,
    RawCandidate,
    RunCounts,
    ScoredFrame,
)
from garment_candidates.propose.dedupe import dedupe_candidates
from garment_candidates.reason_codes import ReasonCode
from garment_candidates.roi.saliency import refine_roi
from garment_candidates.roi.torso import RoiResult, tighter_torso_roi, torso_roi
from garment_candidates.run_logger import RunLogger
from garment_candidates.scoring.frame_score import score_frame, select_top_frames

if TYPE_CHECKING:
    import numpy as np

logger = logging.getLogger(__name__)

TIMING_STAGES = ("decode", "scoring", "roi", "crop", "phash", "embed", "dedupe", "fallback")
FALLBACK_CONFIDENCE_MIN = 0.2
FALLBACK_CONFIDENCE_MAX = 0.6


def detect_garment_candidates(
    *,
    video_id: str,
    user_id: str,
    frames: Sequence[FrameInput],
    config: DetectionConfig | None = None,
    config_overrides: Mapping[str, Any] | None = None,
    debug: bool = False,
    time_budget_ms_override: int | None = None,
    include_embedding_vector: bool = True,
    request_id: str | None = None,
    frame_loader: FrameLoader | None = None,
    embedder: Embedder | None = None,
    codec: ImageCodec | None = None,
    clock: Clock | None = None,
) -> DetectionResult:
    """Select a few distinct, garment-like crops from sampled frames within a time budget.

    Only an invalid configuration raises. Undecodable frames, failed crops,
    budget exhaustion and empty results are reported through reason codes and
    the returned run summary. A positive ``time_budget_ms_override`` is
    validated like any other override; zero or negative values are ignored.
    """

    overrides = config_overrides
    if time_budget_ms_override is not None:
        if time_budget_ms_override > 0:
            overrides = {**(config_overrides or {}), "time_budget_ms": time_budget_ms_override}
        else:
            logger.warning("Ignoring non-positive time budget override %s", time_budget_ms_override)

    resolved_config = build_config(overrides, base=config)
    budget = TimeBudget.start(resolved_config.time_budget_ms, clock)
    run_log = RunLogger(
        request_id=request_id or str(uuid.uuid4()),
        video_id=video_id,
        user_id=user_id,
        config_version=resolved_config.version,
        debug=debug or resolved_config.debug.log_per_candidate,
    )
    resolved_codec = codec or OpenCVCodec()
    resolved_loader = frame_loader or FileFrameLoader()
    resolved_embedder = embedder or TinyBlockEmbedder(resolved_config.embeddings.tinyblock_grid)

    timer = StageTimer(budget.now_ms)
    counts = RunCounts(frames_seen=len(frames))
    margin = resolved_config.min_remaining_ms

    def out_of_time() -> bool:
        return budget.should_exit(margin)

    decoded = timer.measure(
        "decode",
        lambda: _decode_frames(frames, resolved_config, resolved_codec, resolved_loader, run_log, out_of_time),
    )
    counts.frames_decoded = len(decoded)

    scored = timer.measure("scoring", lambda: _score_frames(decoded, resolved_config, run_log, out_of_time))
    counts.frames_scored = len(scored)

    top_frames = select_top_frames(scored, resolved_config.top_k_frames)
    for item in top_frames:
        run_log.add_selected_frame_ts(item.frame.timestamp_ms)

    raw_candidates = _generate_crops(
        top_frames,
        resolved_config,
        resolved_codec,
        timer,
        counts,
        run_log,
        out_of_time,
    )
    hashed = _hash_candidates(raw_candidates, resolved_config, resolved_embedder, timer, counts, run_log, out_of_time)

    dedupe_result = timer.measure(
        "dedupe",
        lambda: dedupe_candidates(hashed, resolved_config, embedder=resolved_embedder, should_exit=out_of_time),
    )
    counts.deduped_phash = dedupe_result.counts.deduped_phash
    counts.deduped_embedding = dedupe_result.counts.deduped_embedding
    counts.embed_computed += dedupe_result.counts.embed_computed
    for suppressed in dedupe_result.suppressed:
        run_log.add_reason(suppressed.reason_codes[-1])
    for leftover in dedupe_result.unprocessed:
        run_log.add_reason(leftover.reason_codes[-1])
    if dedupe_result.early_exit_reason is not None:
        run_log.record_early_exit(dedupe_result.early_exit_reason)
    logger.debug(
        "Dedupe kept %d of %d candidates, %d left unprocessed",
        dedupe_result.counts.kept,
        dedupe_result.counts.input,
        dedupe_result.counts.unprocessed,
    )

    detected = [
        _to_detected(
            candidate,
            rank=index,
            video_id=video_id,
            user_id=user_id,
            embedding_model=resolved_embedder.model,
            include_embedding_vector=include_embedding_vector,
        )
        for index, candidate in enumerate(dedupe_result.kept, start=1)
    ]

    if frames and not detected:
        run_log.set_fallback_used(True)
        fallback = timer.measure(
            "fallback",
            lambda: _fallback_candidate(
                scored,
                decoded,
                resolved_config,
                resolved_codec,
                resolved_embedder,
                run_log,
                video_id=video_id,
                user_id=user_id,
                include_embedding_vector=include_embedding_vector,
            ),
        )
        if fallback is not None:
            counts.embed_computed += 1
            detected = [fallback]

    counts.candidates_returned = len(detected)
    for candidate in detected:
        run_log.debug_candidate(
            {
                "rank": candidate.rank,
                "frame_timestamp_ms": candidate.frame_timestamp_ms,
                "confidence": round(candidate.confidence, 6),
                "perceptual_hash": candidate.perceptual_hash,
                "crop_box": candidate.crop_box.as_dict(),
                "reason_codes": [code.value for code in candidate.reason_codes],
            }
        )

    timings = {stage: 0.0 for stage in TIMING_STAGES}
    timings.update(timer.totals())
    timings["total"] = round(budget.elapsed_ms(), 3)

    summary = run_log.finalize_and_log(
        counts=counts,
        timings_ms=timings,
        config_used=resolved_config.model_dump(mode="json"),
    )
    logger.debug("Run %s finished with budget %s", summary.request_id, budget.log_fields())
    return DetectionResult(candidates=detected, summary=summary)


def locate_roi(image: DecodedImage, config: DetectionConfig) -> RoiResult:
    """Torso box for a frame, optionally nudged toward the strongest presence response."""

    roi = torso_roi(image.width, image.height, config)
    if config.roi.enable_saliency_refine:
        roi = refine_roi(image.gray, roi, config.roi, config.min_crop_dim_px)
    return roi


def _decode_frames(
    frames: Sequence[FrameInput],
    config: DetectionConfig,
    codec: ImageCodec,
    loader: FrameLoader,
    run_log: RunLogger,
    out_of_time: Callable[[], bool],
) -> list[tuple[FrameInput, DecodedImage]]:
    if len(frames) > config.max_frames_to_score:
        run_log.add_reason(ReasonCode.E_MAX_FRAMES_CAPPED)
        logger.info(
            "Scoring only the first %d of %d frames",
            config.max_frames_to_score,
            len(frames),
        )

    decoded: list[tuple[FrameInput, DecodedImage]] = []
    for frame in frames[: config.max_frames_to_score]:
        if out_of_time():
            _stop_for_budget(run_log, "decode")
            break
        try:
            image = codec.decode(resolve_frame_bytes(frame, loader), config.max_width_used)
        except DecodeError as exc:
            logger.warning("Skipping frame at %sms: %s", frame.timestamp_ms, exc)
            run_log.add_reason(ReasonCode.E_DECODE_FAILED)
            continue
        decoded.append((frame, image))
    return decoded


def _score_frames(
    decoded: list[tuple[FrameInput, DecodedImage]],
    config: DetectionConfig,
    run_log: RunLogger,
    out_of_time: Callable[[], bool],
) -> list[ScoredFrame]:
    scored: list[ScoredFrame] = []
    for frame, image in decoded:
        if out_of_time():
            _stop_for_budget(run_log, "scoring")
            break
        roi = torso_roi(image.width, image.height, config)
        result = score_frame(frame, image, roi.box, config)
        run_log.add_reasons(result.reason_codes)
        scored.append(result)
    return scored


def _generate_crops(
    top_frames: list[ScoredFrame],
    config: DetectionConfig,
    codec: ImageCodec,
    timer: StageTimer,
    counts: RunCounts,
    run_log: RunLogger,
    out_of_time: Callable[[], bool],
) -> list[RawCandidate]:
    raw: list[RawCandidate] = []
    for scored in top_frames:
        if len(raw) >= config.max_candidates_hard:
            run_log.add_reason(ReasonCode.E_MAX_CANDIDATES_CAPPED)
            run_log.record_early_exit(ReasonCode.E_MAX_CANDIDATES_CAPPED)
            break
        if out_of_time():
            _stop_for_budget(run_log, "crop")
            break

        run_log.add_reason(ReasonCode.E_SELECTED_TOP_FRAME)
        roi = timer.measure("roi", lambda: locate_roi(scored.image, config))
        run_log.add_reasons(roi.reason_codes)

        crop = timer.measure("crop", lambda: _crop_and_check(scored.image, roi, config, codec))
        if crop is None:
            run_log.add_reason(ReasonCode.E_DECODE_FAILED)
            continue

        data, gray, presence = crop
        counts.crops_generated += 1
        if not presence.ok:
            counts.crops_rejected_presence += 1
            run_log.add_reason(ReasonCode.E_NO_REGION_DETECTED)
            continue

        raw.append(
            RawCandidate(
                candidate_id=str(uuid.uuid4()),
                frame_timestamp_ms=scored.frame.timestamp_ms,
                crop_box=roi.box,
                frame_score=scored.score,
                image_bytes=data,
                gray=gray,
                presence_score=presence.score,
                reason_codes=scored.reason_codes + (ReasonCode.E_SELECTED_TOP_FRAME,) + roi.reason_codes,
            )
        )
    return raw


def _crop_and_check(
    image: DecodedImage,
    roi: RoiResult,
    config: DetectionConfig,
    codec: ImageCodec,
) -> tuple[bytes, np.ndarray, PresenceResult] | None:
    try:
        data = encode_crop(crop_pixels(image, roi.box), config.encoding, codec)
        gray = codec.decode_gray(data)
    except (DecodeError, EncodeError) as exc:
        logger.warning("Dropping crop %s: %s", roi.box, exc)
        return None
    return data, gray, measure_presence(gray)


def _hash_candidates(
    raw_candidates: list[RawCandidate],
    config: DetectionConfig,
    embedder: Embedder,
    timer: StageTimer,
    counts: RunCounts,
    run_log: RunLogger,
    out_of_time: Callable[[], bool],
) -> list[HashedCandidate]:
    hashed: list[HashedCandidate] = []
    for raw in raw_candidates:
        if out_of_time():
            _stop_for_budget(run_log, "hash")
            break

        perceptual_hash, content_hash = timer.measure(
            "phash",
            lambda: (phash64(raw.gray), sha256_hex(raw.image_bytes)),
        )
        embedding = None
        if not config.dedupe.embed_after_phash_only:
            embedding = timer.measure("embed", lambda: embedder.embed(raw.gray))
            counts.embed_computed += 1

        hashed.append(
            HashedCandidate(
                raw=raw,
                perceptual_hash=perceptual_hash,
                content_hash=content_hash,
                byte_length=len(raw.image_bytes),
                reason_codes=raw.reason_codes,
                embedding=embedding,
            )
        )
    return hashed


def _fallback_candidate(
    scored: list[ScoredFrame],
    decoded: list[tuple[FrameInput, DecodedImage]],
    config: DetectionConfig,
    codec: ImageCodec,
    embedder: Embedder,
    run_log: RunLogger,
    *,
    video_id: str,
    user_id: str,
    include_embedding_vector: bool,
) -> DetectedCandidate | None:
    """One forced pick from the best frame, still subject to the presence gate."""

    if scored:
        best = select_top_frames(scored, 1)[0]
        frame, image = best.frame, best.image
    elif decoded:
        frame, image = decoded[0]
    else:
        logger.info("Fallback skipped: no frame could be decoded")
        run_log.add_reason(ReasonCode.E_NO_REGION_DETECTED)
        return None

    roi = torso_roi(image.width, image.height, config)
    crop = _crop_and_check(image, roi, config, codec)
    if crop is not None and not crop[2].ok:
        logger.info("Fallback frame at %sms failed presence; retrying a tighter torso box", frame.timestamp_ms)
        roi = tighter_torso_roi(image.width, image.height, config)
        crop = _crop_and_check(image, roi, config, codec)
    if crop is None:
        run_log.add_reason(ReasonCode.E_DECODE_FAILED)
        return None

    data, gray, presence = crop
    if not presence.ok:
        logger.info("Fallback frame at %sms rejected by presence gate", frame.timestamp_ms)
        run_log.add_reason(ReasonCode.E_NO_REGION_DETECTED)
        return None

    reasons = (ReasonCode.E_FALLBACK_CENTER_FRAME,) + roi.reason_codes
    run_log.add_reasons(reasons)
    run_log.add_selected_frame_ts(frame.timestamp_ms)

    embedding = embedder.embed(gray)
    confidence = _clamp(0.25 + 0.45 * presence.score, FALLBACK_CONFIDENCE_MIN, FALLBACK_CONFIDENCE_MAX)
    logger.debug("Fallback candidate from frame %sms", frame.timestamp_ms)

    return DetectedCandidate(
        id=str(uuid.uuid4()),
        video_id=video_id,
        user_id=user_id,
        frame_timestamp_ms=frame.timestamp_ms,
        crop_box=roi.box,
        confidence=confidence,
        reason_codes=reasons,
        perceptual_hash=phash64(gray),
        content_hash=sha256_hex(data),
        byte_length=len(data),
        embedding_model=embedder.model,
        rank=1,
        embedding_vector=embedding if include_embedding_vector else None,
        image_bytes=data,
    )


def _to_detected(
    candidate: HashedCandidate,
    *,
    rank: int,
    video_id: str,
    user_id: str,
    embedding_model: str,
    include_embedding_vector: bool,
) -> DetectedCandidate:
    raw = candidate.raw
    return DetectedCandidate(
        id=raw.candidate_id,
        video_id=video_id,
        user_id=user_id,
        frame_timestamp_ms=raw.frame_timestamp_ms,
        crop_box=raw.crop_box,
        confidence=_clamp(0.15 + 0.55 * raw.frame_score + 0.3 * raw.presence_score),
        reason_codes=candidate.reason_codes,
        perceptual_hash=candidate.perceptual_hash,
        content_hash=candidate.content_hash,
        byte_length=candidate.byte_length,
        embedding_model=embedding_model,
        rank=rank,
        embedding_vector=candidate.embedding if include_embedding_vector else None,
        image_bytes=raw.image_bytes,
    )


def _stop_for_budget(run_log: RunLogger, stage: str) -> None:
    logger.info("Time budget nearly exhausted during %s; stopping stage early", stage)
    run_log.add_reason(ReasonCode.E_EARLY_EXIT_TIME_BUDGET)
    run_log.record_early_exit(ReasonCode.E_EARLY_EXIT_TIME_BUDGET)


def _clamp(value: float, minimum: float = 0.0, maximum: float = 1.0) -> float:
    return max(minimum, min(maximum, value))
