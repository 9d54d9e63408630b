from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable

from garment_candidates.config import DetectionConfig
from garment_candidates.embeddings.tinyblock import Embedder, TinyBlockEmbedder, cosine_similarity
from garment_candidates.hashing.phash import hamming64, hamming_similarity
from garment_candidates.models import HashedCandidate
from garment_candidates.reason_codes import ReasonCode

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DedupeCounts:
    input: int = 0
    kept: int = 0
    deduped_phash: int = 0
    deduped_embedding: int = 0
    embed_computed: int = 0
    unprocessed: int = 0


@dataclass(slots=True)
class DedupeResult:
    """Kept candidates in rank order, plus everything that did not make it and why."""

    kept: list[HashedCandidate]
    suppressed: list[HashedCandidate]
    counts: DedupeCounts
    early_exit_reason: ReasonCode | None = None
    unprocessed: list[HashedCandidate] = field(default_factory=list)


def dedupe_candidates(
    candidates: list[HashedCandidate],
    config: DetectionConfig,
    *,
    embedder: Embedder | None = None,
    should_exit: Callable[[], bool] | None = None,
) -> DedupeResult:
    """Greedy two-stage near-duplicate suppression.

    Candidates are visited by score (then timestamp, then id). Each is compared
    with every kept candidate: pHash Hamming distance within the threshold
    suppresses it first, otherwise embedding cosine at or above the threshold
    does. Embeddings are computed at most once per candidate.
    """

    resolved_embedder = embedder or TinyBlockEmbedder(config.embeddings.tinyblock_grid)
    hamming_threshold = config.dedupe.phash_hamming_threshold
    cosine_threshold = config.dedupe.embedding_cosine_threshold

    counts = DedupeCounts(input=len(candidates))
    embeddings: dict[str, tuple[float, ...]] = {}

    def embedding_for(candidate: HashedCandidate) -> tuple[float, ...]:
        cached = embeddings.get(candidate.candidate_id)
        if cached is not None:
            return cached
        if candidate.embedding is not None:
            vector = candidate.embedding
        else:
            vector = resolved_embedder.embed(candidate.raw.gray)
            counts.embed_computed += 1
        embeddings[candidate.candidate_id] = vector
        return vector

    ranked = sorted(
        candidates,
        key=lambda item: (-item.score, item.raw.frame_timestamp_ms, item.candidate_id),
    )

    kept: list[HashedCandidate] = []
    suppressed: list[HashedCandidate] = []
    early_exit_reason: ReasonCode | None = None
    stopped_at = len(ranked)

    for index, candidate in enumerate(ranked):
        if should_exit is not None and should_exit():
            early_exit_reason = ReasonCode.E_EARLY_EXIT_TIME_BUDGET
            stopped_at = index
            break
        if len(kept) >= config.max_candidates:
            early_exit_reason = ReasonCode.E_MAX_CANDIDATES_CAPPED
            stopped_at = index
            break

        duplicate_reason = _duplicate_reason(
            candidate,
            kept,
            hamming_threshold=hamming_threshold,
            cosine_threshold=cosine_threshold,
            embedding_for=embedding_for,
        )
        if duplicate_reason is ReasonCode.E_DUPLICATE_SUPPRESSED_PHASH:
            counts.deduped_phash += 1
        elif duplicate_reason is ReasonCode.E_DUPLICATE_SUPPRESSED_EMBEDDING:
            counts.deduped_embedding += 1

        if duplicate_reason is None:
            kept.append(candidate)
        else:
            suppressed.append(replace(candidate, reason_codes=candidate.reason_codes + (duplicate_reason,)))

    unprocessed: list[HashedCandidate] = []
    if early_exit_reason is not None:
        unprocessed = [
            replace(candidate, reason_codes=candidate.reason_codes + (early_exit_reason,))
            for candidate in ranked[stopped_at:]
        ]

    finalized = [replace(candidate, embedding=embedding_for(candidate)) for candidate in kept]
    counts.kept = len(finalized)
    counts.unprocessed = len(unprocessed)

    return DedupeResult(
        kept=finalized,
        suppressed=suppressed,
        counts=counts,
        early_exit_reason=early_exit_reason,
        unprocessed=unprocessed,
    )


def _duplicate_reason(
    candidate: HashedCandidate,
    kept: list[HashedCandidate],
    *,
    hamming_threshold: int,
    cosine_threshold: float,
    embedding_for: Callable[[HashedCandidate], tuple[float, ...]],
) -> ReasonCode | None:
    for other in kept:
        if hamming64(candidate.perceptual_hash, other.perceptual_hash) <= hamming_threshold:
            logger.debug(
                "Candidate %s repeats %s (phash similarity %.3f)",
                candidate.candidate_id,
                other.candidate_id,
                hamming_similarity(candidate.perceptual_hash, other.perceptual_hash),
            )
            return ReasonCode.E_DUPLICATE_SUPPRESSED_PHASH
        if cosine_similarity(embedding_for(candidate), embedding_for(other)) >= cosine_threshold:
            return ReasonCode.E_DUPLICATE_SUPPRESSED_EMBEDDING
    return None
