from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Any

from garment_candidates.models import RunCounts, RunDecisions, RunSummary
from garment_candidates.reason_codes import ALL_REASON_CODES, ReasonCode

logger = logging.getLogger(__name__)

SUMMARY_EVENT = "candidate_run_summary"
DEBUG_EVENT = "candidate_debug"


class RunLogger:
    """Collects reason codes and decisions for one run and emits a single summary."""

    def __init__(
        self,
        *,
        request_id: str,
        video_id: str,
        user_id: str,
        config_version: str,
        debug: bool = False,
        log: logging.Logger | None = None,
    ) -> None:
        self.request_id = request_id
        self.video_id = video_id
        self.user_id = user_id
        self.config_version = config_version
        self._debug = debug
        self._log = log or logger
        self._reason_counts: dict[ReasonCode, int] = {}
        self._selected_frame_ts: list[int] = []
        self._fallback_used = False
        self._early_exit_reason: ReasonCode | None = None
        self._summary: RunSummary | None = None

    @property
    def early_exit_reason(self) -> ReasonCode | None:
        return self._early_exit_reason

    def add_reason(self, code: ReasonCode) -> None:
        self._reason_counts[code] = self._reason_counts.get(code, 0) + 1

    def add_reasons(self, codes: Iterable[ReasonCode]) -> None:
        for code in codes:
            self.add_reason(code)

    def add_selected_frame_ts(self, timestamp_ms: int) -> None:
        value = max(0, int(timestamp_ms))
        if value not in self._selected_frame_ts:
            self._selected_frame_ts.append(value)

    def set_fallback_used(self, used: bool) -> None:
        self._fallback_used = bool(used)

    def record_early_exit(self, reason: ReasonCode) -> None:
        """Keep the first truncation reason; later stages only add to the histogram."""

        if self._early_exit_reason is None:
            self._early_exit_reason = reason

    def debug_candidate(self, payload: Mapping[str, Any]) -> None:
        if not self._debug:
            return
        self._log.debug(
            "%s %s",
            DEBUG_EVENT,
            json.dumps(
                {
                    "request_id": self.request_id,
                    "video_id": self.video_id,
                    "user_id": self.user_id,
                    "payload": dict(payload),
                },
                sort_keys=True,
                default=str,
            ),
        )

    def finalize_and_log(
        self,
        *,
        counts: RunCounts,
        timings_ms: Mapping[str, float],
        config_used: Mapping[str, Any] | None = None,
    ) -> RunSummary:
        if self._summary is not None:
            raise RuntimeError(f"run summary already emitted for request {self.request_id}")

        summary = RunSummary(
            request_id=self.request_id,
            video_id=self.video_id,
            user_id=self.user_id,
            config_version=self.config_version,
            counts=replace(counts),
            timings_ms=dict(timings_ms),
            decisions=RunDecisions(
                selected_frame_ts_ms=list(self._selected_frame_ts),
                fallback_used=self._fallback_used,
                early_exit_reason=self._early_exit_reason,
            ),
            reason_code_counts=merge_reason_code_counts(self._reason_counts),
            config_used=dict(config_used or {}),
        )
        self._summary = summary
        self._log.info("%s %s", SUMMARY_EVENT, json.dumps(summary.to_dict(), sort_keys=True))
        return summary


def merge_reason_code_counts(*maps: Mapping[ReasonCode | str, int]) -> dict[str, int]:
    """Sum histograms from several sources, keyed by code value in vocabulary order."""

    totals: dict[str, int] = {}
    for counts in maps:
        for code, value in counts.items():
            key = ReasonCode(code).value
            totals[key] = totals.get(key, 0) + max(0, int(value))

    order = {code.value: index for index, code in enumerate(ALL_REASON_CODES)}
    return {key: totals[key] for key in sorted(totals, key=order.__getitem__)}
