from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

Clock = Callable[[], float]
T = TypeVar("T")

DEFAULT_MIN_REMAINING_MS = 250


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(slots=True, frozen=True)
class BudgetSnapshot:
    elapsed_ms: float
    remaining_ms: float
    budget_ms: int
    over_budget: bool


class TimeBudget:
    """Wall-clock budget for one run, read through an injectable millisecond clock."""

    def __init__(self, budget_ms: int, started_at_ms: float, clock: Clock) -> None:
        self._budget_ms = int(budget_ms)
        self._started_at_ms = float(started_at_ms)
        self._clock = clock

    @classmethod
    def start(cls, budget_ms: int, clock: Clock | None = None) -> TimeBudget:
        if budget_ms <= 0:
            raise ValueError(f"budget_ms must be > 0, got {budget_ms}")
        resolved_clock = clock or monotonic_ms
        return cls(budget_ms, resolved_clock(), resolved_clock)

    @property
    def budget_ms(self) -> int:
        return self._budget_ms

    def now_ms(self) -> float:
        return self._clock()

    def elapsed_ms(self) -> float:
        return max(0.0, self._clock() - self._started_at_ms)

    def remaining_ms(self) -> float:
        return max(0.0, self._budget_ms - self.elapsed_ms())

    def over_budget(self) -> bool:
        return self.elapsed_ms() >= self._budget_ms

    def should_exit(self, min_remaining_ms: int = DEFAULT_MIN_REMAINING_MS) -> bool:
        """True once the remaining time is at or below the safety margin."""

        if min_remaining_ms < 0:
            raise ValueError(f"min_remaining_ms must be >= 0, got {min_remaining_ms}")
        return self.remaining_ms() <= min_remaining_ms

    def snapshot(self) -> BudgetSnapshot:
        elapsed = self.elapsed_ms()
        return BudgetSnapshot(
            elapsed_ms=elapsed,
            remaining_ms=max(0.0, self._budget_ms - elapsed),
            budget_ms=self._budget_ms,
            over_budget=elapsed >= self._budget_ms,
        )

    def log_fields(self) -> dict[str, Any]:
        snap = self.snapshot()
        return {
            "budget_ms": snap.budget_ms,
            "elapsed_ms": round(snap.elapsed_ms, 3),
            "remaining_ms": round(snap.remaining_ms, 3),
            "over_budget": snap.over_budget,
        }


class StageTimer:
    """Accumulates per-stage durations from the budget clock."""

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._totals: dict[str, float] = {}

    def measure(self, stage: str, work: Callable[[], T]) -> T:
        started = self._clock()
        try:
            return work()
        finally:
            self._totals[stage] = self._totals.get(stage, 0.0) + max(0.0, self._clock() - started)

    def totals(self) -> dict[str, float]:
        return {stage: round(value, 3) for stage, value in self._totals.items()}
