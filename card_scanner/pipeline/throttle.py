# pipeline/throttle.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


def should_run(now_ms: float, last_run_ms: Optional[float], min_interval_ms: float) -> bool:
    """Run when at least min_interval_ms has passed since the last real run."""
    if last_run_ms is None:
        return True
    return now_ms - last_run_ms >= min_interval_ms


@dataclass(frozen=True)
class StageOutput(Generic[T]):
    """Stage value tagged as freshly computed or carried over from a previous tick."""
    value: T
    fresh: bool

    @classmethod
    def computed(cls, value: T) -> "StageOutput[T]":
        return cls(value, True)

    @classmethod
    def cached(cls, value: T) -> "StageOutput[T]":
        return cls(value, False)


class StageThrottle:
    """Per-stage run window. last_run_ms only moves when the stage actually executes."""

    def __init__(self, min_interval_ms: float):
        if min_interval_ms < 0:
            raise ValueError(f"min_interval_ms must be >= 0, got {min_interval_ms}")
        self.min_interval_ms = float(min_interval_ms)
        self.last_run_ms: Optional[float] = None

    def permits(self, now_ms: float) -> bool:
        return should_run(now_ms, self.last_run_ms, self.min_interval_ms)

    def mark_run(self, now_ms: float) -> None:
        self.last_run_ms = now_ms

    def reset(self) -> None:
        self.last_run_ms = None
