"""Termination policy deciding when a failing task is abandoned for good."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from taskq.storage.common import utc_now

DEFAULT_MAX_RETRIES = 5
DEFAULT_TTL = timedelta(hours=10)


@dataclass(slots=True, frozen=True)
class Terminator:
    """Conditions under which a task stops being retried.

    Built fresh for every execution attempt, so the elapsed-time check can
    fire even when no failure happened in between. A zero ``max_retries`` or
    a zero ``ttl`` disables that condition.
    """

    max_retries: int
    ttl: timedelta
    start_time: datetime

    def should_terminate(self, retry_count: int, *, now: datetime | None = None) -> bool:
        if self.max_retries > 0 and retry_count >= self.max_retries:
            return True
        if self.ttl > timedelta(0):
            elapsed = (now or utc_now()) - self.start_time
            if elapsed >= self.ttl:
                return True
        return False


@dataclass(slots=True, frozen=True)
class TerminationPolicy:
    """Per-function thresholds used to build a ``Terminator``."""

    max_retries: int = DEFAULT_MAX_RETRIES
    ttl: timedelta = DEFAULT_TTL

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.ttl < timedelta(0):
            raise ValueError(f"ttl must be >= 0, got {self.ttl}")

    @classmethod
    def unlimited(cls) -> TerminationPolicy:
        """Policy that never terminates a task."""

        return cls(max_retries=0, ttl=timedelta(0))

    def terminator_for(self, start_time: datetime) -> Terminator:
        return Terminator(max_retries=self.max_retries, ttl=self.ttl, start_time=start_time)
