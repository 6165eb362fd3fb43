"""Runtime configuration for the task store and worker."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta

from taskq.storage.common import DEFAULT_SQLITE_CLAIM_LEASE_SECONDS
from taskq.termination import DEFAULT_MAX_RETRIES, DEFAULT_TTL, TerminationPolicy

DEFAULT_DATABASE_URL = "sqlite:///.taskq.db"
DEFAULT_HANDLERS = "taskq.demo:build_registry"


@dataclass(slots=True)
class WorkerSettings:
    """Worker loop settings."""

    poll_interval_seconds: float = 10.0
    handlers: str = DEFAULT_HANDLERS
    log_level: str = "INFO"


@dataclass(slots=True)
class TerminationSettings:
    """Default termination thresholds for functions without their own policy."""

    max_retries: int = DEFAULT_MAX_RETRIES
    ttl_seconds: int = int(DEFAULT_TTL.total_seconds())

    def to_policy(self) -> TerminationPolicy:
        return TerminationPolicy(
            max_retries=self.max_retries,
            ttl=timedelta(seconds=self.ttl_seconds),
        )


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    database_url: str = DEFAULT_DATABASE_URL
    sqlite_busy_timeout_ms: int = 5000
    sqlite_claim_lease_seconds: float = DEFAULT_SQLITE_CLAIM_LEASE_SECONDS
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    termination: TerminationSettings = field(default_factory=TerminationSettings)

    @classmethod
    def from_env(cls, database_url: str | None = None) -> Settings:
        """Load settings from environment with defaults for local development."""

        settings = cls(
            database_url=database_url
            or os.getenv("TASKQ_DATABASE_URL")
            or os.getenv("DATABASE_URL")
            or DEFAULT_DATABASE_URL,
            sqlite_busy_timeout_ms=_env_int("TASKQ_SQLITE_BUSY_TIMEOUT_MS", 5000),
            sqlite_claim_lease_seconds=_env_float(
                "TASKQ_SQLITE_CLAIM_LEASE_SECONDS",
                DEFAULT_SQLITE_CLAIM_LEASE_SECONDS,
            ),
            worker=WorkerSettings(
                poll_interval_seconds=_env_float("TASKQ_POLL_INTERVAL_SECONDS", 10.0),
                handlers=os.getenv("TASKQ_HANDLERS", DEFAULT_HANDLERS),
                log_level=os.getenv("TASKQ_LOG_LEVEL", "INFO").upper(),
            ),
            termination=TerminationSettings(
                max_retries=_env_int("TASKQ_MAX_RETRIES", DEFAULT_MAX_RETRIES),
                ttl_seconds=_env_int("TASKQ_TTL_SECONDS", int(DEFAULT_TTL.total_seconds())),
            ),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.worker.poll_interval_seconds < 0:
            raise ValueError(
                "TASKQ_POLL_INTERVAL_SECONDS must be >= 0, "
                f"got {self.worker.poll_interval_seconds!r}",
            )
        if self.sqlite_claim_lease_seconds <= 0:
            raise ValueError(
                "TASKQ_SQLITE_CLAIM_LEASE_SECONDS must be > 0, "
                f"got {self.sqlite_claim_lease_seconds!r}",
            )
        if self.termination.max_retries < 0:
            raise ValueError(
                f"TASKQ_MAX_RETRIES must be >= 0, got {self.termination.max_retries!r}",
            )
        if self.termination.ttl_seconds < 0:
            raise ValueError(
                f"TASKQ_TTL_SECONDS must be >= 0, got {self.termination.ttl_seconds!r}",
            )
        if ":" not in self.worker.handlers:
            raise ValueError(
                f"Invalid TASKQ_HANDLERS value: {self.worker.handlers!r}. "
                "Expected format '<module>:<factory>'.",
            )


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid float value for {name}: {value!r}") from error
