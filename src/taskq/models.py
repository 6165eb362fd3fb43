"""Domain models for the durable task queue."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class TaskStatus(str, Enum):
    """Durable task lifecycle states, persisted as their string values."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TERMINATED = "terminated"


class TaskOutcome(str, Enum):
    """Result of one worker iteration."""

    COMPLETED = "completed"
    RETRIED = "retried"
    TERMINATED = "terminated"
    UNREGISTERED = "unregistered"
    STORE_ERROR = "store_error"
    IDLE = "idle"


@dataclass(slots=True, frozen=True)
class TaskView:
    """Readable task record for callers, CLI and worker logic."""

    id: int
    function_name: str
    payload: str
    status: TaskStatus
    retry_count: int
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in {TaskStatus.COMPLETED, TaskStatus.TERMINATED}
