"""Use-case services for enqueuing work."""

from __future__ import annotations

import logging
from typing import Any

from taskq.codec import JsonPayloadCodec, PayloadCodec
from taskq.models import TaskView
from taskq.repository import TaskRepository

logger = logging.getLogger(__name__)


class TaskScheduler:
    """Serializes payloads and inserts pending tasks.

    Errors from the codec (``PayloadEncodeError``) and from the store
    (``StoreError``) reach the caller unchanged; nothing is retried here.
    """

    def __init__(
        self,
        *,
        repository: TaskRepository,
        codec: PayloadCodec | None = None,
    ) -> None:
        self.repository = repository
        self.codec = codec or JsonPayloadCodec()

    def schedule_task(self, key: str, payload: Any) -> TaskView:
        if not key:
            raise ValueError("Function key must be a non-empty string")
        encoded = self.codec.encode(payload)
        task = self.repository.insert_task(function_name=key, payload=encoded)
        logger.debug("Scheduled task %s for %s", task.id, key)
        return task
