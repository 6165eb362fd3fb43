from __future__ import annotations

from datetime import UTC, datetime

import allure
import pytest

from taskq.codec import JsonPayloadCodec
from taskq.errors import PayloadEncodeError, StoreError
from taskq.models import TaskStatus
from taskq.repository import TaskRepository
from taskq.services import TaskScheduler

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Enqueue"),
]


def test_schedule_task_inserts_pending_record(repository: TaskRepository) -> None:
    before = datetime.now(tz=UTC)

    task = TaskScheduler(repository=repository).schedule_task("resize", {"size": [64, 64]})

    assert task.id > 0
    assert task.function_name == "resize"
    assert task.status == TaskStatus.PENDING
    assert task.retry_count == 0
    assert task.completed_at is None
    assert task.created_at >= before.replace(microsecond=0)
    assert task.created_at == task.updated_at
    assert JsonPayloadCodec().decode(task.payload) == {"size": [64, 64]}


def test_unserializable_payload_never_creates_task(repository: TaskRepository) -> None:
    scheduler = TaskScheduler(repository=repository)

    with pytest.raises(PayloadEncodeError, match="not JSON serializable") as excinfo:
        scheduler.schedule_task("resize", {"when": object()})

    assert isinstance(excinfo.value.__cause__, TypeError)
    assert repository.list_tasks() == []


def test_store_error_is_raised_to_caller(tmp_path) -> None:
    repository = TaskRepository(f"sqlite:///{tmp_path / 'no-schema.db'}")
    try:
        with pytest.raises(StoreError, match="Failed to insert task resize"):
            TaskScheduler(repository=repository).schedule_task("resize", {})
    finally:
        repository.close()


def test_schedule_task_requires_function_key(repository: TaskRepository) -> None:
    with pytest.raises(ValueError, match="non-empty"):
        TaskScheduler(repository=repository).schedule_task("", {})


def test_custom_codec_is_used(repository: TaskRepository) -> None:
    class UpperCodec:
        def encode(self, payload: object) -> str:
            return str(payload).upper()

        def decode(self, raw: str) -> object:
            return raw.lower()

    task = TaskScheduler(repository=repository, codec=UpperCodec()).schedule_task("job", "abc")

    assert task.payload == "ABC"
