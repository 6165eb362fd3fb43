"""Controllers for taskq CLI commands."""

from __future__ import annotations

import importlib
import json
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy.engine import make_url

from taskq.config import Settings
from taskq.models import TaskStatus, TaskView
from taskq.registry import FunctionRegistry
from taskq.repository import TaskRepository
from taskq.services import TaskScheduler
from taskq.termination import TerminationPolicy
from taskq.worker import Worker

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(slots=True)
class InitDbCommand:
    """CLI input for schema initialization."""

    database_url: str | None


@dataclass(slots=True)
class EnqueueCommand:
    """CLI input for task enqueue."""

    database_url: str | None
    function_name: str
    payload_json: str


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for worker execution."""

    database_url: str | None
    once: bool
    max_tasks: int | None
    max_idle_polls: int | None = None
    handlers: str | None = None


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    database_url: str | None
    status: str | None
    limit: int


@dataclass(slots=True)
class ShowTaskCommand:
    """CLI input for task inspection."""

    database_url: str | None
    task_id: int


class TaskqCliController:
    """Adapter between CLI and queue services."""

    def init_db(self, command: InitDbCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        with _repository(settings):
            pass
        return [f"Schema ready: {_safe_url(settings.database_url)}"]

    def enqueue(self, command: EnqueueCommand) -> list[str]:
        try:
            payload = json.loads(command.payload_json)
        except json.JSONDecodeError as error:
            raise ValueError(f"Invalid JSON payload: {error}") from error

        settings = Settings.from_env(database_url=command.database_url)
        with _repository(settings) as repository:
            task = TaskScheduler(repository=repository).schedule_task(
                command.function_name,
                payload,
            )
        return [f"Task enqueued: id={task.id} function={task.function_name}"]

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        logging.basicConfig(level=settings.worker.log_level, format=LOG_FORMAT)
        registry = load_registry(
            command.handlers or settings.worker.handlers,
            default_policy=settings.termination.to_policy(),
        )
        with _repository(settings) as repository:
            worker = Worker(
                repository=repository,
                registry=registry,
                poll_interval_seconds=settings.worker.poll_interval_seconds,
            )
            summary = (
                worker.run_once()
                if command.once
                else worker.run_loop(
                    max_tasks=command.max_tasks,
                    max_idle_polls=command.max_idle_polls,
                )
            )

        return [
            "Worker summary: "
            f"processed={summary.processed} completed={summary.completed} "
            f"retried={summary.retried} terminated={summary.terminated} "
            f"unregistered={summary.unregistered} store_errors={summary.store_errors} "
            f"idle_polls={summary.idle_polls}",
        ]

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(status=status_filter, limit=command.limit)
            counts = repository.count_by_status()

        lines = [
            "Tasks: " + " ".join(f"{status.value}={count}" for status, count in counts.items()),
        ]
        for task in tasks:
            lines.append(
                f"  {task.id} function={task.function_name} status={task.status.value} "
                f"retry_count={task.retry_count} created_at={task.created_at.isoformat()}",
            )
        return lines

    def show_task(self, command: ShowTaskCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        with _repository(settings) as repository:
            task = repository.get_task(command.task_id)
        if task is None:
            return [f"Task not found: {command.task_id}"]
        return _render_task(task)


def load_registry(
    spec: str,
    *,
    default_policy: TerminationPolicy,
) -> FunctionRegistry:
    """Import ``<module>:<factory>`` and build the registry it returns."""

    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Invalid handlers spec {spec!r}. Expected '<module>:<factory>'.")
    module = importlib.import_module(module_name)
    factory: Callable[..., FunctionRegistry] = getattr(module, attr)
    registry = factory(default_policy)
    if not isinstance(registry, FunctionRegistry):
        raise TypeError(f"{spec} returned {type(registry).__name__}, expected FunctionRegistry")
    return registry


@contextmanager
def _repository(settings: Settings) -> Iterator[TaskRepository]:
    repository = TaskRepository(
        settings.database_url,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        sqlite_claim_lease_seconds=settings.sqlite_claim_lease_seconds,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


def _render_task(task: TaskView) -> list[str]:
    return [
        f"Task: {task.id}",
        f"Function: {task.function_name}",
        f"Status: {task.status.value}",
        f"Retry count: {task.retry_count}",
        f"Payload: {task.payload}",
        f"Created: {task.created_at.isoformat()}",
        f"Updated: {task.updated_at.isoformat()}",
        f"Completed: {task.completed_at.isoformat() if task.completed_at else '-'}",
    ]


def _safe_url(database_url: str) -> str:
    return make_url(database_url).render_as_string(hide_password=True)
