"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import update
from sqlmodel import col

from taskq.repository import TaskRepository
from taskq.storage.sqlmodel_models import Task


def sqlite_url(path: Path) -> str:
    return f"sqlite:///{path}"


@pytest.fixture()
def database_url(tmp_path: Path) -> str:
    return sqlite_url(tmp_path / "tasks.db")


@pytest.fixture()
def repository(database_url: str) -> Iterator[TaskRepository]:
    repo = TaskRepository(database_url)
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def age_task(repository: TaskRepository) -> Callable[[int, timedelta], None]:
    """Move ``created_at`` of a task into the past."""

    def _age(task_id: int, age: timedelta) -> None:
        task = repository.get_task(task_id)
        assert task is not None
        with repository.engine.begin() as connection:
            connection.execute(
                update(Task)
                .where(col(Task.id) == task_id)
                .values(created_at=task.created_at - age),
            )

    return _age
