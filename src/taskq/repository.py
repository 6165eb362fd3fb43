"""Persistent task store backed by SQLModel.

On stores with row locks (PostgreSQL) the claim is a
``SELECT ... FOR UPDATE SKIP LOCKED LIMIT 1`` inside a transaction that stays
open while the handler runs. The outcome update is written in the same
transaction, so releasing the row lock and recording the result commit
together.

SQLite has no row locks and a single database-wide write lock, so holding a
transaction across the handler would block every other writer. There the
claim stamps ``leased_until`` in a short ``BEGIN IMMEDIATE`` transaction, the
handler runs outside any transaction, and the outcome is written only if the
lease is still ours. A worker that dies mid-task leaves the lease to expire,
after which the task is claimable again with its old retry count.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select
from sqlmodel.sql.expression import SelectOfScalar

from taskq.errors import ClaimLostError, StoreError
from taskq.models import TaskStatus, TaskView
from taskq.storage.alembic_runner import upgrade_head
from taskq.storage.common import (
    DEFAULT_SQLITE_CLAIM_LEASE_SECONDS,
    build_engine,
    immediate_engine,
    to_utc_aware_datetime,
    utc_now,
)
from taskq.storage.sqlmodel_models import Task

logger = logging.getLogger(__name__)


class TaskClaim:
    """Exclusive hold on one pending task until the claim block exits.

    Exactly one of ``complete``, ``record_failure``, ``terminate`` or
    ``touch`` may be called; the change is written when the surrounding
    ``claim_next_task`` block exits normally.
    """

    def __init__(self, task: TaskView) -> None:
        self.task = task
        self.resolution: TaskStatus | None = None
        self.changes: dict[str, Any] = {}

    def complete(self) -> None:
        """Mark the task completed and stamp ``completed_at``."""

        now = utc_now()
        self._resolve(
            TaskStatus.COMPLETED,
            status=TaskStatus.COMPLETED.value,
            completed_at=now,
            updated_at=now,
        )

    def record_failure(self) -> int:
        """Count one failed attempt; the task stays pending. Returns the new count."""

        retry_count = self.task.retry_count + 1
        self._resolve(TaskStatus.PENDING, retry_count=retry_count, updated_at=utc_now())
        return retry_count

    def terminate(self) -> None:
        """Abandon the task permanently."""

        self._resolve(
            TaskStatus.TERMINATED,
            status=TaskStatus.TERMINATED.value,
            updated_at=utc_now(),
        )

    def touch(self) -> None:
        """Refresh ``updated_at`` only, rotating the row behind other pending work."""

        self._resolve(TaskStatus.PENDING, updated_at=utc_now())

    def _resolve(self, resolution: TaskStatus, **changes: Any) -> None:
        if self.resolution is not None:
            raise RuntimeError(f"Task {self.task.id} claim already resolved")
        self.resolution = resolution
        self.changes = changes


@dataclass(slots=True, frozen=True)
class TaskClaimed:
    claim: TaskClaim


@dataclass(slots=True, frozen=True)
class NoEligibleTask:
    pass


@dataclass(slots=True, frozen=True)
class ClaimFailed:
    error: Exception


ClaimResult = TaskClaimed | NoEligibleTask | ClaimFailed


class TaskRepository:
    """Task persistence facade backed by SQLModel."""

    def __init__(
        self,
        database_url: str,
        *,
        sqlite_busy_timeout_ms: int = 5000,
        sqlite_claim_lease_seconds: float = DEFAULT_SQLITE_CLAIM_LEASE_SECONDS,
        engine: Engine | None = None,
    ) -> None:
        self.database_url = database_url
        self.engine = engine or build_engine(
            database_url,
            sqlite_busy_timeout_ms=sqlite_busy_timeout_ms,
        )
        self.sqlite_claim_lease = timedelta(seconds=sqlite_claim_lease_seconds)
        self._write_engine = immediate_engine(self.engine)

    @property
    def holds_row_locks(self) -> bool:
        """Whether claims lock rows (PostgreSQL) rather than lease them (SQLite)."""

        return self.engine.dialect.name != "sqlite"

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        try:
            upgrade_head(self.engine)
        except SQLAlchemyError as error:
            raise StoreError(f"Failed to initialize task schema: {error}") from error

    def insert_task(self, *, function_name: str, payload: str) -> TaskView:
        """Insert a pending task with a zero retry count."""

        now = utc_now()
        try:
            with Session(self.engine) as session:
                row = Task(
                    function_name=function_name,
                    payload=payload,
                    status=TaskStatus.PENDING.value,
                    retry_count=0,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
                session.commit()
                session.refresh(row)
                return _to_task_view(row)
        except SQLAlchemyError as error:
            raise StoreError(f"Failed to insert task {function_name}: {error}") from error

    def claim_next_task(self) -> AbstractContextManager[ClaimResult]:
        """Hold one pending task for the duration of the ``with`` block.

        Yields ``TaskClaimed``, ``NoEligibleTask`` or ``ClaimFailed``. The
        change recorded on the claim is written on normal exit and discarded
        if the block raises. A failed or lost write raises ``StoreError``.
        """

        if self.holds_row_locks:
            return self._claim_with_row_lock()
        return self._claim_with_lease()

    @contextmanager
    def _claim_with_row_lock(self) -> Iterator[ClaimResult]:
        session = Session(self._write_engine)
        try:
            try:
                row = session.exec(
                    _next_pending_statement().with_for_update(skip_locked=True),
                ).first()
            except SQLAlchemyError as error:
                session.rollback()
                yield ClaimFailed(error=error)
                return

            if row is None:
                session.rollback()
                yield NoEligibleTask()
                return

            claim = TaskClaim(_to_task_view(row))
            try:
                yield TaskClaimed(claim=claim)
            except BaseException:
                session.rollback()
                raise

            for name, value in claim.changes.items():
                setattr(row, name, value)
            session.add(row)
            try:
                session.commit()
            except SQLAlchemyError as error:
                session.rollback()
                raise StoreError(
                    f"Failed to persist outcome of task {claim.task.id}: {error}",
                ) from error
        finally:
            session.close()

    @contextmanager
    def _claim_with_lease(self) -> Iterator[ClaimResult]:
        now = utc_now()
        lease = now + self.sqlite_claim_lease
        try:
            task = self._lease_next_task(now=now, lease=lease)
        except SQLAlchemyError as error:
            yield ClaimFailed(error=error)
            return

        if task is None:
            yield NoEligibleTask()
            return

        claim = TaskClaim(task)
        try:
            yield TaskClaimed(claim=claim)
        except BaseException:
            self._release_lease(task.id, lease)
            raise

        try:
            written = self._write_leased(task.id, lease, claim.changes)
        except SQLAlchemyError as error:
            raise StoreError(f"Failed to persist outcome of task {task.id}: {error}") from error
        if not written:
            raise ClaimLostError(
                f"Lost claim on task {task.id}: lease expired before the outcome was written",
            )

    def _lease_next_task(self, *, now: datetime, lease: datetime) -> TaskView | None:
        with Session(self._write_engine) as session:
            row = session.exec(
                _next_pending_statement().where(
                    or_(col(Task.leased_until).is_(None), col(Task.leased_until) <= now),
                ),
            ).first()
            if row is None:
                return None
            row.leased_until = lease
            session.add(row)
            task = _to_task_view(row)
            session.commit()
            return task

    def _write_leased(self, task_id: int, lease: datetime, changes: dict[str, Any]) -> bool:
        with Session(self._write_engine) as session:
            result = session.exec(
                sa_update(Task)
                .where(col(Task.id) == task_id, col(Task.leased_until) == lease)
                .values(**changes, leased_until=None),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def _release_lease(self, task_id: int, lease: datetime) -> None:
        try:
            self._write_leased(task_id, lease, {})
        except SQLAlchemyError as error:
            logger.warning(
                "Failed to release claim on task %s, lease will expire: %s",
                task_id,
                error,
            )

    def get_task(self, task_id: int) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.get(Task, task_id)
            return _to_task_view(row) if row is not None else None

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List recent tasks, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(Task).order_by(col(Task.id).desc()).limit(limit)
            if status is not None:
                statement = statement.where(Task.status == status.value)
            rows = session.exec(statement).all()
            return [_to_task_view(row) for row in rows]

    def count_by_status(self) -> dict[TaskStatus, int]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Task.status, func.count(col(Task.id))).group_by(Task.status),
            ).all()
        counts = {status: 0 for status in TaskStatus}
        for value, count in rows:
            counts[TaskStatus(value)] = int(count)
        return counts


def _next_pending_statement() -> SelectOfScalar[Task]:
    return (
        select(Task)
        .where(Task.status == TaskStatus.PENDING.value)
        .order_by(col(Task.updated_at).asc(), col(Task.id).asc())
        .limit(1)
    )


def _to_task_view(row: Task) -> TaskView:
    return TaskView(
        id=row.id or 0,
        function_name=row.function_name,
        payload=row.payload,
        status=TaskStatus(row.status),
        retry_count=row.retry_count,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        completed_at=(
            to_utc_aware_datetime(row.completed_at) if row.completed_at is not None else None
        ),
    )
