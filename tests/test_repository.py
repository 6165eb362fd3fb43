from __future__ import annotations

import os
import threading
import time

import allure
import pytest
from sqlalchemy import delete

from taskq.codec import JsonPayloadCodec
from taskq.errors import ClaimLostError
from taskq.models import TaskStatus
from taskq.repository import (
    ClaimResult,
    NoEligibleTask,
    TaskClaimed,
    TaskRepository,
)
from taskq.services import TaskScheduler
from taskq.storage.sqlmodel_models import Task

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Claim & Persistence"),
]

POSTGRES_URL = os.getenv("TASKQ_TEST_POSTGRES_URL")


def test_enqueue_then_claim_round_trip(repository: TaskRepository) -> None:
    payload = {"user_id": 42, "tags": ["a", "b"], "note": "héllo"}
    scheduled = TaskScheduler(repository=repository).schedule_task("send_email", payload)

    with repository.claim_next_task() as result:
        assert isinstance(result, TaskClaimed)
        task = result.claim.task

    assert task.id == scheduled.id
    assert task.function_name == "send_email"
    assert task.status == TaskStatus.PENDING
    assert task.retry_count == 0
    assert task.completed_at is None
    assert JsonPayloadCodec().decode(task.payload) == payload


def test_claim_on_empty_store_yields_no_eligible_task(repository: TaskRepository) -> None:
    with repository.claim_next_task() as result:
        assert isinstance(result, NoEligibleTask)


def test_claim_skips_non_pending_tasks(repository: TaskRepository) -> None:
    task = repository.insert_task(function_name="job", payload="{}")
    with repository.claim_next_task() as result:
        assert isinstance(result, TaskClaimed)
        result.claim.terminate()

    with repository.claim_next_task() as result:
        assert isinstance(result, NoEligibleTask)

    stored = repository.get_task(task.id)
    assert stored is not None
    assert stored.status == TaskStatus.TERMINATED


def test_complete_sets_completed_at(repository: TaskRepository) -> None:
    task = repository.insert_task(function_name="job", payload="{}")
    with repository.claim_next_task() as result:
        assert isinstance(result, TaskClaimed)
        result.claim.complete()

    stored = repository.get_task(task.id)
    assert stored is not None
    assert stored.status == TaskStatus.COMPLETED
    assert stored.completed_at is not None
    assert stored.updated_at >= stored.created_at
    assert stored.is_terminal


def test_record_failure_keeps_task_pending(repository: TaskRepository) -> None:
    task = repository.insert_task(function_name="job", payload="{}")
    with repository.claim_next_task() as result:
        assert isinstance(result, TaskClaimed)
        assert result.claim.record_failure() == 1

    stored = repository.get_task(task.id)
    assert stored is not None
    assert stored.status == TaskStatus.PENDING
    assert stored.retry_count == 1
    assert stored.updated_at > task.updated_at


def test_claim_resolution_is_single_shot(repository: TaskRepository) -> None:
    repository.insert_task(function_name="job", payload="{}")
    with repository.claim_next_task() as result:
        assert isinstance(result, TaskClaimed)
        result.claim.record_failure()
        with pytest.raises(RuntimeError, match="already resolved"):
            result.claim.complete()


def test_exception_inside_claim_rolls_back(repository: TaskRepository) -> None:
    task = repository.insert_task(function_name="job", payload="{}")

    with pytest.raises(KeyError), repository.claim_next_task() as result:
        assert isinstance(result, TaskClaimed)
        result.claim.complete()
        raise KeyError("boom")

    stored = repository.get_task(task.id)
    assert stored is not None
    assert stored.status == TaskStatus.PENDING
    assert stored.completed_at is None

    with repository.claim_next_task() as result:
        assert isinstance(result, TaskClaimed)
        assert result.claim.task.id == task.id


def test_failed_task_rotates_behind_other_pending_tasks(repository: TaskRepository) -> None:
    first = repository.insert_task(function_name="job", payload="1")
    second = repository.insert_task(function_name="job", payload="2")

    with repository.claim_next_task() as result:
        assert isinstance(result, TaskClaimed)
        assert result.claim.task.id == first.id
        result.claim.record_failure()

    with repository.claim_next_task() as result:
        assert isinstance(result, TaskClaimed)
        assert result.claim.task.id == second.id


def test_list_and_count_by_status(repository: TaskRepository) -> None:
    done = repository.insert_task(function_name="job", payload="1")
    repository.insert_task(function_name="job", payload="2")
    with repository.claim_next_task() as result:
        assert isinstance(result, TaskClaimed)
        assert result.claim.task.id == done.id
        result.claim.complete()

    counts = repository.count_by_status()
    assert counts[TaskStatus.COMPLETED] == 1
    assert counts[TaskStatus.PENDING] == 1
    assert counts[TaskStatus.TERMINATED] == 0

    completed = repository.list_tasks(status=TaskStatus.COMPLETED)
    assert [task.id for task in completed] == [done.id]
    assert len(repository.list_tasks(limit=1)) == 1
    assert repository.get_task(9999) is None


def test_reads_and_enqueues_proceed_while_task_is_claimed(database_url: str) -> None:
    repository = TaskRepository(database_url, sqlite_busy_timeout_ms=500)
    repository.init_schema()
    try:
        claimed = repository.insert_task(function_name="job", payload="{}")
        with repository.claim_next_task() as result:
            assert isinstance(result, TaskClaimed)

            follow_up = repository.insert_task(function_name="job", payload="{}")
            assert [task.id for task in repository.list_tasks()] == [follow_up.id, claimed.id]
            assert repository.count_by_status()[TaskStatus.PENDING] == 2

            with repository.claim_next_task() as other:
                assert isinstance(other, TaskClaimed)
                assert other.claim.task.id == follow_up.id

            result.claim.complete()

        stored = repository.get_task(claimed.id)
        assert stored is not None
        assert stored.status == TaskStatus.COMPLETED
    finally:
        repository.close()


def test_expired_lease_is_reclaimed_and_stale_outcome_rejected(database_url: str) -> None:
    repository = TaskRepository(database_url, sqlite_claim_lease_seconds=0.05)
    repository.init_schema()
    try:
        task = repository.insert_task(function_name="job", payload="{}")

        with pytest.raises(ClaimLostError), repository.claim_next_task() as first:
            assert isinstance(first, TaskClaimed)
            time.sleep(0.1)
            with repository.claim_next_task() as second:
                assert isinstance(second, TaskClaimed)
                assert second.claim.task.id == task.id
                second.claim.complete()
            first.claim.record_failure()

        stored = repository.get_task(task.id)
        assert stored is not None
        assert stored.status == TaskStatus.COMPLETED
        assert stored.retry_count == 0
    finally:
        repository.close()


def _race_for_single_task(
    repository: TaskRepository,
    *,
    claimants: int,
    hold_seconds: float,
) -> list[ClaimResult]:
    results: list[ClaimResult] = []
    results_lock = threading.Lock()
    start = threading.Barrier(claimants)

    def _claim() -> None:
        start.wait(timeout=5)
        with repository.claim_next_task() as result:
            with results_lock:
                results.append(result)
            if isinstance(result, TaskClaimed):
                time.sleep(hold_seconds)
                result.claim.complete()

    threads = [threading.Thread(target=_claim) for _ in range(claimants)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results


def test_single_pending_task_is_claimed_once_on_sqlite(repository: TaskRepository) -> None:
    repository.insert_task(function_name="job", payload="{}")

    results = _race_for_single_task(repository, claimants=4, hold_seconds=0.2)

    assert len(results) == 4
    assert sum(isinstance(result, TaskClaimed) for result in results) == 1
    assert sum(isinstance(result, NoEligibleTask) for result in results) == 3


@pytest.mark.skipif(POSTGRES_URL is None, reason="TASKQ_TEST_POSTGRES_URL is not set")
def test_skip_locked_claim_on_postgres() -> None:
    assert POSTGRES_URL is not None
    repository = TaskRepository(POSTGRES_URL)
    repository.init_schema()
    try:
        with repository.engine.begin() as connection:
            connection.execute(delete(Task))
        repository.insert_task(function_name="job", payload="{}")

        claimants = 8
        results: list[ClaimResult] = []
        results_lock = threading.Lock()
        start = threading.Barrier(claimants)
        all_claimed = threading.Barrier(claimants)

        def _claim() -> None:
            start.wait(timeout=5)
            with repository.claim_next_task() as result:
                with results_lock:
                    results.append(result)
                # Every claimant answers while the winner still holds the row lock.
                all_claimed.wait(timeout=10)
                if isinstance(result, TaskClaimed):
                    result.claim.complete()

        threads = [threading.Thread(target=_claim) for _ in range(claimants)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert sum(isinstance(result, TaskClaimed) for result in results) == 1
        assert sum(isinstance(result, NoEligibleTask) for result in results) == claimants - 1
    finally:
        repository.close()
