"""Queue worker: claim one task, run its handler, record the outcome, repeat."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from taskq.errors import FunctionNotRegisteredError, StoreError
from taskq.models import TaskOutcome
from taskq.registry import FunctionRegistry, TaskContext
from taskq.repository import (
    ClaimFailed,
    NoEligibleTask,
    TaskClaim,
    TaskRepository,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 10.0

# Outcomes after which the loop waits one poll interval before claiming again.
_BACKOFF_OUTCOMES = frozenset({TaskOutcome.IDLE, TaskOutcome.STORE_ERROR})


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    completed: int = 0
    retried: int = 0
    terminated: int = 0
    unregistered: int = 0
    store_errors: int = 0
    idle_polls: int = 0

    def record(self, outcome: TaskOutcome) -> None:
        if outcome is TaskOutcome.IDLE:
            self.idle_polls += 1
            return
        if outcome is TaskOutcome.STORE_ERROR:
            self.store_errors += 1
            return
        self.processed += 1
        if outcome is TaskOutcome.COMPLETED:
            self.completed += 1
        elif outcome is TaskOutcome.RETRIED:
            self.retried += 1
        elif outcome is TaskOutcome.TERMINATED:
            self.terminated += 1
        elif outcome is TaskOutcome.UNREGISTERED:
            self.unregistered += 1


class Worker:
    """Sequential worker bound to one registry and one stop event.

    One task is claimed, executed and resolved at a time. Several worker
    processes may share a store; the skip-locked claim keeps them apart.
    Handlers run without a timeout, so a hung handler blocks this worker.
    """

    def __init__(
        self,
        *,
        repository: TaskRepository,
        registry: FunctionRegistry,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.poll_interval_seconds = poll_interval_seconds
        self.stop_event = stop_event or threading.Event()
        self._stop_signal_name: str | None = None
        self._last_task_id: int | None = None

    @property
    def stop_requested(self) -> bool:
        return self.stop_event.is_set()

    def stop(self) -> None:
        """Ask the loop to exit after the current task."""

        self.stop_event.set()

    def run_once(self) -> WorkerRunSummary:
        """Process at most one task from the queue."""

        summary = WorkerRunSummary()
        summary.record(self.process_next())
        return summary

    def run_loop(
        self,
        *,
        max_tasks: int | None = None,
        max_idle_polls: int | None = None,
    ) -> WorkerRunSummary:
        """Poll and process tasks until the stop event is set.

        Args:
            max_tasks: Stop after processing this many tasks (None = unlimited).
            max_idle_polls: Stop after this many consecutive empty polls
                (None = keep polling forever).
        """

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        unregistered_seen: set[int] = set()
        logger.info(
            "Worker polling every %ss for functions: %s",
            self.poll_interval_seconds,
            ", ".join(self.registry.keys) or "-",
        )
        with self._signal_handlers():
            while not self.stop_requested:
                if max_tasks is not None and aggregate.processed >= max_tasks:
                    break

                outcome = self.process_next()
                aggregate.record(outcome)

                if outcome is TaskOutcome.IDLE:
                    consecutive_idle += 1
                    if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                        break
                else:
                    consecutive_idle = 0

                if outcome is TaskOutcome.UNREGISTERED and self._last_task_id is not None:
                    # A repeat means every pending task left is unregistered.
                    if self._last_task_id in unregistered_seen:
                        unregistered_seen.clear()
                        self._sleep_with_stop(self.poll_interval_seconds)
                    else:
                        unregistered_seen.add(self._last_task_id)
                else:
                    unregistered_seen.clear()

                if outcome in _BACKOFF_OUTCOMES:
                    self._sleep_with_stop(self.poll_interval_seconds)

        if self._stop_signal_name is not None:
            logger.info("Worker stopped by %s", self._stop_signal_name)
        return aggregate

    def process_next(self) -> TaskOutcome:
        """Claim one pending task and drive it through a single attempt."""

        self._last_task_id = None
        if self.stop_requested:
            return TaskOutcome.IDLE

        try:
            with self.repository.claim_next_task() as result:
                if isinstance(result, NoEligibleTask):
                    return TaskOutcome.IDLE
                if isinstance(result, ClaimFailed):
                    logger.error("Error fetching task: %s", result.error)
                    return TaskOutcome.STORE_ERROR
                claim = result.claim
                self._last_task_id = claim.task.id
                outcome = self._process_claim(claim)
        except StoreError as error:
            logger.error("Error updating task status: %s", error)
            return TaskOutcome.STORE_ERROR

        task = claim.task
        if outcome is TaskOutcome.COMPLETED:
            logger.info("Task %s (%s) completed", task.id, task.function_name)
        elif outcome is TaskOutcome.RETRIED:
            logger.info(
                "Task %s (%s) left pending for retry, retry_count=%d",
                task.id,
                task.function_name,
                task.retry_count + 1,
            )
        elif outcome is TaskOutcome.TERMINATED:
            logger.warning(
                "Terminated task %s (%s) after %d retries",
                task.id,
                task.function_name,
                task.retry_count,
            )
        return outcome

    def _process_claim(self, claim: TaskClaim) -> TaskOutcome:
        task = claim.task
        terminator = self.registry.policy_for(task.function_name).terminator_for(task.created_at)
        if terminator.should_terminate(task.retry_count):
            claim.terminate()
            return TaskOutcome.TERMINATED

        try:
            handler = self.registry.resolve(task.function_name)
        except FunctionNotRegisteredError as error:
            logger.error("Cannot execute task %s: %s", task.id, error)
            claim.touch()
            return TaskOutcome.UNREGISTERED

        context = TaskContext(
            task_id=task.id,
            function_name=task.function_name,
            retry_count=task.retry_count,
            created_at=task.created_at,
            stop_event=self.stop_event,
        )
        try:
            handler(context, task.payload)
        except Exception:
            logger.exception("Function %s failed for task %s", task.function_name, task.id)
            claim.record_failure()
            return TaskOutcome.RETRIED

        claim.complete()
        return TaskOutcome.COMPLETED

    def _sleep_with_stop(self, seconds: float) -> None:
        if seconds > 0:
            self.stop_event.wait(seconds)

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self._stop_signal_name = name
            self.stop()

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
