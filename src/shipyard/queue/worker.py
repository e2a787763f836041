"""Queue worker that drains pending tasks through per-type handlers."""

from __future__ import annotations

import logging
import random
import signal
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from shipyard.errors import AttemptsExceededError, ShipyardError, TaskNotFoundError
from shipyard.queue.failure_classifier import classify_task_failure
from shipyard.queue.models import TaskType, TaskView
from shipyard.queue.repository import TaskQueueRepository

logger = logging.getLogger(__name__)

TaskHandler = Callable[[TaskView], Any]


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    idle_polls: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.retried += other.retried
        self.idle_polls += other.idle_polls


class TaskWorker:
    """Consumes pending tasks in dispatch order and executes them via handlers."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: TaskQueueRepository,
        handlers: Mapping[TaskType, TaskHandler],
        worker_id: str = "worker-1",
        poll_interval_seconds: float = 2.0,
        retry_base_seconds: float = 5.0,
        retry_max_seconds: float = 300.0,
        scan_limit: int = 20,
        shutdown_requested: Callable[[], bool] | None = None,
    ) -> None:
        self.repository = repository
        self.handlers = dict(handlers)
        self.worker_id = worker_id
        self.poll_interval_seconds = poll_interval_seconds
        self.retry_base_seconds = retry_base_seconds
        self.retry_max_seconds = retry_max_seconds
        self.scan_limit = scan_limit
        self._shutdown_requested = shutdown_requested
        self._random = random.Random()  # noqa: S311
        self._stop_requested = False

    @property
    def stop_requested(self) -> bool:
        if self._stop_requested:
            return True
        return self._shutdown_requested is not None and self._shutdown_requested()

    def run_once(self) -> WorkerRunSummary:
        """Process at most one task from the queue."""

        summary = WorkerRunSummary()
        if self.stop_requested:
            summary.idle_polls = 1
            return summary

        task = self._claim_task()
        if task is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        handler = self.handlers[task.task_type]
        logger.info(
            "Worker %s started task %s (%s) attempt %d/%d",
            self.worker_id,
            task.task_id,
            task.task_type.value,
            task.attempts,
            task.max_attempts,
        )
        try:
            result = handler(task)
        except Exception as error:  # noqa: BLE001
            self._handle_failure(task=task, error=error, summary=summary)
            return summary

        self.repository.complete(task.task_id, result)
        summary.succeeded = 1
        logger.info("Worker %s completed task %s", self.worker_id, task.task_id)
        return summary

    def run_loop(
        self,
        *,
        max_tasks: int | None = None,
        max_idle_polls: int = 1,
    ) -> WorkerRunSummary:
        """Run worker loop until queue is idle or max_tasks reached.

        Args:
            max_tasks: Stop after processing this many tasks (None = unlimited).
            max_idle_polls: How many consecutive empty polls before exiting.
        """

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        with self._signal_handlers():
            while True:
                if self.stop_requested:
                    return aggregate
                if max_tasks is not None and aggregate.processed >= max_tasks:
                    return aggregate

                summary = self.run_once()
                aggregate.add(summary)

                if summary.processed == 0:
                    consecutive_idle += 1
                    if consecutive_idle >= max_idle_polls:
                        return aggregate
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue
                consecutive_idle = 0

    def _claim_task(self) -> TaskView | None:
        for candidate in self.repository.list_pending(limit=self.scan_limit):
            if candidate.task_type not in self.handlers:
                logger.debug(
                    "No handler for task type %s, skipping task %s",
                    candidate.task_type.value,
                    candidate.task_id,
                )
                continue
            try:
                return self.repository.start(candidate.task_id)
            except (TaskNotFoundError, AttemptsExceededError) as error:
                # Another worker won the conditional start, or the task is spent.
                logger.debug("Skipping task %s: %s", candidate.task_id, error)
        return None

    def _handle_failure(
        self,
        *,
        task: TaskView,
        error: Exception,
        summary: WorkerRunSummary,
    ) -> None:
        classification = classify_task_failure(error)
        if not isinstance(error, ShipyardError):
            logger.exception("Task %s handler raised unexpectedly", task.task_id)

        retries_left = task.attempts < task.max_attempts
        message = f"{type(error).__name__}: {error}"
        details = classification.to_event_details()
        if classification.retryable and retries_left:
            delay_seconds = self._compute_retry_delay(retry_number=task.attempts)
            self.repository.fail(
                task.task_id,
                message,
                requeue=True,
                scheduled_at=self.repository.now() + timedelta(seconds=delay_seconds),
                details=details,
            )
            summary.retried = 1
            logger.warning(
                "Task %s failed (%s), requeued in %.1fs: %s",
                task.task_id,
                classification.reason_code,
                delay_seconds,
                error,
            )
            return

        updated = self.repository.fail(
            task.task_id,
            message,
            requeue=False,
            details=details,
        )
        summary.failed = 1
        logger.warning(
            "Task %s failed permanently (%s) after %d attempt(s): %s",
            updated.task_id,
            classification.reason_code,
            updated.attempts,
            error,
        )

    def _compute_retry_delay(self, *, retry_number: int) -> float:
        max_delay = min(
            self.retry_max_seconds,
            self.retry_base_seconds * (2 ** max(retry_number - 1, 0)),
        )
        return self._random.uniform(0, max_delay)

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self.stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            logger.info("Worker %s received signal %s, stopping", self.worker_id, signum)
            self._stop_requested = True

        installed = False
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            pass
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
