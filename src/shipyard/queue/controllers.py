"""Controllers for task queue CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

from shipyard.config import Settings
from shipyard.deployment.controllers import deployment_manager
from shipyard.queue.handlers import DeploymentTaskHandler
from shipyard.queue.models import TaskStatus, TaskType, TaskView
from shipyard.queue.repository import TaskQueueRepository
from shipyard.queue.worker import TaskWorker
from shipyard.storage.common import utc_now


@dataclass(slots=True)
class TaskEnqueueCommand:
    """CLI input for task enqueue."""

    db_path: Path | None
    task_type: str
    payload_json: str | None
    priority: int | None
    max_attempts: int | None
    project_id: str | None
    delay_seconds: float = 0.0


@dataclass(slots=True)
class TaskListCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    project_id: str | None
    limit: int


@dataclass(slots=True)
class TaskQueueViewCommand:
    """CLI input for pending/active views in dispatch order."""

    db_path: Path | None
    limit: int


@dataclass(slots=True)
class TaskShowCommand:
    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class TaskCompleteCommand:
    db_path: Path | None
    task_id: str
    result_json: str | None


@dataclass(slots=True)
class TaskFailCommand:
    db_path: Path | None
    task_id: str
    error: str
    requeue: bool


@dataclass(slots=True)
class TaskStatsCommand:
    db_path: Path | None


@dataclass(slots=True)
class WorkerRunCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    once: bool
    max_tasks: int | None
    max_idle_polls: int = 1
    wait_for_ready: bool = False


class TaskQueueCliController:
    """Coordinates queue inspection, manual transitions and the worker."""

    def enqueue(self, command: TaskEnqueueCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        payload = _parse_json(command.payload_json, name="payload")
        scheduled_at = (
            utc_now() + timedelta(seconds=command.delay_seconds)
            if command.delay_seconds > 0
            else None
        )
        with task_repository(settings) as repository:
            task = repository.enqueue(
                TaskType(command.task_type.strip().lower()),
                payload,
                priority=(
                    command.priority
                    if command.priority is not None
                    else settings.queue.default_priority
                ),
                max_attempts=(
                    command.max_attempts
                    if command.max_attempts is not None
                    else settings.queue.default_max_attempts
                ),
                scheduled_at=scheduled_at,
                project_id=command.project_id,
            )
        return [
            "Task enqueued: "
            f"task_id={task.task_id} type={task.task_type.value} status={task.status.value} "
            f"priority={task.priority}",
        ]

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with task_repository(settings) as repository:
            tasks = repository.list_tasks(
                status=_parse_status(command.status),
                project_id=command.project_id,
                limit=command.limit,
            )
        return [f"Tasks: {len(tasks)}", *(_task_line(task) for task in tasks)]

    def pending(self, command: TaskQueueViewCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with task_repository(settings) as repository:
            tasks = repository.list_pending(limit=command.limit)
        return [f"Pending tasks: {len(tasks)}", *(_task_line(task) for task in tasks)]

    def active(self, command: TaskQueueViewCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with task_repository(settings) as repository:
            tasks = repository.list_active(limit=command.limit)
        return [f"Active tasks: {len(tasks)}", *(_task_line(task) for task in tasks)]

    def show(self, command: TaskShowCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with task_repository(settings) as repository:
            details = repository.get_task_details(command.task_id)

        task = details.task
        lines = [
            f"Task: {task.task_id}",
            f"Type: {task.task_type.value}",
            f"Project: {task.project_id or '-'}",
            f"Status: {task.status.value}",
            f"Priority: {task.priority}",
            f"Attempts: {task.attempts}/{task.max_attempts}",
            f"Scheduled at: {task.scheduled_at.isoformat()}",
            f"Started at: {_iso(task.started_at)}",
            f"Completed at: {_iso(task.completed_at)}",
            f"Payload: {_compact(task.payload)}",
            f"Result: {_compact(task.result)}",
            f"Error: {task.error or '-'}",
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def start(self, command: TaskShowCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with task_repository(settings) as repository:
            task = repository.start(command.task_id)
        return [f"Task started: {_task_line(task).strip()}"]

    def complete(self, command: TaskCompleteCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        result = _parse_json(command.result_json, name="result")
        with task_repository(settings) as repository:
            task = repository.complete(command.task_id, result)
        return [f"Task completed: {_task_line(task).strip()}"]

    def fail(self, command: TaskFailCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with task_repository(settings) as repository:
            task = repository.fail(command.task_id, command.error, requeue=command.requeue)
        verb = "re-queued" if task.status == TaskStatus.PENDING else "failed"
        return [f"Task {verb}: {_task_line(task).strip()}"]

    def stats(self, command: TaskStatsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with task_repository(settings) as repository:
            stats = repository.stats()

        lines = [
            f"Tasks total: {stats.total}",
            "By status: "
            + " ".join(f"{status.value}={count}" for status, count in stats.by_status.items()),
        ]
        if stats.open_by_priority:
            lines.append(
                "Open by priority: "
                + " ".join(
                    f"p{priority}={count}" for priority, count in stats.open_by_priority.items()
                ),
            )
        lines.append(f"Oldest pending: {_iso(stats.oldest_pending_created_at)}")
        return lines

    def run_worker(self, command: WorkerRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        with task_repository(settings) as repository, deployment_manager(settings) as manager:
            worker = TaskWorker(
                repository=repository,
                handlers={
                    TaskType.DEPLOYMENT: DeploymentTaskHandler(
                        manager,
                        wait_for_ready=command.wait_for_ready,
                    ),
                },
                worker_id=settings.queue.worker_id,
                poll_interval_seconds=settings.queue.poll_interval_seconds,
                retry_base_seconds=settings.queue.retry_base_seconds,
                retry_max_seconds=settings.queue.retry_max_seconds,
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
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} retried={summary.retried} "
            f"idle_polls={summary.idle_polls}",
        ]


@contextmanager
def task_repository(settings: Settings) -> Iterator[TaskQueueRepository]:
    repository = TaskQueueRepository(
        db_path=settings.db_path,
        busy_timeout_ms=settings.busy_timeout_ms,
        honor_scheduled_at=settings.queue.honor_scheduled_at,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().upper())


def _parse_json(raw: str | None, *, name: str) -> Any:
    if raw is None or not raw.strip():
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as error:
        raise ValueError(f"Invalid JSON for {name}: {error}") from error


def _task_line(task: TaskView) -> str:
    return (
        f"  {task.task_id} type={task.task_type.value} status={task.status.value} "
        f"priority={task.priority} attempts={task.attempts}/{task.max_attempts} "
        f"created_at={task.created_at.isoformat()}"
    )


def _iso(value: Any) -> str:
    return value.isoformat() if value is not None else "-"


def _compact(value: Any) -> str:
    if value is None:
        return "-"
    return json.dumps(value, ensure_ascii=False, sort_keys=True)
