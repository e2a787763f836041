"""Domain models for the task queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in {TaskStatus.COMPLETED, TaskStatus.FAILED}


class TaskType(str, Enum):
    """Closed set of background work kinds."""

    TRIAGE = "triage"
    FIX = "fix"
    ENHANCEMENT = "enhancement"
    DEPLOYMENT = "deployment"


class FailureClass(str, Enum):
    """Normalized failure classes used by the worker retry policy."""

    TRANSIENT = "transient"
    NON_RETRYABLE = "non_retryable"
    INVALID_INPUT = "invalid_input"


@dataclass(slots=True)
class TaskCreate:
    """Input payload for enqueuing a task."""

    task_type: TaskType
    payload: Any = None
    priority: int = 5
    max_attempts: int = 3
    scheduled_at: datetime | None = None
    project_id: str | None = None
    task_id: str | None = None


@dataclass(slots=True)
class TaskView:
    """Readable task view for CLI and worker logic."""

    task_id: str
    task_type: TaskType
    project_id: str | None
    status: TaskStatus
    payload: Any
    priority: int
    attempts: int
    max_attempts: int
    scheduled_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    result: Any
    error: str | None
    created_at: datetime
    updated_at: datetime

    @property
    def remaining_attempts(self) -> int:
        return max(0, self.max_attempts - self.attempts)


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task details with event stream."""

    task: TaskView
    events: list[TaskEventView]


@dataclass(slots=True)
class QueueStats:
    """Aggregated queue counters."""

    by_status: dict[TaskStatus, int]
    open_by_priority: dict[int, int]
    oldest_pending_created_at: datetime | None

    @property
    def total(self) -> int:
        return sum(self.by_status.values())
