"""Persistent priority queue backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import func, literal_column
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from shipyard.errors import (
    AttemptsExceededError,
    TaskAlreadyStartedError,
    TaskNotFoundError,
    TaskStateConflictError,
)
from shipyard.queue.models import (
    QueueStats,
    TaskCreate,
    TaskDetails,
    TaskEventView,
    TaskStatus,
    TaskType,
    TaskView,
)
from shipyard.storage.alembic_runner import upgrade_head
from shipyard.storage.common import (
    build_sqlite_engine,
    dump_json,
    load_json,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from shipyard.storage.sqlmodel_models import TaskEventRow, TaskRow

_OPEN_STATUSES = (TaskStatus.PENDING.value, TaskStatus.PROCESSING.value)
_INSERTION_ORDER = literal_column("tasks.rowid")


class TaskQueueRepository:
    """Queue persistence facade.

    Ordering is priority descending, then creation time ascending; rows created
    within the same clock tick fall back to insertion order. Every transition is a
    single conditional UPDATE so concurrent callers cannot double-apply it.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        busy_timeout_ms: int = 5_000,
        honor_scheduled_at: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db_path = db_path
        self.honor_scheduled_at = honor_scheduled_at
        self._clock = clock
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def now(self) -> datetime:
        """Current time on the repository clock."""

        return self._clock()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def enqueue(  # noqa: PLR0913
        self,
        task_type: TaskType | str,
        payload: Any = None,
        *,
        priority: int = 5,
        scheduled_at: datetime | None = None,
        max_attempts: int = 3,
        project_id: str | None = None,
    ) -> TaskView:
        """Create a pending task; the payload is stored as-is."""

        return self.enqueue_task(
            TaskCreate(
                task_type=TaskType(task_type),
                payload=payload,
                priority=priority,
                max_attempts=max_attempts,
                scheduled_at=scheduled_at,
                project_id=project_id,
            ),
        )

    def enqueue_task(self, payload: TaskCreate) -> TaskView:
        """Create a queued task."""

        if payload.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {payload.max_attempts}")

        task_type = TaskType(payload.task_type)
        now = to_db_datetime(self._clock())
        task_id = payload.task_id or str(uuid4())
        with Session(self.engine) as session:
            row = TaskRow(
                task_id=task_id,
                task_type=task_type.value,
                project_id=payload.project_id,
                status=TaskStatus.PENDING.value,
                payload_json=dump_json(payload.payload),
                priority=payload.priority,
                attempts=0,
                max_attempts=payload.max_attempts,
                scheduled_at=(
                    to_db_datetime(payload.scheduled_at) if payload.scheduled_at else now
                ),
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.flush()
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="enqueued",
                status_from=None,
                status_to=TaskStatus.PENDING,
                details={
                    "task_type": task_type.value,
                    "priority": payload.priority,
                    "max_attempts": payload.max_attempts,
                },
            )
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def list_pending(self, limit: int = 20) -> list[TaskView]:
        """Pending tasks in dispatch order, excluding not-yet-due ones when enabled."""

        with Session(self.engine) as session:
            statement = select(TaskRow).where(TaskRow.status == TaskStatus.PENDING.value)
            if self.honor_scheduled_at:
                statement = statement.where(
                    col(TaskRow.scheduled_at) <= to_db_datetime(self._clock()),
                )
            rows = session.exec(_dispatch_order(statement).limit(max(0, limit))).all()
            return [_to_task_view(row) for row in rows]

    def list_active(self, limit: int = 20) -> list[TaskView]:
        """Pending and processing tasks merged under dispatch order."""

        with Session(self.engine) as session:
            statement = select(TaskRow).where(col(TaskRow.status).in_(_OPEN_STATUSES))
            rows = session.exec(_dispatch_order(statement).limit(max(0, limit))).all()
            return [_to_task_view(row) for row in rows]

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        project_id: str | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List tasks, newest first, optionally filtered."""

        with Session(self.engine) as session:
            statement = select(TaskRow)
            if status is not None:
                statement = statement.where(TaskRow.status == status.value)
            if project_id is not None:
                statement = statement.where(TaskRow.project_id == project_id)
            rows = session.exec(
                statement.order_by(
                    col(TaskRow.created_at).desc(),
                    _INSERTION_ORDER.desc(),
                ).limit(max(0, limit)),
            ).all()
            return [_to_task_view(row) for row in rows]

    def get_task(self, task_id: str) -> TaskView:
        """Return one task or raise ``TaskNotFoundError``."""

        with Session(self.engine) as session:
            return _to_task_view(self._get_row(session=session, task_id=task_id))

    def start(self, task_id: str) -> TaskView:
        """Move a pending task to processing, consuming one attempt."""

        now = to_db_datetime(self._clock())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.task_id) == task_id,
                    col(TaskRow.status) == TaskStatus.PENDING.value,
                    col(TaskRow.attempts) < col(TaskRow.max_attempts),
                )
                .values(
                    status=TaskStatus.PROCESSING.value,
                    attempts=col(TaskRow.attempts) + 1,
                    started_at=now,
                    completed_at=None,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                row = self._get_row(session=session, task_id=task_id)
                if row.attempts >= row.max_attempts:
                    raise AttemptsExceededError(task_id, row.attempts, row.max_attempts)
                raise TaskAlreadyStartedError(task_id, row.status)

            row = self._get_row(session=session, task_id=task_id)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="started",
                status_from=TaskStatus.PENDING,
                status_to=TaskStatus.PROCESSING,
                details={"attempt": row.attempts, "max_attempts": row.max_attempts},
            )
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def complete(self, task_id: str, result: Any = None) -> TaskView:
        """Mark a processing task completed; repeating with the same result is a no-op."""

        now = to_db_datetime(self._clock())
        result_json = dump_json(result)
        with Session(self.engine) as session:
            update_result = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.task_id) == task_id,
                    col(TaskRow.status) == TaskStatus.PROCESSING.value,
                )
                .values(
                    status=TaskStatus.COMPLETED.value,
                    result_json=result_json,
                    error=None,
                    completed_at=now,
                    updated_at=now,
                ),
            )
            if update_result.rowcount != 1:
                session.rollback()
                row = self._get_row(session=session, task_id=task_id)
                if row.status == TaskStatus.COMPLETED.value and load_json(
                    row.result_json,
                ) == load_json(result_json):
                    return _to_task_view(row)
                raise TaskStateConflictError(task_id, "complete", row.status)

            self._add_event(
                session=session,
                task_id=task_id,
                event_type="completed",
                status_from=TaskStatus.PROCESSING,
                status_to=TaskStatus.COMPLETED,
                details={"has_result": result is not None},
            )
            session.commit()
            return _to_task_view(self._get_row(session=session, task_id=task_id))

    def fail(
        self,
        task_id: str,
        error: str,
        *,
        requeue: bool = False,
        scheduled_at: datetime | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> TaskView:
        """Record a failure; requeue while attempts remain, otherwise fail terminally.

        ``scheduled_at`` sets the earliest next run for a requeued task and defaults
        to now. ``details`` are merged into the audit event.
        """

        extra = dict(details or {})

        now = to_db_datetime(self._clock())
        with Session(self.engine) as session:
            if requeue:
                requeued = session.exec(
                    sa_update(TaskRow)
                    .where(
                        col(TaskRow.task_id) == task_id,
                        col(TaskRow.status) == TaskStatus.PROCESSING.value,
                        col(TaskRow.attempts) < col(TaskRow.max_attempts),
                    )
                    .values(
                        status=TaskStatus.PENDING.value,
                        error=error,
                        started_at=None,
                        completed_at=None,
                        scheduled_at=to_db_datetime(scheduled_at) if scheduled_at else now,
                        updated_at=now,
                    ),
                )
                if requeued.rowcount == 1:
                    self._add_event(
                        session=session,
                        task_id=task_id,
                        event_type="requeued",
                        status_from=TaskStatus.PROCESSING,
                        status_to=TaskStatus.PENDING,
                        details={
                            **extra,
                            "error": error,
                            "scheduled_at": to_utc_aware_datetime(
                                scheduled_at or now,
                            ).isoformat(),
                        },
                    )
                    session.commit()
                    return _to_task_view(self._get_row(session=session, task_id=task_id))
                session.rollback()

            failed = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.task_id) == task_id,
                    col(TaskRow.status) == TaskStatus.PROCESSING.value,
                )
                .values(
                    status=TaskStatus.FAILED.value,
                    error=error,
                    completed_at=now,
                    updated_at=now,
                ),
            )
            if failed.rowcount != 1:
                session.rollback()
                row = self._get_row(session=session, task_id=task_id)
                raise TaskStateConflictError(task_id, "fail", row.status)

            self._add_event(
                session=session,
                task_id=task_id,
                event_type="failed",
                status_from=TaskStatus.PROCESSING,
                status_to=TaskStatus.FAILED,
                details={**extra, "error": error, "requeue_requested": requeue},
            )
            session.commit()
            return _to_task_view(self._get_row(session=session, task_id=task_id))

    def get_task_details(self, task_id: str) -> TaskDetails:
        """Load task with its audit event stream."""

        with Session(self.engine) as session:
            row = self._get_row(session=session, task_id=task_id)
            events = session.exec(
                select(TaskEventRow)
                .where(TaskEventRow.task_id == task_id)
                .order_by(col(TaskEventRow.created_at).asc(), col(TaskEventRow.id).asc()),
            ).all()
            return TaskDetails(
                task=_to_task_view(row),
                events=[_to_event_view(event_row) for event_row in events],
            )

    def stats(self) -> QueueStats:
        """Counts by status, open tasks by priority and the oldest pending task age."""

        with Session(self.engine) as session:
            by_status = {status: 0 for status in TaskStatus}
            for status_value, count in session.exec(
                select(TaskRow.status, func.count()).group_by(TaskRow.status),
            ).all():
                by_status[TaskStatus(status_value)] = int(count)

            open_by_priority: dict[int, int] = {}
            for priority, count in session.exec(
                select(TaskRow.priority, func.count())
                .where(col(TaskRow.status).in_(_OPEN_STATUSES))
                .group_by(TaskRow.priority)
                .order_by(col(TaskRow.priority).desc()),
            ).all():
                open_by_priority[int(priority)] = int(count)

            oldest = session.exec(
                select(func.min(TaskRow.created_at)).where(
                    TaskRow.status == TaskStatus.PENDING.value,
                ),
            ).one()
            return QueueStats(
                by_status=by_status,
                open_by_priority=open_by_priority,
                oldest_pending_created_at=optional_utc(oldest),
            )

    def _get_row(self, *, session: Session, task_id: str) -> TaskRow:
        row = session.exec(select(TaskRow).where(TaskRow.task_id == task_id)).one_or_none()
        if row is None:
            raise TaskNotFoundError(task_id)
        return row

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            TaskEventRow(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=to_db_datetime(self._clock()),
            ),
        )


def _dispatch_order(statement):  # type: ignore[no-untyped-def]
    return statement.order_by(
        col(TaskRow.priority).desc(),
        col(TaskRow.created_at).asc(),
        _INSERTION_ORDER.asc(),
    )


def _to_task_view(row: TaskRow) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        task_type=TaskType(row.task_type),
        project_id=row.project_id,
        status=TaskStatus(row.status),
        payload=load_json(row.payload_json),
        priority=row.priority,
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        scheduled_at=to_utc_aware_datetime(row.scheduled_at),
        started_at=optional_utc(row.started_at),
        completed_at=optional_utc(row.completed_at),
        result=load_json(row.result_json),
        error=row.error,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_event_view(row: TaskEventRow) -> TaskEventView:
    return TaskEventView(
        event_id=row.id or 0,
        task_id=row.task_id,
        event_type=row.event_type,
        status_from=TaskStatus(row.status_from) if row.status_from is not None else None,
        status_to=TaskStatus(row.status_to) if row.status_to is not None else None,
        created_at=to_utc_aware_datetime(row.created_at),
        details=json.loads(row.details_json) if row.details_json else {},
    )
