"""Deployment outcome log backed by SQLModel + SQLite."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from shipyard.deployment.models import DeploymentRequest, DeploymentResult
from shipyard.storage.common import (
    build_sqlite_engine,
    dump_json,
    load_json,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from shipyard.storage.sqlmodel_models import DeploymentRecordRow


@dataclass(slots=True)
class DeploymentRecordView:
    record_id: int
    platform: str
    deployment_id: str | None
    project_name: str
    task_id: str | None
    url: str | None
    custom_domain: str | None
    status: str
    success: bool
    error_kind: str | None
    error: str | None
    metadata: dict[str, Any]
    created_at: datetime
    updated_at: datetime


class DeploymentRecordRepository:
    """Append-mostly log of deploy attempts; status refreshes update in place."""

    def __init__(
        self,
        db_path: Path,
        *,
        busy_timeout_ms: int = 5_000,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db_path = db_path
        self._clock = clock
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def record_result(
        self,
        request: DeploymentRequest,
        result: DeploymentResult,
        *,
        task_id: str | None = None,
    ) -> DeploymentRecordView:
        """Store the outcome of a deploy call that returned."""

        return self._insert(
            DeploymentRecordRow(
                platform=result.platform.value,
                deployment_id=result.deployment_id,
                project_name=request.project_name,
                task_id=task_id,
                url=result.url,
                custom_domain=result.custom_domain,
                status=result.status.value,
                success=result.success,
                error=result.error,
                metadata_json=dump_json(_scalar_metadata(result.metadata)),
            ),
        )

    def record_failure(
        self,
        request: DeploymentRequest,
        error: Exception,
        *,
        task_id: str | None = None,
    ) -> DeploymentRecordView:
        """Store a deploy call that raised; non-deployment errors keep their class name."""

        kind = getattr(error, "kind", None)
        operation = getattr(error, "operation", None) or "deploy"
        return self._insert(
            DeploymentRecordRow(
                platform=request.platform.value,
                deployment_id=None,
                project_name=request.project_name,
                task_id=task_id,
                url=None,
                custom_domain=None,
                status="error",
                success=False,
                error_kind=kind.value if kind else None,
                error=str(error) or type(error).__name__,
                metadata_json=dump_json(
                    {"operation": operation, "error_type": type(error).__name__},
                ),
            ),
        )

    def update_status(self, result: DeploymentResult) -> int:
        """Apply a status refresh to every record of that deployment; returns rows touched."""

        if result.deployment_id is None:
            return 0
        now = to_db_datetime(self._clock())
        values: dict[str, Any] = {"status": result.status.value, "updated_at": now}
        if result.url:
            values["url"] = result.url
        if result.error:
            values["error"] = result.error
        with Session(self.engine) as session:
            outcome = session.exec(
                sa_update(DeploymentRecordRow)
                .where(
                    col(DeploymentRecordRow.platform) == result.platform.value,
                    col(DeploymentRecordRow.deployment_id) == result.deployment_id,
                )
                .values(**values),
            )
            session.commit()
            return int(outcome.rowcount or 0)

    def list_records(
        self,
        *,
        platform: str | None = None,
        task_id: str | None = None,
        limit: int = 20,
    ) -> list[DeploymentRecordView]:
        with Session(self.engine) as session:
            statement = select(DeploymentRecordRow)
            if platform is not None:
                statement = statement.where(DeploymentRecordRow.platform == platform)
            if task_id is not None:
                statement = statement.where(DeploymentRecordRow.task_id == task_id)
            rows = session.exec(
                statement.order_by(
                    col(DeploymentRecordRow.created_at).desc(),
                    col(DeploymentRecordRow.record_id).desc(),
                ).limit(max(0, limit)),
            ).all()
            return [_to_view(row) for row in rows]

    def _insert(self, row: DeploymentRecordRow) -> DeploymentRecordView:
        now = to_db_datetime(self._clock())
        row.created_at = now
        row.updated_at = now
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_view(row)


def _scalar_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    return {
        key: value
        for key, value in metadata.items()
        if value is None or isinstance(value, str | int | float | bool | list)
    }


def _to_view(row: DeploymentRecordRow) -> DeploymentRecordView:
    return DeploymentRecordView(
        record_id=row.record_id or 0,
        platform=row.platform,
        deployment_id=row.deployment_id,
        project_name=row.project_name,
        task_id=row.task_id,
        url=row.url,
        custom_domain=row.custom_domain,
        status=row.status,
        success=row.success,
        error_kind=row.error_kind,
        error=row.error,
        metadata=load_json(row.metadata_json) or {},
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
