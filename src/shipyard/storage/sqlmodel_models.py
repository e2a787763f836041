"""SQLModel ORM tables for the job record store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class TaskRow(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_tasks_status_priority", "status", "priority", "created_at"),)

    task_id: str = Field(primary_key=True)
    task_type: str = Field(index=True)
    project_id: str | None = Field(default=None, index=True)
    status: str = Field(index=True)
    payload_json: str | None = Field(default=None, sa_column=Column(Text))
    priority: int = Field(default=5)
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)
    scheduled_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    result_json: str | None = Field(default=None, sa_column=Column(Text))
    error: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskEventRow(SQLModel, table=True):
    __tablename__ = "task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(ForeignKey("tasks.task_id", ondelete="CASCADE"), nullable=False),
    )
    event_type: str
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class DeploymentRecordRow(SQLModel, table=True):
    __tablename__ = "deployment_records"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_deployment_records_platform_deployment", "platform", "deployment_id"),
        Index("idx_deployment_records_created", "created_at"),
    )

    record_id: int | None = Field(default=None, primary_key=True)
    platform: str
    deployment_id: str | None = None
    project_name: str
    task_id: str | None = Field(
        default=None,
        sa_column=Column(ForeignKey("tasks.task_id", ondelete="SET NULL"), nullable=True),
    )
    url: str | None = None
    custom_domain: str | None = None
    status: str
    success: bool = Field(default=False)
    error_kind: str | None = None
    error: str | None = Field(default=None, sa_column=Column(Text))
    metadata_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
