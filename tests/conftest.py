"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from shipyard.deployment.repository import DeploymentRecordRepository
from shipyard.queue.repository import TaskQueueRepository
from shipyard.storage.alembic_runner import upgrade_head


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 10, 18, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop any SHIPYARD_* variables from the developer's shell."""

    for name in list(os.environ):
        if name.startswith("SHIPYARD_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "shipyard.db"


@pytest.fixture()
def repository(db_path: Path, clock: FakeClock) -> Iterator[TaskQueueRepository]:
    repo = TaskQueueRepository(db_path, clock=clock)
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def records(db_path: Path, clock: FakeClock) -> Iterator[DeploymentRecordRepository]:
    upgrade_head(db_path)
    records_repo = DeploymentRecordRepository(db_path, clock=clock)
    try:
        yield records_repo
    finally:
        records_repo.close()
