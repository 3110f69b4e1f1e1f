"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Iterator
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import update as sa_update
from sqlmodel import Session, col

from agent_coord.config import QueueSettings, Settings
from agent_coord.coordinator.services import Coordinator, build_coordinator
from agent_coord.coordinator.store import CoordinatorStore
from agent_coord.storage.common import to_db_datetime, utc_now
from agent_coord.storage.sqlmodel_models import Agent, Message, Task


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep AGENT_COORD_* variables of the developer shell out of tests."""

    for name in list(os.environ):
        if name.startswith("AGENT_COORD_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "coord.db"


@pytest.fixture()
def coordinator(db_path: Path) -> Iterator[Coordinator]:
    settings = Settings(db_path=db_path, queue=QueueSettings(heartbeat_timeout_seconds=30))
    built = build_coordinator(settings)
    try:
        yield built
    finally:
        built.close()


class Backdate:
    """Moves stored timestamps into the past to simulate elapsed time."""

    def __init__(self, store: CoordinatorStore) -> None:
        self.store = store

    def task(self, task_id: str, *, days: float, field: str = "completed_at") -> None:
        moment = to_db_datetime(utc_now() - timedelta(days=days))
        column = getattr(Task, field)
        with Session(self.store.engine) as session:
            session.exec(
                sa_update(Task).where(col(Task.task_id) == task_id).values({column: moment}),
            )
            session.commit()

    def heartbeat(self, agent_id: str, *, seconds: float) -> None:
        moment = to_db_datetime(utc_now() - timedelta(seconds=seconds))
        with Session(self.store.engine) as session:
            session.exec(
                sa_update(Agent)
                .where(col(Agent.agent_id) == agent_id)
                .values(last_heartbeat=moment),
            )
            session.commit()

    def messages(self, *, days: float) -> None:
        moment = to_db_datetime(utc_now() - timedelta(days=days))
        with Session(self.store.engine) as session:
            session.exec(sa_update(Message).values(created_at=moment))
            session.commit()


@pytest.fixture()
def backdate(coordinator: Coordinator) -> Backdate:
    return Backdate(coordinator.store)
