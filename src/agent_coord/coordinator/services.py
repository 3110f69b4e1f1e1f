"""Wiring of queue, bus and registry facades over one shared store."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from agent_coord.config import Settings
from agent_coord.coordinator.message_bus import MessageBus
from agent_coord.coordinator.registry import AgentRegistry
from agent_coord.coordinator.store import CoordinatorStore
from agent_coord.coordinator.task_queue import TaskQueue


@dataclass(slots=True)
class Coordinator:
    """The public API: one store behind the three facades."""

    store: CoordinatorStore
    task_queue: TaskQueue
    message_bus: MessageBus
    registry: AgentRegistry

    def close(self) -> None:
        self.store.close()


def build_coordinator(settings: Settings, *, init_schema: bool = True) -> Coordinator:
    """Open the store described by ``settings`` and wire the facades to it."""

    store = CoordinatorStore(
        settings.db_path,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        default_max_retries=settings.queue.max_retries,
    )
    if init_schema:
        try:
            store.init_schema()
        except Exception:
            store.close()
            raise
    return Coordinator(
        store=store,
        task_queue=TaskQueue(store=store, retention_days=settings.queue.retention_days),
        message_bus=MessageBus(store=store),
        registry=AgentRegistry(
            store=store,
            heartbeat_timeout_seconds=settings.queue.heartbeat_timeout_seconds,
        ),
    )


@contextmanager
def open_coordinator(settings: Settings) -> Iterator[Coordinator]:
    coordinator = build_coordinator(settings)
    try:
        yield coordinator
    finally:
        coordinator.close()
