"""Runtime configuration for the coordinator store, queue and workers."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_DB_PATH = Path(".agent_coord.db")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(slots=True)
class QueueSettings:
    """Task queue defaults.

    ``None`` for ``max_retries``, ``heartbeat_timeout_seconds`` or
    ``retention_days`` defers to the matching row of the ``config`` table.
    """

    default_priority: int = 5
    max_retries: int | None = None
    heartbeat_timeout_seconds: float | None = None
    retention_days: int | None = None


@dataclass(slots=True)
class WorkerSettings:
    """Settings for a single agent worker loop."""

    agent_id: str = field(default_factory=lambda: f"agent-{socket.gethostname()}-{os.getpid()}")
    agent_type: str = "general"
    poll_interval_seconds: float = 5.0
    command_template: str | None = None
    command_timeout_seconds: int = 600


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = DEFAULT_DB_PATH
    sqlite_busy_timeout_ms: int = 5_000
    log_level: str = "WARNING"
    queue: QueueSettings = field(default_factory=QueueSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        worker_defaults = WorkerSettings()
        return cls(
            db_path=db_path or Path(os.getenv("AGENT_COORD_DB_PATH", str(DEFAULT_DB_PATH))),
            sqlite_busy_timeout_ms=int(os.getenv("AGENT_COORD_BUSY_TIMEOUT_MS", "5000")),
            log_level=os.getenv("AGENT_COORD_LOG_LEVEL", "WARNING").strip().upper(),
            queue=QueueSettings(
                default_priority=int(os.getenv("AGENT_COORD_DEFAULT_PRIORITY", "5")),
                max_retries=_env_optional_int("AGENT_COORD_MAX_RETRIES"),
                heartbeat_timeout_seconds=_env_optional_float(
                    "AGENT_COORD_HEARTBEAT_TIMEOUT_SECONDS",
                ),
                retention_days=_env_optional_int("AGENT_COORD_RETENTION_DAYS"),
            ),
            worker=WorkerSettings(
                agent_id=os.getenv("AGENT_COORD_AGENT_ID", "").strip() or worker_defaults.agent_id,
                agent_type=os.getenv("AGENT_COORD_AGENT_TYPE", "general").strip() or "general",
                poll_interval_seconds=float(
                    os.getenv("AGENT_COORD_POLL_INTERVAL_SECONDS", "5"),
                ),
                command_template=os.getenv("AGENT_COORD_COMMAND_TEMPLATE", "").strip() or None,
                command_timeout_seconds=int(
                    os.getenv("AGENT_COORD_COMMAND_TIMEOUT_SECONDS", "600"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error on out-of-range values."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("AGENT_COORD_BUSY_TIMEOUT_MS must be > 0.")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(
                f"AGENT_COORD_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, "
                f"got {self.log_level!r}.",
            )
        if self.queue.max_retries is not None and self.queue.max_retries < 0:
            raise ValueError("AGENT_COORD_MAX_RETRIES must be >= 0.")
        if (
            self.queue.heartbeat_timeout_seconds is not None
            and self.queue.heartbeat_timeout_seconds <= 0
        ):
            raise ValueError("AGENT_COORD_HEARTBEAT_TIMEOUT_SECONDS must be > 0.")
        if self.queue.retention_days is not None and self.queue.retention_days < 0:
            raise ValueError("AGENT_COORD_RETENTION_DAYS must be >= 0.")
        if self.worker.poll_interval_seconds <= 0:
            raise ValueError("AGENT_COORD_POLL_INTERVAL_SECONDS must be > 0.")
        if self.worker.command_timeout_seconds <= 0:
            raise ValueError("AGENT_COORD_COMMAND_TIMEOUT_SECONDS must be > 0.")


def _env_optional_int(name: str) -> int | None:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_optional_float(name: str) -> float | None:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from error
