from __future__ import annotations

from pathlib import Path

import allure
import pytest

from agent_coord.config import QueueSettings, Settings, WorkerSettings

pytestmark = [
    allure.epic("Coordination Core"),
    allure.feature("Configuration"),
]


def test_from_env_defaults() -> None:
    settings = Settings.from_env()

    assert settings.db_path == Path(".agent_coord.db")
    assert settings.sqlite_busy_timeout_ms == 5000
    assert settings.log_level == "WARNING"
    assert settings.queue.default_priority == 5
    assert settings.queue.max_retries is None
    assert settings.queue.heartbeat_timeout_seconds is None
    assert settings.queue.retention_days is None
    assert settings.worker.agent_type == "general"
    assert settings.worker.poll_interval_seconds == 5.0
    assert settings.worker.command_template is None
    assert settings.worker.command_timeout_seconds == 600
    assert settings.worker.agent_id.startswith("agent-")
    settings.validate()


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AGENT_COORD_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("AGENT_COORD_MAX_RETRIES", "5")
    monkeypatch.setenv("AGENT_COORD_HEARTBEAT_TIMEOUT_SECONDS", "12.5")
    monkeypatch.setenv("AGENT_COORD_RETENTION_DAYS", "14")
    monkeypatch.setenv("AGENT_COORD_AGENT_ID", "builder-1")
    monkeypatch.setenv("AGENT_COORD_AGENT_TYPE", "builder")
    monkeypatch.setenv("AGENT_COORD_POLL_INTERVAL_SECONDS", "0.5")
    monkeypatch.setenv("AGENT_COORD_COMMAND_TEMPLATE", "run-task {task_id}")
    monkeypatch.setenv("AGENT_COORD_LOG_LEVEL", "info")

    settings = Settings.from_env()

    assert settings.db_path == tmp_path / "env.db"
    assert settings.queue.max_retries == 5
    assert settings.queue.heartbeat_timeout_seconds == 12.5
    assert settings.queue.retention_days == 14
    assert settings.worker.agent_id == "builder-1"
    assert settings.worker.agent_type == "builder"
    assert settings.worker.poll_interval_seconds == 0.5
    assert settings.worker.command_template == "run-task {task_id}"
    assert settings.log_level == "INFO"


def test_explicit_db_path_wins_over_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AGENT_COORD_DB_PATH", str(tmp_path / "env.db"))

    assert Settings.from_env(db_path=tmp_path / "cli.db").db_path == tmp_path / "cli.db"


def test_from_env_rejects_non_numeric_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENT_COORD_MAX_RETRIES", "many")

    with pytest.raises(ValueError, match="AGENT_COORD_MAX_RETRIES"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(sqlite_busy_timeout_ms=0), "BUSY_TIMEOUT_MS"),
        (Settings(log_level="LOUD"), "LOG_LEVEL"),
        (Settings(queue=QueueSettings(max_retries=-1)), "MAX_RETRIES"),
        (Settings(queue=QueueSettings(heartbeat_timeout_seconds=0)), "HEARTBEAT_TIMEOUT"),
        (Settings(queue=QueueSettings(retention_days=-1)), "RETENTION_DAYS"),
        (Settings(worker=WorkerSettings(poll_interval_seconds=0)), "POLL_INTERVAL"),
        (Settings(worker=WorkerSettings(command_timeout_seconds=0)), "COMMAND_TIMEOUT"),
    ],
)
def test_validate_rejects_out_of_range_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()
