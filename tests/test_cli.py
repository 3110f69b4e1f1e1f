from __future__ import annotations

import re
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from agent_coord.main import agent_coord

pytestmark = [
    allure.epic("Coordination Core"),
    allure.feature("CLI"),
]


def _invoke(runner: CliRunner, db_path: Path, *args: str):
    group, *rest = args
    if group in {"init", "stats", "cleanup", "worker"}:
        argv = [group, "--db-path", str(db_path), *rest]
    else:
        argv = [group, rest[0], "--db-path", str(db_path), *rest[1:]]
    return runner.invoke(agent_coord, argv)


def _task_id(output: str) -> str:
    match = re.search(r"task_id=(task-[0-9a-f-]+)", output)
    assert match is not None, output
    return match.group(1)


def test_cli_task_lifecycle(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    init = _invoke(runner, db_path, "init")
    assert init.exit_code == 0, init.output
    assert "Store initialized" in init.output

    add = _invoke(
        runner,
        db_path,
        "task",
        "add",
        "analysis",
        '{"file": "main.py"}',
        "--priority",
        "8",
        "--max-retries",
        "2",
    )
    assert add.exit_code == 0, add.output
    assert "status=pending priority=8 max_retries=2" in add.output
    task_id = _task_id(add.output)

    listed = _invoke(runner, db_path, "task", "list", "--status", "pending")
    assert listed.exit_code == 0
    assert "Tasks: 1" in listed.output
    assert task_id in listed.output

    active = _invoke(runner, db_path, "task", "list", "--active")
    assert active.exit_code == 0
    assert "Active tasks: 1" in active.output

    worker = _invoke(runner, db_path, "worker", "--once", "--agent-id", "cli-agent")
    assert worker.exit_code == 0, worker.output
    assert "agent=cli-agent processed=1 completed=1" in worker.output

    status = _invoke(runner, db_path, "task", "status", task_id, "--history")
    assert status.exit_code == 0
    assert "Status: complete" in status.output
    assert '"echo": {"file": "main.py"}' in status.output
    assert "History: 2" in status.output
    assert "started agent=cli-agent" in status.output

    stats = _invoke(runner, db_path, "stats")
    assert stats.exit_code == 0
    assert "complete=1" in stats.output
    assert "cli-agent status=offline completed=1 failed=0" in stats.output


def test_cli_fail_requeues_then_fails(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    add = _invoke(runner, db_path, "task", "add", "flaky", "{}", "--max-retries", "2")
    task_id = _task_id(add.output)

    for expected_status in ("pending", "failed"):
        worker = _invoke(
            runner,
            db_path,
            "worker",
            "--once",
            "--agent-id",
            "agent-a",
            "--command",
            "false",
        )
        assert worker.exit_code == 0, worker.output
        assert "processed=1" in worker.output
        status = _invoke(runner, db_path, "task", "status", task_id)
        assert f"Status: {expected_status}" in status.output

    final = _invoke(runner, db_path, "task", "status", task_id)
    assert "Retries: 2/2" in final.output
    assert "Error: Command exited with code 1" in final.output


def test_cli_complete_and_fail_commands_check_state(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    task_id = _task_id(_invoke(runner, db_path, "task", "add", "work", '{"n": 1}').output)

    premature = _invoke(runner, db_path, "task", "complete", task_id, '{"ok": true}')
    assert premature.exit_code == 1
    assert "in_progress" in premature.output

    missing = _invoke(runner, db_path, "task", "fail", "task-missing", "boom")
    assert missing.exit_code == 1
    assert "task-missing" in missing.output

    bad_payload = _invoke(runner, db_path, "task", "add", "work", "{not json")
    assert bad_payload.exit_code == 1
    assert "Invalid JSON payload" in bad_payload.output


def test_cli_messages_and_broadcast(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    direct = _invoke(runner, db_path, "msg", "send", "lead", "agent-a", '{"step": 1}', "--topic", "plan")
    assert direct.exit_code == 0, direct.output
    assert "to=agent-a topic=plan" in direct.output
    broadcast = _invoke(runner, db_path, "msg", "send", "lead", "broadcast", '{"all": true}')
    assert broadcast.exit_code == 0
    assert "to=broadcast" in broadcast.output

    other = _invoke(runner, db_path, "msg", "receive", "agent-b")
    assert other.exit_code == 0
    assert "Messages: 1" in other.output
    assert '"all": true' in other.output

    mine = _invoke(runner, db_path, "msg", "receive", "agent-a")
    assert "Messages: 1" in mine.output
    assert '"step": 1' in mine.output

    again = _invoke(runner, db_path, "msg", "receive", "agent-a")
    assert "Messages: 0" in again.output


def test_cli_agent_registry(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    register = _invoke(
        runner,
        db_path,
        "agent",
        "register",
        "agent-a",
        "--type",
        "reviewer",
        "--capabilities",
        '["python"]',
    )
    assert register.exit_code == 0, register.output
    assert "type=reviewer status=idle" in register.output

    health = _invoke(runner, db_path, "agent", "health", "agent-a")
    assert health.exit_code == 0
    assert "Agent agent-a: healthy" in health.output

    ghost_heartbeat = _invoke(runner, db_path, "agent", "heartbeat", "ghost")
    assert ghost_heartbeat.exit_code == 0
    assert "heartbeat ignored" in ghost_heartbeat.output

    ghost_health = _invoke(runner, db_path, "agent", "health", "ghost")
    assert ghost_health.exit_code == 1

    busy_without_task = _invoke(runner, db_path, "agent", "set-status", "agent-a", "busy")
    assert busy_without_task.exit_code == 1

    busy = _invoke(runner, db_path, "agent", "set-status", "agent-a", "busy", "--task-id", "task-1")
    assert busy.exit_code == 0
    assert "status=busy task=task-1" in busy.output

    listed = _invoke(runner, db_path, "agent", "list")
    assert "Agents: 1" in listed.output
    assert "health=healthy" in listed.output


def test_cli_config_and_cleanup(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    _invoke(runner, db_path, "init")

    listed = _invoke(runner, db_path, "config", "list")
    assert listed.exit_code == 0
    assert "max_task_retries=3" in listed.output
    assert "system_version=1.0.0" in listed.output

    updated = _invoke(runner, db_path, "config", "set", "max_task_retries", "5")
    assert updated.exit_code == 0
    assert "Config updated: max_task_retries=5" in updated.output
    assert _invoke(runner, db_path, "config", "get", "max_task_retries").output.strip() == "5"

    add = _invoke(runner, db_path, "task", "add", "work", "{}")
    assert "max_retries=5" in add.output

    invalid = _invoke(runner, db_path, "config", "set", "task_cleanup_days", "never")
    assert invalid.exit_code == 1

    missing = _invoke(runner, db_path, "config", "get", "missing")
    assert missing.exit_code == 1

    cleanup = _invoke(runner, db_path, "cleanup", "--days", "1")
    assert cleanup.exit_code == 0
    assert "Cleanup done: retention_days=1 tasks_deleted=0" in cleanup.output


def test_cli_reports_malformed_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENT_COORD_MAX_RETRIES", "many")

    result = _invoke(CliRunner(), tmp_path / "cli.db", "stats")

    assert result.exit_code == 1
    assert "AGENT_COORD_MAX_RETRIES" in result.output


def test_cli_rejects_unknown_log_level(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENT_COORD_LOG_LEVEL", "loud")

    result = _invoke(CliRunner(), tmp_path / "cli.db", "stats")

    assert result.exit_code == 1
    assert "AGENT_COORD_LOG_LEVEL" in result.output
