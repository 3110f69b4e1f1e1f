"""Pluggable executors that perform the work of a claimed task."""

from __future__ import annotations

import json
import os
import shlex
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from agent_coord.coordinator.models import TaskView

_STDERR_TAIL_CHARS = 500


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of one execution attempt."""

    ok: bool
    result: Any = None
    error: str | None = None


class TaskExecutor(Protocol):
    """Protocol implemented by task executors."""

    def execute(self, task: TaskView) -> ExecutionResult:
        """Run the task and report the outcome as data."""


class EchoExecutor:
    """Deterministic executor for smoke tests and local demos."""

    def execute(self, task: TaskView) -> ExecutionResult:
        return ExecutionResult(
            ok=True,
            result={
                "status": "success",
                "task_type": task.task_type,
                "echo": task.payload,
            },
        )


class CommandExecutor:
    """Run a shell command template per task.

    Supported placeholders: ``{task_id}``, ``{task_type}`` and
    ``{payload_file}`` (a JSON file with the payload). The payload is also
    written to the command's stdin. Exit code 0 means success.
    """

    def __init__(self, *, command_template: str, timeout_seconds: int = 600) -> None:
        if not command_template.strip():
            raise ValueError("Command template is empty.")
        self.command_template = command_template.strip()
        self.timeout_seconds = timeout_seconds

    def execute(self, task: TaskView) -> ExecutionResult:
        payload_text = json.dumps(task.payload, ensure_ascii=False)
        with tempfile.TemporaryDirectory(prefix="agent-coord-") as workdir:
            payload_file = Path(workdir) / "payload.json"
            payload_file.write_text(payload_text, "utf-8")
            try:
                run_args = _build_run_args(
                    command_template=self.command_template,
                    task=task,
                    payload_file=payload_file,
                )
            except ValueError as error:
                return ExecutionResult(ok=False, error=str(error))

            env = os.environ.copy()
            env["AGENT_COORD_TASK_ID"] = task.task_id
            env["AGENT_COORD_TASK_TYPE"] = task.task_type
            try:
                completed = subprocess.run(  # noqa: S603
                    run_args,
                    input=payload_text,
                    capture_output=True,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    timeout=self.timeout_seconds,
                    env=env,
                    cwd=workdir,
                    check=False,
                )
            except subprocess.TimeoutExpired:
                return ExecutionResult(
                    ok=False,
                    error=f"Command timed out after {self.timeout_seconds}s",
                )
            except FileNotFoundError:
                return ExecutionResult(ok=False, error=f"Command not found: {run_args[0]}")
            except OSError as error:
                return ExecutionResult(ok=False, error=f"Command failed to start: {error}")

        if completed.returncode != 0:
            stderr_tail = (completed.stderr or "").strip()[-_STDERR_TAIL_CHARS:]
            message = f"Command exited with code {completed.returncode}"
            if stderr_tail:
                message = f"{message}: {stderr_tail}"
            return ExecutionResult(ok=False, error=message)
        return ExecutionResult(
            ok=True,
            result={"status": "success", "output": (completed.stdout or "").strip()},
        )


def _build_run_args(
    *,
    command_template: str,
    task: TaskView,
    payload_file: Path,
) -> list[str]:
    try:
        rendered = command_template.format(
            task_id=shlex.quote(task.task_id),
            task_type=shlex.quote(task.task_type),
            payload_file=shlex.quote(str(payload_file)),
        )
    except (KeyError, IndexError) as error:
        raise ValueError(f"Unsupported command template placeholder: {error}") from error
    argv = shlex.split(rendered)
    if not argv:
        raise ValueError("Command template rendered an empty command.")
    return argv
