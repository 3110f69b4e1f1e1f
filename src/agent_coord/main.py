"""CLI entrypoint for agent-coord."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from agent_coord import __version__
from agent_coord.config import LOG_LEVELS, Settings
from agent_coord.coordinator.controllers import (
    AgentCommand,
    AgentListCommand,
    AgentRegisterCommand,
    AgentSetStatusCommand,
    CleanupCommand,
    ConfigCommand,
    CoordinatorCliController,
    InitCommand,
    MessageReceiveCommand,
    MessageSendCommand,
    StatsCommand,
    TaskAddCommand,
    TaskAssignCommand,
    TaskCompleteCommand,
    TaskFailCommand,
    TaskListCommand,
    TaskRequeueCommand,
    TaskStatusCommand,
    WorkerCommand,
)
from agent_coord.coordinator.errors import CoordinatorError
from agent_coord.coordinator.models import AgentStatus, TaskStatus

click.rich_click.USE_MARKDOWN = True
CONTROLLER = CoordinatorCliController()

T = TypeVar("T")

db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path (default: AGENT_COORD_DB_PATH or .agent_coord.db).",
)


@click.group()
@click.version_option(version=__version__, prog_name="agent-coord")
def agent_coord() -> None:
    """Multi-agent task queue and coordination CLI."""

    try:
        level = Settings.from_env().log_level
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    logging.basicConfig(
        level=level if level in LOG_LEVELS else "WARNING",
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@agent_coord.command("init")
@db_path_option
def init(db_path: Path | None) -> None:
    """Create or migrate the coordination store."""

    _emit_lines(_run(CONTROLLER.init, InitCommand(db_path=db_path)))


@agent_coord.group()
def task() -> None:
    """Task queue commands."""


@task.command("add")
@db_path_option
@click.argument("task_type")
@click.argument("payload")
@click.option("--assign-to", "assigned_to", default=None, help="Only this agent may claim it.")
@click.option("--priority", type=int, default=None, help="Higher runs first (default 5).")
@click.option(
    "--max-retries",
    type=click.IntRange(min=0),
    default=None,
    help="Failed attempts allowed before the task fails permanently.",
)
def task_add(  # noqa: PLR0913
    db_path: Path | None,
    task_type: str,
    payload: str,
    assigned_to: str | None,
    priority: int | None,
    max_retries: int | None,
) -> None:
    """Enqueue a task. PAYLOAD is a JSON document."""

    _emit_lines(
        _run(
            CONTROLLER.add_task,
            TaskAddCommand(
                db_path=db_path,
                task_type=task_type,
                payload=payload,
                assigned_to=assigned_to,
                priority=priority,
                max_retries=max_retries,
            ),
        ),
    )


@task.command("list")
@db_path_option
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus]),
    default=None,
    help="Filter by status.",
)
@click.option("--assigned-to", default=None, help="Filter by assigned agent.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max rows to print.",
)
@click.option("--active", is_flag=True, default=False, help="Show pending/in-progress in claim order.")
def task_list(
    db_path: Path | None,
    status: str | None,
    assigned_to: str | None,
    limit: int,
    active: bool,
) -> None:
    """List tasks."""

    _emit_lines(
        _run(
            CONTROLLER.list_tasks,
            TaskListCommand(
                db_path=db_path,
                status=status,
                assigned_to=assigned_to,
                limit=limit,
                active=active,
            ),
        ),
    )


@task.command("status")
@db_path_option
@click.argument("task_id")
@click.option("--history", "show_history", is_flag=True, default=False, help="Print task history.")
def task_status(db_path: Path | None, task_id: str, show_history: bool) -> None:
    """Show one task."""

    _emit_lines(
        _run(
            CONTROLLER.task_status,
            TaskStatusCommand(db_path=db_path, task_id=task_id, show_history=show_history),
        ),
    )


@task.command("complete")
@db_path_option
@click.argument("task_id")
@click.argument("result")
def task_complete(db_path: Path | None, task_id: str, result: str) -> None:
    """Mark an in-progress task complete. RESULT is a JSON document."""

    _emit_lines(
        _run(
            CONTROLLER.complete_task,
            TaskCompleteCommand(db_path=db_path, task_id=task_id, result=result),
        ),
    )


@task.command("fail")
@db_path_option
@click.argument("task_id")
@click.argument("error_message")
def task_fail(db_path: Path | None, task_id: str, error_message: str) -> None:
    """Report a failed attempt; the task is re-queued while retries remain."""

    _emit_lines(
        _run(
            CONTROLLER.fail_task,
            TaskFailCommand(db_path=db_path, task_id=task_id, error_message=error_message),
        ),
    )


@task.command("requeue")
@db_path_option
@click.argument("task_id")
def task_requeue(db_path: Path | None, task_id: str) -> None:
    """Return a stuck in-progress task to the queue."""

    _emit_lines(
        _run(CONTROLLER.requeue_task, TaskRequeueCommand(db_path=db_path, task_id=task_id)),
    )


@task.command("assign")
@db_path_option
@click.argument("task_id")
@click.argument("agent_id", required=False, default=None)
def task_assign(db_path: Path | None, task_id: str, agent_id: str | None) -> None:
    """Set (or clear, without AGENT_ID) the agent hint of a pending task."""

    _emit_lines(
        _run(
            CONTROLLER.assign_task,
            TaskAssignCommand(db_path=db_path, task_id=task_id, agent_id=agent_id),
        ),
    )


@agent_coord.group()
def msg() -> None:
    """Message bus commands."""


@msg.command("send")
@db_path_option
@click.argument("from_agent")
@click.argument("to_agent")
@click.argument("payload")
@click.option("--topic", default=None, help="Optional topic label.")
def msg_send(
    db_path: Path | None,
    from_agent: str,
    to_agent: str,
    payload: str,
    topic: str | None,
) -> None:
    """Send a message. TO_AGENT `broadcast` reaches any agent."""

    _emit_lines(
        _run(
            CONTROLLER.send_message,
            MessageSendCommand(
                db_path=db_path,
                from_agent=from_agent,
                to_agent=to_agent,
                payload=payload,
                topic=topic,
            ),
        ),
    )


@msg.command("receive")
@db_path_option
@click.argument("agent_id")
@click.option("--topic", default=None, help="Only consume messages with this topic.")
def msg_receive(db_path: Path | None, agent_id: str, topic: str | None) -> None:
    """Consume unread messages for an agent (broadcasts included)."""

    _emit_lines(
        _run(
            CONTROLLER.receive_messages,
            MessageReceiveCommand(db_path=db_path, agent_id=agent_id, topic=topic),
        ),
    )


@agent_coord.group()
def agent() -> None:
    """Agent registry commands."""


@agent.command("register")
@db_path_option
@click.argument("agent_id")
@click.option("--type", "agent_type", default="general", show_default=True, help="Agent type.")
@click.option("--capabilities", default=None, help="JSON document describing capabilities.")
def agent_register(
    db_path: Path | None,
    agent_id: str,
    agent_type: str,
    capabilities: str | None,
) -> None:
    """Register or refresh an agent."""

    _emit_lines(
        _run(
            CONTROLLER.register_agent,
            AgentRegisterCommand(
                db_path=db_path,
                agent_id=agent_id,
                agent_type=agent_type,
                capabilities=capabilities,
            ),
        ),
    )


@agent.command("heartbeat")
@db_path_option
@click.argument("agent_id")
def agent_heartbeat(db_path: Path | None, agent_id: str) -> None:
    """Record a heartbeat."""

    _emit_lines(_run(CONTROLLER.heartbeat, AgentCommand(db_path=db_path, agent_id=agent_id)))


@agent.command("health")
@db_path_option
@click.argument("agent_id")
def agent_health(db_path: Path | None, agent_id: str) -> None:
    """Print healthy or stale."""

    _emit_lines(_run(CONTROLLER.agent_health, AgentCommand(db_path=db_path, agent_id=agent_id)))


@agent.command("list")
@db_path_option
def agent_list(db_path: Path | None) -> None:
    """List agents with heartbeat health."""

    _emit_lines(_run(CONTROLLER.list_agents, AgentListCommand(db_path=db_path)))


@agent.command("set-status")
@db_path_option
@click.argument("agent_id")
@click.argument("status", type=click.Choice([status.value for status in AgentStatus]))
@click.option("--task-id", default=None, help="Current task (required for busy).")
def agent_set_status(
    db_path: Path | None,
    agent_id: str,
    status: str,
    task_id: str | None,
) -> None:
    """Set agent status."""

    _emit_lines(
        _run(
            CONTROLLER.set_agent_status,
            AgentSetStatusCommand(
                db_path=db_path,
                agent_id=agent_id,
                status=status,
                task_id=task_id,
            ),
        ),
    )


@agent_coord.command("stats")
@db_path_option
def stats(db_path: Path | None) -> None:
    """Show task, agent and message counts."""

    _emit_lines(_run(CONTROLLER.stats, StatsCommand(db_path=db_path)))


@agent_coord.command("cleanup")
@db_path_option
@click.option(
    "--days",
    type=click.IntRange(min=0),
    default=None,
    help="Retention window (default: AGENT_COORD_RETENTION_DAYS or config task_cleanup_days).",
)
def cleanup(db_path: Path | None, days: int | None) -> None:
    """Delete finished tasks and consumed messages older than the retention window."""

    _emit_lines(_run(CONTROLLER.cleanup, CleanupCommand(db_path=db_path, days=days)))


@agent_coord.group()
def config() -> None:
    """System configuration stored in the database."""


@config.command("list")
@db_path_option
def config_list(db_path: Path | None) -> None:
    """Print all config rows."""

    _emit_lines(_run(CONTROLLER.list_config, ConfigCommand(db_path=db_path)))


@config.command("get")
@db_path_option
@click.argument("key")
def config_get(db_path: Path | None, key: str) -> None:
    """Print one config value."""

    _emit_lines(_run(CONTROLLER.get_config, ConfigCommand(db_path=db_path, key=key)))


@config.command("set")
@db_path_option
@click.argument("key")
@click.argument("value")
def config_set(db_path: Path | None, key: str, value: str) -> None:
    """Set one config value."""

    _emit_lines(
        _run(CONTROLLER.set_config, ConfigCommand(db_path=db_path, key=key, value=value)),
    )


@agent_coord.command("worker")
@db_path_option
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Process at most one task, or keep polling.",
)
@click.option("--max-tasks", type=click.IntRange(min=1), default=None, help="Stop after N tasks.")
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after N consecutive empty polls (default: poll forever).",
)
@click.option("--agent-id", default=None, help="Agent id (default: AGENT_COORD_AGENT_ID).")
@click.option("--agent-type", default=None, help="Agent type (default: AGENT_COORD_AGENT_TYPE).")
@click.option(
    "--command",
    "command_template",
    default=None,
    help="Shell command template with {task_id}, {task_type}, {payload_file}.",
)
def worker(  # noqa: PLR0913
    db_path: Path | None,
    once: bool,
    max_tasks: int | None,
    max_idle_polls: int | None,
    agent_id: str | None,
    agent_type: str | None,
    command_template: str | None,
) -> None:
    """Run an agent worker loop."""

    _emit_lines(
        _run(
            CONTROLLER.run_worker,
            WorkerCommand(
                db_path=db_path,
                once=once,
                max_tasks=max_tasks,
                max_idle_polls=max_idle_polls,
                agent_id=agent_id,
                agent_type=agent_type,
                command_template=command_template,
            ),
        ),
    )


def _run(handler: Callable[[T], list[str]], command: T) -> list[str]:
    try:
        return handler(command)
    except (CoordinatorError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_coord()
