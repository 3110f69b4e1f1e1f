"""Controllers for coordinator CLI commands."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from agent_coord.config import Settings
from agent_coord.coordinator.documents import parse_document
from agent_coord.coordinator.executor import CommandExecutor, EchoExecutor, TaskExecutor
from agent_coord.coordinator.message_bus import BROADCAST
from agent_coord.coordinator.models import (
    AgentStatus,
    MessageView,
    TaskStatus,
    TaskView,
)
from agent_coord.coordinator.services import open_coordinator
from agent_coord.coordinator.store import CoordinatorStore
from agent_coord.coordinator.worker import AgentWorker

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class InitCommand:
    """CLI input for schema initialization."""

    db_path: Path | None


@dataclass(slots=True)
class TaskAddCommand:
    """CLI input for task submission."""

    db_path: Path | None
    task_type: str
    payload: str
    assigned_to: str | None
    priority: int | None
    max_retries: int | None


@dataclass(slots=True)
class TaskListCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    assigned_to: str | None
    limit: int
    active: bool = False


@dataclass(slots=True)
class TaskStatusCommand:
    """CLI input for task inspection."""

    db_path: Path | None
    task_id: str
    show_history: bool = False


@dataclass(slots=True)
class TaskCompleteCommand:
    """CLI input for marking a task complete."""

    db_path: Path | None
    task_id: str
    result: str


@dataclass(slots=True)
class TaskFailCommand:
    """CLI input for reporting a failed attempt."""

    db_path: Path | None
    task_id: str
    error_message: str


@dataclass(slots=True)
class TaskRequeueCommand:
    """CLI input for operator requeue of a stuck task."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class TaskAssignCommand:
    """CLI input for changing the agent hint of a pending task."""

    db_path: Path | None
    task_id: str
    agent_id: str | None


@dataclass(slots=True)
class MessageSendCommand:
    """CLI input for sending a message."""

    db_path: Path | None
    from_agent: str
    to_agent: str
    payload: str
    topic: str | None


@dataclass(slots=True)
class MessageReceiveCommand:
    """CLI input for consuming messages."""

    db_path: Path | None
    agent_id: str
    topic: str | None


@dataclass(slots=True)
class AgentRegisterCommand:
    """CLI input for agent registration."""

    db_path: Path | None
    agent_id: str
    agent_type: str
    capabilities: str | None


@dataclass(slots=True)
class AgentCommand:
    """CLI input for single-agent operations."""

    db_path: Path | None
    agent_id: str


@dataclass(slots=True)
class AgentSetStatusCommand:
    """CLI input for manual agent status changes."""

    db_path: Path | None
    agent_id: str
    status: str
    task_id: str | None


@dataclass(slots=True)
class AgentListCommand:
    """CLI input for the agent listing."""

    db_path: Path | None


@dataclass(slots=True)
class StatsCommand:
    """CLI input for queue statistics."""

    db_path: Path | None


@dataclass(slots=True)
class CleanupCommand:
    """CLI input for retention cleanup."""

    db_path: Path | None
    days: int | None


@dataclass(slots=True)
class ConfigCommand:
    """CLI input for config table operations."""

    db_path: Path | None
    key: str | None = None
    value: str | None = None


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    once: bool
    max_tasks: int | None
    max_idle_polls: int | None
    agent_id: str | None
    agent_type: str | None
    command_template: str | None


def load_settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


class CoordinatorCliController:
    """Coordinates queue, messaging, registry and worker CLI operations."""

    def init(self, command: InitCommand) -> list[str]:
        settings = load_settings(command.db_path)
        store = CoordinatorStore(
            settings.db_path,
            busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )
        try:
            store.init_schema()
        finally:
            store.close()
        return [f"Store initialized: {settings.db_path}"]

    def add_task(self, command: TaskAddCommand) -> list[str]:
        settings = load_settings(command.db_path)
        payload = parse_document(command.payload)
        priority = (
            command.priority if command.priority is not None else settings.queue.default_priority
        )
        with open_coordinator(settings) as coordinator:
            task = coordinator.task_queue.enqueue(
                command.task_type,
                payload,
                assigned_to=command.assigned_to,
                priority=priority,
                max_retries=command.max_retries,
            )
        return [
            "Task enqueued: "
            f"task_id={task.task_id} type={task.task_type} status={task.status.value} "
            f"priority={task.priority} max_retries={task.max_retries}",
        ]

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        settings = load_settings(command.db_path)
        status_filter = _parse_status(command.status)
        with open_coordinator(settings) as coordinator:
            if command.active:
                active = coordinator.task_queue.list_active_tasks()[: command.limit]
                lines = [f"Active tasks: {len(active)}"]
                for row in active:
                    lines.append(
                        f"  {row.task_id} type={row.task_type} status={row.status.value} "
                        f"priority={row.priority} assigned_to={row.assigned_to or '-'} "
                        f"agent_status={row.agent_status.value if row.agent_status else '-'} "
                        f"age_days={row.age_days:.2f}",
                    )
                return lines
            tasks = coordinator.task_queue.list_tasks(
                status=status_filter,
                assigned_to=command.assigned_to,
                limit=command.limit,
            )

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(_task_line(task))
        return lines

    def task_status(self, command: TaskStatusCommand) -> list[str]:
        settings = load_settings(command.db_path)
        with open_coordinator(settings) as coordinator:
            details = coordinator.task_queue.get_task_details(command.task_id)

        task = details.task
        lines = [
            f"Task: {task.task_id}",
            f"Type: {task.task_type}",
            f"Status: {task.status.value}",
            f"Priority: {task.priority}",
            f"Assigned to: {task.assigned_to or '-'}",
            f"Retries: {task.retries}/{task.max_retries}",
            f"Created: {task.created_at.isoformat()}",
            f"Started: {task.started_at.isoformat() if task.started_at else '-'}",
            f"Completed: {task.completed_at.isoformat() if task.completed_at else '-'}",
            f"Error: {task.error_message or '-'}",
            f"Payload: {_dump(task.payload)}",
        ]
        if task.status == TaskStatus.COMPLETE:
            lines.append(f"Result: {_dump(task.result)}")
        if command.show_history:
            lines.append(f"History: {len(details.history)}")
            for entry in details.history:
                lines.append(
                    f"  {entry.timestamp.isoformat()} {entry.action.value} "
                    f"agent={entry.agent_id} {_dump(entry.details) if entry.details else ''}".rstrip(),
                )
        return lines

    def complete_task(self, command: TaskCompleteCommand) -> list[str]:
        settings = load_settings(command.db_path)
        result = parse_document(command.result, field_name="result")
        with open_coordinator(settings) as coordinator:
            task = coordinator.task_queue.complete(command.task_id, result)
        return [f"Task completed: task_id={task.task_id}"]

    def fail_task(self, command: TaskFailCommand) -> list[str]:
        settings = load_settings(command.db_path)
        with open_coordinator(settings) as coordinator:
            outcome = coordinator.task_queue.fail(command.task_id, command.error_message)
        task = outcome.task
        if outcome.retrying:
            return [
                f"Task re-queued: task_id={task.task_id} retries={task.retries}/{task.max_retries}",
            ]
        return [
            f"Task failed: task_id={task.task_id} retries={task.retries}/{task.max_retries}",
        ]

    def requeue_task(self, command: TaskRequeueCommand) -> list[str]:
        settings = load_settings(command.db_path)
        with open_coordinator(settings) as coordinator:
            task = coordinator.task_queue.requeue(command.task_id)
        return [f"Task requeued: task_id={task.task_id} status={task.status.value}"]

    def assign_task(self, command: TaskAssignCommand) -> list[str]:
        settings = load_settings(command.db_path)
        with open_coordinator(settings) as coordinator:
            task = coordinator.task_queue.reassign(command.task_id, command.agent_id)
        return [f"Task assigned: task_id={task.task_id} assigned_to={task.assigned_to or '-'}"]

    def send_message(self, command: MessageSendCommand) -> list[str]:
        settings = load_settings(command.db_path)
        payload = parse_document(command.payload)
        to_agent = None if command.to_agent == BROADCAST else command.to_agent
        with open_coordinator(settings) as coordinator:
            message = coordinator.message_bus.send(
                command.from_agent,
                to_agent,
                command.topic,
                payload,
            )
        return [
            f"Message sent: id={message.message_id} from={message.from_agent} "
            f"to={message.to_agent or BROADCAST} topic={message.topic or '-'}",
        ]

    def receive_messages(self, command: MessageReceiveCommand) -> list[str]:
        settings = load_settings(command.db_path)
        with open_coordinator(settings) as coordinator:
            messages = coordinator.message_bus.receive(command.agent_id, topic=command.topic)
        lines = [f"Messages: {len(messages)}"]
        for message in messages:
            lines.append(_message_line(message))
        return lines

    def register_agent(self, command: AgentRegisterCommand) -> list[str]:
        settings = load_settings(command.db_path)
        capabilities = (
            parse_document(command.capabilities, field_name="capabilities")
            if command.capabilities is not None
            else None
        )
        with open_coordinator(settings) as coordinator:
            agent = coordinator.registry.register(
                command.agent_id,
                command.agent_type,
                capabilities,
            )
        return [
            f"Agent registered: agent_id={agent.agent_id} type={agent.agent_type} "
            f"status={agent.status.value}",
        ]

    def heartbeat(self, command: AgentCommand) -> list[str]:
        settings = load_settings(command.db_path)
        with open_coordinator(settings) as coordinator:
            touched = coordinator.registry.heartbeat(command.agent_id)
        if not touched:
            return [f"Agent not registered, heartbeat ignored: {command.agent_id}"]
        return [f"Heartbeat recorded: agent_id={command.agent_id}"]

    def agent_health(self, command: AgentCommand) -> list[str]:
        settings = load_settings(command.db_path)
        with open_coordinator(settings) as coordinator:
            health = coordinator.registry.health(command.agent_id)
        return [f"Agent {command.agent_id}: {health.value}"]

    def list_agents(self, command: AgentListCommand) -> list[str]:
        settings = load_settings(command.db_path)
        with open_coordinator(settings) as coordinator:
            rows = coordinator.registry.list_health()
        lines = [f"Agents: {len(rows)}"]
        for row in rows:
            lines.append(
                f"  {row.agent_id} type={row.agent_type} status={row.status.value} "
                f"health={row.health.value} task={row.current_task_id or '-'} "
                f"completed={row.total_completed} failed={row.total_failed} "
                f"last_heartbeat={row.seconds_since_heartbeat:.0f}s",
            )
        return lines

    def set_agent_status(self, command: AgentSetStatusCommand) -> list[str]:
        settings = load_settings(command.db_path)
        status = AgentStatus(command.status.strip().lower())
        with open_coordinator(settings) as coordinator:
            agent = coordinator.registry.set_status(command.agent_id, status, command.task_id)
        return [
            f"Agent status: agent_id={agent.agent_id} status={agent.status.value} "
            f"task={agent.current_task_id or '-'}",
        ]

    def stats(self, command: StatsCommand) -> list[str]:
        settings = load_settings(command.db_path)
        with open_coordinator(settings) as coordinator:
            snapshot = coordinator.task_queue.stats()

        tasks = " ".join(
            f"{status.value}={count}" for status, count in snapshot.tasks_by_status.items()
        )
        agents = " ".join(
            f"{status.value}={count}" for status, count in snapshot.agents_by_status.items()
        )
        lines = [
            f"Tasks: total={snapshot.total_tasks} {tasks}",
            f"Agents: total={snapshot.total_agents} active={snapshot.active_agents} {agents}",
            f"Unread messages: {snapshot.unread_messages}",
        ]
        for agent in snapshot.agents:
            lines.append(
                f"  {agent.agent_id} status={agent.status.value} "
                f"completed={agent.total_completed} failed={agent.total_failed} "
                f"last_heartbeat={agent.last_heartbeat.isoformat()}",
            )
        return lines

    def cleanup(self, command: CleanupCommand) -> list[str]:
        settings = load_settings(command.db_path)
        with open_coordinator(settings) as coordinator:
            result = coordinator.task_queue.cleanup(command.days)
        return [
            f"Cleanup done: retention_days={result.retention_days} "
            f"tasks_deleted={result.tasks_deleted} history_deleted={result.history_deleted} "
            f"messages_deleted={result.messages_deleted}",
        ]

    def list_config(self, command: ConfigCommand) -> list[str]:
        settings = load_settings(command.db_path)
        with open_coordinator(settings) as coordinator:
            entries = coordinator.store.list_config()
        return [f"{key}={value if value is not None else ''}" for key, value in entries.items()]

    def get_config(self, command: ConfigCommand) -> list[str]:
        settings = load_settings(command.db_path)
        with open_coordinator(settings) as coordinator:
            value = coordinator.store.get_config(key=command.key or "")
        return [value if value is not None else ""]

    def set_config(self, command: ConfigCommand) -> list[str]:
        settings = load_settings(command.db_path)
        with open_coordinator(settings) as coordinator:
            coordinator.store.set_config(key=command.key or "", value=command.value or "")
        return [f"Config updated: {command.key}={command.value}"]

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = load_settings(command.db_path)
        agent_id = command.agent_id or settings.worker.agent_id
        with open_coordinator(settings) as coordinator:
            worker = AgentWorker(
                task_queue=coordinator.task_queue,
                message_bus=coordinator.message_bus,
                registry=coordinator.registry,
                executor=_build_executor(settings=settings, command=command),
                agent_id=agent_id,
                agent_type=command.agent_type or settings.worker.agent_type,
                poll_interval_seconds=settings.worker.poll_interval_seconds,
            )
            if command.once:
                try:
                    summary = worker.run_once()
                finally:
                    worker.stop()
            else:
                summary = worker.run_loop(
                    max_tasks=command.max_tasks,
                    max_idle_polls=command.max_idle_polls,
                )

        return [
            "Worker summary: "
            f"agent={agent_id} processed={summary.processed} completed={summary.completed} "
            f"failed={summary.failed} retried={summary.retried} "
            f"settled_elsewhere={summary.settled_elsewhere} "
            f"idle_polls={summary.idle_polls} messages={summary.messages}",
        ]


def _build_executor(*, settings: Settings, command: WorkerCommand) -> TaskExecutor:
    template = command.command_template or settings.worker.command_template
    if template:
        return CommandExecutor(
            command_template=template,
            timeout_seconds=settings.worker.command_timeout_seconds,
        )
    logger.info("No command template configured, using echo executor")
    return EchoExecutor()


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


def _dump(value: object) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def _task_line(task: TaskView) -> str:
    return (
        f"  {task.task_id} type={task.task_type} status={task.status.value} "
        f"priority={task.priority} assigned_to={task.assigned_to or '-'} "
        f"retries={task.retries}/{task.max_retries} created_at={task.created_at.isoformat()}"
    )


def _message_line(message: MessageView) -> str:
    return (
        f"  #{message.message_id} from={message.from_agent} "
        f"to={message.to_agent or BROADCAST} topic={message.topic or '-'} "
        f"payload={_dump(message.payload)}"
    )
