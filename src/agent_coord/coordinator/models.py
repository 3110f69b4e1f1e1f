"""Domain models for the task queue, message bus and agent registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

DEFAULT_PRIORITY = 5
DEFAULT_MAX_RETRIES = 3


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETE, TaskStatus.FAILED})


class AgentStatus(str, Enum):
    """Agent availability as reported to the registry."""

    IDLE = "idle"
    BUSY = "busy"
    OFFLINE = "offline"


class HealthStatus(str, Enum):
    """Heartbeat-derived liveness."""

    HEALTHY = "healthy"
    STALE = "stale"


class HistoryAction(str, Enum):
    """Audit actions recorded in task history."""

    ASSIGNED = "assigned"
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRIED = "retried"


@dataclass(slots=True)
class TaskCreate:
    """Input payload for enqueuing a task."""

    task_type: str
    payload: Any
    assigned_to: str | None = None
    priority: int = DEFAULT_PRIORITY
    max_retries: int | None = None


@dataclass(slots=True)
class TaskView:
    """Readable task view for callers and worker logic."""

    task_id: str
    task_type: str
    payload: Any
    status: TaskStatus
    priority: int
    assigned_to: str | None
    requested_agent: str | None
    result: Any
    error_message: str | None
    retries: int
    max_retries: int
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(slots=True)
class HistoryEntryView:
    """One append-only audit record."""

    entry_id: int
    task_id: str
    agent_id: str
    action: HistoryAction
    timestamp: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task with its history stream."""

    task: TaskView
    history: list[HistoryEntryView]


@dataclass(slots=True)
class ActiveTaskView:
    """Row of the active-tasks read view."""

    task_id: str
    task_type: str
    status: TaskStatus
    priority: int
    assigned_to: str | None
    agent_status: AgentStatus | None
    created_at: datetime
    started_at: datetime | None
    age_days: float


@dataclass(slots=True)
class FailOutcome:
    """Result of reporting a task failure."""

    retrying: bool
    task: TaskView


@dataclass(slots=True)
class MessageView:
    """Message as delivered to a receiver."""

    message_id: int
    from_agent: str
    to_agent: str | None
    topic: str | None
    payload: Any
    consumed: bool
    created_at: datetime

    @property
    def is_broadcast(self) -> bool:
        return self.to_agent is None


@dataclass(slots=True)
class AgentView:
    """Registry entry for one agent."""

    agent_id: str
    agent_type: str
    capabilities: Any
    status: AgentStatus
    current_task_id: str | None
    last_heartbeat: datetime
    started_at: datetime
    total_completed: int
    total_failed: int
    metadata: Any


@dataclass(slots=True)
class AgentHealthView:
    """Agent with derived heartbeat health."""

    agent_id: str
    agent_type: str
    status: AgentStatus
    current_task_id: str | None
    total_completed: int
    total_failed: int
    seconds_since_heartbeat: float
    health: HealthStatus


@dataclass(slots=True)
class AgentStatsRow:
    """Per-agent performance counters."""

    agent_id: str
    status: AgentStatus
    total_completed: int
    total_failed: int
    last_heartbeat: datetime


@dataclass(slots=True)
class QueueStats:
    """Aggregate counts by task status and agent."""

    tasks_by_status: dict[TaskStatus, int]
    agents_by_status: dict[AgentStatus, int]
    unread_messages: int
    agents: list[AgentStatsRow] = field(default_factory=list)

    @property
    def total_tasks(self) -> int:
        return sum(self.tasks_by_status.values())

    @property
    def total_agents(self) -> int:
        return sum(self.agents_by_status.values())

    @property
    def active_agents(self) -> int:
        return self.total_agents - self.agents_by_status.get(AgentStatus.OFFLINE, 0)


@dataclass(slots=True)
class CleanupResult:
    """Counts of rows removed by retention cleanup."""

    retention_days: int
    cutoff: datetime
    tasks_deleted: int
    history_deleted: int
    messages_deleted: int
