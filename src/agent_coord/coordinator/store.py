"""Persistent store for tasks, messages, agents, history and config.

Every public method runs in its own transaction. The engine opens transactions
with ``BEGIN IMMEDIATE``, so a method's reads and writes form one atomic unit
with respect to every other caller, in this process or another.
"""

from __future__ import annotations

import json
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import DateTime, Float, func, or_, text
from sqlalchemy import update as sa_update
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, col, delete, select

from agent_coord.coordinator.documents import decode_document, encode_document
from agent_coord.coordinator.errors import (
    InvalidStateError,
    NotFoundError,
    StoreUnavailableError,
)
from agent_coord.coordinator.models import (
    DEFAULT_MAX_RETRIES,
    TERMINAL_STATUSES,
    ActiveTaskView,
    AgentHealthView,
    AgentStatsRow,
    AgentStatus,
    AgentView,
    CleanupResult,
    FailOutcome,
    HealthStatus,
    HistoryAction,
    HistoryEntryView,
    MessageView,
    QueueStats,
    TaskCreate,
    TaskDetails,
    TaskStatus,
    TaskView,
)
from agent_coord.storage.alembic_runner import upgrade_head
from agent_coord.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from agent_coord.storage.sqlmodel_models import (
    Agent,
    ConfigEntry,
    Message,
    Task,
    TaskHistory,
)

MAX_TASK_RETRIES_KEY = "max_task_retries"
HEARTBEAT_TIMEOUT_KEY = "agent_heartbeat_timeout_seconds"
CLEANUP_DAYS_KEY = "task_cleanup_days"
INTEGER_CONFIG_KEYS = frozenset({MAX_TASK_RETRIES_KEY, HEARTBEAT_TIMEOUT_KEY, CLEANUP_DAYS_KEY})
UNASSIGNED_AGENT = "unassigned"

_ACTIVE_TASKS_SQL = text(
    """
    SELECT task_id, task_type, status, priority, assigned_to, agent_status,
           created_at, started_at, age_days
    FROM v_active_tasks
    """,
).columns(created_at=DateTime, started_at=DateTime, age_days=Float)

_AGENT_HEALTH_SQL = text(
    """
    SELECT agent_id, agent_type, status, current_task_id, total_tasks_completed,
           total_tasks_failed, seconds_since_heartbeat
    FROM v_agent_health
    ORDER BY agent_id
    """,
).columns(seconds_since_heartbeat=Float)

_UNREAD_COUNT_SQL = text("SELECT COUNT(*) FROM v_unread_messages")


class CoordinatorStore:
    """Transactional persistence facade backed by SQLModel + SQLite."""

    def __init__(
        self,
        db_path: Path,
        *,
        busy_timeout_ms: int = 5000,
        default_max_retries: int | None = None,
    ) -> None:
        self.db_path = db_path
        self.default_max_retries = default_max_retries
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        try:
            upgrade_head(self.db_path)
        except OperationalError as error:
            raise StoreUnavailableError(f"Cannot migrate store at {self.db_path}: {error}") from error

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except OperationalError as error:
            raise StoreUnavailableError(f"Store unavailable: {error.orig}") from error

    # Tasks

    def create_task(self, payload: TaskCreate) -> TaskView:
        """Persist a new pending task."""

        payload_json = encode_document(payload.payload)
        now = utc_now()
        with self._session() as session:
            max_retries = payload.max_retries
            if max_retries is None:
                max_retries = self._resolve_max_retries(session)
            if max_retries < 0:
                raise ValueError(f"max_retries must be >= 0, got {max_retries}")
            row = Task(
                task_id=_new_task_id(),
                task_type=payload.task_type,
                payload_json=payload_json,
                status=TaskStatus.PENDING.value,
                priority=payload.priority,
                assigned_to=payload.assigned_to,
                requested_agent=payload.assigned_to,
                retries=0,
                max_retries=max_retries,
                created_at=to_db_datetime(now),
            )
            session.add(row)
            session.flush()
            view = _to_task_view(row)
            session.commit()
            return view

    def claim_next(self, *, agent_id: str) -> TaskView | None:
        """Atomically claim the most urgent task eligible for ``agent_id``."""

        while True:
            now = utc_now()
            with self._session() as session:
                eligible = (
                    col(Task.status) == TaskStatus.PENDING.value,
                    or_(col(Task.assigned_to).is_(None), col(Task.assigned_to) == agent_id),
                )
                candidate = session.exec(
                    select(Task)
                    .where(*eligible)
                    .order_by(
                        col(Task.priority).desc(),
                        col(Task.created_at).asc(),
                        col(Task.task_id).asc(),
                    )
                    .limit(1),
                ).one_or_none()
                if candidate is None:
                    return None

                result = session.exec(
                    sa_update(Task)
                    .where(col(Task.task_id) == candidate.task_id, *eligible)
                    .values(
                        status=TaskStatus.IN_PROGRESS.value,
                        assigned_to=agent_id,
                        started_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    # Lost the compare-and-swap; pick the next candidate.
                    session.rollback()
                    continue

                session.exec(
                    sa_update(Agent)
                    .where(col(Agent.agent_id) == agent_id)
                    .values(
                        status=AgentStatus.BUSY.value,
                        current_task_id=candidate.task_id,
                    ),
                )
                self._add_history(
                    session=session,
                    task_id=candidate.task_id,
                    agent_id=agent_id,
                    action=HistoryAction.STARTED,
                    details={"priority": candidate.priority, "retries": candidate.retries},
                )
                claimed = self._get_task_row(session=session, task_id=candidate.task_id)
                view = _to_task_view(claimed)
                session.commit()
                return view

    def complete_task(self, *, task_id: str, result: Any) -> TaskView:
        """Mark an in-progress task complete and credit its agent."""

        result_json = encode_document(result, field_name="result", allow_null=True)
        now = utc_now()
        with self._session() as session:
            row = self._get_task_row(session=session, task_id=task_id)
            _require_in_progress(row, operation="complete")
            agent_id = row.assigned_to or UNASSIGNED_AGENT

            updated = session.exec(
                sa_update(Task)
                .where(
                    col(Task.task_id) == task_id,
                    col(Task.status) == TaskStatus.IN_PROGRESS.value,
                )
                .values(
                    status=TaskStatus.COMPLETE.value,
                    result_json=result_json,
                    completed_at=to_db_datetime(now),
                ),
            )
            if updated.rowcount != 1:
                session.rollback()
                raise InvalidStateError(
                    f"Task state changed concurrently while completing (task_id={task_id}).",
                )
            self._release_agent(
                session=session,
                agent_id=agent_id,
                task_id=task_id,
                counter=col(Agent.total_tasks_completed),
            )
            self._add_history(
                session=session,
                task_id=task_id,
                agent_id=agent_id,
                action=HistoryAction.COMPLETED,
                details={"result": result},
            )
            view = _to_task_view(self._get_task_row(session=session, task_id=task_id))
            session.commit()
            return view

    def fail_task(self, *, task_id: str, error_message: str) -> FailOutcome:
        """Record a failed attempt and re-queue the task while retries remain.

        A re-queued task keeps its priority and creation time, and its
        ``assigned_to`` label reverts to the submitter's original hint.
        """

        now = utc_now()
        # Free text from executors; lone surrogates cannot be stored as UTF-8.
        error_message = str(error_message).encode("utf-8", "replace").decode("utf-8")
        with self._session() as session:
            row = self._get_task_row(session=session, task_id=task_id)
            _require_in_progress(row, operation="fail")
            agent_id = row.assigned_to or UNASSIGNED_AGENT
            attempts = row.retries + 1
            retrying = attempts < row.max_retries
            retries = min(attempts, row.max_retries)

            if retrying:
                values: dict[str, Any] = {
                    "status": TaskStatus.PENDING.value,
                    "retries": retries,
                    "assigned_to": row.requested_agent,
                }
            else:
                values = {
                    "status": TaskStatus.FAILED.value,
                    "retries": retries,
                    "error_message": error_message,
                    "completed_at": to_db_datetime(now),
                }
            updated = session.exec(
                sa_update(Task)
                .where(
                    col(Task.task_id) == task_id,
                    col(Task.status) == TaskStatus.IN_PROGRESS.value,
                )
                .values(**values),
            )
            if updated.rowcount != 1:
                session.rollback()
                raise InvalidStateError(
                    f"Task state changed concurrently while failing (task_id={task_id}).",
                )
            self._release_agent(
                session=session,
                agent_id=agent_id,
                task_id=task_id,
                counter=col(Agent.total_tasks_failed),
            )
            self._add_history(
                session=session,
                task_id=task_id,
                agent_id=agent_id,
                action=HistoryAction.FAILED,
                details={
                    "error": error_message,
                    "retries": retries,
                    "max_retries": row.max_retries,
                },
            )
            if retrying:
                self._add_history(
                    session=session,
                    task_id=task_id,
                    agent_id=agent_id,
                    action=HistoryAction.RETRIED,
                    details={"retries": retries, "assigned_to": row.requested_agent},
                )
            view = _to_task_view(self._get_task_row(session=session, task_id=task_id))
            session.commit()
            return FailOutcome(retrying=retrying, task=view)

    def requeue_task(self, *, task_id: str) -> TaskView:
        """Operator reset of a stuck in-progress task back to pending.

        Does not consume a retry. The owning agent, if it still points at the
        task, is returned to idle.
        """

        with self._session() as session:
            row = self._get_task_row(session=session, task_id=task_id)
            _require_in_progress(row, operation="requeue")
            previous_agent = row.assigned_to or UNASSIGNED_AGENT

            updated = session.exec(
                sa_update(Task)
                .where(
                    col(Task.task_id) == task_id,
                    col(Task.status) == TaskStatus.IN_PROGRESS.value,
                )
                .values(status=TaskStatus.PENDING.value, assigned_to=row.requested_agent),
            )
            if updated.rowcount != 1:
                session.rollback()
                raise InvalidStateError(
                    f"Task state changed concurrently while requeueing (task_id={task_id}).",
                )
            session.exec(
                sa_update(Agent)
                .where(
                    col(Agent.agent_id) == previous_agent,
                    col(Agent.current_task_id) == task_id,
                )
                .values(status=AgentStatus.IDLE.value, current_task_id=None),
            )
            self._add_history(
                session=session,
                task_id=task_id,
                agent_id=previous_agent,
                action=HistoryAction.RETRIED,
                details={"reason": "operator_requeue", "retries": row.retries},
            )
            view = _to_task_view(self._get_task_row(session=session, task_id=task_id))
            session.commit()
            return view

    def reassign_task(self, *, task_id: str, agent_id: str | None) -> TaskView:
        """Change the advisory agent hint of a pending task."""

        with self._session() as session:
            row = self._get_task_row(session=session, task_id=task_id)
            if row.status != TaskStatus.PENDING.value:
                raise InvalidStateError(
                    f"Only pending tasks can be reassigned, got status={row.status} "
                    f"(task_id={task_id}).",
                )
            updated = session.exec(
                sa_update(Task)
                .where(
                    col(Task.task_id) == task_id,
                    col(Task.status) == TaskStatus.PENDING.value,
                )
                .values(assigned_to=agent_id, requested_agent=agent_id),
            )
            if updated.rowcount != 1:
                session.rollback()
                raise InvalidStateError(
                    f"Task state changed concurrently while reassigning (task_id={task_id}).",
                )
            self._add_history(
                session=session,
                task_id=task_id,
                agent_id=agent_id or UNASSIGNED_AGENT,
                action=HistoryAction.ASSIGNED,
                details={"previous": row.assigned_to},
            )
            view = _to_task_view(self._get_task_row(session=session, task_id=task_id))
            session.commit()
            return view

    def get_task(self, *, task_id: str) -> TaskView:
        """Return one task or raise ``NotFoundError``."""

        with self._session() as session:
            return _to_task_view(self._get_task_row(session=session, task_id=task_id))

    def get_task_details(self, *, task_id: str) -> TaskDetails:
        """Return a task with its history, oldest entry first."""

        with self._session() as session:
            task = _to_task_view(self._get_task_row(session=session, task_id=task_id))
            rows = session.exec(
                select(TaskHistory)
                .where(TaskHistory.task_id == task_id)
                .order_by(col(TaskHistory.timestamp).asc(), col(TaskHistory.id).asc()),
            ).all()
            history = [_to_history_view(row) for row in rows]
        return TaskDetails(task=task, history=history)

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        assigned_to: str | None = None,
        limit: int | None = None,
    ) -> list[TaskView]:
        """List tasks newest-first, or in claim order when filtered to pending."""

        statement = select(Task)
        if status is not None:
            statement = statement.where(Task.status == status.value)
        if assigned_to is not None:
            statement = statement.where(Task.assigned_to == assigned_to)
        if status == TaskStatus.PENDING:
            statement = statement.order_by(
                col(Task.priority).desc(),
                col(Task.created_at).asc(),
                col(Task.task_id).asc(),
            )
        else:
            statement = statement.order_by(
                col(Task.created_at).desc(),
                col(Task.task_id).desc(),
            )
        if limit is not None:
            statement = statement.limit(limit)
        with self._session() as session:
            rows = session.exec(statement).all()
            return [_to_task_view(row) for row in rows]

    def list_active_tasks(self) -> list[ActiveTaskView]:
        """Pending and in-progress tasks in claim order, with agent status."""

        with self._session() as session:
            rows = session.connection().execute(_ACTIVE_TASKS_SQL).mappings().all()
        return [
            ActiveTaskView(
                task_id=row["task_id"],
                task_type=row["task_type"],
                status=TaskStatus(row["status"]),
                priority=row["priority"],
                assigned_to=row["assigned_to"],
                agent_status=AgentStatus(row["agent_status"]) if row["agent_status"] else None,
                created_at=to_utc_aware_datetime(row["created_at"]),
                started_at=(
                    to_utc_aware_datetime(row["started_at"])
                    if row["started_at"] is not None
                    else None
                ),
                age_days=row["age_days"] or 0.0,
            )
            for row in rows
        ]

    def stats(self) -> QueueStats:
        """Aggregate counts by task status and agent."""

        with self._session() as session:
            task_counts = session.exec(
                select(Task.status, func.count()).group_by(Task.status),
            ).all()
            agent_counts = session.exec(
                select(Agent.status, func.count()).group_by(Agent.status),
            ).all()
            agents = session.exec(
                select(Agent).order_by(
                    col(Agent.total_tasks_completed).desc(),
                    col(Agent.agent_id).asc(),
                ),
            ).all()
            unread = session.connection().execute(_UNREAD_COUNT_SQL).scalar_one()

            tasks_by_status = {status: 0 for status in TaskStatus}
            for status, count in task_counts:
                tasks_by_status[TaskStatus(status)] = count
            agents_by_status = {status: 0 for status in AgentStatus}
            for status, count in agent_counts:
                agents_by_status[AgentStatus(status)] = count
            return QueueStats(
                tasks_by_status=tasks_by_status,
                agents_by_status=agents_by_status,
                unread_messages=unread,
                agents=[
                    AgentStatsRow(
                        agent_id=agent.agent_id,
                        status=AgentStatus(agent.status),
                        total_completed=agent.total_tasks_completed,
                        total_failed=agent.total_tasks_failed,
                        last_heartbeat=to_utc_aware_datetime(agent.last_heartbeat),
                    )
                    for agent in agents
                ],
            )

    def cleanup(self, *, retention_days: int) -> CleanupResult:
        """Delete terminal tasks and consumed messages older than the retention window.

        Pending and in-progress tasks are never deleted, whatever their age.
        """

        if retention_days < 0:
            raise ValueError(f"retention_days must be >= 0, got {retention_days}")
        cutoff = utc_now() - timedelta(days=retention_days)
        db_cutoff = to_db_datetime(cutoff)
        terminal = [status.value for status in TERMINAL_STATUSES]
        expired_task_ids = (
            select(Task.task_id)
            .where(
                col(Task.status).in_(terminal),
                col(Task.completed_at).is_not(None),
                col(Task.completed_at) < db_cutoff,
            )
            .scalar_subquery()
        )
        with self._session() as session:
            history_result = session.exec(
                delete(TaskHistory).where(col(TaskHistory.task_id).in_(expired_task_ids)).execution_options(
                    synchronize_session=False,
                ),
            )
            task_result = session.exec(
                delete(Task).where(
                    col(Task.status).in_(terminal),
                    col(Task.completed_at).is_not(None),
                    col(Task.completed_at) < db_cutoff,
                ).execution_options(synchronize_session=False),
            )
            message_result = session.exec(
                delete(Message).where(
                    col(Message.consumed).is_(True),
                    col(Message.created_at) < db_cutoff,
                ).execution_options(synchronize_session=False),
            )
            session.commit()
        return CleanupResult(
            retention_days=retention_days,
            cutoff=cutoff,
            tasks_deleted=task_result.rowcount,
            history_deleted=history_result.rowcount,
            messages_deleted=message_result.rowcount,
        )

    # Messages

    def create_message(
        self,
        *,
        from_agent: str,
        to_agent: str | None,
        topic: str | None,
        payload: Any,
    ) -> MessageView:
        """Persist a point-to-point (``to_agent``) or broadcast (``None``) message."""

        payload_json = encode_document(payload)
        with self._session() as session:
            row = Message(
                from_agent=from_agent,
                to_agent=to_agent,
                topic=topic,
                payload_json=payload_json,
                consumed=False,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.flush()
            view = _to_message_view(row)
            session.commit()
            return view

    def consume_messages(self, *, agent_id: str, topic: str | None = None) -> list[MessageView]:
        """Select and mark consumed every unread message visible to ``agent_id``.

        Broadcasts are single-copy: the first receiver consumes them for all.
        """

        with self._session() as session:
            statement = select(Message).where(
                col(Message.consumed).is_(False),
                or_(col(Message.to_agent) == agent_id, col(Message.to_agent).is_(None)),
            )
            if topic is not None:
                statement = statement.where(Message.topic == topic)
            rows = session.exec(
                statement.order_by(col(Message.created_at).asc(), col(Message.id).asc()),
            ).all()
            if not rows:
                return []
            message_ids = [row.id for row in rows]
            session.exec(
                sa_update(Message)
                .where(col(Message.id).in_(message_ids), col(Message.consumed).is_(False))
                .values(consumed=True)
                .execution_options(synchronize_session=False),
            )
            views = [_to_message_view(row, consumed=True) for row in rows]
            session.commit()
            return views

    def count_unread_messages(self) -> int:
        with self._session() as session:
            return session.connection().execute(_UNREAD_COUNT_SQL).scalar_one()

    # Agents

    def upsert_agent(
        self,
        *,
        agent_id: str,
        agent_type: str,
        capabilities: Any = None,
        metadata: Any = None,
    ) -> AgentView:
        """Register or refresh an agent, keeping its lifetime counters."""

        capabilities_json = encode_document(
            capabilities,
            field_name="capabilities",
            allow_null=True,
        )
        metadata_json = (
            encode_document(metadata, field_name="metadata") if metadata is not None else None
        )
        now = to_db_datetime(utc_now())
        with self._session() as session:
            row = session.get(Agent, agent_id)
            if row is None:
                row = Agent(
                    agent_id=agent_id,
                    agent_type=agent_type,
                    total_tasks_completed=0,
                    total_tasks_failed=0,
                    last_heartbeat=now,
                    started_at=now,
                )
            row.agent_type = agent_type
            row.capabilities_json = capabilities_json
            row.status = AgentStatus.IDLE.value
            row.current_task_id = None
            row.last_heartbeat = now
            row.started_at = now
            if metadata_json is not None:
                row.metadata_json = metadata_json
            session.add(row)
            session.flush()
            view = _to_agent_view(row)
            session.commit()
            return view

    def touch_agent(self, *, agent_id: str) -> bool:
        """Update ``last_heartbeat`` only. Unknown agents are ignored."""

        with self._session() as session:
            result = session.exec(
                sa_update(Agent)
                .where(col(Agent.agent_id) == agent_id)
                .values(last_heartbeat=to_db_datetime(utc_now())),
            )
            session.commit()
            return result.rowcount == 1

    def get_agent(self, *, agent_id: str) -> AgentView:
        with self._session() as session:
            row = session.get(Agent, agent_id)
            if row is None:
                raise NotFoundError("agent", agent_id)
            return _to_agent_view(row)

    def set_agent_status(
        self,
        *,
        agent_id: str,
        status: AgentStatus,
        current_task_id: str | None = None,
    ) -> AgentView:
        """Set agent status; ``busy`` requires a current task, other states forbid one."""

        if status == AgentStatus.BUSY and current_task_id is None:
            raise InvalidStateError(f"Agent {agent_id} cannot be busy without a current task.")
        if status != AgentStatus.BUSY and current_task_id is not None:
            raise InvalidStateError(
                f"Agent {agent_id} can only hold a current task while busy, got status={status.value}.",
            )
        with self._session() as session:
            row = session.get(Agent, agent_id)
            if row is None:
                raise NotFoundError("agent", agent_id)
            row.status = status.value
            row.current_task_id = current_task_id
            session.add(row)
            session.flush()
            view = _to_agent_view(row)
            session.commit()
            return view

    def list_agents(self) -> list[AgentView]:
        with self._session() as session:
            rows = session.exec(select(Agent).order_by(col(Agent.agent_id).asc())).all()
            return [_to_agent_view(row) for row in rows]

    def list_agent_health(self, *, timeout_seconds: float) -> list[AgentHealthView]:
        """Agents with heartbeat age from the health view, classified by ``timeout_seconds``."""

        with self._session() as session:
            rows = session.connection().execute(_AGENT_HEALTH_SQL).mappings().all()
        views: list[AgentHealthView] = []
        for row in rows:
            elapsed = max(0.0, row["seconds_since_heartbeat"] or 0.0)
            views.append(
                AgentHealthView(
                    agent_id=row["agent_id"],
                    agent_type=row["agent_type"],
                    status=AgentStatus(row["status"]),
                    current_task_id=row["current_task_id"],
                    total_completed=row["total_tasks_completed"],
                    total_failed=row["total_tasks_failed"],
                    seconds_since_heartbeat=elapsed,
                    health=HealthStatus.STALE if elapsed > timeout_seconds else HealthStatus.HEALTHY,
                ),
            )
        return views

    # Config

    def get_config(self, *, key: str) -> str | None:
        with self._session() as session:
            row = session.get(ConfigEntry, key)
            if row is None:
                raise NotFoundError("config key", key)
            return row.value

    def set_config(self, *, key: str, value: str) -> None:
        """Upsert one config row; integer keys must hold non-negative integers."""

        if key in INTEGER_CONFIG_KEYS:
            _parse_non_negative_int(key, value)
        with self._session() as session:
            row = session.get(ConfigEntry, key)
            if row is None:
                row = ConfigEntry(key=key, value=value, updated_at=to_db_datetime(utc_now()))
            else:
                row.value = value
                row.updated_at = to_db_datetime(utc_now())
            session.add(row)
            session.commit()

    def list_config(self) -> dict[str, str | None]:
        with self._session() as session:
            rows = session.exec(select(ConfigEntry).order_by(col(ConfigEntry.key).asc())).all()
            return {row.key: row.value for row in rows}

    def config_int(self, *, key: str, default: int) -> int:
        """Read an integer config row, falling back to ``default`` when absent."""

        with self._session() as session:
            return self._config_int(session=session, key=key, default=default)

    def _resolve_max_retries(self, session: Session) -> int:
        if self.default_max_retries is not None:
            return self.default_max_retries
        return self._config_int(session=session, key=MAX_TASK_RETRIES_KEY, default=DEFAULT_MAX_RETRIES)

    @staticmethod
    def _config_int(*, session: Session, key: str, default: int) -> int:
        row = session.get(ConfigEntry, key)
        if row is None or row.value is None:
            return default
        return _parse_non_negative_int(key, row.value)

    @staticmethod
    def _get_task_row(*, session: Session, task_id: str) -> Task:
        row = session.exec(
            select(Task)
            .where(Task.task_id == task_id)
            .execution_options(populate_existing=True),
        ).one_or_none()
        if row is None:
            raise NotFoundError("task", task_id)
        return row

    @staticmethod
    def _release_agent(
        *,
        session: Session,
        agent_id: str,
        task_id: str,
        counter: Any,
    ) -> None:
        session.exec(
            sa_update(Agent)
            .where(col(Agent.agent_id) == agent_id)
            .values({counter: counter + 1}),
        )
        session.exec(
            sa_update(Agent)
            .where(col(Agent.agent_id) == agent_id, col(Agent.current_task_id) == task_id)
            .values(status=AgentStatus.IDLE.value, current_task_id=None),
        )

    @staticmethod
    def _add_history(
        *,
        session: Session,
        task_id: str,
        agent_id: str,
        action: HistoryAction,
        details: dict[str, object],
    ) -> None:
        session.add(
            TaskHistory(
                task_id=task_id,
                agent_id=agent_id,
                action=action.value,
                timestamp=to_db_datetime(utc_now()),
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
            ),
        )


def _new_task_id() -> str:
    return f"task-{time.time_ns():020d}-{uuid4().hex[:8]}"


def _require_in_progress(row: Task, *, operation: str) -> None:
    if row.status != TaskStatus.IN_PROGRESS.value:
        raise InvalidStateError(
            f"Cannot {operation} task {row.task_id}: status is {row.status}, "
            f"expected {TaskStatus.IN_PROGRESS.value}.",
        )


def _parse_non_negative_int(key: str, value: str) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError) as error:
        raise ValueError(f"Config {key} must be an integer, got {value!r}") from error
    if parsed < 0:
        raise ValueError(f"Config {key} must be >= 0, got {parsed}")
    return parsed


def _optional_aware(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None


def _to_task_view(row: Task) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        task_type=row.task_type,
        payload=decode_document(row.payload_json),
        status=TaskStatus(row.status),
        priority=row.priority,
        assigned_to=row.assigned_to,
        requested_agent=row.requested_agent,
        result=decode_document(row.result_json),
        error_message=row.error_message,
        retries=row.retries,
        max_retries=row.max_retries,
        created_at=to_utc_aware_datetime(row.created_at),
        started_at=_optional_aware(row.started_at),
        completed_at=_optional_aware(row.completed_at),
    )


def _to_history_view(row: TaskHistory) -> HistoryEntryView:
    details: dict[str, Any] = {}
    if row.details_json:
        parsed = json.loads(row.details_json)
        if isinstance(parsed, dict):
            details = parsed
    return HistoryEntryView(
        entry_id=row.id or 0,
        task_id=row.task_id,
        agent_id=row.agent_id,
        action=HistoryAction(row.action),
        timestamp=to_utc_aware_datetime(row.timestamp),
        details=details,
    )


def _to_message_view(row: Message, *, consumed: bool | None = None) -> MessageView:
    return MessageView(
        message_id=row.id or 0,
        from_agent=row.from_agent,
        to_agent=row.to_agent,
        topic=row.topic,
        payload=decode_document(row.payload_json),
        consumed=row.consumed if consumed is None else consumed,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_agent_view(row: Agent) -> AgentView:
    return AgentView(
        agent_id=row.agent_id,
        agent_type=row.agent_type,
        capabilities=decode_document(row.capabilities_json),
        status=AgentStatus(row.status),
        current_task_id=row.current_task_id,
        last_heartbeat=to_utc_aware_datetime(row.last_heartbeat),
        started_at=to_utc_aware_datetime(row.started_at),
        total_completed=row.total_tasks_completed,
        total_failed=row.total_tasks_failed,
        metadata=decode_document(row.metadata_json),
    )
