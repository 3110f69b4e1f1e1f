"""Priority task queue with at-most-one claim and bounded retries."""

from __future__ import annotations

import logging
from typing import Any

from agent_coord.coordinator.models import (
    DEFAULT_PRIORITY,
    ActiveTaskView,
    CleanupResult,
    FailOutcome,
    QueueStats,
    TaskCreate,
    TaskDetails,
    TaskStatus,
    TaskView,
)
from agent_coord.coordinator.store import CLEANUP_DAYS_KEY, CoordinatorStore

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 7


class TaskQueue:
    """Submit, claim and settle tasks on top of ``CoordinatorStore``."""

    def __init__(self, *, store: CoordinatorStore, retention_days: int | None = None) -> None:
        self.store = store
        self.retention_days = retention_days

    def enqueue(  # noqa: PLR0913
        self,
        task_type: str,
        payload: Any,
        *,
        assigned_to: str | None = None,
        priority: int = DEFAULT_PRIORITY,
        max_retries: int | None = None,
    ) -> TaskView:
        """Create a pending task.

        ``assigned_to`` is a hint: a hinted task is claimable by that agent
        only, an unhinted task by any agent.
        """

        if not task_type or not task_type.strip():
            raise ValueError("task_type must be a non-empty string")
        if isinstance(priority, bool) or not isinstance(priority, int):
            raise ValueError(f"priority must be an integer, got {priority!r}")
        task = self.store.create_task(
            TaskCreate(
                task_type=task_type.strip(),
                payload=payload,
                assigned_to=assigned_to,
                priority=priority,
                max_retries=max_retries,
            ),
        )
        logger.info(
            "Task enqueued: task_id=%s type=%s priority=%d assigned_to=%s",
            task.task_id,
            task.task_type,
            task.priority,
            task.assigned_to or "-",
        )
        return task

    def claim_next(self, agent_id: str) -> TaskView | None:
        """Claim the highest-priority, oldest eligible task, or return ``None``."""

        task = self.store.claim_next(agent_id=agent_id)
        if task is not None:
            logger.info("Task claimed: task_id=%s agent=%s", task.task_id, agent_id)
        return task

    def complete(self, task_id: str, result: Any) -> TaskView:
        task = self.store.complete_task(task_id=task_id, result=result)
        logger.info("Task completed: task_id=%s agent=%s", task_id, task.assigned_to or "-")
        return task

    def fail(self, task_id: str, error_message: str) -> FailOutcome:
        """Report a failed attempt; the outcome says whether the task re-entered the queue."""

        outcome = self.store.fail_task(task_id=task_id, error_message=error_message)
        task = outcome.task
        if outcome.retrying:
            logger.warning(
                "Task failed, retrying: task_id=%s retries=%d/%d error=%s",
                task_id,
                task.retries,
                task.max_retries,
                error_message,
            )
        else:
            logger.error(
                "Task failed permanently: task_id=%s retries=%d/%d error=%s",
                task_id,
                task.retries,
                task.max_retries,
                error_message,
            )
        return outcome

    def get_task(self, task_id: str) -> TaskView:
        return self.store.get_task(task_id=task_id)

    def get_task_details(self, task_id: str) -> TaskDetails:
        return self.store.get_task_details(task_id=task_id)

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        assigned_to: str | None = None,
        limit: int | None = None,
    ) -> list[TaskView]:
        return self.store.list_tasks(status=status, assigned_to=assigned_to, limit=limit)

    def list_active_tasks(self) -> list[ActiveTaskView]:
        return self.store.list_active_tasks()

    def requeue(self, task_id: str) -> TaskView:
        """Return a stuck in-progress task to the queue without spending a retry."""

        task = self.store.requeue_task(task_id=task_id)
        logger.warning("Task requeued by operator: task_id=%s", task_id)
        return task

    def reassign(self, task_id: str, agent_id: str | None) -> TaskView:
        task = self.store.reassign_task(task_id=task_id, agent_id=agent_id)
        logger.info("Task reassigned: task_id=%s assigned_to=%s", task_id, agent_id or "-")
        return task

    def stats(self) -> QueueStats:
        return self.store.stats()

    def cleanup(self, retention_days: int | None = None) -> CleanupResult:
        """Purge finished tasks (and consumed messages) older than the retention window."""

        days = retention_days if retention_days is not None else self._default_retention_days()
        result = self.store.cleanup(retention_days=days)
        logger.info(
            "Cleanup done: days=%d tasks=%d history=%d messages=%d",
            days,
            result.tasks_deleted,
            result.history_deleted,
            result.messages_deleted,
        )
        return result

    def _default_retention_days(self) -> int:
        if self.retention_days is not None:
            return self.retention_days
        return self.store.config_int(key=CLEANUP_DAYS_KEY, default=DEFAULT_RETENTION_DAYS)
