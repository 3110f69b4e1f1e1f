from __future__ import annotations

import allure
import pytest
from conftest import Backdate

from agent_coord.coordinator.errors import NotFoundError
from agent_coord.coordinator.services import Coordinator

pytestmark = [
    allure.epic("Coordination Core"),
    allure.feature("Retention Cleanup"),
]


def test_cleanup_removes_only_old_terminal_tasks(
    coordinator: Coordinator,
    backdate: Backdate,
) -> None:
    queue = coordinator.task_queue
    old_done = queue.enqueue("work", {"n": 1}, priority=9)
    old_failed = queue.enqueue("work", {"n": 2}, priority=8, max_retries=0)
    recent_done = queue.enqueue("work", {"n": 3}, priority=7)
    old_pending = queue.enqueue("work", {"n": 4}, priority=1)

    queue.claim_next("agent-a")
    queue.complete(old_done.task_id, {"ok": True})
    queue.claim_next("agent-a")
    queue.fail(old_failed.task_id, "boom")
    queue.claim_next("agent-a")
    queue.complete(recent_done.task_id, {"ok": True})

    backdate.task(old_done.task_id, days=8)
    backdate.task(old_failed.task_id, days=10)
    backdate.task(recent_done.task_id, days=6)
    backdate.task(old_pending.task_id, days=30, field="created_at")

    result = queue.cleanup(7)

    assert result.retention_days == 7
    assert result.tasks_deleted == 2
    assert result.history_deleted == 4
    remaining = {task.task_id for task in queue.list_tasks()}
    assert remaining == {recent_done.task_id, old_pending.task_id}
    with pytest.raises(NotFoundError):
        queue.get_task_details(old_done.task_id)
    assert len(queue.get_task_details(recent_done.task_id).history) == 2


def test_cleanup_never_deletes_in_progress_tasks(
    coordinator: Coordinator,
    backdate: Backdate,
) -> None:
    queue = coordinator.task_queue
    task = queue.enqueue("work", {"n": 1})
    queue.claim_next("agent-a")
    backdate.task(task.task_id, days=365, field="created_at")

    result = queue.cleanup(0)

    assert result.tasks_deleted == 0
    assert queue.get_task(task.task_id).task_id == task.task_id


def test_cleanup_purges_old_consumed_messages_only(
    coordinator: Coordinator,
    backdate: Backdate,
) -> None:
    bus = coordinator.message_bus
    bus.send("agent-x", "agent-a", None, {"n": 1})
    bus.send("agent-x", "agent-b", None, {"n": 2})
    bus.receive("agent-a")
    backdate.messages(days=30)

    result = coordinator.task_queue.cleanup(7)

    assert result.messages_deleted == 1
    assert bus.unread_count() == 1


def test_cleanup_uses_configured_retention_and_rejects_negative_days(
    coordinator: Coordinator,
    backdate: Backdate,
) -> None:
    queue = coordinator.task_queue
    task = queue.enqueue("work", {"n": 1})
    queue.claim_next("agent-a")
    queue.complete(task.task_id, {"ok": True})
    backdate.task(task.task_id, days=3)

    coordinator.store.set_config(key="task_cleanup_days", value="2")
    result = queue.cleanup()

    assert result.retention_days == 2
    assert result.tasks_deleted == 1
    with pytest.raises(ValueError):
        queue.cleanup(-1)
