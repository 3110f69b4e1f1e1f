from __future__ import annotations

import allure
import pytest
from conftest import Backdate

from agent_coord.coordinator.errors import InvalidStateError, NotFoundError
from agent_coord.coordinator.models import AgentStatus, HealthStatus
from agent_coord.coordinator.services import Coordinator

pytestmark = [
    allure.epic("Coordination Core"),
    allure.feature("Agent Registry"),
]


def test_register_creates_idle_agent(coordinator: Coordinator) -> None:
    agent = coordinator.registry.register(
        "agent-a",
        "reviewer",
        ["python", "sql"],
        metadata={"host": "box-1"},
    )

    assert agent.agent_id == "agent-a"
    assert agent.agent_type == "reviewer"
    assert agent.capabilities == ["python", "sql"]
    assert agent.metadata == {"host": "box-1"}
    assert agent.status == AgentStatus.IDLE
    assert agent.current_task_id is None
    assert agent.total_completed == 0
    assert agent.total_failed == 0


def test_reregister_resets_status_but_keeps_counters(coordinator: Coordinator) -> None:
    registry = coordinator.registry
    queue = coordinator.task_queue
    registry.register("agent-a", "general")
    done = queue.enqueue("work", {"n": 1})
    broken = queue.enqueue("work", {"n": 2}, max_retries=0)
    queue.claim_next("agent-a")
    queue.complete(done.task_id, {"ok": True})
    queue.claim_next("agent-a")
    queue.fail(broken.task_id, "boom")
    stuck = queue.enqueue("work", {"n": 3})
    queue.claim_next("agent-a")
    assert registry.get("agent-a").current_task_id == stuck.task_id

    agent = registry.register("agent-a", "specialist")

    assert agent.agent_type == "specialist"
    assert agent.status == AgentStatus.IDLE
    assert agent.current_task_id is None
    assert agent.total_completed == 1
    assert agent.total_failed == 1


def test_heartbeat_of_unknown_agent_is_a_no_op(coordinator: Coordinator) -> None:
    assert coordinator.registry.heartbeat("ghost") is False
    assert coordinator.registry.list_agents() == []


def test_health_goes_stale_and_recovers_after_heartbeat(
    coordinator: Coordinator,
    backdate: Backdate,
) -> None:
    registry = coordinator.registry
    registry.register("agent-a", "general")
    assert registry.health("agent-a") == HealthStatus.HEALTHY

    backdate.heartbeat("agent-a", seconds=120)
    assert registry.health("agent-a") == HealthStatus.STALE
    [row] = registry.list_health()
    assert row.health == HealthStatus.STALE
    assert row.seconds_since_heartbeat >= 119

    assert registry.heartbeat("agent-a") is True
    assert registry.health("agent-a") == HealthStatus.HEALTHY
    [row] = registry.list_health()
    assert row.health == HealthStatus.HEALTHY


def test_health_does_not_touch_agent_state(coordinator: Coordinator, backdate: Backdate) -> None:
    registry = coordinator.registry
    registry.register("agent-a", "general")
    backdate.heartbeat("agent-a", seconds=600)
    before = registry.get("agent-a")

    assert registry.health("agent-a") == HealthStatus.STALE
    assert registry.get("agent-a") == before


def test_health_of_unknown_agent_raises_not_found(coordinator: Coordinator) -> None:
    with pytest.raises(NotFoundError):
        coordinator.registry.health("ghost")


def test_set_status_enforces_busy_task_pairing(coordinator: Coordinator) -> None:
    registry = coordinator.registry
    registry.register("agent-a", "general")

    with pytest.raises(InvalidStateError):
        registry.set_status("agent-a", AgentStatus.BUSY)
    with pytest.raises(InvalidStateError):
        registry.set_status("agent-a", AgentStatus.IDLE, "task-1")
    with pytest.raises(NotFoundError):
        registry.set_status("ghost", AgentStatus.OFFLINE)

    busy = registry.set_status("agent-a", AgentStatus.BUSY, "task-1")
    assert busy.status == AgentStatus.BUSY
    assert busy.current_task_id == "task-1"

    offline = registry.set_status("agent-a", AgentStatus.OFFLINE)
    assert offline.status == AgentStatus.OFFLINE
    assert offline.current_task_id is None


def test_list_agents_is_sorted_by_id(coordinator: Coordinator) -> None:
    for agent_id in ("agent-c", "agent-a", "agent-b"):
        coordinator.registry.register(agent_id, "general")

    assert [agent.agent_id for agent in coordinator.registry.list_agents()] == [
        "agent-a",
        "agent-b",
        "agent-c",
    ]
