from __future__ import annotations

import allure
import pytest

from agent_coord.coordinator.errors import InvalidPayloadError
from agent_coord.coordinator.services import Coordinator

pytestmark = [
    allure.epic("Coordination Core"),
    allure.feature("Message Bus"),
]


def test_broadcast_is_consumed_by_first_receiver_only(coordinator: Coordinator) -> None:
    bus = coordinator.message_bus
    payload = {"event": "deploy", "targets": ["api", "web"], "ratio": 0.5, "note": "ünïcode"}
    bus.send("agent-x", None, "ops", payload)

    received_by_a = bus.receive("agent-a")
    received_by_b = bus.receive("agent-b")

    assert len(received_by_a) == 1
    message = received_by_a[0]
    assert message.payload == payload
    assert message.is_broadcast is True
    assert message.consumed is True
    assert message.topic == "ops"
    assert received_by_b == []
    assert bus.receive("agent-a") == []


def test_direct_messages_reach_only_their_recipient_in_order(coordinator: Coordinator) -> None:
    bus = coordinator.message_bus
    bus.send("agent-x", "agent-a", None, {"n": 1})
    bus.send("agent-x", "agent-b", None, {"n": 2})
    bus.send("agent-y", "agent-a", None, {"n": 3})

    for_a = bus.receive("agent-a")

    assert [message.payload["n"] for message in for_a] == [1, 3]
    assert [message.from_agent for message in for_a] == ["agent-x", "agent-y"]
    assert bus.unread_count() == 1
    assert [message.payload["n"] for message in bus.receive("agent-b")] == [2]
    assert bus.unread_count() == 0


def test_topic_filter_leaves_other_topics_unread(coordinator: Coordinator) -> None:
    bus = coordinator.message_bus
    bus.send("agent-x", "agent-a", "status", {"n": 1})
    bus.send("agent-x", "agent-a", "alerts", {"n": 2})

    alerts = bus.receive("agent-a", topic="alerts")

    assert [message.payload["n"] for message in alerts] == [2]
    remaining = bus.receive("agent-a")
    assert [message.topic for message in remaining] == ["status"]


def test_send_rejects_malformed_payload(coordinator: Coordinator) -> None:
    with pytest.raises(InvalidPayloadError):
        coordinator.message_bus.send("agent-x", "agent-a", None, {1: "non-string key"})
    assert coordinator.message_bus.unread_count() == 0
