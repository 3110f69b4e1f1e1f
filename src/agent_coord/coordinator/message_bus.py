"""Durable point-to-point and broadcast messages between agents."""

from __future__ import annotations

import logging
from typing import Any

from agent_coord.coordinator.models import MessageView
from agent_coord.coordinator.store import CoordinatorStore

logger = logging.getLogger(__name__)

BROADCAST = "broadcast"


class MessageBus:
    """Send and receive messages; every message is delivered at most once.

    A broadcast (``to_agent=None``) is a single shared copy: whichever agent
    receives first consumes it for everyone.
    """

    def __init__(self, *, store: CoordinatorStore) -> None:
        self.store = store

    def send(
        self,
        from_agent: str,
        to_agent: str | None,
        topic: str | None,
        payload: Any,
    ) -> MessageView:
        if not from_agent:
            raise ValueError("from_agent must be a non-empty string")
        message = self.store.create_message(
            from_agent=from_agent,
            to_agent=to_agent,
            topic=topic,
            payload=payload,
        )
        logger.debug(
            "Message sent: id=%d from=%s to=%s topic=%s",
            message.message_id,
            from_agent,
            to_agent or BROADCAST,
            topic or "-",
        )
        return message

    def receive(self, agent_id: str, *, topic: str | None = None) -> list[MessageView]:
        """Consume unread messages addressed to ``agent_id`` plus unread broadcasts, oldest first."""

        messages = self.store.consume_messages(agent_id=agent_id, topic=topic)
        if messages:
            logger.debug("Messages received: agent=%s count=%d", agent_id, len(messages))
        return messages

    def unread_count(self) -> int:
        return self.store.count_unread_messages()
