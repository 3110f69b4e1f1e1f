"""Agent registry: registration, liveness and status reporting."""

from __future__ import annotations

import logging
from typing import Any

from agent_coord.coordinator.models import (
    AgentHealthView,
    AgentStatus,
    AgentView,
    HealthStatus,
)
from agent_coord.coordinator.store import HEARTBEAT_TIMEOUT_KEY, CoordinatorStore
from agent_coord.storage.common import utc_now

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_TIMEOUT_SECONDS = 30


class AgentRegistry:
    """Tracks agents and classifies them healthy/stale from their last heartbeat.

    Health is informational. A stale agent keeps its claimed task until an
    operator requeues it.
    """

    def __init__(
        self,
        *,
        store: CoordinatorStore,
        heartbeat_timeout_seconds: float | None = None,
    ) -> None:
        self.store = store
        self.heartbeat_timeout_seconds = heartbeat_timeout_seconds

    def register(
        self,
        agent_id: str,
        agent_type: str,
        capabilities: Any = None,
        *,
        metadata: Any = None,
    ) -> AgentView:
        """Upsert an agent as idle; re-registering keeps completed/failed counters."""

        if not agent_id:
            raise ValueError("agent_id must be a non-empty string")
        agent = self.store.upsert_agent(
            agent_id=agent_id,
            agent_type=agent_type,
            capabilities=capabilities,
            metadata=metadata,
        )
        logger.info("Agent registered: agent_id=%s type=%s", agent_id, agent_type)
        return agent

    def heartbeat(self, agent_id: str) -> bool:
        """Refresh liveness. Returns ``False`` when the agent is not registered."""

        touched = self.store.touch_agent(agent_id=agent_id)
        if not touched:
            logger.debug("Heartbeat ignored for unknown agent %s", agent_id)
        return touched

    def set_status(
        self,
        agent_id: str,
        status: AgentStatus,
        current_task_id: str | None = None,
    ) -> AgentView:
        agent = self.store.set_agent_status(
            agent_id=agent_id,
            status=status,
            current_task_id=current_task_id,
        )
        logger.info(
            "Agent status: agent_id=%s status=%s task=%s",
            agent_id,
            status.value,
            current_task_id or "-",
        )
        return agent

    def get(self, agent_id: str) -> AgentView:
        return self.store.get_agent(agent_id=agent_id)

    def health(self, agent_id: str) -> HealthStatus:
        """``stale`` when the last heartbeat is older than the timeout, else ``healthy``."""

        agent = self.store.get_agent(agent_id=agent_id)
        elapsed = (utc_now() - agent.last_heartbeat).total_seconds()
        if elapsed > self.timeout_seconds():
            return HealthStatus.STALE
        return HealthStatus.HEALTHY

    def list_agents(self) -> list[AgentView]:
        return self.store.list_agents()

    def list_health(self) -> list[AgentHealthView]:
        return self.store.list_agent_health(timeout_seconds=self.timeout_seconds())

    def timeout_seconds(self) -> float:
        if self.heartbeat_timeout_seconds is not None:
            return self.heartbeat_timeout_seconds
        return float(
            self.store.config_int(
                key=HEARTBEAT_TIMEOUT_KEY,
                default=DEFAULT_HEARTBEAT_TIMEOUT_SECONDS,
            ),
        )
