"""Agent worker loop: heartbeat, read messages, claim, execute, report."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from agent_coord.coordinator.errors import InvalidPayloadError, InvalidStateError, NotFoundError
from agent_coord.coordinator.executor import ExecutionResult, TaskExecutor
from agent_coord.coordinator.message_bus import MessageBus
from agent_coord.coordinator.models import AgentStatus, MessageView, TaskView
from agent_coord.coordinator.registry import AgentRegistry
from agent_coord.coordinator.task_queue import TaskQueue

logger = logging.getLogger(__name__)

MessageHandler = Callable[[MessageView], None]


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    completed: int = 0
    failed: int = 0
    retried: int = 0
    settled_elsewhere: int = 0
    idle_polls: int = 0
    messages: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.completed += other.completed
        self.failed += other.failed
        self.retried += other.retried
        self.settled_elsewhere += other.settled_elsewhere
        self.idle_polls += other.idle_polls
        self.messages += other.messages


class AgentWorker:
    """Pulls tasks for one agent and runs them through an executor.

    A stop request (SIGINT/SIGTERM) lets the current task finish, then the
    loop exits and the agent is marked offline. A task still claimed by a
    crashed worker stays in progress until an operator requeues it.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        task_queue: TaskQueue,
        message_bus: MessageBus,
        registry: AgentRegistry,
        executor: TaskExecutor,
        agent_id: str,
        agent_type: str = "general",
        capabilities: Any = None,
        poll_interval_seconds: float = 5.0,
        message_handler: MessageHandler | None = None,
    ) -> None:
        self.task_queue = task_queue
        self.message_bus = message_bus
        self.registry = registry
        self.executor = executor
        self.agent_id = agent_id
        self.agent_type = agent_type
        self.capabilities = capabilities
        self.poll_interval_seconds = poll_interval_seconds
        self.message_handler = message_handler
        self._started = False
        self._stop_requested = False
        self._current_task_id: str | None = None

    def start(self) -> None:
        """Register the agent with the registry."""

        self.registry.register(self.agent_id, self.agent_type, self.capabilities)
        self._started = True
        logger.info("Worker started: agent=%s type=%s", self.agent_id, self.agent_type)

    def stop(self) -> None:
        """Mark the agent offline; a claimed task is left as is."""

        self._stop_requested = True
        if not self._started:
            return
        self.registry.set_status(self.agent_id, AgentStatus.OFFLINE)
        self._started = False
        logger.info("Worker stopped: agent=%s", self.agent_id)

    def run_once(self) -> WorkerRunSummary:
        """Process messages and at most one task."""

        summary = WorkerRunSummary()
        if self._stop_requested:
            summary.idle_polls = 1
            return summary
        if not self._started:
            self.start()

        self.registry.heartbeat(self.agent_id)
        summary.messages = self._drain_messages()

        task = self.task_queue.claim_next(self.agent_id)
        if task is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        self._current_task_id = task.task_id
        try:
            execution = self._execute(task)
            try:
                if execution.ok and self._complete(task, execution):
                    summary.completed = 1
                    return summary
                outcome = self.task_queue.fail(
                    task.task_id,
                    execution.error or "Task execution failed",
                )
            except (InvalidStateError, NotFoundError) as error:
                # Requeued, failed or cleaned up by an operator while running.
                logger.warning(
                    "Task settled elsewhere, result dropped: agent=%s task_id=%s: %s",
                    self.agent_id,
                    task.task_id,
                    error,
                )
                summary.settled_elsewhere = 1
                return summary

            if outcome.retrying:
                summary.retried = 1
            else:
                summary.failed = 1
            return summary
        finally:
            self._current_task_id = None

    def run_loop(
        self,
        *,
        max_tasks: int | None = None,
        max_idle_polls: int | None = None,
    ) -> WorkerRunSummary:
        """Run until stopped, ``max_tasks`` processed or ``max_idle_polls`` empty polls in a row.

        Either limit set to ``None`` means unlimited.
        """

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        with self._signal_handlers():
            try:
                while True:
                    if self._stop_requested:
                        return aggregate
                    if max_tasks is not None and aggregate.processed >= max_tasks:
                        return aggregate

                    summary = self.run_once()
                    aggregate.add(summary)

                    if summary.processed == 0:
                        consecutive_idle += 1
                        if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                            return aggregate
                        self._sleep_with_stop(self.poll_interval_seconds)
                        continue

                    consecutive_idle = 0
            finally:
                self.stop()

    def _drain_messages(self) -> int:
        messages = self.message_bus.receive(self.agent_id)
        for message in messages:
            logger.info(
                "Message for %s: id=%d from=%s topic=%s",
                self.agent_id,
                message.message_id,
                message.from_agent,
                message.topic or "-",
            )
            if self.message_handler is not None:
                self.message_handler(message)
        return len(messages)

    def _execute(self, task: TaskView) -> ExecutionResult:
        try:
            return self.executor.execute(task)
        except Exception as error:  # noqa: BLE001
            logger.exception("Executor raised for task %s", task.task_id)
            return ExecutionResult(ok=False, error=f"{type(error).__name__}: {error}")

    def _complete(self, task: TaskView, execution: ExecutionResult) -> bool:
        try:
            self.task_queue.complete(task.task_id, execution.result)
        except InvalidPayloadError as error:
            execution.error = f"Executor returned an invalid result: {error}"
            return False
        return True

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self._request_stop(signal_name=name)

        installed = False
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            pass
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)

    def _request_stop(self, *, signal_name: str) -> None:
        self._stop_requested = True
        logger.warning(
            "Stop requested by %s: agent=%s current_task=%s",
            signal_name,
            self.agent_id,
            self._current_task_id or "-",
        )
