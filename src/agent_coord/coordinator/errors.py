"""Typed errors raised by coordinator operations.

Queue operations that break their contract raise these errors; a task whose
own execution fails is reported as data (see ``FailOutcome``), never as an
exception.
"""

from __future__ import annotations


class CoordinatorError(RuntimeError):
    """Base class for contract errors returned to the immediate caller."""


class InvalidPayloadError(CoordinatorError):
    """Payload is not a well-formed structured document."""


class NotFoundError(CoordinatorError):
    """Operation referenced an unknown task, agent or config key."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind.capitalize()} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class InvalidStateError(CoordinatorError):
    """Operation attempted against an entity not in the required state."""


class StoreUnavailableError(CoordinatorError):
    """Backing store could not be reached or stayed locked past the busy timeout."""
