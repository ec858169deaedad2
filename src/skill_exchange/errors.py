"""Error taxonomy for workflow operations.

Each error carries the HTTP status the API layer maps it to.
"""

from __future__ import annotations


class WorkflowError(Exception):
    status_code = 400


class ValidationError(WorkflowError):
    """Malformed or missing input. The caller can resubmit corrected input."""

    status_code = 400


class AuthorizationError(WorkflowError):
    """Actor is not a participant, or is the wrong participant for the action."""

    status_code = 403


class NotFoundError(WorkflowError):
    status_code = 404


class StateConflictError(WorkflowError):
    """Action is not legal for the current state."""

    status_code = 409

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class ConcurrentModificationError(StateConflictError):
    """A conditional update lost to a concurrent writer. Re-fetch and retry."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(
            f"Session {session_id} was modified concurrently; re-fetch and retry",
            field="version",
        )
