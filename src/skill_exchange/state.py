"""State machines for session status, completion and cancellation."""

from __future__ import annotations

import enum

from skill_exchange.errors import StateConflictError
from skill_exchange.models import (
    CancellationAction,
    CancellationState,
    CompletionAction,
    CompletionState,
    Session,
    SessionStatus,
)

# Valid transitions: from_status -> set of allowed to_statuses
STATUS_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.ACTIVE: {SessionStatus.COMPLETED, SessionStatus.CANCELED},
    SessionStatus.COMPLETED: set(),
    SessionStatus.CANCELED: set(),
}

# (current_state, action) -> next_state
COMPLETION_TRANSITIONS: dict[tuple[CompletionState, CompletionAction], CompletionState] = {
    (CompletionState.NONE, CompletionAction.REQUEST): CompletionState.REQUESTED,
    (CompletionState.REQUESTED, CompletionAction.APPROVE): CompletionState.APPROVED,
    (CompletionState.REQUESTED, CompletionAction.REJECT): CompletionState.NONE,
}

CANCELLATION_TRANSITIONS: dict[tuple[CancellationState, CancellationAction], CancellationState] = {
    (CancellationState.NONE, CancellationAction.REQUEST): CancellationState.PENDING,
    (CancellationState.PENDING, CancellationAction.AGREE): CancellationState.RESOLVED,
    (CancellationState.PENDING, CancellationAction.DISPUTE): CancellationState.DISPUTED,
    (CancellationState.DISPUTED, CancellationAction.FINALIZE): CancellationState.RESOLVED,
}


class InvalidTransitionError(StateConflictError):
    def __init__(self, from_state: enum.Enum, action: enum.Enum, field: str, message: str | None = None) -> None:
        self.from_state = from_state
        self.action = action
        super().__init__(
            message or f"Invalid transition: {field} is {from_state.value}, cannot {action.value}",
            field=field,
        )


def next_completion_state(
    current: CompletionState, action: CompletionAction, message: str | None = None,
) -> CompletionState:
    """Look up the completion transition. Raises InvalidTransitionError if not in the table."""
    try:
        return COMPLETION_TRANSITIONS[(current, action)]
    except KeyError:
        raise InvalidTransitionError(current, action, "completion_state", message) from None


def next_cancellation_state(
    current: CancellationState, action: CancellationAction, message: str | None = None,
) -> CancellationState:
    """Look up the cancellation transition. Raises InvalidTransitionError if not in the table."""
    try:
        return CANCELLATION_TRANSITIONS[(current, action)]
    except KeyError:
        raise InvalidTransitionError(current, action, "cancellation_state", message) from None


def can_transition(session: Session, to: SessionStatus) -> bool:
    """Check if a status transition is valid without performing it."""
    return to in STATUS_TRANSITIONS.get(session.status, set())


def require_active(session: Session) -> None:
    """Raise StateConflictError unless the session is still active."""
    if session.status != SessionStatus.ACTIVE:
        raise StateConflictError(
            f"Session {session.id} is {session.status.value}",
            field="status",
        )
