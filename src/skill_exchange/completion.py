"""Completion workflow: request, approve, reject, with a re-request cool-down."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from skill_exchange.errors import (
    AuthorizationError,
    ConcurrentModificationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from skill_exchange.models import (
    CancellationState,
    CompletionAction,
    CompletionRequest,
    CompletionRequestStatus,
    CompletionState,
    Session,
    SessionStatus,
)
from skill_exchange.state import next_completion_state, require_active
from skill_exchange.store import SessionStore

logger = logging.getLogger(__name__)


class CompletionCoordinator:
    """Applies completion transitions through conditional session updates."""

    def __init__(self, store: SessionStore, cooldown: timedelta = timedelta(hours=24)) -> None:
        self.store = store
        self.cooldown = cooldown

    def list_requests(self, session_id: str) -> list[CompletionRequest]:
        return self.store.list_completion_requests(session_id)

    def cooldown_until(self, session: Session, actor_id: str) -> datetime | None:
        """Return when the actor's latest rejection stops blocking a re-request, if any."""
        rejections = [
            r.rejected_at for r in self.store.list_completion_requests(session.id)
            if r.requested_by == actor_id
            and r.status == CompletionRequestStatus.REJECTED
            and r.rejected_at is not None
        ]
        # The session row records the last rejection atomically with the state change.
        if (
            session.completion_rejected_at is not None
            and session.completion_rejected_by is not None
            and session.completion_rejected_by != actor_id
        ):
            rejections.append(session.completion_rejected_at)
        if not rejections:
            return None
        return max(rejections) + self.cooldown

    def request(self, session: Session, actor_id: str, now: datetime) -> Session:
        require_active(session)
        if session.completion_state == CompletionState.REQUESTED:
            if session.completion_requested_by == actor_id:
                raise StateConflictError("Completion already requested", field="completion_requested_by")
            raise StateConflictError(
                "Completion already requested by the other participant; respond to it instead",
                field="completion_requested_by",
            )
        if session.cancellation_state in (CancellationState.PENDING, CancellationState.DISPUTED):
            raise StateConflictError(
                "A cancellation request is open for this session",
                field="cancel_request",
            )

        until = self.cooldown_until(session, actor_id)
        if until is not None and now < until:
            raise StateConflictError(
                f"Completion request was rejected recently; you can request again after {until.isoformat()}",
                field="completion_rejected_at",
            )

        next_state = next_completion_state(session.completion_state, CompletionAction.REQUEST)
        record = self.store.add_completion_request(
            CompletionRequest(session_id=session.id, requested_by=actor_id, requested_at=now),
        )
        updated = self.store.update_session(
            session.id,
            expect={
                "status": SessionStatus.ACTIVE,
                "completion_state": CompletionState.NONE,
                "cancellation_state": CancellationState.NONE,
            },
            changes={
                "completion_state": next_state,
                "completion_requested_by": actor_id,
                "completion_requested_at": now,
                "completion_request_id": record.id,
            },
        )
        if updated is None:
            self.store.delete_completion_request(record.id)
            raise ConcurrentModificationError(session.id)

        logger.info("Completion of session %s requested by %s", session.id, actor_id)
        return updated

    def respond(
        self,
        session: Session,
        actor_id: str,
        action: CompletionAction,
        now: datetime,
        rejection_reason: str | None = None,
    ) -> Session:
        if action not in (CompletionAction.APPROVE, CompletionAction.REJECT):
            raise ValidationError("action must be 'approve' or 'reject'")
        require_active(session)
        next_state = next_completion_state(
            session.completion_state, action, "No completion request is pending",
        )
        requester = session.completion_requested_by
        if actor_id == requester:
            raise AuthorizationError("The requester cannot respond to their own completion request")

        expect = {
            "status": SessionStatus.ACTIVE,
            "completion_state": CompletionState.REQUESTED,
            "completion_requested_by": requester,
            "completion_request_id": session.completion_request_id,
        }
        if action == CompletionAction.APPROVE:
            changes: dict = {
                "completion_state": next_state,
                "status": SessionStatus.COMPLETED,
                "completion_approved_by": actor_id,
                "completion_approved_at": now,
            }
            record_changes: dict = {
                "status": CompletionRequestStatus.APPROVED,
                "approved_by": actor_id,
                "approved_at": now,
            }
        else:
            reason = (rejection_reason or "").strip() or None
            changes = {
                "completion_state": next_state,
                "completion_requested_by": None,
                "completion_requested_at": None,
                "completion_request_id": None,
                "completion_rejected_by": actor_id,
                "completion_rejected_at": now,
                "completion_rejection_reason": reason,
            }
            record_changes = {
                "status": CompletionRequestStatus.REJECTED,
                "rejected_by": actor_id,
                "rejected_at": now,
                "rejection_reason": reason,
            }

        updated = self.store.update_session(session.id, expect=expect, changes=changes)
        if updated is None:
            raise ConcurrentModificationError(session.id)

        if session.completion_request_id:
            try:
                closed = self.store.update_completion_request(
                    session.completion_request_id,
                    expect={"status": CompletionRequestStatus.PENDING},
                    changes=record_changes,
                )
            except NotFoundError:
                closed = None
            if closed is None:
                logger.warning(
                    "Completion request %s of session %s was not pending", session.completion_request_id, session.id,
                )

        logger.info("Completion of session %s: %s by %s", session.id, action.value, actor_id)
        return updated
