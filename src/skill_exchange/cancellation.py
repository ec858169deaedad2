"""Cancellation workflow: request, agree / dispute, finalize.

The session document gates every transition. A new CancelRequest is stored
first and then attached through a compare-and-set on ``cancellation_state``
and ``open_cancel_request_id``, and removed again if that loses. Responses
compare-and-set the session first, then update the CancelRequest document
with its own precondition.
"""

from __future__ import annotations

import logging
from datetime import datetime

from skill_exchange.errors import (
    AuthorizationError,
    ConcurrentModificationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from skill_exchange.models import (
    CancellationAction,
    CancellationState,
    CancelReason,
    CancelRequest,
    CancelResolution,
    CancelResponseStatus,
    CompletionState,
    Session,
    SessionStatus,
)
from skill_exchange.state import next_cancellation_state, require_active
from skill_exchange.store import SessionStore

logger = logging.getLogger(__name__)


def parse_reason(reason: str | CancelReason | None) -> CancelReason:
    if not reason:
        raise ValidationError("reason is required")
    try:
        return CancelReason(reason)
    except ValueError:
        allowed = ", ".join(r.value for r in CancelReason)
        raise ValidationError(f"Unknown cancellation reason '{reason}'. Allowed: {allowed}") from None


def parse_percentage(value: object) -> int:
    if value is None:
        raise ValidationError("work_completion_percentage is required when disputing")
    if isinstance(value, bool):
        raise ValidationError("work_completion_percentage must be an integer between 0 and 100")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or not 0 <= value <= 100:
        raise ValidationError("work_completion_percentage must be an integer between 0 and 100")
    return value


def parse_files(files: object, field: str) -> list[str]:
    if files is None:
        return []
    if not isinstance(files, (list, tuple)) or not all(isinstance(f, str) for f in files):
        raise ValidationError(f"{field} must be a list of file references")
    return [f for f in files if f.strip()]


class CancellationCoordinator:
    def __init__(self, store: SessionStore, description_min_length: int = 20) -> None:
        self.store = store
        self.description_min_length = description_min_length

    def open_request(self, session: Session) -> CancelRequest | None:
        if not session.open_cancel_request_id:
            return None
        return self.store.get_cancel_request(session.open_cancel_request_id)

    def current_request(self, session_id: str) -> CancelRequest | None:
        """Return the open request, else the most recent resolved one, else None."""
        requests = self.store.list_cancel_requests(session_id)
        for request in requests:
            if request.is_open:
                return request
        return requests[-1] if requests else None

    def list_requests(self, session_id: str) -> list[CancelRequest]:
        return self.store.list_cancel_requests(session_id)

    def request(
        self,
        session: Session,
        actor_id: str,
        reason: str | CancelReason | None,
        description: str | None,
        evidence_files: list[str] | None,
        now: datetime,
    ) -> CancelRequest:
        parsed_reason = parse_reason(reason)
        text = (description or "").strip()
        if len(text) < self.description_min_length:
            raise ValidationError(
                f"description must be at least {self.description_min_length} characters",
            )
        files = parse_files(evidence_files, "evidence_files")

        require_active(session)
        if session.completion_state == CompletionState.REQUESTED:
            raise StateConflictError(
                "A completion request is pending for this session",
                field="completion_requested_by",
            )
        next_state = next_cancellation_state(
            session.cancellation_state,
            CancellationAction.REQUEST,
            "A cancellation request is already open for this session",
        )

        request = CancelRequest(
            session_id=session.id,
            initiator_id=actor_id,
            reason=parsed_reason,
            description=text,
            evidence_files=files,
            created_at=now,
        )
        created = self.store.insert_cancel_request(request)
        updated = self.store.update_session(
            session.id,
            expect={
                "status": SessionStatus.ACTIVE,
                "completion_state": CompletionState.NONE,
                "cancellation_state": CancellationState.NONE,
            },
            changes={"cancellation_state": next_state, "open_cancel_request_id": request.id},
        )
        if updated is None:
            self.store.delete_cancel_request(request.id)
            raise ConcurrentModificationError(session.id)

        logger.info("Cancellation of session %s requested by %s (%s)", session.id, actor_id, parsed_reason.value)
        return created

    def respond(
        self,
        session: Session,
        actor_id: str,
        action: CancellationAction,
        response_description: str | None,
        now: datetime,
        work_completion_percentage: object = None,
        response_evidence_files: list[str] | None = None,
    ) -> tuple[Session, CancelRequest]:
        if action not in (CancellationAction.AGREE, CancellationAction.DISPUTE):
            raise ValidationError("action must be 'agree' or 'dispute'")
        require_active(session)
        request = self.open_request(session)
        if request is None:
            raise NotFoundError(f"No open cancellation request for session {session.id}")
        if actor_id == request.initiator_id:
            raise AuthorizationError("The initiator cannot respond to their own cancellation request")

        text = (response_description or "").strip()
        if not text:
            raise ValidationError("response_description is required")
        files = parse_files(response_evidence_files, "response_evidence_files")
        if action == CancellationAction.DISPUTE:
            percentage: int | None = parse_percentage(work_completion_percentage)
        elif work_completion_percentage is not None:
            percentage = parse_percentage(work_completion_percentage)
        else:
            percentage = None

        next_state = next_cancellation_state(
            session.cancellation_state, action, "The cancellation request has already been responded to",
        )

        if action == CancellationAction.AGREE:
            session_changes: dict = {
                "cancellation_state": next_state,
                "status": SessionStatus.CANCELED,
                "open_cancel_request_id": None,
            }
            request_changes: dict = {
                "response_status": CancelResponseStatus.AGREED,
                "resolution": CancelResolution.CANCELED,
                "resolved_date": now,
            }
        else:
            session_changes = {"cancellation_state": next_state}
            request_changes = {"response_status": CancelResponseStatus.DISPUTED}
        request_changes.update({
            "responder_id": actor_id,
            "response_description": text,
            "response_evidence_files": files,
            "work_completion_percentage": percentage,
            "response_date": now,
        })

        updated_session = self.store.update_session(
            session.id,
            expect={
                "status": SessionStatus.ACTIVE,
                "cancellation_state": CancellationState.PENDING,
                "open_cancel_request_id": request.id,
            },
            changes=session_changes,
        )
        if updated_session is None:
            raise ConcurrentModificationError(session.id)

        updated_request = self.store.update_cancel_request(
            request.id,
            expect={"response_status": CancelResponseStatus.PENDING, "resolution": CancelResolution.PENDING},
            changes=request_changes,
        )
        if updated_request is None:
            logger.error("Cancel request %s diverged from session %s", request.id, session.id)
            raise ConcurrentModificationError(session.id)

        logger.info("Cancellation of session %s: %s by %s", session.id, action.value, actor_id)
        return updated_session, updated_request

    def finalize(
        self,
        session: Session,
        actor_id: str,
        final_note: str | None,
        now: datetime,
    ) -> tuple[Session, CancelRequest]:
        """Resolve a disputed request. Finalizing always cancels the session."""
        require_active(session)
        request = self.open_request(session)
        if request is None:
            raise NotFoundError(f"No open cancellation request for session {session.id}")
        if actor_id != request.initiator_id:
            raise AuthorizationError("Only the initiator can finalize the cancellation")
        next_state = next_cancellation_state(
            session.cancellation_state,
            CancellationAction.FINALIZE,
            "Only a disputed cancellation request can be finalized",
        )
        note = (final_note or "").strip()
        if not note:
            raise ValidationError("final_note is required")

        updated_session = self.store.update_session(
            session.id,
            expect={
                "status": SessionStatus.ACTIVE,
                "cancellation_state": CancellationState.DISPUTED,
                "open_cancel_request_id": request.id,
            },
            changes={
                "cancellation_state": next_state,
                "status": SessionStatus.CANCELED,
                "open_cancel_request_id": None,
            },
        )
        if updated_session is None:
            raise ConcurrentModificationError(session.id)

        updated_request = self.store.update_cancel_request(
            request.id,
            expect={"response_status": CancelResponseStatus.DISPUTED, "resolution": CancelResolution.PENDING},
            changes={"resolution": CancelResolution.CANCELED, "final_note": note, "resolved_date": now},
        )
        if updated_request is None:
            logger.error("Cancel request %s diverged from session %s", request.id, session.id)
            raise ConcurrentModificationError(session.id)

        logger.info("Cancellation of session %s finalized by %s", session.id, actor_id)
        return updated_session, updated_request
