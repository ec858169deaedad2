"""Data models for the skill exchange session workflow."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field


class SessionStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELED = "canceled"


class CompletionState(str, enum.Enum):
    """Completion sub-state of an active session.

    Lifecycle: NONE -> REQUESTED -> APPROVED | (rejected) NONE
    """

    NONE = "none"
    REQUESTED = "requested"
    APPROVED = "approved"


class CompletionAction(str, enum.Enum):
    REQUEST = "request"
    APPROVE = "approve"
    REJECT = "reject"


class CancellationState(str, enum.Enum):
    """Cancellation sub-state of a session.

    Lifecycle: NONE -> PENDING -> RESOLVED (agreed)
                              -> DISPUTED -> RESOLVED (finalized)
    """

    NONE = "none"
    PENDING = "pending"
    DISPUTED = "disputed"
    RESOLVED = "resolved"


class CancellationAction(str, enum.Enum):
    REQUEST = "request"
    AGREE = "agree"
    DISPUTE = "dispute"
    FINALIZE = "finalize"


class CancelReason(str, enum.Enum):
    SCHEDULE_CONFLICT = "schedule_conflict"
    PERSONAL_EMERGENCY = "personal_emergency"
    TECHNICAL_ISSUES = "technical_issues"
    SKILL_MISMATCH = "skill_mismatch"
    COMMUNICATION_ISSUES = "communication_issues"
    OTHER_PARTICIPANT_UNAVAILABLE = "other_participant_unavailable"
    CHANGED_REQUIREMENTS = "changed_requirements"
    OTHER = "other"


class CancelResponseStatus(str, enum.Enum):
    PENDING = "pending"
    AGREED = "agreed"
    DISPUTED = "disputed"


class CancelResolution(str, enum.Enum):
    PENDING = "pending"
    CANCELED = "canceled"


class CompletionRequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class BadgeTrigger(str, enum.Enum):
    SESSION_COMPLETED = "session_completed"
    SKILL_VERIFIED = "skill_verified"
    FORUM_POST_CREATED = "forum_post_created"


class NotificationKind(str, enum.Enum):
    COMPLETION_REQUESTED = "completion_requested"
    COMPLETION_APPROVED = "completion_approved"
    COMPLETION_REJECTED = "completion_rejected"
    CANCELLATION_REQUESTED = "cancellation_requested"
    CANCELLATION_AGREED = "cancellation_agreed"
    CANCELLATION_DISPUTED = "cancellation_disputed"
    CANCELLATION_FINALIZED = "cancellation_finalized"
    SESSION_COMPLETED = "session_completed"
    BADGE_GRANTED = "badge_granted"
    # Report e-mail flows, sent by an admin about a user report
    REPORT_INFO_FROM_REPORTER = "report_info_from_reporter"
    REPORT_INFO_FROM_REPORTED = "report_info_from_reported"
    REPORT_WARN_REPORTER = "report_warn_reporter"
    REPORT_WARN_REPORTED = "report_warn_reported"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return uuid.uuid4().hex[:12]


# --- Session ---


class Session(BaseModel):
    id: str = Field(default_factory=_uuid)
    participant_a: str
    participant_b: str

    # Exchange terms
    skill_a: str = ""
    skill_b: str = ""
    description_a: str = ""
    description_b: str = ""

    start_date: datetime = Field(default_factory=_utcnow)
    expected_end_date: datetime | None = None
    due_date: datetime | None = None

    status: SessionStatus = SessionStatus.ACTIVE
    completion_state: CompletionState = CompletionState.NONE
    cancellation_state: CancellationState = CancellationState.NONE
    open_cancel_request_id: str | None = None

    completion_requested_by: str | None = None
    completion_requested_at: datetime | None = None
    completion_request_id: str | None = None
    completion_approved_by: str | None = None
    completion_approved_at: datetime | None = None
    completion_rejected_by: str | None = None
    completion_rejected_at: datetime | None = None
    completion_rejection_reason: str | None = None

    version: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def participants(self) -> tuple[str, str]:
        return (self.participant_a, self.participant_b)

    def is_participant(self, user_id: str) -> bool:
        return user_id in self.participants

    def counterpart(self, user_id: str) -> str:
        """Return the other participant. Raises ValueError for non-participants."""
        if user_id == self.participant_a:
            return self.participant_b
        if user_id == self.participant_b:
            return self.participant_a
        raise ValueError(f"{user_id} is not a participant of session {self.id}")


class CompletionRequest(BaseModel):
    id: str = Field(default_factory=_uuid)
    session_id: str
    requested_by: str
    requested_at: datetime = Field(default_factory=_utcnow)
    status: CompletionRequestStatus = CompletionRequestStatus.PENDING
    approved_by: str | None = None
    approved_at: datetime | None = None
    rejected_by: str | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None


# --- Cancellation ---


class CancelRequest(BaseModel):
    id: str = Field(default_factory=_uuid)
    session_id: str
    initiator_id: str
    reason: CancelReason
    description: str
    evidence_files: list[str] = Field(default_factory=list)

    response_status: CancelResponseStatus = CancelResponseStatus.PENDING
    responder_id: str | None = None
    response_description: str = ""
    work_completion_percentage: int | None = None
    response_evidence_files: list[str] = Field(default_factory=list)
    response_date: datetime | None = None

    resolution: CancelResolution = CancelResolution.PENDING
    final_note: str = ""
    resolved_date: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_open(self) -> bool:
        return self.resolution == CancelResolution.PENDING


# --- Review ---


class Review(BaseModel):
    id: str = Field(default_factory=_uuid)
    session_id: str
    reviewer_id: str
    reviewee_id: str
    rating: int
    comment: str
    created_at: datetime = Field(default_factory=_utcnow)


# --- Badges ---


class Badge(BaseModel):
    name: str
    description: str
    criteria: str
    trigger: BadgeTrigger
    threshold: int


class UserBadgeGrant(BaseModel):
    user_id: str
    badge_name: str
    granted_at: datetime = Field(default_factory=_utcnow)


# --- Notifications ---


class NotificationIntent(BaseModel):
    id: str = Field(default_factory=_uuid)
    kind: NotificationKind
    session_id: str | None = None
    recipient_id: str
    actor_id: str | None = None
    subject: str
    body: str
    created_at: datetime = Field(default_factory=_utcnow)
