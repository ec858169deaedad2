"""Notification intents for workflow transitions and report e-mails.

Each ``NotificationKind`` maps to exactly one template naming who receives
it. Delivery goes to pluggable sinks and never fails the transition that
triggered it.
"""

from __future__ import annotations

import abc
import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from skill_exchange.models import NotificationIntent, NotificationKind, Session
from skill_exchange.store import SessionStore

if TYPE_CHECKING:
    from skill_exchange.sse import SSEBroker

logger = logging.getLogger(__name__)


class RecipientRole(str, enum.Enum):
    ACTOR = "actor"
    COUNTERPART = "counterpart"
    BOTH = "both"
    REPORTER = "reporter"
    REPORTED = "reported"


@dataclass(frozen=True)
class NotificationTemplate:
    recipient: RecipientRole
    subject: str
    body: str


TEMPLATES: dict[NotificationKind, NotificationTemplate] = {
    NotificationKind.COMPLETION_REQUESTED: NotificationTemplate(
        RecipientRole.COUNTERPART,
        "Completion requested",
        "{actor_id} asked to mark session {session_id} as completed. Please approve or reject.",
    ),
    NotificationKind.COMPLETION_APPROVED: NotificationTemplate(
        RecipientRole.COUNTERPART,
        "Completion approved",
        "{actor_id} approved your completion request for session {session_id}.",
    ),
    NotificationKind.COMPLETION_REJECTED: NotificationTemplate(
        RecipientRole.COUNTERPART,
        "Completion rejected",
        "{actor_id} rejected your completion request for session {session_id}. Reason: {reason}",
    ),
    NotificationKind.CANCELLATION_REQUESTED: NotificationTemplate(
        RecipientRole.COUNTERPART,
        "Cancellation requested",
        "{actor_id} asked to cancel session {session_id} ({reason}). Please agree or dispute.",
    ),
    NotificationKind.CANCELLATION_AGREED: NotificationTemplate(
        RecipientRole.COUNTERPART,
        "Cancellation agreed",
        "{actor_id} agreed to cancel session {session_id}. The session is now canceled.",
    ),
    NotificationKind.CANCELLATION_DISPUTED: NotificationTemplate(
        RecipientRole.COUNTERPART,
        "Cancellation disputed",
        "{actor_id} disputed the cancellation of session {session_id} "
        "({work_completion_percentage}% of work reported done).",
    ),
    NotificationKind.CANCELLATION_FINALIZED: NotificationTemplate(
        RecipientRole.COUNTERPART,
        "Cancellation finalized",
        "{actor_id} finalized the cancellation of session {session_id}. Note: {final_note}",
    ),
    NotificationKind.SESSION_COMPLETED: NotificationTemplate(
        RecipientRole.BOTH,
        "Session completed",
        "Session {session_id} is completed. You can now leave a review.",
    ),
    NotificationKind.BADGE_GRANTED: NotificationTemplate(
        RecipientRole.ACTOR,
        "Badge earned",
        "You earned the {badge} badge.",
    ),
    NotificationKind.REPORT_INFO_FROM_REPORTER: NotificationTemplate(
        RecipientRole.REPORTER,
        "More information needed about your report {report_id}",
        "We are reviewing your report against {reported_id} ({reason}). "
        "Please reply with any further details or evidence.",
    ),
    NotificationKind.REPORT_INFO_FROM_REPORTED: NotificationTemplate(
        RecipientRole.REPORTED,
        "A report was filed about your account",
        "Report {report_id} was filed about your activity ({reason}). "
        "Please reply with your side of the story.",
    ),
    NotificationKind.REPORT_WARN_REPORTER: NotificationTemplate(
        RecipientRole.REPORTER,
        "Warning about report {report_id}",
        "After review, your report against {reported_id} was found to be unfounded. "
        "Repeated false reports may lead to account restrictions.",
    ),
    NotificationKind.REPORT_WARN_REPORTED: NotificationTemplate(
        RecipientRole.REPORTED,
        "Community guidelines warning",
        "After review of report {report_id}, your account was found in violation ({reason}). "
        "Further violations may lead to suspension.",
    ),
}

REPORT_KINDS = frozenset({
    NotificationKind.REPORT_INFO_FROM_REPORTER,
    NotificationKind.REPORT_INFO_FROM_REPORTED,
    NotificationKind.REPORT_WARN_REPORTER,
    NotificationKind.REPORT_WARN_REPORTED,
})

_missing_templates = set(NotificationKind) - set(TEMPLATES)
if _missing_templates:
    raise RuntimeError(f"Notification kinds without template: {sorted(k.value for k in _missing_templates)}")


def resolve_recipients(
    role: RecipientRole,
    actor_id: str,
    session: Session | None,
    context: dict[str, object] | None = None,
) -> list[str]:
    if role == RecipientRole.ACTOR:
        return [actor_id]
    if role in (RecipientRole.REPORTER, RecipientRole.REPORTED):
        key = f"{role.value}_id"
        recipient = (context or {}).get(key)
        if not recipient:
            raise ValueError(f"Recipient role {role.value} requires {key}")
        return [str(recipient)]
    if session is None:
        raise ValueError(f"Recipient role {role.value} requires a session")
    if role == RecipientRole.COUNTERPART:
        return [session.counterpart(actor_id)]
    return list(session.participants)


def compose(
    kind: NotificationKind,
    *,
    actor_id: str,
    session: Session | None = None,
    **context: object,
) -> list[NotificationIntent]:
    """Build one intent per recipient of ``kind``."""
    template = TEMPLATES[kind]
    values = {"actor_id": actor_id, "session_id": session.id if session else "", **context}
    subject = template.subject.format(**values)
    body = template.body.format(**values)
    return [
        NotificationIntent(
            kind=kind,
            session_id=session.id if session else None,
            recipient_id=recipient,
            actor_id=actor_id,
            subject=subject,
            body=body,
        )
        for recipient in resolve_recipients(template.recipient, actor_id, session, context)
    ]


class NotificationSink(abc.ABC):
    """Delivery channel for notification intents (email, push, ...)."""

    @abc.abstractmethod
    def deliver(self, intent: NotificationIntent) -> None: ...


class BrokerNotificationSink(NotificationSink):
    """Pushes intents to connected SSE clients."""

    def __init__(self, broker: SSEBroker) -> None:
        self.broker = broker

    def deliver(self, intent: NotificationIntent) -> None:
        self.broker.publish("notification", intent.model_dump(mode="json"))


class NotificationDispatcher:
    """Records intents in the store and hands them to sinks, fire-and-forget."""

    def __init__(self, store: SessionStore, sinks: list[NotificationSink] | None = None) -> None:
        self.store = store
        self.sinks: list[NotificationSink] = list(sinks or [])

    def notify(
        self,
        kind: NotificationKind,
        *,
        actor_id: str,
        session: Session | None = None,
        **context: object,
    ) -> list[NotificationIntent]:
        try:
            intents = compose(kind, actor_id=actor_id, session=session, **context)
        except (KeyError, ValueError):
            logger.exception("Failed to compose %s notification", kind.value)
            return []
        for intent in intents:
            try:
                self.store.add_notification(intent)
            except Exception:
                logger.exception(
                    "Failed to record %s notification for %s", intent.kind.value, intent.recipient_id,
                )
            for sink in self.sinks:
                try:
                    sink.deliver(intent)
                except Exception:
                    logger.exception(
                        "Notification sink %s failed for %s -> %s",
                        type(sink).__name__, intent.kind.value, intent.recipient_id,
                    )
        return intents
