"""Session lifecycle controller: guards, transitions and post-transition hooks."""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from skill_exchange.badges import BadgeEvaluator
from skill_exchange.cancellation import CancellationCoordinator
from skill_exchange.completion import CompletionCoordinator
from skill_exchange.config import WorkflowConfig
from skill_exchange.errors import AuthorizationError, ValidationError
from skill_exchange.models import (
    Badge,
    BadgeTrigger,
    CancellationAction,
    CancelRequest,
    CompletionAction,
    CompletionRequest,
    NotificationIntent,
    NotificationKind,
    Review,
    Session,
    SessionStatus,
    _utcnow,
)
from skill_exchange.notifications import REPORT_KINDS, BrokerNotificationSink, NotificationDispatcher, NotificationSink
from skill_exchange.reviews import ReviewGate
from skill_exchange.sse import SSEBroker
from skill_exchange.store import InMemorySessionStore, SessionStore

logger = logging.getLogger(__name__)


def _parse_action(enum_cls: type[enum.Enum], value: object, allowed: tuple[enum.Enum, ...]) -> enum.Enum:
    try:
        action = enum_cls(value)
    except ValueError:
        action = None
    if action not in allowed:
        names = " or ".join(f"'{a.value}'" for a in allowed)
        raise ValidationError(f"action must be {names}")
    return action


class SessionLifecycleController:
    """Entry point for every session workflow operation.

    Each mutating call loads the session, checks that the actor takes part in
    it, then hands off to the coordinator for the transition. After a
    successful transition it publishes a broker event and records
    notification intents. Badge evaluation runs when a session completes.
    """

    def __init__(
        self,
        store: SessionStore | None = None,
        config: WorkflowConfig | None = None,
        broker: SSEBroker | None = None,
        sinks: list[NotificationSink] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config or WorkflowConfig()
        self.store = store or InMemorySessionStore(self.config.state_file)
        self.broker = broker or SSEBroker()
        self.clock = clock

        self.completion = CompletionCoordinator(
            self.store, cooldown=timedelta(hours=self.config.completion_cooldown_hours),
        )
        self.cancellation = CancellationCoordinator(
            self.store, description_min_length=self.config.cancel_description_min_length,
        )
        self.reviews = ReviewGate(self.store, comment_max_length=self.config.review_comment_max_length)
        self.badges = BadgeEvaluator(self.store, self.config.badges)

        all_sinks: list[NotificationSink] = [BrokerNotificationSink(self.broker)]
        all_sinks.extend(sinks or [])
        self.notifier = NotificationDispatcher(self.store, all_sinks)

    # --- Guards ---

    def _load_for_actor(self, session_id: str, actor_id: str | None) -> Session:
        session = self.store.get_session(session_id)
        if not actor_id:
            raise AuthorizationError("An actor id is required")
        if not session.is_participant(actor_id):
            raise AuthorizationError(f"User {actor_id} is not a participant of session {session_id}")
        return session

    # --- Sessions ---

    def create_session(
        self,
        participant_a: str,
        participant_b: str,
        *,
        skill_a: str = "",
        skill_b: str = "",
        description_a: str = "",
        description_b: str = "",
        expected_end_date: datetime | None = None,
        due_date: datetime | None = None,
    ) -> Session:
        a = (participant_a or "").strip()
        b = (participant_b or "").strip()
        if not a or not b:
            raise ValidationError("participant_a and participant_b are required")
        if a == b:
            raise ValidationError("A session needs two distinct participants")

        now = self.clock()
        session = self.store.add_session(Session(
            participant_a=a,
            participant_b=b,
            skill_a=skill_a,
            skill_b=skill_b,
            description_a=description_a,
            description_b=description_b,
            start_date=now,
            expected_end_date=expected_end_date,
            due_date=due_date,
            created_at=now,
            updated_at=now,
        ))
        logger.info("Session %s created between %s and %s", session.id, a, b)
        self._publish_session(session)
        return session

    def get_session(self, session_id: str) -> Session:
        return self.store.get_session(session_id)

    def list_sessions(
        self, user_id: str | None = None, status: SessionStatus | str | None = None,
    ) -> list[Session]:
        if status is not None:
            try:
                status = SessionStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown session status '{status}'") from None
        sessions = [
            s for s in self.store.list_sessions()
            if (user_id is None or s.is_participant(user_id))
            and (status is None or s.status == status)
        ]
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return sessions

    # --- Completion ---

    def request_completion(self, session_id: str, actor_id: str) -> Session:
        session = self._load_for_actor(session_id, actor_id)
        updated = self.completion.request(session, actor_id, self.clock())
        self._publish_session(updated)
        self.notifier.notify(NotificationKind.COMPLETION_REQUESTED, actor_id=actor_id, session=updated)
        return updated

    def respond_to_completion(
        self,
        session_id: str,
        actor_id: str,
        action: CompletionAction | str,
        rejection_reason: str | None = None,
    ) -> Session:
        parsed = _parse_action(CompletionAction, action, (CompletionAction.APPROVE, CompletionAction.REJECT))
        session = self._load_for_actor(session_id, actor_id)
        updated = self.completion.respond(session, actor_id, parsed, self.clock(), rejection_reason)
        self._publish_session(updated)

        if parsed == CompletionAction.APPROVE:
            self.notifier.notify(NotificationKind.COMPLETION_APPROVED, actor_id=actor_id, session=updated)
            self._on_completed(updated, actor_id)
        else:
            self.notifier.notify(
                NotificationKind.COMPLETION_REJECTED,
                actor_id=actor_id,
                session=updated,
                reason=updated.completion_rejection_reason or "no reason given",
            )
        return updated

    def list_completion_requests(self, session_id: str) -> list[CompletionRequest]:
        self.store.get_session(session_id)
        return self.completion.list_requests(session_id)

    def _on_completed(self, session: Session, actor_id: str) -> None:
        for user_id in session.participants:
            self._evaluate_badges(user_id, BadgeTrigger.SESSION_COMPLETED)
        self.notifier.notify(NotificationKind.SESSION_COMPLETED, actor_id=actor_id, session=session)

    # --- Cancellation ---

    def request_cancellation(
        self,
        session_id: str,
        actor_id: str,
        reason: str | None,
        description: str | None,
        evidence_files: list[str] | None = None,
    ) -> CancelRequest:
        session = self._load_for_actor(session_id, actor_id)
        request = self.cancellation.request(
            session, actor_id, reason, description, evidence_files, self.clock(),
        )
        updated = self.store.get_session(session_id)
        self._publish_session(updated)
        self._publish_cancel_request(updated, request)
        self.notifier.notify(
            NotificationKind.CANCELLATION_REQUESTED,
            actor_id=actor_id,
            session=updated,
            reason=request.reason.value,
        )
        return request

    def respond_to_cancellation(
        self,
        session_id: str,
        actor_id: str,
        action: CancellationAction | str,
        response_description: str | None,
        work_completion_percentage: object = None,
        response_evidence_files: list[str] | None = None,
    ) -> CancelRequest:
        parsed = _parse_action(
            CancellationAction, action, (CancellationAction.AGREE, CancellationAction.DISPUTE),
        )
        session = self._load_for_actor(session_id, actor_id)
        updated, request = self.cancellation.respond(
            session,
            actor_id,
            parsed,
            response_description,
            self.clock(),
            work_completion_percentage=work_completion_percentage,
            response_evidence_files=response_evidence_files,
        )
        self._publish_session(updated)
        self._publish_cancel_request(updated, request)

        if parsed == CancellationAction.AGREE:
            self.notifier.notify(NotificationKind.CANCELLATION_AGREED, actor_id=actor_id, session=updated)
        else:
            self.notifier.notify(
                NotificationKind.CANCELLATION_DISPUTED,
                actor_id=actor_id,
                session=updated,
                work_completion_percentage=request.work_completion_percentage,
            )
        return request

    def finalize_cancellation(self, session_id: str, actor_id: str, final_note: str | None) -> CancelRequest:
        session = self._load_for_actor(session_id, actor_id)
        updated, request = self.cancellation.finalize(session, actor_id, final_note, self.clock())
        self._publish_session(updated)
        self._publish_cancel_request(updated, request)
        self.notifier.notify(
            NotificationKind.CANCELLATION_FINALIZED,
            actor_id=actor_id,
            session=updated,
            final_note=request.final_note,
        )
        return request

    def get_cancel_request(self, session_id: str) -> CancelRequest | None:
        self.store.get_session(session_id)
        return self.cancellation.current_request(session_id)

    def list_cancel_requests(self, session_id: str) -> list[CancelRequest]:
        self.store.get_session(session_id)
        return self.cancellation.list_requests(session_id)

    # --- Reviews ---

    def submit_review(
        self,
        session_id: str,
        reviewer_id: str,
        rating: object,
        comment: str | None,
        reviewee_id: str | None = None,
    ) -> Review:
        session = self._load_for_actor(session_id, reviewer_id)
        review = self.reviews.submit(session, reviewer_id, rating, comment, self.clock(), reviewee_id)
        self.broker.publish("review_submitted", {
            "session_id": session.id,
            "participants": list(session.participants),
            "review": review.model_dump(mode="json"),
        })
        return review

    def list_reviews(self, session_id: str) -> list[Review]:
        self.store.get_session(session_id)
        return self.reviews.list_reviews(session_id)

    def rating_summary(self, user_id: str) -> dict:
        return self.reviews.rating_summary(user_id)

    # --- Badges ---

    def badge_catalog(self) -> list[Badge]:
        return list(self.badges.catalog)

    def list_user_badges(self, user_id: str) -> list[dict]:
        return self.badges.user_badges(user_id)

    def record_verified_skill(self, user_id: str, skill_id: str) -> list[str]:
        """Record a verified skill and return badges newly granted for it."""
        if not user_id or not skill_id:
            raise ValidationError("user_id and skill_id are required")
        self.store.record_verified_skill(user_id, skill_id)
        return self._evaluate_badges(user_id, BadgeTrigger.SKILL_VERIFIED)

    def record_forum_post(self, user_id: str, post_id: str) -> list[str]:
        """Record a forum post and return badges newly granted for it."""
        if not user_id or not post_id:
            raise ValidationError("user_id and post_id are required")
        self.store.record_forum_post(user_id, post_id)
        return self._evaluate_badges(user_id, BadgeTrigger.FORUM_POST_CREATED)

    def _evaluate_badges(self, user_id: str, trigger: BadgeTrigger) -> list[str]:
        try:
            granted = self.badges.evaluate(user_id, trigger)
        except Exception:
            logger.exception("Badge evaluation failed for user %s on %s", user_id, trigger.value)
            return []
        for name in granted:
            self.broker.publish("badge_granted", {"user_id": user_id, "participants": [user_id], "badge": name})
            self.notifier.notify(NotificationKind.BADGE_GRANTED, actor_id=user_id, badge=name)
        return granted

    # --- Notifications ---

    def list_notifications(self, user_id: str) -> list[NotificationIntent]:
        return self.store.list_notifications(user_id)

    def send_report_notice(
        self,
        kind: NotificationKind | str,
        admin_id: str,
        report_id: str,
        reporter_id: str,
        reported_id: str,
        reason: str = "",
    ) -> list[NotificationIntent]:
        """Send one of the report e-mail flows to the reporter or the reported user."""
        try:
            parsed = NotificationKind(kind)
        except ValueError:
            parsed = None
        if parsed not in REPORT_KINDS:
            allowed = ", ".join(sorted(k.value for k in REPORT_KINDS))
            raise ValidationError(f"kind must be one of: {allowed}")
        if not admin_id or not report_id or not reporter_id or not reported_id:
            raise ValidationError("admin_id, report_id, reporter_id and reported_id are required")
        return self.notifier.notify(
            parsed,
            actor_id=admin_id,
            report_id=report_id,
            reporter_id=reporter_id,
            reported_id=reported_id,
            reason=reason or "unspecified",
        )

    # --- Events ---

    def _publish_session(self, session: Session) -> None:
        self.broker.publish("session_updated", {
            "session_id": session.id,
            "participants": list(session.participants),
            "status": session.status.value,
            "completion_state": session.completion_state.value,
            "cancellation_state": session.cancellation_state.value,
            "version": session.version,
        })

    def _publish_cancel_request(self, session: Session, request: CancelRequest) -> None:
        self.broker.publish("cancel_request_updated", {
            "session_id": session.id,
            "participants": list(session.participants),
            "cancel_request": request.model_dump(mode="json"),
        })
