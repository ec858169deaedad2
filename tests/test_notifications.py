"""Tests for notification intents and dispatch."""

import logging

import pytest

from skill_exchange.errors import ValidationError
from skill_exchange.models import NotificationIntent, NotificationKind, Session
from skill_exchange.notifications import (
    TEMPLATES,
    NotificationDispatcher,
    NotificationSink,
    RecipientRole,
    compose,
    resolve_recipients,
)

ALICE = "alice"
BOB = "bob"
LONG_DESCRIPTION = "My schedule changed and I cannot continue the sessions."


class RecordingSink(NotificationSink):
    def __init__(self) -> None:
        self.delivered: list[NotificationIntent] = []

    def deliver(self, intent: NotificationIntent) -> None:
        self.delivered.append(intent)


class BrokenSink(NotificationSink):
    def deliver(self, intent: NotificationIntent) -> None:
        raise ConnectionError("smtp down")


@pytest.fixture
def pair() -> Session:
    return Session(id="s1", participant_a=ALICE, participant_b=BOB)


class TestTemplates:
    def test_every_kind_has_template(self):
        assert set(TEMPLATES) == set(NotificationKind)

    def test_recipients(self, pair):
        assert resolve_recipients(RecipientRole.ACTOR, ALICE, pair) == [ALICE]
        assert resolve_recipients(RecipientRole.COUNTERPART, ALICE, pair) == [BOB]
        assert resolve_recipients(RecipientRole.BOTH, ALICE, pair) == [ALICE, BOB]

    def test_counterpart_needs_session(self):
        with pytest.raises(ValueError):
            resolve_recipients(RecipientRole.COUNTERPART, ALICE, None)


class TestCompose:
    def test_completion_requested_goes_to_counterpart(self, pair):
        intents = compose(NotificationKind.COMPLETION_REQUESTED, actor_id=ALICE, session=pair)
        assert [i.recipient_id for i in intents] == [BOB]
        assert intents[0].session_id == "s1"
        assert ALICE in intents[0].body

    def test_session_completed_goes_to_both(self, pair):
        intents = compose(NotificationKind.SESSION_COMPLETED, actor_id=BOB, session=pair)
        assert sorted(i.recipient_id for i in intents) == [ALICE, BOB]

    def test_context_fills_body(self, pair):
        intents = compose(
            NotificationKind.CANCELLATION_DISPUTED, actor_id=BOB, session=pair, work_completion_percentage=30,
        )
        assert "30%" in intents[0].body

    def test_badge_without_session(self):
        intents = compose(NotificationKind.BADGE_GRANTED, actor_id=ALICE, badge="Mentor")
        assert intents[0].recipient_id == ALICE
        assert intents[0].session_id is None
        assert "Mentor" in intents[0].body

    def test_missing_context_raises(self, pair):
        with pytest.raises(KeyError):
            compose(NotificationKind.COMPLETION_REJECTED, actor_id=BOB, session=pair)


class TestDispatcher:
    def test_stores_and_delivers(self, store, pair):
        sink = RecordingSink()
        dispatcher = NotificationDispatcher(store, [sink])
        intents = dispatcher.notify(NotificationKind.SESSION_COMPLETED, actor_id=ALICE, session=pair)
        assert len(intents) == 2
        assert len(sink.delivered) == 2
        assert len(store.list_notifications(ALICE)) == 1
        assert len(store.list_notifications(BOB)) == 1

    def test_sink_failure_is_swallowed(self, store, pair, caplog):
        good = RecordingSink()
        dispatcher = NotificationDispatcher(store, [BrokenSink(), good])
        with caplog.at_level(logging.ERROR, logger="skill_exchange.notifications"):
            intents = dispatcher.notify(NotificationKind.COMPLETION_REQUESTED, actor_id=ALICE, session=pair)
        assert len(intents) == 1
        assert len(good.delivered) == 1
        assert "BrokenSink" in caplog.text

    def test_compose_failure_returns_empty(self, store, pair):
        dispatcher = NotificationDispatcher(store)
        assert dispatcher.notify(NotificationKind.COMPLETION_REJECTED, actor_id=BOB, session=pair) == []
        assert store.list_notifications(ALICE) == []

    def test_store_failure_is_swallowed(self, store, pair, monkeypatch, caplog):
        def broken(intent):
            raise OSError("disk full")

        monkeypatch.setattr(store, "add_notification", broken)
        sink = RecordingSink()
        dispatcher = NotificationDispatcher(store, [sink])
        with caplog.at_level(logging.ERROR, logger="skill_exchange.notifications"):
            intents = dispatcher.notify(NotificationKind.COMPLETION_REQUESTED, actor_id=ALICE, session=pair)
        assert len(intents) == 1
        assert len(sink.delivered) == 1
        assert "Failed to record completion_requested" in caplog.text


class TestWorkflowNotifications:
    def test_completion_flow(self, controller, session):
        controller.request_completion(session.id, ALICE)
        assert [n.kind for n in controller.list_notifications(BOB)] == [NotificationKind.COMPLETION_REQUESTED]

        controller.respond_to_completion(session.id, BOB, "approve")
        alice_kinds = [n.kind for n in controller.list_notifications(ALICE)]
        assert NotificationKind.COMPLETION_APPROVED in alice_kinds
        assert NotificationKind.SESSION_COMPLETED in alice_kinds
        assert NotificationKind.BADGE_GRANTED in alice_kinds
        assert NotificationKind.SESSION_COMPLETED in [n.kind for n in controller.list_notifications(BOB)]

    def test_rejection_carries_reason(self, controller, session):
        controller.request_completion(session.id, ALICE)
        controller.respond_to_completion(session.id, BOB, "reject", rejection_reason="Two lessons left")
        rejected = [n for n in controller.list_notifications(ALICE) if n.kind == NotificationKind.COMPLETION_REJECTED]
        assert "Two lessons left" in rejected[0].body

    def test_cancellation_flow(self, controller, session):
        controller.request_cancellation(session.id, BOB, "technical_issues", LONG_DESCRIPTION)
        controller.respond_to_cancellation(session.id, ALICE, "dispute", "Works for me", work_completion_percentage=70)
        controller.finalize_cancellation(session.id, BOB, "Closing")

        assert [n.kind for n in controller.list_notifications(ALICE)] == [
            NotificationKind.CANCELLATION_REQUESTED,
            NotificationKind.CANCELLATION_FINALIZED,
        ]
        assert [n.kind for n in controller.list_notifications(BOB)] == [NotificationKind.CANCELLATION_DISPUTED]

    def test_failing_sink_does_not_fail_transition(self, store, clock, session):
        from skill_exchange.lifecycle import SessionLifecycleController

        controller = SessionLifecycleController(store=store, sinks=[BrokenSink()], clock=clock)
        updated = controller.request_completion(session.id, ALICE)
        assert updated.completion_requested_by == ALICE
        assert len(controller.list_notifications(BOB)) == 1


class TestReportNotices:
    def test_report_recipients_come_from_context(self):
        context = {"reporter_id": ALICE, "reported_id": BOB}
        assert resolve_recipients(RecipientRole.REPORTER, "admin", None, context) == [ALICE]
        assert resolve_recipients(RecipientRole.REPORTED, "admin", None, context) == [BOB]

    def test_missing_reporter_raises(self):
        with pytest.raises(ValueError, match="reporter_id"):
            resolve_recipients(RecipientRole.REPORTER, "admin", None, {"reported_id": BOB})

    @pytest.mark.parametrize(
        ("kind", "recipient"),
        [
            (NotificationKind.REPORT_INFO_FROM_REPORTER, ALICE),
            (NotificationKind.REPORT_INFO_FROM_REPORTED, BOB),
            (NotificationKind.REPORT_WARN_REPORTER, ALICE),
            (NotificationKind.REPORT_WARN_REPORTED, BOB),
        ],
    )
    def test_each_flow_reaches_one_side(self, controller, kind, recipient):
        intents = controller.send_report_notice(kind, "admin", "r-1", ALICE, BOB, "harassment")
        assert [i.recipient_id for i in intents] == [recipient]
        assert intents[0].session_id is None
        assert "r-1" in intents[0].subject + intents[0].body
        assert controller.list_notifications(recipient)[0].kind == kind

    def test_workflow_kind_rejected(self, controller):
        with pytest.raises(ValidationError, match="kind must be one of"):
            controller.send_report_notice("completion_requested", "admin", "r-1", ALICE, BOB)

    def test_unknown_kind_rejected(self, controller):
        with pytest.raises(ValidationError):
            controller.send_report_notice("report_ban", "admin", "r-1", ALICE, BOB)

    def test_ids_required(self, controller):
        with pytest.raises(ValidationError, match="required"):
            controller.send_report_notice(NotificationKind.REPORT_WARN_REPORTED, "admin", "r-1", ALICE, "")
