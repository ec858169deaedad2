"""Tests for data models."""

import pytest

from skill_exchange.models import (
    CancelReason,
    CancelRequest,
    CancelResolution,
    CancellationState,
    CompletionState,
    NotificationKind,
    Session,
    SessionStatus,
)


class TestSession:
    def test_defaults(self):
        session = Session(participant_a="alice", participant_b="bob")
        assert session.status == SessionStatus.ACTIVE
        assert session.completion_state == CompletionState.NONE
        assert session.cancellation_state == CancellationState.NONE
        assert session.open_cancel_request_id is None
        assert session.completion_requested_by is None
        assert session.version == 0
        assert len(session.id) == 12

    def test_unique_ids(self):
        a = Session(participant_a="alice", participant_b="bob")
        b = Session(participant_a="alice", participant_b="bob")
        assert a.id != b.id

    def test_participants(self):
        session = Session(participant_a="alice", participant_b="bob")
        assert session.participants == ("alice", "bob")
        assert session.is_participant("alice")
        assert session.is_participant("bob")
        assert not session.is_participant("mallory")

    def test_counterpart(self):
        session = Session(participant_a="alice", participant_b="bob")
        assert session.counterpart("alice") == "bob"
        assert session.counterpart("bob") == "alice"

    def test_counterpart_of_outsider_raises(self):
        session = Session(participant_a="alice", participant_b="bob")
        with pytest.raises(ValueError, match="not a participant"):
            session.counterpart("mallory")

    def test_json_roundtrip_keeps_enums(self):
        session = Session(participant_a="alice", participant_b="bob", status=SessionStatus.CANCELED)
        restored = Session.model_validate(session.model_dump(mode="json"))
        assert restored.status is SessionStatus.CANCELED
        assert restored == session


class TestCancelRequest:
    def test_new_request_is_open(self):
        request = CancelRequest(
            session_id="s1", initiator_id="alice", reason=CancelReason.OTHER, description="x" * 20,
        )
        assert request.is_open
        assert request.evidence_files == []

    def test_resolved_request_is_closed(self):
        request = CancelRequest(
            session_id="s1",
            initiator_id="alice",
            reason=CancelReason.OTHER,
            description="x" * 20,
            resolution=CancelResolution.CANCELED,
        )
        assert not request.is_open

    def test_reason_from_string(self):
        request = CancelRequest(
            session_id="s1", initiator_id="alice", reason="skill_mismatch", description="x" * 20,
        )
        assert request.reason is CancelReason.SKILL_MISMATCH


def test_notification_kinds_are_strings():
    assert NotificationKind.SESSION_COMPLETED == "session_completed"
    assert NotificationKind("badge_granted") is NotificationKind.BADGE_GRANTED
