"""Unit tests for skill_exchange.sse module."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import pytest

from skill_exchange.sse import SSEBroker, SSEEvent


class TestSSEEvent:
    def test_event_format_basic(self):
        event = SSEEvent(event="foo", data={"key": "value"})
        assert event.format() == f'event: foo\ndata: {json.dumps({"key": "value"})}\n\n'

    def test_event_format_serializes_datetimes(self):
        stamp = datetime(2024, 3, 1, tzinfo=timezone.utc)
        event = SSEEvent(event="update", data={"at": stamp})
        parsed = json.loads(event.format().split("data: ", 1)[1].strip())
        assert parsed == {"at": str(stamp)}

    def test_concerns_session(self):
        event = SSEEvent(event="session_updated", data={"session_id": "s1", "participants": ["alice", "bob"]})
        assert event.concerns(session_id="s1")
        assert not event.concerns(session_id="s2")
        assert event.concerns(user_id="bob")
        assert not event.concerns(user_id="mallory")

    def test_concerns_recipient(self):
        event = SSEEvent(event="notification", data={"session_id": "s1", "recipient_id": "bob"})
        assert event.concerns(session_id="s1", user_id="bob")
        assert not event.concerns(user_id="alice")

    def test_concerns_without_filters(self):
        assert SSEEvent(event="x", data={}).concerns()


class TestSSEBroker:
    @pytest.mark.asyncio
    async def test_single_subscriber_receives(self):
        broker = SSEBroker()
        received = []

        async def consume():
            async for event in broker.subscribe():
                received.append(event)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.01)

        broker.publish("test", {"msg": "hello"})
        await asyncio.sleep(0.01)

        broker.disconnect_all()
        await asyncio.wait_for(task, timeout=1.0)

        assert len(received) == 1
        assert received[0].event == "test"
        assert received[0].data == {"msg": "hello"}

    @pytest.mark.asyncio
    async def test_session_filter(self):
        broker = SSEBroker()
        received = []

        async def consume():
            async for event in broker.subscribe(session_id="s1"):
                received.append(event)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.01)

        broker.publish("session_updated", {"session_id": "s2"})
        broker.publish("session_updated", {"session_id": "s1"})
        await asyncio.sleep(0.01)

        broker.disconnect_all()
        await asyncio.wait_for(task, timeout=1.0)

        assert [e.data["session_id"] for e in received] == ["s1"]

    @pytest.mark.asyncio
    async def test_unsubscribe_on_disconnect(self):
        broker = SSEBroker()

        async def consume():
            async for _ in broker.subscribe():
                pass

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.01)
        assert broker.subscriber_count == 1

        broker.disconnect_all()
        await asyncio.wait_for(task, timeout=1.0)
        assert broker.subscriber_count == 0

    def test_publish_without_subscribers(self):
        SSEBroker().publish("noop", {})
