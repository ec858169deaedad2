"""SSE event broker pushing workflow state changes to connected clients."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from dataclasses import dataclass


@dataclass
class SSEEvent:
    event: str
    data: dict

    def format(self) -> str:
        return f"event: {self.event}\ndata: {json.dumps(self.data, default=str)}\n\n"

    def concerns(self, session_id: str | None = None, user_id: str | None = None) -> bool:
        """True when the event belongs to the given session and/or is addressed to the user."""
        if session_id is not None and self.data.get("session_id") != session_id:
            return False
        if user_id is not None:
            participants = self.data.get("participants") or []
            recipient = self.data.get("recipient_id")
            if user_id != recipient and user_id not in participants:
                return False
        return True


class SSEBroker:
    """In-process pub/sub. Subscribers get every event published after they subscribed."""

    def __init__(self) -> None:
        self._queues: list[asyncio.Queue[SSEEvent | None]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    def publish(self, event: str, data: dict) -> None:
        sse_event = SSEEvent(event=event, data=data)
        for q in self._queues:
            q.put_nowait(sse_event)

    async def subscribe(
        self, session_id: str | None = None, user_id: str | None = None,
    ) -> AsyncIterator[SSEEvent]:
        q: asyncio.Queue[SSEEvent | None] = asyncio.Queue()
        self._queues.append(q)
        try:
            while True:
                try:
                    event = await asyncio.wait_for(q.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue
                if event is None:
                    break
                if event.concerns(session_id, user_id):
                    yield event
        finally:
            if q in self._queues:
                self._queues.remove(q)

    def disconnect_all(self) -> None:
        for q in self._queues:
            q.put_nowait(None)
