"""Shared fixtures for Skill Exchange tests."""

from datetime import datetime, timedelta, timezone

import pytest

from skill_exchange.config import WorkflowConfig
from skill_exchange.lifecycle import SessionLifecycleController
from skill_exchange.models import Session
from skill_exchange.store import InMemorySessionStore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _isolate_state_storage(tmp_path, monkeypatch):
    """Prevent tests from writing state to the real project .skill-exchange/ directory."""
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def controller(store, clock) -> SessionLifecycleController:
    return SessionLifecycleController(store=store, config=WorkflowConfig(), clock=clock)


@pytest.fixture
def session(controller) -> Session:
    return controller.create_session("alice", "bob", skill_a="Python", skill_b="Spanish")


@pytest.fixture
def completed_session(controller, session) -> Session:
    controller.request_completion(session.id, "alice")
    return controller.respond_to_completion(session.id, "bob", "approve")
