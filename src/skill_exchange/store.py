"""Session store: documents, conditional updates and JSON snapshot persistence."""

from __future__ import annotations

import abc
import json
import logging
import threading
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel

from skill_exchange.errors import NotFoundError, StateConflictError
from skill_exchange.models import (
    CancelRequest,
    CompletionRequest,
    NotificationIntent,
    Review,
    Session,
    UserBadgeGrant,
    _utcnow,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class SessionStore(abc.ABC):
    """Storage backend for sessions and their satellite documents.

    Every ``update_*`` call is a compare-and-set: ``changes`` are applied only
    if each field named in ``expect`` still holds the expected value, and the
    updated document is returned. ``None`` means the precondition failed.
    """

    # --- Sessions ---

    @abc.abstractmethod
    def add_session(self, session: Session) -> Session: ...

    @abc.abstractmethod
    def get_session(self, session_id: str) -> Session: ...

    @abc.abstractmethod
    def list_sessions(self) -> list[Session]: ...

    @abc.abstractmethod
    def update_session(
        self, session_id: str, *, expect: Mapping[str, Any], changes: Mapping[str, Any],
    ) -> Session | None: ...

    # --- Completion requests ---

    @abc.abstractmethod
    def add_completion_request(self, record: CompletionRequest) -> CompletionRequest: ...

    @abc.abstractmethod
    def list_completion_requests(self, session_id: str) -> list[CompletionRequest]: ...

    @abc.abstractmethod
    def update_completion_request(
        self, request_id: str, *, expect: Mapping[str, Any], changes: Mapping[str, Any],
    ) -> CompletionRequest | None: ...

    @abc.abstractmethod
    def delete_completion_request(self, request_id: str) -> None: ...

    # --- Cancel requests ---

    @abc.abstractmethod
    def insert_cancel_request(self, request: CancelRequest) -> CancelRequest:
        """Insert a cancel request. Raises StateConflictError if the session already has an open one."""
        ...

    @abc.abstractmethod
    def get_cancel_request(self, request_id: str) -> CancelRequest: ...

    @abc.abstractmethod
    def list_cancel_requests(self, session_id: str) -> list[CancelRequest]: ...

    @abc.abstractmethod
    def update_cancel_request(
        self, request_id: str, *, expect: Mapping[str, Any], changes: Mapping[str, Any],
    ) -> CancelRequest | None: ...

    @abc.abstractmethod
    def delete_cancel_request(self, request_id: str) -> None: ...

    # --- Reviews ---

    @abc.abstractmethod
    def insert_review(self, review: Review) -> bool:
        """Insert if no review exists for (session_id, reviewer_id). Returns False on duplicate."""
        ...

    @abc.abstractmethod
    def list_reviews(self, *, session_id: str | None = None, reviewee_id: str | None = None) -> list[Review]: ...

    # --- Badges and activity counts ---

    @abc.abstractmethod
    def grant_badge(self, user_id: str, badge_name: str, granted_at: datetime | None = None) -> bool:
        """Insert-if-absent. Returns True only when a new grant was recorded."""
        ...

    @abc.abstractmethod
    def list_badge_grants(self, user_id: str) -> list[UserBadgeGrant]: ...

    @abc.abstractmethod
    def record_verified_skill(self, user_id: str, skill_id: str) -> bool: ...

    @abc.abstractmethod
    def count_verified_skills(self, user_id: str) -> int: ...

    @abc.abstractmethod
    def record_forum_post(self, user_id: str, post_id: str) -> bool: ...

    @abc.abstractmethod
    def count_forum_posts(self, user_id: str) -> int: ...

    # --- Notifications ---

    @abc.abstractmethod
    def add_notification(self, intent: NotificationIntent) -> NotificationIntent: ...

    @abc.abstractmethod
    def list_notifications(self, recipient_id: str) -> list[NotificationIntent]: ...


def _matches(doc: BaseModel, expect: Mapping[str, Any]) -> bool:
    return all(getattr(doc, key) == value for key, value in expect.items())


class InMemorySessionStore(SessionStore):
    """Thread-safe in-process store with optional JSON snapshot persistence.

    A single lock makes each primitive atomic. When ``state_file`` is given,
    state is loaded from it on start-up and rewritten after every mutation.
    """

    def __init__(self, state_file: str | Path | None = None) -> None:
        self._lock = threading.RLock()
        self._state_file = Path(state_file) if state_file else None
        self._sessions: dict[str, Session] = {}
        self._completion_requests: dict[str, CompletionRequest] = {}
        self._cancel_requests: dict[str, CancelRequest] = {}
        self._reviews: dict[tuple[str, str], Review] = {}
        self._badge_grants: dict[tuple[str, str], UserBadgeGrant] = {}
        self._verified_skills: dict[str, set[str]] = {}
        self._forum_posts: dict[str, set[str]] = {}
        self._notifications: list[NotificationIntent] = []
        self._load_state()

    # --- Sessions ---

    def add_session(self, session: Session) -> Session:
        with self._lock:
            if session.id in self._sessions:
                raise StateConflictError(f"Session already exists: {session.id}", field="id")
            self._sessions[session.id] = session.model_copy(deep=True)
            self._persist()
            return session.model_copy(deep=True)

    def get_session(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFoundError(f"Session not found: {session_id}")
            return session.model_copy(deep=True)

    def list_sessions(self) -> list[Session]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._sessions.values()]

    def update_session(
        self, session_id: str, *, expect: Mapping[str, Any], changes: Mapping[str, Any],
    ) -> Session | None:
        with self._lock:
            current = self._sessions.get(session_id)
            if current is None:
                raise NotFoundError(f"Session not found: {session_id}")
            if not _matches(current, expect):
                return None
            updated = current.model_copy(
                update={**changes, "version": current.version + 1, "updated_at": _utcnow()},
                deep=True,
            )
            self._sessions[session_id] = updated
            self._persist()
            return updated.model_copy(deep=True)

    # --- Completion requests ---

    def add_completion_request(self, record: CompletionRequest) -> CompletionRequest:
        with self._lock:
            self._completion_requests[record.id] = record.model_copy(deep=True)
            self._persist()
            return record.model_copy(deep=True)

    def list_completion_requests(self, session_id: str) -> list[CompletionRequest]:
        with self._lock:
            records = [r for r in self._completion_requests.values() if r.session_id == session_id]
            return [r.model_copy(deep=True) for r in sorted(records, key=lambda r: r.requested_at)]

    def update_completion_request(
        self, request_id: str, *, expect: Mapping[str, Any], changes: Mapping[str, Any],
    ) -> CompletionRequest | None:
        with self._lock:
            return self._conditional_update(self._completion_requests, request_id, expect, changes)

    def delete_completion_request(self, request_id: str) -> None:
        with self._lock:
            if self._completion_requests.pop(request_id, None) is not None:
                self._persist()

    # --- Cancel requests ---

    def insert_cancel_request(self, request: CancelRequest) -> CancelRequest:
        with self._lock:
            for existing in self._cancel_requests.values():
                if existing.session_id == request.session_id and existing.is_open:
                    raise StateConflictError(
                        f"A cancellation request is already open for session {request.session_id}",
                        field="cancel_request",
                    )
            self._cancel_requests[request.id] = request.model_copy(deep=True)
            self._persist()
            return request.model_copy(deep=True)

    def get_cancel_request(self, request_id: str) -> CancelRequest:
        with self._lock:
            request = self._cancel_requests.get(request_id)
            if request is None:
                raise NotFoundError(f"Cancel request not found: {request_id}")
            return request.model_copy(deep=True)

    def list_cancel_requests(self, session_id: str) -> list[CancelRequest]:
        with self._lock:
            requests = [r for r in self._cancel_requests.values() if r.session_id == session_id]
            return [r.model_copy(deep=True) for r in sorted(requests, key=lambda r: r.created_at)]

    def update_cancel_request(
        self, request_id: str, *, expect: Mapping[str, Any], changes: Mapping[str, Any],
    ) -> CancelRequest | None:
        with self._lock:
            return self._conditional_update(self._cancel_requests, request_id, expect, changes)

    def delete_cancel_request(self, request_id: str) -> None:
        with self._lock:
            if self._cancel_requests.pop(request_id, None) is not None:
                self._persist()

    # --- Reviews ---

    def insert_review(self, review: Review) -> bool:
        key = (review.session_id, review.reviewer_id)
        with self._lock:
            if key in self._reviews:
                return False
            self._reviews[key] = review.model_copy(deep=True)
            self._persist()
            return True

    def list_reviews(self, *, session_id: str | None = None, reviewee_id: str | None = None) -> list[Review]:
        with self._lock:
            reviews = [
                r for r in self._reviews.values()
                if (session_id is None or r.session_id == session_id)
                and (reviewee_id is None or r.reviewee_id == reviewee_id)
            ]
            return [r.model_copy(deep=True) for r in sorted(reviews, key=lambda r: r.created_at)]

    # --- Badges and activity counts ---

    def grant_badge(self, user_id: str, badge_name: str, granted_at: datetime | None = None) -> bool:
        key = (user_id, badge_name)
        with self._lock:
            if key in self._badge_grants:
                return False
            self._badge_grants[key] = UserBadgeGrant(
                user_id=user_id, badge_name=badge_name, granted_at=granted_at or _utcnow(),
            )
            self._persist()
            return True

    def list_badge_grants(self, user_id: str) -> list[UserBadgeGrant]:
        with self._lock:
            grants = [g for (uid, _), g in self._badge_grants.items() if uid == user_id]
            return [g.model_copy() for g in sorted(grants, key=lambda g: g.granted_at)]

    def record_verified_skill(self, user_id: str, skill_id: str) -> bool:
        return self._add_to_set(self._verified_skills, user_id, skill_id)

    def count_verified_skills(self, user_id: str) -> int:
        with self._lock:
            return len(self._verified_skills.get(user_id, ()))

    def record_forum_post(self, user_id: str, post_id: str) -> bool:
        return self._add_to_set(self._forum_posts, user_id, post_id)

    def count_forum_posts(self, user_id: str) -> int:
        with self._lock:
            return len(self._forum_posts.get(user_id, ()))

    # --- Notifications ---

    def add_notification(self, intent: NotificationIntent) -> NotificationIntent:
        with self._lock:
            self._notifications.append(intent.model_copy())
            self._persist()
            return intent

    def list_notifications(self, recipient_id: str) -> list[NotificationIntent]:
        with self._lock:
            return [n.model_copy() for n in self._notifications if n.recipient_id == recipient_id]

    # --- Internals ---

    def _conditional_update(
        self,
        table: dict[str, ModelT],
        doc_id: str,
        expect: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> ModelT | None:
        current = table.get(doc_id)
        if current is None:
            raise NotFoundError(f"Document not found: {doc_id}")
        if not _matches(current, expect):
            return None
        updated = current.model_copy(update=dict(changes), deep=True)
        table[doc_id] = updated
        self._persist()
        return updated.model_copy(deep=True)

    def _add_to_set(self, table: dict[str, set[str]], user_id: str, item: str) -> bool:
        with self._lock:
            items = table.setdefault(user_id, set())
            if item in items:
                return False
            items.add(item)
            self._persist()
            return True

    def _build_snapshot(self) -> dict:
        return {
            "sessions": [s.model_dump(mode="json") for s in self._sessions.values()],
            "completion_requests": [r.model_dump(mode="json") for r in self._completion_requests.values()],
            "cancel_requests": [r.model_dump(mode="json") for r in self._cancel_requests.values()],
            "reviews": [r.model_dump(mode="json") for r in self._reviews.values()],
            "badge_grants": [g.model_dump(mode="json") for g in self._badge_grants.values()],
            "verified_skills": {uid: sorted(items) for uid, items in self._verified_skills.items()},
            "forum_posts": {uid: sorted(items) for uid, items in self._forum_posts.items()},
            "notifications": [n.model_dump(mode="json") for n in self._notifications],
        }

    def _persist(self) -> None:
        if self._state_file is None:
            return
        payload = self._build_snapshot()
        try:
            self._state_file.parent.mkdir(parents=True, exist_ok=True)
            temp = self._state_file.with_suffix(".tmp")
            temp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
            temp.replace(self._state_file)
        except OSError:
            logger.exception("Failed to persist workflow state to %s", self._state_file)

    def _load_state(self) -> None:
        if self._state_file is None or not self._state_file.exists():
            return
        raw = json.loads(self._state_file.read_text(encoding="utf-8"))
        for item in raw.get("sessions", []):
            session = Session.model_validate(item)
            self._sessions[session.id] = session
        for item in raw.get("completion_requests", []):
            record = CompletionRequest.model_validate(item)
            self._completion_requests[record.id] = record
        for item in raw.get("cancel_requests", []):
            request = CancelRequest.model_validate(item)
            self._cancel_requests[request.id] = request
        for item in raw.get("reviews", []):
            review = Review.model_validate(item)
            self._reviews[(review.session_id, review.reviewer_id)] = review
        for item in raw.get("badge_grants", []):
            grant = UserBadgeGrant.model_validate(item)
            self._badge_grants[(grant.user_id, grant.badge_name)] = grant
        self._verified_skills = {uid: set(items) for uid, items in raw.get("verified_skills", {}).items()}
        self._forum_posts = {uid: set(items) for uid, items in raw.get("forum_posts", {}).items()}
        self._notifications = [NotificationIntent.model_validate(n) for n in raw.get("notifications", [])]
        logger.info("Loaded %d sessions from %s", len(self._sessions), self._state_file)
