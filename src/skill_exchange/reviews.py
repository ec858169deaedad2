"""Review gate: one review per participant, only after the session completed."""

from __future__ import annotations

import logging
from datetime import datetime

from skill_exchange.errors import StateConflictError, ValidationError
from skill_exchange.models import Review, Session, SessionStatus
from skill_exchange.store import SessionStore

logger = logging.getLogger(__name__)


def parse_rating(value: object) -> int:
    if isinstance(value, bool):
        raise ValidationError("rating must be an integer between 1 and 5")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or not 1 <= value <= 5:
        raise ValidationError("rating must be an integer between 1 and 5")
    return value


class ReviewGate:
    def __init__(self, store: SessionStore, comment_max_length: int = 1000) -> None:
        self.store = store
        self.comment_max_length = comment_max_length

    def submit(
        self,
        session: Session,
        reviewer_id: str,
        rating: object,
        comment: str | None,
        now: datetime,
        reviewee_id: str | None = None,
    ) -> Review:
        if session.status != SessionStatus.COMPLETED:
            raise StateConflictError(
                f"Session {session.id} is {session.status.value}; reviews open once it is completed",
                field="status",
            )
        counterpart = session.counterpart(reviewer_id)
        if reviewee_id is not None and reviewee_id != counterpart:
            raise ValidationError("reviewee_id must be the other participant of the session")

        score = parse_rating(rating)
        text = (comment or "").strip()
        if not text:
            raise ValidationError("comment is required")
        if len(text) > self.comment_max_length:
            raise ValidationError(f"comment must be at most {self.comment_max_length} characters")

        review = Review(
            session_id=session.id,
            reviewer_id=reviewer_id,
            reviewee_id=counterpart,
            rating=score,
            comment=text,
            created_at=now,
        )
        if not self.store.insert_review(review):
            raise StateConflictError("You have already reviewed this session", field="reviewer_id")
        logger.info("Review for session %s submitted by %s (%d/5)", session.id, reviewer_id, score)
        return review

    def list_reviews(self, session_id: str) -> list[Review]:
        return self.store.list_reviews(session_id=session_id)

    def rating_summary(self, user_id: str) -> dict:
        """Average rating and number of reviews a user has received."""
        reviews = self.store.list_reviews(reviewee_id=user_id)
        if not reviews:
            return {"user_id": user_id, "average_rating": None, "review_count": 0}
        average = sum(r.rating for r in reviews) / len(reviews)
        return {"user_id": user_id, "average_rating": round(average, 2), "review_count": len(reviews)}
