"""Badge evaluation: count-based rules over a user's history, granted idempotently.

Counts are re-derived from the store on every trigger rather than kept as
running counters, so replayed or out-of-order events cannot make them drift.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from skill_exchange.config import BadgeThresholds
from skill_exchange.models import Badge, BadgeTrigger, Session, SessionStatus
from skill_exchange.store import SessionStore

logger = logging.getLogger(__name__)

FIRST_EXCHANGE = "First Exchange"
MENTOR = "Mentor"
SKILL_MASTER = "Skill Master"
COMMUNITY_HELPER = "Community Helper"


def build_catalog(thresholds: BadgeThresholds | None = None) -> list[Badge]:
    t = thresholds or BadgeThresholds()
    return [
        Badge(
            name=FIRST_EXCHANGE,
            description="Awarded for completing your first skill exchange session.",
            criteria=f"Complete {t.first_exchange} skill exchange session",
            trigger=BadgeTrigger.SESSION_COMPLETED,
            threshold=t.first_exchange,
        ),
        Badge(
            name=MENTOR,
            description="Awarded for sharing your skill with others.",
            criteria=f"Complete {t.mentor} sessions as the skill provider",
            trigger=BadgeTrigger.SESSION_COMPLETED,
            threshold=t.mentor,
        ),
        Badge(
            name=SKILL_MASTER,
            description="Awarded for building a broad set of verified skills.",
            criteria=f"Have {t.skill_master} verified skills",
            trigger=BadgeTrigger.SKILL_VERIFIED,
            threshold=t.skill_master,
        ),
        Badge(
            name=COMMUNITY_HELPER,
            description="Awarded for contributing to the community forum.",
            criteria=f"Create {t.community_helper} forum posts",
            trigger=BadgeTrigger.FORUM_POST_CREATED,
            threshold=t.community_helper,
        ),
    ]


def provider_id(session: Session) -> str:
    """Return the participant treated as the skill provider of a session.

    The participant-A slot is the provider. Both participants offer a skill in
    an exchange, so slot order is only an approximation of the role.
    """
    return session.participant_a


def count_completed_sessions(store: SessionStore, user_id: str) -> int:
    return sum(
        1 for s in store.list_sessions()
        if s.status == SessionStatus.COMPLETED and s.is_participant(user_id)
    )


def count_completed_provider_sessions(store: SessionStore, user_id: str) -> int:
    return sum(
        1 for s in store.list_sessions()
        if s.status == SessionStatus.COMPLETED and provider_id(s) == user_id
    )


@dataclass(frozen=True)
class BadgeRule:
    badge: Badge
    count: Callable[[SessionStore, str], int]

    def qualifies(self, store: SessionStore, user_id: str) -> bool:
        return self.count(store, user_id) >= self.badge.threshold


class BadgeEvaluator:
    """Re-checks every badge bound to a trigger and grants the ones a user qualifies for."""

    def __init__(self, store: SessionStore, thresholds: BadgeThresholds | None = None) -> None:
        self.store = store
        self.catalog = build_catalog(thresholds)
        counters: dict[str, Callable[[SessionStore, str], int]] = {
            FIRST_EXCHANGE: count_completed_sessions,
            MENTOR: count_completed_provider_sessions,
            SKILL_MASTER: lambda st, uid: st.count_verified_skills(uid),
            COMMUNITY_HELPER: lambda st, uid: st.count_forum_posts(uid),
        }
        self.rules = [BadgeRule(badge=b, count=counters[b.name]) for b in self.catalog]

    def rules_for(self, trigger: BadgeTrigger) -> list[BadgeRule]:
        return [r for r in self.rules if r.badge.trigger == trigger]

    def evaluate(self, user_id: str, trigger: BadgeTrigger) -> list[str]:
        """Evaluate all rules for ``trigger``. Returns names of newly granted badges.

        A failing rule is logged and skipped; the remaining rules still run.
        """
        granted: list[str] = []
        for rule in self.rules_for(trigger):
            name = rule.badge.name
            try:
                if not rule.qualifies(self.store, user_id):
                    logger.debug("User %s does not qualify for %s", user_id, name)
                    continue
                if self.store.grant_badge(user_id, name):
                    logger.info("Badge %r granted to user %s", name, user_id)
                    granted.append(name)
            except Exception:
                logger.exception("Badge rule %r failed for user %s", name, user_id)
        return granted

    def user_badges(self, user_id: str) -> list[dict]:
        by_name = {b.name: b for b in self.catalog}
        result = []
        for grant in self.store.list_badge_grants(user_id):
            badge = by_name.get(grant.badge_name)
            result.append({
                "name": grant.badge_name,
                "description": badge.description if badge else "",
                "granted_at": grant.granted_at.isoformat(),
            })
        return result
