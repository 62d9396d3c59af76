"""
kudos.engine.events — EconomyEvent and EventType
=================================================

The universal event envelope.  Every reward trigger (post, challenge,
streak, top comment, referral, tip, badge) is normalized into an
EconomyEvent before the rule engine evaluates it.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime

from kudos.constants import Reason, utcnow

__all__ = ["EconomyEvent", "EventType", "EVENT_REASONS"]


class EventType(enum.StrEnum):
    POST_CREATED = "post_created"
    CHALLENGE_COMPLETED = "challenge_completed"
    STREAK_BONUS = "streak_bonus"
    TOP_COMMENT = "top_comment"
    REFERRAL_CLAIMED = "referral_claimed"
    TIP_SENT = "tip_sent"
    BADGE_EARNED = "badge_earned"


# Primary ledger reason per event type (tips also write TIP_RECEIVED)
EVENT_REASONS: dict[EventType, Reason] = {
    EventType.POST_CREATED: Reason.POST,
    EventType.CHALLENGE_COMPLETED: Reason.CHALLENGE,
    EventType.STREAK_BONUS: Reason.STREAK,
    EventType.TOP_COMMENT: Reason.TOP_COMMENT,
    EventType.REFERRAL_CLAIMED: Reason.REFERRAL,
    EventType.TIP_SENT: Reason.TIP_SENT,
    EventType.BADGE_EARNED: Reason.BADGE,
}


@dataclass(frozen=True, slots=True)
class EconomyEvent:
    """Normalized reward trigger.

    ``event_type`` is kept as the raw string the caller sent so an
    unrecognised type reaches the rule engine and is rejected there.
    ``reference_id`` links the event to its origin (post id, comment id,
    referral id, ...) and, with the reason and user, forms the
    idempotency key.
    """

    user_id: str
    event_type: str
    reference_id: str
    metadata: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
