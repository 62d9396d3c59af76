"""
kudos.engine.rules — Reward Rule Engine
========================================

Pure, table-driven mapping from an :class:`EconomyEvent` to the currency
deltas it produces.  No DB I/O inside the engine; amounts are read from
the settings cache so operators can tune them.

Identical events (same type, reference and metadata) always produce the
same deltas, which is what lets the ledger's duplicate rejection make
replays safe.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from kudos.constants import Currency, Reason
from kudos.engine.events import EconomyEvent, EventType
from kudos.exceptions import InvalidRequest, UnknownEventType

if TYPE_CHECKING:
    from kudos.engine.cache import ConfigCache

logger = logging.getLogger(__name__)

__all__ = ["CurrencyDelta", "RewardResult", "RULES", "evaluate"]


@dataclass(frozen=True, slots=True)
class CurrencyDelta:
    """One signed change to one user's balance in one currency."""

    user_id: str
    currency: Currency
    amount: int
    reason: Reason
    reference_id: str


@dataclass
class RewardResult:
    """Outcome of processing one event through the orchestrator."""

    points_delta: int = 0
    coins_delta: int = 0
    deltas: list[CurrencyDelta] = field(default_factory=list)
    new_balances: dict[str, int] = field(default_factory=dict)
    duplicate: bool = False
    badges_earned: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Metadata helpers
# ---------------------------------------------------------------------------
def _meta_int(event: EconomyEvent, key: str, default: int | None = None) -> int:
    raw = event.metadata.get(key, default)
    if raw is None:
        raise InvalidRequest(f"{event.event_type} requires metadata.{key}")
    if isinstance(raw, bool):
        raise InvalidRequest(f"metadata.{key} must be an integer")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise InvalidRequest(f"metadata.{key} must be an integer") from None


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def _points(event: EconomyEvent, amount: int, reason: Reason) -> CurrencyDelta:
    return CurrencyDelta(event.user_id, Currency.POINTS, amount, reason, event.reference_id)


def _coins(event: EconomyEvent, amount: int, reason: Reason) -> CurrencyDelta:
    return CurrencyDelta(event.user_id, Currency.COINS, amount, reason, event.reference_id)


# ---------------------------------------------------------------------------
# Rule handlers — (event, cache) → deltas
# ---------------------------------------------------------------------------
def _post_created(event: EconomyEvent, cache: ConfigCache) -> list[CurrencyDelta]:
    return [_points(event, cache.get_int("rewards.post_points", 5), Reason.POST)]


def _challenge_completed(event: EconomyEvent, cache: ConfigCache) -> list[CurrencyDelta]:
    """Config-driven reward carried on the challenge itself, capped."""
    points = _meta_int(
        event, "points_reward", cache.get_int("rewards.challenge_default_points", 10)
    )
    coins = _meta_int(event, "coins_reward", 0)
    points = _clamp(points, 0, cache.get_int("rewards.challenge_max_points", 500))
    coins = _clamp(coins, 0, cache.get_int("rewards.challenge_max_coins", 100))

    deltas = []
    if points:
        deltas.append(_points(event, points, Reason.CHALLENGE))
    if coins:
        deltas.append(_coins(event, coins, Reason.CHALLENGE))
    return deltas


def _streak_bonus(event: EconomyEvent, cache: ConfigCache) -> list[CurrencyDelta]:
    days = _meta_int(event, "streak_days")
    if days < 1:
        raise InvalidRequest("metadata.streak_days must be at least 1")
    per_day = cache.get_int("rewards.streak_points_per_day", 3)
    cap = cache.get_int("rewards.streak_points_cap", 30)
    return [_points(event, min(per_day * days, cap), Reason.STREAK)]


def _top_comment(event: EconomyEvent, cache: ConfigCache) -> list[CurrencyDelta]:
    return [
        _coins(event, cache.get_int("rewards.top_comment_coins", 5), Reason.TOP_COMMENT),
        _points(event, cache.get_int("rewards.top_comment_points", 50), Reason.TOP_COMMENT),
    ]


def _referral_claimed(event: EconomyEvent, cache: ConfigCache) -> list[CurrencyDelta]:
    role = event.metadata.get("role")
    if role == "referrer":
        amount = cache.get_int("rewards.referrer_coins", 50)
    elif role == "referee":
        amount = cache.get_int("rewards.referee_coins", 25)
    else:
        raise InvalidRequest("metadata.role must be 'referrer' or 'referee'")
    return [_coins(event, amount, Reason.REFERRAL)]


def _tip_sent(event: EconomyEvent, cache: ConfigCache) -> list[CurrencyDelta]:
    """Sender pays, receiver earns; both legs share the reference id."""
    receiver = event.metadata.get("receiver_id")
    if not receiver:
        raise InvalidRequest("tip_sent requires metadata.receiver_id")
    if receiver == event.user_id:
        raise InvalidRequest("Cannot tip yourself")
    amount = _meta_int(event, "amount")
    if amount <= 0:
        raise InvalidRequest("Tip amount must be positive")
    return [
        _coins(event, -amount, Reason.TIP_SENT),
        CurrencyDelta(
            str(receiver), Currency.COINS, amount, Reason.TIP_RECEIVED, event.reference_id
        ),
    ]


def _badge_earned(event: EconomyEvent, cache: ConfigCache) -> list[CurrencyDelta]:
    points = _meta_int(event, "points_reward", 0)
    if points < 0:
        raise InvalidRequest("Badge reward cannot be negative")
    return [_points(event, points, Reason.BADGE)] if points else []


RULES: dict[str, Callable[[EconomyEvent, ConfigCache], list[CurrencyDelta]]] = {
    EventType.POST_CREATED: _post_created,
    EventType.CHALLENGE_COMPLETED: _challenge_completed,
    EventType.STREAK_BONUS: _streak_bonus,
    EventType.TOP_COMMENT: _top_comment,
    EventType.REFERRAL_CLAIMED: _referral_claimed,
    EventType.TIP_SENT: _tip_sent,
    EventType.BADGE_EARNED: _badge_earned,
}


def evaluate(event: EconomyEvent, cache: ConfigCache) -> list[CurrencyDelta]:
    """Map *event* to its currency deltas.

    Raises
    ------
    UnknownEventType
        If no rule exists for ``event.event_type``.
    InvalidRequest
        If the event's metadata is malformed for its type.
    """
    handler = RULES.get(event.event_type)
    if handler is None:
        raise UnknownEventType(event.event_type)
    deltas = [d for d in handler(event, cache) if d.amount != 0]
    logger.debug(
        "Evaluated %s/%s for %s → %d deltas",
        event.event_type, event.reference_id, event.user_id, len(deltas),
    )
    return deltas
