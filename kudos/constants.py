"""
kudos.constants — Shared Constants & Helpers
=============================================

Single source of truth for currency/reason vocabularies, the creator
level formula, gift catalogue and timezone helpers.  Import from here
instead of duplicating in services and routes.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kudos.engine.cache import ConfigCache


# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------
class Currency(enum.StrEnum):
    POINTS = "points"
    COINS = "coins"


class Reason(enum.StrEnum):
    """Why a ledger entry exists.  Part of the idempotency key."""
    POST = "post"
    CHALLENGE = "challenge"
    STREAK = "streak"
    BADGE = "badge"
    TOP_COMMENT = "top_comment"
    REFERRAL = "referral"
    TIP_SENT = "tip_sent"
    TIP_RECEIVED = "tip_received"
    LOAN_DISBURSEMENT = "loan_disbursement"
    LOAN_REPAYMENT = "loan_repayment"
    LOAN_PENALTY = "loan_penalty"


# Positive amounts with these reasons count towards Wallet.total_earned
EARNING_REASONS: frozenset[Reason] = frozenset({
    Reason.POST,
    Reason.CHALLENGE,
    Reason.STREAK,
    Reason.BADGE,
    Reason.TOP_COMMENT,
    Reason.REFERRAL,
    Reason.TIP_RECEIVED,
})


# ---------------------------------------------------------------------------
# Gift catalogue for tips (coins)
# ---------------------------------------------------------------------------
GIFT_TYPES: dict[str, dict[str, object]] = {
    "heart": {"name": "Heart", "coins": 5, "icon": "\u2764"},            # ❤
    "coffee": {"name": "Coffee", "coins": 25, "icon": "\u2615"},         # ☕
    "star": {"name": "Star", "coins": 50, "icon": "\u2b50"},             # ⭐
    "trophy": {"name": "Trophy", "coins": 100, "icon": "\U0001f3c6"},    # 🏆
}

# Loan terms offered to borrowers
ALLOWED_TERM_DAYS: tuple[int, ...] = (7, 14, 30)


# ---------------------------------------------------------------------------
# Creator level formula
# ---------------------------------------------------------------------------
def earnings_for_level(level: int, cache: ConfigCache | None = None) -> int:
    """Total earnings required to move past *level*.

    Uses the exponential formula::

        required = level_base * (level_factor ** level)

    Parameters are read from the ``settings`` table via *cache*.
    Falls back to defaults (100, 1.25) if cache is unavailable.
    """
    if cache is not None:
        base = cache.get_int("economy.level_base", 100)
        factor = cache.get_float("economy.level_factor", 1.25)
    else:
        base = 100
        factor = 1.25
    return int(base * (factor ** level))


MAX_CREATOR_LEVEL = 100


def creator_level_for(total_earned: int, cache: ConfigCache | None = None) -> int:
    """Highest level whose threshold *total_earned* has reached (min 1)."""
    level = 1
    while level < MAX_CREATOR_LEVEL and total_earned >= earnings_for_level(level, cache):
        level += 1
    return level


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on round-trip; treat naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
