"""
kudos.engine.badges — Badge Check Pipeline
===========================================

Handler-registry evaluation of badge triggers.  Each BadgeTrigger maps to
a pure handler that receives a BadgeContext and the badge's
``trigger_config`` JSON.

This module is pure calculation — no database I/O.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from kudos.database.models import BadgeTrigger
from kudos.engine.credit import CREDIT_TIERS

if TYPE_CHECKING:
    from kudos.database.models import Badge
    from kudos.engine.cache import ConfigCache

logger = logging.getLogger(__name__)

_TIER_RANK: dict[str, int] = {
    band.tier.value: rank for rank, band in enumerate(reversed(CREDIT_TIERS))
}


@dataclass(frozen=True, slots=True)
class BadgeContext:
    """Snapshot of user state passed to trigger handlers.

    Parameters
    ----------
    total_earned : Wallet.total_earned after this unit of work.
    streak_days : Current daily check-in streak.
    reason_counts : Ledger entry count per reason (positive entries only).
    loans_repaid : CreditScore.total_loans_completed.
    credit_tier : Current credit tier name (or None if never scored).
    """

    total_earned: int = 0
    streak_days: int = 0
    reason_counts: dict[str, int] = field(default_factory=dict)
    loans_repaid: int = 0
    credit_tier: str | None = None


# ---------------------------------------------------------------------------
# Trigger handlers — pure functions (config, ctx) → bool
# ---------------------------------------------------------------------------
def _check_total_earned(config: dict, ctx: BadgeContext) -> bool:
    """Config: {"value": 1000}"""
    value = config.get("value")
    if value is None:
        return False
    return ctx.total_earned >= value


def _check_reason_count(config: dict, ctx: BadgeContext) -> bool:
    """Fires when the user has N credited ledger entries with a reason.

    Config: {"reason": "post", "count": 10}
    """
    reason = config.get("reason", "")
    count = config.get("count")
    if count is None or not reason:
        return False
    return ctx.reason_counts.get(reason, 0) >= count


def _check_streak_days(config: dict, ctx: BadgeContext) -> bool:
    value = config.get("value")
    if value is None:
        return False
    return ctx.streak_days >= value


def _check_loans_repaid(config: dict, ctx: BadgeContext) -> bool:
    value = config.get("value")
    if value is None:
        return False
    return ctx.loans_repaid >= value


def _check_credit_tier(config: dict, ctx: BadgeContext) -> bool:
    """Fires when the user's tier reaches (or passes) a tier.

    Config: {"tier": "gold"}
    """
    target = _TIER_RANK.get(config.get("tier", ""))
    if target is None or ctx.credit_tier is None:
        return False
    return _TIER_RANK.get(ctx.credit_tier, -1) >= target


TRIGGER_HANDLERS: dict[str, Callable[[dict, BadgeContext], bool]] = {
    BadgeTrigger.TOTAL_EARNED: _check_total_earned,
    BadgeTrigger.REASON_COUNT: _check_reason_count,
    BadgeTrigger.STREAK_DAYS: _check_streak_days,
    BadgeTrigger.LOANS_REPAID: _check_loans_repaid,
    BadgeTrigger.CREDIT_TIER: _check_credit_tier,
    # BadgeTrigger.MANUAL has no handler: awarded by operators only
}


# ---------------------------------------------------------------------------
# Main check function
# ---------------------------------------------------------------------------
def check_badges(
    cache: ConfigCache,
    ctx: BadgeContext,
    already_earned: set[int],
) -> list[Badge]:
    """Return the active badges newly earned under *ctx*."""
    newly_earned: list[Badge] = []

    for badge in cache.get_active_badges():
        if badge.id in already_earned:
            continue

        handler = TRIGGER_HANDLERS.get(badge.trigger_type)
        if handler is None:
            continue

        if handler(badge.trigger_config or {}, ctx):
            newly_earned.append(badge)
            logger.info("Badge triggered: %s (id=%d)", badge.slug, badge.id)

    return newly_earned
