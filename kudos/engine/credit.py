"""
kudos.engine.credit — Credit Risk Model
========================================

Pure functions from repayment history to score, tier and loan terms.

    history (on_time, late, completed) → score → tier → (limit, rate)

Each arrow is a pure function, so a tier can never disagree with its
score and terms can never disagree with their tier.  Called by the loan
state machine at loan resolution only.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from typing import TYPE_CHECKING

from kudos.database.models import CreditTier

if TYPE_CHECKING:
    from kudos.database.models import CreditScore

MIN_SCORE = 300
MAX_SCORE = 850
BASE_SCORE = 550

ON_TIME_WEIGHT = 15
COMPLETED_WEIGHT = 10
LATE_PENALTY = 40


@dataclass(frozen=True, slots=True)
class TierBand:
    tier: CreditTier
    min_score: int
    credit_limit: int
    interest_rate_pct: float


# Ordered highest first; the first band whose floor the score reaches wins
CREDIT_TIERS: tuple[TierBand, ...] = (
    TierBand(CreditTier.DIAMOND, 800, 10_000, 5.0),
    TierBand(CreditTier.PLATINUM, 750, 5_000, 8.0),
    TierBand(CreditTier.GOLD, 700, 2_500, 10.0),
    TierBand(CreditTier.SILVER, 600, 1_000, 12.0),
    TierBand(CreditTier.BRONZE, MIN_SCORE, 500, 15.0),
)

_BANDS_BY_TIER: dict[str, TierBand] = {b.tier: b for b in CREDIT_TIERS}


def compute_score(on_time_payments: int, late_payments: int, total_loans_completed: int) -> int:
    raw = (
        BASE_SCORE
        + ON_TIME_WEIGHT * on_time_payments
        + COMPLETED_WEIGHT * total_loans_completed
        - LATE_PENALTY * late_payments
    )
    return max(MIN_SCORE, min(raw, MAX_SCORE))


def tier_for_score(score: int) -> CreditTier:
    for band in CREDIT_TIERS:
        if score >= band.min_score:
            return band.tier
    return CreditTier.BRONZE


def terms_for_tier(tier: str) -> TierBand:
    return _BANDS_BY_TIER[tier]


def recompute(
    on_time_payments: int, late_payments: int, total_loans_completed: int
) -> tuple[int, CreditTier]:
    """Return ``(score, tier)`` for a repayment history."""
    score = compute_score(on_time_payments, late_payments, total_loans_completed)
    return score, tier_for_score(score)


def refresh(record: CreditScore) -> CreditScore:
    """Re-derive score, tier, limit and rate on *record* from its counters."""
    score, tier = recompute(
        record.on_time_payments, record.late_payments, record.total_loans_completed
    )
    band = terms_for_tier(tier)
    record.score = score
    record.tier = tier.value
    record.credit_limit = band.credit_limit
    record.interest_rate_pct = band.interest_rate_pct
    return record


def total_due(principal: int, interest_rate_pct: float) -> int:
    """``principal × (1 + rate/100)`` rounded up to whole coins."""
    amount = Decimal(principal) * (Decimal(100) + Decimal(str(interest_rate_pct))) / Decimal(100)
    return int(amount.to_integral_value(rounding=ROUND_CEILING))
