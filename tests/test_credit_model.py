"""
tests/test_credit_model.py — Credit Risk Model Unit Tests
==========================================================
"""

from __future__ import annotations

import pytest

from kudos.database.models import CreditScore, CreditTier
from kudos.engine.credit import (
    BASE_SCORE,
    CREDIT_TIERS,
    MAX_SCORE,
    MIN_SCORE,
    compute_score,
    recompute,
    refresh,
    terms_for_tier,
    tier_for_score,
    total_due,
)


class TestScore:
    def test_new_borrower_starts_at_base(self):
        assert compute_score(0, 0, 0) == BASE_SCORE == 550

    def test_weights(self):
        # 550 + 15*2 + 10*1 - 40*1
        assert compute_score(2, 1, 1) == 550

    def test_clamped_to_range(self):
        assert compute_score(100, 0, 100) == MAX_SCORE
        assert compute_score(0, 100, 0) == MIN_SCORE

    def test_late_payment_never_raises_score(self):
        assert compute_score(3, 1, 3) < compute_score(3, 0, 3)


class TestTiers:
    @pytest.mark.parametrize(
        "score, tier",
        [
            (300, CreditTier.BRONZE),
            (599, CreditTier.BRONZE),
            (600, CreditTier.SILVER),
            (699, CreditTier.SILVER),
            (700, CreditTier.GOLD),
            (750, CreditTier.PLATINUM),
            (799, CreditTier.PLATINUM),
            (800, CreditTier.DIAMOND),
            (850, CreditTier.DIAMOND),
        ],
    )
    def test_tier_boundaries(self, score, tier):
        assert tier_for_score(score) == tier

    def test_bands_ordered_highest_first(self):
        floors = [b.min_score for b in CREDIT_TIERS]
        assert floors == sorted(floors, reverse=True)

    def test_better_tier_never_gets_worse_terms(self):
        bands = list(reversed(CREDIT_TIERS))
        for lower, higher in zip(bands, bands[1:]):
            assert higher.credit_limit > lower.credit_limit
            assert higher.interest_rate_pct < lower.interest_rate_pct

    def test_terms_lookup(self):
        band = terms_for_tier("bronze")
        assert (band.credit_limit, band.interest_rate_pct) == (500, 15.0)
        assert terms_for_tier(CreditTier.DIAMOND).credit_limit == 10_000


class TestRefresh:
    def test_refresh_derives_everything_from_counters(self):
        record = CreditScore(
            user_id="u1",
            on_time_payments=4,
            late_payments=0,
            total_loans_completed=4,
        )
        refresh(record)
        # 550 + 60 + 40
        assert record.score == 650
        assert record.tier == "silver"
        assert record.credit_limit == 1_000
        assert record.interest_rate_pct == 12.0

    def test_recompute_is_consistent(self):
        score, tier = recompute(10, 0, 10)
        assert tier == tier_for_score(score)


class TestTotalDue:
    @pytest.mark.parametrize(
        "principal, rate, expected",
        [
            (500, 15.0, 575),
            (100, 12.0, 112),
            (1, 15.0, 2),       # 1.15 rounds up
            (333, 8.0, 360),    # 359.64 rounds up
            (1000, 5.0, 1050),
        ],
    )
    def test_rounds_up_to_whole_coins(self, principal, rate, expected):
        assert total_due(principal, rate) == expected
