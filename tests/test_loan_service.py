"""
tests/test_loan_service.py — Loan State Machine Tests
======================================================

Request → repay / default transitions, credit updates, coin movements
and the single-active-loan rule.  Time is pinned with ``now=``.
"""

from __future__ import annotations

import json
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from conftest import NOW
from kudos.database.models import LedgerEntry, Loan, LoanStatus, Setting
from kudos.exceptions import (
    CreditLimitExceeded,
    InsufficientFunds,
    InvalidRequest,
    LoanAlreadyActive,
    LoanNotActive,
    LoanNotFound,
)
from kudos.services import loan_service
from kudos.services.loan_service import (
    get_credit_overview,
    get_loan,
    mark_defaults,
    repay,
    request_loan,
)


class TestRequest:
    def test_new_borrower_gets_coins_and_active_loan(self, store, notifier):
        loan = request_loan(store, "u1", 100, 14, now=NOW, notifier=notifier)
        assert loan.status == LoanStatus.ACTIVE
        assert loan.interest_rate_pct == 15.0
        assert loan.total_due == 115
        assert loan.due_date == NOW + timedelta(days=14)
        assert store.get_balance("u1", "coins") == 100
        assert notifier.types() == ["loan_issued"]

    def test_disbursement_does_not_count_as_earnings(self, store):
        request_loan(store, "u1", 100, 7, now=NOW)
        assert store.get_wallet("u1").total_earned == 0

    def test_second_active_loan_rejected(self, store):
        request_loan(store, "u1", 100, 14, now=NOW)
        with pytest.raises(LoanAlreadyActive):
            request_loan(store, "u1", 50, 14, now=NOW)
        assert store.get_balance("u1", "coins") == 100

    def test_over_limit_rejected(self, store):
        with pytest.raises(CreditLimitExceeded) as exc_info:
            request_loan(store, "u1", 501, 14, now=NOW)
        assert exc_info.value.limit == 500
        assert store.get_balance("u1", "coins") == 0

    @pytest.mark.parametrize("principal, term", [(0, 14), (-5, 14), (100, 10)])
    def test_invalid_terms(self, store, principal, term):
        with pytest.raises(InvalidRequest):
            request_loan(store, "u1", principal, term, now=NOW)

    def test_unique_index_race_maps_to_already_active(self, store, monkeypatch):
        first = request_loan(store, "u1", 100, 14, now=NOW)
        real_active_loan = loan_service._active_loan
        calls = []

        def stale_then_real(session, user_id):
            calls.append(user_id)
            # First look misses the loan, as a racing request would
            return None if len(calls) == 1 else real_active_loan(session, user_id)

        monkeypatch.setattr(loan_service, "_active_loan", stale_then_real)
        with pytest.raises(LoanAlreadyActive) as exc_info:
            request_loan(store, "u1", 50, 14, now=NOW)
        assert exc_info.value.loan_id == first.id
        assert store.get_balance("u1", "coins") == 100

    def test_other_integrity_errors_propagate(self, store, db_engine, monkeypatch):
        # amount_repaid (0) above total_due trips ck_loans_repaid_le_due
        monkeypatch.setattr(loan_service.credit_model, "total_due", lambda principal, rate: -1)
        with pytest.raises(IntegrityError):
            request_loan(store, "u1", 100, 14, now=NOW)
        with Session(db_engine) as s:
            assert s.scalar(select(func.count()).select_from(Loan)) == 0
        assert store.get_balance("u1", "coins") == 0


class TestRepay:
    def test_full_repayment_on_time(self, store, notifier):
        loan = request_loan(store, "u1", 100, 14, now=NOW)
        store.apply("u1", "coins", 15, "referral", "r1")

        repaid = repay(store, loan.id, "u1", 115, now=NOW + timedelta(days=3), notifier=notifier)
        assert repaid.status == LoanStatus.REPAID
        assert store.get_balance("u1", "coins") == 0

        overview = get_credit_overview(store, "u1")
        assert overview.on_time_payments == 1
        assert overview.total_loans_completed == 1
        assert overview.score > 550
        assert overview.can_borrow is True
        assert "loan_repaid" in notifier.types()
        # Good Borrower badge
        assert "badge" in notifier.types()

    def test_partial_payments_then_overpay_is_capped(self, store):
        loan = request_loan(store, "u1", 100, 14, now=NOW)
        store.apply("u1", "coins", 100, "referral", "r1")

        partial = repay(store, loan.id, "u1", 40, now=NOW)
        assert partial.status == LoanStatus.ACTIVE
        assert partial.outstanding == 75

        final = repay(store, loan.id, "u1", 1_000, now=NOW)
        assert final.status == LoanStatus.REPAID
        assert final.amount_repaid == 115
        assert store.get_balance("u1", "coins") == 85

    def test_late_repayment_counts_as_late(self, store):
        loan = request_loan(store, "u1", 100, 7, now=NOW)
        store.apply("u1", "coins", 15, "referral", "r1")
        repay(store, loan.id, "u1", 115, now=NOW + timedelta(days=8))
        overview = get_credit_overview(store, "u1")
        assert overview.late_payments == 1
        assert overview.on_time_payments == 0

    def test_insufficient_funds_leaves_loan_untouched(self, store):
        loan = request_loan(store, "u1", 100, 14, now=NOW)
        with pytest.raises(InsufficientFunds):
            repay(store, loan.id, "u1", 115, now=NOW)
        again = get_loan(store, loan.id)
        assert again.amount_repaid == 0
        assert again.payments_count == 0
        assert store.get_balance("u1", "coins") == 100

    def test_unknown_or_foreign_loan(self, store):
        loan = request_loan(store, "u1", 100, 14, now=NOW)
        with pytest.raises(LoanNotFound):
            repay(store, "no-such-loan", "u1", 10, now=NOW)
        with pytest.raises(LoanNotFound):
            repay(store, loan.id, "u2", 10, now=NOW)

    def test_resolved_loan_rejects_payment(self, store):
        loan = request_loan(store, "u1", 100, 14, now=NOW)
        store.apply("u1", "coins", 15, "referral", "r1")
        repay(store, loan.id, "u1", 115, now=NOW)
        with pytest.raises(LoanNotActive):
            repay(store, loan.id, "u1", 1, now=NOW)


class TestDefault:
    def test_overdue_loan_defaults_and_collects(self, store, notifier, db_engine):
        loan = request_loan(store, "u1", 100, 7, now=NOW)

        defaulted = mark_defaults(store, now=NOW + timedelta(days=8), notifier=notifier)
        assert [d.id for d in defaulted] == [loan.id]
        assert defaulted[0].status == LoanStatus.DEFAULTED
        assert defaulted[0].amount_collected == 100
        assert store.get_balance("u1", "coins") == 0

        overview = get_credit_overview(store, "u1")
        assert overview.late_payments == 1
        assert overview.score < 550
        assert notifier.types() == ["loan_defaulted"]

        with Session(db_engine) as s:
            penalty = s.scalar(select(LedgerEntry).where(LedgerEntry.reason == "loan_penalty"))
        assert (penalty.amount, penalty.reference_id) == (-100, loan.id)

    def test_sweep_is_exactly_once(self, store):
        request_loan(store, "u1", 100, 7, now=NOW)
        later = NOW + timedelta(days=8)
        assert len(mark_defaults(store, now=later)) == 1
        assert mark_defaults(store, now=later) == []

    def test_not_yet_due_is_left_alone(self, store):
        request_loan(store, "u1", 100, 7, now=NOW)
        assert mark_defaults(store, now=NOW + timedelta(days=6)) == []

    def test_collection_can_be_disabled(self, store, cache, db_engine):
        with Session(db_engine) as s:
            s.get(Setting, "loans.collect_on_default").value_json = json.dumps(False)
            s.commit()
        cache.handle_notify("settings")

        request_loan(store, "u1", 100, 7, now=NOW)
        (loan,) = mark_defaults(store, now=NOW + timedelta(days=8))
        assert loan.amount_collected == 0
        assert store.get_balance("u1", "coins") == 100

    def test_user_may_borrow_again_after_default(self, store):
        request_loan(store, "u1", 100, 7, now=NOW)
        mark_defaults(store, now=NOW + timedelta(days=8))
        again = request_loan(store, "u1", 50, 7, now=NOW + timedelta(days=9))
        assert again.status == LoanStatus.ACTIVE


class TestOverview:
    def test_unknown_user_gets_neutral_terms(self, store):
        overview = get_credit_overview(store, "ghost")
        assert (overview.score, overview.tier, overview.credit_limit) == (550, "bronze", 500)
        assert overview.max_borrow_amount == 500
        assert overview.active_loans == []

    def test_active_loan_blocks_borrowing(self, store):
        request_loan(store, "u1", 100, 14, now=NOW)
        overview = get_credit_overview(store, "u1")
        assert overview.can_borrow is False
        assert overview.max_borrow_amount == 0
        assert len(overview.active_loans) == 1
