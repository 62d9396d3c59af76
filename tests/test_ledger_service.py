"""
tests/test_ledger_service.py — Ledger Store Tests
==================================================

Balance arithmetic, non-negativity, idempotency keys, atomic multi-delta
units, archiving and the derived wallet fields.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from kudos.constants import Currency, Reason, as_utc
from kudos.database.models import LedgerEntry, Wallet
from kudos.engine.rules import CurrencyDelta
from kudos.exceptions import (
    ConcurrentModification,
    DuplicateApplication,
    InsufficientFunds,
    InvalidRequest,
    WalletArchived,
)


def _entry_count(engine) -> int:
    with Session(engine) as s:
        return s.scalar(select(func.count()).select_from(LedgerEntry))


class TestApply:
    def test_credit_creates_wallet_and_returns_balance(self, store):
        assert store.apply("u1", "points", 5, "post", "p1") == 5
        wallet = store.get_wallet("u1")
        assert wallet.points_balance == 5
        assert wallet.coins_balance == 0

    def test_entries_record_balance_after(self, store):
        store.apply("u1", "coins", 30, "referral", "r1")
        store.apply("u1", "coins", -10, "tip_sent", "t1")
        entries = store.list_entries("u1", currency="coins")
        assert [(e.amount, e.balance_after) for e in entries] == [(-10, 20), (30, 30)]

    def test_unknown_user_balance_is_zero(self, store):
        assert store.get_balance("ghost", "coins") == 0
        assert store.get_wallet("ghost") is None

    def test_debit_below_zero_rejected_and_balance_unchanged(self, store, db_engine):
        store.apply("u1", "coins", 10, "referral", "r1")
        with pytest.raises(InsufficientFunds) as exc_info:
            store.apply("u1", "coins", -11, "tip_sent", "t1")
        err = exc_info.value
        assert (err.balance, err.requested, err.currency) == (10, 11, "coins")
        assert store.get_balance("u1", "coins") == 10
        assert _entry_count(db_engine) == 1

    def test_debit_of_unknown_user_is_insufficient(self, store):
        with pytest.raises(InsufficientFunds):
            store.apply("nobody", "coins", -1, "tip_sent", "t1")

    def test_duplicate_key_rejected_with_prior_entry(self, store, db_engine):
        store.apply("u1", "points", 5, "post", "p1")
        with pytest.raises(DuplicateApplication) as exc_info:
            store.apply("u1", "points", 5, "post", "p1")
        assert exc_info.value.prior is not None
        assert exc_info.value.prior.amount == 5
        assert store.get_balance("u1", "points") == 5
        assert _entry_count(db_engine) == 1

    def test_same_reference_in_other_currency_is_distinct(self, store):
        store.apply("u1", "coins", 5, "top_comment", "c1")
        store.apply("u1", "points", 50, "top_comment", "c1")
        assert store.get_balance("u1", "coins") == 5
        assert store.get_balance("u1", "points") == 50

    def test_replayed_debit_reports_duplicate_not_insufficient(self, store):
        store.apply("u1", "coins", 10, "referral", "r1")
        store.apply("u1", "coins", -10, "tip_sent", "t1")
        with pytest.raises(DuplicateApplication):
            store.apply("u1", "coins", -10, "tip_sent", "t1")

    @pytest.mark.parametrize(
        "currency, amount, reason",
        [
            ("gems", 5, "post"),
            ("points", 0, "post"),
            ("points", 5, "lottery"),
            ("points", True, "post"),
        ],
    )
    def test_invalid_input_rejected(self, store, currency, amount, reason):
        with pytest.raises(InvalidRequest):
            store.apply("u1", currency, amount, reason, "x")


class TestApplyMany:
    def test_all_or_nothing(self, store, db_engine):
        store.apply("alice", "coins", 10, "referral", "r1")
        deltas = [
            CurrencyDelta("bob", Currency.COINS, 20, Reason.TIP_RECEIVED, "t1"),
            CurrencyDelta("alice", Currency.COINS, -20, Reason.TIP_SENT, "t1"),
        ]
        with pytest.raises(InsufficientFunds):
            store.apply_many(deltas)
        assert store.get_balance("bob", "coins") == 0
        assert store.get_wallet("bob") is None
        assert _entry_count(db_engine) == 1

    def test_applies_every_delta(self, store):
        store.apply("alice", "coins", 30, "referral", "r1")
        entries = store.apply_many([
            CurrencyDelta("alice", Currency.COINS, -20, Reason.TIP_SENT, "t1"),
            CurrencyDelta("bob", Currency.COINS, 20, Reason.TIP_RECEIVED, "t1"),
        ])
        assert [e.balance_after for e in entries] == [10, 20]

    def test_empty_is_noop(self, store):
        assert store.apply_many([]) == []


class TestDerivedFields:
    def test_total_earned_counts_earning_reasons_only(self, store):
        store.apply("u1", "points", 100, "challenge", "c1")
        store.apply("u1", "coins", 500, "loan_disbursement", "loan-1")
        store.apply("u1", "coins", -50, "loan_repayment", "loan-1:1")
        assert store.get_wallet("u1").total_earned == 100

    def test_creator_level_and_monetization(self, store):
        # Default curve: level n needs 100 * 1.25**n total earned
        store.apply("u1", "points", 124, "challenge", "c1")
        assert store.get_wallet("u1").creator_level == 1
        store.apply("u1", "points", 1, "post", "p1")
        assert store.get_wallet("u1").creator_level == 2
        store.apply("u1", "points", 150, "challenge", "c2")
        wallet = store.get_wallet("u1")
        assert wallet.creator_level == 5
        assert wallet.can_monetize is True


class TestArchive:
    def test_archived_wallet_rejects_mutation(self, store):
        store.apply("u1", "points", 5, "post", "p1")
        archived = store.archive_wallet("u1")
        assert archived.archived_at is not None
        with pytest.raises(WalletArchived):
            store.apply("u1", "points", 5, "post", "p2")
        # Still readable
        assert store.get_balance("u1", "points") == 5

    def test_archive_is_idempotent(self, store):
        first = store.archive_wallet("u1").archived_at
        second = store.archive_wallet("u1").archived_at
        assert as_utc(first) == as_utc(second)


class TestFold:
    def test_fold_matches_projection(self, store, db_engine):
        store.apply("u1", "coins", 40, "referral", "r1")
        store.apply("u1", "coins", -15, "tip_sent", "t1")
        store.apply("u1", "points", 5, "post", "p1")
        with Session(db_engine) as s:
            assert store.fold_balance(s, "u1", "coins") == 25
            assert store.fold_balance(s, "u1", "points") == 5
            assert store.fold_balance(s, "ghost", "points") == 0
            wallet = s.get(Wallet, "u1")
            assert wallet.coins_balance == 25


class TestRetry:
    def test_stale_data_retried_then_succeeds(self, store):
        calls = {"n": 0}

        def flaky(session):
            calls["n"] += 1
            if calls["n"] < 3:
                raise StaleDataError("simulated version conflict")
            return "ok"

        assert store.unit_of_work(["user:u1"], flaky) == "ok"
        assert calls["n"] == 3

    def test_exhausted_retries_surface_concurrent_modification(self, store):
        def always_stale(session):
            raise StaleDataError("simulated version conflict")

        with patch("kudos.services.ledger_service.time.sleep") as sleep:
            with pytest.raises(ConcurrentModification) as exc_info:
                store.unit_of_work(["user:u1"], always_stale)
        assert exc_info.value.attempts == 3
        assert sleep.call_count == 2
