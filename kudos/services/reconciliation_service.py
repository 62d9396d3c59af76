"""
kudos.services.reconciliation_service — Wallet/Ledger Reconciliation
=====================================================================

Validates the cached balances on ``wallets`` against the journal in
``ledger_entries`` and optionally corrects drift.

How it works:
    1. ``SUM(amount)`` from ``ledger_entries`` grouped by (user_id, currency).
    2. Compare against ``points_balance`` / ``coins_balance`` on each wallet.
    3. With ``fix=True``, overwrite the projection with the folded value.
    4. Log every mismatch for audit.

The journal is the source of truth; a wallet is never the one that wins.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from kudos.constants import Currency, utcnow
from kudos.database.models import LedgerEntry, Wallet
from kudos.engine.locks import user_key

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from kudos.services.ledger_service import LedgerStore

logger = logging.getLogger(__name__)


def _folded(session: Session) -> dict[tuple[str, str], int]:
    rows = session.execute(
        select(
            LedgerEntry.user_id,
            LedgerEntry.currency,
            func.sum(LedgerEntry.amount).label("total"),
        ).group_by(LedgerEntry.user_id, LedgerEntry.currency)
    ).all()
    return {(row.user_id, row.currency): int(row.total) for row in rows}


def reconcile_wallets(store: LedgerStore, fix: bool = False) -> dict:
    """Compare every wallet with its folded ledger.

    Returns ``{"checked": N, "mismatched": M, "fixed": bool,
    "mismatches": [...], "timestamp": ...}``.
    """

    def work(session: Session) -> tuple[int, list[dict]]:
        truth = _folded(session)
        wallets = session.scalars(select(Wallet).order_by(Wallet.user_id)).all()
        mismatches: list[dict] = []

        for wallet in wallets:
            for currency in Currency:
                stored = wallet.balance(currency)
                actual = truth.get((wallet.user_id, currency.value), 0)
                if stored == actual:
                    continue
                mismatches.append({
                    "user_id": wallet.user_id,
                    "currency": currency.value,
                    "stored": stored,
                    "actual": actual,
                    "diff": actual - stored,
                })
                if fix:
                    if currency == Currency.POINTS:
                        wallet.points_balance = actual
                    else:
                        wallet.coins_balance = actual

        known = {w.user_id for w in wallets}
        for (user_id, currency), actual in truth.items():
            if user_id not in known:
                # Ledger rows without a wallet cannot exist under the FK;
                # reported for databases restored without constraints.
                mismatches.append({
                    "user_id": user_id,
                    "currency": currency,
                    "stored": None,
                    "actual": actual,
                    "diff": actual,
                })
        return len(wallets), mismatches

    checked, mismatches = store.unit_of_work([], work)

    if mismatches:
        logger.warning(
            "Wallet reconciliation: %d mismatch(es) across %d wallets%s: %s",
            len(mismatches), checked, " (fixed)" if fix else "", mismatches,
        )
    else:
        logger.info("Wallet reconciliation: all %d wallets match the ledger", checked)

    return {
        "checked": checked,
        "mismatched": len(mismatches),
        "fixed": fix and bool(mismatches),
        "mismatches": mismatches,
        "timestamp": utcnow().isoformat(),
    }


def verify_user(store: LedgerStore, user_id: str) -> dict[str, tuple[int, int]]:
    """``{currency: (stored, folded)}`` for one user, read under its lock."""

    def work(session: Session) -> dict[str, tuple[int, int]]:
        wallet = session.get(Wallet, user_id)
        return {
            c.value: (
                wallet.balance(c) if wallet else 0,
                store.fold_balance(session, user_id, c.value),
            )
            for c in Currency
        }

    return store.unit_of_work([user_key(user_id)], work)
