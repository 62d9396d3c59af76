"""
kudos.services.ledger_service — Dual-Currency Ledger Store
===========================================================

The only code path that changes a balance.  Every change is an immutable
:class:`LedgerEntry` plus an update of the cached projection on
:class:`Wallet`, written in the same transaction.

Idempotency: ``(user_id, currency, reason, reference_id)`` is unique.  A
replay is detected up front (cheap read under the per-user lock) and, for
replays racing in from another process, by the unique constraint inside a
SAVEPOINT.  Either way the caller gets :class:`DuplicateApplication`
carrying the prior entry.

Concurrency: each unit of work holds the in-process per-user lock(s),
reads the wallet ``FOR UPDATE`` (PostgreSQL) and relies on the wallet's
``version`` column.  A :class:`StaleDataError` restarts the whole unit of
work, up to ``max_attempts`` times with exponential backoff.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from kudos.constants import EARNING_REASONS, Currency, Reason, creator_level_for, utcnow
from kudos.database.models import LedgerEntry, Wallet
from kudos.engine.locks import KeyedLocks, get_default_locks, user_key
from kudos.exceptions import (
    ConcurrentModification,
    DuplicateApplication,
    InsufficientFunds,
    InvalidRequest,
    WalletArchived,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from kudos.engine.cache import ConfigCache
    from kudos.engine.rules import CurrencyDelta

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 0.05


class LedgerStore:
    """Typed facade over the ``wallets`` and ``ledger_entries`` tables.

    Parameters
    ----------
    engine : SQLAlchemy engine.
    cache : Settings cache for the creator-level curve (optional; defaults
        apply without one).
    locks : Per-key lock registry shared with the other services.
    """

    def __init__(
        self,
        engine: Engine,
        cache: ConfigCache | None = None,
        locks: KeyedLocks | None = None,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff: float = DEFAULT_BACKOFF_SECONDS,
    ) -> None:
        self.engine = engine
        self.cache = cache
        self.locks = locks or get_default_locks()
        self.max_attempts = max_attempts
        self.backoff = backoff

    # -------------------------------------------------------------------
    # Unit of work
    # -------------------------------------------------------------------
    def unit_of_work(self, keys: Iterable[str], work: Callable[[Session], T]) -> T:
        """Run ``work(session)`` in one transaction under the given locks.

        The session is committed when *work* returns and rolled back if it
        raises.  Version conflicts restart *work* from scratch.
        """
        keys = sorted(set(keys))
        delay = self.backoff
        attempt = 0
        while True:
            attempt += 1
            try:
                with self.locks.hold(*keys):
                    with Session(self.engine, expire_on_commit=False) as session:
                        result = work(session)
                        session.commit()
                        return result
            except StaleDataError:
                if attempt >= self.max_attempts:
                    raise ConcurrentModification(",".join(keys), attempt) from None
                logger.warning(
                    "Version conflict on %s (attempt %d/%d), retrying in %.0f ms",
                    keys, attempt, self.max_attempts, delay * 1000,
                )
                time.sleep(delay)
                delay *= 2

    # -------------------------------------------------------------------
    # In-transaction primitives
    # -------------------------------------------------------------------
    def lock_wallet(self, session: Session, user_id: str) -> Wallet:
        """Return the wallet row ``FOR UPDATE``, creating it on first use."""
        stmt = select(Wallet).where(Wallet.user_id == user_id).with_for_update()
        wallet = session.scalar(stmt)
        if wallet is not None:
            return wallet

        wallet = Wallet(
            user_id=user_id,
            points_balance=0,
            coins_balance=0,
            total_earned=0,
            creator_level=1,
            can_monetize=False,
        )
        try:
            with session.begin_nested():
                session.add(wallet)
                session.flush()
        except IntegrityError:
            # Another process created it first
            wallet = session.scalar(stmt)
            if wallet is None:
                raise
        else:
            logger.info("Created wallet for user %s", user_id)
        return wallet

    def find_entry(
        self, session: Session, user_id: str, currency: str, reason: str, reference_id: str
    ) -> LedgerEntry | None:
        return session.scalar(
            select(LedgerEntry).where(
                LedgerEntry.user_id == user_id,
                LedgerEntry.currency == currency,
                LedgerEntry.reason == reason,
                LedgerEntry.reference_id == reference_id,
            )
        )

    def stage(
        self,
        session: Session,
        user_id: str,
        currency: str,
        amount: int,
        reason: str,
        reference_id: str,
        *,
        now: datetime | None = None,
    ) -> LedgerEntry:
        """Write one entry and update the wallet projection inside *session*.

        Does not commit.  The caller must already hold ``user_key(user_id)``.

        Raises
        ------
        InvalidRequest
            Zero amount, unknown currency or unknown reason.
        DuplicateApplication
            The idempotency key was already applied.
        WalletArchived
            The wallet is soft-archived.
        InsufficientFunds
            A debit would take the balance below zero.
        """
        currency, reason = _validate(currency, amount, reason)
        reference_id = str(reference_id)

        prior = self.find_entry(session, user_id, currency, reason, reference_id)
        if prior is not None:
            raise DuplicateApplication(user_id, currency, reason, reference_id, prior=prior)

        wallet = self.lock_wallet(session, user_id)
        if wallet.archived_at is not None:
            raise WalletArchived(user_id)

        balance = wallet.balance(currency)
        new_balance = balance + amount
        if new_balance < 0:
            raise InsufficientFunds(user_id, currency, balance, -amount)

        entry = LedgerEntry(
            user_id=user_id,
            currency=currency,
            amount=amount,
            reason=reason,
            reference_id=reference_id,
            balance_after=new_balance,
            created_at=now or utcnow(),
        )
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(entry)
                session.flush()
        except IntegrityError:
            prior = self.find_entry(session, user_id, currency, reason, reference_id)
            raise DuplicateApplication(
                user_id, currency, reason, reference_id, prior=prior
            ) from None

        if currency == Currency.POINTS:
            wallet.points_balance = new_balance
        else:
            wallet.coins_balance = new_balance

        if amount > 0 and reason in EARNING_REASONS:
            wallet.total_earned += amount
            self._refresh_level(wallet)

        session.flush()
        return entry

    def _refresh_level(self, wallet: Wallet) -> None:
        level = creator_level_for(wallet.total_earned, self.cache)
        min_level = self.cache.get_int("economy.monetize_min_level", 5) if self.cache else 5
        if level != wallet.creator_level:
            logger.info(
                "User %s reached creator level %d (earned %d)",
                wallet.user_id, level, wallet.total_earned,
            )
        wallet.creator_level = level
        wallet.can_monetize = level >= min_level

    # -------------------------------------------------------------------
    # Self-contained writes
    # -------------------------------------------------------------------
    def apply(
        self,
        user_id: str,
        currency: str,
        amount: int,
        reason: str,
        reference_id: str,
    ) -> int:
        """Apply one signed delta atomically and return the new balance."""

        def work(session: Session) -> int:
            entry = self.stage(session, user_id, currency, amount, reason, reference_id)
            return entry.balance_after

        return self.unit_of_work([user_key(user_id)], work)

    def apply_many(self, deltas: Sequence[CurrencyDelta]) -> list[LedgerEntry]:
        """Apply several deltas (possibly for several users) all-or-nothing."""
        if not deltas:
            return []

        def work(session: Session) -> list[LedgerEntry]:
            return [
                self.stage(
                    session, d.user_id, d.currency, d.amount, d.reason, d.reference_id
                )
                for d in deltas
            ]

        return self.unit_of_work([user_key(d.user_id) for d in deltas], work)

    def archive_wallet(self, user_id: str, now: datetime | None = None) -> Wallet:
        """Soft-archive a wallet.  Archived wallets reject every mutation."""

        def work(session: Session) -> Wallet:
            wallet = self.lock_wallet(session, user_id)
            if wallet.archived_at is None:
                wallet.archived_at = now or utcnow()
                logger.info("Archived wallet for user %s", user_id)
            session.flush()
            return wallet

        return self.unit_of_work([user_key(user_id)], work)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get_wallet(self, user_id: str) -> Wallet | None:
        with Session(self.engine) as session:
            wallet = session.get(Wallet, user_id)
            if wallet is not None:
                session.expunge(wallet)
            return wallet

    def get_balance(self, user_id: str, currency: str) -> int:
        """Current balance; 0 for users who never had an entry."""
        currency = Currency(currency)
        wallet = self.get_wallet(user_id)
        return wallet.balance(currency) if wallet else 0

    def list_entries(
        self, user_id: str, currency: str | None = None, limit: int = 50
    ) -> list[LedgerEntry]:
        """Most recent entries first."""
        stmt = select(LedgerEntry).where(LedgerEntry.user_id == user_id)
        if currency is not None:
            stmt = stmt.where(LedgerEntry.currency == Currency(currency))
        stmt = stmt.order_by(LedgerEntry.id.desc()).limit(limit)
        with Session(self.engine) as session:
            entries = list(session.scalars(stmt).all())
            for e in entries:
                session.expunge(e)
            return entries

    @staticmethod
    def fold_balance(session: Session, user_id: str, currency: str) -> int:
        """Reconstruct a balance from the journal alone."""
        total = session.scalar(
            select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(
                LedgerEntry.user_id == user_id,
                LedgerEntry.currency == currency,
            )
        )
        return int(total or 0)


def _validate(currency: str, amount: int, reason: str) -> tuple[Currency, Reason]:
    try:
        currency = Currency(currency)
    except ValueError:
        raise InvalidRequest(f"Unknown currency: {currency!r}") from None
    try:
        reason = Reason(reason)
    except ValueError:
        raise InvalidRequest(f"Unknown ledger reason: {reason!r}") from None
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidRequest("Ledger amounts must be integers")
    if amount == 0:
        raise InvalidRequest("Ledger amounts must be non-zero")
    return currency, reason
