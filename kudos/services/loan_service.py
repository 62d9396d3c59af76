"""
kudos.services.loan_service — Loan State Machine
=================================================

    none ──request──▶ active ──repay (in full)──▶ repaid
                        │
                        └──sweep (past due)──▶ defaulted

Terminal states are final.  A user holds at most one active loan: the
request path checks under the ``borrower:<id>`` lock and the partial
unique index ``uq_loans_one_active_per_user`` backs it up across
processes.  Repayment and default both run under ``loan:<id>`` with a
status re-check, so a loan resolves exactly once.

Every coin movement goes through the Ledger Store in the same
transaction as the loan row it belongs to.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kudos.constants import ALLOWED_TERM_DAYS, Currency, Reason, as_utc, utcnow
from kudos.database.models import CreditScore, Loan, LoanStatus, Wallet
from kudos.engine import credit as credit_model
from kudos.engine.locks import borrower_key, loan_key, user_key
from kudos.exceptions import (
    ConcurrentModification,
    CreditLimitExceeded,
    InvalidRequest,
    LoanAlreadyActive,
    LoanNotActive,
    LoanNotFound,
)
from kudos.services import notification_service as notify
from kudos.services.notification_service import NotificationPayload, Notifier, emit_all
from kudos.services.reward_service import award_badges

if TYPE_CHECKING:
    from kudos.services.ledger_service import LedgerStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Credit records
# ---------------------------------------------------------------------------
def get_or_create_credit_score(session: Session, user_id: str) -> CreditScore:
    """Fetch or insert the user's credit record (neutral history)."""
    record = session.get(CreditScore, user_id)
    if record is None:
        record = CreditScore(
            user_id=user_id,
            on_time_payments=0,
            late_payments=0,
            total_loans_completed=0,
        )
        credit_model.refresh(record)
        session.add(record)
        session.flush()
    return record


def _active_loan(session: Session, user_id: str) -> Loan | None:
    return session.scalar(
        select(Loan).where(Loan.user_id == user_id, Loan.status == LoanStatus.ACTIVE)
    )


def _lock_loan(session: Session, loan_id: str) -> Loan | None:
    return session.scalar(select(Loan).where(Loan.id == loan_id).with_for_update())


def _positive_int(value: int, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidRequest(f"{name} must be a positive integer")
    return value


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------
def request_loan(
    store: LedgerStore,
    user_id: str,
    principal: int,
    term_days: int,
    *,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> Loan:
    """Issue a loan and disburse *principal* coins.

    Raises
    ------
    InvalidRequest
        Non-positive principal or a term outside ``ALLOWED_TERM_DAYS``.
    LoanAlreadyActive
        The user already has an active loan.
    CreditLimitExceeded
        *principal* is above the user's tier limit.
    """
    _positive_int(principal, "principal")
    if term_days not in ALLOWED_TERM_DAYS:
        raise InvalidRequest(f"term_days must be one of {list(ALLOWED_TERM_DAYS)}")
    now = now or utcnow()

    def work(session: Session) -> Loan:
        active = _active_loan(session, user_id)
        if active is not None:
            raise LoanAlreadyActive(user_id, active.id)

        record = get_or_create_credit_score(session, user_id)
        if principal > record.credit_limit:
            raise CreditLimitExceeded(user_id, principal, record.credit_limit)

        loan = Loan(
            id=str(uuid.uuid4()),
            user_id=user_id,
            principal=principal,
            term_days=term_days,
            interest_rate_pct=record.interest_rate_pct,
            total_due=credit_model.total_due(principal, record.interest_rate_pct),
            amount_repaid=0,
            amount_collected=0,
            payments_count=0,
            status=LoanStatus.ACTIVE.value,
            created_at=now,
            due_date=now + timedelta(days=term_days),
        )
        try:
            with session.begin_nested():
                session.add(loan)
                session.flush()
        except IntegrityError:
            # Only a concurrent active loan maps to LoanAlreadyActive
            active = _active_loan(session, user_id)
            if active is None:
                raise
            raise LoanAlreadyActive(user_id, active.id) from None

        store.stage(
            session, user_id, Currency.COINS, principal,
            Reason.LOAN_DISBURSEMENT, loan.id, now=now,
        )
        return loan

    loan = store.unit_of_work([borrower_key(user_id), user_key(user_id)], work)
    logger.info(
        "Loan %s issued to %s: %d coins at %.1f%%, %d due by %s",
        loan.id, user_id, principal, loan.interest_rate_pct, loan.total_due,
        loan.due_date.isoformat(),
    )
    emit_all(notifier, [notify.loan_notification(loan, "issued")])
    return loan


def repay(
    store: LedgerStore,
    loan_id: str,
    user_id: str,
    amount: int,
    *,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> Loan:
    """Pay *amount* coins towards an active loan.

    Amounts above the outstanding balance are capped to it.  On
    :class:`InsufficientFunds` nothing changes, the loan included.
    """
    _positive_int(amount, "amount")
    now = now or utcnow()

    def work(session: Session) -> tuple[Loan, list[NotificationPayload]]:
        loan = _lock_loan(session, loan_id)
        if loan is None or loan.user_id != user_id:
            raise LoanNotFound(loan_id)
        if loan.status != LoanStatus.ACTIVE:
            raise LoanNotActive(loan_id, loan.status)

        payment = min(amount, loan.outstanding)
        number = loan.payments_count + 1
        store.stage(
            session, user_id, Currency.COINS, -payment,
            Reason.LOAN_REPAYMENT, f"{loan.id}:{number}", now=now,
        )
        loan.amount_repaid += payment
        loan.payments_count = number

        payloads: list[NotificationPayload] = []
        if loan.outstanding == 0:
            on_time = now <= as_utc(loan.due_date)
            loan.status = LoanStatus.REPAID.value
            loan.resolved_at = now

            record = get_or_create_credit_score(session, user_id)
            if on_time:
                record.on_time_payments += 1
            else:
                record.late_payments += 1
            record.total_loans_completed += 1
            credit_model.refresh(record)
            session.flush()

            payloads.append(notify.loan_notification(loan, "repaid"))
            if store.cache is not None:
                for badge in award_badges(session, store, store.cache, user_id, now=now):
                    payloads.append(notify.badge_notification(user_id, badge))

            logger.info(
                "Loan %s repaid by %s (%s); credit now %d/%s",
                loan.id, user_id, "on time" if on_time else "late",
                record.score, record.tier,
            )
        return loan, payloads

    loan, payloads = store.unit_of_work([loan_key(loan_id), user_key(user_id)], work)
    emit_all(notifier, payloads)
    return loan


def mark_defaults(
    store: LedgerStore,
    *,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> list[Loan]:
    """Default every active loan past its due date.  Returns those loans.

    Each loan is handled in its own unit of work, so one conflict does not
    hold back the rest of the sweep.
    """
    now = now or utcnow()
    collect = store.cache.get_bool("loans.collect_on_default", True) if store.cache else True

    with Session(store.engine) as session:
        candidates = session.execute(
            select(Loan.id, Loan.user_id).where(
                Loan.status == LoanStatus.ACTIVE,
                Loan.due_date < now,
            )
        ).all()

    defaulted: list[Loan] = []
    for loan_id, user_id in candidates:

        def work(session: Session, loan_id: str = loan_id, user_id: str = user_id) -> Loan | None:
            loan = _lock_loan(session, loan_id)
            if (
                loan is None
                or loan.status != LoanStatus.ACTIVE
                or now <= as_utc(loan.due_date)
                or loan.amount_repaid >= loan.total_due
            ):
                return None

            loan.status = LoanStatus.DEFAULTED.value
            loan.resolved_at = now

            record = get_or_create_credit_score(session, user_id)
            record.late_payments += 1
            credit_model.refresh(record)

            if collect:
                wallet = session.get(Wallet, user_id)
                if wallet is not None and wallet.archived_at is None:
                    seized = min(wallet.coins_balance, loan.outstanding)
                    if seized > 0:
                        store.stage(
                            session, user_id, Currency.COINS, -seized,
                            Reason.LOAN_PENALTY, loan.id, now=now,
                        )
                        loan.amount_collected += seized
            session.flush()

            logger.info(
                "Loan %s of %s defaulted (collected %d of %d); credit now %d/%s",
                loan.id, user_id, loan.amount_collected,
                loan.total_due - loan.amount_repaid, record.score, record.tier,
            )
            return loan

        try:
            loan = store.unit_of_work([loan_key(loan_id), user_key(user_id)], work)
        except ConcurrentModification:
            logger.warning("Skipped default of loan %s: concurrent update", loan_id)
            continue
        if loan is not None:
            defaulted.append(loan)

    if defaulted:
        logger.info("Default sweep: %d loan(s) defaulted", len(defaulted))
    emit_all(notifier, [notify.loan_notification(loan, "defaulted") for loan in defaulted])
    return defaulted


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
@dataclass
class CreditOverview:
    user_id: str
    score: int
    tier: str
    credit_limit: int
    interest_rate_pct: float
    on_time_payments: int
    late_payments: int
    total_loans_completed: int
    coins_balance: int
    can_borrow: bool
    max_borrow_amount: int
    active_loans: list[Loan] = field(default_factory=list)
    history: list[Loan] = field(default_factory=list)


def get_loan(store: LedgerStore, loan_id: str) -> Loan:
    with Session(store.engine) as session:
        loan = session.get(Loan, loan_id)
        if loan is None:
            raise LoanNotFound(loan_id)
        session.expunge(loan)
        return loan


def get_credit_overview(store: LedgerStore, user_id: str, history_limit: int = 20) -> CreditOverview:
    """Score, terms, loans and borrowing capacity.  Read-only."""
    with Session(store.engine) as session:
        record = session.get(CreditScore, user_id)
        if record is None:
            record = credit_model.refresh(CreditScore(
                user_id=user_id,
                on_time_payments=0,
                late_payments=0,
                total_loans_completed=0,
            ))
        else:
            session.expunge(record)

        loans = list(session.scalars(
            select(Loan)
            .where(Loan.user_id == user_id)
            .order_by(Loan.created_at.desc())
            .limit(history_limit)
        ).all())
        for loan in loans:
            session.expunge(loan)

        wallet = session.get(Wallet, user_id)
        coins = wallet.coins_balance if wallet else 0
        archived = wallet is not None and wallet.archived_at is not None

    active = [loan for loan in loans if loan.status == LoanStatus.ACTIVE]
    can_borrow = not active and not archived
    return CreditOverview(
        user_id=user_id,
        score=record.score,
        tier=record.tier,
        credit_limit=record.credit_limit,
        interest_rate_pct=record.interest_rate_pct,
        on_time_payments=record.on_time_payments,
        late_payments=record.late_payments,
        total_loans_completed=record.total_loans_completed,
        coins_balance=coins,
        can_borrow=can_borrow,
        max_borrow_amount=record.credit_limit if can_borrow else 0,
        active_loans=active,
        history=[loan for loan in loans if loan.status != LoanStatus.ACTIVE],
    )
