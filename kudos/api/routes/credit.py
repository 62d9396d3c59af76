"""
kudos.api.routes.credit — Loans & credit overview
==================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from kudos.api.deps import get_notifier, get_store
from kudos.database.models import Loan
from kudos.services import loan_service
from kudos.services.ledger_service import LedgerStore
from kudos.services.notification_service import Notifier

router = APIRouter(tags=["credit"])


class LoanRequestIn(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    amount: int
    term_days: int = 14


class LoanRepayIn(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    loan_id: str
    amount: int


def loan_dict(loan: Loan) -> dict:
    return {
        "id": loan.id,
        "user_id": loan.user_id,
        "principal": loan.principal,
        "term_days": loan.term_days,
        "interest_rate_pct": loan.interest_rate_pct,
        "total_due": loan.total_due,
        "amount_repaid": loan.amount_repaid,
        "amount_collected": loan.amount_collected,
        "outstanding": loan.outstanding,
        "payments_count": loan.payments_count,
        "status": loan.status,
        "created_at": loan.created_at.isoformat() if loan.created_at else None,
        "due_date": loan.due_date.isoformat() if loan.due_date else None,
        "resolved_at": loan.resolved_at.isoformat() if loan.resolved_at else None,
    }


@router.post("/loans/request")
def request_loan(
    body: LoanRequestIn,
    store: LedgerStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
):
    loan = loan_service.request_loan(
        store, body.user_id, body.amount, body.term_days, notifier=notifier
    )
    return loan_dict(loan)


@router.post("/loans/repay")
def repay_loan(
    body: LoanRepayIn,
    store: LedgerStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
):
    loan = loan_service.repay(
        store, body.loan_id, body.user_id, body.amount, notifier=notifier
    )
    return loan_dict(loan)


@router.get("/credit/{user_id}")
def get_credit(user_id: str, store: LedgerStore = Depends(get_store)):
    """Score, tier, terms, loans and borrowing capacity."""
    o = loan_service.get_credit_overview(store, user_id)
    return {
        "user_id": o.user_id,
        "score": o.score,
        "tier": o.tier,
        "credit_limit": o.credit_limit,
        "interest_rate_pct": o.interest_rate_pct,
        "on_time_payments": o.on_time_payments,
        "late_payments": o.late_payments,
        "total_loans_completed": o.total_loans_completed,
        "coins_balance": o.coins_balance,
        "can_borrow": o.can_borrow,
        "max_borrow_amount": o.max_borrow_amount,
        "active_loans": [loan_dict(loan) for loan in o.active_loans],
        "history": [loan_dict(loan) for loan in o.history],
    }
