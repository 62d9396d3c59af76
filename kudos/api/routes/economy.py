"""
kudos.api.routes.economy — Reward events, wallets & notifications
==================================================================
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from kudos.api.deps import get_cache, get_engine, get_notifier, get_store
from kudos.constants import Currency
from kudos.database.models import LedgerEntry, Notification
from kudos.engine.cache import ConfigCache
from kudos.engine.events import EconomyEvent
from kudos.exceptions import InvalidRequest
from kudos.services import notification_service, reward_service
from kudos.services.ledger_service import LedgerStore
from kudos.services.notification_service import Notifier

router = APIRouter(tags=["economy"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class RewardEventIn(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    event_type: str
    reference_id: str = Field(min_length=1, max_length=100)
    metadata: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _entry_dict(e: LedgerEntry) -> dict:
    return {
        "id": e.id,
        "currency": e.currency,
        "amount": e.amount,
        "reason": e.reason,
        "reference_id": e.reference_id,
        "balance_after": e.balance_after,
        "created_at": e.created_at.isoformat() if e.created_at else None,
    }


def _notification_dict(n: Notification) -> dict:
    return {
        "id": n.id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "reference_id": n.reference_id,
        "reference_type": n.reference_type,
        "payload": n.payload,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


# ---------------------------------------------------------------------------
# POST /reward-events
# ---------------------------------------------------------------------------
@router.post("/reward-events")
def post_reward_event(
    body: RewardEventIn,
    store: LedgerStore = Depends(get_store),
    cache: ConfigCache = Depends(get_cache),
    notifier: Notifier = Depends(get_notifier),
):
    """Apply one reward event.  Replays return ``duplicate: true``."""
    event = EconomyEvent(
        user_id=body.user_id,
        event_type=body.event_type,
        reference_id=body.reference_id,
        metadata=body.metadata,
    )
    result = reward_service.process_event(store, cache, event, notifier=notifier)
    return {
        "points_delta": result.points_delta,
        "coins_delta": result.coins_delta,
        "new_balances": result.new_balances,
        "duplicate": result.duplicate,
        "badges_earned": result.badges_earned,
    }


# ---------------------------------------------------------------------------
# GET /wallet/{user_id}
# ---------------------------------------------------------------------------
@router.get("/wallet/{user_id}")
def get_wallet(
    user_id: str,
    store: LedgerStore = Depends(get_store),
    cache: ConfigCache = Depends(get_cache),
):
    """Balances plus the display-only cash value of the points balance."""
    wallet = store.get_wallet(user_id)
    rate = max(cache.get_int("economy.points_per_dollar", 1000), 1)
    points = wallet.points_balance if wallet else 0
    return {
        "user_id": user_id,
        "points_balance": points,
        "coins_balance": wallet.coins_balance if wallet else 0,
        "total_earned": wallet.total_earned if wallet else 0,
        "creator_level": wallet.creator_level if wallet else 1,
        "can_monetize": wallet.can_monetize if wallet else False,
        "archived": bool(wallet and wallet.archived_at),
        "cash_value": round(points / rate, 2),
        "conversion_rate": rate,
    }


@router.get("/wallet/{user_id}/ledger")
def get_wallet_ledger(
    user_id: str,
    currency: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    store: LedgerStore = Depends(get_store),
):
    if currency is not None and currency not in {c.value for c in Currency}:
        raise InvalidRequest(f"Unknown currency: {currency!r}")
    entries = store.list_entries(user_id, currency=currency, limit=limit)
    return {"user_id": user_id, "entries": [_entry_dict(e) for e in entries]}


# ---------------------------------------------------------------------------
# GET /notifications/{user_id}
# ---------------------------------------------------------------------------
@router.get("/notifications/{user_id}")
def get_notifications(
    user_id: str,
    limit: int = Query(50, ge=1, le=200),
    engine=Depends(get_engine),
):
    rows = notification_service.list_notifications(engine, user_id, limit=limit)
    return {"user_id": user_id, "notifications": [_notification_dict(n) for n in rows]}
