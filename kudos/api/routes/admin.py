"""
kudos.api.routes.admin — Operator endpoints (JWT-protected)
============================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from kudos.api.deps import get_cache, get_current_admin, get_notifier, get_store
from kudos.api.routes.credit import loan_dict
from kudos.engine.cache import ConfigCache
from kudos.services import loan_service, reconciliation_service
from kudos.services.ledger_service import LedgerStore
from kudos.services.notification_service import Notifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class CacheReloadIn(BaseModel):
    table: str = "settings"


@router.post("/loans/sweep-defaults")
def sweep_defaults(
    admin: dict = Depends(get_current_admin),
    store: LedgerStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
):
    """Run the default sweep now instead of waiting for the scheduler."""
    loans = loan_service.mark_defaults(store, notifier=notifier)
    logger.info("Admin %s ran default sweep: %d defaulted", admin.get("sub"), len(loans))
    return {"defaulted": [loan_dict(loan) for loan in loans]}


@router.get("/reconcile")
def reconcile(
    fix: bool = Query(False),
    admin: dict = Depends(get_current_admin),
    store: LedgerStore = Depends(get_store),
):
    """Compare wallet projections with the ledger (and repair with ``fix``)."""
    return reconciliation_service.reconcile_wallets(store, fix=fix)


@router.post("/wallets/{user_id}/archive")
def archive_wallet(
    user_id: str,
    admin: dict = Depends(get_current_admin),
    store: LedgerStore = Depends(get_store),
):
    wallet = store.archive_wallet(user_id)
    logger.info("Admin %s archived wallet %s", admin.get("sub"), user_id)
    return {
        "user_id": wallet.user_id,
        "archived_at": wallet.archived_at.isoformat() if wallet.archived_at else None,
    }


@router.post("/cache/reload")
def reload_cache(
    body: CacheReloadIn,
    admin: dict = Depends(get_current_admin),
    cache: ConfigCache = Depends(get_cache),
):
    """Reload a cache partition after editing ``settings`` or ``badges``."""
    try:
        cache.handle_notify(body.table)
    except ValueError as exc:
        raise HTTPException(400, detail={"error": "INVALID_REQUEST", "message": str(exc)})
    return {"reloaded": body.table.strip().lower()}
