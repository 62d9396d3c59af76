"""
kudos.services.reward_service — Reward Cascade Orchestrator
============================================================

Runs an :class:`EconomyEvent` through the whole pipeline:

1. Evaluate deltas via the rule engine (pure)
2. Stage every delta through the Ledger Store in one transaction
3. Check and award badges for every user who earned something
4. Commit, then emit notifications

A replayed event (same idempotency key) changes nothing and returns the
original result with ``duplicate=True``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from kudos.constants import EARNING_REASONS, Currency, Reason
from kudos.database.models import (
    Badge,
    CreditScore,
    LedgerEntry,
    Streak,
    UserBadge,
    Wallet,
)
from kudos.engine.badges import BadgeContext, check_badges
from kudos.engine.events import EconomyEvent, EventType
from kudos.engine.locks import user_key
from kudos.engine.rules import CurrencyDelta, RewardResult, evaluate
from kudos.exceptions import DuplicateApplication
from kudos.services import notification_service as notify
from kudos.services.notification_service import NotificationPayload, Notifier, emit_all

if TYPE_CHECKING:
    from kudos.engine.cache import ConfigCache
    from kudos.services.ledger_service import LedgerStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Badge context
# ---------------------------------------------------------------------------
def get_earned_badge_ids(session: Session, user_id: str) -> set[int]:
    rows = session.scalars(
        select(UserBadge.badge_id).where(UserBadge.user_id == user_id)
    ).all()
    return set(rows)


def _reason_counts(session: Session, user_id: str) -> dict[str, int]:
    """Count of credited ledger entries per reason.

    Multi-currency rewards (e.g. top comment) write one entry per currency,
    so distinct reference ids are counted.
    """
    rows = session.execute(
        select(
            LedgerEntry.reason,
            func.count(func.distinct(LedgerEntry.reference_id)).label("cnt"),
        )
        .where(LedgerEntry.user_id == user_id, LedgerEntry.amount > 0)
        .group_by(LedgerEntry.reason)
    ).all()
    return {row.reason: row.cnt for row in rows}


def build_badge_context(session: Session, user_id: str) -> BadgeContext:
    wallet = session.get(Wallet, user_id)
    streak = session.get(Streak, user_id)
    credit = session.get(CreditScore, user_id)
    return BadgeContext(
        total_earned=wallet.total_earned if wallet else 0,
        streak_days=streak.current_days if streak else 0,
        reason_counts=_reason_counts(session, user_id),
        loans_repaid=credit.total_loans_completed if credit else 0,
        credit_tier=credit.tier if credit else None,
    )


def award_badges(
    session: Session,
    store: LedgerStore,
    cache: ConfigCache,
    user_id: str,
    now: datetime | None = None,
) -> list[Badge]:
    """Award every badge *user_id* now qualifies for, inside *session*.

    Badge points are themselves earnings and can unlock further badges,
    so checks repeat until nothing new fires.  The caller must hold
    ``user_key(user_id)``.
    """
    awarded: list[Badge] = []
    earned = get_earned_badge_ids(session, user_id)

    while True:
        ctx = build_badge_context(session, user_id)
        new_badges = check_badges(cache, ctx, earned)
        if not new_badges:
            break

        for badge in new_badges:
            earned.add(badge.id)
            session.add(UserBadge(user_id=user_id, badge_id=badge.id))
            if badge.points_reward > 0:
                try:
                    with session.begin_nested():
                        store.stage(
                            session, user_id, Currency.POINTS, badge.points_reward,
                            Reason.BADGE, f"badge:{badge.slug}", now=now,
                        )
                except DuplicateApplication:
                    logger.info("Badge %s already paid to %s", badge.slug, user_id)
            awarded.append(badge)
        session.flush()

    return awarded


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------
def _totals(deltas: list[CurrencyDelta], user_id: str) -> tuple[int, int]:
    points = sum(d.amount for d in deltas if d.user_id == user_id and d.currency == Currency.POINTS)
    coins = sum(d.amount for d in deltas if d.user_id == user_id and d.currency == Currency.COINS)
    return points, coins


def _balances(wallet: Wallet | None) -> dict[str, int]:
    if wallet is None:
        return {Currency.POINTS.value: 0, Currency.COINS.value: 0}
    return {
        Currency.POINTS.value: wallet.points_balance,
        Currency.COINS.value: wallet.coins_balance,
    }


def stage_event(
    session: Session,
    store: LedgerStore,
    cache: ConfigCache,
    event: EconomyEvent,
) -> tuple[RewardResult, list[NotificationPayload]]:
    """Apply *event* inside an open unit of work.

    The caller must hold the user lock of every user the event touches.
    Raises :class:`DuplicateApplication` on replay.
    """
    deltas = evaluate(event, cache)
    points, coins = _totals(deltas, event.user_id)
    result = RewardResult(points_delta=points, coins_delta=coins, deltas=deltas)
    payloads: list[NotificationPayload] = []

    for d in deltas:
        store.stage(
            session, d.user_id, d.currency, d.amount, d.reason, d.reference_id,
            now=event.timestamp,
        )

    earners = sorted({
        d.user_id for d in deltas if d.amount > 0 and d.reason in EARNING_REASONS
    })
    for uid in earners:
        for badge in award_badges(session, store, cache, uid, now=event.timestamp):
            payloads.append(notify.badge_notification(uid, badge))
            if uid == event.user_id:
                result.badges_earned.append(badge.slug)

    result.new_balances = _balances(session.get(Wallet, event.user_id))
    return result, payloads


def _event_notification(event: EconomyEvent, result: RewardResult) -> NotificationPayload | None:
    if event.event_type == EventType.TIP_SENT:
        receiver = str(event.metadata["receiver_id"])
        return notify.tip_notification(
            receiver, event.user_id, -result.coins_delta, event.reference_id,
            gift_type=event.metadata.get("gift_type"),
        )
    if event.event_type == EventType.TOP_COMMENT:
        return notify.top_comment_notification(
            event.user_id, event.reference_id,
            str(event.metadata.get("post_id", "")),
            result.points_delta, result.coins_delta,
        )
    if result.points_delta > 0 or result.coins_delta > 0:
        return notify.reward_notification(
            event.user_id, event.event_type, event.reference_id,
            result.points_delta, result.coins_delta,
        )
    return None


def process_event(
    store: LedgerStore,
    cache: ConfigCache,
    event: EconomyEvent,
    notifier: Notifier | None = None,
) -> RewardResult:
    """Process an EconomyEvent through the full pipeline.

    Returns the :class:`RewardResult`.  ``duplicate`` is True when the
    event had already been applied; balances are then reported as they
    stand now and nothing is written.
    """
    deltas = evaluate(event, cache)
    if not deltas:
        wallet = store.get_wallet(event.user_id)
        return RewardResult(new_balances=_balances(wallet))

    keys = [user_key(d.user_id) for d in deltas]
    try:
        result, payloads = store.unit_of_work(
            keys, lambda session: stage_event(session, store, cache, event)
        )
    except DuplicateApplication:
        logger.info(
            "Duplicate %s event %s for %s ignored",
            event.event_type, event.reference_id, event.user_id,
        )
        points, coins = _totals(deltas, event.user_id)
        return RewardResult(
            points_delta=points,
            coins_delta=coins,
            deltas=deltas,
            new_balances=_balances(store.get_wallet(event.user_id)),
            duplicate=True,
        )

    logger.info(
        "Applied %s/%s for %s: %+d points, %+d coins%s",
        event.event_type, event.reference_id, event.user_id,
        result.points_delta, result.coins_delta,
        f", badges {result.badges_earned}" if result.badges_earned else "",
    )

    primary = _event_notification(event, result)
    if primary is not None:
        payloads.insert(0, primary)
    emit_all(notifier, payloads)
    return result
