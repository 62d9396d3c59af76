"""
kudos.services.social_service — Tips, Referrals & Daily Streaks
================================================================

Thin services that turn social actions into economy events.  Each keeps
its bookkeeping row (referral, streak) in the same transaction as the
ledger entries it produces.
"""

from __future__ import annotations

import logging
import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kudos.constants import GIFT_TYPES, utcnow
from kudos.database.models import Referral, ReferralCode, Streak
from kudos.engine.events import EconomyEvent, EventType
from kudos.engine.locks import user_key
from kudos.engine.rules import RewardResult
from kudos.exceptions import (
    InvalidRequest,
    ReferralAlreadyRegistered,
    ReferralCodeNotFound,
)
from kudos.services import notification_service as notify
from kudos.services.notification_service import NotificationPayload, Notifier, emit_all
from kudos.services.reward_service import process_event, stage_event

if TYPE_CHECKING:
    from kudos.engine.cache import ConfigCache
    from kudos.services.ledger_service import LedgerStore

logger = logging.getLogger(__name__)

REFERRAL_CODE_LENGTH = 8
_CODE_ALPHABET = string.ascii_uppercase + string.digits


# ---------------------------------------------------------------------------
# Tips
# ---------------------------------------------------------------------------
def send_tip(
    store: LedgerStore,
    cache: ConfigCache,
    sender_id: str,
    receiver_id: str,
    *,
    amount: int | None = None,
    gift_type: str | None = None,
    reference_id: str | None = None,
    notifier: Notifier | None = None,
) -> RewardResult:
    """Move coins from sender to receiver.

    Either *amount* or a *gift_type* from :data:`GIFT_TYPES` must be given;
    a gift fixes the amount.  Without a *reference_id* every call is a new
    tip; callers that retry should pass one.
    """
    if gift_type is not None:
        gift = GIFT_TYPES.get(gift_type)
        if gift is None:
            raise InvalidRequest(f"Unknown gift type: {gift_type!r}")
        if amount is not None and amount != gift["coins"]:
            raise InvalidRequest(f"A {gift_type} costs exactly {gift['coins']} coins")
        amount = int(gift["coins"])
    if amount is None:
        raise InvalidRequest("Either amount or gift_type is required")

    event = EconomyEvent(
        user_id=sender_id,
        event_type=EventType.TIP_SENT,
        reference_id=reference_id or str(uuid.uuid4()),
        metadata={"receiver_id": receiver_id, "amount": amount, "gift_type": gift_type},
    )
    return process_event(store, cache, event, notifier=notifier)


# ---------------------------------------------------------------------------
# Referrals
# ---------------------------------------------------------------------------
def _new_code() -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))


def get_or_create_referral_code(store: LedgerStore, user_id: str) -> str:
    """Return the user's referral code, generating one on first call."""

    def work(session: Session) -> str:
        row = session.get(ReferralCode, user_id)
        if row is not None:
            return row.code
        for _ in range(5):
            code = _new_code()
            try:
                with session.begin_nested():
                    session.add(ReferralCode(user_id=user_id, code=code))
                    session.flush()
            except IntegrityError:
                continue
            logger.info("Referral code %s issued to %s", code, user_id)
            return code
        raise InvalidRequest("Could not allocate a unique referral code")

    return store.unit_of_work([user_key(user_id)], work)


@dataclass
class ReferralClaim:
    referrer_id: str
    claimed_count: int
    total_coins: int


def register_referral(
    store: LedgerStore,
    cache: ConfigCache,
    referee_id: str,
    code: str,
    *,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> tuple[Referral, RewardResult]:
    """Link a new user to the owner of *code* and pay the sign-up bonus."""
    code = code.strip().upper()
    now = now or utcnow()

    with Session(store.engine) as session:
        owner = session.scalar(select(ReferralCode).where(ReferralCode.code == code))
        if owner is None:
            raise ReferralCodeNotFound(code)
        referrer_id = owner.user_id
    if referrer_id == referee_id:
        raise InvalidRequest("Cannot use your own referral code")

    def work(session: Session) -> tuple[Referral, RewardResult, list[NotificationPayload]]:
        if session.scalar(select(Referral).where(Referral.referee_id == referee_id)):
            raise ReferralAlreadyRegistered(referee_id)
        referral = Referral(
            id=str(uuid.uuid4()),
            referrer_id=referrer_id,
            referee_id=referee_id,
            code=code,
            created_at=now,
        )
        try:
            with session.begin_nested():
                session.add(referral)
                session.flush()
        except IntegrityError:
            raise ReferralAlreadyRegistered(referee_id) from None

        event = EconomyEvent(
            user_id=referee_id,
            event_type=EventType.REFERRAL_CLAIMED,
            reference_id=referral.id,
            metadata={"role": "referee"},
            timestamp=now,
        )
        result, payloads = stage_event(session, store, cache, event)
        payloads.insert(0, notify.reward_notification(
            referee_id, event.event_type, referral.id,
            result.points_delta, result.coins_delta,
        ))
        return referral, result, payloads

    referral, result, payloads = store.unit_of_work([user_key(referee_id)], work)
    logger.info("Referral %s: %s referred %s", referral.id, referrer_id, referee_id)
    emit_all(notifier, payloads)
    return referral, result


def claim_referral_rewards(
    store: LedgerStore,
    cache: ConfigCache,
    referrer_id: str,
    *,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> ReferralClaim:
    """Pay the referrer bonus for every unclaimed referral."""
    now = now or utcnow()

    def work(session: Session) -> tuple[ReferralClaim, list[NotificationPayload]]:
        pending = session.scalars(
            select(Referral)
            .where(Referral.referrer_id == referrer_id, Referral.claimed_at.is_(None))
            .order_by(Referral.created_at, Referral.id)
        ).all()

        claim = ReferralClaim(referrer_id=referrer_id, claimed_count=0, total_coins=0)
        payloads: list[NotificationPayload] = []
        for referral in pending:
            event = EconomyEvent(
                user_id=referrer_id,
                event_type=EventType.REFERRAL_CLAIMED,
                reference_id=referral.id,
                metadata={"role": "referrer"},
                timestamp=now,
            )
            result, badge_payloads = stage_event(session, store, cache, event)
            referral.claimed_at = now
            claim.claimed_count += 1
            claim.total_coins += result.coins_delta
            payloads.extend(badge_payloads)

        if claim.claimed_count:
            payloads.insert(0, notify.referral_notification(
                referrer_id, claim.total_coins, claim.claimed_count,
            ))
        return claim, payloads

    claim, payloads = store.unit_of_work([user_key(referrer_id)], work)
    if claim.claimed_count:
        logger.info(
            "Referrer %s claimed %d referral(s) for %d coins",
            referrer_id, claim.claimed_count, claim.total_coins,
        )
    emit_all(notifier, payloads)
    return claim


# ---------------------------------------------------------------------------
# Daily streaks
# ---------------------------------------------------------------------------
@dataclass
class CheckInResult:
    user_id: str
    day: date
    current_days: int
    longest_days: int
    already_checked_in: bool
    reward: RewardResult | None = None


def check_in(
    store: LedgerStore,
    cache: ConfigCache,
    user_id: str,
    day: date | None = None,
    *,
    notifier: Notifier | None = None,
) -> CheckInResult:
    """Record today's activity and pay the streak bonus once per day.

    A check-in on the day after the last one extends the streak; any gap
    restarts it at 1.  The bonus reference is ``streak:<ISO day>``.
    """
    day = day or utcnow().date()

    def work(session: Session) -> tuple[CheckInResult, list[NotificationPayload]]:
        streak = session.get(Streak, user_id)
        if streak is None:
            streak = Streak(user_id=user_id, current_days=0, longest_days=0)
            session.add(streak)

        last = streak.last_active_on
        if last is not None and day < last:
            raise InvalidRequest(f"Check-in for {day} is before the last check-in {last}")
        if last == day:
            return CheckInResult(
                user_id, day, streak.current_days, streak.longest_days,
                already_checked_in=True,
            ), []

        if last is not None and day - last == timedelta(days=1):
            streak.current_days += 1
        else:
            streak.current_days = 1
        streak.longest_days = max(streak.longest_days, streak.current_days)
        streak.last_active_on = day
        session.flush()

        event = EconomyEvent(
            user_id=user_id,
            event_type=EventType.STREAK_BONUS,
            reference_id=f"streak:{day.isoformat()}",
            metadata={"streak_days": streak.current_days},
        )
        result, payloads = stage_event(session, store, cache, event)
        payloads.insert(0, notify.reward_notification(
            user_id, event.event_type, event.reference_id,
            result.points_delta, result.coins_delta,
        ))
        return CheckInResult(
            user_id, day, streak.current_days, streak.longest_days,
            already_checked_in=False, reward=result,
        ), payloads

    outcome, payloads = store.unit_of_work([user_key(user_id)], work)
    emit_all(notifier, payloads)
    return outcome
