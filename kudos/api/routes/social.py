"""
kudos.api.routes.social — Tips, referrals, streaks & comment likes
===================================================================
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from kudos.api.deps import get_cache, get_notifier, get_store
from kudos.constants import GIFT_TYPES
from kudos.engine.cache import ConfigCache
from kudos.services import cascade_service, social_service
from kudos.services.ledger_service import LedgerStore
from kudos.services.notification_service import Notifier

router = APIRouter(tags=["social"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class TipIn(BaseModel):
    sender_id: str = Field(min_length=1, max_length=64)
    receiver_id: str = Field(min_length=1, max_length=64)
    amount: int | None = None
    gift_type: str | None = None
    reference_id: str | None = Field(None, max_length=100)


class UserIn(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)


class ReferralRegisterIn(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    code: str = Field(min_length=1, max_length=16)


class CheckInIn(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    day: date | None = None


class CommentIn(BaseModel):
    comment_id: str = Field(min_length=1, max_length=64)
    post_id: str = Field(min_length=1, max_length=64)
    author_id: str = Field(min_length=1, max_length=64)
    post_author_id: str | None = Field(None, max_length=64)


# ---------------------------------------------------------------------------
# Tips
# ---------------------------------------------------------------------------
@router.get("/tips/gift-types")
def list_gift_types():
    return {"gift_types": [{"id": key, **gift} for key, gift in GIFT_TYPES.items()]}


@router.post("/tips")
def send_tip(
    body: TipIn,
    store: LedgerStore = Depends(get_store),
    cache: ConfigCache = Depends(get_cache),
    notifier: Notifier = Depends(get_notifier),
):
    result = social_service.send_tip(
        store, cache, body.sender_id, body.receiver_id,
        amount=body.amount,
        gift_type=body.gift_type,
        reference_id=body.reference_id,
        notifier=notifier,
    )
    return {
        "amount": -result.coins_delta,
        "sender_balances": result.new_balances,
        "duplicate": result.duplicate,
    }


# ---------------------------------------------------------------------------
# Referrals
# ---------------------------------------------------------------------------
@router.post("/referrals/code")
def referral_code(body: UserIn, store: LedgerStore = Depends(get_store)):
    return {
        "user_id": body.user_id,
        "code": social_service.get_or_create_referral_code(store, body.user_id),
    }


@router.post("/referrals/register")
def register_referral(
    body: ReferralRegisterIn,
    store: LedgerStore = Depends(get_store),
    cache: ConfigCache = Depends(get_cache),
    notifier: Notifier = Depends(get_notifier),
):
    referral, result = social_service.register_referral(
        store, cache, body.user_id, body.code, notifier=notifier
    )
    return {
        "referral_id": referral.id,
        "referrer_id": referral.referrer_id,
        "coins_awarded": result.coins_delta,
        "new_balances": result.new_balances,
    }


@router.post("/referrals/claim")
def claim_referrals(
    body: UserIn,
    store: LedgerStore = Depends(get_store),
    cache: ConfigCache = Depends(get_cache),
    notifier: Notifier = Depends(get_notifier),
):
    claim = social_service.claim_referral_rewards(
        store, cache, body.user_id, notifier=notifier
    )
    return {
        "user_id": claim.referrer_id,
        "claimed_count": claim.claimed_count,
        "total_coins": claim.total_coins,
    }


# ---------------------------------------------------------------------------
# Streaks
# ---------------------------------------------------------------------------
@router.post("/streaks/check-in")
def streak_check_in(
    body: CheckInIn,
    store: LedgerStore = Depends(get_store),
    cache: ConfigCache = Depends(get_cache),
    notifier: Notifier = Depends(get_notifier),
):
    outcome = social_service.check_in(
        store, cache, body.user_id, body.day, notifier=notifier
    )
    return {
        "user_id": outcome.user_id,
        "day": outcome.day.isoformat(),
        "current_days": outcome.current_days,
        "longest_days": outcome.longest_days,
        "already_checked_in": outcome.already_checked_in,
        "points_awarded": outcome.reward.points_delta if outcome.reward else 0,
    }


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------
@router.post("/comments")
def register_comment(body: CommentIn, store: LedgerStore = Depends(get_store)):
    comment = cascade_service.record_comment(
        store,
        comment_id=body.comment_id,
        post_id=body.post_id,
        author_id=body.author_id,
        post_author_id=body.post_author_id,
    )
    return {
        "comment_id": comment.id,
        "post_id": comment.post_id,
        "like_count": comment.like_count,
        "is_top": comment.is_top,
    }


@router.post("/comments/{comment_id}/likes")
def like_comment(
    comment_id: str,
    body: UserIn,
    store: LedgerStore = Depends(get_store),
    cache: ConfigCache = Depends(get_cache),
    notifier: Notifier = Depends(get_notifier),
):
    result = cascade_service.like_comment(
        store, cache, comment_id, body.user_id, notifier=notifier
    )
    return {
        "comment_id": result.comment_id,
        "post_id": result.post_id,
        "like_count": result.like_count,
        "liked": result.liked,
        "is_top": result.is_top,
        "promoted": result.promoted,
        "rewarded": result.rewarded,
    }
