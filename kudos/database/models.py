"""
kudos.database.models — SQLAlchemy 2.0 Data Models
===================================================

Tables:
- wallets            — Per-user balance projection (versioned, soft-archived)
- ledger_entries     — Append-only currency journal with idempotency key
- credit_scores      — Per-user credit history + derived tier/terms
- loans              — Micro-loans (active → repaid | defaulted)
- posts / comments / comment_likes — Projection used by the top-comment cascade
- referral_codes / referrals — Referral graph
- streaks            — Daily check-in streaks
- badges / user_badges — Badge catalogue with typed triggers, earned badges
- notifications      — Outbox for the external notifier
- settings           — Economy tuning key-value store
"""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Kudos ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class LoanStatus(enum.StrEnum):
    ACTIVE = "active"
    REPAID = "repaid"
    DEFAULTED = "defaulted"


class CreditTier(enum.StrEnum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"
    DIAMOND = "diamond"


class BadgeTrigger(enum.StrEnum):
    """Defines what condition causes a badge to be checked."""
    TOTAL_EARNED = "total_earned"
    REASON_COUNT = "reason_count"
    STREAK_DAYS = "streak_days"
    LOANS_REPAID = "loans_repaid"
    CREDIT_TIER = "credit_tier"
    MANUAL = "manual"


# ---------------------------------------------------------------------------
# Wallet — one row per user, mutated only by the LedgerStore
# ---------------------------------------------------------------------------
class Wallet(Base):
    __tablename__ = "wallets"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    points_balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    coins_balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_earned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    creator_level: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    can_monetize: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    archived_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    entries: Mapped[list[LedgerEntry]] = relationship(back_populates="wallet")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("points_balance >= 0", name="ck_wallets_points_non_negative"),
        CheckConstraint("coins_balance >= 0", name="ck_wallets_coins_non_negative"),
        CheckConstraint("creator_level >= 1", name="ck_wallets_level_positive"),
    )

    def balance(self, currency: str) -> int:
        return self.points_balance if currency == "points" else self.coins_balance

    def __repr__(self) -> str:
        return (
            f"<Wallet user={self.user_id} points={self.points_balance} "
            f"coins={self.coins_balance}>"
        )


# ---------------------------------------------------------------------------
# LedgerEntry — append-only journal
# ---------------------------------------------------------------------------
class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("wallets.user_id"), nullable=False
    )
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(30), nullable=False)
    reference_id: Mapped[str] = mapped_column(String(100), nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    wallet: Mapped[Wallet] = relationship(back_populates="entries")

    __table_args__ = (
        # Idempotency key: a replayed event can never produce a second row
        UniqueConstraint(
            "user_id", "currency", "reason", "reference_id",
            name="uq_ledger_entries_idempotency",
        ),
        CheckConstraint("amount <> 0", name="ck_ledger_entries_amount_nonzero"),
        CheckConstraint(
            "currency IN ('points', 'coins')", name="ck_ledger_entries_currency"
        ),
        Index("ix_ledger_entries_user_currency", "user_id", "currency"),
        Index("ix_ledger_entries_user_time", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} user={self.user_id} "
            f"{self.amount:+d} {self.currency} {self.reason}/{self.reference_id}>"
        )


# ---------------------------------------------------------------------------
# CreditScore — payment history + derived tier
# ---------------------------------------------------------------------------
class CreditScore(Base):
    __tablename__ = "credit_scores"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    tier: Mapped[str] = mapped_column(String(20), nullable=False)
    credit_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    interest_rate_pct: Mapped[float] = mapped_column(Float, nullable=False)
    on_time_payments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    late_payments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_loans_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("score BETWEEN 300 AND 850", name="ck_credit_scores_range"),
    )

    def __repr__(self) -> str:
        return f"<CreditScore user={self.user_id} score={self.score} tier={self.tier}>"


# ---------------------------------------------------------------------------
# Loan — micro-credit against the coin wallet
# ---------------------------------------------------------------------------
class Loan(Base):
    __tablename__ = "loans"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    principal: Mapped[int] = mapped_column(Integer, nullable=False)
    term_days: Mapped[int] = mapped_column(Integer, nullable=False)
    interest_rate_pct: Mapped[float] = mapped_column(Float, nullable=False)
    total_due: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_repaid: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    amount_collected: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    payments_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=LoanStatus.ACTIVE.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    __table_args__ = (
        CheckConstraint("principal > 0", name="ck_loans_principal_positive"),
        CheckConstraint("amount_repaid <= total_due", name="ck_loans_repaid_le_due"),
        CheckConstraint(
            "status IN ('active', 'repaid', 'defaulted')", name="ck_loans_status"
        ),
        # At most one active loan per user
        Index(
            "uq_loans_one_active_per_user",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_loans_status_due", "status", "due_date"),
        Index("ix_loans_user_time", "user_id", "created_at"),
    )

    @property
    def outstanding(self) -> int:
        return max(self.total_due - self.amount_repaid - self.amount_collected, 0)

    def __repr__(self) -> str:
        return (
            f"<Loan id={self.id} user={self.user_id} status={self.status} "
            f"{self.amount_repaid}/{self.total_due}>"
        )


# ---------------------------------------------------------------------------
# Posts / Comments / CommentLikes — what the top-comment cascade reads
# ---------------------------------------------------------------------------
class Post(Base):
    __tablename__ = "posts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    author_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    comments: Mapped[list[Comment]] = relationship(back_populates="post")

    def __repr__(self) -> str:
        return f"<Post id={self.id} author={self.author_id}>"


class Comment(Base):
    __tablename__ = "comments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    post_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("posts.id", ondelete="CASCADE"), nullable=False
    )
    author_id: Mapped[str] = mapped_column(String(64), nullable=False)
    like_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_top: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    post: Mapped[Post] = relationship(back_populates="comments")

    __table_args__ = (
        Index("ix_comments_post_likes", "post_id", "like_count"),
    )

    def __repr__(self) -> str:
        return f"<Comment id={self.id} post={self.post_id} likes={self.like_count} top={self.is_top}>"


class CommentLike(Base):
    __tablename__ = "comment_likes"

    comment_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("comments.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


# ---------------------------------------------------------------------------
# Referrals
# ---------------------------------------------------------------------------
class ReferralCode(Base):
    __tablename__ = "referral_codes"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class Referral(Base):
    __tablename__ = "referrals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    referrer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    referee_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    code: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    __table_args__ = (
        Index("ix_referrals_referrer", "referrer_id", "claimed_at"),
    )

    def __repr__(self) -> str:
        return f"<Referral {self.referrer_id} → {self.referee_id}>"


# ---------------------------------------------------------------------------
# Streak — daily check-in run
# ---------------------------------------------------------------------------
class Streak(Base):
    __tablename__ = "streaks"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    current_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    longest_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_active_on: Mapped[date | None] = mapped_column(Date, default=None)


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------
class Badge(Base):
    """Badge catalogue entry with a typed trigger.

    ``trigger_config`` shape depends on ``trigger_type``, e.g.
    ``{"value": 1000}`` for total_earned or
    ``{"reason": "post", "count": 10}`` for reason_count.
    """
    __tablename__ = "badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    trigger_type: Mapped[str] = mapped_column(String(30), nullable=False)
    trigger_config: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    points_reward: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    earned_by: Mapped[list[UserBadge]] = relationship(back_populates="badge")

    def __repr__(self) -> str:
        return f"<Badge slug={self.slug!r} trigger={self.trigger_type}>"


class UserBadge(Base):
    __tablename__ = "user_badges"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    badge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("badges.id", ondelete="CASCADE"), primary_key=True
    )
    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    badge: Mapped[Badge] = relationship(back_populates="earned_by")


# ---------------------------------------------------------------------------
# Notification — outbox for the external notifier
# ---------------------------------------------------------------------------
class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(100), default=None)
    reference_type: Mapped[str | None] = mapped_column(String(30), default=None)
    payload: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    delivered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    __table_args__ = (
        Index("ix_notifications_user_time", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user={self.user_id} type={self.type}>"


# ---------------------------------------------------------------------------
# Setting — economy tuning key-value store
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value configuration store.

    Every economy tuning knob (rewards, caps, level curve, loan collection)
    lives here so operators can adjust values without redeploying.  Values
    are stored as JSON strings; typed accessors live in
    :class:`~kudos.engine.cache.ConfigCache`.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_settings_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r} category={self.category!r}>"
