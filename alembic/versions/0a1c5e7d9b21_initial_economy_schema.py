"""Initial economy schema: wallets, ledger, credit, loans, social projections

Revision ID: 0a1c5e7d9b21
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0a1c5e7d9b21"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _ts(name: str, **kw) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), **kw)


def upgrade() -> None:
    """Create every table the economy engine uses."""
    op.create_table(
        "wallets",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("points_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("coins_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("creator_level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("can_monetize", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("version", sa.Integer(), nullable=False),
        _ts("archived_at", nullable=True),
        _ts("created_at", server_default=sa.func.now()),
        _ts("updated_at", server_default=sa.func.now()),
        sa.CheckConstraint("points_balance >= 0", name="ck_wallets_points_non_negative"),
        sa.CheckConstraint("coins_balance >= 0", name="ck_wallets_coins_non_negative"),
        sa.CheckConstraint("creator_level >= 1", name="ck_wallets_level_positive"),
    )

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("wallets.user_id"), nullable=False),
        sa.Column("currency", sa.String(10), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(30), nullable=False),
        sa.Column("reference_id", sa.String(100), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        _ts("created_at", server_default=sa.func.now()),
        sa.UniqueConstraint(
            "user_id", "currency", "reason", "reference_id",
            name="uq_ledger_entries_idempotency",
        ),
        sa.CheckConstraint("amount <> 0", name="ck_ledger_entries_amount_nonzero"),
        sa.CheckConstraint("currency IN ('points', 'coins')", name="ck_ledger_entries_currency"),
    )
    op.create_index("ix_ledger_entries_user_currency", "ledger_entries", ["user_id", "currency"])
    op.create_index("ix_ledger_entries_user_time", "ledger_entries", ["user_id", "created_at"])

    op.create_table(
        "credit_scores",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("tier", sa.String(20), nullable=False),
        sa.Column("credit_limit", sa.Integer(), nullable=False),
        sa.Column("interest_rate_pct", sa.Float(), nullable=False),
        sa.Column("on_time_payments", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("late_payments", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_loans_completed", sa.Integer(), nullable=False, server_default="0"),
        _ts("updated_at", server_default=sa.func.now()),
        sa.CheckConstraint("score BETWEEN 300 AND 850", name="ck_credit_scores_range"),
    )

    op.create_table(
        "loans",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("principal", sa.Integer(), nullable=False),
        sa.Column("term_days", sa.Integer(), nullable=False),
        sa.Column("interest_rate_pct", sa.Float(), nullable=False),
        sa.Column("total_due", sa.Integer(), nullable=False),
        sa.Column("amount_repaid", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("amount_collected", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payments_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        _ts("created_at", nullable=False),
        _ts("due_date", nullable=False),
        _ts("resolved_at", nullable=True),
        sa.CheckConstraint("principal > 0", name="ck_loans_principal_positive"),
        sa.CheckConstraint("amount_repaid <= total_due", name="ck_loans_repaid_le_due"),
        sa.CheckConstraint(
            "status IN ('active', 'repaid', 'defaulted')", name="ck_loans_status"
        ),
    )
    op.create_index(
        "uq_loans_one_active_per_user",
        "loans",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )
    op.create_index("ix_loans_status_due", "loans", ["status", "due_date"])
    op.create_index("ix_loans_user_time", "loans", ["user_id", "created_at"])

    op.create_table(
        "posts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("author_id", sa.String(64), nullable=False),
        _ts("created_at", server_default=sa.func.now()),
    )
    op.create_table(
        "comments",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "post_id", sa.String(64),
            sa.ForeignKey("posts.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("author_id", sa.String(64), nullable=False),
        sa.Column("like_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_top", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("created_at", server_default=sa.func.now()),
    )
    op.create_index("ix_comments_post_likes", "comments", ["post_id", "like_count"])
    op.create_table(
        "comment_likes",
        sa.Column(
            "comment_id", sa.String(64),
            sa.ForeignKey("comments.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("user_id", sa.String(64), primary_key=True),
        _ts("created_at", server_default=sa.func.now()),
    )

    op.create_table(
        "referral_codes",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("code", sa.String(16), nullable=False, unique=True),
        _ts("created_at", server_default=sa.func.now()),
    )
    op.create_table(
        "referrals",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("referrer_id", sa.String(64), nullable=False),
        sa.Column("referee_id", sa.String(64), nullable=False, unique=True),
        sa.Column("code", sa.String(16), nullable=False),
        _ts("created_at", server_default=sa.func.now()),
        _ts("claimed_at", nullable=True),
    )
    op.create_index("ix_referrals_referrer", "referrals", ["referrer_id", "claimed_at"])

    op.create_table(
        "streaks",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("current_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("longest_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_active_on", sa.Date(), nullable=True),
    )

    op.create_table(
        "badges",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("slug", sa.String(50), nullable=False, unique=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("trigger_type", sa.String(30), nullable=False),
        sa.Column("trigger_config", postgresql.JSONB(), nullable=True),
        sa.Column("points_reward", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "user_badges",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column(
            "badge_id", sa.Integer(),
            sa.ForeignKey("badges.id", ondelete="CASCADE"), primary_key=True,
        ),
        _ts("earned_at", server_default=sa.func.now()),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("reference_id", sa.String(100), nullable=True),
        sa.Column("reference_type", sa.String(30), nullable=True),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
        _ts("created_at", server_default=sa.func.now()),
        _ts("delivered_at", nullable=True),
    )
    op.create_index("ix_notifications_user_time", "notifications", ["user_id", "created_at"])

    op.create_table(
        "settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value_json", sa.Text(), nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("description", sa.Text(), nullable=True),
        _ts("updated_at", server_default=sa.func.now()),
    )
    op.create_index("ix_settings_category", "settings", ["category"])


def downgrade() -> None:
    """Drop every economy table (children first)."""
    op.drop_index("ix_settings_category", table_name="settings")
    op.drop_table("settings")
    op.drop_index("ix_notifications_user_time", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("user_badges")
    op.drop_table("badges")
    op.drop_table("streaks")
    op.drop_index("ix_referrals_referrer", table_name="referrals")
    op.drop_table("referrals")
    op.drop_table("referral_codes")
    op.drop_table("comment_likes")
    op.drop_index("ix_comments_post_likes", table_name="comments")
    op.drop_table("comments")
    op.drop_table("posts")
    op.drop_index("ix_loans_user_time", table_name="loans")
    op.drop_index("ix_loans_status_due", table_name="loans")
    op.drop_index("uq_loans_one_active_per_user", table_name="loans")
    op.drop_table("loans")
    op.drop_table("credit_scores")
    op.drop_index("ix_ledger_entries_user_time", table_name="ledger_entries")
    op.drop_index("ix_ledger_entries_user_currency", table_name="ledger_entries")
    op.drop_table("ledger_entries")
    op.drop_table("wallets")
