"""
kudos.database.seed — Default Settings & Badge Seeder
=====================================================

Baseline economy settings and the starter badge catalogue, seeded on
first startup so the engine is usable immediately.

Idempotent — only inserts keys/slugs that don't already exist.  Values
edited later by operators are never overwritten.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from kudos.database.models import Badge, BadgeTrigger, Setting

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, tuple[object, str, str]] = {
    "rewards.post_points": (5, "rewards", "Points awarded per post created"),
    "rewards.challenge_default_points": (
        10, "rewards", "Points for a completed challenge when the event carries none",
    ),
    "rewards.challenge_max_points": (500, "rewards", "Upper bound on challenge points"),
    "rewards.challenge_max_coins": (100, "rewards", "Upper bound on challenge coins"),
    "rewards.streak_points_per_day": (3, "rewards", "Streak bonus points per consecutive day"),
    "rewards.streak_points_cap": (30, "rewards", "Maximum streak bonus per check-in"),
    "rewards.top_comment_coins": (5, "rewards", "Coins for the top comment on a post"),
    "rewards.top_comment_points": (50, "rewards", "Points for the top comment on a post"),
    "rewards.referrer_coins": (50, "rewards", "Coins to the referrer per claimed referral"),
    "rewards.referee_coins": (25, "rewards", "Coins to a new user who signed up with a code"),
    "cascade.top_comment_threshold": (
        3, "cascade", "Likes a comment needs before it can become top comment",
    ),
    "economy.level_base": (100, "economy", "Creator level curve base"),
    "economy.level_factor": (1.25, "economy", "Creator level curve growth factor"),
    "economy.monetize_min_level": (5, "economy", "Creator level that unlocks monetization"),
    "economy.points_per_dollar": (1000, "economy", "Points per $1.00 of displayed cash value"),
    "loans.collect_on_default": (
        True, "loans", "Seize available coins up to the outstanding amount on default",
    ),
}
"""Each entry maps ``key`` → ``(default_value, category, description)``."""


# ---------------------------------------------------------------------------
# Starter badges
# ---------------------------------------------------------------------------
DEFAULT_BADGES: list[dict] = [
    {
        "slug": "first-post",
        "name": "First Post",
        "description": "Shared your first post.",
        "trigger_type": BadgeTrigger.REASON_COUNT,
        "trigger_config": {"reason": "post", "count": 1},
        "points_reward": 10,
    },
    {
        "slug": "prolific-poster",
        "name": "Prolific Poster",
        "description": "Shared 25 posts.",
        "trigger_type": BadgeTrigger.REASON_COUNT,
        "trigger_config": {"reason": "post", "count": 25},
        "points_reward": 50,
    },
    {
        "slug": "crowd-favourite",
        "name": "Crowd Favourite",
        "description": "Had a comment voted top comment.",
        "trigger_type": BadgeTrigger.REASON_COUNT,
        "trigger_config": {"reason": "top_comment", "count": 1},
        "points_reward": 20,
    },
    {
        "slug": "week-streak",
        "name": "On Fire",
        "description": "Checked in seven days in a row.",
        "trigger_type": BadgeTrigger.STREAK_DAYS,
        "trigger_config": {"value": 7},
        "points_reward": 25,
    },
    {
        "slug": "rising-creator",
        "name": "Rising Creator",
        "description": "Earned 1,000 in total.",
        "trigger_type": BadgeTrigger.TOTAL_EARNED,
        "trigger_config": {"value": 1000},
        "points_reward": 100,
    },
    {
        "slug": "good-borrower",
        "name": "Good Borrower",
        "description": "Repaid a loan in full.",
        "trigger_type": BadgeTrigger.LOANS_REPAID,
        "trigger_config": {"value": 1},
        "points_reward": 25,
    },
]


# ---------------------------------------------------------------------------
# Seeders
# ---------------------------------------------------------------------------
def seed_default_settings(engine: Engine) -> None:
    """Insert default settings that don't yet exist."""
    session = Session(engine)
    inserted = 0
    try:
        for key, (value, category, desc) in DEFAULT_SETTINGS.items():
            existing = session.get(Setting, key)
            if existing is None:
                session.add(Setting(
                    key=key,
                    value_json=json.dumps(value),
                    category=category,
                    description=desc,
                ))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default settings.", inserted)


def seed_default_badges(engine: Engine) -> None:
    """Insert starter badges whose slug doesn't exist yet."""
    with Session(engine) as session:
        existing = set(session.scalars(select(Badge.slug)))
        inserted = 0
        for spec in DEFAULT_BADGES:
            if spec["slug"] in existing:
                continue
            session.add(Badge(**{**spec, "trigger_type": str(spec["trigger_type"])}))
            inserted += 1
        session.commit()

    if inserted:
        logger.info("Seeded %d default badges.", inserted)
