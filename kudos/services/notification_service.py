"""
kudos.services.notification_service — Notification Payloads & Sinks
====================================================================

Services build :class:`NotificationPayload` objects while a unit of work
runs and hand them to :func:`emit_all` only after the transaction has
committed.  A failing sink is logged and skipped; it never undoes
currency changes that are already durable.

Sinks:
- :class:`OutboxNotifier` — writes ``notifications`` rows for the external
  notifier to poll (``GET /api/notifications/{user_id}``).
- :class:`LoggingNotifier` — log-only, for local runs.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from kudos.database.engine import get_session
from kudos.database.models import Notification

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from kudos.config import KudosConfig
    from kudos.database.models import Badge, Loan

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NotificationPayload:
    user_id: str
    type: str
    title: str
    message: str
    reference_id: str | None = None
    reference_type: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


class Notifier(Protocol):
    def send(self, payload: NotificationPayload) -> None: ...


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------
class OutboxNotifier:
    """Persist payloads to the ``notifications`` table."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def send(self, payload: NotificationPayload) -> None:
        with get_session(self.engine) as session:
            session.add(Notification(
                user_id=payload.user_id,
                type=payload.type,
                title=payload.title,
                message=payload.message,
                reference_id=payload.reference_id,
                reference_type=payload.reference_type,
                payload=payload.data or None,
            ))


class LoggingNotifier:
    def send(self, payload: NotificationPayload) -> None:
        logger.info(
            "[notify] %s → %s: %s", payload.type, payload.user_id, payload.message
        )


def build_notifier(config: KudosConfig, engine: Engine) -> Notifier:
    if config.notifier == "log":
        return LoggingNotifier()
    return OutboxNotifier(engine)


def emit_all(notifier: Notifier | None, payloads: Iterable[NotificationPayload]) -> int:
    """Send every payload, logging (not raising) sink failures.

    Returns the number of payloads the sink accepted.
    """
    payloads = list(payloads)
    if notifier is None:
        if payloads:
            logger.warning("No notifier configured; dropped %d notifications", len(payloads))
        return 0

    sent = 0
    for payload in payloads:
        try:
            notifier.send(payload)
            sent += 1
        except Exception:
            logger.exception(
                "Notifier failed for %s → %s (ref=%s)",
                payload.type, payload.user_id, payload.reference_id,
            )
    return sent


def list_notifications(engine: Engine, user_id: str, limit: int = 50) -> list[Notification]:
    """Most recent outbox rows for *user_id*."""
    with Session(engine) as session:
        rows = list(session.scalars(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.id.desc())
            .limit(limit)
        ).all())
        for row in rows:
            session.expunge(row)
        return rows


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------
def _describe(points: int, coins: int) -> str:
    parts = []
    if points:
        parts.append(f"{points} points")
    if coins:
        parts.append(f"{coins} coins")
    return " and ".join(parts) or "nothing"


def reward_notification(
    user_id: str, event_type: str, reference_id: str, points: int, coins: int
) -> NotificationPayload:
    return NotificationPayload(
        user_id=user_id,
        type="reward",
        title="You earned a reward",
        message=f"You earned {_describe(points, coins)}.",
        reference_id=reference_id,
        reference_type=event_type,
        data={"points": points, "coins": coins},
    )


def top_comment_notification(
    user_id: str, comment_id: str, post_id: str, points: int, coins: int
) -> NotificationPayload:
    return NotificationPayload(
        user_id=user_id,
        type="top_comment",
        title="Your comment is on top!",
        message=(
            "Congratulations! Your comment was voted the most relevant "
            f"and you earned {_describe(points, coins)}!"
        ),
        reference_id=post_id,
        reference_type="post",
        data={"comment_id": comment_id, "points": points, "coins": coins},
    )


def badge_notification(user_id: str, badge: Badge) -> NotificationPayload:
    return NotificationPayload(
        user_id=user_id,
        type="badge",
        title=f"Badge unlocked: {badge.name}",
        message=badge.description or f"You earned the {badge.name} badge.",
        reference_id=badge.slug,
        reference_type="badge",
        data={"points": badge.points_reward},
    )


def tip_notification(
    receiver_id: str, sender_id: str, amount: int, reference_id: str,
    gift_type: str | None = None,
) -> NotificationPayload:
    gift = f" ({gift_type})" if gift_type else ""
    return NotificationPayload(
        user_id=receiver_id,
        type="tip",
        title="You received a tip",
        message=f"{sender_id} sent you {amount} coins{gift}.",
        reference_id=reference_id,
        reference_type="tip",
        data={"sender_id": sender_id, "amount": amount, "gift_type": gift_type},
    )


def referral_notification(user_id: str, coins: int, claimed: int) -> NotificationPayload:
    return NotificationPayload(
        user_id=user_id,
        type="referral",
        title="Referral rewards claimed",
        message=f"You earned {coins} coins from {claimed} referral(s).",
        reference_type="referral",
        data={"coins": coins, "claimed": claimed},
    )


_LOAN_MESSAGES = {
    "issued": ("Loan approved", "{principal} coins were added to your wallet. "
               "Repay {total_due} coins by {due}."),
    "repaid": ("Loan repaid", "Your loan of {principal} coins is fully repaid."),
    "defaulted": ("Loan defaulted", "Your loan of {principal} coins was not repaid "
                  "by {due}; {collected} coins were collected."),
}


def loan_notification(loan: Loan, kind: str) -> NotificationPayload:
    title, template = _LOAN_MESSAGES[kind]
    return NotificationPayload(
        user_id=loan.user_id,
        type=f"loan_{kind}",
        title=title,
        message=template.format(
            principal=loan.principal,
            total_due=loan.total_due,
            due=loan.due_date.date().isoformat(),
            collected=loan.amount_collected,
        ),
        reference_id=loan.id,
        reference_type="loan",
        data={"status": loan.status, "total_due": loan.total_due},
    )
