"""
kudos.services.cascade_service — Top-Comment Cascade
=====================================================

like → re-rank → promote → reward → notify

Everything that reads or changes a post's ranking runs under the
``post:<id>`` lock, so two likes racing on the same post can never
promote two comments.  The reward goes through the normal reward
pipeline with the comment id as reference, which limits it to one
payment per comment even if the comment is later demoted and promoted
again.  Demotion never takes a reward back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kudos.constants import utcnow
from kudos.database.models import Comment, CommentLike, Post
from kudos.engine.events import EconomyEvent, EventType
from kudos.engine.locks import post_key, user_key
from kudos.exceptions import (
    CommentNotFound,
    DuplicateApplication,
    InvalidRequest,
    WalletArchived,
)
from kudos.services import notification_service as notify
from kudos.services.notification_service import NotificationPayload, Notifier, emit_all
from kudos.services.reward_service import stage_event

if TYPE_CHECKING:
    from kudos.engine.cache import ConfigCache
    from kudos.services.ledger_service import LedgerStore

logger = logging.getLogger(__name__)


@dataclass
class CascadeOutcome:
    """What a recompute did to a post's top comment."""

    post_id: str
    top_comment_id: str | None = None
    promoted: bool = False
    demoted_comment_id: str | None = None
    rewarded: bool = False
    payloads: list[NotificationPayload] = field(default_factory=list, repr=False)


@dataclass
class LikeResult:
    comment_id: str
    post_id: str
    like_count: int
    liked: bool
    is_top: bool
    promoted: bool = False
    rewarded: bool = False


# ---------------------------------------------------------------------------
# Projection writes
# ---------------------------------------------------------------------------
def record_comment(
    store: LedgerStore,
    *,
    comment_id: str,
    post_id: str,
    author_id: str,
    post_author_id: str | None = None,
    created_at: datetime | None = None,
) -> Comment:
    """Register a comment (and its post on first sight).  Idempotent."""

    def work(session: Session) -> Comment:
        existing = session.get(Comment, comment_id)
        if existing is not None:
            if existing.post_id != post_id:
                raise InvalidRequest(
                    f"Comment {comment_id} already belongs to post {existing.post_id}"
                )
            return existing
        if session.get(Post, post_id) is None:
            session.add(Post(id=post_id, author_id=post_author_id or author_id))
        comment = Comment(
            id=comment_id,
            post_id=post_id,
            author_id=author_id,
            like_count=0,
            is_top=False,
            created_at=created_at or utcnow(),
        )
        session.add(comment)
        session.flush()
        return comment

    return store.unit_of_work([post_key(post_id)], work)


def _rank(session: Session, post_id: str) -> list[Comment]:
    return list(session.scalars(
        select(Comment)
        .where(Comment.post_id == post_id)
        .order_by(Comment.like_count.desc(), Comment.created_at.asc(), Comment.id.asc())
    ).all())


# ---------------------------------------------------------------------------
# Cascade
# ---------------------------------------------------------------------------
def recompute_top_comment(
    store: LedgerStore,
    cache: ConfigCache,
    post_id: str,
    notifier: Notifier | None = None,
) -> CascadeOutcome:
    """Re-rank *post_id* and promote a new top comment if one qualifies."""
    threshold = cache.get_int("cascade.top_comment_threshold", 3)

    with store.locks.hold(post_key(post_id)):
        with Session(store.engine) as session:
            ranking = _rank(session, post_id)
            if not ranking:
                return CascadeOutcome(post_id=post_id)
            leader = ranking[0]
            if leader.is_top or leader.like_count < threshold:
                current = next((c.id for c in ranking if c.is_top), None)
                return CascadeOutcome(post_id=post_id, top_comment_id=current)
            author_id = leader.author_id

        def work(session: Session) -> CascadeOutcome:
            comments = _rank(session, post_id)
            top = comments[0]
            outcome = CascadeOutcome(post_id=post_id, top_comment_id=top.id, promoted=True)

            for c in comments[1:]:
                if c.is_top:
                    c.is_top = False
                    outcome.demoted_comment_id = c.id
            top.is_top = True
            session.flush()

            event = EconomyEvent(
                user_id=top.author_id,
                event_type=EventType.TOP_COMMENT,
                reference_id=top.id,
                metadata={"post_id": post_id},
            )
            try:
                with session.begin_nested():
                    result, payloads = stage_event(session, store, cache, event)
            except DuplicateApplication:
                logger.info("Comment %s re-promoted; reward already paid", top.id)
                return outcome
            except WalletArchived:
                logger.warning(
                    "Comment %s promoted but author %s is archived; no reward",
                    top.id, top.author_id,
                )
                return outcome

            outcome.rewarded = True
            outcome.payloads = [
                notify.top_comment_notification(
                    top.author_id, top.id, post_id,
                    result.points_delta, result.coins_delta,
                ),
                *payloads,
            ]
            return outcome

        outcome = store.unit_of_work([post_key(post_id), user_key(author_id)], work)

    logger.info(
        "Post %s: comment %s promoted to top%s%s",
        post_id, outcome.top_comment_id,
        f" (demoted {outcome.demoted_comment_id})" if outcome.demoted_comment_id else "",
        ", rewarded" if outcome.rewarded else "",
    )
    emit_all(notifier, outcome.payloads)
    return outcome


def like_comment(
    store: LedgerStore,
    cache: ConfigCache,
    comment_id: str,
    user_id: str,
    notifier: Notifier | None = None,
) -> LikeResult:
    """Record one like from *user_id* and run the cascade.

    A user's repeated like is a no-op that returns the current state.
    """
    with Session(store.engine) as session:
        comment = session.get(Comment, comment_id)
        if comment is None:
            raise CommentNotFound(comment_id)
        post_id = comment.post_id

    def work(session: Session) -> tuple[int, bool]:
        comment = session.get(Comment, comment_id)
        if session.get(CommentLike, (comment_id, user_id)) is not None:
            return comment.like_count, False
        try:
            with session.begin_nested():
                session.add(CommentLike(comment_id=comment_id, user_id=user_id))
                session.flush()
        except IntegrityError:
            return comment.like_count, False
        comment.like_count += 1
        session.flush()
        return comment.like_count, True

    like_count, liked = store.unit_of_work([post_key(post_id)], work)
    outcome = recompute_top_comment(store, cache, post_id, notifier=notifier)

    return LikeResult(
        comment_id=comment_id,
        post_id=post_id,
        like_count=like_count,
        liked=liked,
        is_top=outcome.top_comment_id == comment_id,
        promoted=outcome.promoted and outcome.top_comment_id == comment_id,
        rewarded=outcome.rewarded and outcome.top_comment_id == comment_id,
    )
