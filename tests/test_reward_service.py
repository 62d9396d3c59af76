"""
tests/test_reward_service.py — Reward Orchestrator Integration Tests
=====================================================================

End-to-end through evaluate → ledger → badges → notifications against
the in-memory database.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from kudos.database.models import LedgerEntry, UserBadge
from kudos.engine.events import EconomyEvent, EventType
from kudos.services.reward_service import process_event


def _post(user_id: str = "u1", ref: str = "post-1") -> EconomyEvent:
    return EconomyEvent(user_id=user_id, event_type=EventType.POST_CREATED, reference_id=ref)


def _count(engine, model) -> int:
    with Session(engine) as s:
        return s.scalar(select(func.count()).select_from(model))


class TestProcessEvent:
    def test_first_post_pays_points_and_first_post_badge(self, store, cache, notifier):
        result = process_event(store, cache, _post(), notifier)
        assert result.duplicate is False
        assert result.points_delta == 5
        assert result.badges_earned == ["first-post"]
        # 5 for the post + 10 for the badge
        assert result.new_balances == {"points": 15, "coins": 0}
        assert notifier.types() == ["reward", "badge"]

    def test_replay_changes_nothing(self, store, cache, notifier, db_engine):
        process_event(store, cache, _post(), notifier)
        entries_before = _count(db_engine, LedgerEntry)
        notifier.sent.clear()

        replay = process_event(store, cache, _post(), notifier)
        assert replay.duplicate is True
        assert replay.points_delta == 5
        assert replay.new_balances == {"points": 15, "coins": 0}
        assert _count(db_engine, LedgerEntry) == entries_before
        assert notifier.sent == []

    def test_badge_awarded_once(self, store, cache, db_engine):
        process_event(store, cache, _post(ref="post-1"))
        second = process_event(store, cache, _post(ref="post-2"))
        assert second.badges_earned == []
        assert _count(db_engine, UserBadge) == 1

    def test_tip_notifies_receiver(self, store, cache, notifier):
        store.apply("alice", "coins", 40, "referral", "r1")
        event = EconomyEvent(
            user_id="alice",
            event_type=EventType.TIP_SENT,
            reference_id="tip-1",
            metadata={"receiver_id": "bob", "amount": 15},
        )
        result = process_event(store, cache, event, notifier)
        assert result.coins_delta == -15
        assert result.new_balances["coins"] == 25
        assert store.get_balance("bob", "coins") == 15
        tip = notifier.sent[0]
        assert (tip.type, tip.user_id) == ("tip", "bob")

    def test_zero_delta_event_writes_nothing(self, store, cache, notifier, db_engine):
        event = EconomyEvent(
            user_id="u1", event_type=EventType.BADGE_EARNED, reference_id="manual"
        )
        result = process_event(store, cache, event, notifier)
        assert result.deltas == []
        assert result.new_balances == {"points": 0, "coins": 0}
        assert _count(db_engine, LedgerEntry) == 0
        assert notifier.sent == []

    def test_missing_notifier_does_not_block_rewards(self, store, cache):
        result = process_event(store, cache, _post())
        assert store.get_balance("u1", "points") == result.new_balances["points"]
