"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Runs the public and admin routes through the TestClient against the
in-memory database.

These tests verify:
- Auth guards on admin endpoints
- Response structure of the economy, credit and social endpoints
- Error mapping from domain exceptions to HTTP status codes
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import make_admin_token
from kudos.constants import utcnow
from kudos.services.loan_service import request_loan
from kudos.services.notification_service import OutboxNotifier, reward_notification


@pytest.fixture
def non_admin_token():
    return make_admin_token(sub="67890", username="RegularUser", is_admin=False)


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _error(resp) -> str:
    return resp.json()["detail"]["error"]


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestAdminAuthGuards:
    POST_ENDPOINTS = [
        "/api/admin/loans/sweep-defaults",
        "/api/admin/wallets/u1/archive",
        "/api/admin/cache/reload",
    ]

    def test_get_rejects_no_auth(self, client):
        assert client.get("/api/admin/reconcile").status_code == 401

    @pytest.mark.parametrize("endpoint", POST_ENDPOINTS)
    def test_post_rejects_no_auth(self, client, endpoint):
        assert client.post(endpoint, json={}).status_code == 401

    def test_rejects_invalid_token(self, client):
        resp = client.get("/api/admin/reconcile", headers=_auth("not.a.jwt"))
        assert resp.status_code == 401

    @pytest.mark.parametrize("endpoint", POST_ENDPOINTS)
    def test_rejects_non_admin(self, client, non_admin_token, endpoint):
        resp = client.post(endpoint, json={}, headers=_auth(non_admin_token))
        assert resp.status_code == 403


class TestRewardEvents:
    def test_post_created(self, client):
        body = {"user_id": "u1", "event_type": "post_created", "reference_id": "p1"}
        resp = client.post("/api/reward-events", json=body)
        assert resp.status_code == 200
        data = resp.json()
        assert data["points_delta"] == 5
        assert data["duplicate"] is False
        assert data["badges_earned"] == ["first-post"]

        replay = client.post("/api/reward-events", json=body)
        assert replay.status_code == 200
        assert replay.json()["duplicate"] is True

    def test_unknown_event_type_is_400(self, client):
        resp = client.post(
            "/api/reward-events",
            json={"user_id": "u1", "event_type": "liked_a_photo", "reference_id": "x"},
        )
        assert resp.status_code == 400
        assert _error(resp) == "UNKNOWN_EVENT_TYPE"

    def test_missing_fields_is_422(self, client):
        assert client.post("/api/reward-events", json={"user_id": "u1"}).status_code == 422


class TestWallet:
    def test_wallet_and_ledger(self, client, store):
        store.apply("u1", "points", 2500, "challenge", "c1")
        store.apply("u1", "coins", 30, "referral", "r1")

        wallet = client.get("/api/wallet/u1").json()
        assert wallet["points_balance"] == 2500
        assert wallet["coins_balance"] == 30
        assert wallet["cash_value"] == 2.5
        assert wallet["conversion_rate"] == 1000
        assert wallet["can_monetize"] is True

        ledger = client.get("/api/wallet/u1/ledger", params={"currency": "coins"}).json()
        assert [e["amount"] for e in ledger["entries"]] == [30]

    def test_unknown_user_has_empty_wallet(self, client):
        wallet = client.get("/api/wallet/ghost").json()
        assert (wallet["points_balance"], wallet["coins_balance"], wallet["creator_level"]) == (0, 0, 1)

    def test_bad_currency_filter(self, client):
        resp = client.get("/api/wallet/u1/ledger", params={"currency": "gems"})
        assert resp.status_code == 400

    def test_notifications_from_outbox(self, client, db_engine):
        OutboxNotifier(db_engine).send(reward_notification("u1", "post_created", "p1", 5, 0))
        data = client.get("/api/notifications/u1").json()
        assert [n["type"] for n in data["notifications"]] == ["reward"]


class TestLoans:
    def test_request_repay_and_credit(self, client, store):
        resp = client.post("/api/loans/request", json={"user_id": "u1", "amount": 100})
        assert resp.status_code == 200
        loan = resp.json()
        assert (loan["status"], loan["total_due"], loan["term_days"]) == ("active", 115, 14)

        store.apply("u1", "coins", 15, "referral", "r1")
        repaid = client.post(
            "/api/loans/repay", json={"user_id": "u1", "loan_id": loan["id"], "amount": 115}
        )
        assert repaid.status_code == 200
        assert repaid.json()["status"] == "repaid"

        credit = client.get("/api/credit/u1").json()
        assert credit["on_time_payments"] == 1
        assert credit["can_borrow"] is True
        assert [h["id"] for h in credit["history"]] == [loan["id"]]

    @pytest.mark.parametrize(
        "body, status, code",
        [
            ({"user_id": "u1", "amount": 501}, 409, "CREDIT_LIMIT_EXCEEDED"),
            ({"user_id": "u1", "amount": 100, "term_days": 9}, 400, "INVALID_REQUEST"),
        ],
    )
    def test_request_errors(self, client, body, status, code):
        resp = client.post("/api/loans/request", json=body)
        assert resp.status_code == status
        assert _error(resp) == code

    def test_second_loan_conflicts(self, client):
        client.post("/api/loans/request", json={"user_id": "u1", "amount": 100})
        resp = client.post("/api/loans/request", json={"user_id": "u1", "amount": 50})
        assert resp.status_code == 409
        assert _error(resp) == "LOAN_ALREADY_ACTIVE"

    def test_repay_errors(self, client):
        loan = client.post("/api/loans/request", json={"user_id": "u1", "amount": 100}).json()
        short = client.post(
            "/api/loans/repay", json={"user_id": "u1", "loan_id": loan["id"], "amount": 115}
        )
        assert short.status_code == 402
        assert _error(short) == "INSUFFICIENT_FUNDS"

        missing = client.post(
            "/api/loans/repay", json={"user_id": "u1", "loan_id": "nope", "amount": 1}
        )
        assert missing.status_code == 404


class TestSocial:
    def test_gift_types(self, client):
        ids = [g["id"] for g in client.get("/api/tips/gift-types").json()["gift_types"]]
        assert ids == ["heart", "coffee", "star", "trophy"]

    def test_tip(self, client, store):
        store.apply("alice", "coins", 60, "referral", "r1")
        resp = client.post(
            "/api/tips", json={"sender_id": "alice", "receiver_id": "bob", "gift_type": "star"}
        )
        assert resp.status_code == 200
        assert resp.json()["amount"] == 50
        assert resp.json()["sender_balances"]["coins"] == 10

        broke = client.post(
            "/api/tips", json={"sender_id": "alice", "receiver_id": "bob", "amount": 11}
        )
        assert broke.status_code == 402

    def test_referral_flow(self, client):
        code = client.post("/api/referrals/code", json={"user_id": "alice"}).json()["code"]
        reg = client.post("/api/referrals/register", json={"user_id": "bob", "code": code})
        assert reg.status_code == 200
        assert reg.json()["coins_awarded"] == 25

        again = client.post("/api/referrals/register", json={"user_id": "bob", "code": code})
        assert again.status_code == 409
        unknown = client.post("/api/referrals/register", json={"user_id": "carol", "code": "NOPE1234"})
        assert unknown.status_code == 404

        claim = client.post("/api/referrals/claim", json={"user_id": "alice"}).json()
        assert (claim["claimed_count"], claim["total_coins"]) == (1, 50)

    def test_check_in(self, client):
        first = client.post("/api/streaks/check-in", json={"user_id": "u1", "day": "2026-03-01"})
        assert first.json()["points_awarded"] == 3
        second = client.post("/api/streaks/check-in", json={"user_id": "u1", "day": "2026-03-02"})
        assert (second.json()["current_days"], second.json()["points_awarded"]) == (2, 6)

    def test_comment_like_cascade(self, client, store):
        resp = client.post(
            "/api/comments", json={"comment_id": "c1", "post_id": "p1", "author_id": "bob"}
        )
        assert resp.status_code == 200
        for voter in ("v1", "v2", "v3"):
            like = client.post("/api/comments/c1/likes", json={"user_id": voter}).json()
        assert (like["like_count"], like["is_top"], like["rewarded"]) == (3, True, True)
        assert store.get_balance("bob", "coins") == 5

        missing = client.post("/api/comments/nope/likes", json={"user_id": "v1"})
        assert missing.status_code == 404
        assert _error(missing) == "COMMENT_NOT_FOUND"


class TestAdminEndpoints:
    def test_sweep_defaults(self, client, store, admin_token):
        loan = request_loan(store, "u1", 100, 7, now=utcnow() - timedelta(days=30))
        resp = client.post("/api/admin/loans/sweep-defaults", headers=_auth(admin_token))
        assert resp.status_code == 200
        defaulted = resp.json()["defaulted"]
        assert [(d["id"], d["status"]) for d in defaulted] == [(loan.id, "defaulted")]

    def test_reconcile(self, client, store, admin_token):
        store.apply("u1", "coins", 10, "referral", "r1")
        resp = client.get("/api/admin/reconcile", headers=_auth(admin_token))
        assert resp.status_code == 200
        assert (resp.json()["checked"], resp.json()["mismatched"]) == (1, 0)

    def test_archive_blocks_mutation(self, client, store, admin_token):
        store.apply("u1", "points", 5, "post", "p1")
        resp = client.post("/api/admin/wallets/u1/archive", headers=_auth(admin_token))
        assert resp.status_code == 200
        assert resp.json()["archived_at"] is not None

        blocked = client.post(
            "/api/reward-events",
            json={"user_id": "u1", "event_type": "post_created", "reference_id": "p2"},
        )
        assert blocked.status_code == 409
        assert _error(blocked) == "WALLET_ARCHIVED"
        assert client.get("/api/wallet/u1").json()["archived"] is True

    def test_cache_reload(self, client, admin_token):
        ok = client.post(
            "/api/admin/cache/reload", json={"table": "badges"}, headers=_auth(admin_token)
        )
        assert ok.status_code == 200
        assert ok.json() == {"reloaded": "badges"}

        bad = client.post(
            "/api/admin/cache/reload", json={"table": "wallets"}, headers=_auth(admin_token)
        )
        assert bad.status_code == 400
