"""
API tests through FastAPI's TestClient.
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from uuid import UUID

from fastapi.testclient import TestClient

from games.settlement import RoundRegistry
from ledger import api
from ledger.models import Account, utcnow
from ledger.storage import InMemoryStorage


USER_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
ADMIN_ID = UUID("99999999-9999-9999-9999-999999999999")
USER = {"X-User-Id": str(USER_ID)}
ADMIN = {"X-User-Id": str(ADMIN_ID)}


class FixedRandom:
    """Die shows 5, wheel lands on 0.2x, crash point 4.99."""

    def random(self):
        return 0.5

    def uniform(self, a, b):
        return 10.0

    def randint(self, a, b):
        return 5

    def randrange(self, n):
        return 5

    def choice(self, seq):
        return seq[0]


@pytest.fixture
def client(monkeypatch):
    storage = InMemoryStorage()
    storage.save_account(Account(user_id=ADMIN_ID, is_admin=True))
    monkeypatch.setattr(api, "storage", storage)
    monkeypatch.setattr(api, "registry", RoundRegistry())
    monkeypatch.setattr(api, "rng", FixedRandom())
    return TestClient(api.app)


def go_demo(client):
    response = client.post("/me/account-type", json={"account_type": "demo"}, headers=USER)
    assert response.status_code == 200


def balance(client):
    return Decimal(client.get("/me/balance", headers=USER).json()["current_balance"])


class TestAccountRoutes:
    """Tests for account and balance routes."""

    def test_health(self, client):
        """Health check responds."""
        assert client.get("/health").json()["status"] == "healthy"

    def test_sign_in_required(self, client):
        """Anonymous calls get 401 with the sign-in message."""
        response = client.get("/me/balance")

        assert response.status_code == 401
        assert response.json()["detail"]["message"] == "Please sign in to continue."

    def test_demo_balance_seeded(self, client):
        """Switching to demo shows the 100.00 starting balance."""
        assert balance(client) == Decimal("0.00")
        go_demo(client)
        assert balance(client) == Decimal("100.00")

    def test_ledger_history(self, client):
        """History lists the seeding deposit."""
        go_demo(client)
        history = client.get("/me/ledger", headers=USER).json()

        assert history["total_count"] == 1
        assert history["entries"][0]["details"]["note"] == "Initial demo funds"


class TestGameRoutes:
    """Tests for wagering routes."""

    def test_dice_win(self, client):
        """Roll 5 beats 4-higher and pays 2.85x."""
        go_demo(client)
        response = client.post("/games/dice", json={"stake": "10.00", "target": 4, "direction": "higher"},
                               headers=USER)

        assert response.status_code == 200
        assert response.json()["outcome"]["payout"] == "28.50"
        assert balance(client) == Decimal("118.50")

    def test_wheel_partial_loss(self, client):
        """The 0.2x segment returns a fifth of the stake."""
        go_demo(client)
        response = client.post("/games/wheel", json={"stake": "20.00"}, headers=USER)

        assert response.json()["net"] == "-16.00"
        assert balance(client) == Decimal("84.00")

    def test_insufficient_funds(self, client):
        """Stakes above the balance get 402 and the funds message."""
        go_demo(client)
        response = client.post("/games/wheel", json={"stake": "500.00"}, headers=USER)

        assert response.status_code == 402
        assert response.json()["detail"]["message"] == "You don't have enough funds for this."

    def test_invalid_dice_bet(self, client):
        """Impossible predictions are rejected."""
        go_demo(client)
        response = client.post("/games/dice", json={"stake": "1.00", "target": 6, "direction": "higher"},
                               headers=USER)

        assert response.status_code == 400

    def test_crash_round_cash_out(self, client):
        """An interactive round can be cashed out once."""
        go_demo(client)
        started = client.post("/games/crash/rounds", json={"stake": "10.00"}, headers=USER).json()
        assert started["state"] == "flying"
        assert "crash_point" not in started

        cashed = client.post(f"/games/crash/rounds/{started['round_id']}/cash-out", headers=USER).json()

        assert cashed["state"] == "cashed_out"
        assert cashed["crash_point"] == "4.99"
        again = client.post(f"/games/crash/rounds/{started['round_id']}/cash-out", headers=USER)
        assert again.status_code == 404

    def test_one_open_crash_round(self, client):
        """A second round while one is flying is refused."""
        go_demo(client)
        client.post("/games/crash/rounds", json={"stake": "10.00"}, headers=USER)

        response = client.post("/games/crash/rounds", json={"stake": "10.00"}, headers=USER)

        assert response.status_code == 409


class TestPaymentRoutes:
    """Tests for deposit and withdrawal routes."""

    def test_deposit_status(self, client):
        """Owners can check a deposit's status; other users get 404."""
        pending = client.post("/deposits", json={"amount": "50.00", "method": "mpesa"}, headers=USER).json()

        assert client.get(f"/deposits/{pending['id']}/status", headers=USER).json()["status"] == "pending"
        client.post(f"/admin/deposits/{pending['id']}/confirm", json={"approve": True}, headers=ADMIN)
        response = client.get(f"/deposits/{pending['id']}/status", params={"polls": 2}, headers=USER)

        assert response.json()["status"] == "completed"
        assert client.get(f"/deposits/{pending['id']}/status", headers=ADMIN).status_code == 404

    def test_withdrawal_and_rejection(self, client):
        """Rejected withdrawals keep the debit."""
        go_demo(client)
        withdrawal = client.post(
            "/withdrawals",
            json={"amount": "40.00", "method": "mpesa", "details": {"phone_number": "+254700000000"}},
            headers=USER,
        ).json()
        assert balance(client) == Decimal("60.00")

        response = client.post(f"/admin/withdrawals/{withdrawal['id']}/resolve",
                               json={"approve": False}, headers=ADMIN)

        assert response.json()["status"] == "rejected"
        assert balance(client) == Decimal("60.00")

    def test_admin_routes_forbidden(self, client):
        """Regular users get 403 on admin routes."""
        response = client.post("/admin/withdrawals/process", headers=USER)

        assert response.status_code == 403

    def test_deposit_confirmation(self, client):
        """A real deposit counts after an admin confirms it."""
        pending = client.post("/deposits", json={"amount": "50.00", "method": "mpesa"}, headers=USER).json()
        assert pending["status"] == "pending"
        assert balance(client) == Decimal("0.00")

        client.post(f"/admin/deposits/{pending['id']}/confirm", json={"approve": True}, headers=ADMIN)

        assert client.get(f"/transactions/{pending['id']}", headers=USER).json()["status"] == "completed"
        assert balance(client) == Decimal("50.00")

    def test_other_users_transaction_hidden(self, client):
        """Transactions are only visible to their owner."""
        pending = client.post("/deposits", json={"amount": "50.00"}, headers=USER).json()

        assert client.get(f"/transactions/{pending['id']}", headers=ADMIN).status_code == 404


class TestRewardRoutes:
    """Tests for rewards, referrals and the lottery."""

    def test_claim_twice(self, client):
        """The second claim gets 409 and the already-claimed message."""
        referred = UUID("660e8400-e29b-41d4-a716-446655440001")
        referred_headers = {"X-User-Id": str(referred)}
        client.post("/referrals", json={"referrer_user_id": str(USER_ID), "referred_user_id": str(referred)},
                    headers=referred_headers)
        pending = client.post("/deposits", json={"amount": "20.00"}, headers=referred_headers).json()
        client.post(f"/admin/deposits/{pending['id']}/confirm", json={"approve": True}, headers=ADMIN)

        rewards = [r for r in client.get("/me/rewards", headers=USER).json() if r["reward_type"] == "referral_bonus"]
        assert [r["amount"] for r in rewards] == ["10.00"]
        first = client.post(f"/rewards/{rewards[0]['id']}/claim", headers=USER)
        second = client.post(f"/rewards/{rewards[0]['id']}/claim", headers=USER)

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["detail"]["message"] == "This reward was already claimed."
        assert balance(client) == Decimal("10.00")

    def test_referral_registered_by_referred_user(self, client):
        """Nobody can register a referral on someone else's behalf."""
        response = client.post(
            "/referrals",
            json={"referrer_user_id": str(ADMIN_ID), "referred_user_id": "660e8400-e29b-41d4-a716-446655440001"},
            headers=USER,
        )

        assert response.status_code == 403

    def test_lottery_round_trip(self, client):
        """Buy a ticket, settle the draw, collect the prize."""
        draw = client.post("/admin/draws", json={
            "winning_numbers": [1, 2, 3, 4, 5, 6],
            "draw_date": (utcnow() + timedelta(days=1)).isoformat(),
            "jackpot": "1000000.00",
        }, headers=ADMIN).json()
        go_demo(client)

        ticket = client.post("/tickets", json={"numbers": [1, 2, 3, 40, 41, 42]}, headers=USER)
        assert ticket.status_code == 201
        assert balance(client) == Decimal("95.00")

        settled = client.post(f"/admin/draws/{draw['id']}/settle", headers=ADMIN).json()

        assert settled[0]["status"] == "won"
        assert balance(client) == Decimal("105.00")

    def test_signup_bonus_on_first_sign_in(self, client):
        """A new account gets one unclaimed welcome bonus."""
        client.get("/me/account", headers=USER)

        rewards = client.get("/me/rewards", headers=USER).json()

        assert [(r["reward_type"], r["amount"]) for r in rewards] == [("signup_bonus", "100.00")]
        assert balance(client) == Decimal("0.00")

    def test_admin_cashback(self, client):
        """Admins issue tier cashback as a claimable reward."""
        response = client.post("/admin/vip/cashback",
                               json={"user_id": str(USER_ID), "net_loss": "200.00", "points": 1500},
                               headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["amount"] == "4.00"
        assert client.post("/admin/vip/cashback", json={"user_id": str(USER_ID), "net_loss": "200.00"},
                           headers=USER).status_code == 403

    def test_admin_expire_rewards(self, client):
        """The expiry sweep is admin only and leaves live rewards alone."""
        client.get("/me/account", headers=USER)

        response = client.post("/admin/rewards/expire", params={"user_id": str(USER_ID)}, headers=ADMIN)

        assert response.status_code == 200
        assert response.json() == []
        assert client.post("/admin/rewards/expire", params={"user_id": str(USER_ID)},
                           headers=USER).status_code == 403

    def test_vip_progress(self, client):
        """VIP progress is computed from points."""
        progress = client.get("/vip/progress", params={"points": 1500}).json()

        assert progress["tier"]["name"] == "Silver"
        assert progress["next_tier"]["name"] == "Gold"
