"""
HTTP API tests.
"""
import uuid

import pytest
from httpx import AsyncClient, ASGITransport

from coin_ledger.config import get_settings


@pytest.fixture
async def client(test_app):
    async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as ac:
        yield ac


async def _create_account(client, kind: str = "user") -> dict:
    response = await client.post("/accounts", json={"kind": kind})
    assert response.status_code == 201
    return response.json()


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["database"] == "connected"
        assert data["locks"] == "memory"

    @pytest.mark.asyncio
    async def test_status_reports_economy(self, client):
        response = await client.get("/status")

        assert response.status_code == 200
        economy = response.json()["economy"]
        assert economy["signup_bonus_amount"] == 100
        assert economy["commission_seller_percent"] == 80
        assert economy["coin_expiration_days"] == 90


class TestAccountEndpoints:

    @pytest.mark.asyncio
    async def test_create_account_with_bonus(self, client):
        account = await _create_account(client)

        assert account["kind"] == "user"
        assert account["is_active"] is True
        assert account["wallet"]["balance"] == 100
        assert account["wallet"]["lifetime_earned"] == 100

    @pytest.mark.asyncio
    async def test_invalid_kind_is_422(self, client):
        response = await client.post("/accounts", json={"kind": "system"})

        assert response.status_code == 422
        assert response.json()["detail"] == "Request validation failed"

    @pytest.mark.asyncio
    async def test_unknown_account_is_404(self, client):
        response = await client.get(f"/accounts/{uuid.uuid4()}/balance")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_history_pages(self, client):
        account = await _create_account(client)
        for _ in range(2):
            other = await _create_account(client)
            await client.post("/transfers", json={
                "from_account_id": account["account_id"],
                "to_account_id": other["account_id"],
                "amount": 5,
            })

        first = await client.get(
            f"/accounts/{account['account_id']}/transactions", params={"page_size": 2}
        )
        second = await client.get(
            f"/accounts/{account['account_id']}/transactions",
            params={"page_size": 2, "cursor": first.json()["next_cursor"]},
        )

        assert [t["type"] for t in first.json()["transactions"]] == ["transfer", "transfer"]
        assert [t["type"] for t in second.json()["transactions"]] == ["signup_bonus"]
        assert second.json()["next_cursor"] is None

    @pytest.mark.asyncio
    async def test_history_rejects_bad_cursor(self, client):
        account = await _create_account(client)

        response = await client.get(
            f"/accounts/{account['account_id']}/transactions", params={"cursor": "garbage"}
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unconsumed_batches(self, client):
        account = await _create_account(client)
        await client.post("/rewards", json={
            "account_id": account["account_id"], "amount": 20,
            "trigger": "forum.reply.posted", "channel": "forum",
        })

        response = await client.get(f"/accounts/{account['account_id']}/batches")

        assert response.status_code == 200
        batches = response.json()
        assert len(batches) == 1
        assert batches[0]["amount"] == 20
        assert batches[0]["remaining"] == 20

    @pytest.mark.asyncio
    async def test_hold_and_release(self, client):
        account = await _create_account(client)
        account_id = account["account_id"]

        created = await client.post(f"/accounts/{account_id}/holds", json={"amount": 60, "reason": "escrow"})
        balance = await client.get(f"/accounts/{account_id}/balance")
        released = await client.delete(f"/accounts/{account_id}/holds/{created.json()['hold_id']}")

        assert created.status_code == 201
        assert balance.json() == {"account_id": account_id, "balance": 100, "available_balance": 40}
        assert released.status_code == 200
        assert released.json()["status"] == "released"


class TestMoneyEndpoints:

    @pytest.mark.asyncio
    async def test_transfer_returns_entries(self, client):
        sender = await _create_account(client)
        recipient = await _create_account(client)

        response = await client.post("/transfers", json={
            "from_account_id": sender["account_id"],
            "to_account_id": recipient["account_id"],
            "amount": 40,
            "idempotency_key": f"api-{uuid.uuid4()}",
        })

        assert response.status_code == 200
        txn = response.json()
        assert txn["status"] == "closed"
        assert [e["direction"] for e in txn["entries"]] == ["debit", "credit"]
        assert txn["entries"][0]["balance_after"] == 60
        assert txn["entries"][1]["balance_after"] == 140

    @pytest.mark.asyncio
    async def test_transfer_replay_returns_same_transaction(self, client):
        sender = await _create_account(client)
        recipient = await _create_account(client)
        body = {
            "from_account_id": sender["account_id"],
            "to_account_id": recipient["account_id"],
            "amount": 10,
            "idempotency_key": f"api-{uuid.uuid4()}",
        }

        first = await client.post("/transfers", json=body)
        second = await client.post("/transfers", json=body)
        balance = await client.get(f"/accounts/{sender['account_id']}/balance")

        assert first.json()["transaction_id"] == second.json()["transaction_id"]
        assert balance.json()["balance"] == 90

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount,error", [
        (0, "invalid_amount"),
        (2.5, "invalid_amount"),
        (500, "insufficient_funds"),
    ])
    async def test_transfer_errors_are_400(self, client, amount, error):
        sender = await _create_account(client)
        recipient = await _create_account(client)

        response = await client.post("/transfers", json={
            "from_account_id": sender["account_id"],
            "to_account_id": recipient["account_id"],
            "amount": amount,
        })

        assert response.status_code == 400
        assert response.json()["error"] == error

    @pytest.mark.asyncio
    async def test_failed_transfer_carries_transaction_id(self, client):
        sender = await _create_account(client)
        recipient = await _create_account(client)

        response = await client.post("/transfers", json={
            "from_account_id": sender["account_id"],
            "to_account_id": recipient["account_id"],
            "amount": 500,
        })
        failed = await client.get(f"/transactions/{response.json()['transaction_id']}")

        assert response.status_code == 400
        assert failed.json()["status"] == "failed"
        assert failed.json()["failure_code"] == "insufficient_funds"
        assert failed.json()["entries"] == []

    @pytest.mark.asyncio
    async def test_fraud_block_is_403(self, client):
        sender = await _create_account(client)
        recipient = await _create_account(client)
        await client.post("/admin/adjustments", json={
            "account_id": sender["account_id"], "amount": 2000, "reason": "seed", "admin_id": "ops",
        })

        response = await client.post("/transfers", json={
            "from_account_id": sender["account_id"],
            "to_account_id": recipient["account_id"],
            "amount": 1500,
        })

        assert response.status_code == 403
        assert response.json()["error"] == "fraud_blocked"

    @pytest.mark.asyncio
    async def test_reward_and_invalid_trigger(self, client):
        account = await _create_account(client)

        ok = await client.post("/rewards", json={
            "account_id": account["account_id"], "amount": 5,
            "trigger": "engagement.daily.login", "channel": "engagement",
        })
        bad = await client.post("/rewards", json={
            "account_id": account["account_id"], "amount": 5,
            "trigger": "engagement.daily.cheat", "channel": "engagement",
        })

        assert ok.status_code == 200
        assert ok.json()["context"]["trigger"] == "engagement.daily.login"
        assert bad.status_code == 400
        assert bad.json()["error"] == "invalid_trigger"

    @pytest.mark.asyncio
    async def test_purchase_and_refund(self, client):
        buyer = await _create_account(client)
        seller = await _create_account(client)

        purchase = await client.post("/purchases", json={
            "buyer_id": buyer["account_id"],
            "seller_id": seller["account_id"],
            "amount": 50,
            "content_id": "ea-scalper-v2",
        })
        refund = await client.post(
            f"/purchases/{purchase.json()['transaction_id']}/refund", json={"reason": "duplicate order"}
        )
        buyer_balance = await client.get(f"/accounts/{buyer['account_id']}/balance")
        seller_balance = await client.get(f"/accounts/{seller['account_id']}/balance")

        assert purchase.status_code == 200
        assert purchase.json()["context"]["seller_share"] == 40
        assert purchase.json()["context"]["platform_share"] == 10
        assert len(purchase.json()["entries"]) == 4
        assert refund.status_code == 200
        assert refund.json()["type"] == "refund"
        assert buyer_balance.json()["balance"] == 100
        assert seller_balance.json()["balance"] == 100

    @pytest.mark.asyncio
    async def test_self_purchase_is_400(self, client):
        account = await _create_account(client)

        response = await client.post("/purchases", json={
            "buyer_id": account["account_id"],
            "seller_id": account["account_id"],
            "amount": 10,
            "content_id": "ea-self",
        })

        assert response.status_code == 400
        assert response.json()["error"] == "self_dealing"

    @pytest.mark.asyncio
    async def test_unknown_transaction_is_404(self, client):
        response = await client.get(f"/transactions/{uuid.uuid4()}")

        assert response.status_code == 404


class TestAdminEndpoints:

    @pytest.mark.asyncio
    async def test_burn_adjustment(self, client):
        account = await _create_account(client)

        response = await client.post("/admin/adjustments", json={
            "account_id": account["account_id"], "amount": -30, "reason": "chargeback", "admin_id": "ops-1",
        })
        balance = await client.get(f"/accounts/{account['account_id']}/balance")

        assert response.status_code == 200
        assert response.json()["context"] == {
            "type": "admin_adjustment", "admin_id": "ops-1", "reason": "chargeback",
        }
        assert balance.json()["balance"] == 70

    @pytest.mark.asyncio
    async def test_deactivated_account_is_403(self, client):
        account = await _create_account(client)
        other = await _create_account(client)

        deactivated = await client.post(
            f"/admin/accounts/{account['account_id']}/deactivate", params={"admin_id": "ops-1"}
        )
        response = await client.post("/transfers", json={
            "from_account_id": account["account_id"],
            "to_account_id": other["account_id"],
            "amount": 10,
        })

        assert deactivated.json()["is_active"] is False
        assert response.status_code == 403
        assert response.json()["error"] == "account_inactive"

    @pytest.mark.asyncio
    async def test_bot_policy_roundtrip(self, client):
        bot = await _create_account(client, "bot")

        updated = await client.patch(
            f"/admin/bot-policies/{bot['account_id']}",
            json={"wallet_cap": 300, "action_cooldown_seconds": 0},
            params={"admin_id": "ops-1"},
        )
        fetched = await client.get(f"/admin/bot-policies/{bot['account_id']}")

        assert updated.status_code == 200
        assert fetched.json()["wallet_cap"] == 300
        assert fetched.json()["action_cooldown_seconds"] == 0
        assert fetched.json()["daily_action_limit"] == 50

    @pytest.mark.asyncio
    async def test_bot_policy_for_user_is_404(self, client):
        account = await _create_account(client)

        response = await client.get(f"/admin/bot-policies/{account['account_id']}")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_bot_policy_violation_is_403(self, client):
        bot = await _create_account(client, "bot")

        response = await client.post("/rewards", json={
            "account_id": bot["account_id"], "amount": 500,
            "trigger": "forum.like.received", "channel": "forum",
        })

        assert response.status_code == 403
        assert response.json()["error"] == "policy_violation"
        assert response.json()["detail"] == "wallet_cap_exceeded"

    @pytest.mark.asyncio
    async def test_treasury_stats_and_limit(self, client):
        await _create_account(client, "bot")
        limit = get_settings().bot_treasury_daily_spend_limit

        stats = await client.get("/admin/treasury")
        updated = await client.patch("/admin/treasury", json={"daily_spend_limit": limit + 250},
                                     params={"admin_id": "ops-1"})
        rejected = await client.patch("/admin/treasury", json={"daily_spend_limit": -5})
        restored = await client.patch("/admin/treasury", json={"daily_spend_limit": limit})

        assert stats.status_code == 200
        assert stats.json()["daily_spend_limit"] == limit
        assert stats.json()["balance"] > 0
        assert stats.json()["funded_bots"] >= 1
        assert updated.status_code == 200
        assert updated.json()["daily_spend_limit"] == limit + 250
        assert rejected.status_code == 422
        assert restored.json()["daily_spend_limit"] == limit

    @pytest.mark.asyncio
    async def test_treasury_snapshot_roundtrip(self, client):
        await _create_account(client)

        taken = await client.post("/admin/treasury/snapshots")
        again = await client.post("/admin/treasury/snapshots")
        listed = await client.get("/admin/treasury/snapshots", params={"limit": 365})

        assert taken.status_code == 200
        snapshot = taken.json()
        assert again.json()["snapshot_id"] == snapshot["snapshot_id"]
        assert snapshot["circulation_total"] == snapshot["user_balances_total"] + snapshot["bot_balances_total"]
        assert snapshot["snapshot_id"] in [item["snapshot_id"] for item in listed.json()]

    @pytest.mark.asyncio
    async def test_fraud_signals_listed(self, client):
        sender = await _create_account(client)
        recipient = await _create_account(client)
        await client.post("/admin/adjustments", json={
            "account_id": sender["account_id"], "amount": 2000, "reason": "seed", "admin_id": "ops",
        })
        await client.post("/transfers", json={
            "from_account_id": sender["account_id"],
            "to_account_id": recipient["account_id"],
            "amount": 1200,
        })

        response = await client.get("/admin/fraud-signals", params={"account_id": sender["account_id"]})

        assert response.status_code == 200
        signals = response.json()
        assert len(signals) == 1
        assert signals[0]["signal_type"] == "velocity_anomaly"
        assert signals[0]["evidence"]["rule"] == "single_amount"

    @pytest.mark.asyncio
    async def test_maintenance_runs(self, client):
        expiration = await client.post("/admin/expiration/run")
        reconciliation = await client.post("/admin/reconciliation/run", params={"record_signals": "false"})
        scan = await client.post("/admin/fraud-scan/run")

        assert expiration.status_code == 200
        assert expiration.json()["accounts_scanned"] >= 0
        assert reconciliation.status_code == 200
        assert reconciliation.json()["unbalanced_transactions"] == []
        assert scan.status_code == 200


class TestApiKey:

    @pytest.mark.asyncio
    async def test_key_required_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(get_settings(), "ledger_api_key", "secret")

        missing = await client.get(f"/accounts/{uuid.uuid4()}")
        wrong = await client.get(f"/accounts/{uuid.uuid4()}", headers={"X-Ledger-Api-Key": "nope"})
        right = await client.get(f"/accounts/{uuid.uuid4()}", headers={"X-Ledger-Api-Key": "secret"})
        health = await client.get("/health")

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert right.status_code == 404
        assert health.status_code == 200
