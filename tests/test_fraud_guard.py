"""
Tests for the fraud/velocity guard and the periodic fraud scan.
"""
import pytest

from coin_ledger.config import get_settings
from coin_ledger.services.fraud_guard import FraudGuard, _severity
from coin_ledger.utils.exceptions import FraudBlocked, InsufficientFunds


def _tighten(ledger, **limits):
    ledger.fraud_guard.settings = get_settings().model_copy(update=limits)


class TestTransferVelocity:

    @pytest.mark.asyncio
    async def test_too_many_transfers_in_window(self, ledger, account_factory):
        sender = await account_factory(balance=500)
        recipients = [await account_factory() for _ in range(3)]
        _tighten(ledger, fraud_max_transfers_per_window=2)

        await ledger.transfer(sender.account_id, recipients[0].account_id, 10)
        await ledger.transfer(sender.account_id, recipients[1].account_id, 10)
        with pytest.raises(FraudBlocked) as exc_info:
            await ledger.transfer(sender.account_id, recipients[2].account_id, 10)

        assert exc_info.value.message == "rate_limit_breach"
        failed = await ledger.get_transaction(exc_info.value.transaction_id)
        assert failed.status == "failed"
        assert failed.failure_code == "fraud_blocked"
        assert await ledger.get_balance(sender.account_id) == 480

        signals = await ledger.list_fraud_signals(account_id=sender.account_id)
        assert len(signals) == 1
        assert signals[0].signal_type == "rate_limit_breach"
        assert signals[0].ledger_transaction_id == failed.transaction_id
        assert signals[0].review_status == "pending"

    @pytest.mark.asyncio
    async def test_cumulative_amount_in_window(self, ledger, account_factory):
        sender = await account_factory(balance=1000)
        first, second = await account_factory(), await account_factory()
        _tighten(ledger, fraud_max_amount_per_window=300)

        await ledger.transfer(sender.account_id, first.account_id, 200)
        with pytest.raises(FraudBlocked) as exc_info:
            await ledger.transfer(sender.account_id, second.account_id, 150)

        assert exc_info.value.signal.signal_type == "velocity_anomaly"
        assert exc_info.value.signal.evidence["total"] == 350

    @pytest.mark.asyncio
    async def test_repeat_transfers_to_same_recipient(self, ledger, account_factory):
        sender = await account_factory(balance=500)
        recipient = await account_factory()

        for _ in range(5):
            await ledger.transfer(sender.account_id, recipient.account_id, 5)
        with pytest.raises(FraudBlocked) as exc_info:
            await ledger.transfer(sender.account_id, recipient.account_id, 5)

        assert exc_info.value.signal.signal_type == "suspicious_pattern"
        assert exc_info.value.signal.evidence["count"] == 6
        assert await ledger.get_balance(recipient.account_id) == 125

    @pytest.mark.asyncio
    async def test_single_amount_cap_checked_before_funds(self, ledger, account_factory):
        sender = await account_factory(balance=100)
        recipient = await account_factory()

        with pytest.raises(FraudBlocked) as exc_info:
            await ledger.transfer(sender.account_id, recipient.account_id, 1500)

        assert exc_info.value.signal.signal_type == "velocity_anomaly"
        assert exc_info.value.signal.evidence["rule"] == "single_amount"

    @pytest.mark.asyncio
    async def test_failed_transfers_do_not_count(self, ledger, account_factory):
        sender = await account_factory(balance=10)
        recipients = [await account_factory() for _ in range(3)]
        _tighten(ledger, fraud_max_transfers_per_window=1)

        for recipient in recipients[:2]:
            with pytest.raises(InsufficientFunds):
                await ledger.transfer(sender.account_id, recipient.account_id, 50)

        txn = await ledger.transfer(sender.account_id, recipients[2].account_id, 5)
        assert txn.status == "closed"

    @pytest.mark.asyncio
    async def test_rewards_are_not_velocity_checked(self, ledger, account_factory):
        account = await account_factory(balance=0)
        _tighten(ledger, fraud_max_transfers_per_window=1)

        for _ in range(3):
            await ledger.reward(account.account_id, 10, "forum.like.received", "forum")

        assert await ledger.get_balance(account.account_id) == 30


class TestSeverity:

    def test_severity_scales_with_overshoot(self):
        assert _severity(11, 10) == "high"
        assert _severity(20, 10) == "high"
        assert _severity(21, 10) == "critical"


class TestFraudScan:

    @pytest.mark.asyncio
    async def test_scan_flags_fast_identical_earning(self, db_session, ledger, account_factory):
        account = await account_factory(balance=0)
        for _ in range(12):
            await ledger.reward(account.account_id, 50, "forum.reply.posted", "forum")

        signals = await FraudGuard(db_session).scan_recent_activity()

        mine = {s.signal_type: s for s in signals if s.account_id == account.account_id}
        assert set(mine) == {"rate_limit_breach", "suspicious_pattern"}
        assert mine["rate_limit_breach"].evidence["earned"] == 600
        assert mine["suspicious_pattern"].evidence["count"] == 12

        again = await FraudGuard(db_session).scan_recent_activity()
        assert not [s for s in again if s.account_id == account.account_id]

    @pytest.mark.asyncio
    async def test_scan_never_blocks(self, db_session, ledger, account_factory):
        account = await account_factory(balance=0)
        for _ in range(11):
            await ledger.reward(account.account_id, 60, "forum.thread.created", "forum")
        await FraudGuard(db_session).scan_recent_activity()

        await ledger.reward(account.account_id, 60, "forum.thread.created", "forum")
        assert await ledger.get_balance(account.account_id) == 720
