"""
Tests for FIFO coin expiration.
"""
from datetime import datetime, UTC, timedelta

import pytest

from coin_ledger.services.expiration_service import ExpirationService
from coin_ledger.services.ledger_service import LedgerService
from coin_ledger.services.system_accounts import EXPIRED_COINS_ACCOUNT_ID


def _days_from_now(days: int) -> datetime:
    return datetime.now(UTC) + timedelta(days=days)


class TestExpireAccount:

    @pytest.mark.asyncio
    async def test_earned_batch_expires_after_horizon(self, db_session, ledger, account_factory):
        account = await account_factory()
        reward = await ledger.reward(account.account_id, 50, "broker.review.verified", "forum")
        sink_before = await ledger.get_balance(EXPIRED_COINS_ACCOUNT_ID)

        result = await ExpirationService(db_session).expire_account(account.account_id, _days_from_now(91))

        assert result.transactions_created == 1
        assert result.coins_expired == 50
        assert await ledger.get_balance(account.account_id) == 100
        assert await ledger.get_balance(EXPIRED_COINS_ACCOUNT_ID) == sink_before + 50

        expire_txn = await ledger.get_transaction(result.transaction_ids[0])
        assert expire_txn.type == "expire"
        assert expire_txn.amount == 50
        assert expire_txn.context["batch_transaction_id"] == str(reward.transaction_id)
        assert expire_txn.context["horizon_days"] == 90

    @pytest.mark.asyncio
    async def test_nothing_expires_inside_horizon(self, db_session, ledger, account_factory):
        account = await account_factory()
        await ledger.reward(account.account_id, 50, "forum.thread.created", "forum")

        result = await ExpirationService(db_session).expire_account(account.account_id, _days_from_now(89))

        assert result.transactions_created == 0
        assert await ledger.get_balance(account.account_id) == 150

    @pytest.mark.asyncio
    async def test_signup_and_transferred_coins_never_expire(self, db_session, ledger, account_factory):
        sender = await account_factory(balance=300)
        account = await account_factory()
        await ledger.transfer(sender.account_id, account.account_id, 40)

        result = await ExpirationService(db_session).expire_account(account.account_id, _days_from_now(365))

        assert result.transactions_created == 0
        assert await ledger.get_balance(account.account_id) == 140

    @pytest.mark.asyncio
    async def test_spending_consumes_oldest_coins_first(self, db_session, ledger, account_factory):
        account = await account_factory()
        sink = await account_factory()
        await ledger.reward(account.account_id, 50, "referral.signup.completed", "referral")
        # Consumes the 100 signup coins, then 20 of the reward
        await ledger.transfer(account.account_id, sink.account_id, 120)

        batches = await ledger.unconsumed_batches(account.account_id)
        assert [(b.amount, b.remaining) for b in batches] == [(50, 30)]

        result = await ExpirationService(db_session).expire_account(account.account_id, _days_from_now(91))

        assert result.coins_expired == 30
        assert await ledger.get_balance(account.account_id) == 0

    @pytest.mark.asyncio
    async def test_fully_spent_batch_has_nothing_to_expire(self, db_session, ledger, account_factory):
        account = await account_factory(balance=0)
        sink = await account_factory()
        await ledger.reward(account.account_id, 30, "onboarding.profile.complete", "onboarding")
        await ledger.transfer(account.account_id, sink.account_id, 30)

        assert await ledger.unconsumed_batches(account.account_id) == []
        result = await ExpirationService(db_session).expire_account(account.account_id, _days_from_now(91))
        assert result.transactions_created == 0

    @pytest.mark.asyncio
    async def test_batches_expire_independently(self, db_session, account_factory):
        account = await account_factory(balance=0)
        old_ledger = LedgerService(db_session, clock=lambda: datetime.now(UTC) - timedelta(days=100))
        await old_ledger.reward(account.account_id, 25, "forum.reply.posted", "forum")
        ledger = LedgerService(db_session)
        await ledger.reward(account.account_id, 35, "forum.reply.posted", "forum")

        result = await ExpirationService(db_session).expire_account(account.account_id, datetime.now(UTC))

        assert result.coins_expired == 25
        assert await ledger.get_balance(account.account_id) == 35
        remaining = await ledger.unconsumed_batches(account.account_id)
        assert [(b.amount, b.remaining) for b in remaining] == [(35, 35)]


class TestExpirationRun:

    @pytest.mark.asyncio
    async def test_run_is_idempotent(self, db_session, ledger, account_factory):
        account = await account_factory()
        await ledger.reward(account.account_id, 60, "marketplace.ea.published", "marketplace")
        as_of = _days_from_now(91)
        service = ExpirationService(db_session)

        first = await service.run(as_of)
        balance_after_first = await ledger.get_balance(account.account_id)
        second = await service.run(as_of)

        assert first.transactions_created >= 1
        assert account.account_id in await service.candidate_accounts(as_of - timedelta(days=90))
        assert balance_after_first == 100
        assert second.transactions_created == 0
        assert second.coins_expired == 0
        assert await ledger.get_balance(account.account_id) == 100

    @pytest.mark.asyncio
    async def test_inactive_accounts_are_skipped(self, db_session, ledger, account_factory):
        account = await account_factory()
        await ledger.reward(account.account_id, 60, "marketplace.ea.published", "marketplace")
        await ledger.deactivate_account(account.account_id)
        service = ExpirationService(db_session)

        as_of = _days_from_now(91)
        assert account.account_id not in await service.candidate_accounts(as_of - timedelta(days=90))
