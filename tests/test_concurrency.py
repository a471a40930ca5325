"""
Tests for concurrent debits against one wallet.
"""
import asyncio

import pytest

from coin_ledger.services.journal import Journal
from coin_ledger.services.ledger_service import LedgerService
from coin_ledger.utils.exceptions import InsufficientFunds


class TestConcurrentTransfers:

    @pytest.mark.asyncio
    async def test_parallel_transfers_never_overdraw(self, session_factory, account_factory):
        """Five 250-coin transfers from a 1000-coin wallet: four land, one fails."""
        sender = await account_factory(balance=1000)
        recipients = [await account_factory(balance=0) for _ in range(5)]

        async def send(recipient_id):
            async with session_factory() as session:
                service = LedgerService(session)
                try:
                    txn = await service.transfer(sender.account_id, recipient_id, 250)
                    return txn.status
                except InsufficientFunds as exc:
                    return exc.code

        results = await asyncio.gather(*(send(r.account_id) for r in recipients))

        assert sorted(results) == ["closed"] * 4 + ["insufficient_funds"]
        async with session_factory() as session:
            service = LedgerService(session)
            assert await service.get_balance(sender.account_id) == 0
            received = [await service.get_balance(r.account_id) for r in recipients]
            assert sorted(received) == [0, 250, 250, 250, 250]

            wallet = await service.get_wallet(sender.account_id)
            assert await Journal(session).signed_sum(wallet.wallet_id) == 0

    @pytest.mark.asyncio
    async def test_parallel_rewards_all_apply(self, session_factory, account_factory):
        account = await account_factory(balance=0)

        async def earn():
            async with session_factory() as session:
                txn = await LedgerService(session).reward(account.account_id, 5, "forum.like.received", "forum")
                return txn.status

        results = await asyncio.gather(*(earn() for _ in range(4)))

        assert results == ["closed"] * 4
        async with session_factory() as session:
            assert await LedgerService(session).get_balance(account.account_id) == 20

    @pytest.mark.asyncio
    async def test_parallel_transfers_to_one_recipient(self, session_factory, account_factory):
        """The same five transfers aimed at a single recipient stay within the velocity limits."""
        sender = await account_factory(balance=1000)
        recipient = await account_factory(balance=0)

        async def send():
            async with session_factory() as session:
                service = LedgerService(session)
                try:
                    txn = await service.transfer(sender.account_id, recipient.account_id, 250)
                    return txn.status
                except InsufficientFunds as exc:
                    return exc.code

        results = await asyncio.gather(*(send() for _ in range(5)))

        assert sorted(results) == ["closed"] * 4 + ["insufficient_funds"]
        async with session_factory() as session:
            service = LedgerService(session)
            assert await service.get_balance(sender.account_id) == 0
            assert await service.get_balance(recipient.account_id) == 1000
            assert await service.list_fraud_signals(account_id=sender.account_id) == []
