"""
Tests for WalletStore - compare-and-swap balance updates and holds.
"""
import uuid

import pytest

from coin_ledger.services.wallet_store import WalletStore
from coin_ledger.utils.exceptions import ConcurrentModification, InsufficientFunds, InvalidAmount, NotFound


class TestApplyDelta:
    """Balance updates only land when the caller saw the current balance."""

    @pytest.mark.asyncio
    async def test_credit_updates_balance_and_lifetime_earned(self, db_session, account_factory):
        account = await account_factory(balance=100)
        store = WalletStore(db_session)
        wallet = await store.get_wallet_for_account(account.account_id)
        earned_before = wallet.lifetime_earned
        version_before = wallet.version

        updated = await store.apply_delta(wallet.wallet_id, 40, expected_balance_before=100)

        assert updated.balance == 140
        assert updated.available_balance == 140
        assert updated.lifetime_earned == earned_before + 40
        assert updated.version == version_before + 1
        events = store.drain_events()
        assert len(events) == 1
        assert events[0].balance_before == 100
        assert events[0].balance_after == 140
        await db_session.rollback()

    @pytest.mark.asyncio
    async def test_stale_expected_balance_raises(self, db_session, account_factory):
        account = await account_factory(balance=100)
        store = WalletStore(db_session)
        account_id = account.account_id
        wallet = await store.get_wallet_for_account(account_id)

        with pytest.raises(ConcurrentModification):
            await store.apply_delta(wallet.wallet_id, -10, expected_balance_before=90)
        await db_session.rollback()

        assert await store.get_balance(account_id) == 100
        assert store.drain_events() == []

    @pytest.mark.asyncio
    async def test_debit_cannot_overdraw_available_balance(self, db_session, account_factory):
        account = await account_factory(balance=50)
        store = WalletStore(db_session)
        wallet = await store.get_wallet_for_account(account.account_id)

        with pytest.raises(ConcurrentModification):
            await store.apply_delta(wallet.wallet_id, -60, expected_balance_before=50)
        await db_session.rollback()

    @pytest.mark.asyncio
    async def test_unknown_account_raises_not_found(self, db_session):
        store = WalletStore(db_session)
        with pytest.raises(NotFound):
            await store.get_wallet_for_account(uuid.uuid4())
        with pytest.raises(NotFound):
            await store.snapshot([uuid.uuid4()])


class TestHolds:
    """Holds reduce the available balance without touching the balance."""

    @pytest.mark.asyncio
    async def test_reserve_and_release(self, ledger, account_factory):
        account = await account_factory(balance=200)

        hold = await ledger.reserve(account.account_id, 150, reason="escrow")
        wallet = await ledger.get_wallet(account.account_id)
        assert hold.status == "active"
        assert wallet.balance == 200
        assert wallet.available_balance == 50

        released = await ledger.release(hold.hold_id)
        wallet = await ledger.get_wallet(account.account_id)
        assert released.status == "released"
        assert released.released_at is not None
        assert wallet.available_balance == 200

    @pytest.mark.asyncio
    async def test_reserve_more_than_available(self, ledger, account_factory):
        account = await account_factory(balance=100)
        await ledger.reserve(account.account_id, 80)

        with pytest.raises(InsufficientFunds):
            await ledger.reserve(account.account_id, 30)

    @pytest.mark.asyncio
    async def test_reserve_rejects_bad_amounts(self, ledger, account_factory):
        account = await account_factory(balance=100)
        for amount in (0, -5, 2.5):
            with pytest.raises(InvalidAmount):
                await ledger.reserve(account.account_id, amount)

    @pytest.mark.asyncio
    async def test_release_twice_raises_not_found(self, ledger, account_factory):
        account = await account_factory(balance=100)
        hold = await ledger.reserve(account.account_id, 10)
        await ledger.release(hold.hold_id)

        with pytest.raises(NotFound):
            await ledger.release(hold.hold_id)

    @pytest.mark.asyncio
    async def test_release_checks_owning_wallet(self, ledger, account_factory):
        owner = await account_factory(balance=100)
        other = await account_factory(balance=100)
        hold = await ledger.reserve(owner.account_id, 10)
        other_wallet = await ledger.get_wallet(other.account_id)

        with pytest.raises(NotFound):
            await ledger.release(hold.hold_id, wallet_id=other_wallet.wallet_id)

    @pytest.mark.asyncio
    async def test_held_funds_cannot_be_transferred(self, ledger, account_factory):
        sender = await account_factory(balance=100)
        recipient = await account_factory()
        await ledger.reserve(sender.account_id, 70)

        with pytest.raises(InsufficientFunds):
            await ledger.transfer(sender.account_id, recipient.account_id, 50)

        txn = await ledger.transfer(sender.account_id, recipient.account_id, 30)
        assert txn.status == "closed"
        wallet = await ledger.get_wallet(sender.account_id)
        assert wallet.balance == 70
        assert wallet.available_balance == 0
