"""
Tests for balance reconciliation against the journal.
"""
import pytest
from sqlalchemy import update

from coin_ledger.models import Wallet
from coin_ledger.services.reconciliation_service import ReconciliationService


class TestReconciliation:

    @pytest.mark.asyncio
    async def test_consistent_ledger_has_no_drift(self, db_session, ledger, account_factory):
        buyer = await account_factory(balance=400)
        seller = await account_factory()
        purchase = await ledger.purchase(buyer.account_id, seller.account_id, 120, "ea-reconcile")
        await ledger.refund_purchase(purchase.transaction_id)
        await ledger.reward(seller.account_id, 15, "forum.thread.created", "forum")

        report = await ReconciliationService(db_session).run()

        mine = {buyer.account_id, seller.account_id}
        assert not [d for d in report.drifts if d.account_id in mine]
        assert report.unbalanced_transactions == []
        assert report.wallets_checked >= 2

    @pytest.mark.asyncio
    async def test_drift_is_reported_and_flagged(self, db_session, ledger, account_factory):
        account = await account_factory(balance=80)
        wallet = await ledger.get_wallet(account.account_id)
        await db_session.execute(
            update(Wallet).where(Wallet.wallet_id == wallet.wallet_id).values(balance=95)
        )
        await db_session.commit()

        try:
            report = await ReconciliationService(db_session).run()

            drift = next(d for d in report.drifts if d.account_id == account.account_id)
            assert drift.balance == 95
            assert drift.journal_balance == 80
            assert not report.is_clean

            signals = await ledger.list_fraud_signals(account_id=account.account_id)
            assert [s.signal_type for s in signals] == ["balance_drift"]
            assert signals[0].severity == "critical"
        finally:
            await db_session.execute(
                update(Wallet).where(Wallet.wallet_id == wallet.wallet_id).values(balance=80)
            )
            await db_session.commit()

    @pytest.mark.asyncio
    async def test_report_only_mode_records_nothing(self, db_session, ledger, account_factory):
        account = await account_factory(balance=10)
        wallet = await ledger.get_wallet(account.account_id)
        await db_session.execute(
            update(Wallet).where(Wallet.wallet_id == wallet.wallet_id).values(balance=11)
        )
        await db_session.commit()

        try:
            report = await ReconciliationService(db_session).run(record_signals=False)
            assert any(d.account_id == account.account_id for d in report.drifts)
            assert await ledger.list_fraud_signals(account_id=account.account_id) == []
        finally:
            await db_session.execute(
                update(Wallet).where(Wallet.wallet_id == wallet.wallet_id).values(balance=10)
            )
            await db_session.commit()
