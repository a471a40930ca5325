"""Balance reconciliation: re-derive every wallet from the journal."""
import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from coin_ledger.models import FraudSignal
from coin_ledger.models.base import FraudSeverity, FraudSignalType
from coin_ledger.services.journal import Journal

logger = logging.getLogger(__name__)


@dataclass
class BalanceDrift:
    account_id: UUID
    wallet_id: UUID
    balance: int
    journal_balance: int


@dataclass
class ReconciliationReport:
    wallets_checked: int = 0
    drifts: list[BalanceDrift] = field(default_factory=list)
    unbalanced_transactions: list[UUID] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.drifts and not self.unbalanced_transactions


class ReconciliationService:
    """Checks that cached balances match the journal and every closed transaction balances."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.journal = Journal(db)

    async def run(self, record_signals: bool = True) -> ReconciliationReport:
        """
        Compare each wallet's balance with the signed sum of its journal entries.

        Args:
            record_signals: Record a critical ``balance_drift`` fraud signal per mismatch

        Returns:
            ReconciliationReport listing drifted wallets and unbalanced transactions
        """
        report = ReconciliationReport()
        for wallet, journal_balance in await self.journal.wallets_with_journal_balance():
            report.wallets_checked += 1
            if wallet.balance != journal_balance:
                report.drifts.append(BalanceDrift(
                    account_id=wallet.account_id,
                    wallet_id=wallet.wallet_id,
                    balance=wallet.balance,
                    journal_balance=journal_balance,
                ))

        report.unbalanced_transactions = await self.journal.unbalanced_transactions()

        for drift in report.drifts:
            logger.error(
                f"Balance drift on wallet {drift.wallet_id}: cached {drift.balance}, "
                f"journal {drift.journal_balance}"
            )
            if record_signals:
                self.db.add(FraudSignal(
                    account_id=drift.account_id,
                    signal_type=FraudSignalType.BALANCE_DRIFT.value,
                    severity=FraudSeverity.CRITICAL.value,
                    evidence={
                        "wallet_id": str(drift.wallet_id),
                        "balance": drift.balance,
                        "journal_balance": drift.journal_balance,
                        "difference": drift.balance - drift.journal_balance,
                    },
                ))
        for transaction_id in report.unbalanced_transactions:
            logger.error(f"Closed transaction {transaction_id} has unequal debits and credits")

        if record_signals and report.drifts:
            await self.db.commit()

        logger.info(
            f"Reconciliation checked {report.wallets_checked} wallets: {len(report.drifts)} drifts, "
            f"{len(report.unbalanced_transactions)} unbalanced transactions"
        )
        return report
