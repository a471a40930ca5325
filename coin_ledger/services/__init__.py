from coin_ledger.services.collaborators import (
    AccountDirectory,
    AuditRecorder,
    DatabaseAccountDirectory,
    LoggingAuditRecorder,
    LoggingNotifier,
    Notifier,
)
from coin_ledger.services.commission import CommissionSplit, CommissionSplitter
from coin_ledger.services.coordinator import TransactionCoordinator
from coin_ledger.services.expiration_service import EarnedCoinBatch, ExpirationRunResult, ExpirationService
from coin_ledger.services.fraud_guard import FraudGuard, FraudVerdict
from coin_ledger.services.history import HistoryPage, TransactionHistory
from coin_ledger.services.intent import LedgerIntent, Posting
from coin_ledger.services.journal import Journal
from coin_ledger.services.ledger_service import LedgerService
from coin_ledger.services.reconciliation_service import ReconciliationReport, ReconciliationService
from coin_ledger.services.system_accounts import ensure_system_accounts
from coin_ledger.services.treasury_guard import TreasuryDecision, TreasuryGuard
from coin_ledger.services.treasury_service import TreasuryService, TreasuryStats
from coin_ledger.services.wallet_store import BalanceChanged, WalletStore

__all__ = [
    "AccountDirectory",
    "AuditRecorder",
    "BalanceChanged",
    "CommissionSplit",
    "CommissionSplitter",
    "DatabaseAccountDirectory",
    "EarnedCoinBatch",
    "ExpirationRunResult",
    "ExpirationService",
    "FraudGuard",
    "FraudVerdict",
    "HistoryPage",
    "Journal",
    "LedgerIntent",
    "LedgerService",
    "LoggingAuditRecorder",
    "LoggingNotifier",
    "Notifier",
    "Posting",
    "ReconciliationReport",
    "ReconciliationService",
    "TransactionCoordinator",
    "TransactionHistory",
    "TreasuryDecision",
    "TreasuryGuard",
    "TreasuryService",
    "TreasuryStats",
    "WalletStore",
    "ensure_system_accounts",
]
