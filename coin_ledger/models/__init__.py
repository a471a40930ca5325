"""Database models."""
from coin_ledger.models.account import Account
from coin_ledger.models.wallet import Wallet, WalletHold
from coin_ledger.models.ledger_transaction import LedgerTransaction
from coin_ledger.models.journal_entry import JournalEntry
from coin_ledger.models.fraud_signal import FraudSignal
from coin_ledger.models.bot_policy import BotPolicy
from coin_ledger.models.bot_treasury import BotTreasury, TreasurySnapshot

__all__ = [
    "Account",
    "Wallet",
    "WalletHold",
    "LedgerTransaction",
    "JournalEntry",
    "FraudSignal",
    "BotPolicy",
    "BotTreasury",
    "TreasurySnapshot",
]
