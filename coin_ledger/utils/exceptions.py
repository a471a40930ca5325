"""Ledger error taxonomy.

Every business failure carries a stable ``code`` that API callers render as a
user message. Only infrastructure failures (database unavailable and so on)
surface as other exception types.
"""
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from coin_ledger.models.fraud_signal import FraudSignal


class LedgerError(Exception):
    """Base exception for caller-visible ledger outcomes."""

    code = "ledger_error"

    def __init__(self, message: str | None = None, transaction_id=None):
        self.message = message or self.code
        self.transaction_id = transaction_id
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "detail": self.message,
            "transaction_id": str(self.transaction_id) if self.transaction_id else None,
        }


class InsufficientFunds(LedgerError):
    """Raised when the debit wallet's available balance cannot cover the amount."""
    code = "insufficient_funds"


class SelfDealing(LedgerError):
    """Raised when the same account would be debited and credited."""
    code = "self_dealing"


class InvalidAmount(LedgerError):
    """Raised for zero, negative or non-integer amounts."""
    code = "invalid_amount"


class InvalidTrigger(LedgerError):
    """Raised when a reward trigger or channel is outside the fixed taxonomy."""
    code = "invalid_trigger"


class InvalidAccountKind(LedgerError):
    """Raised when an account kind cannot be provisioned by callers."""
    code = "invalid_account_kind"


class AccountInactive(LedgerError):
    """Raised when a participating account has been deactivated."""
    code = "account_inactive"


class NotFound(LedgerError):
    """Raised for unknown accounts or transactions."""
    code = "not_found"


class Conflict(LedgerError):
    """Raised when optimistic retries are exhausted or a key is still in flight."""
    code = "conflict"


class FraudBlocked(LedgerError):
    """Raised when the velocity guard vetoes a transaction."""
    code = "fraud_blocked"

    def __init__(self, message: str | None = None, signal: Optional["FraudSignal"] = None, transaction_id=None):
        super().__init__(message, transaction_id=transaction_id)
        self.signal = signal


class PolicyViolation(LedgerError):
    """Raised when the bot treasury guard denies an action."""
    code = "policy_violation"

    def __init__(self, reason: str, transaction_id=None):
        super().__init__(reason, transaction_id=transaction_id)
        self.reason = reason


class ConcurrentModification(Exception):
    """A compare-and-swap lost a race. Retried inside the coordinator, never surfaced."""
