"""Base utilities and enumerations for SQLAlchemy models."""
from enum import Enum
import uuid
from sqlalchemy import Column, String
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.sql import sqltypes


class AccountKind(str, Enum):
    """Kinds of wallet owners."""
    USER = "user"
    BOT = "bot"
    SYSTEM = "system"
    PLATFORM_TREASURY = "platform_treasury"


class TransactionType(str, Enum):
    """Economic event carried by a ledger transaction."""
    SIGNUP_BONUS = "signup_bonus"
    TRANSFER = "transfer"
    PURCHASE = "purchase"
    REWARD = "reward"
    REFUND = "refund"
    EXPIRE = "expire"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class TransactionStatus(str, Enum):
    """Ledger transaction lifecycle. Closed and failed are terminal."""
    PENDING = "pending"
    CLOSED = "closed"
    FAILED = "failed"


class EntryDirection(str, Enum):
    """Journal entry direction."""
    DEBIT = "debit"
    CREDIT = "credit"


class FraudSignalType(str, Enum):
    """Kinds of fraud signals raised by the velocity guard and reconciliation."""
    RATE_LIMIT_BREACH = "rate_limit_breach"
    VELOCITY_ANOMALY = "velocity_anomaly"
    SUSPICIOUS_PATTERN = "suspicious_pattern"
    BALANCE_DRIFT = "balance_drift"


class FraudSeverity(str, Enum):
    """Fraud signal severity."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AdaptiveUUID(sqltypes.TypeDecorator):
    """UUID type stored natively on Postgres and as lowercase hex elsewhere."""

    impl = sqltypes.String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    @staticmethod
    def _coerce_uuid(value):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))

    def process_bind_param(self, value, dialect):
        value = self._coerce_uuid(value)
        if value is None:
            return None
        if dialect.name == "postgresql":
            return value
        return value.hex

    def process_result_value(self, value, dialect):
        return self._coerce_uuid(value)


def get_uuid_column(*args, **kwargs):
    """Get UUID column type based on database dialect.

    Args:
        *args: Positional arguments to pass to Column (e.g., ForeignKey)
        **kwargs: Keyword arguments to pass to Column (e.g., primary_key=True)

    Returns:
        Column: Configured SQLAlchemy Column for UUID storage

    Example:
        account_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
        wallet_id = get_uuid_column(ForeignKey("ledger_wallets.wallet_id"), nullable=False)
    """
    return Column(
        AdaptiveUUID(),
        *args,
        **kwargs
    )
