"""Fraud signal model."""
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, Index
import uuid
from datetime import datetime, UTC
from coin_ledger.database import Base
from coin_ledger.models.base import get_uuid_column


class FraudSignal(Base):
    """Append-only record of suspicious activity awaiting moderation review."""
    __tablename__ = "ledger_fraud_signals"

    signal_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
    account_id = get_uuid_column(ForeignKey("ledger_accounts.account_id"), nullable=False)
    signal_type = Column(String(50), nullable=False)
    severity = Column(String(20), nullable=False)
    evidence = Column(JSON, nullable=False, default=dict)
    ledger_transaction_id = get_uuid_column(nullable=True)
    review_status = Column(String(20), default="pending", nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)

    __table_args__ = (
        Index("ix_ledger_fraud_signals_account_created", "account_id", "created_at"),
    )

    def __repr__(self):
        return (f"<FraudSignal(signal_id={self.signal_id}, account_id={self.account_id}, "
                f"signal_type={self.signal_type}, severity={self.severity})>")
