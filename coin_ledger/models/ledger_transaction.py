"""Ledger transaction model."""
from sqlalchemy import Column, String, Integer, DateTime, JSON, ForeignKey, Index
import uuid
from datetime import datetime, UTC
from coin_ledger.database import Base
from coin_ledger.models.base import get_uuid_column


class LedgerTransaction(Base):
    """One logical economic event, backed by balanced journal entries once closed."""
    __tablename__ = "ledger_transactions"

    transaction_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
    type = Column(String(30), nullable=False, index=True)
    # Types: signup_bonus, transfer, purchase, reward, refund, expire, admin_adjustment
    status = Column(String(20), nullable=False, default="pending", index=True)  # pending, closed, failed
    initiator_account_id = get_uuid_column(ForeignKey("ledger_accounts.account_id"), nullable=False)
    counterparty_account_id = get_uuid_column(ForeignKey("ledger_accounts.account_id"), nullable=True)
    amount = Column(Integer, nullable=False)  # Total moved, always positive
    context = Column(JSON, nullable=False, default=dict)  # Typed per transaction type
    # Released (set to NULL) when the transaction fails so the caller can retry the intent
    idempotency_key = Column(String(128), nullable=True, unique=True)
    request_key = Column(String(128), nullable=True, index=True)  # Key as originally supplied
    failure_code = Column(String(50), nullable=True)
    failure_detail = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_ledger_transactions_initiator_created", "initiator_account_id", "created_at"),
        Index("ix_ledger_transactions_counterparty_created", "counterparty_account_id", "created_at"),
    )

    def __repr__(self):
        return (f"<LedgerTransaction(transaction_id={self.transaction_id}, type={self.type}, "
                f"status={self.status}, amount={self.amount})>")
