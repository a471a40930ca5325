"""Journal entry model."""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index, CheckConstraint
from datetime import datetime, UTC
from coin_ledger.database import Base
from coin_ledger.models.base import get_uuid_column


class JournalEntry(Base):
    """Immutable debit or credit against one wallet.

    The integer key preserves insertion order, which is the FIFO order used
    when attributing spends to earned batches.
    """
    __tablename__ = "ledger_journal_entries"

    entry_id = Column(Integer, primary_key=True, autoincrement=True)
    ledger_transaction_id = get_uuid_column(
        ForeignKey("ledger_transactions.transaction_id"), nullable=False, index=True
    )
    wallet_id = get_uuid_column(ForeignKey("ledger_wallets.wallet_id"), nullable=False)
    direction = Column(String(10), nullable=False)  # debit or credit
    amount = Column(Integer, nullable=False)
    balance_before = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    memo = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_journal_entries_amount_positive"),
        Index("ix_ledger_journal_entries_wallet_entry", "wallet_id", "entry_id"),
    )

    @property
    def signed_amount(self) -> int:
        return self.amount if self.direction == "credit" else -self.amount

    def __repr__(self):
        return (f"<JournalEntry(entry_id={self.entry_id}, wallet_id={self.wallet_id}, "
                f"direction={self.direction}, amount={self.amount})>")
