"""Wallet and hold models."""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey
import uuid
from datetime import datetime, UTC
from coin_ledger.database import Base
from coin_ledger.models.base import get_uuid_column


class Wallet(Base):
    """Cached balance projection for one account.

    ``balance`` always equals the signed sum of the wallet's journal entries.
    Rows are only written through the wallet store's compare-and-swap update.
    """
    __tablename__ = "ledger_wallets"

    wallet_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
    account_id = get_uuid_column(
        ForeignKey("ledger_accounts.account_id"), nullable=False, unique=True, index=True
    )
    balance = Column(Integer, default=0, nullable=False)
    available_balance = Column(Integer, default=0, nullable=False)  # balance minus active holds
    lifetime_earned = Column(Integer, default=0, nullable=False)
    lifetime_spent = Column(Integer, default=0, nullable=False)
    version = Column(Integer, default=0, nullable=False)  # Bumped on every balance change
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)

    def __repr__(self):
        return (f"<Wallet(wallet_id={self.wallet_id}, account_id={self.account_id}, "
                f"balance={self.balance}, available_balance={self.available_balance})>")


class WalletHold(Base):
    """Funds reserved against a wallet's available balance."""
    __tablename__ = "ledger_wallet_holds"

    hold_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
    wallet_id = get_uuid_column(ForeignKey("ledger_wallets.wallet_id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=True)
    status = Column(String(20), default="active", nullable=False)  # active or released
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)
    released_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<WalletHold(hold_id={self.hold_id}, amount={self.amount}, status={self.status})>"
