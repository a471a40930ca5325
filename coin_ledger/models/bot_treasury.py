"""Bot treasury budget and treasury snapshot models."""
from sqlalchemy import Boolean, Column, String, Integer, DateTime, ForeignKey
import uuid
from datetime import datetime, UTC
from coin_ledger.database import Base
from coin_ledger.models.base import get_uuid_column


class BotTreasury(Base):
    """Treasury-wide daily spending budget shared by every bot the treasury funds."""
    __tablename__ = "ledger_bot_treasuries"

    treasury_wallet_id = get_uuid_column(ForeignKey("ledger_wallets.wallet_id"), primary_key=True)
    daily_spend_limit = Column(Integer, nullable=False)
    spent_today = Column(Integer, default=0, nullable=False)
    spent_day = Column(String(10), nullable=True)  # UTC date (YYYY-MM-DD) that spent_today counts
    total_spent = Column(Integer, default=0, nullable=False)
    version = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)

    def __repr__(self):
        return (f"<BotTreasury(treasury_wallet_id={self.treasury_wallet_id}, "
                f"spent_today={self.spent_today}, daily_spend_limit={self.daily_spend_limit})>")


class TreasurySnapshot(Base):
    """Daily picture of the coin economy, compared day over day for anomalies."""
    __tablename__ = "ledger_treasury_snapshots"

    snapshot_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
    snapshot_date = Column(String(10), nullable=False, unique=True)
    circulation_total = Column(Integer, nullable=False)  # user plus bot wallet balances
    user_balances_total = Column(Integer, nullable=False)
    bot_balances_total = Column(Integer, nullable=False)
    bot_treasury_balance = Column(Integer, nullable=False)
    platform_treasury_balance = Column(Integer, nullable=False)
    coins_expired_24h = Column(Integer, nullable=False)
    treasury_spent_today = Column(Integer, nullable=False)
    anomaly_detected = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)

    def __repr__(self):
        return (f"<TreasurySnapshot(snapshot_date={self.snapshot_date}, "
                f"circulation_total={self.circulation_total}, anomaly_detected={self.anomaly_detected})>")
