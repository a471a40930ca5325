"""Bot policy model."""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey
from datetime import datetime, UTC
from coin_ledger.database import Base
from coin_ledger.models.base import get_uuid_column


class BotPolicy(Base):
    """Spend limits and durable action counters for an automated account."""
    __tablename__ = "ledger_bot_policies"

    account_id = get_uuid_column(ForeignKey("ledger_accounts.account_id"), primary_key=True)
    wallet_cap = Column(Integer, nullable=False)
    daily_action_limit = Column(Integer, nullable=False)
    action_cooldown_seconds = Column(Integer, nullable=False)
    treasury_wallet_id = get_uuid_column(ForeignKey("ledger_wallets.wallet_id"), nullable=False)
    actions_today = Column(Integer, default=0, nullable=False)
    actions_day = Column(String(10), nullable=True)  # UTC date (YYYY-MM-DD) that actions_today counts
    last_action_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)

    def __repr__(self):
        return (f"<BotPolicy(account_id={self.account_id}, wallet_cap={self.wallet_cap}, "
                f"actions_today={self.actions_today})>")
