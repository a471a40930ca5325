"""Account model."""
from sqlalchemy import Column, String, Boolean, DateTime
import uuid
from datetime import datetime, UTC
from coin_ledger.database import Base
from coin_ledger.models.base import get_uuid_column


class Account(Base):
    """A wallet owner. Accounts are deactivated, never deleted."""
    __tablename__ = "ledger_accounts"

    account_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
    kind = Column(String(20), nullable=False, index=True)  # user, bot, system, platform_treasury
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Account(account_id={self.account_id}, kind={self.kind}, is_active={self.is_active})>"
