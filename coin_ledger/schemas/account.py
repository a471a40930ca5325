"""Account and wallet schemas."""
from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel

from coin_ledger.schemas.base import BaseSchema


class CreateAccountRequest(BaseModel):
    """Account provisioning request."""
    kind: Literal["user", "bot"] = "user"


class WalletResponse(BaseSchema):
    wallet_id: UUID
    account_id: UUID
    balance: int
    available_balance: int
    lifetime_earned: int
    lifetime_spent: int
    updated_at: datetime


class AccountResponse(BaseSchema):
    account_id: UUID
    kind: str
    is_active: bool
    created_at: datetime
    deactivated_at: Optional[datetime] = None
    wallet: Optional[WalletResponse] = None


class BalanceResponse(BaseSchema):
    account_id: UUID
    balance: int
    available_balance: int


class EarnedBatchResponse(BaseSchema):
    """An earned-coin credit and how much of it is still unconsumed."""
    entry_id: int
    transaction_id: UUID
    amount: int
    remaining: int
    created_at: datetime


class HoldRequest(BaseModel):
    amount: int | float
    reason: Optional[str] = None


class HoldResponse(BaseSchema):
    hold_id: UUID
    wallet_id: UUID
    amount: int
    reason: Optional[str] = None
    status: str
    created_at: datetime
    released_at: Optional[datetime] = None
