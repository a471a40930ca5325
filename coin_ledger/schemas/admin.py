"""Admin schemas."""
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from coin_ledger.schemas.base import BaseSchema


class AdjustBalanceRequest(BaseModel):
    account_id: UUID
    amount: int | float  # Signed: positive mints, negative burns
    reason: str = Field(min_length=1, max_length=255)
    admin_id: str = Field(min_length=1, max_length=100)
    idempotency_key: Optional[str] = Field(default=None, max_length=128)


class BotPolicyUpdate(BaseModel):
    wallet_cap: Optional[int] = Field(default=None, ge=0)
    daily_action_limit: Optional[int] = Field(default=None, ge=0)
    action_cooldown_seconds: Optional[int] = Field(default=None, ge=0)
    treasury_account_id: Optional[UUID] = None


class BotPolicyResponse(BaseSchema):
    account_id: UUID
    wallet_cap: int
    daily_action_limit: int
    action_cooldown_seconds: int
    treasury_wallet_id: UUID
    actions_today: int
    actions_day: Optional[str] = None
    last_action_at: Optional[datetime] = None


class FraudSignalResponse(BaseSchema):
    signal_id: UUID
    account_id: UUID
    signal_type: str
    severity: str
    evidence: dict
    ledger_transaction_id: Optional[UUID] = None
    review_status: str
    created_at: datetime


class ExpirationRunResponse(BaseSchema):
    as_of: datetime
    accounts_scanned: int
    transactions_created: int
    coins_expired: int
    failures: int


class BalanceDriftResponse(BaseSchema):
    account_id: UUID
    wallet_id: UUID
    balance: int
    journal_balance: int


class ReconciliationResponse(BaseSchema):
    wallets_checked: int
    drifts: list[BalanceDriftResponse]
    unbalanced_transactions: list[UUID]


class TreasuryStatsResponse(BaseSchema):
    treasury_account_id: UUID
    treasury_wallet_id: UUID
    balance: int
    daily_spend_limit: int
    spent_today: int
    remaining_today: int
    total_spent: int
    funded_bots: int


class TreasuryLimitUpdate(BaseModel):
    daily_spend_limit: int = Field(ge=0)


class TreasurySnapshotResponse(BaseSchema):
    snapshot_id: UUID
    snapshot_date: str
    circulation_total: int
    user_balances_total: int
    bot_balances_total: int
    bot_treasury_balance: int
    platform_treasury_balance: int
    coins_expired_24h: int
    treasury_spent_today: int
    anomaly_detected: bool
    created_at: datetime
