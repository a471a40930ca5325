"""Ledger transaction schemas."""
from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from coin_ledger.schemas.base import BaseSchema


class TransferRequest(BaseModel):
    from_account_id: UUID
    to_account_id: UUID
    amount: int | float  # Non-integers are rejected by the ledger with invalid_amount
    idempotency_key: Optional[str] = Field(default=None, max_length=128)
    description: Optional[str] = Field(default=None, max_length=255)


class RewardRequest(BaseModel):
    account_id: UUID
    amount: int | float
    trigger: str
    channel: str
    idempotency_key: Optional[str] = Field(default=None, max_length=128)


class PurchaseRequest(BaseModel):
    buyer_id: UUID
    seller_id: UUID
    amount: int | float
    content_id: str = Field(min_length=1, max_length=128)
    idempotency_key: Optional[str] = Field(default=None, max_length=128)


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class JournalEntryResponse(BaseSchema):
    entry_id: int
    wallet_id: UUID
    direction: str
    amount: int
    balance_before: int
    balance_after: int
    memo: Optional[str] = None
    created_at: datetime


class LedgerTransactionResponse(BaseSchema):
    transaction_id: UUID
    type: str
    status: str
    initiator_account_id: UUID
    counterparty_account_id: Optional[UUID] = None
    amount: int
    context: dict
    request_key: Optional[str] = None
    failure_code: Optional[str] = None
    created_at: datetime
    closed_at: Optional[datetime] = None
    entries: list[JournalEntryResponse] = []


class TransactionHistoryResponse(BaseSchema):
    account_id: UUID
    order: Literal["asc", "desc"]
    transactions: list[LedgerTransactionResponse]
    next_cursor: Optional[str] = None
