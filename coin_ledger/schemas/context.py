"""Typed context payloads stored on ledger transactions.

Each transaction type has exactly one context shape, selected by the ``type``
discriminator, so readers never have to guess which keys a blob carries.
"""
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter


class RewardTrigger(str, Enum):
    """Fixed set of actions that earn coins, named domain.action.result."""
    THREAD_CREATED = "forum.thread.created"
    REPLY_POSTED = "forum.reply.posted"
    LIKE_RECEIVED = "forum.like.received"
    BROKER_REVIEW_VERIFIED = "broker.review.verified"
    DAILY_LOGIN = "engagement.daily.login"
    REFERRAL_SIGNUP = "referral.signup.completed"
    PROFILE_COMPLETE = "onboarding.profile.complete"
    EA_PUBLISHED = "marketplace.ea.published"


class RewardChannel(str, Enum):
    """Product surface a reward was earned on."""
    FORUM = "forum"
    MARKETPLACE = "marketplace"
    ONBOARDING = "onboarding"
    REFERRAL = "referral"
    ENGAGEMENT = "engagement"
    TREASURY = "treasury"
    ADMIN = "admin"
    SYSTEM = "system"


class SignupBonusContext(BaseModel):
    type: Literal["signup_bonus"] = "signup_bonus"


class TransferContext(BaseModel):
    type: Literal["transfer"] = "transfer"
    description: Optional[str] = None
    funded_by_treasury: bool = False


class RewardContext(BaseModel):
    type: Literal["reward"] = "reward"
    trigger: RewardTrigger
    channel: RewardChannel


class PurchaseContext(BaseModel):
    type: Literal["purchase"] = "purchase"
    content_id: str
    buyer_account_id: UUID  # Account actually debited (a treasury for bot purchases)
    seller_account_id: UUID
    platform_account_id: UUID
    seller_share: int
    platform_share: int
    seller_percent: int


class RefundContext(BaseModel):
    type: Literal["refund"] = "refund"
    original_transaction_id: UUID
    reason: Optional[str] = None


class ExpirationContext(BaseModel):
    type: Literal["expire"] = "expire"
    batch_entry_id: int
    batch_transaction_id: UUID
    batch_created_at: datetime
    horizon_days: int


class AdminAdjustmentContext(BaseModel):
    type: Literal["admin_adjustment"] = "admin_adjustment"
    admin_id: str
    reason: str


TransactionContext = Annotated[
    Union[
        SignupBonusContext,
        TransferContext,
        RewardContext,
        PurchaseContext,
        RefundContext,
        ExpirationContext,
        AdminAdjustmentContext,
    ],
    Field(discriminator="type"),
]

_context_adapter = TypeAdapter(TransactionContext)


def parse_context(data: dict) -> TransactionContext:
    """Rebuild the typed context stored in a transaction's JSON column."""
    return _context_adapter.validate_python(data)
