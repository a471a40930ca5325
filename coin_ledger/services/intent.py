"""Ledger intents: what a caller asks the coordinator to do."""
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from coin_ledger.models.base import EntryDirection, TransactionType


@dataclass(frozen=True)
class Posting:
    account_id: UUID
    direction: EntryDirection
    amount: int


@dataclass
class LedgerIntent:
    """A balanced set of postings describing one economic event."""
    type: TransactionType
    initiator_account_id: UUID
    postings: list[Posting]
    context: BaseModel
    idempotency_key: Optional[str] = None
    counterparty_account_id: Optional[UUID] = None
    memo: Optional[str] = None
    # Bot whose limits the treasury guard enforces for this intent
    bot_account_id: Optional[UUID] = None

    @classmethod
    def pair(
        cls,
        type: TransactionType,
        initiator_account_id: UUID,
        debit_account_id: UUID,
        credit_account_id: UUID,
        amount: int,
        context: BaseModel,
        **kwargs,
    ) -> "LedgerIntent":
        return cls(
            type=type,
            initiator_account_id=initiator_account_id,
            postings=[
                Posting(debit_account_id, EntryDirection.DEBIT, amount),
                Posting(credit_account_id, EntryDirection.CREDIT, amount),
            ],
            context=context,
            **kwargs,
        )

    @property
    def debits(self) -> list[Posting]:
        return [p for p in self.postings if p.direction == EntryDirection.DEBIT]

    @property
    def credits(self) -> list[Posting]:
        return [p for p in self.postings if p.direction == EntryDirection.CREDIT]

    @property
    def amount(self) -> int:
        """Total moved by the intent (sum of debits)."""
        return sum(p.amount for p in self.debits)

    def credited_to(self, account_id: UUID) -> int:
        return sum(p.amount for p in self.credits if p.account_id == account_id)

    def debited_from(self, account_id: UUID) -> int:
        return sum(p.amount for p in self.debits if p.account_id == account_id)

    @property
    def account_ids(self) -> set[UUID]:
        return {p.account_id for p in self.postings}
