"""Append-only double-entry journal."""
import logging
from datetime import datetime, UTC
from typing import Optional
from uuid import UUID

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from coin_ledger.models import JournalEntry, LedgerTransaction, Wallet
from coin_ledger.models.base import EntryDirection, TransactionStatus
from coin_ledger.utils.exceptions import InvalidAmount, SelfDealing

logger = logging.getLogger(__name__)

_SIGNED_AMOUNT = case(
    (JournalEntry.direction == EntryDirection.CREDIT.value, JournalEntry.amount),
    else_=-JournalEntry.amount,
)


class Journal:
    """Writes debit/credit pairs and answers read-only questions about them.

    Entries are never updated or deleted; corrections are new entries in a
    new ledger transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append_pair(
        self,
        ledger_transaction_id: UUID,
        debit_wallet_id: UUID,
        credit_wallet_id: UUID,
        amount: int,
        memo: Optional[str],
        running_balances: dict[UUID, int],
        created_at: Optional[datetime] = None,
    ) -> tuple[JournalEntry, JournalEntry]:
        """
        Write one debit and its matching credit inside the caller's storage transaction.

        Both entries are flushed together, so a rollback of the caller's
        transaction removes both.

        Args:
            ledger_transaction_id: Owning ledger transaction
            debit_wallet_id: Wallet losing ``amount``
            credit_wallet_id: Wallet gaining ``amount``
            amount: Positive integer amount
            memo: Free-text note copied onto both entries
            running_balances: Current balance per wallet id; advanced in place
            created_at: Entry timestamp (defaults to the current UTC time)

        Returns:
            (debit entry, credit entry)
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount("amount_must_be_positive_integer")
        if debit_wallet_id == credit_wallet_id:
            raise SelfDealing("debit_and_credit_wallet_identical")

        now = created_at or datetime.now(UTC)
        debit_before = running_balances[debit_wallet_id]
        credit_before = running_balances[credit_wallet_id]

        debit = JournalEntry(
            ledger_transaction_id=ledger_transaction_id,
            wallet_id=debit_wallet_id,
            direction=EntryDirection.DEBIT.value,
            amount=amount,
            balance_before=debit_before,
            balance_after=debit_before - amount,
            memo=memo,
            created_at=now,
        )
        credit = JournalEntry(
            ledger_transaction_id=ledger_transaction_id,
            wallet_id=credit_wallet_id,
            direction=EntryDirection.CREDIT.value,
            amount=amount,
            balance_before=credit_before,
            balance_after=credit_before + amount,
            memo=memo,
            created_at=now,
        )
        self.db.add(debit)
        self.db.add(credit)
        await self.db.flush()

        running_balances[debit_wallet_id] = debit.balance_after
        running_balances[credit_wallet_id] = credit.balance_after
        return debit, credit

    async def entries_for_transaction(self, ledger_transaction_id: UUID) -> list[JournalEntry]:
        result = await self.db.execute(
            select(JournalEntry)
            .where(JournalEntry.ledger_transaction_id == ledger_transaction_id)
            .order_by(JournalEntry.entry_id)
        )
        return list(result.scalars().all())

    async def entries_for_wallet(self, wallet_id: UUID) -> list[tuple[JournalEntry, LedgerTransaction]]:
        """All entries on a wallet in insertion order, with their owning transaction."""
        result = await self.db.execute(
            select(JournalEntry, LedgerTransaction)
            .join(LedgerTransaction, LedgerTransaction.transaction_id == JournalEntry.ledger_transaction_id)
            .where(JournalEntry.wallet_id == wallet_id)
            .order_by(JournalEntry.entry_id)
        )
        return [(entry, txn) for entry, txn in result.all()]

    async def signed_sum(self, wallet_id: UUID) -> int:
        """Credits minus debits for one wallet."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(_SIGNED_AMOUNT), 0)).where(JournalEntry.wallet_id == wallet_id)
        )
        return int(result.scalar_one())

    async def wallets_with_journal_balance(self) -> list[tuple[Wallet, int]]:
        """Every wallet next to the signed sum of its entries, read in one statement."""
        sums = (
            select(JournalEntry.wallet_id.label("wallet_id"), func.sum(_SIGNED_AMOUNT).label("total"))
            .group_by(JournalEntry.wallet_id)
            .subquery()
        )
        result = await self.db.execute(
            select(Wallet, func.coalesce(sums.c.total, 0))
            .outerjoin(sums, sums.c.wallet_id == Wallet.wallet_id)
            .execution_options(populate_existing=True)
        )
        return [(wallet, int(total)) for wallet, total in result.all()]

    async def unbalanced_transactions(self) -> list[UUID]:
        """Closed transactions whose debits and credits do not match."""
        debits = func.sum(case((JournalEntry.direction == EntryDirection.DEBIT.value, JournalEntry.amount), else_=0))
        credits = func.sum(case((JournalEntry.direction == EntryDirection.CREDIT.value, JournalEntry.amount), else_=0))
        result = await self.db.execute(
            select(JournalEntry.ledger_transaction_id)
            .join(LedgerTransaction, LedgerTransaction.transaction_id == JournalEntry.ledger_transaction_id)
            .where(LedgerTransaction.status == TransactionStatus.CLOSED.value)
            .group_by(JournalEntry.ledger_transaction_id)
            .having(debits != credits)
        )
        return list(result.scalars().all())
