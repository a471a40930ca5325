"""Keyset-paginated transaction history."""
import base64
import json
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Optional
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from coin_ledger.models import JournalEntry, LedgerTransaction
from coin_ledger.utils.datetime_helpers import ensure_utc

HISTORY_ORDERS = ("asc", "desc")
MAX_PAGE_SIZE = 200


def encode_cursor(txn: LedgerTransaction) -> str:
    payload = {"t": ensure_utc(txn.created_at).isoformat(), "id": txn.transaction_id.hex}
    return base64.urlsafe_b64encode(json.dumps(payload).encode()).decode()


def decode_cursor(cursor: str) -> tuple[datetime, UUID]:
    """Raises ValueError for anything that is not a cursor we issued."""
    try:
        payload = json.loads(base64.urlsafe_b64decode(cursor.encode()))
        return ensure_utc(datetime.fromisoformat(payload["t"])), UUID(payload["id"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError("invalid_cursor") from exc


@dataclass
class HistoryPage:
    transactions: list[LedgerTransaction]
    next_cursor: Optional[str]


class TransactionHistory:
    """Lazy, finite, restartable sequence of history pages for one account.

    Iterating with ``async for`` fetches one page per step and starts over from
    ``cursor`` every time a new iteration begins. Includes failed transactions
    the account initiated as well as every transaction that touched its wallet.
    """

    def __init__(
        self,
        db: AsyncSession,
        account_id: UUID,
        wallet_id: UUID,
        page_size: int = 50,
        order: str = "desc",
        cursor: Optional[str] = None,
    ):
        if order not in HISTORY_ORDERS:
            raise ValueError(f"order must be one of {HISTORY_ORDERS}")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        if cursor is not None:
            decode_cursor(cursor)
        self.db = db
        self.account_id = account_id
        self.wallet_id = wallet_id
        self.page_size = page_size
        self.order = order
        self.cursor = cursor

    async def fetch_page(self, cursor: Optional[str] = None) -> HistoryPage:
        touched_wallet = select(JournalEntry.ledger_transaction_id).where(JournalEntry.wallet_id == self.wallet_id)
        stmt = select(LedgerTransaction).where(
            or_(
                LedgerTransaction.initiator_account_id == self.account_id,
                LedgerTransaction.counterparty_account_id == self.account_id,
                LedgerTransaction.transaction_id.in_(touched_wallet),
            )
        )

        if cursor is not None:
            created_at, transaction_id = decode_cursor(cursor)
            if self.order == "desc":
                stmt = stmt.where(or_(
                    LedgerTransaction.created_at < created_at,
                    and_(LedgerTransaction.created_at == created_at,
                         LedgerTransaction.transaction_id < transaction_id),
                ))
            else:
                stmt = stmt.where(or_(
                    LedgerTransaction.created_at > created_at,
                    and_(LedgerTransaction.created_at == created_at,
                         LedgerTransaction.transaction_id > transaction_id),
                ))

        if self.order == "desc":
            stmt = stmt.order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.transaction_id.desc())
        else:
            stmt = stmt.order_by(LedgerTransaction.created_at.asc(), LedgerTransaction.transaction_id.asc())

        result = await self.db.execute(stmt.limit(self.page_size + 1))
        rows = list(result.scalars().all())
        has_more = len(rows) > self.page_size
        rows = rows[:self.page_size]
        next_cursor = encode_cursor(rows[-1]) if has_more else None
        return HistoryPage(transactions=rows, next_cursor=next_cursor)

    async def _pages(self) -> AsyncIterator[HistoryPage]:
        cursor = self.cursor
        while True:
            page = await self.fetch_page(cursor)
            if page.transactions:
                yield page
            if page.next_cursor is None:
                return
            cursor = page.next_cursor

    def __aiter__(self) -> AsyncIterator[HistoryPage]:
        return self._pages()

    async def all(self) -> list[LedgerTransaction]:
        """Drain every page into one list."""
        transactions = []
        async for page in self:
            transactions.extend(page.transactions)
        return transactions
