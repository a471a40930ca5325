"""FIFO expiration of earned coins."""
import logging
from dataclasses import dataclass, field
from datetime import datetime, UTC, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coin_ledger.config import get_settings
from coin_ledger.models import Account, JournalEntry, LedgerTransaction, Wallet
from coin_ledger.models.base import AccountKind, EntryDirection, TransactionStatus, TransactionType
from coin_ledger.schemas.context import ExpirationContext
from coin_ledger.services.coordinator import TransactionCoordinator
from coin_ledger.services.intent import LedgerIntent
from coin_ledger.services.system_accounts import EXPIRED_COINS_ACCOUNT_ID
from coin_ledger.utils.datetime_helpers import ensure_utc
from coin_ledger.utils.exceptions import LedgerError

logger = logging.getLogger(__name__)

# Only credits from these transaction types ever expire
EARN_TYPES = (TransactionType.REWARD.value,)
EXPIRING_ACCOUNT_KINDS = (AccountKind.USER.value, AccountKind.BOT.value)


@dataclass
class EarnedCoinBatch:
    """An earned credit and the part of it not yet consumed by spends or expirations."""
    entry_id: int
    transaction_id: UUID
    account_id: UUID
    wallet_id: UUID
    amount: int
    remaining: int
    created_at: datetime


@dataclass
class _Lot:
    entry: JournalEntry
    remaining: int
    expiring: bool


@dataclass
class ExpirationRunResult:
    as_of: datetime
    accounts_scanned: int = 0
    transactions_created: int = 0
    coins_expired: int = 0
    failures: int = 0
    transaction_ids: list[UUID] = field(default_factory=list)


class ExpirationService:
    """Expires earned coins older than the horizon, oldest batch first.

    Every credit on a wallet forms a lot. Ordinary debits consume lots in
    insertion order; an expiration debit consumes exactly the batch it names.
    Whatever remains of an earned lot past the horizon is expired through the
    coordinator, keyed by the batch so a rerun never expires it twice.
    """

    def __init__(self, db: AsyncSession, coordinator: Optional[TransactionCoordinator] = None):
        self.db = db
        self.settings = get_settings()
        self.coordinator = coordinator or TransactionCoordinator(db)

    async def _lots(self, wallet_id: UUID) -> list[_Lot]:
        rows = await self.coordinator.journal.entries_for_wallet(wallet_id)
        lots: list[_Lot] = []
        by_entry: dict[int, _Lot] = {}

        for entry, txn in rows:
            if entry.direction == EntryDirection.CREDIT.value:
                lot = _Lot(entry=entry, remaining=entry.amount, expiring=txn.type in EARN_TYPES)
                lots.append(lot)
                by_entry[entry.entry_id] = lot
                continue

            to_consume = entry.amount
            if txn.type == TransactionType.EXPIRE.value:
                target = by_entry.get((txn.context or {}).get("batch_entry_id"))
                if target is not None:
                    taken = min(target.remaining, to_consume)
                    target.remaining -= taken
                    to_consume -= taken

            for lot in lots:
                if to_consume == 0:
                    break
                if lot.remaining == 0:
                    continue
                taken = min(lot.remaining, to_consume)
                lot.remaining -= taken
                to_consume -= taken

        return lots

    async def unconsumed_batches(
        self,
        account_id: UUID,
        older_than_days: int = 0,
        as_of: datetime | None = None,
    ) -> list[EarnedCoinBatch]:
        """
        Earned batches of an account that still have unconsumed coins.

        Args:
            account_id: Account to inspect
            older_than_days: Only batches at least this many days old
            as_of: Reference time for the age (defaults to now)

        Returns:
            Batches oldest first
        """
        as_of = ensure_utc(as_of) or datetime.now(UTC)
        cutoff = as_of - timedelta(days=older_than_days)
        wallet = await self.coordinator.wallets.get_wallet_for_account(account_id)
        batches = []
        for lot in await self._lots(wallet.wallet_id):
            created_at = ensure_utc(lot.entry.created_at)
            if not lot.expiring or lot.remaining <= 0 or created_at > cutoff:
                continue
            batches.append(EarnedCoinBatch(
                entry_id=lot.entry.entry_id,
                transaction_id=lot.entry.ledger_transaction_id,
                account_id=account_id,
                wallet_id=wallet.wallet_id,
                amount=lot.entry.amount,
                remaining=lot.remaining,
                created_at=created_at,
            ))
        return batches

    async def candidate_accounts(self, cutoff: datetime) -> list[UUID]:
        """User and bot accounts holding earned credits older than ``cutoff``."""
        result = await self.db.execute(
            select(Wallet.account_id)
            .join(JournalEntry, JournalEntry.wallet_id == Wallet.wallet_id)
            .join(LedgerTransaction, LedgerTransaction.transaction_id == JournalEntry.ledger_transaction_id)
            .join(Account, Account.account_id == Wallet.account_id)
            .where(
                JournalEntry.direction == EntryDirection.CREDIT.value,
                JournalEntry.created_at <= cutoff,
                LedgerTransaction.type.in_(EARN_TYPES),
                LedgerTransaction.status == TransactionStatus.CLOSED.value,
                Account.kind.in_(EXPIRING_ACCOUNT_KINDS),
                Account.is_active.is_(True),
            )
            .distinct()
        )
        return list(result.scalars().all())

    async def expire_account(self, account_id: UUID, as_of: datetime | None = None,
                             result: ExpirationRunResult | None = None) -> ExpirationRunResult:
        """Expire every batch of one account older than the horizon."""
        as_of = ensure_utc(as_of) or datetime.now(UTC)
        result = result or ExpirationRunResult(as_of=as_of)
        horizon_days = self.settings.coin_expiration_days

        for batch in await self.unconsumed_batches(account_id, horizon_days, as_of):
            context = ExpirationContext(
                batch_entry_id=batch.entry_id,
                batch_transaction_id=batch.transaction_id,
                batch_created_at=batch.created_at,
                horizon_days=horizon_days,
            )
            intent = LedgerIntent.pair(
                TransactionType.EXPIRE,
                initiator_account_id=account_id,
                debit_account_id=account_id,
                credit_account_id=EXPIRED_COINS_ACCOUNT_ID,
                amount=batch.remaining,
                context=context,
                idempotency_key=f"expire:{batch.entry_id}",
                memo=f"Expired {batch.remaining} coins earned {batch.created_at.date().isoformat()}",
            )
            try:
                txn = await self.coordinator.execute(intent)
            except LedgerError as exc:
                result.failures += 1
                logger.warning(f"Could not expire batch {batch.entry_id} of account {account_id}: {exc.code} {exc}")
                continue
            result.transactions_created += 1
            result.coins_expired += batch.remaining
            result.transaction_ids.append(txn.transaction_id)
            logger.info(f"Expired {batch.remaining} coins from batch {batch.entry_id} of account {account_id}")

        return result

    async def run(self, as_of: datetime | None = None) -> ExpirationRunResult:
        """
        One idempotent expiration pass over all accounts.

        Args:
            as_of: Reference time; batches older than ``as_of - horizon`` expire

        Returns:
            Counts of what this pass did. A second pass on the same data does nothing.
        """
        as_of = ensure_utc(as_of) or datetime.now(UTC)
        cutoff = as_of - timedelta(days=self.settings.coin_expiration_days)
        result = ExpirationRunResult(as_of=as_of)

        for account_id in await self.candidate_accounts(cutoff):
            result.accounts_scanned += 1
            await self.expire_account(account_id, as_of, result)

        logger.info(
            f"Expiration pass as of {as_of.isoformat()}: {result.accounts_scanned} accounts, "
            f"{result.transactions_created} expirations, {result.coins_expired} coins, "
            f"{result.failures} failures"
        )
        return result
