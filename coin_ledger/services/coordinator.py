"""Ledger transaction coordinator.

Every balance change in the system goes through :meth:`TransactionCoordinator.execute`,
which drives a ledger transaction from ``pending`` to ``closed`` or ``failed``:

1. validate the intent (amounts, self-dealing, accounts exist and are active)
2. open a ``pending`` transaction (the idempotency key is claimed here)
3. consult the fraud guard
4. consult the treasury guard for bot intents
5. check funds against a fresh wallet snapshot
6. write journal pairs and compare-and-swap the wallets, retrying from 4 on a lost race
7. close the transaction

Steps 6 and 7 run inside a savepoint. A failure rolls back only that savepoint,
so ORM objects the caller already holds stay loaded, and the transaction is then
recorded as ``failed``.
"""
import logging
import uuid
from datetime import datetime, UTC
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coin_ledger.config import get_settings, Settings
from coin_ledger.models import LedgerTransaction
from coin_ledger.models.base import AccountKind, TransactionStatus
from coin_ledger.services.collaborators import (
    AccountDirectory,
    DatabaseAccountDirectory,
    LoggingNotifier,
    Notifier,
)
from coin_ledger.services.fraud_guard import FraudGuard
from coin_ledger.services.intent import LedgerIntent
from coin_ledger.services.journal import Journal
from coin_ledger.services.treasury_guard import TreasuryGuard, GUARDED_TYPES as BOT_GUARDED_TYPES
from coin_ledger.services.wallet_store import WalletStore
from coin_ledger.utils.exceptions import (
    AccountInactive,
    Conflict,
    ConcurrentModification,
    FraudBlocked,
    InsufficientFunds,
    InvalidAmount,
    LedgerError,
    NotFound,
    PolicyViolation,
    SelfDealing,
)

logger = logging.getLogger(__name__)


def _is_positive_int(value) -> bool:
    return not isinstance(value, bool) and isinstance(value, int) and value > 0


def pair_postings(intent: LedgerIntent) -> list[tuple[UUID, UUID, int]]:
    """Decompose balanced postings into (debit account, credit account, amount) pairs.

    One debit against two credits yields two pairs, as does two debits against
    one credit, so every journal entry belongs to exactly one pair.
    """
    debits = [[p.account_id, p.amount] for p in intent.debits]
    credits = [[p.account_id, p.amount] for p in intent.credits]
    pairs = []
    i = j = 0
    while i < len(debits) and j < len(credits):
        amount = min(debits[i][1], credits[j][1])
        pairs.append((debits[i][0], credits[j][0], amount))
        debits[i][1] -= amount
        credits[j][1] -= amount
        if debits[i][1] == 0:
            i += 1
        if credits[j][1] == 0:
            j += 1
    return pairs


class TransactionCoordinator:
    """Runs ledger intents as atomic, idempotent ledger transactions."""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[Notifier] = None,
        accounts: Optional[AccountDirectory] = None,
        fraud_guard: Optional[FraudGuard] = None,
        treasury_guard: Optional[TreasuryGuard] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.wallets = WalletStore(db)
        self.journal = Journal(db)
        self.accounts = accounts or DatabaseAccountDirectory(db)
        self.fraud_guard = fraud_guard or FraudGuard(db, self.settings)
        self.treasury_guard = treasury_guard or TreasuryGuard(db, self.settings)
        self.notifier = notifier or LoggingNotifier()
        self.clock = clock or (lambda: datetime.now(UTC))

    async def get_transaction(self, transaction_id: UUID) -> LedgerTransaction:
        result = await self.db.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.transaction_id == transaction_id)
            .execution_options(populate_existing=True)
        )
        txn = result.scalar_one_or_none()
        if not txn:
            raise NotFound(f"transaction_not_found: {transaction_id}")
        return txn

    async def find_by_idempotency_key(self, idempotency_key: str) -> Optional[LedgerTransaction]:
        result = await self.db.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.idempotency_key == idempotency_key)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def execute(self, intent: LedgerIntent) -> LedgerTransaction:
        """
        Execute ``intent`` atomically.

        Args:
            intent: Balanced postings plus type, context and optional idempotency key

        Returns:
            The closed LedgerTransaction. A key that already closed returns the
            original transaction without moving any coins.

        Raises:
            InvalidAmount, SelfDealing, NotFound, AccountInactive: Validation failures (no transaction opened)
            FraudBlocked, PolicyViolation, InsufficientFunds, Conflict: The transaction was recorded as failed
            SQLAlchemyError: Storage failures, after a best-effort attempt to record the failure
        """
        if intent.idempotency_key:
            replayed = await self._replay(intent.idempotency_key)
            if replayed is not None:
                return replayed

        kinds = await self._validate(intent)

        txn = await self._open(intent)
        if txn.status == TransactionStatus.CLOSED.value:
            return txn
        transaction_id = txn.transaction_id

        try:
            await self._run(intent, transaction_id, kinds)
        except LedgerError as exc:
            exc.transaction_id = exc.transaction_id or transaction_id
            await self._fail(transaction_id, exc.code, exc.message, getattr(exc, "signal", None))
            raise
        except SQLAlchemyError as exc:
            logger.error(f"Storage failure executing transaction {transaction_id}: {exc}", exc_info=True)
            await self._record_storage_failure(transaction_id, exc)
            raise

        closed = await self.get_transaction(transaction_id)
        logger.info(
            f"Transaction closed: id={transaction_id}, type={closed.type}, amount={closed.amount}, "
            f"initiator={closed.initiator_account_id}"
        )
        await self._dispatch_events(closed)
        return closed

    async def _replay(self, idempotency_key: str) -> Optional[LedgerTransaction]:
        existing = await self.find_by_idempotency_key(idempotency_key)
        if existing is None:
            return None
        if existing.status == TransactionStatus.PENDING.value:
            raise Conflict("transaction_in_progress", transaction_id=existing.transaction_id)
        logger.info(f"Idempotency key {idempotency_key} replayed transaction {existing.transaction_id}")
        return existing

    async def _validate(self, intent: LedgerIntent) -> dict[UUID, str]:
        """Check the intent before anything is written. Returns account kinds by id."""
        if not intent.debits or not intent.credits:
            raise InvalidAmount("intent_has_no_postings")
        for posting in intent.postings:
            if not _is_positive_int(posting.amount):
                raise InvalidAmount(f"amount_must_be_positive_integer: {posting.amount!r}")
        if sum(p.amount for p in intent.debits) != sum(p.amount for p in intent.credits):
            raise InvalidAmount("unbalanced_postings")

        debit_ids = {p.account_id for p in intent.debits}
        credit_ids = {p.account_id for p in intent.credits}
        if debit_ids & credit_ids:
            raise SelfDealing("sender_and_recipient_identical")

        involved = intent.account_ids | {intent.initiator_account_id}
        accounts = await self.accounts.get_accounts(involved)
        for account_id in involved:
            account = accounts.get(account_id)
            if account is None:
                raise NotFound(f"account_not_found: {account_id}")
            if not account.is_active:
                raise AccountInactive(f"account_inactive: {account_id}")
        return {account_id: account.kind for account_id, account in accounts.items()}

    async def _open(self, intent: LedgerIntent) -> LedgerTransaction:
        """Insert and commit the pending row, claiming the idempotency key."""
        txn = LedgerTransaction(
            transaction_id=uuid.uuid4(),
            type=intent.type.value,
            status=TransactionStatus.PENDING.value,
            initiator_account_id=intent.initiator_account_id,
            counterparty_account_id=intent.counterparty_account_id,
            amount=intent.amount,
            context=intent.context.model_dump(mode="json"),
            idempotency_key=intent.idempotency_key,
            request_key=intent.idempotency_key,
            created_at=self.clock(),
        )
        try:
            async with self.db.begin_nested():
                self.db.add(txn)
            await self.db.commit()
        except IntegrityError:
            await self.db.commit()
            if not intent.idempotency_key:
                raise
            # Lost the race for the key to a concurrent request
            existing = await self._replay(intent.idempotency_key)
            if existing is not None:
                return existing
            raise Conflict("idempotency_key_in_use")
        return txn

    async def _run(self, intent: LedgerIntent, transaction_id: UUID, kinds: dict[UUID, str]) -> None:
        verdict = await self.fraud_guard.evaluate(intent, transaction_id, self.clock())
        if not verdict.allowed:
            raise FraudBlocked(verdict.reason, signal=verdict.signal)

        max_attempts = self.settings.ledger_max_attempts
        for attempt in range(1, max_attempts + 1):
            try:
                await self._attempt(intent, transaction_id, kinds)
                return
            except ConcurrentModification as exc:
                # The savepoint is already rolled back; end the storage transaction before re-reading
                await self.db.commit()
                self.wallets.discard_events()
                logger.info(
                    f"Transaction {transaction_id} lost a race on {exc} (attempt {attempt}/{max_attempts})"
                )
        raise Conflict("retry_attempts_exhausted")

    async def _attempt(self, intent: LedgerIntent, transaction_id: UUID, kinds: dict[UUID, str]) -> None:
        """One optimistic pass: guards and funds check, then journal, wallet CAS and close in a savepoint."""
        now = self.clock()

        decision = None
        if intent.bot_account_id is not None and intent.type in BOT_GUARDED_TYPES:
            decision = await self.treasury_guard.authorize(intent.bot_account_id, intent, now)
            if not decision.allowed:
                raise PolicyViolation(decision.reason)

        wallets = await self.wallets.snapshot(intent.account_ids)

        for account_id in {p.account_id for p in intent.debits}:
            if kinds[account_id] == AccountKind.SYSTEM.value:
                continue
            needed = intent.debited_from(account_id)
            available = wallets[account_id].available_balance
            if available < needed:
                raise InsufficientFunds(f"Insufficient balance: {available} < {needed}")

        starting = {wallet.wallet_id: wallet.balance for wallet in wallets.values()}
        running = dict(starting)

        async with self.db.begin_nested():
            for debit_account_id, credit_account_id, amount in pair_postings(intent):
                await self.journal.append_pair(
                    transaction_id,
                    wallets[debit_account_id].wallet_id,
                    wallets[credit_account_id].wallet_id,
                    amount,
                    intent.memo,
                    running,
                    created_at=now,
                )

            # Fixed update order keeps concurrent transactions from deadlocking on row locks
            for wallet in sorted(wallets.values(), key=lambda w: str(w.wallet_id)):
                delta = running[wallet.wallet_id] - starting[wallet.wallet_id]
                if delta == 0:
                    continue
                await self.wallets.apply_delta(
                    wallet.wallet_id,
                    delta,
                    starting[wallet.wallet_id],
                    enforce_available=kinds[wallet.account_id] != AccountKind.SYSTEM.value,
                    transaction_id=transaction_id,
                )

            if decision is not None:
                await self.treasury_guard.record_action(decision, now)

            result = await self.db.execute(
                update(LedgerTransaction)
                .where(
                    LedgerTransaction.transaction_id == transaction_id,
                    LedgerTransaction.status == TransactionStatus.PENDING.value,
                )
                .values(status=TransactionStatus.CLOSED.value, closed_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise Conflict("transaction_no_longer_pending")
        await self.db.commit()

    async def _fail(self, transaction_id: UUID, code: str, detail: str, signal=None) -> None:
        """Record the transaction as failed and release its key.

        Partial effects were already discarded with the attempt's savepoint.
        """
        self.wallets.discard_events()
        await self.db.execute(
            update(LedgerTransaction)
            .where(
                LedgerTransaction.transaction_id == transaction_id,
                LedgerTransaction.status == TransactionStatus.PENDING.value,
            )
            .values(
                status=TransactionStatus.FAILED.value,
                failure_code=code,
                failure_detail=(detail or code)[:255],
                idempotency_key=None,
            )
            .execution_options(synchronize_session=False)
        )
        if signal is not None:
            signal.ledger_transaction_id = transaction_id
            self.db.add(signal)
        await self.db.commit()
        logger.info(f"Transaction failed: id={transaction_id}, code={code}, detail={detail}")

    async def _record_storage_failure(self, transaction_id: UUID, error: SQLAlchemyError) -> None:
        try:
            # A driver error can leave the session unusable until it is rolled back
            await self.db.rollback()
            await self._fail(transaction_id, "storage_error", str(error))
        except SQLAlchemyError as mark_exc:
            logger.error(f"Could not record failure of transaction {transaction_id}: {mark_exc}")

    async def _dispatch_events(self, txn: LedgerTransaction) -> None:
        """Notify touched accounts. Delivery problems never affect the closed transaction."""
        for event in self.wallets.drain_events():
            payload = {
                "event": "balance_changed",
                "transaction_id": str(txn.transaction_id),
                "transaction_type": txn.type,
                "balance_before": event.balance_before,
                "balance_after": event.balance_after,
            }
            try:
                await self.notifier.notify(event.account_id, payload)
            except Exception as exc:
                logger.warning(f"Notification to account {event.account_id} failed: {exc}")
