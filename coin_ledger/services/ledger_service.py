"""Ledger service: the operations forum, marketplace and admin callers use."""
import logging
import uuid
from datetime import datetime, UTC
from typing import Any, Callable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coin_ledger.config import get_settings
from coin_ledger.models import (
    Account,
    BotPolicy,
    FraudSignal,
    JournalEntry,
    LedgerTransaction,
    TreasurySnapshot,
    Wallet,
    WalletHold,
)
from coin_ledger.models.base import AccountKind, EntryDirection, TransactionStatus, TransactionType
from coin_ledger.schemas.context import (
    AdminAdjustmentContext,
    PurchaseContext,
    RefundContext,
    RewardChannel,
    RewardContext,
    RewardTrigger,
    SignupBonusContext,
    TransferContext,
    parse_context,
)
from coin_ledger.services.collaborators import (
    AccountDirectory,
    AuditRecorder,
    LoggingAuditRecorder,
    Notifier,
)
from coin_ledger.services.commission import CommissionSplitter
from coin_ledger.services.coordinator import TransactionCoordinator
from coin_ledger.services.expiration_service import EarnedCoinBatch, ExpirationService
from coin_ledger.services.history import TransactionHistory
from coin_ledger.services.intent import LedgerIntent, Posting
from coin_ledger.services.system_accounts import (
    BOT_TREASURY_ACCOUNT_ID,
    MINT_ACCOUNT_ID,
    PLATFORM_TREASURY_ACCOUNT_ID,
    ensure_system_accounts,
    is_system_account,
)
from coin_ledger.services.treasury_service import TreasuryService, TreasuryStats
from coin_ledger.utils.exceptions import (
    AccountInactive,
    Conflict,
    InvalidAccountKind,
    InvalidAmount,
    InvalidTrigger,
    LedgerError,
    NotFound,
    SelfDealing,
)

logger = logging.getLogger(__name__)

PROVISIONABLE_KINDS = (AccountKind.USER, AccountKind.BOT)


def _require_positive_int(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(f"amount_must_be_positive_integer: {amount!r}")
    return amount


class LedgerService:
    """Facade over the coordinator, guards, splitter and expiration engine."""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[Notifier] = None,
        audit: Optional[AuditRecorder] = None,
        accounts: Optional[AccountDirectory] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.settings = get_settings()
        self.coordinator = TransactionCoordinator(db, notifier=notifier, accounts=accounts, clock=clock)
        self.accounts = self.coordinator.accounts
        self.wallets = self.coordinator.wallets
        self.journal = self.coordinator.journal
        self.fraud_guard = self.coordinator.fraud_guard
        self.treasury_guard = self.coordinator.treasury_guard
        self.treasury = TreasuryService(db, self.coordinator)
        self.splitter = CommissionSplitter()
        self.audit = audit or LoggingAuditRecorder()

    # ------------------------------------------------------------------ accounts

    async def create_account(self, kind: str = "user") -> Account:
        """
        Provision an account, its wallet and the signup bonus.

        Bots also get a default BotPolicy funded by the bot treasury, which is
        seeded with its starting balance on first use.

        Args:
            kind: "user" or "bot"

        Returns:
            The new Account

        Raises:
            InvalidAccountKind: If kind cannot be provisioned by callers
        """
        try:
            account_kind = AccountKind(kind)
        except ValueError:
            raise InvalidAccountKind(f"invalid_account_kind: {kind}")
        if account_kind not in PROVISIONABLE_KINDS:
            raise InvalidAccountKind(f"invalid_account_kind: {kind}")

        await ensure_system_accounts(self.db)
        if account_kind == AccountKind.BOT:
            await self.treasury.seed()

        account = Account(account_id=uuid.uuid4(), kind=account_kind.value, is_active=True)
        self.db.add(account)
        await self.db.flush()
        await self.wallets.create_wallet(account.account_id)

        if account_kind == AccountKind.BOT:
            treasury = await self.wallets.get_wallet_for_account(BOT_TREASURY_ACCOUNT_ID)
            await self.treasury_guard.create_default_policy(account.account_id, treasury.wallet_id)

        await self.db.commit()
        account_id = account.account_id
        logger.info(f"Created {account_kind.value} account {account_id}")

        await self.grant_signup_bonus(account_id)
        return await self.get_account(account_id)

    async def grant_signup_bonus(self, account_id: UUID) -> Optional[LedgerTransaction]:
        """Mint the welcome bonus. Keyed by account, so repeating it is harmless."""
        amount = self.settings.signup_bonus_amount
        if amount <= 0:
            return None
        intent = LedgerIntent.pair(
            TransactionType.SIGNUP_BONUS,
            initiator_account_id=account_id,
            debit_account_id=MINT_ACCOUNT_ID,
            credit_account_id=account_id,
            amount=amount,
            context=SignupBonusContext(),
            idempotency_key=f"signup-bonus-{account_id}",
            memo="Welcome bonus",
        )
        return await self.coordinator.execute(intent)

    async def get_account(self, account_id: UUID) -> Account:
        accounts = await self.accounts.get_accounts([account_id])
        account = accounts.get(account_id)
        if not account:
            raise NotFound(f"account_not_found: {account_id}")
        return account

    async def deactivate_account(self, account_id: UUID, admin_id: str | None = None) -> Account:
        """Stop an account from taking part in new transactions. History is kept."""
        if is_system_account(account_id):
            raise Conflict("system_accounts_cannot_be_deactivated")
        account = await self.get_account(account_id)
        if account.is_active:
            account.is_active = False
            account.deactivated_at = datetime.now(UTC)
            await self.db.commit()
            logger.info(f"Deactivated account {account_id}")
            await self._record_audit({
                "action": "deactivate_account",
                "account_id": str(account_id),
                "admin_id": admin_id,
            })
        return await self.get_account(account_id)

    async def _bot_id(self, account_id: UUID) -> Optional[UUID]:
        accounts = await self.accounts.get_accounts([account_id])
        account = accounts.get(account_id)
        if account is not None and account.kind == AccountKind.BOT.value:
            return account_id
        return None

    # ------------------------------------------------------------------ money movement

    async def transfer(
        self,
        from_account_id: UUID,
        to_account_id: UUID,
        amount: int,
        idempotency_key: str | None = None,
        description: str | None = None,
    ) -> LedgerTransaction:
        """
        Move coins from one account to another.

        Bot transfers are paid from the bot's treasury and count against its policy.

        Raises:
            InvalidAmount, SelfDealing, NotFound, AccountInactive, FraudBlocked,
            PolicyViolation, InsufficientFunds, Conflict
        """
        _require_positive_int(amount)
        if from_account_id == to_account_id:
            raise SelfDealing("sender_and_recipient_identical")

        payer_id = from_account_id
        bot_id = await self._bot_id(from_account_id)
        if bot_id is not None:
            payer_id = await self.treasury_guard.funding_account_id(bot_id)

        intent = LedgerIntent.pair(
            TransactionType.TRANSFER,
            initiator_account_id=from_account_id,
            debit_account_id=payer_id,
            credit_account_id=to_account_id,
            amount=amount,
            context=TransferContext(description=description, funded_by_treasury=bot_id is not None),
            idempotency_key=idempotency_key,
            counterparty_account_id=to_account_id,
            memo=description or "Transfer",
            bot_account_id=bot_id,
        )
        return await self.coordinator.execute(intent)

    async def reward(
        self,
        account_id: UUID,
        amount: int,
        trigger: str,
        channel: str,
        idempotency_key: str | None = None,
    ) -> LedgerTransaction:
        """
        Mint earned coins for an action from the fixed trigger taxonomy.

        Raises:
            InvalidAmount, InvalidTrigger, NotFound, AccountInactive, PolicyViolation, Conflict
        """
        _require_positive_int(amount)
        try:
            reward_trigger = RewardTrigger(trigger)
        except ValueError:
            raise InvalidTrigger(f"unknown_trigger: {trigger}")
        try:
            reward_channel = RewardChannel(channel)
        except ValueError:
            raise InvalidTrigger(f"unknown_channel: {channel}")

        intent = LedgerIntent.pair(
            TransactionType.REWARD,
            initiator_account_id=account_id,
            debit_account_id=MINT_ACCOUNT_ID,
            credit_account_id=account_id,
            amount=amount,
            context=RewardContext(trigger=reward_trigger, channel=reward_channel),
            idempotency_key=idempotency_key,
            memo=f"Reward: {reward_trigger.value}",
            bot_account_id=await self._bot_id(account_id),
        )
        return await self.coordinator.execute(intent)

    async def purchase(
        self,
        buyer_id: UUID,
        seller_id: UUID,
        amount: int,
        content_id: str,
        idempotency_key: str | None = None,
    ) -> LedgerTransaction:
        """
        Buy marketplace content: one buyer debit, seller and platform credits.

        Raises:
            InvalidAmount, SelfDealing, NotFound, AccountInactive, FraudBlocked,
            PolicyViolation, InsufficientFunds, Conflict
        """
        _require_positive_int(amount)
        if buyer_id == seller_id:
            raise SelfDealing("buyer_and_seller_identical")

        payer_id = buyer_id
        bot_id = await self._bot_id(buyer_id)
        if bot_id is not None:
            payer_id = await self.treasury_guard.funding_account_id(bot_id)

        split = self.splitter.split_purchase(amount, seller_id, PLATFORM_TREASURY_ACCOUNT_ID)
        context = PurchaseContext(
            content_id=content_id,
            buyer_account_id=payer_id,
            seller_account_id=seller_id,
            platform_account_id=PLATFORM_TREASURY_ACCOUNT_ID,
            seller_share=split.seller_share,
            platform_share=split.platform_share,
            seller_percent=split.seller_percent,
        )
        intent = LedgerIntent(
            type=TransactionType.PURCHASE,
            initiator_account_id=buyer_id,
            postings=self.splitter.postings(payer_id, split),
            context=context,
            idempotency_key=idempotency_key,
            counterparty_account_id=seller_id,
            memo=f"Purchase of {content_id}",
            bot_account_id=bot_id,
        )
        return await self.coordinator.execute(intent)

    async def refund_purchase(self, purchase_transaction_id: UUID, reason: str | None = None) -> LedgerTransaction:
        """
        Reverse a closed purchase in one refund transaction.

        Seller and platform give back their shares; the payer is credited the
        full amount. A purchase is refunded at most once.

        Raises:
            NotFound: If the transaction is not a purchase
            Conflict: If the purchase never closed
            InsufficientFunds: If the seller already spent their share
        """
        original = await self.coordinator.get_transaction(purchase_transaction_id)
        if original.type != TransactionType.PURCHASE.value:
            raise NotFound(f"purchase_not_found: {purchase_transaction_id}")
        if original.status != TransactionStatus.CLOSED.value:
            raise Conflict("purchase_not_closed", transaction_id=purchase_transaction_id)

        context = parse_context(original.context)
        postings = []
        if context.seller_share:
            postings.append(Posting(context.seller_account_id, EntryDirection.DEBIT, context.seller_share))
        if context.platform_share:
            postings.append(Posting(context.platform_account_id, EntryDirection.DEBIT, context.platform_share))
        postings.append(Posting(context.buyer_account_id, EntryDirection.CREDIT, original.amount))

        intent = LedgerIntent(
            type=TransactionType.REFUND,
            initiator_account_id=original.initiator_account_id,
            postings=postings,
            context=RefundContext(original_transaction_id=purchase_transaction_id, reason=reason),
            idempotency_key=f"refund:{purchase_transaction_id}",
            counterparty_account_id=context.seller_account_id,
            memo=reason or f"Refund of {context.content_id}",
        )
        return await self.coordinator.execute(intent)

    async def adjust_balance(
        self,
        account_id: UUID,
        signed_amount: int,
        reason: str,
        admin_id: str,
        idempotency_key: str | None = None,
    ) -> LedgerTransaction:
        """
        Admin mint (positive amount) or burn (negative amount) against the mint account.

        Every attempt, successful or not, is sent to the audit recorder.

        Raises:
            InvalidAmount: If signed_amount is zero or not an integer
            NotFound, AccountInactive, InsufficientFunds, Conflict
        """
        if isinstance(signed_amount, bool) or not isinstance(signed_amount, int) or signed_amount == 0:
            raise InvalidAmount(f"amount_must_be_nonzero_integer: {signed_amount!r}")

        amount = abs(signed_amount)
        if signed_amount > 0:
            debit_id, credit_id = MINT_ACCOUNT_ID, account_id
        else:
            debit_id, credit_id = account_id, MINT_ACCOUNT_ID

        intent = LedgerIntent.pair(
            TransactionType.ADMIN_ADJUSTMENT,
            initiator_account_id=account_id,
            debit_account_id=debit_id,
            credit_account_id=credit_id,
            amount=amount,
            context=AdminAdjustmentContext(admin_id=admin_id, reason=reason),
            idempotency_key=idempotency_key,
            memo=reason,
        )
        audit_event: dict[str, Any] = {
            "action": "adjust_balance",
            "account_id": str(account_id),
            "amount": signed_amount,
            "reason": reason,
            "admin_id": admin_id,
        }
        try:
            txn = await self.coordinator.execute(intent)
        except LedgerError as exc:
            await self._record_audit({**audit_event, "outcome": exc.code,
                                      "transaction_id": str(exc.transaction_id) if exc.transaction_id else None})
            raise
        await self._record_audit({**audit_event, "outcome": "closed", "transaction_id": str(txn.transaction_id)})
        return txn

    async def _record_audit(self, event: dict[str, Any]) -> None:
        try:
            await self.audit.record_audit(event)
        except Exception as exc:
            logger.warning(f"Audit recording failed for {event.get('action')}: {exc}")

    # ------------------------------------------------------------------ holds

    async def reserve(self, account_id: UUID, amount: int, reason: str | None = None) -> WalletHold:
        """Hold coins against the available balance. Commits."""
        if not await self.accounts.is_active_account(account_id):
            await self.get_account(account_id)
            raise AccountInactive(f"account_inactive: {account_id}")
        hold = await self.wallets.reserve(account_id, amount, reason)
        await self.db.commit()
        return hold

    async def release(self, hold_id: UUID, wallet_id: UUID | None = None) -> WalletHold:
        """Release a hold. Commits."""
        hold = await self.wallets.release(hold_id, wallet_id)
        await self.db.commit()
        return hold

    # ------------------------------------------------------------------ reads

    async def get_balance(self, account_id: UUID) -> int:
        return await self.wallets.get_balance(account_id)

    async def get_wallet(self, account_id: UUID) -> Wallet:
        return await self.wallets.get_wallet_for_account(account_id)

    async def get_transaction(self, transaction_id: UUID) -> LedgerTransaction:
        return await self.coordinator.get_transaction(transaction_id)

    async def get_transaction_entries(self, transaction_id: UUID) -> list[JournalEntry]:
        return await self.journal.entries_for_transaction(transaction_id)

    async def get_transaction_history(
        self,
        account_id: UUID,
        page_size: int = 50,
        order: str = "desc",
        cursor: str | None = None,
    ) -> TransactionHistory:
        """
        History of an account as a lazy, restartable page sequence.

        Args:
            account_id: Account whose history to read
            page_size: Transactions per page (1-200)
            order: "desc" for newest first, "asc" for insertion order
            cursor: Resume after the page that returned this cursor

        Raises:
            NotFound: If the account does not exist
            ValueError: For a bad order, page size or cursor
        """
        wallet = await self.wallets.get_wallet_for_account(account_id)
        return TransactionHistory(self.db, account_id, wallet.wallet_id, page_size, order, cursor)

    async def unconsumed_batches(self, account_id: UUID, older_than_days: int = 0) -> list[EarnedCoinBatch]:
        expiration = ExpirationService(self.db, self.coordinator)
        return await expiration.unconsumed_batches(account_id, older_than_days)

    # ------------------------------------------------------------------ policy / moderation

    async def get_bot_policy(self, bot_account_id: UUID) -> BotPolicy:
        return await self.treasury_guard.get_policy(bot_account_id)

    async def update_bot_policy(
        self,
        bot_account_id: UUID,
        wallet_cap: int | None = None,
        daily_action_limit: int | None = None,
        action_cooldown_seconds: int | None = None,
        treasury_account_id: UUID | None = None,
        admin_id: str | None = None,
    ) -> BotPolicy:
        treasury_wallet_id = None
        if treasury_account_id is not None:
            treasury_wallet_id = (await self.wallets.get_wallet_for_account(treasury_account_id)).wallet_id
        policy = await self.treasury_guard.update_policy(
            bot_account_id,
            wallet_cap=wallet_cap,
            daily_action_limit=daily_action_limit,
            action_cooldown_seconds=action_cooldown_seconds,
            treasury_wallet_id=treasury_wallet_id,
        )
        await self._record_audit({
            "action": "update_bot_policy",
            "account_id": str(bot_account_id),
            "wallet_cap": policy.wallet_cap,
            "daily_action_limit": policy.daily_action_limit,
            "action_cooldown_seconds": policy.action_cooldown_seconds,
            "admin_id": admin_id,
        })
        return policy

    # ------------------------------------------------------------------ bot treasury

    async def get_treasury_stats(self) -> TreasuryStats:
        return await self.treasury.get_stats()

    async def update_treasury_limit(self, daily_spend_limit: int, admin_id: str | None = None) -> TreasuryStats:
        """Change the bot treasury's daily spending budget. Audited."""
        stats = await self.treasury.update_daily_limit(daily_spend_limit)
        await self._record_audit({
            "action": "update_treasury_limit",
            "account_id": str(stats.treasury_account_id),
            "daily_spend_limit": stats.daily_spend_limit,
            "admin_id": admin_id,
        })
        return stats

    async def take_treasury_snapshot(self, now: datetime | None = None) -> TreasurySnapshot:
        return await self.treasury.take_snapshot(now)

    async def list_treasury_snapshots(self, limit: int = 30) -> list[TreasurySnapshot]:
        return await self.treasury.list_snapshots(limit)

    async def list_fraud_signals(self, account_id: UUID | None = None, limit: int = 100) -> list[FraudSignal]:
        stmt = select(FraudSignal).order_by(FraudSignal.created_at.desc()).limit(limit)
        if account_id is not None:
            stmt = stmt.where(FraudSignal.account_id == account_id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
