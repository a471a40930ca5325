"""Bot treasury operations: seeding, spending stats, budget changes and daily snapshots."""
import logging
from dataclasses import dataclass
from datetime import datetime, UTC, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coin_ledger.config import Settings
from coin_ledger.models import Account, BotPolicy, LedgerTransaction, TreasurySnapshot, Wallet
from coin_ledger.models.base import AccountKind, TransactionStatus, TransactionType
from coin_ledger.schemas.context import AdminAdjustmentContext
from coin_ledger.services.coordinator import TransactionCoordinator
from coin_ledger.services.intent import LedgerIntent
from coin_ledger.services.system_accounts import (
    BOT_TREASURY_ACCOUNT_ID,
    MINT_ACCOUNT_ID,
    PLATFORM_TREASURY_ACCOUNT_ID,
    ensure_system_accounts,
)
from coin_ledger.utils.datetime_helpers import utc_day
from coin_ledger.utils.exceptions import InvalidAmount

logger = logging.getLogger(__name__)

SEED_IDEMPOTENCY_KEY = "bot-treasury-seed"


@dataclass
class TreasuryStats:
    treasury_account_id: UUID
    treasury_wallet_id: UUID
    balance: int
    daily_spend_limit: int
    spent_today: int
    remaining_today: int
    total_spent: int
    funded_bots: int


class TreasuryService:
    """Funds the bot economy and reports on it."""

    def __init__(
        self,
        db: AsyncSession,
        coordinator: Optional[TransactionCoordinator] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.coordinator = coordinator or TransactionCoordinator(db)
        self.settings = settings or self.coordinator.settings
        self.wallets = self.coordinator.wallets
        self.guard = self.coordinator.treasury_guard
        self.clock = self.coordinator.clock

    async def seed(self) -> Optional[LedgerTransaction]:
        """
        Give the bot treasury its spending budget and starting balance.

        The starting balance is minted once under a fixed idempotency key, so
        calling this at every startup is harmless.

        Returns:
            The seeding transaction (the original one on repeat calls), or None
            when no starting balance is configured
        """
        await ensure_system_accounts(self.db)
        wallet = await self.wallets.get_wallet_for_account(BOT_TREASURY_ACCOUNT_ID)
        await self.guard.ensure_treasury(wallet.wallet_id)
        await self.db.commit()

        amount = self.settings.bot_treasury_initial_balance
        if amount <= 0:
            return None
        intent = LedgerIntent.pair(
            TransactionType.ADMIN_ADJUSTMENT,
            initiator_account_id=BOT_TREASURY_ACCOUNT_ID,
            debit_account_id=MINT_ACCOUNT_ID,
            credit_account_id=BOT_TREASURY_ACCOUNT_ID,
            amount=amount,
            context=AdminAdjustmentContext(admin_id="system", reason="Initial bot treasury balance"),
            idempotency_key=SEED_IDEMPOTENCY_KEY,
            memo="Initial bot treasury balance",
        )
        return await self.coordinator.execute(intent)

    async def get_stats(self, treasury_account_id: UUID = BOT_TREASURY_ACCOUNT_ID) -> TreasuryStats:
        """Balance and spending budget of a treasury, plus how many bots it funds."""
        wallet = await self.wallets.get_wallet_for_account(treasury_account_id)
        treasury = await self.guard.ensure_treasury(wallet.wallet_id)
        await self.db.commit()

        today = utc_day(self.clock())
        spent_today = treasury.spent_today if treasury.spent_day == today else 0
        result = await self.db.execute(
            select(func.count()).select_from(BotPolicy).where(BotPolicy.treasury_wallet_id == wallet.wallet_id)
        )
        return TreasuryStats(
            treasury_account_id=treasury_account_id,
            treasury_wallet_id=wallet.wallet_id,
            balance=wallet.balance,
            daily_spend_limit=treasury.daily_spend_limit,
            spent_today=spent_today,
            remaining_today=max(0, treasury.daily_spend_limit - spent_today),
            total_spent=treasury.total_spent,
            funded_bots=int(result.scalar_one()),
        )

    async def update_daily_limit(
        self,
        daily_spend_limit: int,
        treasury_account_id: UUID = BOT_TREASURY_ACCOUNT_ID,
    ) -> TreasuryStats:
        """
        Change how much a treasury may pay out per UTC day. Commits.

        Raises:
            InvalidAmount: If the limit is negative or not an integer
        """
        if isinstance(daily_spend_limit, bool) or not isinstance(daily_spend_limit, int) or daily_spend_limit < 0:
            raise InvalidAmount(f"daily_spend_limit_must_be_non_negative_integer: {daily_spend_limit!r}")
        wallet = await self.wallets.get_wallet_for_account(treasury_account_id)
        await self.guard.update_treasury_limit(wallet.wallet_id, daily_spend_limit)
        return await self.get_stats(treasury_account_id)

    async def _balances_by_kind(self) -> dict[str, int]:
        result = await self.db.execute(
            select(Account.kind, func.coalesce(func.sum(Wallet.balance), 0))
            .join(Wallet, Wallet.account_id == Account.account_id)
            .group_by(Account.kind)
        )
        return {kind: int(total) for kind, total in result.all()}

    async def _coins_expired_since(self, since: datetime) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(LedgerTransaction.amount), 0)).where(
                LedgerTransaction.type == TransactionType.EXPIRE.value,
                LedgerTransaction.status == TransactionStatus.CLOSED.value,
                LedgerTransaction.closed_at >= since,
            )
        )
        return int(result.scalar_one())

    async def _snapshot_for(self, snapshot_date: str) -> Optional[TreasurySnapshot]:
        result = await self.db.execute(
            select(TreasurySnapshot).where(TreasurySnapshot.snapshot_date == snapshot_date)
        )
        return result.scalar_one_or_none()

    async def take_snapshot(self, now: Optional[datetime] = None) -> TreasurySnapshot:
        """
        Record the state of the coin economy for the UTC day of ``now``.

        Circulation is the sum of user and bot wallet balances. A day-over-day
        change in circulation beyond ``treasury_anomaly_threshold`` is flagged
        and logged as a warning. One snapshot per day; repeat calls return it.
        """
        now = now or self.clock()
        snapshot_date = utc_day(now)
        existing = await self._snapshot_for(snapshot_date)
        if existing is not None:
            logger.info(f"Treasury snapshot for {snapshot_date} already taken")
            return existing

        balances = await self._balances_by_kind()
        user_total = balances.get(AccountKind.USER.value, 0)
        bot_total = balances.get(AccountKind.BOT.value, 0)
        circulation = user_total + bot_total
        bot_treasury = await self.wallets.get_wallet_for_account(BOT_TREASURY_ACCOUNT_ID)
        platform_treasury = await self.wallets.get_wallet_for_account(PLATFORM_TREASURY_ACCOUNT_ID)
        budget = await self.guard.get_treasury(bot_treasury.wallet_id)
        spent_today = budget.spent_today if budget is not None and budget.spent_day == snapshot_date else 0

        previous_result = await self.db.execute(
            select(TreasurySnapshot)
            .where(TreasurySnapshot.snapshot_date < snapshot_date)
            .order_by(TreasurySnapshot.snapshot_date.desc())
            .limit(1)
        )
        previous = previous_result.scalar_one_or_none()
        anomaly = False
        if previous is not None and previous.circulation_total > 0:
            change = (circulation - previous.circulation_total) / previous.circulation_total
            anomaly = abs(change) > self.settings.treasury_anomaly_threshold
            if anomaly:
                logger.warning(
                    f"Treasury anomaly: circulation changed {change * 100:.2f}% "
                    f"({previous.circulation_total} on {previous.snapshot_date} -> {circulation} on {snapshot_date})"
                )

        snapshot = TreasurySnapshot(
            snapshot_date=snapshot_date,
            circulation_total=circulation,
            user_balances_total=user_total,
            bot_balances_total=bot_total,
            bot_treasury_balance=bot_treasury.balance,
            platform_treasury_balance=platform_treasury.balance,
            coins_expired_24h=await self._coins_expired_since(now - timedelta(hours=24)),
            treasury_spent_today=spent_today,
            anomaly_detected=anomaly,
            created_at=now,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(snapshot)
            await self.db.commit()
        except IntegrityError:
            # Another worker took today's snapshot first
            await self.db.commit()
            return await self._snapshot_for(snapshot_date)

        logger.info(
            f"Treasury snapshot {snapshot_date}: circulation {circulation}, "
            f"bot treasury {bot_treasury.balance}, expired 24h {snapshot.coins_expired_24h}"
        )
        return snapshot

    async def list_snapshots(self, limit: int = 30) -> list[TreasurySnapshot]:
        result = await self.db.execute(
            select(TreasurySnapshot).order_by(TreasurySnapshot.snapshot_date.desc()).limit(limit)
        )
        return list(result.scalars().all())
