"""Bot treasury guard: wallet caps, daily limits, cooldowns and the treasury spending budget."""
import logging
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coin_ledger.config import get_settings, Settings
from coin_ledger.models import BotPolicy, BotTreasury, Wallet
from coin_ledger.models.base import TransactionType
from coin_ledger.services.intent import LedgerIntent
from coin_ledger.utils.datetime_helpers import ensure_utc, utc_day
from coin_ledger.utils.exceptions import ConcurrentModification, NotFound

logger = logging.getLogger(__name__)

GUARDED_TYPES = (TransactionType.TRANSFER, TransactionType.PURCHASE, TransactionType.REWARD)

WALLET_CAP_EXCEEDED = "wallet_cap_exceeded"
DAILY_LIMIT_REACHED = "daily_action_limit_reached"
COOLDOWN_ACTIVE = "cooldown_active"
TREASURY_DAILY_LIMIT_REACHED = "treasury_daily_limit_reached"


@dataclass
class TreasuryDecision:
    allowed: bool
    reason: Optional[str] = None
    policy: Optional[BotPolicy] = None
    treasury: Optional[BotTreasury] = None
    treasury_spend: int = 0


class TreasuryGuard:
    """Pure policy enforcement over the durable counters on ``BotPolicy`` and ``BotTreasury``.

    Counters live in the database and advance in the same storage transaction
    as the ledger effects they account for, so restarts cannot reset limits.
    """

    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()

    async def get_policy(self, bot_account_id: UUID) -> BotPolicy:
        result = await self.db.execute(
            select(BotPolicy)
            .where(BotPolicy.account_id == bot_account_id)
            .execution_options(populate_existing=True)
        )
        policy = result.scalar_one_or_none()
        if not policy:
            raise NotFound(f"bot_policy_not_found: {bot_account_id}")
        return policy

    async def create_default_policy(self, bot_account_id: UUID, treasury_wallet_id: UUID) -> BotPolicy:
        """Attach the configured default limits to a new bot. The caller commits."""
        policy = BotPolicy(
            account_id=bot_account_id,
            wallet_cap=self.settings.bot_wallet_cap,
            daily_action_limit=self.settings.bot_daily_action_limit,
            action_cooldown_seconds=self.settings.bot_action_cooldown_seconds,
            treasury_wallet_id=treasury_wallet_id,
            actions_today=0,
        )
        self.db.add(policy)
        await self.db.flush()
        return policy

    async def funding_account_id(self, bot_account_id: UUID) -> UUID:
        """Account owning the treasury wallet that pays for the bot's spending."""
        policy = await self.get_policy(bot_account_id)
        return await self._wallet_account_id(policy.treasury_wallet_id)

    async def _wallet_account_id(self, wallet_id: UUID) -> UUID:
        result = await self.db.execute(select(Wallet.account_id).where(Wallet.wallet_id == wallet_id))
        account_id = result.scalar_one_or_none()
        if account_id is None:
            raise NotFound(f"treasury_wallet_not_found: {wallet_id}")
        return account_id

    async def get_treasury(self, treasury_wallet_id: UUID) -> Optional[BotTreasury]:
        """Spending budget of a treasury wallet, or None when it has no budget."""
        result = await self.db.execute(
            select(BotTreasury)
            .where(BotTreasury.treasury_wallet_id == treasury_wallet_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def ensure_treasury(self, treasury_wallet_id: UUID) -> BotTreasury:
        """Give a treasury wallet the configured daily budget unless it has one. The caller commits."""
        treasury = await self.get_treasury(treasury_wallet_id)
        if treasury is not None:
            return treasury
        try:
            async with self.db.begin_nested():
                self.db.add(BotTreasury(
                    treasury_wallet_id=treasury_wallet_id,
                    daily_spend_limit=self.settings.bot_treasury_daily_spend_limit,
                    spent_today=0,
                    total_spent=0,
                ))
            logger.info(f"Created spending budget for treasury wallet {treasury_wallet_id}")
        except IntegrityError:
            logger.debug(f"Treasury budget for {treasury_wallet_id} created concurrently")
        return await self.get_treasury(treasury_wallet_id)

    async def authorize(
        self,
        bot_account_id: UUID,
        intent: LedgerIntent,
        now: datetime | None = None,
    ) -> TreasuryDecision:
        """
        Check a bot-initiated intent against its policy.

        Checks run in order: wallet cap on prospective earnings, daily action
        count, cooldown since the last action, then the treasury's daily
        spending budget for whatever the treasury pays.

        Returns:
            TreasuryDecision; allowed decisions carry the policy row read, which
            :meth:`record_action` needs for its compare-and-swap
        """
        now = now or datetime.now(UTC)
        policy = await self.get_policy(bot_account_id)

        incoming = intent.credited_to(bot_account_id)
        if incoming:
            result = await self.db.execute(
                select(Wallet.balance).where(Wallet.account_id == bot_account_id)
            )
            balance = result.scalar_one()
            if balance + incoming > policy.wallet_cap:
                return self._deny(bot_account_id, WALLET_CAP_EXCEEDED,
                                  f"balance {balance} + {incoming} > cap {policy.wallet_cap}")

        actions_today = policy.actions_today if policy.actions_day == utc_day(now) else 0
        if actions_today >= policy.daily_action_limit:
            return self._deny(bot_account_id, DAILY_LIMIT_REACHED,
                              f"{actions_today} actions today, limit {policy.daily_action_limit}")

        if policy.action_cooldown_seconds > 0 and policy.last_action_at is not None:
            elapsed = (now - ensure_utc(policy.last_action_at)).total_seconds()
            if elapsed <= policy.action_cooldown_seconds:
                return self._deny(bot_account_id, COOLDOWN_ACTIVE,
                                  f"{elapsed:.0f}s since last action, cooldown {policy.action_cooldown_seconds}s")

        treasury = await self.get_treasury(policy.treasury_wallet_id)
        spend = 0
        if treasury is not None:
            spend = intent.debited_from(await self._wallet_account_id(policy.treasury_wallet_id))
            spent_today = treasury.spent_today if treasury.spent_day == utc_day(now) else 0
            if spend and spent_today + spend > treasury.daily_spend_limit:
                return self._deny(bot_account_id, TREASURY_DAILY_LIMIT_REACHED,
                                  f"treasury spent {spent_today} + {spend} > limit {treasury.daily_spend_limit}")

        return TreasuryDecision(allowed=True, policy=policy, treasury=treasury, treasury_spend=spend)

    def _deny(self, bot_account_id: UUID, reason: str, detail: str) -> TreasuryDecision:
        logger.info(f"Treasury guard denied bot {bot_account_id}: {reason} ({detail})")
        return TreasuryDecision(allowed=False, reason=reason)

    async def record_action(self, decision: TreasuryDecision, now: datetime | None = None) -> None:
        """
        Advance the bot's counters, and the treasury's when it paid, inside the
        caller's storage transaction.

        Raises:
            ConcurrentModification: If another action for the bot or the treasury landed first
        """
        now = now or datetime.now(UTC)
        policy = decision.policy
        day = utc_day(now)
        actions_today = (policy.actions_today if policy.actions_day == day else 0) + 1

        result = await self.db.execute(
            update(BotPolicy)
            .where(BotPolicy.account_id == policy.account_id, BotPolicy.version == policy.version)
            .values(
                actions_today=actions_today,
                actions_day=day,
                last_action_at=now,
                version=BotPolicy.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentModification(f"bot_policy:{policy.account_id}")

        if decision.treasury is not None and decision.treasury_spend:
            await self._record_spend(decision.treasury, decision.treasury_spend, now)

    async def _record_spend(self, treasury: BotTreasury, amount: int, now: datetime) -> None:
        day = utc_day(now)
        spent_today = (treasury.spent_today if treasury.spent_day == day else 0) + amount
        result = await self.db.execute(
            update(BotTreasury)
            .where(
                BotTreasury.treasury_wallet_id == treasury.treasury_wallet_id,
                BotTreasury.version == treasury.version,
            )
            .values(
                spent_today=spent_today,
                spent_day=day,
                total_spent=BotTreasury.total_spent + amount,
                version=BotTreasury.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentModification(f"bot_treasury:{treasury.treasury_wallet_id}")

    async def update_policy(
        self,
        bot_account_id: UUID,
        wallet_cap: int | None = None,
        daily_action_limit: int | None = None,
        action_cooldown_seconds: int | None = None,
        treasury_wallet_id: UUID | None = None,
    ) -> BotPolicy:
        """Change a bot's limits. Counters are left untouched. Commits."""
        policy = await self.get_policy(bot_account_id)
        changes = {
            "wallet_cap": wallet_cap,
            "daily_action_limit": daily_action_limit,
            "action_cooldown_seconds": action_cooldown_seconds,
            "treasury_wallet_id": treasury_wallet_id,
        }
        for field_name, value in changes.items():
            if value is not None:
                setattr(policy, field_name, value)
        policy.version += 1
        policy.updated_at = datetime.now(UTC)
        await self.db.commit()
        applied = {key: value for key, value in changes.items() if value is not None}
        logger.info(f"Updated bot policy for {bot_account_id}: {applied}")
        return await self.get_policy(bot_account_id)

    async def update_treasury_limit(self, treasury_wallet_id: UUID, daily_spend_limit: int) -> BotTreasury:
        """Change a treasury's daily budget. Today's spending is kept. Commits."""
        treasury = await self.ensure_treasury(treasury_wallet_id)
        treasury.daily_spend_limit = daily_spend_limit
        treasury.version += 1
        treasury.updated_at = datetime.now(UTC)
        await self.db.commit()
        logger.info(f"Treasury wallet {treasury_wallet_id} daily spend limit set to {daily_spend_limit}")
        return await self.get_treasury(treasury_wallet_id)
