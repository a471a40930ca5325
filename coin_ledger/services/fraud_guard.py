"""Fraud/velocity guard."""
import logging
from dataclasses import dataclass
from datetime import datetime, UTC, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from coin_ledger.config import get_settings, Settings
from coin_ledger.models import FraudSignal, LedgerTransaction
from coin_ledger.models.base import FraudSeverity, FraudSignalType, TransactionStatus, TransactionType
from coin_ledger.services.intent import LedgerIntent

logger = logging.getLogger(__name__)

GUARDED_TYPES = (TransactionType.TRANSFER.value, TransactionType.PURCHASE.value)
LIVE_STATUSES = (TransactionStatus.PENDING.value, TransactionStatus.CLOSED.value)


@dataclass
class FraudVerdict:
    """Allow, or Block with the signal that should be recorded."""
    allowed: bool
    signal: Optional[FraudSignal] = None

    @property
    def reason(self) -> Optional[str]:
        return self.signal.signal_type if self.signal else None


def _severity(observed: int, threshold: int) -> str:
    if observed > 2 * threshold:
        return FraudSeverity.CRITICAL.value
    return FraudSeverity.HIGH.value


class FraudGuard:
    """Heuristic velocity checks on outgoing transfers and purchases.

    Rolling windows are computed from committed pending and closed ledger
    transactions, so concurrent requests from one account see each other.
    False positives are expected; every block leaves a signal for moderators.
    """

    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()

    def _signal(self, account_id: UUID, signal_type: FraudSignalType, severity: str,
                evidence: dict, transaction_id: UUID | None = None) -> FraudSignal:
        return FraudSignal(
            account_id=account_id,
            signal_type=signal_type.value,
            severity=severity,
            evidence=evidence,
            ledger_transaction_id=transaction_id,
        )

    def _outgoing(self, account_id: UUID, since: datetime, exclude_id: UUID | None):
        conditions = [
            LedgerTransaction.initiator_account_id == account_id,
            LedgerTransaction.type.in_(GUARDED_TYPES),
            LedgerTransaction.status.in_(LIVE_STATUSES),
            LedgerTransaction.created_at >= since,
        ]
        if exclude_id is not None:
            conditions.append(LedgerTransaction.transaction_id != exclude_id)
        return conditions

    async def evaluate(
        self,
        intent: LedgerIntent,
        transaction_id: UUID | None = None,
        now: datetime | None = None,
    ) -> FraudVerdict:
        """
        Decide whether ``intent`` may proceed.

        Args:
            intent: Intent being executed
            transaction_id: Pending transaction opened for the intent, excluded from the windows
            now: Evaluation time (defaults to the current UTC time)

        Returns:
            FraudVerdict; a blocked verdict carries an unsaved FraudSignal
        """
        if intent.type.value not in GUARDED_TYPES:
            return FraudVerdict(allowed=True)

        now = now or datetime.now(UTC)
        settings = self.settings
        account_id = intent.initiator_account_id
        amount = intent.amount

        if amount > settings.fraud_max_single_amount:
            return self._block(
                account_id, FraudSignalType.VELOCITY_ANOMALY,
                _severity(amount, settings.fraud_max_single_amount),
                {"rule": "single_amount", "amount": amount, "limit": settings.fraud_max_single_amount},
                transaction_id,
            )

        # (a) too many outgoing transactions in the window
        since = now - timedelta(seconds=settings.fraud_window_seconds)
        result = await self.db.execute(
            select(func.count()).select_from(LedgerTransaction).where(*self._outgoing(account_id, since, transaction_id))
        )
        recent_count = int(result.scalar_one()) + 1
        if recent_count > settings.fraud_max_transfers_per_window:
            return self._block(
                account_id, FraudSignalType.RATE_LIMIT_BREACH,
                _severity(recent_count, settings.fraud_max_transfers_per_window),
                {
                    "rule": "transfer_count",
                    "count": recent_count,
                    "limit": settings.fraud_max_transfers_per_window,
                    "window_seconds": settings.fraud_window_seconds,
                },
                transaction_id,
            )

        # (b) cumulative amount in the window
        since = now - timedelta(seconds=settings.fraud_amount_window_seconds)
        result = await self.db.execute(
            select(func.coalesce(func.sum(LedgerTransaction.amount), 0))
            .where(*self._outgoing(account_id, since, transaction_id))
        )
        window_total = int(result.scalar_one()) + amount
        if window_total > settings.fraud_max_amount_per_window:
            return self._block(
                account_id, FraudSignalType.VELOCITY_ANOMALY,
                _severity(window_total, settings.fraud_max_amount_per_window),
                {
                    "rule": "window_amount",
                    "total": window_total,
                    "limit": settings.fraud_max_amount_per_window,
                    "window_seconds": settings.fraud_amount_window_seconds,
                },
                transaction_id,
            )

        # (c) rapid repeats to the same recipient
        if intent.counterparty_account_id is not None:
            since = now - timedelta(seconds=settings.fraud_repeat_recipient_window_seconds)
            result = await self.db.execute(
                select(func.count()).select_from(LedgerTransaction).where(
                    *self._outgoing(account_id, since, transaction_id),
                    LedgerTransaction.counterparty_account_id == intent.counterparty_account_id,
                )
            )
            repeat_count = int(result.scalar_one()) + 1
            if repeat_count > settings.fraud_max_repeat_recipient:
                return self._block(
                    account_id, FraudSignalType.SUSPICIOUS_PATTERN,
                    _severity(repeat_count, settings.fraud_max_repeat_recipient),
                    {
                        "rule": "repeat_recipient",
                        "recipient_account_id": str(intent.counterparty_account_id),
                        "count": repeat_count,
                        "limit": settings.fraud_max_repeat_recipient,
                        "window_seconds": settings.fraud_repeat_recipient_window_seconds,
                    },
                    transaction_id,
                )

        return FraudVerdict(allowed=True)

    def _block(self, account_id, signal_type, severity, evidence, transaction_id) -> FraudVerdict:
        logger.warning(
            f"Fraud guard blocked account {account_id}: {signal_type.value} ({severity}) {evidence}"
        )
        return FraudVerdict(
            allowed=False,
            signal=self._signal(account_id, signal_type, severity, evidence, transaction_id),
        )

    async def _already_flagged(self, account_id: UUID, signal_type: FraudSignalType, since: datetime) -> bool:
        result = await self.db.execute(
            select(func.count()).select_from(FraudSignal).where(
                FraudSignal.account_id == account_id,
                FraudSignal.signal_type == signal_type.value,
                FraudSignal.created_at >= since,
            )
        )
        return int(result.scalar_one()) > 0

    async def scan_recent_activity(self, now: datetime | None = None) -> list[FraudSignal]:
        """
        Flag accounts earning unusually fast during the last hour. Never blocks.

        Records ``rate_limit_breach`` for accounts over the hourly earn limit and
        ``suspicious_pattern`` for many identical reward amounts. An account is
        flagged at most once per signal type per hour. Commits.

        Returns:
            Signals recorded by this pass
        """
        now = now or datetime.now(UTC)
        since = now - timedelta(hours=1)
        settings = self.settings
        recorded: list[FraudSignal] = []

        reward_filter = (
            LedgerTransaction.type == TransactionType.REWARD.value,
            LedgerTransaction.status == TransactionStatus.CLOSED.value,
            LedgerTransaction.created_at >= since,
            LedgerTransaction.created_at <= now,
        )

        earned = func.sum(LedgerTransaction.amount)
        result = await self.db.execute(
            select(LedgerTransaction.initiator_account_id, earned, func.count())
            .where(*reward_filter)
            .group_by(LedgerTransaction.initiator_account_id)
            .having(earned > settings.fraud_hourly_earn_limit)
        )
        for account_id, total, count in result.all():
            if await self._already_flagged(account_id, FraudSignalType.RATE_LIMIT_BREACH, since):
                continue
            recorded.append(self._signal(
                account_id, FraudSignalType.RATE_LIMIT_BREACH,
                _severity(int(total), settings.fraud_hourly_earn_limit),
                {"rule": "hourly_earn", "earned": int(total), "rewards": count,
                 "limit": settings.fraud_hourly_earn_limit},
            ))

        repeats = func.count()
        result = await self.db.execute(
            select(LedgerTransaction.initiator_account_id, LedgerTransaction.amount, repeats)
            .where(*reward_filter)
            .group_by(LedgerTransaction.initiator_account_id, LedgerTransaction.amount)
            .having(repeats >= settings.fraud_identical_reward_threshold)
        )
        patterned: set[UUID] = set()
        for account_id, amount, count in result.all():
            if account_id in patterned:
                continue
            if await self._already_flagged(account_id, FraudSignalType.SUSPICIOUS_PATTERN, since):
                continue
            patterned.add(account_id)
            recorded.append(self._signal(
                account_id, FraudSignalType.SUSPICIOUS_PATTERN, FraudSeverity.MEDIUM.value,
                {"rule": "identical_rewards", "amount": amount, "count": count},
            ))

        for signal in recorded:
            self.db.add(signal)
        await self.db.commit()

        if recorded:
            logger.warning(f"Fraud scan recorded {len(recorded)} signals")
        else:
            logger.info("Fraud scan found nothing to flag")
        return recorded
