"""Background jobs: coin expiration, fraud scan, balance reconciliation and treasury snapshots."""
import logging

from coin_ledger.config import get_settings
from coin_ledger.database import AsyncSessionLocal
from coin_ledger.services.expiration_service import ExpirationRunResult, ExpirationService
from coin_ledger.services.fraud_guard import FraudGuard
from coin_ledger.services.reconciliation_service import ReconciliationReport, ReconciliationService
from coin_ledger.services.system_accounts import ensure_system_accounts
from coin_ledger.services.treasury_service import TreasuryService
from coin_ledger.tasks.recurring import RecurringTask

logger = logging.getLogger(__name__)


async def run_expiration() -> ExpirationRunResult:
    """Expire earned coins older than the horizon for every account."""
    async with AsyncSessionLocal() as db:
        await ensure_system_accounts(db)
        result = await ExpirationService(db).run()
    logger.info(
        f"Expiration completed: {result.accounts_scanned} accounts scanned, "
        f"{result.transactions_created} transactions, {result.coins_expired} coins expired, "
        f"{result.failures} failures"
    )
    return result


async def run_fraud_scan() -> int:
    """Record fraud signals for suspicious earning patterns. Never blocks transactions."""
    async with AsyncSessionLocal() as db:
        signals = await FraudGuard(db).scan_recent_activity()
    logger.info(f"Fraud scan completed: {len(signals)} signals recorded")
    return len(signals)


async def run_reconciliation() -> ReconciliationReport:
    async with AsyncSessionLocal() as db:
        report = await ReconciliationService(db).run()
    if report.is_clean:
        logger.info(f"Reconciliation completed: {report.wallets_checked} wallets clean")
    else:
        logger.error(
            f"Reconciliation found {len(report.drifts)} drifted wallets and "
            f"{len(report.unbalanced_transactions)} unbalanced transactions"
        )
    return report


async def run_treasury_snapshot() -> bool:
    """Snapshot today's coin economy. Returns whether an anomaly was flagged."""
    async with AsyncSessionLocal() as db:
        await ensure_system_accounts(db)
        snapshot = await TreasuryService(db).take_snapshot()
    if snapshot.anomaly_detected:
        logger.warning(f"Treasury snapshot {snapshot.snapshot_date} flagged an anomaly")
    return snapshot.anomaly_detected


def build_maintenance_tasks() -> list[RecurringTask]:
    """Recurring tasks the app starts at boot."""
    settings = get_settings()
    return [
        RecurringTask("coin_expiration", run_expiration, settings.coin_expiration_interval_hours * 3600),
        RecurringTask("fraud_scan", run_fraud_scan, settings.fraud_scan_interval_minutes * 60),
        RecurringTask("reconciliation", run_reconciliation, settings.reconciliation_interval_hours * 3600),
        RecurringTask("treasury_snapshot", run_treasury_snapshot, settings.treasury_snapshot_interval_hours * 3600),
    ]
