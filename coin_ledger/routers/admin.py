"""Admin routes: adjustments, moderation, bot policies, the bot treasury and maintenance runs."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from coin_ledger.database import get_db
from coin_ledger.dependencies import get_ledger_service
from coin_ledger.schemas.account import AccountResponse
from coin_ledger.schemas.admin import (
    AdjustBalanceRequest,
    BalanceDriftResponse,
    BotPolicyResponse,
    BotPolicyUpdate,
    ExpirationRunResponse,
    FraudSignalResponse,
    ReconciliationResponse,
    TreasuryLimitUpdate,
    TreasurySnapshotResponse,
    TreasuryStatsResponse,
)
from coin_ledger.schemas.transaction import LedgerTransactionResponse
from coin_ledger.services.expiration_service import ExpirationService
from coin_ledger.services.fraud_guard import FraudGuard
from coin_ledger.services.ledger_service import LedgerService
from coin_ledger.services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/adjustments", response_model=LedgerTransactionResponse)
async def adjust_balance(request: AdjustBalanceRequest, ledger: LedgerService = Depends(get_ledger_service)):
    """Mint (positive amount) or burn (negative amount) coins on an account. Audited."""
    txn = await ledger.adjust_balance(
        request.account_id,
        request.amount,
        reason=request.reason,
        admin_id=request.admin_id,
        idempotency_key=request.idempotency_key,
    )
    return LedgerTransactionResponse.model_validate(txn)


@router.post("/accounts/{account_id}/deactivate", response_model=AccountResponse)
async def deactivate_account(
    account_id: UUID,
    admin_id: Optional[str] = Query(None, max_length=100),
    ledger: LedgerService = Depends(get_ledger_service),
):
    account = await ledger.deactivate_account(account_id, admin_id=admin_id)
    return AccountResponse.model_validate(account)


@router.get("/bot-policies/{account_id}", response_model=BotPolicyResponse)
async def get_bot_policy(account_id: UUID, ledger: LedgerService = Depends(get_ledger_service)):
    return BotPolicyResponse.model_validate(await ledger.get_bot_policy(account_id))


@router.patch("/bot-policies/{account_id}", response_model=BotPolicyResponse)
async def update_bot_policy(
    account_id: UUID,
    request: BotPolicyUpdate,
    admin_id: Optional[str] = Query(None, max_length=100),
    ledger: LedgerService = Depends(get_ledger_service),
):
    policy = await ledger.update_bot_policy(
        account_id,
        wallet_cap=request.wallet_cap,
        daily_action_limit=request.daily_action_limit,
        action_cooldown_seconds=request.action_cooldown_seconds,
        treasury_account_id=request.treasury_account_id,
        admin_id=admin_id,
    )
    return BotPolicyResponse.model_validate(policy)


@router.get("/treasury", response_model=TreasuryStatsResponse)
async def get_treasury_stats(ledger: LedgerService = Depends(get_ledger_service)):
    """Bot treasury balance and today's spending against its daily budget."""
    return TreasuryStatsResponse.model_validate(await ledger.get_treasury_stats())


@router.patch("/treasury", response_model=TreasuryStatsResponse)
async def update_treasury_limit(
    request: TreasuryLimitUpdate,
    admin_id: Optional[str] = Query(None, max_length=100),
    ledger: LedgerService = Depends(get_ledger_service),
):
    stats = await ledger.update_treasury_limit(request.daily_spend_limit, admin_id=admin_id)
    return TreasuryStatsResponse.model_validate(stats)


@router.get("/treasury/snapshots", response_model=list[TreasurySnapshotResponse])
async def list_treasury_snapshots(
    limit: int = Query(30, ge=1, le=365),
    ledger: LedgerService = Depends(get_ledger_service),
):
    snapshots = await ledger.list_treasury_snapshots(limit=limit)
    return [TreasurySnapshotResponse.model_validate(snapshot) for snapshot in snapshots]


@router.post("/treasury/snapshots", response_model=TreasurySnapshotResponse)
async def take_treasury_snapshot(ledger: LedgerService = Depends(get_ledger_service)):
    """Snapshot today's coin economy. Safe to repeat: a day has one snapshot."""
    return TreasurySnapshotResponse.model_validate(await ledger.take_treasury_snapshot())


@router.get("/fraud-signals", response_model=list[FraudSignalResponse])
async def list_fraud_signals(
    account_id: Optional[UUID] = None,
    limit: int = Query(100, ge=1, le=500),
    ledger: LedgerService = Depends(get_ledger_service),
):
    signals = await ledger.list_fraud_signals(account_id=account_id, limit=limit)
    return [FraudSignalResponse.model_validate(signal) for signal in signals]


@router.post("/expiration/run", response_model=ExpirationRunResponse)
async def run_expiration(db: AsyncSession = Depends(get_db)):
    """Run one expiration pass now. Safe to repeat: expired batches are skipped."""
    result = await ExpirationService(db).run()
    return ExpirationRunResponse.model_validate(result)


@router.post("/fraud-scan/run", response_model=list[FraudSignalResponse])
async def run_fraud_scan(db: AsyncSession = Depends(get_db)):
    signals = await FraudGuard(db).scan_recent_activity()
    return [FraudSignalResponse.model_validate(signal) for signal in signals]


@router.post("/reconciliation/run", response_model=ReconciliationResponse)
async def run_reconciliation(
    record_signals: bool = True,
    db: AsyncSession = Depends(get_db),
):
    report = await ReconciliationService(db).run(record_signals=record_signals)
    return ReconciliationResponse(
        wallets_checked=report.wallets_checked,
        drifts=[BalanceDriftResponse.model_validate(drift) for drift in report.drifts],
        unbalanced_transactions=report.unbalanced_transactions,
    )
