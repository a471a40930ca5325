"""Money movement routes: transfers, rewards, purchases and refunds."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends

from coin_ledger.dependencies import get_ledger_service
from coin_ledger.schemas.transaction import (
    JournalEntryResponse,
    LedgerTransactionResponse,
    PurchaseRequest,
    RefundRequest,
    RewardRequest,
    TransferRequest,
)
from coin_ledger.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["transactions"])


async def _with_entries(ledger: LedgerService, txn) -> LedgerTransactionResponse:
    response = LedgerTransactionResponse.model_validate(txn)
    entries = await ledger.get_transaction_entries(txn.transaction_id)
    response.entries = [JournalEntryResponse.model_validate(entry) for entry in entries]
    return response


@router.post("/transfers", response_model=LedgerTransactionResponse)
async def transfer(request: TransferRequest, ledger: LedgerService = Depends(get_ledger_service)):
    """Move coins between accounts. Replaying an idempotency key returns the original transaction."""
    txn = await ledger.transfer(
        request.from_account_id,
        request.to_account_id,
        request.amount,
        idempotency_key=request.idempotency_key,
        description=request.description,
    )
    return await _with_entries(ledger, txn)


@router.post("/rewards", response_model=LedgerTransactionResponse)
async def reward(request: RewardRequest, ledger: LedgerService = Depends(get_ledger_service)):
    txn = await ledger.reward(
        request.account_id,
        request.amount,
        request.trigger,
        request.channel,
        idempotency_key=request.idempotency_key,
    )
    return await _with_entries(ledger, txn)


@router.post("/purchases", response_model=LedgerTransactionResponse)
async def purchase(request: PurchaseRequest, ledger: LedgerService = Depends(get_ledger_service)):
    """Buy content; the price is split between the seller and the platform treasury."""
    txn = await ledger.purchase(
        request.buyer_id,
        request.seller_id,
        request.amount,
        request.content_id,
        idempotency_key=request.idempotency_key,
    )
    return await _with_entries(ledger, txn)


@router.post("/purchases/{transaction_id}/refund", response_model=LedgerTransactionResponse)
async def refund_purchase(
    transaction_id: UUID,
    request: RefundRequest | None = None,
    ledger: LedgerService = Depends(get_ledger_service),
):
    reason = request.reason if request else None
    txn = await ledger.refund_purchase(transaction_id, reason)
    return await _with_entries(ledger, txn)


@router.get("/transactions/{transaction_id}", response_model=LedgerTransactionResponse)
async def get_transaction(transaction_id: UUID, ledger: LedgerService = Depends(get_ledger_service)):
    txn = await ledger.get_transaction(transaction_id)
    return await _with_entries(ledger, txn)
