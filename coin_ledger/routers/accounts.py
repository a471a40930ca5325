"""Account, balance, history and hold routes."""
import logging
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from coin_ledger.dependencies import get_ledger_service
from coin_ledger.schemas.account import (
    AccountResponse,
    BalanceResponse,
    CreateAccountRequest,
    EarnedBatchResponse,
    HoldRequest,
    HoldResponse,
    WalletResponse,
)
from coin_ledger.schemas.transaction import LedgerTransactionResponse, TransactionHistoryResponse
from coin_ledger.services.history import MAX_PAGE_SIZE
from coin_ledger.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/accounts", tags=["accounts"])


async def _account_response(ledger: LedgerService, account_id: UUID) -> AccountResponse:
    account = await ledger.get_account(account_id)
    wallet = await ledger.get_wallet(account_id)
    response = AccountResponse.model_validate(account)
    response.wallet = WalletResponse.model_validate(wallet)
    return response


@router.post("", response_model=AccountResponse, status_code=201)
async def create_account(
    request: CreateAccountRequest,
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Provision an account and wallet, and grant the signup bonus."""
    account = await ledger.create_account(request.kind)
    return await _account_response(ledger, account.account_id)


@router.get("/{account_id}", response_model=AccountResponse)
async def get_account(account_id: UUID, ledger: LedgerService = Depends(get_ledger_service)):
    return await _account_response(ledger, account_id)


@router.get("/{account_id}/balance", response_model=BalanceResponse)
async def get_balance(account_id: UUID, ledger: LedgerService = Depends(get_ledger_service)):
    wallet = await ledger.get_wallet(account_id)
    return BalanceResponse(
        account_id=account_id,
        balance=wallet.balance,
        available_balance=wallet.available_balance,
    )


@router.get("/{account_id}/transactions", response_model=TransactionHistoryResponse)
async def get_transaction_history(
    account_id: UUID,
    order: Literal["asc", "desc"] = "desc",
    page_size: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    cursor: Optional[str] = None,
    ledger: LedgerService = Depends(get_ledger_service),
):
    """
    One page of the account's transactions.

    Pass ``next_cursor`` from a response as ``cursor`` to read the following page.
    """
    history = await ledger.get_transaction_history(account_id, page_size=page_size, order=order)
    try:
        page = await history.fetch_page(cursor)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return TransactionHistoryResponse(
        account_id=account_id,
        order=order,
        transactions=[LedgerTransactionResponse.model_validate(txn) for txn in page.transactions],
        next_cursor=page.next_cursor,
    )


@router.get("/{account_id}/batches", response_model=list[EarnedBatchResponse])
async def get_unconsumed_batches(
    account_id: UUID,
    older_than_days: int = Query(0, ge=0),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Earned-coin batches that still hold unconsumed coins, oldest first."""
    await ledger.get_account(account_id)
    batches = await ledger.unconsumed_batches(account_id, older_than_days)
    return [EarnedBatchResponse.model_validate(batch) for batch in batches]


@router.post("/{account_id}/holds", response_model=HoldResponse, status_code=201)
async def create_hold(
    account_id: UUID,
    request: HoldRequest,
    ledger: LedgerService = Depends(get_ledger_service),
):
    hold = await ledger.reserve(account_id, request.amount, request.reason)
    return HoldResponse.model_validate(hold)


@router.delete("/{account_id}/holds/{hold_id}", response_model=HoldResponse)
async def release_hold(
    account_id: UUID,
    hold_id: UUID,
    ledger: LedgerService = Depends(get_ledger_service),
):
    wallet = await ledger.get_wallet(account_id)
    hold = await ledger.release(hold_id, wallet_id=wallet.wallet_id)
    return HoldResponse.model_validate(hold)
