"""Wallet store: the durable source of truth for current balances."""
import logging
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coin_ledger.config import get_settings
from coin_ledger.models import Wallet, WalletHold
from coin_ledger.utils.exceptions import (
    Conflict,
    ConcurrentModification,
    InsufficientFunds,
    InvalidAmount,
    NotFound,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceChanged:
    """Emitted for every wallet touched by a closed transaction."""
    account_id: UUID
    wallet_id: UUID
    balance_before: int
    balance_after: int
    transaction_id: Optional[UUID] = None


class WalletStore:
    """Reads wallets and mutates them with compare-and-swap updates.

    Only the transaction coordinator calls :meth:`apply_delta`. Balance-changed
    events are buffered until the caller commits and drains them.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()
        self._pending_events: list[BalanceChanged] = []

    async def get_wallet(self, wallet_id: UUID) -> Optional[Wallet]:
        result = await self.db.execute(
            select(Wallet).where(Wallet.wallet_id == wallet_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_wallet_for_account(self, account_id: UUID) -> Wallet:
        """Get the wallet owned by ``account_id``.

        Raises:
            NotFound: If the account has no wallet
        """
        result = await self.db.execute(
            select(Wallet).where(Wallet.account_id == account_id).execution_options(populate_existing=True)
        )
        wallet = result.scalar_one_or_none()
        if not wallet:
            raise NotFound(f"account_not_found: {account_id}")
        return wallet

    async def get_balance(self, account_id: UUID) -> int:
        wallet = await self.get_wallet_for_account(account_id)
        return wallet.balance

    async def create_wallet(self, account_id: UUID) -> Wallet:
        """Add an empty wallet for a new account. The caller commits."""
        wallet = Wallet(account_id=account_id, balance=0, available_balance=0)
        self.db.add(wallet)
        await self.db.flush()
        return wallet

    async def snapshot(self, account_ids: Iterable[UUID]) -> dict[UUID, Wallet]:
        """Fresh read of the wallets owned by ``account_ids``, keyed by account id."""
        account_ids = list(account_ids)
        result = await self.db.execute(
            select(Wallet)
            .where(Wallet.account_id.in_(account_ids))
            .execution_options(populate_existing=True)
        )
        wallets = {wallet.account_id: wallet for wallet in result.scalars().all()}
        missing = [account_id for account_id in account_ids if account_id not in wallets]
        if missing:
            raise NotFound(f"account_not_found: {missing[0]}")
        return wallets

    async def apply_delta(
        self,
        wallet_id: UUID,
        signed_amount: int,
        expected_balance_before: int,
        enforce_available: bool = True,
        transaction_id: Optional[UUID] = None,
    ) -> Wallet:
        """
        Move a wallet's balance by ``signed_amount`` if nobody moved it first.

        Args:
            wallet_id: Wallet to update
            signed_amount: Positive for credits, negative for debits
            expected_balance_before: Balance the caller based its decision on
            enforce_available: Refuse debits that would overdraw the available balance
            transaction_id: Ledger transaction causing the change, for the emitted event

        Returns:
            The refreshed wallet

        Raises:
            ConcurrentModification: If the balance no longer matches ``expected_balance_before``
        """
        conditions = [Wallet.wallet_id == wallet_id, Wallet.balance == expected_balance_before]
        if enforce_available and signed_amount < 0:
            conditions.append(Wallet.available_balance >= -signed_amount)

        values = dict(
            balance=Wallet.balance + signed_amount,
            available_balance=Wallet.available_balance + signed_amount,
            version=Wallet.version + 1,
            updated_at=datetime.now(UTC),
        )
        if signed_amount > 0:
            values["lifetime_earned"] = Wallet.lifetime_earned + signed_amount
        else:
            values["lifetime_spent"] = Wallet.lifetime_spent - signed_amount

        result = await self.db.execute(
            update(Wallet)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(
                f"Wallet {wallet_id} moved since it was read (expected balance {expected_balance_before})"
            )
            raise ConcurrentModification(str(wallet_id))

        wallet = await self.get_wallet(wallet_id)
        self._pending_events.append(
            BalanceChanged(
                account_id=wallet.account_id,
                wallet_id=wallet_id,
                balance_before=expected_balance_before,
                balance_after=wallet.balance,
                transaction_id=transaction_id,
            )
        )
        return wallet

    async def reserve(self, account_id: UUID, amount: int, reason: str | None = None) -> WalletHold:
        """
        Hold ``amount`` against the account's available balance. The caller commits.

        Raises:
            InvalidAmount: If amount is not a positive integer
            InsufficientFunds: If the available balance cannot cover the hold
            Conflict: If the wallet kept changing underneath us
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount("amount_must_be_positive_integer")

        for _ in range(self.settings.ledger_max_attempts):
            wallet = await self.get_wallet_for_account(account_id)
            if wallet.available_balance < amount:
                raise InsufficientFunds(
                    f"Insufficient available balance: {wallet.available_balance} < {amount}"
                )
            result = await self.db.execute(
                update(Wallet)
                .where(Wallet.wallet_id == wallet.wallet_id, Wallet.version == wallet.version)
                .values(
                    available_balance=Wallet.available_balance - amount,
                    version=Wallet.version + 1,
                    updated_at=datetime.now(UTC),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                hold = WalletHold(wallet_id=wallet.wallet_id, amount=amount, reason=reason)
                self.db.add(hold)
                await self.db.flush()
                logger.info(f"Reserved {amount} on wallet {wallet.wallet_id} (hold {hold.hold_id})")
                return hold
            logger.debug(f"Wallet {wallet.wallet_id} changed during reserve, retrying")

        raise Conflict("wallet_busy")

    async def release(self, hold_id: UUID, wallet_id: UUID | None = None) -> WalletHold:
        """Return a hold's amount to the available balance. The caller commits.

        Args:
            hold_id: Hold to release
            wallet_id: When given, the hold must belong to this wallet

        Raises:
            NotFound: If the hold does not exist or was already released
        """
        conditions = [WalletHold.hold_id == hold_id, WalletHold.status == "active"]
        if wallet_id is not None:
            conditions.append(WalletHold.wallet_id == wallet_id)
        result = await self.db.execute(
            update(WalletHold)
            .where(*conditions)
            .values(status="released", released_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFound(f"hold_not_found: {hold_id}")

        hold_result = await self.db.execute(
            select(WalletHold).where(WalletHold.hold_id == hold_id).execution_options(populate_existing=True)
        )
        hold = hold_result.scalar_one()
        await self.db.execute(
            update(Wallet)
            .where(Wallet.wallet_id == hold.wallet_id)
            .values(
                available_balance=Wallet.available_balance + hold.amount,
                version=Wallet.version + 1,
                updated_at=datetime.now(UTC),
            )
            .execution_options(synchronize_session=False)
        )
        logger.info(f"Released hold {hold_id} ({hold.amount}) on wallet {hold.wallet_id}")
        return hold

    def drain_events(self) -> list[BalanceChanged]:
        """Hand over buffered events after the owning transaction committed."""
        events, self._pending_events = self._pending_events, []
        return events

    def discard_events(self) -> None:
        self._pending_events = []
