"""Well-known accounts owned by the platform itself."""
import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coin_ledger.models import Account, Wallet
from coin_ledger.models.base import AccountKind

logger = logging.getLogger(__name__)

# Issuance source for signup bonuses, rewards and admin credits. May go negative.
MINT_ACCOUNT_ID = UUID("00000000-0000-0000-0000-000000000001")
# Sink credited by the expiration engine.
EXPIRED_COINS_ACCOUNT_ID = UUID("00000000-0000-0000-0000-000000000002")
# Receives the platform share of marketplace purchases.
PLATFORM_TREASURY_ACCOUNT_ID = UUID("00000000-0000-0000-0000-000000000003")
# Funds bot spending. Refilled through admin adjustments.
BOT_TREASURY_ACCOUNT_ID = UUID("00000000-0000-0000-0000-000000000004")

SYSTEM_ACCOUNTS = {
    MINT_ACCOUNT_ID: AccountKind.SYSTEM,
    EXPIRED_COINS_ACCOUNT_ID: AccountKind.SYSTEM,
    PLATFORM_TREASURY_ACCOUNT_ID: AccountKind.PLATFORM_TREASURY,
    BOT_TREASURY_ACCOUNT_ID: AccountKind.PLATFORM_TREASURY,
}

_provisioned = False


async def ensure_system_accounts(db: AsyncSession) -> None:
    """Create the platform accounts and their wallets if they do not exist yet.

    Safe to call concurrently and repeatedly; commits when it creates anything.
    """
    global _provisioned
    if _provisioned:
        return

    result = await db.execute(
        select(Account.account_id).where(Account.account_id.in_(list(SYSTEM_ACCOUNTS)))
    )
    existing = set(result.scalars().all())
    missing = [account_id for account_id in SYSTEM_ACCOUNTS if account_id not in existing]

    if missing:
        try:
            async with db.begin_nested():
                for account_id in missing:
                    db.add(Account(account_id=account_id, kind=SYSTEM_ACCOUNTS[account_id].value))
                await db.flush()
                for account_id in missing:
                    db.add(Wallet(account_id=account_id))
            await db.commit()
            logger.info(f"Provisioned {len(missing)} system accounts")
        except IntegrityError:
            # Another worker provisioned them first
            await db.commit()
            logger.debug("System accounts provisioned concurrently")

    _provisioned = True


def is_system_account(account_id: UUID) -> bool:
    return account_id in SYSTEM_ACCOUNTS


def reset_provisioning_cache() -> None:
    """Forget that system accounts were provisioned (used when the database is recreated)."""
    global _provisioned
    _provisioned = False
