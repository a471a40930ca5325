"""Interfaces the ledger calls out to, with the default in-process adapters."""
import logging
from typing import Any, Iterable, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coin_ledger.models import Account

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("coin_ledger.audit")


class Notifier(Protocol):
    """Notification dispatch. Fire-and-forget from the ledger's point of view."""

    async def notify(self, account_id: UUID, event: dict[str, Any]) -> None:
        ...


class AuditRecorder(Protocol):
    """Audit trail for admin-initiated changes."""

    async def record_audit(self, event: dict[str, Any]) -> None:
        ...


class AccountDirectory(Protocol):
    """Account existence and status lookup."""

    async def is_active_account(self, account_id: UUID) -> bool:
        ...

    async def get_accounts(self, account_ids: Iterable[UUID]) -> dict[UUID, Account]:
        ...


class LoggingNotifier:
    """Writes notifications to the application log until a delivery service is wired in."""

    async def notify(self, account_id: UUID, event: dict[str, Any]) -> None:
        logger.info(f"Notify account {account_id}: {event}")


class LoggingAuditRecorder:
    """Writes audit events to the dedicated ``coin_ledger.audit`` logger."""

    async def record_audit(self, event: dict[str, Any]) -> None:
        audit_logger.info(" | ".join(f"{key}={value}" for key, value in event.items()))


class DatabaseAccountDirectory:
    """Account lookups backed by the ledger's own account table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_accounts(self, account_ids: Iterable[UUID]) -> dict[UUID, Account]:
        account_ids = list(set(account_ids))
        result = await self.db.execute(
            select(Account)
            .where(Account.account_id.in_(account_ids))
            .execution_options(populate_existing=True)
        )
        return {account.account_id: account for account in result.scalars().all()}

    async def is_active_account(self, account_id: UUID) -> bool:
        accounts = await self.get_accounts([account_id])
        account = accounts.get(account_id)
        return bool(account and account.is_active)
