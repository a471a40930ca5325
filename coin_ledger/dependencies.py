"""FastAPI dependencies."""
import hmac
import logging

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from coin_ledger.config import get_settings
from coin_ledger.database import get_db
from coin_ledger.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


async def verify_api_key(x_ledger_api_key: str | None = Header(default=None)) -> None:
    """Require the shared secret header when one is configured."""
    expected = get_settings().ledger_api_key
    if not expected:
        return
    if not x_ledger_api_key or not hmac.compare_digest(x_ledger_api_key, expected):
        logger.warning("Rejected request with missing or invalid X-Ledger-Api-Key")
        raise HTTPException(status_code=401, detail="invalid_api_key")


async def get_ledger_service(db: AsyncSession = Depends(get_db)) -> LedgerService:
    return LedgerService(db)
