"""Health check endpoints."""
from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from coin_ledger.database import engine
from coin_ledger.utils import lock_client
from coin_ledger.config import get_settings
from coin_ledger.version import APP_VERSION
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "error", "detail": "Database connection failed"},
        )

    return {
        "status": "ok",
        "database": db_status,
        "locks": lock_client.backend,
    }


@router.get("/status")
async def ledger_status():
    """Version, environment and the economy parameters currently in force."""
    settings = get_settings()
    return {
        "version": APP_VERSION,
        "environment": settings.environment,
        "economy": {
            "signup_bonus_amount": settings.signup_bonus_amount,
            "commission_seller_percent": settings.commission_seller_percent,
            "coin_expiration_days": settings.coin_expiration_days,
        },
        "background_tasks_enabled": settings.background_tasks_enabled,
    }
