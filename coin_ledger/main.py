"""FastAPI application entry point."""
import os

# Force UTC before anything caches timezone information
os.environ['TZ'] = 'UTC'

import time

if hasattr(time, "tzset"):
    time.tzset()

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from contextlib import asynccontextmanager

from coin_ledger.config import get_settings
from coin_ledger.version import APP_VERSION
from coin_ledger.database import AsyncSessionLocal
from coin_ledger.dependencies import verify_api_key
from coin_ledger.routers import accounts, admin, health, transactions
from coin_ledger.services.system_accounts import ensure_system_accounts
from coin_ledger.services.treasury_service import TreasuryService
from coin_ledger.tasks import build_maintenance_tasks
from coin_ledger.utils.exceptions import LedgerError

settings = get_settings()

logs_dir = Path(settings.log_dir)
logs_dir.mkdir(parents=True, exist_ok=True)

log_file = logs_dir / "coin_ledger.log"
sql_log_file = logs_dir / "coin_ledger_sql.log"
api_log_file = logs_dir / "coin_ledger_api.log"
audit_log_file = logs_dir / "coin_ledger_audit.log"

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# General logs (1MB max size, keep 5 backup files)
rotating_handler = RotatingFileHandler(log_file, maxBytes=1024 * 1024, backupCount=5, encoding='utf-8')
rotating_handler.setFormatter(logging.Formatter(LOG_FORMAT))

sql_rotating_handler = RotatingFileHandler(sql_log_file, maxBytes=1024 * 1024, backupCount=5, encoding='utf-8')
sql_rotating_handler.setFormatter(logging.Formatter(LOG_FORMAT))

# API request logs (2MB max size, keep 15 backup files)
api_rotating_handler = RotatingFileHandler(api_log_file, maxBytes=2 * 1024 * 1024, backupCount=15, encoding='utf-8')
api_rotating_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))

# Admin audit trail is kept longer than the other logs
audit_rotating_handler = RotatingFileHandler(audit_log_file, maxBytes=2 * 1024 * 1024, backupCount=30, encoding='utf-8')
audit_rotating_handler.setFormatter(logging.Formatter('%(asctime)s - %(message)s'))

# Force=True overrides any existing configuration (e.g., from uvicorn)
logging.basicConfig(
    level=logging.INFO,
    format=LOG_FORMAT,
    handlers=[
        logging.StreamHandler(),
        rotating_handler,
    ],
    force=True,
)

logger = logging.getLogger(__name__)

api_logger = logging.getLogger("coin_ledger.api")
api_logger.handlers.clear()
api_logger.addHandler(api_rotating_handler)
api_logger.setLevel(logging.INFO)
api_logger.propagate = False

audit_logger = logging.getLogger("coin_ledger.audit")
audit_logger.handlers.clear()
audit_logger.addHandler(audit_rotating_handler)
audit_logger.setLevel(logging.INFO)
audit_logger.propagate = False

uvicorn_access_logger = logging.getLogger("uvicorn.access")
uvicorn_access_logger.setLevel(logging.INFO)
if rotating_handler not in uvicorn_access_logger.handlers:
    uvicorn_access_logger.addHandler(rotating_handler)

# SQLAlchemy engine output goes to its own file only
sqlalchemy_logger = logging.getLogger("sqlalchemy.engine.Engine")
sqlalchemy_logger.handlers.clear()
sqlalchemy_logger.addHandler(sql_rotating_handler)
sqlalchemy_logger.setLevel(logging.INFO)
sqlalchemy_logger.propagate = False


class SQLTransactionFilter(logging.Filter):
    def filter(self, record):
        # Only filter INFO level messages
        if record.levelno == logging.INFO and hasattr(record, 'getMessage'):
            message = record.getMessage()

            if any(keyword in message for keyword in ['ROLLBACK', 'BEGIN', 'COMMIT', 'generated in']):
                return False

            # Collapse multi-line statements onto one line
            if any(kw in message for kw in ['SELECT', 'UPDATE', 'DELETE', 'INSERT']):
                record.msg = ' '.join(message.split())
                record.args = ()

        return True


sqlalchemy_logger.addFilter(SQLTransactionFilter())

# HTTP status for each ledger error code
ERROR_STATUS_CODES = {
    "invalid_amount": 400,
    "invalid_trigger": 400,
    "invalid_account_kind": 400,
    "self_dealing": 400,
    "insufficient_funds": 400,
    "account_inactive": 403,
    "fraud_blocked": 403,
    "policy_violation": 403,
    "not_found": 404,
    "conflict": 409,
}


@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    """Manage application startup and shutdown tasks."""
    logger.info("=" * 60)
    logger.info("Coin Ledger API Starting")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Database: {settings.database_url.split('@')[-1] if '@' in settings.database_url else 'SQLite'}")
    logger.info(f"Redis: {'Enabled' if settings.redis_url else 'In-Memory Fallback'}")
    logger.info("=" * 60)

    async with AsyncSessionLocal() as db:
        await ensure_system_accounts(db)
        await TreasuryService(db).seed()

    maintenance_tasks = []
    if settings.background_tasks_enabled:
        for task in build_maintenance_tasks():
            try:
                task.start()
                maintenance_tasks.append(task)
            except Exception as e:
                logger.error(f"Failed to start {task.name} task: {e}")
    else:
        logger.info("Background tasks disabled")

    try:
        yield
    finally:
        logger.info("Shutting down background tasks...")
        for task in maintenance_tasks:
            try:
                await task.stop(timeout=2.0)
            except Exception as e:
                logger.error(f"Error stopping {task.name} task: {e}")

        logger.info("Coin Ledger API Shutting Down... Goodbye!")


app = FastAPI(
    title="Coin Ledger API",
    description="Virtual currency ledger: wallets, double-entry journal, rewards and marketplace purchases",
    version=APP_VERSION,
    lifespan=lifespan,
)


@app.exception_handler(LedgerError)
async def ledger_exception_handler(request: Request, exc: LedgerError):
    """Render ledger failures as ``{"error", "detail", "transaction_id"}``."""
    status_code = ERROR_STATUS_CODES.get(exc.code, 400)
    logger.info(f"Ledger error on {request.url.path}: {exc.code} ({exc.message})")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors with user-friendly messages."""
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")

    errors = []
    for error in exc.errors():
        loc = error.get("loc", [])
        field_path = " -> ".join(str(x) for x in loc[1:]) if len(loc) > 1 else "unknown field"
        errors.append({
            "field": field_path,
            "message": error.get("msg", "Validation error"),
            "type": error.get("type", "unknown"),
        })

    return JSONResponse(
        status_code=422,
        content={
            "detail": "Request validation failed",
            "errors": errors
        }
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every request and its outcome to the dedicated API log."""
    start_time = time.time()

    client_ip = request.client.host if request.client else "unknown"
    method = request.method
    path = request.url.path

    request_id = f"{method}:{path}:{int(start_time * 1000) % 100000}"
    api_logger.info(f">> {request_id} | START | {method} {path} | IP: {client_ip}")
    if request.query_params:
        api_logger.info(f">> {request_id} | QUERY | {request.query_params}")

    try:
        response = await call_next(request)
    except Exception as e:
        process_time = time.time() - start_time
        api_logger.error(
            f"<< {request_id} | EXCEPTION | {method} {path} | "
            f"Error: {str(e)[:100]} | "
            f"Time: {process_time:.3f}s | "
            f"IP: {client_ip}"
        )
        raise

    process_time = time.time() - start_time
    api_logger.info(
        f"<< {request_id} | COMPLETE | {method} {path} | "
        f"Status: {response.status_code} | "
        f"Time: {process_time:.3f}s | "
        f"IP: {client_ip}"
    )
    return response


allowed_origins = [origin for origin in os.getenv("ALLOWED_ORIGINS", "").split(",") if origin]
if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

api_dependencies = [Depends(verify_api_key)]
app.include_router(accounts.router, dependencies=api_dependencies)
app.include_router(transactions.router, dependencies=api_dependencies)
app.include_router(admin.router, dependencies=api_dependencies)
app.include_router(health.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Coin Ledger API",
        "version": APP_VERSION,
        "environment": settings.environment,
        "docs": "/docs",
    }
