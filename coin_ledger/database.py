"""Database connection and session management."""
import logging
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from coin_ledger.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def build_connect_args(database_url: str, environment: str) -> dict:
    """Driver connect args for the configured database."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Concurrent writers wait on SQLite's lock instead of failing immediately
        connect_args["timeout"] = settings.sqlite_busy_timeout_seconds
    elif (
        "heroku" in database_url or
        "amazonaws" in database_url or
        environment == "production"
    ):
        connect_args["ssl"] = "require"
        logger.debug("SSL connection enabled (ssl=require)")
    return connect_args


# Configure pool sizing to avoid exhausting limited database connections
pool_size = max(1, settings.db_pool_size)
max_overflow = max(0, settings.db_max_overflow)

engine_kwargs = dict(
    echo=settings.environment == "development",
    future=True,
    connect_args=build_connect_args(settings.database_url, settings.environment),
    pool_pre_ping=True,  # Verify connections before use
)
if not settings.is_sqlite:
    engine_kwargs.update(pool_recycle=3600, pool_size=pool_size, max_overflow=max_overflow)

# Create async engine
engine = create_async_engine(settings.database_url, **engine_kwargs)
logger.debug("Database engine created successfully")

# Session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Base class for models
Base = declarative_base()


# Dependency for FastAPI
async def get_db():
    """FastAPI dependency to get database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
