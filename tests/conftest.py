"""Pytest configuration and fixtures."""
import os
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config as AlembicConfig
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Ensure the application uses a dedicated SQLite database during tests
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["BACKGROUND_TASKS_ENABLED"] = "false"
os.environ["REDIS_URL"] = ""
os.environ["LEDGER_API_KEY"] = ""

from coin_ledger.config import get_settings
from coin_ledger.database import build_connect_args


BASE_DIR = Path(__file__).resolve().parent.parent
TEST_DB_PATH = BASE_DIR / "test.db"
settings = get_settings()


@pytest.fixture(scope="session", autouse=True)
def apply_migrations():
    """Apply database migrations against the test database."""
    from coin_ledger.services.system_accounts import reset_provisioning_cache

    if TEST_DB_PATH.exists():
        TEST_DB_PATH.unlink()
    reset_provisioning_cache()

    alembic_cfg = AlembicConfig(str(BASE_DIR / "alembic.ini"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url)
    command.upgrade(alembic_cfg, "head")

    yield

    if TEST_DB_PATH.exists():
        try:
            TEST_DB_PATH.unlink()
        except PermissionError:
            # On Windows the file may still be open; the next run removes it
            pass


@pytest.fixture(scope="session")
async def test_engine():
    """Create test database engine using the same database as migrations."""
    engine = create_async_engine(
        settings.database_url,
        echo=False,
        connect_args=build_connect_args(settings.database_url, settings.environment),
        pool_pre_ping=True,
    )

    yield engine

    await engine.dispose()


@pytest.fixture(scope="session")
def session_factory(test_engine):
    """Session factory for tests that need several independent sessions."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()
        await session.close()


@pytest.fixture
async def ledger(db_session):
    """LedgerService bound to the test session."""
    from coin_ledger.services.ledger_service import LedgerService

    return LedgerService(db_session)


@pytest.fixture
async def account_factory(ledger):
    """Factory for accounts with an exact starting balance.

    The signup bonus is topped up or burned through an admin adjustment so the
    wallet ends at ``balance``.
    """

    async def _create_account(kind: str = "user", balance: int | None = None):
        account = await ledger.create_account(kind)
        if balance is not None:
            current = await ledger.get_balance(account.account_id)
            if balance != current:
                await ledger.adjust_balance(
                    account.account_id,
                    balance - current,
                    reason="test setup",
                    admin_id="pytest",
                )
        return account

    return _create_account


@pytest.fixture
async def test_app(session_factory):
    """Create test app with database override."""
    from coin_ledger.main import app
    from coin_ledger.database import get_db

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            finally:
                await session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.clear()
