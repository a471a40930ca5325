"""Application configuration management."""
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from sqlalchemy.engine.url import make_url, URL
from sqlalchemy.exc import ArgumentError
from typing import Optional
import logging

SQLITE_LOCAL_URL = "sqlite+aiosqlite:///./coin_ledger.db"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = SQLITE_LOCAL_URL
    db_pool_size: int = 5
    db_max_overflow: int = 10
    sqlite_busy_timeout_seconds: int = 30  # How long SQLite writers wait on a locked database

    # Redis (optional, falls back to in-memory locks)
    redis_url: str = ""

    # Application
    environment: str = "development"
    ledger_api_key: str = ""  # When set, every request must carry X-Ledger-Api-Key
    log_dir: str = "logs"

    # Coin economy
    signup_bonus_amount: int = 100  # Welcome bonus minted at account creation
    commission_seller_percent: int = 80  # Seller share of a purchase, remainder to the platform
    ledger_max_attempts: int = 5  # Optimistic retries before a transaction fails with conflict

    # Expiration
    coin_expiration_days: int = 90
    coin_expiration_interval_hours: int = 6

    # Fraud / velocity guard
    fraud_window_seconds: int = 60
    fraud_max_transfers_per_window: int = 10
    fraud_amount_window_seconds: int = 3600
    fraud_max_amount_per_window: int = 5000
    fraud_repeat_recipient_window_seconds: int = 60
    fraud_max_repeat_recipient: int = 5
    fraud_max_single_amount: int = 1000  # Single outgoing transactions above this are blocked
    fraud_hourly_earn_limit: int = 500  # Used by the periodic scan, never blocks
    fraud_identical_reward_threshold: int = 10
    fraud_scan_interval_minutes: int = 60

    # Bot treasury guard defaults
    bot_wallet_cap: int = 199
    bot_daily_action_limit: int = 50
    bot_action_cooldown_seconds: int = 60

    # Bot treasury: seed balance and treasury-wide daily spending budget
    bot_treasury_initial_balance: int = 100000
    bot_treasury_daily_spend_limit: int = 500
    treasury_snapshot_interval_hours: int = 24
    treasury_anomaly_threshold: float = 0.10  # Fractional day-over-day change in circulation that is flagged

    # Reconciliation
    reconciliation_interval_hours: int = 24 * 7

    # Background task toggle (tests and one-off scripts disable it)
    background_tasks_enabled: bool = True

    @model_validator(mode="after")
    def validate_all_config(self):
        """Validate economy settings and normalize Postgres URLs."""
        logger = logging.getLogger(__name__)

        if not 0 <= self.commission_seller_percent <= 100:
            raise ValueError("commission_seller_percent must be between 0 and 100")

        if self.ledger_max_attempts < 1:
            raise ValueError("ledger_max_attempts must be at least 1")

        if self.coin_expiration_days < 1:
            raise ValueError("coin_expiration_days must be at least 1 day")

        if self.coin_expiration_interval_hours < 1:
            raise ValueError("coin_expiration_interval_hours must be at least 1 hour")

        if self.signup_bonus_amount < 0:
            raise ValueError("signup_bonus_amount cannot be negative")

        if self.bot_wallet_cap < 0 or self.bot_daily_action_limit < 0 or self.bot_action_cooldown_seconds < 0:
            raise ValueError("bot policy defaults cannot be negative")

        if self.bot_treasury_initial_balance < 0 or self.bot_treasury_daily_spend_limit < 0:
            raise ValueError("bot treasury settings cannot be negative")

        # Database URL normalization
        url = self.database_url
        if not url:
            logger.warning("Empty DATABASE_URL, using SQLite fallback")
            self.database_url = SQLITE_LOCAL_URL
            return self

        parsed: Optional[URL] = None
        try:
            parsed = make_url(url)
        except ArgumentError as e:
            logger.error(f"Failed to parse DATABASE_URL: {e}")
            logger.warning("Invalid DATABASE_URL; falling back to default sqlite database.")
            self.database_url = SQLITE_LOCAL_URL
            return self

        drivername = parsed.drivername
        if drivername.startswith("postgres") and "+asyncpg" not in drivername:
            old_drivername = drivername
            parsed = parsed.set(drivername="postgresql+asyncpg")
            logger.info(f"Driver normalized: {old_drivername} -> {parsed.drivername}")
        # Use render_as_string to properly re-encode special characters in password
        self.database_url = parsed.render_as_string(hide_password=False)

        return self

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
