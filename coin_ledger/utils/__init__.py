"""Utilities module - lock client and datetime helpers."""
from coin_ledger.config import get_settings
from coin_ledger.utils.lock_client import LockClient
from coin_ledger.utils.datetime_helpers import ensure_utc

settings = get_settings()

# Create singleton instances
lock_client = LockClient(settings.redis_url if settings.redis_url else None)

__all__ = ["lock_client", "ensure_utc"]
