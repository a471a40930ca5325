"""API routers."""
from coin_ledger.routers import accounts, admin, health, transactions

__all__ = ["accounts", "admin", "health", "transactions"]
