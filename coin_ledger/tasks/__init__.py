"""Background tasks for ledger maintenance."""
from coin_ledger.tasks.ledger_maintenance import (
    build_maintenance_tasks,
    run_expiration,
    run_fraud_scan,
    run_reconciliation,
    run_treasury_snapshot,
)
from coin_ledger.tasks.recurring import RecurringTask

__all__ = [
    'RecurringTask',
    'build_maintenance_tasks',
    'run_expiration',
    'run_fraud_scan',
    'run_reconciliation',
    'run_treasury_snapshot',
]
