"""
Workers for scheduled payment processing.

This module contains Celery tasks for the daily money-movement jobs:
- TransferWorker: Moves due funds to expert Connect accounts
- PayoutWorker: Pays experts out to their bank accounts

Usage:
    from payments.workers import (
        process_scheduled_transfers,
        process_pending_payouts,
    )

    # Trigger manual processing
    process_scheduled_transfers.delay()
    process_pending_payouts.delay()
"""

from payments.workers.payout_worker import process_pending_payouts
from payments.workers.transfer_worker import process_scheduled_transfers

__all__ = [
    "process_pending_payouts",
    "process_scheduled_transfers",
]
