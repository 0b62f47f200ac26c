"""
Scheduled transfer worker.

Moves experts' shares to their Stripe Connect accounts once their
scheduled transfer time has passed.

Tasks:
- process_scheduled_transfers: Daily task (04:00 UTC) running TransferProcessor

Usage:
    # Typically called via celery-beat schedule or the scheduler endpoint
    from payments.workers import process_scheduled_transfers

    process_scheduled_transfers.delay()
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.conf import settings

from payments.exceptions import LockAcquisitionError
from payments.locks import DistributedLock
from payments.services.heartbeat import send_heartbeat

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

LOCK_KEY = "payments:process_scheduled_transfers"

# Longer than any expected run so overlapping triggers are skipped
LOCK_TTL_SECONDS = 15 * 60


# =============================================================================
# Periodic Task: Scheduled Transfers
# =============================================================================


@shared_task(bind=True)
def process_scheduled_transfers(self) -> dict:
    """
    Transfer every due TransferRecord to its expert's Connect account.

    The task:
    1. Takes a non-blocking distributed lock (skips if another run holds it)
    2. Runs TransferProcessor
    3. Sends the transfer heartbeat

    Returns:
        TransferProcessor summary, or {"status": "skipped", ...} if locked

    Note:
        This task is idempotent. The lock only avoids wasted work; a second
        run cannot double-transfer because of the duplicate-guard and the
        per-record idempotency key.
    """
    from payments.dependencies import PaymentDependencies
    from payments.services import TransferProcessor

    logger.info(
        "Starting scheduled transfer run",
        extra={"celery_task_id": self.request.id},
    )

    try:
        with DistributedLock(LOCK_KEY, ttl=LOCK_TTL_SECONDS, blocking=False):
            summary = TransferProcessor(PaymentDependencies.from_settings()).run()
    except LockAcquisitionError:
        logger.info("Scheduled transfer run already in progress, skipping")
        return {"status": "skipped", "reason": "lock_held"}

    send_heartbeat(settings.TRANSFER_HEARTBEAT_URL)
    return summary
