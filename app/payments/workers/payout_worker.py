"""
Payout worker for paying experts out to their bank accounts.

Tasks:
- process_pending_payouts: Daily task (06:00 UTC) running PayoutProcessor

Usage:
    # Typically called via celery-beat schedule or the scheduler endpoint
    from payments.workers import process_pending_payouts

    process_pending_payouts.delay()
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

LOCK_KEY = "payments:process_pending_payouts"

LOCK_TTL_SECONDS = 15 * 60


# =============================================================================
# Periodic Task: Pending Payouts
# =============================================================================


@shared_task(bind=True)
def process_pending_payouts(self) -> dict:
    """
    Pay out funds that cleared the complaint window, then sweep manual accounts.

    The task:
    1. Takes a non-blocking distributed lock (skips if another run holds it)
    2. Runs PayoutProcessor (ledger phase, then provider phase)
    3. Sends the payout heartbeat, or the failure heartbeat if the run raised

    Returns:
        PayoutProcessor summary, or {"status": "skipped", ...} if locked

    Raises:
        Exception: Anything raised by the run, after the failure heartbeat
    """
    from payments.dependencies import PaymentDependencies
    from payments.services import PayoutProcessor

    logger.info(
        "Starting payout run",
        extra={"celery_task_id": self.request.id},
    )

    try:
        with DistributedLock(LOCK_KEY, ttl=LOCK_TTL_SECONDS, blocking=False):
            summary = PayoutProcessor(PaymentDependencies.from_settings()).run()
    except LockAcquisitionError:
        logger.info("Payout run already in progress, skipping")
        return {"status": "skipped", "reason": "lock_held"}
    except Exception:
        logger.exception("Payout run failed")
        send_heartbeat(settings.PAYOUT_HEARTBEAT_URL, success=False)
        raise

    send_heartbeat(settings.PAYOUT_HEARTBEAT_URL)
    return summary
