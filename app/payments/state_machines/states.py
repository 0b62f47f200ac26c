"""
State enums for payment models.

These are Django TextChoices used by django-fsm fields and the admin.

State Machines Overview:

TransferRecord States (money owed to an expert for one booking):
    pending → ready → funds_moved → paid_out          (normal path)
    ready → approved → funds_moved                     (manual review)
    pending/ready/approved → failed                    (payment or transfer failure)
    failed → approved                                  (admin re-approval)
    pending/ready/approved/funds_moved → refunded      (refund)
    pending/ready/approved/funds_moved → disputed      (chargeback)
    pending/ready/approved → refund_failed             (conflict refund rejected)

WebhookEvent States:
    pending → processing → processed
    pending → processing → failed (retried by worker)
"""

from django.db import models


class TransferStatus(models.TextChoices):
    """
    States for the TransferRecord lifecycle.

    Terminal states: PAID_OUT, REFUNDED, DISPUTED, REFUND_FAILED and FAILED
    (FAILED only leaves via admin approval).

    PAID_OUT is sticky: no automated path ever writes a record once it is
    paid out. REFUND_FAILED records are never transferred; they wait for
    manual resolution.
    """

    PENDING = "pending", "Pending"
    READY = "ready", "Ready"
    APPROVED = "approved", "Approved"
    FUNDS_MOVED = "funds_moved", "Funds Moved"
    PAID_OUT = "paid_out", "Paid Out"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"
    DISPUTED = "disputed", "Disputed"
    REFUND_FAILED = "refund_failed", "Refund Failed"


# States a scheduled transfer may still be created from
TRANSFERABLE_STATES = [TransferStatus.READY, TransferStatus.APPROVED]

# States a refund or dispute may still reverse (money not yet paid out)
REVERSIBLE_STATES = [
    TransferStatus.PENDING,
    TransferStatus.READY,
    TransferStatus.APPROVED,
    TransferStatus.FUNDS_MOVED,
]

# States where no provider transfer exists yet
PRE_TRANSFER_STATES = [
    TransferStatus.PENDING,
    TransferStatus.READY,
    TransferStatus.APPROVED,
]


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (can retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


__all__ = [
    "PRE_TRANSFER_STATES",
    "REVERSIBLE_STATES",
    "TRANSFERABLE_STATES",
    "TransferStatus",
    "WebhookEventStatus",
]
