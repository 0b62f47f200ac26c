"""
Notification outbox model.

Each row is a structured, immutable record of something a user must be told
about: the notification type, the recipient and a JSON payload with the
values a renderer needs. Rows are deduplicated by idempotency_key so that
re-delivered webhooks and re-run jobs never notify twice.

Usage:
    from notifications.models import Notification, NotificationType

    Notification.objects.create(
        notification_type=NotificationType.PAYOUT_SENT,
        recipient_id="expert-1",
        recipient_email="expert@example.com",
        data={"amount": 9000, "currency": "eur"},
        idempotency_key="payout_sent:...",
    )
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


# =============================================================================
# Enums
# =============================================================================


class NotificationType(models.TextChoices):
    """Kinds of notification emitted by the payment engine."""

    PAYMENT_RECEIVED = "payment_received", "Payment received"
    PAYMENT_FAILED = "payment_failed", "Payment failed"
    PAYMENT_REFUNDED = "payment_refunded", "Payment refunded"
    DISPUTE_OPENED = "dispute_opened", "Dispute opened"
    BOOKING_REFUNDED_EXPERT = "booking_refunded_expert", "Booking conflict refund (expert)"
    BOOKING_REFUNDED_GUEST = "booking_refunded_guest", "Booking conflict refund (guest)"
    TRANSFER_FAILED = "transfer_failed", "Transfer failed"
    TRANSFER_SENT = "transfer_sent", "Transfer sent"
    PAYOUT_SENT = "payout_sent", "Payout sent"
    COMPLIANCE_PAYOUT_SENT = "compliance_payout_sent", "Compliance payout sent"
    PAYMENT_CONFIRMED_GUEST = "payment_confirmed_guest", "Payment confirmed (guest)"
    PAYMENT_FAILED_GUEST = "payment_failed_guest", "Payment failed (guest)"
    VOUCHER_ISSUED_GUEST = "voucher_issued_guest", "Payment voucher issued (guest)"


class DeliveryStatus(models.TextChoices):
    """
    Delivery state of a notification.

    State Flow:
        PENDING -> SENT
        PENDING -> FAILED (retries exhausted)
        SKIPPED (no delivery target)
    """

    PENDING = "pending", "Pending"
    SENT = "sent", "Sent"
    FAILED = "failed", "Failed"
    SKIPPED = "skipped", "Skipped"


# =============================================================================
# Models
# =============================================================================


class Notification(UUIDPrimaryKeyMixin, BaseModel):
    """
    Structured notification record for an expert or a guest.

    Fields:
        notification_type: What happened
        recipient_id: External user id (expert id, or guest email for guests)
        recipient_email: Delivery address, blank when unknown
        locale: Recipient language for rendering
        data: Values the renderer needs (amounts, names, dates, reasons)
        idempotency_key: Deduplication key, unique when present
        delivery_status: Email delivery state
        sent_at: When delivery succeeded
        failure_reason: Last delivery error
        attempt_count: Delivery attempts made
    """

    notification_type = models.CharField(
        max_length=50,
        choices=NotificationType.choices,
        db_index=True,
        help_text="Kind of notification",
    )

    recipient_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="External id of the recipient",
    )

    recipient_email = models.EmailField(
        blank=True,
        default="",
        help_text="Email address used for delivery",
    )

    locale = models.CharField(
        max_length=10,
        default="en",
        help_text="Recipient language (BCP 47)",
    )

    data = models.JSONField(
        default=dict,
        blank=True,
        help_text="Structured values for rendering",
    )

    idempotency_key = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Idempotency key preventing duplicate notifications",
    )

    delivery_status = models.CharField(
        max_length=20,
        choices=DeliveryStatus.choices,
        default=DeliveryStatus.PENDING,
        db_index=True,
        help_text="Email delivery state",
    )

    sent_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the notification was delivered",
    )

    failure_reason = models.TextField(
        blank=True,
        default="",
        help_text="Last delivery error",
    )

    attempt_count = models.PositiveIntegerField(
        default=0,
        help_text="Number of delivery attempts",
    )

    class Meta:
        db_table = "notifications_notification"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["recipient_id", "-created_at"],
                name="notif_recipient_created_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.notification_type} -> {self.recipient_id}"
