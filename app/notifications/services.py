"""
Notification service.

Creates structured Notification records and queues their delivery. This is
the single entry point the payment engine uses to tell experts and guests
what happened.

Usage:
    from notifications.services import NotificationService

    result = NotificationService.create_notification(
        recipient_id=record.expert_id,
        notification_type=NotificationType.PAYOUT_SENT,
        data={"amount": 9000, "currency": "eur"},
        recipient_email="expert@example.com",
        idempotency_key=f"payout_sent:{record.id}",
    )
    if result.error_code == "DUPLICATE":
        ...  # Already notified, nothing to do
"""

from __future__ import annotations

from django.db import IntegrityError, transaction

from core.services import BaseService, ServiceResult
from notifications.models import DeliveryStatus, Notification


class NotificationService(BaseService):
    """Creates notifications and enqueues delivery."""

    @classmethod
    def create_notification(
        cls,
        recipient_id: str,
        notification_type: str,
        data: dict | None = None,
        recipient_email: str = "",
        locale: str = "en",
        idempotency_key: str | None = None,
    ) -> ServiceResult[Notification]:
        """
        Create a notification record and queue email delivery.

        Implementation:
            1. Idempotency check (if key provided)
            2. Create the record (unique key guards concurrent creators)
            3. Queue delivery after commit when an email address is known

        Args:
            recipient_id: External id of the recipient
            notification_type: NotificationType value
            data: Values for rendering (must be JSON-serialisable)
            recipient_email: Delivery address, blank to skip delivery
            locale: Recipient language
            idempotency_key: Optional key preventing duplicates

        Returns:
            ServiceResult with the created Notification

        Error codes:
            DUPLICATE: A notification with this idempotency_key exists
        """
        from notifications import tasks

        if idempotency_key and Notification.objects.filter(
            idempotency_key=idempotency_key
        ).exists():
            cls.get_logger().info(
                f"Duplicate notification prevented: idempotency_key={idempotency_key}"
            )
            return ServiceResult.failure(
                f"Notification with idempotency_key already exists: {idempotency_key}",
                error_code="DUPLICATE",
            )

        try:
            with transaction.atomic():
                notification = Notification.objects.create(
                    notification_type=notification_type,
                    recipient_id=str(recipient_id),
                    recipient_email=recipient_email or "",
                    locale=locale or "en",
                    data=data or {},
                    idempotency_key=idempotency_key,
                    delivery_status=(
                        DeliveryStatus.PENDING if recipient_email else DeliveryStatus.SKIPPED
                    ),
                )
        except IntegrityError:
            # Lost the race against a concurrent creator with the same key
            cls.get_logger().info(
                f"Duplicate notification prevented on insert: idempotency_key={idempotency_key}"
            )
            return ServiceResult.failure(
                f"Notification with idempotency_key already exists: {idempotency_key}",
                error_code="DUPLICATE",
            )

        if notification.delivery_status == DeliveryStatus.PENDING:
            notification_id = str(notification.id)
            transaction.on_commit(
                lambda: tasks.send_email_notification.delay(notification_id)
            )

        cls.get_logger().info(
            f"Created notification {notification.id}",
            extra={
                "notification_type": notification_type,
                "recipient_id": str(recipient_id),
            },
        )
        return ServiceResult.success(notification)
