"""
Payment notifications for experts and guests.

Thin layer over NotificationService that resolves expert email addresses
from their Connect account and keeps the idempotency keys of payment
notifications in one place.

Usage:
    notifier = PaymentNotifier()
    notifier.notify_expert(
        record.expert_id,
        NotificationType.PAYOUT_SENT,
        {"amount": 9000, "currency": "eur"},
        idempotency_key=f"payout_sent:{record.id}",
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.services import BaseService
from notifications.services import NotificationService
from payments.models import ConnectedAccount

if TYPE_CHECKING:
    from typing import Any

    from core.services import ServiceResult


class PaymentNotifier(BaseService):
    """Creates expert and guest notifications for payment events."""

    def expert_email(self, expert_id: str) -> str:
        return (
            ConnectedAccount.objects.filter(expert_id=expert_id)
            .values_list("email", flat=True)
            .first()
            or ""
        )

    def notify_expert(
        self,
        expert_id: str,
        notification_type: str,
        data: dict[str, Any],
        idempotency_key: str,
    ) -> ServiceResult:
        """Notify an expert once per idempotency key."""
        return NotificationService.create_notification(
            recipient_id=expert_id,
            notification_type=notification_type,
            data=data,
            recipient_email=self.expert_email(expert_id),
            idempotency_key=idempotency_key,
        )

    def notify_guest(
        self,
        guest_email: str,
        notification_type: str,
        data: dict[str, Any],
        idempotency_key: str,
        locale: str = "en",
    ) -> ServiceResult:
        """Notify a guest, in their locale, once per idempotency key."""
        return NotificationService.create_notification(
            recipient_id=guest_email,
            notification_type=notification_type,
            data=data,
            recipient_email=guest_email,
            locale=locale,
            idempotency_key=idempotency_key,
        )
