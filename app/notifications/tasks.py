"""
Celery tasks for notification delivery.

Tasks:
    send_email_notification: Render a plain-text email and send it through
        Django's configured email backend

Design:
    - Tasks receive the notification id (UUID string)
    - Re-running on a non-PENDING notification is a no-op
    - SMTP/backend errors are retried with backoff, then recorded as FAILED
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.utils import timezone as django_timezone

from notifications.models import DeliveryStatus, Notification

logger = logging.getLogger(__name__)

MAX_DELIVERY_RETRIES = 3


def render_subject(notification: Notification) -> str:
    """Human-readable subject line for a notification."""
    return notification.get_notification_type_display()


def render_body(notification: Notification) -> str:
    """Plain-text body listing the structured payload one value per line."""
    lines = [render_subject(notification), ""]
    for key, value in sorted(notification.data.items()):
        lines.append(f"{key.replace('_', ' ')}: {value}")
    return "\n".join(lines)


@shared_task(
    bind=True,
    retry_backoff=True,
    max_retries=MAX_DELIVERY_RETRIES,
)
def send_email_notification(self, notification_id: str) -> bool:
    """
    Deliver a notification by email.

    Flow:
        1. Load the notification, skip unless PENDING
        2. Render subject and body from the structured payload
        3. Send via the email backend
        4. Record SENT, or retry and finally record FAILED

    Args:
        notification_id: UUID string of the Notification

    Returns:
        True if sent or skipped, False if permanently failed
    """
    notification = Notification.objects.filter(id=notification_id).first()
    if notification is None or notification.delivery_status != DeliveryStatus.PENDING:
        return True

    notification.attempt_count += 1
    try:
        message = EmailMultiAlternatives(
            subject=render_subject(notification),
            body=render_body(notification),
            from_email=settings.DEFAULT_FROM_EMAIL,
            to=[notification.recipient_email],
        )
        message.send(fail_silently=False)
    except Exception as e:
        notification.failure_reason = f"{type(e).__name__}: {e}"
        if self.request.retries >= MAX_DELIVERY_RETRIES:
            notification.delivery_status = DeliveryStatus.FAILED
            notification.save(
                update_fields=["attempt_count", "failure_reason", "delivery_status", "updated_at"]
            )
            logger.error(
                f"Email notification permanently failed for {notification_id}: {e}"
            )
            return False
        notification.save(update_fields=["attempt_count", "failure_reason", "updated_at"])
        logger.warning(
            f"Email notification transiently failed for {notification_id}: {e}, will retry"
        )
        raise self.retry(exc=e)

    notification.delivery_status = DeliveryStatus.SENT
    notification.sent_at = django_timezone.now()
    notification.save(
        update_fields=["attempt_count", "delivery_status", "sent_at", "updated_at"]
    )
    logger.info(f"Email notification sent for {notification_id}")
    return True
