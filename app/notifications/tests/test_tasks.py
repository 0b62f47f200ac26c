"""
Tests for notification delivery tasks.

Tests cover:
- Rendering of the structured payload
- Successful email delivery
- Non-pending notifications are left alone
- Retry and permanent failure of the email backend
"""

import pytest

from notifications.models import DeliveryStatus, Notification
from notifications.tasks import (
    MAX_DELIVERY_RETRIES,
    render_body,
    render_subject,
    send_email_notification,
)
from notifications.tests.factories import NotificationFactory


@pytest.mark.django_db
class TestRendering:
    """Plain-text rendering."""

    def test_subject_is_type_label(self):
        notification = NotificationFactory()

        assert render_subject(notification) == "Payout sent"

    def test_body_lists_values(self):
        notification = NotificationFactory(data={"currency": "eur", "amount": 9000})

        assert render_body(notification).splitlines() == [
            "Payout sent",
            "",
            "amount: 9000",
            "currency: eur",
        ]


@pytest.mark.django_db
class TestSendEmailNotification:
    """Tests for send_email_notification."""

    def test_sends_pending_notification(self, mailoutbox):
        notification = NotificationFactory(recipient_email="expert@example.com")

        assert send_email_notification(str(notification.id)) is True

        assert len(mailoutbox) == 1
        assert mailoutbox[0].to == ["expert@example.com"]
        notification = Notification.objects.get(id=notification.id)
        assert notification.delivery_status == DeliveryStatus.SENT
        assert notification.sent_at is not None
        assert notification.attempt_count == 1

    @pytest.mark.parametrize("status", [DeliveryStatus.SENT, DeliveryStatus.SKIPPED])
    def test_non_pending_is_noop(self, mailoutbox, status):
        notification = NotificationFactory(delivery_status=status)

        assert send_email_notification(str(notification.id)) is True

        assert mailoutbox == []

    def test_missing_notification_is_noop(self, mailoutbox):
        assert send_email_notification("00000000-0000-0000-0000-000000000000") is True
        assert mailoutbox == []

    def test_transient_failure_is_raised_for_retry(self, mocker):
        mocker.patch(
            "notifications.tasks.EmailMultiAlternatives.send",
            side_effect=ConnectionError("smtp down"),
        )
        notification = NotificationFactory()

        with pytest.raises(ConnectionError):
            send_email_notification(str(notification.id))

        notification = Notification.objects.get(id=notification.id)
        assert notification.delivery_status == DeliveryStatus.PENDING
        assert notification.attempt_count == 1
        assert "smtp down" in notification.failure_reason

    def test_permanent_failure_after_last_retry(self, mocker):
        mocker.patch(
            "notifications.tasks.EmailMultiAlternatives.send",
            side_effect=ConnectionError("smtp down"),
        )
        notification = NotificationFactory()

        result = send_email_notification.apply(
            args=[str(notification.id)],
            retries=MAX_DELIVERY_RETRIES,
        )

        assert result.get() is False
        notification = Notification.objects.get(id=notification.id)
        assert notification.delivery_status == DeliveryStatus.FAILED
