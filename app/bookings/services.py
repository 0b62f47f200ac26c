"""
Meeting updates performed by the payment engine.

Every write here is a conditional update (UPDATE ... WHERE <expected state>)
so that concurrent webhook deliveries and retries converge instead of
overwriting each other.

Usage:
    from bookings.services import MeetingService

    if MeetingService.mark_payment_succeeded(payment_intent_id):
        MeetingService.release_reservation(payment_intent_id)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction

from bookings.models import BookingMeeting, Event, MeetingPaymentStatus, SlotReservation
from core.services import BaseService

if TYPE_CHECKING:
    from datetime import datetime

    from bookings.calendar import CalendarGateway


class MeetingService(BaseService):
    """Reads and conditional writes on BookingMeeting and SlotReservation."""

    @classmethod
    def get_by_payment_intent(cls, payment_intent_id: str) -> BookingMeeting | None:
        return (
            BookingMeeting.objects.select_related("event")
            .filter(stripe_payment_intent_id=payment_intent_id)
            .first()
        )

    @classmethod
    def ensure_meeting(
        cls,
        payment_intent_id: str,
        event_id: str,
        expert_id: str,
        guest_email: str,
        guest_name: str,
        start_time: datetime,
        locale: str = "en",
    ) -> BookingMeeting | None:
        """
        Return the meeting paid by a payment intent, creating it if needed.

        The booking service normally creates the meeting at checkout; this
        covers the case where the payment settles first.

        Returns:
            The meeting, or None if its event does not exist
        """
        meeting = cls.get_by_payment_intent(payment_intent_id)
        if meeting is not None:
            return meeting

        event = Event.objects.filter(id=event_id).first()
        if event is None:
            cls.get_logger().warning(
                "Cannot create meeting: event not found",
                extra={"payment_intent_id": payment_intent_id, "event_id": event_id},
            )
            return None

        try:
            with transaction.atomic():
                meeting, _ = BookingMeeting.objects.get_or_create(
                    stripe_payment_intent_id=payment_intent_id,
                    defaults={
                        "event": event,
                        "expert_id": expert_id,
                        "guest_email": guest_email,
                        "guest_name": guest_name,
                        "guest_locale": locale,
                        "start_time": start_time,
                    },
                )
        except IntegrityError:
            meeting = cls.get_by_payment_intent(payment_intent_id)
        return meeting

    @classmethod
    def set_payment_status(
        cls,
        payment_intent_id: str,
        status: str,
        exclude_statuses: tuple[str, ...] = (),
    ) -> bool:
        """
        Conditionally set a meeting's payment_status.

        Args:
            payment_intent_id: Payment paying for the meeting
            status: New MeetingPaymentStatus
            exclude_statuses: Current statuses that must not be overwritten

        Returns:
            True if a row changed
        """
        queryset = BookingMeeting.objects.filter(
            stripe_payment_intent_id=payment_intent_id
        ).exclude(payment_status=status)
        if exclude_statuses:
            queryset = queryset.exclude(payment_status__in=exclude_statuses)
        updated = queryset.update(payment_status=status)

        if updated:
            cls.get_logger().info(
                f"Meeting payment status -> {status}",
                extra={"payment_intent_id": payment_intent_id},
            )
        return bool(updated)

    @classmethod
    def mark_payment_succeeded(cls, payment_intent_id: str) -> bool:
        """Set succeeded unless the meeting was already refunded."""
        return cls.set_payment_status(
            payment_intent_id,
            MeetingPaymentStatus.SUCCEEDED,
            exclude_statuses=(
                MeetingPaymentStatus.REFUNDED,
                MeetingPaymentStatus.REFUND_FAILED,
            ),
        )

    @classmethod
    def hold_slot(
        cls,
        payment_intent_id: str,
        event_id: str,
        expert_id: str,
        guest_email: str,
        start_time: datetime,
        expires_at: datetime,
    ) -> SlotReservation | None:
        """
        Hold a slot for an outstanding voucher payment (idempotent).

        Returns:
            The reservation, or None if the event does not exist
        """
        event = Event.objects.filter(id=event_id).first()
        if event is None:
            cls.get_logger().warning(
                "Cannot hold slot: event not found",
                extra={"payment_intent_id": payment_intent_id, "event_id": event_id},
            )
            return None

        try:
            with transaction.atomic():
                reservation, created = SlotReservation.objects.get_or_create(
                    stripe_payment_intent_id=payment_intent_id,
                    defaults={
                        "event": event,
                        "expert_id": expert_id,
                        "guest_email": guest_email,
                        "start_time": start_time,
                        "expires_at": expires_at,
                    },
                )
        except IntegrityError:
            return SlotReservation.objects.get(stripe_payment_intent_id=payment_intent_id)

        if created:
            cls.get_logger().info(
                "Slot held for voucher payment",
                extra={
                    "payment_intent_id": payment_intent_id,
                    "expires_at": expires_at.isoformat(),
                },
            )
        return reservation

    @classmethod
    def release_reservation(cls, payment_intent_id: str) -> bool:
        """Drop the slot hold of a settled payment. Returns True if one existed."""
        deleted, _ = SlotReservation.objects.filter(
            stripe_payment_intent_id=payment_intent_id
        ).delete()
        return bool(deleted)

    @classmethod
    def ensure_conference_link(cls, meeting: BookingMeeting, calendar: CalendarGateway) -> str:
        """
        Create the meeting's conferencing link once.

        A conditional claim on calendar_creation_claimed makes sure only one
        worker calls the provider. Provider failures are logged, the claim
        is released so a later delivery can retry, and the payment flow
        carries on.

        Returns:
            The meeting URL (blank if none could be created)
        """
        claimed = BookingMeeting.objects.filter(
            id=meeting.id,
            meeting_url="",
            calendar_creation_claimed=False,
        ).update(calendar_creation_claimed=True)
        if not claimed:
            return BookingMeeting.objects.values_list("meeting_url", flat=True).get(id=meeting.id)

        try:
            url = calendar.create_conference(meeting) or ""
        except Exception:
            cls.get_logger().exception(
                "Conference creation failed",
                extra={"meeting_id": str(meeting.id)},
            )
            BookingMeeting.objects.filter(id=meeting.id).update(calendar_creation_claimed=False)
            return ""

        BookingMeeting.objects.filter(id=meeting.id).update(
            meeting_url=url,
            calendar_creation_claimed=bool(url),
        )
        meeting.meeting_url = url
        return url
