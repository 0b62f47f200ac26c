"""
Booking models read and updated by the payment engine.

Models:
    Event: Bookable service offered by an expert (name, duration)
    BookingMeeting: A guest's booked session, linked to its payment intent
    SchedulingSettings: Per-expert scheduling preferences (minimum notice)
    SlotReservation: Temporary hold on a slot while a voucher is unpaid

Design Decisions:
    - Event ids come from the booking service, so the primary key is the
      external string id
    - A meeting's end is derived from start_time + event duration
    - payment_status is written with conditional updates only
"""

from __future__ import annotations

from datetime import datetime, timedelta

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


# =============================================================================
# Enums
# =============================================================================


class MeetingPaymentStatus(models.TextChoices):
    """
    Payment state of a booked meeting.

    State Flow:
        PENDING -> SUCCEEDED -> REFUNDED
        PENDING -> FAILED
        PENDING -> REFUNDED (booking conflict refund)
        PENDING -> REFUND_FAILED (conflict refund rejected by provider)
    """

    PENDING = "pending", "Pending"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"
    REFUND_FAILED = "refund_failed", "Refund failed"


# Default minimum notice when the expert never configured one (24 hours)
DEFAULT_MINIMUM_NOTICE_MINUTES = 1440


# =============================================================================
# Models
# =============================================================================


class Event(BaseModel):
    """
    Bookable service offered by an expert.

    Fields:
        id: External event id from the booking service
        expert_id: Owning expert
        name: Service name shown to guests
        duration_minutes: Session length
    """

    id = models.CharField(
        primary_key=True,
        max_length=64,
        help_text="External event id",
    )

    expert_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Expert offering this event",
    )

    name = models.CharField(
        max_length=255,
        help_text="Service name",
    )

    duration_minutes = models.PositiveIntegerField(
        help_text="Session length in minutes",
    )

    class Meta:
        db_table = "bookings_event"
        ordering = ["name"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(duration_minutes__gt=0),
                name="event_duration_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.duration_minutes} min)"


class BookingMeeting(UUIDPrimaryKeyMixin, BaseModel):
    """
    A guest's booked session with an expert.

    Fields:
        event: The booked service
        expert_id: Expert holding the session
        guest_email / guest_name / guest_locale: Who booked it
        start_time: Session start (UTC)
        stripe_payment_intent_id: Payment that pays for this session
        payment_status: Payment state (see MeetingPaymentStatus)
        meeting_url: Conferencing link, blank until created
        calendar_creation_claimed: Set while a worker creates the link
    """

    event = models.ForeignKey(
        Event,
        on_delete=models.PROTECT,
        related_name="meetings",
        help_text="Booked service",
    )

    expert_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Expert holding the session",
    )

    guest_email = models.EmailField(
        help_text="Guest email",
    )

    guest_name = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Guest display name",
    )

    guest_locale = models.CharField(
        max_length=10,
        default="en",
        help_text="Guest language for notifications",
    )

    start_time = models.DateTimeField(
        db_index=True,
        help_text="Session start",
    )

    stripe_payment_intent_id = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Stripe PaymentIntent paying for this session",
    )

    payment_status = models.CharField(
        max_length=20,
        choices=MeetingPaymentStatus.choices,
        default=MeetingPaymentStatus.PENDING,
        db_index=True,
        help_text="Payment state of the session",
    )

    meeting_url = models.URLField(
        max_length=500,
        blank=True,
        default="",
        help_text="Conferencing link",
    )

    calendar_creation_claimed = models.BooleanField(
        default=False,
        help_text="Whether a worker has claimed conferencing link creation",
    )

    class Meta:
        db_table = "bookings_meeting"
        ordering = ["start_time"]
        indexes = [
            models.Index(
                fields=["expert_id", "payment_status", "start_time"],
                name="meeting_expert_status_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"Meeting {self.id} ({self.expert_id} @ {self.start_time:%Y-%m-%d %H:%M})"

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.event.duration_minutes)


class SchedulingSettings(BaseModel):
    """
    Per-expert scheduling preferences.

    Fields:
        expert_id: Expert these settings belong to
        minimum_notice_minutes: Shortest allowed gap between booking and
            session start. Null means DEFAULT_MINIMUM_NOTICE_MINUTES.
    """

    expert_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Expert these settings belong to",
    )

    minimum_notice_minutes = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Minimum notice in minutes (null uses the default)",
    )

    class Meta:
        db_table = "bookings_scheduling_settings"
        verbose_name_plural = "scheduling settings"

    def __str__(self) -> str:
        return f"SchedulingSettings({self.expert_id})"

    @property
    def effective_minimum_notice_minutes(self) -> int:
        if self.minimum_notice_minutes is None:
            return DEFAULT_MINIMUM_NOTICE_MINUTES
        return self.minimum_notice_minutes


class SlotReservation(UUIDPrimaryKeyMixin, BaseModel):
    """
    Temporary hold on a slot while a delayed voucher payment is outstanding.

    Created when the provider issues a voucher (payment requires action) and
    deleted once the payment settles.

    Fields:
        event: Service being booked
        expert_id: Expert whose slot is held
        guest_email: Guest holding the slot
        start_time: Slot start
        expires_at: When the voucher (and the hold) expires
        stripe_payment_intent_id: Payment the hold belongs to
    """

    event = models.ForeignKey(
        Event,
        on_delete=models.PROTECT,
        related_name="reservations",
        help_text="Service being booked",
    )

    expert_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Expert whose slot is held",
    )

    guest_email = models.EmailField(
        help_text="Guest holding the slot",
    )

    start_time = models.DateTimeField(
        help_text="Slot start",
    )

    expires_at = models.DateTimeField(
        db_index=True,
        help_text="When the hold lapses",
    )

    stripe_payment_intent_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe PaymentIntent the hold belongs to",
    )

    class Meta:
        db_table = "bookings_slot_reservation"
        ordering = ["start_time"]

    def __str__(self) -> str:
        return f"SlotReservation({self.expert_id} @ {self.start_time:%Y-%m-%d %H:%M})"
