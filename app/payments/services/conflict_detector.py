"""
Booking conflict detection for delayed payments.

A guest paying with a delayed method (Multibanco voucher) confirms hours or
days after picking a slot. By then the slot may have been sold to someone
else, or may be too close to honour the expert's minimum notice.

ConflictDetector answers "can this booking still happen?" with one of three
outcomes. INDETERMINATE means the check itself failed; callers treat it as
no conflict (fail-open), so an infrastructure hiccup never refunds a guest.

Usage:
    result = ConflictDetector().check(
        expert_id=meeting.expert_id,
        start_time=meeting.start_time,
        event_id=meeting.event_id,
        exclude_payment_intent_id=intent_id,
    )
    if result.has_conflict:
        RefundPolicyService(deps).refund_for_conflict(...)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from django.conf import settings
from django.utils import timezone

from bookings.models import BookingMeeting, Event, MeetingPaymentStatus, SchedulingSettings
from core.services import BaseService


class ConflictOutcome(str, Enum):
    NO_CONFLICT = "no_conflict"
    CONFLICT = "conflict"
    INDETERMINATE = "indeterminate"


class ConflictReason(str, Enum):
    EVENT_NOT_FOUND = "event_not_found"
    TIME_RANGE_OVERLAP = "time_range_overlap"
    MINIMUM_NOTICE_VIOLATION = "minimum_notice_violation"


@dataclass(frozen=True)
class ConflictCheckResult:
    """
    Attributes:
        outcome: Result of the check
        reason: Why the booking conflicts (CONFLICT only)
        minimum_notice_hours: Required notice (MINIMUM_NOTICE_VIOLATION only)
        error: What went wrong (INDETERMINATE only)
    """

    outcome: ConflictOutcome
    reason: ConflictReason | None = None
    minimum_notice_hours: int | None = None
    error: str | None = None

    @property
    def has_conflict(self) -> bool:
        return self.outcome == ConflictOutcome.CONFLICT

    @classmethod
    def no_conflict(cls) -> ConflictCheckResult:
        return cls(outcome=ConflictOutcome.NO_CONFLICT)

    @classmethod
    def conflict(
        cls,
        reason: ConflictReason,
        minimum_notice_hours: int | None = None,
    ) -> ConflictCheckResult:
        return cls(
            outcome=ConflictOutcome.CONFLICT,
            reason=reason,
            minimum_notice_hours=minimum_notice_hours,
        )

    @classmethod
    def indeterminate(cls, error: str) -> ConflictCheckResult:
        return cls(outcome=ConflictOutcome.INDETERMINATE, error=error)


def ranges_overlap(
    start_a: datetime,
    end_a: datetime,
    start_b: datetime,
    end_b: datetime,
) -> bool:
    """Half-open interval overlap: touching endpoints do not overlap."""
    return start_a < end_b and start_b < end_a


class ConflictDetector(BaseService):
    """Checks a proposed booking against confirmed meetings and notice rules."""

    def check(
        self,
        expert_id: str,
        start_time: datetime,
        event_id: str,
        exclude_payment_intent_id: str | None = None,
        now: datetime | None = None,
    ) -> ConflictCheckResult:
        """
        Check whether a booking can still take place.

        Args:
            expert_id: Expert being booked
            start_time: Proposed session start
            event_id: Booked event, gives the duration
            exclude_payment_intent_id: Payment of the booking being checked;
                its own meeting is not a conflict
            now: Reference time (defaults to timezone.now())

        Returns:
            ConflictCheckResult. Never raises.
        """
        logger = self.get_logger()
        log_context = {
            "expert_id": expert_id,
            "event_id": event_id,
            "payment_intent_id": exclude_payment_intent_id,
        }

        try:
            result = self._check(expert_id, start_time, event_id, exclude_payment_intent_id, now)
        except Exception as e:
            logger.error(
                f"Conflict check failed, proceeding as no conflict: {e}",
                extra=log_context,
                exc_info=True,
            )
            return ConflictCheckResult.indeterminate(str(e))

        if result.has_conflict:
            logger.warning(
                f"Booking conflict detected: {result.reason.value}",
                extra={**log_context, "minimum_notice_hours": result.minimum_notice_hours},
            )
        return result

    def _check(
        self,
        expert_id: str,
        start_time: datetime,
        event_id: str,
        exclude_payment_intent_id: str | None,
        now: datetime | None,
    ) -> ConflictCheckResult:
        now = now or timezone.now()

        event = Event.objects.filter(id=event_id).first()
        if event is None:
            return ConflictCheckResult.conflict(ConflictReason.EVENT_NOT_FOUND)

        proposed_end = start_time + timedelta(minutes=event.duration_minutes)

        confirmed = (
            BookingMeeting.objects.select_related("event")
            .filter(expert_id=expert_id, payment_status=MeetingPaymentStatus.SUCCEEDED)
            .filter(start_time__lt=proposed_end)
            .order_by("start_time")
        )
        if exclude_payment_intent_id:
            confirmed = confirmed.exclude(stripe_payment_intent_id=exclude_payment_intent_id)

        for meeting in confirmed:
            if ranges_overlap(start_time, proposed_end, meeting.start_time, meeting.end_time):
                return ConflictCheckResult.conflict(ConflictReason.TIME_RANGE_OVERLAP)

        required_minutes = self.minimum_notice_minutes(expert_id)
        notice_minutes = (start_time - now).total_seconds() / 60
        if notice_minutes < required_minutes:
            return ConflictCheckResult.conflict(
                ConflictReason.MINIMUM_NOTICE_VIOLATION,
                minimum_notice_hours=math.ceil(required_minutes / 60),
            )

        return ConflictCheckResult.no_conflict()

    @staticmethod
    def minimum_notice_minutes(expert_id: str) -> int:
        scheduling = SchedulingSettings.objects.filter(expert_id=expert_id).first()
        if scheduling is None or scheduling.minimum_notice_minutes is None:
            return settings.RECONCILIATION_DEFAULT_MINIMUM_NOTICE_MINUTES
        return scheduling.minimum_notice_minutes
