"""
Tests for ConflictDetector.

Tests cover:
- Event lookup
- Time range overlap with confirmed meetings (half-open intervals)
- Minimum notice rule
- Fail-open behaviour when the check errors
"""

from datetime import datetime, timedelta, timezone as dt_timezone
from unittest.mock import patch

import pytest

from bookings.models import MeetingPaymentStatus
from bookings.tests.factories import BookingMeetingFactory, SchedulingSettingsFactory
from payments.services import ConflictDetector, ConflictOutcome, ConflictReason
from payments.services.conflict_detector import ranges_overlap

NOW = datetime(2026, 5, 1, 9, 0, tzinfo=dt_timezone.utc)
START = datetime(2026, 5, 4, 14, 0, tzinfo=dt_timezone.utc)


def check(**overrides):
    kwargs = {
        "expert_id": "expert_1",
        "start_time": START,
        "event_id": "evt_consultation",
        "exclude_payment_intent_id": "pi_checked",
        "now": NOW,
    }
    kwargs.update(overrides)
    return ConflictDetector().check(**kwargs)


class TestRangesOverlap:
    """Tests for the interval helper."""

    def test_overlapping(self):
        assert ranges_overlap(START, START + timedelta(hours=1), START + timedelta(minutes=30), START + timedelta(hours=2))

    def test_touching_endpoints_do_not_overlap(self):
        assert not ranges_overlap(START, START + timedelta(hours=1), START + timedelta(hours=1), START + timedelta(hours=2))


@pytest.mark.django_db
class TestConflictDetector:
    """Tests for ConflictDetector.check."""

    def test_no_conflict(self, consultation_event):
        result = check()

        assert result.outcome == ConflictOutcome.NO_CONFLICT
        assert result.has_conflict is False

    def test_event_not_found_is_conflict(self):
        result = check(event_id="evt_missing")

        assert result.has_conflict is True
        assert result.reason == ConflictReason.EVENT_NOT_FOUND

    def test_overlap_with_confirmed_meeting(self, consultation_event):
        BookingMeetingFactory(
            event=consultation_event,
            start_time=START + timedelta(minutes=30),
        )

        result = check()

        assert result.has_conflict is True
        assert result.reason == ConflictReason.TIME_RANGE_OVERLAP

    def test_meeting_ending_at_start_is_not_conflict(self, consultation_event):
        BookingMeetingFactory(
            event=consultation_event,
            start_time=START - timedelta(hours=1),
        )

        assert check().has_conflict is False

    def test_unconfirmed_meetings_ignored(self, consultation_event):
        for status in (MeetingPaymentStatus.PENDING, MeetingPaymentStatus.FAILED, MeetingPaymentStatus.REFUNDED):
            BookingMeetingFactory(event=consultation_event, start_time=START, payment_status=status)

        assert check().has_conflict is False

    def test_own_meeting_excluded(self, consultation_event):
        BookingMeetingFactory(
            event=consultation_event,
            start_time=START,
            stripe_payment_intent_id="pi_checked",
        )

        assert check().has_conflict is False

    def test_other_expert_ignored(self, consultation_event):
        BookingMeetingFactory(event=consultation_event, expert_id="expert_2", start_time=START)

        assert check().has_conflict is False

    def test_minimum_notice_violation(self, consultation_event):
        SchedulingSettingsFactory(expert_id="expert_1", minimum_notice_minutes=90)

        result = check(now=START - timedelta(minutes=60))

        assert result.reason == ConflictReason.MINIMUM_NOTICE_VIOLATION
        assert result.minimum_notice_hours == 2

    def test_default_minimum_notice(self, consultation_event, settings):
        settings.RECONCILIATION_DEFAULT_MINIMUM_NOTICE_MINUTES = 1440

        result = check(now=START - timedelta(hours=23))

        assert result.reason == ConflictReason.MINIMUM_NOTICE_VIOLATION
        assert result.minimum_notice_hours == 24

    def test_exact_notice_is_allowed(self, consultation_event, scheduling_settings):
        assert check(now=START - timedelta(hours=24)).has_conflict is False

    def test_overlap_checked_before_notice(self, consultation_event, scheduling_settings):
        BookingMeetingFactory(event=consultation_event, start_time=START)

        result = check(now=START - timedelta(hours=1))

        assert result.reason == ConflictReason.TIME_RANGE_OVERLAP

    def test_error_is_indeterminate(self, consultation_event):
        with patch("payments.services.conflict_detector.Event.objects.filter", side_effect=RuntimeError("db down")):
            result = check()

        assert result.outcome == ConflictOutcome.INDETERMINATE
        assert result.has_conflict is False
        assert "db down" in result.error
