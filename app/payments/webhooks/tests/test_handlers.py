"""
Tests for webhook event handlers.

Tests cover:
- Dispatch routing, unknown events and handler exceptions
- payment_intent.succeeded: transfer record, meeting confirmation,
  guest confirmation, conflict refunds for delayed methods
- payment_intent.payment_failed, including the guest retry notice
- payment_intent.requires_action: slot hold, voucher details, pending record
- charge.refunded and charge.dispute.created, including reversals that
  arrive before the payment succeeded
"""

from datetime import datetime, timedelta, timezone as dt_timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from django.utils import timezone
from freezegun import freeze_time

from bookings.models import BookingMeeting, MeetingPaymentStatus, SlotReservation
from bookings.tests.factories import BookingMeetingFactory, SchedulingSettingsFactory, SlotReservationFactory
from notifications.models import Notification, NotificationType
from payments.models import PaymentReversal, ReversalKind, TransferRecord
from payments.state_machines import TransferStatus
from payments.tests.factories import (
    TransferRecordFactory,
    build_checkout_metadata,
    build_payment_intent,
)
from payments.webhooks.handlers import WEBHOOK_HANDLERS, dispatch_webhook


# =============================================================================
# Dispatch
# =============================================================================


@pytest.mark.django_db
class TestDispatchWebhook:
    """Tests for dispatch_webhook."""

    def test_all_events_registered(self):
        assert {
            "payment_intent.succeeded",
            "payment_intent.payment_failed",
            "payment_intent.requires_action",
            "charge.refunded",
            "charge.dispute.created",
        } <= set(WEBHOOK_HANDLERS)

    def test_unknown_event_type(self, make_webhook_event, deps):
        event = make_webhook_event("customer.created", {"id": "cus_1"})

        result = dispatch_webhook(event, deps)

        assert result.success is True
        assert result.data is None

    def test_handler_exception_becomes_failure(self, make_webhook_event, deps):
        event = make_webhook_event("test.explodes", {"id": "x"})

        def explode(webhook_event, deps):
            raise RuntimeError("boom")

        with patch.dict(WEBHOOK_HANDLERS, {"test.explodes": explode}):
            result = dispatch_webhook(event, deps)

        assert result.success is False
        assert result.error_code == "HANDLER_ERROR"
        assert "boom" in result.error


# =============================================================================
# payment_intent.succeeded
# =============================================================================


@pytest.mark.django_db
class TestHandlePaymentSucceeded:
    """Tests for payment_intent.succeeded."""

    def test_card_payment_records_transfer(self, make_webhook_event, deps, consultation_event, connected_account):
        deps.calendar.create_conference.return_value = "https://meet.example.com/abc"
        intent = build_payment_intent(payment_intent_id="pi_card")
        event = make_webhook_event("payment_intent.succeeded", intent)

        result = dispatch_webhook(event, deps)

        assert result.success is True
        assert result.data["recorded"] is True
        record = TransferRecord.objects.get(stripe_payment_intent_id="pi_card")
        assert record.status == TransferStatus.READY
        assert result.data["transfer_record_id"] == str(record.id)

        meeting = BookingMeeting.objects.get(stripe_payment_intent_id="pi_card")
        assert meeting.payment_status == MeetingPaymentStatus.SUCCEEDED
        assert meeting.meeting_url == "https://meet.example.com/abc"

    def test_redelivery_is_idempotent(self, make_webhook_event, deps, consultation_event):
        deps.calendar.create_conference.return_value = "https://meet.example.com/abc"
        intent = build_payment_intent(payment_intent_id="pi_card")

        dispatch_webhook(make_webhook_event("payment_intent.succeeded", intent), deps)
        dispatch_webhook(make_webhook_event("payment_intent.succeeded", intent), deps)

        assert TransferRecord.objects.filter(stripe_payment_intent_id="pi_card").count() == 1
        assert deps.calendar.create_conference.call_count == 1
        assert Notification.objects.filter(notification_type=NotificationType.PAYMENT_RECEIVED).count() == 1

    def test_releases_slot_hold(self, make_webhook_event, deps, consultation_event):
        SlotReservationFactory(event=consultation_event, stripe_payment_intent_id="pi_voucher")
        intent = build_payment_intent(payment_intent_id="pi_voucher", payment_method_types=["multibanco"])

        dispatch_webhook(make_webhook_event("payment_intent.succeeded", intent), deps)

        assert not SlotReservation.objects.filter(stripe_payment_intent_id="pi_voucher").exists()

    def test_refunded_meeting_not_resurrected(self, make_webhook_event, deps, consultation_event):
        BookingMeetingFactory(
            event=consultation_event,
            stripe_payment_intent_id="pi_card",
            payment_status=MeetingPaymentStatus.REFUNDED,
            meeting_url="https://meet.example.com/old",
        )

        dispatch_webhook(
            make_webhook_event("payment_intent.succeeded", build_payment_intent(payment_intent_id="pi_card")),
            deps,
        )

        meeting = BookingMeeting.objects.get(stripe_payment_intent_id="pi_card")
        assert meeting.payment_status == MeetingPaymentStatus.REFUNDED

    def test_missing_payment_intent_id(self, make_webhook_event, deps):
        result = dispatch_webhook(make_webhook_event("payment_intent.succeeded", {}), deps)

        assert result.success is False
        assert result.error_code == "INVALID_WEBHOOK_PAYLOAD"

    def test_unsupported_metadata_version_acknowledged(self, make_webhook_event, deps):
        intent = build_payment_intent(metadata=build_checkout_metadata(version="9"))

        result = dispatch_webhook(make_webhook_event("payment_intent.succeeded", intent), deps)

        assert result.success is True
        assert result.data == {"recorded": False, "reason": "invalid_metadata"}
        assert not TransferRecord.objects.exists()

    def test_invalid_transfer_metadata_acknowledged(self, make_webhook_event, deps, consultation_event):
        intent = build_payment_intent(metadata=build_checkout_metadata(transfer="{}"))

        result = dispatch_webhook(make_webhook_event("payment_intent.succeeded", intent), deps)

        assert result.success is True
        assert result.data["recorded"] is False
        assert result.data["error_code"] == "INVALID_METADATA"
        assert not TransferRecord.objects.exists()

    def test_card_payment_skips_conflict_check(self, make_webhook_event, deps, consultation_event):
        start = timezone.now() + timedelta(days=3)
        BookingMeetingFactory(event=consultation_event, start_time=start)
        intent = build_payment_intent(metadata=build_checkout_metadata(start_time=start))

        dispatch_webhook(make_webhook_event("payment_intent.succeeded", intent), deps)

        deps.stripe.create_refund.assert_not_called()
        assert TransferRecord.objects.filter(status=TransferStatus.READY).count() == 1

    def test_delayed_payment_conflict_refunds(self, make_webhook_event, deps, consultation_event, connected_account):
        start = timezone.now() + timedelta(days=3)
        BookingMeetingFactory(event=consultation_event, start_time=start)
        deps.stripe.create_refund.return_value = SimpleNamespace(id="re_conflict")
        intent = build_payment_intent(
            payment_intent_id="pi_late",
            payment_method_types=["multibanco"],
            metadata=build_checkout_metadata(start_time=start),
        )

        result = dispatch_webhook(make_webhook_event("payment_intent.succeeded", intent), deps)

        assert result.data == {"conflict": "time_range_overlap", "refunded": True}
        assert deps.stripe.create_refund.call_args.kwargs["amount"] == 9000
        assert not TransferRecord.objects.filter(stripe_payment_intent_id="pi_late").exists()
        assert Notification.objects.filter(notification_type=NotificationType.BOOKING_REFUNDED_GUEST).exists()
        deps.calendar.create_conference.assert_not_called()

    def test_delayed_payment_conflict_promotes_nothing(self, make_webhook_event, deps, consultation_event):
        start = timezone.now() + timedelta(days=3)
        BookingMeetingFactory(event=consultation_event, start_time=start)
        record = TransferRecordFactory(
            stripe_payment_intent_id="pi_late",
            status=TransferStatus.PENDING,
            session_start_time=start,
            scheduled_transfer_time=start + timedelta(hours=1),
        )
        deps.stripe.create_refund.return_value = SimpleNamespace(id="re_conflict")
        intent = build_payment_intent(
            payment_intent_id="pi_late",
            payment_method_types=["multibanco"],
            metadata=build_checkout_metadata(start_time=start),
        )

        dispatch_webhook(make_webhook_event("payment_intent.succeeded", intent), deps)

        assert TransferRecord.objects.get(id=record.id).status == TransferStatus.REFUNDED

    def test_delayed_payment_without_conflict(self, make_webhook_event, deps, consultation_event):
        intent = build_payment_intent(payment_intent_id="pi_late", payment_method_types=["multibanco"])

        result = dispatch_webhook(make_webhook_event("payment_intent.succeeded", intent), deps)

        assert result.data["recorded"] is True
        deps.stripe.create_refund.assert_not_called()

    def test_failed_conflict_check_fails_open(self, make_webhook_event, deps, consultation_event):
        intent = build_payment_intent(payment_intent_id="pi_late", payment_method_types=["multibanco"])

        with patch(
            "payments.services.conflict_detector.ConflictDetector._check",
            side_effect=RuntimeError("db timeout"),
        ):
            result = dispatch_webhook(make_webhook_event("payment_intent.succeeded", intent), deps)

        assert result.data["recorded"] is True
        deps.stripe.create_refund.assert_not_called()

    def test_unknown_event_refunds(self, make_webhook_event, deps):
        deps.stripe.create_refund.return_value = SimpleNamespace(id="re_conflict")
        intent = build_payment_intent(
            payment_method_types=["multibanco"],
            metadata=build_checkout_metadata(event_id="evt_gone"),
        )

        result = dispatch_webhook(make_webhook_event("payment_intent.succeeded", intent), deps)

        assert result.data["conflict"] == "event_not_found"

    def test_guest_notified_once(self, make_webhook_event, deps, consultation_event):
        deps.calendar.create_conference.return_value = "https://meet.example.com/abc"
        intent = build_payment_intent(payment_intent_id="pi_card")

        dispatch_webhook(make_webhook_event("payment_intent.succeeded", intent), deps)
        dispatch_webhook(make_webhook_event("payment_intent.succeeded", intent), deps)

        notification = Notification.objects.get(notification_type=NotificationType.PAYMENT_CONFIRMED_GUEST)
        assert notification.recipient_email == "guest@example.com"
        assert notification.locale == "pt"
        assert notification.idempotency_key == "payment_confirmed_guest:pi_card"
        assert notification.data["event_name"] == consultation_event.name
        assert notification.data["meeting_url"] == "https://meet.example.com/abc"
        assert notification.data["amount"] == 10000

    def test_redelivery_after_notice_window_keeps_booking(self, make_webhook_event, deps, consultation_event):
        SchedulingSettingsFactory(expert_id="expert_1", minimum_notice_minutes=120)
        with freeze_time("2026-05-01 09:00:00") as frozen:
            start = timezone.now() + timedelta(hours=3)
            intent = build_payment_intent(
                payment_intent_id="pi_voucher",
                payment_method_types=["multibanco"],
                metadata=build_checkout_metadata(start_time=start),
            )
            dispatch_webhook(make_webhook_event("payment_intent.succeeded", intent), deps)

            frozen.tick(timedelta(hours=2))
            result = dispatch_webhook(make_webhook_event("payment_intent.succeeded", intent), deps)

        assert "conflict" not in result.data
        deps.stripe.create_refund.assert_not_called()
        assert TransferRecord.objects.get(stripe_payment_intent_id="pi_voucher").status == TransferStatus.READY
        meeting = BookingMeeting.objects.get(stripe_payment_intent_id="pi_voucher")
        assert meeting.payment_status == MeetingPaymentStatus.SUCCEEDED

    def test_after_refund_records_refunded_and_skips_meeting(self, make_webhook_event, deps, consultation_event):
        dispatch_webhook(make_webhook_event("charge.refunded", refunded_charge(payment_intent_id="pi_card")), deps)

        result = dispatch_webhook(
            make_webhook_event("payment_intent.succeeded", build_payment_intent(payment_intent_id="pi_card")),
            deps,
        )

        assert result.data["reversed"] == ReversalKind.REFUNDED
        assert TransferRecord.objects.get(stripe_payment_intent_id="pi_card").status == TransferStatus.REFUNDED
        assert not BookingMeeting.objects.filter(stripe_payment_intent_id="pi_card").exists()
        deps.calendar.create_conference.assert_not_called()
        assert not Notification.objects.filter(
            notification_type__in=[NotificationType.PAYMENT_RECEIVED, NotificationType.PAYMENT_CONFIRMED_GUEST]
        ).exists()

    def test_after_dispute_records_disputed(self, make_webhook_event, deps, consultation_event):
        dispatch_webhook(make_webhook_event("charge.dispute.created", dispute(payment_intent_id="pi_card")), deps)

        dispatch_webhook(
            make_webhook_event("payment_intent.succeeded", build_payment_intent(payment_intent_id="pi_card")),
            deps,
        )

        assert TransferRecord.objects.get(stripe_payment_intent_id="pi_card").status == TransferStatus.DISPUTED
        deps.calendar.create_conference.assert_not_called()


# =============================================================================
# payment_intent.payment_failed
# =============================================================================


@pytest.mark.django_db
class TestHandlePaymentFailed:
    """Tests for payment_intent.payment_failed."""

    def failed_intent(self, payment_intent_id="pi_failed"):
        return {
            "id": payment_intent_id,
            "object": "payment_intent",
            "last_payment_error": {"code": "card_declined", "message": "Your card was declined."},
        }

    def test_fails_pending_record(self, make_webhook_event, deps, consultation_event):
        record = TransferRecordFactory(stripe_payment_intent_id="pi_failed", status=TransferStatus.PENDING)
        BookingMeetingFactory(
            event=consultation_event,
            stripe_payment_intent_id="pi_failed",
            payment_status=MeetingPaymentStatus.PENDING,
        )

        result = dispatch_webhook(make_webhook_event("payment_intent.payment_failed", self.failed_intent()), deps)

        assert result.success is True
        record = TransferRecord.objects.get(id=record.id)
        assert record.status == TransferStatus.FAILED
        assert record.last_error_code == "card_declined"
        assert record.last_error_message == "Your card was declined."
        meeting = BookingMeeting.objects.get(stripe_payment_intent_id="pi_failed")
        assert meeting.payment_status == MeetingPaymentStatus.FAILED
        notification = Notification.objects.get(notification_type=NotificationType.PAYMENT_FAILED)
        assert notification.idempotency_key == f"payment_failed:{record.id}"

    def test_default_error(self, make_webhook_event, deps):
        record = TransferRecordFactory(stripe_payment_intent_id="pi_failed", status=TransferStatus.READY)

        dispatch_webhook(make_webhook_event("payment_intent.payment_failed", {"id": "pi_failed"}), deps)

        assert TransferRecord.objects.get(id=record.id).last_error_code == "payment_failed"

    def test_succeeded_meeting_untouched(self, make_webhook_event, deps, consultation_event):
        BookingMeetingFactory(event=consultation_event, stripe_payment_intent_id="pi_failed")

        dispatch_webhook(make_webhook_event("payment_intent.payment_failed", self.failed_intent()), deps)

        meeting = BookingMeeting.objects.get(stripe_payment_intent_id="pi_failed")
        assert meeting.payment_status == MeetingPaymentStatus.SUCCEEDED

    @pytest.mark.parametrize("status", [TransferStatus.FUNDS_MOVED, TransferStatus.PAID_OUT])
    def test_later_statuses_untouched(self, make_webhook_event, deps, status):
        record = TransferRecordFactory(
            stripe_payment_intent_id="pi_failed",
            status=status,
            stripe_transfer_id="tr_done",
        )

        dispatch_webhook(make_webhook_event("payment_intent.payment_failed", self.failed_intent()), deps)

        assert TransferRecord.objects.get(id=record.id).status == status
        assert not Notification.objects.exists()

    def test_no_record(self, make_webhook_event, deps):
        result = dispatch_webhook(make_webhook_event("payment_intent.payment_failed", self.failed_intent()), deps)

        assert result.success is True
        assert result.data is None

    def test_guest_asked_to_retry(self, make_webhook_event, deps, consultation_event):
        intent = build_payment_intent(
            payment_intent_id="pi_failed",
            status="requires_payment_method",
            last_payment_error={"code": "card_declined", "message": "Your card was declined."},
        )

        dispatch_webhook(make_webhook_event("payment_intent.payment_failed", intent), deps)
        dispatch_webhook(make_webhook_event("payment_intent.payment_failed", intent), deps)

        notification = Notification.objects.get(notification_type=NotificationType.PAYMENT_FAILED_GUEST)
        assert notification.recipient_email == "guest@example.com"
        assert notification.idempotency_key == "payment_failed_guest:pi_failed"
        assert notification.data["error_code"] == "card_declined"
        assert notification.data["event_name"] == consultation_event.name

    def test_guest_not_told_when_meeting_already_paid(self, make_webhook_event, deps, consultation_event):
        BookingMeetingFactory(event=consultation_event, stripe_payment_intent_id="pi_failed")
        intent = build_payment_intent(payment_intent_id="pi_failed", status="requires_payment_method")

        dispatch_webhook(make_webhook_event("payment_intent.payment_failed", intent), deps)

        assert not Notification.objects.filter(notification_type=NotificationType.PAYMENT_FAILED_GUEST).exists()


# =============================================================================
# payment_intent.requires_action
# =============================================================================


@pytest.mark.django_db
class TestHandlePaymentRequiresAction:
    """Tests for payment_intent.requires_action."""

    def test_voucher_holds_slot_and_records_pending(self, make_webhook_event, deps, consultation_event):
        expires = datetime(2026, 12, 1, 12, 0, tzinfo=dt_timezone.utc)
        intent = build_payment_intent(
            payment_intent_id="pi_voucher",
            payment_method_types=["multibanco"],
            status="requires_action",
            next_action={
                "type": "multibanco_display_details",
                "multibanco_display_details": {"expires_at": int(expires.timestamp())},
            },
        )

        result = dispatch_webhook(make_webhook_event("payment_intent.requires_action", intent), deps)

        assert result.success is True
        reservation = SlotReservation.objects.get(stripe_payment_intent_id="pi_voucher")
        assert reservation.expires_at == expires
        assert reservation.expert_id == "expert_1"
        record = TransferRecord.objects.get(stripe_payment_intent_id="pi_voucher")
        assert record.status == TransferStatus.PENDING
        assert record.amount == 9000

    @freeze_time("2026-05-01 09:00:00")
    def test_default_hold_period(self, make_webhook_event, deps, consultation_event, settings):
        settings.RECONCILIATION_SLOT_RESERVATION_HOURS = 72
        intent = build_payment_intent(payment_intent_id="pi_voucher", payment_method_types=["multibanco"])

        dispatch_webhook(make_webhook_event("payment_intent.requires_action", intent), deps)

        reservation = SlotReservation.objects.get(stripe_payment_intent_id="pi_voucher")
        assert reservation.expires_at == datetime(2026, 5, 4, 9, 0, tzinfo=dt_timezone.utc)

    def test_repeat_is_idempotent(self, make_webhook_event, deps, consultation_event):
        intent = build_payment_intent(payment_intent_id="pi_voucher", payment_method_types=["multibanco"])

        dispatch_webhook(make_webhook_event("payment_intent.requires_action", intent), deps)
        dispatch_webhook(make_webhook_event("payment_intent.requires_action", intent), deps)

        assert SlotReservation.objects.filter(stripe_payment_intent_id="pi_voucher").count() == 1
        assert TransferRecord.objects.filter(stripe_payment_intent_id="pi_voucher").count() == 1

    def test_card_action_ignored(self, make_webhook_event, deps, consultation_event):
        intent = build_payment_intent(payment_intent_id="pi_3ds", payment_method_types=["card"])

        dispatch_webhook(make_webhook_event("payment_intent.requires_action", intent), deps)

        assert not SlotReservation.objects.exists()
        assert not TransferRecord.objects.exists()

    def test_invalid_transfer_metadata_still_holds_slot(self, make_webhook_event, deps, consultation_event):
        intent = build_payment_intent(
            payment_intent_id="pi_voucher",
            payment_method_types=["multibanco"],
            metadata=build_checkout_metadata(payment="not json"),
        )

        result = dispatch_webhook(make_webhook_event("payment_intent.requires_action", intent), deps)

        assert result.success is True
        assert SlotReservation.objects.filter(stripe_payment_intent_id="pi_voucher").exists()
        assert not TransferRecord.objects.exists()

    def test_missing_meeting_metadata(self, make_webhook_event, deps):
        intent = build_payment_intent(payment_method_types=["multibanco"], metadata={})

        result = dispatch_webhook(make_webhook_event("payment_intent.requires_action", intent), deps)

        assert result.success is True
        assert not SlotReservation.objects.exists()

    def test_then_succeeded_promotes(self, make_webhook_event, deps, consultation_event):
        intent = build_payment_intent(payment_intent_id="pi_voucher", payment_method_types=["multibanco"])

        dispatch_webhook(make_webhook_event("payment_intent.requires_action", intent), deps)
        dispatch_webhook(make_webhook_event("payment_intent.succeeded", intent), deps)

        record = TransferRecord.objects.get(stripe_payment_intent_id="pi_voucher")
        assert record.status == TransferStatus.READY
        assert not SlotReservation.objects.exists()

    def test_voucher_details_sent_to_guest(self, make_webhook_event, deps, consultation_event):
        expires = datetime(2026, 12, 1, 12, 0, tzinfo=dt_timezone.utc)
        intent = build_payment_intent(
            payment_intent_id="pi_voucher",
            payment_method_types=["multibanco"],
            status="requires_action",
            next_action={
                "type": "multibanco_display_details",
                "multibanco_display_details": {
                    "entity": "12345",
                    "reference": "123 456 789",
                    "expires_at": int(expires.timestamp()),
                },
            },
        )

        dispatch_webhook(make_webhook_event("payment_intent.requires_action", intent), deps)
        dispatch_webhook(make_webhook_event("payment_intent.requires_action", intent), deps)

        notification = Notification.objects.get(notification_type=NotificationType.VOUCHER_ISSUED_GUEST)
        assert notification.recipient_email == "guest@example.com"
        assert notification.data["entity"] == "12345"
        assert notification.data["reference"] == "123 456 789"
        assert notification.data["expires_at"] == expires.isoformat()
        assert notification.data["amount"] == 10000

    def test_reversed_payment_not_held(self, make_webhook_event, deps, consultation_event):
        PaymentReversal.remember("pi_voucher", ReversalKind.REFUNDED)
        intent = build_payment_intent(payment_intent_id="pi_voucher", payment_method_types=["multibanco"])

        dispatch_webhook(make_webhook_event("payment_intent.requires_action", intent), deps)

        assert not SlotReservation.objects.exists()
        assert not TransferRecord.objects.exists()


# =============================================================================
# charge.refunded
# =============================================================================


def refunded_charge(payment_intent_id="pi_refunded", **extra):
    charge = {
        "id": "ch_refunded",
        "object": "charge",
        "amount": 10000,
        "amount_refunded": 10000,
        "payment_intent": payment_intent_id,
    }
    charge.update(extra)
    return charge


@pytest.mark.django_db
class TestHandleChargeRefunded:
    """Tests for charge.refunded."""

    @pytest.mark.parametrize(
        "status",
        [TransferStatus.PENDING, TransferStatus.READY, TransferStatus.APPROVED, TransferStatus.FUNDS_MOVED],
    )
    def test_reverses_unpaid_record(self, make_webhook_event, deps, status):
        record = TransferRecordFactory(
            stripe_payment_intent_id="pi_refunded",
            status=status,
            stripe_transfer_id="tr_1" if status == TransferStatus.FUNDS_MOVED else None,
        )

        dispatch_webhook(make_webhook_event("charge.refunded", refunded_charge()), deps)

        assert TransferRecord.objects.get(id=record.id).status == TransferStatus.REFUNDED
        notification = Notification.objects.get(notification_type=NotificationType.PAYMENT_REFUNDED)
        assert notification.idempotency_key == f"payment_refunded:{record.id}"

    def test_marks_meeting_refunded(self, make_webhook_event, deps, consultation_event):
        BookingMeetingFactory(event=consultation_event, stripe_payment_intent_id="pi_refunded")

        dispatch_webhook(make_webhook_event("charge.refunded", refunded_charge()), deps)

        meeting = BookingMeeting.objects.get(stripe_payment_intent_id="pi_refunded")
        assert meeting.payment_status == MeetingPaymentStatus.REFUNDED

    def test_paid_out_record_untouched(self, make_webhook_event, deps):
        record = TransferRecordFactory(
            stripe_payment_intent_id="pi_refunded",
            status=TransferStatus.PAID_OUT,
            stripe_transfer_id="tr_1",
            stripe_payout_id="po_1",
        )

        result = dispatch_webhook(make_webhook_event("charge.refunded", refunded_charge()), deps)

        assert result.success is True
        assert TransferRecord.objects.get(id=record.id).status == TransferStatus.PAID_OUT
        assert not Notification.objects.exists()

    def test_payment_intent_looked_up_from_charge(self, make_webhook_event, deps):
        record = TransferRecordFactory(stripe_payment_intent_id="pi_lookup")
        deps.stripe.get_payment_intent_for_charge.return_value = "pi_lookup"

        dispatch_webhook(make_webhook_event("charge.refunded", refunded_charge(payment_intent=None)), deps)

        deps.stripe.get_payment_intent_for_charge.assert_called_once_with("ch_refunded")
        assert TransferRecord.objects.get(id=record.id).status == TransferStatus.REFUNDED

    def test_unresolvable_payment_intent(self, make_webhook_event, deps):
        deps.stripe.get_payment_intent_for_charge.return_value = None

        result = dispatch_webhook(make_webhook_event("charge.refunded", refunded_charge(payment_intent=None)), deps)

        assert result.error_code == "INVALID_WEBHOOK_PAYLOAD"

    def test_no_record_remembers_refund(self, make_webhook_event, deps):
        result = dispatch_webhook(make_webhook_event("charge.refunded", refunded_charge()), deps)

        assert result.success is True
        reversal = PaymentReversal.objects.get(stripe_payment_intent_id="pi_refunded")
        assert reversal.kind == ReversalKind.REFUNDED
        assert reversal.stripe_object_id == "ch_refunded"

    def test_releases_slot_hold(self, make_webhook_event, deps, consultation_event):
        SlotReservationFactory(event=consultation_event, stripe_payment_intent_id="pi_refunded")

        dispatch_webhook(make_webhook_event("charge.refunded", refunded_charge()), deps)

        assert not SlotReservation.objects.exists()


# =============================================================================
# charge.dispute.created
# =============================================================================


def dispute(payment_intent_id="pi_disputed", dispute_id="dp_1"):
    return {
        "id": dispute_id,
        "object": "dispute",
        "amount": 10000,
        "currency": "eur",
        "charge": "ch_disputed",
        "payment_intent": payment_intent_id,
        "reason": "fraudulent",
    }


@pytest.mark.django_db
class TestHandleDisputeCreated:
    """Tests for charge.dispute.created."""

    def test_freezes_funds_moved_record(self, make_webhook_event, deps):
        record = TransferRecordFactory(
            stripe_payment_intent_id="pi_disputed",
            status=TransferStatus.FUNDS_MOVED,
            stripe_transfer_id="tr_1",
        )

        dispatch_webhook(make_webhook_event("charge.dispute.created", dispute()), deps)

        record = TransferRecord.objects.get(id=record.id)
        assert record.status == TransferStatus.DISPUTED
        assert "Dispute dp_1 opened" in record.admin_notes
        notification = Notification.objects.get(notification_type=NotificationType.DISPUTE_OPENED)
        assert notification.idempotency_key == "dispute_opened:dp_1"
        assert notification.data["reason"] == "fraudulent"

    def test_paid_out_record_notified_not_changed(self, make_webhook_event, deps):
        record = TransferRecordFactory(
            stripe_payment_intent_id="pi_disputed",
            status=TransferStatus.PAID_OUT,
            stripe_transfer_id="tr_1",
            stripe_payout_id="po_1",
        )

        dispatch_webhook(make_webhook_event("charge.dispute.created", dispute()), deps)

        assert TransferRecord.objects.get(id=record.id).status == TransferStatus.PAID_OUT
        assert Notification.objects.filter(notification_type=NotificationType.DISPUTE_OPENED).count() == 1

    def test_redelivery_notifies_once(self, make_webhook_event, deps):
        TransferRecordFactory(stripe_payment_intent_id="pi_disputed")

        dispatch_webhook(make_webhook_event("charge.dispute.created", dispute()), deps)
        dispatch_webhook(make_webhook_event("charge.dispute.created", dispute()), deps)

        assert Notification.objects.filter(notification_type=NotificationType.DISPUTE_OPENED).count() == 1

    def test_payment_intent_from_charge(self, make_webhook_event, deps):
        record = TransferRecordFactory(stripe_payment_intent_id="pi_lookup")
        deps.stripe.get_payment_intent_for_charge.return_value = "pi_lookup"
        payload = dispute()
        payload["payment_intent"] = None

        dispatch_webhook(make_webhook_event("charge.dispute.created", payload), deps)

        deps.stripe.get_payment_intent_for_charge.assert_called_once_with("ch_disputed")
        assert TransferRecord.objects.get(id=record.id).status == TransferStatus.DISPUTED

    def test_no_record_remembers_dispute(self, make_webhook_event, deps):
        result = dispatch_webhook(make_webhook_event("charge.dispute.created", dispute()), deps)

        assert result.success is True
        reversal = PaymentReversal.objects.get(stripe_payment_intent_id="pi_disputed")
        assert reversal.kind == ReversalKind.DISPUTED
        assert reversal.stripe_object_id == "dp_1"

    def test_refund_after_dispute_keeps_first_reversal(self, make_webhook_event, deps):
        dispatch_webhook(make_webhook_event("charge.dispute.created", dispute()), deps)
        dispatch_webhook(make_webhook_event("charge.refunded", refunded_charge(payment_intent_id="pi_disputed")), deps)

        assert PaymentReversal.kind_for("pi_disputed") == ReversalKind.DISPUTED
