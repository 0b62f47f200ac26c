"""
Tests for payment models.

Tests cover:
- TransferRecord: version increments, constraints, helpers
- WebhookEvent: status helpers and payload accessors
- ConnectedAccount: string representation
"""

from datetime import timedelta

import pytest
from django.db import IntegrityError, transaction

from payments.models import TransferRecord, WebhookEvent
from payments.models.webhook_event import MAX_WEBHOOK_RETRIES
from payments.state_machines import TransferStatus, WebhookEventStatus
from payments.tests.factories import (
    ConnectedAccountFactory,
    TransferRecordFactory,
    WebhookEventFactory,
)


@pytest.mark.django_db
class TestTransferRecord:
    """Tests for TransferRecord."""

    def test_version_increments_on_save(self):
        record = TransferRecordFactory()
        assert record.version == 1

        record.append_note("checked")
        record.save()

        assert record.version == 2
        assert TransferRecord.objects.get(id=record.id).version == 2

    def test_one_record_per_payment_intent(self):
        record = TransferRecordFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            TransferRecordFactory(stripe_payment_intent_id=record.stripe_payment_intent_id)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"amount": 0},
            {"platform_fee": -1},
            {"stripe_transfer_id": "tr_1", "status": TransferStatus.READY},
            {"stripe_payout_id": "po_1", "status": TransferStatus.FUNDS_MOVED, "stripe_transfer_id": "tr_1"},
        ],
    )
    def test_constraints(self, overrides):
        with pytest.raises(IntegrityError), transaction.atomic():
            TransferRecordFactory(**overrides)

    def test_scheduled_before_session_rejected(self):
        record = TransferRecordFactory.build()

        with pytest.raises(IntegrityError), transaction.atomic():
            TransferRecordFactory(
                session_start_time=record.session_start_time,
                scheduled_transfer_time=record.session_start_time - timedelta(minutes=1),
            )

    def test_append_note(self):
        record = TransferRecordFactory.build()

        record.append_note("first")
        record.append_note("second")

        lines = record.admin_notes.splitlines()
        assert len(lines) == 2
        assert lines[0].endswith("first")
        assert lines[1].endswith("second")

    def test_appointment_end_time(self):
        record = TransferRecordFactory.build()

        assert record.appointment_end_time(45) == record.session_start_time + timedelta(minutes=45)

    def test_str(self):
        record = TransferRecordFactory.build(stripe_payment_intent_id="pi_str", amount=9000, currency="eur")

        assert str(record) == "TransferRecord(pi_str, ready, 90.00 EUR)"


@pytest.mark.django_db
class TestWebhookEvent:
    """Tests for WebhookEvent helpers."""

    def test_processing_counts_attempts(self):
        event = WebhookEventFactory()

        event.mark_processing()

        assert event.status == WebhookEventStatus.PROCESSING
        assert event.retry_count == 1

    def test_processed_clears_error(self):
        event = WebhookEventFactory(error_message="earlier failure")

        event.mark_processed()

        assert event.is_processed is True
        assert event.processed_at is not None
        assert event.error_message is None

    def test_can_retry(self):
        assert WebhookEventFactory(status=WebhookEventStatus.FAILED).can_retry is True
        assert (
            WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=MAX_WEBHOOK_RETRIES).can_retry
            is False
        )
        assert WebhookEventFactory(status=WebhookEventStatus.PROCESSED).can_retry is False

    def test_payload_accessors(self):
        event = WebhookEventFactory(payload={"data": {"object": {"id": "pi_1"}}})

        assert event.get_object() == {"id": "pi_1"}
        assert event.get_object_id() == "pi_1"

    @pytest.mark.parametrize("payload", [{}, {"data": None}, {"data": {"object": "pi_1"}}, []])
    def test_malformed_payload(self, payload):
        event = WebhookEvent(stripe_event_id="evt_bad", event_type="x", payload=payload)

        assert event.get_object() == {}
        assert event.get_object_id() is None


@pytest.mark.django_db
def test_connected_account_str():
    account = ConnectedAccountFactory(expert_id="expert_7", stripe_account_id="acct_7")

    assert "acct_7" in str(account)


@pytest.mark.parametrize(
    "status,terminal",
    [
        (TransferStatus.PENDING, False),
        (TransferStatus.READY, False),
        (TransferStatus.FUNDS_MOVED, False),
        (TransferStatus.FAILED, False),
        (TransferStatus.PAID_OUT, True),
        (TransferStatus.REFUNDED, True),
        (TransferStatus.DISPUTED, True),
        (TransferStatus.REFUND_FAILED, True),
    ],
)
def test_is_terminal(status, terminal):
    assert TransferRecordFactory.build(status=status).is_terminal is terminal
