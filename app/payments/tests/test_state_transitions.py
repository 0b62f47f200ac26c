"""
Tests for TransferRecord state transitions.

Tests cover:
- Every allowed transition and its side effects
- Disallowed transitions raise TransitionNotAllowed
- The status field cannot be assigned directly
- Terminal states are never left by automated paths
- Reversals are monotonic whatever order webhook events arrive in
"""

import itertools

import pytest
from django_fsm import TransitionNotAllowed, can_proceed

from payments.models import TransferRecord
from payments.state_machines import (
    PRE_TRANSFER_STATES,
    REVERSIBLE_STATES,
    TransferStatus,
)
from payments.tests.factories import (
    TransferRecordFactory,
    build_checkout_metadata,
    build_payment_intent,
)
from payments.webhooks.handlers import dispatch_webhook

TERMINAL_STATES = [
    TransferStatus.PAID_OUT,
    TransferStatus.REFUNDED,
    TransferStatus.DISPUTED,
    TransferStatus.REFUND_FAILED,
]


def record_in(status, **kwargs) -> TransferRecord:
    """Unsaved record in the given state."""
    if status in (TransferStatus.FUNDS_MOVED, TransferStatus.PAID_OUT):
        kwargs.setdefault("stripe_transfer_id", "tr_1")
    return TransferRecordFactory.build(status=status, **kwargs)


class TestTransitions:
    """Allowed transitions and their side effects."""

    def test_mark_ready(self):
        record = record_in(TransferStatus.PENDING)

        record.mark_ready()

        assert record.status == TransferStatus.READY

    @pytest.mark.parametrize("source", [TransferStatus.READY, TransferStatus.FAILED])
    def test_approve_resets_attempts(self, source):
        record = record_in(
            source,
            retry_count=3,
            last_error_code="api_error",
            last_error_message="down",
            requires_approval=True,
        )

        record.approve(note="Approved for transfer by admin")

        assert record.status == TransferStatus.APPROVED
        assert record.retry_count == 0
        assert record.last_error_code is None
        assert record.requires_approval is False
        assert "Approved for transfer by admin" in record.admin_notes

    @pytest.mark.parametrize("source", [TransferStatus.READY, TransferStatus.APPROVED])
    def test_mark_funds_moved(self, source):
        record = record_in(source, last_error_code="api_error")

        record.mark_funds_moved("tr_new")

        assert record.status == TransferStatus.FUNDS_MOVED
        assert record.stripe_transfer_id == "tr_new"
        assert record.funds_moved_at is not None
        assert record.last_error_code is None

    def test_mark_paid_out(self):
        record = record_in(TransferStatus.FUNDS_MOVED)

        record.mark_paid_out("po_new")

        assert record.status == TransferStatus.PAID_OUT
        assert record.stripe_payout_id == "po_new"
        assert record.paid_out_at is not None

    @pytest.mark.parametrize("source", PRE_TRANSFER_STATES)
    def test_fail(self, source):
        record = record_in(source)

        record.fail("card_declined", "Your card was declined.")

        assert record.status == TransferStatus.FAILED
        assert record.last_error_code == "card_declined"

    @pytest.mark.parametrize("source", REVERSIBLE_STATES)
    def test_refund(self, source):
        record = record_in(source)

        record.refund()

        assert record.status == TransferStatus.REFUNDED

    @pytest.mark.parametrize("source", REVERSIBLE_STATES)
    def test_dispute(self, source):
        record = record_in(source)

        record.dispute()

        assert record.status == TransferStatus.DISPUTED

    @pytest.mark.parametrize("source", PRE_TRANSFER_STATES)
    def test_mark_refund_failed(self, source):
        record = record_in(source)

        record.mark_refund_failed("charge_already_refunded", "Already refunded")

        assert record.status == TransferStatus.REFUND_FAILED
        assert record.requires_approval is True


class TestDisallowedTransitions:
    """Transitions outside the state graph."""

    @pytest.mark.parametrize("status", TERMINAL_STATES)
    def test_terminal_states_have_no_automated_exit(self, status):
        record = record_in(status)

        assert record.is_terminal is True
        for transition in ("mark_ready", "mark_funds_moved", "mark_paid_out", "fail", "refund", "dispute"):
            assert not can_proceed(getattr(record, transition)), transition

    def test_paid_out_cannot_be_refunded(self):
        record = record_in(TransferStatus.PAID_OUT)

        with pytest.raises(TransitionNotAllowed):
            record.refund()

    def test_funds_moved_cannot_fail(self):
        record = record_in(TransferStatus.FUNDS_MOVED)

        with pytest.raises(TransitionNotAllowed):
            record.fail("x", "y")

    def test_pending_cannot_transfer(self):
        record = record_in(TransferStatus.PENDING)

        with pytest.raises(TransitionNotAllowed):
            record.mark_funds_moved("tr_1")

    def test_refund_failed_cannot_be_approved(self):
        record = record_in(TransferStatus.REFUND_FAILED)

        with pytest.raises(TransitionNotAllowed):
            record.approve()

    def test_status_is_protected(self):
        record = record_in(TransferStatus.READY)

        with pytest.raises(AttributeError):
            record.status = TransferStatus.PAID_OUT


@pytest.mark.django_db
class TestEventOrdering:
    """Webhook reversals are monotonic whatever order events arrive in."""

    REVERSALS = {
        "charge.refunded": TransferStatus.REFUNDED,
        "charge.dispute.created": TransferStatus.DISPUTED,
    }

    def payload(self, event_type, payment_intent_id):
        if event_type == "payment_intent.succeeded":
            return build_payment_intent(
                payment_intent_id=payment_intent_id,
                metadata=build_checkout_metadata(),
            )
        if event_type == "charge.refunded":
            return {"id": "ch_1", "payment_intent": payment_intent_id, "amount_refunded": 10000}
        return {"id": f"dp_{payment_intent_id}", "charge": "ch_1", "payment_intent": payment_intent_id}

    @pytest.mark.parametrize(
        "order",
        list(itertools.permutations(["payment_intent.succeeded", "charge.refunded", "charge.dispute.created"])),
    )
    def test_first_reversal_wins(self, order, deps, make_event, consultation_event):
        payment_intent_id = "pi_" + "_".join(event.split(".")[-1] for event in order)
        TransferRecordFactory(
            stripe_payment_intent_id=payment_intent_id,
            status=TransferStatus.PENDING,
        )

        seen = []
        for event_type in order:
            dispatch_webhook(make_event(event_type, self.payload(event_type, payment_intent_id)), deps)
            seen.append(TransferRecord.objects.get(stripe_payment_intent_id=payment_intent_id).status)

        first_reversal = next(self.REVERSALS[event] for event in order if event in self.REVERSALS)
        assert seen[-1] == first_reversal
        reversed_at = next(i for i, status in enumerate(seen) if status in self.REVERSALS.values())
        assert all(status == first_reversal for status in seen[reversed_at:])

    @pytest.mark.parametrize(
        "order",
        list(itertools.permutations(["payment_intent.succeeded", "charge.refunded", "charge.dispute.created"])),
    )
    def test_first_reversal_wins_without_prior_record(self, order, deps, make_event, consultation_event):
        payment_intent_id = "pi_new_" + "_".join(event.split(".")[-1] for event in order)

        for event_type in order:
            dispatch_webhook(make_event(event_type, self.payload(event_type, payment_intent_id)), deps)

        first_reversal = next(self.REVERSALS[event] for event in order if event in self.REVERSALS)
        record = TransferRecord.objects.get(stripe_payment_intent_id=payment_intent_id)
        assert record.status == first_reversal
        assert record.stripe_transfer_id is None

        confirmed_first = order[0] == "payment_intent.succeeded"
        assert deps.calendar.create_conference.called is confirmed_first


@pytest.fixture
def make_event(db):
    from payments.models import WebhookEvent
    from payments.tests.factories import build_event

    def _create(event_type, data_object):
        payload = build_event(event_type, data_object)
        return WebhookEvent.objects.create(
            stripe_event_id=payload["id"],
            event_type=event_type,
            payload=payload,
        )

    return _create
