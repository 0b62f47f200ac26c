"""
Refund policy for booking conflicts.

When a delayed payment confirms for a slot that can no longer be honoured,
the guest is refunded a fixed share of what they paid (90% by default). The
rest covers the processing fees the platform already incurred.

A refund the provider rejects leaves the guest with an open claim. The
booking is then parked in REFUND_FAILED for manual resolution, and the
expert is never paid for it.

Usage:
    breakdown = calculate_refund(10000)
    # RefundBreakdown(original=10000, refund_amount=9000, processing_fee=1000, percentage=90)

    result = RefundPolicyService(deps).refund_for_conflict(intent, meeting, conflict)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError, transaction

from bookings.models import Event, MeetingPaymentStatus
from bookings.services import MeetingService
from core.services import BaseService, ServiceResult
from notifications.models import NotificationType
from payments.exceptions import MetadataValidationError, PaymentValidationError, StripeError
from payments.locks import lock_row
from payments.metadata import TransferPlan
from payments.models import TransferRecord
from payments.services.transfer_creator import transfer_record_fields
from payments.state_machines import PRE_TRANSFER_STATES, REVERSIBLE_STATES, TransferStatus

if TYPE_CHECKING:
    from payments.adapters import RefundResult
    from payments.dependencies import PaymentDependencies
    from payments.metadata import MeetingMetadata, PaymentIntentSnapshot
    from payments.services.conflict_detector import ConflictCheckResult

CONFLICT_REFUND_REASON = "booking_conflict"


@dataclass(frozen=True)
class RefundBreakdown:
    """
    Split of a conflict refund.

    Attributes:
        original: Amount paid, minor units
        refund_amount: Amount returned to the guest
        processing_fee: Amount retained (original - refund_amount)
        percentage: Refunded percentage
    """

    original: int
    refund_amount: int
    processing_fee: int
    percentage: int


def calculate_refund(amount: int, percentage: int | None = None) -> RefundBreakdown:
    """
    Refund a percentage of amount, rounding the refund down.

    Raises:
        PaymentValidationError: If amount is not positive
    """
    if percentage is None:
        percentage = settings.RECONCILIATION_REFUND_PERCENTAGE
    if amount <= 0:
        raise PaymentValidationError(
            f"Refund amount must be positive, got {amount}",
            details={"amount": amount},
        )
    refund_amount = amount * percentage // 100
    return RefundBreakdown(
        original=amount,
        refund_amount=refund_amount,
        processing_fee=amount - refund_amount,
        percentage=percentage,
    )


class RefundPolicyService(BaseService):
    """Refunds guests whose delayed payment lost its slot."""

    def __init__(self, deps: PaymentDependencies):
        self.deps = deps

    def refund_for_conflict(
        self,
        intent: PaymentIntentSnapshot,
        meeting: MeetingMetadata,
        conflict: ConflictCheckResult,
    ) -> ServiceResult[RefundResult]:
        """
        Refund a conflicting booking and close it on both sides.

        Args:
            intent: The succeeded PaymentIntent
            meeting: Validated meeting metadata
            conflict: The conflict being resolved

        Returns:
            ServiceResult with the provider refund

        Error codes:
            REFUND_FAILED: Provider rejected the refund; booking parked in
                refund_failed for manual review
        """
        logger = self.get_logger()
        breakdown = calculate_refund(intent.amount)
        reason = conflict.reason.value if conflict.reason else ""

        refund_metadata = {
            "reason": CONFLICT_REFUND_REASON,
            "conflict_type": reason,
            "original_amount": str(breakdown.original),
            "processing_fee": str(breakdown.processing_fee),
            "refund_percentage": str(breakdown.percentage),
        }
        if conflict.minimum_notice_hours is not None:
            refund_metadata["minimum_notice_hours"] = str(conflict.minimum_notice_hours)

        try:
            refund = self.deps.stripe.create_refund(
                payment_intent_id=intent.id,
                amount=breakdown.refund_amount,
                idempotency_key=f"conflict-refund:{intent.id}",
                metadata=refund_metadata,
            )
        except StripeError as e:
            self._park_refund_failure(intent, e)
            return ServiceResult.failure(str(e), error_code="REFUND_FAILED")

        logger.info(
            "Conflict refund issued",
            extra={
                "payment_intent_id": intent.id,
                "refund_id": refund.id,
                "refund_amount": breakdown.refund_amount,
                "conflict_type": reason,
            },
        )

        MeetingService.set_payment_status(intent.id, MeetingPaymentStatus.REFUNDED)
        self._refund_existing_record(intent.id)
        self._notify_refund(intent, meeting, conflict, breakdown)
        return ServiceResult.success(refund)

    # =========================================================================
    # Record updates
    # =========================================================================

    def _refund_existing_record(self, payment_intent_id: str) -> None:
        with transaction.atomic():
            record = (
                TransferRecord.objects.select_for_update()
                .filter(stripe_payment_intent_id=payment_intent_id)
                .first()
            )
            if record is None or record.status not in REVERSIBLE_STATES:
                return
            record.refund()
            record.append_note("Refunded after booking conflict")
            record.save()

    def _park_refund_failure(self, intent: PaymentIntentSnapshot, error: StripeError) -> None:
        """Route the booking to REFUND_FAILED so the expert is never paid for it."""
        logger = self.get_logger()
        error_code = error.stripe_code or "unknown_error"
        logger.error(
            f"Conflict refund failed, booking held for manual review: {error}",
            extra={"payment_intent_id": intent.id, "stripe_code": error_code},
        )

        MeetingService.set_payment_status(
            intent.id,
            MeetingPaymentStatus.REFUND_FAILED,
            exclude_statuses=(MeetingPaymentStatus.REFUNDED,),
        )

        note = f"Conflict refund failed ({error_code}): guest refund outstanding"
        existing = TransferRecord.objects.filter(stripe_payment_intent_id=intent.id).first()
        if existing is not None:
            with transaction.atomic():
                record = lock_row(TransferRecord, existing.id)
                if record.status in PRE_TRANSFER_STATES:
                    record.mark_refund_failed(error_code, str(error))
                    record.append_note(note)
                    record.save()
                else:
                    logger.error(
                        f"Refund failed for a record already {record.status}",
                        extra={"payment_intent_id": intent.id, "transfer_record_id": str(record.id)},
                    )
            return

        try:
            plan = TransferPlan.from_checkout(intent.checkout)
        except MetadataValidationError as e:
            logger.error(
                f"Cannot record refund failure, invalid metadata: {e}",
                extra={"payment_intent_id": intent.id, "field": e.field},
            )
            return

        try:
            with transaction.atomic():
                record = TransferRecord(
                    status=TransferStatus.REFUND_FAILED,
                    requires_approval=True,
                    last_error_code=error_code,
                    last_error_message=str(error),
                    **transfer_record_fields(plan, intent.id, intent.currency),
                )
                record.append_note(note)
                record.save()
        except IntegrityError:
            logger.error(
                "Transfer record appeared concurrently while recording refund failure",
                extra={"payment_intent_id": intent.id},
            )

    # =========================================================================
    # Notifications
    # =========================================================================

    def _notify_refund(
        self,
        intent: PaymentIntentSnapshot,
        meeting: MeetingMetadata,
        conflict: ConflictCheckResult,
        breakdown: RefundBreakdown,
    ) -> None:
        event_name = (
            Event.objects.filter(id=meeting.event_id).values_list("name", flat=True).first() or ""
        )
        data = {
            "guest_name": meeting.guest_name,
            "event_name": event_name,
            "session_start_time": meeting.start_time.isoformat(),
            "conflict_type": conflict.reason.value if conflict.reason else "",
            "minimum_notice_hours": conflict.minimum_notice_hours,
            "original_amount": breakdown.original,
            "refund_amount": breakdown.refund_amount,
            "processing_fee": breakdown.processing_fee,
            "refund_percentage": breakdown.percentage,
            "currency": intent.currency,
        }

        self.deps.notifier.notify_expert(
            meeting.expert_id,
            NotificationType.BOOKING_REFUNDED_EXPERT,
            data,
            idempotency_key=f"booking_refunded_expert:{intent.id}",
        )
        self.deps.notifier.notify_guest(
            meeting.guest_email,
            NotificationType.BOOKING_REFUNDED_GUEST,
            {**data, "rebooking_invited": True},
            idempotency_key=f"booking_refunded_guest:{intent.id}",
            locale=meeting.locale,
        )
