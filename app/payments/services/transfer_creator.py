"""
Transfer record creation for successful payments.

When a payment succeeds, the expert is owed their share. TransferCreator
records that debt as a TransferRecord in READY, to be paid by the scheduled
transfer processor once its scheduled time has passed.

Three cases:
    - No record yet: validate metadata, insert a READY record (or a
      REFUNDED/DISPUTED one if the payment was reversed before it succeeded)
    - PENDING record (voucher issued earlier): promote it to READY
    - Any other status: already handled, do nothing

Usage:
    result = TransferCreator(deps).record_successful_payment(intent)
    if not result and result.error_code == "INVALID_METADATA":
        ...  # Logged; the webhook is still acknowledged
"""

from __future__ import annotations

from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from bookings.services import MeetingService
from core.services import BaseService, ServiceResult
from notifications.models import NotificationType
from payments.exceptions import MetadataValidationError
from payments.locks import lock_row
from payments.metadata import TransferPlan
from payments.models import PaymentReversal, ReversalKind, TransferRecord
from payments.state_machines import REVERSIBLE_STATES, TransferStatus

if TYPE_CHECKING:
    from payments.dependencies import PaymentDependencies
    from payments.metadata import PaymentIntentSnapshot


# =============================================================================
# Scheduling
# =============================================================================


def payout_delay_days(country: str) -> int:
    """Days between payment confirmation and transfer for an expert country."""
    delays = settings.RECONCILIATION_PAYOUT_DELAY_DAYS
    return int(delays.get((country or "").upper(), delays.get("DEFAULT", 7)))


def reschedule_delayed_transfer(
    session_end: datetime,
    confirmed_at: datetime,
    country: str,
) -> datetime:
    """
    Transfer time for a payment confirmed late through a delayed method.

    The later of the end of the complaint window and the country payout
    delay, moved to the transfer hour (UTC) of that day, or of the next day
    if that hour has already passed.
    """
    complaint_window = timedelta(hours=settings.RECONCILIATION_COMPLAINT_WINDOW_HOURS)
    earliest = max(
        session_end + complaint_window,
        confirmed_at + timedelta(days=payout_delay_days(country)),
    )
    earliest = earliest.astimezone(dt_timezone.utc)
    scheduled = earliest.replace(
        hour=settings.RECONCILIATION_TRANSFER_HOUR_UTC,
        minute=0,
        second=0,
        microsecond=0,
    )
    if scheduled < earliest:
        scheduled += timedelta(days=1)
    return scheduled


def transfer_record_fields(
    plan: TransferPlan,
    payment_intent_id: str,
    currency: str,
    scheduled_transfer_time: datetime | None = None,
) -> dict:
    """Column values of a TransferRecord built from validated metadata."""
    meeting = MeetingService.get_by_payment_intent(payment_intent_id)
    return {
        "stripe_payment_intent_id": payment_intent_id,
        "expert_id": plan.meeting.expert_id,
        "expert_account_id": plan.transfer.account_id,
        "expert_country": plan.transfer.country,
        "event_id": plan.meeting.event_id,
        "meeting": meeting,
        "amount": plan.payment.expert_amount,
        "platform_fee": plan.payment.platform_fee,
        "currency": currency,
        "session_start_time": plan.meeting.start_time,
        "scheduled_transfer_time": scheduled_transfer_time or plan.transfer.scheduled_time,
    }


# =============================================================================
# Service
# =============================================================================


class TransferCreator(BaseService):
    """Records what an expert is owed for a successful payment."""

    def __init__(self, deps: PaymentDependencies):
        self.deps = deps

    def record_successful_payment(
        self,
        intent: PaymentIntentSnapshot,
        now: datetime | None = None,
    ) -> ServiceResult[TransferRecord]:
        """
        Create or promote the TransferRecord of a successful payment.

        Args:
            intent: The succeeded PaymentIntent
            now: Confirmation time (defaults to timezone.now())

        Returns:
            ServiceResult with the TransferRecord

        Error codes:
            INVALID_METADATA: Checkout metadata cannot fund a transfer
        """
        now = now or timezone.now()
        logger = self.get_logger()

        existing = TransferRecord.objects.filter(stripe_payment_intent_id=intent.id).first()
        if existing is None:
            return self._create_record(intent, now)

        if existing.status == TransferStatus.PENDING:
            record, promoted = self._promote_pending(existing.id, intent, now)
            if promoted:
                self._notify_payment_received(record)
            return ServiceResult.success(record)

        logger.info(
            f"Transfer record already {existing.status}, nothing to do",
            extra={
                "payment_intent_id": intent.id,
                "transfer_record_id": str(existing.id),
            },
        )
        return ServiceResult.success(existing)

    def _create_record(
        self,
        intent: PaymentIntentSnapshot,
        now: datetime,
    ) -> ServiceResult[TransferRecord]:
        logger = self.get_logger()
        reversal = PaymentReversal.kind_for(intent.id)

        try:
            plan = TransferPlan.from_checkout(intent.checkout)
        except MetadataValidationError as e:
            logger.error(
                f"Invalid checkout metadata, no transfer recorded: {e}",
                extra={"payment_intent_id": intent.id, "field": e.field},
            )
            return ServiceResult.failure(str(e), error_code="INVALID_METADATA")

        scheduled = plan.transfer.scheduled_time
        if intent.uses_delayed_method(settings.RECONCILIATION_DELAYED_PAYMENT_METHODS):
            session_end = plan.meeting.start_time + timedelta(minutes=plan.meeting.duration_minutes)
            scheduled = reschedule_delayed_transfer(session_end, now, plan.transfer.country)

        try:
            with transaction.atomic():
                record = TransferRecord.objects.create(
                    status=reversal or TransferStatus.READY,
                    stripe_charge_id=intent.latest_charge_id,
                    **transfer_record_fields(plan, intent.id, intent.currency, scheduled),
                )
        except IntegrityError:
            logger.info(
                "Transfer record created concurrently",
                extra={"payment_intent_id": intent.id},
            )
            existing = TransferRecord.objects.get(stripe_payment_intent_id=intent.id)
            if existing.status == TransferStatus.PENDING:
                record, promoted = self._promote_pending(existing.id, intent, now)
                if promoted:
                    self._notify_payment_received(record)
                return ServiceResult.success(record)
            return ServiceResult.success(existing)

        logger.info(
            "Transfer record created",
            extra={
                "payment_intent_id": intent.id,
                "transfer_record_id": str(record.id),
                "status": record.status,
                "amount": record.amount,
                "scheduled_transfer_time": record.scheduled_transfer_time.isoformat(),
            },
        )
        if reversal is None:
            record = self._apply_late_reversal(record)
        if record.status == TransferStatus.READY:
            self._notify_payment_received(record)
        return ServiceResult.success(record)

    def _apply_late_reversal(self, record: TransferRecord) -> TransferRecord:
        """
        Reverse a just-created record if a refund or dispute landed meanwhile.

        The reversal handlers store their PaymentReversal before looking for
        the record, and this runs after the record is committed, so one side
        always sees the other.
        """
        reversal = PaymentReversal.kind_for(record.stripe_payment_intent_id)
        if reversal is None:
            return record

        with transaction.atomic():
            record = lock_row(TransferRecord, record.id)
            if record.status in REVERSIBLE_STATES:
                if reversal == ReversalKind.DISPUTED:
                    record.dispute()
                else:
                    record.refund()
                record.append_note(f"Payment {reversal} while the record was being created")
                record.save()

        self.get_logger().warning(
            f"Payment {reversal} during transfer record creation",
            extra={
                "payment_intent_id": record.stripe_payment_intent_id,
                "transfer_record_id": str(record.id),
            },
        )
        return record

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_fixed(1),
        retry=retry_if_exception_type(DatabaseError),
        reraise=True,
    )
    def _promote_pending(
        self,
        record_id,
        intent: PaymentIntentSnapshot,
        now: datetime,
    ) -> tuple[TransferRecord, bool]:
        """
        PENDING -> READY under a row lock.

        Returns:
            (record, True) if this call made the transition
        """
        with transaction.atomic():
            record = lock_row(TransferRecord, record_id)
            if record.status != TransferStatus.PENDING:
                return record, False

            if intent.uses_delayed_method(settings.RECONCILIATION_DELAYED_PAYMENT_METHODS):
                meeting = intent.checkout.meeting_or_none()
                duration = meeting.duration_minutes if meeting else 0
                record.scheduled_transfer_time = reschedule_delayed_transfer(
                    record.appointment_end_time(duration),
                    now,
                    record.expert_country,
                )
            if record.stripe_charge_id is None and intent.latest_charge_id:
                record.stripe_charge_id = intent.latest_charge_id
            record.mark_ready()
            record.save()

        self.get_logger().info(
            "Pending transfer record confirmed",
            extra={
                "payment_intent_id": intent.id,
                "transfer_record_id": str(record.id),
            },
        )
        return record, True

    def _notify_payment_received(self, record: TransferRecord) -> None:
        self.deps.notifier.notify_expert(
            record.expert_id,
            NotificationType.PAYMENT_RECEIVED,
            {
                "amount": record.amount,
                "currency": record.currency,
                "event_id": record.event_id,
                "session_start_time": record.session_start_time.isoformat(),
                "scheduled_transfer_time": record.scheduled_transfer_time.isoformat(),
            },
            idempotency_key=f"payment_received:{record.id}",
        )
