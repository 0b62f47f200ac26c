"""
Scheduled transfer processor.

Moves experts' shares from the platform balance to their Stripe Connect
accounts once each TransferRecord's scheduled time has passed.

Safety:
    - The transfer idempotency key is the TransferRecord id, so a retried
      run can never create a second transfer for the same record
    - Before creating a transfer, the charge is checked for an existing one
      (duplicate-guard); if found it is adopted instead
    - The status is re-read under a short row lock just before the Stripe
      call, so a record refunded since the candidate query is skipped
    - Status writes happen under a row lock after re-checking the state

Usage:
    summary = TransferProcessor(deps).run()
    # {"run_at": ..., "total": 3, "successful": 2, "failed": 1, "details": [...]}
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from core.concurrency import fan_out
from core.services import BaseService
from notifications.models import NotificationType
from payments.exceptions import PaymentProcessingError
from payments.locks import lock_row
from payments.models import TransferRecord
from payments.state_machines import TRANSFERABLE_STATES, TransferStatus

if TYPE_CHECKING:
    from datetime import datetime
    from typing import Any

    from django.db.models import QuerySet

    from payments.dependencies import PaymentDependencies


@dataclass
class TransferAttempt:
    """Outcome of processing one TransferRecord."""

    transfer_record_id: str
    success: bool
    status: str
    transfer_id: str | None = None
    adopted_existing: bool = False
    error: str | None = None
    retry_count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


def error_code_of(error: BaseException) -> str:
    """Provider code of an error, else its application code, else unknown_error."""
    return (
        getattr(error, "stripe_code", None)
        or getattr(error, "error_code", None)
        or "unknown_error"
    )


class TransferProcessor(BaseService):
    """Creates provider transfers for due TransferRecords."""

    def __init__(self, deps: PaymentDependencies):
        self.deps = deps

    @staticmethod
    def candidates(now: datetime) -> QuerySet[TransferRecord]:
        """Records due for transfer: ready and past schedule, or admin approved."""
        return (
            TransferRecord.objects.filter(
                Q(
                    status=TransferStatus.READY,
                    scheduled_transfer_time__lte=now,
                    requires_approval=False,
                )
                | Q(status=TransferStatus.APPROVED)
            )
            .filter(stripe_transfer_id__isnull=True)
            .order_by("scheduled_transfer_time")
        )

    def run(self, now: datetime | None = None) -> dict[str, Any]:
        """
        Process every due record independently.

        Returns:
            Summary dict: run_at, total, successful, failed, details
        """
        now = now or timezone.now()
        logger = self.get_logger()

        records = list(self.candidates(now)[: settings.RECONCILIATION_BATCH_SIZE])
        logger.info(f"Processing {len(records)} scheduled transfers", extra={"run_at": now.isoformat()})

        outcomes = fan_out(
            self.process_record,
            records,
            max_workers=settings.RECONCILIATION_MAX_WORKERS,
            thread_name_prefix="transfers",
        )

        details = []
        for outcome in outcomes:
            if outcome.ok:
                details.append(outcome.result)
            else:
                details.append(
                    TransferAttempt(
                        transfer_record_id=str(outcome.item.id),
                        success=False,
                        status=outcome.item.status,
                        error=str(outcome.error),
                    )
                )

        successful = sum(1 for attempt in details if attempt.success)
        summary = {
            "run_at": now.isoformat(),
            "total": len(details),
            "successful": successful,
            "failed": len(details) - successful,
            "details": [attempt.to_dict() for attempt in details],
        }
        logger.info(
            f"Scheduled transfers complete: {successful}/{len(details)} succeeded",
            extra={key: summary[key] for key in ("total", "successful", "failed")},
        )
        return summary

    def process_record(self, record: TransferRecord) -> TransferAttempt:
        """Re-check the status, resolve the charge, guard against duplicates, then transfer."""
        log_context = {
            "transfer_record_id": str(record.id),
            "payment_intent_id": record.stripe_payment_intent_id,
        }

        skipped = self._skip_if_changed(record.id)
        if skipped is not None:
            return skipped

        try:
            charge_id = record.stripe_charge_id or self.deps.stripe.get_latest_charge_id(
                record.stripe_payment_intent_id
            )
            if not charge_id:
                raise PaymentProcessingError(
                    "PaymentIntent has no charge to fund the transfer",
                    error_code="missing_charge",
                    details=log_context,
                )
            if charge_id != record.stripe_charge_id:
                TransferRecord.objects.filter(id=record.id).update(
                    stripe_charge_id=charge_id,
                    version=F("version") + 1,
                )

            transfer_id = self.deps.stripe.find_transfer_for_charge(charge_id)
            adopted = transfer_id is not None
            if adopted:
                self.get_logger().warning(
                    "Transfer already exists for charge, adopting it",
                    extra={**log_context, "transfer_id": transfer_id},
                )
            else:
                transfer = self.deps.stripe.create_transfer(
                    amount=record.amount,
                    currency=record.currency,
                    destination=record.expert_account_id,
                    source_transaction=charge_id,
                    idempotency_key=str(record.id),
                    metadata={
                        "transfer_record_id": str(record.id),
                        "payment_intent_id": record.stripe_payment_intent_id,
                        "expert_id": record.expert_id,
                        "event_id": record.event_id,
                    },
                )
                transfer_id = transfer.id
        except Exception as e:
            return self._record_failure(record.id, e)

        return self._record_success(record.id, transfer_id, adopted)

    def _skip_if_changed(self, record_id) -> TransferAttempt | None:
        """
        Re-read the record under a short row lock before calling Stripe.

        A refund or dispute handled since the candidate query leaves the
        record untransferable; it is skipped rather than funded. The lock is
        released before the Stripe call.
        """
        with transaction.atomic():
            record = lock_row(TransferRecord, record_id)
            transferable = record.status in TRANSFERABLE_STATES and record.stripe_transfer_id is None

        if transferable:
            return None

        self.get_logger().info(
            f"Transfer record now {record.status}, skipped",
            extra={"transfer_record_id": str(record_id)},
        )
        return TransferAttempt(
            transfer_record_id=str(record_id),
            success=False,
            status=record.status,
            error="state_changed",
        )

    def _record_success(self, record_id, transfer_id: str, adopted: bool) -> TransferAttempt:
        logger = self.get_logger()

        with transaction.atomic():
            record = lock_row(TransferRecord, record_id)
            if record.status in TRANSFERABLE_STATES and record.stripe_transfer_id is None:
                record.mark_funds_moved(transfer_id)
                record.save()
                moved = True
            else:
                moved = False

        if not moved:
            logger.error(
                "Transfer made but record changed concurrently, manual review needed",
                extra={
                    "transfer_record_id": str(record_id),
                    "transfer_id": transfer_id,
                    "status": record.status,
                },
            )
            return TransferAttempt(
                transfer_record_id=str(record_id),
                success=False,
                status=record.status,
                transfer_id=transfer_id,
                adopted_existing=adopted,
                error="state_changed",
            )

        logger.info(
            "Funds moved to expert account",
            extra={
                "transfer_record_id": str(record_id),
                "transfer_id": transfer_id,
                "adopted_existing": adopted,
            },
        )
        self.deps.notifier.notify_expert(
            record.expert_id,
            NotificationType.TRANSFER_SENT,
            {
                "amount": record.amount,
                "currency": record.currency,
                "transfer_id": transfer_id,
                "event_id": record.event_id,
                "session_start_time": record.session_start_time.isoformat(),
            },
            idempotency_key=f"transfer_sent:{record.id}",
        )
        return TransferAttempt(
            transfer_record_id=str(record_id),
            success=True,
            status=record.status,
            transfer_id=transfer_id,
            adopted_existing=adopted,
        )

    def _record_failure(self, record_id, error: Exception) -> TransferAttempt:
        logger = self.get_logger()
        error_code = error_code_of(error)
        max_retries = settings.RECONCILIATION_TRANSFER_MAX_RETRIES

        with transaction.atomic():
            record = lock_row(TransferRecord, record_id)
            if record.status not in TRANSFERABLE_STATES or record.stripe_transfer_id:
                return TransferAttempt(
                    transfer_record_id=str(record_id),
                    success=False,
                    status=record.status,
                    error=str(error),
                )

            record.retry_count += 1
            record.last_error_code = error_code
            record.last_error_message = str(error)
            exhausted = record.retry_count >= max_retries
            if exhausted:
                record.fail(error_code, str(error))
            record.save()

        log_extra = {
            "transfer_record_id": str(record_id),
            "error_code": error_code,
            "retry_count": record.retry_count,
        }
        if exhausted:
            logger.error(f"Transfer failed permanently: {error}", extra=log_extra)
            self.deps.notifier.notify_expert(
                record.expert_id,
                NotificationType.TRANSFER_FAILED,
                {
                    "amount": record.amount,
                    "currency": record.currency,
                    "error_code": error_code,
                    "session_start_time": record.session_start_time.isoformat(),
                },
                idempotency_key=f"transfer_failed:{record.id}",
            )
        else:
            logger.warning(
                f"Transfer attempt {record.retry_count}/{max_retries} failed: {error}",
                extra=log_extra,
            )

        return TransferAttempt(
            transfer_record_id=str(record_id),
            success=False,
            status=record.status,
            error=str(error),
            retry_count=record.retry_count,
        )
