"""
Payout processor.

Pays experts from their Stripe Connect balance to their bank account, in two
independent phases:

Phase A (ledger):
    TransferRecords in FUNDS_MOVED are paid out once the appointment ended
    at least 24 hours ago. The 24 hour complaint window is a legal
    requirement and is never shortened. The payout is capped at the
    account's available balance.

Phase B (provider truth):
    Connected accounts on a manual payout schedule may hold balance the
    ledger does not know about. Accounts left alone by Phase A have every
    available balance above the minimum swept into a compliance payout.

Usage:
    summary = PayoutProcessor(deps).run()
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import timedelta
from functools import partial
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from bookings.models import Event
from core.concurrency import fan_out
from core.services import BaseService
from notifications.models import NotificationType
from payments.exceptions import PaymentProcessingError
from payments.locks import lock_row
from payments.models import ConnectedAccount, TransferRecord
from payments.services.transfer_processor import error_code_of
from payments.state_machines import TransferStatus

if TYPE_CHECKING:
    from datetime import datetime
    from typing import Any

    from payments.dependencies import PaymentDependencies

LEDGER = "ledger"
PROVIDER_FALLBACK = "provider_fallback"
MANUAL_PAYOUT_INTERVAL = "manual"


@dataclass
class PayoutAttempt:
    """Outcome of one payout attempt (or skip) in either phase."""

    source: str
    account_id: str
    success: bool
    skipped: bool = False
    transfer_record_id: str | None = None
    payout_id: str | None = None
    amount: int | None = None
    currency: str | None = None
    reason: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


def phase_summary(attempts: list[PayoutAttempt]) -> dict[str, int]:
    successful = sum(1 for attempt in attempts if attempt.success)
    skipped = sum(1 for attempt in attempts if attempt.skipped)
    return {
        "total": len(attempts),
        "successful": successful,
        "failed": len(attempts) - successful - skipped,
        "skipped": skipped,
    }


class PayoutProcessor(BaseService):
    """Creates payouts from connected accounts to expert bank accounts."""

    def __init__(self, deps: PaymentDependencies):
        self.deps = deps

    def run(self, now: datetime | None = None) -> dict[str, Any]:
        """
        Run both phases.

        Returns:
            Summary dict: run_at, ledger_phase, provider_phase,
            total_amount_paid_out, details
        """
        now = now or timezone.now()
        logger = self.get_logger()

        ledger_attempts, touched_accounts = self.run_ledger_phase(now)
        provider_attempts = self.run_provider_phase(now, touched_accounts)

        attempts = ledger_attempts + provider_attempts
        summary = {
            "run_at": now.isoformat(),
            "ledger_phase": phase_summary(ledger_attempts),
            "provider_phase": phase_summary(provider_attempts),
            "total_amount_paid_out": sum(
                attempt.amount or 0 for attempt in attempts if attempt.success
            ),
            "details": [attempt.to_dict() for attempt in attempts],
        }
        logger.info(
            "Payout run complete",
            extra={
                "ledger_phase": summary["ledger_phase"],
                "provider_phase": summary["provider_phase"],
                "total_amount_paid_out": summary["total_amount_paid_out"],
            },
        )
        return summary

    # =========================================================================
    # Phase A: ledger
    # =========================================================================

    def run_ledger_phase(self, now: datetime) -> tuple[list[PayoutAttempt], set[str]]:
        """
        Pay out FUNDS_MOVED records whose complaint window has closed.

        Returns:
            (attempts, accounts attempted in this phase)
        """
        complaint_window = timedelta(hours=settings.RECONCILIATION_COMPLAINT_WINDOW_HOURS)
        records = list(
            TransferRecord.objects.filter(
                status=TransferStatus.FUNDS_MOVED,
                stripe_payout_id__isnull=True,
            )
            .select_related("meeting")
            .order_by("session_start_time")[: settings.RECONCILIATION_BATCH_SIZE]
        )
        durations = dict(
            Event.objects.filter(id__in={record.event_id for record in records}).values_list(
                "id", "duration_minutes"
            )
        )

        attempts: list[PayoutAttempt] = []
        eligible: list[TransferRecord] = []
        for record in records:
            duration = durations.get(record.event_id)
            if duration is None:
                self.get_logger().error(
                    "Event not found, cannot compute appointment end",
                    extra={"transfer_record_id": str(record.id), "event_id": record.event_id},
                )
                attempts.append(
                    PayoutAttempt(
                        source=LEDGER,
                        account_id=record.expert_account_id,
                        success=False,
                        skipped=True,
                        transfer_record_id=str(record.id),
                        reason="event_not_found",
                    )
                )
                continue

            if now - record.appointment_end_time(duration) < complaint_window:
                attempts.append(
                    PayoutAttempt(
                        source=LEDGER,
                        account_id=record.expert_account_id,
                        success=False,
                        skipped=True,
                        transfer_record_id=str(record.id),
                        reason="complaint_window",
                    )
                )
                continue

            eligible.append(record)

        outcomes = fan_out(
            self.pay_out_record,
            eligible,
            max_workers=settings.RECONCILIATION_MAX_WORKERS,
            thread_name_prefix="payouts",
        )
        for outcome in outcomes:
            if outcome.ok:
                attempts.append(outcome.result)
            else:
                attempts.append(
                    PayoutAttempt(
                        source=LEDGER,
                        account_id=outcome.item.expert_account_id,
                        success=False,
                        transfer_record_id=str(outcome.item.id),
                        error=str(outcome.error),
                    )
                )

        touched = {record.expert_account_id for record in eligible}
        return attempts, touched

    def pay_out_record(self, record: TransferRecord) -> PayoutAttempt:
        """
        Pay out one record, capped at the available balance.

        A payout already made for the record (a run that stopped between the
        Stripe call and the ledger write) is adopted instead of creating a
        second one.
        """
        logger = self.get_logger()
        account_id = record.expert_account_id
        log_context = {"transfer_record_id": str(record.id), "stripe_account": account_id}

        try:
            payout = self.deps.stripe.find_payout_for_transfer_record(account_id, str(record.id))
            if payout is not None:
                logger.warning(
                    "Payout already exists for record, adopting it",
                    extra={**log_context, "payout_id": payout.id},
                )
                amount = payout.amount
            else:
                balances = self.deps.stripe.retrieve_available_balance(account_id)
                available = sum(b.amount for b in balances if b.currency == record.currency)
                if available <= 0:
                    raise PaymentProcessingError(
                        "No available balance for payout",
                        error_code="no_available_balance",
                        details=log_context,
                    )

                amount = min(available, record.amount)
                payout = self.deps.stripe.create_payout(
                    account_id=account_id,
                    amount=amount,
                    currency=record.currency,
                    idempotency_key=f"payout:{record.id}",
                    metadata={
                        "transfer_record_id": str(record.id),
                        "payment_intent_id": record.stripe_payment_intent_id,
                        "source": LEDGER,
                    },
                )
        except PaymentProcessingError as e:
            logger.warning(
                f"Ledger payout failed: {e}",
                extra={**log_context, "error_code": error_code_of(e)},
            )
            return PayoutAttempt(
                source=LEDGER,
                account_id=account_id,
                success=False,
                transfer_record_id=str(record.id),
                error=str(e),
            )

        with transaction.atomic():
            locked = lock_row(TransferRecord, record.id)
            paid_out = locked.status == TransferStatus.FUNDS_MOVED and locked.stripe_payout_id is None
            if paid_out:
                locked.mark_paid_out(payout.id)
                locked.save()

        if not paid_out:
            logger.error(
                "Payout made but record changed concurrently, manual review needed",
                extra={**log_context, "payout_id": payout.id, "status": locked.status},
            )
            return PayoutAttempt(
                source=LEDGER,
                account_id=account_id,
                success=False,
                transfer_record_id=str(record.id),
                payout_id=payout.id,
                error="state_changed",
            )

        if amount < record.amount:
            logger.warning(
                "Payout capped at available balance",
                extra={**log_context, "amount": amount, "owed": record.amount},
            )
        logger.info("Ledger payout created", extra={**log_context, "payout_id": payout.id})
        self._notify_payout_sent(record, amount)

        return PayoutAttempt(
            source=LEDGER,
            account_id=account_id,
            success=True,
            transfer_record_id=str(record.id),
            payout_id=payout.id,
            amount=amount,
            currency=record.currency,
        )

    def _notify_payout_sent(self, record: TransferRecord, amount: int) -> None:
        event_name = (
            Event.objects.filter(id=record.event_id).values_list("name", flat=True).first() or ""
        )
        self.deps.notifier.notify_expert(
            record.expert_id,
            NotificationType.PAYOUT_SENT,
            {
                "client_name": record.meeting.guest_name if record.meeting else "",
                "service_name": event_name,
                "appointment_date": record.session_start_time.isoformat(),
                "amount": amount,
                "currency": record.currency,
            },
            idempotency_key=f"payout_sent:{record.id}",
        )

    # =========================================================================
    # Phase B: provider truth
    # =========================================================================

    def run_provider_phase(self, now: datetime, touched_accounts: set[str]) -> list[PayoutAttempt]:
        """
        Sweep manual-schedule accounts Phase A did not touch.

        Accounts still holding FUNDS_MOVED records are also left alone: their
        balance includes money inside the complaint window.
        """
        held_accounts = set(
            TransferRecord.objects.filter(
                status=TransferStatus.FUNDS_MOVED,
                stripe_payout_id__isnull=True,
            ).values_list("expert_account_id", flat=True)
        )
        accounts = list(
            ConnectedAccount.objects.exclude(
                stripe_account_id__in=touched_accounts | held_accounts
            ).order_by("created_at")
        )

        outcomes = fan_out(
            partial(self.sweep_account, now=now),
            accounts,
            max_workers=settings.RECONCILIATION_MAX_WORKERS,
            thread_name_prefix="payout-sweep",
        )

        attempts: list[PayoutAttempt] = []
        for outcome in outcomes:
            if outcome.ok:
                attempts.extend(outcome.result)
            else:
                attempts.append(
                    PayoutAttempt(
                        source=PROVIDER_FALLBACK,
                        account_id=outcome.item.stripe_account_id,
                        success=False,
                        error=str(outcome.error),
                    )
                )
        return attempts

    def sweep_account(self, account: ConnectedAccount, now: datetime) -> list[PayoutAttempt]:
        """Pay out every available balance of a manual-schedule account."""
        logger = self.get_logger()
        account_id = account.stripe_account_id
        minimum = settings.RECONCILIATION_MINIMUM_PAYOUT_AMOUNT

        try:
            info = self.deps.stripe.retrieve_account(account_id)
            if info.payout_interval != MANUAL_PAYOUT_INTERVAL:
                return [
                    PayoutAttempt(
                        source=PROVIDER_FALLBACK,
                        account_id=account_id,
                        success=False,
                        skipped=True,
                        reason="automatic_payout_schedule",
                    )
                ]
            balances = self.deps.stripe.retrieve_available_balance(account_id)
        except PaymentProcessingError as e:
            logger.warning(
                f"Provider sweep failed for account: {e}",
                extra={"stripe_account": account_id, "error_code": error_code_of(e)},
            )
            return [
                PayoutAttempt(
                    source=PROVIDER_FALLBACK,
                    account_id=account_id,
                    success=False,
                    error=str(e),
                )
            ]

        attempts = []
        for balance in balances:
            if balance.amount < minimum:
                continue
            attempts.append(self._compliance_payout(account, balance.amount, balance.currency, now))
        return attempts

    def _compliance_payout(
        self,
        account: ConnectedAccount,
        amount: int,
        currency: str,
        now: datetime,
    ) -> PayoutAttempt:
        logger = self.get_logger()
        account_id = account.stripe_account_id
        idempotency_key = f"compliance-payout:{account_id}:{currency}:{amount}:{now.date().isoformat()}"

        try:
            payout = self.deps.stripe.create_payout(
                account_id=account_id,
                amount=amount,
                currency=currency,
                idempotency_key=idempotency_key,
                metadata={"source": PROVIDER_FALLBACK},
            )
        except PaymentProcessingError as e:
            logger.warning(
                f"Compliance payout failed: {e}",
                extra={"stripe_account": account_id, "amount": amount, "currency": currency},
            )
            return PayoutAttempt(
                source=PROVIDER_FALLBACK,
                account_id=account_id,
                success=False,
                amount=amount,
                currency=currency,
                error=str(e),
            )

        logger.info(
            "Compliance payout created",
            extra={"stripe_account": account_id, "payout_id": payout.id, "amount": amount},
        )
        self.deps.notifier.notify_expert(
            account.expert_id,
            NotificationType.COMPLIANCE_PAYOUT_SENT,
            {"amount": amount, "currency": currency, "payout_id": payout.id},
            idempotency_key=f"compliance_payout_sent:{payout.id}",
        )
        return PayoutAttempt(
            source=PROVIDER_FALLBACK,
            account_id=account_id,
            success=True,
            payout_id=payout.id,
            amount=amount,
            currency=currency,
        )
