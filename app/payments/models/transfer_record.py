"""
TransferRecord model - the ledger of money owed to experts.

One TransferRecord exists per paid booking (unique per payment intent). It
tracks the expert's share from payment confirmation, through the transfer
from the platform balance to the expert's Stripe Connect account, to the
payout from that account to the expert's bank.

Usage:
    from payments.models import TransferRecord
    from payments.state_machines import TransferStatus

    with transaction.atomic():
        record = TransferRecord.objects.select_for_update().get(id=record_id)
        if record.status == TransferStatus.PENDING:
            record.mark_ready()
            record.save()

Note:
    The status field is protected: it only changes through the transition
    methods below, never by assignment. Reload instances with
    TransferRecord.objects.get() rather than refresh_from_db().
"""

from __future__ import annotations

from datetime import datetime, timedelta

from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import (
    PRE_TRANSFER_STATES,
    REVERSIBLE_STATES,
    TRANSFERABLE_STATES,
    TransferStatus,
)


class TransferRecord(UUIDPrimaryKeyMixin, BaseModel):
    """
    Money owed to an expert for one paid booking.

    State Flow:
        PENDING -> READY -> FUNDS_MOVED -> PAID_OUT
        READY -> APPROVED -> FUNDS_MOVED (manual review)
        PENDING/READY/APPROVED -> FAILED
        FAILED -> APPROVED (admin re-approval)
        PENDING/READY/APPROVED/FUNDS_MOVED -> REFUNDED / DISPUTED
        PENDING/READY/APPROVED -> REFUND_FAILED

    Fields:
        stripe_payment_intent_id: Payment that funds this record (unique)
        stripe_charge_id: Charge of the payment, used as transfer source
        stripe_transfer_id: Transfer to the expert's account, once made
        stripe_payout_id: Payout to the expert's bank, once made
        expert_id / expert_account_id / expert_country: Who gets paid, where
        event_id / meeting: The booked service and session
        amount: Expert share in minor units (> 0)
        currency: ISO 4217 code, lowercase
        platform_fee: Platform share in minor units (>= 0)
        session_start_time: Start of the booked session
        scheduled_transfer_time: Earliest time the transfer may run
        status: FSM state (protected)
        retry_count / last_error_code / last_error_message: Transfer attempts
        requires_approval / admin_notes: Manual review queue
        version: Incremented on every save

    Note:
        Records are never deleted.
    """

    # ==========================================================================
    # Stripe Identifiers
    # ==========================================================================

    stripe_payment_intent_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe PaymentIntent ID (pi_xxx) - one record per payment",
    )

    stripe_charge_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Stripe Charge ID (ch_xxx) used as transfer source",
    )

    stripe_transfer_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Stripe Transfer ID (tr_xxx) once funds moved",
    )

    stripe_payout_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Stripe Payout ID (po_xxx) once paid out",
    )

    # ==========================================================================
    # Expert & Booking
    # ==========================================================================

    expert_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Expert owed the money",
    )

    expert_account_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Expert's Stripe Connect account (acct_xxx)",
    )

    expert_country = models.CharField(
        max_length=2,
        blank=True,
        default="",
        help_text="Expert country (ISO 3166-1 alpha-2), drives payout delay",
    )

    event_id = models.CharField(
        max_length=64,
        help_text="Booked event id",
    )

    meeting = models.ForeignKey(
        "bookings.BookingMeeting",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="transfer_records",
        help_text="Booked session, when known",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    amount = models.PositiveBigIntegerField(
        help_text="Expert share in smallest currency unit",
    )

    currency = models.CharField(
        max_length=3,
        default="eur",
        help_text="ISO 4217 currency code (lowercase)",
    )

    platform_fee = models.PositiveBigIntegerField(
        default=0,
        help_text="Platform share in smallest currency unit",
    )

    # ==========================================================================
    # Scheduling
    # ==========================================================================

    session_start_time = models.DateTimeField(
        help_text="Start of the booked session",
    )

    scheduled_transfer_time = models.DateTimeField(
        help_text="Earliest time the transfer may be created",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=TransferStatus.PENDING,
        choices=TransferStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the record (managed by FSM)",
    )

    # ==========================================================================
    # Attempts & Review
    # ==========================================================================

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Failed transfer attempts",
    )

    last_error_code = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text="Provider error code of the last failure",
    )

    last_error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Provider error message of the last failure",
    )

    requires_approval = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Held for manual review before any transfer",
    )

    admin_notes = models.TextField(
        blank=True,
        default="",
        help_text="Notes from support staff and automated review flags",
    )

    # ==========================================================================
    # Timestamps & Concurrency
    # ==========================================================================

    funds_moved_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the transfer to the expert account was created",
    )

    paid_out_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payout to the expert bank was created",
    )

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version incremented on each save",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["scheduled_transfer_time"]
        verbose_name = "Transfer Record"
        verbose_name_plural = "Transfer Records"
        indexes = [
            models.Index(
                fields=["status", "scheduled_transfer_time"],
                name="transfer_status_sched_idx",
            ),
            models.Index(
                fields=["expert_account_id", "status"],
                name="payments_tr_expert__5d2c8e_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="transfer_amount_positive",
            ),
            models.CheckConstraint(
                condition=Q(platform_fee__gte=0),
                name="transfer_fee_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(scheduled_transfer_time__gte=F("session_start_time")),
                name="transfer_scheduled_after_session_start",
            ),
            models.CheckConstraint(
                condition=Q(stripe_transfer_id__isnull=True)
                | Q(
                    status__in=[
                        TransferStatus.FUNDS_MOVED,
                        TransferStatus.PAID_OUT,
                        TransferStatus.REFUNDED,
                        TransferStatus.DISPUTED,
                    ]
                ),
                name="transfer_id_only_after_funds_moved",
            ),
            models.CheckConstraint(
                condition=Q(stripe_payout_id__isnull=True) | Q(status=TransferStatus.PAID_OUT),
                name="payout_id_only_when_paid_out",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.amount / 100:.2f} {self.currency.upper()}"
        return f"TransferRecord({self.stripe_payment_intent_id}, {self.status}, {amount_display})"

    def save(self, *args, **kwargs):
        """Save with version auto-increment."""
        is_update = self.pk and not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(field=status, source=TransferStatus.PENDING, target=TransferStatus.READY)
    def mark_ready(self):
        """
        Payment confirmed for a record created while the payment was pending.

        Transition: PENDING -> READY
        """

    @transition(
        field=status,
        source=[TransferStatus.READY, TransferStatus.FAILED],
        target=TransferStatus.APPROVED,
    )
    def approve(self, note: str = ""):
        """
        Admin approval for transfer.

        Transition: READY/FAILED -> APPROVED

        Clears the review flag and the failure history so the next
        scheduled run retries with a fresh attempt count.
        """
        self.requires_approval = False
        self.retry_count = 0
        self.last_error_code = None
        self.last_error_message = None
        if note:
            self.append_note(note)

    @transition(
        field=status,
        source=TRANSFERABLE_STATES,
        target=TransferStatus.FUNDS_MOVED,
    )
    def mark_funds_moved(self, transfer_id: str):
        """
        Transfer to the expert's Connect account exists.

        Transition: READY/APPROVED -> FUNDS_MOVED

        Args:
            transfer_id: Stripe Transfer ID (created or adopted)
        """
        self.stripe_transfer_id = transfer_id
        self.funds_moved_at = timezone.now()
        self.last_error_code = None
        self.last_error_message = None

    @transition(
        field=status,
        source=TransferStatus.FUNDS_MOVED,
        target=TransferStatus.PAID_OUT,
    )
    def mark_paid_out(self, payout_id: str):
        """
        Payout to the expert's bank exists.

        Transition: FUNDS_MOVED -> PAID_OUT (terminal)
        """
        self.stripe_payout_id = payout_id
        self.paid_out_at = timezone.now()

    @transition(field=status, source=PRE_TRANSFER_STATES, target=TransferStatus.FAILED)
    def fail(self, error_code: str | None = None, error_message: str | None = None):
        """
        Payment failed or transfer attempts exhausted.

        Transition: PENDING/READY/APPROVED -> FAILED
        """
        if error_code:
            self.last_error_code = error_code
        if error_message:
            self.last_error_message = error_message

    @transition(field=status, source=REVERSIBLE_STATES, target=TransferStatus.REFUNDED)
    def refund(self):
        """
        Payment refunded before the expert was paid out.

        Transition: PENDING/READY/APPROVED/FUNDS_MOVED -> REFUNDED (terminal)
        """

    @transition(field=status, source=REVERSIBLE_STATES, target=TransferStatus.DISPUTED)
    def dispute(self):
        """
        Chargeback opened before the expert was paid out.

        Transition: PENDING/READY/APPROVED/FUNDS_MOVED -> DISPUTED (terminal)
        """

    @transition(field=status, source=PRE_TRANSFER_STATES, target=TransferStatus.REFUND_FAILED)
    def mark_refund_failed(self, error_code: str | None = None, error_message: str | None = None):
        """
        Conflict refund rejected by the provider.

        Transition: PENDING/READY/APPROVED -> REFUND_FAILED (terminal)

        The guest still holds a refund claim, so the expert must never be
        paid for this booking. The record waits for manual resolution.
        """
        self.requires_approval = True
        self.last_error_code = error_code
        self.last_error_message = error_message

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def append_note(self, note: str) -> None:
        """Append a timestamped line to admin_notes (does not save)."""
        stamp = timezone.now().strftime("%Y-%m-%d %H:%M")
        line = f"[{stamp}] {note}"
        self.admin_notes = f"{self.admin_notes}\n{line}" if self.admin_notes else line

    def appointment_end_time(self, duration_minutes: int) -> datetime:
        return self.session_start_time + timedelta(minutes=duration_minutes)

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            TransferStatus.PAID_OUT,
            TransferStatus.REFUNDED,
            TransferStatus.DISPUTED,
            TransferStatus.REFUND_FAILED,
        )
