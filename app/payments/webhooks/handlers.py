"""
Webhook event handlers for Stripe events.

This module provides a handler registry and implementations for
processing the Stripe webhook events the reconciliation engine acts on.

The handler registry allows:
- Clean separation between event routing and handling
- Easy extension for new event types
- Centralized error handling

Handlers are safe to re-run: every write is a conditional update under a
row lock, every notification carries an idempotency key, and no database
transaction spans a Stripe call.

Usage:
    from payments.webhooks.handlers import dispatch_webhook, register_handler

    # Register a custom handler
    @register_handler("custom.event")
    def handle_custom_event(webhook_event, deps) -> ServiceResult:
        ...

    # Dispatch an event to its handler
    result = dispatch_webhook(webhook_event, PaymentDependencies.from_settings())
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from bookings.models import Event, MeetingPaymentStatus
from bookings.services import MeetingService
from core.services import ServiceResult
from notifications.models import NotificationType
from payments.exceptions import MetadataValidationError
from payments.metadata import CheckoutMetadata, PaymentIntentSnapshot, TransferPlan
from payments.models import PaymentReversal, ReversalKind, TransferRecord, WebhookEvent
from payments.services import (
    ConflictDetector,
    RefundPolicyService,
    TransferCreator,
)
from payments.services.transfer_creator import transfer_record_fields
from payments.state_machines import REVERSIBLE_STATES, TransferStatus

if TYPE_CHECKING:
    from payments.dependencies import PaymentDependencies
    from payments.metadata import MeetingMetadata


logger = logging.getLogger(__name__)

WebhookHandler = Callable[[WebhookEvent, "PaymentDependencies"], ServiceResult]


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, WebhookHandler] = {}


def register_handler(event_type: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    Usage:
        @register_handler("payment_intent.succeeded")
        def handle_payment_succeeded(webhook_event, deps) -> ServiceResult:
            ...

    Args:
        event_type: The Stripe event type (e.g., "payment_intent.succeeded")

    Returns:
        Decorator function that registers the handler
    """

    def decorator(func: WebhookHandler) -> WebhookHandler:
        WEBHOOK_HANDLERS[event_type] = func
        logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent, deps: PaymentDependencies) -> ServiceResult:
    """
    Dispatch a webhook event to the appropriate handler.

    Looks up the handler by event type and calls it. If no handler
    is registered, logs and returns success (to avoid failing on
    unknown events). An exception raised by a handler is logged and
    returned as a HANDLER_ERROR failure, so one event never blocks others.

    Args:
        webhook_event: The WebhookEvent to process
        deps: External collaborators

    Returns:
        ServiceResult from the handler, or success if no handler
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"stripe_event_id": webhook_event.stripe_event_id},
    )

    try:
        return handler(webhook_event, deps)
    except Exception as e:
        logger.exception(
            f"Webhook handler for {webhook_event.event_type} raised",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.failure(str(e), error_code="HANDLER_ERROR")


def _invalid_payload(webhook_event: WebhookEvent, what: str) -> ServiceResult:
    logger.error(
        f"{webhook_event.event_type}: Could not extract {what}",
        extra={"stripe_event_id": webhook_event.stripe_event_id},
    )
    return ServiceResult.failure(
        f"Could not extract {what} from webhook",
        error_code="INVALID_WEBHOOK_PAYLOAD",
    )


def _snapshot(webhook_event: WebhookEvent) -> PaymentIntentSnapshot | None:
    """Parse the event's PaymentIntent, or None if its metadata is unusable."""
    try:
        return PaymentIntentSnapshot.from_stripe(webhook_event.get_object())
    except MetadataValidationError as e:
        logger.error(
            f"{webhook_event.event_type}: invalid metadata: {e}",
            extra={
                "stripe_event_id": webhook_event.stripe_event_id,
                "payment_intent_id": webhook_event.get_object_id(),
                "field": e.field,
            },
        )
        return None


# =============================================================================
# Payment Intent Handlers
# =============================================================================


@register_handler("payment_intent.succeeded")
def handle_payment_succeeded(webhook_event: WebhookEvent, deps: PaymentDependencies) -> ServiceResult:
    """
    Handle successful payment confirmation.

    Pipeline:
        1. Parse the PaymentIntent
        2. Delayed method with valid meeting metadata, first confirmation
           only: check for a booking conflict; on conflict refund the guest
           and stop
        3. Record the expert's share (TransferCreator)
        4. Unless the payment was refunded or disputed meanwhile, confirm the
           meeting (payment status, slot hold, conference link) and tell the
           guest

    Returns success whenever the event was handled, including idempotent
    no-ops and invalid metadata, so a checkout bug does not cause endless
    redelivery.
    """
    if not webhook_event.get_object_id():
        return _invalid_payload(webhook_event, "payment_intent_id")

    intent = _snapshot(webhook_event)
    if intent is None:
        return ServiceResult.success({"recorded": False, "reason": "invalid_metadata"})

    logger.info(
        "Processing payment_intent.succeeded",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "payment_intent_id": intent.id,
            "amount": intent.amount,
            "payment_method_types": list(intent.payment_method_types),
        },
    )

    meeting = intent.checkout.meeting_or_none()
    if (
        meeting is not None
        and intent.uses_delayed_method(settings.RECONCILIATION_DELAYED_PAYMENT_METHODS)
        and not _already_confirmed(intent.id)
    ):
        conflict = ConflictDetector().check(
            expert_id=meeting.expert_id,
            start_time=meeting.start_time,
            event_id=meeting.event_id,
            exclude_payment_intent_id=intent.id,
        )
        if conflict.has_conflict:
            refund = RefundPolicyService(deps).refund_for_conflict(intent, meeting, conflict)
            return ServiceResult.success(
                {
                    "conflict": conflict.reason.value,
                    "refunded": refund.success,
                }
            )

    result = TransferCreator(deps).record_successful_payment(intent)

    reversal = PaymentReversal.kind_for(intent.id)
    if reversal is not None:
        logger.warning(
            f"Payment already {reversal}, meeting not confirmed",
            extra={"payment_intent_id": intent.id},
        )
        MeetingService.release_reservation(intent.id)
    else:
        _confirm_meeting(intent, meeting, deps)

    return ServiceResult.success(
        {
            "recorded": result.success,
            "transfer_record_id": str(result.data.id) if result.success else None,
            "error_code": result.error_code,
            "reversed": reversal,
        }
    )


def _already_confirmed(payment_intent_id: str) -> bool:
    """
    True once an earlier delivery confirmed the payment.

    A confirmed booking is never re-checked for conflicts: the minimum
    notice shrinks as time passes, so a redelivered event would otherwise
    refund a valid booking.
    """
    status = (
        TransferRecord.objects.filter(stripe_payment_intent_id=payment_intent_id)
        .values_list("status", flat=True)
        .first()
    )
    if status not in (None, TransferStatus.PENDING):
        return True
    booking = MeetingService.get_by_payment_intent(payment_intent_id)
    return booking is not None and booking.payment_status == MeetingPaymentStatus.SUCCEEDED


def _confirm_meeting(
    intent: PaymentIntentSnapshot,
    meeting: MeetingMetadata | None,
    deps: PaymentDependencies,
) -> None:
    """Payment side effects on the booked meeting. Safe to repeat."""
    if meeting is not None:
        booking = MeetingService.ensure_meeting(
            payment_intent_id=intent.id,
            event_id=meeting.event_id,
            expert_id=meeting.expert_id,
            guest_email=meeting.guest_email,
            guest_name=meeting.guest_name,
            start_time=meeting.start_time,
            locale=meeting.locale,
        )
    else:
        booking = MeetingService.get_by_payment_intent(intent.id)

    MeetingService.mark_payment_succeeded(intent.id)
    MeetingService.release_reservation(intent.id)

    if booking is None:
        return
    booking.refresh_from_db(fields=["payment_status", "meeting_url"])
    if booking.payment_status != MeetingPaymentStatus.SUCCEEDED:
        return

    meeting_url = booking.meeting_url or MeetingService.ensure_conference_link(booking, deps.calendar)

    deps.notifier.notify_guest(
        booking.guest_email,
        NotificationType.PAYMENT_CONFIRMED_GUEST,
        {
            "guest_name": booking.guest_name,
            "event_name": _event_name(booking.event_id),
            "session_start_time": booking.start_time.isoformat(),
            "amount": intent.amount,
            "currency": intent.currency,
            "meeting_url": meeting_url,
        },
        idempotency_key=f"payment_confirmed_guest:{intent.id}",
        locale=booking.guest_locale,
    )


def _event_name(event_id: str) -> str:
    return Event.objects.filter(id=event_id).values_list("name", flat=True).first() or ""


@register_handler("payment_intent.payment_failed")
def handle_payment_failed(webhook_event: WebhookEvent, deps: PaymentDependencies) -> ServiceResult:
    """
    Handle payment failure notification.

    Marks the meeting failed (unless it already succeeded or was refunded),
    fails a PENDING or READY TransferRecord keeping Stripe's error, and
    tells the guest and the expert.
    """
    data_object = webhook_event.get_object()
    payment_intent_id = data_object.get("id")
    if not payment_intent_id:
        return _invalid_payload(webhook_event, "payment_intent_id")

    last_error = data_object.get("last_payment_error") or {}
    error_code = last_error.get("code") or "payment_failed"
    error_message = last_error.get("message") or "Payment failed"

    logger.info(
        "Processing payment_intent.payment_failed",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "payment_intent_id": payment_intent_id,
            "reason": error_message,
        },
    )

    MeetingService.set_payment_status(
        payment_intent_id,
        MeetingPaymentStatus.FAILED,
        exclude_statuses=(
            MeetingPaymentStatus.SUCCEEDED,
            MeetingPaymentStatus.REFUNDED,
            MeetingPaymentStatus.REFUND_FAILED,
        ),
    )

    with transaction.atomic():
        record = (
            TransferRecord.objects.select_for_update()
            .filter(stripe_payment_intent_id=payment_intent_id)
            .first()
        )
        failed = record is not None and record.status in (
            TransferStatus.PENDING,
            TransferStatus.READY,
        )
        if failed:
            record.fail(error_code, error_message)
            record.save()

    _notify_guest_of_failure(webhook_event, payment_intent_id, error_code, deps)

    if not failed:
        logger.info(
            "No pending transfer record to fail",
            extra={"payment_intent_id": payment_intent_id},
        )
        return ServiceResult.success(None)

    deps.notifier.notify_expert(
        record.expert_id,
        NotificationType.PAYMENT_FAILED,
        {
            "amount": record.amount,
            "currency": record.currency,
            "error_code": error_code,
            "session_start_time": record.session_start_time.isoformat(),
        },
        idempotency_key=f"payment_failed:{record.id}",
    )
    return ServiceResult.success(record)


def _notify_guest_of_failure(
    webhook_event: WebhookEvent,
    payment_intent_id: str,
    error_code: str,
    deps: PaymentDependencies,
) -> None:
    """Ask the guest to retry, unless the payment was settled some other way."""
    booking = MeetingService.get_by_payment_intent(payment_intent_id)
    if booking is not None and booking.payment_status != MeetingPaymentStatus.FAILED:
        return

    data_object = webhook_event.get_object()
    try:
        meeting = CheckoutMetadata.from_intent_metadata(data_object.get("metadata")).meeting_or_none()
    except MetadataValidationError:
        meeting = None
    if meeting is None:
        logger.info(
            "Failed payment without guest details, guest not notified",
            extra={"payment_intent_id": payment_intent_id},
        )
        return

    deps.notifier.notify_guest(
        meeting.guest_email,
        NotificationType.PAYMENT_FAILED_GUEST,
        {
            "guest_name": meeting.guest_name,
            "event_name": _event_name(meeting.event_id),
            "session_start_time": meeting.start_time.isoformat(),
            "amount": data_object.get("amount", 0),
            "currency": data_object.get("currency", ""),
            "error_code": error_code,
        },
        idempotency_key=f"payment_failed_guest:{payment_intent_id}",
        locale=meeting.locale,
    )


@register_handler("payment_intent.requires_action")
def handle_payment_requires_action(
    webhook_event: WebhookEvent,
    deps: PaymentDependencies,
) -> ServiceResult:
    """
    Handle a voucher issued for a delayed payment method.

    Holds the slot until the voucher expires, sends the guest the voucher
    details and records the expert's share as a PENDING TransferRecord,
    promoted to READY when the payment succeeds. Invalid metadata is logged
    and does not fail the event.
    """
    if not webhook_event.get_object_id():
        return _invalid_payload(webhook_event, "payment_intent_id")

    intent = _snapshot(webhook_event)
    if intent is None:
        return ServiceResult.success(None)

    if not intent.uses_delayed_method(settings.RECONCILIATION_DELAYED_PAYMENT_METHODS):
        logger.info(
            "Action required for a non-delayed method, nothing to hold",
            extra={"payment_intent_id": intent.id},
        )
        return ServiceResult.success(None)

    meeting = intent.checkout.meeting_or_none()
    if meeting is None:
        logger.error(
            "Voucher issued without valid meeting metadata",
            extra={"payment_intent_id": intent.id},
        )
        return ServiceResult.success(None)

    if PaymentReversal.kind_for(intent.id) is not None:
        logger.info(
            "Voucher event for a reversed payment, slot not held",
            extra={"payment_intent_id": intent.id},
        )
        return ServiceResult.success(None)

    expires_at = voucher_expires_at(intent)
    MeetingService.hold_slot(
        payment_intent_id=intent.id,
        event_id=meeting.event_id,
        expert_id=meeting.expert_id,
        guest_email=meeting.guest_email,
        start_time=meeting.start_time,
        expires_at=expires_at,
    )
    _notify_guest_of_voucher(intent, meeting, expires_at, deps)

    try:
        plan = TransferPlan.from_checkout(intent.checkout)
    except MetadataValidationError as e:
        logger.error(
            f"Invalid checkout metadata, no pending transfer recorded: {e}",
            extra={"payment_intent_id": intent.id, "field": e.field},
        )
        return ServiceResult.success(None)

    if TransferRecord.objects.filter(stripe_payment_intent_id=intent.id).exists():
        return ServiceResult.success(None)

    try:
        with transaction.atomic():
            record = TransferRecord.objects.create(
                status=TransferStatus.PENDING,
                **transfer_record_fields(plan, intent.id, intent.currency),
            )
    except IntegrityError:
        logger.info(
            "Pending transfer record created concurrently",
            extra={"payment_intent_id": intent.id},
        )
        return ServiceResult.success(None)

    logger.info(
        "Pending transfer record created for voucher payment",
        extra={"payment_intent_id": intent.id, "transfer_record_id": str(record.id)},
    )
    return ServiceResult.success(record)


def voucher_expires_at(intent: PaymentIntentSnapshot) -> datetime:
    """Voucher expiry from next_action, else the configured hold period."""
    expires_at = _voucher_details(intent).get("expires_at")
    if isinstance(expires_at, (int, float)) and not isinstance(expires_at, bool):
        return datetime.fromtimestamp(expires_at, tz=dt_timezone.utc)
    return timezone.now() + timedelta(hours=settings.RECONCILIATION_SLOT_RESERVATION_HOURS)


def _voucher_details(intent: PaymentIntentSnapshot) -> dict:
    next_action = intent.next_action or {}
    return next_action.get("multibanco_display_details") or {}


def _notify_guest_of_voucher(
    intent: PaymentIntentSnapshot,
    meeting: MeetingMetadata,
    expires_at: datetime,
    deps: PaymentDependencies,
) -> None:
    details = _voucher_details(intent)
    deps.notifier.notify_guest(
        meeting.guest_email,
        NotificationType.VOUCHER_ISSUED_GUEST,
        {
            "guest_name": meeting.guest_name,
            "event_name": _event_name(meeting.event_id),
            "session_start_time": meeting.start_time.isoformat(),
            "amount": intent.amount,
            "currency": intent.currency,
            "entity": details.get("entity", ""),
            "reference": details.get("reference", ""),
            "hosted_voucher_url": details.get("hosted_voucher_url", ""),
            "expires_at": expires_at.isoformat(),
        },
        idempotency_key=f"voucher_issued_guest:{intent.id}",
        locale=meeting.locale,
    )


# =============================================================================
# Charge Handlers
# =============================================================================


def _payment_intent_of(data_object: dict, charge_id: str | None, deps: PaymentDependencies) -> str | None:
    payment_intent_id = data_object.get("payment_intent")
    if isinstance(payment_intent_id, dict):
        payment_intent_id = payment_intent_id.get("id")
    if not payment_intent_id and charge_id:
        payment_intent_id = deps.stripe.get_payment_intent_for_charge(charge_id)
    return payment_intent_id


@register_handler("charge.refunded")
def handle_charge_refunded(webhook_event: WebhookEvent, deps: PaymentDependencies) -> ServiceResult:
    """
    Handle refund notification from Stripe.

    Fired for refunds initiated here (conflict refunds) and from the Stripe
    dashboard. Stores the reversal, marks the meeting refunded and reverses
    a TransferRecord that has not been paid out. A paid-out record is left
    alone: that money must be recovered out of band.

    The reversal is stored before the record is looked up, so a
    payment_intent.succeeded delivered later (or concurrently) creates its
    record already REFUNDED and does not confirm the meeting.
    """
    data_object = webhook_event.get_object()
    charge_id = data_object.get("id")
    payment_intent_id = _payment_intent_of(data_object, charge_id, deps)
    if not payment_intent_id:
        return _invalid_payload(webhook_event, "payment_intent")

    logger.info(
        "Processing charge.refunded",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "charge_id": charge_id,
            "payment_intent_id": payment_intent_id,
            "amount_refunded": data_object.get("amount_refunded", 0),
        },
    )

    PaymentReversal.remember(payment_intent_id, ReversalKind.REFUNDED, stripe_object_id=charge_id or "")
    MeetingService.set_payment_status(payment_intent_id, MeetingPaymentStatus.REFUNDED)
    MeetingService.release_reservation(payment_intent_id)

    with transaction.atomic():
        record = (
            TransferRecord.objects.select_for_update()
            .filter(stripe_payment_intent_id=payment_intent_id)
            .first()
        )
        refunded = record is not None and record.status in REVERSIBLE_STATES
        if refunded:
            record.refund()
            record.save()

    if record is None:
        logger.info(
            "Refund recorded before any transfer record",
            extra={"payment_intent_id": payment_intent_id},
        )
        return ServiceResult.success(None)

    if not refunded:
        if record.status == TransferStatus.PAID_OUT:
            logger.warning(
                "Charge refunded after expert payout, recover out of band",
                extra={"payment_intent_id": payment_intent_id, "transfer_record_id": str(record.id)},
            )
        else:
            logger.info(
                f"Transfer record already {record.status}, nothing to reverse",
                extra={"payment_intent_id": payment_intent_id},
            )
        return ServiceResult.success(record)

    deps.notifier.notify_expert(
        record.expert_id,
        NotificationType.PAYMENT_REFUNDED,
        {
            "amount": record.amount,
            "currency": record.currency,
            "amount_refunded": data_object.get("amount_refunded", 0),
            "session_start_time": record.session_start_time.isoformat(),
        },
        idempotency_key=f"payment_refunded:{record.id}",
    )
    return ServiceResult.success(record)


@register_handler("charge.dispute.created")
def handle_dispute_created(webhook_event: WebhookEvent, deps: PaymentDependencies) -> ServiceResult:
    """
    Handle a chargeback.

    Stores the reversal, freezes a TransferRecord that has not been paid
    out in DISPUTED and alerts the expert once per dispute. A dispute seen
    before the payment succeeded makes the later record start DISPUTED.
    """
    data_object = webhook_event.get_object()
    dispute_id = data_object.get("id")
    charge_id = data_object.get("charge")
    if isinstance(charge_id, dict):
        charge_id = charge_id.get("id")
    payment_intent_id = _payment_intent_of(data_object, charge_id, deps)
    if not dispute_id or not payment_intent_id:
        return _invalid_payload(webhook_event, "dispute payment_intent")

    logger.warning(
        "Processing charge.dispute.created",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "dispute_id": dispute_id,
            "payment_intent_id": payment_intent_id,
            "reason": data_object.get("reason"),
        },
    )

    PaymentReversal.remember(payment_intent_id, ReversalKind.DISPUTED, stripe_object_id=dispute_id)

    with transaction.atomic():
        record = (
            TransferRecord.objects.select_for_update()
            .filter(stripe_payment_intent_id=payment_intent_id)
            .first()
        )
        if record is not None and record.status in REVERSIBLE_STATES:
            record.dispute()
            record.append_note(f"Dispute {dispute_id} opened")
            record.save()

    if record is None:
        logger.info(
            "Dispute recorded before any transfer record",
            extra={"payment_intent_id": payment_intent_id},
        )
        return ServiceResult.success(None)

    deps.notifier.notify_expert(
        record.expert_id,
        NotificationType.DISPUTE_OPENED,
        {
            "dispute_id": dispute_id,
            "amount": data_object.get("amount", record.amount),
            "currency": data_object.get("currency", record.currency),
            "reason": data_object.get("reason", ""),
            "session_start_time": record.session_start_time.isoformat(),
        },
        idempotency_key=f"dispute_opened:{dispute_id}",
    )
    return ServiceResult.success(record)
