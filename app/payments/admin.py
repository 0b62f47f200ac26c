"""
Payment admin configuration.

Registers the reconciliation models with the Django admin. The
TransferRecord admin is the manual review queue: records that need a
human (refund failures, exhausted transfer retries) are filtered by
requires_approval and released with the approve_for_transfer action.
"""

from django.contrib import admin, messages
from django.db import transaction

from payments.locks import lock_row
from payments.models import ConnectedAccount, PaymentReversal, TransferRecord, WebhookEvent
from payments.state_machines import TransferStatus

__all__ = [
    "ConnectedAccountAdmin",
    "PaymentReversalAdmin",
    "TransferRecordAdmin",
    "WebhookEventAdmin",
]

APPROVABLE_STATES = (TransferStatus.READY, TransferStatus.FAILED)


# =============================================================================
# Transfer Record Admin
# =============================================================================


@admin.register(TransferRecord)
class TransferRecordAdmin(admin.ModelAdmin):
    """
    Admin configuration for TransferRecord.

    Status only changes through transitions, so it is read-only here along
    with every Stripe identifier.
    """

    list_display = [
        "id",
        "stripe_payment_intent_id",
        "expert_id",
        "amount",
        "currency",
        "status",
        "requires_approval",
        "retry_count",
        "scheduled_transfer_time",
    ]
    list_filter = ["status", "requires_approval", "currency"]
    search_fields = ["id", "stripe_payment_intent_id", "expert_id", "expert_account_id"]
    readonly_fields = [
        "id",
        "status",
        "stripe_payment_intent_id",
        "stripe_charge_id",
        "stripe_transfer_id",
        "stripe_payout_id",
        "retry_count",
        "last_error_code",
        "last_error_message",
        "funds_moved_at",
        "paid_out_at",
        "version",
        "created_at",
        "updated_at",
    ]
    ordering = ["scheduled_transfer_time"]
    actions = ["approve_for_transfer"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "status", "requires_approval", "admin_notes"),
            },
        ),
        (
            "Booking",
            {
                "fields": ("event_id", "meeting", "session_start_time", "scheduled_transfer_time"),
            },
        ),
        (
            "Expert",
            {
                "fields": ("expert_id", "expert_account_id", "expert_country"),
            },
        ),
        (
            "Amounts",
            {
                "fields": ("amount", "platform_fee", "currency"),
            },
        ),
        (
            "Stripe",
            {
                "fields": (
                    "stripe_payment_intent_id",
                    "stripe_charge_id",
                    "stripe_transfer_id",
                    "stripe_payout_id",
                ),
            },
        ),
        (
            "Errors",
            {
                "fields": ("retry_count", "last_error_code", "last_error_message"),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("funds_moved_at", "paid_out_at", "created_at", "updated_at", "version"),
                "classes": ("collapse",),
            },
        ),
    )

    @admin.action(description="Approve selected records for transfer")
    def approve_for_transfer(self, request, queryset):
        """Move ready or failed records to approved so the next run transfers them."""
        approved = 0
        skipped = 0
        for record_id in queryset.values_list("id", flat=True):
            with transaction.atomic():
                record = lock_row(TransferRecord, record_id)
                if record.status not in APPROVABLE_STATES:
                    skipped += 1
                    continue
                record.approve(note=f"Approved for transfer by {request.user}")
                record.save()
                approved += 1

        self.message_user(request, f"Approved {approved} transfer records.")
        if skipped:
            self.message_user(
                request,
                f"Skipped {skipped} records not in a ready or failed state.",
                level=messages.WARNING,
            )

    def has_add_permission(self, request) -> bool:
        """Records are created from webhooks only."""
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for transfer records (audit trail)."""
        return False


# =============================================================================
# Connected Account Admin
# =============================================================================


@admin.register(ConnectedAccount)
class ConnectedAccountAdmin(admin.ModelAdmin):
    """
    Admin configuration for ConnectedAccount.

    Provides visibility into the experts' Stripe Connect accounts.
    """

    list_display = [
        "expert_id",
        "stripe_account_id",
        "email",
        "country",
        "default_currency",
        "payouts_enabled",
        "created_at",
    ]
    list_filter = ["payouts_enabled", "country"]
    search_fields = ["expert_id", "stripe_account_id", "email"]
    readonly_fields = ["created_at", "updated_at"]
    ordering = ["-created_at"]


@admin.register(PaymentReversal)
class PaymentReversalAdmin(admin.ModelAdmin):
    """Refunds and disputes recorded per PaymentIntent. Read-only."""

    list_display = ["stripe_payment_intent_id", "kind", "stripe_object_id", "created_at"]
    list_filter = ["kind"]
    search_fields = ["stripe_payment_intent_id", "stripe_object_id"]
    readonly_fields = ["stripe_payment_intent_id", "kind", "stripe_object_id", "created_at", "updated_at"]
    ordering = ["-created_at"]


# =============================================================================
# Webhook Event Admin
# =============================================================================


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Provides visibility into webhook processing for debugging.
    Events are read-only except for status (for manual retry).
    """

    list_display = [
        "stripe_event_id",
        "event_type",
        "status",
        "retry_count",
        "created_at",
        "processed_at",
    ]
    list_filter = ["status", "event_type"]
    search_fields = ["stripe_event_id", "event_type"]
    readonly_fields = [
        "id",
        "stripe_event_id",
        "event_type",
        "payload",
        "processed_at",
        "error_message",
        "retry_count",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        """Disable adding webhook events through admin."""
        return False
