import uuid

import django.db.models.deletion
import django_fsm
from django.db import migrations, models

TRANSFER_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("ready", "Ready"),
    ("approved", "Approved"),
    ("funds_moved", "Funds Moved"),
    ("paid_out", "Paid Out"),
    ("failed", "Failed"),
    ("refunded", "Refunded"),
    ("disputed", "Disputed"),
    ("refund_failed", "Refund Failed"),
]

WEBHOOK_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("processing", "Processing"),
    ("processed", "Processed"),
    ("failed", "Failed"),
]


def _timestamps():
    return [
        (
            "created_at",
            models.DateTimeField(
                auto_now_add=True,
                db_index=True,
                help_text="Timestamp when this record was created",
            ),
        ),
        (
            "updated_at",
            models.DateTimeField(
                auto_now=True,
                help_text="Timestamp when this record was last modified",
            ),
        ),
    ]


def _uuid_pk():
    return (
        "id",
        models.UUIDField(
            default=uuid.uuid4,
            editable=False,
            help_text="Unique identifier for this record",
            primary_key=True,
            serialize=False,
        ),
    )


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("bookings", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="ConnectedAccount",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "expert_id",
                    models.CharField(help_text="Expert owning the account", max_length=255, unique=True),
                ),
                (
                    "stripe_account_id",
                    models.CharField(
                        help_text="Stripe Connect Account ID (acct_xxx)", max_length=255, unique=True
                    ),
                ),
                (
                    "email",
                    models.EmailField(
                        blank=True,
                        default="",
                        help_text="Expert email for payout notifications",
                        max_length=254,
                    ),
                ),
                (
                    "country",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Account country (ISO 3166-1 alpha-2)",
                        max_length=2,
                    ),
                ),
                (
                    "default_currency",
                    models.CharField(
                        default="eur", help_text="Account default currency (lowercase)", max_length=3
                    ),
                ),
                (
                    "payouts_enabled",
                    models.BooleanField(
                        default=False, help_text="Whether Stripe has enabled payouts on this account"
                    ),
                ),
            ],
            options={
                "verbose_name": "Connected Account",
                "verbose_name_plural": "Connected Accounts",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "stripe_event_id",
                    models.CharField(
                        help_text="Stripe Event ID (evt_xxx) - unique constraint for idempotency",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Stripe event type (e.g., 'payment_intent.succeeded')",
                        max_length=100,
                    ),
                ),
                ("payload", models.JSONField(help_text="Full webhook payload from Stripe (JSON)")),
                (
                    "status",
                    models.CharField(
                        choices=WEBHOOK_STATUS_CHOICES,
                        db_index=True,
                        default="pending",
                        help_text="Current processing status",
                        max_length=20,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True, help_text="When event was successfully processed", null=True
                    ),
                ),
                (
                    "error_message",
                    models.TextField(blank=True, help_text="Error message if processing failed", null=True),
                ),
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(default=0, help_text="Number of processing attempts"),
                ),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="payments_we_status_3c1f0a_idx"),
                    models.Index(fields=["status", "retry_count"], name="payments_we_status_9b7e2d_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="TransferRecord",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "stripe_payment_intent_id",
                    models.CharField(
                        help_text="Stripe PaymentIntent ID (pi_xxx) - one record per payment",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "stripe_charge_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Stripe Charge ID (ch_xxx) used as transfer source",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "stripe_transfer_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe Transfer ID (tr_xxx) once funds moved",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "stripe_payout_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe Payout ID (po_xxx) once paid out",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "expert_id",
                    models.CharField(db_index=True, help_text="Expert owed the money", max_length=255),
                ),
                (
                    "expert_account_id",
                    models.CharField(
                        db_index=True,
                        help_text="Expert's Stripe Connect account (acct_xxx)",
                        max_length=255,
                    ),
                ),
                (
                    "expert_country",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Expert country (ISO 3166-1 alpha-2), drives payout delay",
                        max_length=2,
                    ),
                ),
                ("event_id", models.CharField(help_text="Booked event id", max_length=64)),
                (
                    "meeting",
                    models.ForeignKey(
                        blank=True,
                        help_text="Booked session, when known",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transfer_records",
                        to="bookings.bookingmeeting",
                    ),
                ),
                ("amount", models.PositiveBigIntegerField(help_text="Expert share in smallest currency unit")),
                (
                    "currency",
                    models.CharField(
                        default="eur", help_text="ISO 4217 currency code (lowercase)", max_length=3
                    ),
                ),
                (
                    "platform_fee",
                    models.PositiveBigIntegerField(
                        default=0, help_text="Platform share in smallest currency unit"
                    ),
                ),
                ("session_start_time", models.DateTimeField(help_text="Start of the booked session")),
                (
                    "scheduled_transfer_time",
                    models.DateTimeField(help_text="Earliest time the transfer may be created"),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=TRANSFER_STATUS_CHOICES,
                        db_index=True,
                        default="pending",
                        help_text="Current state of the record (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(default=0, help_text="Failed transfer attempts"),
                ),
                (
                    "last_error_code",
                    models.CharField(
                        blank=True,
                        help_text="Provider error code of the last failure",
                        max_length=100,
                        null=True,
                    ),
                ),
                (
                    "last_error_message",
                    models.TextField(
                        blank=True, help_text="Provider error message of the last failure", null=True
                    ),
                ),
                (
                    "requires_approval",
                    models.BooleanField(
                        db_index=True,
                        default=False,
                        help_text="Held for manual review before any transfer",
                    ),
                ),
                (
                    "admin_notes",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Notes from support staff and automated review flags",
                    ),
                ),
                (
                    "funds_moved_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the transfer to the expert account was created",
                        null=True,
                    ),
                ),
                (
                    "paid_out_at",
                    models.DateTimeField(
                        blank=True, help_text="When the payout to the expert bank was created", null=True
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(default=1, help_text="Version incremented on each save"),
                ),
            ],
            options={
                "verbose_name": "Transfer Record",
                "verbose_name_plural": "Transfer Records",
                "ordering": ["scheduled_transfer_time"],
                "indexes": [
                    models.Index(
                        fields=["status", "scheduled_transfer_time"],
                        name="transfer_status_sched_idx",
                    ),
                    models.Index(
                        fields=["expert_account_id", "status"],
                        name="payments_tr_expert__5d2c8e_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(amount__gt=0),
                        name="transfer_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(platform_fee__gte=0),
                        name="transfer_fee_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            scheduled_transfer_time__gte=models.F("session_start_time")
                        ),
                        name="transfer_scheduled_after_session_start",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(stripe_transfer_id__isnull=True)
                        | models.Q(status__in=["funds_moved", "paid_out", "refunded", "disputed"]),
                        name="transfer_id_only_after_funds_moved",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(stripe_payout_id__isnull=True)
                        | models.Q(status="paid_out"),
                        name="payout_id_only_when_paid_out",
                    ),
                ],
            },
        ),
    ]
