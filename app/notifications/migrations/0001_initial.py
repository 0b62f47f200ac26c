import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Notification",
            fields=[
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
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "notification_type",
                    models.CharField(
                        choices=[
                            ("payment_received", "Payment received"),
                            ("payment_failed", "Payment failed"),
                            ("payment_refunded", "Payment refunded"),
                            ("dispute_opened", "Dispute opened"),
                            ("booking_refunded_expert", "Booking conflict refund (expert)"),
                            ("booking_refunded_guest", "Booking conflict refund (guest)"),
                            ("transfer_failed", "Transfer failed"),
                            ("payout_sent", "Payout sent"),
                            ("compliance_payout_sent", "Compliance payout sent"),
                        ],
                        db_index=True,
                        help_text="Kind of notification",
                        max_length=50,
                    ),
                ),
                (
                    "recipient_id",
                    models.CharField(
                        db_index=True,
                        help_text="External id of the recipient",
                        max_length=255,
                    ),
                ),
                (
                    "recipient_email",
                    models.EmailField(
                        blank=True,
                        default="",
                        help_text="Email address used for delivery",
                        max_length=254,
                    ),
                ),
                (
                    "locale",
                    models.CharField(
                        default="en", help_text="Recipient language (BCP 47)", max_length=10
                    ),
                ),
                (
                    "data",
                    models.JSONField(
                        blank=True, default=dict, help_text="Structured values for rendering"
                    ),
                ),
                (
                    "idempotency_key",
                    models.CharField(
                        blank=True,
                        help_text="Idempotency key preventing duplicate notifications",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "delivery_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("sent", "Sent"),
                            ("failed", "Failed"),
                            ("skipped", "Skipped"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Email delivery state",
                        max_length=20,
                    ),
                ),
                (
                    "sent_at",
                    models.DateTimeField(
                        blank=True, help_text="When the notification was delivered", null=True
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(blank=True, default="", help_text="Last delivery error"),
                ),
                (
                    "attempt_count",
                    models.PositiveIntegerField(
                        default=0, help_text="Number of delivery attempts"
                    ),
                ),
            ],
            options={
                "db_table": "notifications_notification",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["recipient_id", "-created_at"],
                        name="notif_recipient_created_idx",
                    )
                ],
            },
        ),
    ]
