import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("payments", "0002_add_reconciliation_schedules"),
    ]

    operations = [
        migrations.CreateModel(
            name="PaymentReversal",
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
                    "stripe_payment_intent_id",
                    models.CharField(
                        help_text="Stripe PaymentIntent ID (pi_xxx) that was reversed",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[("refunded", "Refunded"), ("disputed", "Disputed")],
                        help_text="Refund or dispute, whichever was seen first",
                        max_length=20,
                    ),
                ),
                (
                    "stripe_object_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Stripe Charge (ch_xxx) or Dispute (dp_xxx) ID",
                        max_length=255,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Reversal",
                "verbose_name_plural": "Payment Reversals",
                "ordering": ["-created_at"],
            },
        ),
    ]
