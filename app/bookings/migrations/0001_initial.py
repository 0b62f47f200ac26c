import uuid

import django.db.models.deletion
from django.db import migrations, models


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

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Event",
            fields=[
                *_timestamps(),
                (
                    "id",
                    models.CharField(
                        help_text="External event id",
                        max_length=64,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "expert_id",
                    models.CharField(
                        db_index=True, help_text="Expert offering this event", max_length=255
                    ),
                ),
                ("name", models.CharField(help_text="Service name", max_length=255)),
                (
                    "duration_minutes",
                    models.PositiveIntegerField(help_text="Session length in minutes"),
                ),
            ],
            options={
                "db_table": "bookings_event",
                "ordering": ["name"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(duration_minutes__gt=0),
                        name="event_duration_positive",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="SchedulingSettings",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                *_timestamps(),
                (
                    "expert_id",
                    models.CharField(
                        help_text="Expert these settings belong to",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "minimum_notice_minutes",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Minimum notice in minutes (null uses the default)",
                        null=True,
                    ),
                ),
            ],
            options={
                "db_table": "bookings_scheduling_settings",
                "verbose_name_plural": "scheduling settings",
            },
        ),
        migrations.CreateModel(
            name="BookingMeeting",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "expert_id",
                    models.CharField(
                        db_index=True, help_text="Expert holding the session", max_length=255
                    ),
                ),
                ("guest_email", models.EmailField(help_text="Guest email", max_length=254)),
                (
                    "guest_name",
                    models.CharField(
                        blank=True, default="", help_text="Guest display name", max_length=255
                    ),
                ),
                (
                    "guest_locale",
                    models.CharField(
                        default="en",
                        help_text="Guest language for notifications",
                        max_length=10,
                    ),
                ),
                ("start_time", models.DateTimeField(db_index=True, help_text="Session start")),
                (
                    "stripe_payment_intent_id",
                    models.CharField(
                        blank=True,
                        help_text="Stripe PaymentIntent paying for this session",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                            ("refunded", "Refunded"),
                            ("refund_failed", "Refund failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Payment state of the session",
                        max_length=20,
                    ),
                ),
                (
                    "meeting_url",
                    models.URLField(
                        blank=True, default="", help_text="Conferencing link", max_length=500
                    ),
                ),
                (
                    "calendar_creation_claimed",
                    models.BooleanField(
                        default=False,
                        help_text="Whether a worker has claimed conferencing link creation",
                    ),
                ),
                (
                    "event",
                    models.ForeignKey(
                        help_text="Booked service",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="meetings",
                        to="bookings.event",
                    ),
                ),
            ],
            options={
                "db_table": "bookings_meeting",
                "ordering": ["start_time"],
                "indexes": [
                    models.Index(
                        fields=["expert_id", "payment_status", "start_time"],
                        name="meeting_expert_status_idx",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="SlotReservation",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "expert_id",
                    models.CharField(
                        db_index=True, help_text="Expert whose slot is held", max_length=255
                    ),
                ),
                ("guest_email", models.EmailField(help_text="Guest holding the slot", max_length=254)),
                ("start_time", models.DateTimeField(help_text="Slot start")),
                ("expires_at", models.DateTimeField(db_index=True, help_text="When the hold lapses")),
                (
                    "stripe_payment_intent_id",
                    models.CharField(
                        help_text="Stripe PaymentIntent the hold belongs to",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event",
                    models.ForeignKey(
                        help_text="Service being booked",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="reservations",
                        to="bookings.event",
                    ),
                ),
            ],
            options={
                "db_table": "bookings_slot_reservation",
                "ordering": ["start_time"],
            },
        ),
    ]
