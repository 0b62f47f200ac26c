"""
Add celery-beat schedules for the daily money-movement jobs.

This migration creates the periodic tasks for:
- process_scheduled_transfers, daily at 04:00 UTC
- process_pending_payouts, daily at 06:00 UTC

Both tasks can also be triggered by the signed scheduler endpoints.
"""

from django.db import migrations

SCHEDULES = [
    {
        "name": "Process Scheduled Transfers",
        "task": "payments.workers.transfer_worker.process_scheduled_transfers",
        "hour": "4",
        "description": (
            "Transfers due expert shares from the platform balance to their "
            "Stripe Connect accounts."
        ),
    },
    {
        "name": "Process Pending Payouts",
        "task": "payments.workers.payout_worker.process_pending_payouts",
        "hour": "6",
        "description": (
            "Pays experts out once the complaint window has passed, then "
            "sweeps manual-schedule Connect accounts."
        ),
    },
]


def create_periodic_tasks(apps, schema_editor):
    """Create the daily crontab schedules and their periodic tasks."""
    CrontabSchedule = apps.get_model("django_celery_beat", "CrontabSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for entry in SCHEDULES:
        schedule, _ = CrontabSchedule.objects.get_or_create(
            minute="0",
            hour=entry["hour"],
            day_of_week="*",
            day_of_month="*",
            month_of_year="*",
            timezone="UTC",
        )
        PeriodicTask.objects.get_or_create(
            name=entry["name"],
            defaults={
                "task": entry["task"],
                "crontab": schedule,
                "enabled": True,
                "description": entry["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[entry["name"] for entry in SCHEDULES],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
