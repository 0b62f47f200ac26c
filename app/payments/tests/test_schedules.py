"""
Tests for the celery-beat schedule data migration.
"""

import importlib

import pytest
from django.apps import apps
from django.utils.module_loading import import_string
from django_celery_beat.models import PeriodicTask

schedules = importlib.import_module("payments.migrations.0002_add_reconciliation_schedules")


@pytest.mark.django_db
class TestReconciliationSchedules:
    """The daily transfer and payout jobs are scheduled once."""

    def test_creates_daily_tasks(self):
        schedules.create_periodic_tasks(apps, None)
        schedules.create_periodic_tasks(apps, None)

        tasks = {task.task: task for task in PeriodicTask.objects.select_related("crontab")}
        assert len(tasks) == 2

        transfers = tasks["payments.workers.transfer_worker.process_scheduled_transfers"]
        payouts = tasks["payments.workers.payout_worker.process_pending_payouts"]
        assert (transfers.crontab.hour, transfers.crontab.minute) == ("4", "0")
        assert (payouts.crontab.hour, payouts.crontab.minute) == ("6", "0")
        assert transfers.enabled and payouts.enabled

    def test_rollback_removes_tasks(self):
        schedules.create_periodic_tasks(apps, None)

        schedules.remove_periodic_tasks(apps, None)

        assert not PeriodicTask.objects.exists()

    @pytest.mark.parametrize("entry", schedules.SCHEDULES, ids=lambda entry: entry["name"])
    def test_task_paths_resolve(self, entry):
        assert callable(import_string(entry["task"]))
