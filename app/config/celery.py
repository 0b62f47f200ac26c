"""
Celery application for the reconciliation engine.

Workers run webhook processing and the two scheduled jobs (transfers and
payouts). Periodic schedules live in the database (django-celery-beat) and
are seeded by payments migrations.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Picks up tasks.py in every installed app (payments.tasks re-exports workers)
app.autodiscover_tasks()
