"""
Root pytest configuration for the Django project.

Sets environment defaults so the suite runs without external services
(in-memory SQLite, eager Celery) and configures Django before collection.
App-specific fixtures are defined in each app's tests/conftest.py.
"""

import os

import django

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://:memory:")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "true")
os.environ.setdefault("SECURE_SSL_REDIRECT", "false")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_reconciliation")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_reconciliation")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()
