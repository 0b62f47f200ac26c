"""
Payments app configuration.

This app provides the payment reconciliation engine:
- Stripe webhook ingestion and handlers
- TransferRecord ledger of what experts are owed
- Scheduled transfers and payouts
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
