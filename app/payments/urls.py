"""
URL configuration for the payments app.

Routes:
    - POST /webhooks/stripe/ - Stripe webhook endpoint
    - POST /cron/process-transfers/ - Signed scheduler trigger for transfers
    - POST /cron/process-payouts/ - Signed scheduler trigger for payouts

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("payments/", include("payments.urls")),
    ]
"""

from django.urls import path

from payments.views import ProcessPayoutsView, ProcessTransfersView
from payments.webhooks.views import stripe_webhook

app_name = "payments"

urlpatterns = [
    # Webhook endpoints
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    # Scheduler endpoints
    path("cron/process-transfers/", ProcessTransfersView.as_view(), name="cron_process_transfers"),
    path("cron/process-payouts/", ProcessPayoutsView.as_view(), name="cron_process_payouts"),
]
