"""
Root URL configuration.

URL Structure:
    /                                      - ReDoc API documentation
    /schema/                               - OpenAPI schema
    /admin/                                - Django admin (transfer review queue)
    /health/                               - Health check
    /api/v1/payments/
        webhooks/stripe/                   - Stripe webhook endpoint (POST)
        cron/process-transfers/            - Signed scheduler trigger (POST)
        cron/process-payouts/              - Signed scheduler trigger (POST)
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
api_v1_patterns = [
    path("payments/", include("payments.urls")),
]

urlpatterns = [
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    path("admin/", admin.site.urls),
    path("health/", health_check, name="health_check"),
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Reconciliation Admin"
admin.site.site_title = "Reconciliation"
admin.site.index_title = "Transfers, payouts and webhook events"
