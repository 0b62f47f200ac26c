"""
Pytest fixtures for webhook tests.

Provides builders for WebhookEvent rows holding Stripe-shaped payloads.
Shared fixtures (deps, consultation_event, ...) live in payments/conftest.py.
"""

import pytest

from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus
from payments.tests.factories import build_event


@pytest.fixture
def make_webhook_event(db):
    """Store a pending WebhookEvent for a Stripe object."""

    def _create(event_type: str, data_object: dict, **kwargs) -> WebhookEvent:
        payload = build_event(event_type, data_object)
        return WebhookEvent.objects.create(
            stripe_event_id=payload["id"],
            event_type=event_type,
            payload=payload,
            status=kwargs.pop("status", WebhookEventStatus.PENDING),
            **kwargs,
        )

    return _create
