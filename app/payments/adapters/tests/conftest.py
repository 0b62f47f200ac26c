"""
Pytest fixtures for Stripe adapter tests.

This module provides fixtures for testing the Stripe adapter, including
mock Stripe API responses and error conditions.

Sections:
    - Adapter Fixtures
    - Mock Stripe Resource Fixtures
    - Error Fixtures
"""

from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from payments.adapters import StripeAdapter


# =============================================================================
# Adapter Fixtures
# =============================================================================


@pytest.fixture
def adapter():
    """Adapter with explicit test credentials."""
    return StripeAdapter(api_key="sk_test_adapter", webhook_secret="whsec_adapter")


# =============================================================================
# Mock Stripe Resource Fixtures
# =============================================================================


@pytest.fixture
def mock_stripe_payment_intent():
    """Mock stripe.PaymentIntent API."""
    with patch("stripe.PaymentIntent") as mock:
        mock.retrieve.return_value = SimpleNamespace(id="pi_test123", latest_charge="ch_test123")
        yield mock


@pytest.fixture
def mock_stripe_charge():
    """Mock stripe.Charge API."""
    with patch("stripe.Charge") as mock:
        mock.retrieve.return_value = SimpleNamespace(
            id="ch_test123",
            transfer=None,
            payment_intent="pi_test123",
        )
        yield mock


@pytest.fixture
def mock_stripe_transfer():
    """Mock stripe.Transfer API."""
    with patch("stripe.Transfer") as mock:
        mock.create.return_value = SimpleNamespace(
            id="tr_test123",
            amount=9000,
            currency="eur",
            destination="acct_dest123",
        )
        mock.list.return_value = SimpleNamespace(data=[])
        yield mock


@pytest.fixture
def mock_stripe_refund():
    """Mock stripe.Refund API."""
    with patch("stripe.Refund") as mock:
        mock.create.return_value = SimpleNamespace(
            id="re_test123",
            amount=9000,
            currency="eur",
            status="succeeded",
            payment_intent="pi_test123",
        )
        yield mock


@pytest.fixture
def mock_stripe_payout():
    """Mock stripe.Payout API."""
    with patch("stripe.Payout") as mock:
        mock.create.return_value = SimpleNamespace(
            id="po_test123",
            amount=9000,
            currency="eur",
            status="pending",
        )
        mock.list.return_value = SimpleNamespace(data=[])
        yield mock


@pytest.fixture
def mock_stripe_balance():
    """Mock stripe.Balance API with EUR and USD available."""
    with patch("stripe.Balance") as mock:
        mock.retrieve.return_value = SimpleNamespace(
            available=[
                SimpleNamespace(amount=12000, currency="eur"),
                SimpleNamespace(amount=500, currency="USD"),
            ]
        )
        yield mock


@pytest.fixture
def mock_stripe_account():
    """Mock stripe.Account API for a manual payout schedule."""
    with patch("stripe.Account") as mock:
        mock.retrieve.return_value = SimpleNamespace(
            id="acct_dest123",
            payouts_enabled=True,
            metadata={"expert_id": "expert_1"},
            settings=SimpleNamespace(
                payouts=SimpleNamespace(schedule=SimpleNamespace(interval="manual"))
            ),
        )
        yield mock


@pytest.fixture
def mock_stripe_webhook():
    """Mock stripe.Webhook API."""
    with patch("stripe.Webhook") as mock:
        yield mock


# =============================================================================
# Error Fixtures
# =============================================================================


@pytest.fixture
def card_error():
    """Create a Stripe CardError."""

    def _create(
        message: str = "Your card was declined.",
        code: str = "card_declined",
        decline_code: str | None = "generic_decline",
    ) -> stripe.CardError:
        error = stripe.CardError(message=message, param=None, code=code)
        error.decline_code = decline_code
        return error

    return _create


@pytest.fixture
def invalid_request_error():
    """Create a Stripe InvalidRequestError."""

    def _create(
        message: str = "Invalid parameter",
        param: str | None = "amount",
        code: str | None = "parameter_invalid",
    ) -> stripe.InvalidRequestError:
        return stripe.InvalidRequestError(message=message, param=param, code=code)

    return _create
