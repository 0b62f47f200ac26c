"""
Pytest fixtures shared by all payment test packages.

Usage:
    def test_transfer(deps, due_record):
        deps.stripe.get_latest_charge_id.return_value = "ch_123"
        TransferProcessor(deps).run()
"""

from unittest.mock import MagicMock

import pytest

from bookings.tests.factories import EventFactory, SchedulingSettingsFactory
from payments.adapters import StripeAdapter
from payments.dependencies import PaymentDependencies
from payments.services.notifier import PaymentNotifier
from payments.tests.factories import ConnectedAccountFactory


@pytest.fixture(autouse=True)
def inline_workers(settings):
    """Run fan-out work inline; the in-memory test database is per-thread."""
    settings.RECONCILIATION_MAX_WORKERS = 0


@pytest.fixture
def stripe_adapter():
    """Mock Stripe adapter with a spec so typos in method names fail loudly."""
    adapter = MagicMock(spec=StripeAdapter)
    adapter.find_transfer_for_charge.return_value = None
    adapter.find_payout_for_transfer_record.return_value = None
    adapter.get_latest_charge_id.return_value = "ch_test_0001"
    return adapter


@pytest.fixture
def calendar():
    """Conferencing gateway returning a fixed link."""
    gateway = MagicMock()
    gateway.create_conference.return_value = "https://meet.example.com/default"
    return gateway


@pytest.fixture
def deps(stripe_adapter, calendar):
    """Dependencies with mocked Stripe and calendar, real notifications."""
    return PaymentDependencies(
        stripe=stripe_adapter,
        notifier=PaymentNotifier(),
        calendar=calendar,
    )


@pytest.fixture
def consultation_event(db):
    """The event referenced by build_checkout_metadata()."""
    return EventFactory(id="evt_consultation", expert_id="expert_1", duration_minutes=60)


@pytest.fixture
def scheduling_settings(db):
    """24 hour minimum notice for expert_1."""
    return SchedulingSettingsFactory(expert_id="expert_1", minimum_notice_minutes=1440)


@pytest.fixture
def connected_account(db):
    """Connect account for expert_1."""
    return ConnectedAccountFactory(
        expert_id="expert_1",
        stripe_account_id="acct_expert0001",
        email="expert1@example.com",
    )
