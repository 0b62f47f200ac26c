"""
Project-wide pytest configuration for the Django apps.

App-specific fixtures are defined in each app's tests/conftest.py.
"""

import pytest


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full payment-to-payout journeys)
    - test_views.py, test_handlers.py, test_*processor.py, etc. → integration
    - test_models.py, test_metadata.py, test_stripe_adapter.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_services.py",
        "test_tasks.py",
        "test_handlers.py",
        "test_workers.py",
        "test_transfer_creator.py",
        "test_transfer_processor.py",
        "test_payout_processor.py",
        "test_conflict_detector.py",
        "test_refund_policy.py",
        "test_admin.py",
        "test_schedules.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_metadata.py",
        "test_stripe_adapter.py",
        "test_state_transitions.py",
        "test_locks.py",
        "test_concurrency.py",
        "test_heartbeat.py",
    ]

    for item in items:
        # Skip if test already has unit/integration/e2e marker
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)
