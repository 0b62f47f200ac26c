"""
Tests for payments app.

This package contains test modules for:
- test_models.py: TransferRecord, WebhookEvent, ConnectedAccount
- test_state_transitions.py: TransferRecord transitions and event ordering
- test_transfer_creator.py / test_transfer_processor.py: Transfers
- test_payout_processor.py: Ledger and provider payout phases
- test_views.py: Signed scheduler endpoints
- test_integration.py: Voucher booking from payment to payout

Usage:
    pytest payments/tests/
    pytest payments/tests/test_payout_processor.py
"""
