"""
Payment adapters for external services.

All Stripe API calls go through StripeAdapter to ensure consistent error
handling, idempotency, and observability.

Usage:
    from payments.adapters import StripeAdapter

    adapter = StripeAdapter.from_settings()
    balances = adapter.retrieve_available_balance("acct_xxx")
"""

from payments.adapters.stripe_adapter import (
    AccountInfo,
    BalanceAmount,
    PayoutResult,
    RefundResult,
    StripeAdapter,
    TransferResult,
    is_retryable_stripe_error,
)

__all__ = [
    "AccountInfo",
    "BalanceAmount",
    "PayoutResult",
    "RefundResult",
    "StripeAdapter",
    "TransferResult",
    "is_retryable_stripe_error",
]
