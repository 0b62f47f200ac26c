"""
Payment-specific exceptions.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── PaymentNotFoundError - Expected payment entity is missing
    ├── PaymentValidationError - Invalid amounts or payloads
    │   └── MetadataValidationError - Checkout metadata failed validation
    └── PaymentProcessingError - Provider operation failed
        └── StripeError - Base for all Stripe errors
            ├── StripeCardDeclinedError - Card declined (permanent)
            ├── StripeInsufficientFundsError - Insufficient funds (permanent)
            ├── StripeInvalidAccountError - Invalid Connect account (permanent)
            ├── StripeInvalidRequestError - Invalid request params (permanent)
            ├── StripeRateLimitError - Rate limited (transient)
            ├── StripeAPIUnavailableError - API unavailable (transient)
            └── StripeTimeoutError - Request timeout (transient)

    LockAcquisitionError - Distributed run lock held elsewhere (ConflictError)

Usage:
    from payments.exceptions import MetadataValidationError, StripeError

    try:
        metadata = CheckoutMetadata.parse(intent["metadata"])
    except MetadataValidationError as e:
        logger.error("Invalid metadata", extra={"field": e.field})
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """Base exception for all payment operations."""

    default_error_code: str = "PAYMENT_ERROR"


class PaymentNotFoundError(PaymentError):
    """
    Raised when a payment entity that must exist cannot be found.

    Example:
        raise PaymentNotFoundError(
            f"TransferRecord {record_id} not found",
            details={"transfer_record_id": str(record_id)},
        )
    """

    default_error_code: str = "PAYMENT_NOT_FOUND"


class PaymentValidationError(PaymentError):
    """
    Raised when payment validation fails.

    Use for:
    - Non-positive amounts
    - Invalid currency
    - Business rule violations (schedule before session start)
    """

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"


class MetadataValidationError(PaymentValidationError):
    """
    Raised when checkout metadata attached to a payment is invalid.

    Metadata is written by the checkout flow and read back from webhooks.
    It is validated once at that boundary; nothing downstream receives a
    partially valid payload.

    Attributes:
        field: Dotted path of the offending field (e.g. "transfer.account_id")

    Example:
        raise MetadataValidationError(
            "Scheduled transfer time is not ISO-8601",
            field="transfer.scheduled_time",
        )
    """

    default_error_code: str = "INVALID_METADATA"

    def __init__(
        self,
        message: str,
        field: str,
        details: dict[str, Any] | None = None,
    ):
        details = dict(details or {})
        details["field"] = field
        super().__init__(message, details=details)
        self.field = field


class PaymentProcessingError(PaymentError):
    """Raised when a payment provider operation fails."""

    default_error_code: str = "PAYMENT_PROCESSING_ERROR"


# =============================================================================
# Stripe-Specific Exceptions
# =============================================================================


class StripeError(PaymentProcessingError):
    """
    Base exception for all Stripe-related errors.

    Attributes:
        stripe_code: Stripe's error code (e.g. "balance_insufficient")
        decline_code: Card decline code, if any
        is_retryable: True for transient failures

    The transfer processor persists stripe_code (or "unknown_error") on the
    record and counts the attempt; the next scheduled run retries with the
    same idempotency key.
    """

    default_error_code: str = "STRIPE_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code
        self.decline_code = decline_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry with the same parameters)
# -----------------------------------------------------------------------------


class StripeCardDeclinedError(StripeError):
    """Card was declined by the issuing bank."""

    default_error_code: str = "CARD_DECLINED"


class StripeInsufficientFundsError(StripeError):
    """Insufficient funds on the payment method."""

    default_error_code: str = "INSUFFICIENT_FUNDS"


class StripeInvalidAccountError(StripeError):
    """
    Invalid Stripe Connect account.

    Raised when the destination of a transfer or the account of a payout is
    missing, restricted or not onboarded. Needs manual intervention.
    """

    default_error_code: str = "INVALID_STRIPE_ACCOUNT"


class StripeInvalidRequestError(StripeError):
    """
    Invalid request parameters sent to Stripe.

    Also raised for invalid webhook signatures. Usually indicates a bug or
    a misconfiguration rather than a user error.
    """

    default_error_code: str = "INVALID_STRIPE_REQUEST"


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry with the same idempotency key)
# -----------------------------------------------------------------------------


class StripeRateLimitError(StripeError):
    """Rate limited by the Stripe API."""

    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    """Stripe API temporarily unavailable (network errors, 5xx)."""

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


class StripeTimeoutError(StripeError):
    """
    Stripe API call timed out.

    IMPORTANT: The operation may have succeeded on Stripe's side. Retrying
    with the same idempotency key returns the original result.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Example:
        with DistributedLock("payments:process_transfers", blocking=False):
            ...
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


__all__ = [
    # Payment domain
    "PaymentError",
    "PaymentNotFoundError",
    "PaymentValidationError",
    "MetadataValidationError",
    "PaymentProcessingError",
    # Stripe-specific
    "StripeError",
    "StripeCardDeclinedError",
    "StripeInsufficientFundsError",
    "StripeInvalidAccountError",
    "StripeInvalidRequestError",
    "StripeRateLimitError",
    "StripeAPIUnavailableError",
    "StripeTimeoutError",
    # Concurrency control
    "LockAcquisitionError",
]
