"""
Stripe API adapter for reconciliation operations.

This module provides the StripeAdapter class which encapsulates all
Stripe API interactions. All Stripe calls should go through this
adapter to ensure consistent error handling, idempotency, and
observability.

Features:
- Explicit instances: the API key is passed on every request, there is
  no module-level client state to mutate
- Automatic error translation to domain exceptions
- Structured logging with timing metrics
- Idempotency keys on every write

Configuration (via settings, read by from_settings()):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret

Usage:
    from payments.adapters import StripeAdapter

    stripe_adapter = StripeAdapter.from_settings()

    charge_id = stripe_adapter.get_latest_charge_id("pi_xxx")
    existing = stripe_adapter.find_transfer_for_charge(charge_id)
    if existing is None:
        result = stripe_adapter.create_transfer(
            amount=9000,
            currency="eur",
            destination="acct_xxx",
            source_transaction=charge_id,
            idempotency_key=str(record.id),
        )
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import stripe
from django.conf import settings

from payments.exceptions import (
    StripeAPIUnavailableError,
    StripeCardDeclinedError,
    StripeError,
    StripeInsufficientFundsError,
    StripeInvalidAccountError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
)

if TYPE_CHECKING:
    from collections.abc import Callable

# Recent payouts scanned by the payout duplicate-guard (Stripe list maximum)
PAYOUT_LOOKUP_LIMIT = 100


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class TransferResult:
    """
    Result from Stripe Transfer operations.

    Attributes:
        id: Transfer ID (tr_xxx)
        amount: Amount transferred in minor units
        currency: Currency code
        destination_account: Destination Stripe account ID
    """

    id: str
    amount: int
    currency: str
    destination_account: str


@dataclass
class RefundResult:
    """
    Result from Stripe Refund operations.

    Attributes:
        id: Refund ID (re_xxx)
        amount: Refunded amount in minor units
        currency: Currency code
        status: Refund status (succeeded, pending, failed)
        payment_intent_id: Original PaymentIntent ID
    """

    id: str
    amount: int
    currency: str
    status: str
    payment_intent_id: str


@dataclass
class PayoutResult:
    """
    Result from Stripe Payout operations.

    Attributes:
        id: Payout ID (po_xxx)
        amount: Paid out amount in minor units
        currency: Currency code
        status: Payout status (pending, in_transit, paid, failed)
        account_id: Connected account the payout was made from
    """

    id: str
    amount: int
    currency: str
    status: str
    account_id: str


@dataclass
class BalanceAmount:
    """Available balance in one currency of a connected account."""

    amount: int
    currency: str


@dataclass
class AccountInfo:
    """
    Connected account details relevant to payouts.

    Attributes:
        id: Stripe account ID (acct_xxx)
        payout_interval: Payout schedule interval (manual, daily, weekly, ...)
        payouts_enabled: Whether the account can receive payouts
        metadata: Account metadata
    """

    id: str
    payout_interval: str | None
    payouts_enabled: bool
    metadata: dict[str, str] = field(default_factory=dict)


def _id_of(value: Any) -> str | None:
    """Return the id of an expandable field (string id or expanded object)."""
    if value is None or isinstance(value, str):
        return value
    return getattr(value, "id", None)


def is_retryable_stripe_error(error: Exception) -> bool:
    """
    Check if a Stripe error is transient.

    Transient errors are safe to retry with the same idempotency key.
    """
    if isinstance(error, StripeError):
        return getattr(error, "is_retryable", False)
    return False


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations.

    Instances hold the API key and webhook secret and pass them explicitly
    on each call. Thread-safe for use from Celery workers and the
    reconciliation fan-out pool.

    Usage:
        adapter = StripeAdapter(api_key="sk_test_xxx", webhook_secret="whsec_xxx")
        balances = adapter.retrieve_available_balance("acct_xxx")
    """

    def __init__(self, api_key: str, webhook_secret: str = ""):
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    @classmethod
    def from_settings(cls) -> StripeAdapter:
        """Build an adapter from Django settings."""
        return cls(
            api_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        )

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    def _execute(
        self,
        log_context: dict[str, Any],
        call: Callable[[], Any],
        level: int = logging.INFO,
    ) -> Any:
        """
        Run one Stripe call with timing logs and error translation.

        Raises:
            StripeError: Translated from any Stripe SDK exception
        """
        logger = self.get_logger()
        start_time = time.time()
        logger.log(level, "Starting Stripe operation", extra=log_context)

        try:
            response = call()
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self._handle_stripe_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.log(
            level,
            "Stripe operation completed",
            extra={**log_context, "duration_ms": duration_ms},
        )
        return response

    # =========================================================================
    # Reads
    # =========================================================================

    def get_latest_charge_id(self, payment_intent_id: str) -> str | None:
        """
        Return the latest charge of a PaymentIntent, or None if it has none.
        """
        intent = self._execute(
            {"operation": "retrieve_payment_intent", "payment_intent_id": payment_intent_id},
            lambda: stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self.api_key),
            level=logging.DEBUG,
        )
        return _id_of(getattr(intent, "latest_charge", None))

    def get_payment_intent_for_charge(self, charge_id: str) -> str | None:
        """Return the PaymentIntent a charge belongs to."""
        charge = self._execute(
            {"operation": "retrieve_charge", "charge_id": charge_id},
            lambda: stripe.Charge.retrieve(charge_id, api_key=self.api_key),
            level=logging.DEBUG,
        )
        return _id_of(getattr(charge, "payment_intent", None))

    def find_transfer_for_charge(self, charge_id: str) -> str | None:
        """
        Return the id of a transfer already funded by this charge, if any.

        Checks the charge's own transfer link first, then lists transfers
        by source transaction. Used as the duplicate-guard before creating
        a transfer.
        """
        charge = self._execute(
            {"operation": "retrieve_charge", "charge_id": charge_id, "expand": "transfer"},
            lambda: stripe.Charge.retrieve(
                charge_id,
                expand=["transfer"],
                api_key=self.api_key,
            ),
            level=logging.DEBUG,
        )
        transfer_id = _id_of(getattr(charge, "transfer", None))
        if transfer_id:
            return transfer_id

        transfers = self._execute(
            {"operation": "list_transfers", "source_transaction": charge_id},
            lambda: stripe.Transfer.list(
                source_transaction=charge_id,
                limit=1,
                api_key=self.api_key,
            ),
            level=logging.DEBUG,
        )
        data = getattr(transfers, "data", None) or []
        return data[0].id if data else None

    def retrieve_available_balance(self, account_id: str) -> list[BalanceAmount]:
        """Return the available balance entries of a connected account."""
        balance = self._execute(
            {"operation": "retrieve_balance", "stripe_account": account_id},
            lambda: stripe.Balance.retrieve(api_key=self.api_key, stripe_account=account_id),
        )
        return [
            BalanceAmount(amount=int(entry.amount), currency=str(entry.currency).lower())
            for entry in (getattr(balance, "available", None) or [])
        ]

    def retrieve_account(self, account_id: str) -> AccountInfo:
        """Return payout-relevant details of a connected account."""
        account = self._execute(
            {"operation": "retrieve_account", "stripe_account": account_id},
            lambda: stripe.Account.retrieve(account_id, api_key=self.api_key),
            level=logging.DEBUG,
        )
        account_settings = getattr(account, "settings", None)
        payouts = getattr(account_settings, "payouts", None)
        schedule = getattr(payouts, "schedule", None)
        return AccountInfo(
            id=account.id,
            payout_interval=getattr(schedule, "interval", None),
            payouts_enabled=bool(getattr(account, "payouts_enabled", False)),
            metadata=dict(getattr(account, "metadata", None) or {}),
        )

    # =========================================================================
    # Writes
    # =========================================================================

    def create_transfer(
        self,
        amount: int,
        currency: str,
        destination: str,
        source_transaction: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> TransferResult:
        """
        Transfer funds from the platform balance to a connected account.

        Args:
            amount: Amount in minor units
            currency: ISO 4217 code
            destination: Connected account ID (acct_xxx)
            source_transaction: Charge that funds the transfer (ch_xxx)
            idempotency_key: Stable key, the TransferRecord id
            metadata: Optional metadata dict

        Raises:
            StripeInvalidAccountError: Destination account invalid
            StripeError: Other Stripe failures
        """
        log_context = {
            "operation": "create_transfer",
            "amount": amount,
            "currency": currency,
            "destination": destination,
            "source_transaction": source_transaction,
            "idempotency_key": idempotency_key,
        }
        transfer = self._execute(
            log_context,
            lambda: stripe.Transfer.create(
                amount=amount,
                currency=currency,
                destination=destination,
                source_transaction=source_transaction,
                metadata=metadata or {},
                idempotency_key=idempotency_key,
                api_key=self.api_key,
            ),
        )
        return TransferResult(
            id=transfer.id,
            amount=transfer.amount,
            currency=transfer.currency,
            destination_account=_id_of(transfer.destination) or destination,
        )

    def create_refund(
        self,
        payment_intent_id: str,
        amount: int,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
        reason: str = "requested_by_customer",
    ) -> RefundResult:
        """
        Refund part or all of a PaymentIntent.

        Raises:
            StripeInvalidRequestError: Refund not possible
        """
        log_context = {
            "operation": "create_refund",
            "payment_intent_id": payment_intent_id,
            "amount": amount,
            "idempotency_key": idempotency_key,
        }
        refund = self._execute(
            log_context,
            lambda: stripe.Refund.create(
                payment_intent=payment_intent_id,
                amount=amount,
                reason=reason,
                metadata=metadata or {},
                idempotency_key=idempotency_key,
                api_key=self.api_key,
            ),
        )
        return RefundResult(
            id=refund.id,
            amount=refund.amount,
            currency=refund.currency,
            status=refund.status,
            payment_intent_id=_id_of(refund.payment_intent) or payment_intent_id,
        )

    def create_payout(
        self,
        account_id: str,
        amount: int,
        currency: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> PayoutResult:
        """
        Pay out from a connected account's balance to its bank account.

        Raises:
            StripeInvalidAccountError: Account cannot receive payouts
            StripeError: Other Stripe failures
        """
        log_context = {
            "operation": "create_payout",
            "stripe_account": account_id,
            "amount": amount,
            "currency": currency,
            "idempotency_key": idempotency_key,
        }
        payout = self._execute(
            log_context,
            lambda: stripe.Payout.create(
                amount=amount,
                currency=currency,
                metadata=metadata or {},
                idempotency_key=idempotency_key,
                stripe_account=account_id,
                api_key=self.api_key,
            ),
        )
        return PayoutResult(
            id=payout.id,
            amount=payout.amount,
            currency=payout.currency,
            status=payout.status,
            account_id=account_id,
        )

    def find_payout_for_transfer_record(
        self,
        account_id: str,
        transfer_record_id: str,
    ) -> PayoutResult | None:
        """
        Return a payout already made for this TransferRecord, if any.

        Lists the connected account's recent payouts and matches the
        transfer_record_id written into their metadata at creation. Used as
        the duplicate-guard before creating a ledger payout.
        """
        payouts = self._execute(
            {
                "operation": "list_payouts",
                "stripe_account": account_id,
                "transfer_record_id": transfer_record_id,
            },
            lambda: stripe.Payout.list(
                limit=PAYOUT_LOOKUP_LIMIT,
                stripe_account=account_id,
                api_key=self.api_key,
            ),
            level=logging.DEBUG,
        )
        for payout in getattr(payouts, "data", None) or []:
            if payout.status in ("failed", "canceled"):
                continue
            metadata = getattr(payout, "metadata", None) or {}
            if metadata.get("transfer_record_id") == transfer_record_id:
                return PayoutResult(
                    id=payout.id,
                    amount=payout.amount,
                    currency=payout.currency,
                    status=payout.status,
                    account_id=account_id,
                )
        return None

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(
        self,
        payload: bytes,
        signature: str,
    ) -> dict[str, Any]:
        """
        Verify and parse a Stripe webhook event.

        Args:
            payload: Raw webhook payload bytes
            signature: Stripe-Signature header value

        Returns:
            Parsed event data dict

        Raises:
            StripeInvalidRequestError: Invalid signature or payload
        """
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise StripeInvalidRequestError(
                "Invalid webhook signature",
                stripe_code="signature_verification_failed",
                details={"error": str(e)},
            ) from e
        except ValueError as e:
            raise StripeInvalidRequestError(
                "Invalid webhook payload",
                stripe_code="invalid_payload",
                details={"error": str(e)},
            ) from e
        return json.loads(payload)

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to domain exceptions.

        Maps Stripe SDK errors to appropriate domain exceptions
        with proper error categorization for retry decisions.

        Raises:
            StripeCardDeclinedError: Card was declined
            StripeInsufficientFundsError: Insufficient funds
            StripeInvalidAccountError: Invalid Connect account
            StripeInvalidRequestError: Invalid request parameters
            StripeRateLimitError: Rate limited
            StripeAPIUnavailableError: API unavailable
            StripeTimeoutError: Request timed out
        """
        logger = cls.get_logger()

        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, StripeError):
            raise error

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )

            if decline_code == "insufficient_funds":
                raise StripeInsufficientFundsError(
                    str(error.user_message or error),
                    stripe_code=error.code,
                    decline_code=decline_code,
                ) from error

            raise StripeCardDeclinedError(
                str(error.user_message or error),
                stripe_code=error.code,
                decline_code=decline_code,
            ) from error

        elif isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )

            if error.code == "balance_insufficient":
                raise StripeInsufficientFundsError(
                    str(error),
                    stripe_code=error.code,
                ) from error

            if "account" in str(error).lower():
                raise StripeInvalidAccountError(
                    str(error),
                    stripe_code=error.code,
                ) from error

            raise StripeInvalidRequestError(
                str(error),
                stripe_code=error.code,
            ) from error

        elif isinstance(error, stripe.RateLimitError):
            logger.warning(
                "Rate limited by Stripe",
                extra=log_context,
            )
            raise StripeRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            ) from error

        elif isinstance(error, stripe.APIConnectionError):
            logger.error(
                "Connection error to Stripe",
                extra=log_context,
                exc_info=True,
            )
            if "timed out" in str(error).lower():
                raise StripeTimeoutError(
                    "Stripe request timed out. Please retry.",
                    stripe_code="timeout",
                ) from error
            raise StripeAPIUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            ) from error

        elif isinstance(error, stripe.APIError):
            logger.error(
                "Stripe API error",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                "Stripe service error. Please retry.",
                stripe_code="api_error",
            ) from error

        elif isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise StripeInvalidRequestError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            ) from error

        else:
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                f"Unexpected Stripe error: {error}",
                stripe_code="unknown_error",
            ) from error
