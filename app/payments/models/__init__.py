"""
Payment domain models.

- TransferRecord: Ledger of money owed to experts, one per paid booking
- ConnectedAccount: Expert Stripe Connect accounts
- PaymentReversal: Refunds and disputes seen per PaymentIntent
- WebhookEvent: Stripe webhook events for idempotent processing
"""

from payments.models.connected_account import ConnectedAccount
from payments.models.payment_reversal import PaymentReversal, ReversalKind
from payments.models.transfer_record import TransferRecord
from payments.models.webhook_event import MAX_WEBHOOK_RETRIES, WebhookEvent

__all__ = [
    "MAX_WEBHOOK_RETRIES",
    "ConnectedAccount",
    "PaymentReversal",
    "ReversalKind",
    "TransferRecord",
    "WebhookEvent",
]
