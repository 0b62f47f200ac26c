"""
Payment reconciliation services.

This module provides:
- ConflictDetector: Decides whether a late-confirmed booking can still happen
- RefundPolicyService: Refunds guests of conflicting bookings
- TransferCreator: Records what an expert is owed for a successful payment
- TransferProcessor: Moves due funds to expert Connect accounts
- PayoutProcessor: Pays experts out to their bank accounts
- PaymentNotifier: Expert and guest notifications

Usage:
    from payments.dependencies import PaymentDependencies
    from payments.services import TransferProcessor

    summary = TransferProcessor(PaymentDependencies.from_settings()).run()
"""

from payments.services.conflict_detector import (
    ConflictCheckResult,
    ConflictDetector,
    ConflictOutcome,
    ConflictReason,
)
from payments.services.notifier import PaymentNotifier
from payments.services.payout_processor import PayoutAttempt, PayoutProcessor
from payments.services.refund_policy import (
    RefundBreakdown,
    RefundPolicyService,
    calculate_refund,
)
from payments.services.transfer_creator import TransferCreator, reschedule_delayed_transfer
from payments.services.transfer_processor import TransferAttempt, TransferProcessor

__all__ = [
    "ConflictCheckResult",
    "ConflictDetector",
    "ConflictOutcome",
    "ConflictReason",
    "PaymentNotifier",
    "PayoutAttempt",
    "PayoutProcessor",
    "RefundBreakdown",
    "RefundPolicyService",
    "TransferAttempt",
    "TransferCreator",
    "TransferProcessor",
    "calculate_refund",
    "reschedule_delayed_transfer",
]
