"""
State machine enums and helpers for payment models.

This module defines the state enums used by payment models with django-fsm.
"""

from payments.state_machines.states import (
    PRE_TRANSFER_STATES,
    REVERSIBLE_STATES,
    TRANSFERABLE_STATES,
    TransferStatus,
    WebhookEventStatus,
)

__all__ = [
    "PRE_TRANSFER_STATES",
    "REVERSIBLE_STATES",
    "TRANSFERABLE_STATES",
    "TransferStatus",
    "WebhookEventStatus",
]
