"""
External collaborators of the reconciliation engine.

PaymentDependencies is built once at each entry point (Celery task, view)
and passed down explicitly. Tests build it with mocks instead.

Usage:
    deps = PaymentDependencies.from_settings()
    TransferProcessor(deps).run()
"""

from __future__ import annotations

from dataclasses import dataclass

from bookings.calendar import CalendarGateway, load_calendar_gateway
from payments.adapters import StripeAdapter
from payments.services.notifier import PaymentNotifier


@dataclass(frozen=True)
class PaymentDependencies:
    """
    Attributes:
        stripe: Stripe API adapter
        notifier: Expert and guest notifications
        calendar: Conferencing gateway for confirmed meetings
    """

    stripe: StripeAdapter
    notifier: PaymentNotifier
    calendar: CalendarGateway

    @classmethod
    def from_settings(cls) -> PaymentDependencies:
        return cls(
            stripe=StripeAdapter.from_settings(),
            notifier=PaymentNotifier(),
            calendar=load_calendar_gateway(),
        )
