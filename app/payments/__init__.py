"""
Payments app: reconciliation between Stripe and what experts are owed.

This app handles:
- Stripe webhook ingestion (payment intents, refunds, disputes)
- TransferRecord lifecycle from payment to payout
- Booking conflict refunds for delayed payment methods
- Daily scheduled transfers and payouts

Related apps:
    - bookings: Meetings, events and slot holds paid for here
    - notifications: Expert and guest notifications

Usage:
    from payments.dependencies import PaymentDependencies
    from payments.services import PayoutProcessor, TransferProcessor

    deps = PaymentDependencies.from_settings()
    TransferProcessor(deps).run()
    PayoutProcessor(deps).run()
"""
