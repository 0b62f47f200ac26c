"""
Bookings app - the booking records the payment engine reads and updates.

Events, meetings, scheduling preferences and slot reservations are owned by
the booking service. The payment engine only:
    - reads events, meetings and scheduling settings for conflict detection
    - writes a meeting's payment_status and conferencing link
    - holds and releases slot reservations for delayed payments
"""
