"""
Notifications app - structured outbox of user-facing notifications.

The payment engine records what happened (type, recipient, amounts, names,
dates) as Notification rows; delivery renders a plain email asynchronously.
Content templates and channel preferences belong to other services.
"""
