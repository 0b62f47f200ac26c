"""Admin registration for notifications."""

from django.contrib import admin

from notifications.models import Notification


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = [
        "notification_type",
        "recipient_id",
        "delivery_status",
        "created_at",
    ]
    list_filter = ["notification_type", "delivery_status"]
    search_fields = ["recipient_id", "recipient_email", "idempotency_key"]
    readonly_fields = ["idempotency_key", "data", "sent_at", "attempt_count"]
