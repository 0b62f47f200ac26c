"""Admin registration for bookings (read-mostly views for support staff)."""

from django.contrib import admin

from bookings.models import BookingMeeting, Event, SchedulingSettings, SlotReservation


@admin.register(Event)
class EventAdmin(admin.ModelAdmin):
    list_display = ["id", "name", "expert_id", "duration_minutes"]
    search_fields = ["id", "name", "expert_id"]


@admin.register(BookingMeeting)
class BookingMeetingAdmin(admin.ModelAdmin):
    list_display = ["id", "expert_id", "guest_email", "start_time", "payment_status"]
    list_filter = ["payment_status"]
    search_fields = ["expert_id", "guest_email", "stripe_payment_intent_id"]
    readonly_fields = ["stripe_payment_intent_id", "calendar_creation_claimed"]


@admin.register(SchedulingSettings)
class SchedulingSettingsAdmin(admin.ModelAdmin):
    list_display = ["expert_id", "minimum_notice_minutes"]
    search_fields = ["expert_id"]


@admin.register(SlotReservation)
class SlotReservationAdmin(admin.ModelAdmin):
    list_display = ["expert_id", "start_time", "expires_at", "stripe_payment_intent_id"]
    search_fields = ["expert_id", "stripe_payment_intent_id"]
