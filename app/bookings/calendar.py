"""
Conferencing integration boundary.

The payment engine creates the conferencing link of a meeting once its
payment settles. The actual calendar/video provider lives behind the
CalendarGateway protocol; the implementation is chosen with the
CALENDAR_GATEWAY_CLASS setting.

Usage:
    from bookings.calendar import load_calendar_gateway

    gateway = load_calendar_gateway()
    url = gateway.create_conference(meeting)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from django.conf import settings
from django.utils.module_loading import import_string

if TYPE_CHECKING:
    from bookings.models import BookingMeeting

logger = logging.getLogger(__name__)


@runtime_checkable
class CalendarGateway(Protocol):
    """
    Protocol for conferencing/calendar providers.

    Example:
        class GoogleMeetGateway:
            def create_conference(self, meeting):
                event = calendar_api.events().insert(...).execute()
                return event["hangoutLink"]
    """

    def create_conference(self, meeting: BookingMeeting) -> str | None:
        """
        Create the calendar event and conferencing link for a meeting.

        Args:
            meeting: The confirmed meeting

        Returns:
            Conferencing URL, or None if the provider produced none

        Raises:
            Exception: Any provider failure; callers log and retry later
        """
        ...


class NullCalendarGateway:
    """Gateway used when no calendar provider is configured."""

    def create_conference(self, meeting: BookingMeeting) -> str | None:
        logger.info(
            "No calendar provider configured, skipping conference creation",
            extra={"meeting_id": str(meeting.id)},
        )
        return None


def load_calendar_gateway() -> CalendarGateway:
    """Instantiate the gateway named by settings.CALENDAR_GATEWAY_CLASS."""
    gateway_class = import_string(settings.CALENDAR_GATEWAY_CLASS)
    return gateway_class()
