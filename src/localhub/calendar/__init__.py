"""Google Calendar gateway."""

from localhub.calendar.gateway import (
    CalendarEvent,
    CreateEventsResult,
    DeleteEventsResult,
    GoogleCalendarGateway,
    ReplaceEventsResult,
)

__all__ = [
    "CalendarEvent",
    "CreateEventsResult",
    "DeleteEventsResult",
    "GoogleCalendarGateway",
    "ReplaceEventsResult",
]
