"""Google Calendar connector (push channels)."""

from connectors.google_calendar.client import (
    GoogleCalendarClient,
    WatchResponse,
    parse_expiration,
)

__all__ = [
    "GoogleCalendarClient",
    "WatchResponse",
    "parse_expiration",
]
