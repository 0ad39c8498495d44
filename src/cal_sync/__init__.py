"""cal-sync: external calendar sync and conflict resolution.

Connects a user's Google Calendar, fetches events from the calendars they
select, flags overlaps with the local calendar, and imports the approved
events without duplicates.
"""

from __future__ import annotations

from cal_sync.calendar.exceptions import (
    CalendarAPIError,
    CalendarAuthError,
    CalendarSyncError,
    CalendarValidationError,
    PersistenceError,
)
from cal_sync.models.calendar import (
    CanonicalEvent,
    ConflictPartition,
    ConflictReport,
    FetchResult,
    ImportOutcome,
    LocalEvent,
    RemoteCalendarDescriptor,
)

__version__ = "0.1.0"

__all__ = [
    "CalendarAPIError",
    "CalendarAuthError",
    "CalendarSyncError",
    "CalendarValidationError",
    "CanonicalEvent",
    "ConflictPartition",
    "ConflictReport",
    "FetchResult",
    "ImportOutcome",
    "LocalEvent",
    "PersistenceError",
    "RemoteCalendarDescriptor",
]
