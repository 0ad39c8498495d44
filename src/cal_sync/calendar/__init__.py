"""Google Calendar sync components for cal-sync."""

from __future__ import annotations

from cal_sync.calendar.catalog import CalendarCatalog
from cal_sync.calendar.conflicts import detect_conflicts, events_overlap, find_conflicts
from cal_sync.calendar.crypto import TokenCipher
from cal_sync.calendar.fetcher import EventFetcher
from cal_sync.calendar.importer import ImportEngine, to_local_event
from cal_sync.calendar.normalizer import normalize_event, normalize_events
from cal_sync.calendar.provider import GoogleCalendarProvider
from cal_sync.calendar.state import OAuthStateStore
from cal_sync.calendar.vault import CredentialVault

__all__ = [
    "CalendarCatalog",
    "CredentialVault",
    "EventFetcher",
    "GoogleCalendarProvider",
    "ImportEngine",
    "OAuthStateStore",
    "TokenCipher",
    "detect_conflicts",
    "events_overlap",
    "find_conflicts",
    "normalize_event",
    "normalize_events",
    "to_local_event",
]
