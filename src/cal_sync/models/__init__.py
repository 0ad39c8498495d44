"""Data models for cal-sync."""

from __future__ import annotations

from cal_sync.models.calendar import (
    CalendarFailure,
    CalendarMeta,
    CanonicalEvent,
    ConflictPartition,
    ConflictReport,
    ConnectionRecord,
    ConnectionStatus,
    Credential,
    FetchResult,
    ImportOutcome,
    LocalEvent,
    RawEvent,
    RemoteCalendarDescriptor,
    TokenGrant,
)

__all__ = [
    "CalendarFailure",
    "CalendarMeta",
    "CanonicalEvent",
    "ConflictPartition",
    "ConflictReport",
    "ConnectionRecord",
    "ConnectionStatus",
    "Credential",
    "FetchResult",
    "ImportOutcome",
    "LocalEvent",
    "RawEvent",
    "RemoteCalendarDescriptor",
    "TokenGrant",
]
