"""Data models for external calendar sync.

Two families of types live here:

- **Pydantic models** for values that cross the HTTP boundary
  (:class:`CanonicalEvent`, :class:`LocalEvent`,
  :class:`RemoteCalendarDescriptor`, :class:`ConflictReport`,
  :class:`ConflictPartition`).  They serialize with camelCase aliases and
  accept either camelCase or snake_case on input.
- **Dataclasses** for internal records and per-call results
  (:class:`ConnectionRecord`, :class:`Credential`, :class:`TokenGrant`,
  :class:`CalendarMeta`, :class:`RawEvent`, :class:`FetchResult`,
  :class:`ImportOutcome`, ...).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel

DEFAULT_CALENDAR_NAME = "Unknown"
DEFAULT_CALENDAR_COLOR = "#4285f4"


def ensure_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ApiModel(BaseModel):
    """Base for models exchanged over HTTP (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# CanonicalEvent -- normalized remote event
# ---------------------------------------------------------------------------


class CanonicalEvent(ApiModel):
    """A remote event in the application's provider-independent shape.

    Attributes:
        external_id: Provider event id; with the user id it forms the
            dedup key.
        external_calendar_id: Provider id of the source calendar.
        title: Event title (never empty).
        description: Free-text description, or ``None``.
        start_time: Aware UTC start instant.
        end_time: Aware UTC end instant, strictly after ``start_time``.
        all_day: Whether the provider declared a date-only event.
        location: Event location, or ``None``.
        calendar_name: Display name of the source calendar.
        calendar_color: Display colour of the source calendar.
    """

    external_id: str
    external_calendar_id: str
    title: str
    description: str | None = None
    start_time: datetime
    end_time: datetime
    all_day: bool = False
    location: str | None = None
    calendar_name: str = DEFAULT_CALENDAR_NAME
    calendar_color: str = DEFAULT_CALENDAR_COLOR

    @field_validator("start_time", "end_time")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _end_after_start(self) -> CanonicalEvent:
        if self.end_time <= self.start_time:
            raise ValueError(
                f"end_time ({self.end_time.isoformat()}) must be after "
                f"start_time ({self.start_time.isoformat()})"
            )
        return self


# ---------------------------------------------------------------------------
# LocalEvent -- an event stored in the application's own calendar
# ---------------------------------------------------------------------------


class LocalEvent(ApiModel):
    """An event persisted in the local calendar store.

    Imported events carry ``source="google"`` and ``event_type="imported"``
    together with their external ids; manually created events have
    ``source="manual"`` and no external ids.
    """

    id: str
    user_id: str
    title: str
    description: str | None = None
    start_time: datetime
    end_time: datetime
    all_day: bool = False
    location: str | None = None
    source: Literal["manual", "google"] = "manual"
    event_type: Literal["manual", "imported"] = "manual"
    external_id: str | None = None
    external_calendar_id: str | None = None
    color_tag: str | None = None
    is_deleted: bool = False

    @field_validator("start_time", "end_time")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


# ---------------------------------------------------------------------------
# Catalog and conflict views
# ---------------------------------------------------------------------------


class RemoteCalendarDescriptor(ApiModel):
    """A remote calendar as shown to the user when choosing what to sync."""

    id: str
    name: str
    description: str | None = None
    color: str = DEFAULT_CALENDAR_COLOR
    primary: bool = False
    selected: bool = False


class ConflictReport(ApiModel):
    """An incoming event and every stored event whose interval overlaps it."""

    event: CanonicalEvent
    conflicts: list[LocalEvent]


class ConflictPartition(ApiModel):
    """Incoming events split into conflicting and clean sets."""

    conflicting: list[ConflictReport] = []
    clean: list[CanonicalEvent] = []


# ---------------------------------------------------------------------------
# Internal records
# ---------------------------------------------------------------------------


@dataclass
class ConnectionRecord:
    """Persisted connection between a user and their Google account.

    Token fields hold ciphertext produced by
    :class:`~cal_sync.calendar.crypto.TokenCipher`; plaintext tokens are
    never stored here.
    """

    user_id: str
    access_token: str
    refresh_token: str | None = None
    token_expiry: datetime | None = None
    is_connected: bool = True
    account_email: str | None = None
    selected_calendar_ids: list[str] = field(default_factory=list)
    updated_at: datetime | None = None


@dataclass(frozen=True)
class Credential:
    """A decrypted access token ready for one round of API calls."""

    access_token: str
    expiry: datetime | None = None

    def __repr__(self) -> str:
        return f"Credential(access_token='***', expiry={self.expiry!r})"


@dataclass(frozen=True)
class TokenGrant:
    """Tokens returned by a code exchange or a refresh."""

    access_token: str
    refresh_token: str | None = None
    expiry: datetime | None = None

    def __repr__(self) -> str:
        return f"TokenGrant(access_token='***', expiry={self.expiry!r})"


@dataclass(frozen=True)
class ConnectionStatus:
    """Read-only projection of a user's connection."""

    connected: bool
    email: str | None = None


@dataclass(frozen=True)
class CalendarMeta:
    """Display metadata of a source calendar used to tag fetched events."""

    id: str
    name: str = DEFAULT_CALENDAR_NAME
    color: str = DEFAULT_CALENDAR_COLOR


@dataclass
class RawEvent:
    """A provider event resource dict tagged with its source calendar."""

    data: dict[str, Any]
    calendar: CalendarMeta


@dataclass(frozen=True)
class CalendarFailure:
    """A calendar that could not be fetched, with a readable reason."""

    calendar_id: str
    error: str


@dataclass
class FetchResult:
    """Outcome of fetching a window from several calendars.

    Attributes:
        events: Raw events from every calendar that succeeded, in the
            order the calendars were requested.
        failures: Calendars that failed, each with an error message.
    """

    events: list[RawEvent] = field(default_factory=list)
    failures: list[CalendarFailure] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        """Whether any calendar failed to fetch."""
        return len(self.failures) > 0


@dataclass
class ImportOutcome:
    """Aggregated result of importing a batch of canonical events.

    Attributes:
        imported: Number of events newly stored.
        skipped: Number of events already stored under the same dedup key.
        failed: Number of events the store rejected.
        errors: Human-readable message per failed event.
    """

    imported: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def total_processed(self) -> int:
        """Total number of events looked at."""
        return self.imported + self.skipped + self.failed

    @property
    def has_failures(self) -> bool:
        """Whether any event failed to import."""
        return self.failed > 0
