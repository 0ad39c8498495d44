"""Map Google Calendar event resources to canonical events.

Converts the ``dict`` items returned by ``events().list()`` into
:class:`~cal_sync.models.calendar.CanonicalEvent` instances:

- **Identity** -- the Google event id and source calendar id.
- **Title** -- ``summary``, or ``"Untitled Event"`` when missing.
- **Times** -- timed events (``dateTime``) keep the provider's instants,
  converted to UTC.  All-day events (``date``) start at 00:00:00 on the
  start date and end at 23:59:59 on the declared end date.
- **Tagging** -- source calendar name and colour.

Records without an id or a start are dropped, as are records whose times
cannot be parsed or whose end is not after their start.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta

from pydantic import ValidationError

from cal_sync.models.calendar import CalendarMeta, CanonicalEvent, RawEvent, ensure_utc

logger = logging.getLogger(__name__)

UNTITLED_EVENT = "Untitled Event"

# Applied when a timed event has no end.
_DEFAULT_DURATION = timedelta(hours=1)

_END_OF_DAY = time(23, 59, 59)


def normalize_event(raw_event: dict, calendar_meta: CalendarMeta) -> CanonicalEvent | None:
    """Convert one Google event resource into a canonical event.

    Args:
        raw_event: A Google Calendar ``Event`` resource dict.
        calendar_meta: The calendar the event was fetched from.

    Returns:
        A :class:`CanonicalEvent`, or ``None`` if the record cannot be
        represented (the caller filters these out).
    """
    event_id = raw_event.get("id")
    start_obj = raw_event.get("start") or {}
    end_obj = raw_event.get("end") or {}

    if not event_id or not (start_obj.get("dateTime") or start_obj.get("date")):
        logger.debug("Dropping event without id or start: %r", event_id)
        return None

    try:
        if start_obj.get("dateTime"):
            all_day = False
            start, end = _timed_bounds(start_obj, end_obj)
        else:
            all_day = True
            start, end = _all_day_bounds(start_obj, end_obj)
    except ValueError as exc:
        logger.warning("Dropping event %s with unparseable times: %s", event_id, exc)
        return None

    try:
        return CanonicalEvent(
            external_id=event_id,
            external_calendar_id=calendar_meta.id,
            title=raw_event.get("summary") or UNTITLED_EVENT,
            description=raw_event.get("description") or None,
            start_time=start,
            end_time=end,
            all_day=all_day,
            location=raw_event.get("location") or None,
            calendar_name=calendar_meta.name,
            calendar_color=calendar_meta.color,
        )
    except ValidationError as exc:
        logger.warning("Dropping event %s: %s", event_id, exc.errors()[0]["msg"])
        return None


def normalize_events(raw_events: Iterable[RawEvent]) -> list[CanonicalEvent]:
    """Normalize a batch of fetched events, dropping unrepresentable ones."""
    events: list[CanonicalEvent] = []
    dropped = 0
    for raw in raw_events:
        event = normalize_event(raw.data, raw.calendar)
        if event is None:
            dropped += 1
        else:
            events.append(event)
    if dropped:
        logger.info("Normalized %d event(s), dropped %d", len(events), dropped)
    return events


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _parse_datetime(value: str) -> datetime:
    # fromisoformat on older interpreters does not accept a trailing "Z".
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


def _timed_bounds(start_obj: dict, end_obj: dict) -> tuple[datetime, datetime]:
    start = _parse_datetime(start_obj["dateTime"])
    if end_obj.get("dateTime"):
        end = _parse_datetime(end_obj["dateTime"])
    else:
        end = start + _DEFAULT_DURATION
    return start, end


def _all_day_bounds(start_obj: dict, end_obj: dict) -> tuple[datetime, datetime]:
    start_day = date.fromisoformat(start_obj["date"])
    end_day = date.fromisoformat(end_obj["date"]) if end_obj.get("date") else start_day
    start = ensure_utc(datetime.combine(start_day, time.min))
    end = ensure_utc(datetime.combine(end_day, _END_OF_DAY))
    return start, end
