"""Remote calendar catalog and the user's sync selection."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from cal_sync.calendar.exceptions import (
    AuthReason,
    CalendarAuthError,
    CalendarValidationError,
    ValidationReason,
)
from cal_sync.calendar.provider import GoogleCalendarProvider
from cal_sync.calendar.vault import CredentialVault
from cal_sync.models.calendar import (
    DEFAULT_CALENDAR_COLOR,
    CalendarMeta,
    RemoteCalendarDescriptor,
)
from cal_sync.store import SyncStore

logger = logging.getLogger(__name__)

UNNAMED_CALENDAR = "Unnamed Calendar"


def calendar_meta_from_entry(entry: dict) -> CalendarMeta:
    """Build display metadata from a Google ``CalendarListEntry`` dict."""
    return CalendarMeta(
        id=entry["id"],
        name=entry.get("summaryOverride") or entry.get("summary") or UNNAMED_CALENDAR,
        color=entry.get("backgroundColor") or DEFAULT_CALENDAR_COLOR,
    )


class CalendarCatalog:
    """Lists the account's calendars and persists which ones to sync.

    Args:
        store: Persistence for the selection set.
        vault: Source of valid credentials.
        provider: Google Calendar client.
    """

    def __init__(
        self,
        store: SyncStore,
        vault: CredentialVault,
        provider: GoogleCalendarProvider,
    ) -> None:
        self._store = store
        self._vault = vault
        self._provider = provider

    async def list_calendars(self, user_id: str) -> list[RemoteCalendarDescriptor]:
        """List remote calendars, marking the ones in the saved selection.

        Raises:
            CalendarAuthError: If the user is not connected or the
                credential cannot be used.
            CalendarAPIError: If Google fails to list calendars.
        """
        credential = await self._vault.get_valid_credential(user_id)
        entries = await asyncio.to_thread(self._provider.list_calendars, credential.access_token)
        selected = set(await self.selected_calendar_ids(user_id))

        descriptors: list[RemoteCalendarDescriptor] = []
        for entry in entries:
            if not entry.get("id"):
                continue
            meta = calendar_meta_from_entry(entry)
            descriptors.append(
                RemoteCalendarDescriptor(
                    id=meta.id,
                    name=meta.name,
                    description=entry.get("description"),
                    color=meta.color,
                    primary=bool(entry.get("primary", False)),
                    selected=meta.id in selected,
                )
            )
        return descriptors

    async def selected_calendar_ids(self, user_id: str) -> list[str]:
        """Return the saved selection, or an empty list if not connected."""
        record = await self._store.get_connection(user_id)
        if record is None:
            return []
        return list(record.selected_calendar_ids)

    async def save_selection(self, user_id: str, calendar_ids: Iterable[str]) -> list[str]:
        """Replace the saved selection with *calendar_ids*.

        Duplicates are dropped, keeping first-seen order.  An empty
        selection is valid.

        Returns:
            The selection as stored.

        Raises:
            CalendarValidationError: ``INVALID_SELECTION`` if
                *calendar_ids* is not a list, tuple or set of strings.
            CalendarAuthError: ``NOT_CONNECTED`` if the user has no
                connection record.
        """
        cleaned = _validate_selection(calendar_ids)
        saved = await self._store.save_selection(user_id, cleaned)
        if not saved:
            raise CalendarAuthError(AuthReason.NOT_CONNECTED)
        logger.info("Saved %d selected calendar(s) for user %s", len(cleaned), user_id)
        return cleaned


def _validate_selection(calendar_ids: object) -> list[str]:
    if not isinstance(calendar_ids, (list, tuple, set, frozenset)):
        raise CalendarValidationError(
            ValidationReason.INVALID_SELECTION,
            "calendarIds must be an array of strings",
        )
    if not all(isinstance(item, str) and item for item in calendar_ids):
        raise CalendarValidationError(
            ValidationReason.INVALID_SELECTION,
            "calendarIds must contain only non-empty strings",
        )
    return list(dict.fromkeys(calendar_ids))
