"""Windowed event fetch across several remote calendars.

:class:`EventFetcher` queries each requested calendar independently with
bounded concurrency.  A provider error or timeout on one calendar is logged
and reported in :attr:`FetchResult.failures`; the remaining calendars are
unaffected.  The same holds for the overall request deadline: calendars
still running when it passes are cancelled and reported, and everything
that already finished is returned.  Only a rejected credential (which
would fail every calendar) is raised to the caller, once all calendars
have settled.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Sequence
from datetime import datetime

from cal_sync.calendar.catalog import calendar_meta_from_entry
from cal_sync.calendar.exceptions import (
    CalendarAPIError,
    CalendarAuthError,
    CalendarValidationError,
    ValidationReason,
)
from cal_sync.calendar.provider import GoogleCalendarProvider
from cal_sync.calendar.vault import CredentialVault
from cal_sync.models.calendar import (
    CalendarFailure,
    CalendarMeta,
    Credential,
    FetchResult,
    RawEvent,
    ensure_utc,
)

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 4
DEFAULT_CALENDAR_TIMEOUT = 30.0  # seconds
DEFAULT_FETCH_TIMEOUT = 120.0  # seconds


def _release_slot(semaphore: asyncio.Semaphore, call: asyncio.Future) -> None:
    semaphore.release()
    if not call.cancelled():
        # Mark the outcome retrieved; a timed-out call is never awaited.
        call.exception()


class EventFetcher:
    """Fetches raw events for a time window from selected calendars.

    Args:
        vault: Source of valid credentials.
        provider: Google Calendar client.
        concurrency: Maximum provider calls in flight at once.
        calendar_timeout: Seconds allowed for one calendar (all pages).
        fetch_timeout: Seconds allowed for the whole fetch, or ``None`` for
            no overall deadline.
    """

    def __init__(
        self,
        vault: CredentialVault,
        provider: GoogleCalendarProvider,
        concurrency: int = DEFAULT_CONCURRENCY,
        calendar_timeout: float = DEFAULT_CALENDAR_TIMEOUT,
        fetch_timeout: float | None = DEFAULT_FETCH_TIMEOUT,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._vault = vault
        self._provider = provider
        self._concurrency = concurrency
        self._calendar_timeout = calendar_timeout
        self._fetch_timeout = fetch_timeout

    async def fetch_events(
        self,
        user_id: str,
        calendar_ids: Sequence[str],
        window_start: datetime,
        window_end: datetime,
    ) -> FetchResult:
        """Fetch events intersecting ``[window_start, window_end)``.

        Args:
            user_id: The owner of the Google connection.
            calendar_ids: Remote calendar ids to read.  Duplicates are
                queried once.
            window_start: Window start; naive values are taken as UTC.
            window_end: Window end; must be after *window_start*.

        Returns:
            A :class:`FetchResult` with events from every calendar that
            succeeded and a failure entry for every calendar that did not,
            including calendars cut off by the overall deadline.

        Raises:
            CalendarValidationError: ``EMPTY_CALENDAR_SET`` or
                ``INVALID_WINDOW``, before any I/O.
            CalendarAuthError: If the user is not connected or Google
                rejected the credential.
        """
        unique_ids = list(dict.fromkeys(calendar_ids))
        if not unique_ids:
            raise CalendarValidationError(
                ValidationReason.EMPTY_CALENDAR_SET,
                "calendarIds is required and must be a non-empty array",
            )
        start = ensure_utc(window_start)
        end = ensure_utc(window_end)
        if end <= start:
            raise CalendarValidationError(
                ValidationReason.INVALID_WINDOW,
                "timeMax must be after timeMin",
            )

        loop = asyncio.get_running_loop()
        deadline = None if self._fetch_timeout is None else loop.time() + self._fetch_timeout

        credential = await self._vault.get_valid_credential(user_id)

        logger.info(
            "Fetching %d calendar(s) for user %s between %s and %s",
            len(unique_ids),
            user_id,
            start.isoformat(),
            end.isoformat(),
        )

        semaphore = asyncio.Semaphore(self._concurrency)
        metadata_task = asyncio.ensure_future(self._calendar_metadata(credential))
        tasks = {
            cid: asyncio.ensure_future(self._fetch_one(semaphore, credential, cid, start, end))
            for cid in unique_ids
        }

        remaining = None if deadline is None else max(0.0, deadline - loop.time())
        _, pending = await asyncio.wait([metadata_task, *tasks.values()], timeout=remaining)
        if pending:
            logger.warning(
                "Fetch deadline of %gs reached with %d task(s) unfinished",
                self._fetch_timeout,
                len(pending),
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        metadata = {} if metadata_task.cancelled() else metadata_task.result()

        result = FetchResult()
        auth_error: CalendarAuthError | None = None
        for calendar_id, task in tasks.items():
            if task.cancelled():
                result.failures.append(
                    CalendarFailure(
                        calendar_id,
                        f"Timed out: request deadline of {self._fetch_timeout:g}s reached",
                    )
                )
                continue
            outcome = task.result()
            if isinstance(outcome, CalendarAuthError):
                auth_error = auth_error or outcome
                result.failures.append(CalendarFailure(calendar_id, str(outcome)))
            elif isinstance(outcome, CalendarFailure):
                result.failures.append(outcome)
            else:
                meta = metadata.get(calendar_id) or CalendarMeta(id=calendar_id)
                result.events.extend(RawEvent(data=item, calendar=meta) for item in outcome)

        if auth_error is not None:
            raise auth_error

        logger.info(
            "Fetch complete: %d event(s), %d calendar failure(s)",
            len(result.events),
            len(result.failures),
        )
        return result

    async def _fetch_one(
        self,
        semaphore: asyncio.Semaphore,
        credential: Credential,
        calendar_id: str,
        start: datetime,
        end: datetime,
    ) -> list[dict] | CalendarFailure | CalendarAuthError:
        await semaphore.acquire()
        call = asyncio.ensure_future(
            asyncio.to_thread(
                self._provider.list_events,
                credential.access_token,
                calendar_id,
                start,
                end,
            )
        )
        # The slot is held until the worker thread returns, not until we
        # stop waiting for it.
        call.add_done_callback(functools.partial(_release_slot, semaphore))
        try:
            return await asyncio.wait_for(asyncio.shield(call), timeout=self._calendar_timeout)
        except CalendarAuthError as exc:
            return exc
        except CalendarAPIError as exc:
            logger.error("Error fetching events from calendar %s: %s", calendar_id, exc)
            return CalendarFailure(calendar_id, str(exc))
        except asyncio.TimeoutError:
            logger.error(
                "Timed out after %.1fs fetching calendar %s",
                self._calendar_timeout,
                calendar_id,
            )
            return CalendarFailure(
                calendar_id,
                f"Timed out after {self._calendar_timeout:g}s",
            )

    async def _calendar_metadata(self, credential: Credential) -> dict[str, CalendarMeta]:
        """Map calendar id to display metadata; empty if the lookup fails."""
        try:
            entries = await asyncio.to_thread(self._provider.list_calendars, credential.access_token)
        except CalendarAPIError as exc:
            logger.warning("Calendar metadata unavailable, using defaults: %s", exc)
            return {}
        return {
            entry["id"]: calendar_meta_from_entry(entry)
            for entry in entries
            if entry.get("id")
        }
