"""Import orchestrator for canonical events.

Provides :class:`ImportEngine`, which stores a batch of normalized events as
local calendar events.  Each event is handled independently:

- An event whose ``(user, external id)`` is already stored is counted as
  *skipped*.
- Otherwise it is inserted and counted as *imported*.
- A store failure is counted as *failed* and described in the error list.

A single failing event does not prevent the remaining events from being
processed, and re-running the same batch only retries what failed before.
Results are aggregated into an :class:`~cal_sync.models.calendar.ImportOutcome`.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence

from cal_sync.calendar.exceptions import DuplicateEventError, PersistenceError
from cal_sync.models.calendar import CanonicalEvent, ImportOutcome, LocalEvent
from cal_sync.store import SyncStore

logger = logging.getLogger(__name__)


def to_local_event(user_id: str, event: CanonicalEvent) -> LocalEvent:
    """Build the local event row for an imported canonical event."""
    return LocalEvent(
        id=uuid.uuid4().hex,
        user_id=user_id,
        title=event.title,
        description=event.description,
        start_time=event.start_time,
        end_time=event.end_time,
        all_day=event.all_day,
        location=event.location,
        source="google",
        event_type="imported",
        external_id=event.external_id,
        external_calendar_id=event.external_calendar_id,
        color_tag=event.calendar_color,
    )


class ImportEngine:
    """Stores canonical events, deduplicating on the external event id.

    Args:
        store: Persistence for local events.
    """

    def __init__(self, store: SyncStore) -> None:
        self._store = store

    async def import_events(
        self,
        user_id: str,
        events: Sequence[CanonicalEvent],
    ) -> ImportOutcome:
        """Import *events* for *user_id*.

        Args:
            user_id: Owner of the local calendar.
            events: Events to import, processed sequentially.

        Returns:
            An :class:`ImportOutcome` with imported / skipped / failed
            counts and one error message per failed event.
        """
        outcome = ImportOutcome()

        logger.info("Starting import of %d event(s) for user %s", len(events), user_id)

        for event in events:
            try:
                await self._import_one(user_id, event, outcome)
            except PersistenceError as exc:
                logger.error("Failed to import '%s': %s", event.title, exc)
                outcome.failed += 1
                outcome.errors.append(f'Failed to import "{event.title}": {exc}')

        logger.info(
            "Import complete: %d imported, %d skipped, %d failed",
            outcome.imported,
            outcome.skipped,
            outcome.failed,
        )
        return outcome

    async def _import_one(
        self,
        user_id: str,
        event: CanonicalEvent,
        outcome: ImportOutcome,
    ) -> None:
        """Import a single event, mutating *outcome* in place.

        Raises:
            PersistenceError: If the lookup or the insert fails for a
                reason other than a concurrent duplicate.
        """
        existing = await self._store.find_event_by_external_id(user_id, event.external_id)
        if existing is not None:
            outcome.skipped += 1
            logger.info("Event '%s' skipped (already imported)", event.title)
            return

        try:
            await self._store.create_event(to_local_event(user_id, event))
        except DuplicateEventError:
            # A concurrent import stored the same event first.
            outcome.skipped += 1
            logger.info("Event '%s' skipped (imported concurrently)", event.title)
            return

        outcome.imported += 1
        logger.info("Imported event '%s'", event.title)
