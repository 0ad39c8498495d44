"""Scheduling conflict detection between incoming and stored events.

Two intervals conflict when they overlap under half-open semantics::

    a.start < b.end and a.end > b.start

Adjacent events (one ends exactly when the other starts) do NOT conflict.
The predicate is symmetric in its two intervals.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime

from cal_sync.models.calendar import (
    CanonicalEvent,
    ConflictPartition,
    ConflictReport,
    LocalEvent,
)

logger = logging.getLogger(__name__)


def events_overlap(
    a_start: datetime,
    a_end: datetime,
    b_start: datetime,
    b_end: datetime,
) -> bool:
    """Return whether ``[a_start, a_end)`` and ``[b_start, b_end)`` overlap."""
    return a_start < b_end and a_end > b_start


def find_conflicts(event: CanonicalEvent, existing: Iterable[LocalEvent]) -> list[LocalEvent]:
    """Return every non-deleted stored event overlapping *event*."""
    return [
        local
        for local in existing
        if not local.is_deleted
        and events_overlap(event.start_time, event.end_time, local.start_time, local.end_time)
    ]


def detect_conflicts(
    incoming: Sequence[CanonicalEvent],
    existing: Sequence[LocalEvent],
) -> ConflictPartition:
    """Split *incoming* into conflicting and clean events.

    Each incoming event is compared against every non-deleted stored
    event.  Events with no overlap go to ``clean`` (input order kept);
    the rest are wrapped in a :class:`ConflictReport` listing all the
    stored events they overlap.

    Args:
        incoming: Normalized events about to be imported.
        existing: Events already in the local calendar.

    Returns:
        A :class:`ConflictPartition`.
    """
    conflicting: list[ConflictReport] = []
    clean: list[CanonicalEvent] = []

    for event in incoming:
        overlapping = find_conflicts(event, existing)
        if overlapping:
            conflicting.append(ConflictReport(event=event, conflicts=overlapping))
        else:
            clean.append(event)

    logger.info(
        "Conflict check: %d conflicting, %d clean (against %d stored event(s))",
        len(conflicting),
        len(clean),
        len(existing),
    )
    return ConflictPartition(conflicting=conflicting, clean=clean)
