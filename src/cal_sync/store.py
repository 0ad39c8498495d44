"""Persistence for connection records and local calendar events.

:class:`SyncStore` is the narrow interface the sync components depend on.
:class:`SQLiteSyncStore` implements it on SQLite: every call opens its own
connection inside a worker thread, so no connection is held across an
``await``.

Datetimes are stored as fixed-width UTC ISO 8601 strings, which keeps
lexical comparison in SQL equivalent to chronological comparison.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from cal_sync.calendar.exceptions import DuplicateEventError, PersistenceError
from cal_sync.models.calendar import ConnectionRecord, LocalEvent, ensure_utc

logger = logging.getLogger(__name__)


class SyncStore(Protocol):
    """Persistence collaborator used by the vault, catalog and importer."""

    async def get_connection(self, user_id: str) -> ConnectionRecord | None: ...

    async def upsert_connection(self, record: ConnectionRecord) -> None: ...

    async def delete_connection(self, user_id: str) -> None: ...

    async def save_selection(self, user_id: str, calendar_ids: list[str]) -> bool: ...

    async def find_event_by_external_id(
        self, user_id: str, external_id: str
    ) -> LocalEvent | None: ...

    async def create_event(self, event: LocalEvent) -> LocalEvent: ...

    async def list_events(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[LocalEvent]: ...


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS calendar_connections (
    user_id TEXT PRIMARY KEY,
    access_token TEXT NOT NULL,
    refresh_token TEXT,
    token_expiry TEXT,
    is_connected INTEGER NOT NULL DEFAULT 1,
    account_email TEXT,
    selected_calendar_ids TEXT NOT NULL DEFAULT '[]',
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS calendar_events (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    all_day INTEGER NOT NULL DEFAULT 0,
    location TEXT,
    source TEXT NOT NULL DEFAULT 'manual',
    event_type TEXT NOT NULL DEFAULT 'manual',
    external_id TEXT,
    external_calendar_id TEXT,
    color_tag TEXT,
    is_deleted INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_calendar_events_external
    ON calendar_events(user_id, external_id)
    WHERE external_id IS NOT NULL AND is_deleted = 0;

CREATE INDEX IF NOT EXISTS idx_calendar_events_user_time
    ON calendar_events(user_id, start_time);
"""


def _to_db(value: datetime | None) -> str | None:
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="microseconds")


def _from_db(value: str | None) -> datetime | None:
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class SQLiteSyncStore:
    """SQLite-backed :class:`SyncStore`.

    Args:
        db_path: Database file path; parent directories are created.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        with self._lock, self._connect() as conn:
            conn.executescript(_SCHEMA_SQL)

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def get_connection(self, user_id: str) -> ConnectionRecord | None:
        return await asyncio.to_thread(self._get_connection, user_id)

    async def upsert_connection(self, record: ConnectionRecord) -> None:
        await asyncio.to_thread(self._upsert_connection, record)

    async def delete_connection(self, user_id: str) -> None:
        await asyncio.to_thread(self._delete_connection, user_id)

    async def save_selection(self, user_id: str, calendar_ids: list[str]) -> bool:
        """Overwrite the selection in one statement.

        Returns:
            ``False`` if the user has no connection record.
        """
        return await asyncio.to_thread(self._save_selection, user_id, calendar_ids)

    def _get_connection(self, user_id: str) -> ConnectionRecord | None:
        row = self._fetchone(
            "SELECT * FROM calendar_connections WHERE user_id = ?",
            (user_id,),
        )
        if row is None:
            return None
        return ConnectionRecord(
            user_id=row["user_id"],
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            token_expiry=_from_db(row["token_expiry"]),
            is_connected=bool(row["is_connected"]),
            account_email=row["account_email"],
            selected_calendar_ids=json.loads(row["selected_calendar_ids"] or "[]"),
            updated_at=_from_db(row["updated_at"]),
        )

    def _upsert_connection(self, record: ConnectionRecord) -> None:
        self._execute(
            """
            INSERT INTO calendar_connections(
                user_id, access_token, refresh_token, token_expiry,
                is_connected, account_email, selected_calendar_ids, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                access_token = excluded.access_token,
                refresh_token = excluded.refresh_token,
                token_expiry = excluded.token_expiry,
                is_connected = excluded.is_connected,
                account_email = excluded.account_email,
                selected_calendar_ids = excluded.selected_calendar_ids,
                updated_at = excluded.updated_at
            """,
            (
                record.user_id,
                record.access_token,
                record.refresh_token,
                _to_db(record.token_expiry),
                int(record.is_connected),
                record.account_email,
                json.dumps(list(record.selected_calendar_ids)),
                _utc_now(),
            ),
        )

    def _delete_connection(self, user_id: str) -> None:
        self._execute("DELETE FROM calendar_connections WHERE user_id = ?", (user_id,))

    def _save_selection(self, user_id: str, calendar_ids: list[str]) -> bool:
        rowcount = self._execute(
            """
            UPDATE calendar_connections
            SET selected_calendar_ids = ?, updated_at = ?
            WHERE user_id = ?
            """,
            (json.dumps(list(calendar_ids)), _utc_now(), user_id),
        )
        return rowcount > 0

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def find_event_by_external_id(
        self, user_id: str, external_id: str
    ) -> LocalEvent | None:
        return await asyncio.to_thread(self._find_event_by_external_id, user_id, external_id)

    async def create_event(self, event: LocalEvent) -> LocalEvent:
        """Insert *event*.

        Raises:
            DuplicateEventError: A live event with the same
                ``(user_id, external_id)`` already exists.
            PersistenceError: Any other database failure.
        """
        return await asyncio.to_thread(self._create_event, event)

    async def list_events(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[LocalEvent]:
        """List non-deleted events, optionally only those overlapping a window."""
        return await asyncio.to_thread(self._list_events, user_id, start, end)

    def _find_event_by_external_id(self, user_id: str, external_id: str) -> LocalEvent | None:
        row = self._fetchone(
            """
            SELECT * FROM calendar_events
            WHERE user_id = ? AND external_id = ? AND is_deleted = 0
            """,
            (user_id, external_id),
        )
        return _row_to_event(row) if row is not None else None

    def _create_event(self, event: LocalEvent) -> LocalEvent:
        params = (
            event.id,
            event.user_id,
            event.title,
            event.description,
            _to_db(event.start_time),
            _to_db(event.end_time),
            int(event.all_day),
            event.location,
            event.source,
            event.event_type,
            event.external_id,
            event.external_calendar_id,
            event.color_tag,
            int(event.is_deleted),
            _utc_now(),
        )
        try:
            with self._lock, self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO calendar_events(
                        id, user_id, title, description, start_time, end_time,
                        all_day, location, source, event_type, external_id,
                        external_calendar_id, color_tag, is_deleted, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    params,
                )
        except sqlite3.IntegrityError as exc:
            if "calendar_events.external_id" in str(exc):
                raise DuplicateEventError(
                    f"Event {event.external_id!r} already stored for user"
                ) from exc
            raise PersistenceError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc
        return event

    def _list_events(
        self,
        user_id: str,
        start: datetime | None,
        end: datetime | None,
    ) -> list[LocalEvent]:
        sql = "SELECT * FROM calendar_events WHERE user_id = ? AND is_deleted = 0"
        params: list[object] = [user_id]
        if end is not None:
            sql += " AND start_time < ?"
            params.append(_to_db(end))
        if start is not None:
            sql += " AND end_time > ?"
            params.append(_to_db(start))
        sql += " ORDER BY start_time"
        with self._lock, self._connect() as conn:
            try:
                rows = conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise PersistenceError(str(exc)) from exc
        return [_row_to_event(row) for row in rows]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _fetchone(self, sql: str, params: tuple) -> sqlite3.Row | None:
        try:
            with self._lock, self._connect() as conn:
                return conn.execute(sql, params).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc

    def _execute(self, sql: str, params: tuple) -> int:
        try:
            with self._lock, self._connect() as conn:
                cursor = conn.execute(sql, params)
                return cursor.rowcount
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc


def _row_to_event(row: sqlite3.Row) -> LocalEvent:
    return LocalEvent(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        description=row["description"],
        start_time=_from_db(row["start_time"]),
        end_time=_from_db(row["end_time"]),
        all_day=bool(row["all_day"]),
        location=row["location"],
        source=row["source"],
        event_type=row["event_type"],
        external_id=row["external_id"],
        external_calendar_id=row["external_calendar_id"],
        color_tag=row["color_tag"],
        is_deleted=bool(row["is_deleted"]),
    )
