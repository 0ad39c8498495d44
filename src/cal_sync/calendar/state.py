"""Opaque OAuth ``state`` values bound to a user id.

The authorization URL carries a random nonce instead of the user id itself.
The nonce is stored server-side with the user id and an expiry, and is
consumed on first use, so a callback can only be completed for a flow this
process started.

The store is process-local; run a single worker process or replace it with
a shared implementation.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)

STATE_TTL_SECONDS = 600  # 10 minutes


class OAuthStateStore:
    """In-memory map of state nonce to ``(user_id, expiry)``.

    Args:
        ttl_seconds: Lifetime of an issued state value.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: float = STATE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def issue(self, user_id: str) -> str:
        """Create a one-time state value for *user_id*."""
        state = secrets.token_urlsafe(32)
        with self._lock:
            self._evict_expired()
            self._entries[state] = (user_id, self._clock() + self._ttl)
        logger.info("Issued OAuth state (state=%s...)", state[:8])
        return state

    def consume(self, state: str) -> str | None:
        """Resolve and invalidate *state*.

        Returns:
            The user id the state was issued for, or ``None`` if the state
            is unknown, already used, or expired.
        """
        with self._lock:
            self._evict_expired()
            entry = self._entries.pop(state, None)
        if entry is None:
            return None
        user_id, expiry = entry
        if self._clock() >= expiry:
            return None
        return user_id

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict_expired(self) -> None:
        now = self._clock()
        expired = [k for k, (_, exp) in self._entries.items() if now >= exp]
        for k in expired:
            del self._entries[k]
