"""Bearer-token authentication collaborator.

The sync service does not issue sessions; it only needs to map a bearer
token to a user id.  :class:`StaticTokenAuthenticator` does that from a
fixed table (``API_TOKENS``), and any object with the same ``authenticate``
coroutine can replace it.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Mapping
from typing import Protocol

logger = logging.getLogger(__name__)


class Authenticator(Protocol):
    """Maps a bearer token to a user id."""

    async def authenticate(self, token: str) -> str | None: ...


class StaticTokenAuthenticator:
    """Authenticator backed by a ``token -> user_id`` mapping.

    Tokens are compared in constant time.
    """

    def __init__(self, tokens: Mapping[str, str]) -> None:
        self._tokens = dict(tokens)

    async def authenticate(self, token: str) -> str | None:
        if not token:
            return None
        for known, user_id in self._tokens.items():
            if hmac.compare_digest(known.encode("utf-8"), token.encode("utf-8")):
                return user_id
        logger.debug("Rejected unknown bearer token")
        return None
