"""Credential vault for Google Calendar connections.

:class:`CredentialVault` owns the OAuth 2.0 authorization-code lifecycle for
each user and keeps the resulting tokens encrypted at rest:

1. **Authorize** -- :meth:`CredentialVault.begin_authorization` issues an
   opaque state value and returns the consent URL.
2. **Callback** -- :meth:`CredentialVault.complete_authorization` resolves
   the state, exchanges the code, encrypts both tokens and upserts the
   connection record.
3. **Use** -- :meth:`CredentialVault.get_valid_credential` decrypts the
   access token, refreshing it first when it is at or near expiry.
   Refresh is serialized per user: a caller that waited on another
   caller's refresh re-reads the record and uses the fresh token.
4. **Disconnect** -- :meth:`CredentialVault.disconnect` deletes the record.

A refresh that Google rejects while the stored token has already expired
moves the connection back to disconnected.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from cal_sync.calendar.crypto import TokenCipher
from cal_sync.calendar.exceptions import (
    AuthReason,
    CalendarAPIError,
    CalendarAuthError,
    CalendarSyncError,
)
from cal_sync.calendar.provider import GoogleCalendarProvider
from cal_sync.calendar.state import OAuthStateStore
from cal_sync.models.calendar import ConnectionRecord, ConnectionStatus, Credential
from cal_sync.store import SyncStore

logger = logging.getLogger(__name__)

# Tokens this close to expiry are refreshed before use.
_REFRESH_SKEW = timedelta(seconds=60)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CredentialVault:
    """Encrypted storage and refresh of per-user Google credentials.

    Args:
        store: Persistence for connection records.
        provider: Google OAuth / Calendar client.
        cipher: Token cipher, or ``None`` when no encryption secret is
            configured (every operation that touches tokens then raises
            ``MISSING_SECRET``).
        state_store: Store for OAuth state values.
        now: Clock returning an aware UTC datetime, injectable for tests.
    """

    def __init__(
        self,
        store: SyncStore,
        provider: GoogleCalendarProvider,
        cipher: TokenCipher | None,
        state_store: OAuthStateStore | None = None,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._provider = provider
        self._cipher = cipher
        self._states = state_store or OAuthStateStore()
        self._now = now
        self._refresh_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def begin_authorization(self, user_id: str) -> str:
        """Return the Google consent URL for *user_id*.

        Raises:
            CalendarAuthError: ``NOT_CONFIGURED`` if the OAuth client is
                missing.
        """
        if not self._provider.configured:
            raise CalendarAuthError(AuthReason.NOT_CONFIGURED)
        state = self._states.issue(user_id)
        logger.info("Authorization started for user %s", user_id)
        return self._provider.authorization_url(state)

    async def complete_authorization(self, code: str, state: str) -> str:
        """Finish the OAuth flow and store the encrypted connection.

        Args:
            code: Authorization code from the callback.
            state: State value from the callback.

        Returns:
            The user id the flow was started for.

        Raises:
            CalendarAuthError: ``INVALID_STATE``, ``MISSING_SECRET`` or
                ``TOKEN_EXCHANGE_FAILED``.
        """
        user_id = self._states.consume(state)
        if user_id is None:
            logger.warning("OAuth callback received invalid or expired state")
            raise CalendarAuthError(AuthReason.INVALID_STATE)

        cipher = self._require_cipher()
        grant = await asyncio.to_thread(self._provider.exchange_code, code)

        email: str | None = None
        try:
            email = await asyncio.to_thread(self._provider.fetch_account_email, grant.access_token)
        except CalendarSyncError as exc:
            logger.warning("Could not fetch Google account email: %s", exc)

        existing = await self._store.get_connection(user_id)
        refresh_token: str | None = None
        if grant.refresh_token:
            refresh_token = cipher.encrypt(grant.refresh_token)
        elif existing is not None:
            refresh_token = existing.refresh_token

        record = ConnectionRecord(
            user_id=user_id,
            access_token=cipher.encrypt(grant.access_token),
            refresh_token=refresh_token,
            token_expiry=grant.expiry,
            is_connected=True,
            account_email=email,
            selected_calendar_ids=list(existing.selected_calendar_ids) if existing else [],
        )
        await self._store.upsert_connection(record)
        logger.info("Google Calendar connected for user %s (%s)", user_id, email or "no email")
        return user_id

    def abandon_authorization(self, state: str) -> None:
        """Invalidate *state* after the user declined consent."""
        user_id = self._states.consume(state)
        if user_id is not None:
            logger.info("Authorization abandoned for user %s", user_id)

    # ------------------------------------------------------------------
    # Credential access
    # ------------------------------------------------------------------

    async def get_valid_credential(self, user_id: str) -> Credential:
        """Return a usable access token for *user_id*.

        Raises:
            CalendarAuthError: ``NOT_CONNECTED``, ``MISSING_SECRET``,
                ``CREDENTIAL_UNREADABLE`` or ``REFRESH_FAILED``.
        """
        cipher = self._require_cipher()
        record = await self._connected_record(user_id)
        if not self._needs_refresh(record):
            return Credential(cipher.decrypt(record.access_token), record.token_expiry)

        lock = self._refresh_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._refresh_locks[user_id] = lock

        async with lock:
            # Another caller may have refreshed while we waited.
            record = await self._connected_record(user_id)
            if not self._needs_refresh(record):
                logger.debug("Using credential refreshed by a concurrent caller")
                return Credential(cipher.decrypt(record.access_token), record.token_expiry)
            return await self._refresh(record, cipher)

    # ------------------------------------------------------------------
    # Disconnect / status
    # ------------------------------------------------------------------

    async def disconnect(self, user_id: str) -> None:
        """Delete the user's connection record.  Safe to call repeatedly."""
        await self._store.delete_connection(user_id)
        logger.info("Google Calendar disconnected for user %s", user_id)

    async def status(self, user_id: str) -> ConnectionStatus:
        """Report whether the user is connected, without decrypting tokens."""
        record = await self._store.get_connection(user_id)
        if record is None:
            return ConnectionStatus(connected=False)
        return ConnectionStatus(connected=record.is_connected, email=record.account_email)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_cipher(self) -> TokenCipher:
        if self._cipher is None:
            raise CalendarAuthError(AuthReason.MISSING_SECRET)
        return self._cipher

    async def _connected_record(self, user_id: str) -> ConnectionRecord:
        record = await self._store.get_connection(user_id)
        if record is None or not record.is_connected:
            raise CalendarAuthError(AuthReason.NOT_CONNECTED)
        return record

    def _needs_refresh(self, record: ConnectionRecord) -> bool:
        if record.token_expiry is None:
            # Unknown lifetime: refresh whenever we are able to.
            return record.refresh_token is not None
        return record.token_expiry - _REFRESH_SKEW <= self._now()

    def _still_usable(self, record: ConnectionRecord) -> bool:
        if record.token_expiry is None:
            return True
        return record.token_expiry > self._now()

    async def _refresh(self, record: ConnectionRecord, cipher: TokenCipher) -> Credential:
        if record.refresh_token is None:
            if self._still_usable(record):
                return Credential(cipher.decrypt(record.access_token), record.token_expiry)
            logger.warning("Credential for user %s expired with no refresh token", record.user_id)
            await self._mark_disconnected(record)
            raise CalendarAuthError(AuthReason.REFRESH_FAILED)

        refresh_token = cipher.decrypt(record.refresh_token)
        logger.info("Refreshing Google credential for user %s", record.user_id)
        try:
            grant = await asyncio.to_thread(self._provider.refresh, refresh_token)
        except CalendarAuthError as exc:
            if exc.reason is not AuthReason.REFRESH_FAILED:
                raise
            if self._still_usable(record):
                logger.warning("Refresh rejected; using unexpired credential for user %s", record.user_id)
                return Credential(cipher.decrypt(record.access_token), record.token_expiry)
            await self._mark_disconnected(record)
            raise
        except CalendarAPIError as exc:
            if self._still_usable(record):
                logger.warning("Refresh unavailable; using unexpired credential: %s", exc)
                return Credential(cipher.decrypt(record.access_token), record.token_expiry)
            raise CalendarAuthError(AuthReason.REFRESH_FAILED, str(exc)) from exc

        record.access_token = cipher.encrypt(grant.access_token)
        if grant.refresh_token and grant.refresh_token != refresh_token:
            record.refresh_token = cipher.encrypt(grant.refresh_token)
        record.token_expiry = grant.expiry
        await self._store.upsert_connection(record)
        logger.info("Credential refreshed for user %s", record.user_id)
        return Credential(grant.access_token, grant.expiry)

    async def _mark_disconnected(self, record: ConnectionRecord) -> None:
        record.is_connected = False
        await self._store.upsert_connection(record)
        logger.warning("Connection for user %s marked disconnected", record.user_id)
