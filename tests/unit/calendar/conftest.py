"""Shared fixtures for calendar sync unit tests."""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import MagicMock, create_autospec

import pytest

from cal_sync.calendar.crypto import TokenCipher
from cal_sync.calendar.provider import GoogleCalendarProvider
from cal_sync.calendar.state import OAuthStateStore
from cal_sync.calendar.vault import CredentialVault
from cal_sync.models.calendar import ConnectionRecord, TokenGrant
from tests.unit.calendar.fakes import NOW, InMemoryStore


@pytest.fixture()
def store() -> InMemoryStore:
    """Return an empty in-memory store."""
    return InMemoryStore()


@pytest.fixture()
def cipher() -> TokenCipher:
    """Return a token cipher with a fixed test secret."""
    return TokenCipher("unit-test-secret")


@pytest.fixture()
def provider() -> MagicMock:
    """Return an autospecced, configured Google provider."""
    mock = create_autospec(GoogleCalendarProvider, instance=True)
    mock.configured = True
    mock.authorization_url.return_value = "https://accounts.google.com/o/oauth2/auth?state=x"
    mock.exchange_code.return_value = TokenGrant(
        access_token="access-1",
        refresh_token="refresh-1",
        expiry=NOW + timedelta(hours=1),
    )
    mock.fetch_account_email.return_value = "alice@example.com"
    mock.refresh.return_value = TokenGrant(
        access_token="access-2",
        refresh_token="refresh-1",
        expiry=NOW + timedelta(hours=1),
    )
    mock.list_calendars.return_value = []
    mock.list_events.return_value = []
    return mock


@pytest.fixture()
def state_store() -> OAuthStateStore:
    """Return a fresh OAuth state store."""
    return OAuthStateStore()


@pytest.fixture()
def vault(
    store: InMemoryStore,
    provider: MagicMock,
    cipher: TokenCipher,
    state_store: OAuthStateStore,
) -> CredentialVault:
    """Return a vault whose clock is frozen at :data:`NOW`."""
    return CredentialVault(store, provider, cipher, state_store=state_store, now=lambda: NOW)


@pytest.fixture()
def connect(store: InMemoryStore, cipher: TokenCipher):
    """Return a helper that stores an encrypted connection record."""

    def _connect(
        user_id: str = "alice",
        access_token: str = "access-1",
        refresh_token: str | None = "refresh-1",
        expiry: datetime | None = NOW + timedelta(hours=1),
        selected: list[str] | None = None,
        is_connected: bool = True,
    ) -> ConnectionRecord:
        record = ConnectionRecord(
            user_id=user_id,
            access_token=cipher.encrypt(access_token),
            refresh_token=cipher.encrypt(refresh_token) if refresh_token else None,
            token_expiry=expiry,
            is_connected=is_connected,
            account_email=f"{user_id}@example.com",
            selected_calendar_ids=list(selected or []),
        )
        store.connections[user_id] = record
        return record

    return _connect
