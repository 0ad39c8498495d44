"""Shared fixtures for cal-sync tests."""

from __future__ import annotations

import logging
from collections.abc import Generator

import pytest

_ENV_VARS = (
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_REDIRECT_URI",
    "TOKEN_ENCRYPTION_SECRET",
    "API_TOKENS",
    "DATABASE_PATH",
    "POST_AUTH_REDIRECT",
    "FETCH_CONCURRENCY",
    "CALENDAR_TIMEOUT_SECONDS",
    "FETCH_TIMEOUT_SECONDS",
    "IMPORT_TIMEOUT_SECONDS",
    "LOG_LEVEL",
)


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove all cal-sync-related environment variables.

    Patches ``load_dotenv`` so a real ``.env`` file cannot re-inject values
    that the test explicitly removed.
    """
    monkeypatch.setattr("cal_sync.config.load_dotenv", lambda *_a, **_kw: None)
    for key in _ENV_VARS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture()
def monkeypatch_env(monkeypatch: pytest.MonkeyPatch, clean_env: None) -> dict[str, str]:
    """Set the Google and encryption variables to valid test values.

    Returns the dict of variables so tests can inspect or override values.
    """
    env_vars = {
        "GOOGLE_CLIENT_ID": "test-client-id.apps.googleusercontent.com",
        "GOOGLE_CLIENT_SECRET": "test-client-secret",
        "TOKEN_ENCRYPTION_SECRET": "test-encryption-secret",
        "API_TOKENS": "token-alice:alice,token-bob:bob",
    }
    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)
    return env_vars


@pytest.fixture(autouse=True)
def _reset_root_logger() -> Generator[None, None, None]:
    """Reset the root logger after each test to prevent handler leaks."""
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    yield
    root.handlers = original_handlers
    root.setLevel(original_level)
