"""Configuration loading for cal-sync.

Reads settings from environment variables (with .env support via python-dotenv)
and validates numeric limits.  Google OAuth client settings and the token
encryption secret are optional at load time: the service starts without them
and reports the integration as not configured.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

_DEFAULT_REDIRECT_URI = "http://localhost:5000/calendar-sync/callback"


class ConfigError(Exception):
    """Raised when configuration is missing or invalid."""


@dataclass(frozen=True)
class Settings:
    """Service settings loaded from environment variables.

    Attributes:
        google_client_id: OAuth client id from Google Cloud Console.
        google_client_secret: OAuth client secret.
        google_redirect_uri: Callback URL registered with Google.
        token_encryption_secret: Server-held secret used to derive the
            key that encrypts stored OAuth tokens.
        api_tokens: Mapping of bearer token to user id.
        database_path: SQLite database file.
        post_auth_redirect: Where the OAuth callback sends the browser.
        fetch_concurrency: Maximum concurrent per-calendar fetches.
        calendar_timeout_seconds: Timeout for a single calendar's fetch.
        fetch_timeout_seconds: Overall timeout for a fetch request.
        import_timeout_seconds: Overall timeout for an import request.
        log_level: Logging level (default ``"INFO"``).
    """

    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = _DEFAULT_REDIRECT_URI
    token_encryption_secret: str = ""
    api_tokens: dict[str, str] = field(default_factory=dict)
    database_path: str = "cal_sync.db"
    post_auth_redirect: str = "/profile"
    fetch_concurrency: int = 4
    calendar_timeout_seconds: float = 30.0
    fetch_timeout_seconds: float = 120.0
    import_timeout_seconds: float = 120.0
    log_level: str = "INFO"

    @property
    def google_configured(self) -> bool:
        """Whether both OAuth client id and secret are present."""
        return bool(self.google_client_id and self.google_client_secret)

    def __repr__(self) -> str:
        return (
            f"Settings(google_client_id={self.google_client_id!r}, "
            f"google_client_secret='***', "
            f"google_redirect_uri={self.google_redirect_uri!r}, "
            f"token_encryption_secret='***', "
            f"api_tokens=<{len(self.api_tokens)} token(s)>, "
            f"database_path={self.database_path!r}, "
            f"fetch_concurrency={self.fetch_concurrency!r}, "
            f"log_level={self.log_level!r})"
        )


def _parse_api_tokens(raw: str) -> dict[str, str]:
    """Parse ``token:user_id`` pairs separated by commas.

    Raises:
        ValueError: If a pair is missing either side of the colon.
    """
    tokens: dict[str, str] = {}
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        token, sep, user_id = chunk.partition(":")
        if not sep or not token.strip() or not user_id.strip():
            raise ValueError(f"malformed token pair {chunk[:4]!r}...")
        tokens[token.strip()] = user_id.strip()
    return tokens


def load_settings() -> Settings:
    """Load and validate settings from environment variables.

    Calls :func:`dotenv.load_dotenv` so a ``.env`` file in the project root
    is picked up automatically.

    Returns:
        A validated :class:`Settings` instance.

    Raises:
        ConfigError: If any variable holds an invalid value.  The error
            message names **all** invalid variables.
    """
    load_dotenv()

    values: dict[str, object] = {}
    invalid: list[str] = []

    strings = {
        "GOOGLE_CLIENT_ID": "google_client_id",
        "GOOGLE_CLIENT_SECRET": "google_client_secret",
        "GOOGLE_REDIRECT_URI": "google_redirect_uri",
        "TOKEN_ENCRYPTION_SECRET": "token_encryption_secret",
        "DATABASE_PATH": "database_path",
        "POST_AUTH_REDIRECT": "post_auth_redirect",
        "LOG_LEVEL": "log_level",
    }
    for env_var, field_name in strings.items():
        raw = os.environ.get(env_var, "").strip()
        if raw:
            values[field_name] = raw

    raw_tokens = os.environ.get("API_TOKENS", "").strip()
    if raw_tokens:
        try:
            values["api_tokens"] = _parse_api_tokens(raw_tokens)
        except ValueError:
            invalid.append("API_TOKENS")

    raw_concurrency = os.environ.get("FETCH_CONCURRENCY", "").strip()
    if raw_concurrency:
        try:
            concurrency = int(raw_concurrency)
        except ValueError:
            invalid.append("FETCH_CONCURRENCY")
        else:
            if 1 <= concurrency <= 16:
                values["fetch_concurrency"] = concurrency
            else:
                invalid.append("FETCH_CONCURRENCY")

    timeouts = {
        "CALENDAR_TIMEOUT_SECONDS": "calendar_timeout_seconds",
        "FETCH_TIMEOUT_SECONDS": "fetch_timeout_seconds",
        "IMPORT_TIMEOUT_SECONDS": "import_timeout_seconds",
    }
    for env_var, field_name in timeouts.items():
        raw = os.environ.get(env_var, "").strip()
        if not raw:
            continue
        try:
            seconds = float(raw)
        except ValueError:
            invalid.append(env_var)
            continue
        if seconds <= 0:
            invalid.append(env_var)
        else:
            values[field_name] = seconds

    if invalid:
        names = ", ".join(invalid)
        raise ConfigError(f"Invalid environment variables: {names}")

    return Settings(**values)  # type: ignore[arg-type]
