"""Logging setup for the cal-sync service.

Every record goes to *stderr* as one pipe-separated line with an ISO 8601
timestamp.  Uvicorn's loggers propagate to the root logger, so request
logs share the format.

OAuth material must never reach the logs.  :class:`SecretRedactingFilter`
is attached to the service handler and masks bearer headers and Google
token shapes that slip into a message or its arguments.
"""

from __future__ import annotations

import logging
import re
import sys

_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Marks the handler we own so repeated setup calls reuse it.
_HANDLER_ATTR = "_cal_sync_log_handler"

REDACTED = "[redacted]"

_SECRET_PATTERNS = (
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._~+/=-]+"),
    re.compile(r"ya29\.[A-Za-z0-9._-]+"),  # Google access tokens
    re.compile(r"1//[A-Za-z0-9._-]+"),  # Google refresh tokens
)

# Third-party loggers that are noisy at INFO.
_QUIET_LOGGERS: dict[str, int] = {
    "googleapiclient.discovery_cache": logging.ERROR,
    "google_auth_httplib2": logging.WARNING,
    "httpx": logging.WARNING,
}


def redact(text: str) -> str:
    """Mask anything in *text* that looks like an OAuth credential."""
    for pattern in _SECRET_PATTERNS:
        if pattern.groups:
            text = pattern.sub(lambda m: m.group(1) + REDACTED, text)
        else:
            text = pattern.sub(REDACTED, text)
    return text


class SecretRedactingFilter(logging.Filter):
    """Rewrite a record's message with credentials masked.

    The message is rendered once with its arguments and the arguments are
    cleared, so a token passed as ``%s`` is caught as well.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger for the service.

    Safe to call more than once: the second call only updates the level of
    the handler added by the first.

    Args:
        level: A standard logging level name (e.g. ``"DEBUG"``).

    Raises:
        ValueError: If *level* is not a recognised logging level string.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level!r}")

    root = logging.getLogger()
    root.setLevel(numeric_level)

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    for handler in root.handlers:
        if getattr(handler, _HANDLER_ATTR, False):
            handler.setLevel(numeric_level)
            return

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S"))
    handler.addFilter(SecretRedactingFilter())
    setattr(handler, _HANDLER_ATTR, True)
    root.addHandler(handler)
