"""Custom exceptions and retry logic for calendar sync operations.

Defines the calendar sync exception hierarchy and a ``@with_retry``
decorator that handles transient Google Calendar API failures (rate limits,
network errors) with exponential backoff.

Exception hierarchy::

    CalendarSyncError               (base for everything in this package)
    +-- CalendarValidationError     (malformed caller input, raised before I/O)
    +-- CalendarAuthError           (no connection, bad credential, OAuth failure)
    +-- CalendarAPIError            (provider failures other than auth)
    |   +-- CalendarRateLimitError  (HTTP 429 rate-limit responses)
    |   +-- CalendarNotFoundError   (HTTP 404)
    +-- PersistenceError            (local store rejected a read or write)
        +-- DuplicateEventError     (unique external id already stored)
"""

from __future__ import annotations

import functools
import json
import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Any, TypeVar

import httplib2
from googleapiclient.errors import HttpError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# ---------------------------------------------------------------------------
# Exception classes
# ---------------------------------------------------------------------------


class CalendarSyncError(Exception):
    """Base exception for calendar sync errors."""


class ValidationReason(str, Enum):
    """Why caller input was rejected."""

    INVALID_WINDOW = "invalid_window"
    EMPTY_CALENDAR_SET = "empty_calendar_set"
    INVALID_SELECTION = "invalid_selection"


class CalendarValidationError(CalendarSyncError):
    """Raised when caller input is malformed.

    Always raised before any remote or store I/O takes place.

    Attributes:
        reason: The :class:`ValidationReason` describing the problem.
    """

    def __init__(self, reason: ValidationReason, message: str | None = None) -> None:
        super().__init__(message or reason.value)
        self.reason = reason


class AuthReason(str, Enum):
    """Why an authentication or authorization step failed."""

    NOT_CONFIGURED = "not_configured"
    MISSING_SECRET = "missing_secret"
    INVALID_STATE = "invalid_state"
    TOKEN_EXCHANGE_FAILED = "token_exchange_failed"
    NOT_CONNECTED = "not_connected"
    REFRESH_FAILED = "refresh_failed"
    CREDENTIAL_UNREADABLE = "credential_unreadable"
    PROVIDER_REJECTED = "provider_rejected"


_AUTH_MESSAGES: dict[AuthReason, str] = {
    AuthReason.NOT_CONFIGURED: "Google Calendar integration not configured",
    AuthReason.MISSING_SECRET: "Token encryption secret is not configured",
    AuthReason.INVALID_STATE: "Authorization state is invalid or expired",
    AuthReason.TOKEN_EXCHANGE_FAILED: "Token exchange failed",
    AuthReason.NOT_CONNECTED: "Not connected to Google Calendar",
    AuthReason.REFRESH_FAILED: "Token refresh failed; reconnect Google Calendar",
    AuthReason.CREDENTIAL_UNREADABLE: "Stored credential could not be decrypted",
    AuthReason.PROVIDER_REJECTED: "Google Calendar rejected the credential",
}


class CalendarAuthError(CalendarSyncError):
    """Raised when calendar authentication or authorization fails.

    Attributes:
        reason: The :class:`AuthReason` for the failure.
    """

    def __init__(self, reason: AuthReason, message: str | None = None) -> None:
        super().__init__(message or _AUTH_MESSAGES[reason])
        self.reason = reason


class CalendarAPIError(CalendarSyncError):
    """Base exception for Google Calendar API errors.

    Attributes:
        status_code: HTTP status code from the API, or ``None`` if the
            error did not originate from an HTTP response.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CalendarRateLimitError(CalendarAPIError):
    """Raised when the Calendar API returns HTTP 429 (rate limit exceeded)."""

    def __init__(self, message: str = "Calendar API rate limit exceeded") -> None:
        super().__init__(message, status_code=429)


class CalendarNotFoundError(CalendarAPIError):
    """Raised when a Calendar resource is not found (HTTP 404).

    Typically occurs when a selected calendar was deleted or unshared.
    """

    def __init__(self, message: str = "Calendar resource not found") -> None:
        super().__init__(message, status_code=404)


class PersistenceError(CalendarSyncError):
    """Raised when the local store rejects a read or write."""


class DuplicateEventError(PersistenceError):
    """Raised when an event with the same external id is already stored."""


# ---------------------------------------------------------------------------
# Retry decorator
# ---------------------------------------------------------------------------

_DEFAULT_MAX_RETRIES = 3
_DEFAULT_BASE_DELAY = 1.0  # seconds


# 403 reasons Google uses for quota exhaustion rather than a bad credential.
_RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})


def _error_reasons(error: HttpError) -> set[str]:
    """Collect the ``errors[].reason`` values from a Google error body."""
    try:
        data = json.loads(error.content.decode("utf-8"))
        details = data["error"]["errors"]
    except (ValueError, TypeError, KeyError, AttributeError):
        return set()
    if not isinstance(details, list):
        return set()
    return {d["reason"] for d in details if isinstance(d, dict) and "reason" in d}


def _classify_http_error(error: HttpError) -> CalendarSyncError:
    """Map an ``HttpError`` to the appropriate calendar exception.

    Only 401 means the credential itself was rejected.  Google answers 403
    for per-calendar conditions (quota, a calendar no longer shared), so a
    403 stays a :class:`CalendarAPIError` and is reported for that calendar
    alone.

    Args:
        error: The ``googleapiclient.errors.HttpError`` to classify.

    Returns:
        A :class:`CalendarAPIError` subclass matching the HTTP status code,
        or a :class:`CalendarAuthError` for 401 responses.
    """
    status = error.resp.status

    if status == 404:
        return CalendarNotFoundError(str(error))
    if status == 429:
        return CalendarRateLimitError(str(error))
    if status == 401:
        return CalendarAuthError(AuthReason.PROVIDER_REJECTED)
    if status == 403 and _error_reasons(error) & _RATE_LIMIT_REASONS:
        return CalendarRateLimitError(str(error))
    return CalendarAPIError(str(error), status_code=status)


def with_retry(
    max_retries: int = _DEFAULT_MAX_RETRIES,
    base_delay: float = _DEFAULT_BASE_DELAY,
) -> Callable[[F], F]:
    """Decorator that retries Calendar API calls on transient failures.

    Retry policy:
    - **HTTP 429**, or 403 with a rate-limit reason: exponential backoff, up
      to *max_retries*.
    - **Network errors** (``OSError``, ``TimeoutError``, httplib2 transport
      errors): exponential backoff, up to *max_retries*.
    - **HTTP 401**: raise :class:`CalendarAuthError` immediately.  Token
      refresh is owned by the credential vault, not the API wrapper.
    - **HTTP 404**: raise :class:`CalendarNotFoundError` immediately.
    - Other HTTP errors: raise :class:`CalendarAPIError` immediately.

    The wrapped function is blocking; callers run it in a worker thread, so
    the backoff sleep never stalls the event loop.

    Args:
        max_retries: Maximum number of retry attempts for rate-limit and
            network errors.  Defaults to 3.
        base_delay: Initial backoff delay in seconds.  Doubled on each
            subsequent retry.  Defaults to 1.0.

    Returns:
        A decorator that wraps the target function with retry logic.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)

                except HttpError as exc:
                    cal_error = _classify_http_error(exc)

                    if isinstance(cal_error, CalendarRateLimitError):
                        if attempt >= max_retries:
                            logger.error(
                                "Rate limit exceeded after %d retries: %s",
                                max_retries,
                                exc,
                            )
                            raise cal_error from exc
                        delay = base_delay * (2**attempt)
                        logger.warning(
                            "Rate limited (HTTP %s), retrying in %.1fs (attempt %d/%d)",
                            exc.resp.status,
                            delay,
                            attempt + 1,
                            max_retries,
                        )
                        time.sleep(delay)
                        continue

                    if isinstance(cal_error, CalendarAuthError):
                        logger.warning("Calendar API rejected credential (HTTP %s)", exc.resp.status)
                    elif isinstance(cal_error, CalendarNotFoundError):
                        logger.error("Resource not found (404): %s", exc)
                    else:
                        logger.error(
                            "Calendar API error (HTTP %s): %s",
                            getattr(cal_error, "status_code", None),
                            exc,
                        )
                    raise cal_error from exc

                except (OSError, TimeoutError, httplib2.HttpLib2Error) as exc:
                    if attempt >= max_retries:
                        logger.error(
                            "Network error after %d retries: %s",
                            max_retries,
                            exc,
                        )
                        raise CalendarAPIError(
                            f"Network error after {max_retries} retries: {exc}"
                        ) from exc
                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Network error, retrying in %.1fs (attempt %d/%d): %s",
                        delay,
                        attempt + 1,
                        max_retries,
                        exc,
                    )
                    time.sleep(delay)
                    continue

            raise CalendarAPIError("Retry loop exhausted unexpectedly")  # pragma: no cover

        return wrapper  # type: ignore[return-value]

    return decorator
