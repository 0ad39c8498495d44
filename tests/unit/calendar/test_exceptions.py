"""Tests for custom exceptions and the ``@with_retry`` decorator.

Covers the exception hierarchy in :mod:`cal_sync.calendar.exceptions` and the
``@with_retry`` decorator's handling of rate limits, rejected credentials,
network timeouts, and non-retryable responses.

Test matrix:

| Test | Scenario | Expected |
|---|---|---|
| test_rate_limit_429_retries | HTTP 429 once, then OK | Retries, succeeds on 2nd call |
| test_rate_limit_429_max_retries_exceeded | HTTP 429 four times | Raises CalendarRateLimitError |
| test_http_401_raises_auth_error | HTTP 401 | CalendarAuthError(PROVIDER_REJECTED), 1 call |
| test_forbidden_is_api_error | HTTP 403 "forbidden" | CalendarAPIError(403), 1 call |
| test_quota_reason_is_retried | HTTP 403 rateLimitExceeded once | Retries, succeeds |
| test_httplib2_transport_error_retries | ServerNotFoundError once | Retries, succeeds |
| test_network_timeout_retries | Timeout once, then OK | Retries, succeeds |
| test_network_timeout_max_retries_exceeded | Timeout four times | Raises CalendarAPIError |
| test_not_found_404_no_retry | HTTP 404 | Raises CalendarNotFoundError, 1 call |
| test_server_error_500_no_retry | HTTP 500 | Raises CalendarAPIError(500), 1 call |
"""

from __future__ import annotations

import json

import httplib2
import pytest
from googleapiclient.errors import HttpError
from httplib2 import Response

from cal_sync.calendar.exceptions import (
    AuthReason,
    CalendarAPIError,
    CalendarAuthError,
    CalendarNotFoundError,
    CalendarRateLimitError,
    CalendarSyncError,
    CalendarValidationError,
    DuplicateEventError,
    PersistenceError,
    ValidationReason,
    with_retry,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_http_error(status: int, content: bytes = b"simulated error") -> HttpError:
    """Create a ``googleapiclient.errors.HttpError`` with the given status code."""
    resp = Response({"status": str(status)})
    return HttpError(resp, content)


def _google_error_body(reason: str) -> bytes:
    """A Calendar API error payload carrying one ``errors[].reason``."""
    return json.dumps(
        {"error": {"code": 403, "message": reason, "errors": [{"reason": reason}]}}
    ).encode("utf-8")


# ---------------------------------------------------------------------------
# Hierarchy
# ---------------------------------------------------------------------------


class TestExceptionHierarchy:
    """Every error derives from CalendarSyncError."""

    @pytest.mark.parametrize(
        "exc_type",
        [
            CalendarValidationError,
            CalendarAuthError,
            CalendarAPIError,
            CalendarRateLimitError,
            CalendarNotFoundError,
            PersistenceError,
            DuplicateEventError,
        ],
    )
    def test_subclass_of_base(self, exc_type: type) -> None:
        assert issubclass(exc_type, CalendarSyncError)

    def test_auth_error_default_message(self) -> None:
        """A reason without a message gets a readable default."""
        error = CalendarAuthError(AuthReason.NOT_CONNECTED)

        assert error.reason is AuthReason.NOT_CONNECTED
        assert "Not connected" in str(error)

    def test_validation_error_carries_reason(self) -> None:
        error = CalendarValidationError(ValidationReason.INVALID_WINDOW, "bad window")

        assert error.reason is ValidationReason.INVALID_WINDOW
        assert str(error) == "bad window"

    def test_status_codes(self) -> None:
        assert CalendarRateLimitError().status_code == 429
        assert CalendarNotFoundError().status_code == 404
        assert CalendarAPIError("boom", 500).status_code == 500


# ---------------------------------------------------------------------------
# Rate limit (429)
# ---------------------------------------------------------------------------


class TestRateLimit429:
    """HTTP 429 is retried with backoff."""

    def test_rate_limit_429_retries(self) -> None:
        """Decorator retries after a single 429 and returns success."""
        call_count = 0

        @with_retry(max_retries=3, base_delay=0.0)
        def api_call() -> str:
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise _make_http_error(429)
            return "ok"

        assert api_call() == "ok"
        assert call_count == 2

    def test_rate_limit_429_max_retries_exceeded(self) -> None:
        """CalendarRateLimitError is raised after exhausting all retries."""
        call_count = 0

        @with_retry(max_retries=3, base_delay=0.0)
        def api_call() -> str:
            nonlocal call_count
            call_count += 1
            raise _make_http_error(429)

        with pytest.raises(CalendarRateLimitError):
            api_call()

        # 1 initial attempt + 3 retries = 4 total calls
        assert call_count == 4


# ---------------------------------------------------------------------------
# Rejected credential (401) and per-calendar 403
# ---------------------------------------------------------------------------


class TestRejectedCredential:
    """401 is never retried; refresh belongs to the vault."""

    def test_http_401_raises_auth_error(self) -> None:
        call_count = 0

        @with_retry(max_retries=3, base_delay=0.0)
        def api_call() -> str:
            nonlocal call_count
            call_count += 1
            raise _make_http_error(401)

        with pytest.raises(CalendarAuthError) as exc_info:
            api_call()

        assert exc_info.value.reason is AuthReason.PROVIDER_REJECTED
        assert call_count == 1


class TestForbidden403:
    """403 concerns one calendar or quota, never the credential."""

    def test_forbidden_is_api_error(self) -> None:
        call_count = 0

        @with_retry(max_retries=3, base_delay=0.0)
        def api_call() -> str:
            nonlocal call_count
            call_count += 1
            raise _make_http_error(403, _google_error_body("forbidden"))

        with pytest.raises(CalendarAPIError) as exc_info:
            api_call()

        assert not isinstance(exc_info.value, CalendarRateLimitError)
        assert exc_info.value.status_code == 403
        assert call_count == 1

    def test_forbidden_without_json_body(self) -> None:
        @with_retry(max_retries=3, base_delay=0.0)
        def api_call() -> str:
            raise _make_http_error(403)

        with pytest.raises(CalendarAPIError) as exc_info:
            api_call()

        assert exc_info.value.status_code == 403

    @pytest.mark.parametrize("reason", ["rateLimitExceeded", "userRateLimitExceeded"])
    def test_quota_reason_is_retried(self, reason: str) -> None:
        call_count = 0

        @with_retry(max_retries=3, base_delay=0.0)
        def api_call() -> str:
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise _make_http_error(403, _google_error_body(reason))
            return "ok"

        assert api_call() == "ok"
        assert call_count == 2

    def test_quota_reason_exhausted(self) -> None:
        @with_retry(max_retries=2, base_delay=0.0)
        def api_call() -> str:
            raise _make_http_error(403, _google_error_body("rateLimitExceeded"))

        with pytest.raises(CalendarRateLimitError):
            api_call()


# ---------------------------------------------------------------------------
# Network timeout / OSError
# ---------------------------------------------------------------------------


class TestNetworkErrors:
    """Network errors are retried, then surfaced as CalendarAPIError."""

    def test_network_timeout_retries(self) -> None:
        """Decorator retries after a single TimeoutError and succeeds."""
        call_count = 0

        @with_retry(max_retries=3, base_delay=0.0)
        def api_call() -> str:
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise TimeoutError("connection timed out")
            return "recovered"

        assert api_call() == "recovered"
        assert call_count == 2

    def test_network_timeout_max_retries_exceeded(self) -> None:
        """CalendarAPIError is raised after exhausting all network retries."""
        call_count = 0

        @with_retry(max_retries=3, base_delay=0.0)
        def api_call() -> str:
            nonlocal call_count
            call_count += 1
            raise ConnectionResetError("connection reset")

        with pytest.raises(CalendarAPIError, match="Network error"):
            api_call()

        assert call_count == 4

    def test_httplib2_transport_error_retries(self) -> None:
        """httplib2 errors are not OSErrors but are still transient."""
        call_count = 0

        @with_retry(max_retries=3, base_delay=0.0)
        def api_call() -> str:
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise httplib2.ServerNotFoundError("Unable to find the server")
            return "recovered"

        assert api_call() == "recovered"
        assert call_count == 2

    def test_httplib2_transport_error_exhausted(self) -> None:
        @with_retry(max_retries=2, base_delay=0.0)
        def api_call() -> str:
            raise httplib2.RedirectLimit("too many redirects", Response({"status": "302"}), b"")

        with pytest.raises(CalendarAPIError, match="Network error"):
            api_call()


# ---------------------------------------------------------------------------
# Non-retryable HTTP errors
# ---------------------------------------------------------------------------


class TestNonRetryable:
    """404 and other HTTP errors raise immediately."""

    def test_not_found_404_no_retry(self) -> None:
        call_count = 0

        @with_retry(max_retries=3, base_delay=0.0)
        def api_call() -> None:
            nonlocal call_count
            call_count += 1
            raise _make_http_error(404)

        with pytest.raises(CalendarNotFoundError):
            api_call()

        assert call_count == 1

    def test_server_error_500_no_retry(self) -> None:
        call_count = 0

        @with_retry(max_retries=3, base_delay=0.0)
        def api_call() -> None:
            nonlocal call_count
            call_count += 1
            raise _make_http_error(500)

        with pytest.raises(CalendarAPIError) as exc_info:
            api_call()

        assert exc_info.value.status_code == 500
        assert call_count == 1
