"""Tests for :class:`cal_sync.calendar.provider.GoogleCalendarProvider`.

The Google discovery client is replaced by a ``MagicMock`` passed as
``build_service``; OAuth ``Flow`` and ``Credentials`` are patched where a
call would otherwise reach Google.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from google.auth.exceptions import RefreshError, TransportError
from googleapiclient.errors import HttpError
from httplib2 import Response

from cal_sync.calendar.exceptions import (
    AuthReason,
    CalendarAPIError,
    CalendarAuthError,
    CalendarNotFoundError,
)
from cal_sync.calendar.provider import SCOPES, GoogleCalendarProvider

REDIRECT_URI = "http://localhost:5000/calendar-sync/callback"


def _provider(build_service: MagicMock | None = None) -> GoogleCalendarProvider:
    return GoogleCalendarProvider(
        "client-id",
        "client-secret",
        REDIRECT_URI,
        build_service=build_service or MagicMock(),
    )


def _http_error(status: int) -> HttpError:
    return HttpError(Response({"status": str(status)}), b"simulated error")


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


class TestAuthorizationUrl:
    def test_url_carries_state_and_offline_consent(self) -> None:
        url = _provider().authorization_url("opaque-state")
        query = parse_qs(urlparse(url).query)

        assert url.startswith("https://accounts.google.com/o/oauth2/auth")
        assert query["state"] == ["opaque-state"]
        assert query["access_type"] == ["offline"]
        assert query["prompt"] == ["consent"]
        assert query["client_id"] == ["client-id"]
        assert query["redirect_uri"] == [REDIRECT_URI]

    def test_url_requests_read_only_scopes(self) -> None:
        url = _provider().authorization_url("s")
        scopes = parse_qs(urlparse(url).query)["scope"][0].split()

        assert set(scopes) == set(SCOPES)
        assert all("readonly" in s or s.endswith("userinfo.email") for s in scopes)

    def test_not_configured(self) -> None:
        provider = GoogleCalendarProvider("", "", REDIRECT_URI)

        assert provider.configured is False
        with pytest.raises(CalendarAuthError) as exc_info:
            provider.authorization_url("s")
        assert exc_info.value.reason is AuthReason.NOT_CONFIGURED


class TestExchangeCode:
    def test_success_returns_grant(self) -> None:
        flow = MagicMock()
        flow.credentials.token = "access-token"
        flow.credentials.refresh_token = "refresh-token"
        flow.credentials.expiry = datetime(2024, 5, 1, 13, 0)

        with patch("cal_sync.calendar.provider.Flow") as flow_cls:
            flow_cls.from_client_config.return_value = flow
            grant = _provider().exchange_code("auth-code")

        flow.fetch_token.assert_called_once_with(code="auth-code")
        assert grant.access_token == "access-token"
        assert grant.refresh_token == "refresh-token"
        assert grant.expiry == datetime(2024, 5, 1, 13, 0, tzinfo=timezone.utc)

    def test_rejected_code(self) -> None:
        flow = MagicMock()
        flow.fetch_token.side_effect = ValueError("invalid_grant")

        with patch("cal_sync.calendar.provider.Flow") as flow_cls:
            flow_cls.from_client_config.return_value = flow
            with pytest.raises(CalendarAuthError) as exc_info:
                _provider().exchange_code("bad-code")

        assert exc_info.value.reason is AuthReason.TOKEN_EXCHANGE_FAILED

    def test_missing_access_token(self) -> None:
        flow = MagicMock()
        flow.credentials.token = None

        with patch("cal_sync.calendar.provider.Flow") as flow_cls:
            flow_cls.from_client_config.return_value = flow
            with pytest.raises(CalendarAuthError, match="No access token"):
                _provider().exchange_code("code")


class TestRefresh:
    def test_success(self) -> None:
        creds = MagicMock()
        creds.token = "new-access"
        creds.refresh_token = None
        creds.expiry = datetime(2024, 5, 1, 14, 0)

        with patch("cal_sync.calendar.provider.Credentials", return_value=creds):
            grant = _provider().refresh("refresh-token")

        creds.refresh.assert_called_once()
        assert grant.access_token == "new-access"
        assert grant.refresh_token == "refresh-token"
        assert grant.expiry is not None and grant.expiry.tzinfo is not None

    def test_revoked_grant(self) -> None:
        creds = MagicMock()
        creds.refresh.side_effect = RefreshError("invalid_grant")

        with patch("cal_sync.calendar.provider.Credentials", return_value=creds):
            with pytest.raises(CalendarAuthError) as exc_info:
                _provider().refresh("refresh-token")

        assert exc_info.value.reason is AuthReason.REFRESH_FAILED

    def test_transport_failure_is_not_an_auth_failure(self) -> None:
        creds = MagicMock()
        creds.refresh.side_effect = TransportError("connection refused")

        with patch("cal_sync.calendar.provider.Credentials", return_value=creds):
            with pytest.raises(CalendarAPIError):
                _provider().refresh("refresh-token")


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


class TestFetchAccountEmail:
    def test_returns_email(self) -> None:
        build_service = MagicMock()
        service = build_service.return_value
        service.userinfo.return_value.get.return_value.execute.return_value = {
            "email": "alice@example.com"
        }

        email = _provider(build_service).fetch_account_email("token")

        assert email == "alice@example.com"
        assert build_service.call_args.args[:2] == ("oauth2", "v2")


class TestListCalendars:
    def test_pagination(self) -> None:
        build_service = MagicMock()
        execute = build_service.return_value.calendarList.return_value.list.return_value.execute
        execute.side_effect = [
            {"items": [{"id": "a"}], "nextPageToken": "p2"},
            {"items": [{"id": "b"}]},
        ]

        calendars = _provider(build_service).list_calendars("token")

        assert [c["id"] for c in calendars] == ["a", "b"]
        assert execute.call_count == 2


class TestListEvents:
    def test_query_parameters(self) -> None:
        build_service = MagicMock()
        events_list = build_service.return_value.events.return_value.list
        events_list.return_value.execute.return_value = {"items": [{"id": "e1"}]}

        items = _provider(build_service).list_events(
            "token",
            "primary",
            datetime(2024, 5, 1, tzinfo=timezone.utc),
            datetime(2024, 5, 8),
        )

        assert items == [{"id": "e1"}]
        kwargs = events_list.call_args.kwargs
        assert kwargs["calendarId"] == "primary"
        assert kwargs["timeMin"] == "2024-05-01T00:00:00+00:00"
        assert kwargs["timeMax"] == "2024-05-08T00:00:00+00:00"
        assert kwargs["singleEvents"] is True
        assert kwargs["orderBy"] == "startTime"
        assert kwargs["maxResults"] == 250

    def test_pagination(self) -> None:
        build_service = MagicMock()
        events_list = build_service.return_value.events.return_value.list
        events_list.return_value.execute.side_effect = [
            {"items": [{"id": "e1"}, {"id": "e2"}], "nextPageToken": "next"},
            {"items": [{"id": "e3"}]},
        ]

        items = _provider(build_service).list_events(
            "token",
            "primary",
            datetime(2024, 5, 1, tzinfo=timezone.utc),
            datetime(2024, 5, 2, tzinfo=timezone.utc),
        )

        assert [e["id"] for e in items] == ["e1", "e2", "e3"]
        assert events_list.call_args_list[1].kwargs["pageToken"] == "next"

    def test_missing_calendar(self) -> None:
        build_service = MagicMock()
        events_list = build_service.return_value.events.return_value.list
        events_list.return_value.execute.side_effect = _http_error(404)

        with pytest.raises(CalendarNotFoundError):
            _provider(build_service).list_events(
                "token",
                "gone",
                datetime(2024, 5, 1, tzinfo=timezone.utc),
                datetime(2024, 5, 2, tzinfo=timezone.utc),
            )

    def test_rate_limit_retried(self) -> None:
        build_service = MagicMock()
        events_list = build_service.return_value.events.return_value.list
        events_list.return_value.execute.side_effect = [_http_error(429), {"items": []}]

        with patch("cal_sync.calendar.exceptions.time.sleep") as mock_sleep:
            items = _provider(build_service).list_events(
                "token",
                "primary",
                datetime(2024, 5, 1, tzinfo=timezone.utc),
                datetime(2024, 5, 2, tzinfo=timezone.utc),
            )

        assert items == []
        mock_sleep.assert_called_once()
