"""Google Calendar provider client.

Provides :class:`GoogleCalendarProvider`, the only component that talks to
Google.  It covers the web-server OAuth flow (authorization URL, code
exchange, refresh), the account email lookup, and the two read calls the
sync needs:

- **Calendar list** -- every calendar on the account, paginated.
- **Event list** -- single (expanded) events of one calendar intersecting
  a time window, paginated.

Methods are blocking (the Google client library is synchronous) and
stateless with respect to the user: each call receives the access token to
use.  Callers run them in a worker thread.  API calls are wrapped with
:func:`~cal_sync.calendar.exceptions.with_retry`.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from datetime import datetime
from typing import Any

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build

from cal_sync.calendar.exceptions import (
    AuthReason,
    CalendarAPIError,
    CalendarAuthError,
    with_retry,
)
from cal_sync.models.calendar import TokenGrant, ensure_utc

logger = logging.getLogger(__name__)

# Google may widen the granted scope set (e.g. adding ``openid``); oauthlib
# treats that as an error unless relaxed.
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

SCOPES: list[str] = [
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
]
"""OAuth 2.0 scopes: read-only calendar access plus the account email."""

# Upper bound Google accepts for a single events page.
_EVENTS_PAGE_SIZE = 250


class GoogleCalendarProvider:
    """Blocking client for the Google OAuth and Calendar endpoints.

    Args:
        client_id: OAuth client id.
        client_secret: OAuth client secret.
        redirect_uri: Callback URL registered with Google.
        build_service: Factory compatible with
            :func:`googleapiclient.discovery.build`.  Pass a mock here in
            tests.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        build_service: Callable[..., Any] = build,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._build_service = build_service

    @property
    def configured(self) -> bool:
        """Whether an OAuth client id and secret are available."""
        return bool(self._client_id and self._client_secret)

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def authorization_url(self, state: str) -> str:
        """Build the consent-screen URL carrying *state*.

        Requests offline access with a forced consent prompt so Google
        returns a refresh token on every connection.
        """
        self._require_configured()
        flow = self._make_flow()
        url, _ = flow.authorization_url(
            access_type="offline",
            include_granted_scopes="true",
            prompt="consent",
            state=state,
        )
        return url

    def exchange_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for tokens.

        Raises:
            CalendarAuthError: ``TOKEN_EXCHANGE_FAILED`` if Google rejects
                the code or returns no access token.
        """
        self._require_configured()
        flow = self._make_flow()
        try:
            flow.fetch_token(code=code)
        except Exception as exc:
            logger.warning("Token exchange failed: %s", exc)
            raise CalendarAuthError(
                AuthReason.TOKEN_EXCHANGE_FAILED,
                f"Token exchange failed: {exc}",
            ) from exc

        creds = flow.credentials
        if not creds.token:
            logger.warning("Token exchange returned no access token")
            raise CalendarAuthError(
                AuthReason.TOKEN_EXCHANGE_FAILED,
                "No access token received",
            )

        logger.info("Token exchange succeeded (refresh token: %s)", bool(creds.refresh_token))
        return TokenGrant(
            access_token=creds.token,
            refresh_token=creds.refresh_token,
            expiry=_aware(creds.expiry),
        )

    def refresh(self, refresh_token: str) -> TokenGrant:
        """Obtain a new access token from a refresh token.

        Raises:
            CalendarAuthError: ``REFRESH_FAILED`` if Google rejects the
                refresh token (revoked or expired grant).
            CalendarAPIError: If Google cannot be reached; the grant may
                still be good.
        """
        self._require_configured()
        creds = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=GOOGLE_TOKEN_URI,
            client_id=self._client_id,
            client_secret=self._client_secret,
            scopes=SCOPES,
        )
        try:
            creds.refresh(Request())
        except RefreshError as exc:
            logger.warning("Token refresh rejected: %s", exc)
            raise CalendarAuthError(
                AuthReason.REFRESH_FAILED,
                f"Token refresh failed: {exc}",
            ) from exc
        except TransportError as exc:
            logger.warning("Token refresh could not reach Google: %s", exc)
            raise CalendarAPIError(f"Token refresh transport error: {exc}") from exc

        logger.info("Token refresh succeeded")
        return TokenGrant(
            access_token=creds.token,
            refresh_token=creds.refresh_token or refresh_token,
            expiry=_aware(creds.expiry),
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    @with_retry()
    def fetch_account_email(self, access_token: str) -> str | None:
        """Return the email address of the account behind *access_token*."""
        service = self._service("oauth2", "v2", access_token)
        info = service.userinfo().get().execute()
        return info.get("email")

    @with_retry()
    def list_calendars(self, access_token: str) -> list[dict]:
        """List every calendar on the account.

        Handles pagination automatically.

        Returns:
            A list of Google ``CalendarListEntry`` resource dicts.
        """
        service = self._service("calendar", "v3", access_token)
        calendars: list[dict] = []
        page_token: str | None = None

        while True:
            response = service.calendarList().list(pageToken=page_token).execute()
            calendars.extend(response.get("items", []))
            page_token = response.get("nextPageToken")
            if page_token is None:
                break

        logger.info("Listed %d calendar(s)", len(calendars))
        return calendars

    @with_retry()
    def list_events(
        self,
        access_token: str,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[dict]:
        """List single events of *calendar_id* intersecting the window.

        Handles pagination automatically, fetching all pages of results.

        Args:
            access_token: A valid access token.
            calendar_id: Google calendar id.
            time_min: Start of the window (inclusive).
            time_max: End of the window (exclusive).

        Returns:
            A flat list of Google ``Event`` resource dicts from all pages.
        """
        service = self._service("calendar", "v3", access_token)
        events: list[dict] = []
        page_token: str | None = None

        while True:
            response = (
                service.events()
                .list(
                    calendarId=calendar_id,
                    timeMin=ensure_utc(time_min).isoformat(),
                    timeMax=ensure_utc(time_max).isoformat(),
                    singleEvents=True,
                    orderBy="startTime",
                    maxResults=_EVENTS_PAGE_SIZE,
                    pageToken=page_token,
                )
                .execute()
            )
            events.extend(response.get("items", []))
            page_token = response.get("nextPageToken")
            if page_token is None:
                break

        logger.info(
            "Listed %d event(s) from calendar %s between %s and %s",
            len(events),
            calendar_id,
            time_min.isoformat(),
            time_max.isoformat(),
        )
        return events

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_configured(self) -> None:
        if not self.configured:
            raise CalendarAuthError(AuthReason.NOT_CONFIGURED)

    def _make_flow(self) -> Flow:
        # The callback is handled by a different Flow instance than the one
        # that built the URL, so PKCE verifiers cannot be carried across.
        return Flow.from_client_config(
            {
                "web": {
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "auth_uri": GOOGLE_AUTH_URI,
                    "token_uri": GOOGLE_TOKEN_URI,
                    "redirect_uris": [self._redirect_uri],
                }
            },
            scopes=SCOPES,
            redirect_uri=self._redirect_uri,
            autogenerate_code_verifier=False,
        )

    def _service(self, api: str, version: str, access_token: str) -> Any:
        credentials = Credentials(token=access_token)
        return self._build_service(
            api,
            version,
            credentials=credentials,
            cache_discovery=False,
        )


def _aware(expiry: datetime | None) -> datetime | None:
    """google-auth reports expiry as naive UTC; make it explicit."""
    if expiry is None:
        return None
    return ensure_utc(expiry)
