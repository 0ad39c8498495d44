"""HTTP API for calendar sync.

Exposes the sync components under ``/calendar-sync``:

  GET  /calendar-sync/auth-url           -- consent URL for the current user
  GET  /calendar-sync/callback           -- Google redirect target (no bearer)
  GET  /calendar-sync/status             -- connection status
  POST /calendar-sync/disconnect         -- remove the connection
  GET  /calendar-sync/calendars          -- remote calendars + saved selection
  POST /calendar-sync/calendars/select   -- save the selection
  POST /calendar-sync/fetch-events       -- pull and normalize a window
  POST /calendar-sync/conflicts          -- split events against stored events
  POST /calendar-sync/import             -- store approved events

Status codes distinguish "re-authenticate" (401), "malformed request"
(400), "integration not configured" (503) and partial success (200 with the
per-item detail in the body).  Error bodies are ``{"error", "code"}``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from cal_sync.auth import Authenticator, StaticTokenAuthenticator
from cal_sync.calendar.catalog import CalendarCatalog
from cal_sync.calendar.conflicts import detect_conflicts
from cal_sync.calendar.crypto import TokenCipher
from cal_sync.calendar.exceptions import (
    AuthReason,
    CalendarAuthError,
    CalendarSyncError,
    CalendarValidationError,
    PersistenceError,
)
from cal_sync.calendar.fetcher import EventFetcher
from cal_sync.calendar.importer import ImportEngine
from cal_sync.calendar.normalizer import normalize_events
from cal_sync.calendar.provider import GoogleCalendarProvider
from cal_sync.calendar.state import OAuthStateStore
from cal_sync.calendar.vault import CredentialVault
from cal_sync.config import Settings, load_settings
from cal_sync.models.calendar import ApiModel, CanonicalEvent
from cal_sync.store import SQLiteSyncStore, SyncStore

logger = logging.getLogger(__name__)

_SERVICE_UNAVAILABLE_REASONS = frozenset({AuthReason.NOT_CONFIGURED, AuthReason.MISSING_SECRET})


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SelectCalendarsRequest(ApiModel):
    calendar_ids: list[str]


class FetchEventsRequest(ApiModel):
    calendar_ids: list[str]
    time_min: datetime
    time_max: datetime


class EventsRequest(ApiModel):
    events: list[CanonicalEvent]


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


@dataclass
class SyncServices:
    """The sync components shared by all requests of one app."""

    settings: Settings
    store: SyncStore
    authenticator: Authenticator
    vault: CredentialVault
    catalog: CalendarCatalog
    fetcher: EventFetcher
    importer: ImportEngine


def build_services(
    settings: Settings,
    *,
    store: SyncStore | None = None,
    provider: GoogleCalendarProvider | None = None,
    authenticator: Authenticator | None = None,
    state_store: OAuthStateStore | None = None,
) -> SyncServices:
    """Construct every component from *settings*, honouring overrides."""
    store = store or SQLiteSyncStore(settings.database_path)
    provider = provider or GoogleCalendarProvider(
        settings.google_client_id,
        settings.google_client_secret,
        settings.google_redirect_uri,
    )
    cipher = TokenCipher(settings.token_encryption_secret) if settings.token_encryption_secret else None
    if cipher is None:
        logger.warning("TOKEN_ENCRYPTION_SECRET is not set; connections cannot be stored")

    vault = CredentialVault(store, provider, cipher, state_store=state_store)
    return SyncServices(
        settings=settings,
        store=store,
        authenticator=authenticator or StaticTokenAuthenticator(settings.api_tokens),
        vault=vault,
        catalog=CalendarCatalog(store, vault, provider),
        fetcher=EventFetcher(
            vault,
            provider,
            concurrency=settings.fetch_concurrency,
            calendar_timeout=settings.calendar_timeout_seconds,
            fetch_timeout=settings.fetch_timeout_seconds,
        ),
        importer=ImportEngine(store),
    )


def _services(request: Request) -> SyncServices:
    return request.app.state.services


def _error(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "code": code})


async def current_user(
    request: Request,
    authorization: str | None = Header(default=None),
) -> str:
    """Resolve the bearer token to a user id or fail with 401."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise StarletteHTTPException(status_code=401, detail="Unauthorized")
    token = authorization[7:].strip()
    user_id = await _services(request).authenticator.authenticate(token)
    if user_id is None:
        raise StarletteHTTPException(status_code=401, detail="Unauthorized")
    return user_id


router = APIRouter(prefix="/calendar-sync", tags=["calendar-sync"])


# ---------------------------------------------------------------------------
# Connection lifecycle
# ---------------------------------------------------------------------------


@router.get("/auth-url")
async def auth_url(request: Request, user_id: str = Depends(current_user)) -> dict[str, Any]:
    return {"authUrl": _services(request).vault.begin_authorization(user_id)}


@router.get("/callback")
async def callback(
    request: Request,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    error_description: str | None = Query(default=None),
) -> RedirectResponse:
    services = _services(request)
    target = services.settings.post_auth_redirect

    def _redirect(**params: str) -> RedirectResponse:
        return RedirectResponse(url=f"{target}?{urlencode(params)}", status_code=302)

    if error:
        logger.warning("Google OAuth provider error: %s", error)
        if error_description:
            logger.debug("Google OAuth provider error_description: %s", error_description)
        if state:
            services.vault.abandon_authorization(state)
        return _redirect(google_error=error)

    if not code or not state:
        return _redirect(google_error="missing_params")

    try:
        await services.vault.complete_authorization(code, state)
    except CalendarAuthError as exc:
        logger.warning("Google OAuth callback failed: %s", exc)
        return _redirect(google_error=exc.reason.value)
    except CalendarSyncError as exc:
        logger.error("Google OAuth callback could not store connection: %s", exc)
        return _redirect(google_error="callback_failed")

    return _redirect(google_connected="true")


@router.get("/status")
async def status(request: Request, user_id: str = Depends(current_user)) -> dict[str, Any]:
    result = await _services(request).vault.status(user_id)
    return {"connected": result.connected, "email": result.email}


@router.post("/disconnect")
async def disconnect(request: Request, user_id: str = Depends(current_user)) -> dict[str, Any]:
    await _services(request).vault.disconnect(user_id)
    return {"success": True}


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@router.get("/calendars")
async def calendars(request: Request, user_id: str = Depends(current_user)) -> dict[str, Any]:
    catalog = _services(request).catalog
    descriptors = await catalog.list_calendars(user_id)
    selected = await catalog.selected_calendar_ids(user_id)
    return {
        "calendars": [d.model_dump(by_alias=True, mode="json") for d in descriptors],
        "selectedCalendarIds": selected,
    }


@router.post("/calendars/select")
async def select_calendars(
    body: SelectCalendarsRequest,
    request: Request,
    user_id: str = Depends(current_user),
) -> dict[str, Any]:
    saved = await _services(request).catalog.save_selection(user_id, body.calendar_ids)
    return {"success": True, "selectedCalendarIds": saved}


# ---------------------------------------------------------------------------
# Fetch / conflicts / import
# ---------------------------------------------------------------------------


@router.post("/fetch-events")
async def fetch_events(
    body: FetchEventsRequest,
    request: Request,
    user_id: str = Depends(current_user),
) -> dict[str, Any]:
    result = await _services(request).fetcher.fetch_events(
        user_id, body.calendar_ids, body.time_min, body.time_max
    )
    events = normalize_events(result.events)
    return {
        "events": [e.model_dump(by_alias=True, mode="json") for e in events],
        "failedCalendars": [
            {"calendarId": f.calendar_id, "error": f.error} for f in result.failures
        ],
    }


@router.post("/conflicts")
async def conflicts(
    body: EventsRequest,
    request: Request,
    user_id: str = Depends(current_user),
) -> dict[str, Any]:
    if not body.events:
        return {"conflicting": [], "clean": []}
    window_start = min(e.start_time for e in body.events)
    window_end = max(e.end_time for e in body.events)
    existing = await _services(request).store.list_events(user_id, window_start, window_end)
    partition = detect_conflicts(body.events, existing)
    return partition.model_dump(by_alias=True, mode="json")


@router.post("/import")
async def import_events(
    body: EventsRequest,
    request: Request,
    user_id: str = Depends(current_user),
) -> Any:
    services = _services(request)
    try:
        outcome = await asyncio.wait_for(
            services.importer.import_events(user_id, body.events),
            timeout=services.settings.import_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.error("import timed out for user %s", user_id)
        return _error(504, "Import timed out; retrying is safe", "timeout")
    return {
        "imported": outcome.imported,
        "skipped": outcome.skipped,
        "failed": outcome.failed,
        "errors": outcome.errors,
    }


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    *,
    store: SyncStore | None = None,
    provider: GoogleCalendarProvider | None = None,
    authenticator: Authenticator | None = None,
    state_store: OAuthStateStore | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Service settings; loaded from the environment if omitted.
        store: Persistence override (defaults to SQLite at
            ``settings.database_path``).
        provider: Google client override.
        authenticator: Bearer-token authenticator override.
        state_store: OAuth state store override.
    """
    settings = settings or load_settings()
    app = FastAPI(title="cal-sync")
    app.state.services = build_services(
        settings,
        store=store,
        provider=provider,
        authenticator=authenticator,
        state_store=state_store,
    )
    app.include_router(router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "googleCalendarConfigured": settings.google_configured}

    @app.exception_handler(CalendarValidationError)
    async def _validation_error(_: Request, exc: CalendarValidationError) -> JSONResponse:
        return _error(400, str(exc), exc.reason.value)

    @app.exception_handler(CalendarAuthError)
    async def _auth_error(_: Request, exc: CalendarAuthError) -> JSONResponse:
        status_code = 503 if exc.reason in _SERVICE_UNAVAILABLE_REASONS else 401
        return _error(status_code, str(exc), exc.reason.value)

    @app.exception_handler(PersistenceError)
    async def _persistence_error(_: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("Calendar sync storage failure: %s", exc)
        return _error(500, "Storage failure", "storage_error")

    @app.exception_handler(CalendarSyncError)
    async def _sync_error(_: Request, exc: CalendarSyncError) -> JSONResponse:
        logger.error("Calendar sync request failed: %s", exc)
        return _error(502, str(exc), "upstream_error")

    @app.exception_handler(RequestValidationError)
    async def _request_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = first.get("msg", "Invalid request")
        return _error(400, f"{location}: {message}" if location else message, "invalid_request")

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = "unauthorized" if exc.status_code == 401 else "http_error"
        return _error(exc.status_code, str(exc.detail), code)

    return app
