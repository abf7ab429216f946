"""
Google Calendar client shared by slot generation, booking and sync.

Wraps the Calendar v3 API (google-api-python-client). The discovery client is
blocking, so every request runs in the default executor. Calls are protected by
``calendar_breaker`` and retried with tenacity on rate limits, 5xx responses
and transport errors. Provider failures surface as ``CalendarProviderError``;
an expired incremental cursor surfaces as ``SyncTokenExpiredError``.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable

import httplib2
import pybreaker
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import credentials as oauth_credentials
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from shared.circuit_breaker import calendar_breaker, call_with_breaker
from shared.config import get_settings
from shared.exceptions import CalendarProviderError, SyncTokenExpiredError

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]
TOKEN_URI = "https://oauth2.googleapis.com/token"
EVENTS_PAGE_SIZE = 250


@dataclass(frozen=True)
class BusyWindow:
    start: datetime
    end: datetime


@dataclass
class EventPage:
    """One page of an events.list response."""

    items: list[dict[str, Any]] = field(default_factory=list)
    next_page_token: str | None = None
    next_sync_token: str | None = None


@dataclass(frozen=True)
class CalendarEventInfo:
    """Linkage returned after an event upsert."""

    calendar_id: str
    event_id: str
    html_link: str | None = None
    ical_uid: str | None = None
    etag: str | None = None


def _http_status(exc: BaseException) -> int | None:
    if isinstance(exc, HttpError):
        return exc.resp.status
    return None


def _is_transient(exc: BaseException) -> bool:
    """Rate limits, server errors and dropped connections are worth retrying."""
    status = _http_status(exc)
    if status is not None:
        return status == 429 or status >= 500
    return isinstance(exc, (ConnectionError, TimeoutError, httplib2.HttpLib2Error))


def sanitize_event_id(raw: str) -> str:
    """
    Turn an arbitrary id into a valid client-assigned Google event id.

    Google only accepts base32hex characters (a-v, 0-9), 5 to 1024 long.
    UUIDs in hex form pass through unchanged apart from the dashes.
    """
    cleaned = re.sub(r"[^a-v0-9]", "", raw.lower())[:1024]
    if len(cleaned) < 5:
        cleaned = cleaned.ljust(5, "0")
    return cleaned


def parse_rfc3339(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _build_credentials():
    settings = get_settings()

    if settings.GOOGLE_SERVICE_ACCOUNT_JSON:
        return service_account.Credentials.from_service_account_file(
            settings.GOOGLE_SERVICE_ACCOUNT_JSON,
            scopes=SCOPES,
        )

    if settings.GOOGLE_REFRESH_TOKEN and settings.GOOGLE_CLIENT_ID:
        return oauth_credentials.Credentials(
            token=None,
            refresh_token=settings.GOOGLE_REFRESH_TOKEN,
            client_id=settings.GOOGLE_CLIENT_ID,
            client_secret=settings.GOOGLE_CLIENT_SECRET,
            token_uri=TOKEN_URI,
            scopes=SCOPES,
        )

    raise CalendarProviderError("No Google Calendar credentials configured")


class CalendarAvailabilityClient:
    """
    Thin async facade over one Google Calendar.

    Args:
        calendar_id: Calendar to operate on (default: GOOGLE_CALENDAR_ID)
        time_zone: IANA zone sent with free/busy queries and events
            (default: GOOGLE_CALENDAR_TIMEZONE)
        service: Pre-built discovery resource, mainly for tests
    """

    def __init__(
        self,
        calendar_id: str | None = None,
        time_zone: str | None = None,
        service: Any = None,
    ):
        settings = get_settings()
        self.calendar_id = calendar_id or settings.GOOGLE_CALENDAR_ID
        self.time_zone = time_zone or settings.GOOGLE_CALENDAR_TIMEZONE
        self._service = service

    def _get_service(self):
        if self._service is None:
            try:
                self._service = build(
                    "calendar",
                    "v3",
                    credentials=_build_credentials(),
                    cache_discovery=False,
                )
            except GoogleAuthError as e:
                logger.error(f"Failed to create Google Calendar service: {e}")
                raise CalendarProviderError(f"Calendar credentials rejected: {e}") from e
        return self._service

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception(_is_transient),
        reraise=True,
    )
    async def _execute(self, make_request: Callable[[Any], Any]) -> dict[str, Any]:
        def _run():
            return make_request(self._get_service()).execute()

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, _run)

    async def _call(self, operation: str, make_request: Callable[[Any], Any]) -> dict[str, Any]:
        """Execute a request through the breaker, translating provider errors."""
        try:
            return await call_with_breaker(calendar_breaker, self._execute, make_request)
        except pybreaker.CircuitBreakerError as e:
            raise CalendarProviderError(
                f"Google Calendar circuit open during {operation}"
            ) from e
        except HttpError as e:
            status = _http_status(e)
            logger.warning(
                f"Google Calendar {operation} failed with HTTP {status}",
                extra={"calendar_id": self.calendar_id},
            )
            raise CalendarProviderError(
                f"Google Calendar {operation} failed: HTTP {status}",
                status_code=status,
            ) from e
        except (OSError, httplib2.HttpLib2Error, GoogleAuthError) as e:
            logger.warning(
                f"Google Calendar {operation} failed: {type(e).__name__}: {e}",
                extra={"calendar_id": self.calendar_id},
            )
            raise CalendarProviderError(
                f"Google Calendar {operation} failed: {type(e).__name__}: {e}"
            ) from e

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def query_free_busy(self, time_min: datetime, time_max: datetime) -> list[BusyWindow]:
        """Busy windows on the calendar between ``time_min`` and ``time_max``."""
        body = {
            "timeMin": time_min.isoformat(),
            "timeMax": time_max.isoformat(),
            "timeZone": self.time_zone,
            "items": [{"id": self.calendar_id}],
        }
        response = await self._call(
            "freeBusy.query", lambda service: service.freebusy().query(body=body)
        )

        calendar = response.get("calendars", {}).get(self.calendar_id, {})
        if calendar.get("errors"):
            reasons = ", ".join(err.get("reason", "unknown") for err in calendar["errors"])
            raise CalendarProviderError(f"freeBusy returned errors: {reasons}")

        return [
            BusyWindow(start=parse_rfc3339(busy["start"]), end=parse_rfc3339(busy["end"]))
            for busy in calendar.get("busy", [])
        ]

    async def is_window_free(self, start: datetime, end: datetime) -> bool:
        busy = await self.query_free_busy(start, end)
        return not any(window.start < end and window.end > start for window in busy)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def list_events_page(
        self,
        sync_token: str | None = None,
        page_token: str | None = None,
        time_min: datetime | None = None,
    ) -> EventPage:
        """
        Fetch one page of events, including cancelled ones.

        With a ``sync_token`` only changes since that cursor are returned.
        Without one, events from ``time_min`` onwards are listed and the last
        page carries the first cursor.

        Raises:
            SyncTokenExpiredError: The provider rejected the cursor (HTTP 410)
        """
        params: dict[str, Any] = {
            "calendarId": self.calendar_id,
            "showDeleted": True,
            "maxResults": EVENTS_PAGE_SIZE,
        }
        if sync_token:
            params["syncToken"] = sync_token
        elif time_min is not None:
            # orderBy/singleEvents would suppress nextSyncToken on the full listing
            params["timeMin"] = time_min.isoformat()
        if page_token:
            params["pageToken"] = page_token

        try:
            response = await self._call(
                "events.list", lambda service: service.events().list(**params)
            )
        except CalendarProviderError as e:
            if e.status_code == 410:
                raise SyncTokenExpiredError(self.calendar_id) from e
            raise

        return EventPage(
            items=response.get("items", []),
            next_page_token=response.get("nextPageToken"),
            next_sync_token=response.get("nextSyncToken"),
        )

    async def upsert_event(
        self,
        event_id: str,
        summary: str,
        start: datetime,
        end: datetime,
        description: str | None = None,
        location: str | None = None,
        private_properties: dict[str, str] | None = None,
    ) -> CalendarEventInfo:
        """
        Create or update the event with a client-assigned id.

        Insert is attempted first; if the id already exists (HTTP 409) the
        event is patched instead, so repeated calls converge on one event.
        """
        google_event_id = sanitize_event_id(event_id)
        body: dict[str, Any] = {
            "summary": summary,
            "start": {"dateTime": start.isoformat(), "timeZone": self.time_zone},
            "end": {"dateTime": end.isoformat(), "timeZone": self.time_zone},
        }
        if description:
            body["description"] = description
        if location:
            body["location"] = location
        if private_properties:
            body["extendedProperties"] = {"private": private_properties}

        try:
            response = await self._call(
                "events.insert",
                lambda service: service.events().insert(
                    calendarId=self.calendar_id,
                    body={**body, "id": google_event_id},
                ),
            )
        except CalendarProviderError as e:
            if e.status_code != 409:
                raise
            logger.info(
                f"Event {google_event_id} already exists, patching",
                extra={"calendar_id": self.calendar_id, "event_id": google_event_id},
            )
            response = await self._call(
                "events.patch",
                lambda service: service.events().patch(
                    calendarId=self.calendar_id,
                    eventId=google_event_id,
                    body=body,
                ),
            )

        return CalendarEventInfo(
            calendar_id=self.calendar_id,
            event_id=response.get("id", google_event_id),
            html_link=response.get("htmlLink"),
            ical_uid=response.get("iCalUID"),
            etag=response.get("etag"),
        )
