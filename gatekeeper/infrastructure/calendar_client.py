"""
Google Calendar provider for availability and booking.
Supports both Service Account and authorized-user (OAuth token file) authentication.
"""
import asyncio
import json
import logging
import os
import tempfile
import threading
from datetime import datetime, time, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

import google_auth_httplib2
import httplib2
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from gatekeeper.config import CalendarBackend, Settings, get_settings
from gatekeeper.domain.interfaces import IAvailabilityProvider, ISchedulingProvider
from gatekeeper.domain.models import Booking, Slot
from gatekeeper.errors import ProviderError
from gatekeeper.services.availability import Interval, compute_free_slots

logger = logging.getLogger(__name__)

CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar"]


def write_token_file(token_path: str, token_json: str) -> None:
    """Replace the stored owner token atomically."""
    directory = os.path.dirname(os.path.abspath(token_path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".token.", suffix=".tmp")
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(token_json)
    os.replace(tmp_path, token_path)


def _parse_event_time(value: Dict[str, Any]) -> Optional[datetime]:
    """Return the event boundary, or None for all-day events."""
    raw = value.get("dateTime")
    if not raw:
        return None
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


class GoogleCalendarProvider(IAvailabilityProvider, ISchedulingProvider):
    """
    Calendar provider backed by the Google Calendar API.

    Blocking client calls run in worker threads. httplib2 connections are not
    thread-safe, so the service object is shared but every request executes
    over its own authorized HTTP client.
    """

    SCOPES = CALENDAR_SCOPES

    def __init__(
        self,
        settings: Optional[Settings] = None,
        service: Any = None,
        http_factory: Optional[Callable[[], Any]] = None,
    ):
        self.settings = settings or get_settings()
        self.tz = ZoneInfo(self.settings.app_timezone)
        self._service = service
        self._http_factory = http_factory or self._authorized_http
        self._credentials = None
        self._token_mtime: Optional[float] = None
        self._lock = threading.RLock()

    def _get_credentials(self):
        """Get Google API credentials; a rewritten token file is picked up on the next call."""
        with self._lock:
            if self.settings.has_google_service_account():
                if self._credentials is None:
                    self._credentials = self._get_service_account_credentials()
                return self._credentials

            token_path = self.settings.google_oauth_token_path
            if not os.path.exists(token_path):
                raise ProviderError("Owner Google not connected")
            if self._credentials is None or os.path.getmtime(token_path) != self._token_mtime:
                self._credentials = self._get_token_credentials()
                self._token_mtime = os.path.getmtime(token_path)
            return self._credentials

    def _get_service_account_credentials(self):
        """Get credentials from service account."""
        if self.settings.google_service_account_json:
            info = json.loads(self.settings.google_service_account_json)
            credentials = service_account.Credentials.from_service_account_info(info, scopes=self.SCOPES)
        else:
            credentials = service_account.Credentials.from_service_account_file(
                self.settings.google_service_account_file, scopes=self.SCOPES
            )

        # Domain-wide delegation if configured
        if self.settings.google_impersonate_user:
            credentials = credentials.with_subject(self.settings.google_impersonate_user)

        return credentials

    def _get_token_credentials(self):
        """Load the owner's stored token, refreshing it when expired."""
        token_path = self.settings.google_oauth_token_path
        credentials = Credentials.from_authorized_user_file(token_path, self.SCOPES)

        if not credentials.valid:
            if credentials.expired and credentials.refresh_token:
                credentials.refresh(Request())
                write_token_file(token_path, credentials.to_json())
            else:
                raise ProviderError("Stored Google token is invalid; reconnect the owner calendar")

        return credentials

    def _get_service(self):
        """Get or create the Google Calendar service."""
        with self._lock:
            if self._service is None:
                credentials = self._get_credentials()
                self._service = build("calendar", "v3", credentials=credentials, cache_discovery=False)
            return self._service

    def _authorized_http(self):
        """A fresh HTTP client for one request, sharing the cached credentials."""
        return google_auth_httplib2.AuthorizedHttp(self._get_credentials(), http=httplib2.Http())

    def _list_busy(self, calendar_id: str, time_min: datetime, time_max: datetime) -> List[Interval]:
        """Collect busy intervals; cancelled, transparent and all-day events do not block."""
        try:
            service = self._get_service()
            events_result = service.events().list(
                calendarId=calendar_id,
                timeMin=time_min.isoformat(),
                timeMax=time_max.isoformat(),
                singleEvents=True,
                orderBy="startTime",
            ).execute(http=self._http_factory())
        except (HttpError, GoogleAuthError, OSError) as e:
            logger.error(f"Failed to list events for {calendar_id}: {e}")
            raise ProviderError(f"Calendar listing failed: {e}") from e

        busy: List[Interval] = []
        for event in events_result.get("items", []):
            if event.get("status") == "cancelled" or event.get("transparency") == "transparent":
                continue
            start = _parse_event_time(event.get("start", {}))
            end = _parse_event_time(event.get("end", {}))
            if start and end:
                busy.append((start, end))
        return busy

    def _insert_event(self, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            service = self._get_service()
            return service.events().insert(
                calendarId=self.settings.google_calendar_id,
                body=body,
                sendUpdates="all",
            ).execute(http=self._http_factory())
        except (HttpError, GoogleAuthError, OSError) as e:
            logger.error(f"Failed to create calendar event: {e}")
            raise ProviderError(f"Calendar error: {e}") from e

    async def suggest(
        self,
        window_days: int,
        slot_duration_mins: int,
        day_window: Tuple[time, time],
        owner_only: bool = True,
    ) -> List[Slot]:
        now = datetime.now(self.tz)
        horizon = now + timedelta(days=window_days)

        calendars = [self.settings.google_calendar_id]
        if not owner_only and self.settings.google_requester_calendar_id:
            calendars.append(self.settings.google_requester_calendar_id)

        busy: List[Interval] = []
        for calendar_id in calendars:
            busy.extend(await asyncio.to_thread(self._list_busy, calendar_id, now, horizon))

        logger.info(f"Computing free slots from {len(busy)} busy intervals across {len(calendars)} calendar(s)")
        return compute_free_slots(busy, now, window_days, slot_duration_mins, day_window, self.tz)

    async def book(self, slot: Slot, attendees: List[str], title: str, description: str) -> Booking:
        body = {
            "summary": title or "Meeting",
            "description": description,
            "start": {"dateTime": slot.start.isoformat(), "timeZone": self.settings.app_timezone},
            "end": {"dateTime": slot.end.isoformat(), "timeZone": self.settings.app_timezone},
            "attendees": [{"email": email} for email in attendees],
        }

        logger.info(f"Creating calendar event: {body['summary']}")
        result = await asyncio.to_thread(self._insert_event, body)

        if not result.get("id"):
            raise ProviderError("Calendar returned an event without an id")
        return Booking(event_id=result["id"], html_link=result.get("htmlLink"))


class MockCalendarProvider(IAvailabilityProvider, ISchedulingProvider):
    """Mock implementation for running without Google Calendar access."""

    def __init__(
        self,
        busy: Optional[List[Interval]] = None,
        requester_busy: Optional[List[Interval]] = None,
        timezone: str = "UTC",
        fail_bookings: bool = False,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.tz = ZoneInfo(timezone)
        self.busy: List[Interval] = list(busy or [])
        self.requester_busy: List[Interval] = list(requester_busy or [])
        self.fail_bookings = fail_bookings
        self.created_events: List[dict] = []
        self._event_counter = 0
        self._clock = clock or (lambda: datetime.now(self.tz))

    async def suggest(
        self,
        window_days: int,
        slot_duration_mins: int,
        day_window: Tuple[time, time],
        owner_only: bool = True,
    ) -> List[Slot]:
        busy = list(self.busy)
        if not owner_only:
            busy.extend(self.requester_busy)
        return compute_free_slots(busy, self._clock(), window_days, slot_duration_mins, day_window, self.tz)

    async def book(self, slot: Slot, attendees: List[str], title: str, description: str) -> Booking:
        """Mock event creation that returns fake success."""
        if self.fail_bookings:
            raise ProviderError("Mock calendar rejected the booking")

        self._event_counter += 1
        event_id = f"mock_event_{self._event_counter}"
        self.created_events.append({
            "id": event_id,
            "summary": title,
            "description": description,
            "attendees": list(attendees),
            "start": slot.start,
            "end": slot.end,
        })
        self.busy.append((slot.start, slot.end))

        logger.info(f"[MOCK] Created event: {title} -> {event_id}")
        return Booking(event_id=event_id, html_link=f"https://calendar.google.com/event?eid={event_id}")


def get_calendar_provider(settings: Optional[Settings] = None):
    """Get the configured calendar provider instance."""
    settings = settings or get_settings()
    if settings.calendar_provider == CalendarBackend.MOCK:
        return MockCalendarProvider(timezone=settings.app_timezone)
    return GoogleCalendarProvider(settings)
