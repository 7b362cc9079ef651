"""Google Calendar client utilities for the booking service.

This module wraps the Calendar v3 API behind ``CalendarGateway``, which
lists, fetches, inserts and deletes events on a given calendar. Upstream
failures are translated into the service's own errors: a 404/410 becomes
``NotFoundError``, a failed token refresh becomes ``AuthError`` and anything
else becomes ``TransportError``. Listing is the exception; it reports
failure through ``EventListing.error`` so that composite endpoints can decide
how much a missing calendar matters.

The functions here are deliberately synchronous. FastAPI runs the handlers
that call them in its threadpool, and a service object is built per request
because the underlying HTTP transport is not thread-safe.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httplib2
from google.auth.exceptions import GoogleAuthError, RefreshError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .errors import AuthError, NotFoundError, TransportError
from .models import Event, EventListing

logger = logging.getLogger(__name__)

_GONE_STATUSES = (404, 410)


def iso_z(dt: datetime) -> str:
    """Return an RFC3339 timestamp in UTC with a Z suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


def build_calendar_service(credentials: Credentials):
    """Build and return a Calendar service client."""
    return build("calendar", "v3", credentials=credentials, cache_discovery=False)


def _http_status(exc: HttpError) -> Optional[int]:
    status = getattr(exc.resp, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


class CalendarGateway:
    """Event operations against Google Calendar, one calendar ID at a time."""

    def __init__(self, service: Any) -> None:
        self._service = service

    def _execute(self, request: Any, action: str, calendar_id: str) -> Dict[str, Any]:
        try:
            return request.execute()
        except HttpError as exc:
            status = _http_status(exc)
            if status in _GONE_STATUSES:
                raise NotFoundError(f"{action}: not found in calendar {calendar_id}") from exc
            logger.error("%s failed for calendar %s (status=%s): %s", action, calendar_id, status, exc)
            raise TransportError(f"{action}: {exc}") from exc
        except RefreshError as exc:
            logger.error("%s failed: Google token could not be refreshed: %s", action, exc)
            raise AuthError(f"{action}: Google token could not be refreshed: {exc}") from exc
        except (GoogleAuthError, httplib2.HttpLib2Error, OSError) as exc:
            logger.error("%s failed for calendar %s: %s", action, calendar_id, exc)
            raise TransportError(f"{action}: {exc}") from exc

    def list_events(
        self,
        calendar_id: str,
        time_min: Optional[datetime] = None,
        time_max: Optional[datetime] = None,
        max_results: Optional[int] = None,
    ) -> EventListing:
        """List events of one calendar, recurring events expanded, ordered by start.

        With a window, Google returns the events overlapping
        ``[time_min, time_max)``. Failures are logged and returned in the
        listing rather than raised.
        """
        params: Dict[str, Any] = {
            "calendarId": calendar_id,
            "singleEvents": True,
            "orderBy": "startTime",
        }
        if time_min is not None:
            params["timeMin"] = iso_z(time_min)
        if time_max is not None:
            params["timeMax"] = iso_z(time_max)
        if max_results is not None:
            params["maxResults"] = max_results
        try:
            response = self._execute(self._service.events().list(**params), "Error fetching events", calendar_id)
        except (NotFoundError, TransportError, AuthError) as exc:
            logger.error("Error fetching events for calendar %s: %s", calendar_id, exc)
            return EventListing(calendarId=calendar_id, error=str(exc))
        items = response.get("items", [])
        return EventListing(calendarId=calendar_id, events=[Event.model_validate(it) for it in items])

    def get_event(self, calendar_id: str, event_id: str) -> Event:
        request = self._service.events().get(calendarId=calendar_id, eventId=event_id)
        return Event.model_validate(self._execute(request, f"Error fetching event {event_id}", calendar_id))

    def insert_event(self, calendar_id: str, event: Event) -> Event:
        """Insert ``event`` and return it as stored, with its assigned ID."""
        request = self._service.events().insert(calendarId=calendar_id, body=event.to_body())
        created = Event.model_validate(self._execute(request, "Error adding event", calendar_id))
        logger.info("Event created in %s: %s", calendar_id, created.htmlLink or created.id)
        return created

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        request = self._service.events().delete(calendarId=calendar_id, eventId=event_id)
        self._execute(request, f"Error deleting event {event_id}", calendar_id)
        logger.info("Event %s deleted from %s", event_id, calendar_id)

    def list_calendars(self) -> List[Dict[str, Any]]:
        """Return ``{"id", "summary"}`` for every calendar the account can see."""
        calendars: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            request = self._service.calendarList().list(pageToken=page_token)
            response = self._execute(request, "Error fetching calendar list", "calendarList")
            for item in response.get("items", []):
                calendars.append({"id": item.get("id"), "summary": item.get("summary")})
            page_token = response.get("nextPageToken")
            if not page_token:
                return calendars
