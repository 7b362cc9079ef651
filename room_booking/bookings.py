"""Booking workflows behind the HTTP endpoints.

Each function composes the calendar gateway and the room directory for one
endpoint. Nothing here keeps state: Google Calendar holds every booking, the
pending-approval calendar acting as the queue of requests and the approved
calendar as the record of confirmed ones.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

from .errors import NotFoundError, TransportError
from .google_client import CalendarGateway
from .models import (
    ApprovalResult,
    Attendee,
    BookingRequest,
    Event,
    EventDateTime,
    EventListing,
    ReminderOverride,
    Reminders,
)
from .rooms import RoomDirectory

logger = logging.getLogger(__name__)

# Email a day ahead, pop up ten minutes before.
BOOKING_REMINDERS = Reminders(
    useDefault=False,
    overrides=[
        ReminderOverride(method="email", minutes=24 * 60),
        ReminderOverride(method="popup", minutes=10),
    ],
)

# Fields Google sets on its own and rejects or ignores on insert.
_READ_ONLY_EVENT_FIELDS = {"etag", "htmlLink", "kind", "created", "updated"}


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def localize(dt: datetime, tz_name: str) -> datetime:
    """Read a timestamp without an offset as wall-clock time in ``tz_name``."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=ZoneInfo(tz_name))
    return dt


def _list_rooms(
    gateway: CalendarGateway, rooms: RoomDirectory, time_min: datetime, time_max: datetime
) -> List[Tuple[str, EventListing]]:
    return [
        (name, gateway.list_events(calendar_id, time_min, time_max))
        for name, calendar_id in rooms.calendars()
    ]


def upcoming_events(
    gateway: CalendarGateway,
    rooms: RoomDirectory,
    tz_name: str,
    *,
    days: int = 7,
    limit: int = 5,
    now: Optional[datetime] = None,
) -> List[Event]:
    """Events in every room calendar from the start of today over ``days`` days.

    Room listings are concatenated in directory order and cut at ``limit``.
    A room calendar that cannot be read is skipped.
    """
    now = now or datetime.now(ZoneInfo(tz_name))
    time_min = start_of_day(now)
    time_max = time_min + timedelta(days=days)
    events: List[Event] = []
    for name, listing in _list_rooms(gateway, rooms, time_min, time_max):
        if not listing.ok:
            logger.warning("Skipping %s in upcoming events: %s", name, listing.error)
            continue
        events.extend(listing.events)
    return events[:limit]


def pending_events(gateway: CalendarGateway, pending_calendar_id: str, *, limit: int = 10) -> List[Event]:
    listing: EventListing = gateway.list_events(pending_calendar_id, max_results=limit)
    if not listing.ok:
        raise TransportError(listing.error or "Error fetching events")
    return listing.events


def build_booking_event(request: BookingRequest, room_calendar_id: str, tz_name: str) -> Event:
    """Turn a booking request into the event staged for approval.

    The room is invited as a resource attendee, which is how Google places
    the event on the room's own calendar.
    """
    return Event(
        summary=request.summary,
        location=request.location,
        description=request.description,
        start=EventDateTime(dateTime=request.startDateTime.isoformat(), timeZone=tz_name),
        end=EventDateTime(dateTime=request.endDateTime.isoformat(), timeZone=tz_name),
        attendees=[Attendee(email=room_calendar_id, resource=True)],
        reminders=BOOKING_REMINDERS.model_copy(deep=True),
    )


def create_booking(
    gateway: CalendarGateway,
    request: BookingRequest,
    room_calendar_id: str,
    pending_calendar_id: str,
    tz_name: str,
) -> Event:
    """Stage a booking in the pending-approval calendar.

    ``room_calendar_id`` comes from ``RoomDirectory.resolve_room_calendar``,
    called by the endpoint before any credential is needed.
    """
    event = build_booking_event(request, room_calendar_id, tz_name)
    created = gateway.insert_event(pending_calendar_id, event)
    logger.info("Booking request %s for %s staged for approval", created.id, request.room)
    return created


def _find(gateway: CalendarGateway, calendar_id: str, event_id: str) -> Optional[Event]:
    try:
        event = gateway.get_event(calendar_id, event_id)
    except NotFoundError:
        return None
    # deleted events stay readable for a while with status "cancelled"
    return None if event.status == "cancelled" else event


def approval_copy(event: Event) -> Event:
    """Copy of a pending event suitable for inserting into the approved calendar."""
    body = {k: v for k, v in event.model_dump(exclude_none=True).items() if k not in _READ_ONLY_EVENT_FIELDS}
    return Event.model_validate(body)


def approve_booking(
    gateway: CalendarGateway,
    event_id: str,
    pending_calendar_id: str,
    approved_calendar_id: str,
) -> ApprovalResult:
    """Move an event from the pending calendar into the approved calendar.

    The move is keyed by the event ID: the copy keeps the same ID, a copy
    already present is not inserted again, and a pending event already gone
    is not deleted again. Re-running after a partial move finishes it.
    """
    pending = _find(gateway, pending_calendar_id, event_id)
    approved = _find(gateway, approved_calendar_id, event_id)
    if pending is None and approved is None:
        raise NotFoundError(f"Event {event_id} is not awaiting approval")

    already_approved = approved is not None
    if approved is None:
        gateway.insert_event(approved_calendar_id, approval_copy(pending))
    if pending is not None:
        try:
            gateway.delete_event(pending_calendar_id, event_id)
        except NotFoundError:
            logger.info("Event %s already removed from the pending calendar", event_id)
    logger.info("Event %s approved%s", event_id, " (already copied)" if already_approved else "")
    return ApprovalResult(eventId=event_id, alreadyApproved=already_approved)


def available_rooms(
    gateway: CalendarGateway,
    rooms: RoomDirectory,
    start: datetime,
    end: datetime,
    tz_name: str = "UTC",
) -> List[str]:
    """Names of the rooms with no event overlapping ``[start, end)``.

    Timestamps without an offset are wall-clock times in ``tz_name``, the
    same zone booking requests are created in.

    A room whose calendar cannot be read is not reported as free; the whole
    check fails instead.
    """
    start, end = localize(start, tz_name), localize(end, tz_name)
    reserved = set()
    for name, listing in _list_rooms(gateway, rooms, start, end):
        if not listing.ok:
            raise TransportError(f"Error checking availability: {listing.error}")
        if listing.events:
            reserved.add(name)
    return [name for name in rooms.room_names() if name not in reserved]
