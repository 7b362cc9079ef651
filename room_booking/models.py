"""Pydantic data models used in API requests and responses.

Event models mirror the shape of Google Calendar v3 event resources closely
enough to round-trip them: unknown upstream fields are kept so that an event
copied between calendars loses nothing. Request models validate client
input before anything talks to Google.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


def _check_order(start: datetime, end: datetime) -> None:
    try:
        in_order = end > start
    except TypeError:
        raise ValueError(
            "startDateTime and endDateTime must both include a UTC offset or both omit it"
        ) from None
    if not in_order:
        raise ValueError("endDateTime must be after startDateTime")


class EventDateTime(BaseModel):
    """Start or end of an event: a timed ``dateTime`` or an all-day ``date``."""

    model_config = ConfigDict(extra="allow")

    dateTime: Optional[str] = None
    date: Optional[str] = None
    timeZone: Optional[str] = None


class Attendee(BaseModel):
    """An event attendee. Rooms are attendees with ``resource`` set."""

    model_config = ConfigDict(extra="allow")

    email: str
    resource: Optional[bool] = None
    displayName: Optional[str] = None
    responseStatus: Optional[str] = None


class ReminderOverride(BaseModel):
    method: str
    minutes: int


class Reminders(BaseModel):
    useDefault: bool = True
    overrides: List[ReminderOverride] = []


class Event(BaseModel):
    """A calendar event as stored by Google Calendar."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    summary: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    start: Optional[EventDateTime] = None
    end: Optional[EventDateTime] = None
    attendees: Optional[List[Attendee]] = None
    reminders: Optional[Reminders] = None
    status: Optional[str] = None
    htmlLink: Optional[str] = None

    def to_body(self) -> dict:
        """Return the JSON body to send to the Calendar API."""
        return self.model_dump(exclude_none=True)


class EventListing(BaseModel):
    """Outcome of listing one calendar: the events, or why they are missing."""

    calendarId: str
    events: List[Event] = []
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BookingRequest(BaseModel):
    """Body of a booking request for a room."""

    summary: str = Field(..., min_length=1)
    location: Optional[str] = None
    description: Optional[str] = None
    startDateTime: datetime
    endDateTime: datetime
    room: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_window(self) -> "BookingRequest":
        _check_order(self.startDateTime, self.endDateTime)
        return self


class BookingConfirmation(BaseModel):
    status: str = "Event added"
    event: Event


class ApprovalRequest(BaseModel):
    eventId: str = Field(..., min_length=1)


class ApprovalResult(BaseModel):
    status: str = "Event approved"
    eventId: str
    alreadyApproved: bool = False


class AvailabilityWindow(BaseModel):
    """Query window for an availability check."""

    startDateTime: datetime
    endDateTime: datetime

    @model_validator(mode="after")
    def check_window(self) -> "AvailabilityWindow":
        _check_order(self.startDateTime, self.endDateTime)
        return self


class Room(BaseModel):
    """A bookable room as recorded in the rooms table."""

    model_config = ConfigDict(from_attributes=True)

    name: str
    capacity: int
    resources: List[str] = []
    calendarId: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("calendarId", "calendar_id")
    )


class RoomSearchRequest(BaseModel):
    """Minimum capacity and required resource tags for a room search."""

    capacity: int = Field(..., ge=1)
    resources: List[str]


class AuthStatus(BaseModel):
    state: str
    authorizationUrl: Optional[str] = None
