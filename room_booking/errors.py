"""Exceptions raised by the booking service.

Each error carries the HTTP status the API layer reports for it; the
handlers in ``room_booking.main`` turn them into ``{"detail": ...}``
responses.
"""

from typing import Optional


class BookingError(Exception):
    """Base class for all errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    """A request is missing required fields or carries invalid values."""

    status_code = 400


class UnknownRoomError(BookingError):
    """The requested room is not in the room directory."""

    status_code = 400

    def __init__(self, room: str) -> None:
        super().__init__(f"Unknown room: {room}")
        self.room = room


class NotFoundError(BookingError):
    """The referenced event does not exist upstream."""

    status_code = 404


class AuthError(BookingError):
    """No usable Google credential is available."""

    status_code = 503

    def __init__(self, message: str, authorization_url: Optional[str] = None) -> None:
        super().__init__(message)
        self.authorization_url = authorization_url


class TransportError(BookingError):
    """Google Calendar or the database could not complete a call."""

    status_code = 500
