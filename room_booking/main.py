"""Main application entry point for the room booking service.

This module defines the FastAPI application, configures logging, wires the
configuration built at startup into request handlers and maps service
errors to HTTP responses.

Endpoints:
  - ``/api/upcomingEvents``: events in the room calendars over the next week.
  - ``/api/pendingEvents``: booking requests awaiting approval.
  - ``/api/addEventWithRoom``: stage a booking request for a room.
  - ``/api/approveEvent``: move a request into the approved calendar.
  - ``/api/checkAvailability``: rooms with nothing booked in a window.
  - ``/api/rooms`` and ``/api/searchRoomBasic``: rooms table lookups.
  - ``/oauth2/authorize`` and ``/oauth2callback``: Google account handshake.
  - ``/healthz``: simple health check endpoint.

Handlers are plain functions; FastAPI runs them in its threadpool, one
request per task. The only state they share is the ``AppContext`` built by
``create_app`` and stored on ``app.state``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from google.oauth2.credentials import Credentials
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from . import bookings
from .config import Settings, load_settings
from .credentials import AuthState, CredentialStore
from .database import create_session_factory
from .errors import AuthError, BookingError, ValidationError
from .google_client import CalendarGateway, build_calendar_service, iso_z
from .models import (
    ApprovalRequest,
    ApprovalResult,
    AuthStatus,
    AvailabilityWindow,
    BookingConfirmation,
    BookingRequest,
    Event,
    Room,
    RoomSearchRequest,
)
from .rooms import RoomDirectory, RoomRepository, load_room_directory

logger = logging.getLogger("room_booking")

GatewayFactory = Callable[[Credentials], CalendarGateway]


def default_gateway_factory(credentials: Credentials) -> CalendarGateway:
    return CalendarGateway(build_calendar_service(credentials))


@dataclass
class AppContext:
    """Everything a request handler needs, built once at startup."""

    settings: Settings
    rooms: RoomDirectory
    credentials: CredentialStore
    engine: Engine
    session_factory: sessionmaker
    gateway_factory: GatewayFactory = default_gateway_factory

    def gateway(self) -> CalendarGateway:
        """Return a gateway for this request, authorized with the stored token."""
        return self.gateway_factory(self.credentials.obtain())


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_db(ctx: AppContext = Depends(get_context)) -> Iterator[Session]:
    db = ctx.session_factory()
    try:
        yield db
    finally:
        db.close()


def _utcnow() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(timezone.utc)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _describe_errors(errors: List[Dict[str, Any]]) -> str:
    parts = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query")]
        parts.append(f"{'.'.join(loc) or 'request'}: {err.get('msg')}")
    return "; ".join(parts)


def create_app(
    settings: Optional[Settings] = None,
    *,
    rooms: Optional[RoomDirectory] = None,
    credentials: Optional[CredentialStore] = None,
    gateway_factory: Optional[GatewayFactory] = None,
) -> FastAPI:
    """Build the application and its context.

    Arguments left as ``None`` are built from settings: the room mapping file
    is read, the credential store points at the configured token, and the
    database engine is created (lazily connecting).
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    engine, session_factory = create_session_factory(settings.database_url)
    context = AppContext(
        settings=settings,
        rooms=rooms if rooms is not None else load_room_directory(settings.room_ids_file),
        credentials=credentials
        or CredentialStore(settings.google_client_secrets_file, settings.google_token_file),
        engine=engine,
        session_factory=session_factory,
        gateway_factory=gateway_factory or default_gateway_factory,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Surface the consent URL right away when the account is not authorized yet
        try:
            context.credentials.obtain()
        except AuthError as exc:
            logger.warning("%s", exc.message)
        logger.info("Room booking service ready with %d rooms", len(context.rooms))
        yield
        context.engine.dispose()

    app = FastAPI(title="Room Booking Service", lifespan=lifespan)
    app.state.context = context

    if settings.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
        content: Dict[str, Any] = {"detail": exc.message}
        if isinstance(exc, AuthError) and exc.authorization_url:
            content["authorizationUrl"] = exc.authorization_url
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        detail = f"Missing or invalid fields: {_describe_errors(exc.errors())}"
        logger.info("Rejected %s %s: %s", request.method, request.url.path, detail)
        return JSONResponse(status_code=400, content={"detail": detail})

    @app.get("/api/upcomingEvents", response_model=List[Event], response_model_exclude_none=True)
    def api_upcoming_events(ctx: AppContext = Depends(get_context)) -> List[Event]:
        """Return the first few events booked in any room from today on."""
        s = ctx.settings
        return bookings.upcoming_events(
            ctx.gateway(),
            ctx.rooms,
            s.event_timezone,
            days=s.upcoming_days,
            limit=s.upcoming_limit,
        )

    @app.get("/api/pendingEvents", response_model=List[Event], response_model_exclude_none=True)
    def api_pending_events(ctx: AppContext = Depends(get_context)) -> List[Event]:
        """Return booking requests waiting in the pending-approval calendar."""
        s = ctx.settings
        return bookings.pending_events(ctx.gateway(), s.pending_approval_calendar_id, limit=s.pending_limit)

    @app.post(
        "/api/addEventWithRoom",
        response_model=BookingConfirmation,
        response_model_exclude_none=True,
    )
    def api_add_event_with_room(
        body: BookingRequest, ctx: AppContext = Depends(get_context)
    ) -> BookingConfirmation:
        """Stage a booking in the pending-approval calendar with the room as a resource attendee."""
        logger.info("Incoming event request for %s", body.room)
        room_calendar_id = ctx.rooms.resolve_room_calendar(body.room)
        s = ctx.settings
        created = bookings.create_booking(
            ctx.gateway(), body, room_calendar_id, s.pending_approval_calendar_id, s.event_timezone
        )
        return BookingConfirmation(event=created)

    @app.post("/api/approveEvent", response_model=ApprovalResult)
    def api_approve_event(body: ApprovalRequest, ctx: AppContext = Depends(get_context)) -> ApprovalResult:
        s = ctx.settings
        return bookings.approve_booking(
            ctx.gateway(), body.eventId, s.pending_approval_calendar_id, s.approved_calendar_id
        )

    @app.get("/api/checkAvailability", response_model=List[str])
    def api_check_availability(
        startDateTime: Optional[str] = None,
        endDateTime: Optional[str] = None,
        ctx: AppContext = Depends(get_context),
    ) -> List[str]:
        """Return the rooms with no event between ``startDateTime`` and ``endDateTime``."""
        if not startDateTime or not endDateTime:
            raise ValidationError("Missing startDateTime or endDateTime")
        try:
            window = AvailabilityWindow(startDateTime=startDateTime, endDateTime=endDateTime)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid availability window: {_describe_errors(exc.errors())}") from exc
        return bookings.available_rooms(
            ctx.gateway(), ctx.rooms, window.startDateTime, window.endDateTime, ctx.settings.event_timezone
        )

    @app.get("/api/rooms", response_model=List[Room])
    def api_rooms(db: Session = Depends(get_db)) -> List[Room]:
        return RoomRepository(db).list_rooms()

    @app.post("/api/searchRoomBasic", response_model=List[Room])
    def api_search_room_basic(body: RoomSearchRequest, db: Session = Depends(get_db)) -> List[Room]:
        """Return rooms with at least ``capacity`` seats and all requested resources."""
        return RoomRepository(db).search_rooms(body.capacity, body.resources)

    @app.get("/oauth2/authorize", response_model=None)
    def oauth2_authorize(ctx: AppContext = Depends(get_context)):
        """Send the account owner to Google's consent screen."""
        if ctx.credentials.state is AuthState.AUTHORIZED:
            return AuthStatus(state=AuthState.AUTHORIZED.value)
        return RedirectResponse(ctx.credentials.begin_authorization())

    @app.get("/oauth2callback", response_model=AuthStatus)
    def oauth2_callback(
        code: Optional[str] = None,
        state: Optional[str] = None,
        error: Optional[str] = None,
        ctx: AppContext = Depends(get_context),
    ) -> AuthStatus:
        """Finish the handshake with the code Google passes back."""
        if error:
            raise AuthError(f"Authorization was not granted: {error}")
        if not code:
            raise ValidationError("Missing code")
        ctx.credentials.complete_authorization(code, state)
        return AuthStatus(state=AuthState.AUTHORIZED.value)

    @app.get("/healthz")
    def healthz(ctx: AppContext = Depends(get_context)) -> Dict[str, Any]:
        """Health check endpoint for monitoring."""
        return {"ok": True, "time": iso_z(_utcnow()), "auth": ctx.credentials.state.value}

    return app


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    settings = load_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        "room_booking.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
