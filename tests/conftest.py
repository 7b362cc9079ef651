import copy
import itertools
import json
from collections import defaultdict
from datetime import datetime, timezone
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient
from googleapiclient.errors import HttpError

from room_booking.config import Settings
from room_booking.credentials import AuthState
from room_booking.database import Base, RoomRecord
from room_booking.google_client import CalendarGateway
from room_booking.main import create_app
from room_booking.rooms import RoomDirectory

CHAPEL = "chapel@resource.calendar.google.com"
SANCTUARY = "sanctuary@resource.calendar.google.com"
PENDING = "pending@group.calendar.google.com"
APPROVED = "approved@group.calendar.google.com"


def http_error(status, message="boom"):
    resp = SimpleNamespace(status=status, reason=message)
    return HttpError(resp, json.dumps({"error": {"message": message}}).encode("utf-8"))


def parse_rfc3339(value, tz_name=None):
    """Parse a Calendar timestamp; one without an offset is read in ``tz_name`` (UTC if unset)."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=ZoneInfo(tz_name) if tz_name else timezone.utc)
    return parsed.astimezone(timezone.utc)


def event_time(event, key):
    moment = event[key]
    return parse_rfc3339(moment["dateTime"], moment.get("timeZone"))


class _Request:
    def __init__(self, run):
        self._run = run

    def execute(self):
        return self._run()


class _Events:
    def __init__(self, svc):
        self.svc = svc

    def list(self, calendarId, **params):
        return self.svc._request("list", calendarId, lambda: self.svc._list(calendarId, **params))

    def get(self, calendarId, eventId):
        return self.svc._request("get", calendarId, lambda: self.svc._get(calendarId, eventId))

    def insert(self, calendarId, body):
        return self.svc._request("insert", calendarId, lambda: self.svc._insert(calendarId, body))

    def delete(self, calendarId, eventId):
        return self.svc._request("delete", calendarId, lambda: self.svc._delete(calendarId, eventId))


class _CalendarList:
    def __init__(self, svc):
        self.svc = svc

    def list(self, pageToken=None):
        return self.svc._request("calendarList", "", lambda: self.svc._calendar_page(pageToken))


class FakeCalendarService:
    """In-memory stand-in for the object returned by ``build("calendar", "v3")``."""

    page_size = 2

    def __init__(self):
        self.calendars = defaultdict(dict)
        self.calendar_list = []
        self.calls = []
        self.list_params = []
        self.failures = {}
        self._ids = itertools.count(1)

    # test helpers
    def add_event(self, calendar_id, start, end, **fields):
        event_id = fields.pop("id", None) or f"evt{next(self._ids)}"
        event = {"id": event_id, "start": {"dateTime": start}, "end": {"dateTime": end}, **fields}
        self.calendars[calendar_id][event_id] = event
        return event

    def fail(self, method, calendar_id, status=500, exc=None):
        """Make calls fail with an HTTP ``status``, or raise ``exc`` when given."""
        self.failures[(method, calendar_id)] = exc if exc is not None else status

    def calls_to(self, method, calendar_id=None):
        return [c for c in self.calls if c[0] == method and (calendar_id is None or c[1] == calendar_id)]

    # googleapiclient surface
    def events(self):
        return _Events(self)

    def calendarList(self):
        return _CalendarList(self)

    def _request(self, method, calendar_id, fn):
        def run():
            self.calls.append((method, calendar_id))
            failure = self.failures.get((method, calendar_id))
            if isinstance(failure, Exception):
                raise failure
            if failure:
                raise http_error(failure)
            return fn()

        return _Request(run)

    def _list(self, calendar_id, **params):
        self.list_params.append(params)
        items = list(self.calendars.get(calendar_id, {}).values())
        if "timeMin" in params:
            lo = parse_rfc3339(params["timeMin"])
            items = [e for e in items if event_time(e, "end") > lo]
        if "timeMax" in params:
            hi = parse_rfc3339(params["timeMax"])
            items = [e for e in items if event_time(e, "start") < hi]
        items.sort(key=lambda e: event_time(e, "start"))
        if "maxResults" in params:
            items = items[: params["maxResults"]]
        return {"kind": "calendar#events", "items": copy.deepcopy(items)}

    def _get(self, calendar_id, event_id):
        try:
            return copy.deepcopy(self.calendars[calendar_id][event_id])
        except KeyError:
            raise http_error(404, "Not Found")

    def _insert(self, calendar_id, body):
        event = copy.deepcopy(body)
        event.setdefault("id", f"evt{next(self._ids)}")
        if event["id"] in self.calendars[calendar_id]:
            raise http_error(409, "The requested identifier already exists.")
        event["htmlLink"] = f"https://calendar.example/event?eid={event['id']}"
        event["etag"] = '"1"'
        self.calendars[calendar_id][event["id"]] = event
        return copy.deepcopy(event)

    def _delete(self, calendar_id, event_id):
        if event_id not in self.calendars.get(calendar_id, {}):
            raise http_error(404, "Not Found")
        del self.calendars[calendar_id][event_id]
        return ""

    def _calendar_page(self, page_token):
        start = int(page_token or 0)
        page = {"items": self.calendar_list[start : start + self.page_size]}
        if start + self.page_size < len(self.calendar_list):
            page["nextPageToken"] = str(start + self.page_size)
        return page


class StubCredentialStore:
    """Credential store that is always authorized and counts lookups."""

    state = AuthState.AUTHORIZED
    authorization_url = None

    def __init__(self):
        self.obtained = 0

    def obtain(self):
        self.obtained += 1
        return SimpleNamespace(token="test-token")


@pytest.fixture
def fake_service():
    return FakeCalendarService()


@pytest.fixture
def gateway(fake_service):
    return CalendarGateway(fake_service)


@pytest.fixture
def rooms():
    return RoomDirectory({"Chapel": CHAPEL, "Sanctuary": SANCTUARY})


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL="sqlite://",
        GOOGLE_CLIENT_SECRETS_FILE=str(tmp_path / "credentials.json"),
        GOOGLE_TOKEN_FILE=str(tmp_path / "token.json"),
        ROOM_IDS_FILE=str(tmp_path / "room-ids.json"),
        PENDING_APPROVAL_CALENDAR_ID=PENDING,
        APPROVED_CALENDAR_ID=APPROVED,
        ENABLE_CORS=False,
    )


@pytest.fixture
def stub_credentials():
    return StubCredentialStore()


@pytest.fixture
def make_app(settings, rooms, fake_service, stub_credentials):
    def factory(credentials=None):
        app = create_app(
            settings,
            rooms=rooms,
            credentials=credentials or stub_credentials,
            gateway_factory=lambda creds: CalendarGateway(fake_service),
        )
        Base.metadata.create_all(app.state.context.engine)
        return app

    return factory


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def seeded_rooms(app):
    session = app.state.context.session_factory()
    session.add_all(
        [
            RoomRecord(name="Chapel", capacity=40, resources=["piano", "projector"], calendar_id=CHAPEL),
            RoomRecord(name="Fellowship Hall", capacity=120, resources=["kitchen", "projector", "stage"]),
            RoomRecord(name="Library", capacity=12, resources=["whiteboard"]),
            RoomRecord(name="Sanctuary", capacity=300, resources=["piano", "organ", "sound"], calendar_id=SANCTUARY),
        ]
    )
    session.commit()
    session.close()
