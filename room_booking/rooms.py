"""Room directory: which calendar belongs to which room, and what each room offers.

Two sources are combined here. ``RoomDirectory`` is the static mapping from
room name to resource calendar ID, read once from ``room-ids.json``; it is
what bookings and availability checks use. ``RoomRepository`` reads the
rooms table for capacity and resource tags.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .database import RoomRecord
from .errors import TransportError, UnknownRoomError
from .models import Room

logger = logging.getLogger(__name__)


class RoomDirectory:
    """Immutable room name -> calendar ID mapping, in configuration order."""

    def __init__(self, calendars: Mapping[str, str]) -> None:
        self._calendars: Dict[str, str] = dict(calendars)

    def resolve_room_calendar(self, room_name: str) -> str:
        try:
            return self._calendars[room_name]
        except KeyError:
            raise UnknownRoomError(room_name) from None

    def room_names(self) -> List[str]:
        return list(self._calendars)

    def calendars(self) -> List[Tuple[str, str]]:
        """Return ``(room name, calendar ID)`` pairs."""
        return list(self._calendars.items())

    def __len__(self) -> int:
        return len(self._calendars)


def load_room_directory(path: str | Path) -> RoomDirectory:
    """Read the room mapping file. A bad file stops the service from starting."""
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in data.items()
    ):
        raise ValueError(f"{path} must be a JSON object mapping room names to calendar IDs")
    logger.info("Loaded %d room calendars from %s", len(data), path)
    return RoomDirectory(data)


class RoomRepository:
    """Parameterized reads of the rooms table."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def list_rooms(self) -> List[Room]:
        stmt = select(RoomRecord).order_by(RoomRecord.name)
        return [Room.model_validate(r) for r in self._fetch(stmt)]

    def search_rooms(self, min_capacity: int, required_resources: Iterable[str]) -> List[Room]:
        """Rooms holding at least ``min_capacity`` people and every required resource."""
        required = list(dict.fromkeys(required_resources))
        logger.info(
            "Searching rooms where capacity >= %s and room includes: %s", min_capacity, required
        )
        stmt = select(RoomRecord).where(RoomRecord.capacity >= min_capacity).order_by(RoomRecord.name)
        if self.session.get_bind().dialect.name == "postgresql":
            # resources @> ARRAY[...]
            stmt = stmt.where(RoomRecord.resources.contains(required))
            rows = self._fetch(stmt)
        else:
            wanted = set(required)
            rows = [r for r in self._fetch(stmt) if wanted.issubset(r.resources or [])]
        return [Room.model_validate(r) for r in rows]

    def _fetch(self, stmt) -> List[RoomRecord]:
        try:
            return list(self.session.scalars(stmt))
        except SQLAlchemyError as exc:
            logger.exception("Rooms query failed")
            raise TransportError(f"Server Error: {exc}") from exc
