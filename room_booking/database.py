"""SQLAlchemy setup for the rooms table.

The engine and session factory are built once by ``create_session_factory``
when the application starts and kept on the application context; request
handlers get a session through the ``get_db`` dependency in ``main``.
"""

import logging
from typing import Tuple

from sqlalchemy import JSON, Column, Integer, String, Text, create_engine
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


class RoomRecord(Base):
    """A row of the rooms table. Read-only from this service's point of view."""

    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    capacity = Column(Integer, nullable=False)
    # text[] on PostgreSQL; SQLite has no arrays, so tags are stored as JSON there
    resources = Column(ARRAY(Text).with_variant(JSON(), "sqlite"), nullable=False, default=list)
    calendar_id = Column(String(255), nullable=True)


def create_session_factory(database_url: str) -> Tuple[Engine, sessionmaker]:
    """Create the engine and a session factory bound to it."""
    if database_url.startswith("sqlite"):
        # In-memory SQLite must share one connection across the threadpool
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(database_url, pool_pre_ping=True)
    logger.info("Database engine created for dialect %s", engine.dialect.name)
    return engine, sessionmaker(autocommit=False, autoflush=False, bind=engine)
