# tradebook/db/session.py
"""Engine construction and session access for the trade ledger database."""

import logging
from pathlib import Path

from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session

from tradebook.config import settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL.

    File-backed SQLite gets its parent directory created. In-memory SQLite
    shares one connection so every session sees the same tables.
    """
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(database_url, echo=echo)

    kwargs = {"connect_args": {"check_same_thread": False}, "echo": echo}
    if url.database in (None, "", ":memory:"):
        kwargs["poolclass"] = StaticPool
    else:
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    return create_engine(database_url, **kwargs)


engine = build_engine(settings.database_url, echo=settings.database_echo)


def create_db_and_tables(bind: Engine = None):
    """Create all tables if they don't exist."""
    # Register table metadata before create_all
    import tradebook.db.models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)


def get_session() -> Session:
    return Session(engine)


def init_db():
    """Initialize database on startup."""
    logger.info("Initializing database at %s", engine.url.render_as_string(hide_password=True))
    create_db_and_tables()
