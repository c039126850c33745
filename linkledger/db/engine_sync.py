# linkledger/db/engine_sync.py
"""
Sync engine used by the whole service: API handlers, the renewal sweep and
the network dispatcher workers.
SQLite (default) runs in WAL mode so webhook traffic and the sweep can
write concurrently without "database is locked" errors.
"""
from typing import Generator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from ..core.config import get_settings

DATABASE_URL = get_settings().resolved_database_url
_is_sqlite = DATABASE_URL.startswith("sqlite")

sync_engine = create_engine(
    DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False} if _is_sqlite else {},
)


def enable_sqlite_wal(engine: Engine):
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.close()


if _is_sqlite:
    enable_sqlite_wal(sync_engine)


def new_session() -> Session:
    """Session factory handed to background workers."""
    return Session(sync_engine)


def get_sync_session() -> Generator[Session, None, None]:
    """
    Dependency for SYNC SQLModel session injection.
    Usage: session: Session = Depends(get_sync_session)
    """
    with Session(sync_engine) as session:
        yield session


def create_sync_db_and_tables(engine: Engine = sync_engine):
    """Create every table registered on SQLModel.metadata."""
    # Importing the package registers all table models
    from .. import models  # noqa: F401

    SQLModel.metadata.create_all(engine)
