"""Database session management for saved rooms."""

from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

MEMORY = ":memory:"

# Global engine and session factory
_engine: Engine | None = None
_SessionFactory: sessionmaker | None = None


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Let the server keep writing while a save is being read."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def init_db(db_path: Path | str | None = None) -> Engine:
    """Initialize the database and create all tables.

    Args:
        db_path: Path to the SQLite database file, or ":memory:" for a
            throwaway database. Defaults to saves/rooms.db

    Returns:
        SQLAlchemy Engine instance
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()

    if str(db_path) == MEMORY:
        # One shared connection, or every session would see its own empty db
        _engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_path = Path(db_path) if db_path is not None else Path("saves/rooms.db")
        db_path.parent.mkdir(parents=True, exist_ok=True)
        _engine = create_engine(
            f"sqlite:///{db_path}",
            echo=False,  # Set to True for SQL debugging
            connect_args={"check_same_thread": False},
        )
        event.listen(_engine, "connect", _set_sqlite_pragma)

    Base.metadata.create_all(_engine)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)
    return _engine


def get_session() -> Session:
    """Get a new database session."""
    if _SessionFactory is None:
        init_db()
    return _SessionFactory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations.

    Usage:
        with session_scope() as session:
            session.add(some_object)

    Yields:
        SQLAlchemy Session instance
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def close_db() -> None:
    """Close the database connection and dispose of the engine."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None
        _SessionFactory = None
