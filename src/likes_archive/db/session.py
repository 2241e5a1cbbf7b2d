"""Database session management."""

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from likes_archive.config import settings


def create_db_engine(database_url: str, **kwargs: Any) -> Engine:
    """Create an engine, enforcing foreign keys on SQLite.

    Args:
        database_url: SQLAlchemy connection string.
        **kwargs: Extra arguments forwarded to create_engine.

    Returns:
        The configured engine.
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    else:
        kwargs.setdefault("pool_pre_ping", True)
        kwargs.setdefault("pool_size", 5)
        kwargs.setdefault("max_overflow", 10)

    db_engine = create_engine(database_url, **kwargs)

    if url.get_backend_name() == "sqlite":

        @event.listens_for(db_engine, "connect")
        def _enable_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return db_engine


def create_session_factory(db_engine: Engine) -> sessionmaker[Session]:
    """Create a session factory bound to an engine."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=db_engine,
    )


# Create engine
engine = create_db_engine(settings.database_url)

# Create session factory
SessionLocal = create_session_factory(engine)


@contextmanager
def get_session_context(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """Get a database session as a context manager.

    The session commits when the block exits normally and rolls back
    everything written inside the block if it raises.
    """
    session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(db_engine: Engine | None = None) -> None:
    """Create missing tables and verify connectivity."""
    from likes_archive.db.models import Base

    db_engine = db_engine or engine
    Base.metadata.create_all(db_engine)

    with db_engine.connect() as conn:
        conn.execute(text("SELECT 1"))
