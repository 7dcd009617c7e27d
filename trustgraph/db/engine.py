# trustgraph/db/engine.py
"""
Database engine and session management.

Backs the durable key-value storage used by the local cache. Defaults to a
SQLite file; any SQLAlchemy URL works.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from ..settings import settings


def _ensure_sqlite_dir(url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    prefix = "sqlite:///"
    if not url.startswith(prefix):
        return
    path = url[len(prefix):]
    if not path or path == ":memory:":
        return
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def create_cache_engine(url: Optional[str] = None) -> Engine:
    """
    Create an engine for the cache database.

    Args:
        url: SQLAlchemy URL (defaults to settings.cache_url)

    Returns:
        SQLAlchemy Engine
    """
    url = url or settings.cache_url
    _ensure_sqlite_dir(url)
    return create_engine(url, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to an engine."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
    )


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with session_scope(factory) as session:
            session.execute(...)
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def check_connection(engine: Engine) -> bool:
    """
    Check database connection.

    Returns:
        True if connection successful
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
