# trustgraph/cache/storage.py
"""
Durable key-value storage backends for the local cache.

Contract: get(key) -> str or None, set(key, value), remove(key).
Writes may raise; callers (the cache) catch and log.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine

from ..db.engine import create_cache_engine, make_session_factory, session_scope


class KeyValueStorage(ABC):
    """String key-value storage."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...


class MemoryStorage(KeyValueStorage):
    """Process-local storage. Contents are lost on exit."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class SqlStorage(KeyValueStorage):
    """
    Storage in a single SQL table.

    Table:
        kv_store(key TEXT PRIMARY KEY, value TEXT NOT NULL)
    """

    def __init__(self, engine: Optional[Engine] = None):
        """
        Initialize storage and create the table if missing.

        Args:
            engine: SQLAlchemy engine (defaults to the cache database from settings)
        """
        self._engine = engine or create_cache_engine()
        self._factory = make_session_factory(self._engine)
        with session_scope(self._factory) as session:
            session.execute(text("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key VARCHAR(255) PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """))

    @property
    def engine(self) -> Engine:
        return self._engine

    def get(self, key: str) -> Optional[str]:
        with session_scope(self._factory) as session:
            row = session.execute(
                text("SELECT value FROM kv_store WHERE key = :key"),
                {"key": key}
            ).fetchone()
            return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with session_scope(self._factory) as session:
            session.execute(
                text("""
                    INSERT INTO kv_store (key, value) VALUES (:key, :value)
                    ON CONFLICT (key) DO UPDATE SET value = excluded.value
                """),
                {"key": key, "value": value}
            )

    def remove(self, key: str) -> None:
        with session_scope(self._factory) as session:
            session.execute(
                text("DELETE FROM kv_store WHERE key = :key"),
                {"key": key}
            )

    def close(self) -> None:
        self._engine.dispose()
