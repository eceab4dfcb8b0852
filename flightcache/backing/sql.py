"""
SQL backing store with SQLAlchemy.

One table of JSON-encoded values keyed by the JSON encoding of the cache
key. Works with any SQLAlchemy URL; defaults to a SQLite file.
"""
import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Hashable, Optional

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .base import BackingStore

logger = logging.getLogger("flightcache.backing.sql")

DEFAULT_DATABASE_URL = "sqlite:///./flightcache.db"

Base = declarative_base()


class CacheRecord(Base):
    """
    Persisted cache value - one row per key
    """
    __tablename__ = "cache_records"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    version = Column(Integer, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<CacheRecord(key={self.key}, version={self.version})>"


def encode_key(key: Hashable) -> str:
    """Canonical text form of a cache key (tuples encode as lists)."""
    return json.dumps(key, sort_keys=True, separators=(",", ":"), default=str)


class SQLAlchemyBackingStore(BackingStore):
    """
    Backing store persisting values to a relational table.

    Values must be JSON-serializable (or serializable by `dumps`).
    """

    def __init__(
        self,
        url: str = DEFAULT_DATABASE_URL,
        engine: Optional[Engine] = None,
        echo: bool = False,
        dumps: Callable[[Any], str] = json.dumps,
        loads: Callable[[str], Any] = json.loads,
    ):
        if engine is None:
            connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
            engine = create_engine(url, connect_args=connect_args, echo=echo)
        self._engine = engine
        self._session_factory = sessionmaker(autoflush=False, bind=engine)
        self._dumps = dumps
        self._loads = loads
        self.init_db()

    def init_db(self):
        """
        Create the table if needed
        Safe to call multiple times
        """
        Base.metadata.create_all(bind=self._engine)
        logger.info(f"Backing store initialized at: {self._engine.url}")

    @contextmanager
    def _session(self):
        """Session that commits on success and rolls back on error."""
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get(self, key: Hashable) -> Optional[Any]:
        with self._session() as db:
            record = db.get(CacheRecord, encode_key(key))
            if record is None:
                return None
            return self._loads(record.value)

    def put(self, key: Hashable, value: Any, version: Optional[int] = None) -> None:
        payload = self._dumps(value)
        with self._session() as db:
            record = db.get(CacheRecord, encode_key(key))
            if record is None:
                record = CacheRecord(key=encode_key(key))
                db.add(record)
            record.value = payload
            record.version = version
            record.updated_at = datetime.utcnow()
        logger.debug(f"Persisted {key!r} (version {version})")

    def version_of(self, key: Hashable) -> Optional[int]:
        with self._session() as db:
            record = db.get(CacheRecord, encode_key(key))
            return record.version if record is not None else None

    def count(self) -> int:
        with self._session() as db:
            return db.query(CacheRecord).count()

    def close(self) -> None:
        self._engine.dispose()
