"""Key-value local store backing progress and the sync queue."""
import logging
from typing import Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from hanzimap import monitoring
from hanzimap.errors import PersistenceError
from hanzimap.models.base import SessionLocal
from hanzimap.models.models import StoreEntry

logger = logging.getLogger(__name__)


class LocalStore(Protocol):
    """Asynchronous string key-value store."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str) -> None:
        ...


class SqlLocalStore:
    """LocalStore on a SQL table, one row per key.

    Each ``set`` commits on its own, so a key is either fully written or
    left as it was.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        """Initialize the store with a session factory."""
        self.session_factory = session_factory

    async def get(self, key: str) -> Optional[str]:
        db: Session = self.session_factory()
        try:
            entry = db.get(StoreEntry, key)
            return entry.value if entry else None
        except SQLAlchemyError as e:
            monitoring.store_errors.labels(operation="get").inc()
            logger.error("Failed to read key %s: %s", key, str(e))
            raise PersistenceError(f"Could not read {key}") from e
        finally:
            db.close()

    async def set(self, key: str, value: str) -> None:
        db: Session = self.session_factory()
        try:
            entry = db.get(StoreEntry, key)
            if entry is None:
                db.add(StoreEntry(key=key, value=value))
            else:
                entry.value = value
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            monitoring.store_errors.labels(operation="set").inc()
            logger.error("Failed to write key %s: %s", key, str(e))
            raise PersistenceError(f"Could not write {key}") from e
        finally:
            db.close()

