# meraki/services/local_store.py
"""
Local durable key-value slots.

The store holds whole JSON documents under a handful of well-known keys
(appointments, notifications, sync outbox, preference flags). Every write
replaces the full document, so readers never observe a partial collection.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from meraki.core.config import Settings
from meraki.core.errors import StorageError
from meraki.crud.kv import delete_value, get_value, set_value
from meraki.db.base import init_db
from meraki.db.session import make_engine, make_session_factory

logger = logging.getLogger(__name__)

APPOINTMENTS_SLOT = "salon_appointments"
NOTIFICATIONS_SLOT = "salon_notifications"
OUTBOX_SLOT = "salon_outbox"
SOUND_FLAG = "notification_sound"


class LocalStore:
    """Interface shared by the SQL and Redis backends."""

    async def init(self) -> None:
        pass

    async def read(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def write(self, key: str, value: Any) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        pass

    async def read_list(self, key: str) -> Optional[list]:
        """Read a slot expected to hold a JSON array; anything else reads as missing."""
        value = await self.read(key)
        if value is None:
            return None
        if not isinstance(value, list):
            logger.warning("Slot %s holds %s instead of a list, ignoring it", key, type(value).__name__)
            return None
        return value

    async def read_flag(self, key: str, default: bool) -> bool:
        value = await self.read(key)
        if value is None:
            return default
        if isinstance(value, str):
            return value.lower() != "false"
        return bool(value)


class SqlLocalStore(LocalStore):
    """Slots stored as rows of the ``kv_store`` table (SQLite by default)."""

    def __init__(self, engine: AsyncEngine, owns_engine: bool = False):
        self.engine = engine
        self._sessions = make_session_factory(engine)
        self._owns_engine = owns_engine

    @classmethod
    def from_url(cls, url: str) -> "SqlLocalStore":
        return cls(make_engine(url), owns_engine=True)

    async def init(self) -> None:
        try:
            await init_db(self.engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not initialise local store: {e}") from e

    async def read(self, key: str) -> Optional[Any]:
        try:
            async with self._sessions() as db:
                return await get_value(db, key)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not read slot {key}: {e}") from e

    async def write(self, key: str, value: Any) -> None:
        try:
            async with self._sessions() as db:
                await set_value(db, key, value)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not write slot {key}: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            async with self._sessions() as db:
                await delete_value(db, key)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not delete slot {key}: {e}") from e

    async def close(self) -> None:
        if self._owns_engine:
            await self.engine.dispose()


def create_local_store(settings: Settings) -> LocalStore:
    """Pick the backend: Redis when REDIS_URL is set, otherwise the SQL table."""
    if settings.REDIS_URL:
        from meraki.services.redis_store import RedisLocalStore
        logger.info("Using Redis local store")
        return RedisLocalStore.from_url(settings.REDIS_URL, prefix=settings.REDIS_KEY_PREFIX)

    if settings.LOCAL_DB_URL.startswith("sqlite"):
        _ensure_sqlite_dir(settings.LOCAL_DB_URL)
    logger.info("Using SQL local store")
    return SqlLocalStore.from_url(settings.LOCAL_DB_URL)


def _ensure_sqlite_dir(url: str) -> None:
    from pathlib import Path

    path = url.split(":///", 1)[-1]
    if path and path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
