"""Durable key-value store used for queue crash recovery.

The queue store only needs get/set/remove on string keys. Production uses
a single PostgreSQL table through async SQLAlchemy; nothing here assumes
transactions spanning more than one key.

Usage:
    from upload_pipeline.services.kv_store import SqlKeyValueStore

    kv = SqlKeyValueStore(async_session_factory)
    await kv.set("upload_queue:user-1", snapshot_json)
    snapshot_json = await kv.get("upload_queue:user-1")
"""

from typing import Protocol

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from upload_pipeline.models import KeyValueEntry, utcnow

log = structlog.get_logger(__name__)


class KeyValueStore(Protocol):
    """String-keyed persistent store (no transactional guarantees)."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class SqlKeyValueStore:
    """KeyValueStore backed by the ``upload_kv_store`` table.

    Each call opens its own short session (short transaction pattern).
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def get(self, key: str) -> str | None:
        """Return the value stored at ``key``, or None if absent."""
        async with self.session_factory() as session:
            entry = await session.get(KeyValueEntry, key)
            return entry.value if entry is not None else None

    async def set(self, key: str, value: str) -> None:
        """Insert or overwrite the value stored at ``key``."""
        async with self.session_factory() as session:
            async with session.begin():
                entry = await session.get(KeyValueEntry, key)
                if entry is None:
                    session.add(KeyValueEntry(key=key, value=value, updated_at=utcnow()))
                else:
                    entry.value = value
                    entry.updated_at = utcnow()

        log.debug("kv_store_set", key=key, value_len=len(value))

    async def remove(self, key: str) -> None:
        """Delete ``key``; removing a missing key is a no-op."""
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))

        log.debug("kv_store_removed", key=key)
