"""Bounded stores of already-processed keys.

These only suppress redundant work during the process's uptime. The durable
safety net is in Simpro itself: task-subject search, tag presence and note
markers are checked before every mutation.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from itertools import islice
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.database import async_session
from src.models.processed_key import ProcessedKey

logger = logging.getLogger(__name__)


class IdempotencyStore(Protocol):
    async def seen(self, key: str) -> bool: ...

    async def mark_seen(self, key: str) -> None: ...

    async def claim(self, key: str) -> bool: ...

    async def forget(self, key: str) -> None: ...


class MemoryIdempotencyStore:
    """Insertion-ordered key set with oldest-first eviction.

    Once more than ``capacity`` keys are held, the oldest are dropped until
    only the newest ``target`` remain. None of the methods await, so each
    call is atomic under asyncio's cooperative scheduling.
    """

    def __init__(self, capacity: int = 2000, target: int | None = None, name: str = "") -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.target = min(target if target is not None else capacity, capacity)
        self.name = name
        self._keys: dict[str, datetime] = {}

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def _evict(self) -> None:
        if len(self._keys) <= self.capacity:
            return
        overflow = len(self._keys) - self.target
        for key in list(islice(self._keys, overflow)):
            del self._keys[key]
        logger.debug("Evicted %d keys from %s store", overflow, self.name or "idempotency")

    async def seen(self, key: str) -> bool:
        return key in self._keys

    async def mark_seen(self, key: str) -> None:
        self._keys.pop(key, None)
        self._keys[key] = datetime.now(timezone.utc)
        self._evict()

    async def claim(self, key: str) -> bool:
        if key in self._keys:
            return False
        self._keys[key] = datetime.now(timezone.utc)
        self._evict()
        return True

    async def forget(self, key: str) -> None:
        self._keys.pop(key, None)


class SqlIdempotencyStore:
    """Same contract as ``MemoryIdempotencyStore``, persisted in ``processed_keys``."""

    def __init__(
        self,
        namespace: str,
        capacity: int = 2000,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self.namespace = namespace
        self.capacity = capacity
        self._session_factory = session_factory or async_session

    async def seen(self, key: str) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ProcessedKey.id).where(
                    ProcessedKey.namespace == self.namespace, ProcessedKey.key == key
                )
            )
            return result.first() is not None

    async def _insert(self, db: AsyncSession, key: str) -> bool:
        db.add(ProcessedKey(namespace=self.namespace, key=key))
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            return False
        await self._evict(db)
        return True

    async def _evict(self, db: AsyncSession) -> None:
        result = await db.execute(
            select(ProcessedKey.id)
            .where(ProcessedKey.namespace == self.namespace)
            .order_by(ProcessedKey.id.desc())
            .offset(self.capacity)
            .limit(1)
        )
        cutoff = result.scalar_one_or_none()
        if cutoff is None:
            return
        await db.execute(
            delete(ProcessedKey).where(
                ProcessedKey.namespace == self.namespace, ProcessedKey.id <= cutoff
            )
        )
        await db.commit()

    async def mark_seen(self, key: str) -> None:
        async with self._session_factory() as db:
            await self._insert(db, key)

    async def claim(self, key: str) -> bool:
        async with self._session_factory() as db:
            return await self._insert(db, key)

    async def forget(self, key: str) -> None:
        async with self._session_factory() as db:
            await db.execute(
                delete(ProcessedKey).where(
                    ProcessedKey.namespace == self.namespace, ProcessedKey.key == key
                )
            )
            await db.commit()


def build_store(namespace: str) -> IdempotencyStore:
    if settings.idempotency_backend == "sql":
        return SqlIdempotencyStore(namespace, capacity=settings.idempotency_capacity)
    return MemoryIdempotencyStore(capacity=settings.idempotency_capacity, name=namespace)
