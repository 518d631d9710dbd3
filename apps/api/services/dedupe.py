"""Dedupe guards that stop the same download from being billed twice."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from database import insert_ignoring_conflicts
from models.point_dedupe import PointDedupe

logger = logging.getLogger(__name__)


class AcquireResult(enum.Enum):
    ACQUIRED = "acquired"
    ALREADY_BILLED = "already_billed"


@dataclass(frozen=True)
class DedupeKey:
    account_id: str
    distribution_id: str
    platform: str
    bucket_minute: int

    def cache_key(self) -> str:
        return f"points:dedupe:{self.account_id}:{self.distribution_id}:{self.platform}"


class DedupeGuard(Protocol):
    async def try_acquire(self, db: AsyncSession, key: DedupeKey) -> AcquireResult:
        ...

    async def release(self, key: DedupeKey) -> None:
        ...


class TableDedupeGuard:
    """Persists one ``point_dedupe`` row per key inside the caller's transaction.

    The primary key on ``point_dedupe`` makes concurrent acquisitions of the
    same key mutually exclusive: the loser's insert affects zero rows.
    """

    async def try_acquire(self, db: AsyncSession, key: DedupeKey) -> AcquireResult:
        stmt = insert_ignoring_conflicts(db, PointDedupe.__table__).values(
            account_id=key.account_id,
            distribution_id=key.distribution_id,
            platform=key.platform,
            bucket_minute=key.bucket_minute,
        )
        result = await db.execute(stmt)
        if result.rowcount == 1:
            return AcquireResult.ACQUIRED
        return AcquireResult.ALREADY_BILLED

    async def release(self, key: DedupeKey) -> None:
        # The row goes away with the rolled-back transaction.
        return None


class CacheDedupeGuard:
    """Short-TTL Redis marker per account, distribution and platform.

    Coarser than the table guard: it ignores ``bucket_minute``, so any
    repeat download inside the TTL is billed once.
    """

    def __init__(self, redis_client: Any, ttl_seconds: int = 30):
        self._redis = redis_client
        self._ttl_seconds = max(int(ttl_seconds), 1)

    async def try_acquire(self, db: AsyncSession, key: DedupeKey) -> AcquireResult:
        acquired = await self._redis.set(key.cache_key(), "1", nx=True, ex=self._ttl_seconds)
        if acquired:
            return AcquireResult.ACQUIRED
        logger.info("dedupe cache hit key=%s", key.cache_key())
        return AcquireResult.ALREADY_BILLED

    async def release(self, key: DedupeKey) -> None:
        """Drop the marker of an attempt that wrote nothing, so a retry can bill."""
        try:
            await self._redis.delete(key.cache_key())
        except RedisError as exc:
            logger.warning("dedupe cache release failed key=%s: %s", key.cache_key(), exc)
