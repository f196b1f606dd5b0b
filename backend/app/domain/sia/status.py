"""Persistence of the last SIA sync summary."""

from __future__ import annotations

from typing import Optional

from redis.asyncio import Redis

from app.domain.sia.models import SyncStatus
from app.infra.redis import RedisProxy

STATUS_KEY = "sia:sync:status"


class SyncStatusStore:
    """Singleton summary stored as a Redis hash; each save replaces the previous run."""

    def __init__(self, redis: Redis | RedisProxy, *, key: str = STATUS_KEY) -> None:
        self._redis = redis
        self._key = key

    async def save(self, status: SyncStatus) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._key)
            pipe.hset(self._key, mapping=status.to_mapping())
            await pipe.execute()

    async def load(self) -> Optional[SyncStatus]:
        mapping = await self._redis.hgetall(self._key)
        if not mapping or "lastRun" not in mapping:
            return None
        return SyncStatus.from_mapping(mapping)
