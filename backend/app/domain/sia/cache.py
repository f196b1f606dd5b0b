"""Redis cache of SIA student records.

Wire shape:
- ``sia:student:{nim}``       JSON blob of the raw record
- ``sia:student:{nim}:meta``  hash ``{hash, fetchedAt}``
- ``sia:students:index``      set of every cached NIM
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from typing import Any, Iterable, Sequence

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.domain.sia.exceptions import CacheWriteError
from app.domain.sia.models import CacheOutcome, CacheSaveResult, CleanupResult, StampedStudent
from app.infra.redis import RedisProxy

LOGGER = logging.getLogger(__name__)

INDEX_KEY = "sia:students:index"


def student_key(nim: str) -> str:
    return f"sia:student:{nim}"


def meta_key(nim: str) -> str:
    return f"sia:student:{nim}:meta"


class SiaCacheStore:
    """Hash-guarded upserts, bulk reads and orphan cleanup for cached students."""

    def __init__(self, redis: Redis | RedisProxy) -> None:
        self._redis = redis

    async def save_many(self, students: Sequence[StampedStudent]) -> CacheSaveResult:
        """Upsert every record whose hash changed; unchanged records are skipped without a write."""

        outcomes: list[tuple[str, CacheOutcome]] = []
        for student in students:
            try:
                outcome = await self._save_one(student)
            except CacheWriteError as exc:
                LOGGER.warning("SIA cache write failed", extra={"nim": exc.nim, "error": str(exc.__cause__ or exc)})
                outcome = CacheOutcome.FAILED
            outcomes.append((student.nim, outcome))

        counts = Counter(outcome for _, outcome in outcomes)
        return CacheSaveResult(
            updated=counts[CacheOutcome.UPDATED],
            skipped=counts[CacheOutcome.SKIPPED],
            failed=counts[CacheOutcome.FAILED],
            updated_nims=[nim for nim, outcome in outcomes if outcome is CacheOutcome.UPDATED],
        )

    async def _save_one(self, student: StampedStudent) -> CacheOutcome:
        try:
            current_hash = await self.get_hash(student.nim)
            if current_hash is not None and current_hash == student.hash:
                return CacheOutcome.SKIPPED
            blob = json.dumps(student.data, separators=(",", ":"), ensure_ascii=False, default=str)
            # blob, meta and index membership land together or not at all
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(student_key(student.nim), blob)
                pipe.hset(
                    meta_key(student.nim),
                    mapping={"hash": student.hash, "fetchedAt": student.fetched_at.isoformat()},
                )
                pipe.sadd(INDEX_KEY, student.nim)
                await pipe.execute()
        except (RedisError, TypeError, ValueError) as exc:
            raise CacheWriteError(student.nim) from exc
        return CacheOutcome.UPDATED

    async def cached_nims(self) -> set[str]:
        members = await self._redis.smembers(INDEX_KEY)
        return {str(member) for member in members or ()}

    async def get_hash(self, nim: str) -> str | None:
        return await self._redis.hget(meta_key(nim), "hash")

    async def get_all(self) -> list[dict[str, Any]]:
        """Return every cached blob; blobs that are missing or fail to decode are dropped."""

        nims = sorted(await self.cached_nims())
        if not nims:
            return []
        values = await self._redis.mget([student_key(nim) for nim in nims])
        students: list[dict[str, Any]] = []
        for nim, raw in zip(nims, values):
            if raw is None:
                continue
            try:
                decoded = json.loads(raw)
            except (TypeError, ValueError):
                LOGGER.warning("Dropping undecodable SIA cache entry", extra={"nim": nim})
                continue
            if isinstance(decoded, dict):
                students.append(decoded)
        return students

    async def cleanup_obsolete(self, current_nims: Iterable[str]) -> CleanupResult:
        """Remove blob, meta and index membership for NIMs absent from the current fetch."""

        orphans = sorted((await self.cached_nims()) - set(current_nims))
        if not orphans:
            return CleanupResult()
        async with self._redis.pipeline(transaction=True) as pipe:
            for nim in orphans:
                pipe.delete(student_key(nim), meta_key(nim))
            pipe.srem(INDEX_KEY, *orphans)
            await pipe.execute()
        LOGGER.info("Removed obsolete SIA cache entries", extra={"count": len(orphans)})
        return CleanupResult(removed=len(orphans), nims=orphans)
