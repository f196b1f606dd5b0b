from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
from redis.exceptions import RedisError

from app.domain.sia.cache import INDEX_KEY, SiaCacheStore, meta_key, student_key
from app.domain.sia.hashing import stamp_records

FETCHED_AT = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _stamp(*records):
    return stamp_records(records, fetched_at=FETCHED_AT)


class FlakyRedis:
    """Delegates to a real client but fails every read for one NIM."""

    def __init__(self, inner, bad_nim: str) -> None:
        self._inner = inner
        self._bad_nim = bad_nim

    def __getattr__(self, item):
        return getattr(self._inner, item)

    async def hget(self, key, field):
        if self._bad_nim in key:
            raise RedisError("connection reset")
        return await self._inner.hget(key, field)


@pytest.mark.asyncio
async def test_save_many_writes_blob_meta_and_index(fake_redis):
    store = SiaCacheStore(fake_redis)
    stamped = _stamp({"nim": "1", "name": "Alice"})

    result = await store.save_many(stamped)

    assert (result.updated, result.skipped, result.failed) == (1, 0, 0)
    assert result.updated_nims == ["1"]
    assert json.loads(await fake_redis.get(student_key("1"))) == {"nim": "1", "name": "Alice"}
    meta = await fake_redis.hgetall(meta_key("1"))
    assert meta == {"hash": stamped[0].hash, "fetchedAt": FETCHED_AT.isoformat()}
    assert await fake_redis.smembers(INDEX_KEY) == {"1"}


@pytest.mark.asyncio
async def test_save_many_skips_unchanged_hash(fake_redis):
    store = SiaCacheStore(fake_redis)
    await store.save_many(_stamp({"nim": "1", "name": "Alice"}))

    again = await store.save_many(_stamp({"name": "Alice", "nim": "1"}))
    changed = await store.save_many(_stamp({"nim": "1", "name": "Alice Tan"}))

    assert (again.updated, again.skipped) == (0, 1)
    assert (changed.updated, changed.skipped) == (1, 0)
    assert json.loads(await fake_redis.get(student_key("1")))["name"] == "Alice Tan"


@pytest.mark.asyncio
async def test_save_many_counts_failed_record_and_continues(fake_redis):
    store = SiaCacheStore(FlakyRedis(fake_redis, bad_nim="2"))

    result = await store.save_many(_stamp({"nim": "1"}, {"nim": "2"}, {"nim": "3"}))

    assert (result.updated, result.failed) == (2, 1)
    assert await fake_redis.smembers(INDEX_KEY) == {"1", "3"}
    assert await fake_redis.exists(student_key("2")) == 0


@pytest.mark.asyncio
async def test_get_all_drops_undecodable_entries(fake_redis):
    store = SiaCacheStore(fake_redis)
    await store.save_many(_stamp({"nim": "1"}, {"nim": "2"}))
    await fake_redis.set(student_key("2"), "{not json")
    await fake_redis.sadd(INDEX_KEY, "ghost")

    assert await store.get_all() == [{"nim": "1"}]


@pytest.mark.asyncio
async def test_cleanup_obsolete_removes_orphans(fake_redis):
    store = SiaCacheStore(fake_redis)
    await store.save_many(_stamp({"nim": "1"}, {"nim": "2"}, {"nim": "3"}))

    result = await store.cleanup_obsolete(["1", "3"])

    assert result.removed == 1
    assert result.nims == ["2"]
    assert await fake_redis.smembers(INDEX_KEY) == {"1", "3"}
    assert await fake_redis.exists(student_key("2"), meta_key("2")) == 0
    assert await fake_redis.exists(student_key("1")) == 1


@pytest.mark.asyncio
async def test_cleanup_obsolete_noop_when_nothing_stale(fake_redis):
    store = SiaCacheStore(fake_redis)
    await store.save_many(_stamp({"nim": "1"}))

    result = await store.cleanup_obsolete(["1"])

    assert result.removed == 0
    assert await store.cached_nims() == {"1"}


@pytest.mark.asyncio
async def test_get_hash_reads_stored_fingerprint(fake_redis):
    store = SiaCacheStore(fake_redis)
    stamped = _stamp({"nim": "1", "name": "Alice"})

    assert await store.get_hash("1") is None
    await store.save_many(stamped)
    assert await store.get_hash("1") == stamped[0].hash
