"""Wiring for the SIA sync collaborators, built once at process start."""

from __future__ import annotations

from typing import Optional

import asyncpg
import httpx
from redis.asyncio import Redis

from app.domain.sia.cache import SiaCacheStore
from app.domain.sia.client import SiaClient
from app.domain.sia.jobs import SiaSyncRunner
from app.domain.sia.postgres_repo import PostgresAcademicRepository
from app.domain.sia.service import SiaSyncService
from app.domain.sia.status import SyncStatusStore
from app.infra.redis import RedisProxy
from app.settings import Settings


def build_sia_runner(
    pool: asyncpg.Pool,
    redis_conn: Redis | RedisProxy,
    config: Settings,
    *,
    http: Optional[httpx.AsyncClient] = None,
) -> tuple[SiaSyncRunner, SiaClient]:
    """Return the runner plus the client so the caller can close its HTTP session."""

    client = SiaClient(
        base_url=config.sia_base_url,
        api_token=config.sia_api_token,
        timeout_seconds=config.sia_fetch_timeout_seconds,
        http=http,
    )
    service = SiaSyncService(
        source=client,
        cache=SiaCacheStore(redis_conn),
        status_store=SyncStatusStore(redis_conn),
        repository=PostgresAcademicRepository(pool),
        fetch_retries=config.sia_fetch_retries,
        chunk_size=config.sia_competency_chunk_size,
    )
    return SiaSyncRunner(service), client
