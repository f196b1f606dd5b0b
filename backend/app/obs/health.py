"""Liveness and readiness probes."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from app.domain.sia.status import SyncStatusStore
from app.infra import postgres
from app.infra.redis import redis_client
from app.obs import metrics

LOGGER = logging.getLogger(__name__)


async def _timed(
	name: str,
	probe: Callable[[], Awaitable[Any]],
	mark: Callable[..., None],
	*,
	timeout: float,
) -> Dict[str, Any]:
	start = perf_counter()
	try:
		await asyncio.wait_for(probe(), timeout=timeout)
	except Exception as exc:  # pragma: no cover - depends on runtime
		mark(False)
		LOGGER.warning("Readiness probe failed", extra={"check": name}, exc_info=True)
		return {"ok": False, "error": str(exc)}
	latency = perf_counter() - start
	mark(True, latency_seconds=latency)
	return {"ok": True, "latency_ms": round(latency * 1000, 2)}


async def _ping_postgres() -> None:
	pool = await postgres.get_pool()
	async with pool.acquire() as conn:
		await conn.execute("SELECT 1")


async def _sia_sync_state() -> Dict[str, Any]:
	"""Informational only; a failed last cycle does not make the service unready."""
	try:
		last = await SyncStatusStore(redis_client).load()
	except Exception as exc:  # pragma: no cover - redis outage already reported
		return {"known": False, "error": str(exc)}
	if last is None:
		return {"known": False}
	state: Dict[str, Optional[Any]] = {
		"known": True,
		"last_run": last.last_run.isoformat(),
		"ok": last.ok,
	}
	if last.error:
		state["error"] = last.error
	return state


async def liveness() -> Dict[str, Any]:
	return {"status": "ok"}


async def readiness() -> Tuple[int, Dict[str, Any]]:
	redis_state = await _timed("redis", redis_client.ping, metrics.mark_redis, timeout=0.2)
	postgres_state = await _timed("postgres", _ping_postgres, metrics.mark_postgres, timeout=0.5)
	ok = bool(redis_state["ok"] and postgres_state["ok"])
	return (
		200 if ok else 503,
		{
			"status": "ok" if ok else "degraded",
			"checks": {
				"redis": redis_state,
				"postgres": postgres_state,
			},
			"sia_sync": await _sia_sync_state(),
		},
	)
