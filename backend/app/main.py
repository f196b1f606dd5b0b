"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api import ops, sia
from app.api.errors import install_error_handlers
from app.domain.sia import schedule_sia_sync
from app.domain.sia.container import build_sia_runner
from app.infra import postgres
from app.infra.redis import close_redis, redis_client
from app.infra.scheduler import JobScheduler
from app.obs import init as obs_init
from app.settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
	pool = await postgres.init_pool()
	runner, sia_client = build_sia_runner(pool, redis_client, settings)
	app.state.sia_runner = runner
	scheduler = JobScheduler(timezone=settings.sia_sync_tz)
	if schedule_sia_sync(
		scheduler,
		runner,
		enabled=settings.sia_sync_enabled,
		cron=settings.sia_sync_cron,
		timezone=settings.sia_sync_tz,
	):
		scheduler.start()
	app.state.scheduler = scheduler
	try:
		yield
	finally:
		scheduler.shutdown()
		await sia_client.aclose()
		await postgres.close_pool()
		await close_redis()


app = FastAPI(title="Academic Sync Service", lifespan=lifespan)
install_error_handlers(app)
obs_init(app)

app.include_router(ops.router, tags=["ops"])
app.include_router(sia.router, tags=["sia"])
