"""Operator endpoints for the SIA academic sync."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.api.ops import require_admin
from app.domain.sia.cache import SiaCacheStore
from app.domain.sia.exceptions import SiaFetchError, SyncInProgressError
from app.domain.sia.jobs import SiaSyncRunner
from app.domain.sia.schemas import CachedStudentsSchema, SyncStatusSchema
from app.domain.sia.status import SyncStatusStore
from app.infra.redis import redis_client

router = APIRouter(prefix="/sia", tags=["sia"], dependencies=[Depends(require_admin)])


def get_sia_runner(request: Request) -> SiaSyncRunner:
	runner = getattr(request.app.state, "sia_runner", None)
	if runner is None:
		raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="sia_sync_unavailable")
	return runner


@router.post("/sync", response_model=SyncStatusSchema)
async def trigger_sync(runner: SiaSyncRunner = Depends(get_sia_runner)) -> SyncStatusSchema:
	try:
		result = await runner.trigger()
	except SyncInProgressError as exc:
		raise HTTPException(status.HTTP_409_CONFLICT, detail=exc.reason) from exc
	except SiaFetchError as exc:
		raise HTTPException(status.HTTP_502_BAD_GATEWAY, detail="sia_fetch_failed") from exc
	except Exception as exc:
		raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail="sia_sync_failed") from exc
	return SyncStatusSchema.from_status(result)


@router.get("/sync/status", response_model=SyncStatusSchema)
async def sync_status() -> SyncStatusSchema:
	last = await SyncStatusStore(redis_client).load()
	if last is None:
		raise HTTPException(status.HTTP_404_NOT_FOUND, detail="no_sync_recorded")
	return SyncStatusSchema.from_status(last)


@router.get("/cached", response_model=CachedStudentsSchema)
async def cached_students() -> CachedStudentsSchema:
	data = await SiaCacheStore(redis_client).get_all()
	return CachedStudentsSchema(count=len(data), data=data)
