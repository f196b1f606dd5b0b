"""Single-flight execution and cron registration for the SIA sync job."""

from __future__ import annotations

import asyncio
import logging
import time

from app.domain.sia.exceptions import SyncInProgressError
from app.domain.sia.models import SyncStatus
from app.domain.sia.service import SiaSyncService
from app.infra.scheduler import JobScheduler
from app.obs import metrics as obs_metrics

LOGGER = logging.getLogger(__name__)

JOB_ID = "sia-sync"
JOB_NAME = "sia_sync"


class SiaSyncRunner:
    """Guarantees at most one sync cycle runs at a time in this process."""

    def __init__(self, service: SiaSyncService) -> None:
        self.service = service
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def trigger(self) -> SyncStatus:
        """Operator-triggered run; rejects instead of queueing behind an active cycle."""

        if self._lock.locked():
            raise SyncInProgressError("a SIA sync cycle is already running")
        return await self._run(trigger="manual")

    async def run_scheduled(self) -> SyncStatus | None:
        """Scheduler entry point; an overlapping fire is skipped."""

        if self._lock.locked():
            LOGGER.warning("Skipping scheduled SIA sync; previous cycle still running")
            obs_metrics.record_job_run(JOB_NAME, result="skipped")
            return None
        return await self._run(trigger="schedule")

    async def _run(self, *, trigger: str) -> SyncStatus:
        async with self._lock:
            start = time.perf_counter()
            try:
                status = await self.service.run()
            except Exception:
                obs_metrics.record_job_run(JOB_NAME, result="error", duration_seconds=time.perf_counter() - start)
                LOGGER.error("SIA sync job failed", extra={"trigger": trigger})
                raise
            obs_metrics.record_job_run(JOB_NAME, result="ok", duration_seconds=time.perf_counter() - start)
            obs_metrics.mark_sia_success(time.time())
            return status


def schedule_sia_sync(
    scheduler: JobScheduler,
    runner: SiaSyncRunner,
    *,
    enabled: bool,
    cron: str,
    timezone: str,
) -> bool:
    """Register the repeatable sync job; returns False when disabled by configuration."""

    if not enabled:
        LOGGER.info("SIA sync cron is disabled")
        return False
    scheduler.schedule_cron(JOB_ID, runner.run_scheduled, expression=cron, timezone=timezone)
    return True
