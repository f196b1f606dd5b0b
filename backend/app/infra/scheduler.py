"""APScheduler wrapper for cron-driven background jobs."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

LOGGER = logging.getLogger(__name__)


class JobScheduler:
	"""Minimal wrapper around AsyncIOScheduler for repeatable jobs."""

	def __init__(self, *, timezone: str = "UTC") -> None:
		self._scheduler = AsyncIOScheduler(timezone=timezone)
		self._started = False

	@property
	def running(self) -> bool:
		return self._started

	def start(self) -> None:
		if not self._started:
			self._scheduler.start()
			self._started = True

	def shutdown(self) -> None:
		if self._started:
			self._scheduler.shutdown(wait=False)
			self._started = False

	def schedule_cron(
		self,
		job_id: str,
		func: Callable[[], Awaitable[object]],
		*,
		expression: str,
		timezone: str,
	) -> None:
		"""Register a repeatable job; overlapping fires are coalesced, never run in parallel."""
		trigger = CronTrigger.from_crontab(expression, timezone=timezone)
		self._scheduler.add_job(
			func,
			trigger=trigger,
			id=job_id,
			replace_existing=True,
			max_instances=1,
			coalesce=True,
		)
		job = self._scheduler.get_job(job_id)
		next_run = getattr(job, "next_run_time", None)
		LOGGER.info(
			"Scheduled repeatable job",
			extra={"job_id": job_id, "cron": expression, "tz": timezone, "next_run": str(next_run) if next_run else None},
		)

	def job_ids(self) -> list[str]:
		return [job.id for job in self._scheduler.get_jobs()]


__all__ = ["JobScheduler"]
