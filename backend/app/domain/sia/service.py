"""SIA synchronisation cycle: fetch, stamp, cache, reconcile, clean up, report."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Sequence
from uuid import uuid4

from redis.exceptions import RedisError

from app.domain.sia import competency
from app.domain.sia.cache import SiaCacheStore
from app.domain.sia.client import StudentSource
from app.domain.sia.exceptions import (
    CompetencyChunkError,
    RelationalBatchError,
    RelationalWriteError,
    SiaConfigError,
    SiaFetchError,
)
from app.domain.sia.hashing import stamp_records
from app.domain.sia.models import (
    AcademicOutcome,
    AcademicResult,
    AcademicUpdate,
    CompetencyOutcome,
    CompetencyResult,
    StampedStudent,
    SyncStatus,
)
from app.domain.sia.repository import AcademicRepository
from app.domain.sia.status import SyncStatusStore
from app.obs import logging as obs_logging
from app.obs import metrics as obs_metrics

LOGGER = logging.getLogger(__name__)

DEFAULT_FETCH_RETRIES = 3
DEFAULT_CHUNK_SIZE = 200
BACKOFF_BASE_SECONDS = 1.0
BACKOFF_MAX_SECONDS = 10.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def backoff_delay(attempt: int, *, base: float = BACKOFF_BASE_SECONDS, cap: float = BACKOFF_MAX_SECONDS) -> float:
    """Exponential delay before retry number ``attempt + 1`` (attempts are 1-based)."""

    return min(base * (2 ** (attempt - 1)), cap)


class SiaSyncService:
    """Runs one idempotent sync cycle against injected collaborators.

    A failed or partial cycle leaves cache and database safe to re-derive from
    SIA on the next run; there is no cross-run transaction.
    """

    def __init__(
        self,
        *,
        source: StudentSource,
        cache: SiaCacheStore,
        status_store: SyncStatusStore,
        repository: AcademicRepository,
        fetch_retries: int = DEFAULT_FETCH_RETRIES,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._source = source
        self._cache = cache
        self._status_store = status_store
        self._repo = repository
        self._fetch_retries = max(1, fetch_retries)
        self._chunk_size = max(1, chunk_size)
        self._sleep = sleep
        self._clock = clock

    async def get_status(self) -> SyncStatus | None:
        return await self._status_store.load()

    async def run(self) -> SyncStatus:
        """Run one cycle; the summary is persisted whether it succeeds or raises."""

        started_at = self._clock()
        start = time.perf_counter()
        status = SyncStatus(last_run=started_at)
        tokens = obs_logging.bind_context(sync_run_id=uuid4().hex[:12])
        LOGGER.info("SIA sync started")
        try:
            records = await self._fetch_with_retry()
            status.fetched = len(records)
            stamped = stamp_records(records, fetched_at=started_at)
            if not stamped:
                LOGGER.warning("SIA returned no students; leaving cache and database untouched")
                return status

            cache_result = await self._cache.save_many(stamped)
            status.updated = cache_result.updated
            status.skipped = cache_result.skipped
            status.cache_failed = cache_result.failed
            obs_metrics.inc_sia_records(
                {"updated": cache_result.updated, "skipped": cache_result.skipped, "failed": cache_result.failed}
            )

            academic = await self._reconcile_academic(stamped)
            status.db_updated = academic.updated
            status.db_failed = academic.failed

            scores = await self._reconcile_competency(stamped, default_input_at=started_at)
            status.apply_competency(scores)

            cleanup = await self._cache.cleanup_obsolete(student.nim for student in stamped)
            status.cleaned = cleanup.removed
            obs_metrics.inc_sia_records({"cleaned": cleanup.removed})
        except Exception as exc:
            status.error = str(exc) or exc.__class__.__name__
            LOGGER.exception("SIA sync failed", extra={"error": status.error})
            raise
        finally:
            status.duration_ms = int((time.perf_counter() - start) * 1000)
            try:
                await self._status_store.save(status)
            except RedisError:
                LOGGER.exception("Failed to persist SIA sync status", extra={"error": status.error})
            finally:
                obs_logging.reset_context(tokens)

        LOGGER.info(
            "SIA sync finished",
            extra={
                "fetched": status.fetched,
                "updated": status.updated,
                "skipped": status.skipped,
                "db_updated": status.db_updated,
                "competency_updated": status.competency_updated,
                "cleaned": status.cleaned,
                "duration_ms": status.duration_ms,
            },
        )
        return status

    async def _fetch_with_retry(self) -> list[Mapping[str, Any]]:
        attempt = 1
        while True:
            try:
                records = await self._source.fetch_students()
            except SiaConfigError:
                obs_metrics.inc_sia_fetch_attempt("error")
                raise
            except SiaFetchError as exc:
                obs_metrics.inc_sia_fetch_attempt("error")
                LOGGER.warning(
                    "SIA fetch attempt failed",
                    extra={"attempt": attempt, "retries": self._fetch_retries, "error": str(exc)},
                )
                if attempt >= self._fetch_retries:
                    raise
                await self._sleep(backoff_delay(attempt))
                attempt += 1
                continue
            obs_metrics.inc_sia_fetch_attempt("ok")
            return list(records)

    async def _reconcile_academic(self, stamped: Sequence[StampedStudent]) -> AcademicResult:
        updates = [AcademicUpdate.from_record(student.nim, student.data) for student in stamped]
        updates = [update for update in updates if not update.is_empty()]
        if not updates:
            return AcademicResult()

        user_ids = await self._repo.resolve_user_ids([update.nim for update in updates])
        resolved = [(user_ids[update.nim], update) for update in updates if update.nim in user_ids]
        if not resolved:
            return AcademicResult()

        try:
            written = await self._repo.update_academic_batch(resolved)
        except RelationalBatchError as exc:
            LOGGER.warning(
                "Academic batch update failed; falling back to per-student updates",
                extra={"rows": len(resolved), "error": str(exc)},
            )
            outcomes = Counter([await self._update_one(user_id, update) for user_id, update in resolved])
        else:
            outcomes = Counter({AcademicOutcome.UPDATED: written, AcademicOutcome.NOT_FOUND: len(resolved) - written})

        obs_metrics.inc_sia_academic_rows({outcome.value: count for outcome, count in outcomes.items()})
        return AcademicResult(
            updated=outcomes[AcademicOutcome.UPDATED],
            failed=outcomes[AcademicOutcome.FAILED],
        )

    async def _update_one(self, user_id: str, update: AcademicUpdate) -> AcademicOutcome:
        try:
            written = await self._repo.update_academic(user_id, update)
        except RelationalWriteError as exc:
            LOGGER.warning("Academic update failed", extra={"nim": update.nim, "error": str(exc)})
            return AcademicOutcome.FAILED
        return AcademicOutcome.UPDATED if written else AcademicOutcome.NOT_FOUND

    async def _reconcile_competency(
        self,
        stamped: Sequence[StampedStudent],
        *,
        default_input_at: datetime,
    ) -> CompetencyResult:
        candidates = competency.flatten_candidates(stamped)
        if not candidates:
            return CompetencyResult()

        students = await self._repo.resolve_students(sorted({candidate.nim for candidate in candidates}))
        cpl_ids = await self._repo.competency_ids_by_code()
        planned, outcomes = competency.plan_scores(
            candidates,
            students=students,
            cpl_ids=cpl_ids,
            default_input_at=default_input_at,
        )
        existing = await self._repo.existing_scores([record.key for record in planned])
        writable, protected = competency.split_protected(planned, existing)
        outcomes[CompetencyOutcome.PROTECTED] += protected

        for chunk in competency.chunked(writable, self._chunk_size):
            try:
                written = await self._repo.upsert_scores(chunk)
            except CompetencyChunkError as exc:
                LOGGER.error("Competency chunk failed", extra={"rows": len(chunk), "error": str(exc)})
                outcomes[CompetencyOutcome.FAILED] += len(chunk)
                continue
            outcomes[CompetencyOutcome.UPDATED] += written
            # rows verified between lookup and write are left alone by the upsert guard
            outcomes[CompetencyOutcome.PROTECTED] += len(chunk) - written

        obs_metrics.inc_sia_competency_rows({outcome.value: count for outcome, count in outcomes.items()})
        if outcomes[CompetencyOutcome.NAME_MISMATCH]:
            LOGGER.warning(
                "Skipped competency rows with mismatched student names",
                extra={"rows": outcomes[CompetencyOutcome.NAME_MISMATCH]},
            )
        return CompetencyResult(
            fetched=len(candidates),
            updated=outcomes[CompetencyOutcome.UPDATED],
            skipped_no_student=outcomes[CompetencyOutcome.NO_STUDENT],
            skipped_name_mismatch=outcomes[CompetencyOutcome.NAME_MISMATCH],
            skipped_unknown_code=outcomes[CompetencyOutcome.UNKNOWN_CODE],
            skipped_invalid_score=outcomes[CompetencyOutcome.INVALID_SCORE],
            skipped_protected=outcomes[CompetencyOutcome.PROTECTED],
            failed=outcomes[CompetencyOutcome.FAILED],
        )
