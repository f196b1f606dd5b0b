"""PostgreSQL-backed repository for SIA academic data."""

from __future__ import annotations

from typing import Mapping, Sequence

import asyncpg

from app.domain.sia.exceptions import CompetencyChunkError, RelationalBatchError, RelationalWriteError
from app.domain.sia.models import (
    PROTECTED_STATUSES,
    AcademicUpdate,
    CompetencyScoreRecord,
    ExistingScore,
    ScoreSource,
    StudentIdentity,
)
from app.domain.sia.repository import AcademicRepository

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

_UPDATE_ACADEMIC_SQL = """
UPDATE students
SET skscompleted = COALESCE($2, skscompleted),
    current_semester = COALESCE($3, current_semester),
    mandatory_courses_completed = COALESCE($4, mandatory_courses_completed),
    mkwu_completed = COALESCE($5, mkwu_completed),
    internship_completed = COALESCE($6, internship_completed),
    kkn_completed = COALESCE($7, kkn_completed),
    updated_at = NOW()
WHERE id = $1::uuid
"""

_UPSERT_SCORE_SQL = """
INSERT INTO student_cpl_scores (student_id, cpl_id, score, source, status, input_at, created_at, updated_at)
VALUES ($1::uuid, $2::uuid, $3, $4, $5, $6, NOW(), NOW())
ON CONFLICT (student_id, cpl_id)
DO UPDATE SET score = EXCLUDED.score,
    source = EXCLUDED.source,
    status = EXCLUDED.status,
    input_at = EXCLUDED.input_at,
    updated_at = NOW()
WHERE student_cpl_scores.source <> $7
  AND student_cpl_scores.status <> ALL($8::text[])
"""


def _affected(status: str) -> int:
    """Parse the row count from an asyncpg command tag such as ``UPDATE 1``."""

    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


def _academic_args(user_id: str, update: AcademicUpdate) -> tuple:
    return (
        user_id,
        update.skscompleted,
        update.current_semester,
        update.mandatory_courses_completed,
        update.mkwu_completed,
        update.internship_completed,
        update.kkn_completed,
    )


class PostgresAcademicRepository(AcademicRepository):
    """Reads and writes student academic data using asyncpg."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def resolve_user_ids(self, nims: Sequence[str]) -> Mapping[str, str]:
        if not nims:
            return {}
        rows = await self._pool.fetch(
            "SELECT id, identity_number FROM users WHERE identity_number = ANY($1::text[])",
            list(nims),
        )
        return {str(row["identity_number"]): str(row["id"]) for row in rows}

    async def update_academic_batch(self, updates: Sequence[tuple[str, AcademicUpdate]]) -> int:
        if not updates:
            return 0
        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    written = 0
                    for user_id, update in updates:
                        status = await conn.execute(_UPDATE_ACADEMIC_SQL, *_academic_args(user_id, update))
                        written += _affected(status)
        except _DB_ERRORS as exc:
            raise RelationalBatchError(f"academic batch failed: {exc}") from exc
        return written

    async def update_academic(self, user_id: str, update: AcademicUpdate) -> bool:
        try:
            status = await self._pool.execute(_UPDATE_ACADEMIC_SQL, *_academic_args(user_id, update))
        except _DB_ERRORS as exc:
            raise RelationalWriteError(f"academic update failed for user {user_id}: {exc}") from exc
        return _affected(status) > 0

    async def resolve_students(self, nims: Sequence[str]) -> Mapping[str, StudentIdentity]:
        if not nims:
            return {}
        rows = await self._pool.fetch(
            """
            SELECT u.id, u.identity_number, u.full_name
            FROM users u
            JOIN students s ON s.id = u.id
            WHERE u.identity_number = ANY($1::text[])
            """,
            list(nims),
        )
        return {
            str(row["identity_number"]): StudentIdentity(
                user_id=str(row["id"]),
                full_name=row["full_name"],
            )
            for row in rows
        }

    async def competency_ids_by_code(self) -> Mapping[str, str]:
        rows = await self._pool.fetch("SELECT id, code FROM cpls WHERE code IS NOT NULL")
        return {str(row["code"]).strip().upper(): str(row["id"]) for row in rows}

    async def existing_scores(self, keys: Sequence[tuple[str, str]]) -> Mapping[tuple[str, str], ExistingScore]:
        if not keys:
            return {}
        rows = await self._pool.fetch(
            """
            SELECT sc.student_id, sc.cpl_id, sc.source, sc.status
            FROM student_cpl_scores sc
            JOIN UNNEST($1::uuid[], $2::uuid[]) AS k(student_id, cpl_id)
              ON sc.student_id = k.student_id AND sc.cpl_id = k.cpl_id
            """,
            [student_id for student_id, _ in keys],
            [cpl_id for _, cpl_id in keys],
        )
        return {
            (str(row["student_id"]), str(row["cpl_id"])): ExistingScore(
                source=str(row["source"]),
                status=str(row["status"]),
            )
            for row in rows
        }

    async def upsert_scores(self, records: Sequence[CompetencyScoreRecord]) -> int:
        if not records:
            return 0
        protected = sorted(PROTECTED_STATUSES)
        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    written = 0
                    for record in records:
                        status = await conn.execute(
                            _UPSERT_SCORE_SQL,
                            record.student_id,
                            record.cpl_id,
                            record.score,
                            record.source,
                            record.status,
                            record.input_at,
                            ScoreSource.MANUAL.value,
                            protected,
                        )
                        written += _affected(status)
        except _DB_ERRORS as exc:
            raise CompetencyChunkError(f"competency chunk of {len(records)} rows failed: {exc}") from exc
        return written
