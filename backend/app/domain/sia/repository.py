"""Relational storage contract for the SIA sync, plus an in-memory reference."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

from app.domain.sia.exceptions import CompetencyChunkError, RelationalBatchError, RelationalWriteError
from app.domain.sia.models import AcademicUpdate, CompetencyScoreRecord, ExistingScore, StudentIdentity


class AcademicRepository(Protocol):
    """Storage layer contract for student academic data."""

    async def resolve_user_ids(self, nims: Sequence[str]) -> Mapping[str, str]:
        """Bulk map NIM -> user id via ``users.identity_number``."""
        ...

    async def update_academic_batch(self, updates: Sequence[tuple[str, AcademicUpdate]]) -> int:
        """Apply all updates in one transaction; raise RelationalBatchError on failure."""
        ...

    async def update_academic(self, user_id: str, update: AcademicUpdate) -> bool:
        """Apply a single update; raise RelationalWriteError on failure."""
        ...

    async def resolve_students(self, nims: Sequence[str]) -> Mapping[str, StudentIdentity]:
        """Map NIM -> identity, only for users that own a student profile."""
        ...

    async def competency_ids_by_code(self) -> Mapping[str, str]:
        """Upper-cased competency code -> competency id."""
        ...

    async def existing_scores(self, keys: Sequence[tuple[str, str]]) -> Mapping[tuple[str, str], ExistingScore]:
        ...

    async def upsert_scores(self, records: Sequence[CompetencyScoreRecord]) -> int:
        """Upsert one chunk in one transaction; raise CompetencyChunkError on failure.

        Returns the number of rows written. Rows that became protected after the
        lookup are left alone and not counted.
        """
        ...


@dataclass
class StoredStudent:
    user_id: str
    nim: str
    full_name: Optional[str] = None
    has_profile: bool = True
    academic: dict[str, Any] = field(default_factory=dict)


@dataclass
class StoredScore:
    score: float
    source: str
    status: str
    input_at: Optional[datetime] = None


class InMemoryAcademicRepository(AcademicRepository):
    """Reference repository used in tests and developer environments."""

    def __init__(self) -> None:
        self.students: dict[str, StoredStudent] = {}
        self.cpls: dict[str, str] = {}
        self.scores: dict[tuple[str, str], StoredScore] = {}
        self.fail_batch = False
        self.failing_user_ids: set[str] = set()
        self.failing_chunks: set[int] = set()
        self.lookup_calls: list[tuple[str, int]] = []
        self.upsert_calls = 0

    def add_student(
        self,
        user_id: str,
        nim: str,
        *,
        full_name: Optional[str] = None,
        has_profile: bool = True,
    ) -> StoredStudent:
        student = StoredStudent(user_id=user_id, nim=nim, full_name=full_name, has_profile=has_profile)
        self.students[user_id] = student
        return student

    def add_cpl(self, cpl_id: str, code: str) -> None:
        self.cpls[code.strip().upper()] = cpl_id

    def set_score(
        self,
        student_id: str,
        cpl_id: str,
        *,
        score: float,
        source: str,
        status: str,
        input_at: Optional[datetime] = None,
    ) -> None:
        self.scores[(student_id, cpl_id)] = StoredScore(score=score, source=source, status=status, input_at=input_at)

    def _by_nim(self, nims: Iterable[str]) -> dict[str, StoredStudent]:
        wanted = set(nims)
        return {student.nim: student for student in self.students.values() if student.nim in wanted}

    async def resolve_user_ids(self, nims: Sequence[str]) -> Mapping[str, str]:
        self.lookup_calls.append(("users", len(nims)))
        return {nim: student.user_id for nim, student in self._by_nim(nims).items()}

    def _apply(self, user_id: str, update: AcademicUpdate) -> bool:
        student = self.students.get(user_id)
        if student is None or not student.has_profile:
            return False
        student.academic.update(update.columns())
        return True

    async def update_academic_batch(self, updates: Sequence[tuple[str, AcademicUpdate]]) -> int:
        if self.fail_batch or any(user_id in self.failing_user_ids for user_id, _ in updates):
            raise RelationalBatchError("academic batch transaction aborted")
        return sum(1 for user_id, update in updates if self._apply(user_id, update))

    async def update_academic(self, user_id: str, update: AcademicUpdate) -> bool:
        if user_id in self.failing_user_ids:
            raise RelationalWriteError(f"update failed for user {user_id}")
        return self._apply(user_id, update)

    async def resolve_students(self, nims: Sequence[str]) -> Mapping[str, StudentIdentity]:
        self.lookup_calls.append(("students", len(nims)))
        return {
            nim: StudentIdentity(user_id=student.user_id, full_name=student.full_name)
            for nim, student in self._by_nim(nims).items()
            if student.has_profile
        }

    async def competency_ids_by_code(self) -> Mapping[str, str]:
        return dict(self.cpls)

    async def existing_scores(self, keys: Sequence[tuple[str, str]]) -> Mapping[tuple[str, str], ExistingScore]:
        return {
            key: ExistingScore(source=stored.source, status=stored.status)
            for key in keys
            if (stored := self.scores.get(key)) is not None
        }

    async def upsert_scores(self, records: Sequence[CompetencyScoreRecord]) -> int:
        chunk_index = self.upsert_calls
        self.upsert_calls += 1
        if chunk_index in self.failing_chunks:
            raise CompetencyChunkError(f"chunk {chunk_index} failed")
        written = 0
        staged = dict(self.scores)
        for record in records:
            current = staged.get(record.key)
            if current is not None and ExistingScore(current.source, current.status).is_protected:
                continue
            staged[record.key] = StoredScore(
                score=record.score,
                source=record.source,
                status=record.status,
                input_at=record.input_at,
            )
            written += 1
        self.scores = staged
        return written

    def snapshot(self, student_id: str, cpl_id: str) -> Optional[StoredScore]:
        stored = self.scores.get((student_id, cpl_id))
        return replace(stored) if stored is not None else None
