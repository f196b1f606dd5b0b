"""Competency (CPL) score reconciliation rules for the SIA sync.

Every incoming score row is evaluated independently into either a writable
``CompetencyScoreRecord`` or a skip outcome; counts are aggregated afterwards.
Guards run in a fixed order: student profile, name, competency code, score.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, Mapping, Optional, Sequence, TypeVar

from app.domain.sia.models import (
    CompetencyOutcome,
    CompetencyScoreRecord,
    ExistingScore,
    StampedStudent,
    StudentIdentity,
)

T = TypeVar("T")

_WHITESPACE = re.compile(r"\s+")
_ROW_LIST_KEYS = ("cplScores", "cpl_scores", "competencyScores")
_CODE_KEYS = ("code", "cplCode", "cpl_code")
_INPUT_AT_KEYS = ("inputAt", "input_at")


@dataclass(slots=True, frozen=True)
class CompetencyCandidate:
    nim: str
    name: Optional[str]
    row: Mapping[str, Any]


def _first(row: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if row.get(key) is not None:
            return row[key]
    return None


def flatten_candidates(students: Iterable[StampedStudent]) -> list[CompetencyCandidate]:
    """One candidate per (NIM, name, score row) across the whole payload."""

    candidates: list[CompetencyCandidate] = []
    for student in students:
        rows = _first(student.data, _ROW_LIST_KEYS)
        if not isinstance(rows, list):
            continue
        for row in rows:
            if isinstance(row, Mapping):
                candidates.append(CompetencyCandidate(nim=student.nim, name=student.name, row=row))
    return candidates


def normalize_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    collapsed = _WHITESPACE.sub(" ", str(value).strip()).casefold()
    return collapsed or None


def names_conflict(incoming: Optional[str], stored: Optional[str]) -> bool:
    """True only when both names are present and differ after normalisation."""

    left = normalize_name(incoming)
    right = normalize_name(stored)
    if left is None or right is None:
        return False
    return left != right


def normalize_code(value: Any) -> Optional[str]:
    if value is None:
        return None
    code = str(value).strip().upper()
    return code or None


def parse_score(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    return score if math.isfinite(score) else None


def parse_input_at(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def evaluate_candidate(
    candidate: CompetencyCandidate,
    *,
    students: Mapping[str, StudentIdentity],
    cpl_ids: Mapping[str, str],
    default_input_at: datetime,
) -> CompetencyScoreRecord | CompetencyOutcome:
    student = students.get(candidate.nim)
    if student is None:
        return CompetencyOutcome.NO_STUDENT
    if names_conflict(candidate.name, student.full_name):
        return CompetencyOutcome.NAME_MISMATCH
    code = normalize_code(_first(candidate.row, _CODE_KEYS))
    cpl_id = cpl_ids.get(code) if code else None
    if cpl_id is None:
        return CompetencyOutcome.UNKNOWN_CODE
    score = parse_score(candidate.row.get("score"))
    if score is None:
        return CompetencyOutcome.INVALID_SCORE
    input_at = parse_input_at(_first(candidate.row, _INPUT_AT_KEYS)) or default_input_at
    return CompetencyScoreRecord(student_id=student.user_id, cpl_id=cpl_id, score=score, input_at=input_at)


def dedupe_latest(records: Iterable[CompetencyScoreRecord]) -> list[CompetencyScoreRecord]:
    """Keep one record per (student, competency): the latest input time, later payload rows winning ties."""

    latest: dict[tuple[str, str], CompetencyScoreRecord] = {}
    for record in records:
        current = latest.get(record.key)
        if current is None or record.input_at >= current.input_at:
            latest[record.key] = record
    return list(latest.values())


def plan_scores(
    candidates: Sequence[CompetencyCandidate],
    *,
    students: Mapping[str, StudentIdentity],
    cpl_ids: Mapping[str, str],
    default_input_at: datetime,
) -> tuple[list[CompetencyScoreRecord], Counter]:
    """Run the guards over every candidate and dedupe the survivors."""

    outcomes: Counter = Counter()
    accepted: list[CompetencyScoreRecord] = []
    for candidate in candidates:
        result = evaluate_candidate(
            candidate,
            students=students,
            cpl_ids=cpl_ids,
            default_input_at=default_input_at,
        )
        if isinstance(result, CompetencyOutcome):
            outcomes[result] += 1
        else:
            accepted.append(result)
    deduped = dedupe_latest(accepted)
    outcomes[CompetencyOutcome.DUPLICATE] += len(accepted) - len(deduped)
    return deduped, outcomes


def split_protected(
    records: Sequence[CompetencyScoreRecord],
    existing: Mapping[tuple[str, str], ExistingScore],
) -> tuple[list[CompetencyScoreRecord], int]:
    """Drop records whose stored counterpart is manual, verified or finalized."""

    writable: list[CompetencyScoreRecord] = []
    protected = 0
    for record in records:
        stored = existing.get(record.key)
        if stored is not None and stored.is_protected:
            protected += 1
            continue
        writable.append(record)
    return writable, protected


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    size = max(1, size)
    for start in range(0, len(items), size):
        yield items[start : start + size]
