"""Domain models for the SIA academic sync."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, MutableMapping, Optional


class ScoreSource(str, Enum):
    """Origin of a competency score row."""

    SIA = "sia"
    MANUAL = "manual"


class ScoreStatus(str, Enum):
    """Verification state of a competency score row."""

    CALCULATED = "calculated"
    VERIFIED = "verified"
    FINALIZED = "finalized"


PROTECTED_STATUSES = frozenset({ScoreStatus.VERIFIED.value, ScoreStatus.FINALIZED.value})


class CacheOutcome(str, Enum):
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


class AcademicOutcome(str, Enum):
    UPDATED = "updated"
    NOT_FOUND = "not_found"
    FAILED = "failed"


class CompetencyOutcome(str, Enum):
    """Per-row result of the competency reconciliation."""

    UPDATED = "updated"
    NO_STUDENT = "no_student"
    NAME_MISMATCH = "name_mismatch"
    UNKNOWN_CODE = "unknown_code"
    INVALID_SCORE = "invalid_score"
    DUPLICATE = "duplicate"
    PROTECTED = "protected"
    FAILED = "failed"


def record_nim(record: Mapping[str, Any]) -> Optional[str]:
    """Return the trimmed NIM of a raw SIA record, or None when absent."""

    raw = record.get("nim")
    if raw is None:
        return None
    nim = str(raw).strip()
    return nim or None


@dataclass(slots=True, frozen=True)
class StampedStudent:
    """A raw SIA record stamped with its content hash and fetch time."""

    nim: str
    data: Mapping[str, Any]
    hash: str
    fetched_at: datetime

    @property
    def name(self) -> Optional[str]:
        value = self.data.get("name")
        return str(value) if value is not None else None


@dataclass(slots=True)
class CacheSaveResult:
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    updated_nims: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CleanupResult:
    removed: int = 0
    nims: list[str] = field(default_factory=list)


def _parse_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return int(number)


def _parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes", "y"}:
            return True
        if lowered in {"false", "0", "no", "n"}:
            return False
    return None


# column -> accepted SIA payload keys
_ACADEMIC_INT_FIELDS = {
    "skscompleted": ("sksCompleted", "sks_completed", "skscompleted"),
    "current_semester": ("currentSemester", "current_semester", "semester"),
}
_ACADEMIC_BOOL_FIELDS = {
    "mandatory_courses_completed": ("mandatoryCoursesCompleted", "mandatory_courses_completed"),
    "mkwu_completed": ("mkwuCompleted", "mkwu_completed"),
    "internship_completed": ("internshipCompleted", "internship_completed"),
    "kkn_completed": ("kknCompleted", "kkn_completed"),
}


def _first_present(record: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in record:
            return record[key]
    return None


@dataclass(slots=True, frozen=True)
class AcademicUpdate:
    """Academic fields SIA owns on the local student row."""

    nim: str
    skscompleted: Optional[int] = None
    current_semester: Optional[int] = None
    mandatory_courses_completed: Optional[bool] = None
    mkwu_completed: Optional[bool] = None
    internship_completed: Optional[bool] = None
    kkn_completed: Optional[bool] = None

    @classmethod
    def from_record(cls, nim: str, record: Mapping[str, Any]) -> "AcademicUpdate":
        values: dict[str, Any] = {}
        for column, keys in _ACADEMIC_INT_FIELDS.items():
            values[column] = _parse_int(_first_present(record, keys))
        for column, keys in _ACADEMIC_BOOL_FIELDS.items():
            values[column] = _parse_bool(_first_present(record, keys))
        return cls(nim=nim, **values)

    def columns(self) -> dict[str, Any]:
        """Only the fields SIA actually supplied; absent ones leave the row untouched."""

        return {
            item.name: getattr(self, item.name)
            for item in fields(self)
            if item.name != "nim" and getattr(self, item.name) is not None
        }

    def is_empty(self) -> bool:
        return not self.columns()


@dataclass(slots=True)
class AcademicResult:
    updated: int = 0
    failed: int = 0


@dataclass(slots=True, frozen=True)
class StudentIdentity:
    """Internal user that owns a student profile."""

    user_id: str
    full_name: Optional[str] = None


@dataclass(slots=True, frozen=True)
class ExistingScore:
    source: str
    status: str

    @property
    def is_protected(self) -> bool:
        return self.source == ScoreSource.MANUAL.value or self.status in PROTECTED_STATUSES


@dataclass(slots=True, frozen=True)
class CompetencyScoreRecord:
    """Score row written to ``student_cpl_scores``."""

    student_id: str
    cpl_id: str
    score: float
    input_at: datetime
    source: str = ScoreSource.SIA.value
    status: str = ScoreStatus.CALCULATED.value

    @property
    def key(self) -> tuple[str, str]:
        return (self.student_id, self.cpl_id)


@dataclass(slots=True)
class CompetencyResult:
    fetched: int = 0
    updated: int = 0
    skipped_no_student: int = 0
    skipped_name_mismatch: int = 0
    skipped_unknown_code: int = 0
    skipped_invalid_score: int = 0
    skipped_protected: int = 0
    failed: int = 0


_STATUS_WIRE_NAMES = {
    "fetched": "fetched",
    "updated": "updated",
    "skipped": "skipped",
    "cache_failed": "cacheFailed",
    "db_updated": "dbUpdated",
    "db_failed": "dbFailed",
    "competency_fetched": "competencyFetched",
    "competency_updated": "competencyUpdated",
    "competency_skipped_no_student": "competencySkippedNoStudent",
    "competency_skipped_name_mismatch": "competencySkippedNameMismatch",
    "competency_skipped_unknown_code": "competencySkippedUnknownCode",
    "competency_skipped_invalid_score": "competencySkippedInvalidScore",
    "competency_skipped_protected": "competencySkippedProtected",
    "competency_failed": "competencyFailed",
    "cleaned": "cleaned",
    "duration_ms": "durationMs",
}


@dataclass(slots=True)
class SyncStatus:
    """Summary of the last sync cycle; overwritten in full on every run."""

    last_run: datetime
    fetched: int = 0
    updated: int = 0
    skipped: int = 0
    cache_failed: int = 0
    db_updated: int = 0
    db_failed: int = 0
    competency_fetched: int = 0
    competency_updated: int = 0
    competency_skipped_no_student: int = 0
    competency_skipped_name_mismatch: int = 0
    competency_skipped_unknown_code: int = 0
    competency_skipped_invalid_score: int = 0
    competency_skipped_protected: int = 0
    competency_failed: int = 0
    cleaned: int = 0
    error: str = ""
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return not self.error

    def apply_competency(self, result: CompetencyResult) -> None:
        self.competency_fetched = result.fetched
        self.competency_updated = result.updated
        self.competency_skipped_no_student = result.skipped_no_student
        self.competency_skipped_name_mismatch = result.skipped_name_mismatch
        self.competency_skipped_unknown_code = result.skipped_unknown_code
        self.competency_skipped_invalid_score = result.skipped_invalid_score
        self.competency_skipped_protected = result.skipped_protected
        self.competency_failed = result.failed

    def to_mapping(self) -> MutableMapping[str, str]:
        """Serialise into a flat mapping suitable for HSET."""

        mapping: dict[str, str] = {"lastRun": self.last_run.isoformat(), "error": self.error}
        for attr, wire in _STATUS_WIRE_NAMES.items():
            mapping[wire] = str(getattr(self, attr))
        return mapping

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "SyncStatus":
        """Construct a summary from a Redis hash mapping."""

        counters: dict[str, int] = {}
        for attr, wire in _STATUS_WIRE_NAMES.items():
            counters[attr] = _parse_int(mapping.get(wire)) or 0
        return cls(
            last_run=datetime.fromisoformat(str(mapping["lastRun"])),
            error=str(mapping.get("error") or ""),
            **counters,
        )
