"""Pydantic schemas for the SIA sync operator API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.domain.sia.models import SyncStatus


class SyncStatusSchema(BaseModel):
    """Full counter set of the last sync cycle."""

    model_config = {"populate_by_name": True}

    last_run: datetime = Field(alias="lastRun")
    fetched: int
    updated: int
    skipped: int
    cache_failed: int = Field(alias="cacheFailed")
    db_updated: int = Field(alias="dbUpdated")
    db_failed: int = Field(alias="dbFailed")
    competency_fetched: int = Field(alias="competencyFetched")
    competency_updated: int = Field(alias="competencyUpdated")
    competency_skipped_no_student: int = Field(alias="competencySkippedNoStudent")
    competency_skipped_name_mismatch: int = Field(alias="competencySkippedNameMismatch")
    competency_skipped_unknown_code: int = Field(alias="competencySkippedUnknownCode")
    competency_skipped_invalid_score: int = Field(alias="competencySkippedInvalidScore")
    competency_skipped_protected: int = Field(alias="competencySkippedProtected")
    competency_failed: int = Field(alias="competencyFailed")
    cleaned: int
    error: str
    duration_ms: int = Field(alias="durationMs")

    @classmethod
    def from_status(cls, status: SyncStatus) -> "SyncStatusSchema":
        return cls(
            last_run=status.last_run,
            fetched=status.fetched,
            updated=status.updated,
            skipped=status.skipped,
            cache_failed=status.cache_failed,
            db_updated=status.db_updated,
            db_failed=status.db_failed,
            competency_fetched=status.competency_fetched,
            competency_updated=status.competency_updated,
            competency_skipped_no_student=status.competency_skipped_no_student,
            competency_skipped_name_mismatch=status.competency_skipped_name_mismatch,
            competency_skipped_unknown_code=status.competency_skipped_unknown_code,
            competency_skipped_invalid_score=status.competency_skipped_invalid_score,
            competency_skipped_protected=status.competency_skipped_protected,
            competency_failed=status.competency_failed,
            cleaned=status.cleaned,
            error=status.error,
            duration_ms=status.duration_ms,
        )


class CachedStudentsSchema(BaseModel):
    count: int
    data: list[dict[str, Any]]
