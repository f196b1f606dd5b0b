from __future__ import annotations

from datetime import datetime, timezone

from app.domain.sia.models import AcademicUpdate, SyncStatus


def test_academic_update_reads_camel_and_snake_case() -> None:
    update = AcademicUpdate.from_record(
        "1",
        {"sksCompleted": "120", "current_semester": 7, "mkwuCompleted": "yes", "kkn_completed": 0},
    )
    assert update.columns() == {
        "skscompleted": 120,
        "current_semester": 7,
        "mkwu_completed": True,
        "kkn_completed": False,
    }


def test_academic_update_ignores_unparseable_values() -> None:
    update = AcademicUpdate.from_record("1", {"sksCompleted": "many", "internshipCompleted": "maybe"})
    assert update.is_empty()


def test_sync_status_mapping_uses_wire_names() -> None:
    status = SyncStatus(
        last_run=datetime(2026, 3, 1, 6, tzinfo=timezone.utc),
        fetched=3,
        cache_failed=1,
        competency_skipped_invalid_score=2,
        error="boom",
    )
    mapping = status.to_mapping()
    assert mapping["lastRun"] == "2026-03-01T06:00:00+00:00"
    assert mapping["cacheFailed"] == "1"
    assert mapping["competencySkippedInvalidScore"] == "2"

    restored = SyncStatus.from_mapping(mapping)
    assert restored == status
    assert not restored.ok
