from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import pytest

from app.domain.sia import competency
from app.domain.sia.models import (
    CompetencyOutcome,
    CompetencyScoreRecord,
    ExistingScore,
    StampedStudent,
    StudentIdentity,
)

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)
STUDENTS = {"2011521001": StudentIdentity(user_id="u1", full_name="Alice Tan")}
CPL_IDS = {"CPL-01": "c1"}


def _candidate(row, *, nim="2011521001", name="Alice Tan"):
    return competency.CompetencyCandidate(nim=nim, name=name, row=row)


def _evaluate(row, **kwargs):
    return competency.evaluate_candidate(
        _candidate(row, **kwargs),
        students=STUDENTS,
        cpl_ids=CPL_IDS,
        default_input_at=NOW,
    )


def test_normalize_name_collapses_whitespace_and_case() -> None:
    assert competency.normalize_name("  Alice   TAN ") == "alice tan"
    assert competency.normalize_name("   ") is None
    assert competency.normalize_name(None) is None


def test_names_conflict_only_when_both_present() -> None:
    assert competency.names_conflict("Alice Tan", "Bob Lee")
    assert not competency.names_conflict("alice  tan", "Alice Tan")
    assert not competency.names_conflict(None, "Alice Tan")
    assert not competency.names_conflict("Alice Tan", None)


def test_normalize_code() -> None:
    assert competency.normalize_code(" cpl-01 ") == "CPL-01"
    assert competency.normalize_code("") is None
    assert competency.normalize_code(None) is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(85, 85.0), ("85.5", 85.5), (None, None), (True, None), ("abc", None), ("NaN", None), (math.inf, None)],
)
def test_parse_score(raw, expected) -> None:
    assert competency.parse_score(raw) == expected


def test_parse_input_at_handles_zulu_and_naive() -> None:
    assert competency.parse_input_at("2026-01-02T03:04:05Z") == datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert competency.parse_input_at("2026-01-02T03:04:05").tzinfo == timezone.utc
    assert competency.parse_input_at("yesterday") is None
    assert competency.parse_input_at("") is None


def test_flatten_candidates_skips_rows_that_are_not_objects() -> None:
    student = StampedStudent(
        nim="2011521001",
        data={"nim": "2011521001", "name": "Alice Tan", "cplScores": [{"code": "CPL-01"}, "junk"]},
        hash="h",
        fetched_at=NOW,
    )
    empty = StampedStudent(nim="2", data={"nim": "2", "cplScores": None}, hash="h", fetched_at=NOW)
    candidates = competency.flatten_candidates([student, empty])
    assert len(candidates) == 1
    assert candidates[0].name == "Alice Tan"


def test_evaluate_candidate_guard_order() -> None:
    assert _evaluate({"code": "CPL-01", "score": 80}, nim="999") is CompetencyOutcome.NO_STUDENT
    assert _evaluate({"code": "nope", "score": "abc"}, name="Bob Lee") is CompetencyOutcome.NAME_MISMATCH
    assert _evaluate({"code": "nope", "score": "abc"}) is CompetencyOutcome.UNKNOWN_CODE
    assert _evaluate({"code": "cpl-01", "score": "abc"}) is CompetencyOutcome.INVALID_SCORE


def test_evaluate_candidate_defaults_input_time() -> None:
    record = _evaluate({"code": "cpl-01", "score": "77"})
    assert isinstance(record, CompetencyScoreRecord)
    assert record.key == ("u1", "c1")
    assert record.score == 77.0
    assert record.input_at == NOW
    assert record.source == "sia"
    assert record.status == "calculated"


def test_dedupe_latest_prefers_newest_then_last_seen() -> None:
    older = CompetencyScoreRecord("u1", "c1", 70.0, NOW - timedelta(days=1))
    newer = CompetencyScoreRecord("u1", "c1", 90.0, NOW)
    tie = CompetencyScoreRecord("u1", "c1", 95.0, NOW)
    assert competency.dedupe_latest([newer, older]) == [newer]
    assert competency.dedupe_latest([newer, tie]) == [tie]


def test_plan_scores_counts_duplicates() -> None:
    candidates = [
        _candidate({"code": "CPL-01", "score": 90, "inputAt": "2026-02-01T00:00:00Z"}),
        _candidate({"code": "CPL-01", "score": 70, "inputAt": "2026-01-01T00:00:00Z"}),
        _candidate({"code": "CPL-99", "score": 70}),
    ]
    planned, outcomes = competency.plan_scores(candidates, students=STUDENTS, cpl_ids=CPL_IDS, default_input_at=NOW)
    assert [record.score for record in planned] == [90.0]
    assert outcomes[CompetencyOutcome.DUPLICATE] == 1
    assert outcomes[CompetencyOutcome.UNKNOWN_CODE] == 1


@pytest.mark.parametrize(
    ("existing", "protected"),
    [
        (ExistingScore(source="manual", status="calculated"), True),
        (ExistingScore(source="sia", status="verified"), True),
        (ExistingScore(source="sia", status="finalized"), True),
        (ExistingScore(source="sia", status="calculated"), False),
    ],
)
def test_split_protected(existing, protected) -> None:
    record = CompetencyScoreRecord("u1", "c1", 80.0, NOW)
    writable, skipped = competency.split_protected([record], {record.key: existing})
    assert skipped == (1 if protected else 0)
    assert writable == ([] if protected else [record])


def test_chunked_clamps_size() -> None:
    assert list(competency.chunked([1, 2, 3], 2)) == [[1, 2], [3]]
    assert list(competency.chunked([1, 2], 0)) == [[1], [2]]
    assert list(competency.chunked([], 5)) == []
