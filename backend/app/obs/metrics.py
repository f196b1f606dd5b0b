"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from typing import Mapping

from prometheus_client import Counter, Gauge, Histogram, Summary


REQUEST_COUNTER = Counter(
	"academic_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"academic_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

REDIS_UP = Gauge("academic_redis_up", "Redis availability (1=up,0=down)")
REDIS_LATENCY = Summary("academic_redis_latency_seconds", "Redis ping latency (seconds)")

POSTGRES_UP = Gauge("academic_postgres_up", "Postgres availability (1=up,0=down)")
POSTGRES_LATENCY = Summary("academic_postgres_latency_seconds", "Postgres ping latency (seconds)")

BACKGROUND_RUNS = Counter(
	"academic_jobs_runs_total",
	"Background job executions",
	["name", "result"],
)

BACKGROUND_DURATION = Histogram(
	"academic_jobs_duration_seconds",
	"Background job duration",
	["name"],
	buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0),
)

SIA_FETCH_ATTEMPTS = Counter(
	"academic_sia_fetch_attempts_total",
	"Attempts to fetch the student dataset from SIA",
	["result"],
)

SIA_RECORDS = Counter(
	"academic_sia_cache_records_total",
	"Student records processed by the SIA cache stage",
	["outcome"],
)

SIA_ACADEMIC_ROWS = Counter(
	"academic_sia_academic_rows_total",
	"Student rows processed by the academic-field reconciliation",
	["outcome"],
)

SIA_COMPETENCY_ROWS = Counter(
	"academic_sia_competency_rows_total",
	"Competency score rows processed by the SIA sync",
	["outcome"],
)

SIA_LAST_SUCCESS = Gauge(
	"academic_sia_last_success_timestamp_seconds",
	"Unix timestamp of the last successful SIA sync",
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)


def record_job_run(name: str, *, result: str, duration_seconds: float | None = None) -> None:
	BACKGROUND_RUNS.labels(name=name, result=result).inc()
	if duration_seconds is not None:
		BACKGROUND_DURATION.labels(name=name).observe(duration_seconds)


def inc_sia_fetch_attempt(result: str) -> None:
	SIA_FETCH_ATTEMPTS.labels(result=result).inc()


def _inc_outcomes(counter: Counter, outcomes: Mapping[str, int]) -> None:
	for outcome, amount in outcomes.items():
		if amount:
			counter.labels(outcome=outcome).inc(amount)


def inc_sia_records(outcomes: Mapping[str, int]) -> None:
	_inc_outcomes(SIA_RECORDS, outcomes)


def inc_sia_academic_rows(outcomes: Mapping[str, int]) -> None:
	_inc_outcomes(SIA_ACADEMIC_ROWS, outcomes)


def inc_sia_competency_rows(outcomes: Mapping[str, int]) -> None:
	_inc_outcomes(SIA_COMPETENCY_ROWS, outcomes)


def mark_sia_success(timestamp: float) -> None:
	SIA_LAST_SUCCESS.set(timestamp)
