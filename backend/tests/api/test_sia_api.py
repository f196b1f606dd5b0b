from datetime import datetime, timezone

import pytest

from app.domain.sia.cache import SiaCacheStore
from app.domain.sia.exceptions import SiaHTTPError, SyncInProgressError
from app.domain.sia.hashing import stamp_records
from app.domain.sia.jobs import SiaSyncRunner
from app.domain.sia.models import SyncStatus
from app.domain.sia.repository import InMemoryAcademicRepository
from app.domain.sia.service import SiaSyncService
from app.domain.sia.status import SyncStatusStore
from app.infra.redis import redis_client
from app.main import app

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


class StaticSource:
	def __init__(self, records=None, error=None):
		self.records = records or []
		self.error = error

	async def fetch_students(self):
		if self.error is not None:
			raise self.error
		return list(self.records)


async def _no_sleep(_delay):
	return None


def _runner(source):
	repo = InMemoryAcademicRepository()
	repo.add_student("u1", "2011521001", full_name="Alice Tan")
	repo.add_cpl("c1", "CPL-01")
	service = SiaSyncService(
		source=source,
		cache=SiaCacheStore(redis_client),
		status_store=SyncStatusStore(redis_client),
		repository=repo,
		sleep=_no_sleep,
		clock=lambda: NOW,
	)
	return SiaSyncRunner(service)


@pytest.fixture
def install_runner():
	def _install(runner):
		app.state.sia_runner = runner
		return runner

	yield _install
	if hasattr(app.state, "sia_runner"):
		del app.state.sia_runner


@pytest.mark.asyncio
async def test_sia_routes_require_admin(api_client):
	response = await api_client.get("/sia/sync/status")
	assert response.status_code == 403


@pytest.mark.asyncio
async def test_status_404_before_first_run(api_client, admin_headers):
	response = await api_client.get("/sia/sync/status", headers=admin_headers)
	assert response.status_code == 404
	assert response.json()["detail"] == "no_sync_recorded"


@pytest.mark.asyncio
async def test_status_returns_last_summary(api_client, admin_headers):
	await SyncStatusStore(redis_client).save(SyncStatus(last_run=NOW, fetched=4, updated=2, skipped=2, cleaned=1))

	response = await api_client.get("/sia/sync/status", headers=admin_headers)

	assert response.status_code == 200
	body = response.json()
	assert body["fetched"] == 4
	assert body["cleaned"] == 1
	assert body["competencySkippedProtected"] == 0
	assert body["error"] == ""
	assert body["lastRun"].startswith("2026-03-01T00:00:00")


@pytest.mark.asyncio
async def test_trigger_runs_cycle_and_persists_status(api_client, admin_headers, install_runner):
	record = {"nim": "2011521001", "name": "Alice Tan", "sksCompleted": 110, "cplScores": [{"code": "CPL-01", "score": 88}]}
	install_runner(_runner(StaticSource([record])))

	response = await api_client.post("/sia/sync", headers=admin_headers)

	assert response.status_code == 200
	body = response.json()
	assert body["fetched"] == 1
	assert body["updated"] == 1
	assert body["dbUpdated"] == 1
	assert body["competencyUpdated"] == 1

	status_response = await api_client.get("/sia/sync/status", headers=admin_headers)
	assert status_response.json()["fetched"] == 1


@pytest.mark.asyncio
async def test_trigger_conflict_while_running(api_client, admin_headers, install_runner, monkeypatch):
	runner = install_runner(_runner(StaticSource()))

	async def _busy():
		raise SyncInProgressError("a SIA sync cycle is already running")

	monkeypatch.setattr(runner, "trigger", _busy)

	response = await api_client.post("/sia/sync", headers=admin_headers)

	assert response.status_code == 409
	assert response.json()["detail"] == "sync_in_progress"


@pytest.mark.asyncio
async def test_trigger_reports_fetch_failure(api_client, admin_headers, install_runner):
	install_runner(_runner(StaticSource(error=SiaHTTPError(500, "upstream down"))))

	response = await api_client.post("/sia/sync", headers=admin_headers)

	assert response.status_code == 502
	assert response.json()["detail"] == "sia_fetch_failed"
	last = await SyncStatusStore(redis_client).load()
	assert "500" in last.error


@pytest.mark.asyncio
async def test_trigger_unavailable_without_runner(api_client, admin_headers, install_runner):
	response = await api_client.post("/sia/sync", headers=admin_headers)
	assert response.status_code == 503


@pytest.mark.asyncio
async def test_cached_students_lists_cache(api_client, admin_headers):
	await SiaCacheStore(redis_client).save_many(
		stamp_records([{"nim": "1", "name": "A"}, {"nim": "2", "name": "B"}], fetched_at=NOW)
	)

	response = await api_client.get("/sia/cached", headers=admin_headers)

	assert response.status_code == 200
	body = response.json()
	assert body["count"] == 2
	assert [item["nim"] for item in body["data"]] == ["1", "2"]
