import pytest


@pytest.mark.asyncio
async def test_liveness(api_client):
	response = await api_client.get("/health/live")
	assert response.status_code == 200
	assert response.json() == {"status": "ok"}
	assert response.headers.get("X-Request-Id")


@pytest.mark.asyncio
async def test_metrics_requires_admin(api_client, admin_headers):
	denied = await api_client.get("/metrics")
	assert denied.status_code == 403

	allowed = await api_client.get("/metrics", headers=admin_headers)
	assert allowed.status_code == 200
	assert "academic_sia_last_success_timestamp_seconds" in allowed.text


@pytest.mark.asyncio
async def test_readiness_reports_last_sync(api_client, monkeypatch):
	from datetime import datetime, timezone

	from app.domain.sia.models import SyncStatus
	from app.domain.sia.status import SyncStatusStore
	from app.infra.redis import redis_client
	from app.obs import health

	async def _postgres_ok():
		return None

	monkeypatch.setattr(health, "_ping_postgres", _postgres_ok)

	first = await api_client.get("/health/ready")
	assert first.status_code == 200
	assert first.json()["sia_sync"] == {"known": False}

	await SyncStatusStore(redis_client).save(
		SyncStatus(last_run=datetime(2026, 3, 1, tzinfo=timezone.utc), error="SIA request timed out after 10.0s")
	)
	second = await api_client.get("/health/ready")
	body = second.json()
	assert second.status_code == 200
	assert body["sia_sync"]["ok"] is False
	assert body["checks"]["redis"]["ok"] is True
