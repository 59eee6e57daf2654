"""Health endpoint and settings tests."""

import httpx
import pytest

from mediaflow.app import build_background_workers, create_app
from mediaflow.core.config import Settings
from mediaflow.services.submission import JobSubmissionService
from mediaflow.store import MemoryJobStore


class DownStore(MemoryJobStore):
    async def ping(self) -> bool:
        return False


async def get_health(session_factory, store) -> httpx.Response:
    app = create_app()
    app.state.session_factory = session_factory
    app.state.job_store = store
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.get("/health")


@pytest.mark.asyncio
async def test_health_ok(session_factory):
    response = await get_health(session_factory, MemoryJobStore())

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_health_reports_job_store_outage(session_factory):
    response = await get_health(session_factory, DownStore())

    assert response.status_code == 503
    body = response.json()
    assert body["status"] == "unhealthy"
    assert body["error"]["type"] == "RuntimeError"


def test_settings_require_fleet_provider_outside_tests(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg://localhost/mediaflow")
    monkeypatch.setenv("GPU_ENABLED", "true")
    monkeypatch.delenv("FLEET_PROVIDER_ENDPOINT", raising=False)
    monkeypatch.delenv("FLEET_PROVIDER_API_KEY", raising=False)

    with pytest.raises(ValueError, match="FLEET_PROVIDER_ENDPOINT"):
        Settings(_env_file=None)

    monkeypatch.setenv("GPU_ENABLED", "false")
    settings = Settings(_env_file=None)
    assert settings.gpu_enabled is False


def test_background_workers_follow_settings(monkeypatch, queue):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("WORKER_LANES", "cpu, gpu")

    submission = JobSubmissionService(queue, billing=None)

    monkeypatch.setenv("GPU_ENABLED", "true")
    workers = build_background_workers(Settings(_env_file=None), queue, submission)
    assert set(workers) == {"fleet_controller", "cpu_worker", "gpu_worker"}

    monkeypatch.setenv("GPU_ENABLED", "false")
    workers = build_background_workers(Settings(_env_file=None), queue, submission)
    assert set(workers) == {"cpu_worker"}


def test_control_plane_does_not_poll_gpu_lane_by_default(monkeypatch, queue):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("GPU_ENABLED", "true")
    monkeypatch.delenv("WORKER_LANES", raising=False)

    submission = JobSubmissionService(queue, billing=None)
    workers = build_background_workers(Settings(_env_file=None), queue, submission)

    assert set(workers) == {"fleet_controller", "cpu_worker"}
