"""Tests for system endpoints and middleware (vulnrelay/main.py).

Tests:
- GET /health
- GET /metrics
- Security headers and GET/HEAD-only method restriction
- Generic 500 handler with and without debug mode
- Application lifespan wiring in mock mode
"""

import asyncio
import logging

import pytest
from fastapi import FastAPI, status
from httpx import ASGITransport, AsyncClient

from vulnrelay.config import Settings
from vulnrelay.dependencies import get_engine
from vulnrelay.main import lifespan
from vulnrelay.services.metrics import create_snapshot_registry


@pytest.fixture
def metrics_state(app, fake_engine, make_entry, collected_at):
    """Install a snapshot registry on the app for the duration of a test."""
    image = "registry.local/web:v1"
    fake_engine.get_snapshot.return_value = (
        {image: make_entry(image, {"HIGH": 3}, workload="web")},
        collected_at,
    )
    app.state.metrics_registry = create_snapshot_registry(fake_engine)
    yield
    del app.state.metrics_registry


class TestHealthEndpoint:
    """Test suite for GET /health."""

    async def test_health(self, client):
        """Test health check returns healthy status."""
        response = await client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "healthy", "service": "vulnrelay"}

    async def test_security_headers(self, client):
        """Test security headers are added to responses."""
        response = await client.get("/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "default-src 'none'" in response.headers["Content-Security-Policy"]
        assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"

    @pytest.mark.parametrize("method", ["POST", "PUT", "DELETE", "PATCH"])
    async def test_write_methods_rejected(self, client, method):
        """Test only GET and HEAD are allowed."""
        response = await client.request(method, "/vulnerabilities")

        assert response.status_code == status.HTTP_405_METHOD_NOT_ALLOWED
        assert response.headers["Allow"] == "GET, HEAD"
        assert response.headers["X-Frame-Options"] == "DENY"


class TestMetricsEndpoint:
    """Test suite for GET /metrics."""

    async def test_metrics_exposes_snapshot(self, client, metrics_state):
        """Test vulnerability gauges with placement labels are exposed."""
        response = await client.get("/metrics")

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"].startswith("text/plain")
        body = response.text
        assert "vulnrelay_image_vulnerability_count{" in body
        assert 'namespace="production"' in body
        assert 'info_type="images_monitored"' in body

    async def test_metrics_include_engine_counters(self, client, metrics_state):
        """Test default registry metrics follow the snapshot gauges."""
        response = await client.get("/metrics")

        assert "vulnrelay_collection_cycle_duration_seconds_count" in response.text
        assert "vulnrelay_fetch_errors_total" in response.text

    async def test_metrics_without_engine(self, client):
        """Test /metrics still answers before the engine is wired in."""
        response = await client.get("/metrics")

        assert response.status_code == status.HTTP_200_OK
        assert "vulnrelay_image_vulnerability_count{" not in response.text


@pytest.fixture
async def failing_client(app, fake_engine):
    """Client whose engine raises, with server errors returned as responses."""
    fake_engine.get_snapshot.side_effect = RuntimeError("snapshot store exploded")
    app.dependency_overrides[get_engine] = lambda: fake_engine
    transport = ASGITransport(app=app, raise_app_exceptions=False)

    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    if hasattr(app.state, "settings"):
        del app.state.settings


class TestExceptionHandler:
    """Test suite for the generic exception handler."""

    async def test_error_details_hidden(self, failing_client):
        """Test unhandled errors return a generic message without settings."""
        response = await failing_client.get("/vulnerabilities")

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {"detail": "An internal error occurred."}

    async def test_error_details_hidden_when_debug_off(self, app, failing_client):
        """Test the generic message is kept when debug is disabled."""
        app.state.settings = Settings(mock_mode=True, debug=False)

        response = await failing_client.get("/vulnerabilities")

        assert "snapshot store exploded" not in response.text

    async def test_error_details_shown_in_debug(self, app, failing_client):
        """Test debug mode from settings exposes the error type and message."""
        app.state.settings = Settings(mock_mode=True, debug=True)

        response = await failing_client.get("/vulnerabilities")

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {
            "detail": "snapshot store exploded",
            "type": "RuntimeError",
            "debug": True,
        }

class TestLifespan:
    """Test suite for the application lifespan."""

    async def test_mock_mode_startup_and_shutdown(self, monkeypatch):
        """Test lifespan builds the engine, collects, and shuts down cleanly."""
        monkeypatch.setenv("MOCK_MODE", "true")
        monkeypatch.setenv("SCRAPE_INTERVAL", "1h")
        monkeypatch.delenv("MODE", raising=False)
        test_app = FastAPI()

        async with lifespan(test_app):
            engine = test_app.state.engine

            async def wait_for_snapshot():
                while engine.get_snapshot()[1] is None:
                    await asyncio.sleep(0.01)

            await asyncio.wait_for(wait_for_snapshot(), timeout=5)
            data, _ = engine.get_snapshot()
            assert len(data) == 10
            assert test_app.state.scheduler.get_status()["running"] is True

        assert engine.stopping is True
        assert test_app.state.scheduler.scheduler is None

    async def test_log_level_applied_from_settings(self, monkeypatch):
        """Test LOG_LEVEL sets the root logger level during startup."""
        monkeypatch.setenv("MOCK_MODE", "true")
        monkeypatch.setenv("SCRAPE_INTERVAL", "1h")
        monkeypatch.setenv("LOG_LEVEL", "warning")
        monkeypatch.delenv("MODE", raising=False)
        root = logging.getLogger()
        previous = root.level
        test_app = FastAPI()

        try:
            async with lifespan(test_app):
                assert test_app.state.settings.log_level == "WARNING"
                assert root.level == logging.WARNING
        finally:
            root.setLevel(previous)
