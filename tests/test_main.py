"""Tests for FastAPI application endpoints.

Tests cover:
- Health check endpoint (/health) with and without a configured backend
- Root endpoint (/) API metadata and discovery
- Lifespan wiring when storage and database settings are present
"""

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from upload_pipeline import __version__
from upload_pipeline import main
from upload_pipeline.main import app
from upload_pipeline.services.registry import SchedulerRegistry


@pytest.fixture
def client(monkeypatch) -> TestClient:
    """Create FastAPI test client with no storage configured."""
    monkeypatch.delenv("STORAGE_URL", raising=False)
    monkeypatch.delenv("STORAGE_API_KEY", raising=False)
    with TestClient(app) as test_client:
        yield test_client


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_endpoint_returns_200(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == status.HTTP_200_OK

    def test_health_reports_uploads_disabled(self, client: TestClient) -> None:
        """[P0] Without storage settings the service is up but uploads are off.

        GIVEN: STORAGE_URL and STORAGE_API_KEY are unset
        WHEN: GET request to /health endpoint
        THEN: status is healthy, uploads_enabled is false
        """
        data = client.get("/health").json()

        assert data == {
            "status": "healthy",
            "service": "upload-pipeline",
            "uploads_enabled": False,
            "active_owners": 0,
        }


class TestRootEndpoint:
    """Tests for / endpoint."""

    def test_root_returns_service_metadata(self, client: TestClient) -> None:
        data = client.get("/").json()

        assert data["service"] == "Upload Pipeline"
        assert data["version"] == __version__
        assert data["uploads"] == "/api/v1/uploads"
        assert data["health"] == "/health"


class TestLifespan:
    """Tests for registry wiring at startup."""

    def test_registry_built_when_backend_configured(self, monkeypatch, mocker) -> None:
        """[P1] Storage settings plus a session factory enable uploads.

        GIVEN: STORAGE_URL, STORAGE_API_KEY and a database session factory
        WHEN: The app starts
        THEN: app.state.registry is a SchedulerRegistry and clients close on shutdown
        """
        monkeypatch.setenv("STORAGE_URL", "https://storage.test")
        monkeypatch.setenv("STORAGE_API_KEY", "service-key")
        monkeypatch.setattr(main, "async_session_factory", mocker.MagicMock())
        storage_close = mocker.patch.object(main.SupabaseStorageClient, "close")
        functions_close = mocker.patch.object(main.SupabaseFunctionsClient, "close")

        with TestClient(app) as test_client:
            assert isinstance(app.state.registry, SchedulerRegistry)
            health = test_client.get("/health").json()

        assert health["uploads_enabled"] is True
        storage_close.assert_awaited_once()
        functions_close.assert_awaited_once()
