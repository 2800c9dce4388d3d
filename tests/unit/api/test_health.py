"""Tests for health endpoints."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import status
from httpx import ASGITransport, AsyncClient

from src.core.database import get_db_session
from src.main import create_app


@pytest.fixture
def test_app():  # type: ignore[no-untyped-def]
    """Create test application."""
    return create_app()


@pytest.fixture
def redis_down(monkeypatch: pytest.MonkeyPatch) -> None:
    def fail(*args, **kwargs):  # noqa: ARG001
        raise ConnectionError("Redis connection refused")

    monkeypatch.setattr("src.core.health.Redis.from_url", fail)


def override_db(test_app, vector_version: str | None = None, error: Exception | None = None):  # type: ignore[no-untyped-def]
    session = AsyncMock()
    if error is not None:
        session.execute.side_effect = error
    else:
        result = MagicMock()
        result.scalar.return_value = vector_version
        session.execute.return_value = result
    test_app.dependency_overrides[get_db_session] = lambda: session


class TestHealthEndpoint:
    """Tests for the liveness endpoint."""

    async def test_health_returns_healthy(self, test_app) -> None:  # type: ignore[no-untyped-def]
        """Test that health endpoint returns healthy status."""
        transport = ASGITransport(app=test_app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "healthy"}

    async def test_health_echoes_request_id(self, test_app) -> None:  # type: ignore[no-untyped-def]
        """Test that the request ID header is propagated."""
        transport = ASGITransport(app=test_app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"


class TestReadinessEndpoint:
    """Tests for the readiness endpoint."""

    async def test_redis_outage_only_degrades(self, test_app, redis_down) -> None:  # type: ignore[no-untyped-def]
        """Test readiness stays 200 while only the job queue is down."""
        override_db(test_app, vector_version="0.7.0")
        transport = ASGITransport(app=test_app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health/ready")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "degraded"
        assert data["components"]["database"]["status"] == "healthy"
        assert data["components"]["redis"]["status"] == "unhealthy"

    async def test_database_outage_is_unready(self, test_app, redis_down) -> None:  # type: ignore[no-untyped-def]
        """Test readiness is 503 when the chunk store is unreachable."""
        override_db(test_app, error=ConnectionError("connection refused"))
        transport = ASGITransport(app=test_app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health/ready")

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.json()["status"] == "unhealthy"
