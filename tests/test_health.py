"""
Tests for health, readiness and metrics endpoints.
"""

from unittest.mock import AsyncMock, patch

from speddy.config import settings


def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == settings.SERVICE_NAME
    assert data["version"] == settings.SERVICE_VERSION


def test_request_id_header(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_request_id_generated(client):
    assert client.get("/health").headers["X-Request-ID"]


def test_ready(client):
    with patch("speddy.routers.health.ping", new=AsyncMock(return_value=True)):
        response = client.get("/ready")

    assert response.status_code == 200
    assert response.json() == {"ready": True, "checks": {"database": "ok"}}


def test_not_ready(client):
    ping = AsyncMock(side_effect=ConnectionRefusedError("database down"))
    with patch("speddy.routers.health.ping", new=ping):
        response = client.get("/ready")

    assert response.status_code == 503
    assert response.json()["checks"]["database"] == "unavailable"


def test_metrics(client):
    client.get("/health")
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "scheduling_http_requests_total" in response.text
