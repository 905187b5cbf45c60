"""
Health endpoint tests using pytest-asyncio and httpx.AsyncClient.
"""

import pytest


@pytest.mark.asyncio
async def test_health_endpoint(test_client):
    """Test the health check endpoint returns expected structure."""
    response = await test_client.get("/api/v1/health")

    assert response.status_code == 200
    data = response.json()

    assert "status" in data
    assert "uptime" in data
    assert "version" in data
    assert "environment" in data
    assert isinstance(data["checks"], dict)
    assert data["checks"]["database"] == "ok"
    assert data["status"] == "ok"
