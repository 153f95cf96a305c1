"""
Tests for health check endpoints.
"""

import pytest


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_ready(self, client):
        response = await client.get("/api/health/ready")
        assert response.status_code == 200
        assert response.json() == {"status": "ready", "database": "connected"}

    @pytest.mark.asyncio
    async def test_live(self, client):
        response = await client.get("/api/health/live")
        assert response.json() == {"status": "alive"}
