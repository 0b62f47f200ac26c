"""
Tests for the health check endpoint.
"""

from unittest.mock import patch

import pytest
from django.core.cache.backends.locmem import LocMemCache
from django.db import OperationalError


@pytest.fixture(autouse=True)
def local_cache():
    with patch("core.views.cache", LocMemCache("health", {})):
        yield


@pytest.mark.django_db
class TestHealthCheck:
    """Tests for /health/."""

    def test_healthy(self, client):
        response = client.get("/health/")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "database": "connected", "cache": "connected"}

    def test_database_down(self, client):
        with patch("core.views.connection.cursor", side_effect=OperationalError("down")):
            response = client.get("/health/")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_cache_down_degrades_only(self, client):
        with patch("core.views.cache.get", return_value=None):
            response = client.get("/health/")

        assert response.status_code == 200
        assert response.json()["cache"] == "disconnected"
