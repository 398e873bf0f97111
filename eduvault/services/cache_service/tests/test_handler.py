"""Tests for Cache Service HTTP handler."""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from eduvault.shared.database import StoreUnavailableError
from eduvault.services.cache_service import TieredCache, create_app


@pytest.fixture
def cache():
    return TieredCache()


@pytest.fixture
def client(cache):
    """Flask test client."""
    app = create_app(cache)
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client


class TestHealthEndpoints:
    """Tests for /health and /ready."""

    def test_health_returns_200(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert data["service"] == "cache-service"

    def test_ready_returns_200(self, client):
        response = client.get("/ready")

        assert response.status_code == 200
        assert response.get_json()["status"] == "ready"

    def test_ready_with_healthy_database(self, cache):
        database = MagicMock()
        database.health_check.return_value = {"status": "connected", "healthy": True}

        response = create_app(cache, database).test_client().get("/ready")

        assert response.status_code == 200

    def test_not_ready_when_database_down(self, cache):
        database = MagicMock()
        database.health_check.return_value = {"status": "error", "healthy": False, "error": "refused"}

        response = create_app(cache, database).test_client().get("/ready")

        assert response.status_code == 503
        assert response.get_json()["database"] == "error"


class TestStatsEndpoint:
    """Tests for /cache/stats."""

    def test_reports_entries(self, client, cache):
        cache.put("progress", "s1", "v", 3)
        cache.get("progress", "s1")

        data = client.get("/cache/stats").get_json()

        assert data["entries"] == 1
        assert data["hits"] == 1
        assert data["entries_by_namespace"] == {"progress": 1}


class TestInvalidateEndpoint:
    """Tests for DELETE /cache/<namespace>/<key>."""

    def test_invalidates_entry(self, client, cache):
        cache.put("progress", "s1", "v", 3)

        response = client.delete("/cache/progress/s1")

        assert response.status_code == 200
        assert response.get_json() == {"namespace": "progress", "removed": True}
        assert cache.get("progress", "s1").hit is False

    def test_absent_entry_still_succeeds(self, client):
        response = client.delete("/cache/progress/nobody")

        assert response.status_code == 200
        assert response.get_json()["removed"] is False

    def test_key_with_slashes(self, client, cache):
        cache.put("content", "course/101/syllabus", "text", 1)

        response = client.delete("/cache/content/course/101/syllabus")

        assert response.get_json()["removed"] is True


class TestSweepEndpoint:
    """Tests for POST /cache/sweep."""

    def test_evicts_expired_entries(self):
        now = [datetime(2026, 10, 1, tzinfo=timezone.utc)]
        cache = TieredCache(clock=lambda: now[0])
        cache.put("progress", "s1", "v", 4)
        cache.put("content", "c1", "v", 1)
        now[0] += timedelta(seconds=301)

        response = create_app(cache).test_client().post("/cache/sweep")

        assert response.status_code == 200
        assert response.get_json() == {"evicted": 1, "backend_purged": None}

    def test_purges_durable_tier(self):
        backend = MagicMock()
        backend.purge_expired.return_value = 3
        when = datetime(2026, 10, 1, tzinfo=timezone.utc)

        response = create_app(TieredCache(backend=backend), clock=lambda: when).test_client().post("/cache/sweep")

        assert response.get_json()["backend_purged"] == 3
        backend.purge_expired.assert_called_once_with(when)

    def test_durable_tier_unavailable(self):
        backend = MagicMock()
        backend.purge_expired.side_effect = StoreUnavailableError("down")

        response = create_app(TieredCache(backend=backend)).test_client().post("/cache/sweep")

        assert response.status_code == 503
