"""Tests for Analytics Service HTTP handler.

Aggregation endpoint with k-anonymity enforcement.
"""
import pytest

from eduvault.services.analytics_service import (
    AnonymizingAggregator,
    CachedAnalytics,
    create_app,
)
from eduvault.services.cache_service import TieredCache


def _rows(course, students):
    return [{"student_id": f"{course}-{i}", "course": course, "score": 60 + i} for i in range(students)]


@pytest.fixture
def cache():
    return TieredCache()


@pytest.fixture
def client(cache):
    """Flask test client."""
    aggregator = AnonymizingAggregator()
    app = create_app(aggregator, CachedAnalytics(aggregator, cache))
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_returns_200(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert data["service"] == "analytics-service"


class TestReadyEndpoint:
    """Tests for /ready endpoint."""

    def test_ready_returns_200(self, client):
        response = client.get("/ready")

        assert response.status_code == 200
        assert response.get_json()["status"] == "ready"


class TestAggregateEndpoint:
    """Tests for /aggregate endpoint."""

    def test_requires_body(self, client):
        response = client.post("/aggregate")

        assert response.status_code == 400
        assert "Request body required" in response.get_json()["error"]

    def test_requires_fields(self, client):
        response = client.post("/aggregate", json={"rows": []})

        assert response.status_code == 400
        assert "group_by" in response.get_json()["error"]

    def test_small_group_suppressed(self, client):
        response = client.post("/aggregate", json={
            "rows": _rows("algebra", 4) + _rows("geometry", 5),
            "group_by": ["course"],
            "metrics": {"avg": "score:mean"},
        })

        assert response.status_code == 200
        data = response.get_json()
        assert data["k_anonymity_threshold"] == 5
        groups = {tuple(g["group"]): g for g in data["groups"]}
        assert groups[("algebra",)] == {
            "group": ["algebra"],
            "subject_count": None,
            "metrics": None,
            "suppressed": True,
        }
        assert groups[("geometry",)]["subject_count"] == 5
        assert groups[("geometry",)]["metrics"]["avg"] == pytest.approx(62.0)

    def test_custom_k_threshold(self, client):
        response = client.post("/aggregate", json={
            "rows": _rows("algebra", 4),
            "group_by": ["course"],
            "metrics": {"n": "count"},
            "k_threshold": 3,
        })

        data = response.get_json()
        assert data["k_anonymity_threshold"] == 3
        assert data["groups"][0]["suppressed"] is False

    def test_invalid_metric_returns_400(self, client):
        response = client.post("/aggregate", json={
            "rows": _rows("algebra", 5),
            "group_by": ["course"],
            "metrics": {"p": "score:p99"},
        })

        assert response.status_code == 400

    @pytest.mark.parametrize("metrics", [["score:mean"], "score:mean", 7])
    def test_malformed_metrics_return_400(self, client, metrics):
        response = client.post("/aggregate", json={
            "rows": _rows("algebra", 5),
            "group_by": ["course"],
            "metrics": metrics,
        })

        assert response.status_code == 400

    @pytest.mark.parametrize("rows", [["s1", "s2"], [1, 2, 3], 5])
    def test_malformed_rows_return_400(self, client, rows):
        response = client.post("/aggregate", json={
            "rows": rows,
            "group_by": ["course"],
            "metrics": {"n": "count"},
        })

        assert response.status_code == 400

    def test_invalid_k_returns_400(self, client):
        response = client.post("/aggregate", json={
            "rows": _rows("algebra", 5),
            "group_by": ["course"],
            "metrics": {"n": "count"},
            "k_threshold": 0,
        })

        assert response.status_code == 400

    def test_dataset_results_are_cached(self, client, cache):
        body = {
            "rows": _rows("geometry", 6),
            "group_by": ["course"],
            "metrics": {"avg": "score:mean"},
            "dataset": "quiz_attempts",
        }

        first = client.post("/aggregate", json=body)
        second = client.post("/aggregate", json=body)

        assert first.get_json() == second.get_json()
        assert cache.stats()["entries_by_namespace"] == {"analytics": 1}
        assert cache.stats()["hits"] == 1
