"""Tests for cached anonymized aggregation."""
from datetime import datetime, timedelta, timezone

import pytest

from eduvault.shared.config import CacheConfig, NamespacePolicy
from eduvault.services.analytics_service import (
    AnalyticsQuery,
    AnonymizingAggregator,
    CachedAnalytics,
)
from eduvault.services.cache_service import TieredCache


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 10, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


def _rows():
    rows = [{"student_id": f"g{i}", "course": "geometry", "score": 70 + i} for i in range(6)]
    rows += [{"student_id": f"a{i}", "course": "algebra", "score": 50} for i in range(2)]
    return rows


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return TieredCache(clock=clock)


@pytest.fixture
def analytics(cache):
    return CachedAnalytics(AnonymizingAggregator(), cache)


class TestAnalyticsQuery:
    """Query fingerprints."""

    def test_equivalent_queries_share_key(self):
        first = AnalyticsQuery.build("quiz", ["course"], {"avg": "score:mean"}, 5)
        second = AnalyticsQuery.build("quiz", ("course",), {"avg": ("score", "mean")}, 5)

        assert first.cache_key() == second.cache_key()

    @pytest.mark.parametrize("other", [
        AnalyticsQuery.build("quiz-2", ["course"], {"avg": "score:mean"}, 5),
        AnalyticsQuery.build("quiz", ["course", "difficulty"], {"avg": "score:mean"}, 5),
        AnalyticsQuery.build("quiz", ["course"], {"avg": "score:median"}, 5),
        AnalyticsQuery.build("quiz", ["course"], {"avg": "score:mean"}, 10),
    ])
    def test_different_parameters_differ(self, other):
        base = AnalyticsQuery.build("quiz", ["course"], {"avg": "score:mean"}, 5)

        assert base.cache_key() != other.cache_key()


class TestCachedAnalytics:
    """Read-through caching of sanitized results."""

    def test_second_call_served_from_cache(self, analytics):
        calls = []

        def loader():
            calls.append(1)
            return _rows()

        query = analytics.query("quiz", ["course"], {"avg": "score:mean"})
        first = analytics.aggregate(query, loader)
        second = analytics.aggregate(query, loader)

        assert len(calls) == 1
        assert first == second

    def test_suppressed_groups_cached_as_markers(self, analytics, cache):
        query = analytics.query("quiz", ["course"], {"avg": "score:mean"})

        analytics.aggregate(query, _rows)

        cached, hit = cache.get("analytics", query.cache_key())
        assert hit is True
        algebra = next(item for item in cached if item["group"] == ["algebra"])
        assert algebra == {"group": ["algebra"], "subject_count": None, "metrics": None, "suppressed": True}

    def test_uses_configured_k_by_default(self, analytics):
        query = analytics.query("quiz", ["course"], {"n": "count"})

        assert query.k_threshold == 5

    def test_cached_result_expires_with_analytics_cap(self, analytics, clock):
        calls = []

        def loader():
            calls.append(1)
            return _rows()

        query = analytics.query("quiz", ["course"], {"avg": "score:mean"})
        analytics.aggregate(query, loader)
        clock.now += timedelta(seconds=121)
        analytics.aggregate(query, loader)

        assert len(calls) == 2

    def test_invalidate(self, analytics, cache):
        query = analytics.query("quiz", ["course"], {"avg": "score:mean"})
        analytics.aggregate(query, _rows)

        assert analytics.invalidate(query) is True
        assert cache.get("analytics", query.cache_key()).hit is False

    def test_oversized_result_still_returned(self, clock):
        config = CacheConfig(namespaces=(NamespacePolicy("analytics", max_payload_bytes=10),))
        cache = TieredCache(config=config, clock=clock)
        analytics = CachedAnalytics(AnonymizingAggregator(), cache)
        query = analytics.query("quiz", ["course"], {"avg": "score:mean"})

        stats = analytics.aggregate(query, _rows)

        assert len(stats) == 2
        assert cache.get("analytics", query.cache_key()).hit is False
