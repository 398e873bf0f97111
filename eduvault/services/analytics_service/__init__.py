"""Analytics Service: aggregate reporting with privacy protection.

Mandatory k-anonymity: groups with fewer than k (default 5) distinct
subjects are suppressed so individual students cannot be re-identified
from aggregated learning analytics.

This service provides:
- AnonymizingAggregator: grouped mean/median/count with suppression
- CachedAnalytics: aggregation results cached in the analytics namespace
- CacheWarmer: pre-populates the cache with the largest disclosed groups

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- POST /aggregate - Anonymized aggregation
"""

from .k_anonymity import (
    AnonymizingAggregator,
    MetricKind,
    MetricSpec,
    normalize_metrics,
    K_ANONYMITY_THRESHOLD,
)
from .cached_analytics import AnalyticsQuery, CachedAnalytics
from .cache_warmer import CacheWarmer, WarmReport, DEFAULT_MIN_SUBJECT_COUNT
from .handler import create_app

__all__ = [
    "AnonymizingAggregator",
    "MetricKind",
    "MetricSpec",
    "normalize_metrics",
    "K_ANONYMITY_THRESHOLD",
    "AnalyticsQuery",
    "CachedAnalytics",
    "CacheWarmer",
    "WarmReport",
    "DEFAULT_MIN_SUBJECT_COUNT",
    "create_app",
]
