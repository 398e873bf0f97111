"""Cache warming for high-traffic aggregates.

Pre-populates the cache with the largest disclosed groups so the first
real request for them is a hit. Advisory only: a warming failure never
raises, it only costs latency on the first request.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from eduvault.shared.config import AnalyticsConfig
from eduvault.shared.models import GroupStat
from eduvault.services.cache_service import TieredCache
from .cached_analytics import AnalyticsQuery, CachedAnalytics, RowsLoader

logger = logging.getLogger(__name__)

DEFAULT_MIN_SUBJECT_COUNT = 10


@dataclass
class WarmReport:
    """Outcome of one warming pass."""
    warmed: int = 0
    failed: int = 0
    candidates: int = 0
    keys: List[str] = field(default_factory=list)


def group_cache_key(prefix: str, group_key: Sequence) -> str:
    return prefix + ":" + "|".join("" if v is None else str(v) for v in group_key)


class CacheWarmer:
    """Warms the cache from anonymized aggregation output."""

    def __init__(
        self,
        cache: TieredCache,
        analytics: Optional[CachedAnalytics] = None,
        config: Optional[AnalyticsConfig] = None,
    ):
        """Initialize warmer.

        Args:
            cache: Cache to populate
            analytics: Cached aggregation used by warm_query
            config: Target namespace, privacy level, ranking metric
        """
        self.cache = cache
        self.analytics = analytics
        self.config = config or AnalyticsConfig()

    def _effectiveness(self, stat: GroupStat) -> float:
        value = stat.metrics.get(self.config.effectiveness_metric)
        return float(value) if value is not None else -math.inf

    def select_top(
        self,
        stats: Sequence[GroupStat],
        n: int,
        min_subject_count: Optional[int] = None,
    ) -> List[GroupStat]:
        """Disclosed groups with enough subjects, largest first.

        Ties on subject count are broken by the effectiveness metric
        (descending); groups without it rank last among their ties.
        """
        minimum = self.config.warm_min_subject_count if min_subject_count is None else min_subject_count
        eligible = [
            s for s in stats
            if not s.suppressed and s.subject_count is not None and s.subject_count >= minimum
        ]
        eligible.sort(key=lambda s: (s.subject_count, self._effectiveness(s)), reverse=True)
        return eligible[:max(0, n)]

    def warm_top(
        self,
        stats: Sequence[GroupStat],
        n: int,
        min_subject_count: Optional[int] = None,
        key_prefix: str = "group",
    ) -> WarmReport:
        """Put the top n groups into the warm namespace.

        Never raises; failures are counted and logged.
        """
        report = WarmReport()
        try:
            selected = self.select_top(stats, n, min_subject_count)
        except Exception as e:
            logger.error(
                "CACHE_WARM_SELECTION_FAILED",
                extra={"error": str(e), "error_type": type(e).__name__}
            )
            report.failed += 1
            return report

        report.candidates = len(selected)
        for stat in selected:
            key = group_cache_key(key_prefix, stat.group_key)
            try:
                self.cache.put(
                    self.config.warm_namespace,
                    key,
                    stat.to_dict(),
                    self.config.warm_privacy_level,
                )
            except Exception as e:
                report.failed += 1
                logger.warning(
                    "CACHE_WARM_ENTRY_FAILED",
                    extra={
                        "namespace": self.config.warm_namespace,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                )
                continue
            report.warmed += 1
            report.keys.append(key)

        logger.info(
            "CACHE_WARM_COMPLETED",
            extra={
                "namespace": self.config.warm_namespace,
                "requested": n,
                "candidates": report.candidates,
                "warmed": report.warmed,
                "failed": report.failed,
            }
        )
        return report

    def warm_query(
        self,
        query: AnalyticsQuery,
        rows_loader: RowsLoader,
        n: int,
        min_subject_count: Optional[int] = None,
    ) -> WarmReport:
        """Aggregate (through the analytics cache) and warm the top groups."""
        if self.analytics is None:
            logger.warning("CACHE_WARM_SKIPPED", extra={"reason": "no_analytics_source"})
            return WarmReport(failed=1)
        try:
            stats = self.analytics.aggregate(query, rows_loader)
        except Exception as e:
            logger.error(
                "CACHE_WARM_AGGREGATION_FAILED",
                extra={
                    "dataset": query.dataset,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            return WarmReport(failed=1)
        return self.warm_top(stats, n, min_subject_count, key_prefix=query.dataset)
