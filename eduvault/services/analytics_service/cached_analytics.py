"""Aggregation results cached in the analytics namespace.

Results are keyed by a fingerprint of the query parameters and cached
with the analytics namespace's short lifetime. Only the sanitized output
is cached: suppressed groups are stored as suppression markers.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Mapping, Optional, Tuple

from eduvault.shared.config import AnalyticsConfig
from eduvault.shared.models import GroupStat
from eduvault.shared.utils import fingerprint
from eduvault.services.cache_service import OversizedValueError, TieredCache
from .k_anonymity import AnonymizingAggregator, MetricSpec, MetricsArg, normalize_metrics

logger = logging.getLogger(__name__)

RowsLoader = Callable[[], Iterable[Mapping[str, Any]]]


@dataclass(frozen=True)
class AnalyticsQuery:
    """Parameters of one aggregation.

    Attributes:
        dataset: Caller's name for the row source (e.g. "quiz_attempts:2026-10")
        group_by: Group key fields
        metrics: Normalized metric specs
        k_threshold: Minimum distinct subjects
    """
    dataset: str
    group_by: Tuple[str, ...]
    metrics: Tuple[MetricSpec, ...]
    k_threshold: int

    @classmethod
    def build(
        cls,
        dataset: str,
        group_by: Iterable[str],
        metrics: MetricsArg,
        k_threshold: int,
    ) -> "AnalyticsQuery":
        if isinstance(group_by, str):
            group_by = (group_by,)
        return cls(
            dataset=dataset,
            group_by=tuple(group_by),
            metrics=normalize_metrics(metrics),
            k_threshold=k_threshold,
        )

    def cache_key(self) -> str:
        return fingerprint({
            "dataset": self.dataset,
            "group_by": list(self.group_by),
            "metrics": [[m.name, m.field, m.kind.value] for m in self.metrics],
            "k": self.k_threshold,
        })


class CachedAnalytics:
    """Read-through cache in front of the anonymizing aggregator."""

    def __init__(
        self,
        aggregator: AnonymizingAggregator,
        cache: TieredCache,
        config: Optional[AnalyticsConfig] = None,
    ):
        self.aggregator = aggregator
        self.cache = cache
        self.config = config or AnalyticsConfig()

    def query(
        self,
        dataset: str,
        group_by: Iterable[str],
        metrics: MetricsArg,
        k_threshold: Optional[int] = None,
    ) -> AnalyticsQuery:
        """Build a query using the configured k when none is given."""
        k = self.config.k_anonymity_threshold if k_threshold is None else k_threshold
        return AnalyticsQuery.build(dataset, group_by, metrics, k)

    def aggregate(self, query: AnalyticsQuery, rows_loader: RowsLoader) -> List[GroupStat]:
        """Cached aggregation.

        Args:
            query: Aggregation parameters
            rows_loader: Supplies raw rows on a cache miss

        Returns:
            Sanitized group statistics
        """
        key = query.cache_key()
        cached, hit = self.cache.get(self.config.cache_namespace, key)
        if hit:
            logger.debug("ANALYTICS_CACHE_HIT", extra={"dataset": query.dataset})
            return [GroupStat.from_dict(item) for item in cached]

        stats = self.aggregator.aggregate(
            rows=rows_loader(),
            group_by=query.group_by,
            metrics=query.metrics,
            k_threshold=query.k_threshold,
        )
        try:
            self.cache.put(
                self.config.cache_namespace,
                key,
                [stat.to_dict() for stat in stats],
                self.config.cache_privacy_level,
            )
        except OversizedValueError:
            logger.warning(
                "ANALYTICS_RESULT_NOT_CACHED",
                extra={"dataset": query.dataset, "groups": len(stats), "reason": "oversized"}
            )
        return stats

    def invalidate(self, query: AnalyticsQuery) -> bool:
        return self.cache.invalidate(self.config.cache_namespace, query.cache_key())
