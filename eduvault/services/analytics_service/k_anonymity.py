"""K-anonymity enforcement for learning-analytics aggregation.

Groups with fewer than k distinct subjects are suppressed so individual
student data cannot be reverse-engineered from aggregated reports.
Suppression happens here, at the aggregation boundary; callers never
receive a sub-threshold count or metric to filter themselves.
"""
import logging
import statistics
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from eduvault.shared.models import GroupStat

logger = logging.getLogger(__name__)

# Minimum number of distinct subjects for a group to be disclosed
K_ANONYMITY_THRESHOLD = 5

DEFAULT_SUBJECT_FIELD = "student_id"


class MetricKind(Enum):
    """Supported per-group aggregations."""
    MEAN = "mean"
    MEDIAN = "median"
    COUNT = "count"


@dataclass(frozen=True)
class MetricSpec:
    """One requested metric.

    Attributes:
        name: Output name in GroupStat.metrics
        field: Row field to aggregate (None with COUNT counts rows)
        kind: Aggregation to apply
    """
    name: str
    field: Optional[str]
    kind: MetricKind

    @classmethod
    def parse(cls, name: str, spec: Any) -> "MetricSpec":
        """Build a spec from the accepted shorthand forms.

        Accepted:
            MetricSpec instance
            ("score", "mean") tuple
            "score:mean" string
            "count" string (row count)

        Raises:
            ValueError: On an unknown aggregation kind
        """
        if isinstance(spec, cls):
            return spec
        if isinstance(spec, (tuple, list)) and len(spec) == 2:
            field, kind = spec
        elif isinstance(spec, str) and ":" in spec:
            field, kind = spec.split(":", 1)
        elif isinstance(spec, str):
            field, kind = None, spec
        else:
            raise ValueError(f"Invalid metric specification for '{name}': {spec!r}")

        try:
            metric_kind = MetricKind(str(kind).lower())
        except ValueError as e:
            raise ValueError(
                f"Unknown aggregation '{kind}' for metric '{name}' (use mean, median or count)"
            ) from e
        if field is None and metric_kind is not MetricKind.COUNT:
            raise ValueError(f"Metric '{name}' needs a field for {metric_kind.value}")
        return cls(name=name, field=field or None, kind=metric_kind)


MetricsArg = Union[Sequence[MetricSpec], Mapping[str, Any]]


def normalize_metrics(metrics: MetricsArg) -> Tuple[MetricSpec, ...]:
    """Turn the accepted metric forms into MetricSpecs."""
    if isinstance(metrics, Mapping):
        specs = [MetricSpec.parse(name, spec) for name, spec in metrics.items()]
    else:
        specs = []
        for spec in metrics:
            if not isinstance(spec, MetricSpec):
                raise ValueError(
                    f"Metric list items must be MetricSpec, got {spec!r}; "
                    "use a {name: \"field:kind\"} mapping for shorthand"
                )
            specs.append(spec)
    names = [s.name for s in specs]
    if len(names) != len(set(names)):
        raise ValueError(f"Duplicate metric names: {names}")
    return tuple(specs)


def _group_sort_key(group_key: Tuple[Any, ...]) -> Tuple[Tuple[bool, str], ...]:
    # Mixed value types (None, int, str) must still order deterministically
    return tuple((value is None, str(value)) for value in group_key)


class AnonymizingAggregator:
    """Computes group statistics with k-anonymity enforced.

    Stateless and side-effect free: identical rows give identical output,
    so results can be cached under a fingerprint of the query.
    """

    def __init__(
        self,
        k_threshold: int = K_ANONYMITY_THRESHOLD,
        subject_field: str = DEFAULT_SUBJECT_FIELD,
    ):
        """Initialize aggregator.

        Args:
            k_threshold: Default minimum distinct subjects per group
            subject_field: Row field identifying the subject (student)
        """
        if k_threshold < 1:
            raise ValueError("k_threshold must be at least 1")
        self.k_threshold = k_threshold
        self.subject_field = subject_field

        logger.info(
            "ANONYMIZING_AGGREGATOR_INITIALIZED",
            extra={"k_threshold": k_threshold, "subject_field": subject_field}
        )

    def aggregate(
        self,
        rows: Iterable[Mapping[str, Any]],
        group_by: Sequence[str],
        metrics: MetricsArg,
        k_threshold: Optional[int] = None,
    ) -> List[GroupStat]:
        """Aggregate rows per group, suppressing small populations.

        Args:
            rows: Raw rows supplied by the platform query layer
            group_by: Fields forming the group key (e.g. course, difficulty)
            metrics: Requested metrics (see MetricSpec.parse)
            k_threshold: Minimum distinct subjects (default: configured k)

        Returns:
            One GroupStat per group, sorted by group key. Groups below k
            carry only the key and suppressed=True.

        Raises:
            ValueError: On invalid k, metric specification or non-numeric values

        Logs:
            - K_ANONYMITY_SUPPRESSED: Per suppressed group (no counts)
            - AGGREGATION_COMPLETED: Totals for the call
        """
        k = self.k_threshold if k_threshold is None else k_threshold
        if k < 1:
            raise ValueError("k_threshold must be at least 1")
        if isinstance(group_by, str):
            group_by = (group_by,)
        specs = normalize_metrics(metrics)

        partitions: Dict[Tuple[Any, ...], List[Mapping[str, Any]]] = {}
        subjects: Dict[Tuple[Any, ...], set] = {}
        skipped_rows = 0
        for row in rows:
            if not isinstance(row, Mapping):
                raise ValueError(f"Rows must be mappings, got {type(row).__name__}")
            subject = row.get(self.subject_field)
            if subject is None:
                skipped_rows += 1
                continue
            key = tuple(row.get(field) for field in group_by)
            partitions.setdefault(key, []).append(row)
            subjects.setdefault(key, set()).add(subject)

        results: List[GroupStat] = []
        suppressed_count = 0
        for key in sorted(partitions, key=_group_sort_key):
            subject_count = len(subjects[key])
            if subject_count < k:
                suppressed_count += 1
                logger.info(
                    "K_ANONYMITY_SUPPRESSED",
                    extra={
                        "group_by": list(group_by),
                        "k_threshold": k,
                        "action": "DATA_SUPPRESSED",
                    }
                )
                results.append(GroupStat.suppressed_marker(key))
                continue

            results.append(GroupStat(
                group_key=key,
                subject_count=subject_count,
                metrics={spec.name: self._compute(spec, partitions[key]) for spec in specs},
                suppressed=False,
            ))

        logger.info(
            "AGGREGATION_COMPLETED",
            extra={
                "group_by": list(group_by),
                "metrics": [s.name for s in specs],
                "k_threshold": k,
                "groups_total": len(results),
                "groups_suppressed": suppressed_count,
                "rows_without_subject": skipped_rows,
            }
        )
        return results

    @staticmethod
    def _compute(spec: MetricSpec, rows: List[Mapping[str, Any]]) -> Optional[float]:
        if spec.kind is MetricKind.COUNT and spec.field is None:
            return float(len(rows))

        values = []
        for row in rows:
            raw = row.get(spec.field)
            if raw is None:
                continue
            try:
                values.append(float(raw))
            except (TypeError, ValueError) as e:
                raise ValueError(
                    f"Non-numeric value in field '{spec.field}' for metric '{spec.name}'"
                ) from e

        if spec.kind is MetricKind.COUNT:
            return float(len(values))
        if not values:
            return None
        if spec.kind is MetricKind.MEAN:
            return statistics.fmean(values)
        return float(statistics.median(values))
