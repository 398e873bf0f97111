"""Privacy classification and cache domain models.

This file defines the privacy tiers that drive cache lifetimes, the cache
entry shape, and the group statistic returned by anonymized aggregation.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


class PrivacyLevel(IntEnum):
    """Ordinal privacy classification of a record.

    Higher values are more sensitive and are cached for less time.
    """
    PUBLIC = 1       # Course catalogue, published content
    LIMITED = 2      # Aggregated/de-identified data
    PRIVATE = 3      # Individual progress visible to the student and teacher
    RESTRICTED = 4   # Special-category data (accommodations, counselling)

    @classmethod
    def coerce(cls, value: Any) -> "PrivacyLevel":
        """Resolve any caller-supplied value to a privacy level.

        Unknown or missing values resolve to RESTRICTED, the most
        conservative tier. Never raises.

        Args:
            value: Enum member, int, numeric string or level name

        Returns:
            PrivacyLevel for the value
        """
        if isinstance(value, cls):
            return value

        candidate = value
        if isinstance(value, str):
            text = value.strip()
            if text.upper() in cls.__members__:
                return cls[text.upper()]
            try:
                candidate = int(text)
            except ValueError:
                candidate = None

        # bool is an int subclass; True must not map to PUBLIC
        if isinstance(candidate, int) and not isinstance(candidate, bool):
            try:
                return cls(candidate)
            except ValueError:
                pass

        logger.warning(
            "UNKNOWN_PRIVACY_LEVEL",
            extra={
                "received_type": type(value).__name__,
                "fallback": cls.RESTRICTED.name,
            }
        )
        return cls.RESTRICTED


@dataclass(frozen=True)
class CacheEntry:
    """A cached payload with its privacy-derived lifetime.

    Immutable: an overwrite replaces the whole entry so a reader never
    observes a partially written value.
    """
    namespace: str
    key: str
    payload: Any
    privacy_level: PrivacyLevel
    created_at: datetime
    expires_at: datetime
    version: int = 0    # Acceptance order at the cache (last writer wins)

    def __post_init__(self):
        if self.expires_at <= self.created_at:
            raise ValueError(
                f"expires_at must be after created_at for {self.namespace}:{self.key}"
            )

    def is_expired(self, now: datetime) -> bool:
        """An entry is logically absent once now >= expires_at."""
        return now >= self.expires_at

    @property
    def ttl_seconds(self) -> float:
        return (self.expires_at - self.created_at).total_seconds()


@dataclass(frozen=True)
class GroupStat:
    """Statistics for one group of an anonymized aggregation.

    A suppressed group carries only its key and the suppression flag:
    subject_count is None and metrics is empty, so the true sub-threshold
    population is never exposed.
    """
    group_key: Tuple[Any, ...]
    subject_count: Optional[int]
    metrics: Mapping[str, float] = field(default_factory=dict)
    suppressed: bool = False

    def __post_init__(self):
        if self.suppressed and (self.subject_count is not None or self.metrics):
            raise ValueError("Suppressed groups must not carry counts or metrics")
        if not self.suppressed and (self.subject_count is None or self.subject_count < 0):
            raise ValueError("Visible groups require a non-negative subject_count")

    @classmethod
    def suppressed_marker(cls, group_key: Tuple[Any, ...]) -> "GroupStat":
        return cls(group_key=group_key, subject_count=None, metrics={}, suppressed=True)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the same keys whether suppressed or visible."""
        return {
            "group": list(self.group_key),
            "subject_count": self.subject_count,
            "metrics": dict(self.metrics) if not self.suppressed else None,
            "suppressed": self.suppressed,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GroupStat":
        if data.get("suppressed"):
            return cls.suppressed_marker(tuple(data.get("group") or ()))
        return cls(
            group_key=tuple(data.get("group") or ()),
            subject_count=int(data["subject_count"]),
            metrics=dict(data.get("metrics") or {}),
            suppressed=False,
        )
