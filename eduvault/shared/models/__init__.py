"""Shared domain models for the eduvault platform."""
from .privacy import (
    PrivacyLevel,
    CacheEntry,
    GroupStat,
)
from .lifecycle import (
    LifecycleState,
    FinalAction,
    ArchiveTier,
    RetentionPolicy,
    LearningRecord,
    RecordFailure,
    CycleReport,
)

__all__ = [
    "PrivacyLevel",
    "CacheEntry",
    "GroupStat",
    "LifecycleState",
    "FinalAction",
    "ArchiveTier",
    "RetentionPolicy",
    "LearningRecord",
    "RecordFailure",
    "CycleReport",
]
