"""Record lifecycle domain models for compliance-driven retention.

Transitions are strictly one-directional:
    ACTIVE -> PROTECTED_ARCHIVE -> PURGED
    ACTIVE -> ARCHIVED -> PURGED
    ACTIVE -> PURGED (anonymized analytics only)
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


class LifecycleState(Enum):
    """Lifecycle state of an externally stored record."""
    ACTIVE = "active"
    PROTECTED_ARCHIVE = "protected_archive"
    ARCHIVED = "archived"
    PURGED = "purged"

    def can_transition_to(self, target: "LifecycleState") -> bool:
        return target in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS: Dict[LifecycleState, FrozenSet[LifecycleState]] = {
    LifecycleState.ACTIVE: frozenset({
        LifecycleState.PROTECTED_ARCHIVE,
        LifecycleState.ARCHIVED,
        LifecycleState.PURGED,
    }),
    LifecycleState.PROTECTED_ARCHIVE: frozenset({LifecycleState.PURGED}),
    LifecycleState.ARCHIVED: frozenset({LifecycleState.PURGED}),
    LifecycleState.PURGED: frozenset(),
}


class FinalAction(Enum):
    """What happens to an archived record once its archive window ends."""
    ARCHIVE = "archive"     # Stays archived indefinitely
    PURGE = "purge"         # Permanently deleted


class ArchiveTier(Enum):
    """Archive store a record is copied into."""
    STANDARD = "standard"
    PROTECTED = "protected"


@dataclass(frozen=True)
class RetentionPolicy:
    """Retention rule for one record category.

    Loaded once at startup and immutable for the process lifetime.

    Attributes:
        category: Record category the rule applies to
        active_window: Time since last update before archiving
            (time since session start for delete_outright categories)
        archive_window: Time since archiving before the final action
        final_action: ARCHIVE keeps the archive copy, PURGE deletes it
        protected: Category qualifies for the protected archive when the
            record carries affirmative consent
        delete_outright: Anonymized analytics; deleted with no archive stage
        cache_namespace: Namespace whose (namespace, record_id) entry is
            invalidated on every transition
    """
    category: str
    active_window: timedelta
    archive_window: timedelta = timedelta(0)
    final_action: FinalAction = FinalAction.ARCHIVE
    protected: bool = False
    delete_outright: bool = False
    cache_namespace: Optional[str] = None

    def __post_init__(self):
        if not self.category:
            raise ValueError("Retention policy requires a category")
        if self.active_window <= timedelta(0):
            raise ValueError(f"active_window must be positive for {self.category}")
        if self.archive_window < timedelta(0):
            raise ValueError(f"archive_window must not be negative for {self.category}")


@dataclass
class LearningRecord:
    """Retention metadata for one record held by the platform data layer.

    Payload durability is owned by the external store; the archiver only
    reads this metadata and advances the lifecycle state.
    """
    record_id: str
    category: str
    last_updated: datetime
    consent: bool = False
    state: LifecycleState = LifecycleState.ACTIVE
    archived_at: Optional[datetime] = None
    session_start: Optional[datetime] = None
    cache_keys: Tuple[Tuple[str, str], ...] = ()
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RecordFailure:
    """A record the archiver could not transition in this cycle."""
    record_id: str
    stage: str
    error: str


@dataclass
class CycleReport:
    """Structured outcome of one retention cycle."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    archived_count: int = 0
    protected_count: int = 0
    purged_count: int = 0
    invalidated_keys: int = 0
    failures: List[RecordFailure] = field(default_factory=list)
    cancelled: bool = False
    skipped: bool = False
    error: Optional[str] = None     # Set when the record scan itself failed

    @property
    def failed_ids(self) -> List[str]:
        return [f.record_id for f in self.failures]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "archived_count": self.archived_count,
            "protected_count": self.protected_count,
            "purged_count": self.purged_count,
            "invalidated_keys": self.invalidated_keys,
            "failed_ids": self.failed_ids,
            "cancelled": self.cancelled,
            "skipped": self.skipped,
            "error": self.error,
        }
