"""Retention archiver - compliance-driven lifecycle transitions.

Each cycle scans record metadata and moves every record whose retention
window has elapsed one step along its lifecycle:

    ACTIVE -> ARCHIVED             active window elapsed
    ACTIVE -> PROTECTED_ARCHIVE    same, protected category with consent
    ARCHIVED/PROTECTED -> PURGED   archive window elapsed, final action PURGE
    ACTIVE -> PURGED               anonymized analytics, deleted outright

A cycle is safe to re-run: records are selected by current state, archive
copies are keyed by record id, and state changes are conditional on the
state the record was read in. Any transition invalidates the record's
cache keys so no stale copy outlives it.
"""
import logging
import threading
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol, Set, Tuple

from eduvault.shared.config import RetentionConfig
from eduvault.shared.models import (
    ArchiveTier,
    CycleReport,
    FinalAction,
    LearningRecord,
    LifecycleState,
    RecordFailure,
    RetentionPolicy,
)
from eduvault.shared.utils import (
    Clock,
    call_with_timeout,
    hash_pii,
    log_safe_id,
    retry_call,
    utc_now,
)
from eduvault.services.audit_service import AuditAction, AuditEntity, AuditLogger
from .archive_store import ArchiveStore
from .record_store import RecordStore

logger = logging.getLogger(__name__)

ACTOR = "retention_archiver"

SCANNED_STATES = (
    LifecycleState.ACTIVE,
    LifecycleState.ARCHIVED,
    LifecycleState.PROTECTED_ARCHIVE,
)

_TIER_FOR_STATE = {
    LifecycleState.ARCHIVED: ArchiveTier.STANDARD,
    LifecycleState.PROTECTED_ARCHIVE: ArchiveTier.PROTECTED,
}


class CacheInvalidator(Protocol):
    def invalidate(self, namespace: str, key: str) -> bool: ...


def next_transition(
    record: LearningRecord,
    policy: RetentionPolicy,
    now: datetime,
) -> Optional[LifecycleState]:
    """State the record should move to at `now`, or None if it stays.

    Depends only on the record's own state and timestamps, so evaluating
    a record twice gives the same answer.
    """
    if record.state is LifecycleState.ACTIVE:
        if policy.delete_outright:
            started = record.session_start or record.last_updated
            if now - started >= policy.active_window:
                return LifecycleState.PURGED
            return None
        if now - record.last_updated < policy.active_window:
            return None
        if policy.protected and record.consent:
            return LifecycleState.PROTECTED_ARCHIVE
        return LifecycleState.ARCHIVED

    if record.state in _TIER_FOR_STATE:
        if policy.final_action is not FinalAction.PURGE or record.archived_at is None:
            return None
        if now - record.archived_at >= policy.archive_window:
            return LifecycleState.PURGED
    return None


class RetentionArchiver:
    """Applies retention policies to stored records.

    At most one cycle runs at a time; a trigger that arrives while a cycle
    is in flight returns a skipped report instead of waiting.
    """

    def __init__(
        self,
        record_store: RecordStore,
        archive_store: ArchiveStore,
        config: Optional[RetentionConfig] = None,
        cache: Optional[CacheInvalidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Clock = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize archiver.

        Args:
            record_store: Record metadata and lifecycle state
            archive_store: Destination for archive copies
            config: Policies and store call bounds
            cache: Cache whose keys are invalidated on every transition
            audit_logger: Optional audit trail for applied transitions
            clock: Time source when run_cycle is called without `now`
            sleep: Backoff sleep between store retries
        """
        self.record_store = record_store
        self.archive_store = archive_store
        self.config = config or RetentionConfig()
        self.cache = cache
        self.audit_logger = audit_logger
        self._clock = clock
        self._sleep = sleep
        self._policies: Dict[str, RetentionPolicy] = self.config.policy_map()

        self._cycle_lock = threading.Lock()
        # Guards cancel() against the end of a cycle; the event is only
        # ever set while a cycle holds _cycle_lock
        self._cancel_lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._last_report: Optional[CycleReport] = None

        logger.info(
            "RETENTION_ARCHIVER_INITIALIZED",
            extra={
                "categories": sorted(self._policies),
                "store_timeout_seconds": self.config.store_timeout_seconds,
            }
        )

    @property
    def running(self) -> bool:
        return self._cycle_lock.locked()

    @property
    def last_report(self) -> Optional[CycleReport]:
        return self._last_report

    def policy_for(self, category: str) -> Optional[RetentionPolicy]:
        return self._policies.get(category)

    def cancel(self) -> bool:
        """Ask the running cycle to stop after its current record.

        Returns:
            True if a cycle was running
        """
        with self._cancel_lock:
            if not self.running:
                return False
            self._cancel_event.set()
        logger.info("RETENTION_CYCLE_CANCEL_REQUESTED")
        return True

    def run_cycle(
        self,
        now: Optional[datetime] = None,
        cancel_check: Optional[Callable[[], bool]] = None,
    ) -> CycleReport:
        """Run one retention cycle.

        Args:
            now: Evaluation time for every record in the cycle
            cancel_check: Extra stop condition polled between records, for
                callers whose stop request can arrive before the cycle starts

        Returns:
            CycleReport with counts and per-record failures. A failing
            record never aborts the cycle.
        """
        now = now or self._clock()
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("RETENTION_CYCLE_SKIPPED", extra={"reason": "cycle_in_progress"})
            return CycleReport(started_at=now, finished_at=now, skipped=True)

        try:
            report = self._run_locked(now, cancel_check)
            self._last_report = report
            return report
        finally:
            with self._cancel_lock:
                self._cancel_event.clear()
                self._cycle_lock.release()

    def _run_locked(
        self,
        now: datetime,
        cancel_check: Optional[Callable[[], bool]],
    ) -> CycleReport:
        report = CycleReport(started_at=now)
        logger.info("RETENTION_CYCLE_STARTED", extra={"now": now.isoformat()})

        try:
            records = self._store_call("list_records", self.record_store.list_records, SCANNED_STATES)
        except Exception as e:
            logger.error(
                "RETENTION_SCAN_FAILED",
                extra={"error": str(e), "error_type": type(e).__name__}
            )
            report.error = f"{type(e).__name__}: {e}"
            report.finished_at = self._clock()
            return report

        for record in records:
            if self._cancel_event.is_set() or (cancel_check is not None and cancel_check()):
                report.cancelled = True
                logger.warning(
                    "RETENTION_CYCLE_CANCELLED",
                    extra={"processed": report.archived_count + report.purged_count}
                )
                break
            self._process(record, now, report)

        report.finished_at = self._clock()
        self._audit_cycle(report)

        logger.info(
            "RETENTION_CYCLE_COMPLETED",
            extra={
                "scanned": len(records),
                "archived_count": report.archived_count,
                "protected_count": report.protected_count,
                "purged_count": report.purged_count,
                "invalidated_keys": report.invalidated_keys,
                "failed_count": len(report.failures),
                "cancelled": report.cancelled,
            }
        )
        return report

    def _process(self, record: LearningRecord, now: datetime, report: CycleReport) -> None:
        policy = self._policies.get(record.category)
        if policy is None:
            self._fail(report, record, "policy", "invalid category")
            return

        try:
            target = next_transition(record, policy, now)
        except TypeError as e:
            # Naive and aware timestamps mixed in the metadata
            self._fail(report, record, "evaluate", str(e))
            return
        if target is None:
            return

        stage = "apply"
        try:
            changed = self._apply(record, target, now)
            if not changed:
                # A timed-out attempt may have committed before the retry ran
                stage = "verify"
                changed = self._landed(record, target)
            if not changed:
                logger.info(
                    "RETENTION_TRANSITION_RACED",
                    extra={"record": log_safe_id(record.record_id), "target": target.value}
                )
                return
            self._count(report, target)

            stage = "invalidate"
            report.invalidated_keys += self._invalidate(record, policy)

            stage = "audit"
            self._audit_transition(record, policy, target)
        except Exception as e:
            self._fail(report, record, stage, f"{type(e).__name__}: {e}")
            if stage in ("apply", "verify"):
                # The store may still commit a write we stopped waiting for
                report.invalidated_keys += self._invalidate_after_failure(record, policy)

    def _landed(self, record: LearningRecord, target: LifecycleState) -> bool:
        current = self._store_call("find_by_id", self.record_store.find_by_id, record.record_id)
        return current is not None and current.state is target

    def _invalidate_after_failure(self, record: LearningRecord, policy: RetentionPolicy) -> int:
        try:
            return self._invalidate(record, policy)
        except Exception as e:
            logger.error(
                "RETENTION_INVALIDATION_FAILED",
                extra={
                    "record": log_safe_id(record.record_id),
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            return 0

    def _apply(self, record: LearningRecord, target: LifecycleState, now: datetime) -> bool:
        """Perform the store writes for one transition.

        Archive copies are written before the state change and deleted
        before the purge, so an interrupted transition is redone cleanly
        on the next cycle.
        """
        if target in _TIER_FOR_STATE:
            tier = _TIER_FOR_STATE[target]
            self._store_call("archive_put", self.archive_store.put, record, tier)
            return self._store_call(
                "mark_state",
                self.record_store.mark_state,
                record.record_id,
                record.state,
                target,
                now,
            )

        if record.state in _TIER_FOR_STATE:
            self._store_call(
                "archive_delete",
                self.archive_store.delete,
                record.record_id,
                _TIER_FOR_STATE[record.state],
            )
        return self._store_call("purge", self.record_store.purge, record.record_id, record.state)

    def _invalidate(self, record: LearningRecord, policy: RetentionPolicy) -> int:
        if self.cache is None:
            return 0
        keys: List[Tuple[str, str]] = []
        if policy.cache_namespace:
            keys.append((policy.cache_namespace, record.record_id))
        keys.extend(record.cache_keys)

        seen: Set[Tuple[str, str]] = set()
        for namespace, key in keys:
            if (namespace, key) in seen:
                continue
            seen.add((namespace, key))
            self.cache.invalidate(namespace, key)
        return len(seen)

    def _store_call(self, operation: str, func, *args):
        return retry_call(
            lambda: call_with_timeout(
                func,
                *args,
                timeout=self.config.store_timeout_seconds,
                operation=operation,
            ),
            max_attempts=self.config.store_retry_attempts,
            operation=operation,
            sleep=self._sleep,
        )

    @staticmethod
    def _count(report: CycleReport, target: LifecycleState) -> None:
        if target is LifecycleState.PURGED:
            report.purged_count += 1
            return
        report.archived_count += 1
        if target is LifecycleState.PROTECTED_ARCHIVE:
            report.protected_count += 1

    @staticmethod
    def _fail(report: CycleReport, record: LearningRecord, stage: str, error: str) -> None:
        logger.error(
            "RETENTION_RECORD_FAILED",
            extra={
                "record": log_safe_id(record.record_id),
                "category": record.category,
                "stage": stage,
                "error": error,
            }
        )
        report.failures.append(RecordFailure(record_id=record.record_id, stage=stage, error=error))

    def _audit_transition(
        self,
        record: LearningRecord,
        policy: RetentionPolicy,
        target: LifecycleState,
    ) -> None:
        if self.audit_logger is None:
            return
        if target is LifecycleState.PROTECTED_ARCHIVE:
            action = AuditAction.RECORD_PROTECTED_ARCHIVED
        elif target is LifecycleState.ARCHIVED:
            action = AuditAction.RECORD_ARCHIVED
        elif policy.delete_outright:
            action = AuditAction.ANALYTICS_DELETED
        else:
            action = AuditAction.RECORD_PURGED

        self.audit_logger.log(
            action=action,
            entity_type=AuditEntity.RECORD,
            entity_id=hash_pii(record.record_id),
            actor=ACTOR,
            details={
                "category": record.category,
                "from_state": record.state.value,
                "to_state": target.value,
            },
        )

    def _audit_cycle(self, report: CycleReport) -> None:
        if self.audit_logger is None:
            return
        try:
            self.audit_logger.log(
                action=AuditAction.RETENTION_CYCLE_COMPLETED,
                entity_type=AuditEntity.RETENTION_CYCLE,
                entity_id=report.started_at.isoformat(),
                actor=ACTOR,
                details={
                    "archived_count": report.archived_count,
                    "protected_count": report.protected_count,
                    "purged_count": report.purged_count,
                    "failed_count": len(report.failures),
                    "cancelled": report.cancelled,
                },
            )
        except Exception as e:
            logger.error(
                "RETENTION_CYCLE_AUDIT_FAILED",
                extra={"error": str(e), "error_type": type(e).__name__}
            )
