"""Audit logger - hash-chained trail of retention decisions.

Every lifecycle transition applied by the retention archiver is recorded
so compliance reviews can show when a record was archived or purged and
under which policy. Entries are chained by hash; tampering breaks
verify_chain().
"""
import hashlib
import json
import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from eduvault.shared.utils import Clock, utc_now

logger = logging.getLogger(__name__)

GENESIS_HASH = "genesis"


class AuditAction(Enum):
    """Actions recorded in the audit trail."""
    RECORD_ARCHIVED = "record_archived"
    RECORD_PROTECTED_ARCHIVED = "record_protected_archived"
    RECORD_PURGED = "record_purged"
    ANALYTICS_DELETED = "analytics_deleted"
    RETENTION_CYCLE_COMPLETED = "retention_cycle_completed"


class AuditEntity(Enum):
    """Entity types for audit logging."""
    RECORD = "record"
    RETENTION_CYCLE = "retention_cycle"


@dataclass(frozen=True)
class AuditEntry:
    """Immutable audit log entry."""
    entry_id: str
    timestamp: datetime
    action: AuditAction
    entity_type: AuditEntity
    entity_id: str      # Hashed for records
    actor: str          # Component that acted (e.g. "retention_archiver")
    details: Dict[str, Any] = field(default_factory=dict)
    previous_hash: str = ""
    entry_hash: str = ""

    def compute_hash(self) -> str:
        """SHA-256 over every field except entry_hash."""
        content = {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "actor": self.actor,
            "details": self.details,
            "previous_hash": self.previous_hash,
        }
        content_str = json.dumps(content, sort_keys=True, default=str)
        return hashlib.sha256(content_str.encode()).hexdigest()


class AuditLogger:
    """Appends audit entries to an in-process hash chain.

    Thread-safe: the archiver and operational endpoints may log
    concurrently.
    """

    def __init__(self, clock: Clock = utc_now):
        self._entries: List[AuditEntry] = []
        self._last_hash = GENESIS_HASH
        self._lock = threading.Lock()
        self._clock = clock

        logger.info("AUDIT_LOGGER_INITIALIZED")

    def log(
        self,
        action: AuditAction,
        entity_type: AuditEntity,
        entity_id: str,
        actor: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        """Append an entry to the chain.

        Args:
            action: Action being audited
            entity_type: Type of entity acted upon
            entity_id: Identifier (hashed if it identifies a record)
            actor: Component performing the action
            details: Additional context (no raw identifiers)

        Returns:
            Created AuditEntry
        """
        with self._lock:
            entry = AuditEntry(
                entry_id=f"audit_{uuid.uuid4().hex[:16]}",
                timestamp=self._clock(),
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                actor=actor,
                details=dict(details or {}),
                previous_hash=self._last_hash,
            )
            entry = replace(entry, entry_hash=entry.compute_hash())
            self._entries.append(entry)
            self._last_hash = entry.entry_hash

        logger.info(
            "AUDIT_ENTRY_CREATED",
            extra={
                "entry_id": entry.entry_id,
                "action": action.value,
                "entity_type": entity_type.value,
                "entry_hash": entry.entry_hash[:16],
            }
        )
        return entry

    def verify_chain(self) -> bool:
        """Verify integrity of the chain.

        Returns:
            True if every entry links to its predecessor and hashes match
        """
        with self._lock:
            entries = list(self._entries)

        expected_prev = GENESIS_HASH
        for entry in entries:
            if entry.previous_hash != expected_prev:
                logger.critical(
                    "AUDIT_CHAIN_VERIFICATION_FAILED",
                    extra={
                        "entry_id": entry.entry_id,
                        "expected_prev": expected_prev[:16],
                        "actual_prev": entry.previous_hash[:16],
                    }
                )
                return False
            if entry.compute_hash() != entry.entry_hash:
                logger.critical(
                    "AUDIT_ENTRY_HASH_MISMATCH",
                    extra={"entry_id": entry.entry_id}
                )
                return False
            expected_prev = entry.entry_hash

        return True

    def query(
        self,
        action: Optional[AuditAction] = None,
        entity_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[AuditEntry]:
        """Entries matching every given filter, oldest first."""
        with self._lock:
            results = list(self._entries)

        if action:
            results = [e for e in results if e.action == action]
        if entity_id:
            results = [e for e in results if e.entity_id == entity_id]
        if since:
            results = [e for e in results if e.timestamp >= since]
        return results

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
