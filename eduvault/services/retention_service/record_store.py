"""Record metadata stores used by the retention archiver.

State changes are compare-and-set on the current state, which is what
makes archiver re-runs safe: a transition that already happened simply
affects no row.

Backends:
- InMemoryRecordStore: development and tests
- PostgresRecordStore: `learning_records` table
"""
import copy
import json
import logging
import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol

from eduvault.shared.database import BaseRepository, ConnectionManager
from eduvault.shared.models import LearningRecord, LifecycleState

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    """Record metadata the archiver scans and transitions."""

    def list_records(self, states: Iterable[LifecycleState]) -> List[LearningRecord]: ...

    def mark_state(
        self,
        record_id: str,
        from_state: LifecycleState,
        to_state: LifecycleState,
        archived_at: Optional[datetime] = None,
    ) -> bool: ...

    def purge(self, record_id: str, from_state: LifecycleState) -> bool: ...

    def find_by_id(self, record_id: str) -> Optional[LearningRecord]: ...


class InMemoryRecordStore:
    """Thread-safe in-memory record store."""

    def __init__(self, records: Optional[Iterable[LearningRecord]] = None):
        self._records: Dict[str, LearningRecord] = {}
        self._lock = threading.Lock()
        for record in records or ():
            self.add(record)

    def add(self, record: LearningRecord) -> None:
        with self._lock:
            self._records[record.record_id] = copy.deepcopy(record)

    def find_by_id(self, record_id: str) -> Optional[LearningRecord]:
        with self._lock:
            record = self._records.get(record_id)
            return copy.deepcopy(record) if record else None

    get = find_by_id

    def list_records(self, states: Iterable[LifecycleState]) -> List[LearningRecord]:
        wanted = set(states)
        with self._lock:
            return [
                copy.deepcopy(r)
                for _, r in sorted(self._records.items())
                if r.state in wanted
            ]

    def mark_state(
        self,
        record_id: str,
        from_state: LifecycleState,
        to_state: LifecycleState,
        archived_at: Optional[datetime] = None,
    ) -> bool:
        if not from_state.can_transition_to(to_state):
            raise ValueError(f"Illegal transition {from_state.value} -> {to_state.value}")
        with self._lock:
            record = self._records.get(record_id)
            if record is None or record.state is not from_state:
                return False
            record.state = to_state
            if archived_at is not None:
                record.archived_at = archived_at
            return True

    def purge(self, record_id: str, from_state: LifecycleState) -> bool:
        """Drop the payload and leave a PURGED tombstone."""
        with self._lock:
            record = self._records.get(record_id)
            if record is None or record.state is not from_state:
                return False
            record.state = LifecycleState.PURGED
            record.payload = {}
            return True


SCHEMA = """
CREATE TABLE IF NOT EXISTS learning_records (
    id TEXT PRIMARY KEY,
    category TEXT NOT NULL,
    last_updated TIMESTAMPTZ NOT NULL,
    consent BOOLEAN NOT NULL DEFAULT FALSE,
    state TEXT NOT NULL DEFAULT 'active',
    archived_at TIMESTAMPTZ,
    session_start TIMESTAMPTZ,
    cache_keys_json TEXT NOT NULL DEFAULT '[]',
    payload_json TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS learning_records_state_idx ON learning_records (state);
"""

_COLUMNS = (
    "id, category, last_updated, consent, state, archived_at, "
    "session_start, cache_keys_json, payload_json"
)


class PostgresRecordStore(BaseRepository[LearningRecord]):
    """Record metadata in the `learning_records` table."""

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, "learning_records")

    def ensure_schema(self) -> None:
        self._execute("ensure_schema", SCHEMA)

    def _row_to_entity(self, row: tuple) -> LearningRecord:
        """Convert row to LearningRecord.

        Expected columns:
            0: id
            1: category
            2: last_updated
            3: consent
            4: state
            5: archived_at
            6: session_start
            7: cache_keys_json
            8: payload_json
        """
        cache_keys = json.loads(row[7]) if row[7] else []
        return LearningRecord(
            record_id=row[0],
            category=row[1],
            last_updated=row[2],
            consent=bool(row[3]),
            state=LifecycleState(row[4]),
            archived_at=row[5],
            session_start=row[6],
            cache_keys=tuple((ns, key) for ns, key in cache_keys),
            payload=json.loads(row[8]) if row[8] else {},
        )

    def _entity_to_params(self, entity: LearningRecord) -> Dict[str, Any]:
        return {
            "id": entity.record_id,
            "category": entity.category,
            "last_updated": entity.last_updated,
            "consent": entity.consent,
            "state": entity.state.value,
            "archived_at": entity.archived_at,
            "session_start": entity.session_start,
            "cache_keys_json": json.dumps([list(k) for k in entity.cache_keys]),
            "payload_json": json.dumps(entity.payload, default=str),
        }

    def list_records(self, states: Iterable[LifecycleState]) -> List[LearningRecord]:
        rows = self._fetchall(
            "list_records",
            f"SELECT {_COLUMNS} FROM {self.table_name} WHERE state = ANY(%s) ORDER BY id",
            ([s.value for s in states],),
        )
        return [self._row_to_entity(row) for row in rows]

    def find_by_id(self, entity_id: str) -> Optional[LearningRecord]:
        row = self._fetchone(
            "find_by_id",
            f"SELECT {_COLUMNS} FROM {self.table_name} WHERE id = %s",
            (entity_id,),
        )
        return self._row_to_entity(row) if row else None

    def mark_state(
        self,
        record_id: str,
        from_state: LifecycleState,
        to_state: LifecycleState,
        archived_at: Optional[datetime] = None,
    ) -> bool:
        if not from_state.can_transition_to(to_state):
            raise ValueError(f"Illegal transition {from_state.value} -> {to_state.value}")
        updated = self._execute(
            "mark_state",
            f"""
            UPDATE {self.table_name}
            SET state = %s, archived_at = COALESCE(%s, archived_at)
            WHERE id = %s AND state = %s
            """,
            (to_state.value, archived_at, record_id, from_state.value),
        )
        return updated > 0

    def purge(self, record_id: str, from_state: LifecycleState) -> bool:
        updated = self._execute(
            "purge",
            f"""
            UPDATE {self.table_name}
            SET state = %s, payload_json = '{{}}'
            WHERE id = %s AND state = %s
            """,
            (LifecycleState.PURGED.value, record_id, from_state.value),
        )
        return updated > 0
