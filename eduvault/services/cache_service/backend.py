"""PostgreSQL durable tier for the tiered cache.

Stores cache entries so warm data survives process restarts and is shared
between workers. Writes are version-guarded: an upsert only replaces a row
holding an older acceptance stamp, so the last write accepted by a cache
wins even if backend writes arrive out of order.
"""
import base64
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from eduvault.shared.database import BaseRepository, ConnectionManager
from eduvault.shared.models import CacheEntry, PrivacyLevel

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    id TEXT PRIMARY KEY,
    namespace TEXT NOT NULL,
    cache_key TEXT NOT NULL,
    payload_json TEXT NOT NULL,
    privacy_level SMALLINT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    expires_at TIMESTAMPTZ NOT NULL,
    version BIGINT NOT NULL
);
CREATE INDEX IF NOT EXISTS cache_entries_expires_at_idx ON cache_entries (expires_at);
"""

_COLUMNS = "id, namespace, cache_key, payload_json, privacy_level, created_at, expires_at, version"


def _row_id(namespace: str, key: str) -> str:
    return f"{namespace}\x1f{key}"


def encode_payload(value: Any) -> str:
    """JSON-encode a payload; bytes are carried base64-encoded."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return json.dumps({"__bytes__": base64.b64encode(bytes(value)).decode("ascii")})
    return json.dumps({"value": value}, default=str)


def decode_payload(text: str) -> Any:
    data = json.loads(text)
    if "__bytes__" in data:
        return base64.b64decode(data["__bytes__"])
    return data["value"]


class PostgresCacheBackend(BaseRepository[CacheEntry]):
    """Durable cache tier in the `cache_entries` table."""

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, "cache_entries")

    def ensure_schema(self) -> None:
        self._execute("ensure_schema", SCHEMA)

    def _row_to_entity(self, row: tuple) -> CacheEntry:
        """Convert row to CacheEntry.

        Expected columns:
            0: id
            1: namespace
            2: cache_key
            3: payload_json
            4: privacy_level
            5: created_at
            6: expires_at
            7: version
        """
        return CacheEntry(
            namespace=row[1],
            key=row[2],
            payload=decode_payload(row[3]),
            privacy_level=PrivacyLevel.coerce(row[4]),
            created_at=row[5],
            expires_at=row[6],
            version=int(row[7]),
        )

    def _entity_to_params(self, entity: CacheEntry) -> Dict[str, Any]:
        return {
            "id": _row_id(entity.namespace, entity.key),
            "namespace": entity.namespace,
            "cache_key": entity.key,
            "payload_json": encode_payload(entity.payload),
            "privacy_level": int(entity.privacy_level),
            "created_at": entity.created_at,
            "expires_at": entity.expires_at,
            "version": entity.version,
        }

    def load(self, namespace: str, key: str) -> Optional[CacheEntry]:
        row = self._fetchone(
            "load",
            f"SELECT {_COLUMNS} FROM {self.table_name} WHERE id = %s",
            (_row_id(namespace, key),),
        )
        return self._row_to_entity(row) if row else None

    def store(self, entry: CacheEntry) -> None:
        """Upsert unless the stored row carries a newer version."""
        params = self._entity_to_params(entry)
        columns = list(params.keys())
        update_clause = ", ".join(f"{col} = EXCLUDED.{col}" for col in columns if col != "id")
        query = f"""
            INSERT INTO {self.table_name} ({", ".join(columns)})
            VALUES ({", ".join(["%s"] * len(columns))})
            ON CONFLICT (id) DO UPDATE SET {update_clause}
            WHERE {self.table_name}.version < EXCLUDED.version
        """
        self._execute("store", query, list(params.values()))

    def remove(self, namespace: str, key: str) -> None:
        self.delete(_row_id(namespace, key))

    def purge_expired(self, now: datetime) -> int:
        """Delete rows whose lifetime has ended."""
        deleted = self._execute(
            "purge_expired",
            f"DELETE FROM {self.table_name} WHERE expires_at <= %s",
            (now,),
        )
        if deleted:
            logger.info("CACHE_BACKEND_PURGED", extra={"deleted": deleted})
        return deleted
