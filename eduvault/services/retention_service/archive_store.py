"""Archive stores for records leaving the active tier.

Writes are keyed by (tier, record_id), so writing the same record twice
leaves exactly one archive copy. Protected-tier objects are encrypted
with KMS; standard-tier objects with S3-managed keys.

Backends:
- InMemoryArchiveStore: development and tests
- PostgresArchiveStore: `record_archive` table
- S3ArchiveStore: JSON objects in the archive bucket
"""
import copy
import json
import logging
import threading
from typing import Any, Dict, Optional, Protocol, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from eduvault.shared.database import (
    BaseRepository,
    ConnectionManager,
    RepositoryError,
    StoreUnavailableError,
)
from eduvault.shared.models import ArchiveTier, LearningRecord

logger = logging.getLogger(__name__)

# Retried with backoff; any other ClientError fails the record immediately
TRANSIENT_S3_ERROR_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "SlowDown",
    "RequestTimeout",
    "RequestTimeoutException",
    "InternalError",
    "ServiceUnavailable",
    "503",
    "500",
})


class ArchiveStore(Protocol):
    """Destination for archived record copies."""

    def put(self, record: LearningRecord, tier: ArchiveTier) -> None: ...

    def delete(self, record_id: str, tier: ArchiveTier) -> None: ...

    def exists(self, record_id: str, tier: ArchiveTier) -> bool: ...


def archive_document(record: LearningRecord, tier: ArchiveTier) -> Dict[str, Any]:
    """Serializable archive copy of a record."""
    return {
        "record_id": record.record_id,
        "category": record.category,
        "tier": tier.value,
        "last_updated": record.last_updated.isoformat(),
        "consent": record.consent,
        "payload": record.payload,
    }


class InMemoryArchiveStore:
    """Thread-safe in-memory archive, one copy per (tier, record_id)."""

    def __init__(self):
        self._objects: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def put(self, record: LearningRecord, tier: ArchiveTier) -> None:
        document = copy.deepcopy(archive_document(record, tier))
        with self._lock:
            self._objects[(tier.value, record.record_id)] = document

    def delete(self, record_id: str, tier: ArchiveTier) -> None:
        with self._lock:
            self._objects.pop((tier.value, record_id), None)

    def exists(self, record_id: str, tier: ArchiveTier) -> bool:
        with self._lock:
            return (tier.value, record_id) in self._objects

    def get(self, record_id: str, tier: ArchiveTier) -> Optional[Dict[str, Any]]:
        with self._lock:
            document = self._objects.get((tier.value, record_id))
            return copy.deepcopy(document) if document else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)


class S3ArchiveStore:
    """Archive copies as JSON objects in S3.

    Object key: <prefix>/<tier>/<record_id>.json. PutObject overwrites, so
    a repeated archive of the same record is a no-op in effect.
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "archive",
        region: Optional[str] = None,
        kms_key_id: Optional[str] = None,
    ):
        """Initialize store.

        Args:
            bucket: Archive bucket name
            prefix: Key prefix inside the bucket
            region: AWS region (defaults to boto3 resolution)
            kms_key_id: KMS key for protected-tier objects; the bucket's
                default aws:kms key when omitted
        """
        if not bucket:
            raise ValueError("S3ArchiveStore requires a bucket")
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.region = region
        self.kms_key_id = kms_key_id
        self._s3_client = None

        logger.info(
            "ARCHIVE_STORE_INITIALIZED",
            extra={"bucket": bucket, "prefix": self.prefix, "region": region}
        )

    @property
    def s3_client(self):
        """Lazy initialization of S3 client."""
        if self._s3_client is None:
            import boto3
            self._s3_client = boto3.client("s3", region_name=self.region)
        return self._s3_client

    def object_key(self, record_id: str, tier: ArchiveTier) -> str:
        key = f"{tier.value}/{record_id}.json"
        return f"{self.prefix}/{key}" if self.prefix else key

    def _encryption_args(self, tier: ArchiveTier) -> Dict[str, str]:
        if tier is ArchiveTier.PROTECTED:
            args = {"ServerSideEncryption": "aws:kms"}
            if self.kms_key_id:
                args["SSEKMSKeyId"] = self.kms_key_id
            return args
        return {"ServerSideEncryption": "AES256"}

    def put(self, record: LearningRecord, tier: ArchiveTier) -> None:
        body = json.dumps(archive_document(record, tier), default=str).encode("utf-8")
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=self.object_key(record.record_id, tier),
                Body=body,
                ContentType="application/json",
                **self._encryption_args(tier),
            )
        except (ClientError, BotoCoreError) as e:
            raise self._store_error("put", e) from e

    def delete(self, record_id: str, tier: ArchiveTier) -> None:
        # DeleteObject succeeds for keys that are already gone
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket,
                Key=self.object_key(record_id, tier),
            )
        except (ClientError, BotoCoreError) as e:
            raise self._store_error("delete", e) from e

    def exists(self, record_id: str, tier: ArchiveTier) -> bool:
        try:
            self.s3_client.head_object(
                Bucket=self.bucket,
                Key=self.object_key(record_id, tier),
            )
            return True
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise self._store_error("exists", e) from e
        except BotoCoreError as e:
            raise self._store_error("exists", e) from e

    @staticmethod
    def is_transient(error: Exception) -> bool:
        """True for connection failures, throttling and S3 5xx responses."""
        if not isinstance(error, ClientError):
            return True
        code = str(error.response.get("Error", {}).get("Code", ""))
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
        return code in TRANSIENT_S3_ERROR_CODES or status >= 500

    def _store_error(self, operation: str, error: Exception) -> RepositoryError:
        transient = self.is_transient(error)
        logger.warning(
            "ARCHIVE_STORE_UNAVAILABLE" if transient else "ARCHIVE_STORE_REJECTED",
            extra={
                "operation": operation,
                "bucket": self.bucket,
                "error_type": type(error).__name__,
            }
        )
        if transient:
            return StoreUnavailableError(f"S3 {operation} failed: {error}")
        return RepositoryError(f"S3 {operation} rejected: {error}")


ARCHIVE_SCHEMA = """
CREATE TABLE IF NOT EXISTS record_archive (
    id TEXT PRIMARY KEY,
    record_id TEXT NOT NULL,
    tier TEXT NOT NULL,
    document_json TEXT NOT NULL
);
"""


class PostgresArchiveStore(BaseRepository[Dict[str, Any]]):
    """Archive copies in the `record_archive` table, one row per (tier, record_id)."""

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, "record_archive")

    def ensure_schema(self) -> None:
        self._execute("ensure_schema", ARCHIVE_SCHEMA)

    @staticmethod
    def _row_id(record_id: str, tier: ArchiveTier) -> str:
        return f"{tier.value}:{record_id}"

    def _row_to_entity(self, row: tuple) -> Dict[str, Any]:
        """Columns: id, record_id, tier, document_json."""
        return json.loads(row[3])

    def _entity_to_params(self, entity: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": self._row_id(entity["record_id"], ArchiveTier(entity["tier"])),
            "record_id": entity["record_id"],
            "tier": entity["tier"],
            "document_json": json.dumps(entity, default=str),
        }

    def put(self, record: LearningRecord, tier: ArchiveTier) -> None:
        self.save(archive_document(record, tier))

    def delete(self, record_id: str, tier: ArchiveTier) -> None:
        super().delete(self._row_id(record_id, tier))

    def exists(self, record_id: str, tier: ArchiveTier) -> bool:
        return self.find_by_id(self._row_id(record_id, tier)) is not None
