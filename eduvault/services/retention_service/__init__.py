"""Retention Service: compliance-driven archiving and purging.

Moves records through ACTIVE -> ARCHIVED / PROTECTED_ARCHIVE -> PURGED
as their retention windows elapse, invalidating cached copies on every
transition.

This service provides:
- RetentionArchiver: one idempotent, cancellable cycle at a time
- RetentionScheduler: periodic trigger on a background thread
- Record stores (in-memory, PostgreSQL) and archive stores (in-memory,
  PostgreSQL, S3)

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- POST /retention/run - Run a cycle now
- POST /retention/cancel - Cancel the running cycle
- GET /retention/last-report - Most recent cycle report
"""

from .record_store import RecordStore, InMemoryRecordStore, PostgresRecordStore
from .archive_store import (
    ArchiveStore,
    InMemoryArchiveStore,
    PostgresArchiveStore,
    S3ArchiveStore,
)
from .archiver import RetentionArchiver, next_transition
from .scheduler import RetentionScheduler
from .handler import create_app

__all__ = [
    "RecordStore",
    "InMemoryRecordStore",
    "PostgresRecordStore",
    "ArchiveStore",
    "InMemoryArchiveStore",
    "PostgresArchiveStore",
    "S3ArchiveStore",
    "RetentionArchiver",
    "next_transition",
    "RetentionScheduler",
    "create_app",
]
