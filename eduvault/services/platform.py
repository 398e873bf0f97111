"""Process wiring for eduvault services.

Constructs every component once from a PlatformConfig and hands them to
the Flask apps by reference. Nothing here is a module-level singleton;
tests build their own platform with in-memory stores.

Store selection:
- database configured: PostgreSQL cache tier, record store and archive
- ARCHIVE_BUCKET set: archive copies go to S3 instead
- otherwise: in-memory stores (local development)
"""
import logging
from typing import Optional

from eduvault.shared.config import PlatformConfig
from eduvault.shared.database import ConnectionManager
from eduvault.shared.utils import Clock, configure_pii_salt, utc_now
from eduvault.services.analytics_service import (
    AnonymizingAggregator,
    CachedAnalytics,
    CacheWarmer,
)
from eduvault.services.audit_service import AuditLogger
from eduvault.services.cache_service import (
    PostgresCacheBackend,
    PrivacyPolicyResolver,
    TieredCache,
)
from eduvault.services.retention_service import (
    ArchiveStore,
    InMemoryArchiveStore,
    InMemoryRecordStore,
    PostgresArchiveStore,
    PostgresRecordStore,
    RecordStore,
    RetentionArchiver,
    RetentionScheduler,
    S3ArchiveStore,
)

logger = logging.getLogger(__name__)


class EduvaultPlatform:
    """Owns the component graph for one process."""

    def __init__(
        self,
        config: Optional[PlatformConfig] = None,
        clock: Clock = utc_now,
        record_store: Optional[RecordStore] = None,
        archive_store: Optional[ArchiveStore] = None,
    ):
        """Build every component; nothing connects until start().

        Args:
            config: Platform configuration (defaults for local development)
            clock: Shared time source
            record_store: Overrides the configured record store
            archive_store: Overrides the configured archive store
        """
        self.config = config or PlatformConfig()
        self.clock = clock

        self.db: Optional[ConnectionManager] = None
        self.cache_backend: Optional[PostgresCacheBackend] = None
        if self.config.database is not None:
            self.db = ConnectionManager(self.config.database)
            self.cache_backend = PostgresCacheBackend(self.db)

        self.resolver = PrivacyPolicyResolver(self.config.cache.privacy_ttl_seconds)
        self.cache = TieredCache(
            resolver=self.resolver,
            config=self.config.cache,
            backend=self.cache_backend,
            clock=clock,
        )

        analytics_config = self.config.analytics
        self.aggregator = AnonymizingAggregator(
            k_threshold=analytics_config.k_anonymity_threshold,
            subject_field=analytics_config.subject_field,
        )
        self.analytics = CachedAnalytics(self.aggregator, self.cache, analytics_config)
        self.warmer = CacheWarmer(self.cache, self.analytics, analytics_config)

        self.record_store = record_store or self._build_record_store()
        self.archive_store = archive_store or self._build_archive_store()
        self.audit_logger = AuditLogger(clock=clock)
        self.archiver = RetentionArchiver(
            record_store=self.record_store,
            archive_store=self.archive_store,
            config=self.config.retention,
            cache=self.cache,
            audit_logger=self.audit_logger,
            clock=clock,
        )
        self.scheduler = RetentionScheduler(
            self.archiver,
            interval_seconds=self.config.retention.cycle_interval_seconds,
            clock=clock,
        )
        self._started = False

    @classmethod
    def from_env(cls) -> "EduvaultPlatform":
        return cls(PlatformConfig.from_env())

    def _build_record_store(self) -> RecordStore:
        if self.db is not None:
            return PostgresRecordStore(self.db)
        return InMemoryRecordStore()

    def _build_archive_store(self) -> ArchiveStore:
        if self.config.archive_bucket:
            return S3ArchiveStore(self.config.archive_bucket, region=self.config.aws_region)
        if self.db is not None:
            return PostgresArchiveStore(self.db)
        return InMemoryArchiveStore()

    @property
    def started(self) -> bool:
        return self._started

    def start(self, run_scheduler: bool = True) -> None:
        """Configure hashing, open the database pool and start the scheduler.

        Raises:
            ValueError: If the PII salt is invalid
            psycopg2.Error: If the database pool cannot be created
        """
        if self._started:
            return
        configure_pii_salt(self.config.pii_salt)

        if self.db is not None:
            self.db.initialize()
            for store in (self.cache_backend, self.record_store, self.archive_store):
                ensure_schema = getattr(store, "ensure_schema", None)
                if ensure_schema is not None:
                    ensure_schema()

        if run_scheduler:
            self.scheduler.start()
        self._started = True

        logger.info(
            "PLATFORM_STARTED",
            extra={
                "database": self.db is not None,
                "archive_store": type(self.archive_store).__name__,
                "scheduler": run_scheduler,
            }
        )

    def shutdown(self) -> None:
        """Stop the scheduler, drop cached data and close the pool."""
        self.scheduler.stop()
        self.cache.clear()
        if self.db is not None:
            self.db.close()
        self._started = False
        logger.info("PLATFORM_SHUTDOWN")
