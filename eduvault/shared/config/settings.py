"""Process-wide configuration, loaded once at startup.

Every recognized option is enumerated here and validated at load time:
- Privacy TTL table (level -> seconds, non-increasing with sensitivity)
- Namespace policies (payload size limit, optional TTL cap)
- K-anonymity threshold and cache warming options
- Per-category retention policies and the archiver cycle interval

Sources: a JSON document (from_dict / EDUVAULT_CONFIG_PATH) with
environment variable overrides, in the same from_env style as
DatabaseConfig.
"""
import json
import logging
import os
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Any, Dict, Mapping, Optional, Tuple

from eduvault.shared.database import DatabaseConfig
from eduvault.shared.models import FinalAction, PrivacyLevel, RetentionPolicy

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Configuration failed validation at load time."""
    pass


DEFAULT_PRIVACY_TTL_SECONDS: Dict[int, int] = {
    PrivacyLevel.PUBLIC: 3600,
    PrivacyLevel.LIMITED: 1800,
    PrivacyLevel.PRIVATE: 900,
    PrivacyLevel.RESTRICTED: 300,
}

DEFAULT_PII_SALT = "default_dev_salt_change_in_production_32chars"


@dataclass(frozen=True)
class NamespacePolicy:
    """Limits applied to every entry of a cache namespace.

    Attributes:
        name: Namespace name (e.g. "progress", "content", "analytics")
        max_payload_bytes: Reject larger payloads (None = unlimited)
        max_ttl_seconds: Cap on the privacy-derived lifetime (None = no cap)
    """
    name: str
    max_payload_bytes: Optional[int] = None
    max_ttl_seconds: Optional[int] = None

    def __post_init__(self):
        if not self.name:
            raise ConfigurationError("Namespace policy requires a name")
        if self.max_payload_bytes is not None and self.max_payload_bytes <= 0:
            raise ConfigurationError(f"max_payload_bytes must be positive for {self.name}")
        if self.max_ttl_seconds is not None and self.max_ttl_seconds <= 0:
            raise ConfigurationError(f"max_ttl_seconds must be positive for {self.name}")


DEFAULT_NAMESPACES: Tuple[NamespacePolicy, ...] = (
    NamespacePolicy("progress", max_payload_bytes=64 * 1024),
    NamespacePolicy("content", max_payload_bytes=256 * 1024),
    NamespacePolicy("analytics", max_payload_bytes=128 * 1024, max_ttl_seconds=120),
)


@dataclass(frozen=True)
class CacheConfig:
    """Configuration for the tiered cache."""
    privacy_ttl_seconds: Mapping[int, int] = field(
        default_factory=lambda: dict(DEFAULT_PRIVACY_TTL_SECONDS)
    )
    namespaces: Tuple[NamespacePolicy, ...] = DEFAULT_NAMESPACES
    shard_count: int = 64
    backend_timeout_seconds: float = 0.5
    backend_retry_attempts: int = 2

    def __post_init__(self):
        levels = sorted(int(level) for level in self.privacy_ttl_seconds)
        if levels != [int(level) for level in PrivacyLevel]:
            raise ConfigurationError(
                f"privacy_ttl_seconds must define exactly levels 1-4, got {levels}"
            )
        previous = None
        for level in PrivacyLevel:
            ttl = self.privacy_ttl_seconds[level]
            if ttl <= 0:
                raise ConfigurationError(f"TTL for {level.name} must be positive")
            if previous is not None and ttl > previous:
                raise ConfigurationError(
                    f"TTL must not increase with privacy level ({level.name}: {ttl}s > {previous}s)"
                )
            previous = ttl

        names = [ns.name for ns in self.namespaces]
        if len(names) != len(set(names)):
            raise ConfigurationError(f"Duplicate namespace policies: {names}")
        if self.shard_count < 1:
            raise ConfigurationError("shard_count must be at least 1")
        if self.backend_timeout_seconds <= 0:
            raise ConfigurationError("backend_timeout_seconds must be positive")
        if self.backend_retry_attempts < 1:
            raise ConfigurationError("backend_retry_attempts must be at least 1")

    def namespace(self, name: str) -> NamespacePolicy:
        """Policy for a namespace; unregistered namespaces are unrestricted."""
        for policy in self.namespaces:
            if policy.name == name:
                return policy
        return NamespacePolicy(name)


@dataclass(frozen=True)
class AnalyticsConfig:
    """Configuration for anonymized aggregation and cache warming."""
    k_anonymity_threshold: int = 5
    subject_field: str = "student_id"
    cache_namespace: str = "analytics"
    cache_privacy_level: PrivacyLevel = PrivacyLevel.LIMITED
    warm_namespace: str = "content"
    warm_privacy_level: PrivacyLevel = PrivacyLevel.PUBLIC
    warm_min_subject_count: int = 10
    effectiveness_metric: str = "effectiveness"

    def __post_init__(self):
        if self.k_anonymity_threshold < 1:
            raise ConfigurationError("k_anonymity_threshold must be at least 1")
        if not self.subject_field:
            raise ConfigurationError("subject_field is required")
        if self.warm_min_subject_count < self.k_anonymity_threshold:
            raise ConfigurationError(
                "warm_min_subject_count must not be below k_anonymity_threshold"
            )


DEFAULT_RETENTION_POLICIES: Tuple[RetentionPolicy, ...] = (
    RetentionPolicy(
        category="learning_progress",
        active_window=timedelta(days=365),
        archive_window=timedelta(days=3 * 365),
        final_action=FinalAction.PURGE,
        cache_namespace="progress",
    ),
    RetentionPolicy(
        category="accommodation_records",
        active_window=timedelta(days=365),
        archive_window=timedelta(days=5 * 365),
        final_action=FinalAction.PURGE,
        protected=True,
        cache_namespace="progress",
    ),
    RetentionPolicy(
        category="course_content",
        active_window=timedelta(days=2 * 365),
        final_action=FinalAction.ARCHIVE,
        cache_namespace="content",
    ),
    RetentionPolicy(
        category="anonymized_analytics",
        active_window=timedelta(days=730),
        final_action=FinalAction.PURGE,
        delete_outright=True,
        cache_namespace="analytics",
    ),
)


@dataclass(frozen=True)
class RetentionConfig:
    """Configuration for the retention archiver and its scheduler."""
    policies: Tuple[RetentionPolicy, ...] = DEFAULT_RETENTION_POLICIES
    cycle_interval_seconds: int = 3600
    store_timeout_seconds: float = 5.0
    store_retry_attempts: int = 2

    def __post_init__(self):
        categories = [p.category for p in self.policies]
        if len(categories) != len(set(categories)):
            raise ConfigurationError(f"Duplicate retention categories: {categories}")
        if self.cycle_interval_seconds < 1:
            raise ConfigurationError("cycle_interval_seconds must be at least 1")
        if self.store_timeout_seconds <= 0:
            raise ConfigurationError("store_timeout_seconds must be positive")
        if self.store_retry_attempts < 1:
            raise ConfigurationError("store_retry_attempts must be at least 1")

    def policy_map(self) -> Dict[str, RetentionPolicy]:
        return {p.category: p for p in self.policies}


@dataclass(frozen=True)
class PlatformConfig:
    """Top-level configuration for every eduvault component."""
    cache: CacheConfig = field(default_factory=CacheConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    database: Optional[DatabaseConfig] = None   # None = in-memory stores
    archive_bucket: Optional[str] = None        # S3 bucket for archive copies
    aws_region: str = "us-east-1"
    pii_salt: str = DEFAULT_PII_SALT

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PlatformConfig":
        """Build a validated config from a JSON-style document.

        Raises:
            ConfigurationError: On unknown keys or invalid values
        """
        _reject_unknown(data, {
            "cache", "analytics", "retention", "database",
            "archive_bucket", "aws_region", "pii_salt",
        }, "root")

        try:
            database = data.get("database")
            return cls(
                cache=_cache_from_dict(data.get("cache") or {}),
                analytics=_analytics_from_dict(data.get("analytics") or {}),
                retention=_retention_from_dict(data.get("retention") or {}),
                database=DatabaseConfig(**database) if database else None,
                archive_bucket=data.get("archive_bucket"),
                aws_region=data.get("aws_region", "us-east-1"),
                pii_salt=data.get("pii_salt", DEFAULT_PII_SALT),
            )
        except ConfigurationError:
            raise
        except (TypeError, ValueError, KeyError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_env(cls) -> "PlatformConfig":
        """Create config from an optional JSON file plus environment overrides.

        Environment variables:
            EDUVAULT_CONFIG_PATH: JSON document loaded through from_dict
            K_ANONYMITY_THRESHOLD: Overrides analytics.k_anonymity_threshold
            RETENTION_CYCLE_SECONDS: Overrides retention.cycle_interval_seconds
            PII_HASH_SALT: Identifier hashing salt
            ARCHIVE_BUCKET: S3 bucket for archive copies
            AWS_REGION: AWS region (default us-east-1)
            DB_HOST: When set, PostgreSQL stores are used (see DatabaseConfig)
            DB_SECRET_ARN: Load database credentials from Secrets Manager instead
        """
        path = os.getenv("EDUVAULT_CONFIG_PATH")
        if path:
            with open(path, encoding="utf-8") as fh:
                config = cls.from_dict(json.load(fh))
            logger.info("CONFIG_FILE_LOADED", extra={"path": path})
        else:
            config = cls()

        try:
            if os.getenv("K_ANONYMITY_THRESHOLD"):
                config = replace(config, analytics=replace(
                    config.analytics,
                    k_anonymity_threshold=int(os.environ["K_ANONYMITY_THRESHOLD"]),
                ))
            if os.getenv("RETENTION_CYCLE_SECONDS"):
                config = replace(config, retention=replace(
                    config.retention,
                    cycle_interval_seconds=int(os.environ["RETENTION_CYCLE_SECONDS"]),
                ))
            if os.getenv("DB_SECRET_ARN"):
                config = replace(config, database=DatabaseConfig.from_secrets_manager(
                    os.environ["DB_SECRET_ARN"],
                    region=os.getenv("AWS_REGION", config.aws_region),
                ))
            elif os.getenv("DB_HOST"):
                config = replace(config, database=DatabaseConfig.from_env())
        except ConfigurationError:
            raise
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment override: {e}") from e

        return replace(
            config,
            pii_salt=os.getenv("PII_HASH_SALT", config.pii_salt),
            archive_bucket=os.getenv("ARCHIVE_BUCKET", config.archive_bucket),
            aws_region=os.getenv("AWS_REGION", config.aws_region),
        )


def _reject_unknown(section: Mapping[str, Any], allowed: set, name: str) -> None:
    unknown = set(section) - allowed
    if unknown:
        raise ConfigurationError(f"Unknown option(s) in {name}: {sorted(unknown)}")


def _cache_from_dict(data: Mapping[str, Any]) -> CacheConfig:
    _reject_unknown(data, {
        "privacy_ttl_seconds", "namespaces", "shard_count",
        "backend_timeout_seconds", "backend_retry_attempts",
    }, "cache")

    kwargs: Dict[str, Any] = {}
    if "privacy_ttl_seconds" in data:
        kwargs["privacy_ttl_seconds"] = {
            PrivacyLevel(int(level)): int(ttl)
            for level, ttl in data["privacy_ttl_seconds"].items()
        }
    if "namespaces" in data:
        policies = []
        for ns in data["namespaces"]:
            _reject_unknown(ns, {"name", "max_payload_bytes", "max_ttl_seconds"}, "cache.namespaces")
            policies.append(NamespacePolicy(**ns))
        kwargs["namespaces"] = tuple(policies)
    for key in ("shard_count", "backend_retry_attempts"):
        if key in data:
            kwargs[key] = int(data[key])
    if "backend_timeout_seconds" in data:
        kwargs["backend_timeout_seconds"] = float(data["backend_timeout_seconds"])
    return CacheConfig(**kwargs)


def _analytics_from_dict(data: Mapping[str, Any]) -> AnalyticsConfig:
    _reject_unknown(data, {
        "k_anonymity_threshold", "subject_field", "cache_namespace",
        "cache_privacy_level", "warm_namespace", "warm_privacy_level",
        "warm_min_subject_count", "effectiveness_metric",
    }, "analytics")

    kwargs = dict(data)
    for key in ("cache_privacy_level", "warm_privacy_level"):
        if key in kwargs:
            kwargs[key] = _strict_privacy_level(kwargs[key], key)
    return AnalyticsConfig(**kwargs)


def _strict_privacy_level(value: Any, option: str) -> PrivacyLevel:
    """Configured levels must be valid; only runtime input falls back."""
    try:
        if isinstance(value, str) and not value.isdigit():
            return PrivacyLevel[value.upper()]
        return PrivacyLevel(int(value))
    except (KeyError, ValueError) as e:
        raise ConfigurationError(f"Invalid privacy level for {option}: {value!r}") from e


def _retention_from_dict(data: Mapping[str, Any]) -> RetentionConfig:
    _reject_unknown(data, {
        "policies", "cycle_interval_seconds",
        "store_timeout_seconds", "store_retry_attempts",
    }, "retention")

    kwargs: Dict[str, Any] = {}
    if "policies" in data:
        policies = []
        for raw in data["policies"]:
            _reject_unknown(raw, {
                "category", "active_window_days", "archive_window_days",
                "final_action", "protected", "delete_outright", "cache_namespace",
            }, "retention.policies")
            policies.append(RetentionPolicy(
                category=raw["category"],
                active_window=timedelta(days=float(raw["active_window_days"])),
                archive_window=timedelta(days=float(raw.get("archive_window_days", 0))),
                final_action=FinalAction(raw.get("final_action", FinalAction.ARCHIVE.value)),
                protected=bool(raw.get("protected", False)),
                delete_outright=bool(raw.get("delete_outright", False)),
                cache_namespace=raw.get("cache_namespace"),
            ))
        kwargs["policies"] = tuple(policies)
    if "cycle_interval_seconds" in data:
        kwargs["cycle_interval_seconds"] = int(data["cycle_interval_seconds"])
    if "store_timeout_seconds" in data:
        kwargs["store_timeout_seconds"] = float(data["store_timeout_seconds"])
    if "store_retry_attempts" in data:
        kwargs["store_retry_attempts"] = int(data["store_retry_attempts"])
    return RetentionConfig(**kwargs)
