"""Structured, validated configuration for eduvault services."""
from .settings import (
    AnalyticsConfig,
    CacheConfig,
    ConfigurationError,
    NamespacePolicy,
    PlatformConfig,
    RetentionConfig,
    DEFAULT_NAMESPACES,
    DEFAULT_PRIVACY_TTL_SECONDS,
    DEFAULT_RETENTION_POLICIES,
)

__all__ = [
    "AnalyticsConfig",
    "CacheConfig",
    "ConfigurationError",
    "NamespacePolicy",
    "PlatformConfig",
    "RetentionConfig",
    "DEFAULT_NAMESPACES",
    "DEFAULT_PRIVACY_TTL_SECONDS",
    "DEFAULT_RETENTION_POLICIES",
]
