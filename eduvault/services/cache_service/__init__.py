"""Cache Service: privacy-tiered caching of derived data.

Cache lifetimes are derived from each record's privacy level; more
sensitive data is cached for less time. Unknown levels use the most
conservative lifetime.

This service provides:
- PrivacyPolicyResolver: privacy level -> lifetime
- TieredCache: lock-striped keyed cache with lazy expiry
- PostgresCacheBackend: optional durable tier
- Operational Flask endpoints (stats, invalidation)
"""

from .policy_resolver import PrivacyPolicyResolver
from .tiered_cache import (
    CacheBackend,
    CacheError,
    CacheResult,
    OversizedValueError,
    TieredCache,
    payload_size,
)
from .backend import PostgresCacheBackend
from .handler import create_app

__all__ = [
    "PrivacyPolicyResolver",
    "CacheBackend",
    "CacheError",
    "CacheResult",
    "OversizedValueError",
    "TieredCache",
    "payload_size",
    "PostgresCacheBackend",
    "create_app",
]
