"""Privacy level -> cache lifetime mapping.

More sensitive data is cached for less time. The mapping is total: any
value outside the four defined levels gets the RESTRICTED lifetime.
"""
import logging
from datetime import timedelta
from typing import Any, Mapping, Optional

from eduvault.shared.config import DEFAULT_PRIVACY_TTL_SECONDS, NamespacePolicy
from eduvault.shared.models import PrivacyLevel

logger = logging.getLogger(__name__)


class PrivacyPolicyResolver:
    """Resolves cache lifetimes from privacy classification.

    Deterministic and side-effect free apart from a warning log when an
    unknown level falls back to RESTRICTED.
    """

    def __init__(self, ttl_seconds: Optional[Mapping[int, int]] = None):
        """Initialize resolver.

        Args:
            ttl_seconds: Level -> seconds table (validated by CacheConfig)
        """
        table = ttl_seconds or DEFAULT_PRIVACY_TTL_SECONDS
        self._lifetimes = {
            level: timedelta(seconds=table[level]) for level in PrivacyLevel
        }

    def resolve(self, privacy_level: Any) -> timedelta:
        """Cache lifetime for a privacy level.

        Args:
            privacy_level: Any caller-supplied classification

        Returns:
            Lifetime; the RESTRICTED lifetime for unknown input
        """
        return self._lifetimes[PrivacyLevel.coerce(privacy_level)]

    def resolve_for_namespace(
        self,
        privacy_level: Any,
        namespace_policy: NamespacePolicy,
    ) -> timedelta:
        """Lifetime capped by the namespace's max TTL (e.g. analytics)."""
        lifetime = self.resolve(privacy_level)
        if namespace_policy.max_ttl_seconds is not None:
            lifetime = min(lifetime, timedelta(seconds=namespace_policy.max_ttl_seconds))
        return lifetime

    def table(self) -> Mapping[str, int]:
        return {
            level.name.lower(): int(lifetime.total_seconds())
            for level, lifetime in self._lifetimes.items()
        }
