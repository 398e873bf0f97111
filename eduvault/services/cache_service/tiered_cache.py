"""Privacy-tiered cache with per-key mutual exclusion.

Entries expire after a lifetime derived from their privacy level.
Keys are spread across lock-striped shards:
- Operations on the same (namespace, key) always take the same shard lock
- Operations on keys in different shards never contend
- Entries are immutable and swapped whole, so readers never see a torn value

Expiry is lazy: an expired entry is a miss and is evicted when read.
An optional durable backend (e.g. PostgreSQL) sits behind the in-process
shards; every backend call is bounded and retried, and an unavailable
backend degrades to a cache miss instead of failing the caller.
"""
import json
import logging
import threading
import time
from datetime import timedelta
from typing import Any, Callable, Dict, NamedTuple, Optional, Protocol, Tuple

from eduvault.shared.config import CacheConfig
from eduvault.shared.database import RepositoryError, StoreUnavailableError
from eduvault.shared.models import CacheEntry, PrivacyLevel
from eduvault.shared.utils import Clock, call_with_timeout, retry_call, utc_now
from .policy_resolver import PrivacyPolicyResolver

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]


class CacheError(Exception):
    """Base exception for cache policy violations."""
    pass


class OversizedValueError(CacheError):
    """Payload exceeds the namespace's size limit; the put was rejected."""

    def __init__(self, namespace: str, size: int, limit: int):
        super().__init__(
            f"Payload of {size} bytes exceeds {limit} byte limit for namespace '{namespace}'"
        )
        self.namespace = namespace
        self.size = size
        self.limit = limit


class CacheResult(NamedTuple):
    """Outcome of a cache read. A miss is a normal outcome, not an error."""
    value: Any
    hit: bool


class CacheBackend(Protocol):
    """Durable tier behind the in-process shards."""

    def load(self, namespace: str, key: str) -> Optional[CacheEntry]: ...

    def store(self, entry: CacheEntry) -> None: ...

    def remove(self, namespace: str, key: str) -> None: ...


def payload_size(value: Any) -> int:
    """Size in bytes used for namespace limits."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return len(value)
    if isinstance(value, str):
        return len(value.encode("utf-8"))
    return len(json.dumps(value, default=str, separators=(",", ":")).encode("utf-8"))


class _Shard:
    """One lock stripe: a lock, its entries, and counters it guards."""

    __slots__ = ("lock", "entries", "tombstones", "last_version", "counters")

    def __init__(self):
        self.lock = threading.Lock()
        self.entries: Dict[CacheKey, CacheEntry] = {}
        # Invalidation stamps; stop a concurrent backend read re-installing
        # a value written before the invalidation.
        self.tombstones: Dict[CacheKey, int] = {}
        self.last_version = 0
        self.counters = {"hits": 0, "misses": 0, "expired": 0, "puts": 0, "invalidations": 0}

    def next_version(self) -> int:
        """Wall-clock acceptance stamp, strictly increasing per shard."""
        self.last_version = max(time.time_ns(), self.last_version + 1)
        return self.last_version


class TieredCache:
    """Keyed cache whose expiry is derived from privacy classification.

    Created once per process and shared by reference between request
    workers; cleared at shutdown.
    """

    def __init__(
        self,
        resolver: Optional[PrivacyPolicyResolver] = None,
        config: Optional[CacheConfig] = None,
        backend: Optional[CacheBackend] = None,
        clock: Clock = utc_now,
    ):
        """Initialize cache.

        Args:
            resolver: Privacy level -> lifetime resolver
            config: Cache configuration (namespaces, shard count, backend bounds)
            backend: Optional durable tier
            clock: Injected time source
        """
        self.config = config or CacheConfig()
        self.resolver = resolver or PrivacyPolicyResolver(self.config.privacy_ttl_seconds)
        self.backend = backend
        self._clock = clock
        self._shards = tuple(_Shard() for _ in range(self.config.shard_count))
        self._backend_failures = 0
        self._backend_lock = threading.Lock()

        logger.info(
            "TIERED_CACHE_INITIALIZED",
            extra={
                "shard_count": self.config.shard_count,
                "namespaces": [ns.name for ns in self.config.namespaces],
                "backend": type(backend).__name__ if backend else None,
            }
        )

    def _shard_for(self, cache_key: CacheKey) -> _Shard:
        return self._shards[hash(cache_key) % len(self._shards)]

    def put(
        self,
        namespace: str,
        key: str,
        value: Any,
        privacy_level: Any,
    ) -> CacheEntry:
        """Store a value, replacing any existing entry for the key.

        The replaced entry is discarded immediately.

        Args:
            namespace: Cache namespace (e.g. "progress")
            key: Key within the namespace
            value: Payload
            privacy_level: Classification; unknown values use RESTRICTED

        Returns:
            The stored CacheEntry

        Raises:
            OversizedValueError: If the payload exceeds the namespace limit
        """
        level = PrivacyLevel.coerce(privacy_level)
        ns_policy = self.config.namespace(namespace)

        if ns_policy.max_payload_bytes is not None:
            size = payload_size(value)
            if size > ns_policy.max_payload_bytes:
                logger.warning(
                    "CACHE_PUT_REJECTED_OVERSIZED",
                    extra={
                        "namespace": namespace,
                        "size_bytes": size,
                        "limit_bytes": ns_policy.max_payload_bytes,
                    }
                )
                raise OversizedValueError(namespace, size, ns_policy.max_payload_bytes)

        lifetime = self.resolver.resolve_for_namespace(level, ns_policy)
        cache_key = (namespace, key)
        shard = self._shard_for(cache_key)

        with shard.lock:
            now = self._clock()
            entry = CacheEntry(
                namespace=namespace,
                key=key,
                payload=value,
                privacy_level=level,
                created_at=now,
                expires_at=now + lifetime,
                version=shard.next_version(),
            )
            shard.entries[cache_key] = entry
            shard.tombstones.pop(cache_key, None)
            shard.counters["puts"] += 1

        logger.debug(
            "CACHE_ENTRY_STORED",
            extra={
                "namespace": namespace,
                "privacy_level": level.name,
                "ttl_seconds": lifetime.total_seconds(),
            }
        )

        if self.backend is not None:
            self._backend_call(self.backend.store, entry, operation="cache_backend_store")

        return entry

    def get(self, namespace: str, key: str) -> CacheResult:
        """Read a value.

        Returns:
            CacheResult(value, hit=True), or CacheResult(None, False) when
            absent, expired, or the backend is unavailable
        """
        cache_key = (namespace, key)
        shard = self._shard_for(cache_key)

        with shard.lock:
            now = self._clock()
            entry = shard.entries.get(cache_key)
            if entry is not None:
                if entry.is_expired(now):
                    del shard.entries[cache_key]
                    shard.counters["expired"] += 1
                else:
                    shard.counters["hits"] += 1
                    return CacheResult(entry.payload, True)

        if self.backend is not None:
            loaded = self._backend_call(
                self.backend.load, namespace, key, operation="cache_backend_load"
            )
            if loaded is not None and not loaded.is_expired(self._clock()):
                return self._install_loaded(shard, cache_key, loaded)

        with shard.lock:
            shard.counters["misses"] += 1
        return CacheResult(None, False)

    def _install_loaded(self, shard: _Shard, cache_key: CacheKey, loaded: CacheEntry) -> CacheResult:
        """Adopt a backend entry unless a newer write or invalidation won."""
        with shard.lock:
            current = shard.entries.get(cache_key)
            invalidated_at = shard.tombstones.get(cache_key, 0)
            if current is not None and current.version >= loaded.version:
                shard.counters["hits"] += 1
                return CacheResult(current.payload, True)
            if loaded.version <= invalidated_at:
                shard.counters["misses"] += 1
                return CacheResult(None, False)
            shard.entries[cache_key] = loaded
            shard.counters["hits"] += 1
            return CacheResult(loaded.payload, True)

    def invalidate(self, namespace: str, key: str) -> bool:
        """Remove an entry unconditionally. No-op if absent.

        Returns:
            True if an in-process entry was removed
        """
        cache_key = (namespace, key)
        shard = self._shard_for(cache_key)

        with shard.lock:
            removed = shard.entries.pop(cache_key, None) is not None
            shard.tombstones[cache_key] = shard.next_version()
            shard.counters["invalidations"] += 1

        if self.backend is not None:
            self._backend_call(self.backend.remove, namespace, key, operation="cache_backend_remove")

        logger.debug(
            "CACHE_ENTRY_INVALIDATED",
            extra={"namespace": namespace, "removed": removed}
        )
        return removed

    def get_or_load(
        self,
        namespace: str,
        key: str,
        loader: Callable[[], Any],
        privacy_level: Any,
    ) -> Any:
        """Read-through: return the cached value or load and cache it.

        The loader is the platform's source of truth; its errors propagate.
        If the loaded value cannot be cached (oversized) it is still returned.
        """
        value, hit = self.get(namespace, key)
        if hit:
            return value

        value = loader()
        try:
            self.put(namespace, key, value, privacy_level)
        except OversizedValueError:
            logger.info(
                "CACHE_READ_THROUGH_NOT_CACHED",
                extra={"namespace": namespace, "reason": "oversized"}
            )
        return value

    def sweep(self) -> int:
        """Evict expired entries and stale tombstones across all shards.

        Optional; correctness relies only on lazy expiry.

        Returns:
            Number of entries evicted
        """
        now = self._clock()
        max_lifetime = max(
            (self.resolver.resolve(level) for level in PrivacyLevel),
            default=timedelta(0),
        )
        tombstone_cutoff = time.time_ns() - int(max_lifetime.total_seconds() * 1e9)
        evicted = 0
        for shard in self._shards:
            with shard.lock:
                expired = [k for k, e in shard.entries.items() if e.is_expired(now)]
                for cache_key in expired:
                    del shard.entries[cache_key]
                shard.counters["expired"] += len(expired)
                evicted += len(expired)
                stale = [k for k, stamp in shard.tombstones.items() if stamp < tombstone_cutoff]
                for cache_key in stale:
                    del shard.tombstones[cache_key]

        if evicted:
            logger.info("CACHE_SWEEP_COMPLETED", extra={"evicted": evicted})
        return evicted

    def clear(self) -> None:
        """Drop every in-process entry (shutdown)."""
        for shard in self._shards:
            with shard.lock:
                shard.entries.clear()
                shard.tombstones.clear()
        logger.info("TIERED_CACHE_CLEARED")

    def stats(self) -> Dict[str, Any]:
        """Counters summed across shards, plus entries per namespace."""
        totals = {"hits": 0, "misses": 0, "expired": 0, "puts": 0, "invalidations": 0}
        per_namespace: Dict[str, int] = {}
        for shard in self._shards:
            with shard.lock:
                for name, count in shard.counters.items():
                    totals[name] += count
                for namespace, _ in shard.entries:
                    per_namespace[namespace] = per_namespace.get(namespace, 0) + 1

        lookups = totals["hits"] + totals["misses"]
        with self._backend_lock:
            backend_failures = self._backend_failures
        return {
            **totals,
            "hit_rate": round(totals["hits"] / lookups, 4) if lookups else 0.0,
            "entries": sum(per_namespace.values()),
            "entries_by_namespace": per_namespace,
            "backend_failures": backend_failures,
        }

    def _backend_call(self, func: Callable[..., Any], *args, operation: str) -> Any:
        """Bounded, retried backend call that degrades to None on failure."""
        try:
            return retry_call(
                lambda: call_with_timeout(
                    func, *args,
                    timeout=self.config.backend_timeout_seconds,
                    operation=operation,
                ),
                max_attempts=self.config.backend_retry_attempts,
                operation=operation,
            )
        except StoreUnavailableError as e:
            self._record_backend_failure(operation, e, transient=True)
        except RepositoryError as e:
            self._record_backend_failure(operation, e, transient=False)
        return None

    def _record_backend_failure(self, operation: str, error: Exception, transient: bool) -> None:
        with self._backend_lock:
            self._backend_failures += 1
        logger.warning(
            "CACHE_BACKEND_DEGRADED",
            extra={
                "operation": operation,
                "transient": transient,
                "error": str(error),
                "action": "pass_through",
            }
        )
