"""Cache Service HTTP handler - operational endpoints.

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- GET /cache/stats - Hit/miss counters and entries per namespace
- DELETE /cache/<namespace>/<key> - Invalidate one entry
- POST /cache/sweep - Evict expired entries (and expired durable rows)
"""
import logging
import os
from typing import Optional

from flask import Flask, jsonify

from eduvault.shared.database import ConnectionManager, StoreUnavailableError
from eduvault.shared.utils import Clock, utc_now
from .tiered_cache import TieredCache

logger = logging.getLogger(__name__)


def create_app(
    cache: TieredCache,
    database: Optional[ConnectionManager] = None,
    clock: Clock = utc_now,
) -> Flask:
    """Build the cache service app around an injected cache.

    Args:
        cache: Shared cache instance
        database: Pool behind the durable tier; /ready reports 503 while
            it is unhealthy
        clock: Cutoff for purging expired durable rows
    """
    app = Flask(__name__)
    app.extensions["eduvault.cache"] = cache

    @app.route("/health", methods=["GET"])
    def health():
        """Health check endpoint."""
        return jsonify({"status": "healthy", "service": "cache-service"})

    @app.route("/ready", methods=["GET"])
    def ready():
        """Readiness check - verifies the durable tier when configured."""
        if database is not None:
            db_health = database.health_check()
            if not db_health["healthy"]:
                return jsonify({
                    "status": "not_ready",
                    "service": "cache-service",
                    "database": db_health["status"],
                }), 503
        return jsonify({"status": "ready", "service": "cache-service"})

    @app.route("/cache/stats", methods=["GET"])
    def stats():
        """Cache counters summed across shards."""
        return jsonify(cache.stats())

    @app.route("/cache/<namespace>/<path:key>", methods=["DELETE"])
    def invalidate(namespace: str, key: str):
        """Invalidate a single entry; succeeds whether or not it existed."""
        removed = cache.invalidate(namespace, key)
        logger.info(
            "CACHE_INVALIDATION_REQUESTED",
            extra={"namespace": namespace, "removed": removed}
        )
        return jsonify({"namespace": namespace, "removed": removed})

    @app.route("/cache/sweep", methods=["POST"])
    def sweep():
        """Evict expired entries now instead of waiting for lazy expiry."""
        evicted = cache.sweep()
        backend_purged = None
        purge_expired = getattr(cache.backend, "purge_expired", None)
        if purge_expired is not None:
            try:
                backend_purged = purge_expired(clock())
            except StoreUnavailableError as e:
                logger.warning("CACHE_BACKEND_SWEEP_FAILED", extra={"error": str(e)})
                return jsonify({"evicted": evicted, "error": "Durable tier unavailable"}), 503
        return jsonify({"evicted": evicted, "backend_purged": backend_purged})

    return app


if __name__ == "__main__":
    from eduvault.services.platform import EduvaultPlatform

    logging.basicConfig(level=logging.INFO)
    platform = EduvaultPlatform.from_env()
    platform.start(run_scheduler=False)
    port = int(os.getenv("PORT", "8080"))
    try:
        create_app(platform.cache, platform.db).run(host="0.0.0.0", port=port)
    finally:
        platform.shutdown()
