"""Analytics Service HTTP handler - anonymized aggregation endpoint.

All aggregations suppress groups with fewer than k distinct subjects.

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- POST /aggregate - Aggregate caller-supplied rows with k-anonymity
"""
import logging
import os
from typing import Optional

from flask import Flask, jsonify, request

from .cached_analytics import CachedAnalytics
from .k_anonymity import AnonymizingAggregator

logger = logging.getLogger(__name__)


def create_app(
    aggregator: AnonymizingAggregator,
    analytics: Optional[CachedAnalytics] = None,
) -> Flask:
    """Build the analytics service app.

    Args:
        aggregator: Aggregator used for uncached requests
        analytics: Cached aggregation used when a request names a dataset
    """
    app = Flask(__name__)
    app.extensions["eduvault.aggregator"] = aggregator

    @app.route("/health", methods=["GET"])
    def health():
        """Health check endpoint."""
        return jsonify({"status": "healthy", "service": "analytics-service"})

    @app.route("/ready", methods=["GET"])
    def ready():
        """Readiness check endpoint."""
        return jsonify({"status": "ready", "service": "analytics-service"})

    @app.route("/aggregate", methods=["POST"])
    def aggregate():
        """Aggregate rows with k-anonymity.

        Body:
            rows: Raw rows (each carrying the subject field)
            group_by: List of group key fields
            metrics: {"name": "field:mean|median|count"}
            k_threshold: Optional - minimum distinct subjects (default 5)
            dataset: Optional - enables result caching under this name
        """
        data = request.get_json(silent=True)
        if not data:
            return jsonify({"error": "Request body required"}), 400

        required = ["rows", "group_by", "metrics"]
        missing = [f for f in required if f not in data]
        if missing:
            return jsonify({"error": f"Missing fields: {missing}"}), 400

        rows = data["rows"]
        k_threshold = data.get("k_threshold", aggregator.k_threshold)
        try:
            k_threshold = int(k_threshold)
            if data.get("dataset") and analytics is not None:
                query = analytics.query(data["dataset"], data["group_by"], data["metrics"], k_threshold)
                stats = analytics.aggregate(query, lambda: rows)
            else:
                stats = aggregator.aggregate(
                    rows=rows,
                    group_by=data["group_by"],
                    metrics=data["metrics"],
                    k_threshold=k_threshold,
                )
        except (TypeError, ValueError) as e:
            return jsonify({"error": str(e)}), 400

        return jsonify({
            "k_anonymity_threshold": k_threshold,
            "group_by": data["group_by"],
            "groups": [stat.to_dict() for stat in stats],
        })

    return app


if __name__ == "__main__":
    from eduvault.services.platform import EduvaultPlatform

    logging.basicConfig(level=logging.INFO)
    platform = EduvaultPlatform.from_env()
    platform.start(run_scheduler=False)
    port = int(os.getenv("PORT", "8080"))
    try:
        create_app(platform.aggregator, platform.analytics).run(host="0.0.0.0", port=port)
    finally:
        platform.shutdown()
