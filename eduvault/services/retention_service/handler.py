"""Retention Service HTTP handler - operational control of the archiver.

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- POST /retention/run - Run a cycle now (409 if one is already running)
- POST /retention/cancel - Cancel the running cycle
- GET /retention/last-report - Report of the most recent completed cycle
"""
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from flask import Flask, jsonify, request

from eduvault.shared.utils import Clock, utc_now
from .archiver import RetentionArchiver
from .scheduler import RetentionScheduler

logger = logging.getLogger(__name__)


def _parse_now(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def create_app(
    archiver: RetentionArchiver,
    scheduler: Optional[RetentionScheduler] = None,
    clock: Clock = utc_now,
) -> Flask:
    """Build the retention service app.

    Args:
        archiver: Archiver to control
        scheduler: Background scheduler, reported by /ready when present
        clock: Evaluation time when /retention/run gives none
    """
    app = Flask(__name__)
    app.extensions["eduvault.archiver"] = archiver

    @app.route("/health", methods=["GET"])
    def health():
        """Health check endpoint."""
        return jsonify({"status": "healthy", "service": "retention-service"})

    @app.route("/ready", methods=["GET"])
    def ready():
        """Readiness check endpoint."""
        return jsonify({
            "status": "ready",
            "service": "retention-service",
            "scheduler_running": bool(scheduler and scheduler.running),
            "cycle_running": archiver.running,
        })

    @app.route("/retention/run", methods=["POST"])
    def run():
        """Run one cycle synchronously.

        Body (optional):
            now: ISO-8601 evaluation time
        """
        data = request.get_json(silent=True) or {}
        try:
            now = _parse_now(data["now"]) if data.get("now") else clock()
        except (TypeError, ValueError) as e:
            return jsonify({"error": f"Invalid 'now': {e}"}), 400

        report = archiver.run_cycle(now)
        logger.info(
            "RETENTION_RUN_REQUESTED",
            extra={"skipped": report.skipped, "failed_count": len(report.failures)}
        )
        status = 409 if report.skipped else 200
        return jsonify(report.to_dict()), status

    @app.route("/retention/cancel", methods=["POST"])
    def cancel():
        """Request cancellation of the running cycle."""
        return jsonify({"cancel_requested": archiver.cancel()})

    @app.route("/retention/last-report", methods=["GET"])
    def last_report():
        """Most recent completed (non-skipped) cycle."""
        report = archiver.last_report
        if report is None:
            return jsonify({"error": "No retention cycle has run"}), 404
        return jsonify(report.to_dict())

    return app


if __name__ == "__main__":
    from eduvault.services.platform import EduvaultPlatform

    logging.basicConfig(level=logging.INFO)
    platform = EduvaultPlatform.from_env()
    platform.start(run_scheduler=True)
    port = int(os.getenv("PORT", "8080"))
    try:
        create_app(platform.archiver, platform.scheduler).run(host="0.0.0.0", port=port)
    finally:
        platform.shutdown()
