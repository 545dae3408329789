"""
Health check blueprint.

    GET /api/v1/health/ready   process is up (load balancer probe)
    GET /api/v1/health/live    database round trip, scheduler thread and sweep state

``/live`` answers 503 when the database is unreachable, or when the scheduler
is enabled but its thread is not running.
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from hse_app.models import db
from hse_app.services.reconciliation import ReconciliationSweeper
from hse_app.services.scheduler_service import SchedulerService

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


def _database_check() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health check database failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _scheduler_check() -> dict:
    enabled = bool(current_app.config.get("SCHEDULER_ENABLED"))
    running = SchedulerService.is_running()
    return {
        "status": "ok" if running or not enabled else "stopped",
        "enabled": enabled,
        "running": running,
        "sweep_state": ReconciliationSweeper.state.value,
        "sweep_interval_seconds": current_app.config.get("SWEEP_INTERVAL_SECONDS"),
    }


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {"database": _database_check(), "scheduler": _scheduler_check()}
    healthy = all(c["status"] == "ok" for c in checks.values())
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
    }), 200 if healthy else 503
