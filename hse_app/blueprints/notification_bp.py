"""
HSE Corrective Action Platform
Notification & Scheduling Blueprint.

Provides:
    - In-app notification listing and read-marking
    - Scheduled job management (list, get, trigger, toggle)
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from hse_app.models import db
from hse_app.models.notification import BROADCAST, Notification
from hse_app.services.notification import NotificationService
from hse_app.services.scheduler_service import SchedulerService, get_registered_jobs
from hse_app.utils.errors import E, api_error
from hse_app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")


def _job_not_found(job_name):
    return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")


# ═══════════════════════════════════════════════════════════════════════════
#  NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    """List notifications for a recipient (query: recipient, unread_only, limit, offset)."""
    items, total = NotificationService.list_for_recipient(
        request.args.get("recipient", BROADCAST),
        unread_only=request.args.get("unread_only", "false").lower() == "true",
        limit=min(request.args.get("limit", 50, type=int), 500),
        offset=max(request.args.get("offset", 0, type=int), 0),
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total})


@notification_bp.route("/notifications/<int:nid>/read", methods=["PATCH"])
def mark_notification_read(nid):
    notif = db.session.get(Notification, nid)
    if not notif:
        return api_error(E.NOT_FOUND, "Notification not found")
    if notif.mark_read(utcnow()):
        db.session.commit()
    return jsonify(notif.to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULED JOBS MANAGEMENT
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/scheduler/jobs", methods=["GET"])
def list_scheduled_jobs():
    """Registered jobs with their run records."""
    jobs = SchedulerService.list_jobs()
    return jsonify({
        "jobs": jobs,
        "total": len(jobs),
        "running": SchedulerService.is_running(),
    })


@notification_bp.route("/scheduler/jobs/<job_name>", methods=["GET"])
def get_job_status(job_name):
    job = SchedulerService.get_job_status(job_name)
    if not job:
        return _job_not_found(job_name)
    return jsonify(job)


@notification_bp.route("/scheduler/jobs/<job_name>/trigger", methods=["POST"])
def trigger_job(job_name):
    """Run a job now, outside its interval. The run is recorded like a scheduled one."""
    if job_name not in get_registered_jobs():
        return _job_not_found(job_name)
    logger.info("Manual trigger of %s", job_name, extra={"job_name": job_name})
    return jsonify(SchedulerService.run_job(job_name))


@notification_bp.route("/scheduler/jobs/<job_name>/toggle", methods=["PATCH"])
def toggle_job_status(job_name):
    """Body: {enabled: true|false}"""
    data = request.get_json(silent=True) or {}
    enabled = data.get("enabled")
    if not isinstance(enabled, bool):
        return api_error(E.VALIDATION_REQUIRED, "'enabled' field is required (true/false)")

    result = SchedulerService.toggle_job(job_name, enabled)
    if not result:
        return _job_not_found(job_name)
    return jsonify(result)
