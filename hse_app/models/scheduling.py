"""
HSE Corrective Action Platform
Scheduling models.

Models:
    - ScheduledJob: one row per registered background job (interval, on/off
      switch and the outcome of its runs)
"""

from datetime import datetime, timezone

from hse_app.models import db

RUN_STATUSES = {"success", "failed", "skipped", "cancelled"}

DEFAULT_INTERVAL_SECONDS = 86400


def _utcnow():
    return datetime.now(timezone.utc)


class ScheduledJob(db.Model):
    """
    Persisted state of a background job.

    ``schedule_config`` holds ``{"seconds": N}``. A run dropped by the
    sweep's single-flight guard counts in ``skip_count`` and not in
    ``run_count``; a cancelled run counts as a run but not as an error.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False,
                         comment="status_reconciliation | deadline_reminder")
    description = db.Column(db.String(500), default="")
    schedule_type = db.Column(db.String(30), nullable=False, default="interval")
    schedule_config = db.Column(db.JSON, default=dict)
    status = db.Column(db.String(20), nullable=False, default="active",
                       comment="active | paused")
    is_enabled = db.Column(db.Boolean, nullable=False, default=True)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True)
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    run_count = db.Column(db.Integer, nullable=False, default=0)
    error_count = db.Column(db.Integer, nullable=False, default=0)
    skip_count = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @property
    def interval_seconds(self) -> int:
        seconds = (self.schedule_config or {}).get("seconds", DEFAULT_INTERVAL_SECONDS)
        return max(1, int(seconds))

    def set_enabled(self, enabled: bool) -> None:
        self.is_enabled = enabled
        self.status = "active" if enabled else "paused"

    def record_run(self, *, status="success", duration_ms=0, result=None, error=None,
                   now=None):
        """Record the outcome of one execution (or one skipped tick)."""
        if status not in RUN_STATUSES:
            raise ValueError(f"Unknown run status: {status}")
        self.last_run_at = now or _utcnow()
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        if status == "skipped":
            self.skip_count = (self.skip_count or 0) + 1
            return
        self.run_count = (self.run_count or 0) + 1
        if status == "failed":
            self.error_count = (self.error_count or 0) + 1
            self.last_error = str(error) if error else None

    def to_dict(self):
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "schedule_type": self.schedule_type,
            "interval_seconds": self.interval_seconds,
            "status": self.status,
            "is_enabled": self.is_enabled,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "skip_count": self.skip_count,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} every {self.interval_seconds}s [{self.status}]>"
