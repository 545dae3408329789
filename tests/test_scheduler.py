"""
Scheduler + scheduled jobs.

Covers:
    1. ScheduledJob run bookkeeping (success / failed / skipped)
    2. SchedulerService registration, execution, toggling, thread lifecycle
    3. status_reconciliation job (sweep result recorded, overlap recorded as skipped)
    4. deadline_reminder job (1 and 3 days before due, open items only)
    5. Startup config validation
"""

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from hse_app.config import validate_config
from hse_app.models import db
from hse_app.models.notification import Notification
from hse_app.models.scheduling import ScheduledJob
from hse_app.services.reconciliation import ReconciliationSweeper, SweepResult, SweepState
from hse_app.services.scheduled_jobs import send_deadline_reminders
from hse_app.services.scheduler_service import SchedulerService, get_registered_jobs

NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


def _job(name):
    db.session.expire_all()
    return ScheduledJob.query.filter_by(job_name=name).first()


# ═══════════════════════════════════════════════════════════════════════════
#  ScheduledJob model
# ═══════════════════════════════════════════════════════════════════════════

class TestScheduledJobModel:

    def test_record_run_success(self):
        j = ScheduledJob(job_name="j1")
        j.record_run(status="success", duration_ms=12, result={"ok": True})
        assert j.run_count == 1
        assert j.error_count == 0
        assert j.last_run_status == "success"

    def test_record_run_failure(self):
        j = ScheduledJob(job_name="j2")
        j.record_run(status="failed", duration_ms=3, error="boom")
        assert j.run_count == 1
        assert j.error_count == 1
        assert j.last_error == "boom"

    def test_record_run_skipped(self):
        j = ScheduledJob(job_name="j3")
        j.record_run(status="skipped")
        assert j.skip_count == 1
        assert not j.run_count


# ═══════════════════════════════════════════════════════════════════════════
#  SchedulerService
# ═══════════════════════════════════════════════════════════════════════════

class TestSchedulerService:

    def test_registered_jobs(self, app):
        jobs = get_registered_jobs()
        assert "status_reconciliation" in jobs
        assert "deadline_reminder" in jobs

    def test_ensure_jobs_registered(self, app):
        created = SchedulerService.ensure_jobs_registered()
        assert {j.job_name for j in created} >= {"status_reconciliation", "deadline_reminder"}
        sweep = _job("status_reconciliation")
        assert sweep.schedule_type == "interval"
        assert sweep.schedule_config["seconds"] == app.config["SWEEP_INTERVAL_SECONDS"]

        assert SchedulerService.ensure_jobs_registered() == []

    def test_run_unknown_job(self, app):
        result = SchedulerService.run_job("unknown_job_xyz")
        assert result["status"] == "error"
        assert "Unknown job" in result["error"]

    def test_toggle_job(self, app):
        SchedulerService.ensure_jobs_registered()
        result = SchedulerService.toggle_job("deadline_reminder", False)
        assert result["status"] == "paused"
        assert result["is_enabled"] is False
        assert SchedulerService.toggle_job("nonexistent", True) is None

    def test_job_exception_recorded_as_failed(self, app):
        SchedulerService.ensure_jobs_registered()
        with patch.object(ReconciliationSweeper, "run", side_effect=RuntimeError("kaboom")):
            result = SchedulerService.run_job("status_reconciliation")
        assert result["status"] == "failed"
        assert "kaboom" in result["error"]
        job = _job("status_reconciliation")
        assert job.error_count == 1
        assert job.last_error == "kaboom"

    def test_start_and_stop_thread(self, app):
        seen = {}

        def _fake_loop(stop_event):
            seen["event"] = stop_event
            stop_event.wait(5)

        with patch.object(SchedulerService, "_loop", _fake_loop):
            assert SchedulerService.start() is True
            assert SchedulerService.is_running()
            assert SchedulerService.start() is False
            SchedulerService.stop()

        assert not SchedulerService.is_running()
        assert seen["event"].is_set()

    def test_cancel_event_reaches_the_sweep(self, app):
        SchedulerService.ensure_jobs_registered()
        captured = []

        def _run(self, now=None, cancel_event=None):
            captured.append(cancel_event)
            return SweepResult(state=SweepState.IDLE, started_at=now)

        event = threading.Event()
        with patch.object(ReconciliationSweeper, "run", _run):
            SchedulerService.run_job("status_reconciliation", cancel_event=event)
            SchedulerService.run_job("status_reconciliation")

        assert captured == [event, None]


# ═══════════════════════════════════════════════════════════════════════════
#  status_reconciliation job
# ═══════════════════════════════════════════════════════════════════════════

class TestStatusReconciliationJob:

    def test_run_records_sweep_summary(self, app, make_action):
        SchedulerService.ensure_jobs_registered()
        make_action(status="In Progress", due_date=datetime(2020, 1, 1, tzinfo=timezone.utc))

        result = SchedulerService.run_job("status_reconciliation")

        assert result["status"] == "success"
        assert result["result"]["parents_changed"] == 1
        job = _job("status_reconciliation")
        assert job.run_count == 1
        assert job.last_run_result["items_scanned"] == 1

    def test_overlap_recorded_as_skipped(self, app):
        SchedulerService.ensure_jobs_registered()
        assert ReconciliationSweeper._lock.acquire(blocking=False)
        try:
            result = SchedulerService.run_job("status_reconciliation")
        finally:
            ReconciliationSweeper._lock.release()

        assert result["status"] == "skipped"
        job = _job("status_reconciliation")
        assert job.skip_count == 1
        assert job.run_count == 0
        assert job.last_run_status == "skipped"


# ═══════════════════════════════════════════════════════════════════════════
#  deadline_reminder job
# ═══════════════════════════════════════════════════════════════════════════

class TestDeadlineReminderJob:

    def test_reminders_one_and_three_days_out(self, app, make_action, make_sub_action):
        in_one = make_action(title="one", due_date=NOW + timedelta(days=1))
        in_three = make_action(title="three", due_date=NOW + timedelta(days=3),
                               status="In Progress")
        make_action(title="two", due_date=NOW + timedelta(days=2))
        make_action(title="done", due_date=NOW + timedelta(days=1), status="Completed",
                    completed_at=NOW)
        aborted = make_action(title="aborted", due_date=NOW + timedelta(days=3), status="Aborted")
        sub = make_sub_action(in_three, title="sub", due_date=NOW + timedelta(days=3),
                              status="In Progress", assigned_to_id="u-sub")
        make_sub_action(in_three, title="cancelled", due_date=NOW + timedelta(days=1),
                        status="Cancelled")
        make_sub_action(aborted, title="orphan", due_date=NOW + timedelta(days=1))

        result = send_deadline_reminders(app, now=NOW)

        assert result == {"corrective_actions": 2, "sub_actions": 1, "notifications_created": 3}
        notes = Notification.query.filter_by(category="deadline").all()
        assert {(n.entity_type, n.entity_id) for n in notes} == {
            ("corrective_action", in_one.id),
            ("corrective_action", in_three.id),
            ("sub_action", sub.id),
        }
        sub_note = next(n for n in notes if n.entity_type == "sub_action")
        assert sub_note.recipient == "u-sub"
        assert "3 day(s)" in sub_note.message

    def test_calendar_days_not_hours(self, app, make_action):
        late_evening = datetime(2026, 3, 11, 23, 59, 59, tzinfo=timezone.utc)
        make_action(title="tomorrow night", due_date=late_evening)
        result = send_deadline_reminders(app, now=NOW)
        assert result["corrective_actions"] == 1


# ═══════════════════════════════════════════════════════════════════════════
#  Config validation
# ═══════════════════════════════════════════════════════════════════════════

class TestConfigValidation:

    def test_testing_defaults(self, app):
        assert app.config["SCHEDULER_ENABLED"] is False
        assert app.config["COMPLETED_LATE_IS_OVERDUE"] is False
        assert app.config["SWEEP_PAGE_SIZE"] == 100

    @pytest.mark.parametrize("cfg", [
        {"SWEEP_PAGE_SIZE": 0, "SWEEP_INTERVAL_SECONDS": 300},
        {"SWEEP_PAGE_SIZE": 100, "SWEEP_INTERVAL_SECONDS": 0},
        {"SWEEP_PAGE_SIZE": 100, "SWEEP_INTERVAL_SECONDS": -5},
        {"SWEEP_PAGE_SIZE": 100, "SWEEP_INTERVAL_SECONDS": 300, "DEADLINE_REMINDER_DAYS": (0, 3)},
    ])
    def test_invalid_sweep_settings(self, cfg):
        with pytest.raises(RuntimeError):
            validate_config({**cfg, "TESTING": True})

    def test_valid_sweep_settings(self):
        validate_config({"SWEEP_PAGE_SIZE": 1, "SWEEP_INTERVAL_SECONDS": 1, "TESTING": True})

    def test_production_requires_database_url(self, monkeypatch):
        monkeypatch.setenv("SECRET_KEY", "s3cret")
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            validate_config({"SWEEP_PAGE_SIZE": 100, "SWEEP_INTERVAL_SECONDS": 300,
                             "SQLALCHEMY_DATABASE_URI": None})
