"""
HSE Corrective Action Platform
Scheduler Service.

In-process interval scheduler. One daemon thread wakes up, runs every
enabled job whose interval has elapsed, and sleeps until the next one is
due. The same jobs can be run on demand through ``run_job`` (API trigger).

    register_job(name)          decorator adding ``fn(app, cancel_event=None)``
    SchedulerService.start()    start the thread (jobs get its stop event)
    SchedulerService.stop()     set the stop event and join the thread
    SchedulerService.run_job()  run one job in an app context, record the outcome
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import nullcontext
from typing import Callable

from flask import Flask, current_app, has_app_context

from hse_app.models import db
from hse_app.models.scheduling import DEFAULT_INTERVAL_SECONDS, RUN_STATUSES, ScheduledJob

logger = logging.getLogger(__name__)

MAX_SLEEP_SECONDS = 60.0

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Register a job function under *name*.

    The function is called as ``fn(app, cancel_event=event)`` and returns a
    JSON-able dict. A ``"status"`` entry in that dict (``skipped``,
    ``cancelled``, ``failed``) replaces the default ``success``.
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    return dict(_job_registry)


class SchedulerService:
    """Class-level scheduler bound to one Flask app by ``init_app``."""

    _app: Flask | None = None
    _thread: threading.Thread | None = None
    _stop_event: threading.Event = threading.Event()

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("Scheduler bound with jobs: %s", ", ".join(sorted(_job_registry)))

    # ── Thread lifecycle ─────────────────────────────────────────────────

    @classmethod
    def start(cls) -> bool:
        """Start the interval thread. Returns False if it is already running."""
        if cls._app is None:
            raise RuntimeError("Scheduler not initialized")
        if cls.is_running():
            return False
        cls.ensure_jobs_registered()
        cls._stop_event = threading.Event()
        cls._thread = threading.Thread(
            target=cls._loop, args=(cls._stop_event,),
            name="hse-scheduler", daemon=True,
        )
        cls._thread.start()
        logger.info("Scheduler thread started")
        return True

    @classmethod
    def stop(cls, timeout: float | None = 10.0) -> None:
        """Stop the thread. A sweep in progress ends after its current page."""
        cls._stop_event.set()
        thread = cls._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout)
        cls._thread = None
        logger.info("Scheduler thread stopped")

    @classmethod
    def is_running(cls) -> bool:
        return cls._thread is not None and cls._thread.is_alive()

    @classmethod
    def _due_jobs(cls, next_run: dict[str, float], now: float) -> list[str]:
        due = []
        with cls._app.app_context():
            records = {r.job_name: r for r in ScheduledJob.query.all()}
            for name in _job_registry:
                record = records.get(name)
                if record is not None and not record.is_enabled:
                    next_run.pop(name, None)
                    continue
                interval = _interval_seconds(record, name, cls._app)
                next_run.setdefault(name, now + interval)
                if now >= next_run[name]:
                    due.append(name)
                    next_run[name] = now + interval
        return due

    @classmethod
    def _loop(cls, stop_event: threading.Event) -> None:
        # First runs happen one interval after start, not at start
        next_run: dict[str, float] = {}
        while not stop_event.is_set():
            try:
                due = cls._due_jobs(next_run, time.monotonic())
            except Exception:
                logger.exception("Scheduler could not read job records")
                due = []
            for name in due:
                if stop_event.is_set():
                    break
                cls.run_job(name, cancel_event=stop_event)
            wake_at = min(next_run.values(), default=time.monotonic() + MAX_SLEEP_SECONDS)
            stop_event.wait(min(max(0.0, wake_at - time.monotonic()), MAX_SLEEP_SECONDS))

    # ── Job records ──────────────────────────────────────────────────────

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Create a ScheduledJob row for every registered job that lacks one."""
        if cls._app is None:
            return []
        created = []
        with cls._context():
            existing = {name for (name,) in db.session.query(ScheduledJob.job_name)}
            for name, fn in _job_registry.items():
                if name in existing:
                    continue
                doc = (fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0]
                job = ScheduledJob(
                    job_name=name,
                    description=doc,
                    schedule_type="interval",
                    schedule_config=_get_default_schedule(name, cls._app),
                )
                job.set_enabled(True)
                db.session.add(job)
                created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created))
        return created

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """Registered jobs with their records, by name. Rows of unknown jobs are left out."""
        records = {r.job_name: r for r in ScheduledJob.query.all()}
        jobs = []
        for name in sorted(_job_registry):
            record = records.get(name)
            jobs.append(record.to_dict() if record else {"job_name": name, "db_record": None})
        return jobs

    @classmethod
    def get_job_status(cls, job_name: str) -> dict | None:
        record = ScheduledJob.query.filter_by(job_name=job_name).first()
        return record.to_dict() if record else None

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if not record:
            return None
        record.set_enabled(enabled)
        db.session.commit()
        logger.info("Job %s %s", job_name, "enabled" if enabled else "paused",
                    extra={"job_name": job_name})
        return record.to_dict()

    # ── Execution ────────────────────────────────────────────────────────

    @classmethod
    def run_job(cls, job_name: str, cancel_event: threading.Event | None = None) -> dict:
        """
        Run *job_name* once and record the outcome on its ScheduledJob row.

        Exceptions from the job are caught, logged and recorded as
        ``failed``; they never reach the scheduler thread or the API caller.

        Returns:
            {"job_name", "status", "duration_ms", "result", "error"}
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"status": "error", "error": f"Unknown job: {job_name}"}
        if cls._app is None:
            return {"status": "error", "error": "Scheduler not initialized"}

        started = time.monotonic()
        result, error, status = None, None, "success"
        try:
            with cls._context():
                result = fn(cls._app, cancel_event=cancel_event)
        except Exception as exc:
            with cls._context():
                db.session.rollback()
            status, error = "failed", str(exc)
            logger.exception("Job %s failed: %s", job_name, exc, extra={"job_name": job_name})

        if isinstance(result, dict) and result.get("status") in RUN_STATUSES:
            status = result["status"]
        duration_ms = int((time.monotonic() - started) * 1000)
        cls._record(job_name, status, duration_ms, result, error)

        logger.info("Job %s finished: %s", job_name, status,
                    extra={"job_name": job_name, "duration_ms": duration_ms})
        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def _record(cls, job_name, status, duration_ms, result, error) -> None:
        with cls._context():
            try:
                record = ScheduledJob.query.filter_by(job_name=job_name).first()
                if record is None:
                    return
                record.record_run(
                    status=status,
                    duration_ms=duration_ms,
                    result=result if isinstance(result, dict) else {"output": str(result)},
                    error=error,
                )
                db.session.commit()
            except Exception:
                db.session.rollback()
                logger.exception("Failed to update job record for %s", job_name,
                                 extra={"job_name": job_name})

    @classmethod
    def _context(cls):
        """Reuse the caller's app context when it belongs to our app."""
        if has_app_context() and current_app._get_current_object() is cls._app:
            return nullcontext()
        return cls._app.app_context()


def _get_default_schedule(job_name: str, app: Flask) -> dict:
    intervals = {
        "status_reconciliation": int(app.config.get("SWEEP_INTERVAL_SECONDS", 300)),
        "deadline_reminder": int(app.config.get("DEADLINE_REMINDER_INTERVAL_SECONDS",
                                                DEFAULT_INTERVAL_SECONDS)),
    }
    seconds = intervals.get(job_name, DEFAULT_INTERVAL_SECONDS)
    return {"seconds": seconds, "description": f"Every {seconds} seconds"}


def _interval_seconds(record: ScheduledJob | None, job_name: str, app: Flask) -> int:
    if record is not None:
        return record.interval_seconds
    return _get_default_schedule(job_name, app)["seconds"]
