"""
HSE Corrective Action Platform
Scheduled Jobs.

Concrete job implementations run by SchedulerService.

Jobs:
    - status_reconciliation: periodic sweep re-deriving statuses and overdue flags
    - deadline_reminder: in-app reminders 1 and 3 days before a due date
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select

from hse_app.models import db
from hse_app.models.corrective_action import CorrectiveAction, SubAction
from hse_app.models.status import ChildStatus, ItemKind, ParentStatus
from hse_app.services.notification import NotificationService
from hse_app.services.reconciliation import ReconciliationSweeper
from hse_app.services.scheduler_service import register_job
from hse_app.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_DAYS = (1, 3)

_OPEN_PARENT = (ParentStatus.NOT_STARTED.value, ParentStatus.IN_PROGRESS.value)
_OPEN_CHILD = (ChildStatus.NOT_STARTED.value, ChildStatus.IN_PROGRESS.value)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Status reconciliation
# ═══════════════════════════════════════════════════════════════════════════

@register_job("status_reconciliation")
def run_status_reconciliation(app, cancel_event=None, now: datetime | None = None) -> dict[str, Any]:
    """Re-derive status and overdue flags of every active corrective action."""
    sweeper = ReconciliationSweeper.from_config(app.config)
    result = sweeper.run(now=now or utcnow(), cancel_event=cancel_event)
    return result.to_dict()


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Deadline reminder
# ═══════════════════════════════════════════════════════════════════════════

def _days_until(due_date: datetime, now: datetime) -> int:
    return (as_utc(due_date).date() - as_utc(now).date()).days


@register_job("deadline_reminder")
def send_deadline_reminders(app, cancel_event=None, now: datetime | None = None) -> dict[str, Any]:
    """Notify assignees of open items due in exactly DEADLINE_REMINDER_DAYS days (1 and 3)."""
    reminder_days = set(app.config.get("DEADLINE_REMINDER_DAYS", DEFAULT_REMINDER_DAYS))
    now = now or utcnow()
    results = {"corrective_actions": 0, "sub_actions": 0, "notifications_created": 0}

    actions = db.session.execute(
        select(CorrectiveAction).where(CorrectiveAction.status.in_(_OPEN_PARENT))
    ).scalars().all()
    for action in actions:
        days = _days_until(action.due_date, now)
        if days not in reminder_days:
            continue
        NotificationService.notify_deadline_approaching(
            entity_type=ItemKind.PARENT.value,
            entity_id=action.id,
            title=action.title,
            due_date=action.due_date,
            days_until_due=days,
            recipient=action.assigned_to_id,
        )
        results["corrective_actions"] += 1

    sub_actions = db.session.execute(
        select(SubAction)
        .join(CorrectiveAction, SubAction.corrective_action_id == CorrectiveAction.id)
        .where(
            SubAction.status.in_(_OPEN_CHILD),
            SubAction.due_date.is_not(None),
            CorrectiveAction.status.in_(_OPEN_PARENT),
        )
    ).scalars().all()
    for sub in sub_actions:
        days = _days_until(sub.due_date, now)
        if days not in reminder_days:
            continue
        NotificationService.notify_deadline_approaching(
            entity_type=ItemKind.CHILD.value,
            entity_id=sub.id,
            title=sub.title,
            due_date=sub.due_date,
            days_until_due=days,
            recipient=sub.assigned_to_id,
        )
        results["sub_actions"] += 1

    results["notifications_created"] = results["corrective_actions"] + results["sub_actions"]
    db.session.commit()
    logger.info("Deadline reminders: %d created", results["notifications_created"],
                extra={"job_name": "deadline_reminder"})
    return results
