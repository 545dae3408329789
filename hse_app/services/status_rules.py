"""
HSE Corrective Action Platform
Status Rules: aggregation, overdue evaluation and transition validation.

Pure functions with no database or clock access. The interactive mutation
path (action_lifecycle) and the reconciliation sweep (reconciliation) both
call into this module, so the two paths always agree.

Usage:
    from hse_app.services.status_rules import aggregate_parent_status, is_overdue

    status = aggregate_parent_status(ParentStatus.IN_PROGRESS, [ChildStatus.COMPLETED])
    late = is_overdue(due, status, now)
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Iterable

from hse_app.core.exceptions import (
    AggregatedStatusIsReadOnly,
    IllegalTransition,
    InvalidStatusValue,
)
from hse_app.models.status import ChildStatus, ItemKind, ParentStatus
from hse_app.utils.helpers import as_utc


# ── Transition rules ─────────────────────────────────────────────────────────

PARENT_TRANSITIONS = {
    ParentStatus.NOT_STARTED: [ParentStatus.IN_PROGRESS, ParentStatus.ABORTED],
    ParentStatus.IN_PROGRESS: [ParentStatus.COMPLETED, ParentStatus.ABORTED],
    ParentStatus.COMPLETED: [ParentStatus.ABORTED],
    ParentStatus.ABORTED: [],
}

CHILD_TRANSITIONS = {
    ChildStatus.NOT_STARTED: [ChildStatus.IN_PROGRESS, ChildStatus.CANCELLED],
    ChildStatus.IN_PROGRESS: [ChildStatus.COMPLETED, ChildStatus.CANCELLED],
    ChildStatus.COMPLETED: [],
    ChildStatus.CANCELLED: [],
}

_TRANSITIONS = {ItemKind.PARENT: PARENT_TRANSITIONS, ItemKind.CHILD: CHILD_TRANSITIONS}


def validate_transition(current, requested, kind: ItemKind) -> None:
    """Raise IllegalTransition unless *current* → *requested* is an allowed edge.

    Both statuses may be given as strings; they are parsed with the status
    type of *kind* (InvalidStatusValue on garbage).
    """
    status_type = kind.status_type
    current = status_type.parse(current)
    requested = status_type.parse(requested)
    if requested not in _TRANSITIONS[kind][current]:
        raise IllegalTransition(current.value, requested.value, kind.value)


def validate_parent_write(item_id, current, requested, *, has_children: bool) -> None:
    """Validate a direct status write on a corrective action.

    The read-only check runs first: a parent with sub-actions only accepts
    the abort override, whatever its current status.
    """
    requested = ParentStatus.parse(requested)
    if has_children and requested is not ParentStatus.ABORTED:
        raise AggregatedStatusIsReadOnly(item_id, requested.value)
    validate_transition(current, requested, ItemKind.PARENT)


def available_transitions(current, kind: ItemKind, *, has_children: bool = False) -> list[str]:
    """List the statuses *current* may move to, for presentation."""
    current = kind.status_type.parse(current)
    targets = _TRANSITIONS[kind][current]
    if kind is ItemKind.PARENT and has_children:
        targets = [t for t in targets if t is ParentStatus.ABORTED]
    return [t.value for t in targets]


# ── Aggregation ──────────────────────────────────────────────────────────────

def aggregate_parent_status(parent_current_status, child_statuses: Iterable) -> ParentStatus:
    """Derive a corrective action's status from its sub-actions.

    Rules, first match wins:
      1. Aborted parent stays Aborted (children ignored).
      2. No children: the stored status stands.
      3. All children Not Started or Cancelled → Not Started.
      4. Any child In Progress → In Progress.
      5. Not Started mixed with Completed/Cancelled → In Progress.
      6. All Completed/Cancelled with at least one Completed → Completed.
      7. Otherwise → Not Started.
    """
    parent = ParentStatus.parse(parent_current_status)
    if parent is ParentStatus.ABORTED:
        return ParentStatus.ABORTED

    counts = Counter(ChildStatus.parse(s) for s in child_statuses)
    if not counts:
        return parent

    not_started = counts[ChildStatus.NOT_STARTED]
    in_progress = counts[ChildStatus.IN_PROGRESS]
    completed = counts[ChildStatus.COMPLETED]
    cancelled = counts[ChildStatus.CANCELLED]

    if in_progress == 0 and completed == 0:
        return ParentStatus.NOT_STARTED
    if in_progress > 0:
        return ParentStatus.IN_PROGRESS
    if (not_started > 0 or in_progress > 0) and (completed > 0 or cancelled > 0):
        return ParentStatus.IN_PROGRESS
    if completed > 0:
        return ParentStatus.COMPLETED
    return ParentStatus.NOT_STARTED


# ── Overdue ──────────────────────────────────────────────────────────────────

def is_overdue(
    due_date: datetime | None,
    status,
    now: datetime,
    *,
    completed_at: datetime | None = None,
    completed_late_is_overdue: bool = False,
) -> bool:
    """Return True when the item's due date has passed and it still counts as late.

    *status* may be a ParentStatus, a ChildStatus or its stored string;
    "Completed" and "Not Started"/"In Progress" mean the same thing for both.

    Completed items are never overdue unless *completed_late_is_overdue* is
    set and the recorded completion happened after the due date; in that
    case the answer no longer depends on *now*.
    """
    if due_date is None:
        return False
    if not isinstance(status, (ParentStatus, ChildStatus)):
        status = _parse_any(status)

    value = status.value
    if value in (ParentStatus.ABORTED.value, ChildStatus.CANCELLED.value):
        return False

    due = as_utc(due_date)
    if value == ParentStatus.COMPLETED.value:
        if completed_late_is_overdue and completed_at is not None:
            return as_utc(completed_at) > due
        return False
    return due < as_utc(now)


def derive_parent_state(
    current_status,
    due_date: datetime,
    completed_at: datetime | None,
    child_statuses: Iterable,
    now: datetime,
    *,
    completed_late_is_overdue: bool = False,
) -> tuple[ParentStatus, bool]:
    """Return the (status, overdue) pair a corrective action should hold.

    A parent that becomes Completed now is treated as completed at *now*,
    which is what the persistence layer stamps when the change is saved.
    """
    current = ParentStatus.parse(current_status)
    status = aggregate_parent_status(current, child_statuses)
    if status is ParentStatus.COMPLETED:
        if current is not ParentStatus.COMPLETED or completed_at is None:
            completed_at = now
    else:
        completed_at = None
    overdue = is_overdue(
        due_date, status, now,
        completed_at=completed_at,
        completed_late_is_overdue=completed_late_is_overdue,
    )
    return status, overdue


def _parse_any(raw: str):
    try:
        return ParentStatus.parse(raw)
    except InvalidStatusValue:
        return ChildStatus.parse(raw)
