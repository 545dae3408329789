"""
HSE Corrective Action Platform
Progress Calculator: percentage completion for progress bars.

Weights:
    Completed = 1.0, In Progress = 0.5, anything else = 0.
Cancelled sub-actions are left out of the average; an Aborted corrective
action always reports 0.

Percentages are rounded half-to-even (Python ``round``).
"""

from __future__ import annotations

from typing import Iterable

from hse_app.models.status import ChildStatus, ParentStatus

SUB_ACTION_WEIGHTS = {
    ChildStatus.COMPLETED: 1.0,
    ChildStatus.IN_PROGRESS: 0.5,
    ChildStatus.NOT_STARTED: 0.0,
    ChildStatus.CANCELLED: 0.0,
}

CORRECTIVE_ACTION_WEIGHTS = {
    ParentStatus.COMPLETED: 1.0,
    ParentStatus.IN_PROGRESS: 0.5,
    ParentStatus.NOT_STARTED: 0.0,
    ParentStatus.ABORTED: 0.0,
}


def _percentage(weights: list[float]) -> int:
    if not weights:
        return 0
    return int(round(sum(weights) / len(weights) * 100))


def sub_actions_progress(statuses: Iterable) -> int:
    """Mean sub-action weight as a 0-100 percentage, Cancelled excluded."""
    parsed = [ChildStatus.parse(s) for s in statuses]
    return _percentage([
        SUB_ACTION_WEIGHTS[s] for s in parsed if s is not ChildStatus.CANCELLED
    ])


def corrective_action_progress(action) -> int:
    """Progress of one corrective action.

    Derived from its sub-actions; a childless action uses its own status.
    """
    status = ParentStatus.parse(action.status)
    if status is ParentStatus.ABORTED:
        return 0
    children = list(action.sub_actions)
    if not children:
        return _percentage([CORRECTIVE_ACTION_WEIGHTS[status]])
    return sub_actions_progress(c.status for c in children)


def overall_progress(statuses: Iterable) -> int:
    """Mean corrective-action weight as a 0-100 percentage (report-level bar)."""
    return _percentage([CORRECTIVE_ACTION_WEIGHTS[ParentStatus.parse(s)] for s in statuses])
