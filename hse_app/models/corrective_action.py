"""
HSE Corrective Action Platform
Corrective action domain models.

Models:
    - CorrectiveAction: work item opened in response to a safety incident
    - SubAction:        unit of work owned by exactly one corrective action

Architecture:
    CorrectiveAction ──1:N──▶ SubAction

Lifecycle states:
    CorrectiveAction:  Not Started → In Progress → Completed  |  any → Aborted
                       (derived from sub-actions unless Aborted)
    SubAction:         Not Started → In Progress → Completed  |  → Cancelled

``status`` columns hold the display values of ParentStatus / ChildStatus.
``overdue`` is derived (see services/status_rules.is_overdue) and persisted
for fast reads; the reconciliation sweep keeps it current.
"""

from datetime import datetime, timezone

from hse_app.models import db
from hse_app.models.status import ChildStatus, ParentStatus


PRIORITIES = {"Low", "Medium", "High", "Critical"}


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class CorrectiveAction(db.Model):
    """
    Corrective action (parent work item).

    Abort metadata (aborted_by_id / aborted_at / abort_reason) is only set
    when status is Aborted.
    """

    __tablename__ = "corrective_actions"
    __table_args__ = (
        db.Index("idx_ca_status_id", "status", "id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(500), default="")
    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(
        db.String(50), nullable=False, default=ParentStatus.NOT_STARTED.value,
        comment="Not Started | In Progress | Completed | Aborted",
    )
    priority = db.Column(db.String(20), default="Medium")
    hierarchy = db.Column(db.String(100), default="", comment="Classification tag")

    report_id = db.Column(db.Integer, nullable=True, index=True,
                          comment="Originating incident report (nullable for standalone actions)")
    assigned_to_id = db.Column(db.String(450), nullable=True, index=True)
    created_by_id = db.Column(db.String(450), nullable=True)

    overdue = db.Column(db.Boolean, nullable=False, default=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    aborted_by_id = db.Column(db.String(450), nullable=True)
    aborted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    abort_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    sub_actions = db.relationship(
        "SubAction", back_populates="corrective_action",
        order_by="SubAction.id", lazy="select",
    )

    @property
    def parent_status(self) -> ParentStatus:
        return ParentStatus.parse(self.status)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "due_date": _iso(self.due_date),
            "status": self.status,
            "priority": self.priority,
            "hierarchy": self.hierarchy,
            "report_id": self.report_id,
            "assigned_to_id": self.assigned_to_id,
            "created_by_id": self.created_by_id,
            "overdue": self.overdue,
            "completed_at": _iso(self.completed_at),
            "aborted_by_id": self.aborted_by_id,
            "aborted_at": _iso(self.aborted_at),
            "abort_reason": self.abort_reason,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<CorrectiveAction {self.id} [{self.status}]>"


class SubAction(db.Model):
    """Sub-action (child work item). Due date is optional."""

    __tablename__ = "sub_actions"

    id = db.Column(db.Integer, primary_key=True)
    corrective_action_id = db.Column(
        db.Integer, db.ForeignKey("corrective_actions.id"), nullable=False, index=True,
    )
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default=ChildStatus.NOT_STARTED.value,
        comment="Not Started | In Progress | Completed | Cancelled",
    )
    assigned_to_id = db.Column(db.String(450), nullable=True, index=True)

    overdue = db.Column(db.Boolean, nullable=False, default=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    corrective_action = db.relationship("CorrectiveAction", back_populates="sub_actions")

    def to_dict(self):
        return {
            "id": self.id,
            "corrective_action_id": self.corrective_action_id,
            "title": self.title,
            "description": self.description,
            "due_date": _iso(self.due_date),
            "status": self.status,
            "assigned_to_id": self.assigned_to_id,
            "overdue": self.overdue,
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<SubAction {self.id} [{self.status}] of CA {self.corrective_action_id}>"
