"""
HSE Corrective Action Platform
Audit domain model.

Models:
    - AuditLog: append-only record of every realised change to a corrective
      action or sub-action (creation, status, overdue flag, abort).
"""

import json
from datetime import datetime, timezone

from hse_app.models import db

AUDIT_ENTITY_TYPES = {"corrective_action", "sub_action"}

AUDIT_ACTIONS = {
    "create",
    "corrective_action.status_change",
    "corrective_action.overdue_change",
    "corrective_action.abort",
    "sub_action.status_change",
    "sub_action.overdue_change",
}

SYSTEM_ACTOR = "system"


class AuditLog(db.Model):
    """
    One row per change event.

    ``diff_json`` holds ``{"status": {"old", "new"}, "overdue": {...},
    "reason": ...}``. Rows written by the reconciliation sweep carry the
    actor ``"system"``.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(30), nullable=False,
                            comment="corrective_action | sub_action")
    entity_id = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(60), nullable=False)
    actor = db.Column(db.String(450), nullable=False, default=SYSTEM_ACTOR)
    diff_json = db.Column(db.Text, default="{}")
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False,
                          default=lambda: datetime.now(timezone.utc))

    @property
    def diff(self) -> dict:
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    @classmethod
    def trail(cls, corrective_action_id: int, sub_action_ids=()):
        """Rows for a corrective action and the given sub-actions, oldest first."""
        cond = db.and_(cls.entity_type == "corrective_action",
                       cls.entity_id == corrective_action_id)
        if sub_action_ids:
            cond = db.or_(cond, db.and_(cls.entity_type == "sub_action",
                                        cls.entity_id.in_(list(sub_action_ids))))
        return cls.query.filter(cond).order_by(cls.timestamp, cls.id).all()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


def write_audit(
    *,
    entity_type: str,
    entity_id: int,
    action: str,
    actor: str | None = None,
    diff: dict | None = None,
    timestamp: datetime | None = None,
) -> AuditLog:
    """
    Append a single audit row. Uses ``flush`` so callers keep
    transaction control.
    """
    if entity_type not in AUDIT_ENTITY_TYPES:
        raise ValueError(f"Unknown audit entity type: {entity_type}")
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    log = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor=actor or SYSTEM_ACTOR,
        diff_json=json.dumps(diff or {}, default=str),
    )
    if timestamp is not None:
        log.timestamp = timestamp
    db.session.add(log)
    db.session.flush()
    return log
