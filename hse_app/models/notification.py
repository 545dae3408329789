"""
HSE Corrective Action Platform
In-app notifications raised by the corrective action lifecycle.

A notification points at the corrective action or sub-action it is about
(``entity_type`` / ``entity_id``) and is addressed to one assignee, or to
``"all"`` when the item has nobody assigned.
"""

from datetime import datetime, timezone

from hse_app.models import db

NOTIFICATION_CATEGORIES = {"action", "deadline"}
NOTIFICATION_SEVERITIES = {"info", "warning"}
BROADCAST = "all"

_LINKS = {
    "corrective_action": "/corrective-actions/{id}",
    "sub_action": "/sub-actions/{id}",
}


class Notification(db.Model):
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("idx_notification_recipient_read", "recipient", "is_read"),
    )

    id = db.Column(db.Integer, primary_key=True)
    recipient = db.Column(db.String(450), nullable=False, default=BROADCAST,
                          comment="Assignee user id, or 'all'")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    category = db.Column(db.String(20), nullable=False, default="action",
                         comment="action | deadline")
    severity = db.Column(db.String(20), nullable=False, default="info")

    entity_type = db.Column(db.String(30), nullable=False,
                            comment="corrective_action | sub_action")
    entity_id = db.Column(db.Integer, nullable=False)

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    @property
    def link(self) -> str | None:
        """API path of the item this notification is about."""
        template = _LINKS.get(self.entity_type)
        return template.format(id=self.entity_id) if template else None

    def mark_read(self, now: datetime) -> bool:
        """Flag as read. Returns False when it already was."""
        if self.is_read:
            return False
        self.is_read = True
        self.read_at = now
        return True

    def to_dict(self):
        return {
            "id": self.id,
            "recipient": self.recipient,
            "title": self.title,
            "message": self.message,
            "category": self.category,
            "severity": self.severity,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "link": self.link,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id} {self.entity_type}/{self.entity_id} -> {self.recipient}>"
