"""
HSE Corrective Action Platform
Notification Service.

Central service for creating in-app notifications about corrective actions
and sub-actions (overdue, deadline approaching, aborted).

Records are only flushed: notifications belong to the same transaction as
the status change that caused them.
"""

from hse_app.models import db
from hse_app.models.notification import (
    BROADCAST,
    NOTIFICATION_CATEGORIES,
    NOTIFICATION_SEVERITIES,
    Notification,
)


def _label(entity_type: str) -> str:
    return "Corrective action" if entity_type == "corrective_action" else "Sub-action"


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, title, entity_type, entity_id, message="", category="action",
               severity="info", recipient=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (flushed, not committed).
        """
        if category not in NOTIFICATION_CATEGORIES:
            raise ValueError(f"Unknown notification category: {category}")
        if severity not in NOTIFICATION_SEVERITIES:
            raise ValueError(f"Unknown notification severity: {severity}")
        notif = Notification(
            recipient=recipient or BROADCAST,
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.session.add(notif)
        db.session.flush()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient=BROADCAST, unread_only=False, limit=50, offset=0):
        """Notifications addressed to *recipient* or broadcast, newest first."""
        q = Notification.query.filter(Notification.recipient.in_({recipient, BROADCAST}))
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (q.order_by(Notification.created_at.desc(), Notification.id.desc())
                 .offset(offset).limit(limit).all())
        return items, total

    # ── Lifecycle helpers ─────────────────────────────────────────────────

    @staticmethod
    def notify_overdue(*, entity_type, entity_id, title, due_date, recipient=None):
        """Tell the assignee an item just became overdue."""
        return NotificationService.create(
            title=f"{_label(entity_type)} '{title}' is overdue",
            message=f"{title}: due date was {due_date:%b %d, %Y}.",
            category="deadline",
            severity="warning",
            recipient=recipient,
            entity_type=entity_type,
            entity_id=entity_id,
        )

    @staticmethod
    def notify_deadline_approaching(*, entity_type, entity_id, title, due_date,
                                    days_until_due, recipient=None):
        label = _label(entity_type)
        return NotificationService.create(
            title=f"{label} Deadline Approaching",
            message=(
                f"{label} '{title}' is due in {days_until_due} day(s) "
                f"on {due_date:%b %d, %Y}."
            ),
            category="deadline",
            severity="info",
            recipient=recipient,
            entity_type=entity_type,
            entity_id=entity_id,
        )

    @staticmethod
    def notify_aborted(*, entity_id, title, actor, reason, recipient=None):
        return NotificationService.create(
            title=f"Corrective action '{title}' was aborted",
            message=f"Aborted by {actor}: {reason}",
            category="action",
            severity="warning",
            recipient=recipient,
            entity_type="corrective_action",
            entity_id=entity_id,
        )
