"""
HSE Corrective Action Platform
Audit Events: the audit/notification boundary of the lifecycle engine.

Every realised status or overdue-flag change produces exactly one
ChangeEvent, handed to ``AuditEventEmitter.emit``. The emitter appends an
AuditLog row and, when an item newly becomes overdue or is aborted, an
in-app notification for the assignee. Nothing is committed here.

Usage:
    emitter = AuditEventEmitter()
    emitter.emit(ChangeEvent(item_id=7, item_kind=ItemKind.CHILD,
                             old_status="In Progress", new_status="Completed",
                             actor="u-1", timestamp=now))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from hse_app.models.audit import AuditLog, write_audit
from hse_app.models.status import ItemKind, ParentStatus
from hse_app.services.notification import NotificationService

logger = logging.getLogger(__name__)


@dataclass
class ChangeEvent:
    """One realised change on one item. ``actor`` is None for sweep changes."""
    item_id: int
    item_kind: ItemKind
    old_status: str
    new_status: str
    actor: str | None
    timestamp: datetime
    old_overdue: bool | None = None
    new_overdue: bool | None = None
    reason: str | None = None
    title: str = ""
    assignee: str | None = None
    due_date: datetime | None = None

    @property
    def status_changed(self) -> bool:
        return self.old_status != self.new_status

    @property
    def overdue_changed(self) -> bool:
        return self.new_overdue is not None and self.old_overdue != self.new_overdue

    @property
    def action(self) -> str:
        kind = self.item_kind.value
        if self.item_kind is ItemKind.PARENT and self.new_status == ParentStatus.ABORTED.value \
                and self.status_changed:
            return f"{kind}.abort"
        if self.status_changed:
            return f"{kind}.status_change"
        return f"{kind}.overdue_change"

    def to_diff(self) -> dict:
        diff = {"status": {"old": self.old_status, "new": self.new_status}}
        if self.new_overdue is not None:
            diff["overdue"] = {"old": self.old_overdue, "new": self.new_overdue}
        if self.reason:
            diff["reason"] = self.reason
        return diff


class AuditEventEmitter:
    """Writes ChangeEvents to the audit trail and raises notifications."""

    def emit(self, event: ChangeEvent) -> AuditLog:
        log = write_audit(
            entity_type=event.item_kind.value,
            entity_id=event.item_id,
            action=event.action,
            actor=event.actor,
            diff=event.to_diff(),
            timestamp=event.timestamp,
        )

        if event.overdue_changed and event.new_overdue and event.due_date is not None:
            NotificationService.notify_overdue(
                entity_type=event.item_kind.value,
                entity_id=event.item_id,
                title=event.title,
                due_date=event.due_date,
                recipient=event.assignee,
            )
        if event.action == "corrective_action.abort":
            NotificationService.notify_aborted(
                entity_id=event.item_id,
                title=event.title,
                actor=event.actor,
                reason=event.reason,
                recipient=event.assignee,
            )

        logger.debug("Audit %s on %s/%s by %s", event.action,
                     event.item_kind.value, event.item_id, event.actor or "system")
        return log
