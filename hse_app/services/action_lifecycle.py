"""
HSE Corrective Action Platform
Corrective Action Lifecycle Service: the interactive mutation path.

Manages status changes with:
  - Transition validation (before any write)
  - Eager re-aggregation of the owning corrective action
  - Abort override with mandatory reason and who/when/why metadata
  - Audit trail + notifications through the AuditEventEmitter

Business rules:
  - A corrective action with sub-actions has a derived, read-only status;
    the only direct write it accepts is Aborted.
  - Aborting never touches the sub-actions and is never undone by
    aggregation.
  - Sub-actions of a completed or aborted corrective action are closed.
  - Side effects stay within one corrective action and its direct
    sub-actions.

Every public method is one unit of work: it commits on success and rolls
back on any error, which is raised to the caller unchanged (no retries).

Usage:
    from hse_app.services.action_lifecycle import ActionLifecycleService

    service = ActionLifecycleService.from_config(current_app.config)
    result = service.apply_sub_action_status_change(12, "Completed", actor="u-7")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from hse_app.core.exceptions import AbortReasonRequired, ParentIsTerminal
from hse_app.models.audit import write_audit
from hse_app.models.corrective_action import CorrectiveAction, SubAction
from hse_app.models.status import ChildStatus, ItemKind, ParentStatus
from hse_app.services.action_repository import ActionRepository
from hse_app.services.audit_events import AuditEventEmitter, ChangeEvent
from hse_app.services.status_rules import (
    derive_parent_state,
    is_overdue,
    validate_parent_write,
    validate_transition,
)
from hse_app.utils.helpers import utcnow

logger = logging.getLogger(__name__)


@dataclass
class StatusChangeResult:
    """Outcome of one interactive status change."""
    item_id: int
    item_kind: ItemKind
    previous_status: str
    new_status: str
    overdue: bool
    parent_id: int
    previous_parent_status: str
    new_parent_status: str
    parent_overdue: bool

    @property
    def parent_changed(self) -> bool:
        return self.previous_parent_status != self.new_parent_status

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "item_kind": self.item_kind.value,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "overdue": self.overdue,
            "parent_id": self.parent_id,
            "previous_parent_status": self.previous_parent_status,
            "new_parent_status": self.new_parent_status,
            "parent_overdue": self.parent_overdue,
        }


def reconcile_parent(
    parent: CorrectiveAction,
    children: list[SubAction],
    *,
    now: datetime,
    actor: str | None,
    repository: ActionRepository,
    emitter: AuditEventEmitter,
    completed_late_is_overdue: bool = False,
) -> ChangeEvent | None:
    """Bring a corrective action's derived status and overdue flag up to date.

    Shared by the eager mutation path and the reconciliation sweep. Writes
    and emits only when something actually changed; returns the emitted
    event, or None. The write is skipped when the stored status no longer
    matches the one the decision was based on.
    """
    old_status = parent.status
    old_overdue = bool(parent.overdue)
    status, overdue = derive_parent_state(
        old_status, parent.due_date, parent.completed_at,
        [c.status for c in children], now,
        completed_late_is_overdue=completed_late_is_overdue,
    )
    if status.value == old_status and overdue == old_overdue:
        return None

    if not repository.save_status(parent, status, overdue, now=now, expected_status=old_status):
        return None
    event = ChangeEvent(
        item_id=parent.id,
        item_kind=ItemKind.PARENT,
        old_status=old_status,
        new_status=status.value,
        actor=actor,
        timestamp=now,
        old_overdue=old_overdue,
        new_overdue=overdue,
        title=parent.title,
        assignee=parent.assigned_to_id,
        due_date=parent.due_date,
    )
    emitter.emit(event)
    return event


class ActionLifecycleService:
    """Applies validated status changes to corrective actions and sub-actions."""

    def __init__(self, repository: ActionRepository | None = None,
                 emitter: AuditEventEmitter | None = None,
                 *, completed_late_is_overdue: bool = False):
        self.repository = repository or ActionRepository()
        self.emitter = emitter or AuditEventEmitter()
        self.completed_late_is_overdue = completed_late_is_overdue

    @classmethod
    def from_config(cls, config) -> "ActionLifecycleService":
        return cls(completed_late_is_overdue=bool(config["COMPLETED_LATE_IS_OVERDUE"]))

    # ── Sub-action status change ─────────────────────────────────────────

    def apply_sub_action_status_change(
        self, sub_action_id, requested_status, actor, reason=None, *, now=None,
    ) -> StatusChangeResult:
        """
        Change a sub-action's status, then re-derive its corrective action.

        Raises:
            InvalidStatusValue, IllegalTransition, ParentIsTerminal,
            NotFoundError, PersistenceFailure
        """
        now = now or utcnow()
        requested = ChildStatus.parse(requested_status)
        repo = self.repository

        try:
            child = repo.get_sub_action(sub_action_id)
            parent = repo.get_corrective_action(child.corrective_action_id)
            parent_status = ParentStatus.parse(parent.status)
            previous = ChildStatus.parse(child.status)

            validate_transition(previous, requested, ItemKind.CHILD)
            if parent_status.is_terminal:
                raise ParentIsTerminal(parent.id, parent_status.value)

            old_overdue = bool(child.overdue)
            overdue = is_overdue(
                child.due_date, requested, now,
                completed_at=now if requested is ChildStatus.COMPLETED else None,
                completed_late_is_overdue=self.completed_late_is_overdue,
            )
            repo.save_status(child, requested, overdue, now=now)
            self.emitter.emit(ChangeEvent(
                item_id=child.id,
                item_kind=ItemKind.CHILD,
                old_status=previous.value,
                new_status=requested.value,
                actor=actor,
                timestamp=now,
                old_overdue=old_overdue,
                new_overdue=overdue,
                reason=reason,
                title=child.title,
                assignee=child.assigned_to_id,
                due_date=child.due_date,
            ))

            reconcile_parent(
                parent, repo.load_children(parent.id),
                now=now, actor=actor, repository=repo, emitter=self.emitter,
                completed_late_is_overdue=self.completed_late_is_overdue,
            )
            repo.commit()
        except Exception:
            repo.rollback()
            raise

        logger.info("Sub-action %s: %s → %s (corrective action %s: %s → %s) by %s",
                    child.id, previous.value, requested.value, parent.id,
                    parent_status.value, parent.status, actor,
                    extra={"corrective_action_id": parent.id, "sub_action_id": child.id,
                           "actor": actor})
        return StatusChangeResult(
            item_id=child.id,
            item_kind=ItemKind.CHILD,
            previous_status=previous.value,
            new_status=child.status,
            overdue=child.overdue,
            parent_id=parent.id,
            previous_parent_status=parent_status.value,
            new_parent_status=parent.status,
            parent_overdue=parent.overdue,
        )

    # ── Corrective action status change ──────────────────────────────────

    def apply_corrective_action_status_change(
        self, corrective_action_id, requested_status, actor, reason=None, *, now=None,
    ) -> StatusChangeResult:
        """
        Directly set a corrective action's status.

        Aborted is routed to ``abort_corrective_action``. Any other target is
        only accepted while the corrective action has no sub-actions.

        Raises:
            InvalidStatusValue, IllegalTransition, AggregatedStatusIsReadOnly,
            AbortReasonRequired, NotFoundError, PersistenceFailure
        """
        requested = ParentStatus.parse(requested_status)
        if requested is ParentStatus.ABORTED:
            return self.abort_corrective_action(corrective_action_id, actor, reason, now=now)

        now = now or utcnow()
        repo = self.repository
        try:
            parent = repo.get_corrective_action(corrective_action_id)
            children = repo.load_children(parent.id)
            previous = ParentStatus.parse(parent.status)
            validate_parent_write(parent.id, previous, requested, has_children=bool(children))

            old_overdue = bool(parent.overdue)
            overdue = is_overdue(
                parent.due_date, requested, now,
                completed_at=now if requested is ParentStatus.COMPLETED else None,
                completed_late_is_overdue=self.completed_late_is_overdue,
            )
            repo.save_status(parent, requested, overdue, now=now)
            self.emitter.emit(ChangeEvent(
                item_id=parent.id,
                item_kind=ItemKind.PARENT,
                old_status=previous.value,
                new_status=requested.value,
                actor=actor,
                timestamp=now,
                old_overdue=old_overdue,
                new_overdue=overdue,
                reason=reason,
                title=parent.title,
                assignee=parent.assigned_to_id,
                due_date=parent.due_date,
            ))
            repo.commit()
        except Exception:
            repo.rollback()
            raise

        logger.info("Corrective action %s: %s → %s by %s",
                    parent.id, previous.value, requested.value, actor,
                    extra={"corrective_action_id": parent.id, "actor": actor})
        return self._parent_result(parent, previous.value)

    def abort_corrective_action(self, corrective_action_id, actor, reason, *, now=None) -> StatusChangeResult:
        """
        Abort a corrective action: sticky override, skips aggregation,
        leaves sub-actions untouched.

        Raises:
            IllegalTransition, AbortReasonRequired, NotFoundError, PersistenceFailure
        """
        now = now or utcnow()
        repo = self.repository
        try:
            parent = repo.get_corrective_action(corrective_action_id)
            previous = ParentStatus.parse(parent.status)
            validate_transition(previous, ParentStatus.ABORTED, ItemKind.PARENT)
            if not reason or not str(reason).strip():
                raise AbortReasonRequired(parent.id)
            reason = str(reason).strip()

            old_overdue = bool(parent.overdue)
            repo.save_status(parent, ParentStatus.ABORTED, False, now=now)
            repo.save_abort_metadata(parent, actor, reason, now)
            self.emitter.emit(ChangeEvent(
                item_id=parent.id,
                item_kind=ItemKind.PARENT,
                old_status=previous.value,
                new_status=ParentStatus.ABORTED.value,
                actor=actor,
                timestamp=now,
                old_overdue=old_overdue,
                new_overdue=False,
                reason=reason,
                title=parent.title,
                assignee=parent.assigned_to_id,
                due_date=parent.due_date,
            ))
            repo.commit()
        except Exception:
            repo.rollback()
            raise

        logger.info("Corrective action %s aborted by %s: %s", parent.id, actor, reason,
                    extra={"corrective_action_id": parent.id, "actor": actor})
        return self._parent_result(parent, previous.value)

    # ── Creation ─────────────────────────────────────────────────────────

    def create_corrective_action(
        self, *, title, due_date, actor, description="", priority="Medium",
        hierarchy="", assigned_to_id=None, report_id=None, now=None,
    ) -> CorrectiveAction:
        """Create a corrective action in Not Started."""
        now = now or utcnow()
        repo = self.repository
        try:
            item = CorrectiveAction(
                title=title,
                description=description or "",
                due_date=due_date,
                status=ParentStatus.NOT_STARTED.value,
                priority=priority or "Medium",
                hierarchy=hierarchy or "",
                assigned_to_id=assigned_to_id,
                created_by_id=actor,
                report_id=report_id,
                overdue=is_overdue(due_date, ParentStatus.NOT_STARTED, now),
                created_at=now,
            )
            repo.add(item)
            write_audit(entity_type=ItemKind.PARENT.value, entity_id=item.id,
                        action="create", actor=actor, diff={"title": title}, timestamp=now)
            repo.commit()
        except Exception:
            repo.rollback()
            raise
        return item

    def add_sub_action(
        self, corrective_action_id, *, title, actor, due_date=None, description=None,
        assigned_to_id=None, now=None,
    ) -> SubAction:
        """Attach a new Not Started sub-action and re-derive the corrective action.

        Raises:
            ParentIsTerminal, NotFoundError, PersistenceFailure
        """
        now = now or utcnow()
        repo = self.repository
        try:
            parent = repo.get_corrective_action(corrective_action_id)
            parent_status = ParentStatus.parse(parent.status)
            if parent_status.is_terminal:
                raise ParentIsTerminal(parent.id, parent_status.value)

            child = SubAction(
                corrective_action_id=parent.id,
                title=title,
                description=description,
                due_date=due_date,
                status=ChildStatus.NOT_STARTED.value,
                assigned_to_id=assigned_to_id,
                overdue=is_overdue(due_date, ChildStatus.NOT_STARTED, now),
                created_at=now,
            )
            repo.add(child)
            write_audit(entity_type=ItemKind.CHILD.value, entity_id=child.id,
                        action="create", actor=actor,
                        diff={"title": title, "corrective_action_id": parent.id},
                        timestamp=now)
            reconcile_parent(
                parent, repo.load_children(parent.id),
                now=now, actor=actor, repository=repo, emitter=self.emitter,
                completed_late_is_overdue=self.completed_late_is_overdue,
            )
            repo.commit()
        except Exception:
            repo.rollback()
            raise
        return child

    # ── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _parent_result(parent: CorrectiveAction, previous: str) -> StatusChangeResult:
        return StatusChangeResult(
            item_id=parent.id,
            item_kind=ItemKind.PARENT,
            previous_status=previous,
            new_status=parent.status,
            overdue=parent.overdue,
            parent_id=parent.id,
            previous_parent_status=previous,
            new_parent_status=parent.status,
            parent_overdue=parent.overdue,
        )
