"""
HSE Corrective Action Platform
Reconciliation Sweeper: periodic re-evaluation of every active corrective action.

The sweep corrects drift the eager mutation path cannot see: overdue flags
that flip purely because time passed, and derived statuses left stale by a
lost write. It uses the same rules as the mutation path (status_rules +
reconcile_parent), so after a clean eager change a sweep finds nothing to do.

Flow per page (keyset paginated, ordered by id, Aborted excluded):
    1. re-read the corrective action row; skip it if it was aborted meanwhile
    2. recompute each sub-action's overdue flag, persist only changes
    3. re-derive the corrective action's status and overdue flag
    4. one ChangeEvent per item that actually changed
    5. commit the page

Writes are compare-and-set on the status the decision was based on. The
sweep never writes a sub-action's status, only its overdue flag.

Each corrective action (with its sub-actions) runs in its own savepoint; a
failure there is counted and skipped. A page-level failure ends the run.
Only one sweep runs per process: an overlapping request returns Skipped.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from hse_app.models.status import ChildStatus, ItemKind, ParentStatus
from hse_app.services.action_lifecycle import reconcile_parent
from hse_app.services.action_repository import DEFAULT_PAGE_SIZE, ActionRepository
from hse_app.services.audit_events import AuditEventEmitter, ChangeEvent
from hse_app.services.status_rules import is_overdue
from hse_app.utils.helpers import utcnow

logger = logging.getLogger(__name__)


class SweepState(str, Enum):
    IDLE = "Idle"
    RUNNING = "Running"
    SKIPPED = "Skipped"


@dataclass
class SweepResult:
    """Summary of one sweep run; ``to_dict`` feeds the job-run record."""
    state: SweepState
    status: str = "success"
    pages: int = 0
    items_scanned: int = 0
    parents_changed: int = 0
    children_changed: int = 0
    failed: int = 0
    failures: list[dict] = field(default_factory=list)
    cancelled: bool = False
    started_at: datetime | None = None
    duration_ms: int = 0

    @property
    def changed(self) -> int:
        return self.parents_changed + self.children_changed

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "status": self.status,
            "pages": self.pages,
            "items_scanned": self.items_scanned,
            "parents_changed": self.parents_changed,
            "children_changed": self.children_changed,
            "changed": self.changed,
            "failed": self.failed,
            "failures": list(self.failures),
            "cancelled": self.cancelled,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "duration_ms": self.duration_ms,
        }


class ReconciliationSweeper:
    """Single-flight sweep over all non-aborted corrective actions."""

    _lock = threading.Lock()
    state: SweepState = SweepState.IDLE

    def __init__(self, repository: ActionRepository | None = None,
                 emitter: AuditEventEmitter | None = None,
                 page_size: int = DEFAULT_PAGE_SIZE,
                 completed_late_is_overdue: bool = False):
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")
        self.repository = repository or ActionRepository()
        self.emitter = emitter or AuditEventEmitter()
        self.page_size = page_size
        self.completed_late_is_overdue = completed_late_is_overdue

    @classmethod
    def from_config(cls, config) -> "ReconciliationSweeper":
        return cls(
            page_size=int(config["SWEEP_PAGE_SIZE"]),
            completed_late_is_overdue=bool(config["COMPLETED_LATE_IS_OVERDUE"]),
        )

    def run(self, now: datetime | None = None,
            cancel_event: threading.Event | None = None) -> SweepResult:
        """Run one sweep. Never raises for storage errors; see ``SweepResult.status``."""
        now = now or utcnow()
        if not ReconciliationSweeper._lock.acquire(blocking=False):
            logger.info("Reconciliation sweep already running; skipped")
            return SweepResult(state=SweepState.SKIPPED, status="skipped", started_at=now)

        ReconciliationSweeper.state = SweepState.RUNNING
        result = SweepResult(state=SweepState.RUNNING, started_at=now)
        start = time.monotonic()
        try:
            self._sweep(now, cancel_event, result)
        finally:
            result.duration_ms = int((time.monotonic() - start) * 1000)
            result.state = SweepState.IDLE
            ReconciliationSweeper.state = SweepState.IDLE
            ReconciliationSweeper._lock.release()

        logger.info(
            "Reconciliation sweep %s: pages=%d scanned=%d parents_changed=%d "
            "children_changed=%d failed=%d in %dms",
            result.status, result.pages, result.items_scanned, result.parents_changed,
            result.children_changed, result.failed, result.duration_ms,
        )
        return result

    # ── Internals ────────────────────────────────────────────────────────

    def _sweep(self, now: datetime, cancel_event, result: SweepResult) -> None:
        repo = self.repository
        token = None
        while True:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                result.status = "cancelled"
                logger.info("Reconciliation sweep cancelled after %d page(s)", result.pages)
                return
            try:
                items, token = repo.load_active_work_items(token, self.page_size)
                for parent in items:
                    result.items_scanned += 1
                    self._reconcile_item(parent, now, result)
                repo.commit()
            except Exception:
                repo.rollback()
                result.status = "failed"
                logger.exception("Reconciliation sweep failed on page %d", result.pages + 1)
                return
            result.pages += 1
            if token is None:
                return

    def _reconcile_item(self, parent, now: datetime, result: SweepResult) -> None:
        parent_id = parent.id
        children_changed, event = 0, None
        try:
            with self.repository.savepoint("reconcile_item"):
                parent = self.repository.lock_for_update(parent)
                if ParentStatus.parse(parent.status) is ParentStatus.ABORTED:
                    logger.info("Corrective action %s aborted since the page was loaded",
                                parent_id, extra={"corrective_action_id": parent_id})
                    return
                children_changed = self._reconcile_children(parent, now)
                event = reconcile_parent(
                    parent, self.repository.load_children(parent_id),
                    now=now, actor=None, repository=self.repository, emitter=self.emitter,
                    completed_late_is_overdue=self.completed_late_is_overdue,
                )
        except Exception as exc:
            result.failed += 1
            result.failures.append({
                "item_kind": ItemKind.PARENT.value,
                "item_id": parent_id,
                "error": str(exc),
            })
            logger.warning("Reconciliation of corrective action %s failed", parent_id,
                           exc_info=True, extra={"corrective_action_id": parent_id})
            return
        result.children_changed += children_changed
        if event is not None:
            result.parents_changed += 1

    def _reconcile_children(self, parent, now: datetime) -> int:
        changed = 0
        for child in self.repository.load_children(parent.id):
            stored = child.status
            status = ChildStatus.parse(stored)
            overdue = is_overdue(
                child.due_date, status, now,
                completed_at=child.completed_at,
                completed_late_is_overdue=self.completed_late_is_overdue,
            )
            old_overdue = bool(child.overdue)
            if overdue == old_overdue:
                continue
            if not self.repository.save_overdue(child, overdue, now=now, expected_status=stored):
                continue
            self.emitter.emit(ChangeEvent(
                item_id=child.id,
                item_kind=ItemKind.CHILD,
                old_status=stored,
                new_status=stored,
                actor=None,
                timestamp=now,
                old_overdue=old_overdue,
                new_overdue=overdue,
                title=child.title,
                assignee=child.assigned_to_id,
                due_date=child.due_date,
            ))
            changed += 1
        return changed
