"""
HSE Corrective Action Platform
Action Repository: persistence boundary of the status lifecycle engine.

The lifecycle services never issue queries themselves; they go through this
class so every storage error reaches them as PersistenceFailure and the sweep
can page through the active set with a stable token.

Writes only ``flush``; the caller owns the transaction. Writes made from a
stale read (the sweep) go through compare-and-set on the status column.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from hse_app.core.exceptions import NotFoundError, PersistenceFailure
from hse_app.models import db
from hse_app.models.corrective_action import CorrectiveAction, SubAction
from hse_app.models.status import ChildStatus, ParentStatus

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100


@contextmanager
def _storage(operation: str):
    try:
        yield
    except SQLAlchemyError as exc:
        logger.debug("Storage error during %s: %s", operation, exc)
        raise PersistenceFailure(operation, str(exc)) from exc


class ActionRepository:
    """SQLAlchemy-backed access to corrective actions and sub-actions."""

    # ── Lookups ──────────────────────────────────────────────────────────

    def get_corrective_action(self, corrective_action_id) -> CorrectiveAction:
        with _storage("get_corrective_action"):
            item = db.session.get(CorrectiveAction, corrective_action_id)
        if item is None:
            raise NotFoundError(resource="CorrectiveAction", resource_id=corrective_action_id)
        return item

    def get_sub_action(self, sub_action_id) -> SubAction:
        with _storage("get_sub_action"):
            item = db.session.get(SubAction, sub_action_id)
        if item is None:
            raise NotFoundError(resource="SubAction", resource_id=sub_action_id)
        return item

    # ── Reads used by the lifecycle engine ───────────────────────────────

    def lock_for_update(self, item):
        """Re-read *item* from the database, locking its row where supported.

        The loaded instance is refreshed in place (``populate_existing``), so
        decisions taken afterwards see the latest committed status.
        """
        model = type(item)
        stmt = (
            select(model)
            .where(model.id == item.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        with _storage("lock_for_update"):
            fresh = db.session.execute(stmt).scalar_one_or_none()
        if fresh is None:
            raise NotFoundError(resource=model.__name__, resource_id=item.id)
        return fresh

    def load_active_work_items(
        self, page_token: int | None = None, page_size: int = DEFAULT_PAGE_SIZE,
    ) -> tuple[list[CorrectiveAction], int | None]:
        """Return one page of non-aborted corrective actions, ordered by id.

        The page token is the last id of the previous page (keyset
        pagination), so rows inserted or aborted between pages never shift
        the window. ``next_page_token`` is None on the last page.
        """
        stmt = (
            select(CorrectiveAction)
            .where(CorrectiveAction.status != ParentStatus.ABORTED.value)
            .order_by(CorrectiveAction.id)
            .limit(page_size)
        )
        if page_token is not None:
            stmt = stmt.where(CorrectiveAction.id > page_token)
        with _storage("load_active_work_items"):
            items = list(db.session.execute(stmt).scalars().all())
        next_token = items[-1].id if len(items) == page_size else None
        return items, next_token

    def load_children(self, parent_id) -> list[SubAction]:
        stmt = (
            select(SubAction)
            .where(SubAction.corrective_action_id == parent_id)
            .order_by(SubAction.id)
            .execution_options(populate_existing=True)
        )
        with _storage("load_children"):
            return list(db.session.execute(stmt).scalars().all())

    # ── Writes ───────────────────────────────────────────────────────────

    def save_status(self, item, status, overdue: bool, *, now: datetime,
                    expected_status: str | None = None) -> bool:
        """Persist status and overdue flag of a corrective action or sub-action.

        ``completed_at`` follows the status: stamped when the item becomes
        Completed, cleared if a derived status moves away from Completed.

        With *expected_status* the write is a compare-and-set: the row is
        updated only while it still holds that status, and False is returned
        when another transaction changed it first.
        """
        value = status.value if isinstance(status, (ParentStatus, ChildStatus)) else str(status)
        completed_at = _completed_at(item, value, now)
        if expected_status is not None:
            return self._compare_and_set(item, expected_status, "save_status", {
                "status": value,
                "overdue": bool(overdue),
                "completed_at": completed_at,
                "updated_at": now,
            })
        with _storage("save_status"):
            item.completed_at = completed_at
            item.status = value
            item.overdue = bool(overdue)
            item.updated_at = now
            db.session.flush()
        return True

    def save_overdue(self, item, overdue: bool, *, now: datetime, expected_status: str) -> bool:
        """Write only the overdue flag, while the row still holds *expected_status*."""
        return self._compare_and_set(item, expected_status, "save_overdue", {
            "overdue": bool(overdue),
            "updated_at": now,
        })

    def _compare_and_set(self, item, expected_status: str, operation: str, values: dict) -> bool:
        model = type(item)
        stmt = (
            update(model)
            .where(model.id == item.id, model.status == expected_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with _storage(operation):
            db.session.flush()
            written = db.session.execute(stmt).rowcount == 1
            db.session.refresh(item)
        if not written:
            logger.info("%s %s changed concurrently; %s skipped",
                        model.__name__, item.id, operation)
        return written

    def save_abort_metadata(self, item: CorrectiveAction, actor: str, reason: str,
                            timestamp: datetime) -> None:
        with _storage("save_abort_metadata"):
            item.aborted_by_id = actor
            item.abort_reason = reason
            item.aborted_at = timestamp
            item.updated_at = timestamp
            db.session.flush()

    # ── Creation ─────────────────────────────────────────────────────────

    def add(self, item) -> None:
        with _storage("add"):
            db.session.add(item)
            db.session.flush()

    # ── Transactions ─────────────────────────────────────────────────────

    @contextmanager
    def savepoint(self, operation: str = "savepoint"):
        """Run the block in a nested transaction; any error rolls back the block only."""
        with _storage(operation):
            nested = db.session.begin_nested()
        try:
            yield
        except BaseException:
            if nested.is_active:
                nested.rollback()
            raise
        with _storage(operation):
            nested.commit()

    def commit(self) -> None:
        with _storage("commit"):
            db.session.commit()

    def rollback(self) -> None:
        db.session.rollback()


def _completed_at(item, value: str, now: datetime) -> datetime | None:
    if value != ParentStatus.COMPLETED.value:
        return None
    if item.status != value or item.completed_at is None:
        return now
    return item.completed_at
