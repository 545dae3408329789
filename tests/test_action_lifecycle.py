"""
ActionLifecycleService: interactive status changes.

Covers:
    1. Sub-action changes with eager re-aggregation of the corrective action
    2. Direct writes on childless corrective actions / read-only derived status
    3. Abort override (reason, metadata, stickiness, children untouched)
    4. Closed sub-actions under completed / aborted corrective actions
    5. Creation helpers
    6. Rejections and storage failures leave no trace
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from hse_app.core.exceptions import (
    AbortReasonRequired,
    AggregatedStatusIsReadOnly,
    IllegalTransition,
    InvalidStatusValue,
    NotFoundError,
    ParentIsTerminal,
    PersistenceFailure,
)
from hse_app.models import db
from hse_app.models.audit import AuditLog
from hse_app.models.corrective_action import CorrectiveAction, SubAction
from hse_app.models.notification import Notification
from hse_app.models.status import ChildStatus, ParentStatus
from hse_app.services.action_lifecycle import ActionLifecycleService
from hse_app.services.action_repository import ActionRepository
from hse_app.services.reconciliation import ReconciliationSweeper

NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)
YESTERDAY = NOW - timedelta(days=1)
NEXT_WEEK = NOW + timedelta(days=7)


@pytest.fixture()
def service():
    return ActionLifecycleService()


def _audit(entity_type, entity_id):
    return AuditLog.query.filter_by(entity_type=entity_type,
                                    entity_id=entity_id).order_by(AuditLog.id).all()


def _reload(model, pk):
    db.session.expire_all()
    return db.session.get(model, pk)


# ═════════════════════════════════════════════════════════════════════════════
#  Sub-action status changes
# ═════════════════════════════════════════════════════════════════════════════


class TestSubActionStatusChange:

    def test_start_child_moves_parent_in_progress(self, service, make_action, make_sub_action):
        ca = make_action(due_date=NEXT_WEEK)
        sa1 = make_sub_action(ca)
        make_sub_action(ca)

        result = service.apply_sub_action_status_change(sa1.id, "In Progress", "u-1", now=NOW)

        assert result.new_status == "In Progress"
        assert result.previous_parent_status == "Not Started"
        assert result.new_parent_status == "In Progress"
        assert result.parent_changed is True
        assert _reload(CorrectiveAction, ca.id).status == "In Progress"

    def test_completing_all_children_completes_parent(self, service, make_action, make_sub_action):
        ca = make_action(due_date=NEXT_WEEK, status="In Progress")
        sa1 = make_sub_action(ca, status="In Progress")
        make_sub_action(ca, status="Cancelled")

        result = service.apply_sub_action_status_change(sa1.id, "Completed", "u-1", now=NOW)

        assert result.new_parent_status == "Completed"
        ca = _reload(CorrectiveAction, ca.id)
        assert ca.status == "Completed"
        assert ca.completed_at is not None
        sa1 = _reload(SubAction, sa1.id)
        assert sa1.completed_at is not None

    def test_parent_unchanged_when_aggregate_same(self, service, make_action, make_sub_action):
        ca = make_action(status="In Progress")
        make_sub_action(ca, status="In Progress")
        sa2 = make_sub_action(ca)

        result = service.apply_sub_action_status_change(sa2.id, "In Progress", "u-1", now=NOW)

        assert result.parent_changed is False
        assert _audit("corrective_action", ca.id) == []
        assert len(_audit("sub_action", sa2.id)) == 1

    def test_audit_rows_for_child_and_parent(self, service, make_action, make_sub_action):
        ca = make_action()
        sa = make_sub_action(ca)

        service.apply_sub_action_status_change(sa.id, "In Progress", "u-9", reason="started",
                                               now=NOW)

        child_rows = _audit("sub_action", sa.id)
        parent_rows = _audit("corrective_action", ca.id)
        assert [r.action for r in child_rows] == ["sub_action.status_change"]
        assert child_rows[0].actor == "u-9"
        assert child_rows[0].diff["status"] == {"old": "Not Started", "new": "In Progress"}
        assert child_rows[0].diff["reason"] == "started"
        assert [r.action for r in parent_rows] == ["corrective_action.status_change"]

    def test_child_overdue_flag_and_notification(self, service, make_action, make_sub_action):
        ca = make_action(due_date=NEXT_WEEK)
        sa = make_sub_action(ca, due_date=YESTERDAY, assigned_to_id="u-worker")

        result = service.apply_sub_action_status_change(sa.id, "In Progress", "u-1", now=NOW)

        assert result.overdue is True
        notes = Notification.query.filter_by(entity_type="sub_action", entity_id=sa.id).all()
        assert len(notes) == 1
        assert notes[0].recipient == "u-worker"
        assert notes[0].category == "deadline"
        assert notes[0].severity == "warning"

    def test_completing_overdue_child_clears_flag(self, service, make_action, make_sub_action):
        """Past-due child completed now is no longer overdue; a sweep agrees."""
        ca = make_action(due_date=NEXT_WEEK, status="In Progress")
        sa = make_sub_action(ca, due_date=YESTERDAY, status="In Progress", overdue=True)

        result = service.apply_sub_action_status_change(sa.id, "Completed", "u-1", now=NOW)

        assert result.overdue is False
        assert _reload(SubAction, sa.id).overdue is False
        sweep = ReconciliationSweeper().run(now=NOW)
        assert sweep.changed == 0

    def test_legacy_canceled_spelling_accepted(self, service, make_action, make_sub_action):
        ca = make_action()
        sa = make_sub_action(ca)
        result = service.apply_sub_action_status_change(sa.id, "Canceled", "u-1", now=NOW)
        assert result.new_status == "Cancelled"

    def test_illegal_transition_writes_nothing(self, service, make_action, make_sub_action):
        ca = make_action()
        sa = make_sub_action(ca, status="Completed")

        with pytest.raises(IllegalTransition):
            service.apply_sub_action_status_change(sa.id, "Cancelled", "u-1", now=NOW)

        assert _reload(SubAction, sa.id).status == "Completed"
        assert AuditLog.query.count() == 0

    def test_invalid_status_value(self, service, make_action, make_sub_action):
        ca = make_action()
        sa = make_sub_action(ca)
        with pytest.raises(InvalidStatusValue):
            service.apply_sub_action_status_change(sa.id, "Done", "u-1", now=NOW)

    def test_unknown_sub_action(self, service):
        with pytest.raises(NotFoundError):
            service.apply_sub_action_status_change(999, "In Progress", "u-1", now=NOW)


# ═════════════════════════════════════════════════════════════════════════════
#  Direct corrective action writes
# ═════════════════════════════════════════════════════════════════════════════


class TestCorrectiveActionStatusChange:

    def test_childless_walk_to_completed(self, service, make_action):
        ca = make_action(due_date=YESTERDAY)

        r1 = service.apply_corrective_action_status_change(ca.id, "In Progress", "u-1", now=NOW)
        assert r1.new_status == "In Progress"
        assert r1.overdue is True

        r2 = service.apply_corrective_action_status_change(ca.id, "Completed", "u-1", now=NOW)
        assert r2.new_status == "Completed"
        assert r2.overdue is False
        assert _reload(CorrectiveAction, ca.id).completed_at is not None

    def test_completed_late_policy_flag(self, make_action):
        service = ActionLifecycleService(completed_late_is_overdue=True)
        ca = make_action(due_date=YESTERDAY, status="In Progress", overdue=True)

        result = service.apply_corrective_action_status_change(ca.id, "Completed", "u-1", now=NOW)

        assert result.overdue is True

    def test_skip_in_progress_is_illegal(self, service, make_action):
        ca = make_action()
        with pytest.raises(IllegalTransition):
            service.apply_corrective_action_status_change(ca.id, "Completed", "u-1", now=NOW)

    def test_derived_status_is_read_only(self, service, make_action, make_sub_action):
        ca = make_action(status="In Progress")
        make_sub_action(ca, status="In Progress")

        with pytest.raises(AggregatedStatusIsReadOnly):
            service.apply_corrective_action_status_change(ca.id, "Completed", "u-1", now=NOW)
        assert _reload(CorrectiveAction, ca.id).status == "In Progress"

    def test_aborted_target_routes_to_abort(self, service, make_action, make_sub_action):
        ca = make_action(status="In Progress")
        make_sub_action(ca, status="In Progress")

        result = service.apply_corrective_action_status_change(
            ca.id, "Aborted", "u-boss", reason="Duplicate finding", now=NOW,
        )
        assert result.new_status == "Aborted"


# ═════════════════════════════════════════════════════════════════════════════
#  Abort
# ═════════════════════════════════════════════════════════════════════════════


class TestAbort:

    def test_abort_sets_metadata_and_leaves_children(self, service, make_action, make_sub_action):
        ca = make_action(status="In Progress", due_date=YESTERDAY, overdue=True)
        sa1 = make_sub_action(ca, status="In Progress")
        sa2 = make_sub_action(ca, status="Not Started")

        result = service.abort_corrective_action(ca.id, "u-boss", "Out of scope", now=NOW)

        assert result.new_status == "Aborted"
        assert result.overdue is False
        ca = _reload(CorrectiveAction, ca.id)
        assert ca.aborted_by_id == "u-boss"
        assert ca.abort_reason == "Out of scope"
        assert ca.aborted_at is not None
        assert _reload(SubAction, sa1.id).status == "In Progress"
        assert _reload(SubAction, sa2.id).status == "Not Started"

    def test_abort_audit_and_notification(self, service, make_action):
        ca = make_action(assigned_to_id="u-owner")
        service.abort_corrective_action(ca.id, "u-boss", "Obsolete", now=NOW)

        rows = _audit("corrective_action", ca.id)
        assert [r.action for r in rows] == ["corrective_action.abort"]
        assert rows[0].diff["reason"] == "Obsolete"
        note = Notification.query.filter_by(entity_id=ca.id, category="action").one()
        assert note.recipient == "u-owner"

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reason_required(self, service, make_action, reason):
        ca = make_action()
        with pytest.raises(AbortReasonRequired):
            service.abort_corrective_action(ca.id, "u-boss", reason, now=NOW)
        assert _reload(CorrectiveAction, ca.id).status == "Not Started"

    def test_abort_from_completed(self, service, make_action):
        ca = make_action(status="Completed", completed_at=NOW)
        result = service.abort_corrective_action(ca.id, "u-boss", "Reopened elsewhere", now=NOW)
        assert result.new_status == "Aborted"

    def test_abort_twice_is_illegal(self, service, make_action):
        ca = make_action()
        service.abort_corrective_action(ca.id, "u-boss", "first", now=NOW)
        with pytest.raises(IllegalTransition):
            service.abort_corrective_action(ca.id, "u-boss", "second", now=NOW)

    def test_aborted_parent_stays_aborted(self, service, make_action, make_sub_action):
        """Children completed after an abort never resurrect the parent."""
        ca = make_action(status="In Progress")
        sa1 = make_sub_action(ca, status="In Progress")
        sa2 = make_sub_action(ca, status="In Progress")
        service.abort_corrective_action(ca.id, "u-boss", "Stopped", now=NOW)

        with pytest.raises(ParentIsTerminal):
            service.apply_sub_action_status_change(sa1.id, "Completed", "u-1", now=NOW)

        # children completed behind the service's back
        sa1.status = "Completed"
        sa2.status = "Completed"
        db.session.commit()
        assert ActionRepository().get_corrective_action(ca.id).status == "Aborted"

        sweep = ReconciliationSweeper().run(now=NOW)
        assert sweep.parents_changed == 0
        assert _reload(CorrectiveAction, ca.id).status == "Aborted"


# ═════════════════════════════════════════════════════════════════════════════
#  Closed sub-actions
# ═════════════════════════════════════════════════════════════════════════════


class TestClosedSubActions:

    def test_child_change_under_aborted_parent(self, service, make_action, make_sub_action):
        ca = make_action(status="Aborted")
        sa = make_sub_action(ca)
        with pytest.raises(ParentIsTerminal) as exc:
            service.apply_sub_action_status_change(sa.id, "In Progress", "u-1", now=NOW)
        assert exc.value.details["status"] == "Aborted"
        assert _reload(SubAction, sa.id).status == "Not Started"

    def test_add_sub_action_to_completed_parent(self, service, make_action):
        ca = make_action(status="Completed", completed_at=NOW)
        with pytest.raises(ParentIsTerminal):
            service.add_sub_action(ca.id, title="Late addition", actor="u-1", now=NOW)
        assert SubAction.query.count() == 0


# ═════════════════════════════════════════════════════════════════════════════
#  Creation
# ═════════════════════════════════════════════════════════════════════════════


class TestCreation:

    def test_create_corrective_action(self, service):
        ca = service.create_corrective_action(
            title="Replace extinguisher", due_date=YESTERDAY, actor="u-1",
            assigned_to_id="u-2", now=NOW,
        )
        ca = _reload(CorrectiveAction, ca.id)
        assert ca.status == "Not Started"
        assert ca.overdue is True
        assert ca.created_by_id == "u-1"
        assert [r.action for r in _audit("corrective_action", ca.id)] == ["create"]

    def test_add_sub_action_re_derives_parent(self, service, make_action):
        ca = make_action(status="In Progress")

        sa = service.add_sub_action(ca.id, title="Order parts", actor="u-1", now=NOW)

        assert sa.status == ChildStatus.NOT_STARTED.value
        assert _reload(CorrectiveAction, ca.id).status == ParentStatus.NOT_STARTED.value

    def test_add_sub_action_keeps_in_progress(self, service, make_action, make_sub_action):
        ca = make_action(status="In Progress")
        make_sub_action(ca, status="In Progress")

        service.add_sub_action(ca.id, title="Second step", actor="u-1", due_date=NEXT_WEEK,
                               now=NOW)

        assert _reload(CorrectiveAction, ca.id).status == "In Progress"
        assert len(ActionRepository().load_children(ca.id)) == 2


# ═════════════════════════════════════════════════════════════════════════════
#  Storage failures
# ═════════════════════════════════════════════════════════════════════════════


class TestPersistenceFailure:

    def test_failure_rolls_back_whole_change(self, service, make_action, make_sub_action):
        ca = make_action()
        sa = make_sub_action(ca)
        real_save = ActionRepository.save_status

        def _fail_on_parent(self, item, status, overdue, *, now, **kwargs):
            if isinstance(item, CorrectiveAction):
                raise PersistenceFailure("save_status", "disk full")
            return real_save(self, item, status, overdue, now=now, **kwargs)

        with patch.object(ActionRepository, "save_status", _fail_on_parent):
            with pytest.raises(PersistenceFailure):
                service.apply_sub_action_status_change(sa.id, "In Progress", "u-1", now=NOW)

        assert _reload(SubAction, sa.id).status == "Not Started"
        assert _reload(CorrectiveAction, ca.id).status == "Not Started"
        assert AuditLog.query.count() == 0
