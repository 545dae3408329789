"""
HSE Corrective Action Platform
Corrective Action Blueprint.

Endpoint groups:
  Corrective actions   GET/POST /api/v1/corrective-actions
                       GET      /api/v1/corrective-actions/<id>
                       GET      /api/v1/corrective-actions/progress
  Sub-actions          GET/POST /api/v1/corrective-actions/<id>/sub-actions
                       GET      /api/v1/sub-actions/assigned-to/<user_id>
  History              GET      /api/v1/corrective-actions/<id>/history
  Status changes       POST     /api/v1/corrective-actions/<id>/status
                       POST     /api/v1/corrective-actions/<id>/abort
                       POST     /api/v1/sub-actions/<id>/status

Status and overdue flags in responses are the persisted derived values;
available transitions are computed server-side so clients never re-derive
them. The service layer owns validation and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request

from hse_app.blueprints import paginate_query
from hse_app.core.exceptions import (
    AbortReasonRequired,
    AggregatedStatusIsReadOnly,
    IllegalTransition,
    InvalidStatusValue,
    NotFoundError,
    ParentIsTerminal,
    PersistenceFailure,
    ValidationError,
)
from hse_app.models.audit import AuditLog
from hse_app.models.corrective_action import PRIORITIES, CorrectiveAction, SubAction
from hse_app.models.status import ItemKind, ParentStatus
from hse_app.services.action_lifecycle import ActionLifecycleService
from hse_app.services.action_repository import ActionRepository
from hse_app.services.progress import corrective_action_progress, overall_progress
from hse_app.services.status_rules import available_transitions
from hse_app.utils.errors import E, api_error
from hse_app.utils.helpers import parse_datetime_input

logger = logging.getLogger(__name__)

corrective_action_bp = Blueprint("corrective_action_bp", __name__, url_prefix="/api/v1")


def _service() -> ActionLifecycleService:
    return ActionLifecycleService.from_config(current_app.config)


# ── Error handlers ────────────────────────────────────────────────────────────

_LIFECYCLE_CODES = (
    (InvalidStatusValue, E.INVALID_STATUS),
    (IllegalTransition, E.ILLEGAL_TRANSITION),
    (AggregatedStatusIsReadOnly, E.AGGREGATED_STATUS_READ_ONLY),
    (AbortReasonRequired, E.ABORT_REASON_REQUIRED),
    (ParentIsTerminal, E.PARENT_TERMINAL),
)


@corrective_action_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    for exc_type, code in _LIFECYCLE_CODES:
        if isinstance(error, exc_type):
            return api_error(code, str(error), details=error.details)
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@corrective_action_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@corrective_action_bp.errorhandler(PersistenceFailure)
def _handle_persistence(error: PersistenceFailure):
    logger.error("Persistence failure: %s", error, extra={"endpoint": request.endpoint})
    return api_error(E.DATABASE, "Database error", details={"operation": error.operation})


# ── Helpers ───────────────────────────────────────────────────────────────────


def _detail(ca: CorrectiveAction) -> dict:
    d = ca.to_dict()
    has_children = bool(ca.sub_actions)
    d["progress"] = corrective_action_progress(ca)
    d["available_transitions"] = available_transitions(
        ca.status, ItemKind.PARENT, has_children=has_children,
    )
    d["status_is_derived"] = has_children and ca.status != ParentStatus.ABORTED.value
    d["sub_actions"] = [_sub_action_dict(sa) for sa in ca.sub_actions]
    return d


_PARENT_SUMMARY = ("id", "title", "status", "priority", "due_date", "overdue")


def _sub_action_dict(sa: SubAction) -> dict:
    d = sa.to_dict()
    if sa.corrective_action.parent_status.is_terminal:
        d["available_transitions"] = []
    else:
        d["available_transitions"] = available_transitions(sa.status, ItemKind.CHILD)
    return d


def _required(data: dict, *fields):
    """Required text fields: present, a string, and not blank."""
    invalid = [f for f in fields if data.get(f) is not None and not isinstance(data[f], str)]
    if invalid:
        return api_error(E.VALIDATION_INVALID, f"{', '.join(invalid)} must be a string",
                         details={"invalid": invalid})
    missing = [f for f in fields if not (data.get(f) or "").strip()]
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"{', '.join(missing)} is required",
                         details={"missing": missing})
    return None


def _due_date(data: dict, *, required: bool):
    """Return (due_date, error_response)."""
    raw = data.get("due_date")
    if not raw:
        if required:
            return None, api_error(E.VALIDATION_REQUIRED, "due_date is required")
        return None, None
    try:
        return parse_datetime_input(raw), None
    except ValueError as exc:
        return None, api_error(E.VALIDATION_INVALID, str(exc), details={"field": "due_date"})


# ═════════════════════════════════════════════════════════════════════════
# Corrective actions
# ═════════════════════════════════════════════════════════════════════════


@corrective_action_bp.route("/corrective-actions", methods=["POST"])
def create_corrective_action():
    """Create a corrective action (starts as Not Started)."""
    data = request.get_json(silent=True) or {}
    err = _required(data, "title", "created_by")
    if err:
        return err
    due_date, err = _due_date(data, required=True)
    if err:
        return err
    priority = data.get("priority") or "Medium"
    if priority not in PRIORITIES:
        return api_error(E.VALIDATION_INVALID, f"priority must be one of {sorted(PRIORITIES)}")

    ca = _service().create_corrective_action(
        title=data["title"].strip(),
        due_date=due_date,
        actor=data["created_by"],
        description=data.get("description", ""),
        priority=priority,
        hierarchy=data.get("hierarchy", ""),
        assigned_to_id=data.get("assigned_to_id"),
        report_id=data.get("report_id"),
    )
    return jsonify(_detail(ca)), 201


@corrective_action_bp.route("/corrective-actions", methods=["GET"])
def list_corrective_actions():
    """List corrective actions with filters: status, overdue, assigned_to_id, report_id."""
    q = CorrectiveAction.query
    status = request.args.get("status")
    if status:
        q = q.filter(CorrectiveAction.status == ParentStatus.parse(status).value)
    overdue = request.args.get("overdue")
    if overdue is not None:
        q = q.filter(CorrectiveAction.overdue.is_(overdue.lower() in ("1", "true", "yes")))
    assigned = request.args.get("assigned_to_id")
    if assigned:
        q = q.filter(CorrectiveAction.assigned_to_id == assigned)
    report_id = request.args.get("report_id", type=int)
    if report_id is not None:
        q = q.filter(CorrectiveAction.report_id == report_id)

    items, total = paginate_query(q.order_by(CorrectiveAction.id))
    return jsonify({
        "items": [
            {**ca.to_dict(), "progress": corrective_action_progress(ca)} for ca in items
        ],
        "total": total,
    })


@corrective_action_bp.route("/corrective-actions/progress", methods=["GET"])
def get_overall_progress():
    """Overall progress across corrective actions (optionally for one report)."""
    q = CorrectiveAction.query
    report_id = request.args.get("report_id", type=int)
    if report_id is not None:
        q = q.filter(CorrectiveAction.report_id == report_id)
    statuses = [ca.status for ca in q.all()]
    return jsonify({
        "report_id": report_id,
        "total": len(statuses),
        "progress": overall_progress(statuses),
    })


@corrective_action_bp.route("/corrective-actions/<int:ca_id>", methods=["GET"])
def get_corrective_action(ca_id):
    ca = ActionRepository().get_corrective_action(ca_id)
    return jsonify(_detail(ca))


# ═════════════════════════════════════════════════════════════════════════
# Sub-actions
# ═════════════════════════════════════════════════════════════════════════


@corrective_action_bp.route("/corrective-actions/<int:ca_id>/sub-actions", methods=["POST"])
def add_sub_action(ca_id):
    """Attach a sub-action; the corrective action's status is re-derived."""
    data = request.get_json(silent=True) or {}
    err = _required(data, "title", "actor")
    if err:
        return err
    due_date, err = _due_date(data, required=False)
    if err:
        return err

    sub = _service().add_sub_action(
        ca_id,
        title=data["title"].strip(),
        actor=data["actor"],
        due_date=due_date,
        description=data.get("description"),
        assigned_to_id=data.get("assigned_to_id"),
    )
    return jsonify(sub.to_dict()), 201


@corrective_action_bp.route("/corrective-actions/<int:ca_id>/sub-actions", methods=["GET"])
def list_sub_actions(ca_id):
    ca = ActionRepository().get_corrective_action(ca_id)
    return jsonify([_sub_action_dict(sa) for sa in ca.sub_actions])


@corrective_action_bp.route("/sub-actions/assigned-to/<user_id>", methods=["GET"])
def list_assigned_sub_actions(user_id):
    """Sub-actions assigned to a user, newest corrective action first."""
    rows = (
        SubAction.query.join(CorrectiveAction)
        .filter(SubAction.assigned_to_id == user_id)
        .order_by(CorrectiveAction.created_at.desc(), SubAction.id)
        .all()
    )
    items = []
    for sa in rows:
        d = _sub_action_dict(sa)
        parent = sa.corrective_action.to_dict()
        d["corrective_action"] = {k: parent[k] for k in _PARENT_SUMMARY}
        items.append(d)
    return jsonify({"items": items, "total": len(items)})


@corrective_action_bp.route("/corrective-actions/<int:ca_id>/history", methods=["GET"])
def get_history(ca_id):
    """Audit trail of the corrective action and its sub-actions."""
    ca = ActionRepository().get_corrective_action(ca_id)
    rows = AuditLog.trail(ca.id, [sa.id for sa in ca.sub_actions])
    return jsonify({"items": [r.to_dict() for r in rows], "total": len(rows)})


# ═════════════════════════════════════════════════════════════════════════
# Status changes
# ═════════════════════════════════════════════════════════════════════════


@corrective_action_bp.route("/sub-actions/<int:sa_id>/status", methods=["POST"])
def change_sub_action_status(sa_id):
    """Body: {status, actor, reason?}"""
    data = request.get_json(silent=True) or {}
    err = _required(data, "status", "actor")
    if err:
        return err
    result = _service().apply_sub_action_status_change(
        sa_id, data["status"], data["actor"], data.get("reason"),
    )
    return jsonify(result.to_dict())


@corrective_action_bp.route("/corrective-actions/<int:ca_id>/status", methods=["POST"])
def change_corrective_action_status(ca_id):
    """Body: {status, actor, reason?}. Only childless actions, except Aborted."""
    data = request.get_json(silent=True) or {}
    err = _required(data, "status", "actor")
    if err:
        return err
    result = _service().apply_corrective_action_status_change(
        ca_id, data["status"], data["actor"], data.get("reason"),
    )
    return jsonify(result.to_dict())


@corrective_action_bp.route("/corrective-actions/<int:ca_id>/abort", methods=["POST"])
def abort_corrective_action(ca_id):
    """Body: {actor, reason}. Sub-actions are left as they are."""
    data = request.get_json(silent=True) or {}
    err = _required(data, "actor")
    if err:
        return err
    result = _service().abort_corrective_action(ca_id, data["actor"], data.get("reason"))
    return jsonify(result.to_dict())
