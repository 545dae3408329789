"""
Platform-wide exception hierarchy.

Services raise these types; blueprints map them to HTTP responses once
(see ``hse_app.blueprints.corrective_action_bp``). Each kind of rejected status change
has its own LifecycleError subclass.

Usage:
    from hse_app.core.exceptions import IllegalTransition, NotFoundError

    raise NotFoundError(resource="CorrectiveAction", resource_id=42)
    raise IllegalTransition("Completed", "In Progress", "sub_action")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "CorrectiveAction").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


# ── Status lifecycle ─────────────────────────────────────────────────────────


class LifecycleError(ValidationError):
    """Base class for rejected status changes. Never persisted."""


class InvalidStatusValue(LifecycleError):
    """Raised when a status string does not name a known status."""

    def __init__(self, value, status_type: str) -> None:
        self.value = value
        self.status_type = status_type
        super().__init__(
            f"Invalid {status_type} value: {value!r}",
            details={"status": value, "status_type": status_type},
        )


class IllegalTransition(LifecycleError):
    """Raised when the requested edge is not in the allowed transition set."""

    def __init__(self, current: str, requested: str, kind: str) -> None:
        self.current = current
        self.requested = requested
        self.kind = kind
        super().__init__(
            f"Cannot move {kind} from '{current}' to '{requested}'",
            details={"current": current, "requested": requested, "kind": kind},
        )


class AggregatedStatusIsReadOnly(LifecycleError):
    """Raised on a direct status write to a corrective action that has sub-actions.

    Aborting is the only direct write allowed on such an item.
    """

    def __init__(self, item_id, requested: str) -> None:
        self.item_id = item_id
        self.requested = requested
        super().__init__(
            f"Status of corrective action {item_id} is derived from its sub-actions; "
            f"it cannot be set to '{requested}' directly",
            details={"corrective_action_id": item_id, "requested": requested},
        )


class AbortReasonRequired(LifecycleError):
    """Raised when an abort is requested without a reason."""

    def __init__(self, item_id) -> None:
        self.item_id = item_id
        super().__init__(
            f"A reason is required to abort corrective action {item_id}",
            details={"corrective_action_id": item_id, "reason": "required"},
        )


class ParentIsTerminal(LifecycleError):
    """Raised when a sub-action mutation targets a completed or aborted corrective action."""

    def __init__(self, parent_id, parent_status: str) -> None:
        self.parent_id = parent_id
        self.parent_status = parent_status
        super().__init__(
            f"Corrective action {parent_id} is '{parent_status}'; its sub-actions are closed",
            details={"corrective_action_id": parent_id, "status": parent_status},
        )


# ── Storage ──────────────────────────────────────────────────────────────────


class PersistenceFailure(Exception):
    """Wraps an error raised by the storage layer.

    The underlying exception is kept as ``__cause__`` (raise ... from exc).
    """

    def __init__(self, operation: str, detail: str | None = None) -> None:
        self.operation = operation
        msg = f"Persistence failure during {operation}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
