"""JSON error responses with machine-readable codes.

Every error body has the shape ``{"error": <message>, "code": "ERR_...",
"details": {...}}``; ``details`` is omitted when empty::

    return api_error(E.NOT_FOUND, "Corrective action 7 not found")
    return api_error(E.ILLEGAL_TRANSITION, str(exc), details=exc.details)
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes. The HTTP status of each is in ``_DEFAULT_STATUS``."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Status lifecycle rejections
    INVALID_STATUS = "ERR_INVALID_STATUS"
    ABORT_REASON_REQUIRED = "ERR_ABORT_REASON_REQUIRED"
    ILLEGAL_TRANSITION = "ERR_ILLEGAL_TRANSITION"
    AGGREGATED_STATUS_READ_ONLY = "ERR_AGGREGATED_STATUS_READ_ONLY"
    PARENT_TERMINAL = "ERR_PARENT_TERMINAL"

    NOT_FOUND = "ERR_NOT_FOUND"
    METHOD_NOT_ALLOWED = "ERR_METHOD_NOT_ALLOWED"
    RATE_LIMITED = "ERR_RATE_LIMITED"

    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.INVALID_STATUS: 400,
    E.ABORT_REASON_REQUIRED: 400,
    E.ILLEGAL_TRANSITION: 409,
    E.AGGREGATED_STATUS_READ_ONLY: 409,
    E.PARENT_TERMINAL: 409,
    E.NOT_FOUND: 404,
    E.METHOD_NOT_ALLOWED: 405,
    E.RATE_LIMITED: 429,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None,
              details: dict | None = None):
    """Return ``(response, status)`` for *code*.

    *status* overrides the code's default; unknown codes default to 400.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _DEFAULT_STATUS.get(code, 400)
