"""Standardised API error responses.

Usage
-----
    from decision_trail.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Decision not found")
    return api_error(E.VALIDATION_REQUIRED, "project_id is required")

Blueprints call ``register_error_handlers(bp)`` once so that engine
exceptions raised from services map onto the same envelope.
"""

from __future__ import annotations

import logging

from flask import jsonify

from decision_trail.core.exceptions import (
    ConflictError,
    ImmutableRecordError,
    InvalidArgumentError,
    InvalidStateTransitionError,
    NotFoundError,
    ScopeDeniedError,
    StorageUnavailableError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Authorization – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Server – HTTP 5xx
    STORAGE_UNAVAILABLE = "ERR_STORAGE_UNAVAILABLE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.FORBIDDEN: 403,
    E.STORAGE_UNAVAILABLE: 503,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, current status, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


# ── Blueprint-level exception mapping ─────────────────────────────────

def register_error_handlers(bp) -> None:
    """Attach engine-exception handlers to a blueprint."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(exc):
        return api_error(E.NOT_FOUND, str(exc))

    @bp.errorhandler(InvalidArgumentError)
    def _handle_invalid(exc):
        return api_error(E.VALIDATION_INVALID, str(exc), details=exc.details)

    @bp.errorhandler(InvalidStateTransitionError)
    def _handle_transition(exc):
        return api_error(
            E.CONFLICT_STATE, str(exc),
            details={"current_status": exc.current_status, "attempted": exc.attempted},
        )

    @bp.errorhandler(ScopeDeniedError)
    def _handle_scope(exc):
        return api_error(
            E.FORBIDDEN, str(exc),
            details={"access_scope": exc.scope, "required": exc.required},
        )

    @bp.errorhandler(ConflictError)
    def _handle_conflict(exc):
        return api_error(E.CONFLICT_DUPLICATE, str(exc), details={"retryable": True})

    @bp.errorhandler(StorageUnavailableError)
    def _handle_storage(exc):
        return api_error(E.STORAGE_UNAVAILABLE, str(exc), details={"retryable": True})

    @bp.errorhandler(ImmutableRecordError)
    def _handle_immutable(exc):
        logger.error("Immutable record violation: %s", exc)
        return api_error(E.INTERNAL, "Internal server error")
