"""Standardised API error responses.

Usage
-----
    from delivery_workspace.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Project not found")
    return api_error(E.VALIDATION_REQUIRED, "client_id is required")

Service exceptions are never caught in blueprints; ``register_error_handlers``
maps each one to its code and status once for the whole app.
"""

from __future__ import annotations

import logging

from flask import jsonify

from delivery_workspace.core.exceptions import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PartialFailure,
    TransientStoreError,
    ValidationError,
)
from delivery_workspace.models import db
from delivery_workspace.services.storage import (
    StorageBucketNotFoundError,
    StorageError,
    StoragePermissionError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400 (malformed request) / 422 (business rule)
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Auth – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"

    # Store – HTTP 500 / 503
    TRANSIENT_STORE = "ERR_TRANSIENT_STORE"
    PARTIAL_FAILURE = "ERR_PARTIAL_FAILURE"
    STORAGE_UNAVAILABLE = "ERR_STORAGE_UNAVAILABLE"
    STORAGE_PERMISSION = "ERR_STORAGE_PERMISSION"
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.TRANSIENT_STORE: 503,
    E.PARTIAL_FAILURE: 500,
    E.STORAGE_UNAVAILABLE: 503,
    E.STORAGE_PERMISSION: 403,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
    **extra,
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
        Extra structured payload (field errors, partial-failure report).
    extra :
        Additional top-level body keys (e.g. ``retryable=True``).

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
    body.update(extra)

    return jsonify(body), http_status


def register_error_handlers(app):
    """Map the service exception taxonomy to HTTP responses.

    Every handler discards the request's uncommitted writes first, so a
    failed operation never leaks flushed rows into a later commit.
    """

    @app.errorhandler(NotFoundError)
    def _not_found(exc):
        db.session.rollback()
        return api_error(E.NOT_FOUND, f"{exc.resource} not found")

    @app.errorhandler(ValidationError)
    def _validation(exc):
        db.session.rollback()
        return api_error(E.VALIDATION_INVALID, str(exc), details=exc.details)

    @app.errorhandler(ConflictError)
    def _conflict(exc):
        db.session.rollback()
        return api_error(E.CONFLICT_DUPLICATE, str(exc), details={"field": exc.field})

    @app.errorhandler(AuthenticationError)
    def _unauthenticated(exc):
        db.session.rollback()
        return api_error(E.UNAUTHENTICATED, str(exc) or "Authentication required")

    @app.errorhandler(ForbiddenError)
    def _forbidden(exc):
        db.session.rollback()
        return api_error(E.FORBIDDEN, str(exc))

    @app.errorhandler(TransientStoreError)
    def _transient(exc):
        db.session.rollback()
        logger.warning("Transient store error in %s: %s", exc.operation, exc)
        return api_error(E.TRANSIENT_STORE, "Service temporarily unavailable, retry later",
                         retryable=True)

    @app.errorhandler(PartialFailure)
    def _partial(exc):
        db.session.rollback()
        logger.error("Partial failure in %s: %s", exc.operation, exc.to_dict())
        return api_error(E.PARTIAL_FAILURE, str(exc), details=exc.to_dict())

    @app.errorhandler(StorageBucketNotFoundError)
    def _bucket_missing(exc):
        db.session.rollback()
        logger.error("Storage bucket missing: %s", exc)
        return api_error(E.STORAGE_UNAVAILABLE, "File storage is not available")

    @app.errorhandler(StoragePermissionError)
    def _storage_denied(exc):
        db.session.rollback()
        logger.error("Storage permission error: %s", exc)
        return api_error(E.STORAGE_PERMISSION, "File storage refused the operation")

    @app.errorhandler(StorageError)
    def _storage(exc):
        db.session.rollback()
        logger.error("Storage error: %s", exc)
        return api_error(E.STORAGE_UNAVAILABLE, "File storage error")
