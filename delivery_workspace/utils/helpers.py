"""Shared blueprint helpers.

db_commit_or_error:  commit once per request, map store errors to responses
json_body:           request JSON as a dict (empty dict for no body)
"""
import logging

from flask import request
from sqlalchemy.exc import IntegrityError, OperationalError

from delivery_workspace.models import db
from delivery_workspace.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_error():
    """Commit the current SQLAlchemy session, returning an error response on failure.

    Returns:
        None on success.
        (response, status_code) tuple on failure — ready for ``return``.

    Usage::

        err = db_commit_or_error()
        if err:
            return err

    IntegrityError → 409 (duplicate / constraint violation)
    OperationalError → 503 (connection / lock issues, retryable)
    Other → 500 (unexpected)
    """
    try:
        db.session.commit()
        return None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation")
    except OperationalError:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        return api_error(E.TRANSIENT_STORE, "Database unavailable, retry later", retryable=True)
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        return api_error(E.DATABASE, "Database error")


def arg_bool(name: str, default: bool = False) -> bool:
    """Read a boolean query-string flag (``true``/``1``/``yes``)."""
    raw = request.args.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes")
