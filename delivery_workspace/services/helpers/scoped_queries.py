"""
Tenant-scoped query helpers.

Every get-by-id in the workspace MUST use these helpers instead of
db.session.get(Model, pk). A bare primary-key lookup ignores tenant
isolation.

Usage:
    # Scope by tenant_id (most common)
    project = get_scoped(Project, project_id, tenant_id=tenant_id)

    # Narrow further to a parent
    req = get_scoped(Requirement, req_id, tenant_id=tenant_id, set_id=set_id)

    # Soft-deleted rows are invisible unless asked for
    req = get_scoped(Requirement, req_id, tenant_id=tenant_id, include_deleted=True)

    # When None is an acceptable outcome
    pitch = get_scoped_or_none(Pitch, pitch_id, tenant_id=tenant_id)

Scope field resolution:
    Each keyword argument maps directly to a column name on the model.
    If none of the supplied scope columns exist on the model, a ValueError
    is raised so the bug surfaces in tests instead of as an unscoped read.
"""

import logging
import uuid

from sqlalchemy import select

from delivery_workspace.core.exceptions import NotFoundError, ValidationError
from delivery_workspace.models import db

logger = logging.getLogger(__name__)


def ensure_uuid(value, field: str = "id") -> str:
    """Normalise a UUID string or raise ValidationError."""
    try:
        return str(uuid.UUID(str(value)))
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f"{field} must be a valid UUID", details={field: "invalid uuid"}) from None


def get_scoped(
    model,
    pk: str,
    *,
    tenant_id: str | None = None,
    project_id: str | None = None,
    set_id: str | None = None,
    client_id: str | None = None,
    include_deleted: bool = False,
):
    """Fetch a single entity by PK with a mandatory scope filter.

    Cross-tenant access is indistinguishable from a missing record: both
    raise NotFoundError → HTTP 404.

    Raises:
        ValueError: no scope supplied, or no supplied scope exists on the model.
        ValidationError: pk is not a UUID.
        NotFoundError: the row does not exist in scope (or is soft-deleted).
    """
    provided_scopes = {
        "tenant_id": tenant_id,
        "project_id": project_id,
        "set_id": set_id,
        "client_id": client_id,
    }
    provided_scopes = {k: v for k, v in provided_scopes.items() if v is not None}

    if not provided_scopes:
        raise ValueError(
            f"{model.__name__} id={pk} requires at least one scope filter. "
            "Unscoped lookups are forbidden — they bypass tenant isolation."
        )

    applicable_scopes = {
        field: value
        for field, value in provided_scopes.items()
        if hasattr(model, field)
    }

    missing_fields = set(provided_scopes) - set(applicable_scopes)
    if missing_fields:
        logger.warning(
            "get_scoped(%s, %s): scope field(s) %s not found on model — "
            "those filters were NOT applied.",
            model.__name__,
            pk,
            sorted(missing_fields),
        )

    if not applicable_scopes:
        raise ValueError(
            f"{model.__name__} id={pk}: none of the scope fields {sorted(provided_scopes)} "
            f"exist on {model.__name__}. Refusing to perform an unscoped lookup."
        )

    pk = ensure_uuid(pk, field=f"{model.__name__.lower()}_id")

    stmt = select(model).where(model.id == pk)
    for field, value in applicable_scopes.items():
        stmt = stmt.where(getattr(model, field) == value)
    if not include_deleted and hasattr(model, "deleted_at"):
        stmt = stmt.where(model.deleted_at.is_(None))

    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in scope %s",
            model.__name__,
            pk,
            applicable_scopes,
        )
        raise NotFoundError(resource=model.__name__, resource_id=pk)

    return result


def get_scoped_or_none(model, pk: str, **scope):
    """Same as get_scoped but returns None instead of raising NotFoundError."""
    try:
        return get_scoped(model, pk, **scope)
    except NotFoundError:
        return None
