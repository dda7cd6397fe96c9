"""
Authorization Policy Evaluator.

Evaluation is deterministic and deny-by-default:
  1. sys_admin → allow (global, bypasses tenant scoping)
  2. row in another tenant → deny (global contacts are readable by all)
  3. mutations (create/update/delete) → org_admin or org_user
  4. client_user → read only, and only rows flagged for the client portal
     (``show_in_client_portal``; ``portal_enabled`` on Client) that belong to
     the client bound to the membership. Type-level list gates admit only
     PORTAL_ENTITY_TYPES, and only for a user with a client binding.

``entity`` is either a model instance or an entity-type string. The string
form is used for create and list gates, where the row does not exist yet
and the tenant is the context's own.
"""

import logging

from delivery_workspace.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from delivery_workspace.models import db
from delivery_workspace.models.delivery import Set

logger = logging.getLogger(__name__)

OPERATIONS = {"read", "create", "update", "delete"}
MUTATIONS = {"create", "update", "delete"}
WRITER_ROLES = {"org_admin", "org_user"}
# Entity types a client user may list; leads and contacts stay internal
PORTAL_ENTITY_TYPES = {"client", "project", "phase", "set", "pitch", "requirement"}


def _entity_type(entity) -> str:
    if isinstance(entity, str):
        return entity
    return getattr(entity, "ENTITY_TYPE", "") or type(entity).__name__.lower()


def _portal_visible(entity) -> bool:
    if hasattr(entity, "show_in_client_portal"):
        return bool(entity.show_in_client_portal)
    if hasattr(entity, "portal_enabled"):
        return bool(entity.portal_enabled)
    return False


def _owning_client_id(entity):
    """Client that owns a hierarchy row (None for rows outside the hierarchy)."""
    entity_type = _entity_type(entity)
    if entity_type == "client":
        return entity.id
    if entity_type in ("project", "set"):
        return entity.client_id
    if entity_type == "phase":
        return entity.project.client_id if entity.project is not None else None
    if entity_type in ("pitch", "requirement"):
        parent = db.session.get(Set, entity.set_id)
        return parent.client_id if parent is not None else None
    return None


def _same_tenant(ctx, entity) -> bool:
    if isinstance(entity, str):
        return True
    tenant_id = getattr(entity, "tenant_id", None)
    if tenant_id is None and _entity_type(entity) == "contact":
        return True
    return tenant_id == ctx.tenant_id


def authorize(ctx, operation: str, entity) -> bool:
    """Return True when ``ctx`` may perform ``operation`` on ``entity``."""
    if operation not in OPERATIONS:
        raise ValidationError(f"Unknown operation: {operation!r}")

    if ctx.role == "sys_admin":
        return True

    if not _same_tenant(ctx, entity):
        return False

    if operation in MUTATIONS:
        if not isinstance(entity, str) and entity.tenant_id is None:
            # Global contacts are maintained by sys_admin only.
            return False
        return ctx.role in WRITER_ROLES

    if ctx.role in WRITER_ROLES:
        return True
    if ctx.role == "client_user":
        if ctx.client_id is None:
            return False
        if isinstance(entity, str):
            return entity in PORTAL_ENTITY_TYPES
        return _portal_visible(entity) and _owning_client_id(entity) == ctx.client_id
    return False


def enforce(ctx, operation: str, entity) -> None:
    """Raise unless ``authorize`` allows the call.

    Cross-tenant denials raise NotFoundError so they are indistinguishable
    from a missing row; everything else raises ForbiddenError.
    """
    if authorize(ctx, operation, entity):
        return
    entity_type = _entity_type(entity)
    if not _same_tenant(ctx, entity) and ctx.role != "sys_admin":
        logger.warning(
            "Cross-tenant %s on %s denied: user=%s tenant=%s",
            operation, entity_type, ctx.user_id, ctx.tenant_id,
        )
        raise NotFoundError(resource=entity_type.capitalize(), resource_id=getattr(entity, "id", None))
    logger.info("Denied %s on %s for role=%s user=%s", operation, entity_type, ctx.role, ctx.user_id)
    raise ForbiddenError(f"Role {ctx.role} may not {operation} {entity_type}", operation=operation)


def portal_only(ctx) -> bool:
    """True when list results must be filtered to client-portal rows."""
    return ctx.role == "client_user"


def portal_client_scope(ctx, requested_client_id=None):
    """Client filter for list endpoints.

    Staff get ``requested_client_id`` back unchanged. A client user is pinned
    to their bound client; asking for any other client looks like a missing row.
    """
    if not portal_only(ctx):
        return requested_client_id
    if requested_client_id and requested_client_id != ctx.client_id:
        raise NotFoundError(resource="Client", resource_id=requested_client_id)
    return ctx.client_id
