"""
Identity & Tenancy Context.

Resolves who is acting, in which tenant, with which role. Every service
call made from the HTTP layer is parameterised by the resulting
``UserContext``.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from flask import g

from delivery_workspace.core.exceptions import AuthenticationError, ForbiddenError
from delivery_workspace.models import db
from delivery_workspace.models.tenancy import Tenant, User
from delivery_workspace.services import role_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserContext:
    user_id: str
    tenant_id: Optional[str]
    role: str
    # Portal binding for client_user memberships
    client_id: Optional[str] = None

    @property
    def is_sys_admin(self) -> bool:
        return self.role == "sys_admin"

    @property
    def is_client_user(self) -> bool:
        return self.role == "client_user"

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "tenant_id": self.tenant_id,
            "role": self.role,
            "client_id": self.client_id,
        }


def resolve_context(user_id: str, tenant_id: Optional[str]) -> UserContext:
    """Build the acting context for ``user_id`` inside ``tenant_id``.

    Raises:
        AuthenticationError: unknown or inactive user.
        ForbiddenError: no role, tenant missing/inactive, or no active
            membership in the tenant (sys_admin excepted).
    """
    user = db.session.get(User, user_id) if user_id else None
    if user is None or not user.is_active:
        raise AuthenticationError("Unknown or inactive user")

    role = role_service.get_user_highest_role(user_id)
    if role is None:
        raise ForbiddenError("User has no active tenant membership")

    if role == "sys_admin":
        return UserContext(user_id=user_id, tenant_id=tenant_id, role=role)

    if tenant_id is None:
        raise ForbiddenError("Tenant context is required")

    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None or not tenant.is_active:
        logger.warning("Context rejected: tenant=%s missing or inactive (user=%s)", tenant_id, user_id)
        raise ForbiddenError("Tenant is not active")

    membership = role_service.get_active_membership(user_id, tenant_id)
    if membership is None:
        logger.warning("Context rejected: user=%s has no membership in tenant=%s", user_id, tenant_id)
        raise ForbiddenError("User is not a member of this tenant")

    client_id = membership.client_id if role == "client_user" else None
    return UserContext(user_id=user_id, tenant_id=tenant_id, role=role, client_id=client_id)


def current_context() -> UserContext:
    """The context resolved by the tenant-context middleware for this request."""
    ctx = getattr(g, "user_context", None)
    if ctx is None:
        raise AuthenticationError("Authentication required")
    return ctx
