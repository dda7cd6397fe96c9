"""
Role Service — authoritative role resolution with a short-lived cache.

Role precedence (lower number wins):
  sys_admin (1) > org_admin (2) > org_user (3) > client_user (4)

A user's effective role is the highest-precedence role across all of their
*active* tenant memberships. Roles are always resolved here from the
tenant_users table, never from token claims or client-side state; the TTL
cache is a performance optimisation only and is invalidated on every
membership change made through this module.
"""

import logging
import threading
import time
from typing import Optional

from flask import current_app, has_app_context
from sqlalchemy import select

from delivery_workspace.core.exceptions import NotFoundError, ValidationError
from delivery_workspace.models import db
from delivery_workspace.models.tenancy import (
    MEMBERSHIP_STATUSES,
    TENANT_ROLES,
    Tenant,
    TenantUser,
    User,
)

logger = logging.getLogger(__name__)

CACHE_TTL = 300  # 5 minutes

ROLE_PRECEDENCE = {
    "sys_admin": 1,
    "org_admin": 2,
    "org_user": 3,
    "client_user": 4,
}

# Cache key: user_id → (cached_at, role or None)
_role_cache: dict[str, tuple[float, Optional[str]]] = {}
_cache_lock = threading.Lock()


def _ttl() -> int:
    if has_app_context():
        return current_app.config.get("ROLE_CACHE_TTL", CACHE_TTL)
    return CACHE_TTL


def _get_cached(user_id: str) -> tuple[bool, Optional[str]]:
    with _cache_lock:
        entry = _role_cache.get(user_id)
        if entry is None:
            return False, None
        cached_at, role = entry
        if time.time() - cached_at > _ttl():
            del _role_cache[user_id]
            return False, None
        return True, role


def _set_cached(user_id: str, role: Optional[str]) -> None:
    with _cache_lock:
        _role_cache[user_id] = (time.time(), role)


def invalidate_cache(user_id: str) -> None:
    with _cache_lock:
        _role_cache.pop(user_id, None)


def invalidate_all_cache() -> None:
    with _cache_lock:
        _role_cache.clear()


def highest_role(roles) -> Optional[str]:
    """Pick the highest-precedence role name from an iterable (None if empty)."""
    ranked = [r for r in roles if r in ROLE_PRECEDENCE]
    if not ranked:
        return None
    return min(ranked, key=ROLE_PRECEDENCE.__getitem__)


def get_user_highest_role(user_id: str) -> Optional[str]:
    """Highest-precedence role over the user's active memberships (None if none)."""
    hit, role = _get_cached(user_id)
    if hit:
        return role

    rows = db.session.execute(
        select(TenantUser.role)
        .join(User, User.id == TenantUser.user_id)
        .where(
            TenantUser.user_id == user_id,
            TenantUser.status == "active",
            User.is_active.is_(True),
        )
    ).scalars().all()
    role = highest_role(rows)
    _set_cached(user_id, role)
    return role


def get_active_membership(user_id: str, tenant_id: str) -> Optional[TenantUser]:
    return db.session.execute(
        select(TenantUser).where(
            TenantUser.user_id == user_id,
            TenantUser.tenant_id == tenant_id,
            TenantUser.status == "active",
        )
    ).scalar_one_or_none()


def assign_membership(
    *,
    tenant_id: str,
    user_id: str,
    role: str,
    status: str = "active",
    client_id: str | None = None,
) -> TenantUser:
    """Create or update a user's membership in a tenant.

    Invalidates the user's cached role so the change is visible on the
    next resolution.
    """
    if role not in TENANT_ROLES:
        raise ValidationError(f"Invalid role: {role!r}", details={"role": f"must be one of {sorted(TENANT_ROLES)}"})
    if status not in MEMBERSHIP_STATUSES:
        raise ValidationError(f"Invalid status: {status!r}", details={"status": "invalid"})
    if db.session.get(Tenant, tenant_id) is None:
        raise NotFoundError(resource="Tenant", resource_id=tenant_id)
    if db.session.get(User, user_id) is None:
        raise NotFoundError(resource="User", resource_id=user_id)

    membership = db.session.execute(
        select(TenantUser).where(TenantUser.user_id == user_id, TenantUser.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if membership is None:
        membership = TenantUser(tenant_id=tenant_id, user_id=user_id)
        db.session.add(membership)
    membership.role = role
    membership.status = status
    membership.client_id = client_id
    db.session.flush()

    invalidate_cache(user_id)
    logger.info("Membership set: user=%s tenant=%s role=%s status=%s", user_id, tenant_id, role, status)
    return membership
