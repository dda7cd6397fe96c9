"""
Tenant Context Middleware — resolves the acting UserContext per request.

When a request carries a valid JWT:
  1. g.jwt_user_id / g.jwt_tenant_id are already set by jwt_auth middleware
  2. identity_service.resolve_context checks the user, the tenant and the
     membership, and resolves the role from tenant_users
  3. g.user_context is set for the route handler

Every /api/v1/ route except health requires a resolved context.

Chain order:
  jwt_auth.py  →  tenant_context.py  →  route handler
"""

import logging

from flask import g, request

from delivery_workspace.core.exceptions import AuthenticationError, ForbiddenError
from delivery_workspace.services.identity_service import resolve_context
from delivery_workspace.utils.errors import E, api_error

logger = logging.getLogger(__name__)

TENANT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_tenant_context(app):
    """Register tenant context middleware as a before_request hook."""

    @app.before_request
    def _tenant_context():
        g.user_context = None

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in TENANT_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        user_id = getattr(g, "jwt_user_id", None)
        if user_id is None:
            message = getattr(g, "jwt_error", None) or "Authentication required"
            return api_error(E.UNAUTHENTICATED, message)

        try:
            g.user_context = resolve_context(user_id, getattr(g, "jwt_tenant_id", None))
        except AuthenticationError as exc:
            return api_error(E.UNAUTHENTICATED, str(exc))
        except ForbiddenError as exc:
            logger.warning(
                "Context denied on %s %s: %s",
                request.method, request.path, exc,
                extra={"user_id": user_id, "tenant_id": getattr(g, "jwt_tenant_id", None)},
            )
            return api_error(E.FORBIDDEN, str(exc))
        return None

    logger.info("Tenant context middleware installed")
