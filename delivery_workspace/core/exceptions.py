"""
Workspace-wide exception hierarchy.

Services raise these types; blueprints never catch them individually.
``utils.errors.register_error_handlers`` maps each one to an HTTP status
and a machine-readable error code once, for the whole app.

Taxonomy:
  NotFoundError        → 404  missing row, or a row in another tenant
  ValidationError      → 422  well-formed input that breaks a business rule
  ConflictError        → 409  duplicate / invariant violation
  AuthenticationError  → 401  no usable identity on the request
  ForbiddenError       → 403  identity resolved, operation denied
  TransientStoreError  → 503  timeout / connection loss, retry with backoff
  PartialFailure       → 500  multi-step operation stopped after some steps

Usage:
    from delivery_workspace.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Project", resource_id=project_id)
    raise ValidationError("set_id is required", details={"set_id": "required"})
"""

import logging

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

logger = logging.getLogger(__name__)


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-tenant access attempts,
    so a caller cannot probe for the existence of another tenant's rows.

    Args:
        resource: Human-readable entity name (e.g. "Client", "Requirement").
        resource_id: The key that was looked up. Included in logs.
        tenant_id: Optional scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        tenant_id: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Covers missing parent ids, malformed UUIDs, unknown enum values and
    illegal parent reassignment. Never retried automatically.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a uniqueness or relationship invariant.

    Args:
        resource: Entity name.
        field: The field (or invariant) that conflicts.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class AuthenticationError(Exception):
    """Raised when a protected operation runs without a resolvable identity."""


class ForbiddenError(Exception):
    """Raised when the acting user's role does not allow the operation."""

    def __init__(self, message: str = "Operation not permitted", operation: str | None = None) -> None:
        self.operation = operation
        super().__init__(message)


class TransientStoreError(Exception):
    """Raised for store timeouts and connection loss.

    Safe to retry with backoff for reads and for operations documented as
    idempotent (lead conversion, completion recompute). Non-idempotent
    writes must not be retried blindly.
    """

    retryable = True

    def __init__(self, message: str, operation: str | None = None) -> None:
        self.operation = operation
        super().__init__(message)


class PartialFailure(Exception):
    """Raised when a multi-step operation failed after some steps were applied.

    Args:
        message: Summary of what failed.
        operation: Name of the orchestrating operation (e.g. "reorder").
        succeeded: Ids whose step was applied.
        failed: Ids (or stage names) whose step was not applied.
        cleaned_up: True when already-applied steps were rolled back or purged.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        succeeded: list | None = None,
        failed: list | None = None,
        cleaned_up: bool = False,
    ) -> None:
        self.operation = operation
        self.succeeded = list(succeeded or [])
        self.failed = list(failed or [])
        self.cleaned_up = cleaned_up
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "cleaned_up": self.cleaned_up,
        }


def classify_store_error(exc: Exception, operation: str) -> Exception:
    """Map a raw SQLAlchemy error to the workspace taxonomy.

    Returns the exception to raise; callers do ``raise classify_store_error(e, op) from e``.
    Errors that are already part of the taxonomy are returned unchanged.
    """
    if isinstance(exc, IntegrityError):
        logger.warning("%s: integrity violation: %s", operation, exc.orig)
        return ConflictError(resource=operation, field="constraint", value=str(exc.orig))
    if isinstance(exc, OperationalError) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    ):
        logger.warning("%s: transient store error: %s", operation, exc)
        return TransientStoreError(f"{operation} failed: store unavailable", operation=operation)
    return exc
