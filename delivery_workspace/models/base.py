"""
Shared model bases and mixins.

  - new_uuid / utcnow: column defaults
  - AuditColumnsMixin: created/updated timestamps and actor ids
  - TenantModel: abstract base for tenant-scoped tables (UUID pk, tenant FK,
    display id, audit columns)
  - CloneableMixin: template flag + clone-batch marker for hierarchy rows,
    and the "operational view" query (not deleted, not a template)
"""

import uuid
from datetime import datetime, timezone

from delivery_workspace.models import db


def new_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso(value):
    """Serialise a date/datetime column for ``to_dict``."""
    return value.isoformat() if value else None


class AuditColumnsMixin:
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    created_by_id = db.Column(db.String(36), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    updated_by_id = db.Column(db.String(36), nullable=True)

    def audit_dict(self) -> dict:
        return {
            "created_at": iso(self.created_at),
            "created_by_id": self.created_by_id,
            "updated_at": iso(self.updated_at),
            "updated_by_id": self.updated_by_id,
        }


class TenantModel(AuditColumnsMixin, db.Model):
    """Abstract base for tenant-scoped tables.

    Subclasses set ``DISPLAY_PREFIX`` (e.g. "PH") and ``ENTITY_TYPE``
    (the polymorphic attachment key, e.g. "phase").
    """
    __abstract__ = True

    DISPLAY_PREFIX = ""
    ENTITY_TYPE = ""

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    tenant_id = db.Column(
        db.String(36),
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    display_id = db.Column(db.String(20), nullable=True)

    @classmethod
    def query_for_tenant(cls, tenant_id):
        """Return a query filtered by tenant_id."""
        return cls.query.filter_by(tenant_id=tenant_id)

    @classmethod
    def tenant_composite_index(cls, *extra_cols, unique=False):
        """Helper to build a (tenant_id, ...) composite index."""
        name = f"ix_{cls.__tablename__}_tenant_{'_'.join(extra_cols)}"
        cols = ("tenant_id",) + extra_cols
        return db.Index(name, *cols, unique=unique)


class CloneableMixin:
    """Template flag and clone-batch marker for Project/Phase/Set/Pitch/Requirement."""

    is_template = db.Column(db.Boolean, default=False, nullable=False, index=True)
    clone_batch_id = db.Column(db.String(36), nullable=True, index=True)

    @classmethod
    def query_operational(cls, tenant_id):
        """Default list filter: same tenant, not soft-deleted, not a template."""
        return cls.query.filter(
            cls.tenant_id == tenant_id,
            cls.deleted_at.is_(None),
            cls.is_template.is_(False),
        )
