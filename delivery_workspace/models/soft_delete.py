"""
Soft Delete Mixin.

Adds a ``deleted_at`` timestamp column and query helpers. Rows are marked
deleted rather than physically removed; default reads and completion
aggregation skip them.

Usage:
    class Requirement(SoftDeleteMixin, TenantModel):
        ...

    req.soft_delete()
    Requirement.query_active().filter_by(set_id=set_id).all()
    req.restore()
"""

from datetime import datetime, timezone

from delivery_workspace.models import db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)

    def soft_delete(self):
        """Mark this record as deleted."""
        self.deleted_at = datetime.now(timezone.utc)

    def restore(self):
        """Restore a soft-deleted record."""
        self.deleted_at = None

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @classmethod
    def query_active(cls):
        """Return a query that excludes soft-deleted records."""
        return cls.query.filter(cls.deleted_at.is_(None))

    @classmethod
    def query_deleted(cls):
        """Return only soft-deleted records."""
        return cls.query.filter(cls.deleted_at.isnot(None))
