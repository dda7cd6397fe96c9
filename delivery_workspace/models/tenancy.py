"""
Tenancy Models: tenants, users, tenant memberships.

Users are global; a user reaches a tenant only through a TenantUser row.
sys_admin memberships are tenant-independent (the role grants access to
every tenant).
"""

from delivery_workspace.models import db
from delivery_workspace.models.base import AuditColumnsMixin, iso, new_uuid


TENANT_STATUSES = {"active", "suspended", "cancelled"}
PLAN_TIERS = {"starter", "professional", "business"}

TENANT_ROLES = {"sys_admin", "org_admin", "org_user", "client_user"}
MEMBERSHIP_STATUSES = {"active", "invited", "suspended"}


# ═══════════════════════════════════════════════════════════════
# 1. TENANTS
# ═══════════════════════════════════════════════════════════════
class Tenant(AuditColumnsMixin, db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    status = db.Column(db.String(20), default="active", nullable=False)
    plan_tier = db.Column(db.String(30), default="starter", nullable=False)
    settings = db.Column(db.JSON, default=dict)

    memberships = db.relationship("TenantUser", back_populates="tenant", lazy="dynamic")

    @property
    def is_active(self):
        return self.status == "active"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "status": self.status,
            "plan_tier": self.plan_tier,
            "settings": self.settings or {},
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Tenant {self.slug}>"


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(AuditColumnsMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    email = db.Column(db.String(200), unique=True, nullable=False)
    full_name = db.Column(db.String(200))
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    memberships = db.relationship(
        "TenantUser", back_populates="user", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "is_active": self.is_active,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.email}>"


# ═══════════════════════════════════════════════════════════════
# 3. TENANT MEMBERSHIPS
# ═══════════════════════════════════════════════════════════════
class TenantUser(AuditColumnsMixin, db.Model):
    """Links a user to a tenant with one role."""

    __tablename__ = "tenant_users"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    tenant_id = db.Column(
        db.String(36), db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    role = db.Column(db.String(30), nullable=False, default="org_user")
    status = db.Column(db.String(20), nullable=False, default="active")
    client_id = db.Column(db.String(36), nullable=True, comment="Scoping hint for client_user members")

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "user_id", name="uq_tenant_user"),
    )

    tenant = db.relationship("Tenant", back_populates="memberships")
    user = db.relationship("User", back_populates="memberships")

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "role": self.role,
            "status": self.status,
            "client_id": self.client_id,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<TenantUser {self.user_id}@{self.tenant_id} {self.role}>"
