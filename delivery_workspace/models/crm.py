"""
Delivery Workspace
CRM models: clients, contacts, leads and their relationship join rows.

Models:
    - Client: top of the delivery hierarchy
    - Contact: person record, shared across clients (tenant_id NULL = global)
    - ClientContact: contact ↔ client join with a single primary per client
    - Lead: pre-client sales pipeline record
    - LeadContact: contact ↔ lead join with a single primary per lead

Relationship-scoped fields (role, is_primary, ...) live on the join rows;
the Contact row only carries the person's global data.
"""

from delivery_workspace.models import db
from delivery_workspace.models.base import TenantModel, AuditColumnsMixin, iso, new_uuid
from delivery_workspace.models.soft_delete import SoftDeleteMixin


# ── Constants ────────────────────────────────────────────────────────────────

CLIENT_STATUSES = {"onboarding", "active", "inactive", "prospective"}
CONTACT_ROLES = {"owner", "executive", "manager", "coordinator", "technical", "billing", "other"}

LEAD_STATUSES = {"new", "contacted", "qualified", "proposal", "negotiation", "won", "lost"}
OPEN_LEAD_STATUSES = {"new", "contacted", "qualified", "proposal", "negotiation"}
LEAD_SOURCES = {"referral", "website", "event", "outbound", "partner", "other"}


# ═══════════════════════════════════════════════════════════════════════════
#  CLIENT
# ═══════════════════════════════════════════════════════════════════════════

class Client(SoftDeleteMixin, TenantModel):
    __tablename__ = "clients"

    DISPLAY_PREFIX = "CL"
    ENTITY_TYPE = "client"

    name = db.Column(db.String(200), nullable=False)
    company_name = db.Column(db.String(200))
    overview = db.Column(db.Text, default="")
    industry = db.Column(db.String(100))
    location = db.Column(db.String(200))
    status = db.Column(db.String(20), default="onboarding", nullable=False, index=True)
    portal_enabled = db.Column(db.Boolean, default=False, nullable=False)
    relationship_manager_id = db.Column(db.String(36), nullable=True)
    referral_source = db.Column(db.String(100))
    source_lead_id = db.Column(
        db.String(36), nullable=True, index=True, comment="Lead this client was converted from",
    )

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "display_id", name="uq_clients_tenant_display"),
    )

    contact_links = db.relationship("ClientContact", back_populates="client", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "display_id": self.display_id,
            "name": self.name,
            "company_name": self.company_name,
            "overview": self.overview,
            "industry": self.industry,
            "location": self.location,
            "status": self.status,
            "portal_enabled": self.portal_enabled,
            "relationship_manager_id": self.relationship_manager_id,
            "referral_source": self.referral_source,
            "source_lead_id": self.source_lead_id,
            "deleted_at": iso(self.deleted_at),
            **self.audit_dict(),
        }

    def __repr__(self):
        return f"<Client {self.display_id}: {self.name[:40]}>"


# ═══════════════════════════════════════════════════════════════════════════
#  CONTACT
# ═══════════════════════════════════════════════════════════════════════════

class Contact(SoftDeleteMixin, AuditColumnsMixin, db.Model):
    """A person. Not a TenantModel: global contacts carry tenant_id = NULL."""

    __tablename__ = "contacts"

    DISPLAY_PREFIX = "CT"
    ENTITY_TYPE = "contact"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    tenant_id = db.Column(
        db.String(36), db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True, index=True,
        comment="Owning tenant; NULL for global contacts",
    )
    display_id = db.Column(db.String(20), nullable=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), default="")
    email = db.Column(db.String(200), index=True)
    phone = db.Column(db.String(50))
    title = db.Column(db.String(150))
    role = db.Column(db.String(30), default="other")
    notes = db.Column(db.Text, default="")

    client_links = db.relationship("ClientContact", back_populates="contact", lazy="dynamic")

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name or ''}".strip()

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "display_id": self.display_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "title": self.title,
            "role": self.role,
            "notes": self.notes,
            "deleted_at": iso(self.deleted_at),
            **self.audit_dict(),
        }

    def __repr__(self):
        return f"<Contact {self.display_id}: {self.full_name}>"


class ClientContact(AuditColumnsMixin, db.Model):
    """Contact ↔ Client link. At most one ``is_primary`` row per client (DB-enforced)."""

    __tablename__ = "client_contacts"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    tenant_id = db.Column(
        db.String(36), db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    client_id = db.Column(
        db.String(36), db.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    contact_id = db.Column(
        db.String(36), db.ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    is_primary = db.Column(db.Boolean, default=False, nullable=False)
    role = db.Column(db.String(100), nullable=True, comment="Client-specific role, distinct from Contact.role")

    __table_args__ = (
        db.UniqueConstraint("client_id", "contact_id", name="uq_client_contact_pair"),
        db.Index(
            "uq_client_contacts_one_primary", "client_id", unique=True,
            sqlite_where=db.text("is_primary = 1"),
            postgresql_where=db.text("is_primary"),
        ),
    )

    client = db.relationship("Client", back_populates="contact_links")
    contact = db.relationship("Contact", back_populates="client_links")

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "client_id": self.client_id,
            "contact_id": self.contact_id,
            "is_primary": self.is_primary,
            "role": self.role,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        flag = " primary" if self.is_primary else ""
        return f"<ClientContact {self.contact_id}→{self.client_id}{flag}>"


# ═══════════════════════════════════════════════════════════════════════════
#  LEAD
# ═══════════════════════════════════════════════════════════════════════════

class Lead(SoftDeleteMixin, TenantModel):
    __tablename__ = "leads"

    DISPLAY_PREFIX = "LD"
    ENTITY_TYPE = "lead"

    lead_name = db.Column(db.String(200), nullable=False)
    company_name = db.Column(db.String(200))
    description = db.Column(db.Text, default="")
    status = db.Column(db.String(20), default="new", nullable=False, index=True)
    source = db.Column(db.String(50))
    estimated_value = db.Column(db.Numeric(14, 2), nullable=True)
    estimated_close_date = db.Column(db.Date, nullable=True)
    lead_owner_id = db.Column(db.String(36), nullable=True)
    industry = db.Column(db.String(100))
    website = db.Column(db.String(300))
    phone = db.Column(db.String(50))
    email = db.Column(db.String(200))
    company_size = db.Column(db.String(50))
    lost_reason = db.Column(db.String(200))
    lost_reason_notes = db.Column(db.Text)
    converted_to_client_id = db.Column(
        db.String(36), db.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True,
    )
    converted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "display_id", name="uq_leads_tenant_display"),
    )

    contact_links = db.relationship("LeadContact", back_populates="lead", lazy="dynamic")

    @property
    def is_converted(self):
        return self.converted_to_client_id is not None

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "display_id": self.display_id,
            "lead_name": self.lead_name,
            "company_name": self.company_name,
            "description": self.description,
            "status": self.status,
            "source": self.source,
            "estimated_value": float(self.estimated_value) if self.estimated_value is not None else None,
            "estimated_close_date": iso(self.estimated_close_date),
            "lead_owner_id": self.lead_owner_id,
            "industry": self.industry,
            "website": self.website,
            "phone": self.phone,
            "email": self.email,
            "company_size": self.company_size,
            "lost_reason": self.lost_reason,
            "lost_reason_notes": self.lost_reason_notes,
            "converted_to_client_id": self.converted_to_client_id,
            "converted_at": iso(self.converted_at),
            "deleted_at": iso(self.deleted_at),
            **self.audit_dict(),
        }

    def __repr__(self):
        return f"<Lead {self.display_id}: {self.lead_name[:40]} [{self.status}]>"


class LeadContact(SoftDeleteMixin, AuditColumnsMixin, db.Model):
    """Contact ↔ Lead link. At most one live ``is_primary`` row per lead."""

    __tablename__ = "lead_contacts"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    tenant_id = db.Column(
        db.String(36), db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    lead_id = db.Column(
        db.String(36), db.ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    contact_id = db.Column(
        db.String(36), db.ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    is_primary = db.Column(db.Boolean, default=False, nullable=False)
    is_decision_maker = db.Column(db.Boolean, default=False, nullable=False)
    role_at_lead = db.Column(db.String(100))
    notes = db.Column(db.Text, default="")

    __table_args__ = (
        db.UniqueConstraint("lead_id", "contact_id", name="uq_lead_contact_pair"),
        db.Index(
            "uq_lead_contacts_one_primary", "lead_id", unique=True,
            sqlite_where=db.text("is_primary = 1 AND deleted_at IS NULL"),
            postgresql_where=db.text("is_primary AND deleted_at IS NULL"),
        ),
    )

    lead = db.relationship("Lead", back_populates="contact_links")
    contact = db.relationship("Contact")

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "lead_id": self.lead_id,
            "contact_id": self.contact_id,
            "is_primary": self.is_primary,
            "is_decision_maker": self.is_decision_maker,
            "role_at_lead": self.role_at_lead,
            "notes": self.notes,
            "deleted_at": iso(self.deleted_at),
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<LeadContact {self.contact_id}→{self.lead_id}>"
