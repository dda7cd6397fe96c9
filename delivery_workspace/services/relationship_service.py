"""
Relationship Integrity — contact ↔ client and contact ↔ lead links.

Relationship-scoped fields (role, is_primary, is_decision_maker, ...) live
on the join rows and are written only here. The Contact row itself is
never modified by these functions.

Single primary per parent:
    set_primary_* runs two ordered single-statement UPDATEs (clear the
    others, then set the target) inside one savepoint, so either both
    apply or neither does. A partial unique index on the join table
    backs the invariant at the database level.

Client links are hard-deleted on unlink; lead links are soft-deleted and
restored when the same contact is linked again.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from delivery_workspace.core.exceptions import ConflictError, NotFoundError, classify_store_error
from delivery_workspace.models import db
from delivery_workspace.models.audit import write_audit
from delivery_workspace.models.base import iso
from delivery_workspace.models.crm import Client, ClientContact, Contact, Lead, LeadContact
from delivery_workspace.services.contact_service import get_contact
from delivery_workspace.services.helpers.scoped_queries import ensure_uuid, get_scoped

logger = logging.getLogger(__name__)


# ── Typed views ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ClientContactView:
    client_id: str
    contact_id: str
    display_id: str | None
    full_name: str
    email: str | None
    phone: str | None
    title: str | None
    contact_role: str | None
    role: str | None
    is_primary: bool
    linked_at: datetime | None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["linked_at"] = iso(self.linked_at)
        return data


@dataclass(frozen=True)
class LeadContactView:
    lead_id: str
    contact_id: str
    display_id: str | None
    full_name: str
    email: str | None
    phone: str | None
    title: str | None
    role_at_lead: str | None
    is_primary: bool
    is_decision_maker: bool
    notes: str
    linked_at: datetime | None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["linked_at"] = iso(self.linked_at)
        return data


def _savepoint(operation: str, work) -> None:
    """Run ``work`` inside a savepoint; store errors leave it rolled back and are classified."""
    try:
        with db.session.begin_nested():
            work()
    except SQLAlchemyError as exc:
        raise classify_store_error(exc, operation) from exc


# ═════════════════════════════════════════════════════════════════════════
# Client ↔ Contact
# ═════════════════════════════════════════════════════════════════════════

def _client_link(client_id: str, contact_id: str, tenant_id: str) -> ClientContact:
    link = db.session.execute(
        select(ClientContact).where(
            ClientContact.client_id == ensure_uuid(client_id, "client_id"),
            ClientContact.contact_id == ensure_uuid(contact_id, "contact_id"),
            ClientContact.tenant_id == tenant_id,
        )
    ).scalar_one_or_none()
    if link is None:
        raise NotFoundError(resource="ClientContact", resource_id=f"{client_id}/{contact_id}")
    return link


def set_primary_contact(client_id: str, contact_id: str, *, tenant_id: str) -> ClientContact:
    """Make ``contact_id`` the only primary contact of ``client_id``."""
    link = _client_link(client_id, contact_id, tenant_id)

    def work():
        db.session.execute(
            update(ClientContact)
            .where(
                ClientContact.client_id == link.client_id,
                ClientContact.id != link.id,
                ClientContact.is_primary.is_(True),
            )
            .values(is_primary=False)
        )
        db.session.execute(
            update(ClientContact).where(ClientContact.id == link.id).values(is_primary=True)
        )

    _savepoint("set_primary_contact", work)
    db.session.refresh(link)
    logger.info("Primary contact of client %s is now %s", link.client_id, link.contact_id)
    return link


def link_contact(
    client_id: str,
    contact_id: str,
    *,
    tenant_id: str,
    role: str | None = None,
    is_primary: bool = False,
    actor_id: str | None = None,
) -> ClientContact:
    """Link a contact to a client. The first link of a client becomes primary."""
    client = get_scoped(Client, client_id, tenant_id=tenant_id)
    contact = get_contact(contact_id, tenant_id=tenant_id)

    existing = db.session.execute(
        select(ClientContact.id).where(
            ClientContact.client_id == client.id, ClientContact.contact_id == contact.id,
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise ConflictError(resource="ClientContact", field="contact_id", value=contact.id)

    has_links = db.session.execute(
        select(ClientContact.id).where(ClientContact.client_id == client.id).limit(1)
    ).scalar_one_or_none() is not None

    link = ClientContact(
        tenant_id=tenant_id,
        client_id=client.id,
        contact_id=contact.id,
        role=role,
        is_primary=False,
        created_by_id=actor_id,
        updated_by_id=actor_id,
    )
    db.session.add(link)
    db.session.flush()
    if is_primary or not has_links:
        set_primary_contact(client.id, contact.id, tenant_id=tenant_id)

    write_audit(entity_type="client", entity_id=client.id, action="contact.link",
                tenant_id=tenant_id, actor_user_id=actor_id,
                diff={"contact_id": contact.id, "is_primary": link.is_primary})
    return link


def unlink_contact(
    client_id: str,
    contact_id: str,
    *,
    tenant_id: str,
    promote_next: bool = False,
    actor_id: str | None = None,
) -> ClientContact | None:
    """Remove the link row. Returns the newly promoted link, if any.

    Unlinking the primary leaves the client without one unless
    ``promote_next`` is set, in which case the oldest remaining link is promoted.
    """
    link = _client_link(client_id, contact_id, tenant_id)
    was_primary = link.is_primary
    client_id = link.client_id
    db.session.delete(link)
    db.session.flush()
    write_audit(entity_type="client", entity_id=client_id, action="contact.unlink",
                tenant_id=tenant_id, actor_user_id=actor_id,
                diff={"contact_id": contact_id, "was_primary": was_primary})

    if not (was_primary and promote_next):
        return None
    successor = db.session.execute(
        select(ClientContact)
        .where(ClientContact.client_id == client_id)
        .order_by(ClientContact.created_at, ClientContact.id)
        .limit(1)
    ).scalar_one_or_none()
    if successor is None:
        return None
    return set_primary_contact(client_id, successor.contact_id, tenant_id=tenant_id)


def update_relationship(
    contact_id: str,
    client_id: str,
    *,
    tenant_id: str,
    data: dict,
    actor_id: str | None = None,
) -> ClientContact:
    """Update the join row only: ``role`` and ``is_primary``."""
    link = _client_link(client_id, contact_id, tenant_id)
    changes = {}
    if "role" in data and data["role"] != link.role:
        changes["role"] = (link.role, data["role"])
        link.role = data["role"]
        link.updated_by_id = actor_id
        db.session.flush()
    if "is_primary" in data and bool(data["is_primary"]) != link.is_primary:
        changes["is_primary"] = (link.is_primary, bool(data["is_primary"]))
        if data["is_primary"]:
            set_primary_contact(link.client_id, link.contact_id, tenant_id=tenant_id)
        else:
            link.is_primary = False
            db.session.flush()
    if changes:
        write_audit(entity_type="client", entity_id=link.client_id, action="contact.update",
                    tenant_id=tenant_id, actor_user_id=actor_id,
                    diff={"contact_id": link.contact_id, **changes})
    return link


def list_client_contacts(client_id: str, *, tenant_id: str) -> list[ClientContactView]:
    client = get_scoped(Client, client_id, tenant_id=tenant_id)
    rows = db.session.execute(
        select(ClientContact, Contact)
        .join(Contact, Contact.id == ClientContact.contact_id)
        .where(ClientContact.client_id == client.id, Contact.deleted_at.is_(None))
        .order_by(ClientContact.is_primary.desc(), Contact.last_name, Contact.first_name)
    ).all()
    return [
        ClientContactView(
            client_id=link.client_id,
            contact_id=contact.id,
            display_id=contact.display_id,
            full_name=contact.full_name,
            email=contact.email,
            phone=contact.phone,
            title=contact.title,
            contact_role=contact.role,
            role=link.role,
            is_primary=link.is_primary,
            linked_at=link.created_at,
        )
        for link, contact in rows
    ]


# ═════════════════════════════════════════════════════════════════════════
# Lead ↔ Contact
# ═════════════════════════════════════════════════════════════════════════

_LEAD_LINK_FIELDS = ("role_at_lead", "is_decision_maker", "notes")


def _lead_link(lead_id: str, contact_id: str, tenant_id: str, *, include_deleted: bool = False) -> LeadContact:
    stmt = select(LeadContact).where(
        LeadContact.lead_id == ensure_uuid(lead_id, "lead_id"),
        LeadContact.contact_id == ensure_uuid(contact_id, "contact_id"),
        LeadContact.tenant_id == tenant_id,
    )
    if not include_deleted:
        stmt = stmt.where(LeadContact.deleted_at.is_(None))
    link = db.session.execute(stmt).scalar_one_or_none()
    if link is None:
        raise NotFoundError(resource="LeadContact", resource_id=f"{lead_id}/{contact_id}")
    return link


def set_primary_lead_contact(lead_id: str, contact_id: str, *, tenant_id: str) -> LeadContact:
    link = _lead_link(lead_id, contact_id, tenant_id)

    def work():
        db.session.execute(
            update(LeadContact)
            .where(
                LeadContact.lead_id == link.lead_id,
                LeadContact.id != link.id,
                LeadContact.is_primary.is_(True),
            )
            .values(is_primary=False)
        )
        db.session.execute(
            update(LeadContact).where(LeadContact.id == link.id).values(is_primary=True)
        )

    _savepoint("set_primary_lead_contact", work)
    db.session.refresh(link)
    return link


def link_lead_contact(
    lead_id: str,
    contact_id: str,
    *,
    tenant_id: str,
    data: dict | None = None,
    actor_id: str | None = None,
) -> LeadContact:
    """Link a contact to a lead (restoring a previously removed link)."""
    data = data or {}
    lead = get_scoped(Lead, lead_id, tenant_id=tenant_id)
    contact = get_contact(contact_id, tenant_id=tenant_id)

    link = db.session.execute(
        select(LeadContact).where(LeadContact.lead_id == lead.id, LeadContact.contact_id == contact.id)
    ).scalar_one_or_none()
    if link is not None and not link.is_deleted:
        raise ConflictError(resource="LeadContact", field="contact_id", value=contact.id)

    has_links = db.session.execute(
        select(LeadContact.id)
        .where(LeadContact.lead_id == lead.id, LeadContact.deleted_at.is_(None))
        .limit(1)
    ).scalar_one_or_none() is not None

    if link is None:
        link = LeadContact(tenant_id=tenant_id, lead_id=lead.id, contact_id=contact.id,
                           created_by_id=actor_id)
        db.session.add(link)
    else:
        link.restore()
    link.is_primary = False
    link.role_at_lead = data.get("role_at_lead")
    link.is_decision_maker = bool(data.get("is_decision_maker", False))
    link.notes = data.get("notes") or ""
    link.updated_by_id = actor_id
    db.session.flush()

    if data.get("is_primary") or not has_links:
        set_primary_lead_contact(lead.id, contact.id, tenant_id=tenant_id)
    write_audit(entity_type="lead", entity_id=lead.id, action="contact.link",
                tenant_id=tenant_id, actor_user_id=actor_id,
                diff={"contact_id": contact.id, "is_primary": link.is_primary})
    return link


def unlink_lead_contact(
    lead_id: str,
    contact_id: str,
    *,
    tenant_id: str,
    promote_next: bool = False,
    actor_id: str | None = None,
) -> LeadContact | None:
    link = _lead_link(lead_id, contact_id, tenant_id)
    was_primary = link.is_primary
    link.is_primary = False
    link.soft_delete()
    link.updated_by_id = actor_id
    db.session.flush()
    write_audit(entity_type="lead", entity_id=link.lead_id, action="contact.unlink",
                tenant_id=tenant_id, actor_user_id=actor_id,
                diff={"contact_id": link.contact_id, "was_primary": was_primary})

    if not (was_primary and promote_next):
        return None
    successor = db.session.execute(
        select(LeadContact)
        .where(LeadContact.lead_id == link.lead_id, LeadContact.deleted_at.is_(None))
        .order_by(LeadContact.created_at, LeadContact.id)
        .limit(1)
    ).scalar_one_or_none()
    if successor is None:
        return None
    return set_primary_lead_contact(link.lead_id, successor.contact_id, tenant_id=tenant_id)


def update_lead_relationship(
    contact_id: str,
    lead_id: str,
    *,
    tenant_id: str,
    data: dict,
    actor_id: str | None = None,
) -> LeadContact:
    link = _lead_link(lead_id, contact_id, tenant_id)
    changes = {}
    for field in _LEAD_LINK_FIELDS:
        if field in data and data[field] != getattr(link, field):
            changes[field] = (getattr(link, field), data[field])
            setattr(link, field, data[field])
    if changes:
        link.updated_by_id = actor_id
        db.session.flush()
    if "is_primary" in data and bool(data["is_primary"]) != link.is_primary:
        changes["is_primary"] = (link.is_primary, bool(data["is_primary"]))
        if data["is_primary"]:
            set_primary_lead_contact(link.lead_id, link.contact_id, tenant_id=tenant_id)
        else:
            link.is_primary = False
            db.session.flush()
    if changes:
        write_audit(entity_type="lead", entity_id=link.lead_id, action="contact.update",
                    tenant_id=tenant_id, actor_user_id=actor_id,
                    diff={"contact_id": link.contact_id, **changes})
    return link


def list_lead_contacts(lead_id: str, *, tenant_id: str) -> list[LeadContactView]:
    lead = get_scoped(Lead, lead_id, tenant_id=tenant_id)
    rows = db.session.execute(
        select(LeadContact, Contact)
        .join(Contact, Contact.id == LeadContact.contact_id)
        .where(
            LeadContact.lead_id == lead.id,
            LeadContact.deleted_at.is_(None),
            Contact.deleted_at.is_(None),
        )
        .order_by(LeadContact.is_primary.desc(), Contact.last_name, Contact.first_name)
    ).all()
    return [
        LeadContactView(
            lead_id=link.lead_id,
            contact_id=contact.id,
            display_id=contact.display_id,
            full_name=contact.full_name,
            email=contact.email,
            phone=contact.phone,
            title=contact.title,
            role_at_lead=link.role_at_lead,
            is_primary=link.is_primary,
            is_decision_maker=link.is_decision_maker,
            notes=link.notes or "",
            linked_at=link.created_at,
        )
        for link, contact in rows
    ]
