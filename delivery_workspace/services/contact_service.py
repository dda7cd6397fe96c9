"""
Contact Service — global person records.

A contact is visible to a tenant when it is owned by that tenant or is
global (tenant_id NULL). Only the Contact row is written here; the
client/lead relationship fields (role, is_primary, ...) belong to the
join rows and are maintained by relationship_service.
"""

import logging

from sqlalchemy import delete, or_, select, update

from delivery_workspace.core.exceptions import NotFoundError
from delivery_workspace.models import db
from delivery_workspace.models.audit import write_audit
from delivery_workspace.models.crm import CONTACT_ROLES, ClientContact, Contact, LeadContact
from delivery_workspace.services.helpers.display_ids import assign_display_id
from delivery_workspace.services.helpers.scoped_queries import ensure_uuid
from delivery_workspace.services.helpers.validators import (
    apply_fields,
    check_choice,
    parse_email,
    require,
)

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = ("first_name", "last_name", "email", "phone", "title", "role", "notes")


def _visible_to(tenant_id):
    return or_(Contact.tenant_id == tenant_id, Contact.tenant_id.is_(None))


def create_contact(
    *,
    tenant_id: str | None,
    data: dict,
    actor_id: str | None = None,
) -> Contact:
    """Create a contact owned by ``tenant_id`` (None creates a global contact)."""
    require(data, "first_name")
    check_choice(data.get("role"), CONTACT_ROLES, "role")

    contact = Contact(
        tenant_id=tenant_id,
        first_name=data["first_name"].strip(),
        last_name=(data.get("last_name") or "").strip(),
        email=parse_email(data.get("email")),
        phone=data.get("phone"),
        title=data.get("title"),
        role=data.get("role") or "other",
        notes=data.get("notes") or "",
        created_by_id=actor_id,
        updated_by_id=actor_id,
    )
    assign_display_id(contact)
    db.session.add(contact)
    db.session.flush()
    write_audit(entity_type="contact", entity_id=contact.id, action="create",
                tenant_id=tenant_id, actor_user_id=actor_id)
    logger.info("Contact created: %s tenant=%s", contact.display_id, tenant_id)
    return contact


def get_contact(contact_id: str, *, tenant_id: str) -> Contact:
    contact_id = ensure_uuid(contact_id, "contact_id")
    contact = db.session.execute(
        select(Contact).where(
            Contact.id == contact_id, _visible_to(tenant_id), Contact.deleted_at.is_(None),
        )
    ).scalar_one_or_none()
    if contact is None:
        raise NotFoundError(resource="Contact", resource_id=contact_id)
    return contact


def list_contacts(
    *,
    tenant_id: str,
    client_id: str | None = None,
    search: str | None = None,
) -> list[Contact]:
    stmt = select(Contact).where(_visible_to(tenant_id), Contact.deleted_at.is_(None))
    if client_id:
        stmt = stmt.join(ClientContact, ClientContact.contact_id == Contact.id).where(
            ClientContact.client_id == client_id, ClientContact.tenant_id == tenant_id,
        )
    if search:
        like = f"%{search.strip()}%"
        stmt = stmt.where(or_(
            Contact.first_name.ilike(like), Contact.last_name.ilike(like), Contact.email.ilike(like),
        ))
    return db.session.execute(stmt.order_by(Contact.last_name, Contact.first_name)).scalars().all()


def update_contact(contact_id: str, *, tenant_id: str, data: dict, actor_id: str | None = None) -> Contact:
    """Edit global contact fields. Join-row fields in ``data`` are ignored."""
    contact = get_contact(contact_id, tenant_id=tenant_id)
    check_choice(data.get("role"), CONTACT_ROLES, "role")
    if "first_name" in data:
        require(data, "first_name")
    if "email" in data:
        data = {**data, "email": parse_email(data["email"])}

    changes = apply_fields(contact, data, _EDITABLE_FIELDS)
    if changes:
        contact.updated_by_id = actor_id
        db.session.flush()
        write_audit(entity_type="contact", entity_id=contact.id, action="update",
                    tenant_id=tenant_id, actor_user_id=actor_id, diff=changes)
    return contact


def delete_contact(contact_id: str, *, tenant_id: str, actor_id: str | None = None) -> Contact:
    """Soft-delete the contact, drop its client links and retire its lead links."""
    contact = get_contact(contact_id, tenant_id=tenant_id)

    db.session.execute(
        delete(ClientContact).where(ClientContact.contact_id == contact.id)
    )
    lead_links = db.session.execute(
        update(LeadContact)
        .where(LeadContact.contact_id == contact.id, LeadContact.deleted_at.is_(None))
        .values(is_primary=False)
    )
    for link in LeadContact.query_active().filter_by(contact_id=contact.id).all():
        link.soft_delete()

    contact.soft_delete()
    contact.updated_by_id = actor_id
    db.session.flush()
    write_audit(entity_type="contact", entity_id=contact.id, action="delete",
                tenant_id=tenant_id, actor_user_id=actor_id,
                diff={"lead_links_retired": lead_links.rowcount})
    logger.info("Contact soft-deleted: %s", contact.id)
    return contact
