"""
Lead → Client conversion.

One call turns a lead into an onboarding client:

    1. create the Client from the lead's company data
    2. copy active lead contacts into client contacts (primary flag kept,
       role taken from role_at_lead)
    3. copy lead documents as client documents (rows only, blobs shared)
    4. mark the lead won and link it to the client

Steps 1-4 run in one savepoint, so a failure never leaves a half-linked
client behind. The operation is idempotent: converting a lead that already
points at an existing client returns that client without writing anything,
which also makes a retry after TransientStoreError safe.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from delivery_workspace.core.exceptions import ValidationError, classify_store_error
from delivery_workspace.models import db
from delivery_workspace.models.attachments import Document
from delivery_workspace.models.audit import write_audit
from delivery_workspace.models.base import utcnow
from delivery_workspace.models.crm import Client, ClientContact, Lead, LeadContact
from delivery_workspace.services.helpers.display_ids import assign_display_id
from delivery_workspace.services.helpers.scoped_queries import get_scoped, get_scoped_or_none
from delivery_workspace.services.notification import NotificationService

logger = logging.getLogger(__name__)


@dataclass
class ConversionResult:
    client: Client
    created: bool
    contacts_copied: int = 0
    documents_copied: int = 0

    def to_dict(self) -> dict:
        return {
            "client": self.client.to_dict(),
            "created": self.created,
            "contacts_copied": self.contacts_copied,
            "documents_copied": self.documents_copied,
        }


def _copy_contacts(lead: Lead, client: Client, actor_id) -> int:
    links = db.session.execute(
        select(LeadContact)
        .where(LeadContact.lead_id == lead.id, LeadContact.deleted_at.is_(None))
        .order_by(LeadContact.is_primary.desc(), LeadContact.created_at)
    ).scalars().all()
    for link in links:
        db.session.add(ClientContact(
            tenant_id=lead.tenant_id,
            client_id=client.id,
            contact_id=link.contact_id,
            is_primary=link.is_primary,
            role=link.role_at_lead,
            created_by_id=actor_id,
            updated_by_id=actor_id,
        ))
        db.session.flush()
    return len(links)


def _copy_documents(lead: Lead, client: Client, actor_id) -> int:
    documents = db.session.execute(
        select(Document).where(
            Document.tenant_id == lead.tenant_id,
            Document.entity_type == "lead",
            Document.entity_id == lead.id,
            Document.deleted_at.is_(None),
        ).order_by(Document.created_at)
    ).scalars().all()
    for doc in documents:
        copy = Document(
            tenant_id=lead.tenant_id,
            entity_type="client",
            entity_id=client.id,
            file_name=doc.file_name,
            file_path=doc.file_path,
            file_url=doc.file_url,
            file_size=doc.file_size,
            mime_type=doc.mime_type,
            description=doc.description,
            uploaded_by_id=doc.uploaded_by_id,
            created_by_id=actor_id,
            updated_by_id=actor_id,
        )
        assign_display_id(copy)
        db.session.add(copy)
        db.session.flush()
    return len(documents)


def convert_lead_to_client(
    lead_id: str,
    *,
    tenant_id: str,
    actor_id: str | None = None,
    client_name: str | None = None,
    relationship_manager_id: str | None = None,
    copy_contacts: bool = True,
    copy_documents: bool = True,
) -> ConversionResult:
    """Convert a lead into a client.

    Raises:
        NotFoundError: lead missing, deleted or in another tenant.
        ValidationError: lead is lost.
        TransientStoreError: store unavailable; safe to retry.
        ConflictError: a uniqueness constraint rejected the new rows.
    """
    lead = get_scoped(Lead, lead_id, tenant_id=tenant_id)

    if lead.converted_to_client_id:
        existing = get_scoped_or_none(Client, lead.converted_to_client_id, tenant_id=tenant_id)
        if existing is not None:
            logger.info("Lead %s already converted to client %s", lead.id, existing.id)
            return ConversionResult(client=existing, created=False)
    if lead.status == "lost":
        raise ValidationError(
            "A lost lead cannot be converted", details={"status": "lost"},
        )

    try:
        with db.session.begin_nested():
            client = Client(
                tenant_id=tenant_id,
                name=(client_name or lead.lead_name).strip(),
                company_name=lead.company_name,
                overview=lead.description or "",
                industry=lead.industry,
                status="onboarding",
                relationship_manager_id=relationship_manager_id or lead.lead_owner_id,
                referral_source=lead.source,
                source_lead_id=lead.id,
                created_by_id=actor_id,
                updated_by_id=actor_id,
            )
            assign_display_id(client)
            db.session.add(client)
            db.session.flush()

            contacts_copied = _copy_contacts(lead, client, actor_id) if copy_contacts else 0
            documents_copied = _copy_documents(lead, client, actor_id) if copy_documents else 0

            lead.status = "won"
            lead.converted_to_client_id = client.id
            lead.converted_at = utcnow()
            lead.updated_by_id = actor_id
            db.session.flush()
    except SQLAlchemyError as exc:
        logger.error("Lead %s conversion rolled back: %s", lead_id, exc)
        raise classify_store_error(exc, "convert_lead_to_client") from exc

    write_audit(entity_type="lead", entity_id=lead.id, action="lead.convert",
                tenant_id=tenant_id, actor_user_id=actor_id,
                diff={"client_id": client.id, "contacts_copied": contacts_copied,
                      "documents_copied": documents_copied})
    NotificationService.create(
        tenant_id=tenant_id,
        recipient_id=actor_id,
        title="Lead converted",
        message=f"{lead.lead_name} is now client {client.name} ({client.display_id}).",
        severity="success",
        entity_type="client",
        entity_id=client.id,
    )
    logger.info("Lead %s converted to client %s (%d contacts, %d documents)",
                lead.id, client.id, contacts_copied, documents_copied)
    return ConversionResult(
        client=client,
        created=True,
        contacts_copied=contacts_copied,
        documents_copied=documents_copied,
    )
