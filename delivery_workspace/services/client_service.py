"""
Client Service.

Functions:
    - create_client:  Create with CL-#### display id
    - get_client:     Tenant-scoped fetch
    - list_clients:   Active clients, optional status / portal filters
    - update_client:  Plain-field update (source_lead_id is conversion-owned)
    - delete_client:  Soft delete

Services flush; the caller (blueprint) commits.
"""

import logging

from sqlalchemy import select

from delivery_workspace.models import db
from delivery_workspace.models.audit import write_audit
from delivery_workspace.models.crm import CLIENT_STATUSES, Client
from delivery_workspace.services.helpers.display_ids import assign_display_id
from delivery_workspace.services.helpers.scoped_queries import get_scoped
from delivery_workspace.services.helpers.validators import apply_fields, check_choice, require

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = (
    "name", "company_name", "overview", "industry", "location", "status",
    "portal_enabled", "relationship_manager_id", "referral_source",
)


def create_client(*, tenant_id: str, data: dict, actor_id: str | None = None) -> Client:
    require(data, "name")
    check_choice(data.get("status"), CLIENT_STATUSES, "status")

    client = Client(
        tenant_id=tenant_id,
        name=data["name"].strip(),
        company_name=data.get("company_name"),
        overview=data.get("overview") or "",
        industry=data.get("industry"),
        location=data.get("location"),
        status=data.get("status") or "onboarding",
        portal_enabled=bool(data.get("portal_enabled", False)),
        relationship_manager_id=data.get("relationship_manager_id"),
        referral_source=data.get("referral_source"),
        source_lead_id=data.get("source_lead_id"),
        created_by_id=actor_id,
        updated_by_id=actor_id,
    )
    assign_display_id(client)
    db.session.add(client)
    db.session.flush()

    write_audit(entity_type="client", entity_id=client.id, action="create",
                tenant_id=tenant_id, actor_user_id=actor_id, diff={"name": client.name})
    logger.info("Client created: %s (%s) tenant=%s", client.display_id, client.id, tenant_id)
    return client


def get_client(client_id: str, *, tenant_id: str) -> Client:
    return get_scoped(Client, client_id, tenant_id=tenant_id)


def list_clients(
    *,
    tenant_id: str,
    status: str | None = None,
    client_id: str | None = None,
    portal_only: bool = False,
) -> list[Client]:
    stmt = select(Client).where(Client.tenant_id == tenant_id, Client.deleted_at.is_(None))
    if status:
        check_choice(status, CLIENT_STATUSES, "status")
        stmt = stmt.where(Client.status == status)
    if client_id:
        stmt = stmt.where(Client.id == client_id)
    if portal_only:
        stmt = stmt.where(Client.portal_enabled.is_(True))
    return db.session.execute(stmt.order_by(Client.name)).scalars().all()


def update_client(client_id: str, *, tenant_id: str, data: dict, actor_id: str | None = None) -> Client:
    client = get_client(client_id, tenant_id=tenant_id)
    check_choice(data.get("status"), CLIENT_STATUSES, "status")
    if "name" in data:
        require(data, "name")

    changes = apply_fields(client, data, _EDITABLE_FIELDS)
    if changes:
        client.updated_by_id = actor_id
        db.session.flush()
        write_audit(entity_type="client", entity_id=client.id, action="update",
                    tenant_id=tenant_id, actor_user_id=actor_id, diff=changes)
    return client


def delete_client(client_id: str, *, tenant_id: str, actor_id: str | None = None) -> Client:
    client = get_client(client_id, tenant_id=tenant_id)
    client.soft_delete()
    client.updated_by_id = actor_id
    db.session.flush()
    write_audit(entity_type="client", entity_id=client.id, action="delete",
                tenant_id=tenant_id, actor_user_id=actor_id)
    logger.info("Client soft-deleted: %s", client.id)
    return client
