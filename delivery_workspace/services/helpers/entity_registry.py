"""
Polymorphic entity resolution for attachments (documents, discussions, notes).

Maps the ``entity_type`` key stored on attachment rows to its model and
loads the target inside the caller's tenant.
"""

from delivery_workspace.core.exceptions import NotFoundError, ValidationError
from delivery_workspace.models import db
from delivery_workspace.models.attachments import ATTACHABLE_ENTITY_TYPES
from delivery_workspace.models.crm import Client, Contact, Lead
from delivery_workspace.models.delivery import Phase, Pitch, Project, Requirement, Set
from delivery_workspace.services.helpers.scoped_queries import ensure_uuid, get_scoped

ENTITY_MODELS = {
    "client": Client,
    "project": Project,
    "phase": Phase,
    "set": Set,
    "pitch": Pitch,
    "requirement": Requirement,
    "lead": Lead,
    "contact": Contact,
}


def model_for(entity_type: str):
    if entity_type not in ATTACHABLE_ENTITY_TYPES:
        raise ValidationError(
            f"Invalid entity_type: {entity_type!r}",
            details={"entity_type": f"must be one of {sorted(ATTACHABLE_ENTITY_TYPES)}"},
        )
    return ENTITY_MODELS[entity_type]


def resolve_entity(entity_type: str, entity_id: str, *, tenant_id: str):
    """Load an attachment target; contacts may be global (tenant_id NULL)."""
    model = model_for(entity_type)
    if model is Contact:
        contact = db.session.get(Contact, ensure_uuid(entity_id, "entity_id"))
        if contact is None or contact.is_deleted or contact.tenant_id not in (None, tenant_id):
            raise NotFoundError(resource="Contact", resource_id=entity_id)
        return contact
    return get_scoped(model, entity_id, tenant_id=tenant_id)
