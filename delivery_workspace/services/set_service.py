"""
Set Service.

A Set hangs off a Client and/or a Project, optionally inside a Phase.
When a project is given the client is taken from it; a phase must belong
to the set's project. ``priority`` is recomputed on every write and any
caller-supplied value is ignored.
"""

import logging

from delivery_workspace.core.exceptions import ValidationError
from delivery_workspace.models import db
from delivery_workspace.models.audit import write_audit
from delivery_workspace.models.crm import Client
from delivery_workspace.models.delivery import (
    IMPORTANCE_LEVELS,
    SET_STATUSES,
    URGENCY_LEVELS,
    Phase,
    Project,
    Set,
    calculate_priority,
)
from delivery_workspace.services import aggregation_service
from delivery_workspace.services.helpers.display_ids import assign_display_id
from delivery_workspace.services.helpers.scoped_queries import get_scoped
from delivery_workspace.services.helpers.sequencing import next_sibling_value
from delivery_workspace.services.helpers.validators import (
    apply_fields,
    check_choice,
    parse_date,
    parse_decimal,
    require,
)

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = (
    "name", "description", "status", "urgency", "importance", "owner_id", "lead_id",
    "secondary_lead_id", "pm_id", "show_in_client_portal",
)
DATE_FIELDS = ("expected_start_date", "expected_end_date")
DECIMAL_FIELDS = ("budget_days", "budget_hours")


def _validate(data: dict) -> None:
    check_choice(data.get("status"), SET_STATUSES, "status")
    check_choice(data.get("urgency"), URGENCY_LEVELS, "urgency")
    check_choice(data.get("importance"), IMPORTANCE_LEVELS, "importance")


def _resolve_parents(data: dict, tenant_id: str) -> tuple[str, str | None, str | None, bool]:
    """Return (client_id, project_id, phase_id, is_template) for a new set."""
    project = None
    phase = None
    if data.get("phase_id"):
        phase = get_scoped(Phase, data["phase_id"], tenant_id=tenant_id)
        if data.get("project_id") not in (None, phase.project_id):
            raise ValidationError(
                "Phase does not belong to the given project",
                details={"phase_id": "belongs to another project"},
            )
        project = get_scoped(Project, phase.project_id, tenant_id=tenant_id)
    elif data.get("project_id"):
        project = get_scoped(Project, data["project_id"], tenant_id=tenant_id)

    if project is not None:
        if data.get("client_id") not in (None, project.client_id):
            raise ValidationError(
                "Client does not match the project's client",
                details={"client_id": "must match project.client_id"},
            )
        return project.client_id, project.id, phase.id if phase else None, project.is_template

    if not data.get("client_id"):
        raise ValidationError(
            "A set needs a client or a project",
            details={"client_id": "required when project_id is empty", "project_id": "required when client_id is empty"},
        )
    client = get_scoped(Client, data["client_id"], tenant_id=tenant_id)
    return client.id, None, None, bool(data.get("is_template", False))


def _order_parent(set_obj: Set) -> tuple[str, str]:
    if set_obj.phase_id:
        return "phase_id", set_obj.phase_id
    if set_obj.project_id:
        return "project_id", set_obj.project_id
    return "client_id", set_obj.client_id


def _refresh_from(set_obj: Set) -> aggregation_service.CascadeResult:
    return aggregation_service.recompute_completion("set", set_obj.id, tenant_id=set_obj.tenant_id)


def create_set(*, tenant_id: str, data: dict, actor_id: str | None = None) -> Set:
    require(data, "name")
    _validate(data)
    client_id, project_id, phase_id, is_template = _resolve_parents(data, tenant_id)

    urgency = data.get("urgency") or "medium"
    importance = data.get("importance") or "medium"
    set_obj = Set(
        tenant_id=tenant_id,
        client_id=client_id,
        project_id=project_id,
        phase_id=phase_id,
        name=data["name"].strip(),
        description=data.get("description") or "",
        status=data.get("status") or "open",
        urgency=urgency,
        importance=importance,
        priority=calculate_priority(importance, urgency),
        completion_percentage=0,
        owner_id=data.get("owner_id"),
        lead_id=data.get("lead_id"),
        secondary_lead_id=data.get("secondary_lead_id"),
        pm_id=data.get("pm_id"),
        show_in_client_portal=bool(data.get("show_in_client_portal", False)),
        is_template=is_template,
        created_by_id=actor_id,
        updated_by_id=actor_id,
    )
    for field in DATE_FIELDS:
        setattr(set_obj, field, parse_date(data.get(field), field))
    for field in DECIMAL_FIELDS:
        setattr(set_obj, field, parse_decimal(data.get(field), field))
    parent_column, parent_id = _order_parent(set_obj)
    set_obj.set_order = next_sibling_value(Set, "set_order", parent_column, parent_id)
    assign_display_id(set_obj)
    db.session.add(set_obj)
    db.session.flush()

    write_audit(entity_type="set", entity_id=set_obj.id, action="create",
                tenant_id=tenant_id, actor_user_id=actor_id,
                diff={"client_id": client_id, "project_id": project_id, "phase_id": phase_id})
    _refresh_from(set_obj)
    logger.info("Set created: %s (priority %s)", set_obj.display_id, set_obj.priority)
    return set_obj


def get_set(set_id: str, *, tenant_id: str) -> Set:
    return get_scoped(Set, set_id, tenant_id=tenant_id)


def list_sets(
    *,
    tenant_id: str,
    client_id: str | None = None,
    project_id: str | None = None,
    phase_id: str | None = None,
    status: str | None = None,
    include_templates: bool = False,
    portal_only: bool = False,
) -> list[Set]:
    if include_templates:
        query = Set.query_active().filter(Set.tenant_id == tenant_id)
    else:
        query = Set.query_operational(tenant_id)
    if client_id:
        query = query.filter(Set.client_id == client_id)
    if project_id:
        query = query.filter(Set.project_id == project_id)
    if phase_id:
        query = query.filter(Set.phase_id == phase_id)
    if status:
        check_choice(status, SET_STATUSES, "status")
        query = query.filter(Set.status == status)
    if portal_only:
        query = query.filter(Set.show_in_client_portal.is_(True))
    return query.order_by(Set.priority, Set.set_order).all()


def update_set(set_id: str, *, tenant_id: str, data: dict, actor_id: str | None = None) -> Set:
    """Update a set. Moving between phases of the same project refreshes both phases."""
    set_obj = get_set(set_id, tenant_id=tenant_id)
    for field in ("client_id", "project_id"):
        if data.get(field) not in (None, getattr(set_obj, field)):
            raise ValidationError(
                f"A set's {field} cannot be changed", details={field: "immutable"},
            )
    _validate(data)
    if "name" in data:
        require(data, "name")

    old_phase_id = set_obj.phase_id
    changes = {}
    if "phase_id" in data and (data["phase_id"] or None) != old_phase_id:
        new_phase_id = data["phase_id"] or None
        if new_phase_id is not None:
            if set_obj.project_id is None:
                raise ValidationError(
                    "Only project sets can be placed in a phase",
                    details={"phase_id": "set has no project"},
                )
            phase = get_scoped(Phase, new_phase_id, tenant_id=tenant_id)
            if phase.project_id != set_obj.project_id:
                raise ValidationError(
                    "Phase does not belong to the set's project",
                    details={"phase_id": "belongs to another project"},
                )
        changes["phase_id"] = (old_phase_id, new_phase_id)
        set_obj.phase_id = new_phase_id
        parent_column, parent_id = _order_parent(set_obj)
        set_obj.set_order = next_sibling_value(Set, "set_order", parent_column, parent_id)

    changes.update(apply_fields(set_obj, data, _EDITABLE_FIELDS))
    for field in DATE_FIELDS:
        if field in data:
            changes.update(apply_fields(set_obj, {field: parse_date(data[field], field)}, (field,)))
    for field in DECIMAL_FIELDS:
        if field in data:
            changes.update(apply_fields(set_obj, {field: parse_decimal(data[field], field)}, (field,)))
    set_obj.priority = calculate_priority(set_obj.importance, set_obj.urgency)

    if changes:
        set_obj.updated_by_id = actor_id
        db.session.flush()
        write_audit(entity_type="set", entity_id=set_obj.id, action="update",
                    tenant_id=tenant_id, actor_user_id=actor_id, diff=changes)
    if "phase_id" in changes:
        if old_phase_id:
            aggregation_service.recompute_completion("phase", old_phase_id, tenant_id=tenant_id)
        _refresh_from(set_obj)
    return set_obj


def delete_set(set_id: str, *, tenant_id: str, actor_id: str | None = None) -> Set:
    set_obj = get_set(set_id, tenant_id=tenant_id)
    set_obj.soft_delete()
    set_obj.updated_by_id = actor_id
    db.session.flush()
    write_audit(entity_type="set", entity_id=set_obj.id, action="delete",
                tenant_id=tenant_id, actor_user_id=actor_id)
    if set_obj.phase_id:
        aggregation_service.recompute_completion("phase", set_obj.phase_id, tenant_id=tenant_id)
    elif set_obj.project_id:
        aggregation_service.recompute_completion("project", set_obj.project_id, tenant_id=tenant_id)
    logger.info("Set soft-deleted: %s", set_obj.id)
    return set_obj
