"""
Phase Service.

Phases are ordered children of a Project. Placement uses order_key
(manual key, predecessor + 1, successor - 1, or append) and the
predecessor/successor links must stay acyclic among siblings.
"""

import logging

from sqlalchemy import select

from delivery_workspace.core.exceptions import ValidationError
from delivery_workspace.models import db
from delivery_workspace.models.audit import write_audit
from delivery_workspace.models.delivery import PHASE_STATUSES, Phase, Project
from delivery_workspace.services import aggregation_service
from delivery_workspace.services.helpers.display_ids import assign_display_id
from delivery_workspace.services.helpers.scoped_queries import get_scoped
from delivery_workspace.services.helpers.sequencing import (
    assert_acyclic_chain,
    next_sibling_value,
    resolve_order_key,
)
from delivery_workspace.services.helpers.validators import (
    apply_fields,
    check_choice,
    parse_date,
    parse_int,
    require,
)

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = ("name", "description", "status", "show_in_client_portal")
DATE_FIELDS = ("expected_start_date", "expected_end_date", "actual_start_date", "actual_end_date")


def _sibling(phase_id, project_id, tenant_id):
    """Load a linked phase; it must live under the same project."""
    if not phase_id:
        return None
    return get_scoped(Phase, phase_id, tenant_id=tenant_id, project_id=project_id)


def create_phase(project_id: str, *, tenant_id: str, data: dict, actor_id: str | None = None) -> Phase:
    require(data, "name")
    check_choice(data.get("status"), PHASE_STATUSES, "status")
    project = get_scoped(Project, project_id, tenant_id=tenant_id)

    predecessor = _sibling(data.get("predecessor_phase_id"), project.id, tenant_id)
    successor = _sibling(data.get("successor_phase_id"), project.id, tenant_id)
    assert_acyclic_chain(
        Phase, None,
        parent_column="project_id", parent_id=project.id,
        predecessor_id=predecessor.id if predecessor else None,
        successor_id=successor.id if successor else None,
        predecessor_attr="predecessor_phase_id", successor_attr="successor_phase_id",
    )
    order_manual = parse_int(data.get("order_manual"), "order_manual")

    phase = Phase(
        tenant_id=tenant_id,
        project_id=project.id,
        name=data["name"].strip(),
        description=data.get("description") or "",
        status=data.get("status") or "not_started",
        phase_order=next_sibling_value(Phase, "phase_order", "project_id", project.id),
        order_key=resolve_order_key(
            Phase, parent_column="project_id", parent_id=project.id,
            order_manual=order_manual, predecessor=predecessor, successor=successor,
        ),
        order_manual=order_manual,
        predecessor_phase_id=predecessor.id if predecessor else None,
        successor_phase_id=successor.id if successor else None,
        completion_percentage=0,
        show_in_client_portal=bool(data.get("show_in_client_portal", False)),
        is_template=project.is_template,
        created_by_id=actor_id,
        updated_by_id=actor_id,
    )
    for field in DATE_FIELDS:
        setattr(phase, field, parse_date(data.get(field), field))
    assign_display_id(phase)
    db.session.add(phase)
    db.session.flush()

    write_audit(entity_type="phase", entity_id=phase.id, action="create",
                tenant_id=tenant_id, actor_user_id=actor_id, diff={"project_id": project.id})
    logger.info("Phase created: %s under project %s", phase.display_id, project.id)
    return phase


def get_phase(phase_id: str, *, tenant_id: str) -> Phase:
    return get_scoped(Phase, phase_id, tenant_id=tenant_id)


def list_phases(project_id: str, *, tenant_id: str, portal_only: bool = False) -> list[Phase]:
    project = get_scoped(Project, project_id, tenant_id=tenant_id)
    stmt = select(Phase).where(Phase.project_id == project.id, Phase.deleted_at.is_(None))
    if portal_only:
        stmt = stmt.where(Phase.show_in_client_portal.is_(True))
    return db.session.execute(stmt.order_by(Phase.order_key, Phase.phase_order)).scalars().all()


def update_phase(phase_id: str, *, tenant_id: str, data: dict, actor_id: str | None = None) -> Phase:
    phase = get_phase(phase_id, tenant_id=tenant_id)
    if data.get("project_id") not in (None, phase.project_id):
        raise ValidationError(
            "A phase cannot be moved to another project", details={"project_id": "immutable"},
        )
    check_choice(data.get("status"), PHASE_STATUSES, "status")
    if "name" in data:
        require(data, "name")

    changes = {}
    if "predecessor_phase_id" in data or "successor_phase_id" in data:
        pred_id = data.get("predecessor_phase_id", phase.predecessor_phase_id) or None
        succ_id = data.get("successor_phase_id", phase.successor_phase_id) or None
        predecessor = _sibling(pred_id, phase.project_id, tenant_id)
        successor = _sibling(succ_id, phase.project_id, tenant_id)
        assert_acyclic_chain(
            Phase, phase.id,
            parent_column="project_id", parent_id=phase.project_id,
            predecessor_id=predecessor.id if predecessor else None,
            successor_id=successor.id if successor else None,
            predecessor_attr="predecessor_phase_id", successor_attr="successor_phase_id",
        )
        changes.update(apply_fields(phase, {
            "predecessor_phase_id": predecessor.id if predecessor else None,
            "successor_phase_id": successor.id if successor else None,
        }, ("predecessor_phase_id", "successor_phase_id")))

    if "order_manual" in data:
        order_manual = parse_int(data["order_manual"], "order_manual")
        changes.update(apply_fields(phase, {"order_manual": order_manual}, ("order_manual",)))
        if order_manual is not None:
            changes.update(apply_fields(phase, {"order_key": order_manual}, ("order_key",)))

    changes.update(apply_fields(phase, data, _EDITABLE_FIELDS))
    for field in DATE_FIELDS:
        if field in data:
            changes.update(apply_fields(phase, {field: parse_date(data[field], field)}, (field,)))

    if changes:
        phase.updated_by_id = actor_id
        db.session.flush()
        write_audit(entity_type="phase", entity_id=phase.id, action="update",
                    tenant_id=tenant_id, actor_user_id=actor_id, diff=changes)
    return phase


def delete_phase(phase_id: str, *, tenant_id: str, actor_id: str | None = None) -> Phase:
    """Soft-delete the phase and refresh the project's completion."""
    phase = get_phase(phase_id, tenant_id=tenant_id)
    phase.soft_delete()
    phase.updated_by_id = actor_id
    db.session.flush()
    write_audit(entity_type="phase", entity_id=phase.id, action="delete",
                tenant_id=tenant_id, actor_user_id=actor_id)
    aggregation_service.recompute_completion("project", phase.project_id, tenant_id=tenant_id)
    logger.info("Phase soft-deleted: %s", phase.id)
    return phase
