"""
Pitch Service.

Functions:
    - create_pitch / get_pitch / list_pitches / update_pitch / delete_pitch
    - approve_pitch:  Sets is_approved with approver and timestamp together
    - reject_pitch:   Clears approval

A pitch's set_id is fixed at creation. Ordering follows the same
order_key rules as phases, and predecessor/successor links must stay
acyclic within the set.
"""

import logging

from sqlalchemy import select

from delivery_workspace.core.exceptions import ValidationError
from delivery_workspace.models import db
from delivery_workspace.models.audit import write_audit
from delivery_workspace.models.base import utcnow
from delivery_workspace.models.delivery import PITCH_STATUSES, Pitch, Set
from delivery_workspace.services import aggregation_service
from delivery_workspace.services.helpers.display_ids import assign_display_id
from delivery_workspace.services.helpers.scoped_queries import get_scoped
from delivery_workspace.services.helpers.sequencing import assert_acyclic_chain, resolve_order_key
from delivery_workspace.services.helpers.validators import (
    apply_fields,
    check_choice,
    parse_date,
    parse_int,
    require,
)

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = ("name", "description", "status", "show_in_client_portal")
DATE_FIELDS = ("expected_start_date", "expected_end_date")


def _linked(pitch_id, set_id, tenant_id):
    if not pitch_id:
        return None
    return get_scoped(Pitch, pitch_id, tenant_id=tenant_id, set_id=set_id)


def _check_chain(pitch_id, set_id, predecessor, successor):
    assert_acyclic_chain(
        Pitch, pitch_id,
        parent_column="set_id", parent_id=set_id,
        predecessor_id=predecessor.id if predecessor else None,
        successor_id=successor.id if successor else None,
        predecessor_attr="predecessor_pitch_id", successor_attr="successor_pitch_id",
    )


def create_pitch(set_id: str, *, tenant_id: str, data: dict, actor_id: str | None = None) -> Pitch:
    require(data, "name")
    check_choice(data.get("status"), PITCH_STATUSES, "status")
    set_obj = get_scoped(Set, set_id, tenant_id=tenant_id)

    predecessor = _linked(data.get("predecessor_pitch_id"), set_obj.id, tenant_id)
    successor = _linked(data.get("successor_pitch_id"), set_obj.id, tenant_id)
    _check_chain(None, set_obj.id, predecessor, successor)
    order_manual = parse_int(data.get("order_manual"), "order_manual")

    pitch = Pitch(
        tenant_id=tenant_id,
        set_id=set_obj.id,
        name=data["name"].strip(),
        description=data.get("description") or "",
        status=data.get("status") or "not_started",
        order_key=resolve_order_key(
            Pitch, parent_column="set_id", parent_id=set_obj.id,
            order_manual=order_manual, predecessor=predecessor, successor=successor,
        ),
        order_manual=order_manual,
        predecessor_pitch_id=predecessor.id if predecessor else None,
        successor_pitch_id=successor.id if successor else None,
        completion_percentage=0,
        show_in_client_portal=bool(data.get("show_in_client_portal", False)),
        is_template=set_obj.is_template,
        created_by_id=actor_id,
        updated_by_id=actor_id,
    )
    for field in DATE_FIELDS:
        setattr(pitch, field, parse_date(data.get(field), field))
    assign_display_id(pitch)
    db.session.add(pitch)
    db.session.flush()

    write_audit(entity_type="pitch", entity_id=pitch.id, action="create",
                tenant_id=tenant_id, actor_user_id=actor_id, diff={"set_id": set_obj.id})
    logger.info("Pitch created: %s in set %s", pitch.display_id, set_obj.id)
    return pitch


def get_pitch(pitch_id: str, *, tenant_id: str) -> Pitch:
    return get_scoped(Pitch, pitch_id, tenant_id=tenant_id)


def list_pitches(set_id: str, *, tenant_id: str, portal_only: bool = False) -> list[Pitch]:
    set_obj = get_scoped(Set, set_id, tenant_id=tenant_id)
    stmt = select(Pitch).where(Pitch.set_id == set_obj.id, Pitch.deleted_at.is_(None))
    if portal_only:
        stmt = stmt.where(Pitch.show_in_client_portal.is_(True))
    return db.session.execute(stmt.order_by(Pitch.order_key, Pitch.created_at)).scalars().all()


def update_pitch(pitch_id: str, *, tenant_id: str, data: dict, actor_id: str | None = None) -> Pitch:
    pitch = get_pitch(pitch_id, tenant_id=tenant_id)
    if data.get("set_id") not in (None, pitch.set_id):
        raise ValidationError("A pitch cannot be moved to another set", details={"set_id": "immutable"})
    check_choice(data.get("status"), PITCH_STATUSES, "status")
    if "name" in data:
        require(data, "name")
    if "is_approved" in data:
        raise ValidationError(
            "Use the approve/reject actions to change approval",
            details={"is_approved": "read-only"},
        )

    changes = {}
    if "predecessor_pitch_id" in data or "successor_pitch_id" in data:
        predecessor = _linked(
            data.get("predecessor_pitch_id", pitch.predecessor_pitch_id), pitch.set_id, tenant_id,
        )
        successor = _linked(
            data.get("successor_pitch_id", pitch.successor_pitch_id), pitch.set_id, tenant_id,
        )
        _check_chain(pitch.id, pitch.set_id, predecessor, successor)
        changes.update(apply_fields(pitch, {
            "predecessor_pitch_id": predecessor.id if predecessor else None,
            "successor_pitch_id": successor.id if successor else None,
        }, ("predecessor_pitch_id", "successor_pitch_id")))

    if "order_manual" in data:
        order_manual = parse_int(data["order_manual"], "order_manual")
        changes.update(apply_fields(pitch, {"order_manual": order_manual}, ("order_manual",)))
        if order_manual is not None:
            changes.update(apply_fields(pitch, {"order_key": order_manual}, ("order_key",)))

    changes.update(apply_fields(pitch, data, _EDITABLE_FIELDS))
    for field in DATE_FIELDS:
        if field in data:
            changes.update(apply_fields(pitch, {field: parse_date(data[field], field)}, (field,)))

    if changes:
        pitch.updated_by_id = actor_id
        db.session.flush()
        write_audit(entity_type="pitch", entity_id=pitch.id, action="update",
                    tenant_id=tenant_id, actor_user_id=actor_id, diff=changes)
    return pitch


def approve_pitch(pitch_id: str, *, tenant_id: str, approver_id: str) -> Pitch:
    if not approver_id:
        raise ValidationError("approver_id is required", details={"approver_id": "required"})
    pitch = get_pitch(pitch_id, tenant_id=tenant_id)
    pitch.is_approved = True
    pitch.approved_by_id = approver_id
    pitch.approved_at = utcnow()
    pitch.updated_by_id = approver_id
    db.session.flush()
    write_audit(entity_type="pitch", entity_id=pitch.id, action="pitch.approve",
                tenant_id=tenant_id, actor_user_id=approver_id)
    logger.info("Pitch approved: %s by %s", pitch.id, approver_id)
    return pitch


def reject_pitch(pitch_id: str, *, tenant_id: str, actor_id: str | None = None) -> Pitch:
    pitch = get_pitch(pitch_id, tenant_id=tenant_id)
    pitch.is_approved = False
    pitch.approved_by_id = None
    pitch.approved_at = None
    pitch.updated_by_id = actor_id
    db.session.flush()
    write_audit(entity_type="pitch", entity_id=pitch.id, action="pitch.reject",
                tenant_id=tenant_id, actor_user_id=actor_id)
    return pitch


def delete_pitch(pitch_id: str, *, tenant_id: str, actor_id: str | None = None) -> Pitch:
    """Soft-delete the pitch. Its requirements stay in the set."""
    pitch = get_pitch(pitch_id, tenant_id=tenant_id)
    pitch.soft_delete()
    pitch.updated_by_id = actor_id
    db.session.flush()
    write_audit(entity_type="pitch", entity_id=pitch.id, action="delete",
                tenant_id=tenant_id, actor_user_id=actor_id)
    aggregation_service.recompute_completion("set", pitch.set_id, tenant_id=tenant_id)
    logger.info("Pitch soft-deleted: %s", pitch.id)
    return pitch
