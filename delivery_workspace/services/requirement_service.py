"""
Requirement Service — leaf units of work.

Rules enforced here:
    - set_id is fixed at creation; pitch_id (optional) must belong to the same set
    - priority is recomputed from importance × urgency on every write
    - completed_at follows status (set on entering "completed", cleared on leaving)
    - reviewed_at is stamped when review_status becomes approved/rejected
    - every create, status change, pitch move, delete and restore triggers
      the completion cascade (pitch → set → phase → project)
"""

import logging

from sqlalchemy import select

from delivery_workspace.core.exceptions import NotFoundError, ValidationError
from delivery_workspace.models import db
from delivery_workspace.models.audit import write_audit
from delivery_workspace.models.base import utcnow
from delivery_workspace.models.delivery import (
    IMPORTANCE_LEVELS,
    REQUIREMENT_STATUSES,
    REQUIREMENT_TYPES,
    REVIEW_STATUSES,
    URGENCY_LEVELS,
    Pitch,
    Requirement,
    Set,
    calculate_priority,
)
from delivery_workspace.services import aggregation_service
from delivery_workspace.services.helpers.display_ids import assign_display_id
from delivery_workspace.services.helpers.scoped_queries import get_scoped, get_scoped_or_none
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
    "title", "description", "requirement_type", "urgency", "importance", "requires_review",
    "reviewer_id", "requires_document", "is_task", "assigned_to_id", "show_in_client_portal",
)
DECIMAL_FIELDS = ("estimated_hours", "actual_hours")
REVIEW_DECIDED = {"approved", "rejected"}


def _validate(data: dict) -> None:
    check_choice(data.get("status"), REQUIREMENT_STATUSES, "status")
    check_choice(data.get("requirement_type"), REQUIREMENT_TYPES, "requirement_type")
    check_choice(data.get("urgency"), URGENCY_LEVELS, "urgency")
    check_choice(data.get("importance"), IMPORTANCE_LEVELS, "importance")
    check_choice(data.get("review_status"), REVIEW_STATUSES, "review_status")


def _pitch_in_set(pitch_id, set_id, tenant_id):
    """Resolve ``pitch_id`` and insist it belongs to ``set_id``."""
    if not pitch_id:
        return None
    pitch = get_scoped_or_none(Pitch, pitch_id, tenant_id=tenant_id)
    if pitch is None:
        raise NotFoundError(resource="Pitch", resource_id=pitch_id)
    if pitch.set_id != set_id:
        raise ValidationError(
            "Pitch belongs to a different set",
            details={"pitch_id": "must belong to the requirement's set"},
        )
    return pitch


def _apply_status(req: Requirement, status: str) -> bool:
    """Set status and keep completed_at in step. Returns True if it changed."""
    if status == req.status:
        return False
    req.status = status
    if status == "completed":
        req.completed_at = utcnow()
    else:
        req.completed_at = None
    return True


def _apply_review_status(req: Requirement, review_status: str) -> bool:
    if review_status == req.review_status:
        return False
    req.review_status = review_status
    req.reviewed_at = utcnow() if review_status in REVIEW_DECIDED else None
    return True


def create_requirement(set_id: str, *, tenant_id: str, data: dict, actor_id: str | None = None) -> Requirement:
    require(data, "title")
    _validate(data)
    set_obj = get_scoped(Set, set_id, tenant_id=tenant_id)
    pitch = _pitch_in_set(data.get("pitch_id"), set_obj.id, tenant_id)

    requirement_type = data.get("requirement_type") or "task"
    urgency = data.get("urgency") or "medium"
    importance = data.get("importance") or "medium"
    requires_review = bool(data.get("requires_review", False))

    req = Requirement(
        tenant_id=tenant_id,
        set_id=set_obj.id,
        pitch_id=pitch.id if pitch else None,
        title=data["title"].strip(),
        description=data.get("description") or "",
        requirement_type=requirement_type,
        status="open",
        urgency=urgency,
        importance=importance,
        priority=calculate_priority(importance, urgency),
        requires_review=requires_review,
        review_status="pending" if requires_review else "not_required",
        reviewer_id=data.get("reviewer_id"),
        requires_document=bool(data.get("requires_document", False)),
        is_task=bool(data.get("is_task", requirement_type == "task")),
        assigned_to_id=data.get("assigned_to_id"),
        due_date=parse_date(data.get("due_date"), "due_date"),
        requirement_order=next_sibling_value(Requirement, "requirement_order", "set_id", set_obj.id),
        show_in_client_portal=bool(data.get("show_in_client_portal", False)),
        is_template=set_obj.is_template,
        created_by_id=actor_id,
        updated_by_id=actor_id,
    )
    for field in DECIMAL_FIELDS:
        setattr(req, field, parse_decimal(data.get(field), field))
    _apply_status(req, data.get("status") or "open")
    if data.get("review_status"):
        _apply_review_status(req, data["review_status"])

    assign_display_id(req)
    db.session.add(req)
    db.session.flush()

    write_audit(entity_type="requirement", entity_id=req.id, action="create",
                tenant_id=tenant_id, actor_user_id=actor_id,
                diff={"set_id": set_obj.id, "pitch_id": req.pitch_id, "status": req.status})
    aggregation_service.cascade_from_requirement(req)
    logger.info("Requirement created: %s in set %s (priority %s)", req.display_id, set_obj.id, req.priority)
    return req


def get_requirement(requirement_id: str, *, tenant_id: str, include_deleted: bool = False) -> Requirement:
    return get_scoped(Requirement, requirement_id, tenant_id=tenant_id, include_deleted=include_deleted)


def list_requirements(
    set_id: str,
    *,
    tenant_id: str,
    pitch_id: str | None = None,
    status: str | None = None,
    portal_only: bool = False,
) -> list[Requirement]:
    set_obj = get_scoped(Set, set_id, tenant_id=tenant_id)
    stmt = select(Requirement).where(
        Requirement.set_id == set_obj.id, Requirement.deleted_at.is_(None),
    )
    if pitch_id:
        stmt = stmt.where(Requirement.pitch_id == pitch_id)
    if status:
        check_choice(status, REQUIREMENT_STATUSES, "status")
        stmt = stmt.where(Requirement.status == status)
    if portal_only:
        stmt = stmt.where(Requirement.show_in_client_portal.is_(True))
    return db.session.execute(
        stmt.order_by(Requirement.requirement_order, Requirement.created_at)
    ).scalars().all()


def list_tasks(
    *,
    tenant_id: str,
    assigned_to_id: str | None = None,
    status: str | None = None,
    open_only: bool = False,
) -> list[Requirement]:
    """Requirements flagged ``is_task`` across the tenant, most urgent first."""
    query = Requirement.query_operational(tenant_id).filter(Requirement.is_task.is_(True))
    if assigned_to_id:
        query = query.filter(Requirement.assigned_to_id == assigned_to_id)
    if status:
        check_choice(status, REQUIREMENT_STATUSES, "status")
        query = query.filter(Requirement.status == status)
    elif open_only:
        query = query.filter(Requirement.status.notin_(("completed", "cancelled")))
    return query.order_by(Requirement.priority, Requirement.due_date).all()


def update_requirement(
    requirement_id: str, *, tenant_id: str, data: dict, actor_id: str | None = None,
) -> Requirement:
    req = get_requirement(requirement_id, tenant_id=tenant_id)
    if data.get("set_id") not in (None, req.set_id):
        raise ValidationError(
            "A requirement cannot be moved to another set", details={"set_id": "immutable"},
        )
    _validate(data)
    if "title" in data:
        require(data, "title")

    changes = {}
    old_pitch_id = req.pitch_id
    if "pitch_id" in data:
        pitch = _pitch_in_set(data["pitch_id"], req.set_id, tenant_id)
        changes.update(apply_fields(req, {"pitch_id": pitch.id if pitch else None}, ("pitch_id",)))

    old_status = req.status
    if data.get("status") and _apply_status(req, data["status"]):
        changes["status"] = (old_status, req.status)
    old_review = req.review_status
    if data.get("review_status") and _apply_review_status(req, data["review_status"]):
        changes["review_status"] = (old_review, req.review_status)

    changes.update(apply_fields(req, data, _EDITABLE_FIELDS))
    if "due_date" in data:
        changes.update(apply_fields(req, {"due_date": parse_date(data["due_date"], "due_date")}, ("due_date",)))
    for field in DECIMAL_FIELDS:
        if field in data:
            changes.update(apply_fields(req, {field: parse_decimal(data[field], field)}, (field,)))
    req.priority = calculate_priority(req.importance, req.urgency)

    if changes:
        req.updated_by_id = actor_id
        db.session.flush()
        write_audit(entity_type="requirement", entity_id=req.id, action="update",
                    tenant_id=tenant_id, actor_user_id=actor_id, diff=changes)

    if "pitch_id" in changes and old_pitch_id:
        aggregation_service.recompute_completion("pitch", old_pitch_id, tenant_id=tenant_id)
    if "status" in changes or "pitch_id" in changes:
        aggregation_service.cascade_from_requirement(req)
    return req


def delete_requirement(requirement_id: str, *, tenant_id: str, actor_id: str | None = None) -> Requirement:
    req = get_requirement(requirement_id, tenant_id=tenant_id)
    req.soft_delete()
    req.updated_by_id = actor_id
    db.session.flush()
    write_audit(entity_type="requirement", entity_id=req.id, action="delete",
                tenant_id=tenant_id, actor_user_id=actor_id)
    aggregation_service.cascade_from_requirement(req)
    logger.info("Requirement soft-deleted: %s", req.id)
    return req


def restore_requirement(requirement_id: str, *, tenant_id: str, actor_id: str | None = None) -> Requirement:
    req = get_requirement(requirement_id, tenant_id=tenant_id, include_deleted=True)
    if not req.is_deleted:
        return req
    req.restore()
    req.updated_by_id = actor_id
    db.session.flush()
    write_audit(entity_type="requirement", entity_id=req.id, action="restore",
                tenant_id=tenant_id, actor_user_id=actor_id)
    aggregation_service.cascade_from_requirement(req)
    return req
