"""
Lead Service — sales pipeline records.

Status rules:
    - "lost" requires a lost_reason
    - "won" is reached only through lead_conversion_service
    - a converted lead keeps its status and conversion fields
"""

import logging
from collections import defaultdict
from decimal import Decimal

from sqlalchemy import select

from delivery_workspace.core.exceptions import ValidationError
from delivery_workspace.models import db
from delivery_workspace.models.audit import write_audit
from delivery_workspace.models.crm import LEAD_SOURCES, LEAD_STATUSES, OPEN_LEAD_STATUSES, Lead
from delivery_workspace.services.helpers.display_ids import assign_display_id
from delivery_workspace.services.helpers.scoped_queries import get_scoped
from delivery_workspace.services.helpers.validators import (
    apply_fields,
    check_choice,
    parse_date,
    parse_decimal,
    parse_email,
    require,
)

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = (
    "lead_name", "company_name", "description", "source", "lead_owner_id", "industry",
    "website", "phone", "email", "company_size", "lost_reason", "lost_reason_notes",
)


def _check_status(status, lost_reason) -> None:
    check_choice(status, LEAD_STATUSES, "status")
    if status == "won":
        raise ValidationError(
            "A lead is marked won by converting it to a client",
            details={"status": "use the convert action"},
        )
    if status == "lost" and not lost_reason:
        raise ValidationError(
            "lost_reason is required when a lead is lost",
            details={"lost_reason": "required"},
        )


def create_lead(*, tenant_id: str, data: dict, actor_id: str | None = None) -> Lead:
    require(data, "lead_name")
    check_choice(data.get("source"), LEAD_SOURCES, "source")
    status = data.get("status") or "new"
    _check_status(status, data.get("lost_reason"))

    lead = Lead(
        tenant_id=tenant_id,
        lead_name=data["lead_name"].strip(),
        company_name=data.get("company_name"),
        description=data.get("description") or "",
        status=status,
        source=data.get("source"),
        estimated_value=parse_decimal(data.get("estimated_value"), "estimated_value"),
        estimated_close_date=parse_date(data.get("estimated_close_date"), "estimated_close_date"),
        lead_owner_id=data.get("lead_owner_id") or actor_id,
        industry=data.get("industry"),
        website=data.get("website"),
        phone=data.get("phone"),
        email=parse_email(data.get("email")),
        company_size=data.get("company_size"),
        lost_reason=data.get("lost_reason"),
        lost_reason_notes=data.get("lost_reason_notes"),
        created_by_id=actor_id,
        updated_by_id=actor_id,
    )
    assign_display_id(lead)
    db.session.add(lead)
    db.session.flush()
    write_audit(entity_type="lead", entity_id=lead.id, action="create",
                tenant_id=tenant_id, actor_user_id=actor_id, diff={"lead_name": lead.lead_name})
    logger.info("Lead created: %s tenant=%s", lead.display_id, tenant_id)
    return lead


def get_lead(lead_id: str, *, tenant_id: str) -> Lead:
    return get_scoped(Lead, lead_id, tenant_id=tenant_id)


def list_leads(
    *,
    tenant_id: str,
    status: str | None = None,
    owner_id: str | None = None,
    open_only: bool = False,
) -> list[Lead]:
    stmt = select(Lead).where(Lead.tenant_id == tenant_id, Lead.deleted_at.is_(None))
    if status:
        check_choice(status, LEAD_STATUSES, "status")
        stmt = stmt.where(Lead.status == status)
    elif open_only:
        stmt = stmt.where(Lead.status.in_(OPEN_LEAD_STATUSES))
    if owner_id:
        stmt = stmt.where(Lead.lead_owner_id == owner_id)
    stmt = stmt.order_by(Lead.estimated_close_date.is_(None), Lead.estimated_close_date, Lead.created_at)
    return db.session.execute(stmt).scalars().all()


def update_lead(lead_id: str, *, tenant_id: str, data: dict, actor_id: str | None = None) -> Lead:
    lead = get_lead(lead_id, tenant_id=tenant_id)
    check_choice(data.get("source"), LEAD_SOURCES, "source")
    if "lead_name" in data:
        require(data, "lead_name")
    if "email" in data:
        data = {**data, "email": parse_email(data["email"])}
    for field in ("converted_to_client_id", "converted_at"):
        if field in data:
            raise ValidationError(f"{field} is set by conversion", details={field: "read-only"})

    changes = {}
    if "status" in data and data["status"] != lead.status:
        if lead.is_converted:
            raise ValidationError(
                "A converted lead's status cannot change", details={"status": "lead already converted"},
            )
        _check_status(data["status"], data.get("lost_reason", lead.lost_reason))
        changes["status"] = (lead.status, data["status"])
        lead.status = data["status"]

    changes.update(apply_fields(lead, data, _EDITABLE_FIELDS))
    if "estimated_value" in data:
        value = parse_decimal(data["estimated_value"], "estimated_value")
        changes.update(apply_fields(lead, {"estimated_value": value}, ("estimated_value",)))
    if "estimated_close_date" in data:
        close = parse_date(data["estimated_close_date"], "estimated_close_date")
        changes.update(apply_fields(lead, {"estimated_close_date": close}, ("estimated_close_date",)))

    if lead.status == "lost" and not lead.lost_reason:
        raise ValidationError("lost_reason is required when a lead is lost", details={"lost_reason": "required"})

    if changes:
        lead.updated_by_id = actor_id
        db.session.flush()
        write_audit(entity_type="lead", entity_id=lead.id, action="update",
                    tenant_id=tenant_id, actor_user_id=actor_id, diff=changes)
    return lead


def delete_lead(lead_id: str, *, tenant_id: str, actor_id: str | None = None) -> Lead:
    lead = get_lead(lead_id, tenant_id=tenant_id)
    lead.soft_delete()
    lead.updated_by_id = actor_id
    db.session.flush()
    write_audit(entity_type="lead", entity_id=lead.id, action="delete",
                tenant_id=tenant_id, actor_user_id=actor_id)
    logger.info("Lead soft-deleted: %s", lead.id)
    return lead


def get_pipeline_stats(tenant_id: str) -> dict:
    """Pipeline totals over non-deleted leads.

    total_value counts open leads only; conversion_rate is won / (won + lost).
    """
    rows = db.session.execute(
        select(Lead.status, Lead.estimated_value).where(
            Lead.tenant_id == tenant_id, Lead.deleted_at.is_(None),
        )
    ).all()

    by_status = defaultdict(lambda: {"count": 0, "value": Decimal("0")})
    total_value = won_value = lost_value = Decimal("0")
    won_count = closed_count = 0
    for status, value in rows:
        value = value or Decimal("0")
        by_status[status]["count"] += 1
        by_status[status]["value"] += value
        if status == "won":
            won_value += value
            won_count += 1
            closed_count += 1
        elif status == "lost":
            lost_value += value
            closed_count += 1
        else:
            total_value += value

    conversion_rate = round(won_count / closed_count * 100, 1) if closed_count else 0.0
    return {
        "total_value": float(total_value),
        "won_value": float(won_value),
        "lost_value": float(lost_value),
        "conversion_rate": conversion_rate,
        "by_status": {
            status: {"count": entry["count"], "value": float(entry["value"])}
            for status, entry in by_status.items()
        },
    }
