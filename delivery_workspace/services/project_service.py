"""
Project Service.

Functions:
    - create_project:     Create under a client, auto project_code + PR-#### id
    - get_project:        Tenant-scoped fetch
    - list_projects:      Operational view by default (no templates, no deleted)
    - update_project:     Plain-field update; client_id is immutable
    - delete_project:     Soft delete
    - next_project_code:  "ACM-001" style code from the client name

completion_percentage is derived from phases and is never written here.
"""

import logging
import re

from sqlalchemy import select

from delivery_workspace.core.exceptions import ValidationError
from delivery_workspace.models import db
from delivery_workspace.models.audit import write_audit
from delivery_workspace.models.crm import Client
from delivery_workspace.models.delivery import PROJECT_HEALTH, PROJECT_STATUSES, Project
from delivery_workspace.services.helpers.display_ids import assign_display_id
from delivery_workspace.services.helpers.scoped_queries import get_scoped
from delivery_workspace.services.helpers.validators import (
    apply_fields,
    check_choice,
    parse_date,
    require,
)

logger = logging.getLogger(__name__)

_TEXT_FIELDS = (
    "name", "description", "status", "health", "lead_id", "secondary_lead_id", "pm_id",
    "show_in_client_portal",
)
DATE_FIELDS = ("expected_start_date", "expected_end_date", "actual_start_date", "actual_end_date")
ASSIGNMENT_FIELDS = ("lead_id", "secondary_lead_id", "pm_id")


def _code_prefix(client_name: str) -> str:
    letters = re.sub(r"[^A-Za-z0-9]", "", client_name or "").upper()
    return (letters[:3] or "PRJ").ljust(3, "X")


def next_project_code(client: Client) -> str:
    """Next sequential code for the client's prefix inside its tenant: ACM-001, ACM-002, ..."""
    prefix = _code_prefix(client.name)
    codes = db.session.execute(
        select(Project.project_code).where(
            Project.tenant_id == client.tenant_id,
            Project.project_code.like(f"{prefix}-%"),
        )
    ).scalars().all()
    highest = 0
    for code in codes:
        suffix = code.rsplit("-", 1)[-1]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}-{highest + 1:03d}"


def _validate(data: dict) -> None:
    check_choice(data.get("status"), PROJECT_STATUSES, "status")
    check_choice(data.get("health"), PROJECT_HEALTH, "health")


def create_project(*, tenant_id: str, data: dict, actor_id: str | None = None) -> Project:
    require(data, "client_id", "name")
    _validate(data)
    client = get_scoped(Client, data["client_id"], tenant_id=tenant_id)

    project = Project(
        tenant_id=tenant_id,
        client_id=client.id,
        name=data["name"].strip(),
        project_code=data.get("project_code") or next_project_code(client),
        description=data.get("description") or "",
        status=data.get("status") or "planning",
        health=data.get("health") or "on_track",
        completion_percentage=0,
        lead_id=data.get("lead_id"),
        secondary_lead_id=data.get("secondary_lead_id"),
        pm_id=data.get("pm_id"),
        show_in_client_portal=bool(data.get("show_in_client_portal", False)),
        is_template=bool(data.get("is_template", False)),
        created_by_id=actor_id,
        updated_by_id=actor_id,
    )
    for field in DATE_FIELDS:
        setattr(project, field, parse_date(data.get(field), field))
    assign_display_id(project)
    db.session.add(project)
    db.session.flush()

    write_audit(entity_type="project", entity_id=project.id, action="create",
                tenant_id=tenant_id, actor_user_id=actor_id,
                diff={"name": project.name, "client_id": client.id})
    logger.info("Project created: %s %s tenant=%s", project.project_code, project.id, tenant_id)
    return project


def get_project(project_id: str, *, tenant_id: str) -> Project:
    return get_scoped(Project, project_id, tenant_id=tenant_id)


def list_projects(
    *,
    tenant_id: str,
    client_id: str | None = None,
    status: str | None = None,
    include_templates: bool = False,
    templates_only: bool = False,
    portal_only: bool = False,
) -> list[Project]:
    stmt = select(Project).where(Project.tenant_id == tenant_id, Project.deleted_at.is_(None))
    if templates_only:
        stmt = stmt.where(Project.is_template.is_(True))
    elif not include_templates:
        stmt = stmt.where(Project.is_template.is_(False))
    if client_id:
        stmt = stmt.where(Project.client_id == client_id)
    if status:
        check_choice(status, PROJECT_STATUSES, "status")
        stmt = stmt.where(Project.status == status)
    if portal_only:
        stmt = stmt.where(Project.show_in_client_portal.is_(True))
    return db.session.execute(stmt.order_by(Project.created_at.desc())).scalars().all()


def update_project(project_id: str, *, tenant_id: str, data: dict, actor_id: str | None = None) -> Project:
    project = get_project(project_id, tenant_id=tenant_id)
    if data.get("client_id") not in (None, project.client_id):
        raise ValidationError(
            "A project cannot be moved to another client",
            details={"client_id": "immutable"},
        )
    _validate(data)
    if "name" in data:
        require(data, "name")

    changes = apply_fields(project, data, _TEXT_FIELDS)
    for field in DATE_FIELDS:
        if field in data:
            new = parse_date(data[field], field)
            if new != getattr(project, field):
                changes[field] = (getattr(project, field), new)
                setattr(project, field, new)

    if changes:
        project.updated_by_id = actor_id
        db.session.flush()
        write_audit(entity_type="project", entity_id=project.id, action="update",
                    tenant_id=tenant_id, actor_user_id=actor_id, diff=changes)
    return project


def delete_project(project_id: str, *, tenant_id: str, actor_id: str | None = None) -> Project:
    project = get_project(project_id, tenant_id=tenant_id)
    project.soft_delete()
    project.updated_by_id = actor_id
    db.session.flush()
    write_audit(entity_type="project", entity_id=project.id, action="delete",
                tenant_id=tenant_id, actor_user_id=actor_id)
    logger.info("Project soft-deleted: %s", project.id)
    return project
