"""
Template & Clone Engine.

Deep-copies a project subtree:

    Project ─▶ Phases ─▶ Sets (attached to the project) ─▶ Pitches ─▶ Requirements

Every inserted row gets fresh ids and a shared ``clone_batch_id``. All
foreign keys inside the copy (phase_id, set_id, pitch_id and the
predecessor/successor links) are remapped to the new rows, or cleared when
their target lies outside the copied tree, so nothing in the clone points
back into the source.

The copy runs inside one savepoint. If any stage fails the savepoint is
rolled back, rows still carrying the batch marker are purged and
PartialFailure reports the stage that failed.
"""

import logging

from sqlalchemy import delete, select

from delivery_workspace.core.exceptions import PartialFailure, ValidationError
from delivery_workspace.models import db
from delivery_workspace.models.audit import write_audit
from delivery_workspace.models.base import new_uuid
from delivery_workspace.models.crm import Client
from delivery_workspace.models.delivery import Phase, Pitch, Project, Requirement, Set
from delivery_workspace.services import project_service
from delivery_workspace.services.helpers.display_ids import assign_display_id
from delivery_workspace.services.helpers.scoped_queries import get_scoped
from delivery_workspace.services.notification import NotificationService

logger = logging.getLogger(__name__)

# Children first, so a purge never trips a foreign key.
PURGE_ORDER = (Requirement, Pitch, Set, Phase, Project)

PROJECT_ASSIGNMENTS = ("lead_id", "secondary_lead_id", "pm_id")
SET_ASSIGNMENTS = ("owner_id", "lead_id", "secondary_lead_id", "pm_id")
REQUIREMENT_ASSIGNMENTS = ("assigned_to_id", "reviewer_id")
FULL_DATES = ("expected_start_date", "expected_end_date", "actual_start_date", "actual_end_date")
EXPECTED_DATES = ("expected_start_date", "expected_end_date")


class _CloneRun:
    """State for one duplicate_project call: options, id maps and progress."""

    def __init__(self, *, tenant_id, actor_id, as_template, clear_dates, clear_assignments):
        self.tenant_id = tenant_id
        self.actor_id = actor_id
        self.as_template = as_template
        self.clear_dates = clear_dates
        self.clear_assignments = clear_assignments
        self.batch_id = new_uuid()
        self.stage = "project"
        self.inserted: list[str] = []
        self.phase_map: dict[str, str] = {}
        self.set_map: dict[str, str] = {}
        self.pitch_map: dict[str, str] = {}

    def copy(self, source, model, fields, *, dates=(), assignments=(), **overrides):
        row = model(
            tenant_id=self.tenant_id,
            is_template=self.as_template,
            clone_batch_id=self.batch_id,
            created_by_id=self.actor_id,
            updated_by_id=self.actor_id,
        )
        for name in fields:
            setattr(row, name, getattr(source, name))
        for name in dates:
            setattr(row, name, None if self.clear_dates else getattr(source, name))
        for name in assignments:
            setattr(row, name, None if self.clear_assignments else getattr(source, name))
        for name, value in overrides.items():
            setattr(row, name, value)
        assign_display_id(row)
        db.session.add(row)
        db.session.flush()
        self.inserted.append(row.id)
        return row


def _active_children(model, column, parent_id, *order_by):
    return db.session.execute(
        select(model).where(column == parent_id, model.deleted_at.is_(None)).order_by(*order_by)
    ).scalars().all()


def _copy_phases(run: _CloneRun, source: Project, target: Project) -> None:
    run.stage = "phases"
    phases = _active_children(Phase, Phase.project_id, source.id, Phase.order_key, Phase.phase_order)
    copies = []
    for phase in phases:
        new = run.copy(
            phase, Phase,
            ("name", "description", "phase_order", "order_key", "order_manual", "show_in_client_portal"),
            dates=FULL_DATES,
            project_id=target.id,
            status="not_started",
            completion_percentage=0 if not run.as_template else phase.completion_percentage,
        )
        run.phase_map[phase.id] = new.id
        copies.append((phase, new))
    for phase, new in copies:
        new.predecessor_phase_id = run.phase_map.get(phase.predecessor_phase_id)
        new.successor_phase_id = run.phase_map.get(phase.successor_phase_id)
    db.session.flush()


def _copy_sets(run: _CloneRun, source: Project, target: Project) -> list[tuple[Set, Set]]:
    run.stage = "sets"
    copies = []
    for set_obj in _active_children(Set, Set.project_id, source.id, Set.set_order, Set.created_at):
        new = run.copy(
            set_obj, Set,
            ("name", "description", "urgency", "importance", "priority", "set_order",
             "budget_days", "budget_hours", "show_in_client_portal"),
            dates=EXPECTED_DATES,
            assignments=SET_ASSIGNMENTS,
            client_id=target.client_id,
            project_id=target.id,
            phase_id=run.phase_map.get(set_obj.phase_id),
            status="open",
            completion_percentage=0 if not run.as_template else set_obj.completion_percentage,
        )
        run.set_map[set_obj.id] = new.id
        copies.append((set_obj, new))
    return copies


def _copy_pitches(run: _CloneRun, set_pairs) -> None:
    run.stage = "pitches"
    for source_set, new_set in set_pairs:
        copies = []
        for pitch in _active_children(Pitch, Pitch.set_id, source_set.id, Pitch.order_key, Pitch.created_at):
            new = run.copy(
                pitch, Pitch,
                ("name", "description", "order_key", "order_manual", "show_in_client_portal"),
                dates=EXPECTED_DATES,
                set_id=new_set.id,
                status=pitch.status if run.as_template else "not_started",
                is_approved=False,
                approved_by_id=None,
                approved_at=None,
                completion_percentage=0 if not run.as_template else pitch.completion_percentage,
            )
            run.pitch_map[pitch.id] = new.id
            copies.append((pitch, new))
        for pitch, new in copies:
            new.predecessor_pitch_id = run.pitch_map.get(pitch.predecessor_pitch_id)
            new.successor_pitch_id = run.pitch_map.get(pitch.successor_pitch_id)
    db.session.flush()


def _copy_requirements(run: _CloneRun, set_pairs) -> None:
    run.stage = "requirements"
    for source_set, new_set in set_pairs:
        reqs = _active_children(
            Requirement, Requirement.set_id, source_set.id,
            Requirement.requirement_order, Requirement.created_at,
        )
        for req in reqs:
            overrides = {
                "set_id": new_set.id,
                "pitch_id": run.pitch_map.get(req.pitch_id),
                "due_date": None if run.clear_dates else req.due_date,
                "actual_hours": None,
            }
            if not run.as_template:
                overrides.update(
                    status="open",
                    completed_at=None,
                    review_status="pending" if req.requires_review else "not_required",
                    reviewed_at=None,
                )
            else:
                overrides.update(
                    status=req.status,
                    completed_at=req.completed_at,
                    review_status=req.review_status,
                    reviewed_at=req.reviewed_at,
                )
            run.copy(
                req, Requirement,
                ("title", "description", "requirement_type", "urgency", "importance", "priority",
                 "requires_review", "requires_document", "is_task", "estimated_hours",
                 "requirement_order", "show_in_client_portal"),
                assignments=REQUIREMENT_ASSIGNMENTS,
                **overrides,
            )


def purge_clone_batch(batch_id: str) -> int:
    """Hard-delete every row still carrying ``batch_id``. Returns the row count."""
    removed = 0
    for model in PURGE_ORDER:
        result = db.session.execute(delete(model).where(model.clone_batch_id == batch_id))
        removed += result.rowcount or 0
    db.session.flush()
    if removed:
        logger.warning("Purged %d row(s) of clone batch %s", removed, batch_id)
    return removed


# ═════════════════════════════════════════════════════════════════════════
# Public API
# ═════════════════════════════════════════════════════════════════════════

def duplicate_project(
    project_id: str,
    *,
    tenant_id: str,
    actor_id: str | None = None,
    new_client_id: str | None = None,
    new_name: str | None = None,
    include_children: bool = True,
    clear_dates: bool = False,
    clear_assignments: bool = False,
    as_template: bool = False,
) -> Project:
    """Deep-copy a project, optionally under another client of the same tenant.

    Raises:
        NotFoundError: source project or target client not in the tenant.
        PartialFailure: a stage failed; nothing from the copy remains.
    """
    source = get_scoped(Project, project_id, tenant_id=tenant_id)
    client = get_scoped(Client, new_client_id or source.client_id, tenant_id=tenant_id)
    run = _CloneRun(
        tenant_id=tenant_id, actor_id=actor_id, as_template=as_template,
        clear_dates=clear_dates, clear_assignments=clear_assignments,
    )

    try:
        with db.session.begin_nested():
            target = run.copy(
                source, Project,
                ("description", "show_in_client_portal"),
                dates=FULL_DATES,
                assignments=PROJECT_ASSIGNMENTS,
                client_id=client.id,
                name=(new_name or f"{source.name} (Copy)").strip(),
                project_code=project_service.next_project_code(client),
                status="planning",
                health="on_track",
                completion_percentage=0 if not as_template else source.completion_percentage,
            )
            if include_children:
                _copy_phases(run, source, target)
                set_pairs = _copy_sets(run, source, target)
                _copy_pitches(run, set_pairs)
                _copy_requirements(run, set_pairs)
            db.session.flush()
    except Exception as exc:
        logger.error(
            "duplicate_project %s failed at stage %s: %s", source.id, run.stage, exc, exc_info=True,
        )
        purge_clone_batch(run.batch_id)
        raise PartialFailure(
            f"Project duplication failed while copying {run.stage}",
            operation="duplicate_project",
            succeeded=run.inserted,
            failed=[run.stage],
            cleaned_up=True,
        ) from exc

    write_audit(entity_type="project", entity_id=target.id, action="project.duplicate",
                tenant_id=tenant_id, actor_user_id=actor_id,
                diff={"source_project_id": source.id, "clone_batch_id": run.batch_id,
                      "rows": len(run.inserted), "as_template": as_template})
    kind = "Template" if as_template else "Project"
    NotificationService.create(
        tenant_id=tenant_id,
        recipient_id=actor_id,
        title=f"{kind} created from {source.name}",
        message=f"{target.name} ({target.project_code}) was created with {len(run.inserted) - 1} child record(s).",
        severity="info",
        entity_type="project",
        entity_id=target.id,
    )
    logger.info("Project %s duplicated to %s (%d rows, batch %s)",
                source.id, target.id, len(run.inserted), run.batch_id)
    return target


def create_from_template(
    template_id: str,
    *,
    tenant_id: str,
    client_id: str,
    name: str,
    actor_id: str | None = None,
    clear_dates: bool = True,
    clear_assignments: bool = False,
) -> Project:
    template = get_scoped(Project, template_id, tenant_id=tenant_id)
    if not template.is_template:
        raise ValidationError(
            "Source project is not a template", details={"template_id": "not a template"},
        )
    if not name or not str(name).strip():
        raise ValidationError("name is required", details={"name": "required"})
    return duplicate_project(
        template.id,
        tenant_id=tenant_id,
        actor_id=actor_id,
        new_client_id=client_id,
        new_name=name,
        clear_dates=clear_dates,
        clear_assignments=clear_assignments,
        as_template=False,
    )


def list_templates(*, tenant_id: str) -> list[Project]:
    return project_service.list_projects(tenant_id=tenant_id, templates_only=True)


def mark_as_template(project_id: str, *, tenant_id: str, actor_id: str | None = None) -> Project:
    """Flag an existing project and its whole subtree as a template."""
    project = get_scoped(Project, project_id, tenant_id=tenant_id)
    set_ids = select(Set.id).where(Set.project_id == project.id).scalar_subquery()
    counts = {}
    for model, condition in (
        (Phase, Phase.project_id == project.id),
        (Set, Set.project_id == project.id),
        (Pitch, Pitch.set_id.in_(set_ids)),
        (Requirement, Requirement.set_id.in_(set_ids)),
    ):
        rows = db.session.execute(select(model).where(condition)).scalars().all()
        for row in rows:
            row.is_template = True
        counts[model.__tablename__] = len(rows)
    project.is_template = True
    project.updated_by_id = actor_id
    db.session.flush()
    write_audit(entity_type="project", entity_id=project.id, action="project.mark_template",
                tenant_id=tenant_id, actor_user_id=actor_id, diff=counts)
    return project
