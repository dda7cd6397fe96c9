"""
Delivery Workspace
Delivery hierarchy models.

Models:
    - Project: child of Client
    - Phase: child of Project, ordered, predecessor/successor chain
    - Set: child of Project and/or Client, optional Phase
    - Pitch: optional grouping layer inside a Set, with approval fields
    - Requirement: leaf unit of work inside a Set, optional Pitch

Architecture chain: Client → Project → Phase → Set → (Pitch) → Requirement
                    Client → Set (a Set may skip Project/Phase)

completion_percentage and priority are derived columns, written only by
the aggregation engine and ``calculate_priority``.
"""

from delivery_workspace.models import db
from delivery_workspace.models.base import CloneableMixin, TenantModel, iso
from delivery_workspace.models.soft_delete import SoftDeleteMixin


# ── Constants ────────────────────────────────────────────────────────────────

PROJECT_STATUSES = {"planning", "active", "on_hold", "completed", "cancelled"}
PROJECT_HEALTH = {"on_track", "at_risk", "delayed"}
PHASE_STATUSES = {"not_started", "in_progress", "completed", "blocked"}
SET_STATUSES = {"open", "in_progress", "completed", "cancelled"}
PITCH_STATUSES = {"not_started", "in_progress", "completed", "blocked", "on_hold"}
REQUIREMENT_STATUSES = {"open", "in_progress", "blocked", "completed", "cancelled"}
REQUIREMENT_TYPES = {
    "task", "open_item", "technical", "support", "internal_deliverable", "client_deliverable",
}
REVIEW_STATUSES = {"not_required", "pending", "in_review", "approved", "rejected"}

URGENCY_LEVELS = {"low", "medium", "high", "critical"}
IMPORTANCE_LEVELS = {"low", "medium", "high", "critical"}


# ── Eisenhower Priority Matrix ──────────────────────────────────────────────

_PRIORITY_MATRIX: dict[tuple[str, str], int] = {
    ("critical", "high"): 1,
    ("high", "high"): 2,
    ("high", "medium"): 3,
    ("critical", "medium"): 3,
    ("medium", "medium"): 4,
    ("high", "low"): 4,
    ("critical", "low"): 4,
    ("medium", "low"): 5,
    ("medium", "high"): 5,
    ("low", "medium"): 5,
    ("low", "high"): 5,
}


def calculate_priority(importance: str | None, urgency: str | None) -> int:
    """
    Eisenhower priority from importance × urgency.
    Range: 1 (do first) – 6 (eliminate).

      critical/high → 1     high/high → 2      high|critical/medium → 3
      medium/medium, high|critical/low → 4
      medium/low|high, low/medium|high → 5     low/low → 6

    Missing values count as "medium"; urgency "critical" ranks as "high".
    """
    importance = importance or "medium"
    urgency = urgency or "medium"
    if urgency == "critical":
        urgency = "high"
    return _PRIORITY_MATRIX.get((importance, urgency), 6)


# ═══════════════════════════════════════════════════════════════════════════
#  PROJECT
# ═══════════════════════════════════════════════════════════════════════════

class Project(SoftDeleteMixin, CloneableMixin, TenantModel):
    __tablename__ = "projects"

    DISPLAY_PREFIX = "PR"
    ENTITY_TYPE = "project"

    client_id = db.Column(
        db.String(36), db.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    project_code = db.Column(db.String(30), index=True, comment="Auto-generated: ACM-001")
    description = db.Column(db.Text, default="")
    status = db.Column(db.String(20), default="planning", nullable=False, index=True)
    health = db.Column(db.String(20), default="on_track", nullable=False)
    completion_percentage = db.Column(db.Integer, default=0, nullable=False)

    lead_id = db.Column(db.String(36), nullable=True)
    secondary_lead_id = db.Column(db.String(36), nullable=True)
    pm_id = db.Column(db.String(36), nullable=True)

    expected_start_date = db.Column(db.Date, nullable=True)
    expected_end_date = db.Column(db.Date, nullable=True)
    actual_start_date = db.Column(db.Date, nullable=True)
    actual_end_date = db.Column(db.Date, nullable=True)

    show_in_client_portal = db.Column(db.Boolean, default=False, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "display_id", name="uq_projects_tenant_display"),
    )

    client = db.relationship("Client")
    phases = db.relationship("Phase", back_populates="project", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "display_id": self.display_id,
            "client_id": self.client_id,
            "name": self.name,
            "project_code": self.project_code,
            "description": self.description,
            "status": self.status,
            "health": self.health,
            "completion_percentage": self.completion_percentage,
            "lead_id": self.lead_id,
            "secondary_lead_id": self.secondary_lead_id,
            "pm_id": self.pm_id,
            "expected_start_date": iso(self.expected_start_date),
            "expected_end_date": iso(self.expected_end_date),
            "actual_start_date": iso(self.actual_start_date),
            "actual_end_date": iso(self.actual_end_date),
            "show_in_client_portal": self.show_in_client_portal,
            "is_template": self.is_template,
            "deleted_at": iso(self.deleted_at),
            **self.audit_dict(),
        }

    def __repr__(self):
        return f"<Project {self.project_code}: {self.name[:40]}>"


# ═══════════════════════════════════════════════════════════════════════════
#  PHASE
# ═══════════════════════════════════════════════════════════════════════════

class Phase(SoftDeleteMixin, CloneableMixin, TenantModel):
    __tablename__ = "phases"

    DISPLAY_PREFIX = "PH"
    ENTITY_TYPE = "phase"

    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(db.String(20), default="not_started", nullable=False)
    phase_order = db.Column(db.Integer, default=0, nullable=False)
    order_key = db.Column(db.Integer, default=0, nullable=False)
    order_manual = db.Column(db.Integer, nullable=True)
    predecessor_phase_id = db.Column(
        db.String(36), db.ForeignKey("phases.id", ondelete="SET NULL"), nullable=True,
    )
    successor_phase_id = db.Column(
        db.String(36), db.ForeignKey("phases.id", ondelete="SET NULL"), nullable=True,
    )
    completion_percentage = db.Column(db.Integer, default=0, nullable=False)

    expected_start_date = db.Column(db.Date, nullable=True)
    expected_end_date = db.Column(db.Date, nullable=True)
    actual_start_date = db.Column(db.Date, nullable=True)
    actual_end_date = db.Column(db.Date, nullable=True)

    show_in_client_portal = db.Column(db.Boolean, default=False, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "display_id", name="uq_phases_tenant_display"),
        db.Index("ix_phases_project_order", "project_id", "order_key"),
    )

    project = db.relationship("Project", back_populates="phases")

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "display_id": self.display_id,
            "project_id": self.project_id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "phase_order": self.phase_order,
            "order_key": self.order_key,
            "order_manual": self.order_manual,
            "predecessor_phase_id": self.predecessor_phase_id,
            "successor_phase_id": self.successor_phase_id,
            "completion_percentage": self.completion_percentage,
            "expected_start_date": iso(self.expected_start_date),
            "expected_end_date": iso(self.expected_end_date),
            "actual_start_date": iso(self.actual_start_date),
            "actual_end_date": iso(self.actual_end_date),
            "show_in_client_portal": self.show_in_client_portal,
            "is_template": self.is_template,
            "deleted_at": iso(self.deleted_at),
            **self.audit_dict(),
        }

    def __repr__(self):
        return f"<Phase {self.display_id}: {self.name[:40]}>"


# ═══════════════════════════════════════════════════════════════════════════
#  SET
# ═══════════════════════════════════════════════════════════════════════════

class Set(SoftDeleteMixin, CloneableMixin, TenantModel):
    """A bundle of requirements. Parent rule: client_id or project_id must be set."""

    __tablename__ = "sets"

    DISPLAY_PREFIX = "SE"
    ENTITY_TYPE = "set"

    client_id = db.Column(
        db.String(36), db.ForeignKey("clients.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    phase_id = db.Column(
        db.String(36), db.ForeignKey("phases.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(db.String(20), default="open", nullable=False, index=True)
    urgency = db.Column(db.String(20), default="medium", nullable=False)
    importance = db.Column(db.String(20), default="medium", nullable=False)
    priority = db.Column(db.Integer, default=4, nullable=False, comment="Eisenhower 1-6, derived")
    completion_percentage = db.Column(db.Integer, default=0, nullable=False)
    set_order = db.Column(db.Integer, default=0, nullable=False)

    budget_days = db.Column(db.Numeric(8, 2), nullable=True)
    budget_hours = db.Column(db.Numeric(10, 2), nullable=True)
    owner_id = db.Column(db.String(36), nullable=True)
    lead_id = db.Column(db.String(36), nullable=True)
    secondary_lead_id = db.Column(db.String(36), nullable=True)
    pm_id = db.Column(db.String(36), nullable=True)

    expected_start_date = db.Column(db.Date, nullable=True)
    expected_end_date = db.Column(db.Date, nullable=True)

    show_in_client_portal = db.Column(db.Boolean, default=False, nullable=False)

    __table_args__ = (
        db.CheckConstraint(
            "client_id IS NOT NULL OR project_id IS NOT NULL", name="ck_sets_has_parent",
        ),
        db.UniqueConstraint("tenant_id", "display_id", name="uq_sets_tenant_display"),
        db.Index("ix_sets_phase_order", "phase_id", "set_order"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "display_id": self.display_id,
            "client_id": self.client_id,
            "project_id": self.project_id,
            "phase_id": self.phase_id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "urgency": self.urgency,
            "importance": self.importance,
            "priority": self.priority,
            "completion_percentage": self.completion_percentage,
            "set_order": self.set_order,
            "budget_days": float(self.budget_days) if self.budget_days is not None else None,
            "budget_hours": float(self.budget_hours) if self.budget_hours is not None else None,
            "owner_id": self.owner_id,
            "lead_id": self.lead_id,
            "secondary_lead_id": self.secondary_lead_id,
            "pm_id": self.pm_id,
            "expected_start_date": iso(self.expected_start_date),
            "expected_end_date": iso(self.expected_end_date),
            "show_in_client_portal": self.show_in_client_portal,
            "is_template": self.is_template,
            "deleted_at": iso(self.deleted_at),
            **self.audit_dict(),
        }

    def __repr__(self):
        return f"<Set {self.display_id}: {self.name[:40]}>"


# ═══════════════════════════════════════════════════════════════════════════
#  PITCH
# ═══════════════════════════════════════════════════════════════════════════

class Pitch(SoftDeleteMixin, CloneableMixin, TenantModel):
    __tablename__ = "pitches"

    DISPLAY_PREFIX = "PI"
    ENTITY_TYPE = "pitch"

    set_id = db.Column(
        db.String(36), db.ForeignKey("sets.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(db.String(20), default="not_started", nullable=False)
    order_key = db.Column(db.Integer, default=0, nullable=False)
    order_manual = db.Column(db.Integer, nullable=True)
    predecessor_pitch_id = db.Column(
        db.String(36), db.ForeignKey("pitches.id", ondelete="SET NULL"), nullable=True,
    )
    successor_pitch_id = db.Column(
        db.String(36), db.ForeignKey("pitches.id", ondelete="SET NULL"), nullable=True,
    )
    completion_percentage = db.Column(db.Integer, default=0, nullable=False)

    is_approved = db.Column(db.Boolean, default=False, nullable=False)
    approved_by_id = db.Column(db.String(36), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    expected_start_date = db.Column(db.Date, nullable=True)
    expected_end_date = db.Column(db.Date, nullable=True)

    show_in_client_portal = db.Column(db.Boolean, default=False, nullable=False)

    __table_args__ = (
        db.CheckConstraint(
            "is_approved = false OR (approved_by_id IS NOT NULL AND approved_at IS NOT NULL)",
            name="ck_pitches_approval_complete",
        ),
        db.UniqueConstraint("tenant_id", "display_id", name="uq_pitches_tenant_display"),
        db.Index("ix_pitches_set_order", "set_id", "order_key"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "display_id": self.display_id,
            "set_id": self.set_id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "order_key": self.order_key,
            "order_manual": self.order_manual,
            "predecessor_pitch_id": self.predecessor_pitch_id,
            "successor_pitch_id": self.successor_pitch_id,
            "completion_percentage": self.completion_percentage,
            "is_approved": self.is_approved,
            "approved_by_id": self.approved_by_id,
            "approved_at": iso(self.approved_at),
            "expected_start_date": iso(self.expected_start_date),
            "expected_end_date": iso(self.expected_end_date),
            "show_in_client_portal": self.show_in_client_portal,
            "is_template": self.is_template,
            "deleted_at": iso(self.deleted_at),
            **self.audit_dict(),
        }

    def __repr__(self):
        return f"<Pitch {self.display_id}: {self.name[:40]}>"


# ═══════════════════════════════════════════════════════════════════════════
#  REQUIREMENT
# ═══════════════════════════════════════════════════════════════════════════

class Requirement(SoftDeleteMixin, CloneableMixin, TenantModel):
    __tablename__ = "requirements"

    DISPLAY_PREFIX = "RQ"
    ENTITY_TYPE = "requirement"

    set_id = db.Column(
        db.String(36), db.ForeignKey("sets.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    pitch_id = db.Column(
        db.String(36), db.ForeignKey("pitches.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    requirement_type = db.Column(db.String(30), default="task", nullable=False)
    status = db.Column(db.String(20), default="open", nullable=False, index=True)
    urgency = db.Column(db.String(20), default="medium", nullable=False)
    importance = db.Column(db.String(20), default="medium", nullable=False)
    priority = db.Column(db.Integer, default=4, nullable=False, comment="Eisenhower 1-6, derived")

    requires_review = db.Column(db.Boolean, default=False, nullable=False)
    review_status = db.Column(db.String(20), default="not_required", nullable=False)
    reviewer_id = db.Column(db.String(36), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    requires_document = db.Column(db.Boolean, default=False, nullable=False)

    is_task = db.Column(db.Boolean, default=False, nullable=False, index=True)
    assigned_to_id = db.Column(db.String(36), nullable=True, index=True)
    estimated_hours = db.Column(db.Numeric(8, 2), nullable=True)
    actual_hours = db.Column(db.Numeric(8, 2), nullable=True)
    due_date = db.Column(db.Date, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    requirement_order = db.Column(db.Integer, default=0, nullable=False)

    show_in_client_portal = db.Column(db.Boolean, default=False, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "display_id", name="uq_requirements_tenant_display"),
        db.Index("ix_requirements_set_order", "set_id", "requirement_order"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "display_id": self.display_id,
            "set_id": self.set_id,
            "pitch_id": self.pitch_id,
            "title": self.title,
            "description": self.description,
            "requirement_type": self.requirement_type,
            "status": self.status,
            "urgency": self.urgency,
            "importance": self.importance,
            "priority": self.priority,
            "requires_review": self.requires_review,
            "review_status": self.review_status,
            "reviewer_id": self.reviewer_id,
            "reviewed_at": iso(self.reviewed_at),
            "requires_document": self.requires_document,
            "is_task": self.is_task,
            "assigned_to_id": self.assigned_to_id,
            "estimated_hours": float(self.estimated_hours) if self.estimated_hours is not None else None,
            "actual_hours": float(self.actual_hours) if self.actual_hours is not None else None,
            "due_date": iso(self.due_date),
            "completed_at": iso(self.completed_at),
            "requirement_order": self.requirement_order,
            "show_in_client_portal": self.show_in_client_portal,
            "is_template": self.is_template,
            "deleted_at": iso(self.deleted_at),
            **self.audit_dict(),
        }

    def __repr__(self):
        return f"<Requirement {self.display_id}: {self.title[:40]} [{self.status}]>"
