"""
Aggregation Engine — completion percentage cascade.

Completion is recomputed bottom-up, one level at a time:

    Requirement ─▶ Pitch ─▶ Set ─▶ Phase ─▶ Project

Two different aggregation functions are in play and both are kept:
  - Set, Pitch:     round(100 × completed / N) over non-deleted Requirements
                    (a requirement counts when status == "completed")
  - Phase, Project: round(mean(child.completion_percentage)) over
                    non-deleted Sets (Phase) / Phases (Project)

An empty child collection leaves the stored value unchanged unless
``reset_on_empty`` (config COMPLETION_RESET_ON_EMPTY) asks for 0.

The walk is iterative and bounded by MAX_CASCADE_DEPTH (the hierarchy is
at most four levels deep above a requirement). Recomputing a level only
reads its children, so a retried or duplicated walk is harmless.
"""

import logging
import math
from dataclasses import dataclass, field

from flask import current_app, has_app_context
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from delivery_workspace.core.exceptions import ValidationError, classify_store_error
from delivery_workspace.models import db
from delivery_workspace.models.delivery import Phase, Pitch, Project, Requirement, Set

logger = logging.getLogger(__name__)

MAX_CASCADE_DEPTH = 4

LEVEL_MODELS = {
    "set": Set,
    "pitch": Pitch,
    "phase": Phase,
    "project": Project,
}


@dataclass
class CascadeResult:
    """Outcome of one upward walk."""

    updated: list[tuple[str, str, int]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def percentage_of(self, entity_type: str, entity_id: str) -> int | None:
        for level, level_id, value in self.updated:
            if level == entity_type and level_id == entity_id:
                return value
        return None

    def to_dict(self) -> dict:
        return {
            "updated": [
                {"entity_type": t, "entity_id": i, "completion_percentage": v}
                for t, i, v in self.updated
            ],
            "warnings": list(self.warnings),
        }


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _reset_on_empty_default() -> bool:
    if has_app_context():
        return bool(current_app.config.get("COMPLETION_RESET_ON_EMPTY", False))
    return False


# ── Per-level formulas ──────────────────────────────────────────────────────

def _status_ratio(filter_column, parent_id) -> int | None:
    total, completed = db.session.execute(
        select(
            func.count(Requirement.id),
            func.count(Requirement.id).filter(Requirement.status == "completed"),
        ).where(filter_column == parent_id, Requirement.deleted_at.is_(None))
    ).one()
    if not total:
        return None
    return round_half_up(100 * completed / total)


def _mean_of(model, parent_column, parent_id) -> int | None:
    values = db.session.execute(
        select(model.completion_percentage).where(
            parent_column == parent_id, model.deleted_at.is_(None),
        )
    ).scalars().all()
    if not values:
        return None
    return round_half_up(sum(v or 0 for v in values) / len(values))


def compute_completion(entity) -> int | None:
    """Fresh completion for one entity from its children (None = no children)."""
    if isinstance(entity, Set):
        return _status_ratio(Requirement.set_id, entity.id)
    if isinstance(entity, Pitch):
        return _status_ratio(Requirement.pitch_id, entity.id)
    if isinstance(entity, Phase):
        return _mean_of(Set, Set.phase_id, entity.id)
    if isinstance(entity, Project):
        return _mean_of(Phase, Phase.project_id, entity.id)
    raise ValidationError(f"Completion is not derived for {type(entity).__name__}")


def _parent_of(entity) -> tuple[str, str] | None:
    """(level, id) of the next level up, or None at the root."""
    if isinstance(entity, Pitch):
        return "set", entity.set_id
    if isinstance(entity, Set):
        if entity.phase_id:
            return "phase", entity.phase_id
        if entity.project_id:
            return "project", entity.project_id
        return None
    if isinstance(entity, Phase):
        return "project", entity.project_id
    return None


def _load_level(entity_type: str, entity_id: str, tenant_id: str):
    model = LEVEL_MODELS[entity_type]
    return db.session.execute(
        select(model).where(
            model.id == entity_id,
            model.tenant_id == tenant_id,
            model.deleted_at.is_(None),
        )
    ).scalar_one_or_none()


# ═════════════════════════════════════════════════════════════════════════
# Public API
# ═════════════════════════════════════════════════════════════════════════

def recompute_completion(
    entity_type: str,
    entity_id: str,
    *,
    tenant_id: str,
    reset_on_empty: bool | None = None,
) -> CascadeResult:
    """Recompute completion for ``entity_id`` and every ancestor above it.

    A missing or soft-deleted level stops the walk with a warning; it never
    aborts the mutation that triggered the cascade.
    """
    if entity_type not in LEVEL_MODELS:
        raise ValidationError(
            f"Invalid entity_type for completion: {entity_type!r}",
            details={"entity_type": f"must be one of {sorted(LEVEL_MODELS)}"},
        )
    if reset_on_empty is None:
        reset_on_empty = _reset_on_empty_default()

    result = CascadeResult()
    level = (entity_type, entity_id)
    try:
        for _ in range(MAX_CASCADE_DEPTH):
            if level is None:
                break
            level_type, level_id = level
            entity = _load_level(level_type, level_id, tenant_id)
            if entity is None:
                msg = f"{level_type} {level_id} missing or deleted; completion cascade stopped"
                logger.warning(msg)
                result.warnings.append(msg)
                break

            value = compute_completion(entity)
            if value is None and reset_on_empty:
                value = 0
            if value is not None and value != entity.completion_percentage:
                entity.completion_percentage = value
            result.updated.append((level_type, entity.id, entity.completion_percentage))
            level = _parent_of(entity)
        else:
            if level is not None:
                logger.warning("Completion cascade hit depth limit at %s %s", *level)
                result.warnings.append(f"depth limit reached at {level[0]} {level[1]}")
        db.session.flush()
    except SQLAlchemyError as exc:
        raise classify_store_error(exc, "recompute_completion") from exc

    logger.debug("Completion cascade from %s %s: %s", entity_type, entity_id, result.updated)
    return result


def cascade_from_requirement(requirement: Requirement, *, reset_on_empty: bool | None = None) -> CascadeResult:
    """Trigger used after any requirement create/status change/delete/restore.

    Starts at the requirement's pitch when it has one (pitch → set → ...),
    otherwise at its set. When the pitch is gone the set chain is still walked.
    """
    if requirement.pitch_id:
        result = recompute_completion(
            "pitch", requirement.pitch_id, tenant_id=requirement.tenant_id, reset_on_empty=reset_on_empty,
        )
        if result.percentage_of("set", requirement.set_id) is not None:
            return result
        tail = recompute_completion(
            "set", requirement.set_id, tenant_id=requirement.tenant_id, reset_on_empty=reset_on_empty,
        )
        result.updated.extend(tail.updated)
        result.warnings.extend(tail.warnings)
        return result
    return recompute_completion(
        "set", requirement.set_id, tenant_id=requirement.tenant_id, reset_on_empty=reset_on_empty,
    )
