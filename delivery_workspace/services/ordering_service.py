"""
Ordering Module — explicit sibling reordering.

    reorder("phase", project_id, [c, a, b], tenant_id=t)

assigns each id its 0-based position in the given sequence. The whole
request is validated before anything is written: unknown child types,
duplicate ids and ids that are not active children of ``parent_id``
raise ValidationError with no writes. Each row is then written in its own
savepoint; if one fails the rows already written stay, and PartialFailure
reports which ids were and were not applied.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from delivery_workspace.core.exceptions import PartialFailure, ValidationError, classify_store_error
from delivery_workspace.models import db
from delivery_workspace.models.delivery import Phase, Pitch, Project, Requirement, Set
from delivery_workspace.services.helpers.scoped_queries import ensure_uuid, get_scoped

logger = logging.getLogger(__name__)

# child_type → (model, parent model, parent column, order columns written)
REORDERABLE = {
    "phase": (Phase, Project, "project_id", ("phase_order", "order_key")),
    "set": (Set, Phase, "phase_id", ("set_order",)),
    "pitch": (Pitch, Set, "set_id", ("order_key",)),
    "requirement": (Requirement, Set, "set_id", ("requirement_order",)),
}


@dataclass
class ReorderResult:
    child_type: str
    parent_id: str
    ordered_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "child_type": self.child_type,
            "parent_id": self.parent_id,
            "ordered_ids": list(self.ordered_ids),
        }


def _validate(child_type, parent_id, child_ids, tenant_id):
    if child_type not in REORDERABLE:
        raise ValidationError(
            f"Unknown child_type: {child_type!r}",
            details={"child_type": f"must be one of {sorted(REORDERABLE)}"},
        )
    model, parent_model, parent_column, _ = REORDERABLE[child_type]
    parent = get_scoped(parent_model, parent_id, tenant_id=tenant_id)

    if not isinstance(child_ids, (list, tuple)):
        raise ValidationError("child_ids must be a list", details={"child_ids": "not a list"})
    ids = [ensure_uuid(cid, "child_ids") for cid in child_ids]
    duplicates = sorted({cid for cid in ids if ids.count(cid) > 1})
    if duplicates:
        raise ValidationError("child_ids contains duplicates", details={"child_ids": duplicates})

    siblings = set(db.session.execute(
        select(model.id).where(
            getattr(model, parent_column) == parent.id,
            model.tenant_id == tenant_id,
            model.deleted_at.is_(None),
        )
    ).scalars().all())
    strangers = [cid for cid in ids if cid not in siblings]
    if strangers:
        raise ValidationError(
            f"{len(strangers)} id(s) are not children of this {parent_model.__name__.lower()}",
            details={"child_ids": strangers},
        )
    return model, parent, ids


def reorder(child_type: str, parent_id: str, child_ids: list, *, tenant_id: str) -> ReorderResult:
    model, parent, ids = _validate(child_type, parent_id, child_ids, tenant_id)
    columns = REORDERABLE[child_type][3]

    succeeded, failed = [], []
    last_error = None
    for position, child_id in enumerate(ids):
        try:
            with db.session.begin_nested():
                row = db.session.get(model, child_id)
                for column in columns:
                    setattr(row, column, position)
                db.session.flush()
            succeeded.append(child_id)
        except SQLAlchemyError as exc:
            last_error = classify_store_error(exc, "reorder")
            logger.warning("reorder %s %s: position %d failed: %s", child_type, child_id, position, exc)
            failed.append(child_id)

    if failed:
        raise PartialFailure(
            f"Reorder of {child_type} under {parent.id} applied {len(succeeded)} of {len(ids)}",
            operation="reorder",
            succeeded=succeeded,
            failed=failed,
        ) from last_error

    logger.info("Reordered %d %s row(s) under %s", len(ids), child_type, parent.id)
    return ReorderResult(child_type=child_type, parent_id=parent.id, ordered_ids=succeeded)
