"""
Sibling ordering and predecessor/successor chain helpers.

Used by phase_service and pitch_service (order_key placement, chain
validation) and by set/requirement services (append-at-end ordering).
"""

import logging

from sqlalchemy import func, select

from delivery_workspace.core.exceptions import ValidationError
from delivery_workspace.models import db

logger = logging.getLogger(__name__)


def max_sibling_value(model, order_column: str, parent_column: str, parent_id) -> int | None:
    """Highest order value among active siblings, or None when there are none."""
    column = getattr(model, order_column)
    stmt = select(func.max(column)).where(
        getattr(model, parent_column) == parent_id,
        model.deleted_at.is_(None),
    )
    return db.session.execute(stmt).scalar()


def next_sibling_value(model, order_column: str, parent_column: str, parent_id) -> int:
    current = max_sibling_value(model, order_column, parent_column, parent_id)
    return 0 if current is None else current + 1


def resolve_order_key(
    model,
    *,
    parent_column: str,
    parent_id,
    order_manual=None,
    predecessor=None,
    successor=None,
) -> int:
    """Pick the order_key for a new Phase/Pitch.

    Precedence: explicit order_manual, then predecessor + 1, then
    successor - 1, then after the last sibling.
    """
    if order_manual is not None:
        return int(order_manual)
    if predecessor is not None:
        return (predecessor.order_key or 0) + 1
    if successor is not None:
        return (successor.order_key or 0) - 1
    return next_sibling_value(model, "order_key", parent_column, parent_id)


def assert_acyclic_chain(
    model,
    entity_id,
    *,
    parent_column: str,
    parent_id,
    predecessor_id,
    successor_id,
    predecessor_attr: str,
    successor_attr: str,
) -> None:
    """Reject a predecessor/successor assignment that would close a loop.

    Builds the "runs before" graph of the active siblings under ``parent_id``
    (edges pred → node and node → succ), replaces the entity's own links by
    the proposed ones and walks it. The walk is bounded by the sibling count.
    """
    if entity_id is not None and entity_id in (predecessor_id, successor_id):
        raise ValidationError(
            f"{model.__name__} cannot be its own predecessor or successor",
            details={predecessor_attr: "self reference"},
        )
    if predecessor_id is not None and predecessor_id == successor_id:
        raise ValidationError(
            f"{model.__name__} predecessor and successor must differ",
            details={successor_attr: "same as predecessor"},
        )

    pred_col = getattr(model, predecessor_attr)
    succ_col = getattr(model, successor_attr)
    rows = db.session.execute(
        select(model.id, pred_col, succ_col).where(
            getattr(model, parent_column) == parent_id,
            model.deleted_at.is_(None),
        )
    ).all()

    edges: dict[str, set] = {}
    for node_id, pred, succ in rows:
        if node_id == entity_id:
            continue
        if pred is not None:
            edges.setdefault(pred, set()).add(node_id)
        if succ is not None:
            edges.setdefault(node_id, set()).add(succ)

    node = entity_id or "__new__"
    if predecessor_id is not None:
        edges.setdefault(predecessor_id, set()).add(node)
    if successor_id is not None:
        edges.setdefault(node, set()).add(successor_id)

    # Any cycle must pass through the entity, so walk from it.
    max_steps = len(rows) + 2
    stack = [(nxt, 1) for nxt in edges.get(node, ())]
    visited = set()
    while stack:
        current, depth = stack.pop()
        if current == node:
            logger.info("Rejected %s chain for %s: cycle detected", model.__name__, entity_id)
            raise ValidationError(
                f"{model.__name__} predecessor/successor chain would form a cycle",
                details={predecessor_attr: "cycle", successor_attr: "cycle"},
            )
        if current in visited or depth > max_steps:
            continue
        visited.add(current)
        stack.extend((nxt, depth + 1) for nxt in edges.get(current, ()))
