"""
Human-readable sequential ids: PH-0001, PI-0001, LD-0001, ...

Sequences are per tenant and per prefix. Soft-deleted rows keep their id,
so numbers are never reused after a soft delete. The (tenant_id, display_id)
unique constraint backs this up; a concurrent insert that loses the race
surfaces as an IntegrityError → ConflictError at commit time.
"""

import re

from sqlalchemy import func, select

from delivery_workspace.models import db

_SUFFIX_RE = re.compile(r"-(\d+)$")
PAD_WIDTH = 4


def format_display_id(prefix: str, number: int) -> str:
    return f"{prefix}-{number:0{PAD_WIDTH}d}"


def next_display_id(model, tenant_id: str | None) -> str:
    """Return the next display id for ``model`` inside ``tenant_id``.

    Orders by length first so PH-10000 sorts after PH-9999.
    """
    prefix = model.DISPLAY_PREFIX
    stmt = (
        select(model.display_id)
        .where(model.display_id.like(f"{prefix}-%"))
        .order_by(func.length(model.display_id).desc(), model.display_id.desc())
        .limit(1)
    )
    if tenant_id is None:
        stmt = stmt.where(model.tenant_id.is_(None))
    else:
        stmt = stmt.where(model.tenant_id == tenant_id)

    last = db.session.execute(stmt).scalar_one_or_none()
    number = 1
    if last:
        match = _SUFFIX_RE.search(last)
        if match:
            number = int(match.group(1)) + 1
    return format_display_id(prefix, number)


def assign_display_id(obj) -> str:
    """Stamp ``obj.display_id`` if it is not set yet."""
    if not obj.display_id:
        obj.display_id = next_display_id(type(obj), obj.tenant_id)
    return obj.display_id
