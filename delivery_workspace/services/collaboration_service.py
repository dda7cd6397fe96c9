"""
Discussions and notes attached to workspace entities.

Discussions are threaded through parent_discussion_id; replies must sit on
the same entity as their parent. Internal discussions are hidden from
client users, so list calls take ``include_internal``.
"""

import logging

from sqlalchemy import select

from delivery_workspace.core.exceptions import ValidationError
from delivery_workspace.models import db
from delivery_workspace.models.attachments import Discussion, Note
from delivery_workspace.models.audit import write_audit
from delivery_workspace.services.helpers.display_ids import assign_display_id
from delivery_workspace.services.helpers.entity_registry import resolve_entity
from delivery_workspace.services.helpers.scoped_queries import get_scoped
from delivery_workspace.services.helpers.validators import apply_fields

logger = logging.getLogger(__name__)


def _require_content(content) -> str:
    if not content or not str(content).strip():
        raise ValidationError("content is required", details={"content": "required"})
    return str(content).strip()


# ── Discussions ─────────────────────────────────────────────────────────────

def create_discussion(
    *,
    tenant_id: str,
    entity_type: str,
    entity_id: str,
    content: str,
    author_id: str | None = None,
    is_internal: bool = False,
    parent_discussion_id: str | None = None,
) -> Discussion:
    target = resolve_entity(entity_type, entity_id, tenant_id=tenant_id)
    if parent_discussion_id:
        parent = get_scoped(Discussion, parent_discussion_id, tenant_id=tenant_id)
        if (parent.entity_type, parent.entity_id) != (entity_type, target.id):
            raise ValidationError(
                "Reply must be on the same entity as its parent",
                details={"parent_discussion_id": "different entity"},
            )
        parent_discussion_id = parent.id

    discussion = Discussion(
        tenant_id=tenant_id,
        entity_type=entity_type,
        entity_id=target.id,
        parent_discussion_id=parent_discussion_id,
        content=_require_content(content),
        is_internal=bool(is_internal),
        author_id=author_id,
        created_by_id=author_id,
        updated_by_id=author_id,
    )
    assign_display_id(discussion)
    db.session.add(discussion)
    db.session.flush()
    return discussion


def get_discussion(discussion_id: str, *, tenant_id: str) -> Discussion:
    return get_scoped(Discussion, discussion_id, tenant_id=tenant_id)


def list_discussions(
    *,
    tenant_id: str,
    entity_type: str,
    entity_id: str,
    include_internal: bool = True,
) -> list[Discussion]:
    target = resolve_entity(entity_type, entity_id, tenant_id=tenant_id)
    stmt = select(Discussion).where(
        Discussion.tenant_id == tenant_id,
        Discussion.entity_type == entity_type,
        Discussion.entity_id == target.id,
        Discussion.deleted_at.is_(None),
    )
    if not include_internal:
        stmt = stmt.where(Discussion.is_internal.is_(False))
    return db.session.execute(stmt.order_by(Discussion.created_at)).scalars().all()


def update_discussion(discussion_id: str, *, tenant_id: str, data: dict, actor_id: str | None = None) -> Discussion:
    discussion = get_discussion(discussion_id, tenant_id=tenant_id)
    if "content" in data:
        data = {**data, "content": _require_content(data["content"])}
    changes = apply_fields(discussion, data, ("content", "is_internal"))
    if changes:
        discussion.updated_by_id = actor_id
        db.session.flush()
    return discussion


def delete_discussion(discussion_id: str, *, tenant_id: str, actor_id: str | None = None) -> Discussion:
    discussion = get_discussion(discussion_id, tenant_id=tenant_id)
    discussion.soft_delete()
    discussion.updated_by_id = actor_id
    db.session.flush()
    write_audit(entity_type="discussion", entity_id=discussion.id, action="delete",
                tenant_id=tenant_id, actor_user_id=actor_id)
    return discussion


# ── Notes ───────────────────────────────────────────────────────────────────

def create_note(
    *,
    tenant_id: str,
    entity_type: str,
    entity_id: str,
    content: str,
    title: str = "",
    is_pinned: bool = False,
    author_id: str | None = None,
) -> Note:
    target = resolve_entity(entity_type, entity_id, tenant_id=tenant_id)
    note = Note(
        tenant_id=tenant_id,
        entity_type=entity_type,
        entity_id=target.id,
        title=(title or "").strip(),
        content=_require_content(content),
        is_pinned=bool(is_pinned),
        author_id=author_id,
        created_by_id=author_id,
        updated_by_id=author_id,
    )
    assign_display_id(note)
    db.session.add(note)
    db.session.flush()
    return note


def get_note(note_id: str, *, tenant_id: str) -> Note:
    return get_scoped(Note, note_id, tenant_id=tenant_id)


def list_notes(*, tenant_id: str, entity_type: str, entity_id: str) -> list[Note]:
    """Pinned notes first, then newest first."""
    target = resolve_entity(entity_type, entity_id, tenant_id=tenant_id)
    return db.session.execute(
        select(Note).where(
            Note.tenant_id == tenant_id,
            Note.entity_type == entity_type,
            Note.entity_id == target.id,
            Note.deleted_at.is_(None),
        ).order_by(Note.is_pinned.desc(), Note.created_at.desc())
    ).scalars().all()


def update_note(note_id: str, *, tenant_id: str, data: dict, actor_id: str | None = None) -> Note:
    note = get_note(note_id, tenant_id=tenant_id)
    if "content" in data:
        data = {**data, "content": _require_content(data["content"])}
    changes = apply_fields(note, data, ("title", "content", "is_pinned"))
    if changes:
        note.updated_by_id = actor_id
        db.session.flush()
    return note


def delete_note(note_id: str, *, tenant_id: str, actor_id: str | None = None) -> Note:
    note = get_note(note_id, tenant_id=tenant_id)
    note.soft_delete()
    note.updated_by_id = actor_id
    db.session.flush()
    write_audit(entity_type="note", entity_id=note.id, action="delete",
                tenant_id=tenant_id, actor_user_id=actor_id)
    return note
