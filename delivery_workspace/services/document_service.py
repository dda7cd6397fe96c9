"""
Document Service — file attachments on any attachable entity.

The blob is written first; the row is inserted only when the store
accepted it. Deletion soft-deletes the row and then removes the blob; a
blob failure is logged and the soft delete stands. Blobs shared between
rows (lead documents copied to a client on conversion) are removed only
when no other active row references them.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from delivery_workspace.core.exceptions import ValidationError, classify_store_error
from delivery_workspace.models import db
from delivery_workspace.models.attachments import Document
from delivery_workspace.models.audit import write_audit
from delivery_workspace.services.helpers.display_ids import assign_display_id
from delivery_workspace.services.helpers.entity_registry import resolve_entity
from delivery_workspace.services.helpers.scoped_queries import get_scoped
from delivery_workspace.services.storage import (
    StorageError,
    build_object_path,
    get_storage,
    guess_mime_type,
)

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 25 * 1024 * 1024


def upload_document(
    *,
    tenant_id: str,
    entity_type: str,
    entity_id: str,
    file_name: str,
    content: bytes,
    user_id: str | None = None,
    mime_type: str | None = None,
    description: str = "",
) -> Document:
    if not file_name:
        raise ValidationError("file_name is required", details={"file_name": "required"})
    if not content:
        raise ValidationError("File is empty", details={"file": "empty"})
    if len(content) > MAX_FILE_SIZE:
        raise ValidationError("File too large", details={"file": f"max {MAX_FILE_SIZE} bytes"})
    target = resolve_entity(entity_type, entity_id, tenant_id=tenant_id)

    storage = get_storage()
    path = build_object_path(tenant_id, user_id, entity_type, target.id, file_name)
    mime_type = mime_type or guess_mime_type(file_name)
    url = storage.put(path, content, mime_type)

    doc = Document(
        tenant_id=tenant_id,
        entity_type=entity_type,
        entity_id=target.id,
        file_name=file_name,
        file_path=path,
        file_url=url,
        file_size=len(content),
        mime_type=mime_type,
        description=description or "",
        uploaded_by_id=user_id,
        created_by_id=user_id,
        updated_by_id=user_id,
    )
    try:
        assign_display_id(doc)
        db.session.add(doc)
        db.session.flush()
    except SQLAlchemyError as exc:
        _remove_blob(path)
        raise classify_store_error(exc, "upload_document") from exc

    write_audit(entity_type=entity_type, entity_id=target.id, action="document.upload",
                tenant_id=tenant_id, actor_user_id=user_id,
                diff={"document_id": doc.id, "file_name": file_name, "file_size": doc.file_size})
    logger.info("Document %s uploaded to %s %s", doc.display_id, entity_type, target.id)
    return doc


def get_document(document_id: str, *, tenant_id: str) -> Document:
    return get_scoped(Document, document_id, tenant_id=tenant_id)


def list_documents(*, tenant_id: str, entity_type: str, entity_id: str) -> list[Document]:
    target = resolve_entity(entity_type, entity_id, tenant_id=tenant_id)
    return db.session.execute(
        select(Document).where(
            Document.tenant_id == tenant_id,
            Document.entity_type == entity_type,
            Document.entity_id == target.id,
            Document.deleted_at.is_(None),
        ).order_by(Document.created_at.desc())
    ).scalars().all()


def _remove_blob(path: str) -> None:
    try:
        get_storage().delete(path)
    except StorageError as exc:
        logger.warning("Blob %s could not be removed: %s", path, exc)


def delete_document(document_id: str, *, tenant_id: str, actor_id: str | None = None) -> Document:
    doc = get_document(document_id, tenant_id=tenant_id)
    doc.soft_delete()
    doc.updated_by_id = actor_id
    db.session.flush()
    write_audit(entity_type=doc.entity_type, entity_id=doc.entity_id, action="document.delete",
                tenant_id=tenant_id, actor_user_id=actor_id, diff={"document_id": doc.id})

    still_shared = db.session.execute(
        select(func.count(Document.id)).where(
            Document.file_path == doc.file_path, Document.deleted_at.is_(None),
        )
    ).scalar()
    if not still_shared:
        _remove_blob(doc.file_path)
    return doc
