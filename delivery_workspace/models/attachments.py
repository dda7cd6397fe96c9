"""
Delivery Workspace
Polymorphic attachment models: documents, discussions, notes.

Each row points at one hierarchy/CRM entity through (entity_type, entity_id);
there is no database FK on entity_id, so services validate the target
before insert.
"""

from delivery_workspace.models import db
from delivery_workspace.models.base import TenantModel, iso
from delivery_workspace.models.soft_delete import SoftDeleteMixin


ATTACHABLE_ENTITY_TYPES = {
    "client", "project", "phase", "set", "pitch", "requirement", "lead", "contact",
}


class AttachmentMixin:
    entity_type = db.Column(db.String(20), nullable=False)
    entity_id = db.Column(db.String(36), nullable=False)


class Document(SoftDeleteMixin, AttachmentMixin, TenantModel):
    __tablename__ = "documents"

    DISPLAY_PREFIX = "DOC"
    ENTITY_TYPE = "document"

    file_name = db.Column(db.String(300), nullable=False)
    file_path = db.Column(db.String(600), nullable=False, comment="Object key inside the storage bucket")
    file_url = db.Column(db.String(800))
    file_size = db.Column(db.Integer, default=0)
    mime_type = db.Column(db.String(120))
    description = db.Column(db.Text, default="")
    uploaded_by_id = db.Column(db.String(36), nullable=True)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "display_id", name="uq_documents_tenant_display"),
        db.Index("ix_documents_entity", "entity_type", "entity_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "display_id": self.display_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "file_name": self.file_name,
            "file_path": self.file_path,
            "file_url": self.file_url,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "description": self.description,
            "uploaded_by_id": self.uploaded_by_id,
            "deleted_at": iso(self.deleted_at),
            **self.audit_dict(),
        }

    def __repr__(self):
        return f"<Document {self.display_id}: {self.file_name[:40]}>"


class Discussion(SoftDeleteMixin, AttachmentMixin, TenantModel):
    __tablename__ = "discussions"

    DISPLAY_PREFIX = "DS"
    ENTITY_TYPE = "discussion"

    parent_discussion_id = db.Column(
        db.String(36), db.ForeignKey("discussions.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    content = db.Column(db.Text, nullable=False)
    is_internal = db.Column(db.Boolean, default=False, nullable=False, comment="Hidden from client users")
    author_id = db.Column(db.String(36), nullable=True)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "display_id", name="uq_discussions_tenant_display"),
        db.Index("ix_discussions_entity", "entity_type", "entity_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "display_id": self.display_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "parent_discussion_id": self.parent_discussion_id,
            "content": self.content,
            "is_internal": self.is_internal,
            "author_id": self.author_id,
            "deleted_at": iso(self.deleted_at),
            **self.audit_dict(),
        }

    def __repr__(self):
        return f"<Discussion {self.display_id} on {self.entity_type}:{self.entity_id}>"


class Note(SoftDeleteMixin, AttachmentMixin, TenantModel):
    __tablename__ = "notes"

    DISPLAY_PREFIX = "NT"
    ENTITY_TYPE = "note"

    title = db.Column(db.String(300), default="")
    content = db.Column(db.Text, nullable=False)
    is_pinned = db.Column(db.Boolean, default=False, nullable=False)
    author_id = db.Column(db.String(36), nullable=True)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "display_id", name="uq_notes_tenant_display"),
        db.Index("ix_notes_entity", "entity_type", "entity_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "display_id": self.display_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "title": self.title,
            "content": self.content,
            "is_pinned": self.is_pinned,
            "author_id": self.author_id,
            "deleted_at": iso(self.deleted_at),
            **self.audit_dict(),
        }

    def __repr__(self):
        return f"<Note {self.display_id}: {(self.title or '')[:40]}>"
