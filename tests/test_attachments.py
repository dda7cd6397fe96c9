"""
Documents, discussions and notes attached to workspace entities.
"""

import io
import uuid

import pytest

from delivery_workspace.core.exceptions import NotFoundError, ValidationError
from delivery_workspace.models import db
from delivery_workspace.models.attachments import Document
from delivery_workspace.services import (
    collaboration_service,
    document_service,
    lead_conversion_service,
    lead_service,
)
from delivery_workspace.services.storage import (
    LocalFileStorage,
    StoragePermissionError,
    build_object_path,
)


def _upload(tenant, admin, entity_type, entity_id, name="brief.pdf", content=b"%PDF-1.7 brief"):
    doc = document_service.upload_document(
        tenant_id=tenant.id, entity_type=entity_type, entity_id=entity_id,
        file_name=name, content=content, user_id=admin.id,
    )
    db.session.commit()
    return doc


# ═════════════════════════════════════════════════════════════════════════════
# DOCUMENTS
# ═════════════════════════════════════════════════════════════════════════════


class TestDocumentService:
    def test_upload_writes_blob_then_row(self, tenant, admin, hierarchy, storage):
        doc = _upload(tenant, admin, "project", hierarchy["project"].id)
        assert doc.file_size == len(b"%PDF-1.7 brief")
        assert doc.mime_type == "application/pdf"
        assert doc.file_path.startswith(f"{tenant.id}/{admin.id}/project/{hierarchy['project'].id}/")
        assert doc.file_path.endswith(".pdf")
        assert (storage.bucket_dir / doc.file_path).read_bytes() == b"%PDF-1.7 brief"

    def test_empty_file_rejected(self, tenant, admin, hierarchy, storage):
        with pytest.raises(ValidationError):
            _upload(tenant, admin, "project", hierarchy["project"].id, content=b"")

    def test_unknown_entity_type_rejected(self, tenant, admin, hierarchy, storage):
        with pytest.raises(ValidationError):
            _upload(tenant, admin, "invoice", hierarchy["project"].id)

    def test_target_in_other_tenant_is_not_found(self, other_tenant, admin, hierarchy, storage):
        with pytest.raises(NotFoundError):
            _upload(other_tenant, admin, "project", hierarchy["project"].id)

    def test_delete_removes_unshared_blob(self, tenant, admin, hierarchy, storage):
        doc = _upload(tenant, admin, "set", hierarchy["set"].id)
        document_service.delete_document(doc.id, tenant_id=tenant.id, actor_id=admin.id)
        db.session.commit()
        assert doc.is_deleted
        assert not (storage.bucket_dir / doc.file_path).exists()

    def test_shared_blob_survives_until_last_reference(self, tenant, admin, storage):
        lead = lead_service.create_lead(tenant_id=tenant.id, data={"lead_name": "Umbrella"}, actor_id=admin.id)
        db.session.commit()
        original = _upload(tenant, admin, "lead", lead.id)
        result = lead_conversion_service.convert_lead_to_client(lead.id, tenant_id=tenant.id, actor_id=admin.id)
        db.session.commit()
        copy = Document.query.filter_by(entity_type="client", entity_id=result.client.id).one()
        blob = storage.bucket_dir / original.file_path

        document_service.delete_document(original.id, tenant_id=tenant.id)
        db.session.commit()
        assert blob.exists()

        document_service.delete_document(copy.id, tenant_id=tenant.id)
        db.session.commit()
        assert not blob.exists()

    def test_list_skips_deleted(self, tenant, admin, hierarchy, storage):
        first = _upload(tenant, admin, "client", hierarchy["client"].id, name="a.txt", content=b"a")
        second = _upload(tenant, admin, "client", hierarchy["client"].id, name="b.txt", content=b"b")
        third = _upload(tenant, admin, "client", hierarchy["client"].id, name="c.txt", content=b"c")
        document_service.delete_document(second.id, tenant_id=tenant.id)
        docs = document_service.list_documents(
            tenant_id=tenant.id, entity_type="client", entity_id=hierarchy["client"].id,
        )
        assert {d.id for d in docs} == {first.id, third.id}


class TestLocalFileStorage:
    def test_missing_bucket(self, tmp_path):
        from delivery_workspace.services.storage import StorageBucketNotFoundError

        backend = LocalFileStorage(tmp_path, "nowhere")
        with pytest.raises(StorageBucketNotFoundError):
            backend.put("t/u/project/p/1.txt", b"x")

    def test_path_cannot_escape_bucket(self, storage):
        with pytest.raises(StoragePermissionError):
            storage.put("../outside.txt", b"x")

    def test_object_path_layout(self):
        from datetime import datetime, timezone

        now = datetime(2026, 10, 17, tzinfo=timezone.utc)
        path = build_object_path("t1", None, "lead", "l1", "Scope.DOCX", now=now)
        assert path == f"t1/system/lead/l1/{int(now.timestamp() * 1000)}.docx"


class TestDocumentApi:
    def test_upload_list_delete(self, client, admin_headers, hierarchy, storage):
        res = client.post(
            "/api/v1/documents",
            data={
                "file": (io.BytesIO(b"hello"), "notes.txt"),
                "entity_type": "client",
                "entity_id": hierarchy["client"].id,
                "description": "Kickoff notes",
            },
            content_type="multipart/form-data",
            headers=admin_headers,
        )
        assert res.status_code == 201
        doc = res.get_json()
        assert doc["file_name"] == "notes.txt"
        assert doc["description"] == "Kickoff notes"

        listing = client.get(
            f"/api/v1/documents?entity_type=client&entity_id={hierarchy['client'].id}", headers=admin_headers,
        ).get_json()
        assert listing["total"] == 1

        assert client.delete(f"/api/v1/documents/{doc['id']}", headers=admin_headers).status_code == 200
        assert client.get(f"/api/v1/documents/{doc['id']}", headers=admin_headers).status_code == 404

    def test_missing_file_is_400(self, client, admin_headers, hierarchy, storage):
        res = client.post(
            "/api/v1/documents",
            data={"entity_type": "client", "entity_id": hierarchy["client"].id},
            content_type="multipart/form-data",
            headers=admin_headers,
        )
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_missing_bucket_is_503(self, app, client, admin_headers, hierarchy, tmp_path):
        app.extensions["storage"] = LocalFileStorage(tmp_path, "not-created")
        try:
            res = client.post(
                "/api/v1/documents",
                data={
                    "file": (io.BytesIO(b"hello"), "notes.txt"),
                    "entity_type": "client",
                    "entity_id": hierarchy["client"].id,
                },
                content_type="multipart/form-data",
                headers=admin_headers,
            )
        finally:
            app.extensions.pop("storage", None)
        assert res.status_code == 503
        assert res.get_json()["code"] == "ERR_STORAGE_UNAVAILABLE"
        assert Document.query.count() == 0


# ═════════════════════════════════════════════════════════════════════════════
# DISCUSSIONS & NOTES
# ═════════════════════════════════════════════════════════════════════════════


class TestDiscussions:
    def test_reply_must_share_the_entity(self, tenant, admin, hierarchy):
        root = collaboration_service.create_discussion(
            tenant_id=tenant.id, entity_type="project", entity_id=hierarchy["project"].id,
            content="Scope agreed?", author_id=admin.id,
        )
        reply = collaboration_service.create_discussion(
            tenant_id=tenant.id, entity_type="project", entity_id=hierarchy["project"].id,
            content="Yes", author_id=admin.id, parent_discussion_id=root.id,
        )
        assert reply.parent_discussion_id == root.id
        with pytest.raises(ValidationError):
            collaboration_service.create_discussion(
                tenant_id=tenant.id, entity_type="set", entity_id=hierarchy["set"].id,
                content="Wrong thread", author_id=admin.id, parent_discussion_id=root.id,
            )

    def test_blank_content_rejected(self, tenant, admin, hierarchy):
        with pytest.raises(ValidationError):
            collaboration_service.create_discussion(
                tenant_id=tenant.id, entity_type="project", entity_id=hierarchy["project"].id,
                content="   ", author_id=admin.id,
            )

    def test_internal_threads_can_be_hidden(self, tenant, admin, hierarchy):
        for content, internal in (("Public", False), ("Margin talk", True)):
            collaboration_service.create_discussion(
                tenant_id=tenant.id, entity_type="project", entity_id=hierarchy["project"].id,
                content=content, author_id=admin.id, is_internal=internal,
            )
        visible = collaboration_service.list_discussions(
            tenant_id=tenant.id, entity_type="project", entity_id=hierarchy["project"].id,
            include_internal=False,
        )
        assert [d.content for d in visible] == ["Public"]

    def test_unknown_discussion_is_not_found(self, tenant):
        with pytest.raises(NotFoundError):
            collaboration_service.get_discussion(str(uuid.uuid4()), tenant_id=tenant.id)


class TestNotes:
    def test_pinned_first(self, tenant, admin, hierarchy):
        collaboration_service.create_note(
            tenant_id=tenant.id, entity_type="client", entity_id=hierarchy["client"].id,
            content="Prefers email", author_id=admin.id,
        )
        collaboration_service.create_note(
            tenant_id=tenant.id, entity_type="client", entity_id=hierarchy["client"].id,
            content="Invoice quarterly", is_pinned=True, author_id=admin.id,
        )
        notes = collaboration_service.list_notes(
            tenant_id=tenant.id, entity_type="client", entity_id=hierarchy["client"].id,
        )
        assert [n.content for n in notes] == ["Invoice quarterly", "Prefers email"]

    def test_note_api_round(self, client, admin_headers, hierarchy):
        res = client.post(
            "/api/v1/notes",
            json={"entity_type": "client", "entity_id": hierarchy["client"].id, "content": "VIP"},
            headers=admin_headers,
        )
        assert res.status_code == 201
        note_id = res.get_json()["id"]
        res = client.put(f"/api/v1/notes/{note_id}", json={"is_pinned": True}, headers=admin_headers)
        assert res.get_json()["is_pinned"] is True
        assert client.delete(f"/api/v1/notes/{note_id}", headers=admin_headers).status_code == 200


# ═════════════════════════════════════════════════════════════════════════════
# NOTIFICATIONS
# ═════════════════════════════════════════════════════════════════════════════


class TestNotificationApi:
    @pytest.fixture()
    def inbox(self, tenant, admin):
        from delivery_workspace.services.notification import NotificationService

        own = NotificationService.create(tenant_id=tenant.id, title="Lead converted", recipient_id=admin.id)
        broadcast = NotificationService.create(tenant_id=tenant.id, title="Maintenance window")
        db.session.commit()
        return own, broadcast

    def test_lists_own_and_tenant_wide(self, client, admin_headers, inbox):
        res = client.get("/api/v1/notifications", headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json()["total"] == 2

    def test_other_users_do_not_see_personal_messages(self, client, make_user, tenant, auth_headers, inbox):
        colleague = make_user("org_user", tenant)
        titles = [n["title"] for n in client.get(
            "/api/v1/notifications", headers=auth_headers(colleague, tenant),
        ).get_json()["items"]]
        assert titles == ["Maintenance window"]

    def test_read_and_read_all(self, client, admin_headers, inbox):
        own, _ = inbox
        assert client.get("/api/v1/notifications/unread-count", headers=admin_headers).get_json() == {"unread_count": 2}

        res = client.post(f"/api/v1/notifications/{own.id}/read", json={}, headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json()["is_read"] is True

        res = client.post("/api/v1/notifications/read-all", json={}, headers=admin_headers)
        assert res.get_json()["marked_read"] == 1
        assert client.get("/api/v1/notifications/unread-count", headers=admin_headers).get_json()["unread_count"] == 0
