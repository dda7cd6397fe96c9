"""
Document Blueprint — file attachments.

Endpoints:
    GET    /api/v1/documents?entity_type=&entity_id=   — documents of an entity
    POST   /api/v1/documents                           — multipart upload
                                                         (file, entity_type, entity_id, description)
    GET    /api/v1/documents/<id>                      — metadata
    DELETE /api/v1/documents/<id>                      — soft delete + blob removal
"""

import logging

from flask import Blueprint, jsonify, request

from delivery_workspace.blueprints import list_response
from delivery_workspace.services import document_service
from delivery_workspace.services.authorization_service import enforce
from delivery_workspace.services.helpers.entity_registry import resolve_entity
from delivery_workspace.services.helpers.validators import require
from delivery_workspace.services.identity_service import current_context
from delivery_workspace.utils.errors import E, api_error
from delivery_workspace.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

document_bp = Blueprint("documents", __name__, url_prefix="/api/v1")


def _target_for(ctx, entity_type, entity_id, operation):
    require({"entity_type": entity_type, "entity_id": entity_id}, "entity_type", "entity_id")
    target = resolve_entity(entity_type, entity_id, tenant_id=ctx.tenant_id)
    enforce(ctx, operation, target)
    return target


@document_bp.route("/documents", methods=["GET"])
def list_documents():
    ctx = current_context()
    entity_type = request.args.get("entity_type")
    entity_id = request.args.get("entity_id")
    _target_for(ctx, entity_type, entity_id, "read")
    docs = document_service.list_documents(tenant_id=ctx.tenant_id, entity_type=entity_type, entity_id=entity_id)
    return jsonify(list_response(docs)), 200


@document_bp.route("/documents", methods=["POST"])
def upload_document():
    ctx = current_context()
    enforce(ctx, "create", "document")
    upload = request.files.get("file")
    if upload is None:
        return api_error(E.VALIDATION_REQUIRED, "file is required")
    entity_type = request.form.get("entity_type")
    entity_id = request.form.get("entity_id")
    _target_for(ctx, entity_type, entity_id, "read")

    doc = document_service.upload_document(
        tenant_id=ctx.tenant_id,
        entity_type=entity_type,
        entity_id=entity_id,
        file_name=upload.filename or "",
        content=upload.read(),
        user_id=ctx.user_id,
        mime_type=upload.mimetype if upload.mimetype != "application/octet-stream" else None,
        description=request.form.get("description", ""),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(doc.to_dict()), 201


@document_bp.route("/documents/<document_id>", methods=["GET"])
def get_document(document_id):
    ctx = current_context()
    doc = document_service.get_document(document_id, tenant_id=ctx.tenant_id)
    _target_for(ctx, doc.entity_type, doc.entity_id, "read")
    return jsonify(doc.to_dict()), 200


@document_bp.route("/documents/<document_id>", methods=["DELETE"])
def delete_document(document_id):
    ctx = current_context()
    enforce(ctx, "delete", document_service.get_document(document_id, tenant_id=ctx.tenant_id))
    document_service.delete_document(document_id, tenant_id=ctx.tenant_id, actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Document deleted"}), 200
