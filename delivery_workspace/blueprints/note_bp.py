"""
Note Blueprint — internal notes on workspace entities (pinned first).

Endpoints:
    GET    /api/v1/notes?entity_type=&entity_id=
    POST   /api/v1/notes
    PUT    /api/v1/notes/<id>
    DELETE /api/v1/notes/<id>
"""

import logging

from flask import Blueprint, jsonify, request

from delivery_workspace.blueprints import list_response
from delivery_workspace.services import collaboration_service
from delivery_workspace.services.authorization_service import enforce
from delivery_workspace.services.helpers.entity_registry import resolve_entity
from delivery_workspace.services.helpers.validators import require
from delivery_workspace.services.identity_service import current_context
from delivery_workspace.utils.helpers import db_commit_or_error, json_body

logger = logging.getLogger(__name__)

note_bp = Blueprint("notes", __name__, url_prefix="/api/v1")


@note_bp.route("/notes", methods=["GET"])
def list_notes():
    ctx = current_context()
    # Notes are internal; gated like a write so client users never list them
    enforce(ctx, "update", "note")
    args = {"entity_type": request.args.get("entity_type"), "entity_id": request.args.get("entity_id")}
    require(args, "entity_type", "entity_id")
    enforce(ctx, "read", resolve_entity(args["entity_type"], args["entity_id"], tenant_id=ctx.tenant_id))
    notes = collaboration_service.list_notes(tenant_id=ctx.tenant_id, **args)
    return jsonify(list_response(notes)), 200


@note_bp.route("/notes", methods=["POST"])
def create_note():
    ctx = current_context()
    enforce(ctx, "create", "note")
    data = json_body()
    require(data, "entity_type", "entity_id")
    enforce(ctx, "read", resolve_entity(data["entity_type"], data["entity_id"], tenant_id=ctx.tenant_id))
    note = collaboration_service.create_note(
        tenant_id=ctx.tenant_id,
        entity_type=data["entity_type"],
        entity_id=data["entity_id"],
        content=data.get("content"),
        title=data.get("title", ""),
        is_pinned=bool(data.get("is_pinned", False)),
        author_id=ctx.user_id,
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(note.to_dict()), 201


@note_bp.route("/notes/<note_id>", methods=["PUT"])
def update_note(note_id):
    ctx = current_context()
    enforce(ctx, "update", collaboration_service.get_note(note_id, tenant_id=ctx.tenant_id))
    note = collaboration_service.update_note(note_id, tenant_id=ctx.tenant_id, data=json_body(), actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(note.to_dict()), 200


@note_bp.route("/notes/<note_id>", methods=["DELETE"])
def delete_note(note_id):
    ctx = current_context()
    enforce(ctx, "delete", collaboration_service.get_note(note_id, tenant_id=ctx.tenant_id))
    collaboration_service.delete_note(note_id, tenant_id=ctx.tenant_id, actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Note deleted"}), 200
