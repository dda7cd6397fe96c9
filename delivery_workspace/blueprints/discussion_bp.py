"""
Discussion Blueprint — threaded comments on workspace entities.

Endpoints:
    GET    /api/v1/discussions?entity_type=&entity_id=   — thread (internal hidden from client users)
    POST   /api/v1/discussions                           — post (parent_discussion_id for replies)
    PUT    /api/v1/discussions/<id>                      — edit
    DELETE /api/v1/discussions/<id>                      — soft delete
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

discussion_bp = Blueprint("discussions", __name__, url_prefix="/api/v1")


@discussion_bp.route("/discussions", methods=["GET"])
def list_discussions():
    ctx = current_context()
    args = {"entity_type": request.args.get("entity_type"), "entity_id": request.args.get("entity_id")}
    require(args, "entity_type", "entity_id")
    enforce(ctx, "read", resolve_entity(args["entity_type"], args["entity_id"], tenant_id=ctx.tenant_id))
    discussions = collaboration_service.list_discussions(
        tenant_id=ctx.tenant_id,
        include_internal=not ctx.is_client_user,
        **args,
    )
    return jsonify(list_response(discussions)), 200


@discussion_bp.route("/discussions", methods=["POST"])
def create_discussion():
    ctx = current_context()
    enforce(ctx, "create", "discussion")
    data = json_body()
    require(data, "entity_type", "entity_id")
    enforce(ctx, "read", resolve_entity(data["entity_type"], data["entity_id"], tenant_id=ctx.tenant_id))
    discussion = collaboration_service.create_discussion(
        tenant_id=ctx.tenant_id,
        entity_type=data["entity_type"],
        entity_id=data["entity_id"],
        content=data.get("content"),
        author_id=ctx.user_id,
        is_internal=bool(data.get("is_internal", False)),
        parent_discussion_id=data.get("parent_discussion_id"),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(discussion.to_dict()), 201


@discussion_bp.route("/discussions/<discussion_id>", methods=["PUT"])
def update_discussion(discussion_id):
    ctx = current_context()
    enforce(ctx, "update", collaboration_service.get_discussion(discussion_id, tenant_id=ctx.tenant_id))
    discussion = collaboration_service.update_discussion(
        discussion_id, tenant_id=ctx.tenant_id, data=json_body(), actor_id=ctx.user_id,
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(discussion.to_dict()), 200


@discussion_bp.route("/discussions/<discussion_id>", methods=["DELETE"])
def delete_discussion(discussion_id):
    ctx = current_context()
    enforce(ctx, "delete", collaboration_service.get_discussion(discussion_id, tenant_id=ctx.tenant_id))
    collaboration_service.delete_discussion(discussion_id, tenant_id=ctx.tenant_id, actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Discussion deleted"}), 200
