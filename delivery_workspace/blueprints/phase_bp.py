"""
Phase Blueprint.

Endpoints:
    GET    /api/v1/projects/<project_id>/phases   — ordered phases of a project
    POST   /api/v1/projects/<project_id>/phases   — create
    GET    /api/v1/phases/<id>                    — detail
    PUT    /api/v1/phases/<id>                    — update (links, order_manual, ...)
    DELETE /api/v1/phases/<id>                    — soft delete
"""

import logging

from flask import Blueprint, jsonify

from delivery_workspace.blueprints import list_response
from delivery_workspace.services import phase_service, project_service
from delivery_workspace.services.authorization_service import enforce, portal_only
from delivery_workspace.services.identity_service import current_context
from delivery_workspace.utils.helpers import db_commit_or_error, json_body

logger = logging.getLogger(__name__)

phase_bp = Blueprint("phases", __name__, url_prefix="/api/v1")


def _phase_for(ctx, phase_id, operation):
    phase = phase_service.get_phase(phase_id, tenant_id=ctx.tenant_id)
    enforce(ctx, operation, phase)
    return phase


@phase_bp.route("/projects/<project_id>/phases", methods=["GET"])
def list_phases(project_id):
    ctx = current_context()
    enforce(ctx, "read", project_service.get_project(project_id, tenant_id=ctx.tenant_id))
    phases = phase_service.list_phases(project_id, tenant_id=ctx.tenant_id, portal_only=portal_only(ctx))
    return jsonify(list_response(phases)), 200


@phase_bp.route("/projects/<project_id>/phases", methods=["POST"])
def create_phase(project_id):
    ctx = current_context()
    enforce(ctx, "create", "phase")
    phase = phase_service.create_phase(
        project_id, tenant_id=ctx.tenant_id, data=json_body(), actor_id=ctx.user_id,
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(phase.to_dict()), 201


@phase_bp.route("/phases/<phase_id>", methods=["GET"])
def get_phase(phase_id):
    phase = _phase_for(current_context(), phase_id, "read")
    return jsonify(phase.to_dict()), 200


@phase_bp.route("/phases/<phase_id>", methods=["PUT"])
def update_phase(phase_id):
    ctx = current_context()
    _phase_for(ctx, phase_id, "update")
    phase = phase_service.update_phase(phase_id, tenant_id=ctx.tenant_id, data=json_body(), actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(phase.to_dict()), 200


@phase_bp.route("/phases/<phase_id>", methods=["DELETE"])
def delete_phase(phase_id):
    ctx = current_context()
    _phase_for(ctx, phase_id, "delete")
    phase_service.delete_phase(phase_id, tenant_id=ctx.tenant_id, actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Phase deleted"}), 200
