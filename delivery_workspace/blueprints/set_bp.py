"""
Set Blueprint — sets, pitches, requirements and sibling ordering.

Endpoints:
    GET    /api/v1/sets                               — list (?client_id=, ?project_id=, ?phase_id=, ?status=)
    POST   /api/v1/sets                               — create
    GET    /api/v1/sets/<id>                          — detail
    PUT    /api/v1/sets/<id>                          — update
    DELETE /api/v1/sets/<id>                          — soft delete

    GET    /api/v1/sets/<set_id>/pitches              — pitches of a set
    POST   /api/v1/sets/<set_id>/pitches              — create pitch
    GET    /api/v1/pitches/<id>                       — detail
    PUT    /api/v1/pitches/<id>                       — update
    DELETE /api/v1/pitches/<id>                       — soft delete
    POST   /api/v1/pitches/<id>/approve               — approve
    POST   /api/v1/pitches/<id>/reject                — reject

    GET    /api/v1/sets/<set_id>/requirements         — list (?pitch_id=, ?status=)
    POST   /api/v1/sets/<set_id>/requirements         — create
    GET    /api/v1/requirements/<id>                  — detail
    PUT    /api/v1/requirements/<id>                  — update (status change cascades)
    DELETE /api/v1/requirements/<id>                  — soft delete
    POST   /api/v1/requirements/<id>/restore          — undo soft delete
    GET    /api/v1/tasks                              — task view (?assigned_to_id=, ?status=, ?open_only=)

    POST   /api/v1/reorder                            — {child_type, parent_id, child_ids}

Layer contract:
    - No ORM calls here; all DB work is delegated to the services.
    - Services flush; this module commits once per request.
"""

import logging

from flask import Blueprint, jsonify, request

from delivery_workspace.blueprints import list_response
from delivery_workspace.core.exceptions import PartialFailure
from delivery_workspace.services import (
    ordering_service,
    pitch_service,
    requirement_service,
    set_service,
)
from delivery_workspace.services.authorization_service import enforce, portal_client_scope, portal_only
from delivery_workspace.services.helpers.validators import require
from delivery_workspace.services.identity_service import current_context
from delivery_workspace.utils.helpers import arg_bool, db_commit_or_error, json_body

logger = logging.getLogger(__name__)

set_bp = Blueprint("sets", __name__, url_prefix="/api/v1")


def _set_for(ctx, set_id, operation):
    set_obj = set_service.get_set(set_id, tenant_id=ctx.tenant_id)
    enforce(ctx, operation, set_obj)
    return set_obj


def _pitch_for(ctx, pitch_id, operation):
    pitch = pitch_service.get_pitch(pitch_id, tenant_id=ctx.tenant_id)
    enforce(ctx, operation, pitch)
    return pitch


def _requirement_for(ctx, requirement_id, operation, include_deleted=False):
    req = requirement_service.get_requirement(
        requirement_id, tenant_id=ctx.tenant_id, include_deleted=include_deleted,
    )
    enforce(ctx, operation, req)
    return req


# ═══════════════════════════════════════════════════════════════════════════
#  SETS
# ═══════════════════════════════════════════════════════════════════════════


@set_bp.route("/sets", methods=["GET"])
def list_sets():
    ctx = current_context()
    enforce(ctx, "read", "set")
    sets = set_service.list_sets(
        tenant_id=ctx.tenant_id,
        client_id=portal_client_scope(ctx, request.args.get("client_id")),
        project_id=request.args.get("project_id"),
        phase_id=request.args.get("phase_id"),
        status=request.args.get("status"),
        include_templates=arg_bool("include_templates"),
        portal_only=portal_only(ctx),
    )
    return jsonify(list_response(sets)), 200


@set_bp.route("/sets", methods=["POST"])
def create_set():
    ctx = current_context()
    enforce(ctx, "create", "set")
    set_obj = set_service.create_set(tenant_id=ctx.tenant_id, data=json_body(), actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(set_obj.to_dict()), 201


@set_bp.route("/sets/<set_id>", methods=["GET"])
def get_set(set_id):
    set_obj = _set_for(current_context(), set_id, "read")
    return jsonify(set_obj.to_dict()), 200


@set_bp.route("/sets/<set_id>", methods=["PUT"])
def update_set(set_id):
    ctx = current_context()
    _set_for(ctx, set_id, "update")
    set_obj = set_service.update_set(set_id, tenant_id=ctx.tenant_id, data=json_body(), actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(set_obj.to_dict()), 200


@set_bp.route("/sets/<set_id>", methods=["DELETE"])
def delete_set(set_id):
    ctx = current_context()
    _set_for(ctx, set_id, "delete")
    set_service.delete_set(set_id, tenant_id=ctx.tenant_id, actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Set deleted"}), 200


# ═══════════════════════════════════════════════════════════════════════════
#  PITCHES
# ═══════════════════════════════════════════════════════════════════════════


@set_bp.route("/sets/<set_id>/pitches", methods=["GET"])
def list_pitches(set_id):
    ctx = current_context()
    _set_for(ctx, set_id, "read")
    pitches = pitch_service.list_pitches(set_id, tenant_id=ctx.tenant_id, portal_only=portal_only(ctx))
    return jsonify(list_response(pitches)), 200


@set_bp.route("/sets/<set_id>/pitches", methods=["POST"])
def create_pitch(set_id):
    ctx = current_context()
    enforce(ctx, "create", "pitch")
    pitch = pitch_service.create_pitch(set_id, tenant_id=ctx.tenant_id, data=json_body(), actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(pitch.to_dict()), 201


@set_bp.route("/pitches/<pitch_id>", methods=["GET"])
def get_pitch(pitch_id):
    pitch = _pitch_for(current_context(), pitch_id, "read")
    return jsonify(pitch.to_dict()), 200


@set_bp.route("/pitches/<pitch_id>", methods=["PUT"])
def update_pitch(pitch_id):
    ctx = current_context()
    _pitch_for(ctx, pitch_id, "update")
    pitch = pitch_service.update_pitch(pitch_id, tenant_id=ctx.tenant_id, data=json_body(), actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(pitch.to_dict()), 200


@set_bp.route("/pitches/<pitch_id>", methods=["DELETE"])
def delete_pitch(pitch_id):
    ctx = current_context()
    _pitch_for(ctx, pitch_id, "delete")
    pitch_service.delete_pitch(pitch_id, tenant_id=ctx.tenant_id, actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Pitch deleted"}), 200


@set_bp.route("/pitches/<pitch_id>/approve", methods=["POST"])
def approve_pitch(pitch_id):
    ctx = current_context()
    _pitch_for(ctx, pitch_id, "update")
    pitch = pitch_service.approve_pitch(pitch_id, tenant_id=ctx.tenant_id, approver_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(pitch.to_dict()), 200


@set_bp.route("/pitches/<pitch_id>/reject", methods=["POST"])
def reject_pitch(pitch_id):
    ctx = current_context()
    _pitch_for(ctx, pitch_id, "update")
    pitch = pitch_service.reject_pitch(pitch_id, tenant_id=ctx.tenant_id, actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(pitch.to_dict()), 200


# ═══════════════════════════════════════════════════════════════════════════
#  REQUIREMENTS & TASKS
# ═══════════════════════════════════════════════════════════════════════════


@set_bp.route("/sets/<set_id>/requirements", methods=["GET"])
def list_requirements(set_id):
    ctx = current_context()
    _set_for(ctx, set_id, "read")
    reqs = requirement_service.list_requirements(
        set_id,
        tenant_id=ctx.tenant_id,
        pitch_id=request.args.get("pitch_id"),
        status=request.args.get("status"),
        portal_only=portal_only(ctx),
    )
    return jsonify(list_response(reqs)), 200


@set_bp.route("/sets/<set_id>/requirements", methods=["POST"])
def create_requirement(set_id):
    ctx = current_context()
    enforce(ctx, "create", "requirement")
    req = requirement_service.create_requirement(
        set_id, tenant_id=ctx.tenant_id, data=json_body(), actor_id=ctx.user_id,
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(req.to_dict()), 201


@set_bp.route("/requirements/<requirement_id>", methods=["GET"])
def get_requirement(requirement_id):
    req = _requirement_for(current_context(), requirement_id, "read")
    return jsonify(req.to_dict()), 200


@set_bp.route("/requirements/<requirement_id>", methods=["PUT"])
def update_requirement(requirement_id):
    ctx = current_context()
    _requirement_for(ctx, requirement_id, "update")
    req = requirement_service.update_requirement(
        requirement_id, tenant_id=ctx.tenant_id, data=json_body(), actor_id=ctx.user_id,
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(req.to_dict()), 200


@set_bp.route("/requirements/<requirement_id>", methods=["DELETE"])
def delete_requirement(requirement_id):
    ctx = current_context()
    _requirement_for(ctx, requirement_id, "delete")
    requirement_service.delete_requirement(requirement_id, tenant_id=ctx.tenant_id, actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Requirement deleted"}), 200


@set_bp.route("/requirements/<requirement_id>/restore", methods=["POST"])
def restore_requirement(requirement_id):
    ctx = current_context()
    _requirement_for(ctx, requirement_id, "update", include_deleted=True)
    req = requirement_service.restore_requirement(requirement_id, tenant_id=ctx.tenant_id, actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(req.to_dict()), 200


@set_bp.route("/tasks", methods=["GET"])
def list_tasks():
    ctx = current_context()
    # Internal view: gated like a requirement edit so client users never see it
    enforce(ctx, "update", "requirement")
    tasks = requirement_service.list_tasks(
        tenant_id=ctx.tenant_id,
        assigned_to_id=request.args.get("assigned_to_id"),
        status=request.args.get("status"),
        open_only=arg_bool("open_only"),
    )
    return jsonify(list_response(tasks)), 200


# ═══════════════════════════════════════════════════════════════════════════
#  ORDERING
# ═══════════════════════════════════════════════════════════════════════════


@set_bp.route("/reorder", methods=["POST"])
def reorder():
    """Body: child_type (phase|set|pitch|requirement), parent_id, child_ids (full order)."""
    ctx = current_context()
    data = json_body()
    require(data, "child_type", "parent_id")
    enforce(ctx, "update", str(data["child_type"]))
    try:
        result = ordering_service.reorder(
            data["child_type"], data["parent_id"], data.get("child_ids"), tenant_id=ctx.tenant_id,
        )
    except PartialFailure:
        # Rows written before the failing one stay applied.
        db_commit_or_error()
        raise
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result.to_dict()), 200
