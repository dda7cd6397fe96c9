"""
Project Blueprint — projects, templates and cloning.

Endpoints:
    GET    /api/v1/projects                       — list (?client_id=, ?status=, ?include_templates=)
    POST   /api/v1/projects                       — create
    GET    /api/v1/projects/<id>                  — detail
    PUT    /api/v1/projects/<id>                  — update
    DELETE /api/v1/projects/<id>                  — soft delete
    POST   /api/v1/projects/<id>/duplicate        — deep copy
    POST   /api/v1/projects/<id>/mark-template    — flag project + subtree as template
    GET    /api/v1/projects/templates             — template catalogue
    POST   /api/v1/projects/from-template         — instantiate a template for a client
    POST   /api/v1/completion/<type>/<id>/recompute — re-run the completion roll-up

Layer contract:
    - No ORM calls here; all DB work is delegated to the services.
    - Services flush; this module commits once per request.
"""

import logging

from flask import Blueprint, jsonify, request

from delivery_workspace.blueprints import list_response
from delivery_workspace.services import aggregation_service, project_service, template_service
from delivery_workspace.services.authorization_service import enforce, portal_client_scope, portal_only
from delivery_workspace.services.helpers.entity_registry import resolve_entity
from delivery_workspace.services.helpers.validators import check_choice, require
from delivery_workspace.services.identity_service import current_context
from delivery_workspace.utils.helpers import arg_bool, db_commit_or_error, json_body

logger = logging.getLogger(__name__)

project_bp = Blueprint("projects", __name__, url_prefix="/api/v1")


def _project_for(ctx, project_id, operation):
    project = project_service.get_project(project_id, tenant_id=ctx.tenant_id)
    enforce(ctx, operation, project)
    return project


@project_bp.route("/projects", methods=["GET"])
def list_projects():
    ctx = current_context()
    enforce(ctx, "read", "project")
    projects = project_service.list_projects(
        tenant_id=ctx.tenant_id,
        client_id=portal_client_scope(ctx, request.args.get("client_id")),
        status=request.args.get("status"),
        include_templates=arg_bool("include_templates"),
        portal_only=portal_only(ctx),
    )
    return jsonify(list_response(projects)), 200


@project_bp.route("/projects", methods=["POST"])
def create_project():
    ctx = current_context()
    enforce(ctx, "create", "project")
    project = project_service.create_project(tenant_id=ctx.tenant_id, data=json_body(), actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(project.to_dict()), 201


@project_bp.route("/projects/<project_id>", methods=["GET"])
def get_project(project_id):
    project = _project_for(current_context(), project_id, "read")
    return jsonify(project.to_dict()), 200


@project_bp.route("/projects/<project_id>", methods=["PUT"])
def update_project(project_id):
    ctx = current_context()
    _project_for(ctx, project_id, "update")
    project = project_service.update_project(
        project_id, tenant_id=ctx.tenant_id, data=json_body(), actor_id=ctx.user_id,
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(project.to_dict()), 200


@project_bp.route("/projects/<project_id>", methods=["DELETE"])
def delete_project(project_id):
    ctx = current_context()
    _project_for(ctx, project_id, "delete")
    project_service.delete_project(project_id, tenant_id=ctx.tenant_id, actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Project deleted"}), 200


# ── Templates & cloning ─────────────────────────────────────────────────────


@project_bp.route("/projects/<project_id>/duplicate", methods=["POST"])
def duplicate_project(project_id):
    """Deep-copy a project.

    Body (JSON, all optional):
        new_client_id, new_name, include_children (default true),
        clear_dates, clear_assignments, as_template.
    """
    ctx = current_context()
    _project_for(ctx, project_id, "read")
    enforce(ctx, "create", "project")
    data = json_body()
    project = template_service.duplicate_project(
        project_id,
        tenant_id=ctx.tenant_id,
        actor_id=ctx.user_id,
        new_client_id=data.get("new_client_id"),
        new_name=data.get("new_name"),
        include_children=bool(data.get("include_children", True)),
        clear_dates=bool(data.get("clear_dates", False)),
        clear_assignments=bool(data.get("clear_assignments", False)),
        as_template=bool(data.get("as_template", False)),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(project.to_dict()), 201


@project_bp.route("/projects/<project_id>/mark-template", methods=["POST"])
def mark_as_template(project_id):
    ctx = current_context()
    _project_for(ctx, project_id, "update")
    project = template_service.mark_as_template(project_id, tenant_id=ctx.tenant_id, actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(project.to_dict()), 200


@project_bp.route("/projects/templates", methods=["GET"])
def list_templates():
    ctx = current_context()
    enforce(ctx, "create", "project")
    templates = template_service.list_templates(tenant_id=ctx.tenant_id)
    return jsonify(list_response(templates)), 200


@project_bp.route("/projects/from-template", methods=["POST"])
def create_from_template():
    """Body: template_id, client_id, name (required); clear_dates, clear_assignments."""
    ctx = current_context()
    enforce(ctx, "create", "project")
    data = json_body()
    require(data, "template_id", "client_id", "name")
    project = template_service.create_from_template(
        data["template_id"],
        tenant_id=ctx.tenant_id,
        client_id=data["client_id"],
        name=data["name"],
        actor_id=ctx.user_id,
        clear_dates=bool(data.get("clear_dates", True)),
        clear_assignments=bool(data.get("clear_assignments", False)),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(project.to_dict()), 201


# ── Completion roll-up ──────────────────────────────────────────────────────


@project_bp.route("/completion/<entity_type>/<entity_id>/recompute", methods=["POST"])
def recompute_completion(entity_type, entity_id):
    """Recompute completion for one level and its ancestors (idempotent)."""
    ctx = current_context()
    check_choice(entity_type, set(aggregation_service.LEVEL_MODELS), "entity_type")
    entity = resolve_entity(entity_type, entity_id, tenant_id=ctx.tenant_id)
    enforce(ctx, "update", entity)
    result = aggregation_service.recompute_completion(entity_type, entity.id, tenant_id=ctx.tenant_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result.to_dict()), 200
