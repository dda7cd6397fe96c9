"""
Lead Blueprint — CRM pipeline and lead → client conversion.

Endpoints:
    GET    /api/v1/leads                                 — list (?status=, ?owner_id=, ?open_only=)
    POST   /api/v1/leads                                 — create
    GET    /api/v1/leads/pipeline-stats                  — pipeline totals
    GET    /api/v1/leads/<id>                            — detail
    PUT    /api/v1/leads/<id>                            — update
    DELETE /api/v1/leads/<id>                            — soft delete
    POST   /api/v1/leads/<id>/convert                    — convert to client (idempotent)
    GET    /api/v1/leads/<id>/contacts                   — linked contacts
    POST   /api/v1/leads/<id>/contacts                   — link a contact
    PUT    /api/v1/leads/<id>/contacts/<contact_id>      — update link fields
    DELETE /api/v1/leads/<id>/contacts/<contact_id>      — unlink (?promote_next=)
    POST   /api/v1/leads/<id>/contacts/<contact_id>/primary — make primary

Leads are internal: client users have no access to this blueprint.
"""

import logging

from flask import Blueprint, jsonify, request

from delivery_workspace.blueprints import list_response
from delivery_workspace.services import lead_conversion_service, lead_service, relationship_service
from delivery_workspace.services.authorization_service import enforce
from delivery_workspace.services.helpers.validators import require
from delivery_workspace.services.identity_service import current_context
from delivery_workspace.utils.helpers import arg_bool, db_commit_or_error, json_body

logger = logging.getLogger(__name__)

lead_bp = Blueprint("leads", __name__, url_prefix="/api/v1")


def _lead_for(ctx, lead_id, operation):
    lead = lead_service.get_lead(lead_id, tenant_id=ctx.tenant_id)
    enforce(ctx, operation, lead)
    return lead


@lead_bp.route("/leads", methods=["GET"])
def list_leads():
    ctx = current_context()
    enforce(ctx, "read", "lead")
    leads = lead_service.list_leads(
        tenant_id=ctx.tenant_id,
        status=request.args.get("status"),
        owner_id=request.args.get("owner_id"),
        open_only=arg_bool("open_only"),
    )
    return jsonify(list_response(leads)), 200


@lead_bp.route("/leads", methods=["POST"])
def create_lead():
    ctx = current_context()
    enforce(ctx, "create", "lead")
    lead = lead_service.create_lead(tenant_id=ctx.tenant_id, data=json_body(), actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(lead.to_dict()), 201


@lead_bp.route("/leads/pipeline-stats", methods=["GET"])
def pipeline_stats():
    ctx = current_context()
    enforce(ctx, "read", "lead")
    return jsonify(lead_service.get_pipeline_stats(ctx.tenant_id)), 200


@lead_bp.route("/leads/<lead_id>", methods=["GET"])
def get_lead(lead_id):
    lead = _lead_for(current_context(), lead_id, "read")
    return jsonify(lead.to_dict()), 200


@lead_bp.route("/leads/<lead_id>", methods=["PUT"])
def update_lead(lead_id):
    ctx = current_context()
    _lead_for(ctx, lead_id, "update")
    lead = lead_service.update_lead(lead_id, tenant_id=ctx.tenant_id, data=json_body(), actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(lead.to_dict()), 200


@lead_bp.route("/leads/<lead_id>", methods=["DELETE"])
def delete_lead(lead_id):
    ctx = current_context()
    _lead_for(ctx, lead_id, "delete")
    lead_service.delete_lead(lead_id, tenant_id=ctx.tenant_id, actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Lead deleted"}), 200


@lead_bp.route("/leads/<lead_id>/convert", methods=["POST"])
def convert_lead(lead_id):
    """Convert a lead to a client.

    Body (JSON, all optional):
        client_name, relationship_manager_id,
        copy_contacts (default true), copy_documents (default true).

    Returns 201 when a client was created, 200 when the lead was already converted.
    """
    ctx = current_context()
    _lead_for(ctx, lead_id, "update")
    enforce(ctx, "create", "client")
    data = json_body()
    result = lead_conversion_service.convert_lead_to_client(
        lead_id,
        tenant_id=ctx.tenant_id,
        actor_id=ctx.user_id,
        client_name=data.get("client_name"),
        relationship_manager_id=data.get("relationship_manager_id"),
        copy_contacts=bool(data.get("copy_contacts", True)),
        copy_documents=bool(data.get("copy_documents", True)),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result.to_dict()), 201 if result.created else 200


# ── Lead ↔ Contact relationship ──────────────────────────────────────────────


@lead_bp.route("/leads/<lead_id>/contacts", methods=["GET"])
def list_lead_contacts(lead_id):
    ctx = current_context()
    _lead_for(ctx, lead_id, "read")
    views = relationship_service.list_lead_contacts(lead_id, tenant_id=ctx.tenant_id)
    return jsonify(list_response(views)), 200


@lead_bp.route("/leads/<lead_id>/contacts", methods=["POST"])
def link_lead_contact(lead_id):
    ctx = current_context()
    _lead_for(ctx, lead_id, "update")
    data = json_body()
    require(data, "contact_id")
    link = relationship_service.link_lead_contact(
        lead_id, data["contact_id"], tenant_id=ctx.tenant_id, data=data, actor_id=ctx.user_id,
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(link.to_dict()), 201


@lead_bp.route("/leads/<lead_id>/contacts/<contact_id>", methods=["PUT"])
def update_lead_contact(lead_id, contact_id):
    ctx = current_context()
    _lead_for(ctx, lead_id, "update")
    link = relationship_service.update_lead_relationship(
        contact_id, lead_id, tenant_id=ctx.tenant_id, data=json_body(), actor_id=ctx.user_id,
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(link.to_dict()), 200


@lead_bp.route("/leads/<lead_id>/contacts/<contact_id>", methods=["DELETE"])
def unlink_lead_contact(lead_id, contact_id):
    ctx = current_context()
    _lead_for(ctx, lead_id, "update")
    promoted = relationship_service.unlink_lead_contact(
        lead_id,
        contact_id,
        tenant_id=ctx.tenant_id,
        promote_next=arg_bool("promote_next"),
        actor_id=ctx.user_id,
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({
        "message": "Contact unlinked",
        "promoted": promoted.to_dict() if promoted else None,
    }), 200


@lead_bp.route("/leads/<lead_id>/contacts/<contact_id>/primary", methods=["POST"])
def set_primary_lead_contact(lead_id, contact_id):
    ctx = current_context()
    _lead_for(ctx, lead_id, "update")
    link = relationship_service.set_primary_lead_contact(lead_id, contact_id, tenant_id=ctx.tenant_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(link.to_dict()), 200
