"""
Client Blueprint.

Endpoints:
    GET    /api/v1/clients                                    — list (?status=)
    POST   /api/v1/clients                                    — create
    GET    /api/v1/clients/<id>                               — detail
    PUT    /api/v1/clients/<id>                               — update
    DELETE /api/v1/clients/<id>                               — soft delete
    GET    /api/v1/clients/<id>/contacts                      — linked contacts
    POST   /api/v1/clients/<id>/contacts                      — link a contact
    PUT    /api/v1/clients/<id>/contacts/<contact_id>         — role / is_primary
    DELETE /api/v1/clients/<id>/contacts/<contact_id>         — unlink (?promote_next=)
    POST   /api/v1/clients/<id>/contacts/<contact_id>/primary — make primary

Layer contract:
    - No ORM calls here; all DB work is delegated to the services.
    - Services flush; this module commits once per request.
"""

import logging

from flask import Blueprint, jsonify, request

from delivery_workspace.blueprints import list_response
from delivery_workspace.services import client_service, relationship_service
from delivery_workspace.services.authorization_service import enforce, portal_client_scope, portal_only
from delivery_workspace.services.helpers.validators import require
from delivery_workspace.services.identity_service import current_context
from delivery_workspace.utils.helpers import arg_bool, db_commit_or_error, json_body

logger = logging.getLogger(__name__)

client_bp = Blueprint("clients", __name__, url_prefix="/api/v1")


def _client_for(ctx, client_id, operation):
    client = client_service.get_client(client_id, tenant_id=ctx.tenant_id)
    enforce(ctx, operation, client)
    return client


@client_bp.route("/clients", methods=["GET"])
def list_clients():
    ctx = current_context()
    enforce(ctx, "read", "client")
    clients = client_service.list_clients(
        tenant_id=ctx.tenant_id,
        status=request.args.get("status"),
        client_id=portal_client_scope(ctx),
        portal_only=portal_only(ctx),
    )
    return jsonify(list_response(clients)), 200


@client_bp.route("/clients", methods=["POST"])
def create_client():
    ctx = current_context()
    enforce(ctx, "create", "client")
    client = client_service.create_client(tenant_id=ctx.tenant_id, data=json_body(), actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(client.to_dict()), 201


@client_bp.route("/clients/<client_id>", methods=["GET"])
def get_client(client_id):
    client = _client_for(current_context(), client_id, "read")
    return jsonify(client.to_dict()), 200


@client_bp.route("/clients/<client_id>", methods=["PUT"])
def update_client(client_id):
    ctx = current_context()
    _client_for(ctx, client_id, "update")
    client = client_service.update_client(
        client_id, tenant_id=ctx.tenant_id, data=json_body(), actor_id=ctx.user_id,
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(client.to_dict()), 200


@client_bp.route("/clients/<client_id>", methods=["DELETE"])
def delete_client(client_id):
    ctx = current_context()
    _client_for(ctx, client_id, "delete")
    client_service.delete_client(client_id, tenant_id=ctx.tenant_id, actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Client deleted"}), 200


# ── Client ↔ Contact relationship ────────────────────────────────────────────


@client_bp.route("/clients/<client_id>/contacts", methods=["GET"])
def list_client_contacts(client_id):
    ctx = current_context()
    _client_for(ctx, client_id, "read")
    enforce(ctx, "read", "contact")
    views = relationship_service.list_client_contacts(client_id, tenant_id=ctx.tenant_id)
    return jsonify(list_response(views)), 200


@client_bp.route("/clients/<client_id>/contacts", methods=["POST"])
def link_contact(client_id):
    ctx = current_context()
    _client_for(ctx, client_id, "update")
    data = json_body()
    require(data, "contact_id")
    link = relationship_service.link_contact(
        client_id,
        data["contact_id"],
        tenant_id=ctx.tenant_id,
        role=data.get("role"),
        is_primary=bool(data.get("is_primary")),
        actor_id=ctx.user_id,
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(link.to_dict()), 201


@client_bp.route("/clients/<client_id>/contacts/<contact_id>", methods=["PUT"])
def update_client_contact(client_id, contact_id):
    ctx = current_context()
    _client_for(ctx, client_id, "update")
    link = relationship_service.update_relationship(
        contact_id, client_id, tenant_id=ctx.tenant_id, data=json_body(), actor_id=ctx.user_id,
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(link.to_dict()), 200


@client_bp.route("/clients/<client_id>/contacts/<contact_id>", methods=["DELETE"])
def unlink_contact(client_id, contact_id):
    ctx = current_context()
    _client_for(ctx, client_id, "update")
    promoted = relationship_service.unlink_contact(
        client_id,
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


@client_bp.route("/clients/<client_id>/contacts/<contact_id>/primary", methods=["POST"])
def set_primary_contact(client_id, contact_id):
    ctx = current_context()
    _client_for(ctx, client_id, "update")
    link = relationship_service.set_primary_contact(client_id, contact_id, tenant_id=ctx.tenant_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(link.to_dict()), 200
