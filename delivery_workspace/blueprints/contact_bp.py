"""
Contact Blueprint.

Endpoints:
    GET    /api/v1/contacts          — tenant + global contacts (?client_id=, ?search=)
    POST   /api/v1/contacts          — create (sys_admin may pass "global": true)
    GET    /api/v1/contacts/<id>     — detail
    PUT    /api/v1/contacts/<id>     — update person fields
    DELETE /api/v1/contacts/<id>     — soft delete
"""

import logging

from flask import Blueprint, jsonify, request

from delivery_workspace.blueprints import list_response
from delivery_workspace.services import contact_service
from delivery_workspace.services.authorization_service import enforce
from delivery_workspace.services.identity_service import current_context
from delivery_workspace.utils.helpers import db_commit_or_error, json_body

logger = logging.getLogger(__name__)

contact_bp = Blueprint("contacts", __name__, url_prefix="/api/v1")


@contact_bp.route("/contacts", methods=["GET"])
def list_contacts():
    ctx = current_context()
    enforce(ctx, "read", "contact")
    contacts = contact_service.list_contacts(
        tenant_id=ctx.tenant_id,
        client_id=request.args.get("client_id"),
        search=request.args.get("search"),
    )
    return jsonify(list_response(contacts)), 200


@contact_bp.route("/contacts", methods=["POST"])
def create_contact():
    ctx = current_context()
    enforce(ctx, "create", "contact")
    data = json_body()
    tenant_id = None if (ctx.is_sys_admin and data.get("global")) else ctx.tenant_id
    contact = contact_service.create_contact(tenant_id=tenant_id, data=data, actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(contact.to_dict()), 201


@contact_bp.route("/contacts/<contact_id>", methods=["GET"])
def get_contact(contact_id):
    ctx = current_context()
    contact = contact_service.get_contact(contact_id, tenant_id=ctx.tenant_id)
    enforce(ctx, "read", contact)
    return jsonify(contact.to_dict()), 200


@contact_bp.route("/contacts/<contact_id>", methods=["PUT"])
def update_contact(contact_id):
    ctx = current_context()
    enforce(ctx, "update", contact_service.get_contact(contact_id, tenant_id=ctx.tenant_id))
    contact = contact_service.update_contact(
        contact_id, tenant_id=ctx.tenant_id, data=json_body(), actor_id=ctx.user_id,
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(contact.to_dict()), 200


@contact_bp.route("/contacts/<contact_id>", methods=["DELETE"])
def delete_contact(contact_id):
    ctx = current_context()
    enforce(ctx, "delete", contact_service.get_contact(contact_id, tenant_id=ctx.tenant_id))
    contact_service.delete_contact(contact_id, tenant_id=ctx.tenant_id, actor_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Contact deleted"}), 200
