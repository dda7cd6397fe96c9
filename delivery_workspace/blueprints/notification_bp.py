"""
Notification Blueprint — the acting user's in-app messages.

Endpoints:
    GET  /api/v1/notifications               — own + tenant-wide (?unread_only=, ?limit=, ?offset=)
    GET  /api/v1/notifications/unread-count
    POST /api/v1/notifications/<id>/read
    POST /api/v1/notifications/read-all
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from delivery_workspace.services.identity_service import current_context
from delivery_workspace.services.notification import NotificationService
from delivery_workspace.utils.helpers import arg_bool, db_commit_or_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1")


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    ctx = current_context()
    limit = min(request.args.get("limit", 50, type=int), 200)
    offset = max(request.args.get("offset", 0, type=int), 0)
    items, total = NotificationService.list_for_recipient(
        tenant_id=ctx.tenant_id,
        recipient_id=ctx.user_id,
        unread_only=arg_bool("unread_only"),
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total}), 200


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    ctx = current_context()
    count = NotificationService.unread_count(tenant_id=ctx.tenant_id, recipient_id=ctx.user_id)
    return jsonify({"unread_count": count}), 200


@notification_bp.route("/notifications/<notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    ctx = current_context()
    notif = NotificationService.mark_read(notification_id, tenant_id=ctx.tenant_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(notif.to_dict()), 200


@notification_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    ctx = current_context()
    count = NotificationService.mark_all_read(tenant_id=ctx.tenant_id, recipient_id=ctx.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"marked_read": count}), 200
