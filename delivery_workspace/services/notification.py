"""
Delivery Workspace
Notification Service.

The notification collaborator: workflow modules hand it human-readable
outcome messages ("Lead converted", "Project duplicated"); the UI renders
them. No business logic lives here. Writes are flush-only so messages
commit (or roll back) with the operation that produced them.
"""

from datetime import datetime, timezone

from delivery_workspace.core.exceptions import NotFoundError
from delivery_workspace.models import db
from delivery_workspace.models.notification import NOTIFICATION_SEVERITIES, Notification


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, tenant_id, title, message="", severity="info",
               recipient_id=None, entity_type="", entity_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (flushed, not committed).
        """
        if severity not in NOTIFICATION_SEVERITIES:
            severity = "info"
        notif = Notification(
            tenant_id=tenant_id,
            recipient_id=recipient_id,
            title=title,
            message=message,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.session.add(notif)
        db.session.flush()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(*, tenant_id, recipient_id=None, unread_only=False,
                           limit=50, offset=0):
        """
        Retrieve notifications for a recipient (plus tenant-wide ones), newest first.
        """
        q = Notification.query.filter(
            Notification.tenant_id == tenant_id,
            (Notification.recipient_id == recipient_id) | (Notification.recipient_id.is_(None)),
        )
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = q.order_by(Notification.created_at.desc()).offset(offset).limit(limit).all()
        return items, total

    @staticmethod
    def unread_count(*, tenant_id, recipient_id=None):
        """Return count of unread notifications."""
        return Notification.query.filter(
            Notification.tenant_id == tenant_id,
            (Notification.recipient_id == recipient_id) | (Notification.recipient_id.is_(None)),
        ).filter_by(is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, *, tenant_id):
        """Mark a single notification as read."""
        notif = Notification.query.filter_by(id=notification_id, tenant_id=tenant_id).first()
        if notif is None:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        notif.mark_read()
        db.session.flush()
        return notif

    @staticmethod
    def mark_all_read(*, tenant_id, recipient_id=None):
        """Mark all notifications for a recipient as read."""
        q = Notification.query.filter(
            Notification.tenant_id == tenant_id,
            (Notification.recipient_id == recipient_id) | (Notification.recipient_id.is_(None)),
        ).filter_by(is_read=False)
        now = datetime.now(timezone.utc)
        count = q.update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        db.session.flush()
        return count
