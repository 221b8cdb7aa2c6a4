"""
TicketDesk
Notification Service.

Creates per-user notification rows, resolves @mentions in free text, and
pushes each new notification to the user's open real-time streams.

Failure policy: every write path here is fire-and-forget. Database errors are
logged and swallowed so a notification problem never fails the ticket or task
operation that triggered it. Callers commit their own changes first.
"""

import logging
import re

from sqlalchemy import func, select

from ticketdesk.core.exceptions import NotFoundError
from ticketdesk.models import db, utcnow
from ticketdesk.models.notification import Notification
from ticketdesk.models.user import User
from ticketdesk.services.realtime import get_hub

logger = logging.getLogger(__name__)

MENTION_PATTERN = re.compile(r"@(\w+)")


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Mentions ──────────────────────────────────────────────────────────

    @staticmethod
    def extract_mentions(text):
        """Return ``@word`` tokens in order of appearance, duplicates kept."""
        if not text:
            return []
        return MENTION_PATTERN.findall(text)

    @staticmethod
    def find_users_by_mentions(mentions):
        """
        Resolve mention tokens to user ids.

        A token matches a user when it equals first name + last name with no
        separator (case-sensitive). Tokens that match nobody are dropped.
        """
        if not mentions:
            return []
        wanted = set(mentions)
        full_name = User.first_name + User.last_name
        rows = db.session.execute(
            select(User.id).where(full_name.in_(wanted)).order_by(User.id)
        ).scalars().all()
        return list(rows)

    @staticmethod
    def process_mentions(text, author_name, entity_id, entity_type):
        """Extract → resolve → notify. Returns the notified user ids."""
        mentions = NotificationService.extract_mentions(text)
        if not mentions:
            return []
        user_ids = NotificationService.find_users_by_mentions(mentions)
        if user_ids:
            message = f"{author_name} mentioned you in a {entity_type.lower()}"
            NotificationService.create_notifications(user_ids, message, entity_id, entity_type)
        return user_ids

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create_notifications(user_ids, message, related_to=None, model=None):
        """
        Append one notification per user id in a single commit.

        Returns the created rows; an empty list when nothing was written
        (no recipients, or the write failed and was logged).
        """
        recipients = [uid for uid in (user_ids or []) if uid is not None]
        if not recipients:
            logger.info("No recipients for notification: %s", message)
            return []

        try:
            rows = []
            for uid in recipients:
                notif = Notification(user_id=uid, message=message, is_read=False, created_at=utcnow())
                if model:
                    notif.set_target(model, related_to)
                db.session.add(notif)
                rows.append(notif)
            db.session.commit()
        except Exception:
            logger.exception("Failed to create notifications for users %s", recipients)
            db.session.rollback()
            return []

        logger.info("Created %d notification(s): %s", len(rows), message)
        NotificationService._push(rows)
        return rows

    @staticmethod
    def _push(rows):
        hub = get_hub()
        if hub is None:
            return
        for notif in rows:
            hub.publish(notif.user_id, "notification", notif.to_dict())

    # ── Message helpers ───────────────────────────────────────────────────

    @staticmethod
    def notify_task_assignment(user_ids, task_id, task_name, assigner_name, model="Task"):
        message = f"{assigner_name} assigned you to task: {task_name}"
        return NotificationService.create_notifications(user_ids, message, task_id, model)

    @staticmethod
    def notify_task_blocked_or_declined(user_ids, task_id, task_name, developer_name, action, model="Task"):
        message = f"{developer_name} has {action} task: {task_name}"
        return NotificationService.create_notifications(user_ids, message, task_id, model)

    @staticmethod
    def notify_ticket_assignment(user_ids, ticket_id, ticket_title, assigner_name):
        message = f"{assigner_name} assigned you to ticket: {ticket_title}"
        return NotificationService.create_notifications(user_ids, message, ticket_id, "Ticket")

    @staticmethod
    def notify_ticket_status_change(user_ids, ticket_id, ticket_title, new_status, changer_name):
        message = f'{changer_name} changed ticket "{ticket_title}" status to {new_status}'
        return NotificationService.create_notifications(user_ids, message, ticket_id, "Ticket")

    @staticmethod
    def create_general_notification(user_ids, message, related_to=None, model="User"):
        return NotificationService.create_notifications(user_ids, message, related_to, model)

    @staticmethod
    def notify_test_task_blocker_reported(user_ids, task_id, task_name, reporter_name):
        message = f'{reporter_name} reported a blocker on test task "{task_name}".'
        return NotificationService.create_notifications(user_ids, message, task_id, "TestTask")

    @staticmethod
    def admin_ids():
        return list(db.session.execute(
            select(User.id).where(User.role == "admin").order_by(User.id)
        ).scalars())

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50, offset=0):
        """Notifications of ``user_id``, newest first. Returns (items, total)."""
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_for_user(user_id, limit=50):
        items, _ = NotificationService.list_for_user(user_id, unread_only=True, limit=limit)
        return items

    @staticmethod
    def unread_count(user_id):
        return db.session.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id, Notification.is_read.is_(False),
            )
        ).scalar_one()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(user_id, notification_id):
        """Mark one of the user's notifications as read."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.user_id != user_id:
            raise NotFoundError("Notification", notification_id)
        if not notif.is_read:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark every unread notification of the user as read. Returns the count."""
        now = utcnow()
        count = Notification.query.filter_by(user_id=user_id, is_read=False).update(
            {"is_read": True, "read_at": now}, synchronize_session=False,
        )
        db.session.commit()
        return count
