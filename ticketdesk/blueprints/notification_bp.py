"""
TicketDesk
Notification Blueprint — the caller's notifications, the live stream, and
notification triggers used by the front end.

Endpoints:
    GET    /api/v1/notifications                       — own notifications (?unread=1, ?limit, ?offset)
    GET    /api/v1/notifications/unread                — own unread notifications
    PATCH  /api/v1/notifications/<id>/read
    PATCH  /api/v1/notifications/read-all
    GET    /api/v1/notifications/stream                — Server-Sent Events (token via header or ?token=)

    POST   /api/v1/notifications/mentions              — resolve @mentions in text and notify
    POST   /api/v1/notifications/task-assignment
    POST   /api/v1/notifications/ticket-assignment
    POST   /api/v1/notifications/task-status           — task blocked / declined
    POST   /api/v1/notifications/task-status-change    — ticket status changed
    POST   /api/v1/notifications/test-task-blocker-reported
"""

import json
import logging
import queue

from flask import Blueprint, Response, current_app, g, jsonify, request

from ticketdesk.blueprints import list_body, query_filters
from ticketdesk.core.exceptions import ValidationError
from ticketdesk.middleware.permission_required import login_required
from ticketdesk.services.notification import NotificationService
from ticketdesk.utils.helpers import id_list, parse_number, require_fields

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1/notifications")

# Seconds between keep-alive comments on an idle stream
STREAM_HEARTBEAT = 15


def _recipients(data, *keys):
    """First present recipient field, as a non-empty id list."""
    for key in keys:
        if data.get(key) not in (None, "", []):
            return id_list(data[key], key)
    raise ValidationError(f"{keys[0]} is required", details={keys[0]: "required"})


def _entity_id(data, key):
    return parse_number(data.get(key), key, minimum=1, integer=True)


def _actor_name(data, key):
    return data.get(key) or g.current_user.full_name


# ═══════════════════════════════════════════════════════════════════════════
#  Own notifications
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("", methods=["GET"])
@login_required
def list_notifications():
    filters = query_filters()
    items, total = NotificationService.list_for_user(
        g.current_user.id,
        unread_only=request.args.get("unread") in ("1", "true"),
        limit=parse_number(filters.get("limit"), "limit", minimum=1, maximum=200, integer=True) or 50,
        offset=parse_number(filters.get("offset"), "offset", minimum=0, integer=True) or 0,
    )
    body = list_body(items, total)
    body["unread_count"] = NotificationService.unread_count(g.current_user.id)
    return jsonify(body), 200


@notification_bp.route("/unread", methods=["GET"])
@login_required
def unread():
    return jsonify([n.to_dict() for n in NotificationService.unread_for_user(g.current_user.id)]), 200


@notification_bp.route("/<int:notification_id>/read", methods=["PATCH"])
@login_required
def mark_read(notification_id):
    notif = NotificationService.mark_read(g.current_user.id, notification_id)
    return jsonify({"message": "Notification marked as read", "notification": notif.to_dict()}), 200


@notification_bp.route("/read-all", methods=["PATCH"])
@login_required
def mark_all_read():
    count = NotificationService.mark_all_read(g.current_user.id)
    return jsonify({"message": "All notifications marked as read", "updated": count}), 200


# ═══════════════════════════════════════════════════════════════════════════
#  Live stream
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/stream", methods=["GET"])
@login_required
def stream():
    """Push the caller's new notifications as ``event: notification`` SSE frames."""
    hub = current_app.extensions["realtime"]
    user_id = g.current_user.id
    subscription = hub.subscribe(user_id)
    logger.info("Notification stream opened for user %d", user_id)

    def events():
        try:
            yield "retry: 5000\n\n"
            while True:
                try:
                    message = subscription.get(timeout=STREAM_HEARTBEAT)
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue
                yield f"event: {message['event']}\ndata: {json.dumps(message['payload'])}\n\n"
        finally:
            hub.unsubscribe(user_id, subscription)
            logger.info("Notification stream closed for user %d", user_id)

    return Response(
        events(),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Triggers
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/mentions", methods=["POST"])
@login_required
def process_mentions():
    """Body: { "text", "entity_id", "entity_type", "author_name"? }"""
    data = request.get_json(silent=True) or {}
    require_fields(data, "text", "entity_type")
    user_ids = NotificationService.process_mentions(
        data["text"], _actor_name(data, "author_name"), _entity_id(data, "entity_id"), data["entity_type"],
    )
    return jsonify({"message": "Mentions processed successfully", "notified": user_ids}), 200


@notification_bp.route("/task-assignment", methods=["POST"])
@login_required
def task_assignment():
    data = request.get_json(silent=True) or {}
    require_fields(data, "task_id", "task_name")
    NotificationService.notify_task_assignment(
        _recipients(data, "user_ids", "user_id"), _entity_id(data, "task_id"), data["task_name"],
        _actor_name(data, "assigner_name"),
    )
    return jsonify({"message": "Task assignment notification sent"}), 200


@notification_bp.route("/ticket-assignment", methods=["POST"])
@login_required
def ticket_assignment():
    data = request.get_json(silent=True) or {}
    require_fields(data, "ticket_id", "ticket_title")
    NotificationService.notify_ticket_assignment(
        _recipients(data, "user_ids", "user_id"), _entity_id(data, "ticket_id"), data["ticket_title"],
        _actor_name(data, "assigner_name"),
    )
    return jsonify({"message": "Ticket assignment notification sent"}), 200


@notification_bp.route("/task-status", methods=["POST"])
@login_required
def task_blocked_or_declined():
    """Body: { "pm_id" | "user_ids", "task_id", "task_name", "action": "blocked"|"declined" }"""
    data = request.get_json(silent=True) or {}
    require_fields(data, "task_id", "task_name", "action")
    if data["action"] not in ("blocked", "declined"):
        raise ValidationError("action must be blocked or declined", details={"action": "invalid"})
    NotificationService.notify_task_blocked_or_declined(
        _recipients(data, "pm_id", "user_ids"), _entity_id(data, "task_id"), data["task_name"],
        _actor_name(data, "developer_name"), data["action"],
    )
    return jsonify({"message": "Task status notification sent"}), 200


@notification_bp.route("/task-status-change", methods=["POST"])
@login_required
def ticket_status_change():
    data = request.get_json(silent=True) or {}
    require_fields(data, "ticket_id", "ticket_title", "new_status")
    NotificationService.notify_ticket_status_change(
        _recipients(data, "user_ids"), _entity_id(data, "ticket_id"), data["ticket_title"], data["new_status"],
        _actor_name(data, "changer_name"),
    )
    return jsonify({"message": "Ticket status change notification sent"}), 200


@notification_bp.route("/test-task-blocker-reported", methods=["POST"])
@login_required
def test_task_blocker_reported():
    data = request.get_json(silent=True) or {}
    require_fields(data, "task_id", "task_name")
    NotificationService.notify_test_task_blocker_reported(
        _recipients(data, "recipient_ids"), _entity_id(data, "task_id"), data["task_name"],
        _actor_name(data, "reporter_name"),
    )
    return jsonify({"message": "Test task blocker reported notification sent"}), 200
