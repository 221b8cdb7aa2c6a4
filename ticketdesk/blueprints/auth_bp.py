"""
Auth Blueprint — login, registration and the current user's account.

Endpoints:
  POST /api/v1/auth/register                 — create an account (admin, agentCommercial)
  POST /api/v1/auth/login                    — e-mail + password → access token
  GET  /api/v1/auth/me                       — current user + unread notification count
  PUT  /api/v1/auth/preferences              — language preference
  PUT  /api/v1/auth/suspend/<id>             — suspend / reinstate (admin)
  GET  /api/v1/auth/notifications            — own notifications
  PUT  /api/v1/auth/notifications/<id>       — mark one as read
"""

from flask import Blueprint, g, jsonify, request

from ticketdesk.blueprints import list_body, query_filters
from ticketdesk.core.roles import Role
from ticketdesk.middleware.permission_required import login_required, roles_required
from ticketdesk.services import auth_service, user_service
from ticketdesk.services.notification import NotificationService
from ticketdesk.utils.helpers import parse_number

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/register
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/register", methods=["POST"])
@roles_required(Role.ADMIN, Role.AGENT_COMMERCIAL)
def register():
    """
    Create an account on behalf of the caller.

    Body: { "first_name", "last_name", "email", "password", "role",
            "phone"?, "company_id"?, "project_manager_id"?, ... }
    """
    data = request.get_json(silent=True) or {}
    user = user_service.create_user(data, actor=g.current_user)
    return jsonify({"message": "User registered successfully", "user": user.to_dict()}), 201


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate with email + password, return an access token.

    Body: { "email": "...", "password": "..." }
    """
    data = request.get_json(silent=True) or {}
    body = auth_service.login((data.get("email") or "").strip(), data.get("password") or "")
    return jsonify(body), 200


@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify(auth_service.profile(g.current_user)), 200


@auth_bp.route("/preferences", methods=["PUT"])
@login_required
def update_preferences():
    data = request.get_json(silent=True) or {}
    user = user_service.update_preferences(g.current_user, data)
    return jsonify({"message": "Preferences updated", "user": user.to_dict()}), 200


@auth_bp.route("/suspend/<int:user_id>", methods=["PUT"])
@roles_required(Role.ADMIN)
def suspend(user_id):
    """Body: { "suspended": true|false } (defaults to true)."""
    data = request.get_json(silent=True) or {}
    user = user_service.set_suspended(user_id, data.get("suspended", True), g.current_user)
    state = "suspended" if user.is_suspended else "reinstated"
    return jsonify({"message": f"User {state}", "user": user.to_dict()}), 200


@auth_bp.route("/notifications", methods=["GET"])
@login_required
def notifications():
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


@auth_bp.route("/notifications/<int:notification_id>", methods=["PUT"])
@login_required
def mark_notification_read(notification_id):
    notif = NotificationService.mark_read(g.current_user.id, notification_id)
    return jsonify(notif.to_dict()), 200
