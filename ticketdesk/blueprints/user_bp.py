"""
User Blueprint — account directory and administration.

Endpoints:
    GET    /api/v1/user                          — all users except the caller
    GET    /api/v1/user/role/<role>              — users holding a role
    GET    /api/v1/user/available                — assignable users grouped by role
    GET    /api/v1/user/hierarchical             — PM → group leader → developer tree
    GET    /api/v1/user/leaders-with-developers
    GET    /api/v1/user/testers
    GET    /api/v1/user/responsible-testers      — responsible testers with their testers
    GET    /api/v1/user/clients/<creator_id>     — clients created by a user
    GET    /api/v1/user/<id>                     — (admin)
    POST   /api/v1/user                          — (admin)
    PUT    /api/v1/user/<id>                     — (admin, agentCommercial)
    PUT    /api/v1/user/<id>/change-password
    DELETE /api/v1/user/<id>                     — (admin, agentCommercial)
"""

import logging

from flask import Blueprint, g, jsonify, request

from ticketdesk.core.roles import Role
from ticketdesk.middleware.permission_required import login_required, roles_required
from ticketdesk.services import user_service

logger = logging.getLogger(__name__)

user_bp = Blueprint("user", __name__, url_prefix="/api/v1/user")


def _dicts(users):
    return [u.to_dict() for u in users]


# ── Directory ────────────────────────────────────────────────────────────────

@user_bp.route("", methods=["GET"])
@login_required
def list_users():
    return jsonify(_dicts(user_service.list_users(exclude_id=g.current_user.id))), 200


@user_bp.route("/role/<role>", methods=["GET"])
@login_required
def users_by_role(role):
    return jsonify(_dicts(user_service.users_by_role(role))), 200


@user_bp.route("/available", methods=["GET"])
@login_required
def available_users():
    return jsonify(user_service.available_users(g.current_user)), 200


@user_bp.route("/hierarchical", methods=["GET"])
@roles_required(Role.ADMIN, Role.PROJECT_MANAGER)
def hierarchical():
    return jsonify(user_service.hierarchy()), 200


@user_bp.route("/leaders-with-developers", methods=["GET"])
@login_required
def leaders_with_developers():
    return jsonify(user_service.leaders_with_developers()), 200


@user_bp.route("/testers", methods=["GET"])
@login_required
def testers():
    return jsonify(_dicts(user_service.testers())), 200


@user_bp.route("/responsible-testers", methods=["GET"])
@login_required
def responsible_testers():
    return jsonify(user_service.testers_with_responsible()), 200


@user_bp.route("/clients/<int:creator_id>", methods=["GET"])
@login_required
def clients_created_by(creator_id):
    return jsonify(_dicts(user_service.clients_created_by(creator_id))), 200


# ── Administration ───────────────────────────────────────────────────────────

@user_bp.route("/<int:user_id>", methods=["GET"])
@roles_required(Role.ADMIN)
def get_user(user_id):
    return jsonify(user_service.get_user(user_id).to_dict()), 200


@user_bp.route("", methods=["POST"])
@roles_required(Role.ADMIN)
def create_user():
    data = request.get_json(silent=True) or {}
    user = user_service.create_user(data, actor=g.current_user)
    return jsonify(user.to_dict()), 201


@user_bp.route("/<int:user_id>", methods=["PUT"])
@roles_required(Role.ADMIN, Role.AGENT_COMMERCIAL)
def update_user(user_id):
    data = request.get_json(silent=True) or {}
    user = user_service.update_user(user_id, data, g.current_user)
    return jsonify(user.to_dict()), 200


@user_bp.route("/<int:user_id>/change-password", methods=["PUT"])
@login_required
def change_password(user_id):
    """Body: { "current_password": "...", "new_password": "..." }"""
    data = request.get_json(silent=True) or {}
    user_service.change_password(user_id, data, g.current_user)
    return jsonify({"message": "Password changed successfully"}), 200


@user_bp.route("/<int:user_id>", methods=["DELETE"])
@roles_required(Role.ADMIN, Role.AGENT_COMMERCIAL)
def delete_user(user_id):
    user_service.delete_user(user_id, g.current_user)
    return jsonify({"message": "User deleted"}), 200
