"""
Task Blueprint — development tasks.

Endpoints:
    GET    /api/v1/task                                   — role-scoped list (?status, ?filter=created|assigned, ?ticket_id)
    POST   /api/v1/task                                   — create, multipart "files"
    GET    /api/v1/task/testing-tasks                     — visible tasks in Testing
    GET    /api/v1/task/<id>
    PUT    /api/v1/task/<id>                              — update, multipart "files"
    GET    /api/v1/task/<id>/blocked-subtasks
    POST   /api/v1/task/<id>/comments                     — comment, multipart "files"
    POST   /api/v1/task/<id>/block                        — report a blocker
    PATCH  /api/v1/task/<id>/blockers/<bid>/resolve
    GET    /api/v1/task/<id>/attachments/<aid>            — download
"""

from flask import Blueprint, g, jsonify

from ticketdesk.blueprints import list_body, query_filters, send_stored_file
from ticketdesk.core.roles import Role
from ticketdesk.middleware.permission_required import login_required, roles_required
from ticketdesk.services import task_service
from ticketdesk.utils.helpers import request_files, request_payload

task_bp = Blueprint("task", __name__, url_prefix="/api/v1/task")


@task_bp.route("", methods=["GET"])
@login_required
def list_tasks():
    items, total = task_service.list_tasks(g.current_user, query_filters("status", "filter", "ticket_id"))
    return jsonify(list_body(items, total, lambda t: t.to_summary())), 200


@task_bp.route("", methods=["POST"])
@roles_required(Role.ADMIN, Role.PROJECT_MANAGER, Role.AGENT_COMMERCIAL, Role.GROUP_LEADER)
def create_task():
    task = task_service.create_task(request_payload(), g.current_user, files=request_files())
    return jsonify(task.to_dict()), 201


@task_bp.route("/testing-tasks", methods=["GET"])
@login_required
def testing_tasks():
    return jsonify([t.to_summary() for t in task_service.testing_tasks(g.current_user)]), 200


@task_bp.route("/<int:task_id>", methods=["GET"])
@login_required
def get_task(task_id):
    return jsonify(task_service.get_task(task_id, g.current_user).to_dict()), 200


@task_bp.route("/<int:task_id>", methods=["PUT"])
@login_required
def update_task(task_id):
    task = task_service.update_task(task_id, request_payload(), g.current_user, files=request_files())
    return jsonify(task.to_dict()), 200


@task_bp.route("/<int:task_id>/blocked-subtasks", methods=["GET"])
@login_required
def blocked_subtasks(task_id):
    return jsonify([t.to_dict() for t in task_service.blocked_subtasks(task_id, g.current_user)]), 200


@task_bp.route("/<int:task_id>/comments", methods=["POST"])
@login_required
def add_comment(task_id):
    data = request_payload()
    task = task_service.add_comment(
        task_id, data.get("text"), g.current_user, mentions=data.get("mentions"), files=request_files(),
    )
    return jsonify(task.to_dict()), 201


@task_bp.route("/<int:task_id>/block", methods=["POST"])
@login_required
def report_blocker(task_id):
    data = request_payload()
    blocker = task_service.report_blocker(task_id, data.get("reason"), g.current_user)
    return jsonify(blocker.to_dict()), 200


@task_bp.route("/<int:task_id>/blockers/<int:blocker_id>/resolve", methods=["PATCH"])
@login_required
def resolve_blocker(task_id, blocker_id):
    data = request_payload()
    blocker = task_service.resolve_blocker(task_id, blocker_id, data.get("resolution_notes"), g.current_user)
    return jsonify(blocker.to_dict()), 200


@task_bp.route("/<int:task_id>/attachments/<int:attachment_id>", methods=["GET"])
@login_required
def download_attachment(task_id, attachment_id):
    attachment, path = task_service.get_attachment_path(task_id, attachment_id, g.current_user)
    return send_stored_file(path, attachment.name)
