"""
Testing Blueprint — test tasks assigned to testers.

Endpoints:
    GET    /api/v1/testing                                — test tasks (?status=a,b ?filter)
    POST   /api/v1/testing                                — create (admin, responsibleTester)
    GET    /api/v1/testing/tickets/<ticket_id>/tasks      — development tasks of a ticket
    GET    /api/v1/testing/testing-tasks                  — development tasks in Testing
    GET    /api/v1/testing/<id>
    PUT    /api/v1/testing/<id>
    PATCH  /api/v1/testing/<id>/status
    POST   /api/v1/testing/<id>/comments
    POST   /api/v1/testing/<id>/block                     — report a blocker (admins notified)
    PATCH  /api/v1/testing/<id>/blockers/<bid>/resolve
    GET    /api/v1/testing/<id>/attachments/<aid>
"""

from flask import Blueprint, g, jsonify

from ticketdesk.blueprints import list_body, query_filters, send_stored_file
from ticketdesk.core.roles import Role
from ticketdesk.middleware.permission_required import login_required, roles_required
from ticketdesk.services import task_service, test_task_service
from ticketdesk.utils.helpers import request_files, request_payload

test_task_bp = Blueprint("testing", __name__, url_prefix="/api/v1/testing")


@test_task_bp.route("", methods=["GET"])
@login_required
def list_test_tasks():
    items, total = test_task_service.list_test_tasks(g.current_user, query_filters("status", "filter"))
    return jsonify(list_body(items, total, lambda t: t.to_summary())), 200


@test_task_bp.route("", methods=["POST"])
@roles_required(Role.ADMIN, Role.RESPONSIBLE_TESTER)
def create_test_task():
    task = test_task_service.create_test_task(request_payload(), g.current_user, files=request_files())
    return jsonify(task.to_dict()), 201


@test_task_bp.route("/tickets/<int:ticket_id>/tasks", methods=["GET"])
@login_required
def tasks_for_ticket(ticket_id):
    return jsonify([t.to_summary() for t in task_service.tasks_for_ticket(ticket_id, g.current_user)]), 200


@test_task_bp.route("/testing-tasks", methods=["GET"])
@login_required
def testing_tasks():
    return jsonify([t.to_summary() for t in task_service.testing_tasks(g.current_user)]), 200


@test_task_bp.route("/<int:task_id>", methods=["GET"])
@login_required
def get_test_task(task_id):
    return jsonify(test_task_service.get_test_task(task_id, g.current_user).to_dict()), 200


@test_task_bp.route("/<int:task_id>", methods=["PUT"])
@login_required
def update_test_task(task_id):
    task = test_task_service.update_test_task(task_id, request_payload(), g.current_user, files=request_files())
    return jsonify(task.to_dict()), 200


@test_task_bp.route("/<int:task_id>/status", methods=["PATCH"])
@login_required
def change_status(task_id):
    data = request_payload()
    task = test_task_service.change_status(task_id, data.get("status"), g.current_user)
    return jsonify(task.to_dict()), 200


@test_task_bp.route("/<int:task_id>/comments", methods=["POST"])
@login_required
def add_comment(task_id):
    data = request_payload()
    task = test_task_service.add_comment(
        task_id, data.get("text"), g.current_user, mentions=data.get("mentions"), files=request_files(),
    )
    return jsonify(task.to_dict()), 201


@test_task_bp.route("/<int:task_id>/block", methods=["POST"])
@login_required
def report_blocker(task_id):
    data = request_payload()
    blocker = test_task_service.report_blocker(task_id, data.get("reason"), g.current_user)
    return jsonify(blocker.to_dict()), 200


@test_task_bp.route("/<int:task_id>/blockers/<int:blocker_id>/resolve", methods=["PATCH"])
@login_required
def resolve_blocker(task_id, blocker_id):
    data = request_payload()
    blocker = test_task_service.resolve_blocker(task_id, blocker_id, data.get("resolution_notes"), g.current_user)
    return jsonify(blocker.to_dict()), 200


@test_task_bp.route("/<int:task_id>/attachments/<int:attachment_id>", methods=["GET"])
@login_required
def download_attachment(task_id, attachment_id):
    attachment, path = test_task_service.get_attachment_path(task_id, attachment_id, g.current_user)
    return send_stored_file(path, attachment.name)
