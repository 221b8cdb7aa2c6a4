"""
Ticket Blueprint — ticket workflow endpoints.

Registered twice by the factory: under /api/v1/ticket and under the legacy
/api/v1/tickets prefix. Paths below are relative to either.

Endpoints:
    GET    /                                              — role-scoped list (?status, ?urgency)
    POST   /                                              — create, multipart "files"
    POST   /draft                                         — create as Draft
    GET    /stats                                         — counts by status / urgency
    GET    /recent-activity                               — latest activities (?limit)
    GET    /<id>                                          — detail
    PATCH  /<id>/status                                   — (admin, responsibleClient)
    PATCH  /<id>/financial                                — (admin, responsibleClient, projectManager)
    POST   /<id>/comments                                 — comment, multipart "files"
    GET    /<id>/availability                             — contact availability
    POST   /<id>/meetings                                 — (admin, responsibleClient)
    POST   /<id>/interventions                            — start / record work
    POST   /<id>/request-validation
    POST   /<id>/interventions/<iid>/validate             — responsible client decision
    POST   /<id>/interventions/<iid>/blockers
    PATCH  /<id>/interventions/<iid>/blockers/<bid>/resolve
    PATCH  /<id>/assign                                   — (admin, agentCommercial)
    PATCH  /<id>/send                                     — Draft → Sent
    POST   /<id>/transfer
    GET    /<id>/attachments/<aid>                        — download
"""

import logging

from flask import Blueprint, g, jsonify, request

from ticketdesk.blueprints import list_body, query_filters, send_stored_file
from ticketdesk.core.roles import Role
from ticketdesk.middleware.permission_required import login_required, roles_required
from ticketdesk.services import ticket_service
from ticketdesk.utils.helpers import parse_number, request_files, request_payload

logger = logging.getLogger(__name__)

ticket_bp = Blueprint("ticket", __name__)

CREATORS = (Role.ADMIN, Role.AGENT_COMMERCIAL, Role.CLIENT, Role.RESPONSIBLE_CLIENT)
INTERVENERS = (Role.ADMIN, Role.AGENT_COMMERCIAL, Role.RESPONSIBLE_CLIENT)


# ═══════════════════════════════════════════════════════════════════════════
#  Collection
# ═══════════════════════════════════════════════════════════════════════════

@ticket_bp.route("", methods=["GET"])
@login_required
def list_tickets():
    items, total = ticket_service.list_tickets(g.current_user, query_filters("status", "urgency"))
    return jsonify(list_body(items, total, lambda t: t.to_summary())), 200


@ticket_bp.route("", methods=["POST"])
@roles_required(*CREATORS)
def create_ticket():
    ticket = ticket_service.create_ticket(request_payload(), g.current_user, files=request_files())
    return jsonify(ticket.to_dict()), 201


@ticket_bp.route("/draft", methods=["POST"])
@roles_required(*CREATORS)
def create_draft():
    ticket = ticket_service.create_ticket(request_payload(), g.current_user, files=request_files(), draft=True)
    return jsonify(ticket.to_dict()), 201


@ticket_bp.route("/stats", methods=["GET"])
@login_required
def stats():
    return jsonify(ticket_service.get_stats(g.current_user)), 200


@ticket_bp.route("/recent-activity", methods=["GET"])
@login_required
def recent_activity():
    limit = parse_number(request.args.get("limit"), "limit", minimum=1, maximum=100, integer=True) or 20
    return jsonify(ticket_service.recent_activity(g.current_user, limit=limit)), 200


# ═══════════════════════════════════════════════════════════════════════════
#  Single ticket
# ═══════════════════════════════════════════════════════════════════════════

@ticket_bp.route("/<int:ticket_id>", methods=["GET"])
@login_required
def get_ticket(ticket_id):
    return jsonify(ticket_service.get_ticket(ticket_id, g.current_user).to_dict()), 200


@ticket_bp.route("/<int:ticket_id>/status", methods=["PATCH"])
@roles_required(Role.ADMIN, Role.RESPONSIBLE_CLIENT)
def update_status(ticket_id):
    data = request.get_json(silent=True) or {}
    ticket = ticket_service.update_status(ticket_id, data.get("status"), g.current_user)
    return jsonify(ticket.to_dict()), 200


@ticket_bp.route("/<int:ticket_id>/financial", methods=["PATCH"])
@roles_required(Role.ADMIN, Role.RESPONSIBLE_CLIENT, Role.PROJECT_MANAGER)
def update_financials(ticket_id):
    data = request.get_json(silent=True) or {}
    ticket = ticket_service.update_financials(ticket_id, data, g.current_user)
    return jsonify(ticket.to_dict()), 200


@ticket_bp.route("/<int:ticket_id>/comments", methods=["POST"])
@login_required
def add_comment(ticket_id):
    data = request_payload()
    comment = ticket_service.add_comment(ticket_id, data.get("text"), g.current_user, files=request_files())
    return jsonify(comment.to_dict()), 201


@ticket_bp.route("/<int:ticket_id>/availability", methods=["GET"])
@login_required
def availability(ticket_id):
    return jsonify({"availability": ticket_service.get_availability(ticket_id, g.current_user)}), 200


@ticket_bp.route("/<int:ticket_id>/meetings", methods=["POST"])
@roles_required(Role.ADMIN, Role.RESPONSIBLE_CLIENT)
def add_meeting(ticket_id):
    data = request.get_json(silent=True) or {}
    meeting = ticket_service.add_meeting(ticket_id, data, g.current_user)
    return jsonify(meeting.to_dict()), 201


# ── Interventions ────────────────────────────────────────────────────────────

@ticket_bp.route("/<int:ticket_id>/interventions", methods=["POST"])
@roles_required(*INTERVENERS)
def add_intervention(ticket_id):
    data = request.get_json(silent=True) or {}
    intervention = ticket_service.add_intervention(ticket_id, data, g.current_user)
    return jsonify(intervention.to_dict()), 201


@ticket_bp.route("/<int:ticket_id>/request-validation", methods=["POST"])
@roles_required(*INTERVENERS)
def request_validation(ticket_id):
    ticket = ticket_service.request_validation(ticket_id, g.current_user)
    return jsonify(ticket.to_dict()), 200


@ticket_bp.route("/<int:ticket_id>/interventions/<int:intervention_id>/validate", methods=["POST"])
@roles_required(*INTERVENERS)
def validate_intervention(ticket_id, intervention_id):
    """Body: { "approve": true|false, "reason"?: "..." }"""
    data = request.get_json(silent=True) or {}
    ticket = ticket_service.validate_or_reject(
        ticket_id, intervention_id, bool(data.get("approve")), g.current_user, reason=data.get("reason"),
    )
    return jsonify(ticket.to_dict()), 200


@ticket_bp.route("/<int:ticket_id>/interventions/<int:intervention_id>/blockers", methods=["POST"])
@roles_required(*INTERVENERS)
def add_blocker(ticket_id, intervention_id):
    data = request.get_json(silent=True) or {}
    blocker = ticket_service.add_blocker(ticket_id, intervention_id, data, g.current_user)
    return jsonify(blocker.to_dict()), 201


@ticket_bp.route(
    "/<int:ticket_id>/interventions/<int:intervention_id>/blockers/<int:blocker_id>/resolve",
    methods=["PATCH"],
)
@roles_required(*INTERVENERS)
def resolve_blocker(ticket_id, intervention_id, blocker_id):
    data = request.get_json(silent=True) or {}
    blocker = ticket_service.resolve_blocker(
        ticket_id, intervention_id, blocker_id, data.get("resolution_notes"), g.current_user,
    )
    return jsonify(blocker.to_dict()), 200


# ── Assignment, drafts, transfer, files ──────────────────────────────────────

@ticket_bp.route("/<int:ticket_id>/assign", methods=["PATCH"])
@roles_required(Role.ADMIN, Role.AGENT_COMMERCIAL)
def assign_roles(ticket_id):
    data = request.get_json(silent=True) or {}
    ticket = ticket_service.assign_roles(ticket_id, data, g.current_user)
    return jsonify(ticket.to_dict()), 200


@ticket_bp.route("/<int:ticket_id>/send", methods=["PATCH"])
@roles_required(*CREATORS)
def send_draft(ticket_id):
    ticket = ticket_service.send_draft(ticket_id, g.current_user)
    return jsonify(ticket.to_dict()), 200


@ticket_bp.route("/<int:ticket_id>/transfer", methods=["POST"])
@roles_required(*INTERVENERS)
def transfer(ticket_id):
    data = request.get_json(silent=True) or {}
    ticket = ticket_service.transfer_ticket(ticket_id, data, g.current_user)
    return jsonify(ticket.to_dict()), 200


@ticket_bp.route("/<int:ticket_id>/attachments/<int:attachment_id>", methods=["GET"])
@login_required
def download_attachment(ticket_id, attachment_id):
    attachment, path = ticket_service.get_attachment_path(ticket_id, attachment_id, g.current_user)
    return send_stored_file(path, attachment.name)
