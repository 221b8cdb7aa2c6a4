"""
Company Blueprint — client organizations.

Endpoints:
    GET    /api/v1/company                                  — list (admin, agentCommercial)
    POST   /api/v1/company                                  — create, multipart "documents" (admin, agentCommercial)
    GET    /api/v1/company/<id>                             — detail (clients: own company only)
    PUT    /api/v1/company/<id>                             — update (admin, agentCommercial)
    DELETE /api/v1/company/<id>                             — delete with documents (admin, agentCommercial)
    POST   /api/v1/company/<id>/documents                   — upload one "document"
    GET    /api/v1/company/<id>/documents/<doc_id>          — download
    DELETE /api/v1/company/<id>/documents/<doc_id>          — (admin, agentCommercial)
    PUT    /api/v1/company/<id>/billing                     — billing method (admin, agentCommercial, client)
    PUT    /api/v1/company/<id>/availability                — replace slots (admin, agentCommercial, client)
"""

from flask import Blueprint, g, jsonify, request

from ticketdesk.blueprints import send_stored_file
from ticketdesk.core.roles import Role
from ticketdesk.middleware.permission_required import login_required, roles_required
from ticketdesk.services import company_service
from ticketdesk.utils.helpers import request_files, request_payload

company_bp = Blueprint("company", __name__, url_prefix="/api/v1/company")

MANAGERS = (Role.ADMIN, Role.AGENT_COMMERCIAL)


@company_bp.route("", methods=["GET"])
@roles_required(*MANAGERS)
def list_companies():
    companies = company_service.list_companies()
    return jsonify([c.to_dict(include_documents=False) for c in companies]), 200


@company_bp.route("", methods=["POST"])
@roles_required(*MANAGERS)
def create_company():
    company = company_service.create_company(
        request_payload(), g.current_user, files=request_files("documents"),
    )
    return jsonify(company.to_dict()), 201


@company_bp.route("/<int:company_id>", methods=["GET"])
@login_required
def get_company(company_id):
    return jsonify(company_service.company_view(company_id, g.current_user)), 200


@company_bp.route("/<int:company_id>", methods=["PUT"])
@roles_required(*MANAGERS)
def update_company(company_id):
    company = company_service.update_company(company_id, request_payload(), g.current_user)
    return jsonify(company.to_dict()), 200


@company_bp.route("/<int:company_id>", methods=["DELETE"])
@roles_required(*MANAGERS)
def delete_company(company_id):
    company_service.delete_company(company_id, g.current_user)
    return jsonify({"message": "Company deleted"}), 200


# ── Documents ────────────────────────────────────────────────────────────────

@company_bp.route("/<int:company_id>/documents", methods=["POST"])
@login_required
def upload_document(company_id):
    document = company_service.upload_document(
        company_id, request.files.get("document"), g.current_user,
    )
    return jsonify(document.to_dict()), 201


@company_bp.route("/<int:company_id>/documents/<int:document_id>", methods=["GET"])
@login_required
def download_document(company_id, document_id):
    document, path = company_service.get_document(company_id, document_id, g.current_user)
    return send_stored_file(path, document.name)


@company_bp.route("/<int:company_id>/documents/<int:document_id>", methods=["DELETE"])
@roles_required(*MANAGERS)
def delete_document(company_id, document_id):
    company_service.delete_document(company_id, document_id, g.current_user)
    return jsonify({"message": "Document deleted"}), 200


# ── Billing & availability ───────────────────────────────────────────────────

@company_bp.route("/<int:company_id>/billing", methods=["PUT"])
@roles_required(*MANAGERS, Role.CLIENT)
def update_billing(company_id):
    data = request.get_json(silent=True) or {}
    company = company_service.update_billing_method(
        company_id, data.get("billing_method"), g.current_user,
    )
    return jsonify(company.to_dict()), 200


@company_bp.route("/<int:company_id>/availability", methods=["PUT"])
@roles_required(*MANAGERS, Role.CLIENT)
def set_availability(company_id):
    data = request.get_json(silent=True) or {}
    company = company_service.set_availability(
        company_id, data.get("availability_slots"), g.current_user,
    )
    return jsonify(company.to_dict()), 200
