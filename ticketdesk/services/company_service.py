"""
Company Service — client organizations, documents, billing and availability.
"""

import logging
import os
import re

from flask import current_app

from ticketdesk.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from ticketdesk.core.roles import Role, parse_role
from ticketdesk.models import db
from ticketdesk.models.company import BILLING_METHODS, WEEK_DAYS, Company, CompanyDocument
from ticketdesk.services import storage
from ticketdesk.services.access_policy import ensure_company_document_uploader, ensure_company_member
from ticketdesk.utils.helpers import commit_or_raise, get_or_404, require_choice

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
ADDRESS_FIELDS = ("street", "city", "state", "zipCode", "country")
CONTACT_PERSON_FIELDS = ("name", "position", "email", "phone")

# Delivery roles only get the reduced company view
REDUCED_VIEW_ROLES = frozenset({Role.PROJECT_MANAGER, Role.DEVELOPER})


# ── Validation ───────────────────────────────────────────────────────────────

def _clean_address(address):
    if not address:
        return {}
    if not isinstance(address, dict):
        raise ValidationError("address must be an object", details={"address": "invalid"})
    return {k: address.get(k) for k in ADDRESS_FIELDS if address.get(k) is not None}


def _clean_contact_person(person):
    if not isinstance(person, dict) or not person.get("name") or not person.get("email"):
        raise ValidationError(
            "Contact person name and email are required",
            details={"contact_person": "required"},
        )
    return {k: person.get(k) for k in CONTACT_PERSON_FIELDS if person.get(k) is not None}


def _clean_contacts(contacts):
    if not contacts:
        return []
    if not isinstance(contacts, list):
        raise ValidationError("contacts must be a list", details={"contacts": "invalid"})
    cleaned = []
    for contact in contacts:
        if not isinstance(contact, dict) or not contact.get("name"):
            raise ValidationError("Each contact needs a name", details={"contacts": "invalid"})
        cleaned.append({
            "name": contact["name"],
            "email": contact.get("email"),
            "phone": contact.get("phone"),
            "isPrimary": bool(contact.get("isPrimary", False)),
        })
    return cleaned


def validate_availability_slots(slots):
    """Each slot needs a week day and HH:MM start/end times with start < end."""
    if not isinstance(slots, list):
        raise ValidationError("availability_slots must be a list", details={"availability_slots": "invalid"})
    cleaned = []
    for slot in slots:
        if not isinstance(slot, dict) or not all(slot.get(k) for k in ("day", "startTime", "endTime")):
            raise ValidationError("Each availability slot must include day, startTime, and endTime")
        if slot["day"] not in WEEK_DAYS:
            raise ValidationError(f"Day must be one of: {', '.join(WEEK_DAYS)}")
        if not TIME_PATTERN.match(slot["startTime"]) or not TIME_PATTERN.match(slot["endTime"]):
            raise ValidationError("Time must be in HH:MM format (24-hour)")
        if slot["startTime"] >= slot["endTime"]:
            raise ValidationError("startTime must be before endTime")
        cleaned.append({"day": slot["day"], "startTime": slot["startTime"], "endTime": slot["endTime"]})
    return cleaned


# ── CRUD ─────────────────────────────────────────────────────────────────────

def list_companies():
    return Company.query.order_by(Company.name).all()


def get_company(company_id):
    return get_or_404(Company, company_id, resource="Company")


def company_view(company_id, actor):
    """Company as ``actor`` may see it: clients only their own, delivery roles a reduced view."""
    company = get_company(company_id)
    ensure_company_member(actor, company)
    if parse_role(actor.role) in REDUCED_VIEW_ROLES:
        return company.to_public_dict()
    return company.to_dict()


def create_company(data, actor, files=()):
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Company name is required", details={"name": "required"})
    billing = data.get("billing_method") or "hourly"
    require_choice(billing, BILLING_METHODS, "billing_method")

    company = Company(
        name=name,
        address=_clean_address(data.get("address")),
        contacts=_clean_contacts(data.get("contacts")),
        billing_method=billing,
        contact_person=_clean_contact_person(data.get("contact_person")),
        availability_slots=validate_availability_slots(data.get("availability_slots") or []),
        commercial_agent_id=actor.id,
        created_by_id=actor.id,
    )
    stored = storage.save_files(files, storage.company_folder(name)) if files else []
    for item in stored:
        company.documents.append(_document_from(item, actor))

    db.session.add(company)
    try:
        commit_or_raise("create company")
    except Exception:
        storage.remove_files([s.path for s in stored])
        raise
    logger.info("Company %d (%s) created by %d", company.id, company.name, actor.id)
    return company


def update_company(company_id, data, actor):
    company = get_company(company_id)
    if parse_role(actor.role) is Role.AGENT_COMMERCIAL and company.commercial_agent_id not in (None, actor.id):
        raise AuthorizationError("You can only edit companies you manage")

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Company name is required", details={"name": "required"})
        company.name = name
    if "address" in data:
        company.address = _clean_address(data["address"])
    if "contacts" in data:
        company.contacts = _clean_contacts(data["contacts"])
    if "contact_person" in data:
        company.contact_person = _clean_contact_person(data["contact_person"])
    if "billing_method" in data:
        company.billing_method = require_choice(data["billing_method"], BILLING_METHODS, "billing_method")
    if "availability_slots" in data:
        company.availability_slots = validate_availability_slots(data["availability_slots"] or [])

    commit_or_raise("update company")
    logger.info("Company %d updated by %d", company.id, actor.id)
    return company


def delete_company(company_id, actor):
    company = get_company(company_id)
    paths = [doc.file_path for doc in company.documents]
    db.session.delete(company)
    commit_or_raise("delete company")
    storage.remove_files(paths)
    logger.info("Company %d deleted by %d", company_id, actor.id)


# ── Documents ────────────────────────────────────────────────────────────────

def _document_from(item, actor):
    return CompanyDocument(
        name=item.name,
        file_type=os.path.splitext(item.name)[1].lstrip(".").lower() or item.content_type,
        file_path=item.path,
        uploaded_by_id=actor.id,
    )


def upload_document(company_id, upload, actor):
    """Store one document (size and type limited) and record it on the company."""
    company = get_company(company_id)
    ensure_company_document_uploader(actor, company)

    if upload is None or not upload.filename:
        raise ValidationError("No file uploaded", details={"document": "required"})
    content_type = upload.mimetype or storage.guess_type(upload.filename)
    if content_type not in storage.COMPANY_DOCUMENT_TYPES:
        raise ValidationError(f"File type {content_type} is not allowed", details={"document": "type"})
    max_bytes = current_app.config.get("MAX_UPLOAD_MB", 10) * 1024 * 1024
    if storage.file_size(upload) > max_bytes:
        raise ValidationError("File exceeds the upload size limit", details={"document": "too_large"})

    stored = storage.save_files([upload], storage.company_folder(company.name))
    document = _document_from(stored[0], actor)
    company.documents.append(document)
    try:
        commit_or_raise("upload company document")
    except Exception:
        storage.remove_files([s.path for s in stored])
        raise
    logger.info("Document %d uploaded to company %d by %d", document.id, company.id, actor.id)
    return document


def get_document(company_id, document_id, actor):
    company = get_company(company_id)
    ensure_company_member(actor, company)
    document = next((d for d in company.documents if d.id == document_id), None)
    if document is None:
        raise NotFoundError("Document", document_id)
    return document, storage.resolve(document.file_path, resource="Document file")


def delete_document(company_id, document_id, actor):
    company = get_company(company_id)
    if parse_role(actor.role) is Role.AGENT_COMMERCIAL and company.commercial_agent_id not in (None, actor.id):
        raise AuthorizationError("You can only manage documents of companies you manage")
    document = next((d for d in company.documents if d.id == document_id), None)
    if document is None:
        raise NotFoundError("Document", document_id)
    path = document.file_path
    company.documents.remove(document)
    commit_or_raise("delete company document")
    storage.remove_files([path])
    logger.info("Document %d removed from company %d by %d", document_id, company.id, actor.id)


# ── Billing & availability ───────────────────────────────────────────────────

def update_billing_method(company_id, billing_method, actor):
    require_choice(billing_method, BILLING_METHODS, "billing_method")
    company = get_company(company_id)
    ensure_company_member(actor, company)
    company.billing_method = billing_method
    commit_or_raise("update billing method")
    logger.info("Company %d billing method set to %s by %d", company.id, billing_method, actor.id)
    return company


def set_availability(company_id, slots, actor):
    """Replace the company's availability slots."""
    if not slots:
        raise ValidationError("Valid availability slots array is required",
                              details={"availability_slots": "required"})
    cleaned = validate_availability_slots(slots)
    company = get_company(company_id)
    ensure_company_member(actor, company)
    company.availability_slots = cleaned
    commit_or_raise("update availability")
    return company
