"""Ticket service layer — the ticket workflow.

Transaction policy: every public function commits its own change through
``commit_or_raise`` and only then fans out notifications, so a failed
notification never rolls back the ticket write.

Operations:
- Ticket create (draft or sent) with uploads and contact notifications
- Role-scoped listing and single-ticket access
- Status / financial updates with the activity log
- Comments, meetings, interventions, validation and blockers
- Role assignment, draft sending, transfer
- Attachment download, statistics, recent activity
"""
import logging
import random
from datetime import datetime

from sqlalchemy import func, select

from ticketdesk.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from ticketdesk.core.roles import Role, policy_for
from ticketdesk.models import db, utcnow
from ticketdesk.models.ticket import (
    ENVIRONMENTS,
    FINANCIAL_STATUSES,
    REQUEST_TYPES,
    TICKET_STATUSES,
    URGENCIES,
    Intervention,
    InterventionBlocker,
    Ticket,
    TicketActivity,
    TicketAttachment,
    TicketComment,
    TicketContact,
    TicketMeeting,
    TicketTransfer,
)
from ticketdesk.models.user import User
from ticketdesk.services import storage
from ticketdesk.services.access_policy import ensure_ticket_access, ticket_visibility_clause
from ticketdesk.services.notification import NotificationService
from ticketdesk.utils.helpers import (
    commit_or_raise,
    get_or_404,
    id_list,
    parse_datetime,
    parse_id,
    parse_number,
    require_choice,
    require_fields,
)

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 1000
NUMBER_ATTEMPTS = 5

# AssignRoles payload key → (ticket column, role the user must hold)
ASSIGNABLE_SLOTS = {
    "responsible_client": ("responsible_client_id", Role.RESPONSIBLE_CLIENT),
    "commercial": ("agent_commercial_id", Role.AGENT_COMMERCIAL),
    "group_leader": ("group_leader_id", Role.GROUP_LEADER),
    "project_manager": ("project_manager_id", Role.PROJECT_MANAGER),
    "responsible_tester": ("responsible_tester_id", Role.RESPONSIBLE_TESTER),
}


# ── Helpers ──────────────────────────────────────────────────────────────────


def generate_ticket_number(now=None):
    """``TCK_INC_<d>/<m>/<yyyy>_URG_<6 random digits>``, unique among tickets."""
    now = now or datetime.now()
    for _ in range(NUMBER_ATTEMPTS):
        number = f"TCK_INC_{now.day}/{now.month}/{now.year}_URG_{random.randint(0, 999999):06d}"
        if Ticket.query.filter_by(number=number).first() is None:
            return number
    raise ValidationError("Could not allocate a ticket number, retry the request")


def _load_ticket(ticket_id, actor):
    ticket = get_or_404(Ticket, ticket_id, resource="Ticket")
    ensure_ticket_access(actor, ticket)
    return ticket


def _find_intervention(ticket, intervention_id):
    intervention = next((i for i in ticket.interventions if i.id == intervention_id), None)
    if intervention is None:
        raise NotFoundError("Intervention", intervention_id)
    return intervention


def _existing_user(user_id, field):
    user = db.session.get(User, parse_id(user_id, field))
    if user is None:
        raise ValidationError(f"{field} does not reference a user", details={field: "invalid"})
    return user


def _commit_with_files(context, stored):
    """Commit; when persisting fails remove the files written for this request."""
    try:
        commit_or_raise(context)
    except Exception:
        storage.remove_files([s.path for s in stored])
        raise


def _status_recipients(ticket):
    ids = ticket.involved_user_ids()
    for admin_id in NotificationService.admin_ids():
        if admin_id not in ids:
            ids.append(admin_id)
    return ids


# ── Create / read ────────────────────────────────────────────────────────────


def _client_binding(data, actor):
    """Resolve (client_id, {slot: actor.id}) for the creating role."""
    policy = policy_for(actor.role)
    extra = {}
    if policy.ticket_self_slot == "client_id":
        return actor.id, extra
    if policy.ticket_self_slot:
        extra[policy.ticket_self_slot] = actor.id

    client_id = data.get("client_id")
    if client_id in (None, ""):
        if policy.requires_client_id:
            raise ValidationError("client_id is required", details={"client_id": "required"})
        return actor.id, extra
    return _existing_user(client_id, "client_id").id, extra


def _contacts_from(data):
    contacts = data.get("contacts") or []
    if not isinstance(contacts, list):
        raise ValidationError("contacts must be a list", details={"contacts": "invalid"})
    rows = []
    for contact in contacts:
        if not isinstance(contact, dict) or not contact.get("name"):
            raise ValidationError("Each contact needs a name", details={"contacts": "invalid"})
        availability = contact.get("availability") or []
        if isinstance(availability, str):
            availability = [availability]
        rows.append(TicketContact(
            name=contact["name"],
            email=(contact.get("email") or "").strip() or None,
            phone=contact.get("phone"),
            availability=list(availability),
        ))
    return rows


def create_ticket(data, actor, files=(), draft=False):
    """Create a ticket (status Draft when ``draft``) and notify its contacts.

    Returns:
        Ticket instance (committed).
    """
    require_fields(data, "title", "application", "environment", "request_type", "urgency", "description")
    require_choice(data["environment"], ENVIRONMENTS, "environment")
    require_choice(data["request_type"], REQUEST_TYPES, "request_type")
    require_choice(data["urgency"], URGENCIES, "urgency")

    status = "Draft" if draft else (data.get("status") or "Sent")
    require_choice(status, TICKET_STATUSES, "status")

    links = data.get("links") or []
    if isinstance(links, str):
        links = [links]

    client_id, slots = _client_binding(data, actor)
    ticket = Ticket(
        number=generate_ticket_number(),
        title=data["title"].strip(),
        application=data["application"],
        environment=data["environment"],
        request_type=data["request_type"],
        urgency=data["urgency"],
        description=data["description"],
        drive_link=data.get("drive_link"),
        additional_info=data.get("additional_info"),
        links=list(links),
        meeting_date_time=parse_datetime(data.get("meeting_date_time"), "meeting_date_time"),
        status=status,
        client_id=client_id,
        created_by_id=actor.id,
        **slots,
    )
    ticket.contacts = _contacts_from(data)

    stored = storage.save_files(files, storage.ticket_folder(ticket.number)) if files else []
    for item in stored:
        ticket.attachments.append(
            TicketAttachment(name=item.name, url=item.path, uploaded_by_id=actor.id)
        )

    db.session.add(ticket)
    _commit_with_files("create ticket", stored)
    logger.info("Ticket %s created by user %d (status=%s)", ticket.number, actor.id, ticket.status)

    emails = [c.email.lower() for c in ticket.contacts if c.email]
    if emails:
        contact_ids = list(db.session.execute(
            select(User.id).where(func.lower(User.email).in_(emails))
        ).scalars())
        NotificationService.create_notifications(
            contact_ids,
            f'A new ticket "{ticket.title}" has been assigned to you by {actor.full_name}.',
            ticket.id, "Ticket",
        )
    return ticket


def list_tickets(actor, filters=None):
    """Tickets visible to ``actor``, newest first. Returns (items, total)."""
    filters = filters or {}
    q = Ticket.query
    clause = ticket_visibility_clause(actor)
    if clause is not None:
        q = q.filter(clause)
    if filters.get("status"):
        q = q.filter(Ticket.status == require_choice(filters["status"], TICKET_STATUSES, "status"))
    if filters.get("urgency"):
        q = q.filter(Ticket.urgency == require_choice(filters["urgency"], URGENCIES, "urgency"))

    total = q.count()
    limit = parse_number(filters.get("limit"), "limit", minimum=1, maximum=200, integer=True) or 50
    offset = parse_number(filters.get("offset"), "offset", minimum=0, integer=True) or 0
    items = q.order_by(Ticket.created_at.desc(), Ticket.id.desc()).offset(offset).limit(limit).all()
    return items, total


def get_ticket(ticket_id, actor):
    return _load_ticket(ticket_id, actor)


# ── Status & financials ──────────────────────────────────────────────────────


def update_status(ticket_id, status, actor):
    """Set any status value; log it and notify involved users and admins on change."""
    if not status:
        raise ValidationError("status is required", details={"status": "required"})
    require_choice(status, TICKET_STATUSES, "status")
    ticket = _load_ticket(ticket_id, actor)

    old = ticket.status
    ticket.status = status
    ticket.log_activity("status_change", actor.id, from_value=old, to_value=status)
    ticket.updated_at = utcnow()
    commit_or_raise("update ticket status")
    logger.info("Ticket %s status %s → %s by user %d", ticket.number, old, status, actor.id)

    if old != status:
        NotificationService.create_notifications(
            _status_recipients(ticket),
            f'{actor.full_name} changed the status of ticket "{ticket.title}" from {old} to {status}',
            ticket.id, "Ticket",
        )
    return ticket


def update_financials(ticket_id, data, actor):
    ticket = _load_ticket(ticket_id, actor)

    old = ticket.financial_status
    if data.get("financial_status"):
        ticket.financial_status = require_choice(data["financial_status"], FINANCIAL_STATUSES, "financial_status")
    for field in ("estimated_hours", "actual_hours"):
        if field in data:
            value = parse_number(data[field], field, minimum=0)
            setattr(ticket, field, value if value is not None else 0)

    if ticket.financial_status != old:
        ticket.log_activity(
            "status_change", actor.id, from_value=old, to_value=ticket.financial_status,
            details="Financial status updated",
        )
    commit_or_raise("update ticket financials")
    return ticket


# ── Comments & availability ──────────────────────────────────────────────────


def add_comment(ticket_id, text, actor, files=()):
    text = (text or "").strip()
    if not text:
        raise ValidationError("Comment text is required", details={"text": "required"})
    if len(text) > MAX_COMMENT_LENGTH:
        raise ValidationError(
            f"Comment cannot exceed {MAX_COMMENT_LENGTH} characters", details={"text": "too_long"},
        )
    ticket = _load_ticket(ticket_id, actor)

    comment = TicketComment(text=text, author=actor.full_name, author_id=actor.id)
    mentioned = NotificationService.find_users_by_mentions(NotificationService.extract_mentions(text))
    if mentioned:
        comment.mentions = User.query.filter(User.id.in_(mentioned)).all()

    ticket.comments.append(comment)

    stored = storage.save_files(files, f"{storage.ticket_folder(ticket.number)}/comments") if files else []
    for item in stored:
        attachment = TicketAttachment(name=item.name, url=item.path, uploaded_by_id=actor.id)
        ticket.attachments.append(attachment)
        comment.files.append(attachment)

    meta = None
    if stored:
        meta = {"filesCount": len(stored), "fileNames": [s.name for s in stored]}
    ticket.log_activity("comment_added", actor.id, details=text[:200], meta=meta)
    _commit_with_files("add ticket comment", stored)

    if mentioned:
        NotificationService.process_mentions(text, actor.full_name, ticket.id, "Ticket")
    return comment


def get_availability(ticket_id, actor):
    """Contact availability strings, deduplicated in first-seen order."""
    ticket = _load_ticket(ticket_id, actor)
    seen = []
    for contact in ticket.contacts:
        for slot in contact.availability or []:
            if slot not in seen:
                seen.append(slot)
    return seen


# ── Meetings ─────────────────────────────────────────────────────────────────


def add_meeting(ticket_id, data, actor):
    require_fields(data, "title", "date_time")
    date_time = parse_datetime(data["date_time"], "date_time")
    ticket = _load_ticket(ticket_id, actor)

    attendee_ids = id_list(data.get("selected_agents"), "selected_agents")
    attendees = User.query.filter(User.id.in_(attendee_ids)).all() if attendee_ids else []
    if len(attendees) != len(set(attendee_ids)):
        raise ValidationError("selected_agents contains unknown users", details={"selected_agents": "invalid"})

    meeting = TicketMeeting(
        title=data["title"],
        date_time=date_time,
        meeting_link=data.get("meeting_link"),
        agenda=data.get("agenda"),
        organizer_id=actor.id,
        attendees=attendees,
    )
    ticket.meetings.append(meeting)
    ticket.log_activity(
        "meeting_scheduled", actor.id,
        meta={"meetingTitle": meeting.title, "meetingDate": date_time.isoformat()},
    )
    commit_or_raise("schedule meeting")
    return meeting


# ── Interventions ────────────────────────────────────────────────────────────


def add_intervention(ticket_id, data, actor):
    """``action == "start"`` starts work (status InProgress); otherwise records an intervention."""
    ticket = _load_ticket(ticket_id, actor)

    if data.get("action") == "start":
        old = ticket.status
        intervention = Intervention(
            type=data.get("type") or "start",
            description=data.get("description"),
            agent_id=actor.id,
            started_at=utcnow(),
        )
        ticket.interventions.append(intervention)
        ticket.status = "InProgress"
        ticket.log_activity("intervention_started", actor.id, from_value=old, to_value="InProgress")
    else:
        urgency = data.get("urgency_level")
        if urgency:
            require_choice(urgency, URGENCIES, "urgency_level")
        intervention = Intervention(
            type=data.get("type"),
            urgency_level=urgency,
            description=data.get("description"),
            deadline=parse_datetime(data.get("deadline"), "deadline"),
            agent_id=actor.id,
        )
        ticket.interventions.append(intervention)
        ticket.log_activity(
            "intervention_created", actor.id,
            meta={"interventionType": intervention.type, "urgencyLevel": urgency},
        )

    ticket.updated_at = utcnow()
    commit_or_raise("add intervention")
    logger.info("Intervention %d added to ticket %s by user %d", intervention.id, ticket.number, actor.id)
    return intervention


def request_validation(ticket_id, actor):
    ticket = _load_ticket(ticket_id, actor)
    if not ticket.interventions:
        raise ValidationError("Ticket has no intervention to validate")

    latest = ticket.interventions[-1]
    latest.validation_requested = True
    latest.validation_requested_at = utcnow()
    old = ticket.status
    ticket.status = "TechnicalValidation"
    ticket.log_activity("validation_requested", actor.id, from_value=old, to_value="TechnicalValidation")
    commit_or_raise("request validation")
    return ticket


def validate_or_reject(ticket_id, intervention_id, approve, actor, reason=None):
    """Responsible client's decision: ClientValidation when approved, Revision otherwise."""
    ticket = get_or_404(Ticket, ticket_id, resource="Ticket")
    if ticket.responsible_client_id != actor.id:
        raise AuthorizationError("Only the responsible client can validate interventions")
    intervention = _find_intervention(ticket, intervention_id)

    intervention.validated = bool(approve)
    intervention.validated_at = utcnow()
    intervention.validated_by_id = actor.id
    if not approve:
        intervention.rejection_reason = reason

    old = ticket.status
    ticket.status = "ClientValidation" if approve else "Revision"
    ticket.log_activity(
        "intervention_validated" if approve else "intervention_rejected", actor.id,
        from_value=old, to_value=ticket.status, details=None if approve else reason,
    )
    commit_or_raise("validate intervention")
    logger.info("Intervention %d %s by user %d", intervention.id,
                "validated" if approve else "rejected", actor.id)
    return ticket


# ── Blockers ─────────────────────────────────────────────────────────────────


def add_blocker(ticket_id, intervention_id, data, actor):
    require_fields(data, "type", "description")
    ticket = _load_ticket(ticket_id, actor)
    intervention = _find_intervention(ticket, intervention_id)

    blocker = InterventionBlocker(
        type=data["type"],
        description=data["description"],
        impact=data.get("impact"),
        created_by_id=actor.id,
    )
    intervention.blockers.append(blocker)
    ticket.log_activity(
        "blocker_added", actor.id, details=blocker.description,
        meta={"blockerType": blocker.type, "impact": blocker.impact},
    )
    commit_or_raise("add blocker")
    return blocker


def resolve_blocker(ticket_id, intervention_id, blocker_id, notes, actor):
    ticket = _load_ticket(ticket_id, actor)
    intervention = _find_intervention(ticket, intervention_id)
    blocker = next((b for b in intervention.blockers if b.id == blocker_id), None)
    if blocker is None:
        raise NotFoundError("Blocker", blocker_id)

    blocker.resolved = True
    blocker.resolved_at = utcnow()
    blocker.resolved_by_id = actor.id
    blocker.resolution_notes = notes
    ticket.log_activity("blocker_resolved", actor.id, details=notes)
    commit_or_raise("resolve blocker")
    return blocker


# ── Assignment, drafts, transfer ─────────────────────────────────────────────


def assign_roles(ticket_id, data, actor):
    """Set the role slots the actor may set; notify only users whose slot changed.

    Slots outside the actor's ``assignable_slots`` are ignored. An Expired
    ticket goes back to Sent.
    """
    ticket = _load_ticket(ticket_id, actor)
    allowed = policy_for(actor.role).assignable_slots

    changed = {}
    for key in allowed:
        value = data.get(key)
        if value in (None, ""):
            continue
        column, role = ASSIGNABLE_SLOTS[key]
        user = _existing_user(value, key)
        if user.role != role.value:
            raise ValidationError(f"{key} must reference a user with role {role.value}", details={key: "invalid"})
        if getattr(ticket, column) != user.id:
            setattr(ticket, column, user.id)
            changed[key] = user.id

    if ticket.status == "Expired":
        ticket.status = "Sent"
        ticket.log_activity(
            "status_change", actor.id, from_value="Expired", to_value="Sent",
            details="Status changed from Expired to Sent upon role assignment",
        )
    ticket.log_activity("assignment_updated", actor.id, meta={"changed": changed})
    ticket.updated_at = utcnow()
    commit_or_raise("assign ticket roles")
    logger.info("Ticket %s roles updated by user %d: %s", ticket.number, actor.id, changed)

    if changed:
        NotificationService.create_notifications(
            list(dict.fromkeys(changed.values())),
            f'You have been assigned a role on ticket "{ticket.title}" by {actor.full_name}.',
            ticket.id, "Ticket",
        )
    return ticket


def send_draft(ticket_id, actor):
    ticket = _load_ticket(ticket_id, actor)
    if ticket.status != "Draft":
        raise ValidationError("Only draft tickets can be sent", details={"status": ticket.status})
    return update_status(ticket_id, "Sent", actor)


def transfer_ticket(ticket_id, data, actor):
    """Hand the ticket to another user: status Transferred plus a transfer record."""
    require_fields(data, "to_user_id")
    ticket = _load_ticket(ticket_id, actor)
    target = _existing_user(data["to_user_id"], "to_user_id")

    old = ticket.status
    ticket.transfers.append(TicketTransfer(
        from_user_id=actor.id, to_user_id=target.id, reason=data.get("reason"),
    ))
    ticket.status = "Transferred"
    ticket.log_activity(
        "transferred", actor.id, from_value=old, to_value="Transferred",
        details=data.get("reason"), meta={"toUserId": target.id},
    )
    commit_or_raise("transfer ticket")

    NotificationService.create_notifications(
        [target.id],
        f'{actor.full_name} transferred ticket "{ticket.title}" to you.',
        ticket.id, "Ticket",
    )
    return ticket


# ── Attachments ──────────────────────────────────────────────────────────────


def get_attachment_path(ticket_id, attachment_id, actor):
    """Return (attachment, absolute path); NotFoundError when the row or file is missing."""
    ticket = _load_ticket(ticket_id, actor)
    attachment = next((a for a in ticket.attachments if a.id == attachment_id), None)
    if attachment is None:
        raise NotFoundError("Attachment", attachment_id)
    return attachment, storage.resolve(attachment.url, resource="Attachment file")


# ── Dashboards ───────────────────────────────────────────────────────────────


def get_stats(actor):
    """Ticket counts by status and urgency over what ``actor`` can see."""
    clause = ticket_visibility_clause(actor)

    def _grouped(column):
        stmt = select(column, func.count(Ticket.id)).group_by(column)
        if clause is not None:
            stmt = stmt.where(clause)
        return {key: count for key, count in db.session.execute(stmt)}

    by_status = _grouped(Ticket.status)
    by_urgency = _grouped(Ticket.urgency)
    return {
        "total": sum(by_status.values()),
        "by_status": {s: by_status.get(s, 0) for s in TICKET_STATUSES},
        "by_urgency": {u: by_urgency.get(u, 0) for u in URGENCIES},
    }


def recent_activity(actor, limit=20):
    """Latest activities across the actor's visible tickets."""
    stmt = (
        select(TicketActivity, Ticket.number, Ticket.title)
        .join(Ticket, TicketActivity.ticket_id == Ticket.id)
        .order_by(TicketActivity.date.desc(), TicketActivity.id.desc())
        .limit(limit)
    )
    clause = ticket_visibility_clause(actor)
    if clause is not None:
        stmt = stmt.where(clause)

    items = []
    for activity, number, title in db.session.execute(stmt):
        d = activity.to_dict()
        d.update({"ticket_id": activity.ticket_id, "ticket_number": number, "ticket_title": title})
        items.append(d)
    return items