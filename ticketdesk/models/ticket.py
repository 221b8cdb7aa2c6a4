"""
TicketDesk
Ticket workflow models.

Models:
    - Ticket: client-raised request tracked through the status workflow
    - TicketContact: contact person with free-text availability slots
    - TicketAttachment: stored file (ticket-level or attached to a comment)
    - TicketComment: comment with files and mentioned users
    - TicketActivity: append-only event log
    - TicketMeeting: scheduled meeting with attendees
    - Intervention: unit of work with validation state
    - InterventionBlocker: impediment recorded on an intervention
    - TicketTransfer: transfer history
"""

from ticketdesk.models import db, iso, utcnow

# ── Constants ────────────────────────────────────────────────────────────────

TICKET_STATUSES = (
    "Draft", "Registered", "Sent", "InProgress", "TechnicalValidation", "Revision",
    "ClientValidation", "Validated", "Closed", "Transferred", "Expired",
)
FINANCIAL_STATUSES = (
    "ToQualify", "Subscription", "Quote", "FlexSubscription",
    "ExcessHours", "ExcessInterventions", "ExtraOn",
)
ENVIRONMENTS = ("Production", "Test", "Development")
REQUEST_TYPES = ("Incident", "Improvement", "Other")
URGENCIES = ("Critical", "High", "Medium", "Low")
ACTIVITY_TYPES = (
    "status_change", "comment_added", "meeting_scheduled",
    "intervention_started", "intervention_created", "validation_requested",
    "blocker_added", "blocker_resolved",
    "intervention_validated", "intervention_rejected",
    "assignment_updated", "transferred",
)

# Role slot columns, in the order they are reported
ROLE_SLOTS = (
    "client_id", "responsible_client_id", "agent_commercial_id",
    "project_manager_id", "group_leader_id", "responsible_tester_id",
)


ticket_comment_mentions = db.Table(
    "ticket_comment_mentions",
    db.Column("comment_id", db.Integer, db.ForeignKey("ticket_comments.id", ondelete="CASCADE"), primary_key=True),
    db.Column("user_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)

ticket_meeting_attendees = db.Table(
    "ticket_meeting_attendees",
    db.Column("meeting_id", db.Integer, db.ForeignKey("ticket_meetings.id", ondelete="CASCADE"), primary_key=True),
    db.Column("user_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


def _user_fk():
    return db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)


class Ticket(db.Model):
    __tablename__ = "tickets"

    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.String(60), nullable=False, unique=True, index=True)
    title = db.Column(db.String(300), nullable=False)
    application = db.Column(db.String(200), nullable=False)
    environment = db.Column(db.String(20), nullable=False)
    request_type = db.Column(db.String(20), nullable=False)
    urgency = db.Column(db.String(20), nullable=False)
    description = db.Column(db.Text, nullable=False)
    drive_link = db.Column(db.String(500))
    additional_info = db.Column(db.Text)
    links = db.Column(db.JSON, default=list)
    meeting_date_time = db.Column(db.DateTime(timezone=True))

    status = db.Column(db.String(30), default="Sent", nullable=False, index=True)
    financial_status = db.Column(db.String(30), default="ToQualify", nullable=False)
    estimated_hours = db.Column(db.Float, default=0)
    actual_hours = db.Column(db.Float, default=0)

    client_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    responsible_client_id = _user_fk()
    agent_commercial_id = _user_fk()
    project_manager_id = _user_fk()
    group_leader_id = _user_fk()
    responsible_tester_id = _user_fk()
    created_by_id = _user_fk()

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    client = db.relationship("User", foreign_keys=[client_id])
    responsible_client = db.relationship("User", foreign_keys=[responsible_client_id])
    agent_commercial = db.relationship("User", foreign_keys=[agent_commercial_id])
    project_manager = db.relationship("User", foreign_keys=[project_manager_id])
    group_leader = db.relationship("User", foreign_keys=[group_leader_id])
    responsible_tester = db.relationship("User", foreign_keys=[responsible_tester_id])
    created_by = db.relationship("User", foreign_keys=[created_by_id])

    contacts = db.relationship(
        "TicketContact", back_populates="ticket", cascade="all, delete-orphan", order_by="TicketContact.id",
    )
    attachments = db.relationship(
        "TicketAttachment", back_populates="ticket", cascade="all, delete-orphan", order_by="TicketAttachment.id",
    )
    comments = db.relationship(
        "TicketComment", back_populates="ticket", cascade="all, delete-orphan", order_by="TicketComment.id",
    )
    activities = db.relationship(
        "TicketActivity", back_populates="ticket", cascade="all, delete-orphan", order_by="TicketActivity.id",
    )
    meetings = db.relationship(
        "TicketMeeting", back_populates="ticket", cascade="all, delete-orphan", order_by="TicketMeeting.id",
    )
    interventions = db.relationship(
        "Intervention", back_populates="ticket", cascade="all, delete-orphan", order_by="Intervention.id",
    )
    transfers = db.relationship(
        "TicketTransfer", back_populates="ticket", cascade="all, delete-orphan", order_by="TicketTransfer.id",
    )

    def involved_user_ids(self):
        """Ids of every user holding a relationship to this ticket, without duplicates."""
        ids = []
        for column in ROLE_SLOTS + ("created_by_id",):
            value = getattr(self, column)
            if value is not None and value not in ids:
                ids.append(value)
        return ids

    def log_activity(self, type_, user_id=None, *, from_value=None, to_value=None,
                     details=None, meta=None):
        activity = TicketActivity(
            type=type_, user_id=user_id, from_value=from_value, to_value=to_value,
            details=details, meta=meta,
        )
        self.activities.append(activity)
        return activity

    def to_summary(self):
        return {
            "id": self.id,
            "number": self.number,
            "title": self.title,
            "status": self.status,
            "urgency": self.urgency,
            "application": self.application,
            "client_id": self.client_id,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def to_dict(self):
        d = self.to_summary()
        d.update({
            "environment": self.environment,
            "request_type": self.request_type,
            "description": self.description,
            "drive_link": self.drive_link,
            "additional_info": self.additional_info,
            "links": self.links or [],
            "meeting_date_time": iso(self.meeting_date_time),
            "financial_status": self.financial_status,
            "estimated_hours": self.estimated_hours,
            "actual_hours": self.actual_hours,
            "responsible_client_id": self.responsible_client_id,
            "agent_commercial_id": self.agent_commercial_id,
            "project_manager_id": self.project_manager_id,
            "group_leader_id": self.group_leader_id,
            "responsible_tester_id": self.responsible_tester_id,
            "created_by_id": self.created_by_id,
            "contacts": [c.to_dict() for c in self.contacts],
            "attachments": [a.to_dict() for a in self.attachments if a.comment_id is None],
            "comments": [c.to_dict() for c in self.comments],
            "activities": [a.to_dict() for a in self.activities],
            "meetings": [m.to_dict() for m in self.meetings],
            "interventions": [i.to_dict() for i in self.interventions],
            "transfer_history": [t.to_dict() for t in self.transfers],
        })
        return d

    def __repr__(self):
        return f"<Ticket {self.id}: {self.number} [{self.status}]>"


class TicketContact(db.Model):
    __tablename__ = "ticket_contacts"

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200))
    phone = db.Column(db.String(50))
    availability = db.Column(db.JSON, default=list)

    ticket = db.relationship("Ticket", back_populates="contacts")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "availability": self.availability or [],
        }


class TicketAttachment(db.Model):
    __tablename__ = "ticket_attachments"

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    comment_id = db.Column(db.Integer, db.ForeignKey("ticket_comments.id", ondelete="CASCADE"), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    url = db.Column(db.String(500), nullable=False, comment="Path relative to UPLOAD_FOLDER")
    uploaded_by_id = _user_fk()
    uploaded_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    ticket = db.relationship("Ticket", back_populates="attachments")
    comment = db.relationship("TicketComment", back_populates="files")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "uploaded_at": iso(self.uploaded_at),
        }


class TicketComment(db.Model):
    __tablename__ = "ticket_comments"

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    text = db.Column(db.String(1000), nullable=False)
    author = db.Column(db.String(200), nullable=False)
    author_id = _user_fk()
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    ticket = db.relationship("Ticket", back_populates="comments")
    files = db.relationship(
        "TicketAttachment", back_populates="comment", cascade="all, delete-orphan",
        order_by="TicketAttachment.id",
    )
    mentions = db.relationship("User", secondary=ticket_comment_mentions)

    def to_dict(self):
        return {
            "id": self.id,
            "text": self.text,
            "author": self.author,
            "author_id": self.author_id,
            "files": [f.to_dict() for f in self.files],
            "mentions": [u.id for u in self.mentions],
            "created_at": iso(self.created_at),
        }


class TicketActivity(db.Model):
    __tablename__ = "ticket_activities"

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    type = db.Column(db.String(40), nullable=False)
    from_value = db.Column(db.String(60))
    to_value = db.Column(db.String(60))
    user_id = _user_fk()
    date = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    details = db.Column(db.Text)
    # "metadata" is reserved on declarative classes
    meta = db.Column("metadata", db.JSON)

    ticket = db.relationship("Ticket", back_populates="activities")

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "from": self.from_value,
            "to": self.to_value,
            "user_id": self.user_id,
            "date": iso(self.date),
            "details": self.details,
            "metadata": self.meta or {},
        }


class TicketMeeting(db.Model):
    __tablename__ = "ticket_meetings"

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    title = db.Column(db.String(300), nullable=False)
    date_time = db.Column(db.DateTime(timezone=True), nullable=False)
    meeting_link = db.Column(db.String(500))
    agenda = db.Column(db.Text)
    organizer_id = _user_fk()
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    ticket = db.relationship("Ticket", back_populates="meetings")
    attendees = db.relationship("User", secondary=ticket_meeting_attendees)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "date_time": iso(self.date_time),
            "meeting_link": self.meeting_link,
            "agenda": self.agenda,
            "organizer_id": self.organizer_id,
            "attendees": [u.id for u in self.attendees],
        }


class Intervention(db.Model):
    __tablename__ = "interventions"

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    type = db.Column(db.String(100))
    urgency_level = db.Column(db.String(20))
    description = db.Column(db.Text)
    deadline = db.Column(db.DateTime(timezone=True))
    agent_id = _user_fk()
    started_at = db.Column(db.DateTime(timezone=True))

    validation_requested = db.Column(db.Boolean, default=False, nullable=False)
    validation_requested_at = db.Column(db.DateTime(timezone=True))
    validated = db.Column(db.Boolean, nullable=True)
    validated_at = db.Column(db.DateTime(timezone=True))
    validated_by_id = _user_fk()
    rejection_reason = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    ticket = db.relationship("Ticket", back_populates="interventions")
    blockers = db.relationship(
        "InterventionBlocker", back_populates="intervention",
        cascade="all, delete-orphan", order_by="InterventionBlocker.id",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "urgency_level": self.urgency_level,
            "description": self.description,
            "deadline": iso(self.deadline),
            "agent_id": self.agent_id,
            "started_at": iso(self.started_at),
            "validation_requested": self.validation_requested,
            "validation_requested_at": iso(self.validation_requested_at),
            "validated": self.validated,
            "validated_at": iso(self.validated_at),
            "validated_by_id": self.validated_by_id,
            "rejection_reason": self.rejection_reason,
            "blockers": [b.to_dict() for b in self.blockers],
        }


class InterventionBlocker(db.Model):
    __tablename__ = "intervention_blockers"

    id = db.Column(db.Integer, primary_key=True)
    intervention_id = db.Column(
        db.Integer, db.ForeignKey("interventions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=False)
    impact = db.Column(db.String(20))
    created_by_id = _user_fk()
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    resolved = db.Column(db.Boolean, default=False, nullable=False)
    resolved_at = db.Column(db.DateTime(timezone=True))
    resolved_by_id = _user_fk()
    resolution_notes = db.Column(db.Text)

    intervention = db.relationship("Intervention", back_populates="blockers")

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "description": self.description,
            "impact": self.impact,
            "created_by_id": self.created_by_id,
            "created_at": iso(self.created_at),
            "resolved": self.resolved,
            "resolved_at": iso(self.resolved_at),
            "resolved_by_id": self.resolved_by_id,
            "resolution_notes": self.resolution_notes,
        }


class TicketTransfer(db.Model):
    __tablename__ = "ticket_transfers"

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    from_user_id = _user_fk()
    to_user_id = _user_fk()
    reason = db.Column(db.Text)
    date = db.Column(db.DateTime(timezone=True), default=utcnow)

    ticket = db.relationship("Ticket", back_populates="transfers")

    def to_dict(self):
        return {
            "id": self.id,
            "from_user_id": self.from_user_id,
            "to_user_id": self.to_user_id,
            "reason": self.reason,
            "date": iso(self.date),
        }
