"""
TicketDesk
Notification model.

One row per recipient per event. The originating entity is referenced through
a discriminator column plus one typed nullable foreign key per target table,
so every reference is checked by the database.
"""

from ticketdesk.models import db, iso, utcnow

# Discriminator value -> FK column holding the reference
NOTIFICATION_TARGETS = {
    "Ticket": "ticket_id",
    "Intervention": "intervention_id",
    "Task": "task_id",
    "TestTask": "task_id",
    "User": "related_user_id",
}


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    message = db.Column(db.Text, nullable=False)
    notification_model = db.Column(db.String(20), nullable=True)

    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id", ondelete="SET NULL"))
    intervention_id = db.Column(db.Integer, db.ForeignKey("interventions.id", ondelete="SET NULL"))
    task_id = db.Column(db.Integer, db.ForeignKey("tasks.id", ondelete="SET NULL"))
    related_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))

    is_read = db.Column(db.Boolean, default=False, nullable=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "notification_model IS NULL OR notification_model IN "
            "('Ticket', 'Intervention', 'Task', 'TestTask', 'User')",
            name="ck_notification_model",
        ),
    )

    @property
    def related_to(self):
        column = NOTIFICATION_TARGETS.get(self.notification_model)
        return getattr(self, column) if column else None

    def set_target(self, model, related_id):
        """Point the notification at ``related_id`` of entity type ``model``."""
        column = NOTIFICATION_TARGETS.get(model)
        if column is None:
            raise ValueError(f"Unknown notification model: {model!r}")
        self.notification_model = model
        setattr(self, column, related_id)

    def mark_read(self):
        self.is_read = True
        self.read_at = utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "message": self.message,
            "related_to": self.related_to,
            "notification_model": self.notification_model,
            "is_read": self.is_read,
            "read_at": iso(self.read_at),
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<Notification {self.id} -> user {self.user_id}: {self.message[:40]}>"
