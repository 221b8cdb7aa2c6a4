"""
TicketDesk
User directory model.

Models:
    - User: account, role, reporting-chain links and preferences
"""

from ticketdesk.models import db, iso, utcnow

SUPPORTED_LANGUAGES = ("en", "fr", "de", "es", "ar")


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(200), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    phone = db.Column(db.String(50))
    role = db.Column(db.String(30), nullable=False, index=True)

    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="SET NULL", use_alter=True), nullable=True,
    )

    # Reporting chain: projectManager -> groupLeader -> developer, responsibleTester -> tester
    project_manager_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    group_leader_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    responsible_tester_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))

    is_suspended = db.Column(db.Boolean, default=False, nullable=False)
    preferred_language = db.Column(db.String(5), default="en", nullable=False)
    last_login_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    company = db.relationship("Company", foreign_keys=[company_id])
    project_manager = db.relationship("User", remote_side=[id], foreign_keys=[project_manager_id])
    group_leader = db.relationship("User", remote_side=[id], foreign_keys=[group_leader_id])
    responsible_tester = db.relationship("User", remote_side=[id], foreign_keys=[responsible_tester_id])

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    def to_summary(self):
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "role": self.role,
        }

    def to_dict(self):
        d = self.to_summary()
        d.update({
            "phone": self.phone,
            "company_id": self.company_id,
            "project_manager_id": self.project_manager_id,
            "group_leader_id": self.group_leader_id,
            "responsible_tester_id": self.responsible_tester_id,
            "created_by_id": self.created_by_id,
            "is_suspended": self.is_suspended,
            "preferred_language": self.preferred_language,
            "last_login_at": iso(self.last_login_at),
            "created_at": iso(self.created_at),
        })
        return d

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"
