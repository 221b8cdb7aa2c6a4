"""
TicketDesk
Company directory models.

Models:
    - Company: client organization with contacts, availability and billing
    - CompanyDocument: uploaded file metadata (path relative to the upload root)
"""

from ticketdesk.models import db, iso, utcnow

BILLING_METHODS = ("hourly", "perTask", "subscription")
WEEK_DAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


class Company(db.Model):
    __tablename__ = "companies"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    address = db.Column(db.JSON, default=dict)
    contacts = db.Column(db.JSON, default=list)
    billing_method = db.Column(db.String(20), default="hourly", nullable=False)
    contact_person = db.Column(db.JSON, default=dict)
    availability_slots = db.Column(db.JSON, default=list)

    commercial_agent_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    commercial_agent = db.relationship("User", foreign_keys=[commercial_agent_id])
    documents = db.relationship(
        "CompanyDocument", back_populates="company",
        cascade="all, delete-orphan", order_by="CompanyDocument.id",
    )

    def to_dict(self, include_documents=True):
        d = {
            "id": self.id,
            "name": self.name,
            "address": self.address or {},
            "contacts": self.contacts or [],
            "billing_method": self.billing_method,
            "contact_person": self.contact_person or {},
            "availability_slots": self.availability_slots or [],
            "commercial_agent_id": self.commercial_agent_id,
            "created_by_id": self.created_by_id,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_documents:
            d["documents"] = [doc.to_dict() for doc in self.documents]
        return d

    def to_public_dict(self):
        """Reduced view for delivery roles (no billing, contacts or documents)."""
        person = self.contact_person or {}
        return {
            "id": self.id,
            "name": self.name,
            "contact_person": {"name": person.get("name"), "position": person.get("position")},
            "availability_slots": self.availability_slots or [],
        }

    def __repr__(self):
        return f"<Company {self.id}: {self.name}>"


class CompanyDocument(db.Model):
    __tablename__ = "company_documents"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    file_type = db.Column(db.String(100))
    file_path = db.Column(db.String(500), nullable=False)
    uploaded_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    uploaded_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    company = db.relationship("Company", back_populates="documents")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "file_type": self.file_type,
            "file_path": self.file_path,
            "uploaded_by_id": self.uploaded_by_id,
            "uploaded_at": iso(self.uploaded_at),
        }
