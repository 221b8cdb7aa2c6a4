"""
TicketDesk
Model package — exposes the shared Flask-SQLAlchemy instance.

Usage:
    from ticketdesk.models import db
"""

from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow():
    """Timezone-aware now, used as the column default everywhere."""
    return datetime.now(timezone.utc)


def iso(value):
    return value.isoformat() if value else None
