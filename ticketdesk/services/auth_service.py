"""
Auth Service — credential check and the current-user profile.
"""

import logging

from ticketdesk.core.exceptions import AuthenticationError, ValidationError
from ticketdesk.models import db, utcnow
from ticketdesk.services.jwt_service import token_response
from ticketdesk.services.notification import NotificationService
from ticketdesk.services.user_service import find_by_email
from ticketdesk.utils.crypto import verify_password

logger = logging.getLogger(__name__)


def login(email, password):
    """Authenticate by e-mail + password and issue an access token.

    Raises AuthenticationError for unknown e-mail, wrong password, or a
    suspended account. The first two share one message.
    """
    if not email or not password:
        raise ValidationError("Email and password are required",
                              details={"email": "required", "password": "required"})

    user = find_by_email(email)
    if user is None or not verify_password(password, user.password_hash):
        logger.warning("Failed login for %s", email)
        raise AuthenticationError("Invalid credentials")
    if user.is_suspended:
        logger.warning("Suspended user %d attempted login", user.id)
        raise AuthenticationError("Account is suspended")

    user.last_login_at = utcnow()
    db.session.commit()
    logger.info("User %d logged in", user.id)

    body = token_response(user)
    body["user"] = user.to_dict()
    return body


def profile(user):
    """``/me`` payload: the user plus the unread notification count."""
    d = user.to_dict()
    d["unread_notifications_count"] = NotificationService.unread_count(user.id)
    return d
