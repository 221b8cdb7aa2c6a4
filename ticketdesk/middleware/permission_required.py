"""
Permission Decorators — JWT-aware role checks for route protection.

Usage:
    @ticket_bp.route("/<int:ticket_id>/status", methods=["PATCH"])
    @roles_required(Role.ADMIN, Role.RESPONSIBLE_CLIENT)
    def update_status(ticket_id):
        user = g.current_user
        ...

    @user_bp.route("/me", methods=["GET"])
    @login_required
    def me():
        ...

``roles_required`` implies ``login_required``. Both raise the service-layer
exceptions so the app-wide handlers render the 401/403 bodies.
"""

import functools
import logging

from flask import g

from ticketdesk.core.exceptions import AuthenticationError, AuthorizationError
from ticketdesk.core.roles import parse_role
from ticketdesk.models import db
from ticketdesk.models.user import User

logger = logging.getLogger(__name__)


def _load_current_user():
    """Resolve g.jwt_user_id into g.current_user or raise AuthenticationError."""
    cached = getattr(g, "current_user", None)
    if cached is not None:
        return cached

    jwt_error = getattr(g, "jwt_error", None)
    if jwt_error:
        raise AuthenticationError(jwt_error)

    user_id = getattr(g, "jwt_user_id", None)
    if user_id is None:
        raise AuthenticationError("Authentication required")

    user = db.session.get(User, user_id)
    if user is None:
        raise AuthenticationError("User no longer exists")
    if user.is_suspended:
        logger.warning("Suspended user %d attempted access", user.id)
        raise AuthenticationError("Account is suspended")

    g.current_user = user
    return user


def login_required(f):
    """Decorator: require a valid bearer token for an active user."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _load_current_user()
        return f(*args, **kwargs)
    return decorated


def roles_required(*roles):
    """
    Decorator: require the authenticated user to hold one of ``roles``.

    Args:
        roles: Role members or role strings; unknown strings fail at import.
    """
    allowed = frozenset(parse_role(r) for r in roles)

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = _load_current_user()
            if parse_role(user.role) not in allowed:
                logger.warning(
                    "User %d (%s) denied on %s: requires one of %s",
                    user.id, user.role, f.__name__, sorted(r.value for r in allowed),
                )
                raise AuthorizationError(
                    f"Access denied. Required role(s): {', '.join(sorted(r.value for r in allowed))}"
                )
            return f(*args, **kwargs)
        return decorated
    return decorator
