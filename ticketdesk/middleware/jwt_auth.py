"""
JWT Auth Middleware — parses the Bearer token from the Authorization header.

Sets on ``g`` for every API request:
    g.jwt_user_id   int or None
    g.jwt_role      role string or None
    g.jwt_error     reason the token was rejected, or None

The hook never rejects a request by itself; ``login_required`` decides,
so public endpoints (login, health) keep working without a token.
"""

import logging

import jwt as pyjwt
from flask import g, request

from ticketdesk.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_role = None
        g.jwt_error = None
        g.current_user = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            # EventSource cannot send headers; the stream endpoint passes ?token=
            token = request.args.get("token") if path.endswith("/notifications/stream") else None
            if not token:
                return
        else:
            token = auth_header[7:]

        try:
            payload = decode_access_token(token)
            g.jwt_user_id = int(payload["sub"])
            g.jwt_role = payload.get("role")
        except pyjwt.ExpiredSignatureError:
            g.jwt_error = "Token expired"
        except (pyjwt.InvalidTokenError, KeyError, ValueError) as exc:
            logger.debug("Rejected bearer token on %s: %s", path, exc)
            g.jwt_error = "Invalid token"
