"""
Rate limiting configuration.

The Limiter instance is created in ticketdesk/__init__.py with no default
limits; this module applies limits per blueprint from configuration:

    RATE_LIMIT_MAX requests per RATE_LIMIT_WINDOW seconds  (API blueprints)
    10/minute                                               (login, per IP)
    exempt                                                  (health, SSE stream)

Keys are the authenticated user id when a token was presented, else the IP.

Usage:
    from ticketdesk.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

LOGIN_LIMIT = "10/minute"

API_BLUEPRINTS = ("auth", "user", "company", "ticket", "task", "testing", "notifications")


def rate_limit_key():
    """Per-user key when authenticated, remote address otherwise."""
    user_id = getattr(g, "jwt_user_id", None)
    if user_id:
        return f"user:{user_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """Apply rate limits to API blueprints. Disabled in testing mode."""

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    window = app.config.get("RATE_LIMIT_WINDOW", 900)
    maximum = app.config.get("RATE_LIMIT_MAX", 100)
    api_limit = f"{maximum} per {window} seconds"

    for bp_name in API_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(api_limit, key_func=rate_limit_key)(bp)

    login_view = app.view_functions.get("auth.login")
    if login_view:
        limiter.limit(LOGIN_LIMIT, key_func=lambda: flask_request.remote_addr or "unknown")(login_view)

    for bp_name in ("health",):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.exempt(bp)

    stream_view = app.view_functions.get("notifications.stream")
    if stream_view:
        limiter.exempt(stream_view)

    logger.info("Rate limiter configured — api: %s, login: %s", api_limit, LOGIN_LIMIT)
