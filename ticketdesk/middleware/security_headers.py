"""
Security headers middleware.

The app serves JSON and file downloads only, so the policy is locked down:
no scripts, no framing, no MIME sniffing.

Usage:
    from ticketdesk.middleware.security_headers import init_security_headers
    init_security_headers(app)
"""

_API_CSP = "default-src 'none'; frame-ancestors 'none'; base-uri 'none'; form-action 'none'"


def init_security_headers(app):
    """Register after_request handler that injects security headers."""

    @app.after_request
    def _add_security_headers(response):
        response.headers.setdefault("Content-Security-Policy", _API_CSP)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        if not app.debug and not app.testing:
            response.headers.setdefault(
                "Strict-Transport-Security", "max-age=31536000; includeSubDomains"
            )
        # Downloads and notification streams must never be cached by proxies
        if response.mimetype in ("text/event-stream", "application/octet-stream"):
            response.headers.setdefault("Cache-Control", "no-store")
        response.headers.pop("Server", None)
        return response
