"""
TicketDesk
Blueprint registry and shared request helpers.
"""

from flask import request, send_file


def query_filters(*names):
    """Query-string filters plus limit/offset, for the list services.

    Returns a dict holding only the parameters that were sent.
    """
    wanted = names + ("limit", "offset")
    return {k: request.args[k] for k in wanted if request.args.get(k) not in (None, "")}


def list_body(items, total, serializer=None):
    """Standard list envelope: ``{"items": [...], "total": n}``."""
    serialize = serializer or (lambda obj: obj.to_dict())
    return {"items": [serialize(obj) for obj in items], "total": total}


def send_stored_file(path, download_name):
    """Stream a stored upload back as an attachment."""
    return send_file(path, as_attachment=True, download_name=download_name)


def register_blueprints(app):
    from ticketdesk.blueprints.auth_bp import auth_bp
    from ticketdesk.blueprints.company_bp import company_bp
    from ticketdesk.blueprints.health_bp import health_bp
    from ticketdesk.blueprints.notification_bp import notification_bp
    from ticketdesk.blueprints.task_bp import task_bp
    from ticketdesk.blueprints.test_task_bp import test_task_bp
    from ticketdesk.blueprints.ticket_bp import ticket_bp
    from ticketdesk.blueprints.user_bp import user_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(company_bp)
    # Same routes under the singular and the legacy plural prefix
    app.register_blueprint(ticket_bp, url_prefix="/api/v1/ticket")
    app.register_blueprint(ticket_bp, url_prefix="/api/v1/tickets", name="tickets")
    app.register_blueprint(task_bp)
    app.register_blueprint(test_task_bp)
    app.register_blueprint(notification_bp)
