"""
Application-wide exception hierarchy.

Services raise these; the app factory registers one handler per type so
every blueprint returns the same status codes and error bodies.

Usage:
    from ticketdesk.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Ticket", resource_id=42)
    raise ValidationError("Title is required", details={"title": "required"})
"""


class TicketDeskError(Exception):
    """Base class for every error the service layer raises on purpose."""

    status_code = 500


class ValidationError(TicketDeskError):
    """Input is missing or malformed, or breaks a business rule.

    Maps to HTTP 400.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    status_code = 400

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class AuthenticationError(TicketDeskError):
    """Missing, invalid or expired bearer token, or a suspended account. HTTP 401."""

    status_code = 401

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class AuthorizationError(TicketDeskError):
    """The caller's role or relationship to the resource does not allow the action. HTTP 403."""

    status_code = 403

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message)


class NotFoundError(TicketDeskError):
    """Raised when a requested resource (row or file on disk) does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "Ticket", "Attachment").
        resource_id: The key that was looked up. Included in the message.
    """

    status_code = 404

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ConflictError(TicketDeskError):
    """Raised when an operation would duplicate a unique field.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    status_code = 409

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class InternalError(TicketDeskError):
    """Unexpected failure (usually persistence). The original cause is logged, never returned."""

    status_code = 500

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)
