"""
Shared helpers for services and blueprints.

Eliminates duplicate lookup / commit / parsing code across the codebase.
"""

import json
import logging
from datetime import date, datetime, timezone

from flask import request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ticketdesk.core.exceptions import ConflictError, InternalError, NotFoundError, ValidationError
from ticketdesk.models import db

logger = logging.getLogger(__name__)


# ── Lookups ──────────────────────────────────────────────────────────────────

def get_or_404(model, pk, *, resource=None):
    """Fetch a model instance by primary key or raise NotFoundError."""
    obj = db.session.get(model, pk)
    if obj is None:
        raise NotFoundError(resource or model.__name__, pk)
    return obj


# ── Database commit helper ───────────────────────────────────────────────────

def commit_or_raise(context="commit"):
    """Commit the current session, mapping failures onto the error taxonomy.

    IntegrityError  → ConflictError (duplicate / constraint violation)
    Other DB errors → InternalError (original message logged, never returned)
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on %s: %s", context, exc.orig)
        raise ConflictError(context, "constraint", str(exc.orig)[:120]) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Database error on %s", context)
        raise InternalError("Database error") from exc


# ── Parsing ──────────────────────────────────────────────────────────────────

def parse_datetime(value, field="date"):
    """Parse an ISO-8601 date or datetime string into an aware datetime.

    Returns None for empty input; raises ValidationError on garbage.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(
            f"Invalid {field}. Use ISO-8601 (YYYY-MM-DD or YYYY-MM-DDTHH:MM).",
            details={field: "invalid"},
        ) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_number(value, field, *, minimum=None, maximum=None, integer=False):
    """Coerce ``value`` to int/float within optional bounds; None passes through."""
    if value in (None, ""):
        return None
    try:
        number = int(value) if integer else float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be a number", details={field: "invalid"}) from exc
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", details={field: "out_of_range"})
    if maximum is not None and number > maximum:
        raise ValidationError(f"{field} must be <= {maximum}", details={field: "out_of_range"})
    return number


def parse_id(value, field):
    """Positive integer id from a request value; ValidationError when malformed."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an id", details={field: "invalid"})
    number = parse_number(value, field, minimum=1, integer=True)
    if number is None:
        raise ValidationError(f"{field} is required", details={field: "required"})
    return number


def require_fields(data, *fields):
    """Raise ValidationError listing every missing/blank field."""
    missing = [f for f in fields if data.get(f) in (None, "") or (isinstance(data.get(f), str) and not data[f].strip())]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={f: "required" for f in missing},
        )


def require_choice(value, choices, field):
    if value not in choices:
        raise ValidationError(
            f"Invalid {field}. Must be one of: {list(choices)}",
            details={field: "invalid"},
        )
    return value


def id_list(value, field="ids"):
    """Normalise a scalar, list, or comma/JSON string into a list of int ids."""
    if value in (None, "", []):
        return []
    if isinstance(value, str):
        value = value.strip()
        if value.startswith("["):
            try:
                value = json.loads(value)
            except ValueError as exc:
                raise ValidationError(f"{field} must be a list of ids", details={field: "invalid"}) from exc
        else:
            value = [v for v in value.split(",") if v.strip()]
    if not isinstance(value, (list, tuple)):
        value = [value]
    try:
        return [int(v) for v in value]
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be a list of ids", details={field: "invalid"}) from exc


# ── Request payloads ─────────────────────────────────────────────────────────

def request_payload():
    """Return the request body as a dict, for both JSON and multipart requests.

    Multipart fields holding JSON arrays/objects (contacts, links, ...) are
    decoded so services see the same shapes either way.
    """
    if request.is_json:
        return request.get_json(silent=True) or {}
    data = {}
    for key in request.form:
        values = request.form.getlist(key)
        raw = values[0] if len(values) == 1 else values
        if isinstance(raw, str) and raw[:1] in ("[", "{"):
            try:
                raw = json.loads(raw)
            except ValueError:
                pass  # plain text that happens to start with a bracket
        data[key] = raw
    return data


def request_files(field="files"):
    """Uploaded files under ``field`` (empty list when none)."""
    return [f for f in request.files.getlist(field) if f and f.filename]
