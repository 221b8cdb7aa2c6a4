"""
User Service — account CRUD, reporting hierarchy, preferences, suspension.
"""

import logging

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import select

from ticketdesk.core.exceptions import AuthorizationError, ConflictError, ValidationError
from ticketdesk.core.roles import Role, parse_role, policy_for
from ticketdesk.models import db
from ticketdesk.models.company import Company
from ticketdesk.models.user import SUPPORTED_LANGUAGES, User
from ticketdesk.utils.crypto import hash_password, verify_password
from ticketdesk.utils.helpers import commit_or_raise, get_or_404, parse_id, require_fields

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
HIERARCHY_FIELDS = ("project_manager_id", "group_leader_id", "responsible_tester_id")


def normalize_email(email):
    try:
        return validate_email(email or "", check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", details={"email": "invalid"}) from e


def _ensure_email_free(email, exclude_id=None):
    q = User.query.filter(User.email == email)
    if exclude_id is not None:
        q = q.filter(User.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("User", "email", email)


def _apply_hierarchy(user, role, data):
    """Set the reporting-chain parent the role requires and clear the others."""
    policy = policy_for(role)
    for field in HIERARCHY_FIELDS:
        if field != policy.parent_field:
            setattr(user, field, None)
    if policy.parent_field is None:
        return

    parent_id = data.get(policy.parent_field)
    if parent_id in (None, ""):
        parent_id = getattr(user, policy.parent_field)
    if parent_id in (None, ""):
        raise ValidationError(
            f"{policy.parent_field} is required for role {role.value}",
            details={policy.parent_field: "required"},
        )
    parent = db.session.get(User, parse_id(parent_id, policy.parent_field))
    if parent is None or parent.role != policy.parent_role.value:
        raise ValidationError(
            f"{policy.parent_field} must reference a user with role {policy.parent_role.value}",
            details={policy.parent_field: "invalid"},
        )
    setattr(user, policy.parent_field, parent.id)


def _apply_company(user, data):
    if "company_id" not in data:
        return
    company_id = data.get("company_id")
    if company_id in (None, ""):
        user.company_id = None
        return
    company = db.session.get(Company, parse_id(company_id, "company_id"))
    if company is None:
        raise ValidationError("company_id does not reference a company", details={"company_id": "invalid"})
    user.company_id = company.id


# ═══════════════════════════════════════════════════════════════
# User CRUD
# ═══════════════════════════════════════════════════════════════
def create_user(data, actor=None):
    """Register a new account.

    Rules:
        - e-mail must be unique (ConflictError)
        - an agentCommercial may only create client accounts
        - groupLeader / developer / tester need their hierarchical parent
    """
    require_fields(data, "first_name", "last_name", "email", "password", "role")
    role = parse_role(data["role"])
    email = normalize_email(data["email"])

    if actor is not None and parse_role(actor.role) is Role.AGENT_COMMERCIAL and role is not Role.CLIENT:
        raise AuthorizationError("Commercial agents can only create client accounts")

    password = data["password"]
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters", details={"password": "too_short"},
        )

    _ensure_email_free(email)

    user = User(
        first_name=data["first_name"].strip(),
        last_name=data["last_name"].strip(),
        email=email,
        phone=data.get("phone"),
        role=role.value,
        password_hash=hash_password(password),
        preferred_language=data.get("preferred_language") or "en",
        created_by_id=actor.id if actor is not None else None,
    )
    _apply_hierarchy(user, role, data)
    _apply_company(user, data)

    db.session.add(user)
    commit_or_raise("create user")
    logger.info("User %d created (%s, role=%s) by %s",
                user.id, user.email, user.role, actor.id if actor else "system")
    return user


def get_user(user_id):
    return get_or_404(User, user_id, resource="User")


def list_users(exclude_id=None):
    q = User.query
    if exclude_id is not None:
        q = q.filter(User.id != exclude_id)
    return q.order_by(User.first_name, User.last_name).all()


def users_by_role(role):
    role = parse_role(role)
    return User.query.filter_by(role=role.value).order_by(User.first_name).all()


def available_users(actor):
    """Users the actor may pick for assignments, grouped by role."""
    roles = policy_for(actor.role).available_user_roles
    grouped = {r: [] for r in roles}
    if not roles:
        return grouped
    rows = db.session.execute(
        select(User).where(User.role.in_(roles), User.is_suspended.is_(False)).order_by(User.first_name)
    ).scalars()
    for user in rows:
        grouped[user.role].append(user.to_summary())
    return grouped


def _active(role, **filters):
    return (
        User.query.filter_by(role=role, is_suspended=False, **filters)
        .order_by(User.first_name).all()
    )


def hierarchy():
    """projectManager → groupLeaders → developers, suspended users left out."""
    tree = []
    for pm in _active(Role.PROJECT_MANAGER.value):
        leaders = []
        for gl in _active(Role.GROUP_LEADER.value, project_manager_id=pm.id):
            node = gl.to_summary()
            node["developers"] = [d.to_summary() for d in _active(Role.DEVELOPER.value, group_leader_id=gl.id)]
            leaders.append(node)
        node = pm.to_summary()
        node["group_leaders"] = leaders
        tree.append(node)
    return tree


def leaders_with_developers():
    result = []
    for gl in _active(Role.GROUP_LEADER.value):
        node = gl.to_summary()
        node["developers"] = [d.to_summary() for d in _active(Role.DEVELOPER.value, group_leader_id=gl.id)]
        result.append(node)
    return result


def testers():
    return User.query.filter_by(role=Role.TESTER.value).order_by(User.first_name).all()


def testers_with_responsible():
    result = []
    for rt in _active(Role.RESPONSIBLE_TESTER.value):
        node = rt.to_summary()
        node["testers"] = [t.to_summary() for t in _active(Role.TESTER.value, responsible_tester_id=rt.id)]
        result.append(node)
    return result


def clients_created_by(creator_id):
    return _active(Role.CLIENT.value, created_by_id=creator_id)


def update_user(user_id, data, actor):
    """Update profile fields. Agents may only edit client accounts."""
    user = get_user(user_id)
    actor_role = parse_role(actor.role)
    if actor_role is Role.AGENT_COMMERCIAL and user.role != Role.CLIENT.value:
        raise AuthorizationError("Commercial agents can only edit client accounts")

    if "email" in data and data["email"] != user.email:
        email = normalize_email(data["email"])
        _ensure_email_free(email, exclude_id=user.id)
        user.email = email

    for field in ("first_name", "last_name", "phone"):
        if field in data and data[field] is not None:
            setattr(user, field, data[field])

    role = parse_role(user.role)
    if "role" in data and data["role"] != user.role:
        if actor_role is not Role.ADMIN:
            raise AuthorizationError("Only administrators can change roles")
        role = parse_role(data["role"])
        user.role = role.value
    if "role" in data or any(f in data for f in HIERARCHY_FIELDS):
        _apply_hierarchy(user, role, data)
    _apply_company(user, data)

    commit_or_raise("update user")
    logger.info("User %d updated by %d", user.id, actor.id)
    return user


def change_password(user_id, data, actor):
    """Self-service change checks the current password; admins may reset others."""
    user = get_user(user_id)
    new_password = data.get("new_password") or ""
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters", details={"new_password": "too_short"},
        )

    if actor.id == user.id:
        if not verify_password(data.get("current_password") or "", user.password_hash):
            raise ValidationError("Current password is incorrect", details={"current_password": "invalid"})
    elif parse_role(actor.role) is not Role.ADMIN:
        raise AuthorizationError("You can only change your own password")

    user.password_hash = hash_password(new_password)
    commit_or_raise("change password")
    logger.info("Password changed for user %d by %d", user.id, actor.id)
    return user


def delete_user(user_id, actor):
    user = get_user(user_id)
    if user.id == actor.id:
        raise ValidationError("You cannot delete your own account")
    if parse_role(actor.role) is Role.AGENT_COMMERCIAL and user.role != Role.CLIENT.value:
        raise AuthorizationError("Commercial agents can only delete client accounts")
    db.session.delete(user)
    commit_or_raise("delete user")
    logger.info("User %d deleted by %d", user_id, actor.id)


# ═══════════════════════════════════════════════════════════════
# Preferences & suspension
# ═══════════════════════════════════════════════════════════════
def update_preferences(user, data):
    language = data.get("language", data.get("preferred_language"))
    if language is not None:
        if language not in SUPPORTED_LANGUAGES:
            raise ValidationError(
                f"Unsupported language. Must be one of: {list(SUPPORTED_LANGUAGES)}",
                details={"language": "invalid"},
            )
        user.preferred_language = language
    commit_or_raise("update preferences")
    return user


def set_suspended(user_id, suspended, actor):
    """Suspend or reinstate an account. Admins cannot suspend themselves."""
    user = get_user(user_id)
    if user.id == actor.id:
        raise ValidationError("You cannot suspend your own account")
    user.is_suspended = bool(suspended)
    commit_or_raise("suspend user")
    logger.info("User %d %s by admin %d", user.id, "suspended" if suspended else "reinstated", actor.id)
    return user


def find_by_email(email):
    if not email:
        return None
    return User.query.filter(db.func.lower(User.email) == email.strip().lower()).first()

