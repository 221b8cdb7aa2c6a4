"""
Resource-level access rules.

Route decorators check the caller's role; the functions here check the
caller's relationship to a specific ticket, task or company. Both list
filters and single-record checks read the same ``ROLE_POLICIES`` table, so a
record a role can list is a record it can open.
"""

import logging

from sqlalchemy import false, or_, select

from ticketdesk.core.exceptions import AuthorizationError
from ticketdesk.core.roles import (
    TASK_SCOPE_ALL,
    TASK_SCOPE_CREATED_OR_ASSIGNED,
    TASK_SCOPE_TEAM,
    TASK_SCOPE_TESTING,
    Role,
    parse_role,
    policy_for,
)
from ticketdesk.models import db
from ticketdesk.models.task import Task, task_assignees
from ticketdesk.models.ticket import Ticket
from ticketdesk.models.user import User

logger = logging.getLogger(__name__)

# Relationships that let a user open a ticket
TICKET_ACCESS_FIELDS = (
    "client_id", "responsible_client_id", "agent_commercial_id",
    "group_leader_id", "project_manager_id", "created_by_id", "responsible_tester_id",
)


def is_admin(user) -> bool:
    return parse_role(user.role) is Role.ADMIN


def _assigned_task_ids(user_id):
    return select(task_assignees.c.task_id).where(task_assignees.c.user_id == user_id)


# ── Tickets ──────────────────────────────────────────────────────────────────

def ticket_visibility_clause(user):
    """WHERE clause limiting tickets to the user's role scope; None means unrestricted."""
    policy = policy_for(user.role)
    if policy.ticket_scope is None:
        return None
    conditions = [getattr(Ticket, column) == user.id for column in policy.ticket_scope]
    if policy.tickets_via_tasks:
        conditions.append(Ticket.id.in_(
            select(Task.ticket_id).where(
                Task.ticket_id.is_not(None), Task.id.in_(_assigned_task_ids(user.id)),
            )
        ))
    return or_(*conditions) if conditions else false()


def _works_on_ticket(user, ticket) -> bool:
    return db.session.execute(
        select(Task.id).where(
            Task.ticket_id == ticket.id, Task.id.in_(_assigned_task_ids(user.id)),
        ).limit(1)
    ).first() is not None


def can_view_ticket(user, ticket) -> bool:
    if is_admin(user):
        return True
    if any(getattr(ticket, field) == user.id for field in TICKET_ACCESS_FIELDS):
        return True
    return policy_for(user.role).tickets_via_tasks and _works_on_ticket(user, ticket)


def ensure_ticket_access(user, ticket):
    if not can_view_ticket(user, ticket):
        logger.warning("User %d (%s) denied access to ticket %d", user.id, user.role, ticket.id)
        raise AuthorizationError("You are not authorized to access this ticket")


# ── Tasks ────────────────────────────────────────────────────────────────────

def task_visibility_clause(user):
    """WHERE clause for task listings by role; None means unrestricted."""
    scope = policy_for(user.role).task_scope
    created = Task.created_by_id == user.id
    assigned = Task.id.in_(_assigned_task_ids(user.id))

    if scope == TASK_SCOPE_ALL:
        return None
    if scope == TASK_SCOPE_CREATED_OR_ASSIGNED:
        return or_(created, assigned)
    if scope == TASK_SCOPE_TEAM:
        leaders = select(User.id).where(
            User.role == Role.GROUP_LEADER.value, User.project_manager_id == user.id,
        )
        return or_(created, assigned, Task.created_by_id.in_(leaders))
    if scope == TASK_SCOPE_TESTING:
        return Task.status == "Testing"
    return assigned


def can_view_task(user, task) -> bool:
    policy = policy_for(user.role)
    if policy.task_oversight:
        return True
    if task.created_by_id == user.id or user.id in task.assignee_ids:
        return True
    if policy.task_scope == TASK_SCOPE_TEAM and task.created_by is not None:
        creator = task.created_by
        return creator.role == Role.GROUP_LEADER.value and creator.project_manager_id == user.id
    if policy.task_scope == TASK_SCOPE_TESTING:
        return task.status == "Testing"
    return False


def can_work_on_task(user, task) -> bool:
    """Comment / attach / report blockers: oversight roles, creator or assignee."""
    if policy_for(user.role).task_oversight:
        return True
    return task.created_by_id == user.id or user.id in task.assignee_ids


def ensure_task_access(user, task, *, write=False):
    allowed = can_work_on_task(user, task) if write else can_view_task(user, task)
    if not allowed:
        logger.warning("User %d (%s) denied %s access to task %d",
                       user.id, user.role, "write" if write else "read", task.id)
        raise AuthorizationError("You are not authorized to access this task")


# ── Companies ────────────────────────────────────────────────────────────────

def ensure_company_member(user, company):
    """Clients may only touch the company they belong to."""
    if parse_role(user.role) is Role.CLIENT and user.company_id != company.id:
        raise AuthorizationError("You can only access your own company")


def ensure_company_document_uploader(user, company):
    role = parse_role(user.role)
    if role is Role.ADMIN:
        return
    if role is Role.CLIENT and user.company_id == company.id:
        return
    if role is Role.AGENT_COMMERCIAL and company.commercial_agent_id == user.id:
        return
    raise AuthorizationError("You are not allowed to upload documents for this company")
