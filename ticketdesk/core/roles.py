"""
Closed role set and the per-role policy table.

Every role string entering the system is parsed into ``Role``; an unknown
string is a ValidationError, never a silent fallthrough. ``ROLE_POLICIES``
must hold one entry per role, which is checked when this module is imported.

Usage:
    from ticketdesk.core.roles import Role, policy_for

    policy = policy_for(user.role)
    if not policy.ticket_scope: ...
"""

import enum
from dataclasses import dataclass

from ticketdesk.core.exceptions import ValidationError


class Role(str, enum.Enum):
    CLIENT = "client"
    RESPONSIBLE_CLIENT = "responsibleClient"
    AGENT_COMMERCIAL = "agentCommercial"
    PROJECT_MANAGER = "projectManager"
    GROUP_LEADER = "groupLeader"
    DEVELOPER = "developer"
    TESTER = "tester"
    RESPONSIBLE_TESTER = "responsibleTester"
    ADMIN = "admin"

    def __str__(self):
        return self.value


ALL_ROLES = tuple(r.value for r in Role)


# ── Task visibility scopes ───────────────────────────────────────────────
TASK_SCOPE_ALL = "all"
TASK_SCOPE_CREATED_OR_ASSIGNED = "created_or_assigned"
TASK_SCOPE_TEAM = "team"            # created, assigned, or created by own group leaders
TASK_SCOPE_TESTING = "testing"      # tasks in Testing status
TASK_SCOPE_ASSIGNED = "assigned"


@dataclass(frozen=True)
class RolePolicy:
    """What a role may see and do.

    ticket_scope: Ticket columns granting visibility. ``None`` means every ticket.
    tickets_via_tasks: the role also sees tickets behind tasks assigned to it.
    task_scope: one of the TASK_SCOPE_* constants.
    task_oversight: may read and comment on any task.
    parent_field / parent_role: hierarchical parent the role requires.
    ticket_self_slot: ticket column set to the creator when this role creates a ticket.
    requires_client_id: creating a ticket needs an explicit target client.
    assignable_slots: payload keys of AssignRoles this role may set.
    available_user_roles: roles of the users this role may pick for assignments.
    """

    ticket_scope: tuple[str, ...] | None
    task_scope: str
    tickets_via_tasks: bool = False
    task_oversight: bool = False
    parent_field: str | None = None
    parent_role: "Role | None" = None
    ticket_self_slot: str | None = None
    requires_client_id: bool = False
    assignable_slots: tuple[str, ...] = ()
    available_user_roles: tuple[str, ...] = ()


ROLE_POLICIES: dict[Role, RolePolicy] = {
    Role.ADMIN: RolePolicy(
        ticket_scope=None,
        task_scope=TASK_SCOPE_ALL,
        task_oversight=True,
        assignable_slots=(
            "responsible_client", "commercial", "group_leader",
            "project_manager", "responsible_tester",
        ),
        available_user_roles=(
            "agentCommercial", "responsibleClient", "groupLeader", "projectManager",
            "developer", "tester", "responsibleTester",
        ),
    ),
    Role.CLIENT: RolePolicy(
        ticket_scope=("client_id",),
        task_scope=TASK_SCOPE_ASSIGNED,
        ticket_self_slot="client_id",
    ),
    Role.AGENT_COMMERCIAL: RolePolicy(
        ticket_scope=("agent_commercial_id", "created_by_id"),
        task_scope=TASK_SCOPE_ASSIGNED,
        ticket_self_slot="agent_commercial_id",
        requires_client_id=True,
        assignable_slots=("group_leader", "project_manager"),
        available_user_roles=("groupLeader", "projectManager"),
    ),
    Role.RESPONSIBLE_CLIENT: RolePolicy(
        ticket_scope=("responsible_client_id", "client_id"),
        task_scope=TASK_SCOPE_TEAM,
        ticket_self_slot="responsible_client_id",
        requires_client_id=True,
        available_user_roles=("agentCommercial", "groupLeader"),
    ),
    Role.GROUP_LEADER: RolePolicy(
        ticket_scope=("group_leader_id",),
        task_scope=TASK_SCOPE_CREATED_OR_ASSIGNED,
        parent_field="project_manager_id",
        parent_role=Role.PROJECT_MANAGER,
        available_user_roles=("developer",),
    ),
    Role.PROJECT_MANAGER: RolePolicy(
        ticket_scope=("project_manager_id",),
        task_scope=TASK_SCOPE_TEAM,
        task_oversight=True,
        available_user_roles=("groupLeader", "developer"),
    ),
    Role.RESPONSIBLE_TESTER: RolePolicy(
        ticket_scope=("responsible_tester_id",),
        task_scope=TASK_SCOPE_TESTING,
        task_oversight=True,
        available_user_roles=("tester",),
    ),
    Role.DEVELOPER: RolePolicy(
        ticket_scope=(),
        task_scope=TASK_SCOPE_ASSIGNED,
        tickets_via_tasks=True,
        parent_field="group_leader_id",
        parent_role=Role.GROUP_LEADER,
    ),
    Role.TESTER: RolePolicy(
        ticket_scope=(),
        task_scope=TASK_SCOPE_ASSIGNED,
        tickets_via_tasks=True,
        parent_field="responsible_tester_id",
        parent_role=Role.RESPONSIBLE_TESTER,
    ),
}

_missing = [r.value for r in Role if r not in ROLE_POLICIES]
if _missing:
    raise RuntimeError(f"ROLE_POLICIES has no entry for roles: {_missing}")


def parse_role(value) -> Role:
    """Turn a role string (or Role) into a Role, rejecting unknown values."""
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        raise ValidationError(
            f"Invalid role: {value!r}. Must be one of: {list(ALL_ROLES)}",
            details={"role": "invalid"},
        ) from None


def policy_for(role) -> RolePolicy:
    return ROLE_POLICIES[parse_role(role)]
