"""Test task service — QA tasks assigned to testers.

Builds on ``task_service`` with ``model=TestTask``. Differences from
development tasks:
    - every assignee must hold the ``tester`` role
    - admins changing the status notify the assignees
    - a reported blocker notifies the admins
"""
import logging

from sqlalchemy import or_

from ticketdesk.core.exceptions import ValidationError
from ticketdesk.core.roles import Role, parse_role, policy_for
from ticketdesk.models.task import TEST_ENVIRONMENTS, Task, TestTask
from ticketdesk.models.user import User
from ticketdesk.services import task_service
from ticketdesk.services.notification import NotificationService
from ticketdesk.utils.helpers import get_or_404, parse_id, parse_number, require_choice

logger = logging.getLogger(__name__)


def _testers(ids):
    users = task_service.resolve_users(ids)
    if any(u.role != Role.TESTER.value for u in users):
        raise ValidationError("All assigned users must be testers", details={"assigned_to": "invalid"})
    return users


def _test_columns(data):
    extra = {}
    if data.get("test_environment"):
        extra["test_environment"] = require_choice(data["test_environment"], TEST_ENVIRONMENTS, "test_environment")
    if data.get("test_coverage") not in (None, ""):
        extra["test_coverage"] = parse_number(
            data["test_coverage"], "test_coverage", minimum=0, maximum=100, integer=True,
        )
    if data.get("related_task_id"):
        related_id = parse_id(data["related_task_id"], "related_task_id")
        extra["related_task_id"] = get_or_404(Task, related_id, resource="Related task").id
    return extra


def visible_test_tasks_clause(user):
    """Oversight roles list every test task; everyone else their own or assigned."""
    if policy_for(user.role).task_oversight:
        return None
    return or_(Task.created_by_id == user.id, Task.assignees.any(User.id == user.id))


# ── Notification hooks ───────────────────────────────────────────────────────


def notify_admin_status_change(task, old, new, actor):
    """Only an admin's status change is announced, to the assignees."""
    if parse_role(actor.role) is not Role.ADMIN:
        return
    NotificationService.create_notifications(
        task.assignee_ids,
        f'{actor.full_name} changed the status of test task "{task.name}" to "{new}".',
        task.id, TestTask.NOTIFICATION_MODEL,
    )


def notify_admins_of_blocker(task, blocker, actor):
    NotificationService.notify_test_task_blocker_reported(
        NotificationService.admin_ids(), task.id, task.name, actor.full_name,
    )


# ── Operations ───────────────────────────────────────────────────────────────


def create_test_task(data, actor, files=()):
    assignees = _testers(data.get("assigned_to"))
    return task_service.create_task(
        data, actor, files, model=TestTask, extra=_test_columns(data), assignees=assignees,
    )


def list_test_tasks(actor, filters=None):
    return task_service.list_tasks(actor, filters, model=TestTask, visibility=visible_test_tasks_clause)


def get_test_task(task_id, actor):
    return task_service.get_task(task_id, actor, model=TestTask)


def update_test_task(task_id, data, actor, files=()):
    assignees = _testers(data["assigned_to"]) if "assigned_to" in data else None
    return task_service.update_task(
        task_id, data, actor, files, model=TestTask,
        on_status_change=notify_admin_status_change,
        assignees=assignees, extra=_test_columns(data),
    )


def change_status(task_id, status, actor):
    if not status:
        raise ValidationError("status is required", details={"status": "required"})
    return update_test_task(task_id, {"status": status}, actor)


def add_comment(task_id, text, actor, mentions=None, files=()):
    return task_service.add_comment(task_id, text, actor, mentions, files, model=TestTask)


def report_blocker(task_id, reason, actor):
    """Force ``blocked`` and tell the admins."""
    return task_service.report_blocker(
        task_id, reason, actor, model=TestTask, on_blocked=notify_admins_of_blocker,
    )


def resolve_blocker(task_id, blocker_id, notes, actor):
    return task_service.resolve_blocker(task_id, blocker_id, notes, actor, model=TestTask)


def get_attachment_path(task_id, attachment_id, actor):
    return task_service.get_attachment_path(task_id, attachment_id, actor, model=TestTask)
