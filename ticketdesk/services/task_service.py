"""Task service layer — development tasks and the shared task workflow.

Test tasks live in the same table (``TestTask`` subclasses ``Task``), so every
function takes a ``model`` argument; ``test_task_service`` calls in with
``model=TestTask`` and its own status / blocker notification hooks.

Transaction policy: each public function commits through ``commit_or_raise``
and notifies afterwards.
"""
import logging
import random
from datetime import datetime

from ticketdesk.core.exceptions import NotFoundError, ValidationError
from ticketdesk.models import db, utcnow
from ticketdesk.models.task import TASK_URGENCIES, Task, TaskAttachment, TaskBlocker, TaskComment, TaskCommentMention
from ticketdesk.models.ticket import Ticket
from ticketdesk.models.user import User
from ticketdesk.services import storage
from ticketdesk.services.access_policy import ensure_task_access, ensure_ticket_access, task_visibility_clause
from ticketdesk.services.notification import NotificationService
from ticketdesk.utils.helpers import (
    commit_or_raise,
    get_or_404,
    id_list,
    parse_datetime,
    parse_id,
    parse_number,
    require_choice,
    require_fields,
)

logger = logging.getLogger(__name__)

NUMBER_ATTEMPTS = 5
DATE_FIELDS = ("due_date", "start_date", "completion_date")
HOUR_FIELDS = ("estimated_hours", "actual_hours")


# ── Helpers ──────────────────────────────────────────────────────────────────


def _identity(model):
    return model.__mapper__.polymorphic_identity


def generate_task_number(model=Task, now=None):
    """``<PREFIX>-<YYYYMMDD>-<4 random digits>``, unique across all tasks."""
    now = now or datetime.now()
    for _ in range(NUMBER_ATTEMPTS):
        number = f"{model.NUMBER_PREFIX}-{now:%Y%m%d}-{random.randint(0, 9999):04d}"
        if Task.query.filter_by(number=number).first() is None:
            return number
    raise ValidationError("Could not allocate a task number, retry the request")


def _query(model):
    return model.query.filter(Task.kind == _identity(model))


def find_task(task_id, model=Task):
    task = db.session.get(model, task_id)
    if task is None or task.kind != _identity(model):
        raise NotFoundError(model.__name__, task_id)
    return task


def load_task(task_id, actor, model=Task, write=False):
    task = find_task(task_id, model)
    ensure_task_access(actor, task, write=write)
    return task


def resolve_users(ids, field="assigned_to"):
    """Users for ``ids`` in the given order; ValidationError when one is unknown."""
    ids = list(dict.fromkeys(id_list(ids, field)))
    if not ids:
        return []
    users = {u.id: u for u in User.query.filter(User.id.in_(ids)).all()}
    missing = [i for i in ids if i not in users]
    if missing:
        raise ValidationError(f"Unknown users in {field}: {missing}", details={field: "invalid"})
    return [users[i] for i in ids]


def _task_folder(task):
    return storage.task_folder(task.number, test_task=task.kind != "task")


def _attach(task, files, actor):
    stored = storage.save_files(files, _task_folder(task)) if files else []
    for item in stored:
        task.attachments.append(TaskAttachment(name=item.name, path=item.path, uploaded_by_id=actor.id))
    return stored


def _commit_with_files(context, stored):
    try:
        commit_or_raise(context)
    except Exception:
        storage.remove_files([s.path for s in stored])
        raise


def _with_admins(ids):
    ids = list(ids)
    for admin_id in NotificationService.admin_ids():
        if admin_id not in ids:
            ids.append(admin_id)
    return ids


def notify_status_change(task, old, new, actor):
    """Default hook: assignees and admins hear about every status change."""
    NotificationService.create_notifications(
        _with_admins(task.assignee_ids),
        f'{actor.full_name} changed the status of task "{task.name}" from {old} to {new}',
        task.id, task.NOTIFICATION_MODEL,
    )


def notify_blocked(task, blocker, actor):
    """Default hook: creator and assignees, minus the reporter."""
    recipients = [uid for uid in [task.created_by_id, *task.assignee_ids] if uid != actor.id]
    NotificationService.notify_task_blocked_or_declined(
        list(dict.fromkeys(recipients)), task.id, task.name, actor.full_name, "blocked",
        model=task.NOTIFICATION_MODEL,
    )


# ── Create ───────────────────────────────────────────────────────────────────


def create_task(data, actor, files=(), model=Task, extra=None, assignees=None):
    """Create a task, notify assignees and explicitly mentioned users.

    ``extra`` carries subclass columns; ``assignees`` lets callers pass users
    they already resolved and checked.
    """
    require_fields(data, "name", "description")
    urgency = require_choice(data.get("urgency") or "Medium", TASK_URGENCIES, "urgency")
    priority = parse_number(data.get("priority"), "priority", minimum=1, maximum=5, integer=True) or 3
    if assignees is None:
        assignees = resolve_users(data.get("assigned_to"))
    mentioned = resolve_users(data.get("mentions"), "mentions")

    ticket_id = data.get("ticket_id") or None
    if ticket_id:
        ticket_id = get_or_404(Ticket, parse_id(ticket_id, "ticket_id"), resource="Ticket").id
    parent = None
    if data.get("parent_task_id"):
        parent = get_or_404(Task, parse_id(data["parent_task_id"], "parent_task_id"), resource="Parent task")

    task = model(
        number=generate_task_number(model),
        name=data["name"].strip(),
        description=data["description"],
        ticket_id=ticket_id,
        urgency=urgency,
        priority=priority,
        due_date=parse_datetime(data.get("due_date"), "due_date"),
        estimated_hours=parse_number(data.get("estimated_hours"), "estimated_hours", minimum=0),
        created_by_id=actor.id,
        assignees=assignees,
        **(extra or {}),
    )
    if parent is not None:
        parent.subtasks.append(task)
    task.record("created", actor.id)

    stored = _attach(task, files, actor)
    db.session.add(task)
    _commit_with_files(f"create {_identity(model)}", stored)
    logger.info("%s %s created by user %d (assignees=%s)",
                model.__name__, task.number, actor.id, task.assignee_ids)

    if assignees:
        NotificationService.notify_task_assignment(
            task.assignee_ids, task.id, task.name, actor.full_name, model=model.NOTIFICATION_MODEL,
        )
    if mentioned:
        NotificationService.create_notifications(
            [u.id for u in mentioned],
            f"{actor.full_name} mentioned you in task: {task.name}",
            task.id, model.NOTIFICATION_MODEL,
        )
    return task


# ── Read ─────────────────────────────────────────────────────────────────────


def _paginate(q, filters, order):
    total = q.count()
    limit = parse_number(filters.get("limit"), "limit", minimum=1, maximum=200, integer=True) or 50
    offset = parse_number(filters.get("offset"), "offset", minimum=0, integer=True) or 0
    return q.order_by(*order).offset(offset).limit(limit).all(), total


def list_tasks(actor, filters=None, model=Task, visibility=task_visibility_clause):
    """Tasks visible to ``actor``, newest first. Returns (items, total).

    ``filter=created|assigned`` narrows the role scope further.
    """
    filters = filters or {}
    q = _query(model)
    clause = visibility(actor)
    if clause is not None:
        q = q.filter(clause)

    narrow = filters.get("filter")
    if narrow == "created":
        q = q.filter(Task.created_by_id == actor.id)
    elif narrow == "assigned":
        q = q.filter(Task.assignees.any(User.id == actor.id))

    if filters.get("status"):
        statuses = [s for s in str(filters["status"]).split(",") if s]
        for status in statuses:
            require_choice(status, model.STATUSES, "status")
        q = q.filter(Task.status.in_(statuses))
    if filters.get("ticket_id"):
        q = q.filter(Task.ticket_id == parse_id(filters["ticket_id"], "ticket_id"))

    return _paginate(q, filters, (Task.created_at.desc(), Task.id.desc()))


def get_task(task_id, actor, model=Task):
    return load_task(task_id, actor, model)


def testing_tasks(actor):
    """Visible development tasks waiting in Testing."""
    items, _ = list_tasks(actor, {"status": "Testing", "limit": 200})
    return items


def blocked_subtasks(task_id, actor):
    task = load_task(task_id, actor)
    return [t for t in task.subtasks if t.status == t.BLOCKED_STATUS]


def tasks_for_ticket(ticket_id, actor):
    ticket = get_or_404(Ticket, ticket_id, resource="Ticket")
    ensure_ticket_access(actor, ticket)
    return _query(Task).filter(Task.ticket_id == ticket.id).order_by(Task.created_at.desc()).all()


# ── Update ───────────────────────────────────────────────────────────────────


def update_task(task_id, data, actor, files=(), model=Task, on_status_change=notify_status_change,
                assignees=None, extra=None):
    """Apply field changes and record exactly one history entry for them.

    A status change records ``statusChanged`` and runs ``on_status_change``
    after the commit; any other change records ``updated``. A new assignee
    set records ``assigned`` and notifies the users who were not assigned yet.
    """
    task = load_task(task_id, actor, model, write=True)
    old_status = task.status
    updated = []

    for field in ("name", "description"):
        if data.get(field):
            setattr(task, field, data[field])
            updated.append(field)
    if data.get("urgency"):
        task.urgency = require_choice(data["urgency"], TASK_URGENCIES, "urgency")
        updated.append("urgency")
    if data.get("priority") not in (None, ""):
        task.priority = parse_number(data["priority"], "priority", minimum=1, maximum=5, integer=True)
        updated.append("priority")
    for field in DATE_FIELDS:
        if field in data:
            setattr(task, field, parse_datetime(data[field], field))
            updated.append(field)
    for field in HOUR_FIELDS:
        if field in data:
            setattr(task, field, parse_number(data[field], field, minimum=0))
            updated.append(field)
    for field, value in (extra or {}).items():
        setattr(task, field, value)
        updated.append(field)

    new_status = data.get("status")
    if new_status:
        require_choice(new_status, model.STATUSES, "status")
        task.status = new_status

    newly_assigned = []
    if "assigned_to" in data:
        if assignees is None:
            assignees = resolve_users(data["assigned_to"])
        if [u.id for u in assignees] != task.assignee_ids:
            newly_assigned = [u.id for u in assignees if u.id not in task.assignee_ids]
            task.assignees = assignees
            task.record("assigned", actor.id, {"assignedTo": [u.id for u in assignees]})

    if new_status and new_status != old_status:
        task.record("statusChanged", actor.id, {"previousStatus": old_status, "newStatus": new_status})
    elif updated:
        task.record("updated", actor.id, {"updatedFields": updated})

    stored = _attach(task, files, actor)
    task.updated_at = utcnow()
    _commit_with_files(f"update {_identity(model)}", stored)
    logger.info("%s %s updated by user %d", model.__name__, task.number, actor.id)

    if new_status and new_status != old_status and on_status_change is not None:
        on_status_change(task, old_status, new_status, actor)
    if newly_assigned:
        NotificationService.notify_task_assignment(
            newly_assigned, task.id, task.name, actor.full_name, model=model.NOTIFICATION_MODEL,
        )
    return task


# ── Comments ─────────────────────────────────────────────────────────────────


def add_comment(task_id, text, actor, mentions=None, files=(), model=Task):
    """Comment on a task; @mentions and explicit ``mentions`` ids are notified."""
    text = (text or "").strip()
    if not text:
        raise ValidationError("Comment text is required", details={"text": "required"})
    task = load_task(task_id, actor, model, write=True)

    tokens = NotificationService.extract_mentions(text)
    at_mentioned = NotificationService.find_users_by_mentions(tokens) if tokens else []
    explicit = [u.id for u in resolve_users(mentions, "mentions") if u.id not in at_mentioned]

    stored = storage.save_files(files, f"{_task_folder(task)}/comments") if files else []
    comment = TaskComment(
        text=text,
        author_id=actor.id,
        files=[{"name": s.name, "path": s.path} for s in stored],
    )
    for uid in at_mentioned + explicit:
        comment.mentions.append(TaskCommentMention(user_id=uid, notified=False))
    task.comments.append(comment)
    task.record("commented", actor.id)
    _commit_with_files("add task comment", stored)

    notified = set()
    if at_mentioned and NotificationService.process_mentions(
        text, actor.full_name, task.id, model.NOTIFICATION_MODEL,
    ):
        notified.update(at_mentioned)
    if explicit and NotificationService.create_notifications(
        explicit,
        f"{actor.full_name} mentioned you in a comment on task: {task.name}",
        task.id, model.NOTIFICATION_MODEL,
    ):
        notified.update(explicit)
    if notified:
        for mention in comment.mentions:
            mention.notified = mention.user_id in notified
        commit_or_raise("mark task mentions notified")
    return task


# ── Blockers ─────────────────────────────────────────────────────────────────


def report_blocker(task_id, reason, actor, model=Task, on_blocked=notify_blocked):
    """Record a blocker and force the blocked status. Returns the blocker."""
    if not reason or not str(reason).strip():
        raise ValidationError("Reason is required", details={"reason": "required"})
    task = load_task(task_id, actor, model, write=True)

    blocker = TaskBlocker(reason=str(reason).strip(), created_by_id=actor.id)
    task.blockers.append(blocker)
    task.status = model.BLOCKED_STATUS
    task.record("blocked", actor.id, {"reason": blocker.reason})
    task.updated_at = utcnow()
    commit_or_raise("report task blocker")
    logger.info("%s %s blocked by user %d", model.__name__, task.number, actor.id)

    if on_blocked is not None:
        on_blocked(task, blocker, actor)
    return blocker


def resolve_blocker(task_id, blocker_id, notes, actor, model=Task):
    """Mark a blocker resolved. The task status is left for the caller to change."""
    task = load_task(task_id, actor, model, write=True)
    blocker = next((b for b in task.blockers if b.id == blocker_id), None)
    if blocker is None:
        raise NotFoundError("Blocker", blocker_id)
    if blocker.resolved:
        raise ValidationError("Blocker is already resolved")

    blocker.resolved = True
    blocker.resolved_at = utcnow()
    blocker.resolved_by_id = actor.id
    blocker.resolution_notes = notes
    task.record("unblocked", actor.id, {"blockerId": blocker.id})
    commit_or_raise("resolve task blocker")
    return blocker


# ── Attachments ──────────────────────────────────────────────────────────────


def get_attachment_path(task_id, attachment_id, actor, model=Task):
    """Return (attachment, absolute path) for the creator, an assignee or an oversight role."""
    task = load_task(task_id, actor, model, write=True)
    attachment = next((a for a in task.attachments if a.id == attachment_id), None)
    if attachment is None:
        raise NotFoundError("Attachment", attachment_id)
    return attachment, storage.resolve(attachment.path, resource="Attachment file")
