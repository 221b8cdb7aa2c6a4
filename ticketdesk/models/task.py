"""
TicketDesk
Task workflow models.

Development tasks and test tasks share one table (single-table inheritance on
``kind``) and the same child tables for assignees, attachments, blockers,
comments and history.

Models:
    - Task: development task (ToDo .. Done)
    - TestTask: test task assigned to testers (pending .. passed/failed)
    - TaskAttachment, TaskBlocker, TaskComment, TaskCommentMention, TaskHistory
"""

from ticketdesk.models import db, iso, utcnow

# ── Constants ────────────────────────────────────────────────────────────────

TASK_STATUSES = ("ToDo", "InProgress", "Blocked", "Declined", "Testing", "Done")
TEST_TASK_STATUSES = ("pending", "inprogress", "passed", "failed", "blocked")
TASK_URGENCIES = ("Critical", "High", "Medium", "Low")
TEST_ENVIRONMENTS = ("Development", "Staging", "Production")
HISTORY_ACTIONS = (
    "created", "updated", "statusChanged", "assigned", "blocked", "unblocked", "commented", "tested",
)

task_assignees = db.Table(
    "task_assignees",
    db.Column("task_id", db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
    db.Column("user_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Task(db.Model):
    __tablename__ = "tasks"

    STATUSES = TASK_STATUSES
    DEFAULT_STATUS = "ToDo"
    BLOCKED_STATUS = "Blocked"
    NUMBER_PREFIX = "TASK"
    NOTIFICATION_MODEL = "Task"

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(20), nullable=False, default="task")
    number = db.Column(db.String(40), nullable=False, unique=True, index=True)
    name = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=False)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id", ondelete="SET NULL"), index=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), index=True)

    urgency = db.Column(db.String(20), default="Medium", nullable=False)
    priority = db.Column(db.Integer, default=3, nullable=False)
    status = db.Column(db.String(20), nullable=False, index=True)

    due_date = db.Column(db.DateTime(timezone=True))
    start_date = db.Column(db.DateTime(timezone=True))
    completion_date = db.Column(db.DateTime(timezone=True))
    estimated_hours = db.Column(db.Float)
    actual_hours = db.Column(db.Float)

    parent_task_id = db.Column(db.Integer, db.ForeignKey("tasks.id", ondelete="SET NULL"), index=True)

    # TestTask columns
    test_environment = db.Column(db.String(20))
    test_coverage = db.Column(db.Integer)
    related_task_id = db.Column(db.Integer, db.ForeignKey("tasks.id", ondelete="SET NULL"))

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.CheckConstraint("priority BETWEEN 1 AND 5", name="ck_task_priority"),
    )
    __mapper_args__ = {
        "polymorphic_on": kind,
        "polymorphic_identity": "task",
    }

    ticket = db.relationship("Ticket")
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    assignees = db.relationship("User", secondary=task_assignees, order_by="User.id")
    subtasks = db.relationship(
        "Task", foreign_keys=[parent_task_id],
        backref=db.backref("parent_task", remote_side=[id]),
        order_by="Task.id",
    )
    attachments = db.relationship(
        "TaskAttachment", back_populates="task", cascade="all, delete-orphan", order_by="TaskAttachment.id",
    )
    blockers = db.relationship(
        "TaskBlocker", back_populates="task", cascade="all, delete-orphan", order_by="TaskBlocker.id",
    )
    comments = db.relationship(
        "TaskComment", back_populates="task", cascade="all, delete-orphan", order_by="TaskComment.id",
    )
    history = db.relationship(
        "TaskHistory", back_populates="task", cascade="all, delete-orphan", order_by="TaskHistory.id",
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("status", self.DEFAULT_STATUS)
        super().__init__(**kwargs)

    @property
    def assignee_ids(self):
        return [u.id for u in self.assignees]

    def record(self, action, user_id, details=None):
        entry = TaskHistory(action=action, user_id=user_id, details=details or {})
        self.history.append(entry)
        return entry

    def to_summary(self):
        return {
            "id": self.id,
            "kind": self.kind,
            "number": self.number,
            "name": self.name,
            "status": self.status,
            "urgency": self.urgency,
            "priority": self.priority,
            "ticket_id": self.ticket_id,
            "assigned_to": [u.to_summary() for u in self.assignees],
            "due_date": iso(self.due_date),
            "created_at": iso(self.created_at),
        }

    def to_dict(self):
        d = self.to_summary()
        d.update({
            "description": self.description,
            "created_by_id": self.created_by_id,
            "start_date": iso(self.start_date),
            "completion_date": iso(self.completion_date),
            "estimated_hours": self.estimated_hours,
            "actual_hours": self.actual_hours,
            "parent_task_id": self.parent_task_id,
            "subtasks": [t.id for t in self.subtasks],
            "attachments": [a.to_dict() for a in self.attachments],
            "blockers": [b.to_dict() for b in self.blockers],
            "comments": [c.to_dict() for c in self.comments],
            "history": [h.to_dict() for h in self.history],
            "updated_at": iso(self.updated_at),
        })
        return d

    def __repr__(self):
        return f"<{type(self).__name__} {self.id}: {self.number} [{self.status}]>"


class TestTask(Task):
    """Test task; every assignee must hold the ``tester`` role."""

    __test__ = False  # not a pytest class

    STATUSES = TEST_TASK_STATUSES
    DEFAULT_STATUS = "pending"
    BLOCKED_STATUS = "blocked"
    NUMBER_PREFIX = "TEST"
    NOTIFICATION_MODEL = "TestTask"

    __mapper_args__ = {"polymorphic_identity": "test_task"}

    related_task = db.relationship("Task", foreign_keys=[Task.related_task_id], remote_side=[Task.id])

    def __init__(self, **kwargs):
        kwargs.setdefault("test_environment", "Staging")
        kwargs.setdefault("test_coverage", 0)
        super().__init__(**kwargs)

    def to_dict(self):
        d = super().to_dict()
        d.update({
            "test_environment": self.test_environment,
            "test_coverage": self.test_coverage,
            "related_task_id": self.related_task_id,
        })
        return d


class TaskAttachment(db.Model):
    __tablename__ = "task_attachments"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    path = db.Column(db.String(500), nullable=False, comment="Path relative to UPLOAD_FOLDER")
    uploaded_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    uploaded_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    task = db.relationship("Task", back_populates="attachments")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "uploaded_by_id": self.uploaded_by_id,
            "uploaded_at": iso(self.uploaded_at),
        }


class TaskBlocker(db.Model):
    __tablename__ = "task_blockers"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    reason = db.Column(db.Text, nullable=False)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    resolved = db.Column(db.Boolean, default=False, nullable=False)
    resolved_at = db.Column(db.DateTime(timezone=True))
    resolved_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    resolution_notes = db.Column(db.Text)

    task = db.relationship("Task", back_populates="blockers")

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "reason": self.reason,
            "created_by_id": self.created_by_id,
            "created_at": iso(self.created_at),
            "resolved": self.resolved,
            "resolved_at": iso(self.resolved_at),
            "resolved_by_id": self.resolved_by_id,
            "resolution_notes": self.resolution_notes,
        }


class TaskComment(db.Model):
    __tablename__ = "task_comments"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    text = db.Column(db.Text, nullable=False)
    author_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    files = db.Column(db.JSON, default=list)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    task = db.relationship("Task", back_populates="comments")
    author = db.relationship("User")
    mentions = db.relationship(
        "TaskCommentMention", back_populates="comment", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "text": self.text,
            "author_id": self.author_id,
            "author": self.author.full_name if self.author else None,
            "files": self.files or [],
            "mentions": [m.to_dict() for m in self.mentions],
            "created_at": iso(self.created_at),
        }


class TaskCommentMention(db.Model):
    __tablename__ = "task_comment_mentions"

    id = db.Column(db.Integer, primary_key=True)
    comment_id = db.Column(
        db.Integer, db.ForeignKey("task_comments.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    notified = db.Column(db.Boolean, default=False, nullable=False)

    comment = db.relationship("TaskComment", back_populates="mentions")

    def to_dict(self):
        return {"user_id": self.user_id, "notified": self.notified}


class TaskHistory(db.Model):
    __tablename__ = "task_history"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    action = db.Column(db.String(30), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    timestamp = db.Column(db.DateTime(timezone=True), default=utcnow)
    details = db.Column(db.JSON, default=dict)

    task = db.relationship("Task", back_populates="history")

    def to_dict(self):
        return {
            "id": self.id,
            "action": self.action,
            "user_id": self.user_id,
            "timestamp": iso(self.timestamp),
            "details": self.details or {},
        }
