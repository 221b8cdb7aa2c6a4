"""
TicketDesk
Tests — development task API.

Covers:
    - Task creation, numbering, assignment and mention notifications
    - Role-scoped listing and filters
    - Updates with history entries and status notifications
    - Comments, blockers, blocked subtasks, attachments
"""

import io
import re

import pytest

from ticketdesk.models import db
from ticketdesk.models.notification import Notification
from ticketdesk.models.task import Task, TestTask

NUMBER_RE = re.compile(r"^TASK-\d{8}-\d{4}$")


def _messages(user):
    return [n.message for n in Notification.query.filter_by(user_id=user.id).order_by(Notification.id)]


@pytest.fixture()
def create_task(client, auth_headers):
    def _create(user, **kw):
        payload = {"name": "Build report", "description": "Monthly usage report"}
        payload.update(kw)
        res = client.post("/api/v1/task", json=payload, headers=auth_headers(user))
        assert res.status_code == 201, res.get_json()
        return res.get_json()
    return _create


# ═════════════════════════════════════════════════════════════════════════════
# CREATE
# ═════════════════════════════════════════════════════════════════════════════

class TestCreateTask:
    def test_create_with_assignee(self, create_task, pm, developer):
        data = create_task(pm, assigned_to=[developer.id], urgency="High", priority=2)
        assert NUMBER_RE.match(data["number"])
        assert data["status"] == "ToDo"
        assert data["priority"] == 2
        assert [u["id"] for u in data["assigned_to"]] == [developer.id]
        assert [h["action"] for h in data["history"]] == ["created"]
        assert _messages(developer) == ["Paula Manager assigned you to task: Build report"]

    def test_defaults(self, create_task, pm):
        data = create_task(pm)
        assert data["urgency"] == "Medium"
        assert data["priority"] == 3

    def test_mentions_notified(self, create_task, pm, tester):
        create_task(pm, mentions=[tester.id])
        assert _messages(tester) == ["Paula Manager mentioned you in task: Build report"]

    def test_linked_to_ticket(self, create_task, create_ticket, client_user, admin):
        ticket = create_ticket(client_user)
        data = create_task(admin, ticket_id=ticket["id"])
        assert data["ticket_id"] == ticket["id"]

    def test_unknown_ticket(self, client, auth_headers, pm):
        res = client.post("/api/v1/task", json={"name": "n", "description": "d", "ticket_id": 999},
                          headers=auth_headers(pm))
        assert res.status_code == 404

    @pytest.mark.parametrize("field, value, detail", [
        ("ticket_id", "abc", "invalid"),
        ("parent_task_id", "x", "invalid"),
        ("assigned_to", "[1,", "invalid"),
    ])
    def test_malformed_ids(self, client, auth_headers, pm, field, value, detail):
        res = client.post("/api/v1/task", json={"name": "n", "description": "d", field: value},
                          headers=auth_headers(pm))
        assert res.status_code == 400
        assert res.get_json()["details"] == {field: detail}
        assert Task.query.count() == 0

    def test_developer_cannot_create(self, client, auth_headers, developer):
        res = client.post("/api/v1/task", json={"name": "n", "description": "d"}, headers=auth_headers(developer))
        assert res.status_code == 403

    def test_missing_fields(self, client, auth_headers, pm):
        res = client.post("/api/v1/task", json={"name": "n"}, headers=auth_headers(pm))
        assert res.status_code == 400

    def test_unknown_assignee(self, client, auth_headers, pm):
        res = client.post("/api/v1/task", json={"name": "n", "description": "d", "assigned_to": [999]},
                          headers=auth_headers(pm))
        assert res.status_code == 400

    def test_priority_out_of_range(self, client, auth_headers, pm):
        res = client.post("/api/v1/task", json={"name": "n", "description": "d", "priority": 9},
                          headers=auth_headers(pm))
        assert res.status_code == 400

    def test_multipart_with_files(self, client, auth_headers, pm, developer):
        res = client.post("/api/v1/task", data={
            "name": "Design doc", "description": "Write the design doc", "assigned_to": str(developer.id),
            "files": (io.BytesIO(b"draft"), "design.md"),
        }, headers=auth_headers(pm), content_type="multipart/form-data")
        assert res.status_code == 201
        body = res.get_json()
        assert [a["name"] for a in body["attachments"]] == ["design.md"]
        assert body["attachments"][0]["path"].startswith("tasks/")

        attachment = body["attachments"][0]
        dl = client.get(f"/api/v1/task/{body['id']}/attachments/{attachment['id']}",
                        headers=auth_headers(developer))
        assert dl.status_code == 200
        assert dl.data == b"draft"
        dl.close()


# ═════════════════════════════════════════════════════════════════════════════
# LIST & ACCESS
# ═════════════════════════════════════════════════════════════════════════════

class TestTaskVisibility:
    def test_developer_sees_assigned_only(self, client, auth_headers, create_task, pm, developer):
        mine = create_task(pm, assigned_to=[developer.id])
        create_task(pm, name="Other")
        body = client.get("/api/v1/task", headers=auth_headers(developer)).get_json()
        assert [t["id"] for t in body["items"]] == [mine["id"]]

    def test_pm_sees_tasks_of_own_group_leaders(self, client, auth_headers, create_task, pm, group_leader,
                                                 make_user):
        other_pm = make_user("projectManager")
        other_gl = make_user("groupLeader", project_manager_id=other_pm.id)
        from_team = create_task(group_leader)
        create_task(other_gl)
        body = client.get("/api/v1/task", headers=auth_headers(pm)).get_json()
        assert [t["id"] for t in body["items"]] == [from_team["id"]]

    def test_admin_sees_all(self, client, auth_headers, create_task, pm, group_leader, admin):
        create_task(pm)
        create_task(group_leader)
        assert client.get("/api/v1/task", headers=auth_headers(admin)).get_json()["total"] == 2

    def test_filter_created(self, client, auth_headers, create_task, pm, group_leader):
        create_task(group_leader, assigned_to=[pm.id])
        own = create_task(pm)
        body = client.get("/api/v1/task?filter=created", headers=auth_headers(pm)).get_json()
        assert [t["id"] for t in body["items"]] == [own["id"]]

    def test_status_filter_accepts_list(self, client, auth_headers, create_task, admin):
        a = create_task(admin, name="A")
        create_task(admin, name="B")
        db.session.get(Task, a["id"]).status = "Testing"
        db.session.commit()
        body = client.get("/api/v1/task?status=Testing,Done", headers=auth_headers(admin)).get_json()
        assert [t["id"] for t in body["items"]] == [a["id"]]

    def test_invalid_status_filter(self, client, auth_headers, admin):
        res = client.get("/api/v1/task?status=Sleeping", headers=auth_headers(admin))
        assert res.status_code == 400

    def test_malformed_ticket_filter(self, client, auth_headers, admin):
        res = client.get("/api/v1/task?ticket_id=abc", headers=auth_headers(admin))
        assert res.status_code == 400
        assert res.get_json()["details"] == {"ticket_id": "invalid"}

    def test_team_read_limited_to_group_leaders(self, client, auth_headers, responsible_client, make_user):
        leader = make_user("groupLeader", project_manager_id=responsible_client.id)
        linked_dev = make_user("developer", project_manager_id=responsible_client.id)
        from_leader = Task(number="TASK-20240101-0011", name="Lead", description="d", created_by_id=leader.id)
        from_dev = Task(number="TASK-20240101-0012", name="Dev", description="d", created_by_id=linked_dev.id)
        db.session.add_all([from_leader, from_dev])
        db.session.commit()

        headers = auth_headers(responsible_client)
        body = client.get("/api/v1/task", headers=headers).get_json()
        assert [t["id"] for t in body["items"]] == [from_leader.id]
        assert client.get(f"/api/v1/task/{from_leader.id}", headers=headers).status_code == 200
        assert client.get(f"/api/v1/task/{from_dev.id}", headers=headers).status_code == 403

    def test_unrelated_developer_forbidden(self, client, auth_headers, create_task, pm, make_user, group_leader):
        data = create_task(pm)
        outsider = make_user("developer", group_leader_id=group_leader.id)
        res = client.get(f"/api/v1/task/{data['id']}", headers=auth_headers(outsider))
        assert res.status_code == 403

    def test_testing_tasks_for_responsible_tester(self, client, auth_headers, create_task, pm, responsible_tester):
        ready = create_task(pm, name="Ready")
        create_task(pm, name="Not ready")
        db.session.get(Task, ready["id"]).status = "Testing"
        db.session.commit()
        res = client.get("/api/v1/task/testing-tasks", headers=auth_headers(responsible_tester))
        assert [t["id"] for t in res.get_json()] == [ready["id"]]

    def test_test_tasks_not_served_here(self, client, auth_headers, admin, tester):
        task = TestTask(number="TEST-20240101-0001", name="QA", description="d", assignees=[tester])
        db.session.add(task)
        db.session.commit()
        res = client.get(f"/api/v1/task/{task.id}", headers=auth_headers(admin))
        assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# UPDATE
# ═════════════════════════════════════════════════════════════════════════════

class TestUpdateTask:
    def test_status_change_history_and_notification(self, client, auth_headers, create_task, pm, developer,
                                                     admin):
        data = create_task(pm, assigned_to=[developer.id])
        res = client.put(f"/api/v1/task/{data['id']}", json={"status": "InProgress"},
                         headers=auth_headers(developer))
        assert res.status_code == 200
        entry = res.get_json()["history"][-1]
        assert entry["action"] == "statusChanged"
        assert entry["details"] == {"previousStatus": "ToDo", "newStatus": "InProgress"}

        expected = 'Dana Dev changed the status of task "Build report" from ToDo to InProgress'
        assert _messages(developer)[-1] == expected
        assert _messages(admin) == [expected]

    def test_field_update_records_updated(self, client, auth_headers, create_task, pm):
        data = create_task(pm)
        res = client.put(f"/api/v1/task/{data['id']}", json={"name": "Renamed", "actual_hours": 3},
                         headers=auth_headers(pm))
        entry = res.get_json()["history"][-1]
        assert entry["action"] == "updated"
        assert entry["details"] == {"updatedFields": ["name", "actual_hours"]}

    def test_reassignment_notifies_new_users_only(self, client, auth_headers, create_task, pm, developer,
                                                  make_user, group_leader):
        second = make_user("developer", first_name="Sam", group_leader_id=group_leader.id)
        data = create_task(pm, assigned_to=[developer.id])
        res = client.put(f"/api/v1/task/{data['id']}", json={"assigned_to": [developer.id, second.id]},
                         headers=auth_headers(pm))
        history = res.get_json()["history"]
        assert history[-1]["action"] == "assigned"
        assert history[-1]["details"] == {"assignedTo": [developer.id, second.id]}
        assert len(_messages(developer)) == 1
        assert _messages(second) == ["Paula Manager assigned you to task: Build report"]

    def test_invalid_status(self, client, auth_headers, create_task, pm):
        data = create_task(pm)
        res = client.put(f"/api/v1/task/{data['id']}", json={"status": "Paused"}, headers=auth_headers(pm))
        assert res.status_code == 400

    def test_outsider_cannot_update(self, client, auth_headers, create_task, pm, developer):
        data = create_task(pm)
        res = client.put(f"/api/v1/task/{data['id']}", json={"status": "Done"}, headers=auth_headers(developer))
        assert res.status_code == 403


# ═════════════════════════════════════════════════════════════════════════════
# COMMENTS & BLOCKERS
# ═════════════════════════════════════════════════════════════════════════════

class TestCommentsAndBlockers:
    def test_comment_mentions(self, client, auth_headers, create_task, pm, developer, group_leader):
        data = create_task(pm, assigned_to=[developer.id])
        res = client.post(f"/api/v1/task/{data['id']}/comments",
                          json={"text": "Done @PaulaManager", "mentions": [group_leader.id]},
                          headers=auth_headers(developer))
        assert res.status_code == 201
        comment = res.get_json()["comments"][-1]
        assert comment["author"] == "Dana Dev"
        assert {m["user_id"]: m["notified"] for m in comment["mentions"]} == {
            pm.id: True, group_leader.id: True,
        }
        assert _messages(pm) == ["Dana Dev mentioned you in a task"]
        assert _messages(group_leader) == ["Dana Dev mentioned you in a comment on task: Build report"]
        assert res.get_json()["history"][-1]["action"] == "commented"

    def test_empty_comment(self, client, auth_headers, create_task, pm):
        data = create_task(pm)
        res = client.post(f"/api/v1/task/{data['id']}/comments", json={"text": ""}, headers=auth_headers(pm))
        assert res.status_code == 400

    def test_report_blocker(self, client, auth_headers, create_task, pm, developer):
        data = create_task(pm, assigned_to=[developer.id])
        res = client.post(f"/api/v1/task/{data['id']}/block", json={"reason": "Waiting on API keys"},
                          headers=auth_headers(developer))
        assert res.status_code == 200
        assert res.get_json()["reason"] == "Waiting on API keys"

        task = db.session.get(Task, data["id"])
        assert task.status == "Blocked"
        assert task.history[-1].action == "blocked"
        assert _messages(pm) == ["Dana Dev has blocked task: Build report"]
        assert len(_messages(developer)) == 1  # only the assignment

    def test_blocker_requires_reason(self, client, auth_headers, create_task, pm):
        data = create_task(pm)
        res = client.post(f"/api/v1/task/{data['id']}/block", json={"reason": " "}, headers=auth_headers(pm))
        assert res.status_code == 400

    def test_resolve_blocker(self, client, auth_headers, create_task, pm):
        data = create_task(pm)
        blocker = client.post(f"/api/v1/task/{data['id']}/block", json={"reason": "x"},
                              headers=auth_headers(pm)).get_json()
        url = f"/api/v1/task/{data['id']}/blockers/{blocker['id']}/resolve"
        res = client.patch(url, json={"resolution_notes": "fixed"}, headers=auth_headers(pm))
        assert res.status_code == 200
        assert res.get_json()["resolved"] is True

        task = db.session.get(Task, data["id"])
        assert task.history[-1].action == "unblocked"
        assert task.status == "Blocked"
        assert client.patch(url, json={}, headers=auth_headers(pm)).status_code == 400

    def test_blocked_subtasks(self, client, auth_headers, create_task, pm):
        parent = create_task(pm, name="Parent")
        blocked = create_task(pm, name="Child A", parent_task_id=parent["id"])
        create_task(pm, name="Child B", parent_task_id=parent["id"])
        client.post(f"/api/v1/task/{blocked['id']}/block", json={"reason": "stuck"}, headers=auth_headers(pm))

        res = client.get(f"/api/v1/task/{parent['id']}/blocked-subtasks", headers=auth_headers(pm))
        assert [t["id"] for t in res.get_json()] == [blocked["id"]]
