"""
TicketDesk
Tests — NotificationService and the notifications API.

Covers:
    - Mention extraction and resolution (first + last name, case-sensitive)
    - Fan-out, empty recipient lists, swallowed write failures
    - Real-time push to open subscriptions
    - Own notifications: list, unread, mark read, read-all
    - Trigger endpoints and the SSE stream
"""

import queue
import threading

from ticketdesk.models import db
from ticketdesk.models.notification import Notification
from ticketdesk.models.task import Task, TestTask
from ticketdesk.services.notification import NotificationService


def _messages(user):
    return [n.message for n in Notification.query.filter_by(user_id=user.id).order_by(Notification.id)]


def _task(**kw):
    kw.setdefault("number", "TASK-20240101-0001")
    task = Task(name="Build report", description="d", **kw)
    db.session.add(task)
    db.session.commit()
    return task


# ═════════════════════════════════════════════════════════════════════════════
# SERVICE
# ═════════════════════════════════════════════════════════════════════════════

class TestMentions:
    def test_extract_keeps_order_and_duplicates(self):
        text = "ping @DanaDev and @AdaAdmin, again @DanaDev."
        assert NotificationService.extract_mentions(text) == ["DanaDev", "AdaAdmin", "DanaDev"]

    def test_extract_without_mentions(self):
        assert NotificationService.extract_mentions("") == []
        assert NotificationService.extract_mentions("mail me at x") == []

    def test_find_users_is_case_sensitive(self, developer, admin):
        assert NotificationService.find_users_by_mentions(["DanaDev", "AdaAdmin"]) == sorted(
            [developer.id, admin.id]
        )
        assert NotificationService.find_users_by_mentions(["danadev"]) == []
        assert NotificationService.find_users_by_mentions(["Dana"]) == []

    def test_process_mentions_notifies_once_per_user(self, developer, create_ticket, client_user):
        ticket = create_ticket(client_user)
        notified = NotificationService.process_mentions(
            "@DanaDev please check, @DanaDev", "Carl Client", ticket["id"], "Ticket",
        )
        assert notified == [developer.id]
        notes = Notification.query.filter_by(user_id=developer.id).all()
        assert len(notes) == 1
        assert notes[0].message == "Carl Client mentioned you in a ticket"
        assert notes[0].related_to == ticket["id"]
        assert notes[0].notification_model == "Ticket"

    def test_process_mentions_unknown_names(self, developer):
        assert NotificationService.process_mentions("@Nobody here", "X", None, "Task") == []
        assert Notification.query.count() == 0


class TestCreateNotifications:
    def test_one_row_per_recipient(self, developer, tester):
        rows = NotificationService.create_general_notification([developer.id, tester.id], "Welcome")
        assert len(rows) == 2
        assert _messages(developer) == ["Welcome"]
        assert rows[0].is_read is False

    def test_empty_recipients(self):
        assert NotificationService.create_notifications([], "nobody") == []
        assert NotificationService.create_notifications([None], "nobody") == []
        assert Notification.query.count() == 0

    def test_write_failure_is_swallowed(self, monkeypatch, developer):
        def _boom():
            raise RuntimeError("database is gone")

        monkeypatch.setattr(db.session, "commit", _boom)
        assert NotificationService.create_notifications([developer.id], "lost") == []
        monkeypatch.undo()
        assert Notification.query.count() == 0

    def test_unknown_target_model_is_swallowed(self, developer):
        assert NotificationService.create_notifications([developer.id], "odd", 1, "Widget") == []

    def test_task_target(self, developer):
        task = _task()
        rows = NotificationService.notify_task_assignment([developer.id], task.id, task.name, "Paula Manager")
        assert rows[0].task_id == task.id
        assert rows[0].to_dict()["related_to"] == task.id

    def test_push_to_open_subscription(self, app, developer, tester):
        hub = app.extensions["realtime"]
        subscription = hub.subscribe(developer.id)
        try:
            NotificationService.create_notifications([developer.id, tester.id], "Live")
            message = subscription.get_nowait()
            assert message["event"] == "notification"
            assert message["payload"]["message"] == "Live"
            assert subscription.empty()
        finally:
            hub.unsubscribe(developer.id, subscription)


# ═════════════════════════════════════════════════════════════════════════════
# OWN NOTIFICATIONS
# ═════════════════════════════════════════════════════════════════════════════

class TestOwnNotifications:
    def test_list_newest_first(self, client, auth_headers, developer):
        NotificationService.create_notifications([developer.id], "first")
        NotificationService.create_notifications([developer.id], "second")
        body = client.get("/api/v1/notifications", headers=auth_headers(developer)).get_json()
        assert [n["message"] for n in body["items"]] == ["second", "first"]
        assert body["total"] == 2
        assert body["unread_count"] == 2

    def test_mark_read_and_unread_list(self, client, auth_headers, developer):
        first = NotificationService.create_notifications([developer.id], "first")[0]
        NotificationService.create_notifications([developer.id], "second")
        res = client.patch(f"/api/v1/notifications/{first.id}/read", headers=auth_headers(developer))
        assert res.status_code == 200
        assert res.get_json()["notification"]["is_read"] is True
        assert res.get_json()["notification"]["read_at"]

        unread = client.get("/api/v1/notifications/unread", headers=auth_headers(developer)).get_json()
        assert [n["message"] for n in unread] == ["second"]
        body = client.get("/api/v1/notifications?unread=1", headers=auth_headers(developer)).get_json()
        assert body["total"] == 1

    def test_cannot_mark_someone_elses(self, client, auth_headers, developer, tester):
        note = NotificationService.create_notifications([tester.id], "private")[0]
        res = client.patch(f"/api/v1/notifications/{note.id}/read", headers=auth_headers(developer))
        assert res.status_code == 404
        assert db.session.get(Notification, note.id).is_read is False

    def test_read_all(self, client, auth_headers, developer, tester):
        NotificationService.create_notifications([developer.id], "a")
        NotificationService.create_notifications([developer.id, tester.id], "b")
        res = client.patch("/api/v1/notifications/read-all", headers=auth_headers(developer))
        assert res.get_json()["updated"] == 2
        assert NotificationService.unread_count(developer.id) == 0
        assert NotificationService.unread_count(tester.id) == 1

    def test_requires_login(self, client):
        assert client.get("/api/v1/notifications").status_code == 401


# ═════════════════════════════════════════════════════════════════════════════
# TRIGGERS
# ═════════════════════════════════════════════════════════════════════════════

class TestTriggerEndpoints:
    def test_mentions(self, client, auth_headers, create_ticket, client_user, developer):
        ticket = create_ticket(client_user)
        res = client.post("/api/v1/notifications/mentions", json={
            "text": "@DanaDev look", "entity_id": ticket["id"], "entity_type": "Ticket",
        }, headers=auth_headers(client_user))
        assert res.status_code == 200
        assert res.get_json()["notified"] == [developer.id]
        assert _messages(developer) == ["Carl Client mentioned you in a ticket"]

    def test_task_assignment(self, client, auth_headers, pm, developer):
        task = _task()
        res = client.post("/api/v1/notifications/task-assignment", json={
            "user_id": developer.id, "task_id": task.id, "task_name": task.name,
        }, headers=auth_headers(pm))
        assert res.status_code == 200
        assert _messages(developer) == ["Paula Manager assigned you to task: Build report"]

    def test_ticket_assignment(self, client, auth_headers, create_ticket, client_user, admin, group_leader):
        ticket = create_ticket(client_user)
        client.post("/api/v1/notifications/ticket-assignment", json={
            "user_ids": [group_leader.id], "ticket_id": ticket["id"], "ticket_title": ticket["title"],
            "assigner_name": "Front Desk",
        }, headers=auth_headers(admin))
        assert _messages(group_leader) == ["Front Desk assigned you to ticket: Printer offline"]

    def test_task_declined(self, client, auth_headers, pm, developer):
        task = _task()
        res = client.post("/api/v1/notifications/task-status", json={
            "pm_id": pm.id, "task_id": task.id, "task_name": task.name, "action": "declined",
        }, headers=auth_headers(developer))
        assert res.status_code == 200
        assert _messages(pm) == ["Dana Dev has declined task: Build report"]

    def test_task_status_invalid_action(self, client, auth_headers, pm, developer):
        res = client.post("/api/v1/notifications/task-status", json={
            "pm_id": pm.id, "task_id": 1, "task_name": "x", "action": "finished",
        }, headers=auth_headers(developer))
        assert res.status_code == 400

    def test_ticket_status_change(self, client, auth_headers, create_ticket, client_user, admin):
        ticket = create_ticket(client_user)
        client.post("/api/v1/notifications/task-status-change", json={
            "user_ids": [client_user.id], "ticket_id": ticket["id"], "ticket_title": "Printer offline",
            "new_status": "Resolved",
        }, headers=auth_headers(admin))
        assert _messages(client_user)[-1] == 'Ada Admin changed ticket "Printer offline" status to Resolved'

    def test_test_task_blocker_reported(self, client, auth_headers, admin, tester):
        task = TestTask(number="TEST-20240101-0001", name="QA pass", description="d")
        db.session.add(task)
        db.session.commit()
        client.post("/api/v1/notifications/test-task-blocker-reported", json={
            "recipient_ids": [admin.id], "task_id": task.id, "task_name": task.name,
        }, headers=auth_headers(tester))
        assert _messages(admin) == ['Tina Tester reported a blocker on test task "QA pass".']

    def test_missing_recipients(self, client, auth_headers, admin):
        res = client.post("/api/v1/notifications/task-assignment", json={"task_id": 1, "task_name": "x"},
                          headers=auth_headers(admin))
        assert res.status_code == 400
        assert res.get_json()["details"] == {"user_ids": "required"}

    def test_invalid_entity_id(self, client, auth_headers, admin, developer):
        res = client.post("/api/v1/notifications/task-assignment", json={
            "user_id": developer.id, "task_id": "abc", "task_name": "x",
        }, headers=auth_headers(admin))
        assert res.status_code == 400


class TestStream:
    def test_stream_subscribes_until_closed(self, app, client, auth_headers, developer):
        hub = app.extensions["realtime"]
        res = client.get("/api/v1/notifications/stream", headers=auth_headers(developer), buffered=False)
        assert res.status_code == 200
        assert res.mimetype == "text/event-stream"
        assert res.headers["Cache-Control"] == "no-cache"
        assert next(iter(res.response)) == b"retry: 5000\n\n"
        assert hub.subscriber_count(developer.id) == 1

        res.close()
        assert hub.subscriber_count(developer.id) == 0

    def test_stream_accepts_query_token(self, client, auth_headers, developer):
        token = auth_headers(developer)["Authorization"].split(" ", 1)[1]
        res = client.get(f"/api/v1/notifications/stream?token={token}", buffered=False)
        assert res.status_code == 200
        res.close()


class TestRealtimeHub:
    def test_slow_subscriber_drops_oldest(self):
        from ticketdesk.services.realtime import RealtimeHub

        hub = RealtimeHub(max_pending=2)
        q = hub.subscribe(7)
        for n in range(3):
            hub.publish(7, "notification", {"n": n})
        assert [q.get_nowait()["payload"]["n"] for _ in range(2)] == [1, 2]
        try:
            q.get_nowait()
        except queue.Empty:
            pass
        else:
            raise AssertionError("queue should be drained")

    def test_publish_without_subscribers(self):
        from ticketdesk.services.realtime import RealtimeHub

        hub = RealtimeHub()
        assert hub.publish(1, "notification", {}) == 0
        q1, q2 = hub.subscribe(1), hub.subscribe(1)
        assert hub.publish(1, "notification", {}) == 2
        hub.unsubscribe(1, q1)
        hub.unsubscribe(1, q2)
        assert hub.subscriber_count(1) == 0

    def test_concurrent_publishers_on_full_queue(self):
        from ticketdesk.services.realtime import RealtimeHub

        hub = RealtimeHub(max_pending=1)
        q = hub.subscribe(3)
        errors = []
        start = threading.Barrier(8)

        def _publish(n):
            start.wait()
            try:
                for i in range(200):
                    hub.publish(3, "notification", {"n": n, "i": i})
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)

        workers = [threading.Thread(target=_publish, args=(n,)) for n in range(8)]
        for w in workers:
            w.start()
        for w in workers:
            w.join()

        assert errors == []
        assert q.qsize() == 1
        assert q.get_nowait()["event"] == "notification"
