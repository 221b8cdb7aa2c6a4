"""
Shared pytest fixtures for the TicketDesk test suite.

Provides:
    - app: Flask application (session-scoped, uploads in a temp folder)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user: factory persisting a User with a given role
    - auth_headers: Bearer header for a user
    - admin / client_user / agent / pm / group_leader / developer / tester ...
"""

import pytest

from ticketdesk import create_app
from ticketdesk.models import db as _db
from ticketdesk.models.user import User
from ticketdesk.services.jwt_service import generate_access_token
from ticketdesk.utils.crypto import hash_password

DEFAULT_PASSWORD = "secret123"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Create the Flask application once per test session."""
    application = create_app("testing")
    application.config["UPLOAD_FOLDER"] = str(tmp_path_factory.mktemp("uploads"))
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Users ────────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    """Persist a user: ``make_user("developer", group_leader_id=gl.id)``."""
    counter = {"n": 0}

    def _make(role, first_name=None, last_name="User", email=None, **kw):
        counter["n"] += 1
        first_name = first_name or f"{role.capitalize()}{counter['n']}"
        user = User(
            first_name=first_name,
            last_name=last_name,
            email=email or f"{role.lower()}{counter['n']}@example.com",
            password_hash=hash_password(kw.pop("password", DEFAULT_PASSWORD)),
            role=role,
            **kw,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {generate_access_token(user.id, user.role)}"}
    return _headers


@pytest.fixture()
def admin(make_user):
    return make_user("admin", first_name="Ada", last_name="Admin")


@pytest.fixture()
def client_user(make_user):
    return make_user("client", first_name="Carl", last_name="Client")


@pytest.fixture()
def responsible_client(make_user):
    return make_user("responsibleClient", first_name="Rita", last_name="Resp")


@pytest.fixture()
def agent(make_user):
    return make_user("agentCommercial", first_name="Alex", last_name="Agent")


@pytest.fixture()
def pm(make_user):
    return make_user("projectManager", first_name="Paula", last_name="Manager")


@pytest.fixture()
def group_leader(make_user, pm):
    return make_user("groupLeader", first_name="Gary", last_name="Leader", project_manager_id=pm.id)


@pytest.fixture()
def developer(make_user, group_leader):
    return make_user("developer", first_name="Dana", last_name="Dev", group_leader_id=group_leader.id)


@pytest.fixture()
def responsible_tester(make_user):
    return make_user("responsibleTester", first_name="Rob", last_name="Tester")


@pytest.fixture()
def tester(make_user, responsible_tester):
    return make_user("tester", first_name="Tina", last_name="Tester",
                     responsible_tester_id=responsible_tester.id)


# ── Domain helpers ───────────────────────────────────────────────────────


TICKET_PAYLOAD = {
    "title": "Printer offline",
    "application": "ERP",
    "environment": "Production",
    "request_type": "Incident",
    "urgency": "High",
    "description": "The warehouse printer no longer answers.",
}


@pytest.fixture()
def ticket_payload():
    return dict(TICKET_PAYLOAD)


@pytest.fixture()
def create_ticket(client, auth_headers):
    """POST a ticket as ``user`` and return the JSON body."""
    def _create(user, **overrides):
        payload = dict(TICKET_PAYLOAD)
        payload.update(overrides)
        res = client.post("/api/v1/ticket", json=payload, headers=auth_headers(user))
        assert res.status_code == 201, res.get_json()
        return res.get_json()
    return _create
