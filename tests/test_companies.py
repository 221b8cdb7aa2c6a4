"""
TicketDesk
Tests — company directory API.
"""

import io
import os

import pytest

from ticketdesk.models import db
from ticketdesk.models.company import Company

CONTACT = {"name": "Jane Roe", "email": "jane@example.com", "position": "CIO", "phone": "+33 1 00"}
SLOT = {"day": "Monday", "startTime": "09:00", "endTime": "17:00"}


@pytest.fixture()
def create_company(client, auth_headers):
    def _create(user, **kw):
        payload = {
            "name": "Acme Corp",
            "contact_person": CONTACT,
            "address": {"city": "Lyon", "country": "FR", "ignored": "x"},
            "availability_slots": [SLOT],
        }
        payload.update(kw)
        res = client.post("/api/v1/company", json=payload, headers=auth_headers(user))
        assert res.status_code == 201, res.get_json()
        return res.get_json()
    return _create


def _upload(client, headers, company_id, name="contract.pdf", content_type="application/pdf", body=b"%PDF-1"):
    return client.post(
        f"/api/v1/company/{company_id}/documents",
        data={"document": (io.BytesIO(body), name, content_type)},
        headers=headers, content_type="multipart/form-data",
    )


class TestCreateCompany:
    def test_agent_becomes_commercial_agent(self, create_company, agent):
        data = create_company(agent)
        assert data["commercial_agent_id"] == agent.id
        assert data["billing_method"] == "hourly"
        assert data["address"] == {"city": "Lyon", "country": "FR"}
        assert data["availability_slots"] == [SLOT]

    def test_contact_person_required(self, client, auth_headers, admin):
        res = client.post("/api/v1/company", json={"name": "Acme", "contact_person": {"name": "x"}},
                          headers=auth_headers(admin))
        assert res.status_code == 400
        assert res.get_json()["details"] == {"contact_person": "required"}

    def test_name_required(self, client, auth_headers, admin):
        res = client.post("/api/v1/company", json={"contact_person": CONTACT}, headers=auth_headers(admin))
        assert res.status_code == 400

    @pytest.mark.parametrize("slot, message", [
        ({"day": "Funday", "startTime": "09:00", "endTime": "10:00"}, "Day must be one of"),
        ({"day": "Monday", "startTime": "9am", "endTime": "10:00"}, "HH:MM"),
        ({"day": "Monday", "startTime": "12:00", "endTime": "08:00"}, "before endTime"),
        ({"day": "Monday", "startTime": "09:00"}, "must include day"),
    ])
    def test_invalid_availability(self, client, auth_headers, admin, slot, message):
        res = client.post("/api/v1/company", json={
            "name": "Acme", "contact_person": CONTACT, "availability_slots": [slot],
        }, headers=auth_headers(admin))
        assert res.status_code == 400
        assert message in res.get_json()["error"]

    def test_client_cannot_create(self, client, auth_headers, client_user):
        res = client.post("/api/v1/company", json={"name": "Acme", "contact_person": CONTACT},
                          headers=auth_headers(client_user))
        assert res.status_code == 403


class TestCompanyAccess:
    def test_list_for_admin(self, client, auth_headers, create_company, admin):
        create_company(admin, name="Zeta")
        create_company(admin, name="Alpha")
        res = client.get("/api/v1/company", headers=auth_headers(admin))
        assert [c["name"] for c in res.get_json()] == ["Alpha", "Zeta"]
        assert "documents" not in res.get_json()[0]

    def test_client_sees_own_company_only(self, client, auth_headers, create_company, admin, client_user):
        own = create_company(admin)
        other = create_company(admin, name="Other")
        client_user.company_id = own["id"]
        db.session.commit()
        assert client.get(f"/api/v1/company/{own['id']}", headers=auth_headers(client_user)).status_code == 200
        res = client.get(f"/api/v1/company/{other['id']}", headers=auth_headers(client_user))
        assert res.status_code == 403

    def test_project_manager_gets_reduced_view(self, client, auth_headers, create_company, admin, pm):
        data = create_company(admin)
        res = client.get(f"/api/v1/company/{data['id']}", headers=auth_headers(pm))
        body = res.get_json()
        assert body["contact_person"] == {"name": "Jane Roe", "position": "CIO"}
        assert "billing_method" not in body

    def test_unknown_company(self, client, auth_headers, admin):
        assert client.get("/api/v1/company/999", headers=auth_headers(admin)).status_code == 404

    def test_agent_edits_only_managed_companies(self, client, auth_headers, create_company, agent, make_user):
        data = create_company(agent)
        other_agent = make_user("agentCommercial")
        res = client.put(f"/api/v1/company/{data['id']}", json={"name": "Renamed"},
                         headers=auth_headers(other_agent))
        assert res.status_code == 403
        res = client.put(f"/api/v1/company/{data['id']}", json={"name": "Renamed"}, headers=auth_headers(agent))
        assert res.get_json()["name"] == "Renamed"


class TestDocuments:
    def test_upload_download_delete(self, app, client, auth_headers, create_company, agent):
        data = create_company(agent)
        res = _upload(client, auth_headers(agent), data["id"])
        assert res.status_code == 201
        doc = res.get_json()
        assert doc["file_type"] == "pdf"
        assert doc["file_path"].startswith("companies/Acme_Corp/")

        dl = client.get(f"/api/v1/company/{data['id']}/documents/{doc['id']}", headers=auth_headers(agent))
        assert dl.status_code == 200
        assert dl.data == b"%PDF-1"
        dl.close()

        on_disk = os.path.join(app.config["UPLOAD_FOLDER"], *doc["file_path"].split("/"))
        res = client.delete(f"/api/v1/company/{data['id']}/documents/{doc['id']}", headers=auth_headers(agent))
        assert res.status_code == 200
        assert not os.path.exists(on_disk)
        assert db.session.get(Company, data["id"]).documents == []

    def test_rejects_disallowed_type(self, client, auth_headers, create_company, admin):
        data = create_company(admin)
        res = _upload(client, auth_headers(admin), data["id"], name="run.exe",
                      content_type="application/x-msdownload")
        assert res.status_code == 400
        assert res.get_json()["details"] == {"document": "type"}

    def test_missing_file(self, client, auth_headers, create_company, admin):
        data = create_company(admin)
        res = client.post(f"/api/v1/company/{data['id']}/documents", data={},
                          headers=auth_headers(admin), content_type="multipart/form-data")
        assert res.status_code == 400

    def test_client_of_other_company_cannot_upload(self, client, auth_headers, create_company, admin,
                                                   client_user):
        data = create_company(admin)
        res = _upload(client, auth_headers(client_user), data["id"])
        assert res.status_code == 403

    def test_documents_on_create(self, client, auth_headers, admin):
        res = client.post("/api/v1/company", data={
            "name": "Docs Inc",
            "contact_person": '{"name": "Jane", "email": "jane@example.com"}',
            "documents": (io.BytesIO(b"hello"), "notes.txt"),
        }, headers=auth_headers(admin), content_type="multipart/form-data")
        assert res.status_code == 201
        assert [d["name"] for d in res.get_json()["documents"]] == ["notes.txt"]


class TestBillingAndAvailability:
    def test_update_billing(self, client, auth_headers, create_company, admin):
        data = create_company(admin)
        res = client.put(f"/api/v1/company/{data['id']}/billing", json={"billing_method": "perTask"},
                         headers=auth_headers(admin))
        assert res.status_code == 200
        assert res.get_json()["billing_method"] == "perTask"

    def test_invalid_billing(self, client, auth_headers, create_company, admin):
        data = create_company(admin)
        res = client.put(f"/api/v1/company/{data['id']}/billing", json={"billing_method": "barter"},
                         headers=auth_headers(admin))
        assert res.status_code == 400

    def test_set_availability(self, client, auth_headers, create_company, admin, client_user):
        data = create_company(admin)
        client_user.company_id = data["id"]
        db.session.commit()
        slots = [{"day": "Friday", "startTime": "08:30", "endTime": "12:00"}]
        res = client.put(f"/api/v1/company/{data['id']}/availability", json={"availability_slots": slots},
                         headers=auth_headers(client_user))
        assert res.status_code == 200
        assert res.get_json()["availability_slots"] == slots

    def test_empty_availability_rejected(self, client, auth_headers, create_company, admin):
        data = create_company(admin)
        res = client.put(f"/api/v1/company/{data['id']}/availability", json={"availability_slots": []},
                         headers=auth_headers(admin))
        assert res.status_code == 400

    def test_delete_company(self, client, auth_headers, create_company, admin):
        data = create_company(admin)
        res = client.delete(f"/api/v1/company/{data['id']}", headers=auth_headers(admin))
        assert res.status_code == 200
        assert db.session.get(Company, data["id"]) is None
