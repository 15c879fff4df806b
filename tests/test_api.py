"""HTTP surface: auth, role checks, the complaint workflow and the notification channel."""

from __future__ import annotations

import json

import pytest

from extensions import db, hub
from models import Complaint, Officer

PASSWORD = "Str0ng!Passw0rd"

COMPLAINT_BODY = {
    "title": "Open manhole near school",
    "description": "An open manhole outside the primary school gate is a hazard for children.",
    "category": "sanitation",
    "priority": "urgent",
    "contact_name": "Lakshmi Menon",
    "contact_email": "lakshmi.menon@gmail.com",
}

EXECUTIVE_BODY = {
    "name": "Arjun Shetty",
    "designation": "Assistant Engineer",
    "email": "Arjun.Shetty@bbmp.gov.in",
    "department": "Storm Water Drains",
    "time_boundary": 5,
}


@pytest.fixture()
def admin(create_user):
    return create_user(full_name="Grievance Desk", email="desk@bbmp.gov.in", password=PASSWORD)


@pytest.fixture()
def as_admin(login, admin):
    return login(admin)


def _officer_user(officer):
    return db.session.get(Officer, officer.id).user


class TestAuth:
    def test_login_and_me(self, client, admin):
        resp = client.post("/auth/login", json={"email": "DESK@bbmp.gov.in", "password": PASSWORD})
        assert resp.status_code == 200
        assert resp.get_json()["user"]["id"] == admin.id

        me = client.get("/auth/me")
        assert me.status_code == 200
        assert me.get_json()["user"]["role"] == "admin"

        assert client.post("/auth/logout").status_code == 200
        assert client.get("/auth/me").status_code == 401

    def test_bad_password(self, client, admin):
        resp = client.post("/auth/login", json={"email": "desk@bbmp.gov.in", "password": "wrong-password"})
        assert resp.status_code == 401

    def test_inactive_account(self, client, create_user):
        create_user(email="former@bbmp.gov.in", password=PASSWORD, is_active=False)
        resp = client.post("/auth/login", json={"email": "former@bbmp.gov.in", "password": PASSWORD})
        assert resp.status_code == 403

    def test_malformed_login(self, client):
        resp = client.post("/auth/login", json={"email": "not-an-email"})
        assert resp.status_code == 400
        assert "fields" in resp.get_json()

    def test_officer_me_includes_officer_record(self, login, create_officer):
        officer = create_officer()
        resp = login(_officer_user(officer)).get("/auth/me")
        assert resp.get_json()["officer"]["id"] == officer.id


class TestAccessControl:
    def test_requires_login(self, client, create_complaint):
        complaint = create_complaint()
        resp = client.get(f"/api/complaints/{complaint.id}")
        assert resp.status_code == 401
        assert resp.get_json() == {"error": "Authentication required"}

    def test_officer_cannot_create(self, login, create_officer):
        officer = create_officer()
        resp = login(_officer_user(officer)).post("/api/complaints", json=COMPLAINT_BODY)
        assert resp.status_code == 403

    def test_officer_sees_only_own_complaints(self, login, create_officer, create_complaint):
        from utils.assignment import assign_existing_officer

        mine = create_complaint()
        theirs = create_complaint()
        officer = create_officer()
        assign_existing_officer(mine.id, officer.id)

        client = login(_officer_user(officer))
        assert client.get(f"/api/complaints/{mine.id}").status_code == 200
        assert client.get(f"/api/complaints/{theirs.id}").status_code == 403
        listed = client.get("/api/officers/me/complaints").get_json()["complaints"]
        assert [c["id"] for c in listed] == [mine.id]

    def test_unknown_complaint(self, as_admin):
        resp = as_admin.get("/api/complaints/does-not-exist")
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "Complaint not found"}


class TestComplaintWorkflow:
    def test_create(self, as_admin, admin):
        resp = as_admin.post("/api/complaints", json=COMPLAINT_BODY)
        assert resp.status_code == 201
        payload = resp.get_json()["complaint"]
        assert payload["status"] == "pending"
        assert payload["created_by_user_id"] == admin.id

    def test_create_validation(self, as_admin):
        resp = as_admin.post("/api/complaints", json={**COMPLAINT_BODY, "title": "Hole"})
        assert resp.status_code == 400
        assert "title" in resp.get_json()["fields"]

    def test_create_rejects_unknown_category(self, as_admin):
        resp = as_admin.post("/api/complaints", json={**COMPLAINT_BODY, "category": "parking"})
        assert resp.status_code == 400
        assert "category" in resp.get_json()["error"]

    def test_assign_by_executive_details(self, as_admin, create_complaint, check_links):
        complaint = create_complaint()

        resp = as_admin.post(f"/api/complaints/{complaint.id}/assign", json=EXECUTIVE_BODY)

        assert resp.status_code == 200
        payload = resp.get_json()["complaint"]
        assert payload["status"] == "in_progress"
        assert payload["time_boundary"] == 5
        officer = Officer.query.filter_by(email="arjun.shetty@bbmp.gov.in").one()
        assert payload["assigned_officer_id"] == officer.id

        again = as_admin.post(f"/api/complaints/{complaint.id}/assign", json=EXECUTIVE_BODY)
        assert again.status_code == 400
        assert again.get_json() == {"error": "Complaint is already assigned to this officer"}
        check_links()

    def test_assign_missing_executive_fields(self, as_admin, create_complaint):
        complaint = create_complaint()
        resp = as_admin.post(f"/api/complaints/{complaint.id}/assign", json={"name": "Arjun"})
        assert resp.status_code == 400
        assert set(resp.get_json()["fields"]) >= {"designation", "email"}

    def test_reassign_unassign_and_history(self, as_admin, create_officer, create_complaint, check_links):
        first = create_officer()
        second = create_officer()
        complaint = create_complaint()
        url = f"/api/complaints/{complaint.id}"

        assert as_admin.post(f"{url}/assign", json={"officer_id": first.id}).status_code == 200
        assert as_admin.post(f"{url}/reassign", json={"officer_id": second.id}).status_code == 200
        unassigned = as_admin.post(f"{url}/unassign")
        assert unassigned.get_json()["complaint"]["status"] == "pending"
        assert as_admin.post(f"{url}/unassign").status_code == 400

        history = as_admin.get(f"{url}/assignment-history").get_json()["events"]
        assert [event["type"] for event in history] == ["officer_assigned", "officer_reassigned", "officer_unassigned"]
        check_links()

        officer = as_admin.get(f"/api/officers/{second.id}").get_json()["officer"]
        assert officer["arrived"] == 1
        assert as_admin.get("/api/officers/nobody").status_code == 404

    def test_status_and_priority(self, as_admin, create_complaint):
        complaint = create_complaint()
        url = f"/api/complaints/{complaint.id}"
        assert as_admin.post(f"{url}/status", json={"status": "rejected"}).get_json()["complaint"]["status"] == "rejected"
        assert as_admin.post(f"{url}/status", json={"status": "lost"}).status_code == 400
        assert as_admin.post(f"{url}/priority", json={"priority": "low"}).get_json()["complaint"]["priority"] == "low"

        timeline = as_admin.get(f"{url}/timeline?type=status_changed").get_json()["events"]
        assert [event["payload"]["new_status"] for event in timeline] == ["rejected"]

    def test_officer_close_and_extension_flow(self, client, login, admin, create_officer, create_complaint):
        from utils.assignment import assign_existing_officer

        officer = create_officer()
        complaint = create_complaint()
        assign_existing_officer(complaint.id, officer.id)
        url = f"/api/complaints/{complaint.id}"

        login(_officer_user(officer))
        requested = client.post(f"{url}/extensions", json={"days": 4, "reason": "Contractor delayed"})
        assert requested.status_code == 201
        assert client.post(f"{url}/extensions", json={"days": 0}).status_code == 400
        assert client.post(f"{url}/extensions/approve", json={}).status_code == 403

        login(admin)
        approved = client.post(f"{url}/extensions/approve", json={"notes": "Approved once"})
        assert approved.get_json()["request"]["status"] == "approved"
        assert client.post(f"{url}/extensions/reject", json={}).status_code == 400
        listed = client.get(f"{url}/extensions").get_json()["requests"]
        assert [item["status"] for item in listed] == ["approved"]
        assert db.session.get(Complaint, complaint.id).time_boundary == 11

        login(_officer_user(officer))
        note = client.post(f"{url}/notes", json={"note": "Contractor on site today", "direction": "outward"})
        assert note.status_code == 201
        assert note.get_json()["note"]["author_kind"] == "officer"
        closed = client.post(
            f"{url}/close",
            json={"remarks": "Manhole covered with a new lid", "attachments": ["https://files.gov.in/lid.jpg"]},
        )
        assert closed.status_code == 200
        details = closed.get_json()["complaint"]["closing_details"]
        assert details["attachments"] == ["https://files.gov.in/lid.jpg"]
        assert client.post(f"{url}/close", json={"remarks": "Closing again"}).status_code == 400

    def test_admin_notes_and_documents(self, as_admin, create_complaint):
        complaint = create_complaint()
        url = f"/api/complaints/{complaint.id}"

        assert as_admin.post(f"{url}/notes", json={"note": "Forwarded to ward office"}).status_code == 201
        assert as_admin.post(f"{url}/notes", json={"note": "ok"}).status_code == 400
        document = as_admin.post(
            f"{url}/documents", json={"file_url": "https://files.gov.in/map.pdf", "file_name": "map.pdf"}
        )
        assert document.status_code == 201

        assert len(as_admin.get(f"{url}/notes?author=admin").get_json()["notes"]) == 1
        assert as_admin.get(f"{url}/notes?author=citizen").status_code == 400
        assert len(as_admin.get(f"{url}/documents").get_json()["documents"]) == 1


class TestNotificationEndpoints:
    def test_stream_requires_valid_token(self, client):
        assert client.get("/api/notifications/stream").status_code == 401
        assert client.get("/api/notifications/stream?token=forged").status_code == 401

    def test_stream_delivers_pushed_messages(self, as_admin, admin):
        token = as_admin.post("/api/notifications/token").get_json()["token"]

        resp = as_admin.get(f"/api/notifications/stream?token={token}", buffered=False)
        assert resp.status_code == 200
        assert resp.mimetype == "text/event-stream"
        chunks = iter(resp.response)
        assert next(chunks) == b": connected\n\n"
        assert hub.connected_users() == [admin.id]

        hub.publish(admin.id, {"type": "new_notification", "timeline_event_id": "evt-7", "title": "Ping"})
        frame = next(chunks).decode()
        assert frame.startswith("id: evt-7\nevent: new_notification\ndata: ")
        assert json.loads(frame.split("data: ", 1)[1])["title"] == "Ping"

        resp.close()
        assert hub.connected_users() == []

    def test_inbox_and_read_state(self, as_admin, create_officer, create_complaint):
        from utils.assignment import assign_existing_officer
        from utils.worklog import add_officer_note

        officer = create_officer()
        complaint = create_complaint()
        assign_existing_officer(complaint.id, officer.id)
        add_officer_note(complaint.id, officer.user_id, "Inspected the transformer")
        add_officer_note(complaint.id, officer.user_id, "Replaced the fuse box")

        listed = as_admin.get("/api/notifications").get_json()
        assert listed["total"] == 2
        assert {item["event_type"] for item in listed["notifications"]} == {"officer_note_added"}
        assert {item["complaint_id"] for item in listed["notifications"]} == {complaint.id}
        assert as_admin.get("/api/notifications/unread-count").get_json() == {"count": 2}
        assert as_admin.get("/api/notifications?event_type=complaint_closed").get_json()["total"] == 0

        target = listed["notifications"][0]["id"]
        read = as_admin.patch(f"/api/notifications/{target}/read")
        assert read.status_code == 200
        assert read.get_json()["notification"]["read_at"]
        assert as_admin.get("/api/notifications?unread_only=true").get_json()["total"] == 1
        assert as_admin.patch("/api/notifications/missing/read").get_json() == {"error": "Notification not found"}

        assert as_admin.patch("/api/notifications/read-all").get_json() == {"updated": 1}
        assert as_admin.get("/api/notifications/unread-count").get_json() == {"count": 0}

    def test_inbox_requires_login(self, client):
        assert client.get("/api/notifications").status_code == 401
        assert client.patch("/api/notifications/read-all").status_code == 401

    def test_settings(self, as_admin):
        settings = as_admin.get("/api/notifications/settings").get_json()["settings"]
        assert {"event_type": "note_added", "enabled": True} in settings

        resp = as_admin.put("/api/notifications/settings/note_added", json={"enabled": False})
        assert resp.get_json() == {"event_type": "note_added", "enabled": False}
        assert as_admin.put("/api/notifications/settings/note_added", json={"enabled": "no"}).status_code == 400
        assert as_admin.put("/api/notifications/settings/status_changed", json={"enabled": True}).status_code == 400

    def test_settings_are_admin_only(self, login, create_officer):
        officer = create_officer()
        assert login(_officer_user(officer)).get("/api/notifications/settings").status_code == 403


def test_service_index_and_health(as_admin):
    index = as_admin.get("/").get_json()
    assert index["service"] == "grievance-desk"
    assert index["complaints_by_status"]["pending"] == 0
    health = as_admin.get("/healthz")
    assert health.status_code == 200
    assert health.headers["X-Request-ID"]
