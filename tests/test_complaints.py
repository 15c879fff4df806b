"""Complaint intake and admin edits."""

from __future__ import annotations

import pytest

from extensions import db
from models import Complaint, TimelineEvent
from utils import complaints
from utils.errors import NotFoundError, ValidationError
from utils.timeline import Actor

VALID = {
    "title": "Broken water main",
    "description": "Water has been leaking onto the street since Monday morning.",
    "category": "Water",
    "priority": "high",
    "contact_name": "Sunita Rao",
    "contact_email": " Sunita@Mail.TEST ",
    "contact_phone": "98450 00000",
}


def test_create_complaint(create_user):
    admin = create_user(full_name="Desk Admin")

    complaint = complaints.create_complaint(VALID, actor=Actor.from_user(admin))

    stored = db.session.get(Complaint, complaint.id)
    assert stored.category == "water"
    assert stored.priority == "high"
    assert stored.status == "pending"
    assert stored.contact_email == "sunita@mail.test"
    assert stored.created_by_user_id == admin.id
    assert stored.is_officer_assigned is False
    assert stored.time_boundary == 7

    event = TimelineEvent.query.filter_by(complaint_id=complaint.id).one()
    assert event.event_type == "complaint_created"
    assert event.payload == {
        "title": "Broken water main",
        "category": "water",
        "created_by": "Desk Admin",
        "created_by_user_id": admin.id,
    }


def test_priority_defaults_to_medium(app):
    data = {key: value for key, value in VALID.items() if key != "priority"}
    assert complaints.create_complaint(data).priority == "medium"


@pytest.mark.parametrize(
    "field, value",
    [
        ("title", "Pipe"),
        ("description", "Too short"),
        ("category", "weather"),
        ("priority", "whenever"),
        ("contact_name", ""),
        ("contact_email", "not-an-email"),
    ],
)
def test_create_rejects_bad_input(app, field, value):
    with pytest.raises(ValidationError):
        complaints.create_complaint({**VALID, field: value})
    assert Complaint.query.count() == 0


def test_change_status(create_complaint):
    complaint = create_complaint()

    complaints.change_status(complaint.id, "resolved")
    complaints.change_status(complaint.id, "resolved")

    stored = db.session.get(Complaint, complaint.id)
    assert stored.status == "resolved"
    assert stored.actual_resolution_date is not None
    [event] = TimelineEvent.query.filter_by(event_type="status_changed").all()
    assert event.payload == {"old_status": "pending", "new_status": "resolved"}


def test_change_status_validation(create_complaint):
    complaint = create_complaint()
    with pytest.raises(ValidationError):
        complaints.change_status(complaint.id, "archived")
    with pytest.raises(NotFoundError):
        complaints.change_status("missing", "resolved")


def test_change_priority(create_complaint):
    complaint = create_complaint()
    complaints.change_priority(complaint.id, "URGENT")
    assert db.session.get(Complaint, complaint.id).priority == "urgent"
    [event] = TimelineEvent.query.filter_by(event_type="priority_changed").all()
    assert event.payload == {"old_priority": "medium", "new_priority": "urgent"}


def test_officer_worklist_and_counts(create_officer, create_complaint):
    from utils.assignment import assign_existing_officer

    officer = create_officer()
    mine = create_complaint()
    create_complaint()
    assign_existing_officer(mine.id, officer.id)

    assert [c.id for c in complaints.complaints_for_officer_user(officer.user_id)] == [mine.id]
    assert complaints.status_counts() == {"pending": 1, "in_progress": 1, "resolved": 0, "rejected": 0}
