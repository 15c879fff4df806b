"""Append-only timeline: idempotency, ordering, and notification side effects."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import TimelineEvent
from utils import timeline
from utils.errors import ValidationError
from utils.timeline import Actor, append_event, get_assignment_history, get_timeline, record_event


@pytest.fixture()
def assigned_complaint(create_officer, create_complaint):
    from utils.assignment import assign_existing_officer

    officer = create_officer()
    complaint = create_complaint()
    assign_existing_officer(complaint.id, officer.id)
    return complaint, officer


class TestAppendEvent:
    def test_records_actor_and_payload(self, create_complaint, create_user):
        complaint = create_complaint()
        admin = create_user(full_name="Priya Nair")

        event = append_event(
            complaint.id,
            "status_changed",
            {"old_status": "pending", "new_status": "in_progress"},
            actor=Actor.from_user(admin),
        )

        stored = db.session.get(TimelineEvent, event.id)
        assert stored.actor_user_id == admin.id
        assert stored.actor_role == "admin"
        assert stored.actor_name == "Priya Nair"
        assert stored.payload == {"old_status": "pending", "new_status": "in_progress"}
        assert stored.to_payload()["type"] == "status_changed"

    def test_unknown_event_type(self, create_complaint):
        complaint = create_complaint()
        with pytest.raises(ValidationError):
            append_event(complaint.id, "complaint_teleported", {})
        assert TimelineEvent.query.count() == 0

    def test_unknown_actor_role(self, create_complaint):
        complaint = create_complaint()
        with pytest.raises(ValidationError):
            append_event(complaint.id, "status_changed", {}, actor=Actor(user_id="u1", role="auditor"))

    def test_same_key_is_recorded_and_sent_once(self, assigned_complaint, channels):
        complaint, officer = assigned_complaint
        inbox = channels(officer.user)[officer.user_id]

        first = append_event(complaint.id, "note_added", {"note_id": "n1"}, idempotency_key="note-n1")
        second = append_event(complaint.id, "note_added", {"note_id": "n1"}, idempotency_key="note-n1")

        assert first is not None
        assert second is None
        assert TimelineEvent.query.filter_by(complaint_id=complaint.id, event_type="note_added").count() == 1
        assert [message["timeline_event_id"] for message in inbox.drain()] == [first.id]

    def test_same_key_on_another_complaint_is_independent(self, create_complaint):
        one = create_complaint()
        two = create_complaint()
        assert append_event(one.id, "note_added", {}, idempotency_key="note-shared") is not None
        assert append_event(two.id, "note_added", {}, idempotency_key="note-shared") is not None

    def test_blank_key_means_no_key(self, create_complaint):
        complaint = create_complaint()
        append_event(complaint.id, "complaint_updated", {}, idempotency_key="   ")
        append_event(complaint.id, "complaint_updated", {}, idempotency_key="")

        rows = TimelineEvent.query.filter_by(complaint_id=complaint.id).all()
        assert len(rows) == 2
        assert all(row.idempotency_key is None for row in rows)

    def test_lost_insert_race_is_a_silent_duplicate(self, monkeypatch, assigned_complaint, channels):
        complaint, officer = assigned_complaint
        inbox = channels(officer.user)[officer.user_id]
        append_event(complaint.id, "note_added", {"note_id": "n9"}, idempotency_key="note-n9")
        assert len(inbox.drain()) == 1

        # The pre-check misses the row, so the unique index has to catch it.
        real_find = timeline._find_by_key
        lookups = []

        def missed_precheck(complaint_id, key):
            lookups.append(key)
            return None if len(lookups) == 1 else real_find(complaint_id, key)

        monkeypatch.setattr(timeline, "_find_by_key", missed_precheck)
        result = append_event(complaint.id, "note_added", {"note_id": "n9"}, idempotency_key="note-n9")

        assert result is None
        assert TimelineEvent.query.filter_by(idempotency_key="note-n9").count() == 1
        assert inbox.drain() == []

    def test_keyed_insert_rejected_for_another_reason_raises(self, monkeypatch, assigned_complaint, channels):
        complaint, officer = assigned_complaint
        inbox = channels(officer.user)[officer.user_id]

        def rejected_persist(event):
            raise IntegrityError("INSERT INTO complaint_timeline_events", {}, Exception("CHECK constraint failed"))

        monkeypatch.setattr(timeline, "_persist", rejected_persist)
        with pytest.raises(IntegrityError):
            append_event(complaint.id, "note_added", {"note_id": "n5"}, idempotency_key="note-n5")

        assert TimelineEvent.query.filter_by(idempotency_key="note-n5").count() == 0
        assert [message["event_type"] for message in inbox.drain()] == ["note_added"]

    def test_skip_notification(self, assigned_complaint, channels):
        complaint, officer = assigned_complaint
        inbox = channels(officer.user)[officer.user_id]

        append_event(complaint.id, "note_added", {"note_id": "quiet"}, skip_notification=True)
        assert inbox.drain() == []

        timeline.append_documents_summarized(complaint.id, summary_id="s1", document_count=3)
        assert TimelineEvent.query.filter_by(event_type="documents_summarized").one().idempotency_key == "summary-s1"

    def test_failed_write_still_notifies_and_raises(self, monkeypatch, assigned_complaint, channels):
        complaint, officer = assigned_complaint
        inbox = channels(officer.user)[officer.user_id]

        def failing_persist(event):
            raise RuntimeError("disk full")

        monkeypatch.setattr(timeline, "_persist", failing_persist)
        with pytest.raises(RuntimeError):
            append_event(complaint.id, "note_added", {"note_id": "lost", "excerpt": "Site visit done"})

        [message] = inbox.drain()
        assert message["event_type"] == "note_added"
        assert message["body"] == "Site visit done"

    def test_dispatch_failure_does_not_fail_append(self, monkeypatch, create_complaint):
        complaint = create_complaint()

        def broken_dispatch(notice):
            raise RuntimeError("hub down")

        monkeypatch.setattr(timeline, "dispatch_event", broken_dispatch)
        assert append_event(complaint.id, "complaint_updated", {"field": "title"}) is not None

    def test_events_cannot_be_edited(self, create_complaint):
        complaint = create_complaint()
        event = append_event(complaint.id, "complaint_updated", {"field": "title"})
        event.payload = {"field": "description"}
        with pytest.raises(RuntimeError, match="append-only"):
            db.session.commit()
        db.session.rollback()


def test_record_event_swallows_failures(app):
    def exploding(*args, **kwargs):
        raise RuntimeError("boom")

    assert record_event(exploding, "c1", note_id="n1") is None


def test_record_event_passes_result_through(create_complaint):
    complaint = create_complaint()
    event = record_event(timeline.append_status_changed, complaint.id, old_status="pending", new_status="resolved")
    assert event.event_type == "status_changed"


class TestTypedAppenders:
    def test_keys_follow_entity_ids(self, create_complaint):
        complaint = create_complaint()
        timeline.append_complaint_created(complaint.id, title="Broken pipe")
        timeline.append_officer_note_added(complaint.id, note_id="n1", officer_id="o1", direction="outward")
        timeline.append_extension_requested(
            complaint.id, request_id="r1", requested_by="u1", requested_by_role="officer", days_requested=4
        )

        keys = {row.event_type: row.idempotency_key for row in TimelineEvent.query.all()}
        assert keys == {
            "complaint_created": f"created-{complaint.id}",
            "officer_note_added": "officer-note-n1",
            "extension_requested": "ext-req-r1",
        }
        note = TimelineEvent.query.filter_by(event_type="officer_note_added").one()
        assert note.payload == {"note_id": "n1", "officer_id": "o1", "type": "outward"}

    def test_demand_type_is_checked(self, create_complaint):
        complaint = create_complaint()
        with pytest.raises(ValidationError):
            timeline.append_officer_demand_created(complaint.id, demand_type="video")
        event = timeline.append_officer_demand_created(
            complaint.id, demand_type="docs", attachment_urls=("https://files.test/a.pdf",)
        )
        assert event.payload == {"type": "docs", "attachment_urls": ["https://files.test/a.pdf"]}


class TestQueries:
    def test_timeline_is_ordered_and_filtered(self, create_complaint):
        complaint = create_complaint()
        base = datetime.utcnow()
        for offset, event_type in enumerate(["status_changed", "note_added", "priority_changed", "note_added"]):
            event = TimelineEvent(
                complaint_id=complaint.id,
                event_type=event_type,
                at=base + timedelta(seconds=offset),
                payload={"n": offset},
            )
            db.session.add(event)
        db.session.commit()

        assert [row.payload["n"] for row in get_timeline(complaint.id)] == [0, 1, 2, 3]
        assert [row.payload["n"] for row in get_timeline(complaint.id, event_types=["note_added"])] == [1, 3]
        assert [row.payload["n"] for row in get_timeline(complaint.id, limit=2, offset=1)] == [1, 2]

    def test_assignment_history(self, create_officer, create_complaint):
        from utils.assignment import assign_existing_officer, reassign_officer, unassign_complaint

        first = create_officer()
        second = create_officer()
        complaint = create_complaint()
        timeline.append_complaint_created(complaint.id, title="Broken pipe")
        assign_existing_officer(complaint.id, first.id)
        reassign_officer(complaint.id, second.id)
        unassign_complaint(complaint.id)

        history = get_assignment_history(complaint.id)
        assert [row.event_type for row in history] == [
            "officer_assigned",
            "officer_reassigned",
            "officer_unassigned",
        ]
