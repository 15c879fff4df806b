"""Notes and documents attached to a complaint by admins and by its assigned officer."""
from __future__ import annotations

from flask import current_app

from extensions import db
from models import AUTHOR_KINDS, ENTRY_DIRECTIONS, Complaint, ComplaintDocument, ComplaintNote, Officer, generate_uuid
from utils import timeline
from utils.errors import NotFoundError, ValidationError
from utils.timeline import Actor, record_event
from utils.transactions import atomic, lock_for_update

NOTE_MIN_LENGTH = 5
NOTE_MAX_LENGTH = 2000


def _clean_note(note: str | None) -> str:
    text = (note or "").strip()
    if len(text) < NOTE_MIN_LENGTH or len(text) > NOTE_MAX_LENGTH:
        raise ValidationError(f"Note must be between {NOTE_MIN_LENGTH} and {NOTE_MAX_LENGTH} characters")
    return text


def _direction(value: str | None) -> str:
    direction = (value or "inward").strip().lower()
    if direction not in ENTRY_DIRECTIONS:
        raise ValidationError("Direction must be inward or outward")
    return direction


def _author_kind(value: str | None) -> str | None:
    if value in (None, ""):
        return None
    if value not in AUTHOR_KINDS:
        raise ValidationError("Author must be admin or officer")
    return value


def _file_fields(file_url: str | None, file_name: str | None) -> tuple[str, str]:
    url = (file_url or "").strip()
    name = (file_name or "").strip()
    if not url or not name:
        raise ValidationError("file_url and file_name are required")
    return url, name


def _get_complaint(complaint_id: str) -> Complaint:
    complaint = db.session.get(Complaint, complaint_id) if complaint_id else None
    if complaint is None:
        raise NotFoundError("Complaint")
    return complaint


def _assigned_officer_for(complaint: Complaint, officer_user_id: str) -> Officer:
    if not complaint.is_officer_assigned or complaint.assigned_to_user_id != officer_user_id:
        raise ValidationError("Only the assigned officer can add to this complaint")
    return lock_for_update(Officer, complaint.assigned_officer_id, "Officer")


def add_admin_note(complaint_id: str, note: str, author_user_id: str | None = None, author_name: str | None = None, actor: Actor | None = None) -> ComplaintNote:
    text = _clean_note(note)
    _get_complaint(complaint_id)
    entry = ComplaintNote(
        id=generate_uuid(),
        complaint_id=complaint_id,
        author_kind="admin",
        author_user_id=author_user_id,
        author_name=author_name,
        note=text,
        attachments=[],
    )
    with atomic("Admin note", complaint_id=complaint_id):
        db.session.add(entry)
        note_id = entry.id
    record_event(timeline.append_note_added, complaint_id, note_id=note_id, excerpt=text[:120], actor=actor)
    return entry


def add_officer_note(
    complaint_id: str,
    officer_user_id: str,
    note: str,
    direction: str | None = None,
    attachments=None,
    actor: Actor | None = None,
) -> ComplaintNote:
    text = _clean_note(note)
    kind = _direction(direction)
    with atomic("Officer note", complaint_id=complaint_id, user_id=officer_user_id):
        complaint = lock_for_update(Complaint, complaint_id, "Complaint")
        officer = _assigned_officer_for(complaint, officer_user_id)
        entry = ComplaintNote(
            id=generate_uuid(),
            complaint_id=complaint.id,
            author_kind="officer",
            author_user_id=officer_user_id,
            author_name=officer.name,
            officer_id=officer.id,
            direction=kind,
            note=text,
            attachments=list(attachments or []),
        )
        db.session.add(entry)
        officer.acted = (officer.acted or 0) + 1
        note_id, officer_id = entry.id, officer.id

    record_event(
        timeline.append_officer_note_added,
        complaint_id,
        note_id=note_id,
        officer_id=officer_id,
        direction=kind,
        excerpt=text[:120],
        actor=actor,
    )
    return entry


def add_admin_document(
    complaint_id: str,
    file_url: str,
    file_name: str,
    file_type: str | None = None,
    uploaded_by: str | None = None,
    actor: Actor | None = None,
) -> ComplaintDocument:
    url, name = _file_fields(file_url, file_name)
    _get_complaint(complaint_id)
    document = ComplaintDocument(
        id=generate_uuid(),
        complaint_id=complaint_id,
        author_kind="admin",
        uploaded_by=uploaded_by,
        file_url=url,
        file_name=name,
        file_type=(file_type or "").strip() or None,
    )
    with atomic("Admin document", complaint_id=complaint_id):
        db.session.add(document)
        document_id = document.id
    record_event(
        timeline.append_document_added,
        complaint_id,
        document_id=document_id,
        file_name=name,
        file_type=document.file_type,
        actor=actor,
    )
    return document


def add_officer_document(
    complaint_id: str,
    officer_user_id: str,
    file_url: str,
    file_name: str,
    direction: str | None = None,
    file_type: str | None = None,
    note_id: str | None = None,
    actor: Actor | None = None,
) -> ComplaintDocument:
    url, name = _file_fields(file_url, file_name)
    kind = _direction(direction)
    with atomic("Officer document", complaint_id=complaint_id, user_id=officer_user_id):
        complaint = lock_for_update(Complaint, complaint_id, "Complaint")
        officer = _assigned_officer_for(complaint, officer_user_id)
        if note_id and ComplaintNote.query.filter_by(id=note_id, complaint_id=complaint.id).first() is None:
            raise NotFoundError("Note")
        document = ComplaintDocument(
            id=generate_uuid(),
            complaint_id=complaint.id,
            author_kind="officer",
            uploaded_by=officer_user_id,
            officer_id=officer.id,
            note_id=note_id,
            direction=kind,
            file_url=url,
            file_name=name,
            file_type=(file_type or "").strip() or None,
        )
        db.session.add(document)
        officer.acted = (officer.acted or 0) + 1
        document_id, officer_id = document.id, officer.id

    current_app.logger.info(
        "Officer document added",
        extra={"complaint_id": complaint_id, "document_id": document_id, "officer_id": officer_id},
    )
    record_event(
        timeline.append_officer_document_added,
        complaint_id,
        attachment_id=document_id,
        officer_id=officer_id,
        file_name=name,
        direction=kind,
        actor=actor,
    )
    return document


def list_notes(complaint_id: str, author_kind: str | None = None) -> list[ComplaintNote]:
    _get_complaint(complaint_id)
    return ComplaintNote.for_author(complaint_id, _author_kind(author_kind)).all()


def list_documents(complaint_id: str, author_kind: str | None = None) -> list[ComplaintDocument]:
    _get_complaint(complaint_id)
    return ComplaintDocument.for_author(complaint_id, _author_kind(author_kind)).all()
