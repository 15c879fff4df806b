"""Complaint intake and admin edits to status and priority."""
from __future__ import annotations

from datetime import datetime
from typing import Mapping

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import COMPLAINT_CATEGORIES, COMPLAINT_PRIORITIES, COMPLAINT_STATUSES, Complaint, generate_uuid
from utils import timeline
from utils.errors import NotFoundError, ValidationError
from utils.security import normalize_email
from utils.timeline import Actor, record_event
from utils.transactions import atomic, lock_for_update


def _text(data: Mapping, field: str, min_length: int = 1, max_length: int | None = None) -> str:
    raw = data.get(field)
    value = raw.strip() if isinstance(raw, str) else ""
    if len(value) < min_length:
        raise ValidationError(f"{field} must be at least {min_length} characters")
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return value


def get_complaint(complaint_id: str) -> Complaint:
    complaint = db.session.get(Complaint, complaint_id) if complaint_id else None
    if complaint is None:
        raise NotFoundError("Complaint")
    return complaint


def create_complaint(data: Mapping, actor: Actor | None = None) -> Complaint:
    title = _text(data, "title", 5, 255)
    description = _text(data, "description", 20)
    category = (data.get("category") or "").strip().lower()
    if category not in COMPLAINT_CATEGORIES:
        raise ValidationError(f"category must be one of: {', '.join(COMPLAINT_CATEGORIES)}")
    priority = (data.get("priority") or "medium").strip().lower()
    if priority not in COMPLAINT_PRIORITIES:
        raise ValidationError(f"priority must be one of: {', '.join(COMPLAINT_PRIORITIES)}")
    contact_name = _text(data, "contact_name", 2, 150)
    contact_email = normalize_email(data.get("contact_email"))
    if "@" not in contact_email:
        raise ValidationError("contact_email is invalid")

    created_by_user_id = actor.user_id if actor else None
    complaint = Complaint(
        id=generate_uuid(),
        title=title,
        description=description,
        category=category,
        priority=priority,
        status="pending",
        contact_name=contact_name,
        contact_email=contact_email,
        contact_phone=(data.get("contact_phone") or "").strip() or None,
        created_by_user_id=created_by_user_id,
        is_officer_assigned=False,
        time_boundary=int(current_app.config.get("DEFAULT_ASSIGNMENT_DAYS", 7)),
    )
    db.session.add(complaint)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Complaint creation failed", extra={"category": category})
        raise

    current_app.logger.info("Complaint created", extra={"complaint_id": complaint.id, "category": category})
    record_event(
        timeline.append_complaint_created,
        complaint.id,
        title=title,
        category=category,
        created_by=actor.name if actor else None,
        created_by_user_id=created_by_user_id,
        actor=actor,
    )
    return complaint


def change_status(complaint_id: str, status: str, actor: Actor | None = None) -> Complaint:
    new_status = (status or "").strip().lower()
    if new_status not in COMPLAINT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(COMPLAINT_STATUSES)}")
    with atomic("Status change", complaint_id=complaint_id):
        complaint = lock_for_update(Complaint, complaint_id, "Complaint")
        old_status = complaint.status
        if old_status == new_status:
            return complaint
        complaint.status = new_status
        if new_status == "resolved" and complaint.actual_resolution_date is None:
            complaint.actual_resolution_date = datetime.utcnow()

    record_event(timeline.append_status_changed, complaint_id, old_status=old_status, new_status=new_status, actor=actor)
    return complaint


def change_priority(complaint_id: str, priority: str, actor: Actor | None = None) -> Complaint:
    new_priority = (priority or "").strip().lower()
    if new_priority not in COMPLAINT_PRIORITIES:
        raise ValidationError(f"priority must be one of: {', '.join(COMPLAINT_PRIORITIES)}")
    with atomic("Priority change", complaint_id=complaint_id):
        complaint = lock_for_update(Complaint, complaint_id, "Complaint")
        old_priority = complaint.priority
        if old_priority == new_priority:
            return complaint
        complaint.priority = new_priority

    record_event(
        timeline.append_priority_changed,
        complaint_id,
        old_priority=old_priority,
        new_priority=new_priority,
        actor=actor,
    )
    return complaint


def complaints_for_officer_user(user_id: str) -> list[Complaint]:
    return (
        Complaint.query.filter(Complaint.assigned_to_user_id == user_id, Complaint.is_officer_assigned.is_(True))
        .order_by(Complaint.assigned_time.desc())
        .all()
    )


def status_counts() -> dict[str, int]:
    rows = db.session.query(Complaint.status, db.func.count(Complaint.id)).group_by(Complaint.status).all()
    counts = {status: 0 for status in COMPLAINT_STATUSES}
    counts.update({status: total for status, total in rows})
    return counts
