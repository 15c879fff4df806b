"""Complaint closure and deadline extension workflow."""
from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Complaint, ExtensionRequest, Officer, User, generate_uuid
from utils import timeline
from utils.errors import NotFoundError, ValidationError
from utils.timeline import Actor, record_event
from utils.transactions import atomic, lock_for_update


def _get_complaint(complaint_id: str) -> Complaint:
    complaint = db.session.get(Complaint, complaint_id) if complaint_id else None
    if complaint is None:
        raise NotFoundError("Complaint")
    return complaint


def _require_assigned_officer(complaint: Complaint, officer_user_id: str, action: str) -> None:
    if not complaint.is_officer_assigned or not officer_user_id or complaint.assigned_to_user_id != officer_user_id:
        raise ValidationError(f"Only the assigned officer can {action}")


def validate_extension_days(days) -> int:
    low = int(current_app.config.get("EXTENSION_MIN_DAYS", 1))
    high = int(current_app.config.get("EXTENSION_MAX_DAYS", 365))
    if isinstance(days, bool):
        raise ValidationError("Extension days must be a whole number")
    try:
        value = int(days)
    except (TypeError, ValueError):
        raise ValidationError("Extension days must be a whole number") from None
    if isinstance(days, float) and days != value:
        raise ValidationError("Extension days must be a whole number")
    if value < low or value > high:
        raise ValidationError(f"Extension days must be between {low} and {high}")
    return value


def _closer_snapshot(officer_user_id: str, closer_name: str | None, closer_email: str | None) -> dict:
    try:
        user = db.session.get(User, officer_user_id)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Closer lookup failed; using caller details", extra={"user_id": officer_user_id})
        user = None
    return {
        "id": officer_user_id,
        "name": user.full_name if user else closer_name,
        "email": user.email if user else closer_email,
    }


def close_complaint(
    complaint_id: str,
    officer_user_id: str,
    remarks: str,
    attachments=None,
    closing_proof=None,
    closer_name: str | None = None,
    closer_email: str | None = None,
    actor: Actor | None = None,
) -> Complaint:
    """Resolve a complaint on behalf of its assigned officer.

    The officer link is left in place so a later reassignment can reopen it.
    """
    text = (remarks or "").strip()
    min_length = int(current_app.config.get("CLOSING_REMARKS_MIN_LENGTH", 5))
    if len(text) < min_length:
        raise ValidationError(f"Closing remarks must be at least {min_length} characters")

    closed_by = _closer_snapshot(officer_user_id, closer_name, closer_email)
    closed_at = datetime.utcnow()
    with atomic("Complaint closure", complaint_id=complaint_id, user_id=officer_user_id):
        complaint = lock_for_update(Complaint, complaint_id, "Complaint")
        if complaint.is_complaint_closed:
            raise ValidationError("Complaint is already closed")
        _require_assigned_officer(complaint, officer_user_id, "close this complaint")

        complaint.status = "resolved"
        complaint.is_complaint_closed = True
        complaint.actual_resolution_date = closed_at
        complaint.closing_details = {
            "closed_at": closed_at.isoformat(),
            "remarks": text,
            "attachments": list(attachments or []),
            "closed_by_officer": closed_by,
            "closing_proof": closing_proof,
        }
        officer = (
            Officer.query.filter(Officer.id == complaint.assigned_officer_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if officer is not None:
            officer.closed = (officer.closed or 0) + 1

    current_app.logger.info("Complaint closed", extra={"complaint_id": complaint_id, "user_id": officer_user_id})
    record_event(
        timeline.append_complaint_closed,
        complaint_id,
        closed_at=closed_at.isoformat(),
        closed_by_user_id=officer_user_id,
        closed_by_name=closed_by["name"],
        closed_by_email=closed_by["email"],
        remarks_excerpt=text[:200],
        actor=actor,
    )
    return complaint


def request_officer_extension(
    complaint_id: str,
    officer_user_id: str,
    days,
    reason: str | None = None,
    actor: Actor | None = None,
) -> ExtensionRequest:
    days_requested = validate_extension_days(days)
    reason = (reason or "").strip() or None
    if reason and len(reason) > 2000:
        raise ValidationError("Reason must be at most 2000 characters")

    with atomic("Extension request", complaint_id=complaint_id, user_id=officer_user_id):
        complaint = lock_for_update(Complaint, complaint_id, "Complaint")
        _require_assigned_officer(complaint, officer_user_id, "request an extension")
        request = ExtensionRequest(
            id=generate_uuid(),
            complaint_id=complaint.id,
            requested_by=officer_user_id,
            requested_by_role="officer",
            days_requested=days_requested,
            reason=reason,
            status="pending",
        )
        db.session.add(request)
        request_id = request.id

    current_app.logger.info(
        "Extension requested",
        extra={"complaint_id": complaint_id, "request_id": request_id, "days": days_requested},
    )
    record_event(
        timeline.append_extension_requested,
        complaint_id,
        request_id=request_id,
        requested_by=officer_user_id,
        requested_by_role="officer",
        days_requested=days_requested,
        reason=reason,
        actor=actor,
    )
    return request


def _latest_pending(complaint_id: str) -> ExtensionRequest:
    request = (
        ExtensionRequest.query.filter_by(complaint_id=complaint_id, status="pending")
        .order_by(ExtensionRequest.created_at.desc())
        .with_for_update()
        .populate_existing()
        .first()
    )
    if request is None:
        raise ValidationError("No pending extension request for this complaint")
    return request


def _extend_deadline(complaint: Complaint, days: int) -> None:
    complaint.time_boundary = (complaint.time_boundary or 0) + days
    complaint.is_extended = True


def _decide(request: ExtensionRequest, status: str, admin_user_id: str, notes: str | None) -> None:
    if notes and len(notes) > 1000:
        raise ValidationError("Notes must be at most 1000 characters")
    request.status = status
    request.decided_by = admin_user_id
    request.decided_by_role = "admin"
    request.decided_at = datetime.utcnow()
    request.notes = notes


def approve_extension(
    complaint_id: str,
    admin_user_id: str,
    days=None,
    notes: str | None = None,
    actor: Actor | None = None,
) -> ExtensionRequest:
    """Approve the newest pending request and extend the deadline as one transaction."""
    _get_complaint(complaint_id)
    notes = (notes or "").strip() or None
    with atomic("Extension approval", complaint_id=complaint_id, admin_id=admin_user_id):
        request = _latest_pending(complaint_id)
        days_granted = validate_extension_days(days if days is not None else request.days_requested)
        _decide(request, "approved", admin_user_id, notes)
        db.session.flush()
        complaint = lock_for_update(Complaint, complaint_id, "Complaint")
        _extend_deadline(complaint, days_granted)
        db.session.flush()
        request_id = request.id
        new_deadline_days = complaint.time_boundary

    current_app.logger.info(
        "Extension approved",
        extra={"complaint_id": complaint_id, "request_id": request_id, "days": days_granted},
    )
    record_event(
        timeline.append_extension_approved,
        complaint_id,
        request_id=request_id,
        days_granted=days_granted,
        new_deadline_days=new_deadline_days,
        decided_by=admin_user_id,
        actor=actor,
    )
    return request


def reject_extension(
    complaint_id: str,
    admin_user_id: str,
    notes: str | None = None,
    actor: Actor | None = None,
) -> ExtensionRequest:
    _get_complaint(complaint_id)
    notes = (notes or "").strip() or None
    with atomic("Extension rejection", complaint_id=complaint_id, admin_id=admin_user_id):
        request = _latest_pending(complaint_id)
        _decide(request, "rejected", admin_user_id, notes)
        request_id = request.id

    current_app.logger.info("Extension rejected", extra={"complaint_id": complaint_id, "request_id": request_id})
    record_event(
        timeline.append_extension_rejected,
        complaint_id,
        request_id=request_id,
        decided_by=admin_user_id,
        notes=notes,
        actor=actor,
    )
    return request


def list_extension_requests(complaint_id: str) -> list[ExtensionRequest]:
    _get_complaint(complaint_id)
    return (
        ExtensionRequest.query.filter_by(complaint_id=complaint_id)
        .order_by(ExtensionRequest.created_at.desc())
        .all()
    )
