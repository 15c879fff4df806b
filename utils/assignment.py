"""Officer assignment engine.

A complaint's ``assigned_officer_id`` is the authoritative link; each
officer's ``assigned_complaints`` list is derived from it. Every operation
here rewrites both sides inside one transaction, holding row locks on the
complaint and the officers involved, and records the change on the timeline
only after the commit.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping

from flask import current_app
from sqlalchemy import func

from extensions import db
from models import Complaint, Officer, User, generate_uuid
from utils import timeline
from utils.errors import NotFoundError, ValidationError
from utils.security import generate_token, normalize_email
from utils.timeline import Actor, record_event
from utils.transactions import atomic, lock_for_update


class OfficerResolution(enum.Enum):
    NEEDS_BOTH = "needs_both"
    NEEDS_USER_ONLY = "needs_user_only"
    REUSE = "reuse"


@dataclass(frozen=True)
class ExecutiveLookup:
    decision: OfficerResolution
    officer: Officer | None = None
    user: User | None = None


@dataclass(frozen=True)
class _Transfer:
    complaint: Complaint
    officer: dict
    user_id: str
    previous: dict | None
    days: int
    reopened: bool
    previous_closed_at: str | None


def _required(executive: Mapping, field: str) -> str:
    value = executive.get(field)
    value = value.strip() if isinstance(value, str) else value
    if not value:
        raise ValidationError(f"Executive {field} is required")
    return str(value)


def _deadline_days(value=None) -> int:
    default = int(current_app.config.get("DEFAULT_ASSIGNMENT_DAYS", 7))
    if value in (None, ""):
        return default
    try:
        days = int(value)
    except (TypeError, ValueError):
        raise ValidationError("time_boundary must be a whole number of days") from None
    if days < 1:
        raise ValidationError("time_boundary must be at least 1 day")
    return days


def _get_complaint(complaint_id: str) -> Complaint:
    complaint = db.session.get(Complaint, complaint_id) if complaint_id else None
    if complaint is None:
        raise NotFoundError("Complaint")
    return complaint


def _current_officer_id(complaint: Complaint) -> str | None:
    return complaint.assigned_officer_id if complaint.is_officer_assigned else None


def _linked_user(officer: Officer) -> User:
    user = db.session.get(User, officer.user_id) if officer.user_id else None
    if user is None:
        raise NotFoundError("Officer user account")
    return user


def _detach(officer: Officer, complaint_id: str) -> bool:
    current = list(officer.assigned_complaints or [])
    if complaint_id not in current:
        return False
    officer.assigned_complaints = [cid for cid in current if cid != complaint_id]
    return True


def _attach(officer: Officer, complaint_id: str) -> bool:
    current = list(officer.assigned_complaints or [])
    if complaint_id in current:
        return False
    officer.assigned_complaints = current + [complaint_id]
    officer.arrived = (officer.arrived or 0) + 1
    return True


def resolve_executive(email: str) -> ExecutiveLookup:
    """Decide once, from two lookups, what must be created for this email."""
    email = normalize_email(email)
    officer = Officer.query.filter(func.lower(Officer.email) == email).first()
    if officer is None:
        return ExecutiveLookup(OfficerResolution.NEEDS_BOTH)
    user = db.session.get(User, officer.user_id) if officer.user_id else None
    if user is None:
        return ExecutiveLookup(OfficerResolution.NEEDS_USER_ONLY, officer=officer)
    return ExecutiveLookup(OfficerResolution.REUSE, officer=officer, user=user)


def _officer_account(email: str, name: str, officer_id: str) -> User:
    user = User.query.filter(func.lower(User.email) == email).first()
    if user is None:
        user = User(id=generate_uuid(), full_name=name, email=email, role="officer", is_active=True)
        # Officers sign in through a reset flow; the generated password is never disclosed.
        user.set_password(generate_token())
        db.session.add(user)
        return user
    if user.role != "officer":
        raise ValidationError("Email already belongs to a non-officer account")
    linked = Officer.query.filter(Officer.user_id == user.id, Officer.id != officer_id).first()
    if linked is not None:
        raise ValidationError("Officer account is already linked to another officer")
    return user


def _provision_officer(lookup: ExecutiveLookup, executive: Mapping, name: str, designation: str, email: str) -> str:
    department = (executive.get("department") or "").strip() or None
    phone = (executive.get("phone") or "").strip() or None
    with atomic("Officer provisioning", email=email, decision=lookup.decision.value):
        if lookup.decision is OfficerResolution.NEEDS_BOTH:
            officer = Officer(
                id=generate_uuid(),
                name=name,
                designation=designation,
                department=department,
                phone=phone,
                email=email,
                assigned_complaints=[],
                arrived=0,
                acted=0,
                closed=0,
            )
            db.session.add(officer)
        else:
            officer = lock_for_update(Officer, lookup.officer.id, "Officer")
            officer.name = name
            officer.designation = designation
            if department:
                officer.department = department
            if phone:
                officer.phone = phone
        user = _officer_account(email, name, officer.id)
        officer.user_id = user.id
        officer_id = officer.id
    current_app.logger.info(
        "Officer provisioned",
        extra={"officer_id": officer_id, "decision": lookup.decision.value},
    )
    return officer_id


def _transfer(complaint_id: str, officer_id: str, days: int, require_current: bool = False) -> _Transfer:
    with atomic("Officer assignment", complaint_id=complaint_id, officer_id=officer_id):
        complaint = lock_for_update(Complaint, complaint_id, "Complaint")
        current_id = _current_officer_id(complaint)
        if require_current and not current_id:
            raise ValidationError("Complaint is not assigned to any officer")
        if current_id == officer_id:
            raise ValidationError("Complaint is already assigned to this officer")

        officer_ids = sorted({officer_id, current_id} - {None})
        rows = (
            Officer.query.filter(Officer.id.in_(officer_ids))
            .order_by(Officer.id)
            .with_for_update()
            .populate_existing()
            .all()
        )
        locked = {row.id: row for row in rows}
        officer = locked.get(officer_id)
        if officer is None:
            raise NotFoundError("Officer")
        user = _linked_user(officer)

        previous = None
        if current_id:
            previous_officer = locked.get(current_id)
            if previous_officer is not None:
                _detach(previous_officer, complaint.id)
                previous = previous_officer.contact_snapshot()
            else:
                previous = {"id": current_id, "name": None, "email": None}

        _attach(officer, complaint.id)
        complaint.assigned_officer_id = officer.id
        complaint.assigned_to_user_id = user.id
        complaint.is_officer_assigned = True
        complaint.assigned_time = datetime.utcnow()
        complaint.time_boundary = days
        complaint.status = "in_progress"

        reopened = bool(complaint.is_complaint_closed)
        previous_closed_at = None
        if reopened:
            # closing_details stays as the record of the earlier closure
            complaint.is_complaint_closed = False
            previous_closed_at = (complaint.closing_details or {}).get("closed_at")

        return _Transfer(
            complaint=complaint,
            officer=officer.contact_snapshot(),
            user_id=user.id,
            previous=previous,
            days=days,
            reopened=reopened,
            previous_closed_at=previous_closed_at,
        )


def _record_transfer(transfer: _Transfer, actor: Actor | None, is_new_officer: bool = False) -> None:
    complaint_id = transfer.complaint.id
    if transfer.previous is None:
        record_event(
            timeline.append_officer_assigned,
            complaint_id,
            assigned_to_user_id=transfer.user_id,
            officer_id=transfer.officer["id"],
            officer_name=transfer.officer["name"],
            officer_email=transfer.officer["email"],
            time_deadline_days=transfer.days,
            is_new_officer=is_new_officer,
            actor=actor,
        )
    else:
        record_event(
            timeline.append_officer_reassigned,
            complaint_id,
            previous_officer_id=transfer.previous["id"],
            previous_officer_name=transfer.previous["name"],
            previous_officer_email=transfer.previous["email"],
            new_officer_id=transfer.officer["id"],
            new_officer_name=transfer.officer["name"],
            new_officer_email=transfer.officer["email"],
            new_time_deadline_days=transfer.days,
            actor=actor,
        )
    if transfer.reopened:
        record_event(
            timeline.append_complaint_reopened,
            complaint_id,
            reason="reassigned",
            previous_closed_at=transfer.previous_closed_at,
            actor=actor,
        )


def assign_officer(complaint_id: str, executive: Mapping, actor: Actor | None = None) -> Complaint:
    """Assign by executive details, creating the officer and/or its account on first sight of the email."""
    name = _required(executive, "name")
    designation = _required(executive, "designation")
    email = normalize_email(_required(executive, "email"))
    if "@" not in email:
        raise ValidationError("Executive email is invalid")
    days = _deadline_days(executive.get("time_boundary"))
    _get_complaint(complaint_id)

    lookup = resolve_executive(email)
    if lookup.decision is OfficerResolution.REUSE:
        return assign_existing_officer(complaint_id, lookup.officer.id, actor=actor, time_boundary=days)

    officer_id = _provision_officer(lookup, executive, name, designation, email)
    return assign_existing_officer(
        complaint_id,
        officer_id,
        actor=actor,
        time_boundary=days,
        is_new_officer=lookup.decision is OfficerResolution.NEEDS_BOTH,
    )


def assign_existing_officer(
    complaint_id: str,
    officer_id: str,
    actor: Actor | None = None,
    time_boundary=None,
    is_new_officer: bool = False,
) -> Complaint:
    """Assign a known officer; a complaint held by someone else is reassigned instead.

    The current holder is read under the row lock, so the decision always
    reflects committed state.
    """
    transfer = _transfer(complaint_id, officer_id, _deadline_days(time_boundary))
    current_app.logger.info(
        "Complaint assigned" if transfer.previous is None else "Complaint reassigned",
        extra={
            "complaint_id": complaint_id,
            "previous_officer_id": transfer.previous["id"] if transfer.previous else None,
            "officer_id": officer_id,
            "reopened": transfer.reopened,
        },
    )
    _record_transfer(transfer, actor, is_new_officer=is_new_officer)
    return transfer.complaint


def reassign_officer(
    complaint_id: str,
    new_officer_id: str,
    actor: Actor | None = None,
    time_boundary=None,
) -> Complaint:
    transfer = _transfer(complaint_id, new_officer_id, _deadline_days(time_boundary), require_current=True)
    current_app.logger.info(
        "Complaint reassigned",
        extra={
            "complaint_id": complaint_id,
            "previous_officer_id": transfer.previous["id"] if transfer.previous else None,
            "officer_id": new_officer_id,
            "reopened": transfer.reopened,
        },
    )
    _record_transfer(transfer, actor)
    return transfer.complaint


def unassign_complaint(complaint_id: str, actor: Actor | None = None) -> Complaint:
    with atomic("Officer unassignment", complaint_id=complaint_id):
        complaint = lock_for_update(Complaint, complaint_id, "Complaint")
        previous_id = complaint.assigned_officer_id
        if not complaint.is_officer_assigned and not previous_id:
            raise ValidationError("Complaint is not assigned to any officer")

        previous = {"id": previous_id, "name": None, "email": None} if previous_id else None
        if previous_id:
            previous_officer = (
                Officer.query.filter(Officer.id == previous_id).with_for_update().populate_existing().first()
            )
            if previous_officer is not None:
                _detach(previous_officer, complaint.id)
                previous = previous_officer.contact_snapshot()

        complaint.assigned_officer_id = None
        complaint.assigned_to_user_id = None
        complaint.is_officer_assigned = False
        complaint.assigned_time = None
        if complaint.status == "in_progress":
            complaint.status = "pending"

    current_app.logger.info("Complaint unassigned", extra={"complaint_id": complaint_id, "officer_id": previous_id})
    record_event(
        timeline.append_officer_unassigned,
        complaint_id,
        previous_officer_id=previous["id"] if previous else None,
        previous_officer_name=previous["name"] if previous else None,
        previous_officer_email=previous["email"] if previous else None,
        actor=actor,
    )
    return complaint


def rebuild_officer_assignments(officer_id: str | None = None) -> dict[str, dict]:
    """Recompute officers' complaint lists from the complaint side.

    Returns ``{officer_id: {"missing": [...], "stale": [...]}}`` for every
    officer whose stored list differed.
    """
    drift: dict[str, dict] = {}
    with atomic("Assignment rebuild", officer_id=officer_id):
        query = Officer.query.order_by(Officer.id)
        if officer_id:
            query = query.filter(Officer.id == officer_id)
        for officer in query.with_for_update().populate_existing().all():
            expected = [
                row.id
                for row in Complaint.query.with_entities(Complaint.id)
                .filter(Complaint.assigned_officer_id == officer.id, Complaint.is_officer_assigned.is_(True))
                .order_by(Complaint.assigned_time.asc(), Complaint.created_at.asc())
                .all()
            ]
            current = list(officer.assigned_complaints or [])
            if current == expected:
                continue
            missing = sorted(set(expected) - set(current))
            stale = sorted(set(current) - set(expected))
            if missing or stale or len(current) != len(set(current)):
                drift[officer.id] = {"missing": missing, "stale": stale}
                officer.assigned_complaints = expected
    if drift:
        current_app.logger.warning("Officer assignment drift repaired", extra={"officers": len(drift)})
    return drift
