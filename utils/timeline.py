"""Append-only complaint timeline.

Every domain mutation is recorded here as one immutable event. Appends are
idempotent per ``(complaint_id, idempotency_key)`` and trigger a best-effort
notification dispatch whether or not the write itself succeeded.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable

from flask import current_app
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import ACTOR_ROLES, TIMELINE_EVENT_TYPES, TimelineEvent, generate_uuid
from utils.errors import ValidationError
from utils.notifier import dispatch_event

ASSIGNMENT_EVENT_TYPES: tuple[str, ...] = (
    "officer_assigned",
    "officer_reassigned",
    "officer_unassigned",
)


@dataclass(frozen=True)
class Actor:
    user_id: str | None = None
    role: str | None = None
    name: str | None = None

    @classmethod
    def from_user(cls, user) -> "Actor | None":
        if user is None or not getattr(user, "is_authenticated", False):
            return None
        return cls(user_id=user.id, role=user.role, name=user.full_name)


SYSTEM_ACTOR = Actor(role="system", name="System")


def _clean(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


def _find_by_key(complaint_id: str, idempotency_key: str) -> TimelineEvent | None:
    return TimelineEvent.query.filter_by(complaint_id=complaint_id, idempotency_key=idempotency_key).first()


def _persist(event: TimelineEvent) -> None:
    db.session.add(event)
    db.session.commit()


def _notify(notice: dict) -> None:
    try:
        dispatch_event(notice)
    except Exception:
        current_app.logger.exception(
            "Notification dispatch failed",
            extra={"event_type": notice.get("event_type"), "complaint_id": notice.get("complaint_id")},
        )


def append_event(
    complaint_id: str,
    event_type: str,
    payload: dict | None = None,
    actor: Actor | None = None,
    idempotency_key: str | None = None,
    skip_notification: bool = False,
) -> TimelineEvent | None:
    """Record one event; returns None when the key was already recorded.

    Unexpected persistence errors propagate to the caller after the
    notification has been attempted.
    """
    if event_type not in TIMELINE_EVENT_TYPES:
        raise ValidationError(f"Unknown timeline event type: {event_type}")
    if actor is not None and actor.role is not None and actor.role not in ACTOR_ROLES:
        raise ValidationError(f"Unknown actor role: {actor.role}")

    key = (idempotency_key or "").strip() or None
    if key is not None and _find_by_key(complaint_id, key) is not None:
        current_app.logger.info(
            "Timeline duplicate skipped",
            extra={"event_type": event_type, "complaint_id": complaint_id, "idempotency_key": key},
        )
        return None

    body = dict(payload or {})
    at = datetime.utcnow()
    event = TimelineEvent(
        id=generate_uuid(),
        complaint_id=complaint_id,
        event_type=event_type,
        at=at,
        actor_user_id=actor.user_id if actor else None,
        actor_role=actor.role if actor else None,
        actor_name=actor.name if actor else None,
        payload=body,
        idempotency_key=key,
    )
    notice = {"id": event.id, "complaint_id": complaint_id, "event_type": event_type, "payload": body, "at": at}

    duplicate = False
    try:
        _persist(event)
        current_app.logger.debug(
            "Timeline event recorded",
            extra={"event_type": event_type, "complaint_id": complaint_id, "event_id": notice["id"]},
        )
        return event
    except IntegrityError:
        db.session.rollback()
        if key is None or _find_by_key(complaint_id, key) is None:
            current_app.logger.exception(
                "Timeline event rejected by the database",
                extra={"event_type": event_type, "complaint_id": complaint_id},
            )
            raise
        # Lost a race with a concurrent append of the same key.
        duplicate = True
        current_app.logger.info(
            "Timeline duplicate skipped on insert",
            extra={"event_type": event_type, "complaint_id": complaint_id, "idempotency_key": key},
        )
        return None
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "Timeline append failed",
            extra={"event_type": event_type, "complaint_id": complaint_id},
        )
        raise
    finally:
        if not duplicate and not skip_notification:
            _notify(notice)


def record_event(append: Callable[..., TimelineEvent | None], *args, **kwargs) -> TimelineEvent | None:
    """Call a timeline append without letting its failure reach the caller."""
    try:
        return append(*args, **kwargs)
    except Exception:
        current_app.logger.exception(
            "Timeline append failed after a committed change",
            extra={"append": getattr(append, "__name__", str(append))},
        )
        return None


def get_timeline(
    complaint_id: str,
    event_types: Iterable[str] | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> list[TimelineEvent]:
    query = TimelineEvent.query.filter(TimelineEvent.complaint_id == complaint_id)
    types = [event_type for event_type in (event_types or []) if event_type]
    if types:
        query = query.filter(TimelineEvent.event_type.in_(types))
    query = query.order_by(TimelineEvent.at.asc(), TimelineEvent.created_at.asc())
    if offset:
        query = query.offset(offset)
    if limit:
        query = query.limit(limit)
    return query.all()


def get_assignment_history(complaint_id: str) -> list[TimelineEvent]:
    return get_timeline(complaint_id, event_types=ASSIGNMENT_EVENT_TYPES)


# Typed appenders, one per event type. Domain services go through these.


def append_complaint_created(complaint_id, *, title=None, category=None, created_by=None, created_by_user_id=None, actor=None):
    payload = _clean(
        {"title": title, "category": category, "created_by": created_by, "created_by_user_id": created_by_user_id}
    )
    return append_event(complaint_id, "complaint_created", payload, actor, f"created-{complaint_id}")


def append_complaint_updated(complaint_id, *, field=None, old_value=None, new_value=None, actor=None):
    payload = _clean({"field": field, "old_value": old_value, "new_value": new_value})
    return append_event(complaint_id, "complaint_updated", payload, actor)


def append_status_changed(complaint_id, *, old_status, new_status, actor=None):
    return append_event(complaint_id, "status_changed", {"old_status": old_status, "new_status": new_status}, actor)


def append_priority_changed(complaint_id, *, old_priority, new_priority, actor=None):
    payload = {"old_priority": old_priority, "new_priority": new_priority}
    return append_event(complaint_id, "priority_changed", payload, actor)


def append_note_added(complaint_id, *, note_id, excerpt=None, actor=None, idempotency_key=None):
    payload = _clean({"note_id": note_id, "excerpt": excerpt})
    return append_event(complaint_id, "note_added", payload, actor, idempotency_key or f"note-{note_id}")


def append_document_added(complaint_id, *, document_id, file_name=None, file_type=None, actor=None, idempotency_key=None):
    payload = _clean({"document_id": document_id, "file_name": file_name, "file_type": file_type})
    return append_event(complaint_id, "document_added", payload, actor, idempotency_key or f"doc-{document_id}")


def append_officer_selected(complaint_id, *, officer_name=None, officer_email=None, officer_designation=None, actor=None):
    payload = _clean(
        {"officer_name": officer_name, "officer_email": officer_email, "officer_designation": officer_designation}
    )
    return append_event(complaint_id, "officer_selected", payload, actor)


def append_letter_drafted(complaint_id, *, to_name=None, to_designation=None, actor=None):
    return append_event(complaint_id, "letter_drafted", _clean({"to_name": to_name, "to_designation": to_designation}), actor)


def append_letter_redrafted(complaint_id, *, to_name=None, actor=None):
    return append_event(complaint_id, "letter_redrafted", _clean({"to_name": to_name}), actor)


def append_letter_saved(complaint_id, *, actor=None, **details):
    return append_event(complaint_id, "letter_saved", _clean(details), actor)


def append_recipient_updated(complaint_id, *, previous_officer_name=None, new_officer_name=None, new_officer_email=None, actor=None):
    payload = _clean(
        {
            "previous_officer_name": previous_officer_name,
            "new_officer_name": new_officer_name,
            "new_officer_email": new_officer_email,
        }
    )
    return append_event(complaint_id, "recipient_updated", payload, actor)


def append_officer_assigned(
    complaint_id,
    *,
    assigned_to_user_id,
    officer_id,
    officer_name,
    officer_email,
    time_deadline_days=None,
    is_new_officer=None,
    actor=None,
):
    payload = _clean(
        {
            "assigned_to_user_id": assigned_to_user_id,
            "officer_id": officer_id,
            "officer_name": officer_name,
            "officer_email": officer_email,
            "time_deadline_days": time_deadline_days,
            "is_new_officer": is_new_officer,
        }
    )
    return append_event(complaint_id, "officer_assigned", payload, actor)


def append_officer_reassigned(
    complaint_id,
    *,
    new_officer_id,
    new_officer_name,
    new_officer_email,
    previous_officer_id=None,
    previous_officer_name=None,
    previous_officer_email=None,
    new_time_deadline_days=None,
    actor=None,
):
    payload = _clean(
        {
            "previous_officer_id": previous_officer_id,
            "previous_officer_name": previous_officer_name,
            "previous_officer_email": previous_officer_email,
            "new_officer_id": new_officer_id,
            "new_officer_name": new_officer_name,
            "new_officer_email": new_officer_email,
            "new_time_deadline_days": new_time_deadline_days,
        }
    )
    return append_event(complaint_id, "officer_reassigned", payload, actor)


def append_officer_unassigned(complaint_id, *, previous_officer_id=None, previous_officer_name=None, previous_officer_email=None, actor=None):
    payload = _clean(
        {
            "previous_officer_id": previous_officer_id,
            "previous_officer_name": previous_officer_name,
            "previous_officer_email": previous_officer_email,
        }
    )
    return append_event(complaint_id, "officer_unassigned", payload, actor)


def append_officer_note_added(complaint_id, *, note_id, officer_id=None, direction=None, excerpt=None, actor=None, idempotency_key=None):
    payload = _clean({"note_id": note_id, "officer_id": officer_id, "type": direction, "excerpt": excerpt})
    return append_event(complaint_id, "officer_note_added", payload, actor, idempotency_key or f"officer-note-{note_id}")


def append_officer_document_added(
    complaint_id,
    *,
    attachment_id,
    officer_id=None,
    file_name=None,
    direction=None,
    actor=None,
    idempotency_key=None,
):
    payload = _clean(
        {"attachment_id": attachment_id, "officer_id": officer_id, "file_name": file_name, "attachment_type": direction}
    )
    return append_event(
        complaint_id, "officer_document_added", payload, actor, idempotency_key or f"officer-doc-{attachment_id}"
    )


def append_extension_requested(
    complaint_id,
    *,
    request_id,
    requested_by,
    requested_by_role,
    days_requested,
    reason=None,
    actor=None,
    idempotency_key=None,
):
    payload = _clean(
        {
            "request_id": request_id,
            "requested_by": requested_by,
            "requested_by_role": requested_by_role,
            "days_requested": days_requested,
            "reason": reason,
        }
    )
    return append_event(complaint_id, "extension_requested", payload, actor, idempotency_key or f"ext-req-{request_id}")


def append_extension_approved(complaint_id, *, request_id, days_granted, new_deadline_days, decided_by=None, actor=None):
    payload = _clean(
        {
            "request_id": request_id,
            "days_granted": days_granted,
            "new_deadline_days": new_deadline_days,
            "decided_by": decided_by,
        }
    )
    return append_event(complaint_id, "extension_approved", payload, actor, f"ext-approved-{request_id}")


def append_extension_rejected(complaint_id, *, request_id, decided_by=None, notes=None, actor=None):
    payload = _clean({"request_id": request_id, "decided_by": decided_by, "notes": notes})
    return append_event(complaint_id, "extension_rejected", payload, actor, f"ext-rejected-{request_id}")


def append_officer_demand_created(
    complaint_id,
    *,
    demand_type,
    demand_id=None,
    message=None,
    attachment_urls=None,
    officer_id=None,
    actor=None,
    idempotency_key=None,
):
    if demand_type not in ("text", "docs", "images"):
        raise ValidationError("Demand type must be one of: text, docs, images")
    payload = _clean(
        {
            "demand_id": demand_id,
            "type": demand_type,
            "message": message,
            "attachment_urls": list(attachment_urls) if attachment_urls else None,
            "officer_id": officer_id,
        }
    )
    return append_event(complaint_id, "officer_demand_created", payload, actor, idempotency_key)


def append_officer_demand_fulfilled(complaint_id, *, demand_id=None, fulfilled_by=None, actor=None):
    payload = _clean({"demand_id": demand_id, "fulfilled_by": fulfilled_by})
    return append_event(complaint_id, "officer_demand_fulfilled", payload, actor)


def append_complaint_closed(
    complaint_id,
    *,
    closed_at,
    closed_by_user_id=None,
    closed_by_name=None,
    closed_by_email=None,
    remarks_excerpt=None,
    actor=None,
):
    payload = _clean(
        {
            "closed_by_user_id": closed_by_user_id,
            "closed_by_name": closed_by_name,
            "closed_by_email": closed_by_email,
            "remarks_excerpt": remarks_excerpt,
            "closed_at": closed_at,
        }
    )
    return append_event(complaint_id, "complaint_closed", payload, actor)


def append_complaint_reopened(complaint_id, *, reason=None, previous_closed_at=None, actor=None):
    payload = _clean({"reason": reason, "previous_closed_at": previous_closed_at})
    return append_event(complaint_id, "complaint_reopened", payload, actor)


def append_research_completed(complaint_id, *, actor=None, **details):
    return append_event(complaint_id, "research_completed", _clean(details), actor)


def append_actions_generated(complaint_id, *, action_count=None, actor=None):
    return append_event(complaint_id, "actions_generated", _clean({"action_count": action_count}), actor)


def append_documents_summarized(
    complaint_id,
    *,
    summary_id,
    document_count,
    use_complaint_context=None,
    user_prompt_excerpt=None,
    actor=None,
):
    payload = _clean(
        {
            "summary_id": summary_id,
            "document_count": document_count,
            "use_complaint_context": use_complaint_context,
            "user_prompt_excerpt": user_prompt_excerpt,
        }
    )
    return append_event(
        complaint_id, "documents_summarized", payload, actor, f"summary-{summary_id}", skip_notification=True
    )
