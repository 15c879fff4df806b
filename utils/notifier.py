"""Notification fan-out for timeline events.

Receivers are resolved from a static event map against current entity state.
Each one gets a stored inbox row and a single message on its real-time
channel. Nothing in the dispatch path raises into the caller: lookups and
inserts that fail are logged and skipped.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db, hub
from models import (
    TIMELINE_EVENT_TYPES,
    Complaint,
    ExtensionRequest,
    Notification,
    NotificationSetting,
    Officer,
    User,
    generate_uuid,
)
from utils.errors import NotFoundError, ValidationError

ADMINS = "admins"
ASSIGNED_OFFICER = "assigned_officer"
PREVIOUS_OFFICER = "previous_officer"
NEW_OFFICER = "new_officer"
EXTENSION_REQUESTER = "extension_requester"


@dataclass(frozen=True)
class ReceiverRule:
    receivers: tuple[str, ...]
    exclude_self_payload_key: str | None = None
    assigned_officer_except_closer: bool = False


EVENT_RECEIVER_MAP: dict[str, ReceiverRule] = {
    "complaint_created": ReceiverRule((ADMINS,), exclude_self_payload_key="created_by_user_id"),
    "officer_assigned": ReceiverRule((ASSIGNED_OFFICER,)),
    "officer_reassigned": ReceiverRule((PREVIOUS_OFFICER, NEW_OFFICER)),
    "officer_unassigned": ReceiverRule((PREVIOUS_OFFICER,)),
    "extension_requested": ReceiverRule((ADMINS,)),
    "extension_approved": ReceiverRule((EXTENSION_REQUESTER,)),
    "extension_rejected": ReceiverRule((EXTENSION_REQUESTER,)),
    "complaint_closed": ReceiverRule((ASSIGNED_OFFICER,), assigned_officer_except_closer=True),
    "note_added": ReceiverRule((ASSIGNED_OFFICER,)),
    "document_added": ReceiverRule((ASSIGNED_OFFICER,)),
    "officer_note_added": ReceiverRule((ADMINS,)),
    "officer_document_added": ReceiverRule((ADMINS,)),
}


def is_notifiable(event_type: str) -> bool:
    return event_type in EVENT_RECEIVER_MAP


def _admin_user_ids() -> list[str]:
    rows = (
        User.query.with_entities(User.id)
        .filter(User.role == "admin", User.is_active.is_(True))
        .order_by(User.created_at.asc())
        .all()
    )
    return [row.id for row in rows]


def _assigned_officer_user_id(complaint_id: str) -> str | None:
    complaint = db.session.get(Complaint, complaint_id)
    if complaint is None or not complaint.is_officer_assigned:
        return None
    return complaint.assigned_to_user_id


def _officer_user_id(officer_id: str | None) -> str | None:
    if not officer_id:
        return None
    officer = db.session.get(Officer, officer_id)
    return officer.user_id if officer else None


def _extension_requester(request_id: str | None) -> str | None:
    if not request_id:
        return None
    request = db.session.get(ExtensionRequest, request_id)
    return request.requested_by if request else None


def _resolve_kind(kind: str, rule: ReceiverRule, complaint_id: str, payload: dict) -> list[str]:
    if kind == ADMINS:
        admin_ids = _admin_user_ids()
        excluded = payload.get(rule.exclude_self_payload_key) if rule.exclude_self_payload_key else None
        return [admin_id for admin_id in admin_ids if admin_id != excluded]
    if kind == ASSIGNED_OFFICER:
        user_id = _assigned_officer_user_id(complaint_id)
        if user_id and rule.assigned_officer_except_closer and user_id == payload.get("closed_by_user_id"):
            return []
        return [user_id] if user_id else []
    if kind == PREVIOUS_OFFICER:
        user_id = _officer_user_id(payload.get("previous_officer_id"))
        return [user_id] if user_id else []
    if kind == NEW_OFFICER:
        user_id = _officer_user_id(payload.get("new_officer_id"))
        return [user_id] if user_id else []
    if kind == EXTENSION_REQUESTER:
        user_id = _extension_requester(payload.get("request_id"))
        return [user_id] if user_id else []
    current_app.logger.warning("Unknown receiver kind", extra={"kind": kind})
    return []


def resolve_receivers(event_type: str, complaint_id: str, payload: dict | None = None) -> list[str]:
    """Return de-duplicated receiver user ids in map order."""
    rule = EVENT_RECEIVER_MAP.get(event_type)
    if rule is None:
        return []
    payload = payload or {}
    resolved: list[str] = []
    for kind in rule.receivers:
        try:
            resolved.extend(_resolve_kind(kind, rule, complaint_id, payload))
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception(
                "Receiver lookup failed",
                extra={"event_type": event_type, "complaint_id": complaint_id, "kind": kind},
            )
    return list(dict.fromkeys(resolved))


def _excerpt(payload: dict, fallback: str) -> str:
    excerpt = payload.get("excerpt")
    return str(excerpt)[:120] if excerpt else fallback


def build_message_text(event_type: str, payload: dict | None = None) -> tuple[str, str]:
    """Title and body shown to the receiver."""
    p = payload or {}
    if event_type == "complaint_created":
        return "New complaint created", str(p["title"]) if p.get("title") else "A new complaint was created."
    if event_type == "officer_assigned":
        return "Complaint assigned to you", "You have been assigned to a complaint."
    if event_type == "officer_reassigned":
        body = f"Complaint reassigned to {p['new_officer_name']}." if p.get("new_officer_name") else "Complaint reassigned."
        return "Complaint reassigned", body
    if event_type == "officer_unassigned":
        return "Complaint unassigned from you", "The complaint has been unassigned from you."
    if event_type == "extension_requested":
        return "Extension requested", "An officer has requested a time extension for a complaint."
    if event_type == "extension_approved":
        return "Extension approved", "Your time extension request has been approved."
    if event_type == "extension_rejected":
        return "Extension rejected", "Your time extension request has been rejected."
    if event_type == "complaint_closed":
        body = f"Closed by {p['closed_by_name']}." if p.get("closed_by_name") else "Complaint has been closed."
        return "Complaint closed", body
    if event_type == "note_added":
        return "Note added to complaint", _excerpt(p, "A note was added.")
    if event_type == "document_added":
        if p.get("file_name"):
            return "Document added to complaint", f"Document: {p['file_name']} ({str(p.get('file_type') or '').lower()})"
        return "Document added to complaint", "A document was added."
    if event_type == "officer_note_added":
        return "Officer added a note", _excerpt(p, "An officer added a note.")
    if event_type == "officer_document_added":
        body = f"Document: {p['file_name']}" if p.get("file_name") else "An officer added a document."
        return "Officer added a document", body
    return "Complaint update", f"Event: {event_type}"


def is_notification_enabled(event_type: str) -> bool:
    try:
        setting = NotificationSetting.query.filter_by(event_type=event_type).first()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Notification setting lookup failed; defaulting to enabled", extra={"event_type": event_type})
        return True
    return True if setting is None else bool(setting.enabled)


def set_notification_enabled(event_type: str, enabled: bool, updated_by: str | None = None) -> NotificationSetting:
    if event_type not in TIMELINE_EVENT_TYPES:
        raise ValidationError(f"Unknown event type: {event_type}")
    setting = NotificationSetting.query.filter_by(event_type=event_type).first()
    if setting is None:
        setting = NotificationSetting(event_type=event_type)
        db.session.add(setting)
    setting.enabled = bool(enabled)
    setting.updated_by = updated_by
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to store notification setting", extra={"event_type": event_type})
        raise
    current_app.logger.info(
        "Notification setting updated",
        extra={"event_type": event_type, "enabled": setting.enabled, "updated_by": updated_by},
    )
    return setting


def notification_settings() -> list[dict]:
    stored = {row.event_type: row.enabled for row in NotificationSetting.query.all()}
    return [
        {"event_type": event_type, "enabled": bool(stored.get(event_type, True))}
        for event_type in EVENT_RECEIVER_MAP
    ]


def store_notifications(
    receivers: list[str],
    event_type: str,
    complaint_id: str,
    timeline_event_id: str | None,
    title: str,
    body: str,
    payload: dict | None = None,
) -> dict[str, str]:
    """Insert one inbox row per receiver; returns ``{user_id: notification_id}``.

    A failed insert is logged and yields an empty mapping.
    """
    rows = [
        Notification(
            id=generate_uuid(),
            user_id=user_id,
            event_type=event_type,
            complaint_id=complaint_id,
            title=title[:300],
            body=body[:2000],
            payload=dict(payload or {}),
            timeline_event_id=timeline_event_id,
        )
        for user_id in receivers
    ]
    stored = {row.user_id: row.id for row in rows}
    try:
        db.session.add_all(rows)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(
            "Notification insert failed",
            extra={"event_type": event_type, "complaint_id": complaint_id, "receivers": len(rows)},
        )
        return {}
    return stored


def dispatch_event(event: dict) -> list[str]:
    """Store and push a timeline event to its receivers.

    ``event`` carries ``id``, ``complaint_id``, ``event_type``, ``payload`` and
    ``at``. Returns the user ids that had an open channel.
    """
    event_type = event.get("event_type")
    complaint_id = event.get("complaint_id")
    if not is_notifiable(event_type):
        return []
    if not is_notification_enabled(event_type):
        current_app.logger.debug("Notification disabled for event type", extra={"event_type": event_type})
        return []

    payload = event.get("payload") or {}
    receivers = resolve_receivers(event_type, complaint_id, payload)
    if not receivers:
        return []

    title, body = build_message_text(event_type, payload)
    stored = store_notifications(receivers, event_type, complaint_id, event.get("id"), title, body, payload)
    at = event.get("at") or datetime.utcnow()
    message = {
        "type": "new_notification",
        "event_type": event_type,
        "complaint_id": complaint_id,
        "timeline_event_id": event.get("id"),
        "title": title,
        "body": body,
        "at": at.isoformat() if isinstance(at, datetime) else str(at),
    }
    delivered = [
        user_id
        for user_id in receivers
        if hub.publish(user_id, {**message, "notification_id": stored.get(user_id)})
    ]
    current_app.logger.info(
        "Notification dispatched",
        extra={
            "event_type": event_type,
            "complaint_id": complaint_id,
            "receivers": len(receivers),
            "stored": len(stored),
            "delivered": len(delivered),
        },
    )
    return delivered


def list_notifications(
    user_id: str,
    complaint_id: str | None = None,
    event_type: str | None = None,
    unread_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Notification], int]:
    """Newest first, scoped to one receiver. Returns ``(page, total)``."""
    query = Notification.query.filter(Notification.user_id == user_id)
    if complaint_id:
        query = query.filter(Notification.complaint_id == complaint_id)
    if event_type:
        query = query.filter(Notification.event_type == event_type)
    if unread_only:
        query = query.filter(Notification.read_at.is_(None))
    total = query.count()
    page = (
        query.order_by(Notification.created_at.desc())
        .offset(max(offset, 0))
        .limit(min(max(limit, 1), 100))
        .all()
    )
    return page, total


def unread_count(user_id: str) -> int:
    return Notification.query.filter(Notification.user_id == user_id, Notification.read_at.is_(None)).count()


def mark_read(notification_id: str, user_id: str) -> Notification:
    notification = Notification.query.filter_by(id=notification_id, user_id=user_id).first()
    if notification is None:
        raise NotFoundError("Notification")
    if notification.read_at is None:
        notification.read_at = datetime.utcnow()
        db.session.commit()
    return notification


def mark_all_read(user_id: str) -> int:
    count = Notification.query.filter(
        Notification.user_id == user_id, Notification.read_at.is_(None)
    ).update({Notification.read_at: datetime.utcnow()}, synchronize_session=False)
    db.session.commit()
    current_app.logger.info("Notifications marked read", extra={"user_id": user_id, "count": count})
    return count
