"""Notification inbox, real-time channel and admin toggles per event type."""
import json

from flask import Blueprint, Response, current_app, jsonify, request
from flask_login import current_user, login_required

from extensions import db, hub
from models import User
from utils import notifier
from utils.decorators import roles_required
from utils.errors import GrievanceError
from utils.notifier import is_notifiable, notification_settings, set_notification_enabled
from utils.realtime import issue_channel_token, verify_channel_token

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.errorhandler(GrievanceError)
def handle_grievance_error(exc: GrievanceError):
    return jsonify(exc.to_payload()), exc.status_code


def _format_event(message: dict) -> str:
    event_id = message.get("timeline_event_id") or ""
    return f"id: {event_id}\nevent: {message.get('type', 'message')}\ndata: {json.dumps(message)}\n\n"


@notifications_bp.route("")
@login_required
def inbox():
    limit = request.args.get("limit", 50, type=int)
    offset = request.args.get("offset", 0, type=int)
    page, total = notifier.list_notifications(
        current_user.id,
        complaint_id=request.args.get("complaint_id") or None,
        event_type=request.args.get("event_type") or None,
        unread_only=request.args.get("unread_only") == "true",
        limit=limit,
        offset=offset,
    )
    return jsonify({"notifications": [row.to_payload() for row in page], "total": total})


@notifications_bp.route("/unread-count")
@login_required
def unread_count():
    return jsonify({"count": notifier.unread_count(current_user.id)})


@notifications_bp.route("/read-all", methods=["PATCH"])
@login_required
def mark_all_read():
    return jsonify({"updated": notifier.mark_all_read(current_user.id)})


@notifications_bp.route("/<string:notification_id>/read", methods=["PATCH"])
@login_required
def mark_read(notification_id):
    notification = notifier.mark_read(notification_id, current_user.id)
    return jsonify({"notification": notification.to_payload()})


@notifications_bp.route("/token", methods=["POST"])
@login_required
def channel_token():
    token = issue_channel_token(current_user.id)
    return jsonify({"token": token, "expires_in": int(current_app.config.get("REALTIME_TOKEN_MAX_AGE", 3600))})


@notifications_bp.route("/stream")
def stream():
    """Server-Sent Events stream joined to the caller's per-user channel.

    Browsers cannot set headers on an EventSource, so the signed channel token
    travels in the query string.
    """
    user_id = verify_channel_token(request.args.get("token"))
    user = db.session.get(User, user_id) if user_id else None
    if user is None or not user.is_active:
        return jsonify({"error": "Invalid or expired channel token"}), 401

    channel = hub.connect(user.id)
    keepalive = int(current_app.config.get("REALTIME_KEEPALIVE_SECONDS", 15))
    logger = current_app.logger
    logger.info("Notification channel opened", extra={"user_id": user.id})

    def event_stream():
        try:
            yield ": connected\n\n"
            while True:
                message = channel.get(timeout=keepalive)
                if message is None:
                    yield ": keepalive\n\n"
                    continue
                yield _format_event(message)
        finally:
            hub.disconnect(channel)
            logger.info("Notification channel closed", extra={"user_id": channel.user_id, "dropped": channel.dropped})

    return Response(
        event_stream(),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@notifications_bp.route("/settings")
@roles_required("admin")
def settings():
    return jsonify({"settings": notification_settings()})


@notifications_bp.route("/settings/<string:event_type>", methods=["PUT", "POST"])
@roles_required("admin")
def update_setting(event_type):
    body = request.get_json(silent=True) or {}
    enabled = body.get("enabled")
    if not isinstance(enabled, bool):
        return jsonify({"error": "enabled must be true or false"}), 400
    if not is_notifiable(event_type):
        return jsonify({"error": f"{event_type} does not produce notifications"}), 400
    setting = set_notification_enabled(event_type, enabled, updated_by=current_user.id)
    return jsonify({"event_type": setting.event_type, "enabled": setting.enabled})
