"""Blueprint registration and service-level routes."""
from flask import Blueprint, jsonify
from flask_login import current_user
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from extensions import db, hub
from utils.complaints import status_counts
from .auth import auth_bp
from .grievances import grievances_bp
from .notifications import notifications_bp

main_bp = Blueprint("main", __name__)


@main_bp.route("/")
def index():
    payload = {"service": "grievance-desk", "authenticated": current_user.is_authenticated}
    if current_user.is_authenticated and current_user.is_admin:
        payload["complaints_by_status"] = status_counts()
        payload["connected_users"] = len(hub.connected_users())
    return jsonify(payload)


@main_bp.route("/healthz")
def healthz():
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        db.session.rollback()
        return jsonify({"status": "degraded", "database": "unreachable"}), 503
    return jsonify({"status": "ok", "database": "ok"})
