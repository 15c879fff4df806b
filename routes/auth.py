"""Session authentication for API clients."""
from datetime import datetime

from flask import Blueprint, current_app, jsonify, session
from flask_login import current_user, login_required, login_user, logout_user
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Officer, User
from utils.security import normalize_email
from .forms import LoginForm

auth_bp = Blueprint("auth", __name__)


@auth_bp.route("/login", methods=["POST"])
def login():
    form = LoginForm()
    if not form.validate_on_submit():
        return jsonify({"error": "Invalid input", "fields": form.errors}), 400

    user = User.query.filter_by(email=normalize_email(form.email.data)).first()
    if not user or not user.check_password(form.password.data):
        current_app.logger.warning("Login failed", extra={"user_id": user.id if user else None})
        return jsonify({"error": "Invalid credentials provided."}), 401

    if not user.is_active:
        return jsonify({"error": "Your account is inactive. Please contact support."}), 403

    login_user(user, remember=bool(form.remember_me.data))
    session.permanent = True
    user.last_login_at = datetime.utcnow()
    try:
        db.session.commit()
    except SQLAlchemyError:
        current_app.logger.exception("Failed to record login time", extra={"user_id": user.id})
        db.session.rollback()
    current_app.logger.info("Login succeeded", extra={"user_id": user.id, "role": user.role})
    return jsonify({"user": user.to_payload()})


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    user_id = current_user.id
    logout_user()
    session.clear()
    current_app.logger.info("Logout", extra={"user_id": user_id})
    return jsonify({"ok": True})


@auth_bp.route("/me")
@login_required
def me():
    payload = {"user": current_user.to_payload()}
    if current_user.is_officer:
        officer = Officer.query.filter_by(user_id=current_user.id).first()
        payload["officer"] = officer.to_payload() if officer else None
    return jsonify(payload)
