"""JSON API over the complaint lifecycle: intake, assignment, work log, closure and extensions."""
from flask import Blueprint, abort, current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Officer, TIMELINE_EVENT_TYPES
from utils import assignment, closure, worklog
from utils.complaints import change_priority, change_status, complaints_for_officer_user, create_complaint, get_complaint
from utils.decorators import roles_required
from utils.errors import GrievanceError, ValidationError
from utils.timeline import Actor, get_assignment_history, get_timeline
from .forms import (
    CloseForm,
    ComplaintForm,
    DocumentForm,
    ExecutiveForm,
    ExtensionDecisionForm,
    ExtensionRequestForm,
    NoteForm,
    OfficerChoiceForm,
    PriorityForm,
    StatusForm,
)

grievances_bp = Blueprint("grievances", __name__, url_prefix="/api")


@grievances_bp.errorhandler(GrievanceError)
def handle_grievance_error(exc: GrievanceError):
    return jsonify(exc.to_payload()), exc.status_code


@grievances_bp.errorhandler(SQLAlchemyError)
def handle_database_error(exc: SQLAlchemyError):
    db.session.rollback()
    current_app.logger.exception("Database error while handling grievance request", extra={"path": request.path})
    return jsonify({"error": "The request could not be completed. Please try again."}), 500


def _actor() -> Actor | None:
    return Actor.from_user(current_user)


def _invalid(form):
    return jsonify({"error": "Invalid input", "fields": form.errors}), 400


def _json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _list_field(body: dict, field: str) -> list:
    value = body.get(field) or []
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list")
    return value


def _visible_complaint(complaint_id: str):
    complaint = get_complaint(complaint_id)
    if current_user.is_admin:
        return complaint
    if current_user.is_officer and complaint.assigned_to_user_id == current_user.id:
        return complaint
    abort(403)


@grievances_bp.route("/complaints", methods=["POST"])
@roles_required("admin")
def create():
    form = ComplaintForm()
    if not form.validate_on_submit():
        return _invalid(form)
    complaint = create_complaint(form.data, actor=_actor())
    return jsonify({"complaint": complaint.to_payload()}), 201


@grievances_bp.route("/complaints/<string:complaint_id>")
@login_required
def detail(complaint_id):
    complaint = _visible_complaint(complaint_id)
    return jsonify({"complaint": complaint.to_payload()})


@grievances_bp.route("/complaints/<string:complaint_id>/timeline")
@login_required
def timeline(complaint_id):
    _visible_complaint(complaint_id)
    types = [t for t in request.args.getlist("type") if t in TIMELINE_EVENT_TYPES]
    limit = request.args.get("limit", type=int)
    offset = request.args.get("offset", type=int)
    events = get_timeline(complaint_id, event_types=types, limit=limit, offset=offset)
    return jsonify({"events": [event.to_payload() for event in events]})


@grievances_bp.route("/complaints/<string:complaint_id>/assignment-history")
@login_required
def assignment_history(complaint_id):
    _visible_complaint(complaint_id)
    return jsonify({"events": [event.to_payload() for event in get_assignment_history(complaint_id)]})


@grievances_bp.route("/complaints/<string:complaint_id>/assign", methods=["POST"])
@roles_required("admin")
def assign(complaint_id):
    if _json_body().get("officer_id"):
        form = OfficerChoiceForm()
        if not form.validate_on_submit():
            return _invalid(form)
        complaint = assignment.assign_existing_officer(
            complaint_id, form.officer_id.data, actor=_actor(), time_boundary=form.time_boundary.data
        )
    else:
        form = ExecutiveForm()
        if not form.validate_on_submit():
            return _invalid(form)
        complaint = assignment.assign_officer(complaint_id, form.data, actor=_actor())
    return jsonify({"complaint": complaint.to_payload()})


@grievances_bp.route("/complaints/<string:complaint_id>/reassign", methods=["POST"])
@roles_required("admin")
def reassign(complaint_id):
    form = OfficerChoiceForm()
    if not form.validate_on_submit():
        return _invalid(form)
    complaint = assignment.reassign_officer(
        complaint_id, form.officer_id.data, actor=_actor(), time_boundary=form.time_boundary.data
    )
    return jsonify({"complaint": complaint.to_payload()})


@grievances_bp.route("/complaints/<string:complaint_id>/unassign", methods=["POST"])
@roles_required("admin")
def unassign(complaint_id):
    complaint = assignment.unassign_complaint(complaint_id, actor=_actor())
    return jsonify({"complaint": complaint.to_payload()})


@grievances_bp.route("/complaints/<string:complaint_id>/status", methods=["POST"])
@roles_required("admin")
def update_status(complaint_id):
    form = StatusForm()
    if not form.validate_on_submit():
        return _invalid(form)
    complaint = change_status(complaint_id, form.status.data, actor=_actor())
    return jsonify({"complaint": complaint.to_payload()})


@grievances_bp.route("/complaints/<string:complaint_id>/priority", methods=["POST"])
@roles_required("admin")
def update_priority(complaint_id):
    form = PriorityForm()
    if not form.validate_on_submit():
        return _invalid(form)
    complaint = change_priority(complaint_id, form.priority.data, actor=_actor())
    return jsonify({"complaint": complaint.to_payload()})


@grievances_bp.route("/complaints/<string:complaint_id>/close", methods=["POST"])
@roles_required("officer")
def close(complaint_id):
    form = CloseForm()
    if not form.validate_on_submit():
        return _invalid(form)
    complaint = closure.close_complaint(
        complaint_id,
        current_user.id,
        form.remarks.data,
        attachments=_list_field(_json_body(), "attachments"),
        closing_proof=form.closing_proof.data,
        closer_name=current_user.full_name,
        closer_email=current_user.email,
        actor=_actor(),
    )
    return jsonify({"complaint": complaint.to_payload()})


@grievances_bp.route("/complaints/<string:complaint_id>/extensions", methods=["GET"])
@login_required
def extensions(complaint_id):
    _visible_complaint(complaint_id)
    requests = closure.list_extension_requests(complaint_id)
    return jsonify({"requests": [item.to_payload() for item in requests]})


@grievances_bp.route("/complaints/<string:complaint_id>/extensions", methods=["POST"])
@roles_required("officer")
def request_extension(complaint_id):
    form = ExtensionRequestForm()
    if not form.validate_on_submit():
        return _invalid(form)
    extension = closure.request_officer_extension(
        complaint_id, current_user.id, form.days.data, reason=form.reason.data, actor=_actor()
    )
    return jsonify({"request": extension.to_payload()}), 201


@grievances_bp.route("/complaints/<string:complaint_id>/extensions/approve", methods=["POST"])
@roles_required("admin")
def approve_extension(complaint_id):
    form = ExtensionDecisionForm()
    if not form.validate_on_submit():
        return _invalid(form)
    extension = closure.approve_extension(
        complaint_id, current_user.id, days=form.days.data, notes=form.notes.data, actor=_actor()
    )
    return jsonify({"request": extension.to_payload()})


@grievances_bp.route("/complaints/<string:complaint_id>/extensions/reject", methods=["POST"])
@roles_required("admin")
def reject_extension(complaint_id):
    form = ExtensionDecisionForm()
    if not form.validate_on_submit():
        return _invalid(form)
    extension = closure.reject_extension(complaint_id, current_user.id, notes=form.notes.data, actor=_actor())
    return jsonify({"request": extension.to_payload()})


@grievances_bp.route("/complaints/<string:complaint_id>/notes", methods=["GET"])
@login_required
def notes(complaint_id):
    _visible_complaint(complaint_id)
    entries = worklog.list_notes(complaint_id, author_kind=request.args.get("author"))
    return jsonify({"notes": [entry.to_payload() for entry in entries]})


@grievances_bp.route("/complaints/<string:complaint_id>/notes", methods=["POST"])
@roles_required("admin", "officer")
def add_note(complaint_id):
    form = NoteForm()
    if not form.validate_on_submit():
        return _invalid(form)
    if current_user.is_admin:
        entry = worklog.add_admin_note(
            complaint_id,
            form.note.data,
            author_user_id=current_user.id,
            author_name=current_user.full_name,
            actor=_actor(),
        )
    else:
        entry = worklog.add_officer_note(
            complaint_id,
            current_user.id,
            form.note.data,
            direction=form.direction.data,
            attachments=_list_field(_json_body(), "attachments"),
            actor=_actor(),
        )
    return jsonify({"note": entry.to_payload()}), 201


@grievances_bp.route("/complaints/<string:complaint_id>/documents", methods=["GET"])
@login_required
def documents(complaint_id):
    _visible_complaint(complaint_id)
    entries = worklog.list_documents(complaint_id, author_kind=request.args.get("author"))
    return jsonify({"documents": [entry.to_payload() for entry in entries]})


@grievances_bp.route("/complaints/<string:complaint_id>/documents", methods=["POST"])
@roles_required("admin", "officer")
def add_document(complaint_id):
    form = DocumentForm()
    if not form.validate_on_submit():
        return _invalid(form)
    if current_user.is_admin:
        entry = worklog.add_admin_document(
            complaint_id,
            form.file_url.data,
            form.file_name.data,
            file_type=form.file_type.data,
            uploaded_by=current_user.id,
            actor=_actor(),
        )
    else:
        entry = worklog.add_officer_document(
            complaint_id,
            current_user.id,
            form.file_url.data,
            form.file_name.data,
            direction=form.direction.data,
            file_type=form.file_type.data,
            note_id=form.note_id.data or None,
            actor=_actor(),
        )
    return jsonify({"document": entry.to_payload()}), 201


@grievances_bp.route("/officers/<string:officer_id>")
@roles_required("admin")
def officer_detail(officer_id):
    officer = db.session.get(Officer, officer_id)
    if officer is None:
        abort(404)
    return jsonify({"officer": officer.to_payload()})


@grievances_bp.route("/officers/me/complaints")
@roles_required("officer")
def my_complaints():
    complaints = complaints_for_officer_user(current_user.id)
    return jsonify({"complaints": [complaint.to_payload() for complaint in complaints]})
