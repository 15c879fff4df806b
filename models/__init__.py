"""Core data models for grievances, officers, extension requests, work logs, the audit timeline, and notifications."""
import uuid
from datetime import datetime

from flask_login import UserMixin
from sqlalchemy import event, text
from werkzeug.security import check_password_hash, generate_password_hash

from extensions import db


def generate_uuid() -> str:
	return str(uuid.uuid4())


def _in_clause(column: str, values: tuple[str, ...], nullable: bool = False) -> str:
	allowed = ",".join(f"'{value}'" for value in values)
	clause = f"{column} IN ({allowed})"
	if nullable:
		return f"{column} IS NULL OR {clause}"
	return clause


USER_ROLES: tuple[str, ...] = (
	"admin",
	"officer",
	"citizen",
)

COMPLAINT_STATUSES: tuple[str, ...] = (
	"pending",
	"in_progress",
	"resolved",
	"rejected",
)

COMPLAINT_PRIORITIES: tuple[str, ...] = (
	"low",
	"medium",
	"high",
	"urgent",
)

COMPLAINT_CATEGORIES: tuple[str, ...] = (
	"roads",
	"water",
	"electricity",
	"sanitation",
	"health",
	"education",
	"documents",
	"other",
)

EXTENSION_STATUSES: tuple[str, ...] = (
	"pending",
	"approved",
	"rejected",
)

EXTENSION_REQUESTER_ROLES: tuple[str, ...] = (
	"officer",
	"admin",
)

ACTOR_ROLES: tuple[str, ...] = (
	"admin",
	"officer",
	"system",
	"citizen",
)

AUTHOR_KINDS: tuple[str, ...] = (
	"admin",
	"officer",
)

ENTRY_DIRECTIONS: tuple[str, ...] = (
	"inward",
	"outward",
)

TIMELINE_EVENT_TYPES: tuple[str, ...] = (
	"complaint_created",
	"complaint_updated",
	"complaint_closed",
	"complaint_reopened",
	"status_changed",
	"priority_changed",
	"note_added",
	"document_added",
	"officer_selected",
	"letter_drafted",
	"letter_redrafted",
	"letter_saved",
	"recipient_updated",
	"officer_assigned",
	"officer_reassigned",
	"officer_unassigned",
	"officer_note_added",
	"officer_document_added",
	"extension_requested",
	"extension_approved",
	"extension_rejected",
	"officer_demand_created",
	"officer_demand_fulfilled",
	"research_completed",
	"actions_generated",
	"documents_summarized",
)


class User(UserMixin, db.Model):
	__tablename__ = "users"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	full_name = db.Column(db.String(150), nullable=False)
	email = db.Column(db.String(255), unique=True, nullable=False, index=True)
	password_hash = db.Column(db.String(255), nullable=False)
	role = db.Column(db.String(20), nullable=False, default="citizen", index=True)
	is_active = db.Column(db.Boolean, default=True, nullable=False)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
	last_login_at = db.Column(db.DateTime, nullable=True)

	__table_args__ = (
		db.CheckConstraint(_in_clause("role", USER_ROLES), name="ck_user_role_valid"),
	)

	officer = db.relationship("Officer", back_populates="user", uselist=False)

	def set_password(self, password: str) -> None:
		self.password_hash = generate_password_hash(password, method="pbkdf2:sha256", salt_length=16)

	def check_password(self, password: str) -> bool:
		return check_password_hash(self.password_hash, password)

	@property
	def is_admin(self) -> bool:
		return self.role == "admin"

	@property
	def is_officer(self) -> bool:
		return self.role == "officer"

	@property
	def active(self) -> bool:  # Flask-Login compatibility alias
		return self.is_active

	def to_payload(self) -> dict:
		return {
			"id": self.id,
			"full_name": self.full_name,
			"email": self.email,
			"role": self.role,
			"is_active": self.is_active,
		}


class Officer(db.Model):
	"""An executive who can be assigned complaints.

	``assigned_complaints`` is derived data: it must always equal the set of
	complaints whose ``assigned_officer_id`` points here. The assignment engine
	keeps both sides in step; ``flask assignments-rebuild`` repairs drift.
	"""

	__tablename__ = "officers"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	name = db.Column(db.String(150), nullable=False)
	designation = db.Column(db.String(150), nullable=False)
	department = db.Column(db.String(255), nullable=True)
	phone = db.Column(db.String(50), nullable=True)
	email = db.Column(db.String(255), unique=True, nullable=False, index=True)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id"), unique=True, nullable=True)
	assigned_complaints = db.Column(db.JSON, nullable=False, default=list)
	arrived = db.Column(db.Integer, nullable=False, default=0)
	acted = db.Column(db.Integer, nullable=False, default=0)
	closed = db.Column(db.Integer, nullable=False, default=0)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
	updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	user = db.relationship("User", back_populates="officer")

	def holds(self, complaint_id: str) -> bool:
		return complaint_id in (self.assigned_complaints or [])

	def contact_snapshot(self) -> dict:
		return {"id": self.id, "name": self.name, "email": self.email}

	def to_payload(self) -> dict:
		return {
			"id": self.id,
			"name": self.name,
			"designation": self.designation,
			"department": self.department,
			"phone": self.phone,
			"email": self.email,
			"user_id": self.user_id,
			"assigned_complaints": list(self.assigned_complaints or []),
			"arrived": self.arrived or 0,
			"acted": self.acted or 0,
			"closed": self.closed or 0,
		}


class Complaint(db.Model):
	__tablename__ = "complaints"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	title = db.Column(db.String(255), nullable=False)
	description = db.Column(db.Text, nullable=False)
	category = db.Column(db.String(50), nullable=False, index=True)
	priority = db.Column(db.String(20), nullable=False, default="medium", index=True)
	status = db.Column(db.String(20), nullable=False, default="pending", index=True)
	contact_name = db.Column(db.String(150), nullable=False)
	contact_email = db.Column(db.String(255), nullable=False)
	contact_phone = db.Column(db.String(50), nullable=True)
	created_by_user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True, index=True)
	is_officer_assigned = db.Column(db.Boolean, nullable=False, default=False, index=True)
	assigned_officer_id = db.Column(db.String(36), db.ForeignKey("officers.id"), nullable=True, index=True)
	assigned_to_user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True, index=True)
	assigned_time = db.Column(db.DateTime, nullable=True)
	time_boundary = db.Column(db.Integer, nullable=False, default=7)
	is_extended = db.Column(db.Boolean, nullable=False, default=False)
	is_complaint_closed = db.Column(db.Boolean, nullable=False, default=False, index=True)
	closing_details = db.Column(db.JSON, nullable=True)
	actual_resolution_date = db.Column(db.DateTime, nullable=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
	updated_at = db.Column(
		db.DateTime,
		default=datetime.utcnow,
		onupdate=datetime.utcnow,
		nullable=False,
		index=True,
	)

	__table_args__ = (
		db.CheckConstraint(_in_clause("status", COMPLAINT_STATUSES), name="ck_complaint_status_valid"),
		db.CheckConstraint(_in_clause("priority", COMPLAINT_PRIORITIES), name="ck_complaint_priority_valid"),
		db.CheckConstraint("time_boundary >= 0", name="ck_complaint_time_boundary"),
		db.Index("ix_complaints_officer_assigned", "assigned_officer_id", "is_officer_assigned"),
	)

	assigned_officer = db.relationship("Officer", foreign_keys=[assigned_officer_id])
	assigned_user = db.relationship("User", foreign_keys=[assigned_to_user_id])
	creator = db.relationship("User", foreign_keys=[created_by_user_id])
	extension_requests = db.relationship(
		"ExtensionRequest",
		back_populates="complaint",
		order_by="ExtensionRequest.created_at",
		lazy="dynamic",
	)

	@property
	def immutable_fields(self) -> set[str]:
		return {"id", "created_by_user_id", "created_at"}

	def to_payload(self) -> dict:
		return {
			"id": self.id,
			"title": self.title,
			"description": self.description,
			"category": self.category,
			"priority": self.priority,
			"status": self.status,
			"contact_name": self.contact_name,
			"contact_email": self.contact_email,
			"contact_phone": self.contact_phone,
			"created_by_user_id": self.created_by_user_id,
			"is_officer_assigned": self.is_officer_assigned,
			"assigned_officer_id": self.assigned_officer_id,
			"assigned_to_user_id": self.assigned_to_user_id,
			"assigned_time": self.assigned_time.isoformat() if self.assigned_time else None,
			"time_boundary": self.time_boundary,
			"is_extended": self.is_extended,
			"is_complaint_closed": self.is_complaint_closed,
			"closing_details": self.closing_details,
			"actual_resolution_date": self.actual_resolution_date.isoformat() if self.actual_resolution_date else None,
			"created_at": self.created_at.isoformat() if self.created_at else None,
			"updated_at": self.updated_at.isoformat() if self.updated_at else None,
		}


class ExtensionRequest(db.Model):
	__tablename__ = "complaint_extension_requests"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=False, index=True)
	requested_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
	requested_by_role = db.Column(db.String(20), nullable=False, default="officer")
	days_requested = db.Column(db.Integer, nullable=False)
	reason = db.Column(db.String(2000), nullable=True)
	status = db.Column(db.String(20), nullable=False, default="pending", index=True)
	decided_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	decided_by_role = db.Column(db.String(20), nullable=True)
	decided_at = db.Column(db.DateTime, nullable=True)
	notes = db.Column(db.String(1000), nullable=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
	updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	__table_args__ = (
		db.CheckConstraint(_in_clause("status", EXTENSION_STATUSES), name="ck_extension_status_valid"),
		db.CheckConstraint(
			_in_clause("requested_by_role", EXTENSION_REQUESTER_ROLES),
			name="ck_extension_requester_role",
		),
		db.CheckConstraint("decided_by_role IS NULL OR decided_by_role = 'admin'", name="ck_extension_decider_role"),
		db.CheckConstraint("days_requested >= 1 AND days_requested <= 365", name="ck_extension_days_range"),
		db.Index("ix_extension_complaint_status_created", "complaint_id", "status", "created_at"),
	)

	complaint = db.relationship("Complaint", back_populates="extension_requests")

	@property
	def is_decided(self) -> bool:
		return self.status != "pending"

	def to_payload(self) -> dict:
		return {
			"id": self.id,
			"complaint_id": self.complaint_id,
			"requested_by": self.requested_by,
			"requested_by_role": self.requested_by_role,
			"days_requested": self.days_requested,
			"reason": self.reason,
			"status": self.status,
			"decided_by": self.decided_by,
			"decided_by_role": self.decided_by_role,
			"decided_at": self.decided_at.isoformat() if self.decided_at else None,
			"notes": self.notes,
			"created_at": self.created_at.isoformat() if self.created_at else None,
		}


class TimelineEvent(db.Model):
	"""One immutable fact about a complaint.

	Rows are only ever inserted. A partial unique index guarantees at most one
	row per ``(complaint_id, idempotency_key)`` when a key is present.
	"""

	__tablename__ = "complaint_timeline_events"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=False, index=True)
	event_type = db.Column(db.String(50), nullable=False, index=True)
	at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
	actor_user_id = db.Column(db.String(36), nullable=True)
	actor_role = db.Column(db.String(20), nullable=True)
	actor_name = db.Column(db.String(150), nullable=True)
	payload = db.Column(db.JSON, nullable=False, default=dict)
	idempotency_key = db.Column(db.String(200), nullable=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	__table_args__ = (
		db.CheckConstraint(_in_clause("event_type", TIMELINE_EVENT_TYPES), name="ck_timeline_event_type"),
		db.CheckConstraint(_in_clause("actor_role", ACTOR_ROLES, nullable=True), name="ck_timeline_actor_role"),
		db.Index("ix_timeline_complaint_at", "complaint_id", "at"),
		db.Index("ix_timeline_actor_at", "actor_user_id", "at"),
		db.Index(
			"uq_timeline_complaint_idempotency",
			"complaint_id",
			"idempotency_key",
			unique=True,
			sqlite_where=text("idempotency_key IS NOT NULL"),
			postgresql_where=text("idempotency_key IS NOT NULL"),
		),
	)

	def to_payload(self) -> dict:
		return {
			"id": self.id,
			"complaint_id": self.complaint_id,
			"type": self.event_type,
			"at": self.at.isoformat() if self.at else None,
			"actor": {
				"id": self.actor_user_id,
				"role": self.actor_role,
				"name": self.actor_name,
			},
			"payload": self.payload or {},
			"idempotency_key": self.idempotency_key,
		}


@event.listens_for(TimelineEvent, "before_update")
def _reject_timeline_update(mapper, connection, target):
	raise RuntimeError("Timeline events are append-only")


@event.listens_for(TimelineEvent, "before_delete")
def _reject_timeline_delete(mapper, connection, target):
	raise RuntimeError("Timeline events are append-only")


class ComplaintNote(db.Model):
	__tablename__ = "complaint_notes"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=False, index=True)
	author_kind = db.Column(db.String(20), nullable=False, index=True)
	author_user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	author_name = db.Column(db.String(150), nullable=True)
	officer_id = db.Column(db.String(36), db.ForeignKey("officers.id"), nullable=True, index=True)
	direction = db.Column(db.String(20), nullable=True)
	note = db.Column(db.Text, nullable=False)
	attachments = db.Column(db.JSON, nullable=False, default=list)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	__table_args__ = (
		db.CheckConstraint(_in_clause("author_kind", AUTHOR_KINDS), name="ck_note_author_kind"),
		db.CheckConstraint(_in_clause("direction", ENTRY_DIRECTIONS, nullable=True), name="ck_note_direction"),
		db.CheckConstraint(
			"author_kind = 'admin' OR (officer_id IS NOT NULL AND direction IS NOT NULL)",
			name="ck_note_officer_fields",
		),
	)

	@staticmethod
	def for_author(complaint_id: str, author_kind: str | None = None):
		query = ComplaintNote.query.filter_by(complaint_id=complaint_id)
		if author_kind:
			query = query.filter(ComplaintNote.author_kind == author_kind)
		return query.order_by(ComplaintNote.created_at.asc())

	def to_payload(self) -> dict:
		return {
			"id": self.id,
			"complaint_id": self.complaint_id,
			"author_kind": self.author_kind,
			"author_user_id": self.author_user_id,
			"author_name": self.author_name,
			"officer_id": self.officer_id,
			"direction": self.direction,
			"note": self.note,
			"attachments": list(self.attachments or []),
			"created_at": self.created_at.isoformat() if self.created_at else None,
		}


class ComplaintDocument(db.Model):
	__tablename__ = "complaint_documents"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=False, index=True)
	author_kind = db.Column(db.String(20), nullable=False, index=True)
	uploaded_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	officer_id = db.Column(db.String(36), db.ForeignKey("officers.id"), nullable=True, index=True)
	note_id = db.Column(db.String(36), db.ForeignKey("complaint_notes.id"), nullable=True)
	direction = db.Column(db.String(20), nullable=True)
	file_url = db.Column(db.String(1024), nullable=False)
	file_name = db.Column(db.String(255), nullable=False)
	file_type = db.Column(db.String(120), nullable=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	__table_args__ = (
		db.CheckConstraint(_in_clause("author_kind", AUTHOR_KINDS), name="ck_document_author_kind"),
		db.CheckConstraint(_in_clause("direction", ENTRY_DIRECTIONS, nullable=True), name="ck_document_direction"),
		db.CheckConstraint(
			"author_kind = 'admin' OR (officer_id IS NOT NULL AND direction IS NOT NULL)",
			name="ck_document_officer_fields",
		),
	)

	@staticmethod
	def for_author(complaint_id: str, author_kind: str | None = None):
		query = ComplaintDocument.query.filter_by(complaint_id=complaint_id)
		if author_kind:
			query = query.filter(ComplaintDocument.author_kind == author_kind)
		return query.order_by(ComplaintDocument.created_at.asc())

	def to_payload(self) -> dict:
		return {
			"id": self.id,
			"complaint_id": self.complaint_id,
			"author_kind": self.author_kind,
			"uploaded_by": self.uploaded_by,
			"officer_id": self.officer_id,
			"note_id": self.note_id,
			"direction": self.direction,
			"file_url": self.file_url,
			"file_name": self.file_name,
			"file_type": self.file_type,
			"created_at": self.created_at.isoformat() if self.created_at else None,
		}


class NotificationSetting(db.Model):
	__tablename__ = "notification_settings"

	id = db.Column(db.Integer, primary_key=True)
	event_type = db.Column(db.String(50), unique=True, nullable=False, index=True)
	enabled = db.Column(db.Boolean, nullable=False, default=True)
	updated_by = db.Column(db.String(36), nullable=True)
	updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	__table_args__ = (
		db.CheckConstraint(_in_clause("event_type", TIMELINE_EVENT_TYPES), name="ck_notification_event_type"),
	)


class Notification(db.Model):
	"""One in-app notification for one receiver of one timeline event."""

	__tablename__ = "notifications"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
	event_type = db.Column(db.String(50), nullable=False, index=True)
	complaint_id = db.Column(db.String(36), nullable=False, index=True)
	title = db.Column(db.String(300), nullable=False)
	body = db.Column(db.String(2000), nullable=False, default="")
	payload = db.Column(db.JSON, nullable=False, default=dict)
	timeline_event_id = db.Column(db.String(36), nullable=True, index=True)
	read_at = db.Column(db.DateTime, nullable=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	__table_args__ = (
		db.Index("ix_notifications_user_created", "user_id", "created_at"),
		db.Index("ix_notifications_user_read", "user_id", "read_at"),
		db.Index("ix_notifications_user_complaint_created", "user_id", "complaint_id", "created_at"),
	)

	@property
	def is_read(self) -> bool:
		return self.read_at is not None

	def to_payload(self) -> dict:
		return {
			"id": self.id,
			"user_id": self.user_id,
			"event_type": self.event_type,
			"complaint_id": self.complaint_id,
			"title": self.title,
			"body": self.body,
			"payload": self.payload or {},
			"timeline_event_id": self.timeline_event_id,
			"read_at": self.read_at.isoformat() if self.read_at else None,
			"created_at": self.created_at.isoformat() if self.created_at else None,
		}
