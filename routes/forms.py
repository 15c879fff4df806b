"""Input forms for the JSON API; Flask-WTF reads JSON request bodies into these."""
from flask_wtf import FlaskForm
from wtforms import BooleanField, IntegerField, PasswordField, StringField, TextAreaField
from wtforms.validators import DataRequired, Email, InputRequired, Length, NumberRange, Optional


class ApiForm(FlaskForm):
    class Meta:
        # JSON clients authenticate by session cookie; CSRF tokens apply to browser forms only.
        csrf = False


class LoginForm(ApiForm):
    email = StringField("Email", validators=[DataRequired(), Email(), Length(max=255)])
    password = PasswordField("Password", validators=[DataRequired()])
    remember_me = BooleanField("Remember me")


class ComplaintForm(ApiForm):
    title = StringField("Title", validators=[DataRequired(), Length(min=5, max=255)])
    description = TextAreaField("Description", validators=[DataRequired(), Length(min=20)])
    category = StringField("Category", validators=[DataRequired(), Length(max=50)])
    priority = StringField("Priority", validators=[Optional(), Length(max=20)])
    contact_name = StringField("Contact name", validators=[DataRequired(), Length(min=2, max=150)])
    contact_email = StringField("Contact email", validators=[DataRequired(), Email(), Length(max=255)])
    contact_phone = StringField("Contact phone", validators=[Optional(), Length(max=50)])


class ExecutiveForm(ApiForm):
    name = StringField("Name", validators=[DataRequired(), Length(max=150)])
    designation = StringField("Designation", validators=[DataRequired(), Length(max=150)])
    email = StringField("Email", validators=[DataRequired(), Email(), Length(max=255)])
    department = StringField("Department", validators=[Optional(), Length(max=255)])
    phone = StringField("Phone", validators=[Optional(), Length(max=50)])
    time_boundary = IntegerField("Days allowed", validators=[Optional(), NumberRange(min=1, max=365)])


class OfficerChoiceForm(ApiForm):
    officer_id = StringField("Officer", validators=[DataRequired(), Length(max=36)])
    time_boundary = IntegerField("Days allowed", validators=[Optional(), NumberRange(min=1, max=365)])


class StatusForm(ApiForm):
    status = StringField("Status", validators=[DataRequired(), Length(max=20)])


class PriorityForm(ApiForm):
    priority = StringField("Priority", validators=[DataRequired(), Length(max=20)])


class CloseForm(ApiForm):
    remarks = TextAreaField("Closing remarks", validators=[DataRequired(), Length(max=5000)])
    closing_proof = StringField("Closing proof", validators=[Optional(), Length(max=1024)])


class ExtensionRequestForm(ApiForm):
    days = IntegerField("Days", validators=[InputRequired(), NumberRange(min=1, max=365)])
    reason = TextAreaField("Reason", validators=[Optional(), Length(max=2000)])


class ExtensionDecisionForm(ApiForm):
    days = IntegerField("Days", validators=[Optional(), NumberRange(min=1, max=365)])
    notes = TextAreaField("Notes", validators=[Optional(), Length(max=1000)])


class NoteForm(ApiForm):
    note = TextAreaField("Note", validators=[DataRequired(), Length(min=5, max=2000)])
    direction = StringField("Direction", validators=[Optional(), Length(max=20)])


class DocumentForm(ApiForm):
    file_url = StringField("File URL", validators=[DataRequired(), Length(max=1024)])
    file_name = StringField("File name", validators=[DataRequired(), Length(max=255)])
    file_type = StringField("File type", validators=[Optional(), Length(max=120)])
    direction = StringField("Direction", validators=[Optional(), Length(max=20)])
    note_id = StringField("Note", validators=[Optional(), Length(max=36)])
