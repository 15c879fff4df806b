"""
Shared fixtures for the grievance desk test suite.

Provides:
  - ``app`` / ``client``: a fresh application on in-memory SQLite per test.
  - ``create_user``, ``create_officer``, ``create_complaint`` factory fixtures.
  - ``channels``: opens real-time channels for users and exposes their inbox.
  - ``login``: signs a user into the test client session.
"""

from __future__ import annotations

import itertools
import os

import pytest
from flask import g

# app.py builds an application at import time; point it at the testing config first.
os.environ["FLASK_CONFIG"] = "testing"

from app import create_app  # noqa: E402
from extensions import db, hub  # noqa: E402
from models import Complaint, Officer, User  # noqa: E402


@pytest.fixture()
def app():
    application = create_app("testing")
    with application.app_context():
        yield application
        db.session.remove()
        db.drop_all()
    hub.close_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def create_user(app):
    """
    Factory fixture that creates a user with sensible defaults.

    Usage::

        admin = create_user()
        officer_user = create_user(role="officer", email="officer@pwd.gov.in")
        citizen = create_user(role="citizen", password="Str0ng!Passw0rd")
    """
    counter = itertools.count(1)

    def _factory(
        *,
        role: str = "admin",
        full_name: str | None = None,
        email: str | None = None,
        password: str | None = None,
        is_active: bool = True,
    ) -> User:
        n = next(counter)
        user = User(
            full_name=full_name or f"{role.title()} User {n}",
            email=email or f"{role}{n}@grievance.test",
            role=role,
            is_active=is_active,
        )
        if password:
            user.set_password(password)
        else:
            # Hashing is slow; most tests never sign in with a password.
            user.password_hash = "!unusable"
        db.session.add(user)
        db.session.commit()
        return user

    return _factory


@pytest.fixture()
def create_officer(app, create_user):
    """
    Factory fixture for officers. By default each officer has a linked
    officer-role user account; pass ``with_user=False`` for legacy rows.
    """
    counter = itertools.count(1)

    def _factory(
        *,
        name: str | None = None,
        email: str | None = None,
        designation: str = "Executive Engineer",
        with_user: bool = True,
        assigned_complaints: list[str] | None = None,
    ) -> Officer:
        n = next(counter)
        email = email or f"officer{n}@dept.grievance.test"
        officer = Officer(
            name=name or f"Officer {n}",
            designation=designation,
            email=email,
            assigned_complaints=list(assigned_complaints or []),
            arrived=0,
            acted=0,
            closed=0,
        )
        if with_user:
            user = create_user(role="officer", email=email, full_name=officer.name)
            officer.user_id = user.id
        db.session.add(officer)
        db.session.commit()
        return officer

    return _factory


@pytest.fixture()
def create_complaint(app):
    counter = itertools.count(1)

    def _factory(**overrides) -> Complaint:
        n = next(counter)
        fields = {
            "title": f"Streetlight outage on ward {n}",
            "description": "The streetlights on the main road have been off for two weeks.",
            "category": "electricity",
            "priority": "medium",
            "status": "pending",
            "contact_name": "Asha Verma",
            "contact_email": f"citizen{n}@mail.test",
            "is_officer_assigned": False,
            "time_boundary": 7,
        }
        fields.update(overrides)
        complaint = Complaint(**fields)
        db.session.add(complaint)
        db.session.commit()
        return complaint

    return _factory


@pytest.fixture()
def channels(app):
    """
    Open a real-time channel per user. Returns a function that accepts users
    and returns ``{user_id: Channel}`` for everything opened so far.
    """
    opened = {}

    def _open(*users):
        for user in users:
            if user.id not in opened:
                opened[user.id] = hub.connect(user.id)
        return opened

    yield _open
    for channel in opened.values():
        hub.disconnect(channel)


@pytest.fixture()
def login(client):
    def _login(user):
        with client.session_transaction() as sess:
            sess["_user_id"] = user.id
            sess["_fresh"] = True
        # Requests share the test's app context, so drop the user cached by an earlier request.
        g.pop("_login_user", None)
        return client

    return _login


@pytest.fixture()
def check_links(app):
    return _check_links


def _check_links():
    """Every officer's list equals the complaints that point at that officer."""
    db.session.expire_all()
    for officer in Officer.query.all():
        expected = {
            row.id
            for row in Complaint.query.filter_by(assigned_officer_id=officer.id, is_officer_assigned=True).all()
        }
        assert set(officer.assigned_complaints or []) == expected, officer.id
        assert len(officer.assigned_complaints or []) == len(set(officer.assigned_complaints or []))
    for complaint in Complaint.query.all():
        assert complaint.is_officer_assigned == (complaint.assigned_officer_id is not None), complaint.id
