"""Shared fixtures: in-memory database, users, recording notifier and API client."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret-for-signing-access-tokens-0123456789")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ticketflow_core import crud, models
from ticketflow_core.api.dependencies import get_notifier
from ticketflow_core.api.main import app
from ticketflow_core.database import get_db
from ticketflow_core.notifications import NotificationResult
from ticketflow_core.security import create_access_token, hash_password

TEST_PASSWORD = "Secret123"


class RecordingNotifier:
    """Notifier double that records every call instead of sending email."""

    def __init__(self):
        self.calls = []

    def _record(self, kind, **payload):
        self.calls.append((kind, payload))
        return NotificationResult(success=True, message_ids=[f"test-{len(self.calls)}"])

    def send_welcome(self, user):
        return self._record("welcome", user=user)

    def send_assignment(self, ticket, assignee, actor):
        return self._record("assignment", ticket=ticket, assignee=assignee, actor=actor)

    def send_status_update(self, ticket, actor, recipients):
        return self._record("status_update", ticket=ticket, actor=actor, recipients=recipients)

    def send_project_invitation(self, project, invitee, actor):
        return self._record("project_invitation", project=project, invitee=invitee, actor=actor)

    def of_kind(self, kind):
        return [payload for recorded_kind, payload in self.calls if recorded_kind == kind]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    """Factory creating users directly in the database."""
    counter = {"n": 0}

    def _make_user(name=None, email=None, role=models.UserRole.USER, is_active=True):
        counter["n"] += 1
        user = crud.create_user(
            db,
            name=name or f"User {chr(ord('A') + counter['n'] - 1)}",
            email=email or f"user{counter['n']}@example.com",
            password_hash=hash_password(TEST_PASSWORD, iterations=1000),
            role=role,
        )
        if not is_active:
            user.is_active = False
            crud.save_user(db, user)
        return user

    return _make_user


@pytest.fixture
def admin(make_user):
    return make_user(name="Ada Admin", email="admin@example.com", role=models.UserRole.ADMIN)


@pytest.fixture
def alice(make_user):
    return make_user(name="Alice", email="alice@example.com")


@pytest.fixture
def bob(make_user):
    return make_user(name="Bob", email="bob@example.com")


@pytest.fixture
def carol(make_user):
    return make_user(name="Carol", email="carol@example.com")


@pytest.fixture
def project(db, admin):
    """An active project created by the admin, with no members."""
    return crud.create_project(
        db,
        name="Website Redesign",
        description="Refresh the public website",
        created_by_user_id=admin.id,
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(db, notifier):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}
