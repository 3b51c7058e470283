"""
Shared fixtures: an in-memory database seeded with roles, qualification
types and retention rules, a temp storage dir and an API client wired to both.
"""
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("RATE_LIMIT", "10000/minute")
os.environ.setdefault("ENABLE_METRICS", "false")
os.environ.setdefault("ENABLE_EMAIL", "false")
os.environ.setdefault("JWT_SECRET", "test-secret")

import uuid
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sitework.auth.security import create_access_token
from sitework.db import Base, get_db
from sitework.main import app
from sitework.models.models import Plot, Project
from sitework.services.permissions import role_names
from sitework.services.reference_data import seed_reference_data
from sitework.services.users import create_user
from sitework.storage.local_provider import LocalStorageProvider, get_storage


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    seed_reference_data(session)
    yield session
    session.close()


@pytest.fixture
def storage(tmp_path):
    return LocalStorageProvider(str(tmp_path / "storage"))


@pytest.fixture
def client(session_factory, db, storage):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Factory: make_user("supervisor", first_name="Sam") -> User"""
    def _make(role: str = "operative", **overrides):
        data = {
            "email": f"{role}-{uuid.uuid4().hex[:8]}@example.com",
            "first_name": role.title(),
            "last_name": "Tester",
            "password": "password123",
            "role": role,
            "activation_status": "active",
        }
        data.update(overrides)
        return create_user(db, None, data)

    return _make


@pytest.fixture
def project(db):
    p = Project(name="Riverside Block A", code="RSA", status="active", start_date=date(2026, 1, 5))
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


@pytest.fixture
def plot(db, project):
    p = Plot(project_id=project.id, level="2", plot_number="204", status="in_progress")
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


def auth_headers(user) -> dict:
    token = create_access_token(str(user.id), roles=role_names(user))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    return auth_headers
