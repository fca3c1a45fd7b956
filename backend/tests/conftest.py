"""
Shared fixtures: an in-memory SQLite database per test, users for each
role, and a FastAPI TestClient bound to the same session.
"""
import os

# Must be set before app.database builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.models import db_models  # noqa: F401  registers tables on Base
from app.models.db_models import UserDB, UserRole
from app.auth import create_access_token


# Monday, so ISO-week boundaries in accrual tests are easy to reason about
T0 = datetime(2026, 1, 5, 9, 0, 0)


@pytest.fixture
def db():
    """Fresh in-memory database and session."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def _make_user(db, role: UserRole, name: str) -> UserDB:
    user = UserDB(
        id=str(uuid4()),
        email=f"{name}@trafficwatch.gov.bd",
        username=name,
        password_hash="not-a-real-hash",
        role=role,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def citizen(db):
    return _make_user(db, UserRole.CITIZEN, "rahim")


@pytest.fixture
def other_citizen(db):
    return _make_user(db, UserRole.CITIZEN, "karim")


@pytest.fixture
def officer(db):
    return _make_user(db, UserRole.POLICE, "officer")


@pytest.fixture
def admin(db):
    return _make_user(db, UserRole.ADMIN, "admin")


@pytest.fixture
def make_report(db, citizen):
    """Factory for PENDING reports owned by `citizen` unless told otherwise."""
    from app.services.lifecycle import ReportStore

    def _make(plate="DHA-1234", violation_type="OVERSPEEDING", owner=None, **kwargs):
        return ReportStore(db).create(
            citizen_id=(owner or citizen).id,
            vehicle_plate=plate,
            violation_type=violation_type,
            evidence_urls=kwargs.pop("evidence_urls", ["https://cdn.example.com/evidence/1.jpg"]),
            **kwargs,
        )

    return _make


def auth_headers(user: UserDB) -> dict:
    token = create_access_token(user.id, user.email, user.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers():
    """Bearer headers for a user: headers(user)."""
    return auth_headers


@pytest.fixture
def client(db):
    """TestClient whose requests share the test session."""
    from app.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
