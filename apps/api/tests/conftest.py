"""
Pytest configuration and fixtures

Tests run against an in-memory SQLite database shared by every session
(StaticPool). The schema is created once per run and every table is emptied
after each test, so nothing leaks between tests.

Sessions opened in tests must be closed before the next HTTP request is
made: all sessions share one connection. The factory helpers commit the
`db` fixture session first, so they can be called at any point in a test.
"""
import os
import sys
from datetime import datetime, timezone

import pytest

# Must be set before any app module reads settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-fitflow-tests-0123456789")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ["EMAIL_ENABLED"] = "false"

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.account_security import login_attempts
from core.database import Base, SessionLocal, engine, init_db
from core.security import create_session_token, get_password_hash
from models import Admin, Gym, Member
from services.plan_catalog import DEFAULT_ADMIN_PERMISSIONS, default_operating_hours

TEST_PASSWORD = "password123"

# bcrypt is slow; hash once per run
_PASSWORD_HASH = get_password_hash(TEST_PASSWORD)


@pytest.fixture(scope="session", autouse=True)
def _create_schema():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    login_attempts.clear()


_open_sessions = []


@pytest.fixture
def db():
    """Session for service-level tests. Closed before table cleanup."""
    session = SessionLocal()
    _open_sessions.append(session)
    try:
        yield session
    finally:
        _open_sessions.remove(session)
        session.close()


def _release_open_sessions():
    # A test session left mid-transaction still holds BEGIN on the shared connection
    for session in _open_sessions:
        if session.in_transaction():
            session.commit()


def _persist(obj):
    _release_open_sessions()
    session = SessionLocal()
    try:
        session.add(obj)
        session.commit()
        session.refresh(obj)
        return obj
    finally:
        session.close()


def make_member(email="member@example.com", tokens=0, **kwargs):
    return _persist(
        Member(
            name=kwargs.pop("name", "Test Member"),
            email=email,
            password_hash=_PASSWORD_HASH,
            tokens=tokens,
            **kwargs,
        )
    )


def make_gym(gym_code="FZ001", email=None, name="FitZone Downtown", **kwargs):
    return _persist(
        Gym(
            name=name,
            email=email or f"{gym_code.lower()}@example.com",
            password_hash=_PASSWORD_HASH,
            gym_code=gym_code,
            location=kwargs.pop(
                "location",
                {"address": "123 Main St", "city": "New York", "state": "NY", "zip_code": "10001"},
            ),
            facilities=kwargs.pop("facilities", ["Weight Training", "Cardio"]),
            capacity=kwargs.pop("capacity", 200),
            operating_hours=default_operating_hours(),
            **kwargs,
        )
    )


def make_admin(email="admin@example.com", permissions=None):
    return _persist(
        Admin(
            name="Test Admin",
            email=email,
            password_hash=_PASSWORD_HASH,
            permissions=list(DEFAULT_ADMIN_PERMISSIONS) if permissions is None else permissions,
        )
    )


def auth_headers(user):
    return {"Authorization": f"Bearer {create_session_token(user)}"}


@pytest.fixture
def member():
    return make_member()


@pytest.fixture
def funded_member():
    return make_member(email="funded@example.com", tokens=5)


@pytest.fixture
def gym():
    return make_gym()


@pytest.fixture
def other_gym():
    return make_gym(gym_code="PH002", name="PowerHouse Gym")


@pytest.fixture
def admin():
    return make_admin()


@pytest.fixture
def member_headers(member):
    return auth_headers(member)


@pytest.fixture
def funded_headers(funded_member):
    return auth_headers(funded_member)


@pytest.fixture
def gym_headers(gym):
    return auth_headers(gym)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def fixed_now():
    """A local-time instant in the middle of a day."""
    return datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc).astimezone()
