from datetime import datetime, timedelta, timezone

import pytest

from conftest import TEST_PASSWORD, make_member
from core.account_security import LoginAttemptTracker
from core.exceptions import (
    AccountLockedError,
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from core.security import verify_password
from models import Gym, Member
from services import accounts
from services.email_service import email_service
from services.plan_catalog import DEFAULT_GYM_FACILITIES, default_operating_hours

LOCATION = {"address": "1 Loop Rd", "city": "Austin", "state": "TX", "zip_code": "73301"}


def test_register_member_starts_empty(db):
    m = accounts.register_member(db, name="  Ana  ", email="Ana@Example.COM", password="longenough")

    assert m.email == "ana@example.com"
    assert m.name == "Ana"
    assert m.tokens == 0
    assert m.subscription_active is False
    assert m.has_active_subscription is False
    assert verify_password("longenough", m.password_hash)


def test_register_rejects_duplicate_email_across_roles(db, gym):
    with pytest.raises(ConflictError):
        accounts.register_member(db, name="Dup", email=gym.email.upper(), password="longenough")


def test_register_rejects_short_password(db):
    with pytest.raises(ValidationError):
        accounts.register_member(db, name="Shorty", email="short@example.com", password="abc")


def test_authenticate_checks_role(db, member):
    user = accounts.authenticate(db, email="MEMBER@example.com", password=TEST_PASSWORD, role="member")
    assert user.id == member.id

    with pytest.raises(UnauthorizedError) as exc:
        accounts.authenticate(db, email=member.email, password=TEST_PASSWORD, role="gym")
    assert exc.value.detail == "Invalid credentials"


def test_authenticate_wrong_password(db, member):
    with pytest.raises(UnauthorizedError) as exc:
        accounts.authenticate(db, email=member.email, password="wrong-password", role="member")
    assert exc.value.detail == "Invalid credentials"


def test_authenticate_inactive_account(db):
    make_member(email="gone@example.com", is_active=False)

    with pytest.raises(UnauthorizedError) as exc:
        accounts.authenticate(db, email="gone@example.com", password=TEST_PASSWORD, role="member")
    assert exc.value.detail == "Account is deactivated"


def test_repeated_failures_lock_the_account(db, member):
    for _ in range(5):
        with pytest.raises(UnauthorizedError):
            accounts.authenticate(db, email=member.email, password="nope-nope", role="member")

    with pytest.raises(AccountLockedError) as exc:
        accounts.authenticate(db, email=member.email, password=TEST_PASSWORD, role="member")
    assert exc.value.status_code == 429
    assert int(exc.value.headers["Retry-After"]) > 0


def test_lockout_expires():
    tracker = LoginAttemptTracker(max_failed=2, lockout_minutes=15)
    start = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    tracker.record("x@example.com", success=False, now=start)
    tracker.record("x@example.com", success=False, now=start + timedelta(minutes=1))

    locked, seconds = tracker.is_locked("x@example.com", now=start + timedelta(minutes=2))
    assert locked is True
    assert seconds > 0

    locked, _ = tracker.is_locked("x@example.com", now=start + timedelta(minutes=20))
    assert locked is False


def test_successful_login_clears_failures():
    tracker = LoginAttemptTracker(max_failed=3, lockout_minutes=15)
    tracker.record("y@example.com", success=False)
    tracker.record("y@example.com", success=False)
    tracker.record("y@example.com", success=True)

    assert tracker.remaining_attempts("y@example.com") == 3


def test_change_password(db, member):
    m = accounts.get_member(db, member.id)

    with pytest.raises(UnauthorizedError):
        accounts.change_password(db, m, "wrong-password", "brand-new-pass")

    accounts.change_password(db, m, TEST_PASSWORD, "brand-new-pass")
    assert accounts.authenticate(db, email=m.email, password="brand-new-pass", role="member").id == m.id


def test_create_gym_generates_code_and_mails_credentials(db, monkeypatch):
    sent = []
    monkeypatch.setattr(
        email_service,
        "send_gym_credentials",
        lambda email, name, password: sent.append((email, name, password)) or True,
    )

    gym, password = accounts.create_gym(db, name="Iron Temple", email="iron@example.com", location=LOCATION, capacity=50)

    assert gym.gym_code.startswith("GYM")
    assert len(gym.gym_code) == 9
    assert gym.gym_code[3:].isdigit()
    assert gym.facilities == list(DEFAULT_GYM_FACILITIES)
    assert gym.operating_hours == default_operating_hours()
    assert sent == [("iron@example.com", "Iron Temple", password)]
    assert verify_password(password, gym.password_hash)


def test_create_gym_with_explicit_code_is_uppercased(db):
    gym, _ = accounts.create_gym(
        db, name="FitZone", email="fz@example.com", location=LOCATION, capacity=10, gym_code="fz001", send_credentials=False
    )
    assert gym.gym_code == "FZ001"

    with pytest.raises(ConflictError):
        accounts.create_gym(
            db, name="Copy", email="copy@example.com", location=LOCATION, capacity=10, gym_code="FZ001", send_credentials=False
        )


def test_create_gym_requires_capacity(db):
    with pytest.raises(ValidationError):
        accounts.create_gym(db, name="Tiny", email="tiny@example.com", location=LOCATION, capacity=0)


def test_create_admin_rejects_unknown_permission(db):
    with pytest.raises(ValidationError):
        accounts.create_admin(db, name="Root", email="root@example.com", password="longenough", permissions=["everything"])


def test_update_member_whitelist(db, member):
    updated = accounts.update_member(db, member.id, {"name": "Renamed", "phone": "555-0100"})
    assert updated.name == "Renamed"
    assert updated.phone == "555-0100"

    with pytest.raises(ValidationError):
        accounts.update_member(db, member.id, {"tokens": 999})
    db.rollback()
    assert db.query(Member).filter(Member.id == member.id).one().tokens == 0


def test_update_gym(db, gym):
    updated = accounts.update_gym(db, gym.id, {"capacity": 75, "facilities": ["Sauna"]})
    assert updated.capacity == 75
    assert updated.facilities == ["Sauna"]

    with pytest.raises(ValidationError):
        accounts.update_gym(db, gym.id, {"gym_code": "HACK01"})
    with pytest.raises(ValidationError):
        accounts.update_gym(db, gym.id, {"capacity": 0})


def test_deactivate_and_reactivate(db, gym):
    assert accounts.deactivate_user(db, gym.id).is_active is False
    assert db.query(Gym).filter(Gym.id == gym.id).one().is_active is False
    assert accounts.reactivate_user(db, gym.id).is_active is True


def test_missing_user(db):
    from uuid import uuid4

    with pytest.raises(NotFoundError):
        accounts.get_user(db, uuid4())
