"""
Identity store.

Registration, login, gym onboarding and admin-side profile management for
the three roles. Token balances are deliberately not editable from here;
they only move through services.token_ledger.
"""
from __future__ import annotations

import logging
import secrets
from datetime import date
from typing import Any, Dict, Iterable, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.account_security import login_attempts
from core.exceptions import (
    AccountLockedError,
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from core.security import get_password_hash, verify_password
from models import Admin, Gym, Member, User
from services.email_service import email_service
from services.plan_catalog import (
    DEFAULT_ADMIN_PERMISSIONS,
    DEFAULT_GYM_FACILITIES,
    ADMIN_CAPABILITIES,
    default_operating_hours,
)

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
GYM_CODE_PREFIX = "GYM"
_GYM_CODE_ATTEMPTS = 10

ROLES = ("member", "gym", "admin")

# Admin-editable profile fields; anything else in an update payload is rejected
MEMBER_UPDATABLE_FIELDS = frozenset({"name", "phone", "address", "date_of_birth", "emergency_contact", "is_active"})
GYM_UPDATABLE_FIELDS = frozenset({"name", "phone", "location", "facilities", "capacity", "operating_hours", "is_active"})


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def normalize_gym_code(code: str) -> str:
    return (code or "").strip().upper()


def _validate_password(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters", field="password")


def _ensure_email_free(db: Session, email: str) -> None:
    if db.query(User.id).filter(User.email == email).first() is not None:
        raise ConflictError("User with this email already exists")


def _save_new_user(db: Session, user: User) -> User:
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race on a unique column (email / gym code)
        db.rollback()
        raise ConflictError("User with this email or gym code already exists")
    db.refresh(user)
    return user


def get_user(db: Session, user_id: UUID) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFoundError("User", str(user_id))
    return user


def get_member(db: Session, member_id: UUID) -> Member:
    member = db.query(Member).filter(Member.id == member_id).first()
    if member is None:
        raise NotFoundError("Member", str(member_id))
    return member


def get_gym(db: Session, gym_id: UUID) -> Gym:
    gym = db.query(Gym).filter(Gym.id == gym_id).first()
    if gym is None:
        raise NotFoundError("Gym", str(gym_id))
    return gym


def register_member(
    db: Session,
    *,
    name: str,
    email: str,
    password: str,
    phone: Optional[str] = None,
    address: Optional[str] = None,
    date_of_birth: Optional[date] = None,
    emergency_contact: Optional[Dict[str, Any]] = None,
) -> Member:
    """New members start with an empty token balance and no subscription."""
    email = normalize_email(email)
    if not (name or "").strip():
        raise ValidationError("Name is required", field="name")
    _validate_password(password)
    _ensure_email_free(db, email)

    member = Member(
        name=name.strip(),
        email=email,
        password_hash=get_password_hash(password),
        phone=phone,
        address=address,
        date_of_birth=date_of_birth,
        emergency_contact=emergency_contact,
        tokens=0,
    )
    member = _save_new_user(db, member)
    logger.info(f"Member registered: {member.id}")
    return member


def authenticate(db: Session, *, email: str, password: str, role: str) -> User:
    """
    Verify credentials for a specific role.

    The same message is returned for unknown email, wrong password and wrong
    role so the endpoint does not leak which accounts exist.
    """
    email = normalize_email(email)

    locked, seconds = login_attempts.is_locked(email)
    if locked:
        logger.warning(f"Login blocked for locked account: {email}")
        raise AccountLockedError(seconds or 60)

    user = db.query(User).filter(User.email == email, User.role == role).first()
    if user is None or not verify_password(password, user.password_hash):
        login_attempts.record(email, success=False)
        raise UnauthorizedError("Invalid credentials")

    if not user.is_active:
        raise UnauthorizedError("Account is deactivated")

    login_attempts.record(email, success=True)
    return user


def change_password(db: Session, user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password, user.password_hash):
        raise UnauthorizedError("Current password is incorrect")
    _validate_password(new_password)
    user.password_hash = get_password_hash(new_password)
    db.add(user)
    db.commit()
    logger.info(f"Password changed: {user.id}")


def generate_gym_code(db: Session) -> str:
    """GYM + 6 random digits, retried until unused."""
    for _ in range(_GYM_CODE_ATTEMPTS):
        code = f"{GYM_CODE_PREFIX}{secrets.randbelow(10**6):06d}"
        if db.query(Gym.id).filter(Gym.gym_code == code).first() is None:
            return code
    raise ConflictError("Could not allocate a unique gym code")


def create_gym(
    db: Session,
    *,
    name: str,
    email: str,
    location: Dict[str, Any],
    capacity: int,
    facilities: Optional[Iterable[str]] = None,
    phone: Optional[str] = None,
    gym_code: Optional[str] = None,
    operating_hours: Optional[Dict[str, Dict[str, str]]] = None,
    password: Optional[str] = None,
    send_credentials: bool = True,
) -> Tuple[Gym, str]:
    """
    Onboard a partner gym.

    Returns the gym and its initial password. When no password is given a
    temporary one is generated and mailed to the gym.
    """
    email = normalize_email(email)
    if not (name or "").strip():
        raise ValidationError("Name is required", field="name")
    if not location:
        raise ValidationError("Location is required", field="location")
    if capacity is None or int(capacity) < 1:
        raise ValidationError("Capacity must be at least 1", field="capacity")
    _ensure_email_free(db, email)

    if gym_code:
        gym_code = normalize_gym_code(gym_code)
        if db.query(Gym.id).filter(Gym.gym_code == gym_code).first() is not None:
            raise ConflictError(f"Gym code already in use: {gym_code}")
    else:
        gym_code = generate_gym_code(db)

    initial_password = password or secrets.token_urlsafe(9)

    gym = Gym(
        name=name.strip(),
        email=email,
        password_hash=get_password_hash(initial_password),
        gym_code=gym_code,
        location=location,
        facilities=list(facilities) if facilities is not None else list(DEFAULT_GYM_FACILITIES),
        capacity=int(capacity),
        operating_hours=operating_hours or default_operating_hours(),
        phone=phone,
    )
    gym = _save_new_user(db, gym)
    logger.info(
        f"Gym created: {gym.gym_code}",
        extra={"extra_fields": {"gym_id": str(gym.id), "gym_code": gym.gym_code}},
    )

    if send_credentials:
        email_service.send_gym_credentials(gym.email, gym.name, initial_password)

    return gym, initial_password


def create_admin(
    db: Session,
    *,
    name: str,
    email: str,
    password: str,
    permissions: Optional[Iterable[str]] = None,
) -> Admin:
    email = normalize_email(email)
    _validate_password(password)
    _ensure_email_free(db, email)

    perms = list(permissions) if permissions is not None else list(DEFAULT_ADMIN_PERMISSIONS)
    unknown = sorted(set(perms) - set(ADMIN_CAPABILITIES))
    if unknown:
        raise ValidationError(f"Unknown permissions: {', '.join(unknown)}", field="permissions")

    admin = Admin(
        name=name.strip(),
        email=email,
        password_hash=get_password_hash(password),
        permissions=perms,
    )
    return _save_new_user(db, admin)


def _apply_changes(user: User, changes: Dict[str, Any], allowed: frozenset) -> Dict[str, Any]:
    rejected = sorted(set(changes) - allowed)
    if rejected:
        raise ValidationError(f"Fields cannot be updated: {', '.join(rejected)}")
    before = {}
    for field, value in changes.items():
        before[field] = getattr(user, field)
        setattr(user, field, value)
    return before


def update_member(db: Session, member_id: UUID, changes: Dict[str, Any]) -> Member:
    member = get_member(db, member_id)
    if "name" in changes and not (changes["name"] or "").strip():
        raise ValidationError("Name is required", field="name")
    _apply_changes(member, changes, MEMBER_UPDATABLE_FIELDS)
    db.commit()
    db.refresh(member)
    return member


def update_gym(db: Session, gym_id: UUID, changes: Dict[str, Any]) -> Gym:
    gym = get_gym(db, gym_id)
    if "capacity" in changes and (changes["capacity"] is None or int(changes["capacity"]) < 1):
        raise ValidationError("Capacity must be at least 1", field="capacity")
    if "name" in changes and not (changes["name"] or "").strip():
        raise ValidationError("Name is required", field="name")
    _apply_changes(gym, changes, GYM_UPDATABLE_FIELDS)
    db.commit()
    db.refresh(gym)
    return gym


def set_active(db: Session, user_id: UUID, active: bool) -> User:
    """Deactivated users cannot log in, use their tokens, or be checked into."""
    user = get_user(db, user_id)
    user.is_active = bool(active)
    db.commit()
    db.refresh(user)
    logger.info(f"User {'reactivated' if active else 'deactivated'}: {user.id}")
    return user


def deactivate_user(db: Session, user_id: UUID) -> User:
    return set_active(db, user_id, False)


def reactivate_user(db: Session, user_id: UUID) -> User:
    return set_active(db, user_id, True)
