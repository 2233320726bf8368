"""
Authentication and authorization dependencies.

Provides FastAPI dependencies for:
- Getting current authenticated user
- Role-based access control (member / gym / admin)
- Admin capability checks
"""
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from core.database import get_db
from core.exceptions import ForbiddenError, UnauthorizedError
from core.security import decode_access_token
from models import User, Member, Gym, Admin

# auto_error=False so a missing token is a 401 in the API error shape, not a bare 403
security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Get the current authenticated user from JWT token.

    Raises UnauthorizedError for a missing or invalid token and ForbiddenError
    for a deactivated account.
    """
    if not credentials:
        raise UnauthorizedError("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise UnauthorizedError("Invalid authentication credentials")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Invalid token payload")

    try:
        user_id_uuid = UUID(user_id)
    except ValueError:
        raise UnauthorizedError("Invalid user ID format")

    user = db.query(User).filter(User.id == user_id_uuid).first()
    if not user:
        raise UnauthorizedError("User not found")

    # A token minted before a role change must not keep the old role's access
    if payload.get("role") and payload.get("role") != user.role:
        raise UnauthorizedError("Token role does not match account")

    if not user.is_active:
        raise ForbiddenError("Account is deactivated")

    return user


def require_role(allowed_roles: list[str]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.get("/gym-only")
        def gym_endpoint(user: Gym = Depends(require_role(["gym"]))):
            ...
    """
    def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed_roles:
            raise ForbiddenError(f"Access denied. Required roles: {allowed_roles}")
        return current_user

    return role_checker


def require_member(current_user: Member = Depends(require_role(["member"]))) -> Member:
    return current_user


def require_gym(current_user: Gym = Depends(require_role(["gym"]))) -> Gym:
    return current_user


def require_admin(current_user: Admin = Depends(require_role(["admin"]))) -> Admin:
    return current_user


def require_permission(permission_key: str):
    """
    Dependency factory for admin capability checks.

    An admin passes iff ``permission_key`` is in its permission set.
    """

    def permission_checker(current_user: Admin = Depends(require_admin)) -> Admin:
        perms = current_user.permissions or []
        if permission_key not in perms:
            raise ForbiddenError(f"Missing permission: {permission_key}")
        return current_user

    return permission_checker
