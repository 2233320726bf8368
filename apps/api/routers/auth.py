"""
Authentication API endpoints.

Provides:
- Login for each role (JWT session token)
- Member self-registration
- Current profile
- Password change (gyms start with a mailed temporary password)
- Account lockout protection
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Literal, Optional
from datetime import date
import logging

from core.auth import get_current_user
from core.database import get_db
from core.security import ACCESS_TOKEN_EXPIRE_MINUTES, create_session_token
from models import User
from schemas import EmergencyContact, UserResponse, user_response
from services import accounts

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/auth", tags=["auth"])


class LoginRequest(BaseModel):
    """Schema for login. The role selects which kind of account to sign into."""
    email: EmailStr
    password: str
    role: Literal["member", "gym", "admin"]


class MemberRegister(BaseModel):
    """Schema for member self-registration."""
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[date] = None
    emergency_contact: Optional[EmergencyContact] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class TokenResponse(BaseModel):
    """Schema for token response."""
    success: bool = True
    access_token: str
    token_type: str = "bearer"
    expires_in: int = ACCESS_TOKEN_EXPIRE_MINUTES * 60  # seconds
    user: UserResponse

    model_config = ConfigDict(from_attributes=True)


def _token_response(user: User) -> TokenResponse:
    return TokenResponse(access_token=create_session_token(user), user=user_response(user))


@router.post("/login", response_model=TokenResponse)
def login(credentials: LoginRequest, db: Session = Depends(get_db)):
    """
    Sign in as a member, gym or admin.

    Wrong email, wrong password and wrong role all fail the same way.
    Repeated failures lock the email for a while.
    """
    user = accounts.authenticate(
        db,
        email=credentials.email,
        password=credentials.password,
        role=credentials.role,
    )
    logger.info(f"Login: {user.role} {user.id}")
    return _token_response(user)


@router.post("/register-member", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register_member(payload: MemberRegister, db: Session = Depends(get_db)):
    """Create a member account (0 tokens, no subscription) and sign it in."""
    member = accounts.register_member(
        db,
        name=payload.name,
        email=payload.email,
        password=payload.password,
        phone=payload.phone,
        address=payload.address,
        date_of_birth=payload.date_of_birth,
        emergency_contact=payload.emergency_contact.model_dump() if payload.emergency_contact else None,
    )
    return _token_response(member)


@router.get("/me", response_model=UserResponse)
def get_me(current_user: User = Depends(get_current_user)):
    return user_response(current_user)


@router.post("/change-password")
def change_password(
    payload: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    accounts.change_password(db, current_user, payload.current_password, payload.new_password)
    return {"success": True, "message": "Password changed successfully"}
