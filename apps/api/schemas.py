from pydantic import BaseModel, ConfigDict, EmailStr, Field
from datetime import datetime, date
from uuid import UUID
from typing import Optional, List, Dict, Union


class EmergencyContact(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None


class Coordinates(BaseModel):
    latitude: float
    longitude: float


class Location(BaseModel):
    address: str
    city: str
    state: str
    zip_code: str
    coordinates: Optional[Coordinates] = None


class DayHours(BaseModel):
    open: str
    close: str


class SubscriptionWindow(BaseModel):
    plan: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool = False


class MemberResponse(BaseModel):
    id: UUID
    email: str
    name: str
    role: str
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[date] = None
    emergency_contact: Optional[EmergencyContact] = None
    tokens: int = 0
    subscription: SubscriptionWindow
    is_active: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class GymResponse(BaseModel):
    id: UUID
    email: str
    name: str
    role: str
    gym_code: str
    phone: Optional[str] = None
    location: Optional[Location] = None
    facilities: List[str] = Field(default_factory=list)
    capacity: Optional[int] = None
    operating_hours: Optional[Dict[str, DayHours]] = None
    is_active: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AdminResponse(BaseModel):
    id: UUID
    email: str
    name: str
    role: str
    permissions: List[str] = Field(default_factory=list)
    is_active: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


UserResponse = Union[MemberResponse, GymResponse, AdminResponse]

_RESPONSE_BY_ROLE = {
    "member": MemberResponse,
    "gym": GymResponse,
    "admin": AdminResponse,
}


def user_response(user) -> UserResponse:
    """Role-specific public view of a user (never includes the password hash)."""
    return _RESPONSE_BY_ROLE[user.role].model_validate(user)


class TransactionResponse(BaseModel):
    id: UUID
    transaction_id: str
    type: str
    plan: Optional[str] = None
    amount: float
    tokens: int
    token_delta: int
    payment_method: str
    payment_status: str
    reference_transaction_id: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class VisitResponse(BaseModel):
    id: UUID
    member_id: UUID
    gym_id: UUID
    visit_date: date
    check_in_time: datetime
    check_out_time: Optional[datetime] = None
    tokens_used: int

    model_config = ConfigDict(from_attributes=True)


class GymCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    location: Location
    capacity: int = Field(..., ge=1)
    facilities: Optional[List[str]] = None
    phone: Optional[str] = None
    gym_code: Optional[str] = None
    operating_hours: Optional[Dict[str, DayHours]] = None


class MemberUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[date] = None
    emergency_contact: Optional[EmergencyContact] = None
    is_active: Optional[bool] = None

    model_config = ConfigDict(extra="forbid")


class GymUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[Location] = None
    facilities: Optional[List[str]] = None
    capacity: Optional[int] = Field(None, ge=1)
    operating_hours: Optional[Dict[str, DayHours]] = None
    is_active: Optional[bool] = None

    model_config = ConfigDict(extra="forbid")
