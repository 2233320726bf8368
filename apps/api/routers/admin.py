"""
Admin API Router

Platform operations: gym onboarding, member and gym management, ledger
corrections and platform-wide reports. Admin role only; each endpoint also
requires the matching admin capability. Mutations are written to the admin
audit log.
"""

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session
from sqlalchemy import or_
from pydantic import BaseModel, Field
from typing import Optional
from uuid import UUID
import logging

from core.auth import require_permission
from core.database import get_db
from core.exceptions import ValidationError
from models import Admin, Gym, Member
from schemas import (
    GymCreate,
    GymResponse,
    GymUpdate,
    MemberResponse,
    MemberUpdate,
    TransactionResponse,
    user_response,
)
from services import accounts, reporting, token_ledger
from services.admin_audit import record_admin_audit_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


class TokenAdjustRequest(BaseModel):
    delta: int
    reason: str = Field(..., min_length=1, max_length=500)


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class DeactivateRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


def _search(query, search: Optional[str], *columns):
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(*[column.ilike(pattern) for column in columns]))
    return query


@router.get("/dashboard")
def get_dashboard(
    current_user: Admin = Depends(require_permission("view_reports")),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": reporting.admin_dashboard(db)}


@router.get("/members")
def list_members(
    current_user: Admin = Depends(require_permission("manage_users")),
    db: Session = Depends(get_db),
    search: Optional[str] = Query(None, description="Search by name or email"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    query = _search(db.query(Member), search, Member.name, Member.email)
    total = query.count()
    members = query.order_by(Member.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "success": True,
        "data": {
            "members": [MemberResponse.model_validate(m).model_dump(mode="json") for m in members],
            "pagination": reporting.paginate(total, page, limit),
        },
    }


@router.get("/gyms")
def list_gyms(
    current_user: Admin = Depends(require_permission("manage_gyms")),
    db: Session = Depends(get_db),
    search: Optional[str] = Query(None, description="Search by name, email or gym code"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    query = _search(db.query(Gym), search, Gym.name, Gym.email, Gym.gym_code)
    total = query.count()
    gyms = query.order_by(Gym.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "success": True,
        "data": {
            "gyms": [GymResponse.model_validate(g).model_dump(mode="json") for g in gyms],
            "pagination": reporting.paginate(total, page, limit),
        },
    }


@router.post("/gyms", status_code=status.HTTP_201_CREATED)
def create_gym(
    payload: GymCreate,
    http_request: Request,
    current_user: Admin = Depends(require_permission("manage_gyms")),
    db: Session = Depends(get_db),
):
    """
    Onboard a partner gym.

    A temporary password is generated and mailed to the gym; it is not
    returned here.
    """
    gym, _ = accounts.create_gym(
        db,
        name=payload.name,
        email=payload.email,
        location=payload.location.model_dump(exclude_none=True),
        capacity=payload.capacity,
        facilities=payload.facilities,
        phone=payload.phone,
        gym_code=payload.gym_code,
        operating_hours=(
            {day: hours.model_dump() for day, hours in payload.operating_hours.items()}
            if payload.operating_hours
            else None
        ),
    )

    record_admin_audit_event(
        db,
        request=http_request,
        actor=current_user,
        action="gym.create",
        target_user_id=gym.id,
        payload={"gym_code": gym.gym_code},
    )

    return {
        "success": True,
        "message": "Gym created successfully. Credentials sent via email.",
        "data": {"gym": GymResponse.model_validate(gym).model_dump(mode="json")},
    }


@router.put("/members/{member_id}")
def update_member(
    member_id: UUID,
    payload: MemberUpdate,
    http_request: Request,
    current_user: Admin = Depends(require_permission("manage_users")),
    db: Session = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True)
    member = accounts.update_member(db, member_id, changes)

    record_admin_audit_event(
        db,
        request=http_request,
        actor=current_user,
        action="member.update",
        target_user_id=member.id,
        payload={"fields": sorted(changes)},
    )
    return {
        "success": True,
        "message": "Member updated successfully",
        "data": {"member": MemberResponse.model_validate(member).model_dump(mode="json")},
    }


@router.put("/gyms/{gym_id}")
def update_gym(
    gym_id: UUID,
    payload: GymUpdate,
    http_request: Request,
    current_user: Admin = Depends(require_permission("manage_gyms")),
    db: Session = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True)
    gym = accounts.update_gym(db, gym_id, changes)

    record_admin_audit_event(
        db,
        request=http_request,
        actor=current_user,
        action="gym.update",
        target_user_id=gym.id,
        payload={"fields": sorted(changes)},
    )
    return {
        "success": True,
        "message": "Gym updated successfully",
        "data": {"gym": GymResponse.model_validate(gym).model_dump(mode="json")},
    }


@router.patch("/users/{user_id}/deactivate")
def deactivate_user(
    user_id: UUID,
    http_request: Request,
    payload: Optional[DeactivateRequest] = None,
    current_user: Admin = Depends(require_permission("manage_users")),
    db: Session = Depends(get_db),
):
    if user_id == current_user.id:
        raise ValidationError("Admins cannot deactivate their own account", field="user_id")

    user = accounts.deactivate_user(db, user_id)
    record_admin_audit_event(
        db,
        request=http_request,
        actor=current_user,
        action="user.deactivate",
        target_user_id=user.id,
        reason=payload.reason if payload else None,
        payload={"role": user.role},
    )
    return {
        "success": True,
        "message": "User deactivated successfully",
        "data": {"user": user_response(user).model_dump(mode="json")},
    }


@router.patch("/users/{user_id}/reactivate")
def reactivate_user(
    user_id: UUID,
    http_request: Request,
    current_user: Admin = Depends(require_permission("manage_users")),
    db: Session = Depends(get_db),
):
    user = accounts.reactivate_user(db, user_id)
    record_admin_audit_event(
        db,
        request=http_request,
        actor=current_user,
        action="user.reactivate",
        target_user_id=user.id,
        payload={"role": user.role},
    )
    return {
        "success": True,
        "message": "User reactivated successfully",
        "data": {"user": user_response(user).model_dump(mode="json")},
    }


@router.post("/members/{member_id}/tokens/adjust")
def adjust_member_tokens(
    member_id: UUID,
    payload: TokenAdjustRequest,
    http_request: Request,
    current_user: Admin = Depends(require_permission("manage_transactions")),
    db: Session = Depends(get_db),
):
    """
    Correct a member's balance. Recorded as an ``adjustment`` ledger entry;
    a negative delta larger than the balance is rejected.
    """
    transaction, balance = token_ledger.adjust_tokens(db, member_id, payload.delta, reason=payload.reason)

    record_admin_audit_event(
        db,
        request=http_request,
        actor=current_user,
        action="ledger.adjust",
        target_user_id=member_id,
        reason=payload.reason,
        payload={"delta": payload.delta, "balance": balance, "transaction_id": transaction.transaction_id},
    )
    return {
        "success": True,
        "data": {
            "transaction": TransactionResponse.model_validate(transaction).model_dump(mode="json"),
            "new_balance": balance,
        },
    }


@router.post("/transactions/{transaction_id}/refund")
def refund_transaction(
    transaction_id: str,
    http_request: Request,
    payload: Optional[RefundRequest] = None,
    current_user: Admin = Depends(require_permission("manage_transactions")),
    db: Session = Depends(get_db),
):
    reason = payload.reason if payload else None
    entry, balance = token_ledger.refund(db, transaction_id, reason=reason)

    record_admin_audit_event(
        db,
        request=http_request,
        actor=current_user,
        action="ledger.refund",
        target_user_id=entry.member_id,
        reason=reason,
        payload={
            "refunded_transaction_id": transaction_id,
            "tokens": entry.tokens,
            "balance": balance,
        },
    )
    return {
        "success": True,
        "message": "Transaction refunded",
        "data": {
            "transaction": TransactionResponse.model_validate(entry).model_dump(mode="json"),
            "new_balance": balance,
        },
    }


@router.get("/members/{member_id}/ledger")
def get_member_ledger(
    member_id: UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    current_user: Admin = Depends(require_permission("manage_transactions")),
    db: Session = Depends(get_db),
):
    """Member's ledger entries plus a balance reconciliation check."""
    member = accounts.get_member(db, member_id)
    rows, total = token_ledger.list_transactions(db, member.id, limit=limit, offset=(page - 1) * limit)
    return {
        "success": True,
        "data": {
            "member_id": str(member.id),
            "transactions": [TransactionResponse.model_validate(t).model_dump(mode="json") for t in rows],
            "reconciliation": token_ledger.reconcile_balance(db, member.id).to_dict(),
            "pagination": reporting.paginate(total, page, limit),
        },
    }


@router.get("/reports")
def get_global_reports(
    period: Optional[str] = Query(None, description="weekly | monthly | yearly"),
    current_user: Admin = Depends(require_permission("view_reports")),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": reporting.global_report(db, period)}
