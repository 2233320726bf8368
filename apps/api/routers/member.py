"""
Member API Router

Plan purchase, gym check-in and the member's own history. Member role only.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import List
from uuid import UUID

from core.auth import require_member
from core.database import get_db
from models import Member
from schemas import MemberResponse, TransactionResponse, VisitResponse
from services import checkin, reporting, token_ledger
from services.plan_catalog import list_plans

router = APIRouter(prefix="/v1/member", tags=["member"])


class PurchaseRequest(BaseModel):
    plan_id: str = Field(..., min_length=1)


class CheckInRequest(BaseModel):
    # Internal gym id or the gym code shown at the front desk
    gym_id: str = Field(..., min_length=1)


@router.get("/subscription-plans")
def get_subscription_plans():
    return {
        "success": True,
        "data": {"plans": [plan.to_dict() for plan in list_plans()]},
    }


@router.post("/purchase-subscription")
def purchase_subscription(
    payload: PurchaseRequest,
    current_user: Member = Depends(require_member),
    db: Session = Depends(get_db),
):
    """
    Buy a plan. Payment is simulated and always completes; the plan's tokens
    are credited and a new subscription window starts now.
    """
    result = token_ledger.purchase(db, current_user.id, payload.plan_id)
    return {
        "success": True,
        "message": "Subscription purchased successfully",
        "data": {
            "transaction": TransactionResponse.model_validate(result.transaction).model_dump(mode="json"),
            "new_balance": result.new_balance,
            "member": MemberResponse.model_validate(result.member).model_dump(mode="json"),
        },
    }


@router.post("/check-in")
def check_in(
    payload: CheckInRequest,
    current_user: Member = Depends(require_member),
    db: Session = Depends(get_db),
):
    """
    Check into a gym, by id or gym code.

    The first check-in to a gym on a calendar day costs one token; repeating
    it that day returns the same visit at no cost.
    """
    result = checkin.check_in(db, current_user.id, payload.gym_id)
    visit = result.visit
    return {
        "success": True,
        "message": result.message,
        "data": {
            "visit": {
                **VisitResponse.model_validate(visit).model_dump(mode="json"),
                "gym": {
                    "id": str(visit.gym.id),
                    "name": visit.gym.name,
                    "gym_code": visit.gym.gym_code,
                    "location": visit.gym.location,
                },
            },
            "remaining_tokens": result.remaining_tokens,
            "already_checked_in": result.already_checked_in,
        },
    }


@router.post("/visits/{visit_id}/check-out")
def check_out(
    visit_id: UUID,
    current_user: Member = Depends(require_member),
    db: Session = Depends(get_db),
):
    visit = checkin.check_out(db, current_user.id, visit_id)
    return {
        "success": True,
        "message": "Checked out",
        "data": {"visit": VisitResponse.model_validate(visit).model_dump(mode="json")},
    }


@router.get("/dashboard")
def get_dashboard(
    current_user: Member = Depends(require_member),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": reporting.member_dashboard(db, current_user)}


@router.get("/visit-history")
def get_visit_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: Member = Depends(require_member),
    db: Session = Depends(get_db),
):
    visits, total = checkin.visits_for_member(db, current_user.id, page=page, limit=limit)
    return {
        "success": True,
        "data": {
            "visits": [reporting.serialize_visit(v, include_gym=True) for v in visits],
            "pagination": reporting.paginate(total, page, limit),
        },
    }


@router.get("/transactions")
def get_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    current_user: Member = Depends(require_member),
    db: Session = Depends(get_db),
):
    rows, total = token_ledger.list_transactions(
        db, current_user.id, limit=limit, offset=(page - 1) * limit
    )
    transactions: List[dict] = [TransactionResponse.model_validate(t).model_dump(mode="json") for t in rows]
    return {
        "success": True,
        "data": {
            "transactions": transactions,
            "balance": current_user.tokens,
            "pagination": reporting.paginate(total, page, limit),
        },
    }
