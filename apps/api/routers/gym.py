"""
Gym API Router

Visit analytics for a partner gym's own location. Gym role only.
"""

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session
from typing import Literal, Optional

from core.auth import require_gym
from core.database import get_db
from models import Gym
from services import reporting

router = APIRouter(prefix="/v1/gym", tags=["gym"])


@router.get("/dashboard")
def get_dashboard(
    current_user: Gym = Depends(require_gym),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": reporting.gym_dashboard(db, current_user)}


@router.get("/reports")
def get_visit_reports(
    period: Optional[str] = Query(None, description="daily | weekly | monthly | yearly"),
    format: Literal["json", "csv"] = Query("json"),
    current_user: Gym = Depends(require_gym),
    db: Session = Depends(get_db),
):
    """
    Visits at this gym for the period, newest first.

    **Formats:**
    - json: report with date range and visit list
    - csv: `Date,Time,Member Name,Member Email,Tokens Used`
    """
    report = reporting.gym_visit_report(db, current_user, period)

    if format == "csv":
        return Response(
            content=reporting.visits_to_csv(report["visits"]),
            media_type="text/csv",
            headers={
                "Content-Disposition": f"attachment; filename=gym-visits-{report['period']}.csv"
            },
        )

    return {
        "success": True,
        "message": f"{report['period']} visit report generated successfully",
        "data": {
            **report,
            "visits": [reporting.serialize_visit(v, include_member=True) for v in report["visits"]],
        },
    }


@router.get("/today-visits")
def get_today_visits(
    current_user: Gym = Depends(require_gym),
    db: Session = Depends(get_db),
):
    return {"success": True, "data": reporting.today_visits(db, current_user)}
