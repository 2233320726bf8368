"""
Read-only aggregation for the member, gym and admin dashboards.

Period windows are computed on ``Visit.visit_date`` (the server-local
calendar day written at check-in), so "today" here means the same thing it
means for check-in idempotency.
"""
from __future__ import annotations

import calendar
import csv
import io
import logging
import math
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from models import Gym, Member, Transaction, Visit
from services.plan_catalog import list_plans

logger = logging.getLogger(__name__)

PERIODS = ("daily", "weekly", "monthly", "yearly")
DEFAULT_PERIOD = "monthly"
RECENT_VISITS_LIMIT = 10
RECENT_GYMS_LIMIT = 5
CSV_HEADER = ["Date", "Time", "Member Name", "Member Email", "Tokens Used"]


def _local_now(now: Optional[datetime]) -> datetime:
    return now or datetime.now().astimezone()


def _months_ago(value: datetime, months: int) -> datetime:
    """Same day-of-month ``months`` earlier, clamped to the month's last day."""
    month_index = value.year * 12 + (value.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def period_start(period: Optional[str], now: datetime) -> datetime:
    """Start of the reporting window; unknown periods fall back to monthly."""
    if period == "daily":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "weekly":
        return now - timedelta(days=7)
    if period == "yearly":
        return _months_ago(now, 12)
    return _months_ago(now, 1)


def normalize_period(period: Optional[str]) -> str:
    return period if period in PERIODS else DEFAULT_PERIOD


def paginate(total: int, page: int, limit: int) -> Dict[str, Any]:
    page = max(1, page)
    return {
        "current_page": page,
        "total_pages": math.ceil(total / limit) if limit else 0,
        "total": total,
        "has_next": page * limit < total,
        "has_prev": page > 1,
    }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def serialize_visit(visit: Visit, *, include_member: bool = False, include_gym: bool = False) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": str(visit.id),
        "member_id": str(visit.member_id),
        "gym_id": str(visit.gym_id),
        "date": visit.visit_date.isoformat(),
        "check_in_time": _iso(visit.check_in_time),
        "check_out_time": _iso(visit.check_out_time),
        "tokens_used": visit.tokens_used,
    }
    if include_member and visit.member is not None:
        data["member"] = {
            "id": str(visit.member.id),
            "name": visit.member.name,
            "email": visit.member.email,
            "phone": visit.member.phone,
        }
    if include_gym and visit.gym is not None:
        data["gym"] = {
            "id": str(visit.gym.id),
            "name": visit.gym.name,
            "gym_code": visit.gym.gym_code,
            "location": visit.gym.location,
        }
    return data


def serialize_gym_summary(gym: Gym) -> Dict[str, Any]:
    return {
        "id": str(gym.id),
        "name": gym.name,
        "gym_code": gym.gym_code,
        "location": gym.location,
        "capacity": gym.capacity,
        "facilities": gym.facilities or [],
    }


def _count_visits_since(db: Session, since: date, **filters) -> int:
    query = db.query(func.count(Visit.id)).filter(Visit.visit_date >= since)
    for column, value in filters.items():
        query = query.filter(getattr(Visit, column) == value)
    return query.scalar() or 0


def member_dashboard(db: Session, member: Member, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = _local_now(now)
    today = now.date()

    recent = (
        db.query(Visit)
        .options(joinedload(Visit.gym))
        .filter(Visit.member_id == member.id)
        .order_by(Visit.visit_date.desc(), Visit.check_in_time.desc())
        .limit(RECENT_VISITS_LIMIT)
        .all()
    )

    recent_gyms: Dict[str, Dict[str, Any]] = {}
    for visit in recent:
        key = str(visit.gym_id)
        if visit.gym is not None and key not in recent_gyms:
            recent_gyms[key] = {"id": key, "name": visit.gym.name, "location": visit.gym.location}

    return {
        "member": {
            "id": str(member.id),
            "name": member.name,
            "email": member.email,
            "tokens": member.tokens,
            "subscription": {
                "plan": member.subscription_plan,
                "start_date": _iso(member.subscription_start),
                "end_date": _iso(member.subscription_end),
                "is_active": member.has_active_subscription,
            },
        },
        "recent_visits": [serialize_visit(v, include_gym=True) for v in recent],
        "recent_gyms": list(recent_gyms.values())[:RECENT_GYMS_LIMIT],
        "visit_stats": {
            "today": _count_visits_since(db, today, member_id=member.id),
            "this_week": _count_visits_since(db, (now - timedelta(days=7)).date(), member_id=member.id),
            "this_month": _count_visits_since(db, _months_ago(now, 1).date(), member_id=member.id),
            "this_year": _count_visits_since(db, _months_ago(now, 12).date(), member_id=member.id),
        },
        "subscription_plans": [plan.to_dict() for plan in list_plans()],
    }


def gym_dashboard(db: Session, gym: Gym, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = _local_now(now)
    visit_stats = {
        period: _count_visits_since(db, period_start(period, now).date(), gym_id=gym.id)
        for period in PERIODS
    }

    recent = (
        db.query(Visit)
        .options(joinedload(Visit.member))
        .filter(Visit.gym_id == gym.id)
        .order_by(Visit.visit_date.desc(), Visit.check_in_time.desc())
        .limit(RECENT_VISITS_LIMIT)
        .all()
    )
    total_members = (
        db.query(func.count(func.distinct(Visit.member_id))).filter(Visit.gym_id == gym.id).scalar() or 0
    )

    return {
        "gym": serialize_gym_summary(gym),
        "visit_stats": visit_stats,
        "recent_visits": [serialize_visit(v, include_member=True) for v in recent],
        "total_members": total_members,
    }


def gym_visit_report(
    db: Session, gym: Gym, period: Optional[str], *, now: Optional[datetime] = None
) -> Dict[str, Any]:
    now = _local_now(now)
    period = normalize_period(period)
    start = period_start(period, now)

    visits = (
        db.query(Visit)
        .options(joinedload(Visit.member))
        .filter(
            Visit.gym_id == gym.id,
            Visit.visit_date >= start.date(),
            Visit.visit_date <= now.date(),
        )
        .order_by(Visit.visit_date.desc(), Visit.check_in_time.desc())
        .all()
    )
    return {
        "period": period,
        "date_range": {"start_date": start.isoformat(), "end_date": now.isoformat()},
        "total_visits": len(visits),
        "visits": visits,
    }


def visits_to_csv(visits: Iterable[Visit]) -> str:
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for visit in visits:
        member = visit.member
        writer.writerow([
            visit.visit_date.isoformat(),
            visit.check_in_time.strftime("%H:%M:%S") if visit.check_in_time else "",
            member.name if member is not None else "",
            member.email if member is not None else "",
            visit.tokens_used,
        ])
    content = output.getvalue()
    output.close()
    return content


def today_visits(db: Session, gym: Gym, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    today = _local_now(now).date()
    visits = (
        db.query(Visit)
        .options(joinedload(Visit.member))
        .filter(Visit.gym_id == gym.id, Visit.visit_date == today)
        .order_by(Visit.check_in_time.desc())
        .all()
    )
    return {
        "date": today.isoformat(),
        "total_visits": len(visits),
        "visits": [serialize_visit(v, include_member=True) for v in visits],
    }


def _net_revenue(rows) -> Decimal:
    total = Decimal("0")
    for txn_type, amount in rows:
        amount = Decimal(amount or 0)
        if txn_type == "purchase":
            total += amount
        elif txn_type == "refund":
            total -= amount
    return total


def admin_dashboard(db: Session) -> Dict[str, Any]:
    revenue_rows = (
        db.query(Transaction.type, func.sum(Transaction.amount))
        .filter(Transaction.payment_status == "completed")
        .group_by(Transaction.type)
        .all()
    )
    utc_now = datetime.now(timezone.utc)

    recent = (
        db.query(Visit)
        .options(joinedload(Visit.member), joinedload(Visit.gym))
        .order_by(Visit.visit_date.desc(), Visit.check_in_time.desc())
        .limit(RECENT_VISITS_LIMIT)
        .all()
    )

    return {
        "stats": {
            "total_members": db.query(Member).filter(Member.is_active.is_(True)).count(),
            "total_gyms": db.query(Gym).filter(Gym.is_active.is_(True)).count(),
            "total_visits": db.query(func.count(Visit.id)).scalar() or 0,
            "total_revenue": float(_net_revenue(revenue_rows)),
            "active_subscriptions": (
                db.query(Member)
                .filter(Member.subscription_active.is_(True), Member.subscription_end > utc_now)
                .count()
            ),
        },
        "recent_visits": [serialize_visit(v, include_member=True, include_gym=True) for v in recent],
    }


def global_report(db: Session, period: Optional[str], *, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Platform-wide visits per gym and revenue per plan for the period."""
    now = _local_now(now)
    period = normalize_period(period)
    start = period_start(period, now)

    visit_rows = (
        db.query(
            Gym.id,
            Gym.name,
            Gym.gym_code,
            func.count(Visit.id),
            func.coalesce(func.sum(Visit.tokens_used), 0),
        )
        .join(Visit, Visit.gym_id == Gym.id)
        .filter(Visit.visit_date >= start.date(), Visit.visit_date <= now.date())
        .group_by(Gym.id, Gym.name, Gym.gym_code)
        .order_by(func.count(Visit.id).desc())
        .all()
    )
    visits_by_gym = [
        {
            "gym_id": str(gym_id),
            "gym_name": name,
            "gym_code": code,
            "total_visits": int(count),
            "total_tokens": int(tokens),
        }
        for gym_id, name, code, count, tokens in visit_rows
    ]

    txn_rows = (
        db.query(Transaction.plan, Transaction.type, func.count(Transaction.id), func.sum(Transaction.amount))
        .filter(
            Transaction.payment_status == "completed",
            Transaction.plan.isnot(None),
            Transaction.created_at >= start.astimezone(timezone.utc),
        )
        .group_by(Transaction.plan, Transaction.type)
        .all()
    )
    by_plan: Dict[str, Dict[str, Any]] = {}
    for plan_id, txn_type, count, amount in txn_rows:
        entry = by_plan.setdefault(plan_id, {"plan": plan_id, "total_revenue": Decimal("0"), "total_transactions": 0})
        if txn_type == "purchase":
            entry["total_revenue"] += Decimal(amount or 0)
            entry["total_transactions"] += int(count)
        elif txn_type == "refund":
            entry["total_revenue"] -= Decimal(amount or 0)

    revenue_by_plan: List[Dict[str, Any]] = []
    for entry in sorted(by_plan.values(), key=lambda e: e["total_revenue"], reverse=True):
        revenue_by_plan.append({**entry, "total_revenue": float(entry["total_revenue"])})

    return {
        "period": period,
        "date_range": {"start_date": start.isoformat(), "end_date": now.isoformat()},
        "visits_by_gym": visits_by_gym,
        "revenue_by_plan": revenue_by_plan,
        "totals": {
            "visits": sum(row["total_visits"] for row in visits_by_gym),
            "tokens": sum(row["total_tokens"] for row in visits_by_gym),
            "revenue": round(sum(row["total_revenue"] for row in revenue_by_plan), 2),
        },
    }
