"""
Gym check-in.

Per (member, gym, calendar day) a check-in moves NoVisit -> Visited exactly
once; there is no undo. The first check-in writes a Visit and debits one
token in the same database transaction. Repeating it the same day returns
the existing visit and debits nothing. Different gyms on the same day are
separate visits, each paid for.

"Calendar day" is the server's local day of the check-in time.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.exceptions import ConflictError, InsufficientTokensError, NotFoundError
from models import Gym, Visit
from services.accounts import get_member
from services.token_ledger import debit_for_visit

logger = logging.getLogger(__name__)

TOKENS_PER_VISIT = 1


@dataclass
class CheckInResult:
    visit: Visit
    remaining_tokens: int
    already_checked_in: bool = False

    @property
    def message(self) -> str:
        if self.already_checked_in:
            return "Already checked in to this gym today"
        return "Check-in successful"


def local_now() -> datetime:
    return datetime.now().astimezone()


def _parse_gym_id(identifier: str) -> Optional[UUID]:
    try:
        return UUID(identifier)
    except ValueError:
        return None


def resolve_gym(db: Session, identifier: str) -> Gym:
    """
    Find an active gym by internal id or by gym code.

    Anything that parses as a UUID is an id; everything else is a
    human-entered code, matched after trimming and uppercasing.
    """
    ident = (identifier or "").strip()
    if not ident:
        raise NotFoundError("Gym")

    query = db.query(Gym).filter(Gym.is_active.is_(True))
    gym_id = _parse_gym_id(ident)
    if gym_id is not None:
        gym = query.filter(Gym.id == gym_id).first()
    else:
        gym = query.filter(Gym.gym_code == ident.upper()).first()

    if gym is None:
        raise NotFoundError("Gym", ident)
    return gym


def _find_visit(db: Session, member_id: UUID, gym_id: UUID, visit_day: date) -> Optional[Visit]:
    return (
        db.query(Visit)
        .filter(
            Visit.member_id == member_id,
            Visit.gym_id == gym_id,
            Visit.visit_date == visit_day,
        )
        .first()
    )


def check_in(
    db: Session,
    member_id: UUID,
    gym_identifier: str,
    *,
    now: Optional[datetime] = None,
) -> CheckInResult:
    now = now or local_now()
    visit_day = now.date()

    member = get_member(db, member_id)
    gym = resolve_gym(db, gym_identifier)

    if (member.tokens or 0) <= 0:
        raise InsufficientTokensError()

    existing = _find_visit(db, member.id, gym.id, visit_day)
    if existing is not None:
        return CheckInResult(visit=existing, remaining_tokens=member.tokens, already_checked_in=True)

    visit = Visit(
        member_id=member.id,
        gym_id=gym.id,
        visit_date=visit_day,
        check_in_time=now,
        tokens_used=TOKENS_PER_VISIT,
    )

    try:
        with db.begin_nested():
            db.add(visit)
    except IntegrityError:
        # A concurrent check-in for the same member/gym/day committed first
        winner = _find_visit(db, member.id, gym.id, visit_day)
        if winner is None:
            raise
        logger.info(
            "Concurrent duplicate check-in resolved to existing visit",
            extra={"extra_fields": {"member_id": str(member.id), "gym_id": str(gym.id), "visit_id": str(winner.id)}},
        )
        db.refresh(member)
        return CheckInResult(visit=winner, remaining_tokens=member.tokens, already_checked_in=True)

    try:
        remaining = debit_for_visit(db, member.id, TOKENS_PER_VISIT)
        db.commit()
    except InsufficientTokensError:
        # Balance was spent elsewhere between the precondition and the debit
        db.rollback()
        raise
    except Exception:
        db.rollback()
        raise

    db.refresh(member)
    db.refresh(visit)
    logger.info(
        f"Check-in: {gym.gym_code}",
        extra={
            "extra_fields": {
                "member_id": str(member.id),
                "gym_id": str(gym.id),
                "visit_id": str(visit.id),
                "remaining_tokens": remaining,
            }
        },
    )
    return CheckInResult(visit=visit, remaining_tokens=remaining)


def check_out(db: Session, member_id: UUID, visit_id: UUID, *, now: Optional[datetime] = None) -> Visit:
    """Record a checkout time on the member's own visit. No effect on tokens."""
    visit = db.query(Visit).filter(Visit.id == visit_id, Visit.member_id == member_id).first()
    if visit is None:
        raise NotFoundError("Visit", str(visit_id))
    if visit.check_out_time is not None:
        raise ConflictError("Already checked out of this visit")
    visit.check_out_time = now or local_now()
    db.commit()
    db.refresh(visit)
    return visit


def visits_for_member(
    db: Session, member_id: UUID, *, page: int = 1, limit: int = 20
) -> Tuple[List[Visit], int]:
    page = max(1, page)
    query = db.query(Visit).filter(Visit.member_id == member_id)
    total = query.count()
    visits = (
        query.order_by(Visit.check_in_time.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return visits, total
