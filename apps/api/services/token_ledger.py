"""
Token ledger.

A member's spendable balance lives on ``Member.tokens``; every change that is
not a visit debit is also written as an append-only ``Transaction`` row.

Balance writes never read-modify-write in Python. They go through a single
guarded UPDATE (``tokens = tokens + delta WHERE tokens >= -delta``), so two
concurrent requests cannot lose each other's update or push the balance
below zero. The ledger row and the balance change are committed together or
not at all.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.exceptions import ConflictError, InsufficientTokensError, NotFoundError, ValidationError
from models import Member, Transaction, Visit
from services.accounts import get_member
from services.plan_catalog import get_plan

logger = logging.getLogger(__name__)


@dataclass
class PurchaseResult:
    transaction: Transaction
    new_balance: int
    member: Member


@dataclass
class LedgerReconciliation:
    member_id: UUID
    ledger_tokens: int
    visit_tokens: int
    actual: int

    @property
    def expected(self) -> int:
        return self.ledger_tokens - self.visit_tokens

    @property
    def consistent(self) -> bool:
        return self.expected == self.actual

    def to_dict(self) -> dict:
        return {
            "member_id": str(self.member_id),
            "ledger_tokens": self.ledger_tokens,
            "visit_tokens": self.visit_tokens,
            "expected": self.expected,
            "actual": self.actual,
            "consistent": self.consistent,
        }


def current_balance(db: Session, member_id: UUID) -> int:
    balance = db.query(Member.tokens).filter(Member.id == member_id).scalar()
    if balance is None:
        raise NotFoundError("Member", str(member_id))
    return balance


def _apply_token_delta(db: Session, member_id: UUID, delta: int, **values) -> int:
    """
    Atomically add ``delta`` to the balance and return the new balance.

    Negative deltas only match rows that can afford them; a zero rowcount
    means the balance was too low at write time. Does not commit.
    """
    stmt = update(Member).where(Member.id == member_id)
    if delta < 0:
        stmt = stmt.where(Member.tokens >= -delta)
    stmt = stmt.values(tokens=Member.tokens + delta, **values).execution_options(synchronize_session=False)

    result = db.execute(stmt)
    if result.rowcount != 1:
        raise InsufficientTokensError(
            f"Insufficient tokens: cannot deduct {-delta} token(s)."
        )
    return current_balance(db, member_id)


def debit_for_visit(db: Session, member_id: UUID, tokens: int = 1) -> int:
    """Guarded debit used by check-in. Caller owns the transaction."""
    return _apply_token_delta(db, member_id, -tokens)


def purchase(db: Session, member_id: UUID, plan_id: str, *, now: Optional[datetime] = None) -> PurchaseResult:
    """
    Buy a subscription plan (payment is mocked and always completes).

    Appends a completed purchase entry, credits ``plan.tokens`` and starts a
    new subscription window ``[now, now + plan.duration_days]``. The new
    window replaces any previous one.
    """
    plan = get_plan(plan_id)
    member = get_member(db, member_id)
    now = now or datetime.now(timezone.utc)

    transaction = Transaction(
        member_id=member.id,
        type="purchase",
        plan=plan.id,
        amount=plan.price,
        tokens=plan.tokens,
        token_delta=plan.tokens,
        payment_method="mock",
        payment_status="completed",
        transaction_id=str(uuid.uuid4()),
        description=f"{plan.name} subscription purchase",
        created_at=now,
    )

    try:
        db.add(transaction)
        db.flush()
        new_balance = _apply_token_delta(
            db,
            member.id,
            plan.tokens,
            subscription_plan=plan.id,
            subscription_start=now,
            subscription_end=now + timedelta(days=plan.duration_days),
            subscription_active=True,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(member)
    logger.info(
        f"Subscription purchased: {plan.id}",
        extra={
            "extra_fields": {
                "member_id": str(member.id),
                "plan": plan.id,
                "tokens": plan.tokens,
                "balance": new_balance,
                "transaction_id": transaction.transaction_id,
            }
        },
    )
    return PurchaseResult(transaction=transaction, new_balance=new_balance, member=member)


def adjust_tokens(
    db: Session,
    member_id: UUID,
    delta: int,
    *,
    reason: Optional[str] = None,
) -> Tuple[Transaction, int]:
    """Manual balance correction, recorded as an ``adjustment`` entry."""
    if not delta:
        raise ValidationError("Adjustment must be a non-zero number of tokens", field="delta")
    member = get_member(db, member_id)

    transaction = Transaction(
        member_id=member.id,
        type="adjustment",
        plan=None,
        amount=Decimal("0"),
        tokens=abs(delta),
        token_delta=delta,
        payment_method="mock",
        payment_status="completed",
        transaction_id=str(uuid.uuid4()),
        description=reason or "Manual token adjustment",
        created_at=datetime.now(timezone.utc),
    )

    try:
        db.add(transaction)
        db.flush()
        new_balance = _apply_token_delta(db, member.id, delta)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        f"Tokens adjusted by {delta:+d}",
        extra={
            "extra_fields": {
                "member_id": str(member.id),
                "delta": delta,
                "balance": new_balance,
                "transaction_id": transaction.transaction_id,
            }
        },
    )
    return transaction, new_balance


def get_transaction(db: Session, transaction_id: str) -> Transaction:
    transaction = db.query(Transaction).filter(Transaction.transaction_id == transaction_id).first()
    if transaction is None:
        raise NotFoundError("Transaction", transaction_id)
    return transaction


def refund(db: Session, transaction_id: str, *, reason: Optional[str] = None) -> Tuple[Transaction, int]:
    """
    Refund a completed purchase.

    The original purchase row is left untouched; a ``refund`` entry referencing
    it is appended. Tokens already spent cannot be clawed back, so the
    deduction is capped at the current balance. Refunding the member's most
    recent purchase also ends the subscription window.
    """
    original = get_transaction(db, transaction_id)
    if original.type != "purchase":
        raise ValidationError("Only purchases can be refunded", field="transaction_id")
    if original.payment_status != "completed":
        raise ValidationError("Only completed purchases can be refunded", field="transaction_id")

    already = db.query(Transaction.id).filter(Transaction.reference_transaction_id == original.transaction_id).first()
    if already is not None:
        raise ConflictError(f"Transaction already refunded: {original.transaction_id}")

    balance = current_balance(db, original.member_id)
    deduct = min(original.tokens, balance)

    latest_purchase = (
        db.query(Transaction)
        .filter(Transaction.member_id == original.member_id, Transaction.type == "purchase")
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .first()
    )
    values = {}
    if latest_purchase is not None and latest_purchase.id == original.id:
        values["subscription_active"] = False

    entry = Transaction(
        member_id=original.member_id,
        type="refund",
        plan=original.plan,
        amount=original.amount,
        tokens=deduct,
        token_delta=-deduct,
        payment_method=original.payment_method,
        payment_status="completed",
        transaction_id=str(uuid.uuid4()),
        reference_transaction_id=original.transaction_id,
        description=reason or f"Refund of {original.transaction_id}",
        created_at=datetime.now(timezone.utc),
    )

    try:
        db.add(entry)
        db.flush()
        new_balance = _apply_token_delta(db, original.member_id, -deduct, **values)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Transaction already refunded: {original.transaction_id}")
    except Exception:
        db.rollback()
        raise

    logger.info(
        f"Purchase refunded: {original.transaction_id}",
        extra={
            "extra_fields": {
                "member_id": str(original.member_id),
                "tokens": deduct,
                "balance": new_balance,
                "transaction_id": entry.transaction_id,
            }
        },
    )
    return entry, new_balance


def list_transactions(
    db: Session, member_id: UUID, *, limit: int = 50, offset: int = 0
) -> Tuple[List[Transaction], int]:
    query = db.query(Transaction).filter(Transaction.member_id == member_id)
    total = query.count()
    rows = (
        query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rows, total


def reconcile_balance(db: Session, member_id: UUID) -> LedgerReconciliation:
    """Compare the stored balance with what the ledger and visit log imply."""
    actual = current_balance(db, member_id)
    ledger_tokens = (
        db.query(func.coalesce(func.sum(Transaction.token_delta), 0))
        .filter(Transaction.member_id == member_id, Transaction.payment_status == "completed")
        .scalar()
    )
    visit_tokens = (
        db.query(func.coalesce(func.sum(Visit.tokens_used), 0))
        .filter(Visit.member_id == member_id)
        .scalar()
    )
    result = LedgerReconciliation(
        member_id=member_id,
        ledger_tokens=int(ledger_tokens),
        visit_tokens=int(visit_tokens),
        actual=int(actual),
    )
    if not result.consistent:
        logger.warning(
            "Ledger mismatch",
            extra={"extra_fields": result.to_dict()},
        )
    return result
