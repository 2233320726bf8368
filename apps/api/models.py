from sqlalchemy import Column, Integer, Boolean, CheckConstraint, Date, DateTime, ForeignKey, Numeric, Text, Index, UniqueConstraint, JSON, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from core.database import Base
import uuid
from datetime import datetime, timezone

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB, "postgresql")


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; treat them as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class User(Base):
    """
    Identity record shared by every role.

    One table, discriminated by ``role``; role-specific columns are declared on
    the Member / Gym / Admin subclasses and stay NULL for the other roles.
    """

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(Text, unique=True, nullable=False)  # stored lowercased
    password_hash = Column(Text, nullable=False)
    role = Column(Text, nullable=False)  # 'member' | 'gym' | 'admin'
    name = Column(Text, nullable=False)
    phone = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __mapper_args__ = {
        "polymorphic_on": role,
        "polymorphic_identity": "user",
    }

    __table_args__ = (
        CheckConstraint("role IN ('member', 'gym', 'admin')", name="ck_users_role"),
        CheckConstraint("tokens IS NULL OR tokens >= 0", name="ck_users_tokens_non_negative"),
        CheckConstraint("capacity IS NULL OR capacity >= 1", name="ck_users_capacity_positive"),
        Index("ix_users_role_active", "role", "is_active"),
    )


class Member(User):
    """Member: holds the token balance and the current subscription window."""

    tokens = Column(Integer, nullable=True)
    address = Column(Text, nullable=True)
    date_of_birth = Column(Date, nullable=True)
    emergency_contact = Column(JSONType, nullable=True)  # {"name": ..., "phone": ...}

    subscription_plan = Column(Text, nullable=True)  # weekly | monthly | yearly
    subscription_start = Column(DateTime(timezone=True), nullable=True)
    subscription_end = Column(DateTime(timezone=True), nullable=True)
    subscription_active = Column(Boolean, nullable=True)

    visits = relationship("Visit", back_populates="member", foreign_keys="Visit.member_id", lazy="dynamic")
    transactions = relationship("Transaction", back_populates="member", lazy="dynamic")

    __mapper_args__ = {"polymorphic_identity": "member"}

    def __init__(self, **kwargs):
        kwargs.setdefault("tokens", 0)
        kwargs.setdefault("subscription_active", False)
        super().__init__(**kwargs)

    @property
    def has_active_subscription(self) -> bool:
        if not self.subscription_active or self.subscription_end is None:
            return False
        return _as_utc(self.subscription_end) > datetime.now(timezone.utc)

    @property
    def subscription(self) -> dict:
        return {
            "plan": self.subscription_plan,
            "start_date": self.subscription_start,
            "end_date": self.subscription_end,
            "is_active": bool(self.subscription_active),
        }


class Gym(User):
    """Partner gym. ``gym_code`` is the human-entered identifier used at check-in."""

    gym_code = Column(Text, unique=True, nullable=True)  # uppercase
    location = Column(JSONType, nullable=True)  # {address, city, state, zip_code, coordinates?}
    facilities = Column(JSONType, nullable=True, default=list)
    capacity = Column(Integer, nullable=True)
    operating_hours = Column(JSONType, nullable=True)

    visits = relationship("Visit", back_populates="gym", foreign_keys="Visit.gym_id", lazy="dynamic")

    __mapper_args__ = {"polymorphic_identity": "gym"}


class Admin(User):
    permissions = Column(JSONType, nullable=True, default=list)

    __mapper_args__ = {"polymorphic_identity": "admin"}


class Transaction(Base):
    """
    Token ledger entry.

    Append-only: rows are inserted by services.token_ledger and never updated
    or deleted. ``tokens`` is the magnitude, ``token_delta`` the signed effect
    on the member balance (purchase +, refund -, adjustment either way).
    """

    __tablename__ = "transactions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    member_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(Text, nullable=False, default="purchase")  # purchase | refund | adjustment
    plan = Column(Text, nullable=True)  # weekly | monthly | yearly (NULL for adjustments)
    amount = Column(Numeric(10, 2), nullable=False, default=0)
    tokens = Column(Integer, nullable=False)
    token_delta = Column(Integer, nullable=False)
    payment_method = Column(Text, nullable=False, default="mock")
    payment_status = Column(Text, nullable=False, default="pending")
    transaction_id = Column(Text, unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    # Refunds point at the purchase they reverse; unique => a purchase is refunded at most once
    reference_transaction_id = Column(Text, ForeignKey("transactions.transaction_id"), unique=True, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    member = relationship("Member", back_populates="transactions")

    __table_args__ = (
        CheckConstraint("type IN ('purchase', 'refund', 'adjustment')", name="ck_transactions_type"),
        CheckConstraint("amount >= 0", name="ck_transactions_amount_non_negative"),
        CheckConstraint("tokens >= 0", name="ck_transactions_tokens_non_negative"),
        CheckConstraint(
            "payment_method IN ('credit_card', 'debit_card', 'paypal', 'mock')",
            name="ck_transactions_payment_method",
        ),
        CheckConstraint(
            "payment_status IN ('pending', 'completed', 'failed', 'refunded')",
            name="ck_transactions_payment_status",
        ),
        Index("ix_transactions_member_created", "member_id", "created_at"),
        Index("ix_transactions_payment_status", "payment_status"),
    )


class Visit(Base):
    """
    One row per (member, gym, calendar day).

    The unique constraint is what makes check-in idempotent under concurrency:
    a second writer for the same day fails on insert and re-reads the winner.
    """

    __tablename__ = "visits"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    member_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    gym_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    visit_date = Column(Date, nullable=False)  # server-local calendar day
    check_in_time = Column(DateTime(timezone=True), nullable=False)
    check_out_time = Column(DateTime(timezone=True), nullable=True)
    tokens_used = Column(Integer, nullable=False, default=1)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    member = relationship("Member", back_populates="visits", foreign_keys=[member_id])
    gym = relationship("Gym", back_populates="visits", foreign_keys=[gym_id])

    __table_args__ = (
        UniqueConstraint("member_id", "gym_id", "visit_date", name="uq_visit_member_gym_day"),
        CheckConstraint("tokens_used >= 0", name="ck_visits_tokens_used_non_negative"),
        Index("ix_visits_member_date", "member_id", "visit_date"),
        Index("ix_visits_gym_date", "gym_id", "visit_date"),
    )


class AdminAuditEvent(Base):
    """
    Append-only audit log for admin actions.

    Non-negotiable invariants:
    - write-only from the application (no update/delete in code paths)
    - bounded payload (no secrets; minimal PII)
    """

    __tablename__ = "admin_audit_event"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    actor_user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    action = Column(Text, nullable=False, index=True)  # e.g., gym.create | user.deactivate | ledger.adjust

    target_user_id = Column(Uuid, ForeignKey("users.id"), nullable=True, index=True)
    reason = Column(Text, nullable=True)

    ip_address = Column(Text, nullable=True)
    user_agent = Column(Text, nullable=True)

    payload = Column(JSONType, nullable=False, default=dict)
