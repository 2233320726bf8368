"""
Subscription plan catalog.

Fixed configuration table: the three plans are part of the public contract
(frontend and historical transactions reference them by id) and are not
editable at runtime.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Tuple

from core.exceptions import InvalidPlanError


@dataclass(frozen=True)
class SubscriptionPlan:
    id: str
    name: str
    tokens: int
    price: Decimal
    duration_days: int
    popular: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "tokens": self.tokens,
            "price": float(self.price),
            "duration": self.duration_days,
            "popular": self.popular,
        }


SUBSCRIPTION_PLANS: Tuple[SubscriptionPlan, ...] = (
    SubscriptionPlan("weekly", "Weekly Pass", 7, Decimal("29.99"), 7),
    SubscriptionPlan("monthly", "Monthly Pass", 30, Decimal("99.99"), 30, popular=True),
    SubscriptionPlan("yearly", "Yearly Pass", 365, Decimal("999.99"), 365),
)

_PLANS_BY_ID = {plan.id: plan for plan in SUBSCRIPTION_PLANS}

DEFAULT_GYM_FACILITIES = (
    "Weight Training",
    "Cardio Equipment",
    "Free Weights",
    "Locker Room",
    "Parking",
)

_WEEKDAY_HOURS = {"open": "06:00", "close": "22:00"}
_WEEKEND_HOURS = {"open": "08:00", "close": "20:00"}

DEFAULT_OPERATING_HOURS = {
    "monday": _WEEKDAY_HOURS,
    "tuesday": _WEEKDAY_HOURS,
    "wednesday": _WEEKDAY_HOURS,
    "thursday": _WEEKDAY_HOURS,
    "friday": _WEEKDAY_HOURS,
    "saturday": _WEEKEND_HOURS,
    "sunday": _WEEKEND_HOURS,
}

ADMIN_CAPABILITIES = (
    "manage_users",
    "manage_gyms",
    "view_reports",
    "manage_transactions",
    "system_settings",
)
DEFAULT_ADMIN_PERMISSIONS = ADMIN_CAPABILITIES[:4]


def list_plans() -> Tuple[SubscriptionPlan, ...]:
    return SUBSCRIPTION_PLANS


def get_plan(plan_id: str) -> SubscriptionPlan:
    plan = _PLANS_BY_ID.get(plan_id)
    if plan is None:
        raise InvalidPlanError(plan_id)
    return plan


def default_operating_hours() -> dict:
    return {day: dict(hours) for day, hours in DEFAULT_OPERATING_HOURS.items()}
