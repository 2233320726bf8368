"""
Seed a development database.

Creates the schema, the bootstrap admin (ADMIN_EMAIL / ADMIN_PASSWORD), three
sample partner gyms and one sample member with a monthly plan. Safe to re-run:
accounts whose email already exists are skipped.

Usage (inside api container):
  python scripts/seed_data.py
  python scripts/seed_data.py --no-member
"""

from __future__ import annotations

import logging
import os
import sys


# Ensure /app is on sys.path when run as a script inside the container.
_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _ROOT not in sys.path:
    sys.path.insert(0, _ROOT)

logger = logging.getLogger("seed_data")

SAMPLE_GYMS = [
    {
        "name": "FitZone Downtown",
        "email": "fitzone@example.com",
        "gym_code": "FZ001",
        "location": {"address": "123 Main St", "city": "New York", "state": "NY", "zip_code": "10001"},
        "facilities": ["Weight Training", "Cardio", "Swimming Pool", "Sauna"],
        "capacity": 200,
        "phone": "(555) 123-4567",
    },
    {
        "name": "PowerHouse Gym",
        "email": "powerhouse@example.com",
        "gym_code": "PH002",
        "location": {"address": "456 Oak Ave", "city": "Los Angeles", "state": "CA", "zip_code": "90210"},
        "facilities": ["Weight Training", "Cardio", "Group Classes", "Personal Training"],
        "capacity": 150,
        "phone": "(555) 234-5678",
    },
    {
        "name": "Elite Fitness",
        "email": "elite@example.com",
        "gym_code": "EF003",
        "location": {"address": "789 Pine St", "city": "Chicago", "state": "IL", "zip_code": "60601"},
        "facilities": ["Weight Training", "Cardio", "Yoga Studio", "Rock Climbing"],
        "capacity": 120,
        "phone": "(555) 345-6789",
    },
]

SAMPLE_GYM_PASSWORD = "temp123456"

SAMPLE_MEMBER = {
    "name": "Alex Johnson",
    "email": "alex@example.com",
    "password": "member123456",
    "phone": "(555) 111-1111",
}


def seed(db, *, with_member: bool = True) -> dict:
    from core.config import settings
    from models import User
    from services import accounts, token_ledger

    created = {"admin": 0, "gyms": 0, "members": 0}

    def exists(email: str) -> bool:
        return db.query(User.id).filter(User.email == accounts.normalize_email(email)).first() is not None

    if not exists(settings.ADMIN_EMAIL):
        accounts.create_admin(
            db,
            name="Super Admin",
            email=settings.ADMIN_EMAIL,
            password=settings.ADMIN_PASSWORD,
        )
        created["admin"] += 1

    for gym in SAMPLE_GYMS:
        if exists(gym["email"]):
            continue
        accounts.create_gym(db, password=SAMPLE_GYM_PASSWORD, send_credentials=False, **gym)
        created["gyms"] += 1

    if with_member and not exists(SAMPLE_MEMBER["email"]):
        member = accounts.register_member(db, **SAMPLE_MEMBER)
        token_ledger.purchase(db, member.id, "monthly")
        created["members"] += 1

    return created


def main() -> int:
    import argparse

    parser = argparse.ArgumentParser(description="Seed FitFlow sample data")
    parser.add_argument("--no-member", action="store_true", help="Skip the sample member")
    args = parser.parse_args()

    from core.database import get_db_sync, init_db

    init_db()
    db = get_db_sync()
    try:
        created = seed(db, with_member=not args.no_member)
    finally:
        db.close()

    logger.info(f"Seed complete: {created}")
    print(f"Admin: {created['admin']} created")
    print(f"Gyms: {created['gyms']} created (codes: {', '.join(g['gym_code'] for g in SAMPLE_GYMS)})")
    print(f"Members: {created['members']} created")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
