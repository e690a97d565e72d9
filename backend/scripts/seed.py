#!/usr/bin/env python3
"""
Gateway Seed Script
Creates two lead admins, one junior member and the default rule set.

Usage:
    python -m scripts.seed

API keys are printed once and stored only as bcrypt hashes.
"""
import sys
import os
from uuid import uuid4

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from app import config
from app.database import SessionLocal, init_db
from app.models.db_models import RuleAction, RuleDB, UserDB, UserRole, UserTier, utcnow
from app.auth import generate_api_key, hash_api_key


DEFAULT_USERS = [
    {"name": "Admin One", "email": "admin1@commandgateway.local", "role": UserRole.ADMIN, "tier": UserTier.LEAD, "credits": 1000},
    {"name": "Admin Two", "email": "admin2@commandgateway.local", "role": UserRole.ADMIN, "tier": UserTier.LEAD, "credits": 1000},
    {"name": "Test Member", "email": "member@commandgateway.local", "role": UserRole.MEMBER, "tier": UserTier.JUNIOR, "credits": config.DEFAULT_USER_CREDITS},
]

DEFAULT_RULES = [
    {"pattern": r":\(\)\{ :\|:& \};:", "action": RuleAction.AUTO_REJECT, "priority": 100, "approval_threshold": 1},
    {"pattern": r"rm\s+-rf\s+/", "action": RuleAction.AUTO_REJECT, "priority": 99, "approval_threshold": 1},
    {"pattern": r"mkfs\.", "action": RuleAction.AUTO_REJECT, "priority": 98, "approval_threshold": 1},
    {"pattern": r"git\s+(status|log|diff)", "action": RuleAction.AUTO_ACCEPT, "priority": 50, "approval_threshold": 1},
    {"pattern": r"^(ls|cat|pwd|echo)", "action": RuleAction.AUTO_ACCEPT, "priority": 49, "approval_threshold": 1},
    {"pattern": r"sudo\s+", "action": RuleAction.REQUIRE_APPROVAL, "priority": 80, "approval_threshold": 2},
    {
        "pattern": r"docker\s+(run|exec)",
        "action": RuleAction.REQUIRE_APPROVAL,
        "priority": 75,
        "approval_threshold": 1,
        # Monday to Friday, 09:00-18:00
        "time_restrictions": {"allowAutoAcceptDuring": {"days": [1, 2, 3, 4, 5], "startHour": 9, "endHour": 18}},
    },
]


def seed() -> bool:
    """Create default users and rules. Skips users whose email already exists."""
    init_db()

    db: Session = SessionLocal()
    try:
        admin_id = None
        for entry in DEFAULT_USERS:
            existing = db.query(UserDB).filter(UserDB.email == entry["email"]).first()
            if existing:
                print(f"User '{entry['email']}' already exists, skipping.")
                if admin_id is None and existing.role == UserRole.ADMIN.value:
                    admin_id = existing.id
                continue

            api_key = generate_api_key(entry["role"].value)
            user = UserDB(
                id=str(uuid4()),
                name=entry["name"],
                email=entry["email"],
                api_key_hash=hash_api_key(api_key),
                role=entry["role"].value,
                tier=entry["tier"].value,
                credits=entry["credits"],
            )
            db.add(user)
            if admin_id is None and user.role == UserRole.ADMIN.value:
                admin_id = user.id
            print(f"{entry['name']} ({user.role}/{user.tier}) id={user.id} api_key={api_key}")

        if db.query(RuleDB).count() == 0:
            for entry in DEFAULT_RULES:
                db.add(RuleDB(id=str(uuid4()), created_by_id=admin_id, created_at=utcnow(), **entry))
            print(f"Created {len(DEFAULT_RULES)} default rules")
        else:
            print("Rules already present, skipping default rules.")

        db.commit()
        print("Seeding completed!")
        return True

    except Exception as e:
        print(f"Seeding failed: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    success = seed()
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
