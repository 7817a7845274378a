#!/usr/bin/env python3
"""
Demo User Seed Script
Creates one staff member and one line manager per department plus a
senior approver, all sharing the given password.

Usage:
    python -m scripts.seed_users <password>

Example:
    python -m scripts.seed_users changeme123
"""
import sys
import os
from uuid import uuid4

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.database import SessionLocal, init_db
from app.models.db_models import DEPARTMENT_CODES, Department, UserDB, UserRole
from app.auth import hash_password

EMAIL_DOMAIN = "reportworkflow.com"


def demo_users():
    """(username, role, department) for every seeded account."""
    users = []
    for department, code in DEPARTMENT_CODES.items():
        users.append((f"staff.{code.lower()}", UserRole.GENERAL_STAFF, department))
        users.append((f"manager.{code.lower()}", UserRole.LINE_MANAGER, department))
    users.append(("senior.approver", UserRole.SENIOR_APPROVER, Department.BUSINESS_ASSURANCE))
    return users


def seed_users(password: str) -> int:
    """Create any demo users that do not exist yet. Returns how many were created."""
    init_db()

    db: Session = SessionLocal()
    created = 0
    try:
        password_hash = hash_password(password)
        for username, role, department in demo_users():
            email = f"{username}@{EMAIL_DOMAIN}"
            if db.query(UserDB).filter(UserDB.email == email).first():
                print(f"Skipping existing user {email}")
                continue
            db.add(UserDB(
                id=str(uuid4()),
                email=email,
                username=username,
                password_hash=password_hash,
                first_name=username.split(".")[0].title(),
                last_name=username.split(".")[1].upper(),
                role=role,
                department=department,
            ))
            created += 1
            print(f"  {email:45} {role.value:15} {department.value}")
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        print(f"Error seeding users: {e}")
        raise
    finally:
        db.close()

    print(f"Created {created} user(s)")
    return created


def main():
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(1)

    password = sys.argv[1]
    if len(password) < 8:
        print("Error: Password must be at least 8 characters.")
        sys.exit(1)

    seed_users(password)


if __name__ == "__main__":
    main()
