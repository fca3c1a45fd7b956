#!/usr/bin/env python3
"""
Staff User Seed Script
Creates a police officer or admin account for Traffic Watch.

Usage:
    python -m scripts.seed_user <role> <email> <username> <password> [badge_number]

Example:
    python -m scripts.seed_user POLICE officer@trafficwatch.gov officer1 securepassword123 DMP-0042
    python -m scripts.seed_user ADMIN admin@trafficwatch.gov admin securepassword123
"""
import sys
import os
from typing import Optional
from uuid import uuid4

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.database import SessionLocal, init_db
from app.models.db_models import UserDB, UserRole
from app.auth import hash_password


def create_staff_user(
    role: UserRole,
    email: str,
    username: str,
    password: str,
    badge_number: Optional[str] = None,
) -> bool:
    """Create (or promote) a police or admin user."""
    # Ensure tables exist
    init_db()

    db: Session = SessionLocal()
    try:
        existing = db.query(UserDB).filter(
            (UserDB.email == email) | (UserDB.username == username)
        ).first()

        if existing:
            if existing.email != email:
                print(f"Error: Username '{username}' already exists.")
                return False
            if existing.role == role:
                print(f"User '{email}' already has role {role.value}.")
                return False
            # Promote the existing account
            existing.role = role
            if badge_number:
                existing.badge_number = badge_number
            db.commit()
            print(f"Upgraded existing user '{email}' to {role.value}.")
            return True

        user = UserDB(
            id=str(uuid4()),
            email=email,
            username=username,
            password_hash=hash_password(password),
            role=role,
            badge_number=badge_number,
        )

        db.add(user)
        db.commit()

        print(f"{role.value.title()} user created successfully!")
        print(f"  Email: {email}")
        print(f"  Username: {username}")
        print(f"  Role: {role.value}")
        if badge_number:
            print(f"  Badge: {badge_number}")
        return True

    except SQLAlchemyError as e:
        print(f"Error creating user: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    if len(sys.argv) not in (5, 6):
        print(__doc__)
        sys.exit(1)

    try:
        role = UserRole(sys.argv[1].upper())
    except ValueError:
        print("Error: Role must be POLICE or ADMIN.")
        sys.exit(1)
    if role == UserRole.CITIZEN:
        print("Error: Citizens register through the API.")
        sys.exit(1)

    email = sys.argv[2]
    username = sys.argv[3]
    password = sys.argv[4]
    badge_number = sys.argv[5] if len(sys.argv) == 6 else None

    # Basic validation
    if len(password) < 8:
        print("Error: Password must be at least 8 characters.")
        sys.exit(1)

    if "@" not in email:
        print("Error: Invalid email format.")
        sys.exit(1)

    success = create_staff_user(role, email, username, password, badge_number)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
