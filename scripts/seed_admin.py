#!/usr/bin/env python3
"""
Seed script to create the first SUPER_ADMIN account.
Run with: python -m scripts.seed_admin <email> <name>

The password is read from ADMIN_PASSWORD or prompted for.
"""

import getpass
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.database import SessionLocal
from app.core.exceptions import AssetGuardianException
from app.core.sanitization import sanitize_email, validate_email
from app.models import User, UserRole
from app.schemas.users import CreateUserRequest
from app.services.user_service import UserService


def create_admin(email: str, name: str, password: str) -> int:
    """Create a super admin unless one already exists."""
    db = SessionLocal()
    try:
        existing = db.query(User).filter(User.role == UserRole.SUPER_ADMIN.value).first()
        if existing:
            print(f"A super admin already exists ({existing.email}). Skipping seed.")
            return 0

        data = CreateUserRequest(
            email=email,
            password=password,
            name=name,
            role=UserRole.SUPER_ADMIN.value,
        )
        user = UserService.create_user(db, data)
        print(f"Created super admin {user.email} ({user.id})")
        return 0
    except AssetGuardianException as e:
        print(f"Could not create admin: {e.detail}")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    if len(sys.argv) != 3:
        print("Usage: python -m scripts.seed_admin <email> <name>")
        sys.exit(2)

    admin_email = sanitize_email(sys.argv[1])
    if not validate_email(admin_email):
        print("Invalid email format")
        sys.exit(2)

    admin_password = os.getenv("ADMIN_PASSWORD") or getpass.getpass("Password: ")
    sys.exit(create_admin(admin_email, sys.argv[2], admin_password))
