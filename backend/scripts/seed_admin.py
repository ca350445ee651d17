#!/usr/bin/env python3
"""
Admin User Seed Script
Creates the first admin for the Complaint Portal.

Role assignments can only be granted by an existing admin, so the first
one is written here directly, outside the row-level policies.

Usage:
    python -m scripts.seed_admin <email> <password> [full name]

Example:
    python -m scripts.seed_admin admin@college.edu securepassword123 "Portal Admin"
"""
import sys
import os
from typing import Optional

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from complaint_portal.database import SessionLocal, init_db
from complaint_portal.models.db_models import AccountDB, AppRole, UserRoleDB, new_id
from complaint_portal.services.access import has_role
from complaint_portal.services.accounts import AccountService


def create_admin_user(email: str, password: str, full_name: Optional[str] = None, db: Optional[Session] = None) -> bool:
    """Create an admin account, or promote an existing account to admin."""
    owns_session = db is None
    if owns_session:
        # Ensure tables exist
        init_db()
        db = SessionLocal()

    try:
        email = email.strip().lower()
        existing = db.query(AccountDB).filter(AccountDB.email == email).first()

        if existing:
            if has_role(db, existing.id, AppRole.ADMIN):
                print(f"Account '{email}' is already an admin.")
                return True
            db.add(UserRoleDB(id=new_id(), user_id=existing.id, role=AppRole.ADMIN))
            db.commit()
            print(f"Upgraded existing account '{email}' to admin role.")
            return True

        # Sign-up bootstrap gives profile + student role; admin is added on top
        metadata = {"full_name": full_name} if full_name else {}
        account = AccountService(db).create_account(email, password, metadata)
        db.add(UserRoleDB(id=new_id(), user_id=account.id, role=AppRole.ADMIN))
        db.commit()

        print(f"Admin user created successfully!")
        print(f"  Email: {email}")
        print(f"  Roles: student, admin")
        return True

    except Exception as e:
        print(f"Error creating admin user: {e}")
        db.rollback()
        return False
    finally:
        if owns_session:
            db.close()


def main():
    if len(sys.argv) not in (3, 4):
        print(__doc__)
        sys.exit(1)

    email = sys.argv[1]
    password = sys.argv[2]
    full_name = sys.argv[3] if len(sys.argv) == 4 else None

    # Basic validation
    if len(password) < 8:
        print("Error: Password must be at least 8 characters.")
        sys.exit(1)

    if "@" not in email:
        print("Error: Invalid email format.")
        sys.exit(1)

    success = create_admin_user(email, password, full_name)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
