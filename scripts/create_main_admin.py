"""
Create (or promote) the main admin account.

Usage:
    python scripts/create_main_admin.py --email admin@example.com --name "Ada Admin" [--password ...]

The password falls back to the MAIN_ADMIN_PASSWORD environment variable.
Running it again for the same email resets that user to an active main admin.
"""
import sys
import os
import argparse

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from sqlalchemy import func

from swifttiger.db import SessionLocal, Base, engine
from swifttiger.models.models import User
from swifttiger.auth.security import get_password_hash


def create_main_admin(email: str, name: str, password: str) -> User:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        user = db.query(User).filter(func.lower(User.email) == email.lower()).first()
        if user:
            print(f"Promoting existing user {email} to main admin")
        else:
            user = User(email=email.lower(), name=name)
            db.add(user)
            print(f"Creating main admin {email}")
        user.name = name or user.name
        user.role = "admin"
        user.is_main_admin = True
        user.is_active = True
        user.password_hash = get_password_hash(password)
        # only one main admin at a time
        db.query(User).filter(User.is_main_admin == True, User.email != user.email).update(
            {User.is_main_admin: False}, synchronize_session=False
        )
        db.commit()
        db.refresh(user)
        return user
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="Create the main admin user")
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", default="Main Admin")
    parser.add_argument("--password", default=os.getenv("MAIN_ADMIN_PASSWORD"))
    args = parser.parse_args()
    if not args.password or len(args.password) < 8:
        print("ERROR: a password of at least 8 characters is required (--password or MAIN_ADMIN_PASSWORD)")
        sys.exit(1)
    user = create_main_admin(args.email, args.name, args.password)
    print(f"✅ Main admin ready: {user.email} ({user.id})")


if __name__ == "__main__":
    main()
