"""
Seed the local database with demo technicians, customers and jobs.

Usage:
    python scripts/seed_demo_data.py [--days 3]

Idempotent: users and customers are matched by email, and jobs are only
added for customers that have none yet. Everyone gets the password
"password123".
"""
import sys
import os
import argparse
import random
from datetime import datetime, timedelta

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from swifttiger.db import SessionLocal, Base, engine
from swifttiger.models.models import User, Customer, Job, SERVICE_TYPES, JOB_PRIORITIES
from swifttiger.auth.security import get_password_hash


DEMO_PASSWORD = "password123"

STAFF = [
    ("Morgan Manager", "manager@swifttiger.local", "manager"),
    ("Dana Dispatcher", "dispatch@swifttiger.local", "dispatcher"),
]

TECHNICIANS = [
    ("Terry Tech", "terry@swifttiger.local", ["Installation", "Maintenance"], (41.8781, -87.6298)),
    ("Alex Field", "alex@swifttiger.local", ["Installation", "Training"], (41.9742, -87.9073)),
    ("Sam Route", "sam@swifttiger.local", ["Maintenance", "Replacement"], (41.7508, -87.7000)),
]

# Chicago area
CUSTOMERS = [
    ("North Shore Dental", "Evanston", 42.0451, -87.6877),
    ("Loop Coffee Co", "Chicago", 41.8837, -87.6289),
    ("Oak Park Bakery", "Oak Park", 41.8850, -87.7845),
    ("Cicero Auto Body", "Cicero", 41.8456, -87.7539),
    ("Skokie Printing", "Skokie", 42.0324, -87.7416),
    ("Naperville Books", "Naperville", 41.7508, -88.1535),
    ("Hyde Park Florist", "Chicago", 41.7943, -87.5907),
    ("Des Plaines Diner", "Des Plaines", 42.0334, -87.8834),
]


def ensure_user(db, name, email, role, skills=None, home=None) -> User:
    user = db.query(User).filter(User.email == email).first()
    if user:
        return user
    user = User(
        name=name,
        email=email,
        role=role,
        password_hash=get_password_hash(DEMO_PASSWORD),
        is_active=True,
        skills=skills or [],
        max_daily_jobs=8 if role == "technician" else None,
        home_lat=home[0] if home else None,
        home_lng=home[1] if home else None,
    )
    db.add(user)
    db.flush()
    print(f"  + user {email} ({role})")
    return user


def ensure_customer(db, name, city, lat, lng, creator) -> Customer:
    email = name.lower().replace(" ", ".") + "@example.com"
    c = db.query(Customer).filter(Customer.email == email).first()
    if c:
        return c
    c = Customer(
        name=name,
        email=email,
        phone=f"(312) 555-{random.randint(1000, 9999)}",
        address_street=f"{random.randint(100, 9999)} Main St",
        address_city=city,
        address_state="IL",
        address_zip_code="60601",
        address_country="USA",
        latitude=lat,
        longitude=lng,
        is_active=True,
        created_by=creator.id,
    )
    db.add(c)
    db.flush()
    print(f"  + customer {name}")
    return c


def seed(days: int) -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        staff = [ensure_user(db, n, e, r) for n, e, r in STAFF]
        for name, email, skills, home in TECHNICIANS:
            ensure_user(db, name, email, "technician", skills, home)
        creator = staff[-1]
        today = datetime.utcnow().replace(hour=9, minute=0, second=0, microsecond=0)
        jobs_added = 0
        for name, city, lat, lng in CUSTOMERS:
            c = ensure_customer(db, name, city, lat, lng, creator)
            if db.query(Job.id).filter(Job.customer_id == c.id).first():
                continue
            for offset in range(days):
                service = random.choice(SERVICE_TYPES)
                db.add(Job(
                    name=f"{service} at {c.name}",
                    description=f"{service} visit scheduled for {c.name}",
                    customer_id=c.id,
                    service_type=service,
                    priority=random.choice(JOB_PRIORITIES),
                    status="Pending",
                    scheduled_date=today + timedelta(days=offset),
                    estimated_duration=random.choice([30, 45, 60, 90]),
                    required_skills=random.sample(["Installation", "Maintenance"], k=random.randint(0, 1)),
                    created_by=creator.id,
                ))
                jobs_added += 1
        db.commit()
        print(f"✅ Seed complete: {jobs_added} job(s) added")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="Seed demo data")
    parser.add_argument("--days", type=int, default=3, help="Days of jobs to create per customer")
    args = parser.parse_args()
    seed(max(1, args.days))


if __name__ == "__main__":
    main()
