import io
import os
import tempfile
import uuid

# Settings and the engine are built at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ["GOOGLE_MAPS_API_KEY"] = ""
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="swifttiger-uploads-")

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from swifttiger.main import app
from swifttiger.db import Base, SessionLocal, engine
from swifttiger.models.models import Customer, Job, User
from swifttiger.auth.security import create_access_token, get_password_hash


PASSWORD = "secret123"


@pytest.fixture(autouse=True)
def _fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


def make_user(db, role="technician", email=None, name=None, **kwargs) -> User:
    email = email or f"{role}-{uuid.uuid4().hex[:8]}@example.com"
    user = User(
        name=name or f"{role.title()} User",
        email=email,
        password_hash=get_password_hash(PASSWORD),
        role=role,
        is_active=kwargs.pop("is_active", True),
        skills=kwargs.pop("skills", []),
        **kwargs,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(user.id), user.role)}"}



def png_bytes(color=(200, 30, 30), size=(64, 48)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()

def make_customer(db, name="Acme Corp", lat=41.8781, lng=-87.6298, email=None, **kwargs) -> Customer:
    c = Customer(
        name=name,
        email=email or f"{name.lower().replace(' ', '.')}@example.com",
        phone="3125551234",
        address_street="123 Main Street",
        address_city="Chicago",
        address_state="IL",
        address_zip_code="60601",
        latitude=lat,
        longitude=lng,
        is_active=kwargs.pop("is_active", True),
        **kwargs,
    )
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


def make_job(db, customer, creator, **kwargs) -> Job:
    j = Job(
        name=kwargs.pop("name", f"Service for {customer.name}"),
        description=kwargs.pop("description", "Routine visit"),
        customer_id=customer.id,
        service_type=kwargs.pop("service_type", "Maintenance"),
        priority=kwargs.pop("priority", "Medium"),
        status=kwargs.pop("status", "Pending"),
        estimated_duration=kwargs.pop("estimated_duration", 60),
        required_skills=kwargs.pop("required_skills", []),
        created_by=creator.id,
        **kwargs,
    )
    db.add(j)
    db.commit()
    db.refresh(j)
    return j


@pytest.fixture
def admin(db):
    return make_user(db, "admin", email="admin@example.com", name="Main Admin", is_main_admin=True)


@pytest.fixture
def manager(db):
    return make_user(db, "manager", email="manager@example.com", name="Morgan Manager")


@pytest.fixture
def dispatcher(db):
    return make_user(db, "dispatcher", email="dispatch@example.com", name="Dana Dispatcher")


@pytest.fixture
def technician(db):
    return make_user(
        db, "technician", email="tech@example.com", name="Terry Tech",
        skills=["Installation"], home_lat=41.88, home_lng=-87.63,
    )


@pytest.fixture
def customer(db):
    return make_customer(db)
