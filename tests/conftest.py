"""Pytest configuration and fixtures."""

import os
import uuid

# Set test environment variables BEFORE importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-access-secret-key-for-testing-only")
os.environ.setdefault("REFRESH_SECRET_KEY", "test-refresh-secret-key-for-testing-only")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("COOKIE_SECURE", "false")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

# Disable rate limiting for tests by monkey-patching BEFORE imports
from slowapi import Limiter
from slowapi.util import get_remote_address

# Create disabled limiters
_disabled_limiter = Limiter(key_func=get_remote_address, enabled=False)

# Patch the rate_limit module before it's imported elsewhere
import app.core.rate_limit as rate_limit_module
rate_limit_module.limiter = _disabled_limiter
rate_limit_module.public_limiter = _disabled_limiter

# Patch PostgreSQL types for SQLite compatibility BEFORE importing models
from sqlalchemy import String, TypeDecorator
import sqlalchemy.dialects.postgresql as pg_dialect


class SQLiteUUID(TypeDecorator):
    """Platform-independent UUID type that works with SQLite."""
    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            if isinstance(value, uuid.UUID):
                return str(value)
            return str(uuid.UUID(value))
        return value

    def process_result_value(self, value, dialect):
        if value is not None:
            return uuid.UUID(value)
        return value


# Monkey-patch the PostgreSQL UUID class before any models are imported
class MockUUID(SQLiteUUID):
    """Mock PostgreSQL UUID that works with SQLite for testing."""
    def __init__(self, as_uuid=True):
        super().__init__()
        self.as_uuid = as_uuid


pg_dialect.UUID = MockUUID

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.core.revocation import (
    InMemoryRevocationStore,
    RevocationRegistry,
    set_revocation_registry,
)
from app.core.security import get_password_hash
from app.api.deps import get_db
from app.models import Department, Device, Location, User, UserRole
from main import app

# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_PASSWORD = "Passw0rd123"


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db_session):
    """Session factory bound to the test database, for code that opens its own sessions."""
    return TestingSessionLocal


@pytest.fixture(autouse=True)
def revocation_registry():
    """Fresh in-memory revocation registry per test."""
    registry = RevocationRegistry(InMemoryRevocationStore())
    set_revocation_registry(registry)
    yield registry
    set_revocation_registry(None)


@pytest.fixture(scope="function")
def client(db_session):
    """Create a test client with database override."""
    app.dependency_overrides[get_db] = lambda: db_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def department(db_session):
    dept = Department(name="Computer Science")
    db_session.add(dept)
    db_session.commit()
    db_session.refresh(dept)
    return dept


@pytest.fixture
def other_department(db_session):
    dept = Department(name="Physics")
    db_session.add(dept)
    db_session.commit()
    db_session.refresh(dept)
    return dept


@pytest.fixture
def location(db_session):
    loc = Location(name="Lab 101", building="Main Block")
    db_session.add(loc)
    db_session.commit()
    db_session.refresh(loc)
    return loc


@pytest.fixture
def make_user(db_session):
    """Factory for users with a known password."""

    def _make_user(
        email: str,
        role: str = UserRole.DEPARTMENT_INCHARGE.value,
        department_id=None,
        password: str = TEST_PASSWORD,
        is_active: bool = True,
    ) -> User:
        user = User(
            email=email,
            password_hash=get_password_hash(password),
            name=email.split("@")[0].title(),
            role=role,
            department_id=department_id,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def admin_user(make_user):
    return make_user("admin@example.com", role=UserRole.SUPER_ADMIN.value)


@pytest.fixture
def staff_user(make_user, department):
    return make_user("staff@example.com", role=UserRole.IT_STAFF.value, department_id=department.id)


@pytest.fixture
def incharge_user(make_user, department):
    return make_user(
        "incharge@example.com",
        role=UserRole.DEPARTMENT_INCHARGE.value,
        department_id=department.id,
    )


@pytest.fixture
def device(db_session, admin_user):
    """A device with five units in stock."""
    item = Device(
        asset_tag="CS-PC-001",
        device_name="Desktop PC",
        category="Computer",
        brand="Dell",
        serial_number="SN-0001",
        cost=750.0,
        quantity=5,
        committed_quantity=0,
        created_by=admin_user.id,
    )
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def login(client):
    """Factory that POSTs to the login endpoint and returns the response."""

    def _login(email: str, password: str = TEST_PASSWORD, remember_me: bool = False):
        return client.post(
            "/api/auth/login",
            json={"email": email, "password": password, "remember_me": remember_me},
        )

    return _login


@pytest.fixture
def auth_headers(login):
    """Factory returning bearer headers for a user."""

    def _auth_headers(user: User, password: str = TEST_PASSWORD) -> dict:
        response = login(user.email, password)
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['access_token']}"}

    return _auth_headers
