import os
# Override DATABASE_URL before any app imports to avoid PostgreSQL driver requirement
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["DEPLOYMENT_ENV"] = "test"

import uuid
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from scan2ship.platform.database import Base, get_db
from scan2ship.main import app
from scan2ship.platform.middleware import _rate_limit_store
from scan2ship.platform.security import create_access_token
from scan2ship.models.tenant import Tenant
from scan2ship.models.user import User, UserRole

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Enable foreign key support for SQLite
@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()

def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

@pytest.fixture(scope="function")
def db():
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    yield db
    db.close()
    Base.metadata.drop_all(bind=engine)

@pytest.fixture(scope="function")
def client(db):
    app.dependency_overrides[get_db] = override_get_db
    Base.metadata.create_all(bind=engine)
    # Clear in-memory rate limit state between tests to prevent 429 bleed-through
    _rate_limit_store.clear()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    _rate_limit_store.clear()
    Base.metadata.drop_all(bind=engine)


# ---------------------------------------------------------------------------
# Factory helpers: create test entities quickly and consistently
# ---------------------------------------------------------------------------

_counter = 0

def _unique_id() -> str:
    global _counter
    _counter += 1
    return f"{_counter}-{uuid.uuid4().hex[:8]}"


def create_tenant(db, name=None, company_name=None, is_active=True) -> Tenant:
    suffix = _unique_id()
    tenant = Tenant(
        name=name or f"Tenant {suffix}",
        company_name=company_name,
        email=f"billing-{suffix}@test.com",
        is_active=is_active,
    )
    db.add(tenant)
    db.commit()
    db.refresh(tenant)
    return tenant


def create_user(db, tenant, role=UserRole.USER, email=None, is_active=True) -> User:
    user = User(
        email=email or f"user-{_unique_id()}@test.com",
        name="Test User",
        role=role,
        tenant_id=tenant.id,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def headers_for(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def auth_headers(db, role=UserRole.USER, tenant=None, company_name=None):
    """Create a tenant (unless given) and a user in it; return (headers, user, tenant)."""
    tenant = tenant or create_tenant(db, company_name=company_name)
    user = create_user(db, tenant, role=role)
    return headers_for(user), user, tenant


@pytest.fixture
def tenant(db):
    return create_tenant(db)


@pytest.fixture
def master_admin_headers(db):
    headers, _user, _tenant = auth_headers(db, role=UserRole.MASTER_ADMIN, company_name="Scan2Ship HQ")
    return headers
