"""
Test configuration and fixtures.

Provides:
- Fresh schema per test (SQLite file unless DATABASE_URL points elsewhere)
- Tenant and staff fixtures (factories live in helpers.py)
- HTTPX AsyncClient with fake collaborators, session cookie and CSRF header
"""
import os
import tempfile
from typing import AsyncGenerator, Callable, Generator

os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite:///{os.path.join(tempfile.gettempdir(), f'careflow_test_{os.getpid()}.db')}",
)
os.environ["TESTING"] = "1"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from careflow.core.deps import get_db, get_notifier, get_text_processor
from careflow.db.base import Base
from careflow.db.enums import Role
from careflow.db.models import Tenant, User
from careflow.db.session import SessionLocal, engine
from careflow.main import app
from careflow.services import access_token_service

from helpers import (
    CSRF_HEADERS,
    FakeNotifier,
    FakeTextProcessor,
    auth_cookies,
    make_tenant,
    make_user,
)


# =============================================================================
# Database
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Session on a freshly created schema; dropped after the test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_token_throttle():
    access_token_service.failure_throttle.reset()
    yield
    access_token_service.failure_throttle.reset()


# =============================================================================
# Tenant & staff
# =============================================================================

@pytest.fixture
def tenant(db: Session) -> Tenant:
    return make_tenant(db)


@pytest.fixture
def clinician(db: Session, tenant: Tenant) -> User:
    return make_user(db, tenant, Role.CLINICIAN)


@pytest.fixture
def admin(db: Session, tenant: Tenant) -> User:
    return make_user(db, tenant, Role.ADMIN)


@pytest.fixture
def interpreter(db: Session, tenant: Tenant) -> User:
    return make_user(db, tenant, Role.INTERPRETER, languages=["es"])


@pytest.fixture
def super_admin(db: Session) -> User:
    return make_user(db, None, Role.SUPER_ADMIN)


# =============================================================================
# Collaborators
# =============================================================================

@pytest.fixture
def processor() -> FakeTextProcessor:
    return FakeTextProcessor()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture
async def client(
    db: Session,
    processor: FakeTextProcessor,
    notifier: FakeNotifier,
) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated client for public endpoints."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_text_processor] = lambda: processor
    app.dependency_overrides[get_notifier] = lambda: notifier

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def client_for(client: AsyncClient) -> Callable[[User], AsyncClient]:
    """Authenticate the shared client as `user` (cookie + CSRF header)."""
    def _login(user: User) -> AsyncClient:
        client.cookies.clear()
        for name, value in auth_cookies(user).items():
            client.cookies.set(name, value)
        client.headers.update(CSRF_HEADERS)
        return client

    return _login
