"""
Test Configuration and Fixtures

Shared fixtures for Agency Core API tests.
Provides an isolated database, users in two tenants, and bearer tokens.
"""

import os

# Signing secrets must be in place before the settings are first loaded.
os.environ.setdefault("SESSION_SECRET_KEY", "test-session-secret-key-0123456789abcdef")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-0123456789abcdef-xyz")

from typing import AsyncGenerator, List

import bcrypt
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from agency_core.api.main import create_app, init_services
from agency_core.api.auth.jwt import create_access_token
from agency_core.api.db.models import Base, AuditLog, Call, Client, User
from agency_core.api.db.session import get_db


TEST_PASSWORD = "CorrectHorse42!"
TENANT_A = "tenant-a"
TENANT_B = "tenant-b"


# ==================== Database Fixtures ====================


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(async_engine) -> async_sessionmaker:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests."""
    async with session_maker() as session:
        yield session
        await session.rollback()


# ==================== Application Fixtures ====================


@pytest.fixture(scope="function")
def app(db_session, session_maker) -> FastAPI:
    """Create FastAPI app with test database."""
    test_app = create_app()
    init_services(test_app, session_factory=session_maker)

    async def override_get_db():
        yield db_session

    test_app.dependency_overrides[get_db] = override_get_db
    return test_app


@pytest_asyncio.fixture(scope="function")
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ==================== Tenant & User Fixtures ====================


def _hash(password: str) -> str:
    # Low cost factor keeps the suite fast
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=4)).decode()


@pytest_asyncio.fixture(scope="function")
async def tenants(db_session) -> List[Client]:
    clients = [
        Client(id=TENANT_A, name="Acme Agency"),
        Client(id=TENANT_B, name="Globex Agency"),
    ]
    db_session.add_all(clients)
    await db_session.commit()
    return clients


async def _create_user(db_session, user_id: str, role: str, client_id: str, name: str) -> User:
    user = User(
        id=user_id,
        client_id=client_id,
        email=f"{user_id}@agencycore.io",
        name=name,
        role=role,
        password_hash=_hash(TEST_PASSWORD),
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture(scope="function")
async def ceo_user(db_session, tenants) -> User:
    return await _create_user(db_session, "ceo-1", "ceo", TENANT_A, "Carla CEO")


@pytest_asyncio.fixture(scope="function")
async def admin_user(db_session, tenants) -> User:
    return await _create_user(db_session, "admin-a", "admin", TENANT_A, "Ada Admin")


@pytest_asyncio.fixture(scope="function")
async def sales_user(db_session, tenants) -> User:
    return await _create_user(db_session, "sales-a", "sales", TENANT_A, "Sam Sales")


@pytest_asyncio.fixture(scope="function")
async def second_sales_user(db_session, tenants) -> User:
    return await _create_user(db_session, "sales-a2", "sales", TENANT_A, "Sue Sales")


@pytest_asyncio.fixture(scope="function")
async def client_user(db_session, tenants) -> User:
    return await _create_user(db_session, "client-a", "client_user", TENANT_A, "Cliff Client")


@pytest_asyncio.fixture(scope="function")
async def other_admin(db_session, tenants) -> User:
    return await _create_user(db_session, "admin-b", "admin", TENANT_B, "Otto Admin")


def token_for(user: User, token_id: str = None) -> str:
    """Bearer token carrying the user's claims."""
    return create_access_token(
        user_id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        tenant_id=user.client_id,
        token_id=token_id,
    )


def headers_for(user: User, token_id: str = None) -> dict:
    return {"Authorization": f"Bearer {token_for(user, token_id)}"}


@pytest.fixture(scope="function")
def ceo_headers(ceo_user) -> dict:
    return headers_for(ceo_user)


@pytest.fixture(scope="function")
def admin_headers(admin_user) -> dict:
    return headers_for(admin_user)


@pytest.fixture(scope="function")
def sales_headers(sales_user) -> dict:
    return headers_for(sales_user)


@pytest.fixture(scope="function")
def client_headers(client_user) -> dict:
    return headers_for(client_user)


@pytest.fixture(scope="function")
def other_admin_headers(other_admin) -> dict:
    return headers_for(other_admin)


# ==================== Data Fixtures ====================


@pytest_asyncio.fixture(scope="function")
async def sales_call(db_session, sales_user) -> Call:
    call = Call(
        id="call-1",
        client_id=sales_user.client_id,
        user_id=sales_user.id,
        prospect_name="Initech",
    )
    db_session.add(call)
    await db_session.commit()
    return call


# ==================== Helpers ====================


async def fetch_audit_rows(session_maker, **filters) -> List[AuditLog]:
    """Audit rows matching the given column values, oldest first."""
    async with session_maker() as session:
        stmt = select(AuditLog).order_by(AuditLog.created_at)
        for column, value in filters.items():
            stmt = stmt.where(getattr(AuditLog, column) == value)
        result = await session.execute(stmt)
        return list(result.scalars().all())


@pytest.fixture(scope="function")
def audit_rows(session_maker):
    """Query committed audit rows: ``await audit_rows(table_name="calls")``."""

    async def _fetch(**filters) -> List[AuditLog]:
        return await fetch_audit_rows(session_maker, **filters)

    return _fetch


@pytest.fixture(scope="function")
def make_headers():
    """Build bearer headers for any user, optionally pinning the session id."""
    return headers_for
