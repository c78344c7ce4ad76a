"""
Agency Core Test Configuration
==============================

Pytest fixtures for unit tests: request builders, an in-memory audit
store, and a SQLite database with the data tables.
"""

import os

# Signing secrets must be in place before the settings are first loaded.
os.environ.setdefault("SESSION_SECRET_KEY", "test-session-secret-key-0123456789abcdef")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-0123456789abcdef-xyz")

from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from starlette.requests import Request

from agency_core.api.audit.context import AuditContext
from agency_core.api.audit.entries import AuditLogEntry
from agency_core.api.audit.store import (
    AuditLogPage,
    AuditLogQuery,
    AuditLogStats,
    AuditLogStore,
    CleanupResult,
)
from agency_core.api.db.models import Base
from agency_core.api.errors import AuditWriteFailure


# ==================== Requests ====================


def make_request(
    path: str = "/api/calls",
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
    client: Optional[tuple] = ("203.0.113.7", 50123),
) -> Request:
    """Build a bare Starlette request for code that only reads the request."""
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
        "server": ("testserver", 80),
    }
    return Request(scope)


@pytest.fixture
def request_factory():
    return make_request


# ==================== Audit ====================


class RecordingAuditStore(AuditLogStore):
    """Keeps appended entries in memory."""

    def __init__(self, fail: bool = False):
        self.entries: List[AuditLogEntry] = []
        self.fail = fail

    async def append(self, entry: AuditLogEntry) -> None:
        if self.fail:
            raise AuditWriteFailure("audit store unavailable")
        self.entries.append(entry)

    async def query(self, query: AuditLogQuery) -> AuditLogPage:
        rows = [
            e.to_dict()
            for e in self.entries
            if query.tenant_id is None or e.tenant_id == query.tenant_id
        ]
        page = rows[query.offset:query.offset + query.limit]
        return AuditLogPage(rows=page, total=len(rows), limit=query.limit, offset=query.offset)

    async def get_audit_log_stats(self, tenant_id=None, user_id=None, retention_days=30) -> AuditLogStats:
        return AuditLogStats(total_logs=len(self.entries), window_days=retention_days)

    async def cleanup_old_audit_logs(self, retention_days: int, dry_run: bool = False) -> CleanupResult:
        return CleanupResult(retention_days, datetime.now(timezone.utc), 0, 0, dry_run)


@pytest.fixture
def audit_store() -> RecordingAuditStore:
    return RecordingAuditStore()


@pytest.fixture
def failing_audit_store() -> RecordingAuditStore:
    return RecordingAuditStore(fail=True)


@pytest.fixture
def audit_context() -> AuditContext:
    return AuditContext(
        tenant_id="tenant-a",
        user_id="user-1",
        session_id="sess_test",
        ip_address="203.0.113.7",
        user_agent="pytest",
        endpoint="/api/calls",
        http_method="GET",
        metadata={"request_id": "req-1"},
    )


# ==================== Database ====================


@pytest_asyncio.fixture
async def async_engine():
    """In-memory SQLite with the full schema (tables and summary view)."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(async_engine) -> async_sessionmaker:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_maker):
    async with session_maker() as session:
        yield session
