"""
Tests for the SQL audit log store: appends, summary view queries,
statistics and retention cleanup.
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from agency_core.api.audit.entries import AuditAction, AuditLogEntry
from agency_core.api.audit.store import AuditLogQuery, SqlAuditLogStore, retention_cutoff
from agency_core.api.db.models import Client, User
from agency_core.api.errors import AuditWriteFailure


NOW = datetime.now(timezone.utc)


def make_entry(
    action: AuditAction = AuditAction.SELECT,
    table_name: str = "calls",
    tenant_id: str = "tenant-a",
    user_id: str = "user-1",
    status_code: int = 200,
    age: timedelta = timedelta(0),
    **kwargs,
) -> AuditLogEntry:
    return AuditLogEntry(
        tenant_id=tenant_id,
        user_id=user_id,
        table_name=table_name,
        action=action,
        status_code=status_code,
        operation_duration_ms=kwargs.pop("operation_duration_ms", 10),
        endpoint=kwargs.pop("endpoint", "/api/calls"),
        http_method=kwargs.pop("http_method", "GET"),
        created_at=NOW - age,
        **kwargs,
    )


@pytest.fixture
def store(session_maker) -> SqlAuditLogStore:
    return SqlAuditLogStore(session_maker)


@pytest_asyncio.fixture
async def directory(db_session):
    """Tenant and user rows the summary view joins against."""
    db_session.add(Client(id="tenant-a", name="Acme Agency"))
    db_session.add(
        User(
            id="user-1",
            client_id="tenant-a",
            email="sam@agencycore.io",
            name="Sam Sales",
            role="sales",
            password_hash="x",
        )
    )
    await db_session.commit()


class TestAppendAndQuery:

    @pytest.mark.asyncio
    async def test_append_and_read_back(self, store, directory):
        """Should persist every field and expose joined names."""
        entry = make_entry(
            AuditAction.UPDATE,
            record_id="call-1",
            session_id="sess_1",
            ip_address="203.0.113.7",
            old_values={"notes": None},
            new_values={"notes": "hi"},
            metadata={"request_id": "req-1"},
        )
        await store.append(entry)

        page = await store.query(AuditLogQuery(tenant_id="tenant-a"))

        assert page.total == 1
        row = page.rows[0]
        assert row["id"] == entry.id
        assert row["action"] == "UPDATE"
        assert row["record_id"] == "call-1"
        assert row["client_name"] == "Acme Agency"
        assert row["user_name"] == "Sam Sales"
        assert row["user_role"] == "sales"
        assert row["metadata"] == {"request_id": "req-1"}

    @pytest.mark.asyncio
    async def test_filters(self, store):
        await store.append(make_entry(AuditAction.INSERT, status_code=201))
        await store.append(make_entry(AuditAction.SELECT, table_name="users"))
        await store.append(make_entry(AuditAction.SELECT, tenant_id="tenant-b", user_id="user-9"))
        await store.append(make_entry(AuditAction.DELETE, status_code=403, http_method="DELETE"))

        async def total(**filters) -> int:
            return (await store.query(AuditLogQuery(**filters))).total

        assert await total() == 4
        assert await total(tenant_id="tenant-a") == 3
        assert await total(user_id="user-9") == 1
        assert await total(table_name="users") == 1
        assert await total(action=AuditAction.INSERT) == 1
        assert await total(status_code=403) == 1
        assert await total(http_method="delete") == 1
        assert await total(endpoint="calls") == 4
        assert await total(since=NOW + timedelta(minutes=1)) == 0

    @pytest.mark.asyncio
    async def test_pagination_newest_first(self, store):
        for minutes in (30, 20, 10):
            await store.append(make_entry(record_id=f"m{minutes}", age=timedelta(minutes=minutes)))

        first = await store.query(AuditLogQuery(limit=2))
        second = await store.query(AuditLogQuery(limit=2, offset=2))

        assert [r["record_id"] for r in first.rows] == ["m10", "m20"]
        assert first.has_more is True
        assert [r["record_id"] for r in second.rows] == ["m30"]
        assert second.has_more is False

    @pytest.mark.asyncio
    async def test_invalid_order_column(self, store):
        with pytest.raises(ValueError):
            await store.query(AuditLogQuery(order_by="user_agent"))

    @pytest.mark.asyncio
    async def test_append_failure(self):
        """Should wrap database errors in AuditWriteFailure."""
        engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
        try:
            broken = SqlAuditLogStore(async_sessionmaker(engine))
            with pytest.raises(AuditWriteFailure) as exc_info:
                await broken.append(make_entry())
            assert exc_info.value.code == "AUDIT_WRITE_FAILED"
        finally:
            await engine.dispose()


class TestStats:

    @pytest.mark.asyncio
    async def test_stats(self, store, directory):
        await store.append(make_entry(AuditAction.INSERT, status_code=201, operation_duration_ms=30))
        await store.append(make_entry(AuditAction.SELECT, operation_duration_ms=10))
        await store.append(make_entry(AuditAction.SELECT, status_code=500, operation_duration_ms=20))
        await store.append(make_entry(AuditAction.SELECT, user_id="user-x", endpoint="/api/audit"))
        # Outside the window and in another tenant
        await store.append(make_entry(age=timedelta(days=45)))
        await store.append(make_entry(tenant_id="tenant-b"))

        stats = await store.get_audit_log_stats(tenant_id="tenant-a", retention_days=30)

        assert stats.total_logs == 4
        assert stats.logs_by_action == {
            "INSERT": 1, "UPDATE": 0, "DELETE": 0, "SELECT": 3, "TRANSACTION": 0,
        }
        assert stats.logs_by_table == {"calls": 4}
        assert stats.logs_by_user == {"Sam Sales": 3, "user-x": 1}
        assert stats.logs_by_endpoint == {"/api/calls": 3, "/api/audit": 1}
        assert stats.error_count == 1
        assert stats.error_rate == 25.0
        assert stats.average_operation_duration == pytest.approx(17.5)
        assert stats.window_days == 30

    @pytest.mark.asyncio
    async def test_empty_stats(self, store):
        stats = await store.get_audit_log_stats(tenant_id="tenant-z")
        assert stats.total_logs == 0
        assert stats.error_rate == 0.0
        assert set(stats.logs_by_action.values()) == {0}


class TestCleanup:

    @pytest.mark.asyncio
    async def test_dry_run_then_execute(self, store):
        """Should count without deleting on a dry run and delete on execute."""
        for days in range(400, 405):
            await store.append(make_entry(age=timedelta(days=days)))
        await store.append(make_entry(age=timedelta(days=10)))

        dry = await store.cleanup_old_audit_logs(retention_days=365, dry_run=True)
        assert (dry.matched, dry.deleted, dry.dry_run) == (5, 0, True)
        assert (await store.query(AuditLogQuery())).total == 6

        executed = await store.cleanup_old_audit_logs(retention_days=365)
        assert (executed.matched, executed.deleted) == (5, 5)

        again = await store.cleanup_old_audit_logs(retention_days=365, dry_run=True)
        assert again.matched == 0
        assert (await store.query(AuditLogQuery())).total == 1

    @pytest.mark.asyncio
    async def test_zero_retention_matches_everything_older_than_now(self, store):
        await store.append(make_entry(age=timedelta(seconds=5)))

        result = await store.cleanup_old_audit_logs(retention_days=0, dry_run=True)
        assert result.matched == 1

    @pytest.mark.asyncio
    async def test_negative_retention(self, store):
        with pytest.raises(ValueError):
            await store.cleanup_old_audit_logs(retention_days=-1)


def test_retention_cutoff():
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert retention_cutoff(30, now=now) == datetime(2026, 1, 30, tzinfo=timezone.utc)
    with pytest.raises(ValueError):
        retention_cutoff(-5, now=now)
