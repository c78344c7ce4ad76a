"""
Tests for the in-memory session registry.

Covers refresh semantics, identity conflicts, concurrent refreshes of a
single session and the idle sweep / purge lifecycle.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from agency_core.api.errors import SessionConflictError, SessionInactiveError
from agency_core.api.identity.sessions import InMemorySessionRegistry, UserSession


T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_session(
    session_id: str = "sess_1",
    last_activity: datetime = T0,
    user_id: str = "user-1",
    role: str = "sales",
    tenant_id: str = "tenant-a",
    **kwargs,
) -> UserSession:
    return UserSession(
        session_id=session_id,
        user_id=user_id,
        tenant_id=tenant_id,
        role=role,
        login_time=T0,
        last_activity=last_activity,
        **kwargs,
    )


@pytest.fixture
def registry() -> InMemorySessionRegistry:
    return InMemorySessionRegistry()


class TestUpsert:

    @pytest.mark.asyncio
    async def test_insert(self, registry):
        """Should store a new session with a request count of one."""
        stored = await registry.upsert(make_session(ip_address="203.0.113.7"))

        assert stored.is_active is True
        assert stored.metadata["request_count"] == 1
        assert await registry.count() == 1

    @pytest.mark.asyncio
    async def test_refresh_keeps_login_time(self, registry):
        await registry.upsert(make_session())
        later = make_session(last_activity=T0 + timedelta(minutes=5))
        later.login_time = T0 + timedelta(minutes=5)

        refreshed = await registry.upsert(later)

        assert refreshed.login_time == T0
        assert refreshed.last_activity == T0 + timedelta(minutes=5)
        assert refreshed.metadata["request_count"] == 2

    @pytest.mark.asyncio
    async def test_last_activity_never_moves_backwards(self, registry):
        """Should ignore an older activity timestamp arriving late."""
        await registry.upsert(make_session(last_activity=T0 + timedelta(minutes=10)))
        refreshed = await registry.upsert(make_session(last_activity=T0 + timedelta(minutes=3)))

        assert refreshed.last_activity == T0 + timedelta(minutes=10)

    @pytest.mark.asyncio
    async def test_returns_snapshots(self, registry):
        """Mutating a returned session must not touch the stored one."""
        snapshot = await registry.upsert(make_session())
        snapshot.is_active = False
        snapshot.metadata["request_count"] = 99

        stored = await registry.get("sess_1")
        assert stored.is_active is True
        assert stored.metadata["request_count"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_refreshes(self, registry):
        """Concurrent refreshes of one session yield one entry with the latest activity."""
        timestamps = [T0 + timedelta(seconds=s) for s in range(50)]
        shuffled = timestamps[25:] + timestamps[:25]

        await asyncio.gather(*(registry.upsert(make_session(last_activity=t)) for t in shuffled))

        sessions = await registry.list_by_user("user-1")
        assert len(sessions) == 1
        assert sessions[0].last_activity == max(timestamps)
        assert sessions[0].metadata["request_count"] == 50

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "changes",
        [{"role": "admin"}, {"tenant_id": "tenant-b"}, {"user_id": "user-2"}],
    )
    async def test_identity_conflict_invalidates(self, registry, changes):
        """Should invalidate the cached session when the claims disagree."""
        await registry.upsert(make_session())

        with pytest.raises(SessionConflictError):
            await registry.upsert(make_session(**changes))

        stored = await registry.get("sess_1")
        assert stored.is_active is False
        assert stored.metadata["end_reason"] == "identity_conflict"

        # The original identity cannot revive it either
        with pytest.raises(SessionInactiveError):
            await registry.upsert(make_session())

    @pytest.mark.asyncio
    async def test_ended_session_cannot_be_refreshed(self, registry):
        await registry.upsert(make_session())
        await registry.end("sess_1", reason="logout")

        with pytest.raises(SessionInactiveError):
            await registry.upsert(make_session(last_activity=T0 + timedelta(minutes=1)))


class TestListing:

    @pytest.mark.asyncio
    async def test_list_by_user_and_tenant(self, registry):
        await registry.upsert(make_session("sess_a"))
        await registry.upsert(make_session("sess_b", user_id="user-2"))
        await registry.upsert(make_session("sess_c", user_id="user-3", tenant_id="tenant-b"))
        await registry.end("sess_a")

        assert await registry.list_by_user("user-1") == []
        assert len(await registry.list_by_user("user-1", include_inactive=True)) == 1
        assert {s.session_id for s in await registry.list_by_tenant("tenant-a")} == {"sess_b"}
        assert await registry.count() == 2
        assert await registry.count(active_only=False) == 3


class TestEnd:

    @pytest.mark.asyncio
    async def test_end_records_reason(self, registry):
        await registry.upsert(make_session())

        ended = await registry.end("sess_1", reason="logout")

        assert ended.is_active is False
        assert ended.metadata["end_reason"] == "logout"

    @pytest.mark.asyncio
    async def test_end_is_idempotent(self, registry):
        """Should keep the first end reason."""
        await registry.upsert(make_session())
        await registry.end("sess_1", reason="logout")

        again = await registry.end("sess_1", reason="revoked_by:admin")
        assert again.metadata["end_reason"] == "logout"

    @pytest.mark.asyncio
    async def test_end_unknown(self, registry):
        assert await registry.end("sess_missing") is None


class TestSweep:

    @pytest.mark.asyncio
    async def test_sweep_idle(self, registry):
        """Should deactivate only sessions idle longer than the timeout."""
        await registry.upsert(make_session("sess_idle", last_activity=T0))
        await registry.upsert(make_session("sess_busy", last_activity=T0 + timedelta(minutes=50)))

        now = T0 + timedelta(minutes=60)
        deactivated = await registry.sweep_idle(timedelta(minutes=30), now=now)

        assert deactivated == ["sess_idle"]
        idle = await registry.get("sess_idle")
        assert idle.metadata["end_reason"] == "idle_timeout"
        assert (await registry.get("sess_busy")).is_active is True

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, registry):
        await registry.upsert(make_session(last_activity=T0))
        now = T0 + timedelta(hours=1)

        first = await registry.sweep_idle(timedelta(minutes=30), now=now)
        second = await registry.sweep_idle(timedelta(minutes=30), now=now)

        assert first == ["sess_1"]
        assert second == []

    @pytest.mark.asyncio
    async def test_purge_inactive(self, registry):
        """Should remove inactive sessions past retention and keep active ones."""
        await registry.upsert(make_session("sess_old", last_activity=T0))
        await registry.upsert(make_session("sess_live", last_activity=T0))
        await registry.end("sess_old")

        ended = await registry.get("sess_old")
        purge_time = ended.last_activity + timedelta(hours=73)
        purged = await registry.purge_inactive(timedelta(hours=72), now=purge_time)

        assert purged == 1
        assert await registry.get("sess_old") is None
        assert await registry.get("sess_live") is not None
