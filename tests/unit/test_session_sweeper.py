"""
Tests for the idle session sweeper worker.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from agency_core.api.identity.sessions import InMemorySessionRegistry, UserSession
from agency_core.api.services.session_sweeper import IdleSessionSweeper


T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_session(session_id: str, last_activity: datetime) -> UserSession:
    return UserSession(
        session_id=session_id,
        user_id="user-1",
        tenant_id="tenant-a",
        role="sales",
        login_time=T0,
        last_activity=last_activity,
    )


@pytest.fixture
def registry() -> InMemorySessionRegistry:
    return InMemorySessionRegistry()


@pytest.fixture
def sweeper(registry) -> IdleSessionSweeper:
    return IdleSessionSweeper(
        registry,
        interval_seconds=60,
        idle_timeout=timedelta(minutes=30),
        retention=timedelta(hours=1),
    )


class TestSweepOnce:

    @pytest.mark.asyncio
    async def test_deactivates_then_purges(self, sweeper, registry):
        """Should idle out stale sessions and purge them after retention."""
        await registry.upsert(make_session("sess_stale", T0))
        await registry.upsert(make_session("sess_fresh", T0 + timedelta(minutes=40)))

        report = await sweeper.sweep_once(now=T0 + timedelta(minutes=45))
        assert report.deactivated == ["sess_stale"]
        assert report.purged == 0

        report = await sweeper.sweep_once(now=T0 + timedelta(minutes=80))
        assert report.deactivated == ["sess_fresh"]
        assert report.purged == 1
        assert await registry.get("sess_stale") is None

        stats = sweeper.get_stats()
        assert stats.run_count == 2
        assert stats.sessions_deactivated == 2
        assert stats.sessions_purged == 1

    @pytest.mark.asyncio
    async def test_repeated_sweep_is_noop(self, sweeper, registry):
        await registry.upsert(make_session("sess_1", T0))
        now = T0 + timedelta(minutes=31)

        await sweeper.sweep_once(now=now)
        report = await sweeper.sweep_once(now=now)

        assert report.deactivated == []
        assert report.purged == 0


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_stop(self, registry):
        sweeper = IdleSessionSweeper(registry, interval_seconds=0)

        await sweeper.start()
        assert sweeper.is_running
        await asyncio.sleep(0.05)
        await sweeper.stop()

        assert not sweeper.is_running
        assert sweeper.get_stats().run_count >= 1

    @pytest.mark.asyncio
    async def test_errors_do_not_stop_the_loop(self, registry, monkeypatch):
        sweeper = IdleSessionSweeper(registry, interval_seconds=0)
        calls = []

        async def flaky(max_idle, now=None):
            calls.append(now)
            if len(calls) == 1:
                raise RuntimeError("registry unavailable")
            return []

        monkeypatch.setattr(registry, "sweep_idle", flaky)

        await sweeper.start()
        await asyncio.sleep(0.05)
        await sweeper.stop()

        stats = sweeper.get_stats()
        assert stats.error_count == 1
        assert stats.last_error == "registry unavailable"
        assert len(calls) > 1
