"""
Idle Session Sweeper

Background worker that deactivates sessions idle for longer than the
configured timeout and purges inactive sessions past their retention.
It only uses the registry's public methods, so it shares the registry's
lock with request handlers.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from agency_core.api.identity.sessions import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Result of one sweep."""
    timestamp: datetime
    deactivated: List[str] = field(default_factory=list)
    purged: int = 0


@dataclass
class WorkerStats:
    """Statistics for a background worker."""
    name: str
    started_at: datetime
    last_run_at: Optional[datetime] = None
    run_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None
    sessions_deactivated: int = 0
    sessions_purged: int = 0


class IdleSessionSweeper:
    """Periodically runs sweep_idle and purge_inactive on a registry."""

    def __init__(
        self,
        registry: SessionRegistry,
        interval_seconds: int = 60,
        idle_timeout: timedelta = timedelta(minutes=30),
        retention: timedelta = timedelta(hours=72),
    ):
        self.registry = registry
        self.interval = interval_seconds
        self.idle_timeout = idle_timeout
        self.retention = retention
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stats = WorkerStats(
            name="idle_session_sweeper",
            started_at=datetime.now(timezone.utc),
        )

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the sweeper."""
        if self._running:
            return

        self._running = True
        self._stats.started_at = datetime.now(timezone.utc)
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Idle session sweeper started")

    async def stop(self) -> None:
        """Stop the sweeper."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Idle session sweeper stopped")

    async def _run_loop(self) -> None:
        """Main worker loop."""
        while self._running:
            try:
                await asyncio.sleep(self.interval)
                await self.sweep_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Session sweep error: {e}")
                self._stats.error_count += 1
                self._stats.last_error = str(e)

    async def sweep_once(self, now: Optional[datetime] = None) -> SweepReport:
        """Run a single sweep and purge."""
        now = now or datetime.now(timezone.utc)
        report = SweepReport(timestamp=now)

        report.deactivated = await self.registry.sweep_idle(self.idle_timeout, now=now)
        report.purged = await self.registry.purge_inactive(self.retention, now=now)

        self._stats.last_run_at = now
        self._stats.run_count += 1
        self._stats.sessions_deactivated += len(report.deactivated)
        self._stats.sessions_purged += report.purged

        if report.deactivated or report.purged:
            logger.debug(
                f"Sweep: {len(report.deactivated)} deactivated, {report.purged} purged"
            )
        return report

    def get_stats(self) -> WorkerStats:
        """Get worker statistics."""
        return self._stats
