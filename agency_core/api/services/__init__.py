"""Background services for the Agency Core API."""

from agency_core.api.services.session_sweeper import IdleSessionSweeper, SweepReport, WorkerStats

__all__ = ["IdleSessionSweeper", "SweepReport", "WorkerStats"]
