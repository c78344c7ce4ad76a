"""
Session Registry

Concurrency-safe store of user sessions keyed by session id.

The registry is an explicitly constructed object (held on ``app.state`` and
injected through a dependency) so tests can substitute a fake and a
distributed implementation can replace the in-memory one later.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from agency_core.api.errors import SessionConflictError, SessionInactiveError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


@dataclass
class UserSession:
    """Registry entry for one session id."""

    session_id: str
    user_id: str
    tenant_id: str
    role: str
    login_time: datetime
    last_activity: datetime
    ip_address: str = "unknown"
    user_agent: str = ""
    is_active: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "tenant_id": self.tenant_id,
            "role": self.role,
            "login_time": self.login_time.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "is_active": self.is_active,
            "metadata": dict(self.metadata),
        }


class SessionRegistry(ABC):
    """Interface shared by every session registry implementation."""

    @abstractmethod
    async def upsert(self, session: UserSession) -> UserSession:
        """Insert a session or refresh an existing one's activity."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[UserSession]:
        """Return a snapshot of a session, or None."""

    @abstractmethod
    async def list_by_user(self, user_id: str, include_inactive: bool = False) -> List[UserSession]:
        """Sessions belonging to a user (active only by default)."""

    @abstractmethod
    async def list_by_tenant(self, tenant_id: str, include_inactive: bool = False) -> List[UserSession]:
        """Sessions belonging to a tenant (active only by default)."""

    @abstractmethod
    async def end(self, session_id: str, reason: str = "ended") -> Optional[UserSession]:
        """Mark a session inactive."""

    @abstractmethod
    async def sweep_idle(self, max_idle: timedelta, now: Optional[datetime] = None) -> List[str]:
        """Mark sessions idle longer than ``max_idle`` inactive."""

    @abstractmethod
    async def purge_inactive(self, retention: timedelta, now: Optional[datetime] = None) -> int:
        """Physically remove inactive sessions older than ``retention``."""

    @abstractmethod
    async def count(self, active_only: bool = True) -> int:
        """Number of tracked sessions."""


class InMemorySessionRegistry(SessionRegistry):
    """
    In-process registry guarded by a single asyncio lock.

    All mutation, including the idle sweep run by the background task, goes
    through the same lock. Callers receive copies, never the stored objects.
    Entries are only removed by purge_inactive(); the store is therefore
    bounded by the retention window, not by the number of live sessions.
    """

    def __init__(self):
        self._sessions: Dict[str, UserSession] = {}
        self._lock = asyncio.Lock()

    async def upsert(self, session: UserSession) -> UserSession:
        """
        Insert ``session`` or refresh the stored entry.

        Refreshing keeps login time and identity fields, moves
        ``last_activity`` forward only, and bumps the request count.

        Raises:
            SessionInactiveError: If the stored session was ended or idled out
            SessionConflictError: If user, role or tenant differ from the
                stored entry (the stored entry is invalidated first)
        """
        async with self._lock:
            existing = self._sessions.get(session.session_id)

            if existing is None:
                stored = replace(session, metadata=dict(session.metadata))
                stored.metadata.setdefault("request_count", 1)
                self._sessions[session.session_id] = stored
                logger.debug(f"Session created: {session.session_id}")
                return _snapshot(stored)

            if not existing.is_active:
                raise SessionInactiveError(
                    "Session is no longer active",
                    session_id=session.session_id,
                    code="SESSION_INACTIVE",
                )

            if (
                existing.user_id != session.user_id
                or existing.role != session.role
                or existing.tenant_id != session.tenant_id
            ):
                existing.is_active = False
                existing.metadata["end_reason"] = "identity_conflict"
                logger.warning(
                    f"Session {session.session_id} invalidated: claims disagree with cached identity",
                    extra={
                        "session_id": session.session_id,
                        "cached_role": existing.role,
                        "claimed_role": session.role,
                        "cached_tenant": existing.tenant_id,
                        "claimed_tenant": session.tenant_id,
                    },
                )
                raise SessionConflictError(
                    "Claims disagree with cached session",
                    session_id=session.session_id,
                    code="SESSION_CONFLICT",
                )

            if session.last_activity > existing.last_activity:
                existing.last_activity = session.last_activity
            existing.ip_address = session.ip_address or existing.ip_address
            existing.user_agent = session.user_agent or existing.user_agent
            request_count = existing.metadata.get("request_count", 1) + 1
            existing.metadata.update(session.metadata)
            existing.metadata["request_count"] = request_count
            return _snapshot(existing)

    async def get(self, session_id: str) -> Optional[UserSession]:
        async with self._lock:
            session = self._sessions.get(session_id)
            return _snapshot(session) if session else None

    async def list_by_user(self, user_id: str, include_inactive: bool = False) -> List[UserSession]:
        async with self._lock:
            return [
                _snapshot(s)
                for s in self._sessions.values()
                if s.user_id == user_id and (include_inactive or s.is_active)
            ]

    async def list_by_tenant(self, tenant_id: str, include_inactive: bool = False) -> List[UserSession]:
        async with self._lock:
            return [
                _snapshot(s)
                for s in self._sessions.values()
                if s.tenant_id == tenant_id and (include_inactive or s.is_active)
            ]

    async def end(self, session_id: str, reason: str = "ended") -> Optional[UserSession]:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if session.is_active:
                session.is_active = False
                session.last_activity = max(session.last_activity, utcnow())
                session.metadata["end_reason"] = reason
                logger.info(f"Session ended: {session_id} ({reason})")
            return _snapshot(session)

    async def sweep_idle(self, max_idle: timedelta, now: Optional[datetime] = None) -> List[str]:
        cutoff = (now or utcnow()) - max_idle
        deactivated = []
        async with self._lock:
            for session in self._sessions.values():
                if session.is_active and session.last_activity < cutoff:
                    session.is_active = False
                    session.metadata["end_reason"] = "idle_timeout"
                    deactivated.append(session.session_id)
        if deactivated:
            logger.info(f"Idle sweep deactivated {len(deactivated)} session(s)")
        return deactivated

    async def purge_inactive(self, retention: timedelta, now: Optional[datetime] = None) -> int:
        cutoff = (now or utcnow()) - retention
        async with self._lock:
            expired = [
                session_id
                for session_id, session in self._sessions.items()
                if not session.is_active and session.last_activity < cutoff
            ]
            for session_id in expired:
                del self._sessions[session_id]
        if expired:
            logger.info(f"Purged {len(expired)} inactive session(s)")
        return len(expired)

    async def count(self, active_only: bool = True) -> int:
        async with self._lock:
            if not active_only:
                return len(self._sessions)
            return sum(1 for s in self._sessions.values() if s.is_active)


def _snapshot(session: UserSession) -> UserSession:
    return replace(session, metadata=dict(session.metadata))
