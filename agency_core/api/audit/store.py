"""
Audit Log Store

Persistence for the append-only audit trail: appends, paginated queries
against the ``audit_logs_summary`` view, statistics over a trailing
window, and the operator-invoked retention cleanup.

Each append runs in its own session and commits on its own, so the audit
trail survives a rollback of the business transaction it describes.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, desc, asc, func, select, case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from agency_core.api.audit.entries import AuditAction, AuditLogEntry
from agency_core.api.db.models import AuditLog, audit_logs_summary
from agency_core.api.errors import AuditWriteFailure

logger = logging.getLogger(__name__)


ORDERABLE_COLUMNS = ("created_at", "operation_duration_ms", "status_code")
TOP_ENDPOINTS = 10


@dataclass
class AuditLogQuery:
    """Filters for listing audit rows. ``tenant_id=None`` means all tenants."""

    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    table_name: Optional[str] = None
    action: Optional[AuditAction] = None
    endpoint: Optional[str] = None
    http_method: Optional[str] = None
    status_code: Optional[int] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: int = 50
    offset: int = 0
    order_by: str = "created_at"
    order_direction: str = "DESC"


@dataclass
class AuditLogPage:
    """One page of audit summary rows."""

    rows: List[Dict[str, Any]]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total


@dataclass
class AuditLogStats:
    """Aggregates over a trailing window."""

    total_logs: int = 0
    logs_by_action: Dict[str, int] = field(default_factory=dict)
    logs_by_table: Dict[str, int] = field(default_factory=dict)
    logs_by_user: Dict[str, int] = field(default_factory=dict)
    logs_by_endpoint: Dict[str, int] = field(default_factory=dict)
    average_operation_duration: float = 0.0
    error_count: int = 0
    window_days: int = 30
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    @property
    def error_rate(self) -> float:
        if not self.total_logs:
            return 0.0
        return self.error_count / self.total_logs * 100


@dataclass
class CleanupResult:
    """Outcome of a retention cleanup run."""

    retention_days: int
    cutoff: datetime
    matched: int
    deleted: int
    dry_run: bool


class AuditLogStore(ABC):
    """Append-only audit trail."""

    @abstractmethod
    async def append(self, entry: AuditLogEntry) -> None:
        """
        Persist one entry.

        Raises:
            AuditWriteFailure: If the entry could not be stored
        """

    @abstractmethod
    async def query(self, query: AuditLogQuery) -> AuditLogPage:
        """List rows from the summary view."""

    @abstractmethod
    async def get_audit_log_stats(
        self,
        tenant_id: Optional[str] = None,
        user_id: Optional[str] = None,
        retention_days: int = 30,
    ) -> AuditLogStats:
        """Aggregate counts over the trailing ``retention_days``."""

    @abstractmethod
    async def cleanup_old_audit_logs(
        self, retention_days: int, dry_run: bool = False
    ) -> CleanupResult:
        """Delete (or, for a dry run, count) rows older than the cutoff."""


def retention_cutoff(retention_days: int, now: Optional[datetime] = None) -> datetime:
    if retention_days < 0:
        raise ValueError("retention_days must be >= 0")
    return (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)


class SqlAuditLogStore(AuditLogStore):
    """Audit store backed by the ``audit_logs`` table."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def append(self, entry: AuditLogEntry) -> None:
        row = AuditLog(
            id=entry.id,
            client_id=entry.tenant_id,
            user_id=entry.user_id,
            table_name=entry.table_name,
            record_id=entry.record_id,
            action=entry.action.value,
            old_values=entry.old_values,
            new_values=entry.new_values,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            session_id=entry.session_id,
            endpoint=entry.endpoint,
            http_method=entry.http_method,
            status_code=entry.status_code,
            operation_duration_ms=entry.operation_duration_ms,
            error_message=entry.error_message,
            metadata_=entry.metadata,
            created_at=entry.created_at,
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as e:
            raise AuditWriteFailure(
                f"Failed to append audit row {entry.id}: {e}",
                code="AUDIT_WRITE_FAILED",
            ) from e

    async def query(self, query: AuditLogQuery) -> AuditLogPage:
        view = audit_logs_summary
        conditions = []
        if query.tenant_id is not None:
            conditions.append(view.c.client_id == query.tenant_id)
        if query.user_id:
            conditions.append(view.c.user_id == query.user_id)
        if query.table_name:
            conditions.append(view.c.table_name == query.table_name)
        if query.action:
            conditions.append(view.c.action == AuditAction(query.action).value)
        if query.endpoint:
            conditions.append(view.c.endpoint.ilike(f"%{query.endpoint}%"))
        if query.http_method:
            conditions.append(view.c.http_method == query.http_method.upper())
        if query.status_code is not None:
            conditions.append(view.c.status_code == query.status_code)
        if query.since:
            conditions.append(view.c.created_at >= query.since)
        if query.until:
            conditions.append(view.c.created_at <= query.until)

        if query.order_by not in ORDERABLE_COLUMNS:
            raise ValueError(f"Cannot order audit logs by {query.order_by!r}")
        direction = desc if query.order_direction.upper() == "DESC" else asc

        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(view).where(*conditions)
            )
            result = await session.execute(
                select(view)
                .where(*conditions)
                .order_by(direction(view.c[query.order_by]), desc(view.c.id))
                .limit(query.limit)
                .offset(query.offset)
            )
            rows = [dict(r) for r in result.mappings().all()]

        return AuditLogPage(rows=rows, total=total or 0, limit=query.limit, offset=query.offset)

    async def get_audit_log_stats(
        self,
        tenant_id: Optional[str] = None,
        user_id: Optional[str] = None,
        retention_days: int = 30,
    ) -> AuditLogStats:
        view = audit_logs_summary
        since = retention_cutoff(retention_days)
        conditions = [view.c.created_at >= since]
        if tenant_id is not None:
            conditions.append(view.c.client_id == tenant_id)
        if user_id:
            conditions.append(view.c.user_id == user_id)

        stats = AuditLogStats(window_days=retention_days)

        async with self._session_factory() as session:
            totals = (
                await session.execute(
                    select(
                        func.count().label("total"),
                        func.count(case((view.c.status_code >= 400, 1))).label("errors"),
                        func.avg(view.c.operation_duration_ms).label("avg_duration"),
                        func.min(view.c.created_at).label("earliest"),
                        func.max(view.c.created_at).label("latest"),
                    ).where(*conditions)
                )
            ).one()

            stats.total_logs = totals.total or 0
            stats.error_count = totals.errors or 0
            stats.average_operation_duration = float(totals.avg_duration or 0)
            stats.date_from = totals.earliest
            stats.date_to = totals.latest

            stats.logs_by_action = {action.value: 0 for action in AuditAction}
            stats.logs_by_action.update(
                await self._grouped(session, view.c.action, conditions)
            )
            stats.logs_by_table = await self._grouped(session, view.c.table_name, conditions)

            user_label = func.coalesce(view.c.user_name, view.c.user_id, "Unknown")
            stats.logs_by_user = await self._grouped(session, user_label, conditions)

            stats.logs_by_endpoint = await self._grouped(
                session,
                view.c.endpoint,
                conditions + [view.c.endpoint.is_not(None)],
                limit=TOP_ENDPOINTS,
            )

        return stats

    async def _grouped(self, session, column, conditions, limit: Optional[int] = None) -> Dict[str, int]:
        count = func.count().label("count")
        stmt = (
            select(column.label("key"), count)
            .where(*conditions)
            .group_by(column)
            .order_by(desc(count))
        )
        if limit:
            stmt = stmt.limit(limit)
        result = await session.execute(stmt)
        return {str(row.key): int(row.count) for row in result}

    async def cleanup_old_audit_logs(
        self, retention_days: int, dry_run: bool = False
    ) -> CleanupResult:
        cutoff = retention_cutoff(retention_days)

        async with self._session_factory() as session:
            matched = await session.scalar(
                select(func.count()).select_from(AuditLog).where(AuditLog.created_at < cutoff)
            ) or 0

            deleted = 0
            if not dry_run and matched:
                result = await session.execute(
                    delete(AuditLog).where(AuditLog.created_at < cutoff)
                )
                await session.commit()
                deleted = result.rowcount or 0

        logger.info(
            f"Audit cleanup (retention={retention_days}d, dry_run={dry_run}): "
            f"matched={matched} deleted={deleted}"
        )
        return CleanupResult(
            retention_days=retention_days,
            cutoff=cutoff,
            matched=matched,
            deleted=deleted,
            dry_run=dry_run,
        )
