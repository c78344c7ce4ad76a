"""
Audited Data Access Layer

Generic CRUD over the registered tables. Every call is timed and emits
exactly one audit row, whether it succeeds, fails or is cancelled.

Usage:
    db = AuditedDatabase(session, context, audit_store)
    rows = await db.select("calls", {"client_id": tenant_id}, limit=20)
    call = await db.insert("calls", {"prospect_name": "Acme", ...})
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from sqlalchemy import Table, delete, insert, select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from agency_core.api.audit.context import AuditContext
from agency_core.api.audit.entries import (
    AuditAction,
    AuditLogEntry,
    STATUS_CLIENT_CLOSED,
    STATUS_CREATED,
    STATUS_ERROR,
    STATUS_NOT_FOUND,
    STATUS_OK,
    error_summary,
    sanitize_for_audit,
)
from agency_core.api.audit.store import AuditLogStore
from agency_core.api.db.models import Base, DATA_TABLES
from agency_core.api.errors import AgencyCoreError, ForbiddenError, UnknownColumnError, UnknownTableError

logger = logging.getLogger(__name__)

# Receives every entry the audit store failed to persist.
fallback_logger = logging.getLogger("agency_core.audit.fallback")

TRANSACTION_TABLE = "transaction"

Conditions = Optional[Mapping[str, Any]]


def default_tables() -> Dict[str, Table]:
    """The allow-list of tables reachable through the audited layer."""
    return {name: Base.metadata.tables[name] for name in DATA_TABLES}


def status_for_error(exc: BaseException) -> int:
    if isinstance(exc, asyncio.CancelledError):
        return STATUS_CLIENT_CLOSED
    if isinstance(exc, AgencyCoreError) and exc.status_code < 500:
        return exc.status_code
    return STATUS_ERROR


@dataclass
class AuditScope:
    """Mutable collector for one audited operation; becomes an AuditLogEntry on exit."""

    table_name: str
    action: AuditAction
    record_id: Optional[str] = None
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class AuditedDatabase:
    """
    Audited CRUD bound to one request.

    Args:
        session: Business session; statements run inside its transaction
        context: Immutable audit context of the current request
        audit_store: Where audit rows are appended
        tables: Allow-list of name -> Table; defaults to the data tables
    """

    def __init__(
        self,
        session: AsyncSession,
        context: AuditContext,
        audit_store: AuditLogStore,
        tables: Optional[Mapping[str, Table]] = None,
    ):
        self._session = session
        self.context = context
        self._audit_store = audit_store
        self._tables = dict(tables) if tables is not None else default_tables()

    # ==================== Audit Scope ====================

    @asynccontextmanager
    async def _audit(self, table_name: str, action: AuditAction, record_id: Optional[str] = None):
        scope = AuditScope(table_name=table_name, action=action, record_id=record_id)
        started = time.monotonic()
        failure: Optional[BaseException] = None
        try:
            yield scope
            if scope.status_code is None:
                scope.status_code = STATUS_OK
        except asyncio.CancelledError as e:
            failure = e
            scope.status_code = STATUS_CLIENT_CLOSED
            scope.error_message = "Operation cancelled"
            scope.metadata["error"] = error_summary(e)
            raise
        except Exception as e:
            failure = e
            scope.status_code = status_for_error(e)
            scope.error_message = str(e) or e.__class__.__name__
            scope.metadata["error"] = error_summary(e)
            raise
        finally:
            duration_ms = int((time.monotonic() - started) * 1000)
            entry = AuditLogEntry.from_context(
                self.context,
                table_name=scope.table_name,
                action=scope.action,
                status_code=scope.status_code or STATUS_ERROR,
                operation_duration_ms=duration_ms,
                record_id=scope.record_id,
                error_message=scope.error_message,
                old_values=scope.old_values,
                new_values=scope.new_values,
                metadata=scope.metadata,
            )
            try:
                await asyncio.shield(self._emit(entry))
            except asyncio.CancelledError:
                # The emit keeps running; the operation's own error wins.
                if failure is None:
                    raise
                logger.debug(
                    f"Cancelled while auditing failed {entry.action.value} {entry.table_name}; "
                    f"re-raising {failure.__class__.__name__}"
                )

    async def _emit(self, entry: AuditLogEntry) -> None:
        logger.debug(
            f"AUDIT {entry.action.value} {entry.table_name} -> {entry.status_code}",
            extra={"audit_event": entry.to_dict()},
        )
        try:
            await self._audit_store.append(entry)
        except Exception as e:
            fallback_logger.error(
                f"Audit write failed ({e}); entry: {entry.to_json()}",
                extra={"audit_event": entry.to_dict()},
            )

    # ==================== Name Resolution ====================

    def _table(self, table_name: str) -> Table:
        table = self._tables.get(table_name)
        if table is None:
            raise UnknownTableError(
                f"Unknown table: {table_name!r}",
                table_name=table_name,
                code="UNKNOWN_TABLE",
            )
        return table

    def _column(self, table: Table, name: str):
        if name not in table.c:
            raise UnknownColumnError(
                f"Unknown column {name!r} on table {table.name!r}",
                table_name=table.name,
                column=name,
                code="UNKNOWN_COLUMN",
            )
        return table.c[name]

    def _projection(self, table: Table, columns: Optional[Sequence[str]]) -> list:
        if not columns:
            return list(table.c)
        return [self._column(table, name) for name in columns]

    def _where(
        self,
        table: Table,
        conditions: Conditions,
        case_insensitive: Sequence[str] = (),
    ) -> list:
        clauses = []
        for name, value in (conditions or {}).items():
            column = self._column(table, name)
            if name in case_insensitive and isinstance(value, str):
                clauses.append(func.lower(column) == value.lower())
            elif value is None:
                clauses.append(column.is_(None))
            elif isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(column.in_(list(value)))
            else:
                clauses.append(column == value)
        return clauses

    def _values(self, table: Table, data: Mapping[str, Any]) -> Dict[str, Any]:
        for name in data:
            self._column(table, name)
        return dict(data)

    def _primary_key(self, table: Table):
        return list(table.primary_key.columns)[0]

    async def _fetch_by_id(self, table: Table, record_id: Any) -> Optional[Dict[str, Any]]:
        pk = self._primary_key(table)
        result = await self._session.execute(select(table).where(pk == record_id))
        row = result.mappings().first()
        return dict(row) if row is not None else None

    # ==================== Reads ====================

    async def select(
        self,
        table_name: str,
        conditions: Conditions = None,
        columns: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        order_by: Optional[str] = None,
        order_direction: str = "ASC",
        case_insensitive: Sequence[str] = (),
    ) -> List[Dict[str, Any]]:
        """
        Rows matching all ``conditions`` (equality, IN for sequences, IS NULL for None).

        String conditions on columns named in ``case_insensitive`` compare
        lowercased on both sides.
        """
        async with self._audit(table_name, AuditAction.SELECT) as scope:
            scope.metadata["query"] = {
                "conditions": sanitize_for_audit(dict(conditions or {})),
                "columns": list(columns) if columns else None,
                "limit": limit,
                "offset": offset,
                "order_by": order_by,
            }
            if case_insensitive:
                scope.metadata["query"]["case_insensitive"] = list(case_insensitive)
            table = self._table(table_name)
            stmt = select(*self._projection(table, columns)).where(
                *self._where(table, conditions, case_insensitive)
            )
            if order_by:
                column = self._column(table, order_by)
                stmt = stmt.order_by(column.desc() if order_direction.upper() == "DESC" else column.asc())
            if limit is not None:
                stmt = stmt.limit(limit)
            if offset:
                stmt = stmt.offset(offset)

            result = await self._session.execute(stmt)
            rows = [dict(row) for row in result.mappings().all()]
            scope.metadata["row_count"] = len(rows)
            return rows

    async def find_by_id(
        self,
        table_name: str,
        record_id: Any,
        columns: Optional[Sequence[str]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Single row by primary key. A miss is audited with status 404."""
        async with self._audit(table_name, AuditAction.SELECT, record_id=str(record_id)) as scope:
            table = self._table(table_name)
            stmt = select(*self._projection(table, columns)).where(
                self._primary_key(table) == record_id
            )
            result = await self._session.execute(stmt)
            row = result.mappings().first()
            if row is None:
                scope.status_code = STATUS_NOT_FOUND
                return None
            return dict(row)

    async def count(self, table_name: str, conditions: Conditions = None) -> int:
        async with self._audit(table_name, AuditAction.SELECT) as scope:
            scope.metadata["query"] = {
                "count": True,
                "conditions": sanitize_for_audit(dict(conditions or {})),
            }
            table = self._table(table_name)
            stmt = select(func.count()).select_from(table).where(*self._where(table, conditions))
            total = await self._session.scalar(stmt)
            return int(total or 0)

    # ==================== Writes ====================

    async def insert(
        self,
        table_name: str,
        data: Mapping[str, Any],
        returning: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        async with self._audit(table_name, AuditAction.INSERT) as scope:
            scope.new_values = sanitize_for_audit(dict(data))
            table = self._table(table_name)
            values = self._values(table, data)
            stmt = insert(table).values(**values).returning(*self._projection(table, returning))
            result = await self._session.execute(stmt)
            row = dict(result.mappings().one())

            pk = self._primary_key(table).name
            record_id = row.get(pk, values.get(pk))
            scope.record_id = str(record_id) if record_id is not None else None
            scope.status_code = STATUS_CREATED
            return row

    async def update(
        self,
        table_name: str,
        record_id: Any,
        data: Mapping[str, Any],
        returning: Optional[Sequence[str]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Update one row by primary key; ``None`` (audited as 404) when it does not exist."""
        async with self._audit(table_name, AuditAction.UPDATE, record_id=str(record_id)) as scope:
            scope.new_values = sanitize_for_audit(dict(data))
            table = self._table(table_name)
            values = self._values(table, data)

            old = await self._fetch_by_id(table, record_id)
            if old is None:
                scope.status_code = STATUS_NOT_FOUND
                return None
            scope.old_values = sanitize_for_audit(old)

            stmt = (
                update(table)
                .where(self._primary_key(table) == record_id)
                .values(**values)
                .returning(*self._projection(table, returning))
            )
            result = await self._session.execute(stmt)
            row = result.mappings().first()
            return dict(row) if row is not None else None

    async def delete(
        self,
        table_name: str,
        record_id: Any,
        returning: Optional[Sequence[str]] = None,
    ) -> Optional[Dict[str, Any]]:
        async with self._audit(table_name, AuditAction.DELETE, record_id=str(record_id)) as scope:
            table = self._table(table_name)
            projection = self._projection(table, returning)

            old = await self._fetch_by_id(table, record_id)
            if old is None:
                scope.status_code = STATUS_NOT_FOUND
                return None
            scope.old_values = sanitize_for_audit(old)

            stmt = (
                delete(table)
                .where(self._primary_key(table) == record_id)
                .returning(*projection)
            )
            result = await self._session.execute(stmt)
            row = result.mappings().first()
            return dict(row) if row is not None else None

    # ==================== Composition ====================

    async def with_transaction(
        self,
        callback: Callable[["AuditedDatabase"], Awaitable[Any]],
        table_name: str = TRANSACTION_TABLE,
    ) -> Any:
        """
        Run ``callback(self)`` atomically.

        Uses a SAVEPOINT when the session already has a transaction open,
        otherwise a new transaction that commits on success. Inner calls
        emit their own audit rows; this emits one TRANSACTION row.
        """
        async with self._audit(table_name, AuditAction.TRANSACTION) as scope:
            savepoint = self._session.in_transaction()
            scope.metadata["savepoint"] = savepoint
            scope.metadata["committed"] = False

            begin = self._session.begin_nested if savepoint else self._session.begin
            async with begin():
                result = await callback(self)

            scope.metadata["committed"] = True
            return result

    async def audited(
        self,
        table_name: str,
        action: Union[AuditAction, str],
        operation: Callable[[], Awaitable[Any]],
        record_id: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Wrap an arbitrary coroutine function in the audit contract."""
        async with self._audit(table_name, AuditAction(action), record_id=record_id) as scope:
            scope.metadata.update(metadata or {})
            return await operation()

    async def record_denial(
        self,
        table_name: str,
        action: Union[AuditAction, str],
        permissions: Iterable[str] = (),
        error: Optional[AgencyCoreError] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """
        Emit a failure row for a request stopped before any data access.

        Defaults to a 403 for a missing permission; pass ``error`` to record
        another rejection, such as a 401 for an unidentified caller.
        """
        error = error if error is not None else ForbiddenError()
        row_metadata: Dict[str, Any] = dict(metadata or {})
        row_metadata["error"] = error_summary(error)
        required = [str(getattr(p, "value", p)) for p in permissions]
        if required:
            row_metadata["required_permissions"] = required
        entry = AuditLogEntry.from_context(
            self.context,
            table_name=table_name,
            action=AuditAction(action),
            status_code=error.status_code,
            operation_duration_ms=0,
            error_message=error.message,
            metadata=row_metadata,
        )
        await asyncio.shield(self._emit(entry))
