"""
SQLAlchemy ORM Models

Database models for the agency core: tenants (clients), users, the calls
business table, and the append-only audit log with its summary view.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    DDL,
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Client(Base):
    """Tenant (agency/client account); the unit of data isolation."""

    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    users: Mapped[list["User"]] = relationship("User", back_populates="client")

    def __repr__(self) -> str:
        return f"<Client {self.name}>"


class User(Base):
    """User account model."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    client_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="agency_user")
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    client: Mapped["Client"] = relationship("Client", back_populates="users")

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class Call(Base):
    """Sales call record (business entity, accessed through the audited layer)."""

    __tablename__ = "calls"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    client_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    prospect_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="scheduled")
    outcome: Mapped[Optional[str]] = mapped_column(String(32))
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class AuditLog(Base):
    """Append-only audit row. Never updated in place."""

    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    # Plain string, not a foreign key: anonymous requests log tenant "unknown".
    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(64))
    table_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    record_id: Mapped[Optional[str]] = mapped_column(String(255))
    action: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    old_values: Mapped[Optional[dict]] = mapped_column(JSONType)
    new_values: Mapped[Optional[dict]] = mapped_column(JSONType)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64))
    user_agent: Mapped[Optional[str]] = mapped_column(Text)
    session_id: Mapped[Optional[str]] = mapped_column(String(128), index=True)
    endpoint: Mapped[Optional[str]] = mapped_column(String(500))
    http_method: Mapped[Optional[str]] = mapped_column(String(10))
    status_code: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    operation_duration_ms: Mapped[Optional[int]] = mapped_column(Integer)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    metadata_: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_audit_logs_client_id_created_at", "client_id", "created_at"),
        Index("ix_audit_logs_user_id_created_at", "user_id", "created_at"),
        Index("ix_audit_logs_table_name_action", "table_name", "action"),
    )


# Tables reachable through the audited data access layer.
DATA_TABLES = ("clients", "users", "calls")


# ==================== Summary View ====================


AUDIT_SUMMARY_VIEW = "audit_logs_summary"

AUDIT_SUMMARY_VIEW_SQL = f"""
CREATE VIEW {AUDIT_SUMMARY_VIEW} AS
SELECT
    al.id,
    al.client_id,
    c.name AS client_name,
    al.user_id,
    u.name AS user_name,
    u.email AS user_email,
    u.role AS user_role,
    al.table_name,
    al.record_id,
    al.action,
    al.endpoint,
    al.http_method,
    al.status_code,
    al.operation_duration_ms,
    al.error_message,
    al.ip_address,
    al.user_agent,
    al.session_id,
    al.metadata,
    al.created_at
FROM audit_logs al
LEFT JOIN clients c ON al.client_id = c.id
LEFT JOIN users u ON al.user_id = u.id
"""

event.listen(Base.metadata, "after_create", DDL(AUDIT_SUMMARY_VIEW_SQL))
event.listen(Base.metadata, "before_drop", DDL(f"DROP VIEW IF EXISTS {AUDIT_SUMMARY_VIEW}"))

# Read-only mapping of the view; kept out of Base.metadata so create_all
# never tries to create it as a table.
view_metadata = MetaData()

audit_logs_summary = Table(
    AUDIT_SUMMARY_VIEW,
    view_metadata,
    Column("id", String(64), primary_key=True),
    Column("client_id", String(64)),
    Column("client_name", String(255)),
    Column("user_id", String(64)),
    Column("user_name", String(255)),
    Column("user_email", String(255)),
    Column("user_role", String(32)),
    Column("table_name", String(100)),
    Column("record_id", String(255)),
    Column("action", String(16)),
    Column("endpoint", String(500)),
    Column("http_method", String(10)),
    Column("status_code", Integer),
    Column("operation_duration_ms", Integer),
    Column("error_message", Text),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("session_id", String(128)),
    Column("metadata", JSONType),
    Column("created_at", DateTime(timezone=True)),
)
