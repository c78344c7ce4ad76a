"""
Agency Core - Exception Hierarchy

Structured exception types for the identity, permission and audited data
access layers, plus the FastAPI handlers that map them onto HTTP responses.

Exception Categories:
    - UnauthenticatedError: Missing, invalid or expired credentials (401)
    - ForbiddenError: Valid identity, insufficient permission (403)
    - DataAccessError: Underlying store failures and bad table/column names (500)
    - AuditWriteFailure: The audit append itself failed (never surfaced)
    - SessionError: Session registry conflicts
    - PermissionConfigError: Invalid role/permission table (startup)
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class AgencyCoreError(Exception):
    """
    Base exception for all agency core errors.

    Attributes:
        message: Human-readable error description
        code: Optional error code for programmatic handling
        details: Optional dict with additional context
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


# =============================================================================
# AUTHENTICATION & AUTHORIZATION
# =============================================================================


class UnauthenticatedError(AgencyCoreError):
    """Credential missing, malformed, forged or expired."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Authentication required", **kwargs):
        super().__init__(message, code=kwargs.pop("code", "UNAUTHENTICATED"), **kwargs)


class ForbiddenError(AgencyCoreError):
    """Authenticated caller lacks the permission for the operation."""

    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Forbidden", **kwargs):
        super().__init__(message, code=kwargs.pop("code", "FORBIDDEN"), **kwargs)


class PermissionConfigError(AgencyCoreError):
    """Role/permission table references an undefined role or permission."""


# =============================================================================
# SESSIONS
# =============================================================================


class SessionError(AgencyCoreError):
    """Base exception for session registry errors."""

    def __init__(self, message: str, session_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.session_id = session_id


class SessionConflictError(SessionError):
    """Claims disagree with the cached session's user, role or tenant."""

    pass


class SessionInactiveError(SessionError):
    """Session was ended or idled out and cannot be refreshed."""

    pass


# =============================================================================
# DATA ACCESS
# =============================================================================


class DataAccessError(AgencyCoreError):
    """Base exception for data access failures."""

    def __init__(self, message: str, table_name: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.table_name = table_name


class UnknownTableError(DataAccessError):
    """Table name is not on the data access allow-list."""

    pass


class UnknownColumnError(DataAccessError):
    """Column name does not exist on the target table."""

    def __init__(self, message: str, column: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.column = column


class AuditWriteFailure(AgencyCoreError):
    """Appending an audit row failed. Degraded mode, never fatal."""

    pass


# =============================================================================
# HTTP HANDLERS
# =============================================================================


async def unauthenticated_handler(request: Request, exc: UnauthenticatedError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": "Authentication required"},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def forbidden_handler(request: Request, exc: ForbiddenError) -> JSONResponse:
    # Never echo which permission was missing.
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"detail": "Forbidden"},
    )


async def data_access_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Data access failure on {request.method} {request.url.path}: {exc}",
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


async def validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg", "Invalid value"),
            "type": error.get("type"),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Validation error", "errors": errors},
    )


async def agency_core_handler(request: Request, exc: AgencyCoreError) -> JSONResponse:
    logger.error(f"Unhandled {exc.__class__.__name__} on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": "Internal server error", "code": exc.code},
    )


def register_exception_handlers(app) -> None:
    """Attach the error taxonomy to a FastAPI application."""
    app.add_exception_handler(AgencyCoreError, agency_core_handler)
    app.add_exception_handler(UnauthenticatedError, unauthenticated_handler)
    app.add_exception_handler(ForbiddenError, forbidden_handler)
    app.add_exception_handler(DataAccessError, data_access_handler)
    app.add_exception_handler(SQLAlchemyError, data_access_handler)
    app.add_exception_handler(RequestValidationError, validation_handler)
