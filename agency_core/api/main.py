"""
Agency Core API - Main Application Entry Point

FastAPI backend for the audit and identity core of the agency dashboard.
"""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import async_sessionmaker

from agency_core.api.audit.store import SqlAuditLogStore
from agency_core.api.auth.jwt import CredentialVerifier
from agency_core.api.config import Settings, settings
from agency_core.api.db.session import close_db, get_session_maker, init_db
from agency_core.api.errors import register_exception_handlers
from agency_core.api.identity.extractor import IdentityExtractor
from agency_core.api.identity.sessions import InMemorySessionRegistry
from agency_core.api.services.session_sweeper import IdleSessionSweeper

logger = logging.getLogger(__name__)


def init_services(
    app: FastAPI,
    session_factory: Optional[async_sessionmaker] = None,
    config: Settings = settings,
) -> None:
    """Attach the shared services to ``app.state``."""
    registry = InMemorySessionRegistry()

    app.state.session_registry = registry
    app.state.identity_extractor = IdentityExtractor(CredentialVerifier(config), registry)
    app.state.audit_store = SqlAuditLogStore(session_factory or get_session_maker())
    app.state.session_sweeper = IdleSessionSweeper(
        registry,
        interval_seconds=config.SESSION_SWEEP_INTERVAL_SECONDS,
        idle_timeout=timedelta(minutes=config.SESSION_IDLE_TIMEOUT_MINUTES),
        retention=timedelta(hours=config.SESSION_RETENTION_HOURS),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    await init_db()
    init_services(app)
    await app.state.session_sweeper.start()
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started")
    yield
    # Shutdown
    await app.state.session_sweeper.stop()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Agency Core - session-aware identity and audited data access",
        docs_url="/api/docs" if settings.DEBUG else None,
        redoc_url="/api/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Include routers
    from agency_core.api.auth.routes import router as auth_router
    from agency_core.api.sessions.routes import router as sessions_router
    from agency_core.api.audit.routes import router as audit_router
    from agency_core.api.calls.routes import router as calls_router

    app.include_router(auth_router, prefix="/api/auth", tags=["Authentication"])
    app.include_router(sessions_router, prefix="/api/sessions", tags=["Sessions"])
    app.include_router(audit_router, prefix="/api/audit", tags=["Audit"])
    app.include_router(calls_router, prefix="/api/calls", tags=["Calls"])

    # Health check endpoint
    @app.get("/api/health", tags=["Health"])
    async def health_check():
        registry = getattr(app.state, "session_registry", None)
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "service": settings.APP_NAME,
            "active_sessions": await registry.count() if registry else 0,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "agency_core.api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
